"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fitcircle.api import goals, leaderboards, ops
from fitcircle.api.errors import install_error_handlers
from fitcircle.infra import postgres
from fitcircle.obs import init as obs_init
from fitcircle.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="FitCircle Rankings", lifespan=lifespan)
install_error_handlers(app)

allow_origins = settings.cors_origins()
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials="*" not in allow_origins,
	allow_methods=["*"],
	allow_headers=["*"],
)

obs_init(app)

app.include_router(leaderboards.router)
app.include_router(goals.router)
app.include_router(ops.router)


if __name__ == "__main__":
	import uvicorn

	uvicorn.run("fitcircle.main:app", host="0.0.0.0", port=8000, reload=settings.is_dev())
