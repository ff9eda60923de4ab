"""FastAPI routes for challenge leaderboards."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Query

from fitcircle.domain.leaderboards.models import EntityType
from fitcircle.domain.leaderboards.schemas import (
	LeaderboardResponseSchema,
	RecalculateRequest,
	RecalculationSummary,
)
from fitcircle.domain.leaderboards.service import LeaderboardService

router = APIRouter(prefix="/challenges", tags=["leaderboards"])

_service = LeaderboardService()


@router.post("/{challenge_id}/rankings/recalculate", response_model=RecalculationSummary)
async def recalculate_endpoint(
	challenge_id: str,
	payload: Optional[RecalculateRequest] = Body(default=None),
) -> RecalculationSummary:
	force = payload.force if payload is not None else False
	return await _service.recalculate(challenge_id, force=force)


@router.get("/{challenge_id}/leaderboard", response_model=LeaderboardResponseSchema)
async def leaderboard_endpoint(
	challenge_id: str,
	entity_type: EntityType = Query(default=EntityType.INDIVIDUAL),
) -> LeaderboardResponseSchema:
	return await _service.get_leaderboard(challenge_id, entity_type)
