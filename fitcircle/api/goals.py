"""FastAPI routes for daily goals & streaks."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query, status

from fitcircle.domain.goals.schemas import (
	DailyGoalSchema,
	DailyProgressSchema,
	GoalCompletionRequest,
	GoalCompletionSchema,
	StreakSchema,
)
from fitcircle.domain.goals.service import GoalService

router = APIRouter(prefix="/goals", tags=["goals"])

_service = GoalService()


@router.post("/{owner_id}/completions", response_model=list[GoalCompletionSchema])
async def update_completions_endpoint(owner_id: str, payload: GoalCompletionRequest) -> list[GoalCompletionSchema]:
	records = await _service.update_goal_completion(owner_id, payload.completion_date, payload.snapshot.to_domain())
	return [GoalCompletionSchema.from_record(record) for record in records]


@router.get("/{owner_id}/progress", response_model=DailyProgressSchema)
async def daily_progress_endpoint(
	owner_id: str,
	on: Optional[date] = Query(default=None, alias="date", description="Calendar date, defaults to today (UTC)"),
) -> DailyProgressSchema:
	day = on or datetime.now(timezone.utc).date()
	progress = await _service.get_daily_progress(owner_id, day)
	return DailyProgressSchema.from_progress(progress)


@router.get("/{owner_id}/streak", response_model=StreakSchema)
async def streak_endpoint(owner_id: str) -> StreakSchema:
	return StreakSchema.from_state(await _service.get_streak(owner_id))


@router.post(
	"/{owner_id}/challenges/{challenge_id}",
	response_model=list[DailyGoalSchema],
	status_code=status.HTTP_201_CREATED,
)
async def create_challenge_goals_endpoint(owner_id: str, challenge_id: str) -> list[DailyGoalSchema]:
	goals = await _service.create_goals_for_challenge(owner_id, challenge_id)
	return [DailyGoalSchema.from_goal(goal) for goal in goals]
