"""Pydantic schemas for leaderboard APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from fitcircle.domain.leaderboards.models import EntityType, Trend


class LeaderboardEntrySchema(BaseModel):
	rank: int = Field(..., ge=1)
	entity_id: str
	entity_type: EntityType
	points: Optional[int] = None
	progress_percentage: Optional[float] = Field(default=None, ge=0, le=100)
	streak_days: Optional[int] = None
	check_ins_count: int = 0
	previous_rank: Optional[int] = None
	rank_change: int = 0
	trend: Trend = Trend.STABLE
	weight_lost_kg: Optional[float] = None
	weight_lost_percentage: Optional[float] = None
	total_steps: int = 0
	total_active_minutes: int = 0
	last_activity_at: Optional[datetime] = None
	stats: Dict[str, Any] = Field(default_factory=dict)
	calculated_at: Optional[datetime] = None


class LeaderboardResponseSchema(BaseModel):
	challenge_id: str
	entity_type: EntityType
	items: list[LeaderboardEntrySchema]


class RecalculateRequest(BaseModel):
	force: bool = Field(default=False, description="Bypass the recompute throttle window")


class RecalculationSummary(BaseModel):
	"""Outcome of a recompute request."""

	challenge_id: str
	status: Literal["recalculated", "throttled", "in_progress"]
	individuals: int = 0
	teams: int = 0
	significant_changes: int = 0
	calculated_at: Optional[datetime] = None
