"""Pydantic schemas for daily goal & streak APIs."""

from __future__ import annotations

import datetime as dt
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, Field

from fitcircle.domain.goals.models import (
	DailyGoal,
	DailyProgress,
	GoalCompletionRecord,
	GoalFrequency,
	GoalType,
)
from fitcircle.domain.streaks.models import StreakState
from fitcircle.domain.tracking.models import TrackingSnapshot


class TrackingSnapshotSchema(BaseModel):
	steps: Optional[int] = Field(default=None, ge=0)
	weight_kg: Optional[float] = Field(default=None, gt=0)
	mood_score: Optional[float] = None
	energy_level: Optional[float] = None
	active_minutes: Optional[int] = Field(default=None, ge=0)
	custom_values: Dict[str, float] = Field(default_factory=dict, description="Values for custom goals, keyed by goal id")

	def to_domain(self) -> TrackingSnapshot:
		return TrackingSnapshot(
			steps=self.steps,
			weight_kg=self.weight_kg,
			mood_score=self.mood_score,
			energy_level=self.energy_level,
			active_minutes=self.active_minutes,
			custom_values=dict(self.custom_values),
		)


class GoalCompletionRequest(BaseModel):
	completion_date: dt.date = Field(..., validation_alias=AliasChoices("completion_date", "date"))
	snapshot: TrackingSnapshotSchema = Field(default_factory=TrackingSnapshotSchema)


class GoalCompletionSchema(BaseModel):
	goal_id: str
	owner_id: str
	completion_date: dt.date
	actual_value: Optional[float] = None
	target_value: Optional[float] = None
	completion_percentage: float = Field(..., ge=0, le=100)
	is_completed: bool
	completed_at: Optional[dt.datetime] = None

	@classmethod
	def from_record(cls, record: GoalCompletionRecord) -> "GoalCompletionSchema":
		return cls(
			goal_id=record.goal_id,
			owner_id=record.owner_id,
			completion_date=record.completion_date,
			actual_value=record.actual_value,
			target_value=record.target_value,
			completion_percentage=record.completion_percentage,
			is_completed=record.is_completed,
			completed_at=record.completed_at,
		)


class GoalProgressSchema(BaseModel):
	goal_id: str
	goal_type: GoalType
	target_value: Optional[float] = None
	actual_value: Optional[float] = None
	completion_percentage: float = 0.0
	is_completed: bool = False
	unit: Optional[str] = None


class DailyProgressSchema(BaseModel):
	date: dt.date
	goals: list[GoalProgressSchema]
	overall_completion: float = 0.0
	total_goals: int = 0
	completed_goals: int = 0

	@classmethod
	def from_progress(cls, progress: DailyProgress) -> "DailyProgressSchema":
		return cls(
			date=progress.day,
			goals=[
				GoalProgressSchema(
					goal_id=item.goal_id,
					goal_type=item.goal_type,
					target_value=item.target_value,
					actual_value=item.actual_value,
					completion_percentage=item.completion_percentage,
					is_completed=item.is_completed,
					unit=item.unit,
				)
				for item in progress.goals
			],
			overall_completion=progress.overall_completion,
			total_goals=progress.total_goals,
			completed_goals=progress.completed_goals,
		)


class StreakSchema(BaseModel):
	current_streak: int = 0
	longest_streak: int = 0
	last_completion_date: Optional[dt.date] = None

	@classmethod
	def from_state(cls, state: StreakState) -> "StreakSchema":
		return cls(
			current_streak=state.current_streak,
			longest_streak=state.longest_streak,
			last_completion_date=state.last_completion_date,
		)


class DailyGoalSchema(BaseModel):
	goal_id: str
	owner_id: str
	goal_type: GoalType
	target_value: Optional[float] = None
	unit: Optional[str] = None
	frequency: GoalFrequency = GoalFrequency.DAILY
	start_date: Optional[dt.date] = None
	end_date: Optional[dt.date] = None
	challenge_id: Optional[str] = None
	is_primary: bool = False

	@classmethod
	def from_goal(cls, goal: DailyGoal) -> "DailyGoalSchema":
		return cls(
			goal_id=goal.goal_id,
			owner_id=goal.owner_id,
			goal_type=goal.goal_type,
			target_value=goal.target_value,
			unit=goal.unit,
			frequency=goal.frequency,
			start_date=goal.start_date,
			end_date=goal.end_date,
			challenge_id=goal.challenge_id,
			is_primary=goal.is_primary,
		)
