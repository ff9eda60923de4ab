"""Domain models for daily goals and their per-day completion records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Mapping, Optional, Tuple

from fitcircle.domain.exceptions import MalformedRecordError
from fitcircle.domain.tracking.models import identity, optional_float, parse_date, parse_datetime


class GoalType(str, Enum):
	STEPS = "steps"
	WEIGHT_LOG = "weight_log"
	WORKOUT = "workout"
	MOOD = "mood"
	ENERGY = "energy"
	CUSTOM = "custom"


class GoalFrequency(str, Enum):
	DAILY = "daily"
	WEEKDAYS = "weekdays"
	WEEKENDS = "weekends"
	CUSTOM = "custom"


class ChallengeType(str, Enum):
	WEIGHT_LOSS = "weight_loss"
	STEP_COUNT = "step_count"
	WORKOUT_FREQUENCY = "workout_frequency"
	CUSTOM = "custom"


@dataclass(slots=True)
class DailyGoal:
	"""A goal an entity should meet on each scheduled day."""

	goal_id: str
	owner_id: str
	goal_type: GoalType
	target_value: Optional[float] = None
	unit: Optional[str] = None
	frequency: GoalFrequency = GoalFrequency.DAILY
	is_active: bool = True
	start_date: Optional[date] = None
	end_date: Optional[date] = None
	# Weekday numbers (Monday=0) used by the custom frequency
	custom_days: Tuple[int, ...] = ()
	challenge_id: Optional[str] = None
	is_primary: bool = False
	baseline_value: Optional[float] = None

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "DailyGoal":
		goal_id = identity(mapping, "goal_id", "id")
		owner_id = identity(mapping, "owner_id", "user_id")
		if goal_id is None or owner_id is None:
			raise MalformedRecordError("goal without id or owner", source="daily_goals")
		schedule = mapping.get("custom_schedule") or mapping.get("custom_days") or ()
		if isinstance(schedule, str):
			schedule = json.loads(schedule)
		if isinstance(schedule, Mapping):
			schedule = schedule.get("days") or ()
		return cls(
			goal_id=goal_id,
			owner_id=owner_id,
			goal_type=GoalType(mapping.get("goal_type", GoalType.CUSTOM.value)),
			target_value=optional_float(mapping.get("target_value")),
			unit=mapping.get("unit"),
			frequency=GoalFrequency(mapping.get("frequency") or GoalFrequency.DAILY.value),
			is_active=bool(mapping.get("is_active", True)),
			start_date=parse_date(mapping.get("start_date")),
			end_date=parse_date(mapping.get("end_date")),
			custom_days=tuple(int(day) for day in schedule),
			challenge_id=identity(mapping, "challenge_id"),
			is_primary=bool(mapping.get("is_primary", False)),
			baseline_value=optional_float(mapping.get("baseline_value")),
		)


@dataclass(slots=True, frozen=True)
class GoalCompletionRecord:
	"""Evaluation of one goal on one day; unique per (owner, goal, date)."""

	owner_id: str
	goal_id: str
	completion_date: date
	actual_value: Optional[float]
	target_value: Optional[float]
	completion_percentage: float
	is_completed: bool
	completed_at: Optional[datetime] = None

	@property
	def key(self) -> Tuple[str, str, date]:
		return (self.owner_id, self.goal_id, self.completion_date)

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "GoalCompletionRecord":
		owner_id = identity(mapping, "owner_id", "user_id")
		goal_id = identity(mapping, "goal_id", "daily_goal_id")
		day = parse_date(mapping.get("completion_date"))
		if owner_id is None or goal_id is None or day is None:
			raise MalformedRecordError("completion without owner, goal or date", source="goal_completion_history")
		percentage = optional_float(mapping.get("completion_percentage")) or 0.0
		completed = mapping.get("is_completed")
		return cls(
			owner_id=owner_id,
			goal_id=goal_id,
			completion_date=day,
			actual_value=optional_float(mapping.get("actual_value")),
			target_value=optional_float(mapping.get("target_value")),
			completion_percentage=percentage,
			is_completed=bool(completed) if completed is not None else percentage >= 100,
			completed_at=parse_datetime(mapping.get("completed_at")),
		)


@dataclass(slots=True)
class GoalProgress:
	goal_id: str
	goal_type: GoalType
	target_value: Optional[float]
	actual_value: Optional[float]
	completion_percentage: float
	is_completed: bool
	unit: Optional[str] = None


@dataclass(slots=True)
class DailyProgress:
	"""All of an entity's goals for one day, plus the overall percentage."""

	day: date
	goals: List[GoalProgress] = field(default_factory=list)
	overall_completion: float = 0.0
	total_goals: int = 0
	completed_goals: int = 0


@dataclass(slots=True)
class ChallengeContext:
	"""The challenge facts needed to plan goals for a participant."""

	challenge_id: str
	challenge_type: ChallengeType
	start_date: date
	end_date: date


@dataclass(slots=True)
class ParticipantTargets:
	starting_weight_kg: Optional[float] = None
	goal_weight_kg: Optional[float] = None
	starting_value: Optional[float] = None
	goal_value: Optional[float] = None
