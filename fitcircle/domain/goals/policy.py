"""Policy helpers for daily goals: scheduling, evaluation and planning."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import uuid4

from fitcircle.domain.goals.models import (
	ChallengeContext,
	ChallengeType,
	DailyGoal,
	DailyProgress,
	GoalCompletionRecord,
	GoalFrequency,
	GoalProgress,
	GoalType,
	ParticipantTargets,
)
from fitcircle.domain.tracking.models import TrackingSnapshot

CompletionKey = Tuple[str, str, date]

FULL = 100.0
NEAR_MISS_CAP = 99.99

# --- Step goal planning ---
DEFAULT_STEP_BASELINE = 5000
DEFAULT_STEP_GOAL = 10000
BASELINE_SAMPLE_DAYS = 7
STEP_GOAL_MIN = 5000
STEP_GOAL_MAX = 25000

# Weight loss: 1 kg of fat is roughly 7700 kcal; 40% of the daily deficit
# should come from walking at ~0.045 kcal per step.
KCAL_PER_KG = 7700
STEP_SHARE_OF_DEFICIT = 0.4
KCAL_PER_STEP = 0.045
LIGHT_LOSS_KG = 2.5
MODERATE_LOSS_KG = 7
LIGHT_STEP_GOAL = 8000
MODERATE_STEP_GOAL = 10000
AGGRESSIVE_STEP_CAP = 12000


def _ratio_percentage(actual: Optional[float], target: Optional[float]) -> float:
	if actual is None or target is None or target <= 0:
		return 0.0
	return max(0.0, min(actual / target * 100, FULL))


def _presence_percentage(actual: Optional[float]) -> float:
	return FULL if actual is not None else 0.0


def _has_numeric_target(goal: DailyGoal) -> bool:
	return goal.target_value is not None and goal.target_value > 0


# Each rule returns (actual_value, completion_percentage)
Rule = Callable[[DailyGoal, TrackingSnapshot], Tuple[Optional[float], float]]


def _steps_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	actual = None if snapshot.steps is None else float(snapshot.steps)
	return actual, _ratio_percentage(actual, goal.target_value)


def _weight_log_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	actual = 1.0 if snapshot.weight_kg is not None else 0.0
	return actual, actual * FULL


def _mood_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	return snapshot.mood_score, _presence_percentage(snapshot.mood_score)


def _energy_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	return snapshot.energy_level, _presence_percentage(snapshot.energy_level)


def _presence_or_ratio(goal: DailyGoal, actual: Optional[float]) -> Tuple[Optional[float], float]:
	if _has_numeric_target(goal):
		return actual, _ratio_percentage(actual, goal.target_value)
	return actual, _presence_percentage(actual)


def _workout_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	actual = None if snapshot.active_minutes is None else float(snapshot.active_minutes)
	return _presence_or_ratio(goal, actual)


def _custom_rule(goal: DailyGoal, snapshot: TrackingSnapshot) -> Tuple[Optional[float], float]:
	return _presence_or_ratio(goal, snapshot.custom_values.get(goal.goal_id))


EVALUATION_RULES: Dict[GoalType, Rule] = {
	GoalType.STEPS: _steps_rule,
	GoalType.WEIGHT_LOG: _weight_log_rule,
	GoalType.MOOD: _mood_rule,
	GoalType.ENERGY: _energy_rule,
	GoalType.WORKOUT: _workout_rule,
	GoalType.CUSTOM: _custom_rule,
}


def is_goal_active(goal: DailyGoal, on: date) -> bool:
	"""True when the goal is enabled, in its date window and scheduled for ``on``."""

	if not goal.is_active:
		return False
	if goal.start_date is not None and on < goal.start_date:
		return False
	if goal.end_date is not None and on > goal.end_date:
		return False
	weekday = on.weekday()
	if goal.frequency is GoalFrequency.WEEKDAYS:
		return weekday < 5
	if goal.frequency is GoalFrequency.WEEKENDS:
		return weekday >= 5
	if goal.frequency is GoalFrequency.CUSTOM and goal.custom_days:
		return weekday in goal.custom_days
	return True


def active_goals(goals: Iterable[DailyGoal], on: date) -> List[DailyGoal]:
	return [goal for goal in goals if is_goal_active(goal, on)]


def evaluate(
	goal: DailyGoal,
	snapshot: TrackingSnapshot,
	*,
	on: date,
	now: datetime,
	previous: Optional[GoalCompletionRecord] = None,
) -> GoalCompletionRecord:
	"""Evaluate ``goal`` against the day's snapshot.

	``completed_at`` is ``now`` when the goal is complete, unless ``previous``
	(the stored record for the same owner/goal/day) already carries a stamp,
	in which case that first stamp is kept.
	"""

	rule = EVALUATION_RULES[goal.goal_type]
	actual, percentage = rule(goal, snapshot)
	completed = percentage >= FULL
	percentage = round(percentage, 2)
	if not completed:
		# A near miss must not read as 100 once rounded
		percentage = min(percentage, NEAR_MISS_CAP)
	completed_at: Optional[datetime] = None
	if completed:
		if previous is not None and previous.is_completed and previous.completed_at is not None:
			completed_at = previous.completed_at
		else:
			completed_at = now
	return GoalCompletionRecord(
		owner_id=goal.owner_id,
		goal_id=goal.goal_id,
		completion_date=on,
		actual_value=actual,
		target_value=goal.target_value,
		completion_percentage=percentage,
		is_completed=completed,
		completed_at=completed_at,
	)


def evaluate_day(
	goals: Iterable[DailyGoal],
	snapshot: TrackingSnapshot,
	*,
	on: date,
	now: datetime,
	previous: Optional[Mapping[CompletionKey, GoalCompletionRecord]] = None,
) -> List[GoalCompletionRecord]:
	"""Evaluate every goal active on ``on``."""

	previous = previous or {}
	return [
		evaluate(goal, snapshot, on=on, now=now, previous=previous.get((goal.owner_id, goal.goal_id, on)))
		for goal in active_goals(goals, on)
	]


def merge_completions(
	existing: Mapping[CompletionKey, GoalCompletionRecord],
	updates: Iterable[GoalCompletionRecord],
) -> Dict[CompletionKey, GoalCompletionRecord]:
	"""Upsert ``updates`` into ``existing`` by (owner, goal, date)."""

	merged = dict(existing)
	for record in updates:
		merged[record.key] = record
	return merged


def overall_completion(records: Iterable[GoalCompletionRecord]) -> float:
	"""Percentage of goals completed; 0 when there are no goals."""

	records = list(records)
	if not records:
		return 0.0
	completed = sum(1 for record in records if record.is_completed)
	return round(completed / len(records) * 100, 2)


def build_daily_progress(
	goals: Iterable[DailyGoal],
	records: Iterable[GoalCompletionRecord],
	on: date,
) -> DailyProgress:
	todays = active_goals(goals, on)
	by_goal = {record.goal_id: record for record in records if record.completion_date == on}
	items: List[GoalProgress] = []
	for goal in todays:
		record = by_goal.get(goal.goal_id)
		items.append(
			GoalProgress(
				goal_id=goal.goal_id,
				goal_type=goal.goal_type,
				target_value=goal.target_value,
				actual_value=record.actual_value if record else None,
				completion_percentage=record.completion_percentage if record else 0.0,
				is_completed=record.is_completed if record else False,
				unit=goal.unit,
			)
		)
	completed = sum(1 for item in items if item.is_completed)
	overall = round(completed / len(items) * 100, 2) if items else 0.0
	return DailyProgress(
		day=on,
		goals=items,
		overall_completion=overall,
		total_goals=len(items),
		completed_goals=completed,
	)


def step_baseline(recent_steps: Iterable[Optional[int]]) -> int:
	"""Mean of the latest logged step counts, or the default baseline."""

	values = [int(steps) for steps in recent_steps if steps is not None][:BASELINE_SAMPLE_DAYS]
	if not values:
		return DEFAULT_STEP_BASELINE
	return sum(values) // len(values)


def daily_step_goal(
	challenge: ChallengeContext,
	participant: ParticipantTargets,
	baseline: int = DEFAULT_STEP_BASELINE,
) -> int:
	duration_days = max(1, (challenge.end_date - challenge.start_date).days)

	if challenge.challenge_type is ChallengeType.STEP_COUNT and participant.goal_value:
		daily = math.ceil(participant.goal_value / duration_days)
		return min(max(daily, STEP_GOAL_MIN), STEP_GOAL_MAX)

	if (
		challenge.challenge_type is ChallengeType.WEIGHT_LOSS
		and participant.starting_weight_kg
		and participant.goal_weight_kg
	):
		to_lose = participant.starting_weight_kg - participant.goal_weight_kg
		if to_lose < LIGHT_LOSS_KG:
			return LIGHT_STEP_GOAL
		if to_lose < MODERATE_LOSS_KG:
			return MODERATE_STEP_GOAL
		daily_deficit = to_lose * KCAL_PER_KG / duration_days
		extra_steps = math.ceil(daily_deficit * STEP_SHARE_OF_DEFICIT / KCAL_PER_STEP)
		return min(AGGRESSIVE_STEP_CAP, baseline + extra_steps)

	return DEFAULT_STEP_GOAL


def plan_challenge_goals(
	owner_id: str,
	challenge: ChallengeContext,
	participant: ParticipantTargets,
	*,
	baseline: int = DEFAULT_STEP_BASELINE,
) -> List[DailyGoal]:
	"""Goals a participant gets on joining: steps, plus weight logging for weight loss."""

	goals: List[DailyGoal] = []
	if challenge.challenge_type in (ChallengeType.STEP_COUNT, ChallengeType.WEIGHT_LOSS):
		goals.append(
			DailyGoal(
				goal_id=str(uuid4()),
				owner_id=owner_id,
				goal_type=GoalType.STEPS,
				target_value=float(daily_step_goal(challenge, participant, baseline)),
				unit="steps",
				start_date=challenge.start_date,
				end_date=challenge.end_date,
				challenge_id=challenge.challenge_id,
				is_primary=True,
				baseline_value=float(baseline),
			)
		)
	if challenge.challenge_type is ChallengeType.WEIGHT_LOSS and participant.goal_weight_kg:
		goals.append(
			DailyGoal(
				goal_id=str(uuid4()),
				owner_id=owner_id,
				goal_type=GoalType.WEIGHT_LOG,
				target_value=1.0,
				unit="log",
				start_date=challenge.start_date,
				end_date=challenge.end_date,
				challenge_id=challenge.challenge_id,
				is_primary=not goals,
			)
		)
	return goals
