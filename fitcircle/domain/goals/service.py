"""Service layer for daily goals, their completion history and streaks."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional, Sequence

import asyncpg

from fitcircle.domain.exceptions import MalformedRecordError, MissingInputError
from fitcircle.domain.goals import policy
from fitcircle.domain.goals.models import (
	ChallengeContext,
	ChallengeType,
	DailyGoal,
	DailyProgress,
	GoalCompletionRecord,
	ParticipantTargets,
)
from fitcircle.domain.streaks import policy as streak_policy
from fitcircle.domain.streaks.models import StreakState
from fitcircle.domain.tracking.models import TrackingSnapshot, optional_float, parse_date
from fitcircle.infra.postgres import get_pool
from fitcircle.obs import metrics as obs_metrics
from fitcircle.settings import settings

logger = logging.getLogger(__name__)

_UPSERT_COMPLETION_SQL = """
INSERT INTO goal_completion_history (
	user_id, daily_goal_id, completion_date, target_value, actual_value,
	completion_percentage, is_completed, completed_at
)
VALUES ($1,$2,$3,$4,$5,$6,$7,$8)
ON CONFLICT (user_id, daily_goal_id, completion_date)
DO UPDATE
SET target_value = EXCLUDED.target_value,
	actual_value = EXCLUDED.actual_value,
	completion_percentage = EXCLUDED.completion_percentage,
	is_completed = EXCLUDED.is_completed,
	completed_at = EXCLUDED.completed_at
"""

_INSERT_GOAL_SQL = """
INSERT INTO daily_goals (
	id, user_id, challenge_id, goal_type, target_value, unit, frequency,
	is_active, is_primary, start_date, end_date, baseline_value, custom_schedule
)
VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13::jsonb)
"""


def _load_goals(rows: Sequence[Mapping[str, Any]]) -> List[DailyGoal]:
	goals: List[DailyGoal] = []
	for row in rows:
		try:
			goals.append(DailyGoal.from_mapping(dict(row)))
		except (MalformedRecordError, ValueError) as exc:
			obs_metrics.inc_malformed_record("daily_goals")
			logger.warning("goal_skipped", extra={"reason": str(exc)})
	return goals


def _load_completions(rows: Sequence[Mapping[str, Any]]) -> List[GoalCompletionRecord]:
	records: List[GoalCompletionRecord] = []
	for row in rows:
		try:
			records.append(GoalCompletionRecord.from_mapping(dict(row)))
		except MalformedRecordError as exc:
			obs_metrics.inc_malformed_record("goal_completion_history")
			logger.warning("completion_skipped", extra={"reason": str(exc)})
	return records


class GoalService:
	"""Evaluates daily goals and derives streaks from completion history."""

	async def _active_goals(self, conn: asyncpg.Connection, owner_id: str) -> List[DailyGoal]:
		rows = await conn.fetch(
			"SELECT * FROM daily_goals WHERE user_id = $1 AND is_active = TRUE ORDER BY is_primary DESC, created_at ASC",
			owner_id,
		)
		return _load_goals(rows)

	async def _completions_on(self, conn: asyncpg.Connection, owner_id: str, on: date) -> List[GoalCompletionRecord]:
		rows = await conn.fetch(
			"SELECT * FROM goal_completion_history WHERE user_id = $1 AND completion_date = $2",
			owner_id,
			on,
		)
		return _load_completions(rows)

	async def update_goal_completion(
		self,
		owner_id: str,
		on: date,
		snapshot: TrackingSnapshot,
		*,
		now: Optional[datetime] = None,
	) -> List[GoalCompletionRecord]:
		"""Evaluate every goal active on ``on`` and upsert the results."""

		now = now or datetime.now(timezone.utc)
		pool = await get_pool()
		async with pool.acquire() as conn:
			goals = await self._active_goals(conn, owner_id)
			if not goals:
				obs_metrics.inc_degenerate_input("no_active_goals")
				logger.info("goal_evaluation_no_goals", extra={"owner": owner_id})
				return []
			existing = {record.key: record for record in await self._completions_on(conn, owner_id, on)}
			records = policy.evaluate_day(goals, snapshot, on=on, now=now, previous=existing)
			if records:
				async with conn.transaction():
					await conn.executemany(
						_UPSERT_COMPLETION_SQL,
						[
							(
								record.owner_id,
								record.goal_id,
								record.completion_date,
								record.target_value,
								record.actual_value,
								record.completion_percentage,
								record.is_completed,
								record.completed_at,
							)
							for record in records
						],
					)

		goal_types = {goal.goal_id: goal.goal_type.value for goal in goals}
		for record in records:
			obs_metrics.inc_goal_evaluation(goal_types[record.goal_id], record.is_completed)
		logger.info(
			"goal_completion_updated",
			extra={
				"owner": owner_id,
				"date": on.isoformat(),
				"evaluated": len(records),
				"completed": sum(1 for record in records if record.is_completed),
			},
		)
		return records

	async def get_daily_progress(self, owner_id: str, on: date) -> DailyProgress:
		pool = await get_pool()
		async with pool.acquire() as conn:
			goals = await self._active_goals(conn, owner_id)
			records = await self._completions_on(conn, owner_id, on)
		return policy.build_daily_progress(goals, records, on)

	async def get_streak(self, owner_id: str, *, today: Optional[date] = None) -> StreakState:
		"""Re-derive the streak from stored history; stored counters are not trusted."""

		today = today or datetime.now(timezone.utc).date()
		lookback = settings.streak_lookback_days
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT user_id, daily_goal_id, completion_date, completion_percentage, is_completed, completed_at
				FROM goal_completion_history
				WHERE user_id = $1 AND completion_date >= $2
				ORDER BY completion_date DESC
				""",
				owner_id,
				today - timedelta(days=lookback),
			)
		return streak_policy.streak_from_history(_load_completions(rows), today=today, lookback_days=lookback)

	async def create_goals_for_challenge(self, owner_id: str, challenge_id: str) -> List[DailyGoal]:
		"""Create the default goals a participant gets on joining a challenge."""

		pool = await get_pool()
		async with pool.acquire() as conn:
			challenge = await conn.fetchrow(
				"SELECT id, type, start_date, end_date FROM challenges WHERE id = $1",
				challenge_id,
			)
			if challenge is None:
				raise MissingInputError("challenge_not_found")
			participant = await conn.fetchrow(
				"""
				SELECT starting_weight_kg, goal_weight_kg, starting_value, goal_value
				FROM challenge_participants
				WHERE challenge_id = $1 AND user_id = $2
				""",
				challenge_id,
				owner_id,
			)
			if participant is None:
				raise MissingInputError("participant_not_found")

			start_date = parse_date(challenge["start_date"])
			end_date = parse_date(challenge["end_date"])
			if start_date is None or end_date is None:
				raise MalformedRecordError("challenge without dates", source="challenges")
			try:
				challenge_type = ChallengeType(challenge["type"])
			except ValueError:
				challenge_type = ChallengeType.CUSTOM
			context = ChallengeContext(
				challenge_id=str(challenge["id"]),
				challenge_type=challenge_type,
				start_date=start_date,
				end_date=end_date,
			)
			targets = ParticipantTargets(
				starting_weight_kg=optional_float(participant["starting_weight_kg"]),
				goal_weight_kg=optional_float(participant["goal_weight_kg"]),
				starting_value=optional_float(participant["starting_value"]),
				goal_value=optional_float(participant["goal_value"]),
			)

			recent = await conn.fetch(
				"""
				SELECT steps FROM daily_tracking
				WHERE user_id = $1 AND steps IS NOT NULL
				ORDER BY tracking_date DESC
				LIMIT $2
				""",
				owner_id,
				policy.BASELINE_SAMPLE_DAYS,
			)
			baseline = policy.step_baseline(row["steps"] for row in recent)
			goals = policy.plan_challenge_goals(owner_id, context, targets, baseline=baseline)
			if goals:
				async with conn.transaction():
					await conn.executemany(
						_INSERT_GOAL_SQL,
						[
							(
								goal.goal_id,
								goal.owner_id,
								goal.challenge_id,
								goal.goal_type.value,
								goal.target_value,
								goal.unit,
								goal.frequency.value,
								goal.is_active,
								goal.is_primary,
								goal.start_date,
								goal.end_date,
								goal.baseline_value,
								json.dumps({"days": list(goal.custom_days)}) if goal.custom_days else None,
							)
							for goal in goals
						],
					)

		logger.info(
			"challenge_goals_created",
			extra={"owner": owner_id, "challenge": challenge_id, "goals": len(goals), "baseline": baseline},
		)
		return goals
