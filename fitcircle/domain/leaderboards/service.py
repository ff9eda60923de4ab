"""Service layer for challenge leaderboards."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar
from uuid import uuid4

import asyncpg

from fitcircle.domain.exceptions import MalformedRecordError, MissingInputError
from fitcircle.domain.goals.models import ChallengeType
from fitcircle.domain.leaderboards import outbox, policy
from fitcircle.domain.leaderboards.models import (
	EntityType,
	LeaderboardEntry,
	ParticipantRecord,
	RankingOutcome,
	TeamMemberRecord,
	TeamRecord,
)
from fitcircle.domain.leaderboards.schemas import (
	LeaderboardEntrySchema,
	LeaderboardResponseSchema,
	RecalculationSummary,
)
from fitcircle.domain.tracking.aggregator import parse_records
from fitcircle.domain.tracking.models import parse_date
from fitcircle.infra.postgres import get_pool
from fitcircle.infra.redis import redis_client
from fitcircle.obs import logging as obs_logging
from fitcircle.obs import metrics as obs_metrics
from fitcircle.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INSERT_ENTRY_SQL = """
INSERT INTO leaderboard (
	challenge_id, entity_id, entity_type, rank, previous_rank, trend,
	points, progress_percentage, streak_days, check_ins_count,
	weight_lost_kg, weight_lost_percentage, total_steps, total_active_minutes,
	last_activity_at, stats, calculated_at
)
VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15,$16::jsonb,$17)
"""


def _lock_key(challenge_id: str) -> str:
	return f"lb:recalc:lock:{challenge_id}"


def _challenge_type(raw: Any) -> ChallengeType:
	try:
		return ChallengeType(raw)
	except ValueError:
		obs_metrics.inc_degenerate_input("unknown_challenge_type")
		logger.info("challenge_type_unknown", extra={"challenge_type": raw})
		return ChallengeType.CUSTOM


def _parse_rows(rows: Sequence[Mapping[str, Any]], parse: Callable[[Mapping[str, Any]], T], *, source: str) -> List[T]:
	parsed: List[T] = []
	for row in rows:
		try:
			parsed.append(parse(dict(row)))
		except MalformedRecordError as exc:
			obs_metrics.inc_malformed_record(source)
			logger.warning("record_skipped", extra={"reason": str(exc), "source": source})
	return parsed


def _entry_params(challenge_id: str, entry: LeaderboardEntry) -> tuple:
	entity = entry.entity
	return (
		challenge_id,
		entity.entity_id,
		entity.entity_type.value,
		entry.rank,
		entry.previous_rank,
		entry.trend.value,
		entity.points,
		entity.progress_percentage,
		entity.streak_days,
		entity.check_ins_count,
		entity.weight_lost_kg,
		entity.weight_lost_percentage,
		entity.total_steps,
		entity.total_active_minutes,
		entity.last_activity_at,
		json.dumps(entity.stats, default=str),
		entry.calculated_at,
	)


def _entry_schema_from_row(row: Mapping[str, Any]) -> LeaderboardEntrySchema:
	stats = row.get("stats") or {}
	if isinstance(stats, str):
		stats = json.loads(stats)
	rank = int(row["rank"])
	previous = row.get("previous_rank")
	return LeaderboardEntrySchema(
		rank=rank,
		entity_id=str(row["entity_id"]),
		entity_type=row.get("entity_type") or EntityType.INDIVIDUAL.value,
		points=row.get("points"),
		progress_percentage=row.get("progress_percentage"),
		streak_days=row.get("streak_days"),
		check_ins_count=row.get("check_ins_count") or 0,
		previous_rank=previous,
		rank_change=(int(previous) - rank) if previous is not None else 0,
		trend=row.get("trend") or "stable",
		weight_lost_kg=row.get("weight_lost_kg"),
		weight_lost_percentage=row.get("weight_lost_percentage"),
		total_steps=row.get("total_steps") or 0,
		total_active_minutes=row.get("total_active_minutes") or 0,
		last_activity_at=row.get("last_activity_at"),
		stats=stats,
		calculated_at=row.get("calculated_at"),
	)


class LeaderboardService:
	"""Recomputes, persists and serves challenge leaderboards."""

	def __init__(self) -> None:
		self._redis = redis_client

	async def recalculate(
		self,
		challenge_id: str,
		*,
		force: bool = False,
		now: Optional[datetime] = None,
	) -> RecalculationSummary:
		tokens = obs_logging.bind_context(challenge_id=challenge_id)
		try:
			return await self._recalculate(challenge_id, force=force, now=now or datetime.now(timezone.utc))
		finally:
			obs_logging.reset_context(tokens)

	async def _recalculate(self, challenge_id: str, *, force: bool, now: datetime) -> RecalculationSummary:
		started = time.perf_counter()
		pool = await get_pool()
		async with pool.acquire() as conn:
			challenge = await conn.fetchrow(
				"SELECT id, type, status, start_date, end_date FROM challenges WHERE id = $1",
				challenge_id,
			)
			if challenge is None:
				raise MissingInputError("challenge_not_found")

			last_calculated = await conn.fetchval(
				"SELECT MAX(calculated_at) FROM leaderboard WHERE challenge_id = $1",
				challenge_id,
			)
			if not policy.should_recalculate(
				last_calculated,
				now=now,
				force=force,
				throttle_seconds=settings.ranking_throttle_seconds,
			):
				obs_metrics.inc_rankings_skipped("throttled")
				logger.info("leaderboard_recalc_throttled", extra={"challenge": challenge_id})
				return RecalculationSummary(challenge_id=challenge_id, status="throttled", calculated_at=last_calculated)

			lock_key = _lock_key(challenge_id)
			token = uuid4().hex
			if not await self._redis.acquire_lock(lock_key, settings.ranking_lock_ttl_seconds, token):
				obs_metrics.inc_rankings_skipped("in_progress")
				logger.info("leaderboard_recalc_in_progress", extra={"challenge": challenge_id})
				return RecalculationSummary(challenge_id=challenge_id, status="in_progress")
			try:
				outcome = await self._compute(conn, dict(challenge), now=now)
				await self._persist(conn, outcome)
			finally:
				await self._redis.release_lock(lock_key, token)

		individual_changes = [
			intent for intent in outcome.rank_changes if intent.entity_type is EntityType.INDIVIDUAL
		]
		await outbox.publish_rank_changes(challenge_id, individual_changes)

		obs_metrics.inc_rankings_computed(EntityType.INDIVIDUAL.value)
		if outcome.teams:
			obs_metrics.inc_rankings_computed(EntityType.TEAM.value)
		obs_metrics.observe_ranking_duration(time.perf_counter() - started)
		logger.info(
			"leaderboard_recalculated",
			extra={
				"challenge": challenge_id,
				"individuals": len(outcome.individuals),
				"teams": len(outcome.teams),
				"significant_changes": len(individual_changes),
			},
		)
		return RecalculationSummary(
			challenge_id=challenge_id,
			status="recalculated",
			individuals=len(outcome.individuals),
			teams=len(outcome.teams),
			significant_changes=len(individual_changes),
			calculated_at=outcome.calculated_at,
		)

	async def _compute(self, conn: asyncpg.Connection, challenge: Dict[str, Any], *, now: datetime) -> RankingOutcome:
		challenge_id = str(challenge["id"])
		previous_rows = await conn.fetch(
			"SELECT entity_id, entity_type, rank FROM leaderboard WHERE challenge_id = $1",
			challenge_id,
		)
		participant_rows = await conn.fetch(
			"""
			SELECT id, user_id, team_id, total_points, progress_percentage,
				starting_weight_kg, current_weight_kg, goal_weight_kg, starting_value, goal_value,
				check_ins_count, streak_days, last_check_in_at, joined_at
			FROM challenge_participants
			WHERE challenge_id = $1 AND status = 'active'
			""",
			challenge_id,
		)
		check_in_rows = await conn.fetch(
			"""
			SELECT cp.user_id, ci.check_in_date, ci.steps, ci.active_minutes,
				ci.calories_burned, ci.weight_kg, ci.mood_score, ci.energy_level
			FROM check_ins ci
			JOIN challenge_participants cp ON cp.id = ci.participant_id
			WHERE cp.challenge_id = $1 AND cp.status = 'active'
			""",
			challenge_id,
		)
		team_rows = await conn.fetch(
			"SELECT id, member_count FROM teams WHERE challenge_id = $1 AND member_count > 0",
			challenge_id,
		)
		member_rows: Sequence[Mapping[str, Any]] = []
		if team_rows:
			member_rows = await conn.fetch(
				"""
				SELECT tm.team_id, tm.user_id
				FROM team_members tm
				JOIN teams t ON t.id = tm.team_id
				WHERE t.challenge_id = $1 AND tm.is_active = TRUE
				""",
				challenge_id,
			)

		return policy.rank_challenge(
			challenge_id,
			_challenge_type(challenge.get("type")),
			_parse_rows(participant_rows, ParticipantRecord.from_mapping, source="challenge_participants"),
			parse_records([dict(row) for row in check_in_rows], source="check_ins", id_keys=("user_id",)),
			teams=_parse_rows(team_rows, TeamRecord.from_mapping, source="teams"),
			team_members=_parse_rows(member_rows, TeamMemberRecord.from_mapping, source="team_members"),
			previous_ranks=policy.previous_ranks_from_rows([dict(row) for row in previous_rows]),
			window_start=parse_date(challenge.get("start_date")),
			window_end=parse_date(challenge.get("end_date")),
			now=now,
		)

	async def _persist(self, conn: asyncpg.Connection, outcome: RankingOutcome) -> None:
		"""Replace the challenge's stored leaderboard in one transaction."""

		challenge_id = outcome.challenge_id
		async with conn.transaction():
			await conn.execute("DELETE FROM leaderboard WHERE challenge_id = $1", challenge_id)
			if outcome.entries:
				await conn.executemany(
					_INSERT_ENTRY_SQL,
					[_entry_params(challenge_id, entry) for entry in outcome.entries],
				)
			if outcome.individuals:
				await conn.executemany(
					"UPDATE challenge_participants SET rank = $1 WHERE challenge_id = $2 AND user_id = $3",
					[(entry.rank, challenge_id, entry.entity_id) for entry in outcome.individuals],
				)
			if outcome.teams:
				await conn.executemany(
					"UPDATE teams SET rank = $1 WHERE id = $2",
					[(entry.rank, entry.entity_id) for entry in outcome.teams],
				)

	async def get_leaderboard(
		self,
		challenge_id: str,
		entity_type: EntityType = EntityType.INDIVIDUAL,
	) -> LeaderboardResponseSchema:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT *
				FROM leaderboard
				WHERE challenge_id = $1 AND entity_type = $2
				ORDER BY rank ASC
				""",
				challenge_id,
				entity_type.value,
			)
			if not rows:
				exists = await conn.fetchval("SELECT 1 FROM challenges WHERE id = $1", challenge_id)
				if not exists:
					raise MissingInputError("challenge_not_found")
		return LeaderboardResponseSchema(
			challenge_id=challenge_id,
			entity_type=entity_type,
			items=[_entry_schema_from_row(dict(row)) for row in rows],
		)
