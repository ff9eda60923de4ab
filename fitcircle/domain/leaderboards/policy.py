"""Policy helpers for challenge leaderboards & rank-change notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from fitcircle.domain.exceptions import MalformedRecordError
from fitcircle.domain.goals.models import ChallengeType
from fitcircle.domain.leaderboards.models import (
	EntityType,
	LeaderboardEntry,
	ParticipantRecord,
	RankChangeIntent,
	RankedEntity,
	RankingOutcome,
	RankKey,
	TeamMemberRecord,
	TeamRecord,
	Trend,
	rank_key,
)
from fitcircle.domain.tracking.aggregator import aggregate, completion_rate, days_since
from fitcircle.domain.tracking.models import EntityMetrics, TrackingRecord
from fitcircle.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

# A move of this many places, or crossing the top-N boundary, is worth a notification
SIGNIFICANT_RANK_DELTA = 3
TOP_RANK_CUTOFF = 3

# Recompute at most once per window unless forced
RECALC_THROTTLE_SECONDS = 60


def _sort_key(entity: RankedEntity) -> tuple:
	return (
		-(entity.points or 0),
		-(entity.progress_percentage or 0.0),
		-(entity.streak_days or 0),
		entity.entity_id,
	)


def determine_trend(rank: int, previous_rank: Optional[int]) -> Trend:
	if previous_rank is None:
		return Trend.STABLE
	if rank < previous_rank:
		return Trend.UP
	if rank > previous_rank:
		return Trend.DOWN
	return Trend.STABLE


def rank_entities(
	entities: Iterable[RankedEntity],
	previous_ranks: Optional[Mapping[RankKey, int]] = None,
	*,
	calculated_at: datetime,
) -> List[LeaderboardEntry]:
	"""Order one leaderboard and assign dense ranks 1..N.

	Order is points, then progress, then streak (all descending), then entity id.
	Individuals and teams are separate boards and must not be mixed in one call.
	"""

	roster = list(entities)
	if not roster:
		return []
	for entity in roster:
		if not entity.entity_id:
			raise MalformedRecordError("ranked entity without id", source="leaderboard")
	if len({entity.entity_type for entity in roster}) > 1:
		raise ValueError("individual and team leaderboards are ranked separately")

	previous_ranks = previous_ranks or {}
	entries: List[LeaderboardEntry] = []
	for idx, entity in enumerate(sorted(roster, key=_sort_key), start=1):
		previous = previous_ranks.get(rank_key(entity.entity_type, entity.entity_id))
		entries.append(
			LeaderboardEntry(
				entity=entity,
				rank=idx,
				previous_rank=previous,
				trend=determine_trend(idx, previous),
				calculated_at=calculated_at,
			)
		)
	return entries


def is_significant_change(rank: int, previous_rank: Optional[int]) -> bool:
	if previous_rank is None:
		return False
	if abs(rank - previous_rank) >= SIGNIFICANT_RANK_DELTA:
		return True
	entered_top = rank <= TOP_RANK_CUTOFF < previous_rank
	left_top = previous_rank <= TOP_RANK_CUTOFF < rank
	return entered_top or left_top


def detect_significant_changes(entries: Iterable[LeaderboardEntry]) -> List[RankChangeIntent]:
	"""Intents for entries whose rank moved enough to notify about."""

	intents: List[RankChangeIntent] = []
	for entry in entries:
		previous = entry.previous_rank
		if previous is None or not is_significant_change(entry.rank, previous):
			continue
		intents.append(
			RankChangeIntent(
				entity_id=entry.entity_id,
				entity_type=entry.entity_type,
				previous_rank=previous,
				new_rank=entry.rank,
				improved=entry.rank < previous,
			)
		)
	return intents


def describe_rank_change(intent: RankChangeIntent) -> Dict[str, str]:
	"""Human-readable notification payload for a rank change."""

	if intent.improved:
		title = "Climbing the ranks!"
		body = f"You moved up from #{intent.previous_rank} to #{intent.new_rank}! Keep it up!"
	else:
		title = "Rank update"
		body = f"Your rank changed from #{intent.previous_rank} to #{intent.new_rank}. Time to push harder!"
	return {
		"type": "leaderboard_update",
		"title": title,
		"body": body,
		"priority": "high" if intent.new_rank <= TOP_RANK_CUTOFF else "normal",
	}


def should_recalculate(
	last_calculated_at: Optional[datetime],
	*,
	now: datetime,
	force: bool = False,
	throttle_seconds: int = RECALC_THROTTLE_SECONDS,
) -> bool:
	if force or last_calculated_at is None:
		return True
	if last_calculated_at.tzinfo is None and now.tzinfo is not None:
		last_calculated_at = last_calculated_at.replace(tzinfo=now.tzinfo)
	elif last_calculated_at.tzinfo is not None and now.tzinfo is None:
		now = now.replace(tzinfo=last_calculated_at.tzinfo)
	return (now - last_calculated_at).total_seconds() >= throttle_seconds


def challenge_progress(
	start_value: Optional[float],
	current_value: Optional[float],
	target_value: Optional[float],
	challenge_type: ChallengeType,
) -> float:
	"""Progress towards a challenge target, clamped to [0, 100]."""

	if not target_value or start_value is None or current_value is None:
		return 0.0
	if challenge_type is ChallengeType.WEIGHT_LOSS:
		total_to_lose = start_value - target_value
		if total_to_lose <= 0:
			return 0.0
		return max(0.0, min(100.0, (start_value - current_value) / total_to_lose * 100))
	if challenge_type in (ChallengeType.STEP_COUNT, ChallengeType.WORKOUT_FREQUENCY):
		return max(0.0, min(100.0, current_value / target_value * 100))
	return 0.0


# Window total a step or workout challenge measures progress with
_ACTIVITY_TOTALS: Dict[ChallengeType, Callable[[EntityMetrics], int]] = {
	ChallengeType.STEP_COUNT: lambda metrics: metrics.total_steps,
	ChallengeType.WORKOUT_FREQUENCY: lambda metrics: metrics.total_active_minutes,
}


def _weight_lost(participant: ParticipantRecord) -> float:
	if participant.starting_weight_kg and participant.current_weight_kg:
		return participant.starting_weight_kg - participant.current_weight_kg
	return 0.0


def build_individual_entity(
	participant: ParticipantRecord,
	metrics: EntityMetrics,
	challenge_type: ChallengeType,
	*,
	now: datetime,
) -> RankedEntity:
	weight_loss = challenge_type is ChallengeType.WEIGHT_LOSS
	lost_kg = _weight_lost(participant)
	lost_pct = lost_kg / participant.starting_weight_kg * 100 if participant.starting_weight_kg and lost_kg else 0.0

	progress = participant.progress_percentage
	if progress is None:
		if weight_loss and participant.goal_weight_kg:
			progress = challenge_progress(
				participant.starting_weight_kg,
				participant.current_weight_kg,
				participant.goal_weight_kg,
				challenge_type,
			)
		elif challenge_type in _ACTIVITY_TOTALS and participant.goal_value:
			progress = challenge_progress(
				participant.starting_value or 0.0,
				float(_ACTIVITY_TOTALS[challenge_type](metrics)),
				participant.goal_value,
				challenge_type,
			)

	days_active = days_since(participant.joined_at, now=now)
	return RankedEntity(
		entity_id=participant.entity_id,
		entity_type=EntityType.INDIVIDUAL,
		points=participant.points,
		progress_percentage=progress,
		streak_days=participant.streak_days,
		check_ins_count=participant.check_ins_count,
		last_activity_at=participant.last_check_in_at,
		weight_lost_kg=lost_kg if weight_loss else None,
		weight_lost_percentage=lost_pct if weight_loss else None,
		total_steps=metrics.total_steps,
		total_active_minutes=metrics.total_active_minutes,
		stats={
			"avg_daily_steps": round(metrics.average_steps),
			"avg_daily_minutes": round(metrics.average_active_minutes),
			"total_calories": metrics.total_calories,
			"completion_rate": completion_rate(participant.check_ins_count, days_active),
			"days_active": days_active,
		},
	)


def aggregate_team(
	team: TeamRecord,
	member_ids: Sequence[str],
	participants: Mapping[str, ParticipantRecord],
	metrics: Mapping[str, EntityMetrics],
	challenge_type: ChallengeType,
) -> RankedEntity:
	"""Fold member figures into one team entity.

	Points and activity totals are summed; progress and streak are the mean
	over members that have a participant record.
	"""

	members = [participants[user_id] for user_id in member_ids if user_id in participants]
	points = sum(member.points or 0 for member in members)
	progress: Optional[float] = None
	streak: Optional[int] = None
	if members:
		progress = sum(member.progress_percentage or 0.0 for member in members) / len(members)
		streak = round(sum(member.streak_days or 0 for member in members) / len(members))
	else:
		obs_metrics.inc_degenerate_input("team_without_members")

	member_metrics = [metrics.get(user_id) or EntityMetrics.empty(user_id) for user_id in member_ids]
	weight_lost = sum(_weight_lost(member) for member in members)
	member_count = team.member_count or len(member_ids)
	return RankedEntity(
		entity_id=team.team_id,
		entity_type=EntityType.TEAM,
		points=points,
		progress_percentage=progress,
		streak_days=streak,
		check_ins_count=sum(member.check_ins_count for member in members),
		weight_lost_kg=weight_lost if challenge_type is ChallengeType.WEIGHT_LOSS else None,
		total_steps=sum(item.total_steps for item in member_metrics),
		total_active_minutes=sum(item.total_active_minutes for item in member_metrics),
		stats={
			"member_count": member_count,
			"avg_points_per_member": round(points / member_count) if member_count > 0 else 0,
			"total_weight_lost": weight_lost,
		},
	)


def rank_challenge(
	challenge_id: str,
	challenge_type: ChallengeType,
	participants: Sequence[ParticipantRecord],
	tracking: Iterable[TrackingRecord],
	*,
	teams: Sequence[TeamRecord] = (),
	team_members: Sequence[TeamMemberRecord] = (),
	previous_ranks: Optional[Mapping[RankKey, int]] = None,
	window_start: Optional[date] = None,
	window_end: Optional[date] = None,
	now: datetime,
) -> RankingOutcome:
	"""Recompute both leaderboards of a challenge from source records."""

	if not participants:
		obs_metrics.inc_degenerate_input("empty_roster")
		logger.info("leaderboard_empty_roster", extra={"challenge": challenge_id})

	by_user = {participant.entity_id: participant for participant in participants}
	metrics = aggregate(tracking, window_start, window_end, entity_ids=by_user.keys())

	individuals = rank_entities(
		[
			build_individual_entity(participant, metrics[participant.entity_id], challenge_type, now=now)
			for participant in by_user.values()
		],
		previous_ranks,
		calculated_at=now,
	)

	members_by_team: Dict[str, List[str]] = defaultdict(list)
	for member in team_members:
		members_by_team[member.team_id].append(member.user_id)
	team_entities = [
		aggregate_team(team, members_by_team.get(team.team_id, []), by_user, metrics, challenge_type)
		for team in teams
		if team.member_count > 0 or members_by_team.get(team.team_id)
	]
	team_entries = rank_entities(team_entities, previous_ranks, calculated_at=now)

	return RankingOutcome(
		challenge_id=challenge_id,
		individuals=individuals,
		teams=team_entries,
		rank_changes=detect_significant_changes([*individuals, *team_entries]),
		calculated_at=now,
	)


def previous_ranks_from_rows(rows: Iterable[Mapping[str, Any]]) -> Dict[RankKey, int]:
	"""Index stored leaderboard rows by (entity_type, entity_id)."""

	ranks: Dict[RankKey, int] = {}
	for row in rows:
		entity_id = row.get("entity_id")
		rank = row.get("rank")
		if entity_id is None or rank is None:
			continue
		ranks[rank_key(str(row.get("entity_type") or EntityType.INDIVIDUAL.value), str(entity_id))] = int(rank)
	return ranks
