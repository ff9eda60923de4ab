"""Domain models for challenge leaderboards and rank changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from fitcircle.domain.exceptions import MalformedRecordError
from fitcircle.domain.tracking.models import identity, optional_float, optional_int, parse_datetime


class EntityType(str, Enum):
	INDIVIDUAL = "individual"
	TEAM = "team"


class Trend(str, Enum):
	UP = "up"
	DOWN = "down"
	STABLE = "stable"


RankKey = Tuple[str, str]


def rank_key(entity_type: EntityType | str, entity_id: str) -> RankKey:
	"""Key previous ranks are looked up by: (entity_type, entity_id)."""

	value = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
	return (value, entity_id)


@dataclass(slots=True)
class RankedEntity:
	"""An individual or a team, as fed to the ranking engine.

	Numeric fields may be ``None``; they sort as zero but are stored as-is.
	"""

	entity_id: str
	entity_type: EntityType
	points: Optional[int] = None
	progress_percentage: Optional[float] = None
	streak_days: Optional[int] = None
	check_ins_count: int = 0
	last_activity_at: Optional[datetime] = None
	weight_lost_kg: Optional[float] = None
	weight_lost_percentage: Optional[float] = None
	total_steps: int = 0
	total_active_minutes: int = 0
	stats: Dict[str, Any] = field(default_factory=dict)

	def __post_init__(self) -> None:
		if self.progress_percentage is not None:
			self.progress_percentage = max(0.0, min(100.0, float(self.progress_percentage)))


@dataclass(slots=True)
class LeaderboardEntry:
	entity: RankedEntity
	rank: int
	previous_rank: Optional[int]
	trend: Trend
	calculated_at: datetime

	@property
	def entity_id(self) -> str:
		return self.entity.entity_id

	@property
	def entity_type(self) -> EntityType:
		return self.entity.entity_type


@dataclass(slots=True, frozen=True)
class RankChangeIntent:
	"""A significant rank change, to be rendered and delivered elsewhere."""

	entity_id: str
	entity_type: EntityType
	previous_rank: int
	new_rank: int
	improved: bool


@dataclass(slots=True)
class ParticipantRecord:
	"""A challenge participant row."""

	entity_id: str
	challenge_id: Optional[str] = None
	entity_type: EntityType = EntityType.INDIVIDUAL
	participant_id: Optional[str] = None
	team_id: Optional[str] = None
	points: Optional[int] = None
	progress_percentage: Optional[float] = None
	streak_days: Optional[int] = None
	check_ins_count: int = 0
	starting_weight_kg: Optional[float] = None
	current_weight_kg: Optional[float] = None
	goal_weight_kg: Optional[float] = None
	starting_value: Optional[float] = None
	goal_value: Optional[float] = None
	last_check_in_at: Optional[datetime] = None
	joined_at: Optional[datetime] = None

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "ParticipantRecord":
		entity_id = identity(mapping, "entity_id", "user_id")
		if entity_id is None:
			raise MalformedRecordError("participant without user id", source="challenge_participants")
		return cls(
			entity_id=entity_id,
			challenge_id=identity(mapping, "challenge_id"),
			entity_type=EntityType(mapping.get("entity_type") or EntityType.INDIVIDUAL.value),
			participant_id=identity(mapping, "participant_id", "id"),
			team_id=identity(mapping, "team_id"),
			points=optional_int(mapping.get("points", mapping.get("total_points"))),
			progress_percentage=optional_float(mapping.get("progress_percentage")),
			streak_days=optional_int(mapping.get("streak_days")),
			check_ins_count=optional_int(mapping.get("check_ins_count")) or 0,
			starting_weight_kg=optional_float(mapping.get("starting_weight_kg")),
			current_weight_kg=optional_float(mapping.get("current_weight_kg")),
			goal_weight_kg=optional_float(mapping.get("goal_weight_kg")),
			starting_value=optional_float(mapping.get("starting_value")),
			goal_value=optional_float(mapping.get("goal_value")),
			last_check_in_at=parse_datetime(mapping.get("last_check_in_at")),
			joined_at=parse_datetime(mapping.get("joined_at")),
		)


@dataclass(slots=True)
class TeamRecord:
	team_id: str
	member_count: int = 0

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "TeamRecord":
		team_id = identity(mapping, "team_id", "id")
		if team_id is None:
			raise MalformedRecordError("team without id", source="teams")
		return cls(team_id=team_id, member_count=optional_int(mapping.get("member_count")) or 0)


@dataclass(slots=True)
class TeamMemberRecord:
	team_id: str
	user_id: str

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any]) -> "TeamMemberRecord":
		team_id = identity(mapping, "team_id")
		user_id = identity(mapping, "user_id")
		if team_id is None or user_id is None:
			raise MalformedRecordError("team member without team or user", source="team_members")
		return cls(team_id=team_id, user_id=user_id)


@dataclass(slots=True)
class RankingOutcome:
	"""Result of one full recomputation for a challenge."""

	challenge_id: str
	individuals: List[LeaderboardEntry]
	teams: List[LeaderboardEntry]
	rank_changes: List[RankChangeIntent]
	calculated_at: datetime

	@property
	def entries(self) -> List[LeaderboardEntry]:
		return [*self.individuals, *self.teams]
