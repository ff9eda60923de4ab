"""Domain models for raw daily tracking data and per-entity aggregates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from fitcircle.domain.exceptions import MalformedRecordError


def parse_date(raw: Any) -> Optional[date]:
	"""Coerce a DB/JSON value into a calendar date (time component dropped)."""

	if raw is None or raw == "":
		return None
	if isinstance(raw, datetime):
		return raw.date()
	if isinstance(raw, date):
		return raw
	text = str(raw)
	return date.fromisoformat(text[:10])


def parse_datetime(raw: Any) -> Optional[datetime]:
	if raw is None or raw == "":
		return None
	if isinstance(raw, datetime):
		return raw
	if isinstance(raw, date):
		return datetime(raw.year, raw.month, raw.day)
	return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def optional_float(raw: Any) -> Optional[float]:
	if raw is None or raw == "":
		return None
	try:
		return float(raw)
	except (TypeError, ValueError):
		return None


def optional_int(raw: Any) -> Optional[int]:
	value = optional_float(raw)
	return None if value is None else int(value)


def identity(mapping: Mapping[str, Any], *keys: str) -> Optional[str]:
	"""First non-empty identifier among ``keys``, as a string."""

	for key in keys:
		raw = mapping.get(key)
		if raw is not None and str(raw).strip():
			return str(raw)
	return None


@dataclass(slots=True)
class TrackingRecord:
	"""One day of activity for one entity."""

	entity_id: str
	day: date
	steps: Optional[int] = None
	active_minutes: Optional[int] = None
	calories_burned: Optional[float] = None
	weight_kg: Optional[float] = None
	mood_score: Optional[float] = None
	energy_level: Optional[float] = None

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, Any], *, id_keys: tuple[str, ...] = ("entity_id", "participant_id", "user_id")) -> "TrackingRecord":
		"""Build a record from a check-in / daily_tracking row."""

		entity_id = identity(mapping, *id_keys)
		if entity_id is None:
			raise MalformedRecordError("missing entity id", source="tracking")
		day = parse_date(mapping.get("date") or mapping.get("tracking_date") or mapping.get("check_in_date"))
		if day is None:
			raise MalformedRecordError("missing date", source="tracking")
		return cls(
			entity_id=entity_id,
			day=day,
			steps=optional_int(mapping.get("steps")),
			active_minutes=optional_int(mapping.get("active_minutes")),
			calories_burned=optional_float(mapping.get("calories_burned")),
			weight_kg=optional_float(mapping.get("weight_kg")),
			mood_score=optional_float(mapping.get("mood_score")),
			energy_level=optional_float(mapping.get("energy_level")),
		)


@dataclass(slots=True)
class TrackingSnapshot:
	"""What an entity logged on a single day; input to goal evaluation."""

	steps: Optional[int] = None
	weight_kg: Optional[float] = None
	mood_score: Optional[float] = None
	energy_level: Optional[float] = None
	active_minutes: Optional[int] = None
	custom_values: dict[str, float] = field(default_factory=dict)

	@classmethod
	def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "TrackingSnapshot":
		if not mapping:
			return cls()
		custom = mapping.get("custom_values") or {}
		return cls(
			steps=optional_int(mapping.get("steps")),
			weight_kg=optional_float(mapping.get("weight_kg")),
			mood_score=optional_float(mapping.get("mood_score")),
			energy_level=optional_float(mapping.get("energy_level")),
			active_minutes=optional_int(mapping.get("active_minutes")),
			custom_values={str(k): float(v) for k, v in custom.items() if optional_float(v) is not None},
		)


@dataclass(slots=True)
class EntityMetrics:
	"""Summary statistics for one entity over a date window."""

	entity_id: str
	record_count: int = 0
	total_steps: int = 0
	total_active_minutes: int = 0
	total_calories: float = 0.0
	average_steps: float = 0.0
	average_active_minutes: float = 0.0
	average_calories: float = 0.0
	average_weight_kg: float = 0.0
	weight_change_kg: float = 0.0
	first_date: Optional[date] = None
	last_date: Optional[date] = None

	@classmethod
	def empty(cls, entity_id: str = "") -> "EntityMetrics":
		return cls(entity_id=entity_id)
