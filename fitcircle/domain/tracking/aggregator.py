"""Aggregate raw per-day tracking records into per-entity statistics.

Averages are taken over the days an entity actually logged, not over the
length of the window, so late joiners are not penalised.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from fitcircle.domain.exceptions import MalformedRecordError
from fitcircle.domain.tracking.models import EntityMetrics, TrackingRecord
from fitcircle.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _ratio(numerator: float, denominator: float) -> float:
	if not denominator:
		return 0.0
	value = numerator / denominator
	return value if math.isfinite(value) else 0.0


def _in_window(day: date, window_start: Optional[date], window_end: Optional[date]) -> bool:
	if window_start is not None and day < window_start:
		return False
	if window_end is not None and day > window_end:
		return False
	return True


def parse_records(rows: Iterable[Mapping[str, Any]], *, source: str = "tracking", id_keys: tuple[str, ...] = ("entity_id", "participant_id", "user_id")) -> List[TrackingRecord]:
	"""Turn raw rows into records, skipping (and counting) malformed ones."""

	records: List[TrackingRecord] = []
	for row in rows:
		try:
			records.append(TrackingRecord.from_mapping(row, id_keys=id_keys))
		except MalformedRecordError as exc:
			obs_metrics.inc_malformed_record(source)
			logger.warning("tracking_record_skipped", extra={"reason": str(exc), "source": source})
	return records


def aggregate(
	records: Iterable[TrackingRecord],
	window_start: Optional[date],
	window_end: Optional[date],
	*,
	entity_ids: Optional[Iterable[str]] = None,
) -> Dict[str, EntityMetrics]:
	"""Sum and average tracking fields per entity inside ``[window_start, window_end]``.

	Both bounds are inclusive; ``None`` leaves that side open. Entities listed in
	``entity_ids`` without any record in the window come back as zero metrics.
	"""

	buckets: Dict[str, List[TrackingRecord]] = defaultdict(list)
	for record in records:
		if not record.entity_id:
			obs_metrics.inc_malformed_record("tracking")
			logger.warning("tracking_record_skipped", extra={"reason": "missing entity id"})
			continue
		if not _in_window(record.day, window_start, window_end):
			continue
		buckets[record.entity_id].append(record)

	result: Dict[str, EntityMetrics] = {}
	for entity_id, bucket in buckets.items():
		result[entity_id] = _summarise(entity_id, bucket)
	for entity_id in entity_ids or ():
		result.setdefault(entity_id, EntityMetrics.empty(entity_id))
	return result


def _summarise(entity_id: str, bucket: List[TrackingRecord]) -> EntityMetrics:
	bucket = sorted(bucket, key=lambda item: item.day)
	count = len(bucket)
	total_steps = sum(item.steps or 0 for item in bucket)
	total_minutes = sum(item.active_minutes or 0 for item in bucket)
	total_calories = float(sum(item.calories_burned or 0 for item in bucket))
	weights = [item.weight_kg for item in bucket if item.weight_kg is not None]
	weight_change = weights[-1] - weights[0] if len(weights) >= 2 else 0.0
	return EntityMetrics(
		entity_id=entity_id,
		record_count=count,
		total_steps=total_steps,
		total_active_minutes=total_minutes,
		total_calories=total_calories,
		average_steps=_ratio(total_steps, count),
		average_active_minutes=_ratio(total_minutes, count),
		average_calories=_ratio(total_calories, count),
		average_weight_kg=round(_ratio(sum(weights), len(weights)), 1),
		weight_change_kg=round(weight_change, 1),
		first_date=bucket[0].day,
		last_date=bucket[-1].day,
	)


def days_since(joined_at: Optional[datetime], *, now: datetime) -> int:
	"""Whole days between joining and ``now``; never below 1."""

	if joined_at is None:
		return 1
	if joined_at.tzinfo is None and now.tzinfo is not None:
		joined_at = joined_at.replace(tzinfo=now.tzinfo)
	elif joined_at.tzinfo is not None and now.tzinfo is None:
		now = now.replace(tzinfo=joined_at.tzinfo)
	elapsed = (now - joined_at).total_seconds() // 86400
	return max(1, int(elapsed))


def completion_rate(check_ins: int, days_active: int) -> float:
	"""Share of days with a check-in, as a percentage capped at 100."""

	return min(100.0, _ratio(check_ins, max(1, days_active)) * 100)
