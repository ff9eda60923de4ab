from datetime import date, datetime, timedelta, timezone

import pytest

from fitcircle.domain.exceptions import MalformedRecordError
from fitcircle.domain.tracking import aggregator
from fitcircle.domain.tracking.models import TrackingRecord


def _record(entity_id: str, day: date, **fields) -> TrackingRecord:
	return TrackingRecord(entity_id=entity_id, day=day, **fields)


def test_window_filter_excludes_outside_records():
	records = [
		_record("u1", date(2025, 3, 1), steps=1000),
		_record("u1", date(2025, 3, 5), steps=5000),
		_record("u1", date(2025, 3, 10), steps=9000),
	]
	result = aggregator.aggregate(records, date(2025, 3, 2), date(2025, 3, 9))

	metrics = result["u1"]
	assert metrics.record_count == 1
	assert metrics.total_steps == 5000
	assert metrics.first_date == metrics.last_date == date(2025, 3, 5)


def test_window_bounds_are_inclusive_and_optional():
	records = [_record("u1", date(2025, 3, 1), steps=10), _record("u1", date(2025, 3, 3), steps=20)]

	assert aggregator.aggregate(records, date(2025, 3, 1), date(2025, 3, 3))["u1"].total_steps == 30
	assert aggregator.aggregate(records, None, None)["u1"].total_steps == 30
	assert aggregator.aggregate(records, date(2025, 3, 2), None)["u1"].total_steps == 20


def test_averages_over_observed_days_and_null_fields_count_as_zero():
	records = [
		_record("u1", date(2025, 3, 1), steps=4000, active_minutes=30, calories_burned=200.0),
		_record("u1", date(2025, 3, 2), steps=None, active_minutes=None, calories_burned=None),
		_record("u1", date(2025, 3, 4), steps=8000, active_minutes=60, calories_burned=400.0),
	]
	metrics = aggregator.aggregate(records, None, None)["u1"]

	assert metrics.record_count == 3
	assert metrics.total_steps == 12000
	assert metrics.average_steps == pytest.approx(4000)
	assert metrics.average_active_minutes == pytest.approx(30)
	assert metrics.total_calories == pytest.approx(600.0)


def test_weight_average_and_change_use_first_and_last_logged():
	records = [
		_record("u1", date(2025, 3, 3), weight_kg=88.0),
		_record("u1", date(2025, 3, 1), weight_kg=90.0),
		_record("u1", date(2025, 3, 2)),
	]
	metrics = aggregator.aggregate(records, None, None)["u1"]

	assert metrics.average_weight_kg == pytest.approx(89.0)
	assert metrics.weight_change_kg == pytest.approx(-2.0)


def test_requested_entities_without_records_get_zero_metrics():
	result = aggregator.aggregate([], date(2025, 3, 1), date(2025, 3, 31), entity_ids=["ghost"])

	assert result["ghost"].record_count == 0
	assert result["ghost"].average_steps == 0.0
	assert result["ghost"].first_date is None


def test_parse_records_skips_rows_without_identity_or_date():
	rows = [
		{"user_id": "u1", "check_in_date": "2025-03-01", "steps": "1200"},
		{"user_id": None, "check_in_date": "2025-03-01", "steps": 50},
		{"user_id": "u2", "steps": 50},
	]
	records = aggregator.parse_records(rows, source="check_ins", id_keys=("user_id",))

	assert len(records) == 1
	assert records[0].entity_id == "u1"
	assert records[0].steps == 1200


def test_from_mapping_raises_for_missing_identity():
	with pytest.raises(MalformedRecordError):
		TrackingRecord.from_mapping({"date": "2025-03-01"})


def test_days_since_and_completion_rate():
	now = datetime(2025, 3, 11, 12, tzinfo=timezone.utc)

	assert aggregator.days_since(now - timedelta(days=10), now=now) == 10
	assert aggregator.days_since(None, now=now) == 1
	assert aggregator.days_since(now, now=now) == 1
	assert aggregator.completion_rate(5, 10) == pytest.approx(50.0)
	assert aggregator.completion_rate(30, 10) == 100.0
	assert aggregator.completion_rate(3, 0) == 100.0
