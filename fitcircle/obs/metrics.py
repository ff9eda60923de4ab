"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"fitcircle_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"fitcircle_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

RANKINGS_COMPUTED = Counter(
	"fitcircle_rankings_computed_total",
	"Leaderboards recomputed and persisted",
	["entity_type"],
)

RANKINGS_SKIPPED = Counter(
	"fitcircle_rankings_skipped_total",
	"Leaderboard recomputations skipped",
	["reason"],
)

RANKING_DURATION = Histogram(
	"fitcircle_ranking_duration_seconds",
	"Wall time of a full leaderboard recomputation",
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

RANK_CHANGES = Counter(
	"fitcircle_rank_changes_total",
	"Significant rank changes detected",
	["direction"],
)

RANK_CHANGE_PUBLISH_FAILURES = Counter(
	"fitcircle_rank_change_publish_failures_total",
	"Rank change intents that could not be published",
)

MALFORMED_RECORDS = Counter(
	"fitcircle_malformed_records_total",
	"Input records skipped for missing identity fields",
	["source"],
)

DEGENERATE_INPUTS = Counter(
	"fitcircle_degenerate_inputs_total",
	"Inputs handled through zero/empty defaults",
	["reason"],
)

GOAL_EVALUATIONS = Counter(
	"fitcircle_goal_evaluations_total",
	"Daily goal evaluations",
	["goal_type", "completed"],
)


def observe_request(route: str, method: str, status: int, latency_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(latency_seconds)


def inc_rankings_computed(entity_type: str) -> None:
	RANKINGS_COMPUTED.labels(entity_type=entity_type).inc()


def inc_rankings_skipped(reason: str) -> None:
	RANKINGS_SKIPPED.labels(reason=reason).inc()


def observe_ranking_duration(seconds: float) -> None:
	RANKING_DURATION.observe(seconds)


def inc_rank_change(improved: bool) -> None:
	RANK_CHANGES.labels(direction="up" if improved else "down").inc()


def inc_rank_change_publish_failure() -> None:
	RANK_CHANGE_PUBLISH_FAILURES.inc()


def inc_malformed_record(source: str) -> None:
	MALFORMED_RECORDS.labels(source=source).inc()


def inc_degenerate_input(reason: str) -> None:
	DEGENERATE_INPUTS.labels(reason=reason).inc()


def inc_goal_evaluation(goal_type: str, completed: bool) -> None:
	GOAL_EVALUATIONS.labels(goal_type=goal_type, completed="true" if completed else "false").inc()
