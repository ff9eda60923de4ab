from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import pytest
import redis

from fitcircle.domain.exceptions import MissingInputError
from fitcircle.domain.leaderboards import outbox
from fitcircle.domain.leaderboards import service as service_module
from fitcircle.domain.leaderboards.models import EntityType
from fitcircle.domain.leaderboards.service import LeaderboardService

NOW = datetime(2025, 6, 16, 12, tzinfo=timezone.utc)
CHALLENGE = {
	"id": "c1",
	"type": "step_count",
	"status": "active",
	"start_date": date(2025, 6, 1),
	"end_date": date(2025, 6, 30),
}


class _FakeTransaction:
	def __init__(self, conn):
		self._conn = conn

	async def __aenter__(self):
		self._conn.in_transaction = True
		return None

	async def __aexit__(self, exc_type, exc, tb):
		self._conn.in_transaction = False
		return False


class _FakeAcquire:
	def __init__(self, conn):
		self._conn = conn

	async def __aenter__(self):
		return self._conn

	async def __aexit__(self, exc_type, exc, tb):
		return False


class _FakeConnection:
	def __init__(self, *, challenge=None, last_calculated=None, tables=None):
		self.challenge = challenge
		self.last_calculated = last_calculated
		self.tables = tables or {}
		self.in_transaction = False
		self.executed: list[tuple[str, tuple, bool]] = []
		self.batches: list[tuple[str, list, bool]] = []

	def transaction(self):
		return _FakeTransaction(self)

	async def fetchrow(self, sql, *args):
		if "FROM challenges" in sql:
			return self.challenge
		return None

	async def fetchval(self, sql, *args):
		if "MAX(calculated_at)" in sql:
			return self.last_calculated
		if "FROM challenges" in sql:
			return 1 if self.challenge else None
		return None

	async def fetch(self, sql, *args):
		for marker, rows in self.tables.items():
			if marker in sql:
				return rows
		return []

	async def execute(self, sql, *args):
		self.executed.append((sql, args, self.in_transaction))
		return "OK"

	async def executemany(self, sql, params):
		self.batches.append((sql, list(params), self.in_transaction))


class _FakePool:
	def __init__(self, conn):
		self._conn = conn

	def acquire(self):
		return _FakeAcquire(self._conn)


@pytest.fixture
def use_conn(monkeypatch):
	def _install(conn: _FakeConnection) -> _FakeConnection:
		async def _get_pool():
			return _FakePool(conn)

		monkeypatch.setattr(service_module, "get_pool", _get_pool)
		return conn

	return _install


def _participant(user_id: str, points: int, **extra) -> dict:
	row = {
		"id": f"p-{user_id}",
		"user_id": user_id,
		"team_id": None,
		"total_points": points,
		"progress_percentage": None,
		"starting_weight_kg": None,
		"current_weight_kg": None,
		"goal_weight_kg": None,
		"check_ins_count": 1,
		"streak_days": 0,
		"last_check_in_at": None,
		"joined_at": NOW - timedelta(days=5),
	}
	row.update(extra)
	return row


def _populated_conn(**overrides) -> _FakeConnection:
	tables = {
		"FROM leaderboard": [{"entity_id": "u1", "entity_type": "individual", "rank": 5}],
		"FROM challenge_participants": [_participant(f"u{idx}", 100 - idx) for idx in range(1, 6)]
		+ [_participant("", 0)],
		"FROM check_ins": [
			{"user_id": "u1", "check_in_date": date(2025, 6, 10), "steps": 9000, "active_minutes": 40},
			{"user_id": "u1", "check_in_date": date(2025, 5, 20), "steps": 1, "active_minutes": 1},
		],
		"FROM teams": [{"id": "t1", "member_count": 2}],
		"FROM team_members": [{"team_id": "t1", "user_id": "u1"}, {"team_id": "t1", "user_id": "u2"}],
	}
	tables.update(overrides)
	return _FakeConnection(challenge=CHALLENGE, tables=tables)


@pytest.mark.asyncio
async def test_recalculate_missing_challenge_raises(use_conn):
	use_conn(_FakeConnection(challenge=None))

	with pytest.raises(MissingInputError):
		await LeaderboardService().recalculate("missing", now=NOW)


@pytest.mark.asyncio
async def test_recalculate_is_throttled_inside_window(use_conn):
	conn = use_conn(_FakeConnection(challenge=CHALLENGE, last_calculated=NOW - timedelta(seconds=20)))

	summary = await LeaderboardService().recalculate("c1", now=NOW)

	assert summary.status == "throttled"
	assert summary.calculated_at == NOW - timedelta(seconds=20)
	assert conn.executed == [] and conn.batches == []


@pytest.mark.asyncio
async def test_recalculate_skips_when_lock_is_held(use_conn, fake_redis):
	conn = use_conn(_populated_conn())
	await fake_redis.set("lb:recalc:lock:c1", "someone-else", ex=60)

	summary = await LeaderboardService().recalculate("c1", force=True, now=NOW)

	assert summary.status == "in_progress"
	assert conn.batches == []
	assert await fake_redis.get("lb:recalc:lock:c1") == "someone-else"


@pytest.mark.asyncio
async def test_recalculate_replaces_board_in_one_transaction(use_conn, fake_redis):
	conn = use_conn(_populated_conn())

	summary = await LeaderboardService().recalculate("c1", force=True, now=NOW)

	assert summary.status == "recalculated"
	assert summary.individuals == 5
	assert summary.teams == 1
	assert summary.significant_changes == 1
	assert summary.calculated_at == NOW

	delete_sql, delete_args, delete_in_tx = conn.executed[0]
	assert "DELETE FROM leaderboard" in delete_sql and delete_args == ("c1",) and delete_in_tx
	insert_sql, rows, insert_in_tx = conn.batches[0]
	assert "INSERT INTO leaderboard" in insert_sql and insert_in_tx
	assert [(row[1], row[2], row[3]) for row in rows] == [
		("u1", "individual", 1),
		("u2", "individual", 2),
		("u3", "individual", 3),
		("u4", "individual", 4),
		("u5", "individual", 5),
		("t1", "team", 1),
	]
	first = rows[0]
	assert first[4] == 5 and first[5] == "up"
	assert first[12] == 9000
	assert json.loads(first[15])["days_active"] == 5

	participant_updates = next(batch for batch in conn.batches if "UPDATE challenge_participants" in batch[0])
	assert participant_updates[1][0] == (1, "c1", "u1")
	team_updates = next(batch for batch in conn.batches if "UPDATE teams" in batch[0])
	assert team_updates[1] == [(1, "t1")]

	assert await fake_redis.get("lb:recalc:lock:c1") is None


@pytest.mark.asyncio
async def test_recalculate_publishes_rank_change_intents(use_conn, fake_redis):
	use_conn(_populated_conn())

	await LeaderboardService().recalculate("c1", force=True, now=NOW)

	events = await fake_redis.xrange(outbox.RANK_CHANGE_STREAM)
	assert len(events) == 1
	_, body = events[0]
	assert body["entity_id"] == "u1"
	assert body["previous_rank"] == "5"
	assert body["new_rank"] == "1"
	assert body["title"] == "Climbing the ranks!"
	assert body["priority"] == "high"


@pytest.mark.asyncio
async def test_publish_failure_does_not_change_result(use_conn, monkeypatch):
	conn = use_conn(_populated_conn())

	async def _boom(challenge_id, intent):
		raise redis.ConnectionError("stream unavailable")

	monkeypatch.setattr(outbox, "append_rank_change", _boom)

	summary = await LeaderboardService().recalculate("c1", force=True, now=NOW)

	assert summary.status == "recalculated"
	assert summary.significant_changes == 1
	assert conn.batches


@pytest.mark.asyncio
async def test_empty_roster_clears_board(use_conn):
	conn = use_conn(_FakeConnection(challenge=CHALLENGE, tables={}))

	summary = await LeaderboardService().recalculate("c1", now=NOW)

	assert summary.status == "recalculated"
	assert summary.individuals == 0
	assert "DELETE FROM leaderboard" in conn.executed[0][0]
	assert conn.batches == []


@pytest.mark.asyncio
async def test_get_leaderboard_reads_stored_rows(use_conn):
	rows = [
		{
			"entity_id": "u2",
			"entity_type": "individual",
			"rank": 1,
			"previous_rank": 3,
			"trend": "up",
			"points": 40,
			"progress_percentage": 55.5,
			"streak_days": 2,
			"check_ins_count": 4,
			"total_steps": 1200,
			"total_active_minutes": 30,
			"stats": '{"days_active": 4}',
			"calculated_at": NOW,
		}
	]
	use_conn(_FakeConnection(challenge=CHALLENGE, tables={"FROM leaderboard": rows}))

	response = await LeaderboardService().get_leaderboard("c1", EntityType.INDIVIDUAL)

	assert response.items[0].entity_id == "u2"
	assert response.items[0].rank_change == 2
	assert response.items[0].stats == {"days_active": 4}


@pytest.mark.asyncio
async def test_get_leaderboard_unknown_challenge(use_conn):
	use_conn(_FakeConnection(challenge=None))

	with pytest.raises(MissingInputError):
		await LeaderboardService().get_leaderboard("nope")


@pytest.mark.asyncio
async def test_recalculate_many_skips_vanished_challenges(monkeypatch):
	from fitcircle.domain.leaderboards import jobs

	async def fake_recalculate(challenge_id, *, force=False):
		if challenge_id == "gone":
			raise MissingInputError("challenge_not_found")
		return service_module.RecalculationSummary(challenge_id=challenge_id, status="recalculated")

	monkeypatch.setattr(jobs._service, "recalculate", fake_recalculate)

	summaries = await jobs.recalculate_many(["c1", "gone", "c2"])

	assert [summary.challenge_id for summary in summaries] == ["c1", "c2"]
	assert (await jobs.recalculate_rankings("c3", force=True)).status == "recalculated"
