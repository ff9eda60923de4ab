from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from fitcircle.domain.exceptions import MissingInputError
from fitcircle.domain.goals import service as service_module
from fitcircle.domain.goals.models import GoalType
from fitcircle.domain.goals.service import GoalService
from fitcircle.domain.tracking.models import TrackingSnapshot

TODAY = date(2025, 6, 16)
NOW = datetime(2025, 6, 16, 20, tzinfo=timezone.utc)


class _FakeTransaction:
	async def __aenter__(self):
		return None

	async def __aexit__(self, exc_type, exc, tb):
		return False


class _FakeAcquire:
	def __init__(self, conn):
		self._conn = conn

	async def __aenter__(self):
		return self._conn

	async def __aexit__(self, exc_type, exc, tb):
		return False


class _FakeConnection:
	def __init__(self, *, rows=None, challenge=None, participant=None):
		self.rows = rows or {}
		self.challenge = challenge
		self.participant = participant
		self.fetch_args: list[tuple] = []
		self.batches: list[tuple[str, list]] = []

	def transaction(self):
		return _FakeTransaction()

	async def fetchrow(self, sql, *args):
		if "FROM challenges" in sql:
			return self.challenge
		if "FROM challenge_participants" in sql:
			return self.participant
		return None

	async def fetch(self, sql, *args):
		self.fetch_args.append(args)
		for marker, rows in self.rows.items():
			if marker in sql:
				return rows
		return []

	async def executemany(self, sql, params):
		self.batches.append((sql, list(params)))


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


GOAL_ROWS = [
	{"id": "g-steps", "user_id": "u1", "goal_type": "steps", "target_value": 10000, "frequency": "daily", "is_active": True},
	{"id": "g-weight", "user_id": "u1", "goal_type": "weight_log", "target_value": 1, "frequency": "daily", "is_active": True},
	{"id": "g-weekend", "user_id": "u1", "goal_type": "mood", "frequency": "weekends", "is_active": True},
	{"id": "g-bad", "user_id": "u1", "goal_type": "levitation"},
]


@pytest.mark.asyncio
async def test_update_goal_completion_upserts_active_goals(use_conn):
	conn = use_conn(_FakeConnection(rows={"FROM daily_goals": GOAL_ROWS}))

	records = await GoalService().update_goal_completion("u1", TODAY, TrackingSnapshot(steps=12000), now=NOW)

	assert [(record.goal_id, record.is_completed) for record in records] == [("g-steps", True), ("g-weight", False)]
	sql, params = conn.batches[0]
	assert "ON CONFLICT (user_id, daily_goal_id, completion_date)" in sql
	assert params[0] == ("u1", "g-steps", TODAY, 10000.0, 12000.0, 100.0, True, NOW)
	assert params[1][6] is False and params[1][7] is None


@pytest.mark.asyncio
async def test_update_goal_completion_keeps_first_completion_time(use_conn):
	first_done = NOW - timedelta(hours=6)
	existing = [
		{
			"user_id": "u1",
			"daily_goal_id": "g-steps",
			"completion_date": TODAY,
			"actual_value": 10500,
			"target_value": 10000,
			"completion_percentage": 100,
			"is_completed": True,
			"completed_at": first_done,
		}
	]
	use_conn(_FakeConnection(rows={"FROM daily_goals": GOAL_ROWS[:1], "FROM goal_completion_history": existing}))

	records = await GoalService().update_goal_completion("u1", TODAY, TrackingSnapshot(steps=15000), now=NOW)

	assert records[0].completed_at == first_done
	assert records[0].actual_value == 15000


@pytest.mark.asyncio
async def test_update_goal_completion_without_goals_is_a_noop(use_conn):
	conn = use_conn(_FakeConnection())

	assert await GoalService().update_goal_completion("u1", TODAY, TrackingSnapshot(steps=1), now=NOW) == []
	assert conn.batches == []


@pytest.mark.asyncio
async def test_get_daily_progress(use_conn):
	history = [
		{
			"user_id": "u1",
			"daily_goal_id": "g-steps",
			"completion_date": TODAY,
			"completion_percentage": 100,
			"is_completed": True,
		}
	]
	use_conn(_FakeConnection(rows={"FROM daily_goals": GOAL_ROWS[:2], "FROM goal_completion_history": history}))

	progress = await GoalService().get_daily_progress("u1", TODAY)

	assert progress.total_goals == 2
	assert progress.completed_goals == 1
	assert progress.overall_completion == 50.0


@pytest.mark.asyncio
async def test_get_streak_rederives_from_history(use_conn):
	def row(goal_id: str, offset: int, done: bool) -> dict:
		return {
			"user_id": "u1",
			"daily_goal_id": goal_id,
			"completion_date": TODAY - timedelta(days=offset),
			"completion_percentage": 100 if done else 20,
			"is_completed": done,
		}

	history = [row("g-steps", 0, True), row("g-steps", 1, True), row("g-weight", 1, True), row("g-steps", 2, False), row("g-steps", 3, True)]
	conn = use_conn(_FakeConnection(rows={"FROM goal_completion_history": history}))

	state = await GoalService().get_streak("u1", today=TODAY)

	assert state.current_streak == 2
	assert state.longest_streak == 2
	assert state.last_completion_date == TODAY
	assert conn.fetch_args[0] == ("u1", TODAY - timedelta(days=365))


@pytest.mark.asyncio
async def test_create_goals_for_challenge(use_conn):
	conn = use_conn(
		_FakeConnection(
			rows={"FROM daily_tracking": [{"steps": 7000}, {"steps": 9000}]},
			challenge={"id": "c1", "type": "weight_loss", "start_date": date(2025, 6, 1), "end_date": date(2025, 8, 30)},
			participant={"starting_weight_kg": 92.0, "goal_weight_kg": 88.0, "starting_value": None, "goal_value": None},
		)
	)

	goals = await GoalService().create_goals_for_challenge("u1", "c1")

	assert [goal.goal_type for goal in goals] == [GoalType.STEPS, GoalType.WEIGHT_LOG]
	assert goals[0].target_value == 10000.0
	assert goals[0].baseline_value == 8000.0
	sql, params = conn.batches[0]
	assert "INSERT INTO daily_goals" in sql
	assert [param[3] for param in params] == ["steps", "weight_log"]


@pytest.mark.asyncio
async def test_create_goals_requires_participant(use_conn):
	use_conn(
		_FakeConnection(
			challenge={"id": "c1", "type": "step_count", "start_date": date(2025, 6, 1), "end_date": date(2025, 6, 30)},
		)
	)

	with pytest.raises(MissingInputError):
		await GoalService().create_goals_for_challenge("u1", "c1")
