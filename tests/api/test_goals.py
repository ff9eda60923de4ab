from datetime import date, datetime, timezone

import pytest

from fitcircle.api import goals as goals_api
from fitcircle.domain.goals.models import DailyProgress, GoalCompletionRecord, GoalProgress, GoalType
from fitcircle.domain.streaks.models import StreakState
from fitcircle.domain.tracking.models import TrackingSnapshot

NOW = datetime(2025, 6, 16, 20, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_post_completions(monkeypatch, api_client):
	seen = {}

	async def fake_update(owner_id: str, on: date, snapshot: TrackingSnapshot):
		seen.update(owner_id=owner_id, on=on, snapshot=snapshot)
		return [GoalCompletionRecord(owner_id, "g-steps", on, 12000.0, 10000.0, 100.0, True, NOW)]

	monkeypatch.setattr(goals_api._service, "update_goal_completion", fake_update)

	response = await api_client.post(
		"/goals/u1/completions",
		json={"date": "2025-06-16", "snapshot": {"steps": 12000, "custom_values": {"water": 2}}},
	)
	assert response.status_code == 200
	payload = response.json()
	assert payload[0]["goal_id"] == "g-steps"
	assert payload[0]["is_completed"] is True
	assert seen["on"] == date(2025, 6, 16)
	assert seen["snapshot"].steps == 12000
	assert seen["snapshot"].custom_values == {"water": 2.0}


@pytest.mark.asyncio
async def test_post_completions_validates_snapshot(api_client):
	response = await api_client.post("/goals/u1/completions", json={"date": "2025-06-16", "snapshot": {"steps": -5}})
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_progress(monkeypatch, api_client):
	async def fake_progress(owner_id: str, on: date):
		goal = GoalProgress("g-steps", GoalType.STEPS, 10000.0, 4000.0, 40.0, False, "steps")
		return DailyProgress(day=on, goals=[goal], overall_completion=0.0, total_goals=1, completed_goals=0)

	monkeypatch.setattr(goals_api._service, "get_daily_progress", fake_progress)

	response = await api_client.get("/goals/u1/progress?date=2025-06-14")
	assert response.status_code == 200
	payload = response.json()
	assert payload["date"] == "2025-06-14"
	assert payload["goals"][0]["completion_percentage"] == 40.0
	assert payload["total_goals"] == 1


@pytest.mark.asyncio
async def test_get_streak(monkeypatch, api_client):
	async def fake_streak(owner_id: str):
		return StreakState(current_streak=3, longest_streak=9, last_completion_date=date(2025, 6, 16))

	monkeypatch.setattr(goals_api._service, "get_streak", fake_streak)

	response = await api_client.get("/goals/u1/streak")
	assert response.status_code == 200
	assert response.json() == {"current_streak": 3, "longest_streak": 9, "last_completion_date": "2025-06-16"}
