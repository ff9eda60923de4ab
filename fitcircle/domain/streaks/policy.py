"""Pure streak calculation over "fully completed" calendar days."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from fitcircle.domain.streaks.models import StreakState

if TYPE_CHECKING:
	from fitcircle.domain.goals.models import GoalCompletionRecord

STREAK_LOOKBACK_DAYS = 365

_ONE_DAY = timedelta(days=1)


def _utc_today() -> date:
	return datetime.now(timezone.utc).date()


def calculate_streak(
	completion_dates: Iterable[date],
	*,
	today: Optional[date] = None,
	lookback_days: int = STREAK_LOOKBACK_DAYS,
) -> StreakState:
	"""Compute current and longest streaks from completion dates.

	The current streak only counts when the newest completion is today or
	yesterday; it then extends backwards one calendar day at a time until the
	first gap. The longest streak is the longest run anywhere in the history,
	and is never shorter than the current one.
	"""

	if today is None:
		today = _utc_today()
	horizon = today - timedelta(days=lookback_days)
	ordered = sorted({day for day in completion_dates if day >= horizon}, reverse=True)
	if not ordered:
		return StreakState.empty()

	current = 0
	if ordered[0] in (today, today - _ONE_DAY):
		current = 1
		for newer, older in zip(ordered, ordered[1:]):
			if newer - older != _ONE_DAY:
				break
			current += 1

	longest = 0
	run = 0
	previous: Optional[date] = None
	for day in reversed(ordered):
		if previous is not None and day - previous == _ONE_DAY:
			run += 1
		else:
			run = 1
		longest = max(longest, run)
		previous = day

	return StreakState(
		current_streak=current,
		longest_streak=max(longest, current),
		last_completion_date=ordered[0],
	)


def completed_dates(records: Iterable["GoalCompletionRecord"]) -> List[date]:
	"""Dates on which every recorded goal was completed, newest first."""

	totals: Dict[date, List[bool]] = defaultdict(list)
	for record in records:
		totals[record.completion_date].append(record.is_completed)
	done = [day for day, flags in totals.items() if flags and all(flags)]
	return sorted(done, reverse=True)


def streak_from_history(
	records: Iterable["GoalCompletionRecord"],
	*,
	today: Optional[date] = None,
	lookback_days: int = STREAK_LOOKBACK_DAYS,
) -> StreakState:
	return calculate_streak(completed_dates(records), today=today, lookback_days=lookback_days)
