"""Domain models for consecutive-day streaks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(slots=True, frozen=True)
class StreakState:
	"""Derived streak values; never stored as a source of truth."""

	current_streak: int
	longest_streak: int
	last_completion_date: Optional[date]

	@classmethod
	def empty(cls) -> "StreakState":
		return cls(current_streak=0, longest_streak=0, last_completion_date=None)
