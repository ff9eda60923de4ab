"""Domain-level exceptions for rankings, goals and streaks."""

from __future__ import annotations


class FitCircleError(Exception):
	"""Base class for ranking/goal engine errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class MissingInputError(FitCircleError):
	"""Required upstream records (challenge, participant, ...) are absent."""

	reason = "not_found"


class MalformedRecordError(FitCircleError):
	"""A record lacks the identity fields needed to attribute it."""

	reason = "malformed"

	def __init__(self, reason: str | None = None, *, source: str = "unknown") -> None:
		super().__init__(reason)
		self.source = source
