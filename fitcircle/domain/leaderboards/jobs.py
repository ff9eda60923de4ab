"""Background jobs for recomputing challenge leaderboards."""

from __future__ import annotations

import logging
from typing import Iterable, List

from fitcircle.domain.exceptions import MissingInputError
from fitcircle.domain.leaderboards.schemas import RecalculationSummary
from fitcircle.domain.leaderboards.service import LeaderboardService

logger = logging.getLogger(__name__)

_service = LeaderboardService()


async def recalculate_rankings(challenge_id: str, *, force: bool = False) -> RecalculationSummary:
	"""Entry point for schedulers and check-in triggers; safe to call repeatedly."""

	return await _service.recalculate(challenge_id, force=force)


async def recalculate_many(challenge_ids: Iterable[str]) -> List[RecalculationSummary]:
	"""Sweep several challenges; a vanished challenge does not stop the sweep."""

	summaries: List[RecalculationSummary] = []
	for challenge_id in challenge_ids:
		try:
			summaries.append(await _service.recalculate(challenge_id))
		except MissingInputError:
			logger.warning("leaderboard_recalc_missing_challenge", extra={"challenge": challenge_id})
	return summaries
