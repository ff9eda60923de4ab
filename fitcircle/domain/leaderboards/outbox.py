"""Outbox helpers for rank-change notification streams."""

from __future__ import annotations

import logging
from typing import Iterable

import redis

from fitcircle.domain.leaderboards.models import RankChangeIntent
from fitcircle.domain.leaderboards.policy import describe_rank_change
from fitcircle.infra.redis import redis_client
from fitcircle.obs import metrics as obs_metrics
from fitcircle.settings import settings

logger = logging.getLogger(__name__)

RANK_CHANGE_STREAM = "x:leaderboards.rank_changes"


async def append_rank_change(challenge_id: str, intent: RankChangeIntent) -> None:
	"""Append one rank-change intent, with its rendered message, to the stream."""

	body = {
		"challenge_id": challenge_id,
		"entity_id": intent.entity_id,
		"entity_type": intent.entity_type.value,
		"previous_rank": str(intent.previous_rank),
		"new_rank": str(intent.new_rank),
		"improved": "1" if intent.improved else "0",
		**describe_rank_change(intent),
	}
	await redis_client.xadd(RANK_CHANGE_STREAM, body, maxlen=settings.rank_change_stream_maxlen, approximate=True)


async def publish_rank_changes(challenge_id: str, intents: Iterable[RankChangeIntent]) -> int:
	"""Publish intents; returns how many made it onto the stream.

	Delivery is best effort: a Redis failure is logged and counted, and the
	remaining intents are still attempted.
	"""

	published = 0
	for intent in intents:
		obs_metrics.inc_rank_change(intent.improved)
		try:
			await append_rank_change(challenge_id, intent)
		except redis.RedisError:
			obs_metrics.inc_rank_change_publish_failure()
			logger.warning(
				"rank_change_publish_failed",
				extra={"challenge": challenge_id, "entity": intent.entity_id},
				exc_info=True,
			)
			continue
		published += 1
	return published
