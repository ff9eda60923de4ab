"""Redis connection management.

Provides a stable proxy object so imports like `from fitcircle.infra.redis import redis_client`
always reference the same proxy instance. The underlying client can be swapped at
runtime (e.g., to fakeredis in tests) without breaking previously imported references.
"""

from __future__ import annotations

import redis.asyncio as redis

from fitcircle.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def acquire_lock(self, key: str, ttl_seconds: int, token: str = "1") -> bool:
		"""SET NX EX; True when this caller now owns the key."""
		result = await self._client.set(key, token, nx=True, ex=max(1, int(ttl_seconds)))
		return bool(result)

	async def release_lock(self, key: str, token: str = "1") -> None:
		"""Drop the key only if it still carries our token."""
		current = await self._client.get(key)
		if current == token:
			await self._client.delete(key)

	# Fallback: delegate everything else to the underlying client
	def __getattr__(self, item):
		return getattr(self._client, item)


# Create proxy with the real client by default
_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
