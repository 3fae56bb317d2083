import asyncio
import json
import logging
import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import redis
from dotenv import load_dotenv

from relay.models.events import Credential
from relay.providers.base import QuotaSource

load_dotenv()

logger = logging.getLogger("relay.quota")

QuotaFetcher = Callable[[Credential], Awaitable[Dict[str, Any]]]


def get_redis_client(url: Optional[str] = None) -> redis.Redis | None:
    url = url or os.getenv("REDIS_URL")
    if not url:
        return None

    try:
        client = redis.Redis.from_url(url, decode_responses=True)
        client.ping()
        return client
    except redis.ConnectionError:
        logger.warning("redis at %s unreachable, keeping quotas in memory", url)
        return None


class QuotaStore(QuotaSource):
    """
    Latest known quota snapshot per credential id.

    Snapshots come from `fetcher` (usually the backend transport) and are
    kept in a Redis hash when a client is given, otherwise in memory.
    """

    def __init__(
        self,
        fetcher: QuotaFetcher,
        redis_client: redis.Redis | None = None,
        key_prefix: str = "relay:quota",
    ):
        self.fetcher = fetcher
        self.r = redis_client
        self.key_prefix = key_prefix
        self._memory: Dict[str, Dict[str, Any]] = {}

    async def fetch_quotas(self, credential: Credential) -> Dict[str, Any]:
        return await self.fetcher(credential)

    async def update_quota(self, credential_id: str, quotas: Dict[str, Any]) -> None:
        record = {"updated_at": time.time(), "quotas": quotas}

        if self.r is None:
            self._memory[credential_id] = record
            return

        # sync client; keep the round trip off the event loop
        await asyncio.to_thread(
            self.r.hset,
            self.key_prefix,
            credential_id,
            json.dumps(record),
        )

    def get_quota(self, credential_id: str) -> Optional[Dict[str, Any]]:
        if self.r is None:
            return self._memory.get(credential_id)

        raw = self.r.hget(self.key_prefix, credential_id)
        return json.loads(raw) if raw else None
