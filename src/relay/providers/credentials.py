import asyncio
import itertools
from collections import defaultdict
from typing import Dict, List, Optional

from relay.models.events import Credential
from relay.providers.base import CredentialSource


class CredentialPool(CredentialSource):
    """Round-robin over a fixed list of upstream tokens."""

    def __init__(self, tokens: List[str]):
        self.credentials = [Credential(access_token=t) for t in tokens]
        self._cycle = itertools.cycle(self.credentials) if self.credentials else None
        self._lock = asyncio.Lock()
        self.usage: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    async def get_credential(self, model: str) -> Optional[Credential]:
        if self._cycle is None:
            return None
        async with self._lock:
            return next(self._cycle)

    async def record_usage_attempt(self, credential: Credential, model: str) -> None:
        self.usage[self.get_credential_id(credential)][model] += 1
