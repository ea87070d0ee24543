"""In-memory nonce replay cache with TTL eviction."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable


class NonceCacheFull(Exception):
    """Raised when every cached nonce is still live and the cache is at capacity."""


class NonceCache:
    """Remembers seen nonces for a TTL so replays can be rejected."""

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        max_entries: int = 100_000,
        clock: Callable[[], float] = time.time,
    ):
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, nonce: object) -> bool:
        if not isinstance(nonce, str):
            return False
        expires_at = self._entries.get(nonce)
        return expires_at is not None and self._clock() <= expires_at

    def check_and_record(self, nonce: str) -> bool:
        """
        Record a nonce. Returns False if it was already seen and not expired.

        Live nonces are never dropped to make room.

        Raises:
            NonceCacheFull: If the cache holds max_entries unexpired nonces
        """
        now = self._clock()
        self._evict_expired(now)

        if nonce in self._entries:
            return False
        if len(self._entries) >= self._max_entries:
            raise NonceCacheFull(f"Nonce cache full ({self._max_entries} live entries)")

        self._entries[nonce] = now + self._ttl_seconds
        return True

    def _evict_expired(self, now: float) -> None:
        # Insertion order equals expiry order since the TTL is constant.
        while self._entries:
            nonce, expires_at = next(iter(self._entries.items()))
            if expires_at >= now:
                break
            self._entries.popitem(last=False)
