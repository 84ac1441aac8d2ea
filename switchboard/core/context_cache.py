"""Rolling per-(instance, channel) conversation memory for channel replies."""

from __future__ import annotations

import time
from collections.abc import Callable

from switchboard.shared.types import ConversationMessage

DEFAULT_MAX_MESSAGES = 30
DEFAULT_TTL_SECONDS = 6 * 3600

CacheKey = tuple[str, str]


class RollingContextCache:
    """Keeps the last ``max_messages`` user/assistant turns per key.

    Entries idle for longer than ``ttl_seconds`` are dropped on access, and
    every append sweeps out the other expired keys.
    ``ttl_seconds=None`` disables expiry. Appends always read the current
    value, so two concurrent replies on one channel both land (in
    completion order) rather than one overwriting the other.
    """

    def __init__(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        ttl_seconds: float | None = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_messages = max_messages
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, list[ConversationMessage]]] = {}

    def _expired(self, touched: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - touched > self.ttl_seconds

    def get(self, key: CacheKey) -> list[ConversationMessage]:
        entry = self._entries.get(key)
        if entry is None:
            return []
        touched, messages = entry
        if self._expired(touched):
            del self._entries[key]
            return []
        return list(messages)

    def append(self, key: CacheKey, *messages: ConversationMessage) -> None:
        current = self.get(key)
        self.prune()
        current.extend(messages)
        self._entries[key] = (self._clock(), current[-self.max_messages:])

    def prune(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        if self.ttl_seconds is None:
            return 0
        stale = [k for k, (touched, _) in self._entries.items() if self._expired(touched)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear_instance(self, instance_id: str) -> None:
        for key in [k for k in self._entries if k[0] == instance_id]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
