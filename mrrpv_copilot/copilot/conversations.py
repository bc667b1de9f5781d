"""
In-memory conversation state.

ConversationStore keeps the user/assistant history per conversation id;
RateLimiter keeps a sliding one-minute window of request timestamps per
conversation (or caller).  Both are process-local and lock-guarded.  Growth
is unbounded; for multi-process deployments swap the backend for Redis.
"""
from __future__ import annotations

import copy
import threading
import time
import uuid
from collections import deque
from typing import Any, Callable

from mrrpv_copilot.core.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0


def new_conversation_id() -> str:
    return f"conv-{uuid.uuid4().hex[:12]}"


class ConversationStore:
    """Thread-safe map of conversation id -> message history.

    Reads return copies, so a failed turn can never leave a half-written
    history behind; callers write back with append() or replace() once the
    turn has succeeded.
    """

    def __init__(self) -> None:
        self._store: dict[str, list[dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get_or_create(self, conversation_id: str | None = None) -> tuple[str, list[dict[str, Any]]]:
        """Return ``(id, history copy)``; unknown or missing ids start empty."""
        conv_id = conversation_id or new_conversation_id()
        with self._lock:
            history = self._store.setdefault(conv_id, [])
            return conv_id, copy.deepcopy(history)

    def get(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._store.get(conversation_id, []))

    def append(self, conversation_id: str, *messages: dict[str, Any]) -> None:
        with self._lock:
            self._store.setdefault(conversation_id, []).extend(copy.deepcopy(list(messages)))
        logger.debug("Conversation %s +%d messages", conversation_id, len(messages))

    def replace(self, conversation_id: str, history: list[dict[str, Any]]) -> None:
        with self._lock:
            self._store[conversation_id] = copy.deepcopy(history)

    def clear(self) -> int:
        """Drop every conversation. Returns number removed."""
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RateLimiter:
    """Sliding-window request counter.

    Parameters
    ----------
    per_minute : int
        Requests allowed per key per 60 seconds; 0 disables limiting.
    clock : callable
        Time source, injectable for tests.
    """

    def __init__(self, per_minute: int = 0, clock: Callable[[], float] = time.monotonic):
        self.per_minute = per_minute
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> bool:
        """Record a request for *key*; False when it is over the limit."""
        if self.per_minute <= 0:
            return True
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - WINDOW_SECONDS:
                hits.popleft()
            if len(hits) >= self.per_minute:
                logger.warning("Rate limit hit for key=%s (%d/min)", key, self.per_minute)
                return False
            hits.append(now)
            return True


# ── Module-level singletons ─────────────────────────────

_store = ConversationStore()


def get_store() -> ConversationStore:
    """Return the global conversation store."""
    return _store
