"""
In-memory cache of device / license / credit state.

One lock guards every read and write, and callers only ever see frozen
snapshots, so concurrent readers never observe a half-applied update.
The validity window shrinks as the account approaches credit exhaustion
and right after local state changes, so the UI reconciles quickly with
the backend.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from clipcutter.core.constants import (
    ACCOUNT_DEFAULT_MAX_AGE, ACCOUNT_LICENSED_TTL, ACCOUNT_UNLICENSED_TTL,
    ACCOUNT_LAST_CREDIT_TTL, ACCOUNT_CREDIT_UPDATE_TTL, ACCOUNT_RECENT_WINDOW,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSnapshot:
    device_id: str
    free_credits: int
    license_active: bool = False
    fetched_at: Optional[float] = None
    invalidated_at: Optional[float] = None
    credits_updated_at: Optional[float] = None


class AccountStateCache:
    """Thread-safe holder of the latest AccountSnapshot."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[AccountSnapshot] = None
        self._fetched_at: Optional[float] = None
        self._invalidated_at: Optional[float] = None
        self._credits_updated_at: Optional[float] = None

    def _stamped(self) -> AccountSnapshot:
        # Called with the lock held
        return replace(
            self._snapshot,
            fetched_at=self._fetched_at,
            invalidated_at=self._invalidated_at,
            credits_updated_at=self._credits_updated_at,
        )

    def put(self, snapshot: AccountSnapshot):
        """Replace the cached state wholesale and reset its age."""
        with self._lock:
            self._snapshot = snapshot
            self._fetched_at = self._clock()

    def get(self, max_age: float | None = None) -> tuple[AccountSnapshot, float] | None:
        """Return (snapshot, age_seconds) if present and younger than max_age."""
        with self._lock:
            if self._snapshot is None or self._fetched_at is None:
                return None
            age = self._clock() - self._fetched_at
            limit = ACCOUNT_DEFAULT_MAX_AGE if max_age is None else max_age
            if age >= limit:
                return None
            return self._stamped(), age

    def peek(self) -> AccountSnapshot | None:
        """Last known snapshot regardless of age."""
        with self._lock:
            return self._stamped() if self._snapshot is not None else None

    def update_credits(self, new_credits: int):
        """
        Apply a credit count reported by (or optimistically predicted for)
        the backend. Only a changed value counts as a credit update.
        """
        with self._lock:
            now = self._clock()
            if self._snapshot is not None and self._snapshot.free_credits != new_credits:
                logger.info("Credits changed from %d to %d",
                            self._snapshot.free_credits, new_credits)
                self._snapshot = replace(self._snapshot, free_credits=new_credits)
                self._credits_updated_at = now
            self._fetched_at = now

    def decrement_credits(self) -> int | None:
        """
        Take one credit off the cached count in a single locked step.
        Returns the new count, or None when nothing is cached.
        """
        with self._lock:
            if self._snapshot is None:
                return None
            now = self._clock()
            remaining = max(0, self._snapshot.free_credits - 1)
            if remaining != self._snapshot.free_credits:
                self._snapshot = replace(self._snapshot, free_credits=remaining)
                self._credits_updated_at = now
            self._fetched_at = now
            return remaining

    def invalidate(self):
        with self._lock:
            self._snapshot = None
            self._fetched_at = None
            self._invalidated_at = self._clock()
        logger.info("Account cache invalidated")

    def _recent(self, stamp: Optional[float]) -> bool:
        return stamp is not None and self._clock() - stamp < ACCOUNT_RECENT_WINDOW

    def has_recent_invalidation(self) -> bool:
        with self._lock:
            return self._recent(self._invalidated_at)

    def has_recent_credit_update(self) -> bool:
        with self._lock:
            return self._recent(self._credits_updated_at)

    def get_validity_window(self, has_license: bool, current_credits: int) -> float:
        """How long cached state may be served before refetching, in seconds."""
        with self._lock:
            if self._recent(self._invalidated_at):
                return 0
            # A stale "you still have credits" at the boundary is expensive
            if not has_license and current_credits <= 1:
                return ACCOUNT_LAST_CREDIT_TTL
            if self._recent(self._credits_updated_at):
                return ACCOUNT_CREDIT_UPDATE_TTL
            return ACCOUNT_LICENSED_TTL if has_license else ACCOUNT_UNLICENSED_TTL
