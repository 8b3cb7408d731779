"""
Account service: device registration, license activation and free-credit
accounting on top of BackendClient and AccountStateCache.
"""

import logging
import threading
import time
from typing import Callable, NamedTuple, Optional

from clipcutter.core.account_cache import AccountSnapshot, AccountStateCache
from clipcutter.core.backend_client import BackendClient, parse_credits, with_retry
from clipcutter.core.constants import (
    ErrorCode, LICENSE_ACCOUNT, LICENSE_PREFIXES, MAX_FREE_CREDITS,
)
from clipcutter.core.error_codes import (
    InsufficientCredits, InvalidInput, JobError,
)

logger = logging.getLogger(__name__)


class UsageStatus:
    LICENSED = "licensed"
    FREE_TRIAL = "free_trial"
    TRIAL_EXPIRED = "trial_expired"


class Usage(NamedTuple):
    status: str
    remaining: int            # -1 when unlimited


def is_valid_license(license_key: str | None) -> bool:
    return bool(license_key) and license_key.startswith(LICENSE_PREFIXES)


class AccountService:

    def __init__(self, client: BackendClient, cache: AccountStateCache,
                 device_id: str, credentials,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.cache = cache
        self.device_id = device_id
        self.credentials = credentials
        self._sleep = sleep
        # One credit consumption at a time, so server replies land in order
        self._consume_lock = threading.Lock()

    def _retry(self, operation, invalidate_on_exhaustion: bool = False):
        on_exhausted = None
        if invalidate_on_exhaustion:
            # Stale state must not outlive a backend we can't reach
            on_exhausted = lambda e: self.cache.invalidate()
        return with_retry(operation, sleep=self._sleep, on_exhausted=on_exhausted)

    def stored_license(self) -> Optional[str]:
        raw = self.credentials.get(LICENSE_ACCOUNT)
        if not raw:
            return None
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            logger.warning("Stored license is not valid UTF-8")
            return None

    def has_license(self) -> bool:
        if is_valid_license(self.stored_license()):
            return True
        snapshot = self.cache.peek()
        return snapshot is not None and snapshot.license_active

    # ── Device state ──────────────────────────────────────────────────

    def refresh(self, force: bool = False) -> AccountSnapshot:
        """Current device state, from cache when still inside its validity window."""
        if not force:
            known = self.cache.peek()
            credits = known.free_credits if known else 0
            window = self.cache.get_validity_window(self.has_license(), credits)
            cached = self.cache.get(max_age=window)
            if cached is not None:
                snapshot, age = cached
                logger.debug("Using cached device status (age %.0fs)", age)
                return snapshot

        logger.info("Fetching device status")
        data = self._retry(lambda: self.client.check_device(self.device_id),
                           invalidate_on_exhaustion=True)

        if data is None:
            logger.info("Device not found, registering with %d free credits",
                        MAX_FREE_CREDITS)
            self._retry(lambda: self.client.create_device(self.device_id))
            snapshot = AccountSnapshot(
                device_id=self.device_id,
                free_credits=MAX_FREE_CREDITS,
                license_active=is_valid_license(self.stored_license()),
            )
            self.cache.invalidate()
            self.cache.put(snapshot)
            return snapshot

        user = data.get('user') or {}
        snapshot = AccountSnapshot(
            device_id=str(data.get('deviceId') or self.device_id),
            free_credits=parse_credits(data.get('freeCredits', 0)),
            license_active=is_valid_license(user.get('license')),
        )
        self.cache.put(snapshot)
        return snapshot

    def consume_credit(self) -> Optional[int]:
        """
        Record one clip against the free allowance.
        Licensed accounts are never charged. Returns the remaining credits
        the server reported, or None when nothing was charged.
        """
        if self.has_license():
            logger.info("Licensed device, no credit consumed")
            return None

        with self._consume_lock:
            # Optimistic; the server value below replaces it
            self.cache.decrement_credits()

            try:
                remaining = self._retry(lambda: self.client.decrement_credits(self.device_id),
                                        invalidate_on_exhaustion=True)
            except InsufficientCredits:
                self.cache.update_credits(0)
                raise

            if remaining is not None:
                self.cache.update_credits(remaining)
                logger.info("Free credits remaining: %d", remaining)
        return remaining

    # ── License ───────────────────────────────────────────────────────

    def activate_license(self, license_key: str) -> bool:
        """Validate, link to this device and store the license. Raises on failure."""
        key = (license_key or "").strip().upper()
        if not key:
            raise InvalidInput("License key is empty", code=ErrorCode.LICENSE_INVALID)

        valid, message = self._retry(
            lambda: self.client.validate_license(key, self.device_id))
        if not valid:
            raise JobError(ErrorCode.LICENSE_INVALID, message or "License key is not valid")

        self._retry(lambda: self.client.update_device(self.device_id, key))
        if not self.credentials.put(LICENSE_ACCOUNT, key.encode('utf-8')):
            # The server holds the truth; the next refresh picks it up
            logger.warning("License linked on server but failed to store locally")

        self.cache.invalidate()
        logger.info("License activated")
        return True

    # ── Usage ─────────────────────────────────────────────────────────

    def can_clip(self) -> bool:
        """
        True when licensed or free credits remain.
        Goes through refresh(), so state older than the cache's validity
        window is refetched first. Backend errors propagate.
        """
        if self.has_license():
            return True
        snapshot = self.refresh()
        return snapshot.license_active or snapshot.free_credits > 0

    def usage_status(self) -> Usage:
        if self.has_license():
            return Usage(UsageStatus.LICENSED, -1)
        snapshot = self.cache.peek()
        if snapshot is None:
            # Not fetched yet; don't block the user on an unknown
            return Usage(UsageStatus.FREE_TRIAL, MAX_FREE_CREDITS)
        if snapshot.free_credits > 0:
            return Usage(UsageStatus.FREE_TRIAL, snapshot.free_credits)
        return Usage(UsageStatus.TRIAL_EXPIRED, 0)
