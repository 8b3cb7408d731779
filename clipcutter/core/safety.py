"""
Download safety: request pacing, user-agent rotation and a daily counter
that nudges heavy users before the video host starts blocking them.
"""

import datetime
import json
import logging
import random
import threading
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from clipcutter.core.constants import (
    SAFETY_STATE_PATH, SAFETY_DELAY_RANGE, SAFETY_COUNTER_THRESHOLD,
    SAFETY_TIP_THRESHOLD, USER_AGENTS,
)
from clipcutter.core.error_codes import JobCancelled

logger = logging.getLogger(__name__)


class SafetyStatus(NamedTuple):
    daily_count: int
    show_counter: bool
    show_tip: bool


def pick_user_agent(rng: random.Random | None = None) -> str:
    return (rng or random).choice(USER_AGENTS)


def safety_delay(cancel_event: Optional[threading.Event] = None,
                 rng: random.Random | None = None,
                 delay_range: tuple[float, float] = SAFETY_DELAY_RANGE) -> float:
    """
    Sleep a random interval before hitting the video host.
    Wakes immediately and raises JobCancelled if the job is cancelled.
    """
    delay = (rng or random).uniform(*delay_range)
    logger.info("Waiting %.1fs before download", delay)
    event = cancel_event or threading.Event()
    if event.wait(delay):
        raise JobCancelled()
    return delay


class SafetyTracker:
    """Per-day download counter persisted as JSON."""

    def __init__(self, state_path: Path | None = None,
                 today: Callable[[], datetime.date] = datetime.date.today):
        self.path = state_path or SAFETY_STATE_PATH
        self._today = today
        self._lock = threading.Lock()
        self._day = self._today().isoformat()
        self._count = 0
        self._tip_shown = False
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            self._day = str(data.get('day', self._day))
            self._count = int(data.get('count', 0))
            self._tip_shown = bool(data.get('tip_shown', False))
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Failed to load safety state: %s", e)

    def _save(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                json.dump({'day': self._day, 'count': self._count,
                           'tip_shown': self._tip_shown}, f, indent=2)
        except OSError as e:
            logger.warning("Failed to save safety state: %s", e)

    def _roll_day(self):
        today = self._today().isoformat()
        if today != self._day:
            self._day = today
            self._count = 0

    @property
    def daily_count(self) -> int:
        with self._lock:
            self._roll_day()
            return self._count

    @property
    def tip_shown(self) -> bool:
        return self._tip_shown

    def track_download(self) -> int:
        with self._lock:
            self._roll_day()
            self._count += 1
            self._save()
            count = self._count
        if count == SAFETY_COUNTER_THRESHOLD or count == SAFETY_TIP_THRESHOLD:
            logger.info("%d downloads today", count)
        return count

    def safety_status(self) -> SafetyStatus:
        """Showing the tip once marks it as seen for good."""
        with self._lock:
            self._roll_day()
            show_tip = self._count >= SAFETY_TIP_THRESHOLD and not self._tip_shown
            if show_tip:
                self._tip_shown = True
                self._save()
            return SafetyStatus(
                daily_count=self._count,
                show_counter=self._count >= SAFETY_COUNTER_THRESHOLD,
                show_tip=show_tip,
            )

    def dismiss_tip(self):
        with self._lock:
            self._tip_shown = True
            self._save()
