"""
Practice timer: counts daily practice time and records finished attempts.

IMPORTANT: This module handles TWO distinct totals:

1. DAILY TOTAL: seconds practiced on the current calendar day.
   - Saved every tick while practicing, whatever the attempt's length
   - Starts again at 0 when the local date changes, even mid-attempt

2. RECORDED SESSION: an attempt that lasted at least min_recorded_duration.
   - Stored through the unique write path when the attempt stops
   - Shorter attempts still count toward the daily total
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import scalelog.config as config
from scalelog.exercise import ExerciseKey, now_timestamp
from scalelog.facade import PracticeClient

logger = logging.getLogger(__name__)


def clamp_bpm(bpm: int) -> int:
    return max(config.MIN_BPM, min(config.MAX_BPM, bpm))


class PracticeTracker:
    """Tracks one practice attempt at a time on top of a PracticeClient."""

    def __init__(self, client: PracticeClient, clock: Callable[[], datetime] = datetime.now,
                 min_recorded_duration: int = config.MIN_RECORDED_DURATION):
        """
        Args:
            client: Access layer used for all reads and writes
            clock: Returns the current local time; replaceable in tests
            min_recorded_duration: Seconds an attempt needs to be stored as a session
        """
        self.client = client
        self.clock = clock
        self.min_recorded_duration = min_recorded_duration

        self.current_date: Optional[str] = None
        self.daily_seconds = 0

        self.exercise: Optional[ExerciseKey] = None
        self.bpm = config.DEFAULT_BPM
        self.best_bpm: Optional[int] = None
        self.practice_session_active = False
        self.session_seconds = 0

        self._last_rollover_check = 0.0

        # Callbacks
        self.on_daily_total: Optional[Callable[[str, int], None]] = None
        self.on_session_recorded: Optional[Callable[[Dict[str, Any]], None]] = None

    def today(self) -> str:
        return self.clock().date().isoformat()

    async def load_today(self):
        """Pick up today's total on startup, or start a fresh one."""
        self.current_date = self.today()
        record = await self.client.get_daily_practice(self.current_date)
        self._last_rollover_check = time.monotonic()

        if record and record.get('date') == self.current_date:
            self.daily_seconds = record['total_time_seconds']
            logger.info("Resuming daily total for %s at %ss", self.current_date, self.daily_seconds)
        else:
            self.daily_seconds = 0
            await self._save_daily()

    async def check_rollover(self) -> bool:
        """
        Start a new daily total if the local date moved on.

        The previous day's record is left as it was.

        Returns:
            True if a new day was started
        """
        self._last_rollover_check = time.monotonic()
        today = self.today()
        if today == self.current_date:
            return False

        logger.info("Calendar day changed from %s to %s, starting a new daily total",
                    self.current_date, today)
        self.current_date = today
        self.daily_seconds = 0
        await self._save_daily()
        return True

    async def _save_daily(self):
        saved = await self.client.save_daily_practice({
            'date': self.current_date,
            'total_time_seconds': self.daily_seconds,
            'last_updated': now_timestamp(),
        })
        if not saved:
            logger.warning("Daily total for %s was not saved", self.current_date)
        if self.on_daily_total:
            self.on_daily_total(self.current_date, self.daily_seconds)

    async def start_practice(self, exercise: ExerciseKey, bpm: int = config.DEFAULT_BPM):
        """Begin an attempt at an exercise."""
        if self.practice_session_active:
            await self.stop_practice()
        if self.current_date is None:
            await self.load_today()

        self.exercise = exercise
        self.bpm = clamp_bpm(bpm)
        self.best_bpm = await self.client.best_bpm(exercise)
        self.practice_session_active = True
        self.session_seconds = 0
        logger.info("Practice started: %s / %s / %s octave(s) at %s bpm (best %s)",
                    exercise.scale, exercise.practice_type, exercise.octaves, self.bpm, self.best_bpm)

    def change_bpm(self, delta: int) -> int:
        """Adjust the tempo within the allowed range and return it."""
        self.bpm = clamp_bpm(self.bpm + delta)
        if self.best_bpm is None or self.bpm > self.best_bpm:
            self.best_bpm = self.bpm
        return self.bpm

    async def tick(self):
        """Count one second of practice; called every config.TICK_INTERVAL while active."""
        if not self.practice_session_active:
            return
        await self.check_rollover()
        self.session_seconds += 1
        self.daily_seconds += 1
        await self._save_daily()

    async def stop_practice(self) -> Optional[Dict[str, Any]]:
        """
        End the current attempt.

        Returns:
            The stored session, or None if the attempt was too short or
            could not be stored
        """
        if not self.practice_session_active or self.exercise is None:
            return None

        self.practice_session_active = False
        duration = self.session_seconds
        self.session_seconds = 0

        if duration < self.min_recorded_duration:
            logger.info(f"Attempt too short ({duration}s), not saving")
            return None

        saved = await self.client.save_unique_session({
            **self.exercise._asdict(),
            'bpm': self.bpm,
            'duration': duration,
        })
        if saved is None:
            logger.error("Practice session could not be saved")
            return None

        logger.info(f"Practice session recorded: {duration}s at {self.bpm} bpm")
        if self.on_session_recorded:
            self.on_session_recorded(saved)
        return saved

    async def run(self):
        """Tick while practicing and watch for day changes until cancelled."""
        if self.current_date is None:
            await self.load_today()
        while True:
            await asyncio.sleep(config.TICK_INTERVAL)
            if self.practice_session_active:
                await self.tick()
            elif time.monotonic() - self._last_rollover_check >= config.ROLLOVER_CHECK_INTERVAL:
                await self.check_rollover()
