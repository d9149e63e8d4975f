"""
Periodic checks that drive notifications off the fasting session.

Each scheduler owns one asyncio task. start() spawns it, stop() cancels it;
a stopped scheduler holds no task. Schedulers only read the session and
never call its mutators.
"""

import asyncio
import logging

from clock import MS_PER_HOUR, local_hour
from fasting_zones import MILESTONE_HOURS, milestone_label

log = logging.getLogger("scheduler")


class PeriodicCheck:
    """Runs check() every `interval` seconds until stopped."""

    name = "periodic check"

    def __init__(self, interval):
        self.interval = interval
        self.running = False
        self._task = None

    @property
    def active(self):
        return self._task is not None and not self._task.done()

    def start(self):
        """Start (or restart) the loop. Must be called from a running event loop."""
        self._cancel_task()
        self.running = True
        self._task = asyncio.create_task(self._tick_loop())
        log.info(f"{self.name} started (every {self.interval:g}s)")

    def stop(self):
        was_active = self._task is not None
        self.running = False
        self._cancel_task()
        if was_active:
            log.info(f"{self.name} stopped")

    def _cancel_task(self):
        if self._task:
            self._task.cancel()
            self._task = None

    async def check(self):
        raise NotImplementedError

    async def _tick_loop(self):
        try:
            while self.running:
                await asyncio.sleep(self.interval)
                if not self.running:
                    break
                try:
                    await self.check()
                except Exception:
                    log.exception(f"{self.name} tick failed")
        except asyncio.CancelledError:
            pass


class MilestoneScheduler(PeriodicCheck):
    """Fires each hour threshold at most once per fast.

    The fired set lives only in memory: a process restart mid-fast re-fires
    the milestones already crossed, once.
    """

    name = "Milestone checks"

    def __init__(self, session, notifier, thresholds=MILESTONE_HOURS, interval=60.0, on_milestone=None):
        super().__init__(interval)
        self.session = session
        self.notifier = notifier
        self.thresholds = sorted(thresholds)
        self.on_milestone = on_milestone  # async callback(hours, label)
        self.notified = set()
        self._fast_id = None

    def reset(self):
        self.notified.clear()
        self._fast_id = None

    async def check(self):
        """One tick. Returns the thresholds fired, in ascending order."""
        sess = self.session
        if not sess.is_running:
            self.reset()
            return []
        if sess.fast_id != self._fast_id:
            self.notified.clear()
            self._fast_id = sess.fast_id

        hours = sess.elapsed_ms() / MS_PER_HOUR
        due = [t for t in self.thresholds if t <= hours and t not in self.notified]
        # Mark before awaiting so an overlapping tick cannot fire them again
        self.notified.update(due)
        for threshold in due:
            label = milestone_label(threshold)
            log.info(f"Milestone {threshold}h reached ({label}) for fast {sess.fast_id}")
            await self.notifier.notify_fast_milestone(threshold, label)
            if self.on_milestone:
                await self.on_milestone(threshold, label)
        return due


class HydrationReminderScheduler(PeriodicCheck):
    """Nudges about water during active hours while below the goal threshold.

    Fires on every tick the condition holds; there is no once-per-day latch.
    """

    name = "Hydration reminders"

    def __init__(
        self,
        notifier,
        get_current,
        get_goal,
        interval=2 * 60 * 60.0,
        active_hours=(8, 22),
        threshold=0.8,
        hour_fn=None,
    ):
        super().__init__(interval)
        self.notifier = notifier
        self._get_current = get_current
        self._get_goal = get_goal
        self.active_hours = active_hours
        self.threshold = threshold
        self._hour_fn = hour_fn or local_hour

    def should_remind(self):
        start, end = self.active_hours
        if not start <= self._hour_fn() <= end:
            return False
        goal = self._get_goal()
        return goal > 0 and self._get_current() < goal * self.threshold

    async def check(self):
        if not self.should_remind():
            return False
        return await self.notifier.notify_hydration(self._get_current(), self._get_goal())
