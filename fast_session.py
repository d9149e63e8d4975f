"""
FastSession: owns the in-progress fast and reconciles it with the backend.

Invariants:
  - paused_at is set if and only if status is PAUSED.
  - elapsed = (paused_at or now) - start_time - paused_duration, never < 0,
    and 0 whenever no fast is running.
  - start_fast() never touches local state before the backend confirms.

The backend store, notification gateway and clock are injected, so each
test builds its own isolated instance.
"""

import logging
import math
from enum import Enum

import config
from clock import MS_PER_DAY, MS_PER_HOUR, format_timestamp, parse_timestamp, wall_clock_ms
from fasting_zones import (
    CUSTOM_PROTOCOL,
    DEFAULT_PROTOCOL,
    MAX_TARGET_HOURS,
    MIN_TARGET_HOURS,
    PROTOCOLS,
    format_hms,
    format_remaining,
    progress_percent,
    protocol_hours,
    remaining_ms,
    status_line,
    zone_for_hours,
)
from session_store import EndResult

log = logging.getLogger("fasting")

STALE_AFTER_MS = 7 * MS_PER_DAY
MAX_BACKDATE_MINUTES = 24 * 60
STALE_END_NOTE = "Auto-ended: stale fast data"


class FastStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"


class FastInProgressError(RuntimeError):
    """Raised when an operation needs an idle session but a fast is running."""


class FastSession:
    """Single source of truth for the current fast."""

    def __init__(self, store, notifier=None, clock=None, sync_debounce_ms=None):
        self._store = store
        self._notifier = notifier
        self._clock = clock or wall_clock_ms
        if sync_debounce_ms is None:
            sync_debounce_ms = config.get("sync_debounce") * 1000
        self.sync_debounce_ms = sync_debounce_ms
        self._initializing = False
        self.protocol = DEFAULT_PROTOCOL
        self.target_hours = PROTOCOLS[DEFAULT_PROTOCOL]["fast_hours"]
        self.loading = False
        self.initialized = False
        self.last_sync_time = None
        self._clear_fast()

    def _clear_fast(self):
        self.fast_id = None
        self.status = FastStatus.IDLE
        self.start_time = None
        self.paused_at = None
        self.paused_duration = 0.0

    def reset(self):
        """Back to the freshly constructed state."""
        self._clear_fast()
        self.protocol = DEFAULT_PROTOCOL
        self.target_hours = PROTOCOLS[DEFAULT_PROTOCOL]["fast_hours"]
        self.loading = False
        self.initialized = False
        self.last_sync_time = None

    @property
    def is_running(self):
        return self.status in (FastStatus.ACTIVE, FastStatus.PAUSED)

    # ---- Reconciliation ----

    async def initialize_from_remote(self):
        """Adopt the backend's active fast, or go idle. Re-entrant calls are no-ops."""
        if self._initializing:
            return
        self._initializing = True
        self.loading = True
        try:
            try:
                remote = await self._store.fetch_active_session()
            except Exception as e:
                log.error(f"Failed to fetch active fast: {e}")
                self._clear_fast()
                return

            if remote is None:
                log.info("No active fast on server")
                self._clear_fast()
                return

            now = self._clock()
            start = parse_timestamp(remote.start_time)
            if start is None or now - start > STALE_AFTER_MS:
                log.warning(f"Server returned stale/invalid fast {remote.id} (start={remote.start_time!r}), auto-ending")
                if remote.id is not None:
                    try:
                        await self._store.end_session(remote.id, notes=STALE_END_NOTE)
                    except Exception as e:
                        log.error(f"Failed to end stale fast {remote.id}: {e}")
                self._clear_fast()
                return

            self._adopt(remote, start)
            log.info(f"Active fast {self.fast_id} restored ({self.status.value})")
        finally:
            self.initialized = True
            self.last_sync_time = self._clock()
            self.loading = False
            self._initializing = False

    def _adopt(self, remote, start):
        paused_at = parse_timestamp(remote.paused_at)
        if remote.paused_at and paused_at is None:
            log.warning(f"Ignoring unparseable pausedAt {remote.paused_at!r}")
        self.fast_id = remote.id
        self.start_time = start
        self.target_hours = remote.target_hours or PROTOCOLS[DEFAULT_PROTOCOL]["fast_hours"]
        if remote.protocol and remote.protocol not in PROTOCOLS:
            log.warning(f"Fast {remote.id} uses unlisted protocol {remote.protocol!r}, keeping its target")
        self.protocol = remote.protocol or DEFAULT_PROTOCOL
        self.paused_at = paused_at
        self.paused_duration = float(remote.paused_duration_ms)
        self.status = FastStatus.PAUSED if paused_at is not None else FastStatus.ACTIVE

    async def sync_with_remote(self):
        """Periodic refresh; skipped if the last sync was under sync_debounce_ms ago."""
        if self.last_sync_time is not None and self._clock() - self.last_sync_time < self.sync_debounce_ms:
            return
        await self.initialize_from_remote()

    # ---- Mutators ----

    async def start_fast(self, protocol=None, backdate_minutes=0):
        """Create a fast on the backend and adopt its id and start time.

        Raises on any backend failure without touching local state.
        """
        selected = protocol or self.protocol
        # An unlisted protocol adopted from the backend restarts with its own target
        if selected == CUSTOM_PROTOCOL or (protocol is None and selected not in PROTOCOLS):
            target = self.target_hours
        else:
            target = protocol_hours(selected)
        if not 0 <= backdate_minutes <= MAX_BACKDATE_MINUTES:
            raise ValueError(f"backdate_minutes must be between 0 and {MAX_BACKDATE_MINUTES}")

        self.loading = True
        try:
            remote = await self._store.create_session(selected, target, backdate_minutes)
            start = parse_timestamp(remote.start_time)
            if remote.id is None or start is None:
                raise ValueError(f"Server returned an unusable fast: id={remote.id} start={remote.start_time!r}")
        except Exception as e:
            log.error(f"Failed to start fast: {e}")
            raise
        finally:
            self.loading = False

        self.fast_id = remote.id
        self.start_time = start
        self.target_hours = remote.target_hours or target
        self.protocol = selected
        self.paused_at = None
        self.paused_duration = 0.0
        self.status = FastStatus.ACTIVE
        self.last_sync_time = self._clock()
        log.info(f"Fast {self.fast_id} started ({selected}, {self.target_hours}h)")

        if self._notifier:
            await self._notifier.notify_fast_start(selected)

    async def end_fast(self, notes=None, mood=None):
        """End the fast. Local state always returns to idle, even if the backend fails."""
        if self.fast_id is None:
            self._clear_fast()
            return EndResult()

        fast_id = self.fast_id
        elapsed_hours = self.elapsed_ms() / MS_PER_HOUR
        self.loading = True
        try:
            result = await self._store.end_session(fast_id, notes=notes, mood=mood)
        except Exception as e:
            log.error(f"Failed to end fast {fast_id} on server: {e}")
            self._clear_fast()
            return EndResult()
        finally:
            self.loading = False

        self._clear_fast()
        self.last_sync_time = self._clock()
        log.info(f"Fast {fast_id} ended after {elapsed_hours:.2f}h (streak={result.streak})")

        if self._notifier:
            if elapsed_hours > 0:
                await self._notifier.notify_fast_complete(elapsed_hours)
            if result.freeze_earned:
                await self._notifier.notify_achievement(
                    "Streak Freeze Earned!",
                    f"You hit a {result.streak}-day milestone! A Streak Freeze has been added to your collection.",
                )
        return result

    async def pause_fast(self):
        """Pause locally right away, then tell the backend (failure keeps the local pause)."""
        if self.status != FastStatus.ACTIVE:
            return
        self.paused_at = self._clock()
        self.status = FastStatus.PAUSED
        log.info(f"Fast {self.fast_id} paused")
        if self.fast_id is not None:
            try:
                await self._store.pause_session(self.fast_id)
            except Exception as e:
                log.warning(f"Failed to pause fast {self.fast_id} on server: {e}")

    async def resume_fast(self):
        """Fold the current pause into paused_duration, then tell the backend."""
        if self.status != FastStatus.PAUSED or self.paused_at is None:
            return
        self.paused_duration += max(self._clock() - self.paused_at, 0.0)
        self.paused_at = None
        self.status = FastStatus.ACTIVE
        log.info(f"Fast {self.fast_id} resumed (paused {self.paused_duration / 1000:.0f}s total)")
        if self.fast_id is not None:
            try:
                await self._store.resume_session(self.fast_id)
            except Exception as e:
                log.warning(f"Failed to resume fast {self.fast_id} on server: {e}")

    def set_protocol(self, protocol):
        """Pick the protocol for the next fast. Rejected while a fast is running."""
        hours = protocol_hours(protocol)
        if self.is_running:
            raise FastInProgressError("Cannot change protocol during an active fast")
        self.protocol = protocol
        if protocol != CUSTOM_PROTOCOL:
            self.target_hours = hours

    def set_custom_hours(self, hours):
        if not MIN_TARGET_HOURS <= hours <= MAX_TARGET_HOURS:
            raise ValueError(f"Target hours must be between {MIN_TARGET_HOURS} and {MAX_TARGET_HOURS}")
        if self.is_running:
            raise FastInProgressError("Cannot change target during an active fast")
        self.protocol = CUSTOM_PROTOCOL
        self.target_hours = hours

    # ---- Derived reads ----

    def elapsed_ms(self):
        if not self.is_running or self.start_time is None:
            return 0.0
        now = self.paused_at if self.paused_at is not None else self._clock()
        elapsed = now - self.start_time - self.paused_duration
        if math.isnan(elapsed) or elapsed < 0:
            return 0.0
        return elapsed

    def progress(self):
        if not self.is_running:
            return 0.0
        return progress_percent(self.elapsed_ms(), self.target_hours)

    def remaining_ms(self):
        if not self.is_running:
            return 0.0
        return remaining_ms(self.elapsed_ms(), self.target_hours)

    def current_zone(self):
        return zone_for_hours(self.elapsed_ms() / MS_PER_HOUR)

    def to_dict(self):
        """Snapshot for the REST API and WebSocket broadcast."""
        elapsed = self.elapsed_ms()
        zone = self.current_zone()
        return {
            "type": "fast",
            "id": self.fast_id,
            "status": self.status.value,
            "protocol": self.protocol,
            "target_hours": self.target_hours,
            "start_time": format_timestamp(self.start_time),
            "paused_at": format_timestamp(self.paused_at),
            "paused_duration_ms": self.paused_duration,
            "elapsed_ms": elapsed,
            "remaining_ms": self.remaining_ms(),
            "elapsed_text": format_hms(elapsed),
            "progress": self.progress(),
            "zone": zone.to_dict() if zone else None,
            "remaining_text": format_remaining(elapsed, self.target_hours) if self.is_running else None,
            "status_text": status_line(elapsed, self.target_hours) if self.is_running else None,
            "loading": self.loading,
            "initialized": self.initialized,
            "last_sync_time": format_timestamp(self.last_sync_time),
        }
