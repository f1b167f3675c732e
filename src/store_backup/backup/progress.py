"""Progress tracking for export/import runs.

A ``ProgressTracker`` is owned by the server process and passed to the
exporter and importers; pollers read it through ``get()``.  It also acts
as an advisory single-flight lock: only one export or import may hold
the tracker at a time, so two admins cannot interleave their progress.

Usage:
    tracker = ProgressTracker()

    async with tracker.run("export"):
        tracker.set(phase="Exporting...", tables_total=80)
        ...

    tracker.get().progress
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

from store_backup.backup.errors import OperationInProgressError
from store_backup.backup.models import ProgressState

logger = logging.getLogger(__name__)

Operation = Literal["export", "import"]

# A claim not released within this many seconds may be taken over
DEFAULT_STALE_AFTER = 30 * 60


def percent(done: int, total: int) -> int:
    """Rounded percentage clamped to 0..100 (0 when ``total`` is 0)."""
    if total <= 0:
        return 0
    return max(0, min(100, round(done / total * 100)))


class ProgressTracker:
    """Process-wide progress cell with last-write-wins updates."""

    def __init__(self, stale_after: float = DEFAULT_STALE_AFTER) -> None:
        self._state = ProgressState()
        self._stale_after = stale_after
        self._claim: str | None = None
        self._claimed_at: float = 0.0
        self._reset_handle: asyncio.TimerHandle | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get(self) -> ProgressState:
        return self._state.model_copy()

    def set(self, **changes) -> None:
        """Shallow-merge ``changes`` into the current state."""
        if "progress" in changes:
            changes["progress"] = max(0, min(100, int(changes["progress"])))
        if "phase" in changes and changes["phase"] != self._state.phase:
            logger.debug("Backup phase: %s", changes["phase"])
        self._state = self._state.model_copy(update=changes)

    def reset(self) -> None:
        self._state = ProgressState()

    def fail(self, message: str) -> None:
        """Leave an error for pollers instead of a stale 'in progress'."""
        self.set(operation="idle", phase="", progress=0, error=message)

    def schedule_reset(self, delay: float) -> None:
        """Reset to idle after ``delay`` seconds on the running loop."""
        self._cancel_pending_reset()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reset_handle = loop.call_later(delay, self._delayed_reset)

    def _delayed_reset(self) -> None:
        self._reset_handle = None
        if self._claim is None:
            self.reset()

    def _cancel_pending_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    # ------------------------------------------------------------------
    # Single flight
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._claim is not None and not self._claim_is_stale()

    def _claim_is_stale(self) -> bool:
        return time.monotonic() - self._claimed_at > self._stale_after

    def claim(self, operation: Operation) -> str:
        """Take the tracker for ``operation`` and reset the visible state.

        Returns:
            Token to pass to ``release()``.

        Raises:
            OperationInProgressError: If another run holds the tracker.
        """
        if self.busy:
            raise OperationInProgressError(
                f"A backup {self._state.operation} is already running"
            )
        if self._claim is not None:
            logger.warning("Taking over stale backup claim %s", self._claim)

        self._cancel_pending_reset()
        self._claim = uuid.uuid4().hex
        self._claimed_at = time.monotonic()
        self.reset()
        self.set(operation=operation)
        return self._claim

    def touch(self, token: str) -> bool:
        """Refresh the claim held by ``token``.

        Returns:
            False if ``token`` no longer holds the tracker.
        """
        if self._claim != token:
            return False
        self._claimed_at = time.monotonic()
        return True

    def release(self, token: str) -> None:
        if self._claim == token:
            self._claim = None

    @asynccontextmanager
    async def run(self, operation: Operation) -> AsyncIterator[str]:
        """Hold the tracker for the duration of the block."""
        token = self.claim(operation)
        try:
            yield token
        finally:
            self.release(token)
