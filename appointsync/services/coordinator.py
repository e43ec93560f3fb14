"""Process-local gate that keeps sync runs from overlapping or firing too often."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..models import CoordinatorStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """
    Mutual-exclusion and rate-limit gate for reconciliation and sweeps.

    Not a queue and not a distributed lock: a refused ``start()`` means the
    caller skips its run. Every successful ``start()`` must be paired with
    ``stop()`` in a ``finally`` block.
    """

    def __init__(
        self,
        min_interval: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self.running = False
        self.last_run_at: Optional[datetime] = None

    def can_run(self) -> bool:
        if self.running:
            logger.info("Sync already running, skipping")
            return False

        if self.last_run_at is not None:
            elapsed = self._clock() - self.last_run_at
            if elapsed < self.min_interval:
                logger.info(f"Sync too frequent ({int(elapsed.total_seconds())}s ago), skipping")
                return False

        return True

    def start(self) -> bool:
        """Claim the gate. Returns False instead of raising when refused."""
        if not self.can_run():
            return False
        self.running = True
        self.last_run_at = self._clock()
        return True

    def stop(self) -> None:
        """Release the gate unconditionally."""
        self.running = False

    def force_reset(self) -> None:
        """Clear both the running flag and the rate limit."""
        logger.warning("Force resetting sync state")
        self.running = False
        self.last_run_at = None

    def status(self) -> CoordinatorStatus:
        """Get status for monitoring."""
        since = None
        if self.last_run_at is not None:
            since = (self._clock() - self.last_run_at).total_seconds()
        return CoordinatorStatus(
            running=self.running,
            last_run_at=self.last_run_at,
            seconds_since_last_run=since,
        )
