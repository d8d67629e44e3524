"""Polling change detection for stores without push notifications."""

import logging
import time
from collections.abc import Callable

from .engine import SettlementEngine
from .exceptions import ConfigurationError, TransportError
from .models import ExpenseRecord

logger = logging.getLogger(__name__)


class PollingWatcher:
    """Re-list a trip's expenses on an interval and resync on change.

    Runs in the caller's thread. Each poll fetches a full snapshot and
    replaces the engine's working set only when the snapshot differs, so
    the last completed poll always wins.
    """

    def __init__(
        self,
        engine: SettlementEngine,
        interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the watcher."""
        if engine.store is None:
            raise ConfigurationError("Watching needs a store; demo mode is static")
        self.engine = engine
        self.interval = interval
        self._sleep = sleep

    def poll_once(self) -> bool:
        """
        Fetch a snapshot and resync if it changed.

        Returns:
            True if the working set was replaced

        Raises:
            TransportError: If the store cannot be read
        """
        snapshot = self.engine.fetch()
        if snapshot == self.engine.records:
            return False

        self.engine.resync(snapshot)
        logger.info(f"Store changed; {len(snapshot)} expenses after resync")
        return True

    def run(
        self,
        on_change: Callable[[list[ExpenseRecord]], None] | None = None,
        max_polls: int | None = None,
    ):
        """
        Poll until interrupted (or for ``max_polls`` polls).

        Transport errors are logged and the next poll tries again.

        Args:
            on_change: Called with the new working set after each resync
            max_polls: Stop after this many polls; None polls forever
        """
        polls = 0
        while max_polls is None or polls < max_polls:
            try:
                if self.poll_once() and on_change is not None:
                    on_change(self.engine.records)
            except TransportError as e:
                logger.warning(f"Poll failed, will retry: {e}")

            polls += 1
            if max_polls is None or polls < max_polls:
                self._sleep(self.interval)
