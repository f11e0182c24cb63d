"""Run several processes as one fate-sharing group."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from .process_manager import ProcessUnit
from .scope import CancelScope

logger = logging.getLogger("ffcat")


class ProcessGroup:
    """Start and wait a set of units that fail together.

    Members should be built with the group's scope so that cancelling it
    (on any start or wait failure) kills the rest of the pipeline::

        group, scope = ProcessGroup.with_scope()
        producer = FFmpegCommand(..., scope=scope)
        consumer = FFmpegCommand(..., scope=scope)
        errors = group.run(producer, consumer)
    """

    def __init__(self, scope: CancelScope):
        self.scope = scope
        self.units: list[ProcessUnit] = []

    @classmethod
    def with_scope(cls, parent: Optional[CancelScope] = None) -> tuple["ProcessGroup", CancelScope]:
        """Create a group and the scope its members should use."""
        scope = CancelScope(parent)
        return cls(scope), scope

    def add(self, unit: ProcessUnit) -> None:
        """Register a unit for the next :meth:`run`."""
        self.units.append(unit)

    def run(self, *units: ProcessUnit) -> list[Exception]:
        """Start all units, wait for all of them and return the wait errors.

        Every unit gets a start attempt even if an earlier one failed, and
        every unit is waited on even after the scope was cancelled, so
        descriptors shared between members are always released. Start
        errors are not returned separately; a unit that failed to start
        fails its wait as well.
        """
        self.units.extend(units)

        start_failed = False
        for unit in self.units:
            try:
                unit.start()
            except Exception as exc:
                logger.warning("Failed to start %r: %s", unit, exc)
                start_failed = True
        if start_failed:
            self.scope.cancel()

        wait_errors: list[Exception] = []
        with ThreadPoolExecutor(
            max_workers=max(1, len(self.units)),
            thread_name_prefix="ffcat-group",
        ) as pool:
            futures = [pool.submit(unit.wait) for unit in self.units]
            for future in as_completed(futures):
                exc = future.exception()
                if exc is not None:
                    logger.debug("Group member failed: %s", exc)
                    wait_errors.append(exc)
                    self.scope.cancel()

        self.scope.cancel()
        return wait_errors
