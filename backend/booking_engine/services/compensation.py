"""
Compensating actions for multi-step slot writes.

Each successful step registers its undo; on failure the undos run in
reverse order. A failing undo is logged and the remaining undos still run.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Compensations:
    def __init__(self, label: str):
        self.label = label
        self._actions: list[tuple[str, Callable[[], None]]] = []

    def __len__(self) -> int:
        return len(self._actions)

    def push(self, description: str, action: Callable[[], None]) -> None:
        self._actions.append((description, action))

    def rollback(self) -> int:
        """
        Run registered undos in reverse.

        Returns:
            Number of undos that failed.
        """
        failed = 0
        if self._actions:
            logger.warning(f"{self.label}: rolling back {len(self._actions)} step(s)")

        for description, action in reversed(self._actions):
            try:
                action()
            except Exception:
                failed += 1
                logger.exception(f"{self.label}: rollback step failed: {description}")

        self._actions.clear()
        return failed
