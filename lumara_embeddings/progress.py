"""Progress broadcasting for cold-start model loading."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressState:
    """Snapshot of a long-running operation."""

    percent: float = 0.0
    message: str = ""
    failed: bool = False


ProgressCallback = Callable[[ProgressState], None]


class ProgressTracker:
    """Fan out progress updates to zero or more subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[ProgressCallback] = []
        self._state = ProgressState()

    @property
    def state(self) -> ProgressState:
        return self._state

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register ``callback`` and return a function that unsubscribes it.

        A subscriber that joins mid-operation immediately receives the current
        state so late callers do not miss where the load stands.
        """
        self._subscribers.append(callback)
        if self._state.percent > 0 or self._state.failed:
            self._notify(callback, self._state)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def update(self, percent: float, message: str = "") -> None:
        self._state = ProgressState(percent=max(0.0, min(100.0, float(percent))), message=message)
        for callback in list(self._subscribers):
            self._notify(callback, self._state)

    def complete(self, message: str = "Complete") -> None:
        self.update(100.0, message)

    def error(self, message: str) -> None:
        self._state = ProgressState(
            percent=self._state.percent,
            message=f"Error: {message}",
            failed=True,
        )
        for callback in list(self._subscribers):
            self._notify(callback, self._state)

    def reset(self) -> None:
        self._state = ProgressState()

    def has_subscribers(self) -> bool:
        return bool(self._subscribers)

    @staticmethod
    def _notify(callback: ProgressCallback, state: ProgressState) -> None:
        try:
            callback(state)
        except Exception:
            logger.exception("Progress subscriber raised; continuing")
