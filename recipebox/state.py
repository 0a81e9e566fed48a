"""Observable state shared between synchronizers and views.

A StateCell holds one value and notifies subscribers on every write, so a
badge, a list and a detail view all read the same in-memory value. Writes
from poller threads and the UI loop are last-write-wins; `update` makes a
single read-modify-write atomic.
"""
import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .config import ROLLBACK_OPTIMISTIC, get_logger

logger = get_logger("state")

Subscriber = Callable[[Any], None]


class StateCell:
    def __init__(self, value: Any = None, name: str = ""):
        self.name = name
        self._value = value
        self._lock = threading.RLock()
        self._subscribers: List[Subscriber] = []

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        with self._lock:
            self._value = value
        self._notify(value)

    def update(self, fn: Callable[[Any], Any]) -> Any:
        with self._lock:
            value = fn(self._value)
            self._value = value
        self._notify(value)
        return value

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, value: Any) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber of %s failed", self.name or "cell")

    def __repr__(self) -> str:
        return f"StateCell({self.name!r}, {self._value!r})"


@dataclass
class OptimisticUpdate:
    """A local state change applied before the server confirms it.

    `compensate` must undo exactly what `apply` did.
    """
    apply: Callable[[], None]
    compensate: Callable[[], None]
    description: str = ""


def run_optimistic(update: OptimisticUpdate, call: Callable[[], Any],
                   rollback: Optional[bool] = None) -> Any:
    """Apply `update`, then run `call`.

    When the call raises and rollback is enabled, the update is compensated
    before the exception is re-raised.
    """
    if rollback is None:
        rollback = ROLLBACK_OPTIMISTIC
    update.apply()
    try:
        return call()
    except Exception:
        if rollback:
            logger.debug("Rolling back optimistic update: %s", update.description)
            update.compensate()
        else:
            logger.debug("Keeping optimistic update after failure: %s", update.description)
        raise
