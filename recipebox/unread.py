"""Authoritative unread counters (messages, notifications)."""
from typing import Callable

from .api_interface import APIError
from .auth import AuthError
from .config import get_logger
from .state import StateCell

logger = get_logger("unread")


class UnreadCounter:
    """A single unread count, re-fetched from the server.

    The value is never derived from local lists. Local changes
    (`decrement`, `reset`) only bridge the gap until the next
    fetch overwrites them.
    """

    def __init__(self, name: str, fetch_count: Callable[[], int]):
        self.name = name
        self._fetch_count = fetch_count
        self.count = StateCell(0, name=f"{name}.unread")
        self.loading = StateCell(False, name=f"{name}.loading")
        self.error = StateCell(None, name=f"{name}.error")

    @property
    def value(self) -> int:
        return self.count.get()

    def fetch(self) -> int:
        """Refresh from the server. Failures keep the stale value."""
        self.loading.set(True)
        try:
            fresh = max(0, int(self._fetch_count()))
        except APIError as e:
            if e.is_rate_limited:
                logger.info("%s unread count rate limited; will retry on next poll", self.name)
            else:
                logger.debug("%s unread count fetch failed: %s", self.name, e)
                self.error.set(e.message)
            return self.value
        except AuthError as e:
            logger.debug("%s unread count skipped: %s", self.name, e)
            return self.value
        finally:
            self.loading.set(False)

        self.count.set(fresh)
        self.error.set(None)
        return fresh

    def decrement(self, amount: int = 1) -> int:
        return self.count.update(lambda current: max(0, current - amount))

    def reset(self) -> None:
        self.count.set(0)
