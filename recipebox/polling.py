"""Fixed-interval pollers tied to the authenticated session."""
import threading
from typing import Callable, Iterable, List, Optional

from .auth import SESSION_ENDED, SESSION_STARTED, SessionManager
from .config import get_logger

logger = get_logger("polling")


class Poller:
    """Calls `callback` every `interval` seconds on a daemon thread.

    The first call happens as soon as the poller starts. A poller can be
    stopped and started again; each start gets a fresh thread.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, immediate: bool = True) -> None:
        if self.running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop, immediate), name=f"poller-{self.name}", daemon=True
        )
        self._thread.start()
        logger.debug("Poller %s started (every %ss)", self.name, self.interval)

    def stop(self, wait: bool = False) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1)
        logger.debug("Poller %s stopped", self.name)

    def _run(self, stop: threading.Event, immediate: bool) -> None:
        if immediate:
            self._tick()
        while not stop.wait(self.interval):
            self._tick()

    def _tick(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception("Poller %s callback failed", self.name)


def bind_to_session(sessions: SessionManager, pollers: Iterable[Poller]) -> Callable[[], None]:
    """Run `pollers` exactly while a session is active.

    Returns an unsubscribe function.
    """
    pollers: List[Poller] = list(pollers)

    def _on_session(event, _session) -> None:
        if event == SESSION_STARTED:
            for poller in pollers:
                poller.start()
        elif event == SESSION_ENDED:
            for poller in pollers:
                poller.stop()

    if sessions.is_active:
        for poller in pollers:
            poller.start()
    return sessions.subscribe(_on_session)
