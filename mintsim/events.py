"""
Logging setup and the one-way event stream.

Every component logs on the "mint-sim" logger hierarchy. EventStream is a
logging handler that turns those records into text lines and fans them
out to subscribers (e.g. a live-log view), keeping a short backlog for
late subscribers.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List

LOGGER_NAME = "mint-sim"
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

Subscriber = Callable[[str], None]


def configure_logging(level: int = logging.INFO) -> None:
    """Console logging for scripts."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)


class EventStream(logging.Handler):
    """Broadcasts formatted log lines to subscribers."""

    MAX_BACKLOG = 500

    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        self._subscribers: List[Subscriber] = []
        self._backlog: Deque[str] = deque(maxlen=self.MAX_BACKLOG)
        self._lock = threading.Lock()

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(fn)

        def _unsubscribe():
            with self._lock:
                if fn in self._subscribers:
                    self._subscribers.remove(fn)

        return _unsubscribe

    def broadcast(self, line: str) -> None:
        with self._lock:
            self._backlog.append(line)
            subscribers = list(self._subscribers)

        for fn in subscribers:
            try:
                fn(line)
            except Exception:
                # A broken subscriber is dropped, never the engine
                with self._lock:
                    if fn in self._subscribers:
                        self._subscribers.remove(fn)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        self.broadcast(line)

    def recent(self, n: int = 50) -> List[str]:
        with self._lock:
            return list(self._backlog)[-n:]

    def attach(self, logger_name: str = LOGGER_NAME) -> None:
        logger = logging.getLogger(logger_name)
        if self not in logger.handlers:
            logger.addHandler(self)
        if logger.level == logging.NOTSET or logger.level > self.level:
            logger.setLevel(self.level)

    def detach(self, logger_name: str = LOGGER_NAME) -> None:
        logging.getLogger(logger_name).removeHandler(self)
