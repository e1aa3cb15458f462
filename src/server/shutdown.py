"""Shutdown coordination for the key share server.

State machine: RUNNING -> SHUTTING_DOWN -> STOPPED.

The timeout timer, signal handlers and administrative stop all funnel into
request_stop(); only the first call wins. Signal handlers never touch the
HTTP server directly, the session thread performs the actual shutdown.
"""

import enum
import logging
import signal
import threading
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
POLL_INTERVAL = 0.5

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(enum.Enum):
    """Session lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownTrigger(enum.Enum):
    """What caused the session to stop."""
    TIMEOUT = "timeout"
    SIGNAL = "signal"
    ADMIN = "admin"
    ERROR = "error"


class ShutdownCoordinator:
    """One-shot shutdown gate shared by the timer, signals and callers."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self.state = ShutdownState.PENDING
        self.trigger: Optional[ShutdownTrigger] = None
        self.signum: Optional[int] = None
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None

        self._lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._stopped = threading.Event()
        self._finished = False
        self._timer: Optional[threading.Timer] = None
        self._previous_handlers: Dict[int, object] = {}

    def mark_running(self):
        """Enter RUNNING and start the timeout timer."""
        with self._lock:
            if self.state != ShutdownState.PENDING:
                return
            self.state = ShutdownState.RUNNING
            self.started_at = time.monotonic()

        if self.timeout and self.timeout > 0:
            self._timer = threading.Timer(self.timeout, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()
            logger.debug("Shutdown timer armed for %s seconds", self.timeout)

    def _on_timeout(self):
        if self.request_stop(ShutdownTrigger.TIMEOUT):
            logger.info("Timeout reached (%s seconds). Shutting down server...", self.timeout)

    def _on_signal(self, signum, frame):
        if self.request_stop(ShutdownTrigger.SIGNAL, signum=signum):
            logger.info("Received signal %d. Shutting down server...", signum)

    def request_stop(
        self,
        trigger: ShutdownTrigger = ShutdownTrigger.ADMIN,
        signum: Optional[int] = None,
    ) -> bool:
        """Request shutdown.

        Returns:
            True if this call initiated shutdown, False if a stop was
            already requested.
        """
        with self._lock:
            if self.trigger is not None:
                return False
            self.trigger = trigger
            self.signum = signum
            self.state = ShutdownState.SHUTTING_DOWN

        if self._timer is not None:
            self._timer.cancel()
        self._stop_requested.set()
        return True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def wait(self, poll_interval: float = POLL_INTERVAL) -> Optional[ShutdownTrigger]:
        """Block until a stop is requested.

        Wakes every poll_interval seconds so the main thread can run
        pending Python signal handlers.
        """
        while not self._stop_requested.wait(poll_interval):
            pass
        return self.trigger

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the session has reached STOPPED."""
        return self._stopped.wait(timeout)

    def finish(self, cleanup: Optional[Callable[[], object]] = None) -> bool:
        """Enter STOPPED and run cleanup exactly once.

        A stop is implicitly requested if none was (e.g. startup failure).

        Returns:
            True if this call performed the transition.
        """
        self.request_stop(ShutdownTrigger.ERROR)

        with self._lock:
            if self._finished:
                return False
            self._finished = True

        try:
            if cleanup is not None:
                cleanup()
        finally:
            with self._lock:
                self.state = ShutdownState.STOPPED
                self.stopped_at = time.monotonic()
            self._stopped.set()
        return True

    def install_signal_handlers(self) -> bool:
        """Route SIGINT/SIGTERM into request_stop().

        Only possible from the main thread; returns False elsewhere.
        """
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on main thread, signal handlers not installed")
            return False

        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
        return True

    def restore_signal_handlers(self):
        """Restore handlers saved by install_signal_handlers()."""
        for signum, handler in self._previous_handlers.items():
            # None means the previous handler was not installed from Python
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers = {}

    def elapsed(self) -> float:
        """Seconds since RUNNING began (0 if never started)."""
        if self.started_at is None:
            return 0.0
        end = self.stopped_at if self.stopped_at is not None else time.monotonic()
        return end - self.started_at
