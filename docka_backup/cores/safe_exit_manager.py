"""
Signal handling for docka-backup.

SIGTERM, SIGINT and SIGHUP do not kill the process. They set a cancellation
event instead: targets that have not started are skipped, targets already
inside a stop/restart bracket finish and restart their containers, and the
run ends with a summary that reports the cancellation.
"""

from __future__ import annotations

import signal
import threading
from typing import Dict, Optional

from ..helpers.logging import get_logger

logger = get_logger(__name__)

_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class SafeExitManager:
    """
    Process-wide cancellation flag driven by signals.

    Use :meth:`get_instance`; the instance is shared by the CLI (which
    installs the handlers) and the managers (which poll the event).
    """

    _instance: Optional[SafeExitManager] = None
    _instance_lock = threading.Lock()
    _creating = False

    def __init__(self):
        if not SafeExitManager._creating:
            raise RuntimeError("Use SafeExitManager.get_instance() instead of direct instantiation")
        self._cancel_event = threading.Event()
        self._original_handlers: Dict[int, object] = {}
        self._signal_count = 0
        self._reason: Optional[str] = None

    @classmethod
    def get_instance(cls) -> SafeExitManager:
        with cls._instance_lock:
            if cls._instance is None:
                cls._creating = True
                try:
                    cls._instance = cls()
                finally:
                    cls._creating = False
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the shared instance, restoring any installed handlers (tests)."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.restore_handlers()
            cls._instance = None

    # ---- cancellation ----

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def request_cancel(self, reason: str) -> None:
        if not self._cancel_event.is_set():
            self._reason = reason
            logger.warning(f"Cancellation requested ({reason}); finishing in-flight targets")
        self._cancel_event.set()

    # ---- signal handlers ----

    def install_handlers(self) -> None:
        """Install handlers; only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, signal handlers not installed")
            return
        for signum in _SIGNALS:
            if signum not in self._original_handlers:
                self._original_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._signal_handler)
        logger.debug("Signal handlers installed")

    def restore_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum, handler in self._original_handlers.items():
            signal.signal(signum, handler)
        self._original_handlers.clear()

    def _signal_handler(self, signum, frame) -> None:
        self._signal_count += 1
        name = signal.Signals(signum).name
        if self._signal_count > 1:
            logger.warning(f"Received {name} again; waiting for containers to be restarted")
        self.request_cancel(name)
