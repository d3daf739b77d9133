"""Graceful shutdown handling for long-running sync runs.

A first SIGINT/SIGTERM lets the current row finish and stops the run
before the next one; a second signal quits immediately.
"""

import signal
import sys
import threading
from typing import Optional

from feedsync.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "shutdown_requested",
    "interruptible_sleep",
]

logger = get_logger("shutdown")


class ShutdownHandler:
    """Tracks whether a shutdown was requested via signal.

    Usage:
        handler = get_shutdown_handler().install()
        for row in rows:
            if handler.shutdown_requested:
                break
            ...
        handler.uninstall()
    """

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._shutdown_requested = threading.Event()
        self._original_sigint = None
        self._original_sigterm = None
        self._installed = False

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        """Get or create the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def install(self) -> "ShutdownHandler":
        """Install signal handlers.

        Returns:
            Self for chaining
        """
        if self._installed:
            return self

        self._original_sigint = signal.getsignal(signal.SIGINT)
        self._original_sigterm = signal.getsignal(signal.SIGTERM)

        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self._installed = True
        return self

    def uninstall(self) -> None:
        """Restore original signal handlers."""
        if not self._installed:
            return

        if self._original_sigint is not None:
            signal.signal(signal.SIGINT, self._original_sigint)
        if self._original_sigterm is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm)

        self._installed = False

    def _handle_signal(self, signum: int, frame) -> None:
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.warning(
            f"Received {signal_name}, stopping after the current row "
            f"(send again to force quit)"
        )
        self._shutdown_requested.set()
        signal.signal(signum, self._force_exit)

    def _force_exit(self, signum: int, frame) -> None:
        logger.error("Force quitting")
        sys.exit(130)

    @property
    def shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested.is_set()

    def request_shutdown(self) -> None:
        self._shutdown_requested.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on shutdown.

        Returns:
            True if the full wait elapsed, False if shutdown interrupted it
        """
        if seconds <= 0:
            return not self.shutdown_requested
        return not self._shutdown_requested.wait(timeout=seconds)

    def reset(self) -> None:
        """Reset shutdown state (for testing or reuse)."""
        self._shutdown_requested.clear()


def get_shutdown_handler() -> ShutdownHandler:
    """Get the global shutdown handler instance."""
    return ShutdownHandler.get_instance()


def shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return get_shutdown_handler().shutdown_requested


def interruptible_sleep(seconds: float) -> None:
    """Backoff sleep that returns early when a shutdown is requested."""
    get_shutdown_handler().wait(seconds)
