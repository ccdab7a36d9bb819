"""Signal handler registration for graceful monitor shutdown."""

import logging
import signal
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class SignalHandler:
    """Turns SIGTERM/SIGINT into an orderly stop of registered callbacks.

    The rollback monitor registers its ``stop`` here so that an operator's
    Ctrl-C ends the loop at the next polling boundary instead of killing
    a switch halfway through.
    """

    def __init__(self):
        self._shutdown_flag = threading.Event()
        self._shutdown_callbacks: List[Callable[[], None]] = []
        self._original_handlers: Dict[int, object] = {}

    @property
    def shutdown_requested(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._shutdown_flag.is_set()

    def register_shutdown_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback to be invoked on shutdown signal."""
        self._shutdown_callbacks.append(callback)

    def _handle_signal(self, signum: int, frame) -> None:
        logger.warning("Received signal %s, shutting down", signal.Signals(signum).name)
        if not self._shutdown_flag.is_set():
            self._shutdown_flag.set()
            self._trigger_shutdown()

    def _trigger_shutdown(self) -> None:
        for callback in self._shutdown_callbacks:
            try:
                callback()
            except Exception as exc:
                logger.error("Shutdown callback failed: %s", exc)

    def register_signals(self, signals: Optional[List[int]] = None) -> None:
        """Register handlers for SIGTERM and SIGINT (or the given signals)."""
        if signals is None:
            signals = [signal.SIGTERM, signal.SIGINT]

        for sig in signals:
            try:
                self._original_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except (OSError, ValueError) as exc:
                # Only the main thread may install handlers.
                logger.warning("Cannot register handler for signal %d: %s", sig, exc)

    def restore_signals(self) -> None:
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError) as exc:
                logger.warning("Cannot restore handler for signal %d: %s", sig, exc)
        self._original_handlers.clear()
