"""
Cancellation support for Salsa Sync.

A single CancellationToken is created at startup and shared by every client.
Termination signals mark it cancelled and interrupt whatever call is in flight.
"""

import signal
import logging
from typing import Optional

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = ('SIGHUP', 'SIGINT', 'SIGTERM', 'SIGQUIT')


class SyncCancelled(Exception):
    """Raised when the run has been cancelled by a termination signal."""
    pass


class CancellationToken:
    """Cooperative cancellation flag checked before every network call."""

    def __init__(self):
        self.cancelled = False
        self.reason = None

    def cancel(self, reason: str = 'cancelled'):
        self.cancelled = True
        self.reason = reason

    def raise_if_cancelled(self):
        if self.cancelled:
            raise SyncCancelled(f"Run cancelled: {self.reason}")


def install_signal_handlers(token: CancellationToken) -> dict:
    """
    Route termination signals to the token.

    The handler cancels the token and raises SyncCancelled in the main thread,
    which aborts a blocking socket call in progress.

    Returns:
        Mapping of signal number to the previous handler, for restore_signal_handlers
    """
    def _handler(signum, frame):
        name = signal.Signals(signum).name
        logger.warning(f"Received {name}, cancelling sync")
        token.cancel(name)
        raise SyncCancelled(f"Run cancelled: {name}")

    previous = {}
    for name in TERMINATION_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, _handler)
    return previous


def restore_signal_handlers(previous: Optional[dict]):
    for signum, handler in (previous or {}).items():
        signal.signal(signum, handler)
