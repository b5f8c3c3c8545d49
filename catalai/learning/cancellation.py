"""Cooperative cancellation for long-running batch work."""

from __future__ import annotations

import threading

from catalai.errors import OperationCancelledError


class CancellationToken:
    """Thread-safe flag checked by batch scans between batches.

    Safe to cancel from the event loop while the scan runs in a worker
    thread.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelledError(f"{operation} was cancelled")
