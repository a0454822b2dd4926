"""
Caller-supplied cancellation for long candidate scans.

A token combines an optional deadline (monotonic clock) with an explicit
`cancel()` switch that another thread/task may flip.
"""

from __future__ import annotations

import threading
import time

from proxisearch.core.errors import Cancelled


class CancellationToken:
    def __init__(self, timeout_s: float | None = None):
        if timeout_s is not None and float(timeout_s) < 0:
            raise ValueError("timeout_s must be >= 0")
        self._deadline = time.monotonic() + float(timeout_s) if timeout_s is not None else None
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("search cancelled by caller")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise Cancelled("search deadline exceeded")
