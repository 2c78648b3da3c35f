"""
In-flight operation guard.

Keeps a process-local set of operation ids that are currently being
processed. A second ``acquire`` of the same id while the first is still
running raises ``OperationInFlightError``. This only deduplicates repeated
submissions within one process; cross-process races are settled by the
database's conditional update.

Usage:
    with decision_guard.hold(f"admin-request:{request_id}"):
        ...
"""

import threading
from contextlib import contextmanager

from shiftcheck.core.exceptions import OperationInFlightError


class InFlightGuard:
    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def acquire(self, operation_id: str) -> None:
        with self._lock:
            if operation_id in self._active:
                raise OperationInFlightError(operation_id)
            self._active.add(operation_id)

    def release(self, operation_id: str) -> None:
        with self._lock:
            self._active.discard(operation_id)

    def is_active(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._active

    @contextmanager
    def hold(self, operation_id: str):
        self.acquire(operation_id)
        try:
            yield operation_id
        finally:
            self.release(operation_id)


decision_guard = InFlightGuard()
