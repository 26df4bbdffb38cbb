"""Caller-owned cancellation signal for synchronous workflow operations."""

import threading

from clinical_kernel.exceptions import OperationCancelledError


class CancellationToken:
    """Cooperative cancellation flag.

    The caller keeps the token and may call ``cancel()`` from any thread.
    Workflow operations poll it at their checkpoints (after loading state and
    immediately before committing) and abort without writing anything.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self, operation: str) -> None:
        if self._event.is_set():
            raise OperationCancelledError(operation)


def check_cancelled(token: CancellationToken | None, operation: str) -> None:
    if token is not None:
        token.raise_if_cancelled(operation)
