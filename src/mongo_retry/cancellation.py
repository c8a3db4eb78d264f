from __future__ import annotations
import threading

from .errors import OperationCancelled


class CancellationToken:
    """
    Cooperative cancellation shared between a caller and the channel layer.

    The executor never polls it; channels and channel sources call
    `raise_if_cancelled()` at their network boundaries.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation was cancelled")


def raise_if_cancelled(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()
