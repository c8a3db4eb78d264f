from __future__ import annotations
from typing import Any, Iterable, Mapping, Optional

TRANSIENT_TRANSACTION_ERROR = "TransientTransactionError"
UNKNOWN_TRANSACTION_COMMIT_RESULT = "UnknownTransactionCommitResult"
RETRYABLE_WRITE_ERROR = "RetryableWriteError"


class MongoError(Exception):
    """Base class for every database-level error. Carries server error labels."""

    def __init__(self, message: str = "", *, error_labels: Optional[Iterable[str]] = None):
        super().__init__(message)
        self._error_labels = set(error_labels or ())

    @property
    def error_labels(self) -> frozenset[str]:
        return frozenset(self._error_labels)

    def has_error_label(self, label: str) -> bool:
        return label in self._error_labels


class ConnectionFailure(MongoError):
    """The channel or server could not be reached."""

    def __init__(
        self,
        message: str = "",
        *,
        address: Optional[str] = None,
        error_labels: Optional[Iterable[str]] = None,
    ):
        super().__init__(message, error_labels=error_labels)
        self.address = address


class CommandError(MongoError):
    """The server rejected a command with an error code."""

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[int] = None,
        code_name: Optional[str] = None,
        reply: Optional[Mapping[str, Any]] = None,
        error_labels: Optional[Iterable[str]] = None,
    ):
        if error_labels is None and reply is not None:
            error_labels = reply.get("errorLabels", ())
        super().__init__(message, error_labels=error_labels)
        self.code = code
        self.code_name = code_name
        self.reply = dict(reply) if reply is not None else None

    @classmethod
    def from_reply(cls, reply: Mapping[str, Any]) -> "CommandError":
        return cls(
            str(reply.get("errmsg", "command failed")),
            code=reply.get("code"),
            code_name=reply.get("codeName"),
            reply=reply,
        )


class NotPrimaryError(CommandError):
    pass


class NodeIsRecoveringError(CommandError):
    pass


class WriteConcernError(CommandError):
    """The write was applied but the requested write concern was not satisfied."""


class OperationCancelled(Exception):
    """Raised when a CancellationToken is observed as cancelled. Never retried."""
