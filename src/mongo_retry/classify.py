from __future__ import annotations
import asyncio
import enum

from .errors import (
    RETRYABLE_WRITE_ERROR,
    TRANSIENT_TRANSACTION_ERROR,
    UNKNOWN_TRANSACTION_COMMIT_RESULT,
    CommandError,
    ConnectionFailure,
    MongoError,
    NodeIsRecoveringError,
    NotPrimaryError,
    OperationCancelled,
    WriteConcernError,
)

# 6=HostUnreachable, 7=HostNotFound, 89=NetworkTimeout, 91=ShutdownInProgress,
# 189=PrimarySteppedDown, 262=ExceededTimeLimit, 9001=SocketException,
# 10107=NotWritablePrimary, 11600=InterruptedAtShutdown,
# 11602=InterruptedDueToReplStateChange, 13435=NotPrimaryNoSecondaryOk,
# 13436=NotPrimaryOrSecondary
RETRYABLE_CODES = frozenset({6, 7, 89, 91, 189, 262, 9001, 10107, 11600, 11602, 13435, 13436})

# 64=WriteConcernFailed, only meaningful inside a writeConcernError
RETRYABLE_WRITE_CONCERN_CODES = RETRYABLE_CODES | {64}


class ErrorKind(enum.Enum):
    CANCELLED = "cancelled"
    RETRYABLE = "retryable"
    UNKNOWN_COMMIT_RESULT = "unknown-commit-result"
    TRANSIENT_TRANSACTION = "transient-transaction"
    NON_RETRYABLE = "non-retryable"


def has_error_label(exc: BaseException, label: str) -> bool:
    return isinstance(exc, MongoError) and exc.has_error_label(label)


def is_retryable_read_exception(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionFailure, NotPrimaryError, NodeIsRecoveringError)):
        return True
    return isinstance(exc, CommandError) and exc.code in RETRYABLE_CODES


def is_retryable_write_exception(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionFailure, NotPrimaryError, NodeIsRecoveringError)):
        return True
    if has_error_label(exc, RETRYABLE_WRITE_ERROR):
        return True
    if isinstance(exc, WriteConcernError):
        return exc.code in RETRYABLE_WRITE_CONCERN_CODES
    return isinstance(exc, CommandError) and exc.code in RETRYABLE_CODES


def classify(exc: BaseException, *, write: bool = False) -> ErrorKind:
    """Tag an exception for the retry and unpin decisions. Pure, no I/O."""
    # ---- cancellation is terminal ----
    if isinstance(exc, (OperationCancelled, asyncio.CancelledError)):
        return ErrorKind.CANCELLED

    # ---- retryability for the operation family ----
    retryable = is_retryable_write_exception(exc) if write else is_retryable_read_exception(exc)
    if retryable:
        return ErrorKind.RETRYABLE

    # ---- transaction labels ----
    if has_error_label(exc, UNKNOWN_TRANSACTION_COMMIT_RESULT):
        return ErrorKind.UNKNOWN_COMMIT_RESULT
    if has_error_label(exc, TRANSIENT_TRANSACTION_ERROR):
        return ErrorKind.TRANSIENT_TRANSACTION

    return ErrorKind.NON_RETRYABLE


def should_raise_original(retry_exc: BaseException) -> bool:
    """
    Decide which failure the caller sees after a failed second attempt.

    A clean database-level rejection on the retry is less useful than the
    transient failure that triggered it, so the original wins unless the retry
    itself failed on connectivity.
    """
    return isinstance(retry_exc, MongoError) and not isinstance(retry_exc, ConnectionFailure)
