from __future__ import annotations
import logging
from typing import Optional

from .classify import has_error_label
from .errors import TRANSIENT_TRANSACTION_ERROR, UNKNOWN_TRANSACTION_COMMIT_RESULT
from .session import CoreTransaction
from .types import Session

logger = logging.getLogger(__name__)


def should_unpin(exc: BaseException) -> bool:
    return has_error_label(exc, TRANSIENT_TRANSACTION_ERROR) or has_error_label(
        exc, UNKNOWN_TRANSACTION_COMMIT_RESULT
    )


def should_unpin_on_retryable_commit(exc: BaseException) -> bool:
    # A transient label alone does not make the commit outcome ambiguous
    return has_error_label(exc, UNKNOWN_TRANSACTION_COMMIT_RESULT)


def unpin_server_if_needed(session: Session, exc: BaseException) -> None:
    if session.is_in_transaction and should_unpin(exc):
        _unpin(session.current_transaction, exc)


def unpin_server_if_needed_on_retryable_commit(
    transaction: CoreTransaction, exc: BaseException
) -> None:
    if should_unpin_on_retryable_commit(exc):
        _unpin(transaction, exc)


def _unpin(transaction: Optional[CoreTransaction], exc: BaseException) -> None:
    server = transaction.pinned_server if transaction is not None else None
    if server is None:
        return
    logger.debug(
        "unpinning transaction %s from %s after %s",
        transaction.transaction_number,
        server.address,
        type(exc).__name__,
    )
    transaction.pinned_server = None
