from __future__ import annotations
import pytest

from mongo_retry.errors import (
    TRANSIENT_TRANSACTION_ERROR,
    UNKNOWN_TRANSACTION_COMMIT_RESULT,
    CommandError,
    ConnectionFailure,
)
from mongo_retry.pinning import (
    unpin_server_if_needed,
    unpin_server_if_needed_on_retryable_commit,
)
from mongo_retry.types import ServerDescription

PINNED = ServerDescription("db1:27017")


def _labelled(*labels):
    return CommandError("boom", code=251, error_labels=labels)


@pytest.fixture
def pinned_session(session):
    txn = session.wrapped.start_transaction()
    txn.pinned_server = PINNED
    return session


@pytest.mark.parametrize("label", [TRANSIENT_TRANSACTION_ERROR, UNKNOWN_TRANSACTION_COMMIT_RESULT])
def test_labelled_error_unpins(pinned_session, label):
    unpin_server_if_needed(pinned_session, _labelled(label))
    assert pinned_session.current_transaction.pinned_server is None


@pytest.mark.parametrize(
    "exc",
    [_labelled(), ConnectionFailure("reset"), RuntimeError(TRANSIENT_TRANSACTION_ERROR)],
)
def test_unlabelled_error_keeps_pin(pinned_session, exc):
    unpin_server_if_needed(pinned_session, exc)
    assert pinned_session.current_transaction.pinned_server == PINNED


def test_no_transaction_is_a_noop(session):
    unpin_server_if_needed(session, _labelled(TRANSIENT_TRANSACTION_ERROR))
    assert session.current_transaction is None


def test_unpin_twice_equals_once(pinned_session):
    exc = _labelled(TRANSIENT_TRANSACTION_ERROR)
    unpin_server_if_needed(pinned_session, exc)
    unpin_server_if_needed(pinned_session, exc)
    assert pinned_session.current_transaction.pinned_server is None
    assert pinned_session.is_in_transaction


def test_commit_retry_ignores_transient_label_alone(pinned_session):
    txn = pinned_session.current_transaction
    unpin_server_if_needed_on_retryable_commit(txn, _labelled(TRANSIENT_TRANSACTION_ERROR))
    assert txn.pinned_server == PINNED


def test_commit_retry_unpins_on_unknown_result(pinned_session):
    txn = pinned_session.current_transaction
    unpin_server_if_needed_on_retryable_commit(txn, _labelled(UNKNOWN_TRANSACTION_COMMIT_RESULT))
    assert txn.pinned_server is None
    # already unpinned
    unpin_server_if_needed_on_retryable_commit(txn, _labelled(UNKNOWN_TRANSACTION_COMMIT_RESULT))
    assert txn.pinned_server is None
