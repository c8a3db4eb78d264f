from __future__ import annotations
import enum
import threading
from typing import Optional

from .types import ServerDescription


class TransactionState(enum.Enum):
    STARTING = "starting"
    IN_PROGRESS = "in_progress"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"


_ACTIVE_STATES = frozenset(
    {TransactionState.STARTING, TransactionState.IN_PROGRESS, TransactionState.COMMITTING}
)


class CoreTransaction:
    """
    One multi-statement transaction on a session.

    `pinned_server` only identifies a server; it never owns a connection.
    Reads and writes of it go through a lock because the transaction is
    shared by every operation issued on the session.
    """

    def __init__(self, transaction_number: int):
        self._transaction_number = transaction_number
        self._lock = threading.Lock()
        self._state = TransactionState.STARTING
        self._pinned_server: Optional[ServerDescription] = None

    @property
    def transaction_number(self) -> int:
        return self._transaction_number

    @property
    def state(self) -> TransactionState:
        with self._lock:
            return self._state

    @state.setter
    def state(self, value: TransactionState) -> None:
        with self._lock:
            self._state = value

    @property
    def pinned_server(self) -> Optional[ServerDescription]:
        with self._lock:
            return self._pinned_server

    @pinned_server.setter
    def pinned_server(self, server: Optional[ServerDescription]) -> None:
        with self._lock:
            self._pinned_server = server

    @property
    def is_active(self) -> bool:
        return self.state in _ACTIVE_STATES


class CoreSession:
    """Logical session state: transaction number counter and the current transaction."""

    def __init__(self, *, is_implicit: bool = False):
        self.is_implicit = is_implicit
        self._lock = threading.Lock()
        self._transaction_number = 0
        self._current_transaction: Optional[CoreTransaction] = None
        self._ended = False

    @property
    def current_transaction(self) -> Optional[CoreTransaction]:
        with self._lock:
            return self._current_transaction

    @property
    def is_in_transaction(self) -> bool:
        txn = self.current_transaction
        return txn is not None and txn.is_active

    @property
    def is_ended(self) -> bool:
        return self._ended

    def advance_transaction_number(self) -> int:
        with self._lock:
            self._transaction_number += 1
            return self._transaction_number

    def start_transaction(self) -> CoreTransaction:
        if self.is_in_transaction:
            raise RuntimeError("transaction already in progress")
        txn = CoreTransaction(self.advance_transaction_number())
        with self._lock:
            self._current_transaction = txn
        return txn

    def begin_commit(self) -> None:
        self._require_transaction().state = TransactionState.COMMITTING

    def commit_transaction(self) -> None:
        self._finish(TransactionState.COMMITTED)

    def abort_transaction(self) -> None:
        self._finish(TransactionState.ABORTED)

    def end_session(self) -> None:
        with self._lock:
            self._current_transaction = None
            self._ended = True

    def _finish(self, state: TransactionState) -> None:
        txn = self._require_transaction()
        txn.state = state
        txn.pinned_server = None
        with self._lock:
            self._current_transaction = None

    def _require_transaction(self) -> CoreTransaction:
        txn = self.current_transaction
        if txn is None or not txn.is_active:
            raise RuntimeError("no transaction in progress")
        return txn


class _RefCountedSession:
    def __init__(self, session: CoreSession):
        self.session = session
        self._lock = threading.Lock()
        self._count = 1

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1
            last = self._count == 0
        if last:
            self.session.end_session()


class CoreSessionHandle:
    """
    Handle onto a shared CoreSession. `fork()` hands out another handle to the
    same session; the session ends when the last handle is closed.
    """

    def __init__(self, session: CoreSession, _ref: Optional[_RefCountedSession] = None):
        self._ref = _ref or _RefCountedSession(session)
        self._closed = False

    @property
    def wrapped(self) -> CoreSession:
        return self._ref.session

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_in_transaction(self) -> bool:
        return self._ref.session.is_in_transaction

    @property
    def current_transaction(self) -> Optional[CoreTransaction]:
        return self._ref.session.current_transaction

    def advance_transaction_number(self) -> int:
        return self._ref.session.advance_transaction_number()

    def fork(self) -> "CoreSessionHandle":
        if self._closed:
            raise RuntimeError("cannot fork a closed session handle")
        self._ref.increment()
        return CoreSessionHandle(self._ref.session, self._ref)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._ref.decrement()

    def __enter__(self) -> "CoreSessionHandle":
        return self

    def __exit__(self, *a) -> bool:
        self.close()
        return False
