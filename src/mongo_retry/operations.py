from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterator, List, Mapping, Optional, Sequence, TypeVar

from .cancellation import CancellationToken
from .context import RetryableContext
from .executor import (
    execute_read,
    execute_read_async,
    execute_read_with_context,
    execute_read_with_context_async,
    execute_write,
    execute_write_async,
    execute_write_with_context,
    execute_write_with_context_async,
)
from .settings import RetrySettings
from .types import Binding, ConnectionDescription, Document, Session

T = TypeVar("T")


@dataclass(frozen=True)
class _CommandArgs:
    command: Dict[str, Any]
    encoder_settings: Dict[str, Any]


class _CommandOperation(Generic[T]):
    """
    Shared attempt plumbing: build the command for this attempt, send it over
    the context's current channel, parse the reply. Exactly one round-trip per
    attempt; errors from the channel propagate unchanged.
    """

    def __init__(self, database_name: str, *, encoder_settings: Optional[Mapping[str, Any]] = None):
        if not database_name:
            raise ValueError("database_name is required")
        self.database_name = database_name
        self.encoder_settings = dict(encoder_settings or {})

    def create_command(
        self,
        session: Session,
        description: ConnectionDescription,
        attempt: int,
        transaction_number: Optional[int],
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def parse_command_result(self, context: RetryableContext, reply: Document) -> T:
        return reply  # type: ignore[return-value]

    def execute_attempt(
        self,
        context: RetryableContext,
        attempt: int,
        transaction_number: Optional[int],
        cancellation_token: Optional[CancellationToken] = None,
    ) -> T:
        args = self._command_args(context, attempt, transaction_number)
        reply = context.channel.command(
            context.channel_source.session,
            self.database_name,
            args.command,
            read_preference=context.binding.read_preference,
            encoder_settings=args.encoder_settings,
            cancellation_token=cancellation_token,
        )
        return self.parse_command_result(context, reply)

    async def execute_attempt_async(
        self,
        context: RetryableContext,
        attempt: int,
        transaction_number: Optional[int],
        cancellation_token: Optional[CancellationToken] = None,
    ) -> T:
        args = self._command_args(context, attempt, transaction_number)
        reply = await context.channel.command_async(
            context.channel_source.session,
            self.database_name,
            args.command,
            read_preference=context.binding.read_preference,
            encoder_settings=args.encoder_settings,
            cancellation_token=cancellation_token,
        )
        return self.parse_command_result(context, reply)

    def _command_args(
        self, context: RetryableContext, attempt: int, transaction_number: Optional[int]
    ) -> _CommandArgs:
        if attempt not in (1, 2):
            raise ValueError(f"attempt must be 1 or 2, got {attempt}")
        description = context.connection_description
        return _CommandArgs(
            command=self.create_command(context.session, description, attempt, transaction_number),
            encoder_settings=self._encoder_settings_for(description),
        )

    def _encoder_settings_for(self, description: ConnectionDescription) -> Dict[str, Any]:
        # Limits come from whichever server this attempt is bound to
        return {
            **self.encoder_settings,
            "max_document_size": description.max_document_size,
            "max_message_size": description.max_message_size,
            "max_wire_document_size": description.max_wire_document_size,
        }


class RetryableReadCommandOperation(_CommandOperation[T]):
    """Base for read commands that go through the retryable read executor."""

    def __init__(
        self,
        database_name: str,
        *,
        retry_requested: Optional[bool] = None,
        settings: Optional[RetrySettings] = None,
        read_concern: Optional[Mapping[str, Any]] = None,
        encoder_settings: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(database_name, encoder_settings=encoder_settings)
        if retry_requested is None:
            retry_requested = (settings or RetrySettings()).retry_reads
        self.retry_requested = retry_requested
        self.read_concern = dict(read_concern) if read_concern else None

    def execute(self, binding: Binding, cancellation_token: Optional[CancellationToken] = None) -> T:
        return execute_read(self, binding, self.retry_requested, cancellation_token)

    async def execute_async(
        self, binding: Binding, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return await execute_read_async(self, binding, self.retry_requested, cancellation_token)

    def execute_with_context(
        self, context: RetryableContext, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return execute_read_with_context(self, context, cancellation_token)

    async def execute_with_context_async(
        self, context: RetryableContext, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return await execute_read_with_context_async(self, context, cancellation_token)

    def read_concern_for(self, session: Session) -> Optional[Dict[str, Any]]:
        # Inside a transaction the read concern belongs to the transaction
        if session.is_in_transaction or not self.read_concern:
            return None
        return dict(self.read_concern)


class RetryableWriteCommandOperation(_CommandOperation[T]):
    """Base for write commands. Both attempts share one transaction number."""

    def __init__(
        self,
        database_name: str,
        *,
        retry_requested: Optional[bool] = None,
        settings: Optional[RetrySettings] = None,
        write_concern: Optional[Mapping[str, Any]] = None,
        encoder_settings: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(database_name, encoder_settings=encoder_settings)
        if retry_requested is None:
            retry_requested = (settings or RetrySettings()).retry_writes
        self.retry_requested = retry_requested
        self.write_concern = dict(write_concern) if write_concern else None

    @property
    def is_acknowledged(self) -> bool:
        return self.write_concern is None or self.write_concern.get("w", 1) != 0

    def execute(self, binding: Binding, cancellation_token: Optional[CancellationToken] = None) -> T:
        return execute_write(self, binding, self.retry_requested, cancellation_token)

    async def execute_async(
        self, binding: Binding, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return await execute_write_async(self, binding, self.retry_requested, cancellation_token)

    def execute_with_context(
        self, context: RetryableContext, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return execute_write_with_context(self, context, cancellation_token)

    async def execute_with_context_async(
        self, context: RetryableContext, cancellation_token: Optional[CancellationToken] = None
    ) -> T:
        return await execute_write_with_context_async(self, context, cancellation_token)


# ---- concrete commands ---------------------------------------------------------


class CountOperation(RetryableReadCommandOperation[int]):
    def __init__(
        self,
        database_name: str,
        collection_name: str,
        *,
        filter: Optional[Mapping[str, Any]] = None,
        hint: Any = None,
        limit: Optional[int] = None,
        skip: Optional[int] = None,
        max_time_ms: Optional[int] = None,
        collation: Optional[Mapping[str, Any]] = None,
        read_concern: Optional[Mapping[str, Any]] = None,
        retry_requested: Optional[bool] = None,
        settings: Optional[RetrySettings] = None,
    ):
        super().__init__(
            database_name,
            retry_requested=retry_requested,
            settings=settings,
            read_concern=read_concern,
        )
        if max_time_ms is not None and max_time_ms < 0:
            raise ValueError("max_time_ms must be >= 0")
        self.collection_name = collection_name
        self.filter = dict(filter) if filter else None
        self.hint = hint
        self.limit = limit
        self.skip = skip
        self.max_time_ms = max_time_ms
        self.collation = dict(collation) if collation else None

    def create_command(self, session, description, attempt, transaction_number):
        cmd: Dict[str, Any] = {"count": self.collection_name}
        optional = {
            "query": self.filter,
            "limit": self.limit,
            "skip": self.skip,
            "hint": self.hint,
            "maxTimeMS": self.max_time_ms,
            "collation": self.collation,
            "readConcern": self.read_concern_for(session),
        }
        cmd.update({k: v for k, v in optional.items() if v is not None})
        return cmd

    def parse_command_result(self, context, reply) -> int:
        return int(reply["n"])


class SingleBatchCursor:
    """Cursor over a result that arrived in one reply. Iterable once or many times."""

    def __init__(self, documents: Sequence[Document]):
        self._documents: List[Document] = list(documents)

    def __iter__(self) -> Iterator[Document]:
        return iter(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def to_list(self) -> List[Document]:
        return list(self._documents)


class ListDatabasesOperation(RetryableReadCommandOperation[SingleBatchCursor]):
    def __init__(
        self,
        *,
        filter: Optional[Mapping[str, Any]] = None,
        name_only: Optional[bool] = None,
        retry_requested: Optional[bool] = None,
        settings: Optional[RetrySettings] = None,
    ):
        super().__init__("admin", retry_requested=retry_requested, settings=settings)
        self.filter = dict(filter) if filter else None
        self.name_only = name_only

    def create_command(self, session, description, attempt, transaction_number):
        cmd: Dict[str, Any] = {"listDatabases": 1}
        if self.filter is not None:
            cmd["filter"] = self.filter
        if self.name_only is not None:
            cmd["nameOnly"] = self.name_only
        return cmd

    def parse_command_result(self, context, reply) -> SingleBatchCursor:
        return SingleBatchCursor(reply.get("databases", []))

    def execute_attempt(self, context, attempt, transaction_number, cancellation_token=None):
        args = self._command_args(context, attempt, transaction_number)
        session = context.session.fork()
        try:
            reply = context.channel.command(
                session,
                self.database_name,
                args.command,
                read_preference=context.binding.read_preference,
                encoder_settings=args.encoder_settings,
                cancellation_token=cancellation_token,
            )
        finally:
            session.close()
        return self.parse_command_result(context, reply)

    async def execute_attempt_async(
        self, context, attempt, transaction_number, cancellation_token=None
    ):
        args = self._command_args(context, attempt, transaction_number)
        session = context.session.fork()
        try:
            reply = await context.channel.command_async(
                session,
                self.database_name,
                args.command,
                read_preference=context.binding.read_preference,
                encoder_settings=args.encoder_settings,
                cancellation_token=cancellation_token,
            )
        finally:
            session.close()
        return self.parse_command_result(context, reply)


class InsertOperation(RetryableWriteCommandOperation[int]):
    def __init__(
        self,
        database_name: str,
        collection_name: str,
        documents: Sequence[Mapping[str, Any]],
        *,
        ordered: bool = True,
        write_concern: Optional[Mapping[str, Any]] = None,
        retry_requested: Optional[bool] = None,
        settings: Optional[RetrySettings] = None,
    ):
        super().__init__(
            database_name,
            retry_requested=retry_requested,
            settings=settings,
            write_concern=write_concern,
        )
        if not documents:
            raise ValueError("documents must not be empty")
        self.collection_name = collection_name
        self.documents = [dict(d) for d in documents]
        self.ordered = ordered

    def create_command(self, session, description, attempt, transaction_number):
        cmd: Dict[str, Any] = {
            "insert": self.collection_name,
            "documents": self.documents,
            "ordered": self.ordered,
        }
        if transaction_number is not None:
            cmd["txnNumber"] = transaction_number
        # Transactions carry their own write concern
        if self.write_concern is not None and not session.is_in_transaction:
            cmd["writeConcern"] = self.write_concern
        return cmd

    def parse_command_result(self, context, reply) -> int:
        return int(reply.get("n", 0))
