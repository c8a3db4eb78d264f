from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Tuple, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .context import RetryableContext
    from .session import CoreTransaction

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

Document = Mapping[str, Any]
ServerVersion = Tuple[int, int, int]

# Turns a raw reply document into whatever the caller wants back
ResultDecoder = Callable[[Document], Any]


@dataclass(frozen=True)
class ServerDescription:
    """Identity of one server. Held weakly by pinned transactions."""

    address: str
    server_type: str = "ReplicaSetPrimary"


@dataclass(frozen=True)
class ConnectionDescription:
    server_version: ServerVersion
    max_wire_version: int = 0
    server_type: str = "ReplicaSetPrimary"
    logical_session_timeout_minutes: Optional[int] = 30
    max_document_size: int = 16 * 1024 * 1024
    max_message_size: int = 48 * 1000 * 1000
    max_wire_document_size: int = 16 * 1024 * 1024 + 16 * 1024


class Session(Protocol):
    @property
    def is_in_transaction(self) -> bool: ...

    @property
    def current_transaction(self) -> Optional["CoreTransaction"]: ...

    def advance_transaction_number(self) -> int: ...

    def fork(self) -> "Session": ...

    def close(self) -> None: ...


class Channel(Protocol):
    @property
    def connection_description(self) -> ConnectionDescription: ...

    def command(
        self,
        session: Session,
        database_name: str,
        command: Document,
        *,
        read_preference: Optional[str] = None,
        result_decoder: Optional[ResultDecoder] = None,
        encoder_settings: Optional[Mapping[str, Any]] = None,
        cancellation_token: Optional["CancellationToken"] = None,
    ) -> Any: ...

    async def command_async(
        self,
        session: Session,
        database_name: str,
        command: Document,
        *,
        read_preference: Optional[str] = None,
        result_decoder: Optional[ResultDecoder] = None,
        encoder_settings: Optional[Mapping[str, Any]] = None,
        cancellation_token: Optional["CancellationToken"] = None,
    ) -> Any: ...

    def close(self) -> None: ...


class ChannelSource(Protocol):
    @property
    def server(self) -> ServerDescription: ...

    @property
    def session(self) -> Session: ...

    def get_channel(self, cancellation_token: Optional["CancellationToken"] = None) -> Channel: ...

    async def get_channel_async(
        self, cancellation_token: Optional["CancellationToken"] = None
    ) -> Channel: ...

    def close(self) -> None: ...


class Binding(Protocol):
    @property
    def session(self) -> Session: ...

    @property
    def read_preference(self) -> Optional[str]: ...

    def get_channel_source(
        self, cancellation_token: Optional["CancellationToken"] = None
    ) -> ChannelSource: ...

    async def get_channel_source_async(
        self, cancellation_token: Optional["CancellationToken"] = None
    ) -> ChannelSource: ...


# ---- operation contract ----------------------------------------------------


class RetryableReadOperation(Protocol[T_co]):
    def execute_attempt(
        self,
        context: "RetryableContext",
        attempt: int,
        transaction_number: Optional[int],
        cancellation_token: Optional["CancellationToken"] = None,
    ) -> T_co: ...

    async def execute_attempt_async(
        self,
        context: "RetryableContext",
        attempt: int,
        transaction_number: Optional[int],
        cancellation_token: Optional["CancellationToken"] = None,
    ) -> T_co: ...


class RetryableWriteOperation(RetryableReadOperation[T_co], Protocol[T_co]):
    # Unacknowledged writes cannot be retried safely
    @property
    def is_acknowledged(self) -> bool: ...
