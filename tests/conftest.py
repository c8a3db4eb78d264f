"""
In-memory stand-ins for the channel layer.

A FakeBinding hands out channel sources/channels for a scripted list of
servers and answers commands from a scripted list of outcomes (a reply dict or
an exception to raise). Counters and logs are exposed as plain accessors so
tests never have to reach into private state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pytest

from mongo_retry.cancellation import raise_if_cancelled
from mongo_retry.session import CoreSession, CoreSessionHandle
from mongo_retry.types import ConnectionDescription, ServerDescription

Outcome = Union[Mapping[str, Any], BaseException]


@dataclass(frozen=True)
class FakeServer:
    address: str = "db1:27017"
    version: tuple = (4, 2, 0)
    server_type: str = "ReplicaSetPrimary"
    logical_session_timeout_minutes: Optional[int] = 30
    max_document_size: int = 16 * 1024 * 1024

    @property
    def description(self) -> ServerDescription:
        return ServerDescription(self.address, self.server_type)

    @property
    def connection_description(self) -> ConnectionDescription:
        return ConnectionDescription(
            server_version=self.version,
            max_wire_version=8,
            server_type=self.server_type,
            logical_session_timeout_minutes=self.logical_session_timeout_minutes,
            max_document_size=self.max_document_size,
        )


@dataclass
class SentCommand:
    address: str
    database_name: str
    command: Dict[str, Any]
    session: Any
    read_preference: Optional[str]
    encoder_settings: Dict[str, Any]


class FakeChannel:
    def __init__(self, binding: "FakeBinding", server: FakeServer):
        self._binding = binding
        self._server = server
        self.closed = False

    @property
    def connection_description(self) -> ConnectionDescription:
        return self._server.connection_description

    def command(
        self,
        session,
        database_name,
        command,
        *,
        read_preference=None,
        result_decoder=None,
        encoder_settings=None,
        cancellation_token=None,
    ):
        raise_if_cancelled(cancellation_token)
        self._binding.record_command(
            SentCommand(
                self._server.address,
                database_name,
                dict(command),
                session,
                read_preference,
                dict(encoder_settings or {}),
            )
        )
        outcome = self._binding.next_outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return result_decoder(outcome) if result_decoder else outcome

    async def command_async(self, session, database_name, command, **kwargs):
        await asyncio.sleep(0)
        binding = self._binding
        blocked = len(binding.commands) >= binding.block_from_command
        if binding.block_async_commands is not None and blocked:
            await binding.block_async_commands.wait()
        return self.command(session, database_name, command, **kwargs)

    def close(self) -> None:
        self.closed = True


class FakeChannelSource:
    def __init__(self, binding: "FakeBinding", server: FakeServer):
        self._binding = binding
        self._server = server
        self.closed = False

    @property
    def server(self) -> ServerDescription:
        return self._server.description

    @property
    def session(self):
        return self._binding.session

    def get_channel(self, cancellation_token=None) -> FakeChannel:
        raise_if_cancelled(cancellation_token)
        return self._binding.mint_channel(self._server)

    async def get_channel_async(self, cancellation_token=None) -> FakeChannel:
        await asyncio.sleep(0)
        return self.get_channel(cancellation_token)

    def close(self) -> None:
        self.closed = True


class FakeBinding:
    def __init__(
        self,
        servers: Sequence[FakeServer],
        outcomes: Sequence[Outcome] = (),
        *,
        session=None,
        read_preference: Optional[str] = "primary",
        source_failures: Optional[Dict[int, BaseException]] = None,
        channel_failures: Optional[Dict[int, BaseException]] = None,
    ):
        self._servers = list(servers)
        self._outcomes = list(outcomes)
        self._session = session if session is not None else CoreSessionHandle(CoreSession())
        self._read_preference = read_preference
        self._source_failures = dict(source_failures or {})
        self._channel_failures = dict(channel_failures or {})
        self._sources: List[FakeChannelSource] = []
        self._channels: List[FakeChannel] = []
        self._source_attempts = 0
        self._channel_attempts = 0
        self._commands: List[SentCommand] = []
        self.block_async_commands: Optional[asyncio.Event] = None
        # number of commands allowed through before block_async_commands applies
        self.block_from_command = 0

    # ---- Binding protocol ----

    @property
    def session(self):
        return self._session

    @property
    def read_preference(self) -> Optional[str]:
        return self._read_preference

    def get_channel_source(self, cancellation_token=None) -> FakeChannelSource:
        raise_if_cancelled(cancellation_token)
        index = self._source_attempts
        self._source_attempts += 1
        if index in self._source_failures:
            raise self._source_failures[index]
        server = self._servers[min(index, len(self._servers) - 1)]
        source = FakeChannelSource(self, server)
        self._sources.append(source)
        return source

    async def get_channel_source_async(self, cancellation_token=None) -> FakeChannelSource:
        await asyncio.sleep(0)
        return self.get_channel_source(cancellation_token)

    # ---- hooks used by the fakes ----

    def mint_channel(self, server: FakeServer) -> FakeChannel:
        index = self._channel_attempts
        self._channel_attempts += 1
        if index in self._channel_failures:
            raise self._channel_failures[index]
        channel = FakeChannel(self, server)
        self._channels.append(channel)
        return channel

    def record_command(self, sent: SentCommand) -> None:
        self._commands.append(sent)

    def next_outcome(self) -> Outcome:
        if not self._outcomes:
            raise AssertionError("no scripted outcome left for command")
        return self._outcomes.pop(0)

    # ---- test accessors ----

    @property
    def source_acquisitions(self) -> int:
        return self._source_attempts

    @property
    def channel_acquisitions(self) -> int:
        return self._channel_attempts

    @property
    def commands(self) -> List[SentCommand]:
        return list(self._commands)

    def open_resources(self) -> int:
        return sum(not s.closed for s in self._sources) + sum(not c.closed for c in self._channels)


@pytest.fixture
def make_binding():
    def factory(*servers: FakeServer, outcomes: Sequence[Outcome] = (), **kwargs) -> FakeBinding:
        return FakeBinding(servers or [FakeServer()], outcomes, **kwargs)

    return factory


@pytest.fixture
def session() -> CoreSessionHandle:
    return CoreSessionHandle(CoreSession())


@pytest.fixture
def make_server():
    return FakeServer
