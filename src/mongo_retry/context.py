from __future__ import annotations
from typing import Optional

from .cancellation import CancellationToken
from .types import Binding, Channel, ChannelSource, ConnectionDescription, Session


class RetryableContext:
    """
    Per-invocation execution context.

    Owns exactly one channel source and one channel at a time. The binding is
    borrowed from the caller and never closed here. Use it as a (sync or async)
    context manager so the owned resources are released on every exit path.
    """

    def __init__(
        self,
        binding: Binding,
        retry_requested: bool,
        channel_source: Optional[ChannelSource] = None,
        channel: Optional[Channel] = None,
    ):
        self._binding = binding
        self._retry_requested = retry_requested
        self._channel_source = channel_source
        self._channel = channel
        self._closed = False

    # ---- construction ---------------------------------------------------

    @classmethod
    def create(
        cls,
        binding: Binding,
        retry_requested: bool,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> "RetryableContext":
        context = cls(binding, retry_requested)
        try:
            context.rebind(cancellation_token)
        except BaseException:
            context.close()
            raise
        return context

    @classmethod
    async def create_async(
        cls,
        binding: Binding,
        retry_requested: bool,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> "RetryableContext":
        context = cls(binding, retry_requested)
        try:
            await context.rebind_async(cancellation_token)
        except BaseException:
            context.close()
            raise
        return context

    # ---- accessors ------------------------------------------------------

    @property
    def binding(self) -> Binding:
        return self._binding

    @property
    def retry_requested(self) -> bool:
        return self._retry_requested

    @property
    def session(self) -> Session:
        return self._binding.session

    @property
    def channel_source(self) -> ChannelSource:
        if self._channel_source is None:
            raise RuntimeError("context has no channel source")
        return self._channel_source

    @property
    def channel(self) -> Channel:
        if self._channel is None:
            raise RuntimeError("context has no channel")
        return self._channel

    @property
    def connection_description(self) -> ConnectionDescription:
        return self.channel.connection_description

    # ---- rebind ---------------------------------------------------------

    def replace_channel_source(self, channel_source: ChannelSource) -> None:
        if self._closed:
            channel_source.close()
            raise RuntimeError("context is closed")
        if self._channel_source is not None:
            self._channel_source.close()
        self._channel_source = channel_source

    def replace_channel(self, channel: Channel) -> None:
        if self._closed:
            channel.close()
            raise RuntimeError("context is closed")
        if self._channel is not None:
            self._channel.close()
        self._channel = channel

    def rebind(self, cancellation_token: Optional[CancellationToken] = None) -> None:
        self._ensure_open()
        self.replace_channel_source(self._binding.get_channel_source(cancellation_token))
        self.replace_channel(self.channel_source.get_channel(cancellation_token))

    async def rebind_async(self, cancellation_token: Optional[CancellationToken] = None) -> None:
        self._ensure_open()
        self.replace_channel_source(
            await self._binding.get_channel_source_async(cancellation_token)
        )
        self.replace_channel(await self.channel_source.get_channel_async(cancellation_token))

    # ---- disposal -------------------------------------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        channel, self._channel = self._channel, None
        source, self._channel_source = self._channel_source, None
        try:
            if channel is not None:
                channel.close()
        finally:
            if source is not None:
                source.close()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("context is closed")

    def __enter__(self) -> "RetryableContext":
        return self

    def __exit__(self, *a) -> bool:
        self.close()
        return False

    async def __aenter__(self) -> "RetryableContext":
        return self

    async def __aexit__(self, *a) -> bool:
        self.close()
        return False
