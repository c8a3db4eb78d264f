from __future__ import annotations
import logging
from typing import Callable, Optional, TypeVar

from .cancellation import CancellationToken
from .classify import ErrorKind, classify, should_raise_original
from .context import RetryableContext
from .features import are_retryable_reads_supported, are_retryable_writes_supported
from .pinning import unpin_server_if_needed
from .types import (
    Binding,
    ConnectionDescription,
    RetryableReadOperation,
    RetryableWriteOperation,
    ServerVersion,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SupportCheck = Callable[[ConnectionDescription], bool]


# ---- binding entry points ------------------------------------------------------


def execute_read(
    operation: RetryableReadOperation[T],
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    context = _create_context(binding, retry_requested, cancellation_token)
    with context:
        return execute_read_with_context(operation, context, cancellation_token)


async def execute_read_async(
    operation: RetryableReadOperation[T],
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    context = await _create_context_async(binding, retry_requested, cancellation_token)
    async with context:
        return await execute_read_with_context_async(operation, context, cancellation_token)


def execute_write(
    operation: RetryableWriteOperation[T],
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    context = _create_context(binding, retry_requested, cancellation_token)
    with context:
        return execute_write_with_context(operation, context, cancellation_token)


async def execute_write_async(
    operation: RetryableWriteOperation[T],
    binding: Binding,
    retry_requested: bool,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    context = await _create_context_async(binding, retry_requested, cancellation_token)
    async with context:
        return await execute_write_with_context_async(operation, context, cancellation_token)


# ---- context entry points ------------------------------------------------------


def execute_read_with_context(
    operation: RetryableReadOperation[T],
    context: RetryableContext,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    retry = _read_retries_allowed(context)
    try:
        return _run(operation, context, None, retry, False, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(context.session, exc)
        raise


async def execute_read_with_context_async(
    operation: RetryableReadOperation[T],
    context: RetryableContext,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    retry = _read_retries_allowed(context)
    try:
        return await _run_async(operation, context, None, retry, False, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(context.session, exc)
        raise


def execute_write_with_context(
    operation: RetryableWriteOperation[T],
    context: RetryableContext,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    retry = _write_retries_allowed(operation, context)
    txn_number = context.session.advance_transaction_number() if retry else None
    try:
        return _run(operation, context, txn_number, retry, True, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(context.session, exc)
        raise


async def execute_write_with_context_async(
    operation: RetryableWriteOperation[T],
    context: RetryableContext,
    cancellation_token: Optional[CancellationToken] = None,
) -> T:
    retry = _write_retries_allowed(operation, context)
    txn_number = context.session.advance_transaction_number() if retry else None
    try:
        return await _run_async(operation, context, txn_number, retry, True, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(context.session, exc)
        raise


# ---- the retry flow ------------------------------------------------------------


def _run(operation, context, txn_number, retry, write, cancellation_token):
    initial_version = context.connection_description.server_version

    def attempt(n: int):
        return operation.execute_attempt(context, n, txn_number, cancellation_token)

    if not retry:
        return attempt(1)

    try:
        return attempt(1)
    except Exception as exc:
        if not _is_retryable(exc, write):
            raise
        original = exc

    try:
        context.rebind(cancellation_token)
        rebound = True
    except Exception as exc:
        logger.debug("rebind for retry failed (%r); raising original error", exc)
        rebound = False

    if not rebound or not _can_retry_on(context, initial_version, write):
        raise original

    logger.debug("retrying %s after %r", type(operation).__name__, original)
    try:
        return attempt(2)
    except Exception as exc:
        if not should_raise_original(exc):
            raise
        logger.debug("retry failed with %r; raising original error", exc)
    raise original


async def _run_async(operation, context, txn_number, retry, write, cancellation_token):
    initial_version = context.connection_description.server_version

    async def attempt(n: int):
        return await operation.execute_attempt_async(context, n, txn_number, cancellation_token)

    if not retry:
        return await attempt(1)

    try:
        return await attempt(1)
    except Exception as exc:
        if not _is_retryable(exc, write):
            raise
        original = exc

    try:
        await context.rebind_async(cancellation_token)
        rebound = True
    except Exception as exc:
        logger.debug("rebind for retry failed (%r); raising original error", exc)
        rebound = False

    if not rebound or not _can_retry_on(context, initial_version, write):
        raise original

    logger.debug("retrying %s after %r", type(operation).__name__, original)
    try:
        return await attempt(2)
    except Exception as exc:
        if not should_raise_original(exc):
            raise
        logger.debug("retry failed with %r; raising original error", exc)
    raise original


# ---- helpers -------------------------------------------------------------------


def _create_context(binding, retry_requested, cancellation_token) -> RetryableContext:
    try:
        return RetryableContext.create(binding, retry_requested, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(binding.session, exc)
        raise


async def _create_context_async(binding, retry_requested, cancellation_token) -> RetryableContext:
    try:
        return await RetryableContext.create_async(binding, retry_requested, cancellation_token)
    except Exception as exc:
        unpin_server_if_needed(binding.session, exc)
        raise


def _is_retryable(exc: BaseException, write: bool) -> bool:
    return classify(exc, write=write) is ErrorKind.RETRYABLE


def _read_retries_allowed(context: RetryableContext) -> bool:
    if not context.retry_requested:
        return False
    if not are_retryable_reads_supported(context.connection_description):
        logger.debug("server does not support retryable reads; single attempt")
        return False
    return not context.session.is_in_transaction


def _write_retries_allowed(operation, context: RetryableContext) -> bool:
    if not context.retry_requested or not operation.is_acknowledged:
        return False
    if not are_retryable_writes_supported(context.connection_description):
        logger.debug("server does not support retryable writes; single attempt")
        return False
    return not context.session.is_in_transaction


def _can_retry_on(context: RetryableContext, initial_version: ServerVersion, write: bool) -> bool:
    description = context.connection_description
    if tuple(description.server_version) < tuple(initial_version):
        logger.debug(
            "rebound server version %s is older than %s; not retrying",
            description.server_version,
            initial_version,
        )
        return False
    supported: SupportCheck = are_retryable_writes_supported if write else are_retryable_reads_supported
    return supported(description)
