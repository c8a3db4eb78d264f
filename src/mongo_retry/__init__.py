from .cancellation import CancellationToken
from .classify import ErrorKind, classify
from .context import RetryableContext
from .errors import (
    CommandError,
    ConnectionFailure,
    MongoError,
    NodeIsRecoveringError,
    NotPrimaryError,
    OperationCancelled,
    WriteConcernError,
)
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
from .pinning import unpin_server_if_needed, unpin_server_if_needed_on_retryable_commit
from .session import CoreSession, CoreSessionHandle, CoreTransaction, TransactionState
from .settings import RetrySettings

__all__ = [
    "CancellationToken",
    "ErrorKind",
    "classify",
    "RetryableContext",
    "CommandError",
    "ConnectionFailure",
    "MongoError",
    "NodeIsRecoveringError",
    "NotPrimaryError",
    "OperationCancelled",
    "WriteConcernError",
    "execute_read",
    "execute_read_async",
    "execute_read_with_context",
    "execute_read_with_context_async",
    "execute_write",
    "execute_write_async",
    "execute_write_with_context",
    "execute_write_with_context_async",
    "unpin_server_if_needed",
    "unpin_server_if_needed_on_retryable_commit",
    "CoreSession",
    "CoreSessionHandle",
    "CoreTransaction",
    "TransactionState",
    "RetrySettings",
]

# Optional: expose OTEL-integrated helpers if available.
try:
    from .otel_runtime import (  # noqa: F401
        execute_read_traced_optional,
        execute_write_traced_optional,
    )

    __all__ += ["execute_read_traced_optional", "execute_write_traced_optional"]
except Exception:  # pragma: no cover - OTEL deps missing/broken
    # Core executors remain fully usable without tracing.
    pass

__version__ = "0.1.0"
