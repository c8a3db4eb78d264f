from __future__ import annotations
from dataclasses import dataclass

from .types import ConnectionDescription, ServerVersion


@dataclass(frozen=True)
class Feature:
    name: str
    first_server_version: ServerVersion

    def is_supported(self, server_version: ServerVersion) -> bool:
        return tuple(server_version) >= self.first_server_version


RETRYABLE_READS = Feature("RetryableReads", (3, 6, 0))
RETRYABLE_WRITES = Feature("RetryableWrites", (3, 6, 0))


def are_retryable_reads_supported(description: ConnectionDescription) -> bool:
    return RETRYABLE_READS.is_supported(description.server_version)


def are_retryable_writes_supported(description: ConnectionDescription) -> bool:
    # Needs sessions (txnNumber) and something other than a standalone
    return (
        RETRYABLE_WRITES.is_supported(description.server_version)
        and description.logical_session_timeout_minutes is not None
        and description.server_type != "Standalone"
    )
