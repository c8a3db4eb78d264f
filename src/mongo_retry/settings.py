from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


@dataclass(frozen=True)
class RetrySettings:
    """
    Client-wide knobs, built once and passed down explicitly.

    Environment variables (all optional):
      MONGO_RETRY_READS, MONGO_RETRY_WRITES           -> default on
      MONGO_RETRY_OTEL_ENABLED                        -> default off
      MONGO_RETRY_OTEL_METRICS_ENABLED                -> default off
      MONGO_RETRY_SERVICE_VERSION                     -> default "dev"
    """

    retry_reads: bool = True
    retry_writes: bool = True
    otel_enabled: bool = False
    otel_metrics_enabled: bool = False
    service_version: str = "dev"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RetrySettings":
        env = os.environ if env is None else env
        return cls(
            retry_reads=_env_flag(env, "MONGO_RETRY_READS", True),
            retry_writes=_env_flag(env, "MONGO_RETRY_WRITES", True),
            otel_enabled=_env_flag(env, "MONGO_RETRY_OTEL_ENABLED", False),
            otel_metrics_enabled=_env_flag(env, "MONGO_RETRY_OTEL_METRICS_ENABLED", False),
            service_version=env.get("MONGO_RETRY_SERVICE_VERSION", "dev") or "dev",
        )
