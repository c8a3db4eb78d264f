import asyncio
import os
import random

from mongo_retry.errors import ConnectionFailure
from mongo_retry.operations import CountOperation
from mongo_retry.otel_runtime import execute_read_traced_optional
from mongo_retry.otel_setup import init_metrics, init_tracer, shutdown
from mongo_retry.session import CoreSession, CoreSessionHandle
from mongo_retry.settings import RetrySettings
from mongo_retry.types import ConnectionDescription, ServerDescription

# Enable tracing / metrics via env (can still be disabled by user)
os.environ.setdefault("MONGO_RETRY_OTEL_ENABLED", "1")
os.environ.setdefault("MONGO_RETRY_OTEL_METRICS_ENABLED", "1")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "http://127.0.0.1:4318")


class FlakyChannel:
    """Answers every count with a random n, dropping the connection with fail_prob."""

    def __init__(self, fail_prob: float):
        self.fail_prob = fail_prob
        self.connection_description = ConnectionDescription(server_version=(4, 4, 0))

    async def command_async(self, session, database_name, command, **kwargs):
        await asyncio.sleep(random.uniform(0.01, 0.05))
        if random.random() < self.fail_prob:
            raise ConnectionFailure("connection reset by peer (demo)")
        return {"n": random.randint(0, 100), "ok": 1}

    def close(self):
        pass


class FlakySource:
    def __init__(self, binding, address):
        self.binding = binding
        self.server = ServerDescription(address)

    @property
    def session(self):
        return self.binding.session

    async def get_channel_async(self, cancellation_token=None):
        return FlakyChannel(self.binding.fail_prob)

    def close(self):
        pass


class FlakyBinding:
    read_preference = "primary"

    def __init__(self, fail_prob: float):
        self.fail_prob = fail_prob
        self.session = CoreSessionHandle(CoreSession(is_implicit=True))
        self._n = 0

    async def get_channel_source_async(self, cancellation_token=None):
        self._n += 1
        return FlakySource(self, f"demo{self._n % 3}:27017")


async def main() -> None:
    # MONGO_RETRY_OTEL_EXPORTER=http (default) or grpc
    exporter = os.getenv("MONGO_RETRY_OTEL_EXPORTER", "http").lower()
    if exporter not in ("http", "grpc"):
        print(f"[mongo-retry] Unknown MONGO_RETRY_OTEL_EXPORTER={exporter!r}, falling back to 'http'")
        exporter = "http"

    settings = RetrySettings.from_env()
    service_name = "mongo-retry-otel-smoke"
    init_tracer(service_name=service_name, exporter=exporter, settings=settings)
    init_metrics(service_name=service_name, exporter=exporter, settings=settings)

    n_ops = int(os.getenv("MONGO_RETRY_SMOKE_OPS", "50"))
    fail_prob = float(os.getenv("MONGO_RETRY_SMOKE_FAIL_PROB", "0.4"))
    print(f"[mongo-retry] running smoke: n_ops={n_ops}, fail_prob={fail_prob}, exporter={exporter}")

    try:
        for i in range(n_ops):
            op = CountOperation("example", "events", settings=settings)
            binding = FlakyBinding(fail_prob)
            try:
                n = await execute_read_traced_optional(
                    op,
                    binding,
                    op.retry_requested,
                    settings=settings,
                    base_attrs={"mongo_retry.demo_op_index": i},
                )
                print(f"[mongo-retry] op #{i} -> n={n}")
            except ConnectionFailure as exc:
                # Both attempts failed; spans and metrics are still recorded
                print(f"[mongo-retry] op #{i} failed after retry: {exc!r}")
    finally:
        shutdown()

    print("[mongo-retry] smoke run complete")


if __name__ == "__main__":
    asyncio.run(main())
