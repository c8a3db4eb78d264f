from __future__ import annotations
import pytest

from mongo_retry.context import RetryableContext
from mongo_retry.errors import ConnectionFailure
from mongo_retry.operations import (
    CountOperation,
    InsertOperation,
    ListDatabasesOperation,
    SingleBatchCursor,
)


def test_count_command_shape(make_binding):
    binding = make_binding(outcomes=[{"n": 4.0, "ok": 1}])
    op = CountOperation(
        "app",
        "users",
        filter={"active": True},
        limit=10,
        skip=2,
        hint="active_1",
        max_time_ms=500,
        read_concern={"level": "majority"},
    )

    assert op.execute(binding) == 4

    sent = binding.commands[0]
    assert sent.database_name == "app"
    assert sent.read_preference == "primary"
    assert sent.command == {
        "count": "users",
        "query": {"active": True},
        "limit": 10,
        "skip": 2,
        "hint": "active_1",
        "maxTimeMS": 500,
        "readConcern": {"level": "majority"},
    }


def test_count_omits_read_concern_in_transaction(make_binding, session):
    session.wrapped.start_transaction()
    binding = make_binding(outcomes=[{"n": 0}], session=session)

    CountOperation("app", "users", read_concern={"level": "local"}).execute(binding)

    assert "readConcern" not in binding.commands[0].command


def test_count_rejects_negative_max_time():
    with pytest.raises(ValueError):
        CountOperation("app", "users", max_time_ms=-1)


def test_encoder_settings_follow_rebound_server(make_binding, make_server):
    binding = make_binding(
        make_server("a:1", max_document_size=1024),
        make_server("b:1", max_document_size=2048),
        outcomes=[ConnectionFailure("reset"), {"n": 1}],
    )

    CountOperation("app", "users").execute(binding)

    first, second = binding.commands
    assert first.encoder_settings["max_document_size"] == 1024
    assert second.encoder_settings["max_document_size"] == 2048


def test_attempt_number_is_validated(make_binding):
    binding = make_binding()
    with RetryableContext.create(binding, retry_requested=True) as context:
        with pytest.raises(ValueError):
            CountOperation("app", "users").execute_attempt(context, 3, None)


def test_list_databases_uses_forked_session(make_binding, session):
    binding = make_binding(
        outcomes=[{"databases": [{"name": "admin"}, {"name": "app"}], "ok": 1}],
        session=session,
    )
    op = ListDatabasesOperation(filter={"name": {"$ne": "local"}}, name_only=True)

    cursor = op.execute(binding)

    assert isinstance(cursor, SingleBatchCursor)
    assert [d["name"] for d in cursor] == ["admin", "app"]
    assert len(cursor) == 2
    sent = binding.commands[0]
    assert sent.database_name == "admin"
    assert sent.command == {"listDatabases": 1, "filter": {"name": {"$ne": "local"}}, "nameOnly": True}
    assert sent.session is not session
    assert sent.session.is_closed
    assert not session.is_closed


@pytest.mark.asyncio
async def test_list_databases_async_retries(make_binding):
    binding = make_binding(outcomes=[ConnectionFailure("reset"), {"databases": []}])

    cursor = await ListDatabasesOperation().execute_async(binding)

    assert cursor.to_list() == []
    assert all(c.session.is_closed for c in binding.commands)


def test_insert_requires_documents():
    with pytest.raises(ValueError):
        InsertOperation("app", "users", [])


def test_insert_command_shape(make_binding):
    binding = make_binding(outcomes=[{"n": 2, "ok": 1}])
    op = InsertOperation(
        "app", "users", [{"_id": 1}, {"_id": 2}], ordered=False, write_concern={"w": "majority"}
    )

    assert op.execute(binding) == 2
    assert binding.commands[0].command == {
        "insert": "users",
        "documents": [{"_id": 1}, {"_id": 2}],
        "ordered": False,
        "txnNumber": 1,
        "writeConcern": {"w": "majority"},
    }


@pytest.mark.asyncio
async def test_execute_with_context_async(make_binding):
    binding = make_binding(outcomes=[{"n": 9}])
    async with await RetryableContext.create_async(binding, retry_requested=True) as context:
        assert await CountOperation("app", "users").execute_with_context_async(context) == 9
