from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import event

from chatrelay.core.errors import NotFound
from chatrelay.models.base import as_utc


@pytest.mark.asyncio
async def test_upsert_is_idempotent_and_attaches_owner_once(store):
    first = await store.upsert_session("s1")
    assert first.owner_id is None

    claimed = await store.upsert_session("s1", owner_id="alice")
    assert claimed.owner_id == "alice"

    # re-asserting the same owner is a no-op
    again = await store.upsert_session("s1", owner_id="alice")
    assert again.owner_id == "alice"
    assert as_utc(again.created_at) == as_utc(first.created_at)


@pytest.mark.asyncio
async def test_upsert_never_moves_a_session_between_owners(store):
    await store.upsert_session("s1", owner_id="alice")

    with pytest.raises(NotFound):
        await store.upsert_session("s1", owner_id="bob")
    with pytest.raises(NotFound):
        await store.upsert_session("s1", owner_id=None)

    assert [s.id for s in await store.list_sessions_for_owner("alice")] == ["s1"]


@pytest.mark.asyncio
async def test_append_requires_an_upserted_session(store):
    with pytest.raises(NotFound):
        await store.append_message("missing", "user", "hello")


@pytest.mark.asyncio
async def test_user_then_assistant_round_trip(store):
    await store.upsert_session("s1")
    await store.append_message("s1", "user", "What is 2+2?")
    await store.append_message("s1", "assistant", "  4  \n")

    messages = await store.list_messages("s1")
    assert [(m.role, m.content) for m in messages] == [
        ("user", "What is 2+2?"),
        ("assistant", "  4  \n"),
    ]


@pytest.mark.asyncio
async def test_append_is_monotonic_even_when_the_clock_stalls_or_steps_back(store, monkeypatch):
    await store.upsert_session("s1")
    base = datetime(2026, 1, 1, tzinfo=UTC)
    times = iter([base, base, base - timedelta(seconds=5), base + timedelta(seconds=1)])
    monkeypatch.setattr("chatrelay.services.database_service.utcnow", lambda: next(times))

    for i in range(4):
        await store.append_message("s1", "user", f"m{i}")

    messages = await store.list_messages("s1")
    stamps = [as_utc(m.created_at) for m in messages]
    assert [m.content for m in messages] == ["m0", "m1", "m2", "m3"]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_list_messages_limit_returns_the_tail_oldest_first(store):
    await store.upsert_session("s1")
    for i in range(5):
        await store.append_message("s1", "user" if i % 2 == 0 else "assistant", f"m{i}")

    tail = await store.list_messages("s1", limit=2)
    assert [m.content for m in tail] == ["m3", "m4"]


@pytest.mark.asyncio
async def test_sessions_for_owner_newest_first_with_previews(store, monkeypatch):
    base = datetime(2026, 3, 1, tzinfo=UTC)
    times = iter([base + timedelta(minutes=i) for i in range(50)])
    monkeypatch.setattr("chatrelay.models.base.utcnow", lambda: next(times))
    monkeypatch.setattr("chatrelay.services.database_service.utcnow", lambda: next(times))

    await store.upsert_session("older", owner_id="alice")
    await store.append_message("older", "user", "Short question")
    await store.upsert_session("newer", owner_id="alice")
    await store.append_message("newer", "user", "A" * 40)
    await store.append_message("newer", "assistant", "reply")
    await store.upsert_session("empty", owner_id="alice")
    await store.upsert_session("not-mine", owner_id="bob")

    summaries = await store.list_sessions_for_owner("alice")

    assert [s.id for s in summaries] == ["empty", "newer", "older"]
    assert [s.title for s in summaries] == ["New Chat", "A" * 30 + "...", "Short question"]


@pytest.mark.asyncio
async def test_delete_by_non_owner_deletes_nothing(store):
    await store.upsert_session("s1", owner_id="alice")
    await store.append_message("s1", "user", "keep me")

    assert await store.delete_session("s1", "bob") is False
    assert await store.delete_session("missing", "alice") is False

    assert [m.content for m in await store.list_messages("s1")] == ["keep me"]


@pytest.mark.asyncio
async def test_delete_by_owner_removes_session_and_messages(store):
    await store.upsert_session("s1", owner_id="alice")
    await store.append_message("s1", "user", "bye")
    await store.upsert_session("s2", owner_id="alice")
    await store.append_message("s2", "user", "stay")

    assert await store.delete_session("s1", "alice") is True

    with pytest.raises(NotFound):
        await store.get_session_messages("s1", "alice")
    assert await store.list_messages("s1") == []
    assert [m.content for m in await store.list_messages("s2")] == ["stay"]


@pytest.mark.asyncio
async def test_anonymous_sessions_cannot_be_deleted(store):
    await store.upsert_session("anon")
    assert await store.delete_session("anon", "alice") is False
    assert await store.get_session_messages("anon", None) == []


@pytest.mark.asyncio
async def test_get_session_messages_is_scoped_to_the_owner(store):
    await store.upsert_session("a-session", owner_id="alice")
    await store.append_message("a-session", "user", "secret")
    await store.upsert_session("anon")
    await store.append_message("anon", "user", "public-ish")

    assert [m.content for m in await store.get_session_messages("a-session", "alice")] == ["secret"]
    assert [m.content for m in await store.get_session_messages("anon", None)] == ["public-ish"]

    with pytest.raises(NotFound):
        await store.get_session_messages("a-session", "bob")
    with pytest.raises(NotFound):
        await store.get_session_messages("a-session", None)
    with pytest.raises(NotFound):
        await store.get_session_messages("anon", "alice")
    with pytest.raises(NotFound):
        await store.get_session_messages("missing", "alice")


@pytest.mark.asyncio
async def test_nearest_messages_orders_by_distance_and_skips_unembedded(store):
    await store.upsert_session("s1")
    far = await store.append_message("s1", "user", "far", embedding=[10.0, 0.0])
    near = await store.append_message("s1", "assistant", "near", embedding=[1.0, 0.0])
    await store.append_message("s1", "user", "no embedding")
    tie = await store.append_message("s1", "user", "tie", embedding=[1.0, 0.0])
    wrong_dim = await store.append_message("s1", "user", "3d", embedding=[1.0, 0.0, 0.0])

    await store.upsert_session("other")
    await store.append_message("other", "user", "other session", embedding=[1.0, 0.0])

    matches = await store.nearest_messages("s1", [1.0, 0.0], limit=5)
    assert [m.id for m in matches] == [near, tie, far]
    assert wrong_dim not in [m.id for m in matches]

    limited = await store.nearest_messages("s1", [1.0, 0.0], limit=1, exclude_ids=[near])
    assert [m.id for m in limited] == [tie]


@pytest.mark.asyncio
async def test_set_message_embedding_fills_only_missing_vectors(store):
    await store.upsert_session("s1")
    bare = await store.append_message("s1", "user", "hello")
    embedded = await store.append_message("s1", "user", "hi", embedding=[1.0])

    assert await store.set_message_embedding(bare, [0.5]) is True
    assert await store.set_message_embedding(embedded, [9.0]) is False

    by_id = {m.id: m for m in await store.list_messages("s1")}
    assert by_id[bare].embedding == [0.5]
    assert by_id[bare].content == "hello"
    assert by_id[embedded].embedding == [1.0]


@pytest.mark.asyncio
async def test_health_check(store):
    assert await store.health_check() is True


@pytest.mark.asyncio
async def test_history_previews_come_from_a_single_query(store, engine):
    for i in range(3):
        await store.upsert_session(f"s{i}", owner_id="alice")
        await store.append_message(f"s{i}", "user", f"first {i}")
        await store.append_message(f"s{i}", "assistant", f"reply {i}")

    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    try:
        summaries = await store.list_sessions_for_owner("alice")
    finally:
        event.remove(engine, "before_cursor_execute", record)

    assert sorted(s.title for s in summaries) == ["first 0", "first 1", "first 2"]
    assert len(statements) == 1
