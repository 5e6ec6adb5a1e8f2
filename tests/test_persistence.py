"""Tests for document storage, tolerant loading and the background writer."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from functools import partial

import pytest

from questkernel import main
from questkernel.db import normalize_url
from questkernel.engine import store
from questkernel.engine.errors import ErrorKind
from questkernel.engine.models import Player, QuestStatus
from questkernel.engine.persistence import (
    DOCUMENT_NAMES,
    DocumentWriter,
    decode_documents,
    encode_documents,
    fresh_player,
    load_state,
)
from questkernel.engine.quests import create_quest, mark_completed
from tests.conftest import T0, FakeSession, SlowSession


def _documents() -> dict[str, str]:
    quest = create_quest("Walk", now=T0)
    mark_completed(quest, T0)
    return encode_documents(Player(name="Jin", gold=12), [quest], [], [])


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecode:
    def test_round_trip(self):
        state = decode_documents(_documents())
        assert state.player.name == "Jin"
        assert state.player.gold == 12
        assert state.quests[0].status == QuestStatus.completed
        assert state.errors == []

    def test_missing_documents_default(self):
        state = decode_documents({})
        assert state.player.name == "Hunter"
        assert state.player.level == 1
        assert state.quests == []
        assert state.bosses == []
        assert state.errors == []

    def test_corrupt_document_falls_back_alone(self):
        raw = _documents()
        raw["quests"] = "{not json"
        state = decode_documents(raw)
        assert state.quests == []
        assert state.player.name == "Jin"
        assert len(state.errors) == 1
        assert state.errors[0].kind == ErrorKind.serialization

    def test_corrupt_player_uses_default_factory(self):
        raw = _documents()
        raw["player"] = '{"level": "high"}'
        state = decode_documents(raw, default_player=lambda: Player(name="Fresh"))
        assert state.player.name == "Fresh"
        assert len(state.quests) == 1

    def test_out_of_range_values_clamped_on_load(self):
        state = decode_documents({"player": '{"current_hp": 900, "max_hp": 120}'})
        assert state.player.current_hp == 120


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestStore:
    @pytest.mark.asyncio
    async def test_ensure_schema(self, fake_session):
        await store.ensure_schema(fake_session)
        assert "CREATE TABLE IF NOT EXISTS game_documents" in fake_session.executed[0][0]
        assert fake_session.commits == 1

    @pytest.mark.asyncio
    async def test_fetch_maps_missing_to_none(self):
        session = FakeSession(rows=[{"name": "player", "body": '{"name": "Jin"}'}])
        documents = await store.fetch_documents(session, DOCUMENT_NAMES)
        assert documents["player"] == '{"name": "Jin"}'
        assert documents["quests"] is None
        sql, params = session.executed[0]
        assert "WHERE name IN (:n0, :n1, :n2, :n3)" in sql
        assert params == {"n0": "player", "n1": "quests", "n2": "bosses", "n3": "activity"}

    @pytest.mark.asyncio
    async def test_fetch_nothing(self, fake_session):
        assert await store.fetch_documents(fake_session, []) == {}
        assert fake_session.executed == []

    @pytest.mark.asyncio
    async def test_upsert_each_document(self, fake_session):
        stamp = datetime(2026, 2, 16, tzinfo=timezone.utc)
        written = await store.upsert_documents(fake_session, {"player": "{}", "quests": "[]"}, stamp)
        assert written == 2
        assert fake_session.commits == 1
        assert all("ON CONFLICT (name) DO UPDATE" in sql for sql, _ in fake_session.executed)
        assert fake_session.executed[1][1] == {"name": "quests", "body": "[]", "updated_at": stamp}

    @pytest.mark.asyncio
    async def test_load_state(self):
        session = FakeSession(rows=[{"name": "player", "body": Player(name="Jin").model_dump_json()}])
        state = await load_state(session)
        assert state.player.name == "Jin"
        assert state.activity == []


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class TestDocumentWriter:
    @pytest.mark.asyncio
    async def test_flush_writes_latest_batch_only(self):
        sessions: list[FakeSession] = []

        def factory():
            session = FakeSession()
            sessions.append(session)
            return session

        writer = DocumentWriter(factory, debounce_seconds=0)
        writer.submit({"player": "first"})
        writer.submit({"player": "second"})
        assert await writer.flush()
        assert writer.writes == 1
        assert len(sessions) == 1
        assert sessions[0].executed[0][1]["body"] == "second"
        assert not writer.has_pending

    @pytest.mark.asyncio
    async def test_flush_with_nothing_pending(self):
        writer = DocumentWriter(FakeSession, debounce_seconds=0)
        assert not await writer.flush()
        assert writer.writes == 0

    @pytest.mark.asyncio
    async def test_failed_write_is_retried(self):
        healthy = {"up": False}

        def factory():
            if not healthy["up"]:
                raise ConnectionError("database unavailable")
            return FakeSession()

        writer = DocumentWriter(factory, debounce_seconds=0)
        writer.submit({"player": "{}"})
        assert not await writer.flush()
        assert writer.has_pending

        healthy["up"] = True
        assert await writer.flush()
        assert writer.writes == 1

    @pytest.mark.asyncio
    async def test_newer_batch_wins_over_failed_one(self):
        calls = {"n": 0}
        sessions: list[FakeSession] = []

        def factory():
            calls["n"] += 1
            if calls["n"] == 1:
                writer.submit({"player": "newer"})
                raise ConnectionError("database unavailable")
            session = FakeSession()
            sessions.append(session)
            return session

        writer = DocumentWriter(factory, debounce_seconds=0)
        writer.submit({"player": "older"})
        assert not await writer.flush()
        assert await writer.flush()
        assert sessions[0].executed[0][1]["body"] == "newer"

    @pytest.mark.asyncio
    async def test_stop_flushes_pending(self):
        sessions: list[FakeSession] = []

        def factory():
            session = FakeSession()
            sessions.append(session)
            return session

        writer = DocumentWriter(factory, debounce_seconds=60)
        await writer.start()
        writer.submit({"player": "{}", "quests": "[]"})
        await writer.stop()
        assert writer.writes == 1
        assert not writer.has_pending
        assert sessions[0].commits == 1

    @pytest.mark.asyncio
    async def test_stop_during_write_keeps_batch(self):
        sessions: list[SlowSession] = []

        def factory():
            session = SlowSession(delay=0.2)
            sessions.append(session)
            return session

        writer = DocumentWriter(factory, debounce_seconds=0)
        await writer.start()
        writer.submit({"player": "{}"})
        await asyncio.sleep(0.05)
        await writer.stop()
        assert writer.writes == 1
        assert not writer.has_pending
        assert sessions[-1].commits == 1

    @pytest.mark.asyncio
    async def test_background_task_retries_failed_write(self):
        attempts = {"n": 0}

        def factory():
            attempts["n"] += 1
            if attempts["n"] == 1:
                raise ConnectionError("database unavailable")
            return FakeSession()

        writer = DocumentWriter(factory, debounce_seconds=0, retry_seconds=0.01)
        await writer.start()
        writer.submit({"player": "{}"})
        for _ in range(100):
            if writer.writes:
                break
            await asyncio.sleep(0.01)
        await writer.stop()
        assert attempts["n"] == 2
        assert writer.writes == 1
        assert not writer.has_pending


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestStartup:
    def test_fresh_player_at_full_health(self):
        state = decode_documents({}, default_player=partial(fresh_player, 250))
        assert state.player.max_hp == 250
        assert state.player.current_hp == 250

    @pytest.mark.asyncio
    async def test_lifespan_uses_configured_max_hp(self, monkeypatch):
        monkeypatch.setattr(main, "async_session", FakeSession)
        monkeypatch.setattr(main.settings, "player_max_hp", 250)
        async with main.lifespan(main.app):
            player = main.app.state.coordinator.player
        assert player.max_hp == 250
        assert player.current_hp == 250

    @pytest.mark.asyncio
    async def test_lifespan_keeps_stored_player(self, monkeypatch):
        stored = Player(name="Jin", max_hp=120, current_hp=80).model_dump_json()
        monkeypatch.setattr(main, "async_session", lambda: FakeSession(rows=[{"name": "player", "body": stored}]))
        monkeypatch.setattr(main.settings, "player_max_hp", 250)
        async with main.lifespan(main.app):
            player = main.app.state.coordinator.player
        assert player.name == "Jin"
        assert player.max_hp == 120


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
    ],
)
def test_database_url_normalized(raw, expected):
    assert normalize_url(raw) == expected
