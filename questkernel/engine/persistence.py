"""Persistence: document encoding, tolerant loading and the coalescing writer.

Player, quests, bosses and the activity log are four independent JSON
documents. Loading falls back per document: a missing one is
default-constructed, a corrupt one is logged and default-constructed.

Writes are fire-and-forget. The coordinator hands the latest documents to
`DocumentWriter.submit` after each mutation batch; the writer keeps only the
newest batch and flushes it after a short debounce.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from pydantic import TypeAdapter, ValidationError

from questkernel.engine import store
from questkernel.engine.errors import EngineError, ErrorKind
from questkernel.engine.models import ActivityLogEntry, BossFight, Player, Quest

logger = logging.getLogger(__name__)

DOCUMENT_NAMES = ("player", "quests", "bosses", "activity")

_QUESTS = TypeAdapter(list[Quest])
_BOSSES = TypeAdapter(list[BossFight])
_ACTIVITY = TypeAdapter(list[ActivityLogEntry])


@dataclass(slots=True)
class GameState:
    player: Player
    quests: list[Quest] = field(default_factory=list)
    bosses: list[BossFight] = field(default_factory=list)
    activity: list[ActivityLogEntry] = field(default_factory=list)
    errors: list[EngineError] = field(default_factory=list)


def fresh_player(max_hp: int) -> Player:
    """A new player at full health."""
    return Player(max_hp=max_hp, current_hp=max_hp)


def encode_documents(
    player: Player,
    quests: list[Quest],
    bosses: list[BossFight],
    activity: list[ActivityLogEntry],
) -> dict[str, str]:
    return {
        "player": player.model_dump_json(),
        "quests": _QUESTS.dump_json(quests).decode(),
        "bosses": _BOSSES.dump_json(bosses).decode(),
        "activity": _ACTIVITY.dump_json(activity).decode(),
    }


def _decode(name: str, body: str | None, parse: Callable[[str], Any], default: Callable[[], Any], errors: list[EngineError]) -> Any:
    if body is None:
        return default()
    try:
        return parse(body)
    except ValidationError as exc:
        logger.warning(f"Corrupt '{name}' document, using defaults: {exc.error_count()} error(s)")
        errors.append(EngineError(kind=ErrorKind.serialization, message=f"Corrupt '{name}' document"))
        return default()


def decode_documents(
    raw: Mapping[str, str | None],
    default_player: Callable[[], Player] = Player,
) -> GameState:
    """Rebuild state from raw documents, one document at a time."""
    errors: list[EngineError] = []
    player = _decode("player", raw.get("player"), Player.model_validate_json, default_player, errors)
    quests = _decode("quests", raw.get("quests"), _QUESTS.validate_json, list, errors)
    bosses = _decode("bosses", raw.get("bosses"), _BOSSES.validate_json, list, errors)
    activity = _decode("activity", raw.get("activity"), _ACTIVITY.validate_json, list, errors)
    return GameState(player=player, quests=quests, bosses=bosses, activity=activity, errors=errors)


async def load_state(session, default_player: Callable[[], Player] = Player) -> GameState:
    raw = await store.fetch_documents(session, DOCUMENT_NAMES)
    state = decode_documents(raw, default_player)
    logger.info(
        f"Loaded state: {len(state.quests)} quest(s), {len(state.bosses)} boss(es), "
        f"{len(state.activity)} log entries, {len(state.errors)} fallback(s)"
    )
    return state


class DocumentWriter:
    """Coalescing background writer.

    `submit` is safe to call from any thread. Only the most recent batch
    is kept; rapid submissions collapse into a single write. A failed
    write is retried by the background task after `retry_seconds`.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        debounce_seconds: float = 0.5,
        retry_seconds: float = 5.0,
    ):
        self._session_factory = session_factory
        self._debounce = debounce_seconds
        self._retry = retry_seconds
        self._lock = threading.Lock()
        self._pending: dict[str, str] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None
        self._task: asyncio.Task | None = None
        self.writes = 0

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def submit(self, documents: Mapping[str, str]) -> None:
        with self._lock:
            self._pending = dict(documents)
        if self._loop is not None and self._wakeup is not None:
            self._loop.call_soon_threadsafe(self._wakeup.set)

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        if self.has_pending:
            self._wakeup.set()

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._loop = None
        await self.flush()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            if self._debounce > 0:
                await asyncio.sleep(self._debounce)
            if not await self.flush() and self.has_pending:
                logger.info(f"Retrying document write in {self._retry}s")
                await asyncio.sleep(self._retry)
                self._wakeup.set()

    def _restore(self, documents: dict[str, str]) -> None:
        # A batch submitted meanwhile is newer and wins.
        with self._lock:
            if self._pending is None:
                self._pending = documents

    async def flush(self) -> bool:
        """Write the pending batch now. Returns True if anything was written."""
        with self._lock:
            documents, self._pending = self._pending, None
        if not documents:
            return False

        try:
            async with self._session_factory() as session:
                await store.upsert_documents(session, documents)
        except asyncio.CancelledError:
            self._restore(documents)
            raise
        except Exception:
            logger.exception(f"Failed to persist documents: {', '.join(documents)}")
            self._restore(documents)
            return False

        self.writes += 1
        logger.debug(f"Persisted {len(documents)} document(s)")
        return True
