import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI

from questkernel.config import settings
from questkernel.db import async_session
from questkernel.engine import store
from questkernel.engine.coordinator import Coordinator
from questkernel.engine.persistence import DocumentWriter, fresh_player, load_state
from questkernel.engine.router import router as engine_router
from questkernel.engine.state_router import router as state_router

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    writer = DocumentWriter(
        async_session,
        debounce_seconds=settings.persist_debounce_seconds,
        retry_seconds=settings.persist_retry_seconds,
    )
    async with async_session() as session:
        await store.ensure_schema(session)
        state = await load_state(session, default_player=partial(fresh_player, settings.player_max_hp))
    app.state.coordinator = Coordinator.from_state(state, settings=settings, on_commit=writer.submit)
    app.state.writer = writer
    await writer.start()
    logger.info("QuestKernel started")
    try:
        yield
    finally:
        await writer.stop()
        logger.info("QuestKernel stopped")


app = FastAPI(title="QuestKernel", version="0.1.0", lifespan=lifespan)
app.include_router(engine_router)
app.include_router(state_router)


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "engine": {
            "snapshot": "/engine/snapshot",
            "activity": "/engine/activity",
            "player": "/engine/player",
            "quests": "/engine/quests",
            "quests_complete": "/engine/quests/{id}/complete",
            "progress": "/engine/progress",
            "bosses": "/engine/bosses",
            "boss_tasks": "/engine/bosses/{id}/tasks",
            "boss_goal": "/engine/bosses/{id}/goal",
            "rewards_redeem": "/engine/rewards/redeem",
            "loot_open": "/engine/loot/{id}/open",
            "penalties_complete": "/engine/penalties/{id}/complete",
            "undo": "/engine/undo",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
