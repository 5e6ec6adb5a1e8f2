"""Read-only engine endpoints: companion snapshot, activity log and state listings."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from questkernel.auth import verify_api_key
from questkernel.engine.coordinator import Coordinator
from questkernel.engine.models import ActivityLogEntry, BossFight, CompanionSnapshot, Player, Quest
from questkernel.engine.router import get_coordinator

router = APIRouter(prefix="/engine", tags=["engine-state"])


@router.get("/snapshot", response_model=CompanionSnapshot)
async def get_snapshot(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> CompanionSnapshot:
    return coordinator.snapshot()


@router.get("/activity", response_model=list[ActivityLogEntry])
async def get_activity(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
    limit: int | None = Query(default=None, ge=1, le=1000, description="Max entries, newest first"),
) -> list[ActivityLogEntry]:
    return coordinator.recent_activity(limit)


@router.get("/player", response_model=Player)
async def get_player(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> Player:
    coordinator.refresh()
    return coordinator.player


@router.get("/quests", response_model=list[Quest])
async def get_quests(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> list[Quest]:
    coordinator.refresh()
    return sorted(coordinator.quests(), key=lambda q: q.created_at)


@router.get("/bosses", response_model=list[BossFight])
async def get_bosses(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> list[BossFight]:
    return sorted(coordinator.bosses(), key=lambda b: b.created_at)
