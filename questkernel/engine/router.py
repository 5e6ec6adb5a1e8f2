"""Engine HTTP router for mutations on quests, bosses, rewards, loot and penalties."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from questkernel.auth import verify_api_key
from questkernel.engine.coordinator import Coordinator
from questkernel.engine.errors import ErrorKind, Result
from questkernel.engine.models import (
    BossCreate,
    BossFight,
    DamageResult,
    DynamicBossGoal,
    GoalValueUpdate,
    LootOpening,
    MicroTask,
    MicroTaskCreate,
    PenaltyRedemption,
    Player,
    ProgressOutcome,
    ProgressReport,
    Quest,
    QuestCreate,
    RewardRedemption,
    RewardSummary,
)

router = APIRouter(prefix="/engine", tags=["engine"])

_STATUS_BY_KIND = {
    ErrorKind.not_found: 404,
    ErrorKind.invalid_state: 409,
    ErrorKind.out_of_range: 422,
    ErrorKind.serialization: 500,
}


def get_coordinator(request: Request) -> Coordinator:
    """The application's coordinator (overridden in tests)."""
    return request.app.state.coordinator


def _unwrap(result: Result):
    if not result.ok:
        raise HTTPException(status_code=_STATUS_BY_KIND[result.error.kind], detail=result.error.message)
    return result.value


# ---------------------------------------------------------------------------
# /engine/quests
# ---------------------------------------------------------------------------


@router.post("/quests", response_model=Quest, status_code=201)
async def create_quest(
    body: QuestCreate,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> Quest:
    return _unwrap(coordinator.create_quest(**body.model_dump()))


@router.delete("/quests/{quest_id}", response_model=Quest)
async def delete_quest(
    quest_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> Quest:
    return _unwrap(coordinator.delete_quest(quest_id))


@router.post("/quests/{quest_id}/complete", response_model=RewardSummary)
async def complete_quest(
    quest_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> RewardSummary:
    return _unwrap(coordinator.complete_quest(quest_id))


@router.post("/quests/reset")
async def reset_quests(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> dict[str, int]:
    return {"reset": _unwrap(coordinator.reset_quest_progress())}


@router.post("/progress", response_model=ProgressOutcome)
async def report_progress(
    body: ProgressReport,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> ProgressOutcome:
    return _unwrap(coordinator.report_progress(body.target_id, body.value, at=body.at, source=body.source))


@router.post("/undo", response_model=Quest)
async def undo_last_completion(
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> Quest:
    return _unwrap(coordinator.undo_last_completion())


# ---------------------------------------------------------------------------
# /engine/bosses
# ---------------------------------------------------------------------------


@router.post("/bosses", response_model=BossFight, status_code=201)
async def create_boss(
    body: BossCreate,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> BossFight:
    goal = None
    if body.dynamic_goal is not None:
        requested = body.dynamic_goal
        goal = DynamicBossGoal(
            metric=requested.metric,
            start_value=requested.start_value,
            target_value=requested.target_value,
            current_value=requested.start_value if requested.current_value is None else requested.current_value,
            cadence=requested.cadence,
            per_cadence_target=requested.per_cadence_target,
        )
    return _unwrap(
        coordinator.create_boss(
            body.title,
            description=body.description,
            difficulty=body.difficulty,
            target_stats=body.target_stats,
            max_hp=body.max_hp,
            linked_quest_ids=body.linked_quest_ids,
            dynamic_goal=goal,
            auto_generate_goal_quest=body.auto_generate_goal_quest,
            deadline=body.deadline,
        )
    )


@router.post("/bosses/{boss_id}/tasks", response_model=MicroTask, status_code=201)
async def add_micro_task(
    boss_id: str,
    body: MicroTaskCreate,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> MicroTask:
    return _unwrap(coordinator.add_micro_task(boss_id, body.title, body.difficulty))


@router.post("/bosses/{boss_id}/tasks/{task_id}/complete", response_model=DamageResult)
async def complete_micro_task(
    boss_id: str,
    task_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> DamageResult:
    return _unwrap(coordinator.complete_micro_task(boss_id, task_id))


@router.post("/bosses/{boss_id}/goal", response_model=DamageResult)
async def update_dynamic_goal(
    boss_id: str,
    body: GoalValueUpdate,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> DamageResult:
    return _unwrap(coordinator.update_dynamic_goal(boss_id, body.value))


# ---------------------------------------------------------------------------
# /engine/rewards
# ---------------------------------------------------------------------------


@router.post("/rewards/redeem", response_model=Player)
async def redeem_reward(
    body: RewardRedemption,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> Player:
    return _unwrap(coordinator.redeem_reward(body.title, body.cost))


@router.post("/loot/{box_id}/open", response_model=LootOpening)
async def open_loot_box(
    box_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> LootOpening:
    return _unwrap(coordinator.open_loot_box(box_id))


# ---------------------------------------------------------------------------
# /engine/penalties
# ---------------------------------------------------------------------------


@router.post("/penalties/{penalty_id}/complete", response_model=PenaltyRedemption)
async def complete_penalty(
    penalty_id: str,
    coordinator: Coordinator = Depends(get_coordinator),
    _: str = Depends(verify_api_key),
) -> PenaltyRedemption:
    return _unwrap(coordinator.complete_penalty(penalty_id))
