"""Boss engine: accumulated damage and dynamic-goal HP.

A boss without a dynamic goal only loses HP through damage (micro-tasks,
linked quests) and never heals. A boss with a dynamic goal has its HP fully
recomputed from the goal's metric on every update and heals when the metric
regresses.
"""

from __future__ import annotations

import logging
import math
import random
from datetime import datetime
from zoneinfo import ZoneInfo

from questkernel.engine import formulas
from questkernel.engine.errors import ErrorKind, Result, invalid_state, not_found
from questkernel.engine.goal_types import format_goal_amount, get_goal_type
from questkernel.engine.models import (
    BossFight,
    DamageResult,
    Difficulty,
    DynamicBossGoal,
    MicroTask,
    Quest,
    QuestStatus,
    StatKind,
    TrackingKind,
)
from questkernel.engine.quests import as_aware, create_quest, zone_for

logger = logging.getLogger(__name__)

MIN_GENERATED_TARGET = 0.1


def create_boss(
    title: str,
    *,
    now: datetime,
    description: str = "",
    difficulty: Difficulty = Difficulty.hard,
    target_stats: list[StatKind] | None = None,
    max_hp: int = 10000,
    linked_quest_ids: list[str] | None = None,
    dynamic_goal: DynamicBossGoal | None = None,
    deadline: datetime | None = None,
) -> BossFight:
    stats = list(target_stats or [])
    if not stats and dynamic_goal is not None:
        goal_type = get_goal_type(dynamic_goal.metric.value)
        stats = [StatKind(s) for s in goal_type.default_stats] if goal_type else []

    boss = BossFight(
        title=title,
        description=description,
        difficulty=difficulty,
        target_stats=stats,
        max_hp=max_hp,
        current_hp=max_hp,
        linked_quest_ids=list(dict.fromkeys(linked_quest_ids or [])),
        dynamic_goal=dynamic_goal,
        deadline=deadline,
        created_at=as_aware(now),
    )
    if dynamic_goal is not None:
        dynamic_goal.last_updated_at = as_aware(now)
        boss.current_hp = formulas.hp_from_progress(dynamic_goal.normalized_progress, boss.max_hp)
        _sync_dynamic_status(boss, now)
    return boss


# ---------------------------------------------------------------------------
# Accumulated damage
# ---------------------------------------------------------------------------


def apply_damage(boss: BossFight, amount: int, at: datetime, is_critical: bool = False) -> DamageResult:
    """Reduce HP by `amount`, clamped at zero.

    The crossing to zero completes the boss and is reported once; further
    damage is a no-op.
    """
    if boss.is_defeated:
        return DamageResult(boss_id=boss.id, damage=0, is_critical=False, boss_defeated=False, current_hp=0)

    dealt = min(max(amount, 0), boss.current_hp)
    boss.current_hp -= dealt
    boss.last_damage_dealt = dealt
    boss.total_damage_dealt += dealt

    defeated = boss.current_hp == 0
    if defeated:
        boss.status = QuestStatus.completed
        boss.defeated_at = as_aware(at)
    elif dealt > 0:
        boss.status = QuestStatus.in_progress

    return DamageResult(
        boss_id=boss.id,
        damage=dealt,
        is_critical=is_critical,
        boss_defeated=defeated,
        current_hp=boss.current_hp,
    )


def add_micro_task(boss: BossFight, title: str, difficulty: Difficulty, at: datetime) -> MicroTask:
    task = MicroTask(title=title, difficulty=difficulty, created_at=as_aware(at))
    boss.micro_tasks.append(task)
    return task


def find_micro_task(boss: BossFight, task_id: str) -> MicroTask | None:
    for task in boss.micro_tasks:
        if task.id == task_id:
            return task
    return None


def strike_with_micro_task(
    boss: BossFight,
    task_id: str,
    player_level: int,
    rng: random.Random,
    at: datetime,
) -> Result[DamageResult]:
    """Complete a one-shot micro-task and hit the boss.

    Damage is boss_damage(task difficulty, level), doubled on a critical roll.
    """
    if boss.is_dynamic:
        return invalid_state(f"Boss {boss.id} is driven by a dynamic goal")
    task = find_micro_task(boss, task_id)
    if task is None:
        return not_found("Micro-task", task_id)
    if task.is_completed:
        return invalid_state(f"Micro-task {task_id} already completed")
    if boss.is_defeated:
        return invalid_state(f"Boss {boss.id} already defeated")

    task.is_completed = True
    task.completed_at = as_aware(at)

    damage = formulas.boss_damage(task.difficulty, player_level)
    is_critical = formulas.roll_critical(rng)
    if is_critical:
        damage *= 2
    return Result.success(apply_damage(boss, damage, at, is_critical=is_critical))


def strike_with_linked_quest(boss: BossFight, difficulty: Difficulty, player_level: int, at: datetime) -> DamageResult:
    """Linked-quest hit: 80% of boss damage, at least 1, never critical."""
    return apply_damage(boss, formulas.linked_quest_damage(difficulty, player_level), at)


# ---------------------------------------------------------------------------
# Dynamic goal
# ---------------------------------------------------------------------------


def _sync_dynamic_status(boss: BossFight, at: datetime) -> None:
    if boss.current_hp == 0:
        boss.status = QuestStatus.completed
        if boss.defeated_at is None:
            boss.defeated_at = as_aware(at)
    else:
        boss.status = QuestStatus.in_progress
        boss.defeated_at = None


def recompute_dynamic_hp(boss: BossFight, at: datetime) -> DamageResult:
    """Rederive HP from the goal's current metric.

    `damage` is the HP change (negative when the boss healed).
    """
    goal = boss.dynamic_goal
    if goal is None:
        return DamageResult(boss_id=boss.id, current_hp=boss.current_hp)

    previous_hp = boss.current_hp
    boss.current_hp = formulas.hp_from_progress(goal.normalized_progress, boss.max_hp)
    delta = previous_hp - boss.current_hp
    boss.last_damage_dealt = delta
    if delta > 0:
        boss.total_damage_dealt += delta
    _sync_dynamic_status(boss, at)

    return DamageResult(
        boss_id=boss.id,
        damage=delta,
        is_critical=False,
        boss_defeated=previous_hp > 0 and boss.current_hp == 0,
        current_hp=boss.current_hp,
    )


def update_dynamic_goal(boss: BossFight, value: float, at: datetime) -> Result[DamageResult]:
    """Set the goal's current metric value and recompute HP.

    Non-finite values leave the metric unchanged.
    """
    goal = boss.dynamic_goal
    if goal is None:
        return invalid_state(f"Boss {boss.id} has no dynamic goal")

    if math.isfinite(value):
        goal.current_value = float(value)
    else:
        logger.warning(f"{ErrorKind.out_of_range.value}: boss {boss.id} goal value {value!r} ignored")
    goal.last_updated_at = as_aware(at)
    return Result.success(recompute_dynamic_hp(boss, at))


# ---------------------------------------------------------------------------
# Generated cadence quests
# ---------------------------------------------------------------------------


def _months_between(start: datetime, end: datetime) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if (end.day, end.time()) < (start.day, start.time()):
        months -= 1
    return months


def adjusted_cadence_target(
    goal: DynamicBossGoal,
    deadline: datetime | None,
    now: datetime,
    tz: str | ZoneInfo = "UTC",
) -> float:
    """Cadence target paced so the remaining gap closes by the deadline.

    Never drops below the goal's own per-cadence target.
    """
    if deadline is None or as_aware(deadline) <= as_aware(now):
        return goal.per_cadence_target

    zone = zone_for(tz)
    start = as_aware(now).astimezone(zone)
    end = as_aware(deadline).astimezone(zone)
    days = (end - start).days

    if goal.cadence.value == "daily":
        periods = max(1, days)
    elif goal.cadence.value == "weekly":
        periods = max(1, math.ceil(days / 7))
    else:
        periods = max(1, _months_between(start, end))

    return max(goal.per_cadence_target, goal.remaining_amount / periods)


def per_quest_target(adjusted_target: float, quest_count: int) -> float:
    """Split a cadence target across quests, one decimal, at least 0.1."""
    share = adjusted_target / max(1, quest_count)
    return max(MIN_GENERATED_TARGET, round(share, 1))


def generated_goal_quest(boss: BossFight, now: datetime, tz: str | ZoneInfo = "UTC") -> Quest:
    """Cadence quest linked to a dynamic boss, described by its metric kind."""
    goal = boss.dynamic_goal
    if goal is None:
        raise ValueError(f"Boss {boss.id} has no dynamic goal")

    goal_type = get_goal_type(goal.metric.value)
    target = max(MIN_GENERATED_TARGET, goal.per_cadence_target)
    amount = format_goal_amount(target, goal_type.unit)
    return create_quest(
        f"{boss.title}: {goal.cadence.label} {goal_type.quest_suffix}",
        now=now,
        tz=tz,
        description=goal_type.description_template.format(amount=amount, cadence=goal.cadence.value),
        difficulty=boss.difficulty,
        target_stats=[StatKind(s) for s in goal_type.default_stats],
        tracking=TrackingKind(goal_type.quest_tracking),
        recurrence=goal.cadence.recurrence,
        target_value=target,
        unit=goal_type.unit,
        linked_boss_id=boss.id,
        required=False,
    )


def boss_stat_rewards(boss: BossFight) -> dict[StatKind, int]:
    amount = formulas.boss_stat_xp(boss.difficulty)
    return {kind: amount for kind in boss.target_stats}
