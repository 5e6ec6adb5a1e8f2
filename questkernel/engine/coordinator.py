"""Progression coordinator: the single owner and writer of game state.

Every public method takes the coordinator lock, rolls quests forward and
evaluates any elapsed day boundary, then performs its action. Quests and
bosses live in id-keyed stores and are mutated in place. Callers receive
copies, never the stored objects.

Collaborators are injected: clock, random source, permission gate and a
persistence sink (called with the encoded documents after each mutation).
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping
from zoneinfo import ZoneInfo

from questkernel.config import Settings, settings as default_settings
from questkernel.engine import bosses as boss_engine
from questkernel.engine import formulas
from questkernel.engine import loot
from questkernel.engine import quests as quest_engine
from questkernel.engine.errors import Result, invalid_state, not_found
from questkernel.engine.models import (
    ActivityKind,
    ActivityLogEntry,
    BossFight,
    BossRewardSummary,
    CompanionSnapshot,
    DamageResult,
    DayEvaluation,
    Difficulty,
    DynamicBossGoal,
    EngineEvent,
    EventKind,
    LevelUpEvent,
    LootItemKind,
    LootOpening,
    MicroTask,
    PenaltyRedemption,
    Player,
    ProgressOutcome,
    Quest,
    QuestStatus,
    Recurrence,
    RewardSummary,
    ShadowSoldier,
    StatGain,
    StatKind,
    TrackingKind,
)
from questkernel.engine.persistence import GameState, encode_documents, fresh_player
from questkernel.engine.snapshot import build_snapshot
from questkernel.engine.streaks import (
    PENALTY_REDEMPTION_GOLD,
    PENALTY_REDEMPTION_XP,
    PENALTY_ZONE_EXIT_XP,
    PenaltyRules,
    evaluate_day,
    expire_penalties,
    redeem_penalty,
    roll_quests,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PermissionGate = Callable[[TrackingKind], bool]
CommitSink = Callable[[dict[str, str]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _allow_all(_: TrackingKind) -> bool:
    return True


@dataclass(slots=True)
class _UndoSnapshot:
    quest_id: str
    quest_title: str
    created_at: datetime
    player: Player
    quests: dict[str, Quest]
    bosses: dict[str, BossFight]
    activity: list[ActivityLogEntry]


class Coordinator:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
        permission_gate: PermissionGate | None = None,
        on_commit: CommitSink | None = None,
        player: Player | None = None,
        quests: list[Quest] | None = None,
        bosses: list[BossFight] | None = None,
        activity: list[ActivityLogEntry] | None = None,
    ):
        self._settings = settings or default_settings
        self._clock = clock or _utcnow
        self._rng = rng or random.Random()
        self._gate = permission_gate or _allow_all
        self._on_commit = on_commit
        self._tz = ZoneInfo(self._settings.default_tz)
        self._rules = PenaltyRules.from_settings(self._settings)
        self._lock = threading.RLock()

        self._player = player or fresh_player(self._settings.player_max_hp)
        self._quests: dict[str, Quest] = {q.id: q for q in quests or []}
        self._bosses: dict[str, BossFight] = {b.id: b for b in bosses or []}
        self._activity: list[ActivityLogEntry] = list(activity or [])
        self._events: list[EngineEvent] = []
        self._undo: _UndoSnapshot | None = None
        self._last_evaluation: DayEvaluation | None = None

    @classmethod
    def from_state(cls, state: GameState, **kwargs) -> Coordinator:
        return cls(
            player=state.player,
            quests=state.quests,
            bosses=state.bosses,
            activity=state.activity,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read access (copies only)
    # ------------------------------------------------------------------

    @property
    def tz(self) -> ZoneInfo:
        return self._tz

    @property
    def player(self) -> Player:
        with self._lock:
            return self._player.model_copy(deep=True)

    def quest(self, quest_id: str) -> Quest | None:
        with self._lock:
            quest = self._quests.get(quest_id)
            return quest.model_copy(deep=True) if quest else None

    def boss(self, boss_id: str) -> BossFight | None:
        with self._lock:
            boss = self._bosses.get(boss_id)
            return boss.model_copy(deep=True) if boss else None

    def quests(self) -> list[Quest]:
        with self._lock:
            return [q.model_copy(deep=True) for q in self._quests.values()]

    def bosses(self) -> list[BossFight]:
        with self._lock:
            return [b.model_copy(deep=True) for b in self._bosses.values()]

    def recent_activity(self, limit: int | None = None) -> list[ActivityLogEntry]:
        """Newest first, bounded by `limit` (default: the configured window)."""
        window = limit if limit is not None else self._settings.activity_window
        with self._lock:
            if window <= 0:
                return []
            return [e.model_copy() for e in reversed(self._activity[-window:])]

    def drain_events(self) -> list[EngineEvent]:
        with self._lock:
            events, self._events = self._events, []
            return events

    def documents(self) -> dict[str, str]:
        with self._lock:
            return encode_documents(
                self._player,
                list(self._quests.values()),
                list(self._bosses.values()),
                self._activity,
            )

    def snapshot(self, at: datetime | None = None) -> CompanionSnapshot:
        with self._lock:
            now = self._now(at)
            if self._refresh_locked(now):
                self._commit_locked()
            return build_snapshot(self._player, list(self._quests.values()), now, self._tz)

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def refresh(self, at: datetime | None = None) -> DayEvaluation | None:
        """Roll quests forward and evaluate an elapsed day, if any."""
        with self._lock:
            now = self._now(at)
            self._last_evaluation = None
            if self._refresh_locked(now):
                self._commit_locked()
            return self._last_evaluation

    def reset_quest_progress(self, at: datetime | None = None) -> Result[int]:
        """Manually restart every quest window."""
        with self._lock:
            now = self._now(at)
            self._refresh_locked(now)
            for quest in self._quests.values():
                quest_engine.reset_window(quest, now, self._tz)
            self._log(ActivityKind.quest_reset, "Quest progress reset", f"{len(self._quests)} quest(s)", now)
            self._commit_locked()
            return Result.success(len(self._quests))

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    def create_quest(
        self,
        title: str,
        *,
        description: str = "",
        difficulty: Difficulty = Difficulty.normal,
        target_stats: list[StatKind] | None = None,
        tracking: TrackingKind = TrackingKind.manual,
        recurrence: Recurrence = Recurrence.daily,
        target_value: float = 1.0,
        unit: str = "",
        linked_boss_id: str | None = None,
        required: bool | None = None,
        at: datetime | None = None,
    ) -> Result[Quest]:
        with self._lock:
            now = self._now(at)
            self._refresh_locked(now)
            if linked_boss_id is not None and linked_boss_id not in self._bosses:
                logger.warning(f"Cannot link new quest to unknown boss {linked_boss_id}")
                return not_found("Boss", linked_boss_id)

            quest = quest_engine.create_quest(
                title,
                now=now,
                tz=self._tz,
                description=description,
                difficulty=difficulty,
                target_stats=target_stats,
                tracking=tracking,
                recurrence=recurrence,
                target_value=target_value,
                unit=unit,
                required=required,
            )
            self._quests[quest.id] = quest
            if linked_boss_id is not None:
                self._link_quest_locked(quest, self._bosses[linked_boss_id], now)

            self._log(ActivityKind.quest_created, quest.title, f"{quest.difficulty.value} • {quest.recurrence.value}", now)
            self._commit_locked()
            return Result.success(quest.model_copy(deep=True))

    def delete_quest(self, quest_id: str, at: datetime | None = None) -> Result[Quest]:
        with self._lock:
            now = self._now(at)
            self._refresh_locked(now)
            quest = self._quests.pop(quest_id, None)
            if quest is None:
                logger.warning(f"delete_quest: unknown quest {quest_id}")
                return not_found("Quest", quest_id)

            for boss in self._bosses.values():
                if quest_id in boss.linked_quest_ids:
                    boss.linked_quest_ids.remove(quest_id)
                if boss.dynamic_goal is not None and boss.dynamic_goal.generated_quest_id == quest_id:
                    boss.dynamic_goal.generated_quest_id = None

            self._log(ActivityKind.quest_deleted, quest.title, "", now)
            self._commit_locked()
            return Result.success(quest)

    def complete_quest(self, quest_id: str, at: datetime | None = None) -> Result[RewardSummary]:
        """Manual completion. Rewards are granted once per completion edge."""
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            quest = self._quests.get(quest_id)
            if quest is None:
                logger.warning(f"complete_quest: unknown quest {quest_id}")
                return self._fail_locked(not_found("Quest", quest_id), changed)

            undo = self._capture_undo_locked(quest, now)
            result = quest_engine.mark_completed(quest, now)
            if not result.ok:
                logger.warning(f"complete_quest: {result.error}")
                return self._fail_locked(result, changed)

            summary = self._grant_quest_rewards_locked(quest, now)
            self._undo = undo
            self._commit_locked()
            return Result.success(summary)

    def report_progress(
        self,
        target_id: str,
        value: float,
        at: datetime | None = None,
        source: TrackingKind | None = None,
    ) -> Result[ProgressOutcome]:
        """Entry point for metric sources: set progress on a quest or a boss goal.

        Automatic sources are checked against the permission gate; manual
        reports are never blocked.
        """
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)

            quest = self._quests.get(target_id)
            if quest is not None:
                return self._report_quest_progress_locked(quest, value, now, source or quest.tracking, changed)

            boss = self._bosses.get(target_id)
            if boss is not None:
                kind = source or TrackingKind.manual
                if not self._permitted(kind):
                    return self._fail_locked(invalid_state(f"No permission for {kind.value} tracking"), changed)
                result = self._update_goal_locked(boss, value, now)
                if not result.ok:
                    return self._fail_locked(result, changed)
                self._commit_locked()
                return Result.success(
                    ProgressOutcome(
                        target_id=boss.id,
                        target_kind="boss",
                        progress=boss.dynamic_goal.normalized_progress,
                        completed=boss.is_defeated,
                        damage=result.value,
                    )
                )

            logger.warning(f"report_progress: unknown target {target_id}")
            return self._fail_locked(not_found("Quest or goal", target_id), changed)

    def undo_last_completion(self, at: datetime | None = None) -> Result[Quest]:
        """Revert the most recent quest completion within the undo window."""
        with self._lock:
            now = self._now(at)
            undo = self._undo
            if undo is None:
                return invalid_state("Nothing to undo")
            if now - undo.created_at > timedelta(seconds=self._settings.undo_window_seconds):
                self._undo = None
                return invalid_state("Undo window has elapsed")

            self._player = undo.player
            self._quests = undo.quests
            self._bosses = undo.bosses
            self._activity = undo.activity
            self._undo = None
            self._refresh_locked(now)

            self._log(ActivityKind.completion_undone, undo.quest_title, "Completion reverted", now)
            self._commit_locked()
            logger.info(f"Undid completion of quest {undo.quest_id}")
            quest = self._quests.get(undo.quest_id)
            return Result.success(quest.model_copy(deep=True)) if quest else not_found("Quest", undo.quest_id)

    # ------------------------------------------------------------------
    # Bosses
    # ------------------------------------------------------------------

    def create_boss(
        self,
        title: str,
        *,
        description: str = "",
        difficulty: Difficulty = Difficulty.hard,
        target_stats: list[StatKind] | None = None,
        max_hp: int = 10000,
        linked_quest_ids: list[str] | None = None,
        dynamic_goal: DynamicBossGoal | None = None,
        auto_generate_goal_quest: bool = False,
        deadline: datetime | None = None,
        at: datetime | None = None,
    ) -> Result[BossFight]:
        with self._lock:
            now = self._now(at)
            self._refresh_locked(now)

            boss = boss_engine.create_boss(
                title,
                now=now,
                description=description,
                difficulty=difficulty,
                target_stats=target_stats,
                max_hp=max_hp,
                dynamic_goal=dynamic_goal.model_copy(deep=True) if dynamic_goal else None,
                deadline=deadline,
            )
            self._bosses[boss.id] = boss

            for quest_id in linked_quest_ids or []:
                quest = self._quests.get(quest_id)
                if quest is None:
                    logger.warning(f"create_boss: skipping unknown linked quest {quest_id}")
                    continue
                self._link_quest_locked(quest, boss, now)

            if auto_generate_goal_quest and boss.dynamic_goal is not None:
                generated = boss_engine.generated_goal_quest(boss, now, self._tz)
                self._quests[generated.id] = generated
                boss.dynamic_goal.generated_quest_id = generated.id
                self._link_quest_locked(generated, boss, now)

            detail = f"{boss.max_hp} HP"
            if boss.dynamic_goal is not None:
                detail += f" • {boss.dynamic_goal.metric.value} goal"
            self._log(ActivityKind.boss_created, boss.title, detail, now)
            self._commit_locked()
            return Result.success(boss.model_copy(deep=True))

    def add_micro_task(
        self,
        boss_id: str,
        title: str,
        difficulty: Difficulty = Difficulty.normal,
        at: datetime | None = None,
    ) -> Result[MicroTask]:
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            boss = self._bosses.get(boss_id)
            if boss is None:
                return self._fail_locked(not_found("Boss", boss_id), changed)
            if boss.is_dynamic:
                return self._fail_locked(invalid_state(f"Boss {boss_id} is driven by a dynamic goal"), changed)

            task = boss_engine.add_micro_task(boss, title, difficulty, now)
            self._log(ActivityKind.micro_task_added, boss.title, task.title, now)
            self._commit_locked()
            return Result.success(task.model_copy())

    def complete_micro_task(self, boss_id: str, task_id: str, at: datetime | None = None) -> Result[DamageResult]:
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            boss = self._bosses.get(boss_id)
            if boss is None:
                logger.warning(f"complete_micro_task: unknown boss {boss_id}")
                return self._fail_locked(not_found("Boss", boss_id), changed)

            result = boss_engine.strike_with_micro_task(boss, task_id, self._player.level, self._rng, now)
            if not result.ok:
                logger.warning(f"complete_micro_task: {result.error}")
                return self._fail_locked(result, changed)

            damage = result.value
            task = boss_engine.find_micro_task(boss, task_id)
            hit = f"{'CRITICAL ' if damage.is_critical else ''}-{damage.damage} HP"
            if damage.boss_defeated:
                rewards = self._claim_boss_rewards_locked(boss, now)
                self._log(ActivityKind.boss_defeated, boss.title, self._boss_reward_detail(rewards, hit), now)
            else:
                self._log(ActivityKind.boss_damaged, boss.title, f"{task.title}: {hit}", now)
            self._commit_locked()
            return Result.success(damage)

    def update_dynamic_goal(self, boss_id: str, new_value: float, at: datetime | None = None) -> Result[DamageResult]:
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            boss = self._bosses.get(boss_id)
            if boss is None:
                logger.warning(f"update_dynamic_goal: unknown boss {boss_id}")
                return self._fail_locked(not_found("Boss", boss_id), changed)
            result = self._update_goal_locked(boss, new_value, now)
            if not result.ok:
                return self._fail_locked(result, changed)
            self._commit_locked()
            return result

    # ------------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------------

    def redeem_reward(self, title: str, cost: int, at: datetime | None = None) -> Result[Player]:
        """Spend gold on a real-world reward."""
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            if cost < 0:
                return self._fail_locked(invalid_state("Reward cost cannot be negative"), changed)
            if cost > self._player.gold:
                return self._fail_locked(invalid_state("Insufficient gold"), changed)

            self._player.gold -= cost
            self._log(ActivityKind.reward_consumed, title, f"-{cost} Gold", now)
            self._commit_locked()
            return Result.success(self._player.model_copy(deep=True))

    def open_loot_box(self, box_id: str, at: datetime | None = None) -> Result[LootOpening]:
        """Apply a pending loot box's contents and discard the box."""
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            player = self._player
            box = next((b for b in player.pending_loot_boxes if b.id == box_id), None)
            if box is None:
                logger.warning(f"open_loot_box: unknown loot box {box_id}")
                return self._fail_locked(not_found("Loot box", box_id), changed)

            level_up = None
            for item in box.contents:
                if item.kind == LootItemKind.gold:
                    player.gold += item.amount
                elif item.kind == LootItemKind.bonus_xp:
                    level_up = self._award_xp_locked(item.amount, now) or level_up
                elif item.kind == LootItemKind.shadow_soldier:
                    player.shadow_soldiers.append(
                        ShadowSoldier(name=item.name or "Nameless", rank=item.rank or "elite", acquired_at=now)
                    )
                elif item.kind == LootItemKind.title:
                    if item.name and item.name not in player.unlocked_titles:
                        player.unlocked_titles.append(item.name)
                elif item.kind == LootItemKind.stat_boost and item.stat is not None:
                    stat = player.stats[item.stat]
                    stat.bonus_value += item.amount
            player.pending_loot_boxes.remove(box)

            count = len(box.contents)
            self._log(ActivityKind.reward_consumed, "Loot Box Opened", f"{count} reward{'' if count == 1 else 's'} claimed", now)
            self._commit_locked()
            logger.info(f"Opened {box.rarity.value} loot box {box.id}: {count} item(s)")
            return Result.success(LootOpening(box_id=box.id, rarity=box.rarity, items=box.contents, level_up=level_up))

    # ------------------------------------------------------------------
    # Penalties
    # ------------------------------------------------------------------

    def complete_penalty(self, penalty_id: str, at: datetime | None = None) -> Result[PenaltyRedemption]:
        """Redeem an active penalty quest; clearing the last one leaves the Penalty Zone."""
        with self._lock:
            now = self._now(at)
            changed = self._refresh_locked(now)
            redeemed = redeem_penalty(self._player, penalty_id)
            if redeemed is None:
                logger.warning(f"complete_penalty: unknown or expired penalty {penalty_id}")
                return self._fail_locked(not_found("Penalty", penalty_id), changed)

            penalty, left_zone = redeemed
            xp = PENALTY_REDEMPTION_XP + (PENALTY_ZONE_EXIT_XP if left_zone else 0)
            level_up = self._award_xp_locked(xp, now)
            self._player.gold += PENALTY_REDEMPTION_GOLD

            detail = f"+{xp} XP • +{PENALTY_REDEMPTION_GOLD} Gold"
            if left_zone:
                detail += " • Left the Penalty Zone"
            self._log(ActivityKind.penalty_completed, penalty.title, detail, now)
            self._commit_locked()
            return Result.success(
                PenaltyRedemption(
                    penalty_id=penalty.id,
                    xp_awarded=xp,
                    gold_awarded=PENALTY_REDEMPTION_GOLD,
                    exited_penalty_zone=left_zone,
                    level_up=level_up,
                )
            )

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _now(self, at: datetime | None) -> datetime:
        return quest_engine.as_aware(at) if at is not None else quest_engine.as_aware(self._clock())

    def _permitted(self, kind: TrackingKind) -> bool:
        if not kind.is_automatic:
            return True
        allowed = bool(self._gate(kind))
        if not allowed:
            logger.warning(f"Progress from {kind.value} ignored: permission unavailable")
        return allowed

    def _fail_locked(self, result: Result, changed: bool) -> Result:
        if changed:
            self._commit_locked()
        return result

    def _refresh_locked(self, now: datetime) -> bool:
        """Roll quests forward; evaluate the previous day(s) on a new local day."""
        today = quest_engine.local_date(now, self._tz)
        quests = list(self._quests.values())
        last = self._player.last_active_date
        renewed = self._expire_penalties_locked(now)

        if last is None:
            self._player.last_active_date = today
            roll_quests(quests, now, self._tz)
            return True

        if today > last:
            evaluation = evaluate_day(self._player, quests, now, today, self._tz, self._rules, self._rng)
            self._last_evaluation = evaluation
            self._record_evaluation_locked(evaluation, now)
            return True

        tally = roll_quests(quests, now, self._tz)
        self._player.pending_missed += tally.missed
        if tally.rolled > 0:
            self._log(ActivityKind.quest_reset, "Quests rolled over", f"{tally.rolled} window(s) closed", now)
        return tally.rolled > 0 or renewed

    def _expire_penalties_locked(self, now: datetime) -> bool:
        renewed = expire_penalties(self._player, now, self._rng)
        for penalty in renewed:
            self._log(ActivityKind.penalty_applied, "Penalty expired", f"New penalty: {penalty.title}", now)
        return bool(renewed)

    def _record_evaluation_locked(self, evaluation: DayEvaluation, now: datetime) -> None:
        if evaluation.required_count == 0:
            self._log(ActivityKind.quest_reset, "Day closed", "No required quests due", now)
            return
        penalty = f" • Penalty: {evaluation.penalty.title}" if evaluation.penalty else ""
        self._emit(EventKind.day_evaluated, now, evaluation.model_dump(mode="json"))
        if evaluation.defeat is not None:
            defeat = evaluation.defeat
            self._log(
                ActivityKind.player_defeated,
                "HP depleted",
                f"Missed {defeat.missed_quest_count} • -{defeat.gold_lost} Gold • Rank {defeat.new_rank}{penalty}",
                now,
            )
            self._emit(EventKind.player_defeated, now, defeat.model_dump(mode="json"))
        elif evaluation.streak_extended:
            self._log(ActivityKind.streak_extended, "Streak extended", f"{evaluation.current_streak} day(s)", now)
        else:
            self._log(
                ActivityKind.penalty_applied,
                "Quests missed",
                f"Missed {evaluation.missed_count} • -{evaluation.hp_damage} HP{penalty}",
                now,
            )

    def _report_quest_progress_locked(
        self,
        quest: Quest,
        value: float,
        now: datetime,
        kind: TrackingKind,
        changed: bool,
    ) -> Result[ProgressOutcome]:
        if not self._permitted(kind):
            return self._fail_locked(invalid_state(f"No permission for {kind.value} tracking"), changed)

        undo = self._capture_undo_locked(quest, now)
        previous = quest.current_value
        result = quest_engine.update_progress(quest, value, now)
        if not result.ok:
            return self._fail_locked(result, changed)

        reward = None
        completed = quest_engine.check_completion(quest, now)
        if completed:
            reward = self._grant_quest_rewards_locked(quest, now)
            self._undo = undo
        elif quest.current_value != previous:
            self._log(
                ActivityKind.quest_progress,
                quest.title,
                f"{quest.current_value:g}/{quest.target_value:g} {quest.unit}".rstrip(),
                now,
            )
        elif not changed:
            return Result.success(ProgressOutcome(target_id=quest.id, target_kind="quest", progress=quest.progress))

        self._commit_locked()
        return Result.success(
            ProgressOutcome(
                target_id=quest.id,
                target_kind="quest",
                progress=quest.progress,
                completed=completed,
                reward=reward,
            )
        )

    def _update_goal_locked(self, boss: BossFight, value: float, now: datetime) -> Result[DamageResult]:
        result = boss_engine.update_dynamic_goal(boss, value, now)
        if not result.ok:
            logger.warning(f"update_dynamic_goal: {result.error}")
            return result

        damage = result.value
        self._adjust_generated_targets_locked(boss, now)
        self._mirror_goal_quest_locked(boss, now)
        goal = boss.dynamic_goal
        progress = f"{goal.current_value:g} → {goal.target_value:g} • HP {boss.current_hp}/{boss.max_hp}"
        if damage.boss_defeated:
            rewards = self._claim_boss_rewards_locked(boss, now)
            self._log(ActivityKind.boss_defeated, boss.title, self._boss_reward_detail(rewards, progress), now)
        else:
            self._log(ActivityKind.goal_updated, boss.title, progress, now)
        return result

    def _mirror_goal_quest_locked(self, boss: BossFight, now: datetime) -> None:
        """Show the goal's progress on its manual generated quest. Pays nothing."""
        goal = boss.dynamic_goal
        quest = self._quests.get(goal.generated_quest_id) if goal.generated_quest_id else None
        if quest is None or quest.tracking != TrackingKind.manual or quest.status == QuestStatus.completed:
            return
        progress = goal.normalized_progress
        quest.current_value = progress * quest.target_value if quest.target_value > 0 else progress
        if progress >= 1.0:
            quest.status = QuestStatus.completed
            quest.completed_at = now
        elif progress > 0:
            quest.status = QuestStatus.in_progress

    def _link_quest_locked(self, quest: Quest, boss: BossFight, now: datetime) -> None:
        """Link `quest` to `boss`, dropping any previous link (one boss per quest)."""
        if quest.linked_boss_id and quest.linked_boss_id != boss.id:
            previous = self._bosses.get(quest.linked_boss_id)
            if previous is not None and quest.id in previous.linked_quest_ids:
                previous.linked_quest_ids.remove(quest.id)
        quest.linked_boss_id = boss.id
        if quest.id not in boss.linked_quest_ids:
            boss.linked_quest_ids.append(quest.id)
        if boss.is_dynamic:
            self._adjust_generated_targets_locked(boss, now)

    def _adjust_generated_targets_locked(self, boss: BossFight, now: datetime) -> None:
        """Re-pace the cadence quests linked to a dynamic boss."""
        goal = boss.dynamic_goal
        if goal is None:
            return
        linked = [
            self._quests[qid]
            for qid in boss.linked_quest_ids
            if qid in self._quests and self._quests[qid].linked_boss_id == boss.id
        ]
        if not linked:
            return
        adjusted = boss_engine.adjusted_cadence_target(goal, boss.deadline, now, self._tz)
        target = boss_engine.per_quest_target(adjusted, len(linked))
        for quest in linked:
            if abs(quest.target_value - target) > 1e-4:
                quest.target_value = target
            quest.recurrence = goal.cadence.recurrence

    def _capture_undo_locked(self, quest: Quest, now: datetime) -> _UndoSnapshot:
        return _UndoSnapshot(
            quest_id=quest.id,
            quest_title=quest.title,
            created_at=now,
            player=self._player.model_copy(deep=True),
            quests={qid: q.model_copy(deep=True) for qid, q in self._quests.items()},
            bosses={bid: b.model_copy(deep=True) for bid, b in self._bosses.items()},
            activity=list(self._activity),
        )

    def _grant_quest_rewards_locked(self, quest: Quest, now: datetime) -> RewardSummary:
        multiplier = formulas.streak_multiplier(self._player.current_streak)
        xp = formulas.quest_xp(quest.difficulty, multiplier)
        gold = formulas.quest_gold(quest.difficulty)

        level_up = self._award_xp_locked(xp, now)
        self._player.gold += gold
        amount = formulas.stat_xp(quest.difficulty)
        gains = [self._award_stat_xp_locked(kind, amount) for kind in quest.target_stats]
        self._player.completed_quest_count += 1

        boss_result, boss_rewards = self._route_linked_boss_locked(quest, now)

        is_critical = formulas.roll_critical(self._rng)
        loot_box = None
        if is_critical:
            loot_box = loot.drop_loot_box(quest.difficulty, self._rng, now, source_quest_id=quest.id)
            self._player.pending_loot_boxes.append(loot_box)

        detail = f"+{xp} XP • +{gold} Gold"
        if boss_result is not None and boss_result.damage > 0:
            detail += f" • {boss_result.damage} boss damage"
        if boss_rewards is not None:
            detail += f" • Boss defeated (+{boss_rewards.xp_awarded} XP)"
        if loot_box is not None:
            detail += f" • Critical! {loot_box.rarity.value.capitalize()} loot box"
        self._log(ActivityKind.quest_completed, quest.title, detail, now)
        self._emit(EventKind.quest_completed, now, {"quest_id": quest.id, "xp": xp, "gold": gold})
        logger.info(f"Quest {quest.id} completed: +{xp} XP (x{multiplier:.2f}), +{gold} gold")

        return RewardSummary(
            quest_id=quest.id,
            xp_awarded=xp,
            gold_awarded=gold,
            streak_multiplier=multiplier,
            stat_gains=gains,
            level_up=level_up,
            boss_result=boss_result,
            boss_rewards=boss_rewards,
            is_critical=is_critical,
            loot_box=loot_box,
        )

    def _route_linked_boss_locked(
        self,
        quest: Quest,
        now: datetime,
    ) -> tuple[DamageResult | None, BossRewardSummary | None]:
        boss = self._bosses.get(quest.linked_boss_id) if quest.linked_boss_id else None
        if boss is None:
            return None, None
        if boss.is_dynamic:
            result = boss_engine.recompute_dynamic_hp(boss, now)
        else:
            result = boss_engine.strike_with_linked_quest(boss, quest.difficulty, self._player.level, now)
        rewards = self._claim_boss_rewards_locked(boss, now) if result.boss_defeated else None
        return result, rewards

    def _award_xp_locked(self, amount: int, now: datetime) -> LevelUpEvent | None:
        player = self._player
        previous_level = player.level
        previous_rank = player.rank
        player.current_xp += amount
        player.total_xp += amount
        while player.current_xp >= formulas.xp_required(player.level + 1):
            player.level += 1

        if player.level == previous_level:
            return None

        new_rank = player.rank
        event = LevelUpEvent(
            previous_level=previous_level,
            new_level=player.level,
            previous_rank=previous_rank.code,
            new_rank=new_rank.code,
        )
        self._emit(EventKind.level_up, now, event.model_dump(mode="json"))
        if event.rank_up:
            player.title = new_rank.title
            if new_rank.title not in player.unlocked_titles:
                player.unlocked_titles.append(new_rank.title)
            self._emit(EventKind.rank_up, now, {"rank": new_rank.code, "title": new_rank.title})
        logger.info(f"Player {player.id} level {previous_level} -> {player.level}")
        return event

    def _award_stat_xp_locked(self, kind: StatKind, amount: int) -> StatGain:
        stat = self._player.stats[kind]
        stat.experience += amount
        stat.base_value = min(999, stat.base_value + formulas.stat_point_gain(amount))
        return StatGain(kind=kind, amount=amount)

    def _claim_boss_rewards_locked(self, boss: BossFight, now: datetime) -> BossRewardSummary | None:
        """Pay out a defeated boss once, however many times it is defeated."""
        if boss.rewards_claimed:
            return None
        boss.rewards_claimed = True

        xp = boss.xp_reward
        gold = boss.gold_reward
        self._award_xp_locked(xp, now)
        self._player.gold += gold
        gains = [
            self._award_stat_xp_locked(kind, amount)
            for kind, amount in boss_engine.boss_stat_rewards(boss).items()
        ]
        self._player.defeated_boss_count += 1

        soldier = ShadowSoldier(
            name=f"Shadow of {boss.title}",
            rank="knight" if boss.difficulty == Difficulty.legendary else "elite",
            source_boss_id=boss.id,
            acquired_at=now,
        )
        self._player.shadow_soldiers.append(soldier)

        if not boss.is_dynamic:
            for quest in self._quests.values():
                if quest.linked_boss_id == boss.id:
                    quest.linked_boss_id = None

        self._emit(EventKind.boss_defeated, now, {"boss_id": boss.id, "xp": xp, "gold": gold})
        logger.info(f"Boss {boss.id} defeated: +{xp} XP, +{gold} gold")
        return BossRewardSummary(boss_id=boss.id, xp_awarded=xp, gold_awarded=gold, stat_gains=gains, soldier=soldier)

    @staticmethod
    def _boss_reward_detail(rewards: BossRewardSummary | None, prefix: str) -> str:
        if rewards is None:
            return prefix
        return f"{prefix} • +{rewards.xp_awarded} XP • +{rewards.gold_awarded} Gold"

    def _log(self, kind: ActivityKind, title: str, detail: str, now: datetime) -> None:
        self._activity.append(ActivityLogEntry(kind=kind, title=title, detail=detail, timestamp=now))

    def _emit(self, kind: EventKind, now: datetime, payload: Mapping | None = None) -> None:
        self._events.append(EngineEvent(kind=kind, timestamp=now, payload=dict(payload or {})))

    def _commit_locked(self) -> None:
        if self._on_commit is None:
            return
        try:
            self._on_commit(self.documents())
        except Exception:
            logger.exception("Persistence sink failed")
