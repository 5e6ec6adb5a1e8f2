"""Streak & penalty tracker: runs once per local day boundary.

Required quests are rolled into the current window; every required window
that closed without completion counts as a miss. A clean day extends the
streak. A day with misses breaks it and costs player HP; running out of HP
is a defeat (gold, stat and level loss, then a full heal).

Every penalty also issues a penalty quest that expires after a day.
Three active penalties put the player in the Penalty Zone; redeeming the
last one gets them out. A penalty left to expire is replaced by a new one.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from questkernel.engine import formulas
from questkernel.engine.models import (
    DayEvaluation,
    DefeatSummary,
    PenaltyQuest,
    PenaltyType,
    Player,
    Quest,
    StatLoss,
)
from questkernel.engine.quests import roll_over

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PenaltyRules:
    gold_loss_pct: float = 0.10
    stat_loss_pct: float = 0.05
    level_loss: int = 1

    @classmethod
    def from_settings(cls, settings) -> PenaltyRules:
        return cls(
            gold_loss_pct=settings.defeat_gold_loss_pct,
            stat_loss_pct=settings.defeat_stat_loss_pct,
            level_loss=settings.defeat_level_loss,
        )


@dataclass(frozen=True, slots=True)
class WindowTally:
    rolled: int = 0  # windows elapsed across all quests
    closed: int = 0  # required windows elapsed
    missed: int = 0  # required windows elapsed without completion


def roll_quests(quests: list[Quest], now: datetime, tz: str | ZoneInfo) -> WindowTally:
    """Roll every quest forward; tally closed and missed *required* windows."""
    rolled = 0
    closed = 0
    missed = 0
    for quest in quests:
        rollover = roll_over(quest, now, tz)
        rolled += rollover.windows_elapsed
        if quest.is_required:
            closed += rollover.windows_elapsed
            missed += rollover.missed_windows
    return WindowTally(rolled=rolled, closed=closed, missed=missed)


# ---------------------------------------------------------------------------
# Penalty quests
# ---------------------------------------------------------------------------

PENALTY_ZONE_THRESHOLD = 3  # active penalties that put the player in the zone
PENALTY_LIFETIME = timedelta(hours=24)
SEVERE_MISS_COUNT = 3
PENALTY_REDEMPTION_XP = 25
PENALTY_REDEMPTION_GOLD = 5
PENALTY_ZONE_EXIT_XP = 50
EXPIRED_PENALTY_REASON = "Failed to complete penalty in time"

PENALTY_TEMPLATES: list[tuple[PenaltyType, str, str]] = [
    (PenaltyType.physical, "The Plank of Penance", "Hold a plank for 4 minutes."),
    (PenaltyType.social, "Public Accountability", "Tell someone you missed your quests and what you will do tomorrow."),
    (PenaltyType.restriction, "The Fast", "No snacks or treats today. Only essentials."),
]


def issue_penalty(
    player: Player,
    reason: str,
    now: datetime,
    rng: random.Random,
    severe: bool = False,
) -> PenaltyQuest:
    """Count a penalty and hand the player a quest to redeem it.

    Severe penalties are always physical. Reaching the active penalty
    threshold enters the Penalty Zone.
    """
    if severe:
        penalty_type, title, description = PENALTY_TEMPLATES[0]
    else:
        penalty_type, title, description = rng.choice(PENALTY_TEMPLATES)
    penalty = PenaltyQuest(
        title=title,
        description=description,
        penalty_type=penalty_type,
        reason=reason,
        created_at=now,
        expires_at=now + PENALTY_LIFETIME,
    )
    player.active_penalties.append(penalty)
    player.penalty_count += 1
    if len(player.active_penalties) >= PENALTY_ZONE_THRESHOLD and not player.in_penalty_zone:
        player.in_penalty_zone = True
        logger.warning(f"Player {player.id} entered the Penalty Zone")
    logger.info(f"Penalty issued to player {player.id}: {title} ({reason})")
    return penalty


def expire_penalties(player: Player, now: datetime, rng: random.Random) -> list[PenaltyQuest]:
    """Drop expired penalties; each one left undone is replaced by a fresh penalty."""
    unfinished = sum(1 for p in player.active_penalties if p.is_expired(now) and not p.is_completed)
    player.active_penalties = [p for p in player.active_penalties if not p.is_expired(now)]
    return [issue_penalty(player, EXPIRED_PENALTY_REASON, now, rng) for _ in range(unfinished)]


def redeem_penalty(player: Player, penalty_id: str) -> tuple[PenaltyQuest, bool] | None:
    """Complete an active penalty. Returns (penalty, left_zone) or None if unknown."""
    penalty = next((p for p in player.active_penalties if p.id == penalty_id), None)
    if penalty is None:
        return None
    penalty.is_completed = True
    player.active_penalties.remove(penalty)

    left_zone = player.in_penalty_zone and not player.active_penalties
    if left_zone:
        player.in_penalty_zone = False
        logger.info(f"Player {player.id} left the Penalty Zone")
    return penalty, left_zone


def apply_defeat(player: Player, missed_count: int, rules: PenaltyRules) -> DefeatSummary:
    """Strip gold, stats and levels, then heal to full. Rank never rises."""
    previous_level = player.level
    previous_rank = player.rank

    gold_lost = math.floor(player.gold * rules.gold_loss_pct)
    player.gold -= gold_lost

    losses: list[StatLoss] = []
    for kind, stat in player.stats.items():
        before = stat.total_value
        lost = math.floor(before * rules.stat_loss_pct)
        from_base = min(lost, stat.base_value)
        stat.base_value -= from_base
        stat.bonus_value = max(0, stat.bonus_value - (lost - from_base))
        stat.experience -= math.floor(stat.experience * rules.stat_loss_pct)
        if lost > 0:
            losses.append(StatLoss(kind=kind, previous_value=before, new_value=stat.total_value, lost=lost))

    new_level = max(1, previous_level - max(rules.level_loss, 0))
    if new_level < previous_level:
        player.level = new_level
        player.current_xp = formulas.xp_required(new_level) if new_level > 1 else 0
    new_rank = player.rank
    if new_rank.code != previous_rank.code:
        player.title = new_rank.title

    player.current_hp = player.max_hp
    player.in_penalty_zone = True

    logger.warning(
        f"Player {player.id} defeated: missed={missed_count} gold_lost={gold_lost} "
        f"level {previous_level}->{player.level}"
    )
    return DefeatSummary(
        missed_quest_count=missed_count,
        previous_level=previous_level,
        new_level=player.level,
        previous_rank=previous_rank.code,
        new_rank=new_rank.code,
        was_demoted=new_rank.code != previous_rank.code,
        gold_lost=gold_lost,
        gold_remaining=player.gold,
        stat_loss_percent=rules.stat_loss_pct,
        stat_losses=losses,
    )


def evaluate_day(
    player: Player,
    quests: list[Quest],
    now: datetime,
    today: date,
    tz: str | ZoneInfo,
    rules: PenaltyRules,
    rng: random.Random | None = None,
) -> DayEvaluation:
    """Close out every day since `player.last_active_date`.

    Misses tallied by intra-day rollovers (`player.pending_missed`) are folded
    in. With no required windows closed the streak is left alone. A day with
    misses issues one penalty quest.
    """
    last = player.last_active_date or today
    days_elapsed = max((today - last).days, 1)

    tally = roll_quests(quests, now, tz)
    missed = tally.missed + player.pending_missed
    closed = tally.closed + player.pending_missed
    player.pending_missed = 0
    player.last_active_date = today

    evaluation = DayEvaluation(
        evaluated_date=last,
        days_elapsed=days_elapsed,
        required_count=closed,
        completed_count=closed - missed,
        missed_count=missed,
        current_streak=player.current_streak,
    )

    if closed == 0:
        return evaluation

    if missed == 0:
        player.current_streak = player.current_streak + 1 if days_elapsed == 1 else 1
        player.longest_streak = max(player.longest_streak, player.current_streak)
        if not player.active_penalties:
            player.in_penalty_zone = False
        evaluation.streak_extended = True
        evaluation.current_streak = player.current_streak
        logger.info(f"Streak extended to {player.current_streak} for player {player.id}")
        return evaluation

    damage = formulas.penalty_damage(missed)
    player.current_streak = 0
    player.current_hp = max(0, player.current_hp - damage)
    evaluation.current_streak = 0
    evaluation.hp_damage = damage
    evaluation.penalty = issue_penalty(
        player,
        f"Missed {missed} required quest(s)",
        now,
        rng or random.Random(),
        severe=missed >= SEVERE_MISS_COUNT,
    )
    logger.info(f"Player {player.id} missed {missed} required quest(s): -{damage} HP")

    if player.current_hp == 0:
        evaluation.defeat = apply_defeat(player, missed, rules)
    return evaluation
