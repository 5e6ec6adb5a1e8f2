"""Pure progression formulas: integer math, never rounds up.

Everything here is deterministic except `roll_critical`, which takes the
random source as an argument.
"""

from __future__ import annotations

import math
import random

from questkernel.engine.reward_table import (
    BOSS_REWARD_MULTIPLIER,
    BOSS_STAT_XP_MULTIPLIER,
    get_reward_row,
)

CRITICAL_SUCCESS_CHANCE = 0.10
LINKED_QUEST_DAMAGE_FACTOR = 0.8
PENALTY_DAMAGE_PER_MISS = 5
MAX_STREAK_MULTIPLIER = 2.0
STREAK_BONUS_PER_DAY = 0.05


def xp_required(level: int) -> int:
    """Cumulative XP needed to reach `level`."""
    return math.floor(level * 100 * math.pow(1.5, level / 10))


def quest_xp(difficulty: str, bonus_multiplier: float = 1.0) -> int:
    return math.floor(get_reward_row(difficulty).base_xp * bonus_multiplier)


def quest_gold(difficulty: str) -> int:
    return get_reward_row(difficulty).gold


def stat_xp(difficulty: str) -> int:
    return get_reward_row(difficulty).stat_xp


def boss_xp(difficulty: str) -> int:
    return quest_xp(difficulty) * BOSS_REWARD_MULTIPLIER


def boss_gold(difficulty: str) -> int:
    return quest_gold(difficulty) * BOSS_REWARD_MULTIPLIER


def boss_stat_xp(difficulty: str) -> int:
    return stat_xp(difficulty) * BOSS_STAT_XP_MULTIPLIER


def streak_multiplier(streak: int) -> float:
    """1.0 at no streak, +5% per day, capped at 2.0."""
    return min(1 + max(streak, 0) * STREAK_BONUS_PER_DAY, MAX_STREAK_MULTIPLIER)


def boss_damage(difficulty: str, player_level: int) -> int:
    return math.floor(quest_xp(difficulty) * (1 + player_level / 100))


def linked_quest_damage(difficulty: str, player_level: int) -> int:
    return max(1, math.floor(boss_damage(difficulty, player_level) * LINKED_QUEST_DAMAGE_FACTOR))


def penalty_damage(missed_quests: int) -> int:
    return max(missed_quests, 0) * PENALTY_DAMAGE_PER_MISS


def stat_point_gain(amount: int) -> int:
    """Base-value points granted for `amount` stat XP (at least one)."""
    return max(1, round(max(amount, 1) / 5))


def roll_critical(rng: random.Random, chance: float = CRITICAL_SUCCESS_CHANCE) -> bool:
    """Bernoulli trial against the supplied random source."""
    return rng.random() < chance


def normalized_goal_progress(start: float, target: float, current: float) -> float:
    """Fraction of the distance from start to target covered, in [0, 1].

    Works for increasing and decreasing goals. A degenerate goal
    (start == target) is either done or not.
    """
    delta = target - start
    if abs(delta) < 1e-9:
        return 1.0 if abs(current - target) < 1e-9 else 0.0
    progress = (current - start) / delta
    if math.isnan(progress):
        return 0.0
    return min(max(progress, 0.0), 1.0)


def hp_from_progress(progress: float, max_hp: int) -> int:
    """HP left on a dynamic boss after `progress` of its goal is covered.

    Rounds half up (12.5 -> 13).
    """
    hp = math.floor((1 - progress) * max_hp + 0.5)
    return min(max(hp, 0), max_hp)


def clamp_unit(value: float) -> float:
    """Clamp to [0, 1]; NaN maps to 0."""
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)
