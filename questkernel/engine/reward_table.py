"""
Reward lookups per quest difficulty.

Ordering (lowest to highest): trivial, easy, normal, hard, extreme, legendary.

  base_xp   experience granted by a quest of this difficulty
  gold      currency granted by a quest of this difficulty
  stat_xp   experience granted to each of the quest's target stats

Bosses pay out ten times the quest XP and gold of their difficulty.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RewardRow:
    base_xp: int
    gold: int
    stat_xp: int


REWARDS: dict[str, RewardRow] = {
    "trivial": RewardRow(base_xp=5, gold=1, stat_xp=2),
    "easy": RewardRow(base_xp=15, gold=3, stat_xp=5),
    "normal": RewardRow(base_xp=30, gold=5, stat_xp=10),
    "hard": RewardRow(base_xp=60, gold=10, stat_xp=20),
    "extreme": RewardRow(base_xp=100, gold=20, stat_xp=35),
    "legendary": RewardRow(base_xp=200, gold=50, stat_xp=60),
}

BOSS_REWARD_MULTIPLIER = 10
BOSS_STAT_XP_MULTIPLIER = 5


def get_reward_row(difficulty: str) -> RewardRow:
    row = REWARDS.get(difficulty)
    if row is None:
        raise KeyError(f"Unknown difficulty: {difficulty}")
    return row


def list_difficulties() -> list[str]:
    return list(REWARDS.keys())
