"""
Loot boxes dropped by critical quest completions.

Rarity by quest difficulty (roll in [0, 1), first matching cutoff wins):

  trivial, easy   always common
  normal          rare < 0.10, else common
  hard            epic < 0.05, rare < 0.25, else common
  extreme         epic < 0.10, rare < 0.40, else common
  legendary       legendary < 0.05, epic < 0.20, else rare

Contents: gold in the rarity's range, bonus XP (twice the gold) 30% of the
time, and on epic or legendary boxes a chance of a shadow soldier.
"""

from __future__ import annotations

import random
from datetime import datetime

from questkernel.engine.models import Difficulty, LootBox, LootItem, LootItemKind, LootRarity

BONUS_XP_CHANCE = 0.3
BONUS_XP_PER_GOLD = 2

RARITY_CUTOFFS: dict[Difficulty, tuple[list[tuple[float, LootRarity]], LootRarity]] = {
    Difficulty.trivial: ([], LootRarity.common),
    Difficulty.easy: ([], LootRarity.common),
    Difficulty.normal: ([(0.10, LootRarity.rare)], LootRarity.common),
    Difficulty.hard: ([(0.05, LootRarity.epic), (0.25, LootRarity.rare)], LootRarity.common),
    Difficulty.extreme: ([(0.10, LootRarity.epic), (0.40, LootRarity.rare)], LootRarity.common),
    Difficulty.legendary: ([(0.05, LootRarity.legendary), (0.20, LootRarity.epic)], LootRarity.rare),
}

GOLD_RANGES: dict[LootRarity, tuple[int, int]] = {
    LootRarity.common: (10, 25),
    LootRarity.rare: (25, 75),
    LootRarity.epic: (75, 200),
    LootRarity.legendary: (200, 500),
}

# rarity -> (chance, soldier rank)
SOLDIER_DROPS: dict[LootRarity, tuple[float, str]] = {
    LootRarity.epic: (0.2, "elite"),
    LootRarity.legendary: (0.5, "knight"),
}

SOLDIER_PREFIXES = ["Iron", "Shadow", "Dark", "Storm", "Frost", "Flame", "Steel", "Night"]
SOLDIER_SUFFIXES = ["Fang", "Claw", "Knight", "Guard", "Warden", "Sentinel", "Warrior", "Hunter"]


def loot_rarity(difficulty: Difficulty, rng: random.Random) -> LootRarity:
    cutoffs, fallback = RARITY_CUTOFFS[Difficulty(difficulty)]
    roll = rng.random()
    for cutoff, rarity in cutoffs:
        if roll < cutoff:
            return rarity
    return fallback


def soldier_name(rng: random.Random) -> str:
    return f"{rng.choice(SOLDIER_PREFIXES)} {rng.choice(SOLDIER_SUFFIXES)}"


def roll_contents(rarity: LootRarity, rng: random.Random) -> list[LootItem]:
    low, high = GOLD_RANGES[rarity]
    gold = rng.randint(low, high)
    items = [LootItem(kind=LootItemKind.gold, amount=gold)]

    if rng.random() < BONUS_XP_CHANCE:
        items.append(LootItem(kind=LootItemKind.bonus_xp, amount=gold * BONUS_XP_PER_GOLD))

    drop = SOLDIER_DROPS.get(rarity)
    if drop is not None and rng.random() < drop[0]:
        items.append(LootItem(kind=LootItemKind.shadow_soldier, name=soldier_name(rng), rank=drop[1]))
    return items


def drop_loot_box(
    difficulty: Difficulty,
    rng: random.Random,
    now: datetime,
    source_quest_id: str | None = None,
) -> LootBox:
    rarity = loot_rarity(difficulty, rng)
    return LootBox(
        rarity=rarity,
        contents=roll_contents(rarity, rng),
        source_quest_id=source_quest_id,
        obtained_at=now,
    )
