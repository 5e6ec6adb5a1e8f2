"""Tests for loot box rarity and contents."""

import random
from datetime import datetime, timezone

import pytest

from questkernel.engine.loot import (
    GOLD_RANGES,
    SOLDIER_PREFIXES,
    SOLDIER_SUFFIXES,
    drop_loot_box,
    loot_rarity,
    roll_contents,
)
from questkernel.engine.models import Difficulty, LootItemKind, LootRarity
from tests.conftest import FixedRandom

NOW = datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)


class TestRarity:
    @pytest.mark.parametrize(
        "difficulty,roll,expected",
        [
            (Difficulty.trivial, 0.0, LootRarity.common),
            (Difficulty.easy, 0.0, LootRarity.common),
            (Difficulty.normal, 0.05, LootRarity.rare),
            (Difficulty.normal, 0.5, LootRarity.common),
            (Difficulty.hard, 0.01, LootRarity.epic),
            (Difficulty.hard, 0.2, LootRarity.rare),
            (Difficulty.hard, 0.3, LootRarity.common),
            (Difficulty.extreme, 0.05, LootRarity.epic),
            (Difficulty.extreme, 0.3, LootRarity.rare),
            (Difficulty.legendary, 0.01, LootRarity.legendary),
            (Difficulty.legendary, 0.1, LootRarity.epic),
            (Difficulty.legendary, 0.9, LootRarity.rare),
        ],
    )
    def test_table(self, difficulty, roll, expected):
        assert loot_rarity(difficulty, FixedRandom(roll)) == expected

    def test_plain_strings_accepted(self):
        assert loot_rarity("legendary", FixedRandom(0.9)) == LootRarity.rare


class TestContents:
    def test_gold_within_rarity_range(self):
        rng = random.Random(3)
        for rarity, (low, high) in GOLD_RANGES.items():
            for _ in range(20):
                gold = roll_contents(rarity, rng)[0]
                assert gold.kind == LootItemKind.gold
                assert low <= gold.amount <= high

    def test_bonus_xp_is_twice_the_gold(self):
        items = roll_contents(LootRarity.common, FixedRandom(0.1))
        assert [item.kind for item in items] == [LootItemKind.gold, LootItemKind.bonus_xp]
        assert items[1].amount == items[0].amount * 2

    def test_no_bonus_on_high_roll(self):
        items = roll_contents(LootRarity.legendary, FixedRandom(0.9))
        assert [item.kind for item in items] == [LootItemKind.gold]

    def test_common_and_rare_never_hold_soldiers(self):
        for rarity in (LootRarity.common, LootRarity.rare):
            kinds = [item.kind for item in roll_contents(rarity, FixedRandom(0.0))]
            assert LootItemKind.shadow_soldier not in kinds

    def test_epic_soldier_is_elite(self):
        soldier = roll_contents(LootRarity.epic, FixedRandom(0.1))[-1]
        assert soldier.kind == LootItemKind.shadow_soldier
        assert soldier.rank == "elite"
        prefix, suffix = soldier.name.split(" ")
        assert prefix in SOLDIER_PREFIXES
        assert suffix in SOLDIER_SUFFIXES

    def test_epic_soldier_chance_missed(self):
        kinds = [item.kind for item in roll_contents(LootRarity.epic, FixedRandom(0.25))]
        assert LootItemKind.shadow_soldier not in kinds

    def test_legendary_soldier_is_knight(self):
        soldier = roll_contents(LootRarity.legendary, FixedRandom(0.4))[-1]
        assert soldier.rank == "knight"


def test_drop_records_source():
    box = drop_loot_box(Difficulty.normal, FixedRandom(0.5), NOW, source_quest_id="q1")
    assert box.rarity == LootRarity.common
    assert box.source_quest_id == "q1"
    assert box.obtained_at == NOW
    assert box.contents[0].kind == LootItemKind.gold
