"""Tests for power-up inventory and effects outside a session."""

import random

import pytest

from errors import PowerUpError
from models import Player, Question
from power_ups import (
    PowerUpInventory,
    PowerUpType,
    apply_power_up,
    hidden_options_for_fifty_fifty,
    new_inventory,
)


@pytest.fixture
def player():
    return Player(id="p1", name="Alice", powerUps=new_inventory())


class TestInventory:
    def test_everything_available_at_start(self, player):
        inventory = PowerUpInventory(player)
        assert all(inventory.available(p) for p in PowerUpType)
        assert inventory.summary()["fifty-fifty"] == {"used": False, "active": False}

    def test_double_points_is_consumed_by_one_answer(self, player, make_mc):
        apply_power_up(player, PowerUpType.DOUBLE_POINTS, make_mc(), rng=random.Random(1))
        inventory = PowerUpInventory(player)
        assert not inventory.available(PowerUpType.DOUBLE_POINTS)
        assert inventory.consume_double_points() is True
        assert inventory.consume_double_points() is False


class TestFiftyFifty:
    @pytest.mark.parametrize("seed", range(5))
    def test_hides_half_the_wrong_options(self, seed):
        question = Question(question="Pick", options=["a", "b", "c", "d", "e"], correctAnswer=4)
        hidden = hidden_options_for_fifty_fifty(question, random.Random(seed))
        assert len(hidden) == 2
        assert 4 not in hidden
        assert hidden == sorted(hidden)

    def test_only_multiple_choice(self, player):
        question = Question(question="Sky is blue", type="true-false", correctAnswer=True)
        with pytest.raises(PowerUpError) as exc:
            apply_power_up(player, PowerUpType.FIFTY_FIFTY, question, rng=random.Random(1))
        assert exc.value.code == "POWER_UP_NOT_APPLICABLE"
        # refused power-ups stay available
        assert PowerUpInventory(player).available(PowerUpType.FIFTY_FIFTY)


class TestExtendTime:
    def test_adds_ten_seconds(self, player, make_mc):
        result = apply_power_up(player, PowerUpType.EXTEND_TIME, make_mc(), rng=random.Random(1))
        assert result == {"success": True, "type": "extend-time", "extraSeconds": 10}
        assert player.deadlineExtensionMs == 10_000
        with pytest.raises(PowerUpError):
            apply_power_up(player, PowerUpType.EXTEND_TIME, make_mc(), rng=random.Random(1))
