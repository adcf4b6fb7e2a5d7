"""Per-player one-shot power-ups: 50/50, extend time, double points."""

from __future__ import annotations

import math
import random
from enum import Enum
from typing import Any

import question_types
from errors import PowerUpError
from models import Player, PowerUpState, Question
from settings import EXTEND_TIME_SECONDS


class PowerUpType(str, Enum):
    FIFTY_FIFTY = "fifty-fifty"
    EXTEND_TIME = "extend-time"
    DOUBLE_POINTS = "double-points"


def new_inventory() -> dict[str, PowerUpState]:
    return {p.value: PowerUpState() for p in PowerUpType}


class PowerUpInventory:
    """View over a player's power-up slots."""

    def __init__(self, player: Player):
        self.player = player
        if not player.powerUps:
            player.powerUps = new_inventory()

    def available(self, power_up: PowerUpType) -> bool:
        state = self.player.powerUps.get(power_up.value)
        return state is not None and not state.used

    def consume(self, power_up: PowerUpType) -> PowerUpState:
        state = self.player.powerUps.setdefault(power_up.value, PowerUpState())
        state.used = True
        return state

    def consume_double_points(self) -> bool:
        """Disarm double points; True if it was armed for this answer."""
        state = self.player.powerUps.get(PowerUpType.DOUBLE_POINTS.value)
        if state is None or not state.active:
            return False
        state.active = False
        return True

    def summary(self) -> dict[str, dict[str, bool]]:
        return {name: state.model_dump() for name, state in self.player.powerUps.items()}


def parse_power_up(value: Any) -> PowerUpType:
    try:
        return PowerUpType(value)
    except ValueError:
        raise PowerUpError(f"Unknown power-up: {value}", code="UNKNOWN_POWER_UP") from None


def hidden_options_for_fifty_fifty(question: Question, rng: random.Random) -> list[int]:
    qtype = question_types.get_type(question.type)
    if not qtype.supports_fifty_fifty:
        raise PowerUpError("50/50 only works on multiple-choice questions",
                           code="POWER_UP_NOT_APPLICABLE")
    correct = qtype.correct_answer(question)
    wrong = [i for i in range(len(question.options)) if i != correct]
    return sorted(rng.sample(wrong, math.ceil(len(wrong) / 2)))


def apply_power_up(player: Player, power_up: PowerUpType, question: Question, *,
                   rng: random.Random) -> dict[str, Any]:
    """Consume `power_up` for `player` and return the player-facing result.

    The caller has already checked that power-ups are on and the question
    is open for this player. Raises PowerUpError without consuming when
    the power-up cannot be used.
    """
    inventory = PowerUpInventory(player)
    if not inventory.available(power_up):
        raise PowerUpError("Power-up already used", code="POWER_UP_USED")

    result: dict[str, Any] = {"success": True, "type": power_up.value}
    if power_up is PowerUpType.FIFTY_FIFTY:
        result["hiddenOptions"] = hidden_options_for_fifty_fifty(question, rng)
        inventory.consume(power_up)
    elif power_up is PowerUpType.EXTEND_TIME:
        inventory.consume(power_up)
        player.deadlineExtensionMs += EXTEND_TIME_SECONDS * 1000
        result["extraSeconds"] = EXTEND_TIME_SECONDS
    elif power_up is PowerUpType.DOUBLE_POINTS:
        inventory.consume(power_up).active = True
    return result
