"""
Battle Arena - Test Configuration and Fixtures
Shared test utilities and fixtures for pytest.
"""
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from battle_arena.core.battle_state import BattleState, TeamState  # noqa: E402
from battle_arena.core.bounds import BoundsPolicy  # noqa: E402
from battle_arena.core.dice import DiceRoller  # noqa: E402
from battle_arena.core.rules_config import BattleRules  # noqa: E402
from battle_arena.core.scheduler import RoundScheduler  # noqa: E402
from battle_arena.core.stats import CharacterSnapshot  # noqa: E402


# ==================== Dice Doubles ====================

class FixedDice(DiceRoller):
    """
    Scripted dice.

    ``random()`` returns the queued values in order and then ``default``.
    ``choice`` picks the first option, ``randint`` the low end and jitter is
    always zero.
    """

    def __init__(self, rolls: Optional[List[float]] = None, default: float = 0.99):
        super().__init__(seed=0)
        self.rolls = list(rolls or [])
        self.default = default

    def random(self) -> float:
        if self.rolls:
            return self.rolls.pop(0)
        return self.default

    def randint(self, low: int, high: int) -> int:
        if high < low:
            raise ValueError(f"Invalid range: {low}..{high}")
        return low

    def uniform(self, low: float, high: float) -> float:
        return low

    def choice(self, options):
        if not options:
            raise ValueError("Cannot choose from an empty sequence")
        return options[0]

    def jitter(self, amplitude: float) -> float:
        return 0.0


@pytest.fixture
def never_dice() -> FixedDice:
    """Dice where every percentage roll fails (no crits, no counters)."""
    return FixedDice(default=0.99)


@pytest.fixture
def always_dice() -> FixedDice:
    """Dice where every percentage roll succeeds."""
    return FixedDice(default=0.0)


@pytest.fixture
def policy() -> BoundsPolicy:
    return BoundsPolicy()


# ==================== Character Fixtures ====================

NEUTRAL_PSYCH = {
    "confidence": 50,
    "stress": 25,
    "mental_health": 70,
    "battle_focus": 50,
    "team_trust": 50,
}


def make_character(
    character_id: str,
    team_id: str = "team_a",
    attack: int = 100,
    defense: int = 30,
    speed: int = 50,
    max_health: int = 100,
    strength: int = 20,
    training: float = 100,
    psych: Optional[Dict[str, float]] = None,
    **extra: Any,
) -> CharacterSnapshot:
    """Build a snapshot with no crit chance and a well-drilled default."""
    data: Dict[str, Any] = {
        "id": character_id,
        "name": extra.pop("name", character_id.title()),
        "stats": {
            "attack": attack,
            "defense": defense,
            "speed": speed,
            "max_health": max_health,
            "critical_chance": extra.pop("critical_chance", 0.0),
        },
        "attributes": {"strength": strength},
        "psychology": dict(NEUTRAL_PSYCH, **(psych or {})),
        "personality": dict({"training": training}, **extra.pop("personality", {})),
    }
    data.update(extra)
    return CharacterSnapshot.from_dict(data, team_id=team_id)


@pytest.fixture
def character_factory():
    return make_character


def make_battle(
    team_a: List[CharacterSnapshot],
    team_b: List[CharacterSnapshot],
    rules: Optional[BattleRules] = None,
    dice: Optional[DiceRoller] = None,
    seed: int = 7,
    morale: float = 50,
) -> RoundScheduler:
    """Two teams wired into a scheduler."""
    first = TeamState("team_a", "Team A", members=team_a, current_morale=morale)
    second = TeamState("team_b", "Team B", members=team_b, current_morale=morale)
    rules = rules or BattleRules(adherence_jitter=0, auto_timeouts=False, chemistry_enabled=False)
    state = BattleState(
        teams=[first, second],
        round_cap=rules.round_cap,
        max_timeouts=rules.max_timeouts,
        seed=seed,
        judge_name=rules.judge_name,
    )
    return RoundScheduler(state, rules, dice=dice or FixedDice())


@pytest.fixture
def battle_factory():
    return make_battle


@pytest.fixture
def duel(never_dice) -> RoundScheduler:
    """One fighter per side, deterministic dice, no jitter."""
    return make_battle(
        [make_character("hero", "team_a", speed=60)],
        [make_character("villain", "team_b", speed=40)],
        dice=never_dice,
    )


def roster_dict(character_id: str, **overrides: Any) -> Dict[str, Any]:
    """Roster-provider dict for API and registry tests."""
    data = {
        "id": character_id,
        "name": character_id.title(),
        "archetype": "warrior",
        "stats": {"attack": 80, "defense": 20, "speed": 50, "max_health": 100, "critical_chance": 0.0},
        "attributes": {"strength": 20},
        "psychology": dict(NEUTRAL_PSYCH),
        "personality": {"training": 100},
    }
    data.update(overrides)
    return data


@pytest.fixture
def roster():
    return roster_dict
