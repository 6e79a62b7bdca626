"""
Dice rolling for the battle engine.

Every random decision in the round pipeline goes through a DiceRoller so a
battle can be replayed from its seed:
- Percentage rolls (crits, counters, escape attempts, intervention success)
- Integer ranges (judge magnitudes, rounds removed)
- Choices among living targets
- Bounded adherence jitter
"""
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class ChanceResult:
    """Result of a percentage roll."""
    roll: float       # Value drawn in [0, 1)
    chance: float     # Probability the roll was checked against
    success: bool


class DiceRoller:
    """
    Seeded random source injected into the round pipeline.

    Core algorithms never call the ``random`` module directly; they take a
    DiceRoller so tests can pass a fixed seed or a scripted double.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = random.Random(seed)

    def random(self) -> float:
        """Draw a float in [0, 1)."""
        return self._rng.random()

    def chance(self, probability: float) -> bool:
        """Return True with the given probability (clamped to [0, 1])."""
        return self.roll_chance(probability).success

    def roll_chance(self, probability: float) -> ChanceResult:
        """Roll against a probability and keep the drawn value."""
        probability = max(0.0, min(1.0, probability))
        roll = self.random()
        return ChanceResult(roll=roll, chance=probability, success=roll < probability)

    def randint(self, low: int, high: int) -> int:
        """Roll an integer in [low, high], inclusive."""
        if high < low:
            raise ValueError(f"Invalid range: {low}..{high}")
        return self._rng.randint(low, high)

    def uniform(self, low: float, high: float) -> float:
        return self._rng.uniform(low, high)

    def choice(self, options: Sequence[T]) -> T:
        """Pick one option. Raises ValueError on an empty sequence."""
        if not options:
            raise ValueError("Cannot choose from an empty sequence")
        return options[self._rng.randrange(len(options))]

    def weighted_choice(self, options: Sequence[T], weights: Sequence[float]) -> T:
        """
        Pick one option with probability proportional to its weight.

        Negative weights count as zero. If every weight is zero the first
        option is returned.
        """
        if not options or len(options) != len(weights):
            raise ValueError("Options and weights must be non-empty and the same length")
        cleaned: List[float] = [max(0.0, float(w)) for w in weights]
        total = sum(cleaned)
        if total <= 0:
            return options[0]
        roll = self.random() * total
        upto = 0.0
        for option, weight in zip(options, cleaned):
            upto += weight
            if roll < upto:
                return option
        return options[-1]

    def jitter(self, amplitude: float) -> float:
        """Draw a symmetric offset in [-amplitude, +amplitude]."""
        if amplitude <= 0:
            return 0.0
        return self._rng.uniform(-amplitude, amplitude)


def derive_seed(*parts: object) -> int:
    """
    Build a stable integer seed from arbitrary parts.

    Uses a simple FNV-1a hash over the joined text so the value does not
    depend on PYTHONHASHSEED.
    """
    text = "|".join("" if p is None else str(p) for p in parts)
    value = 0xcbf29ce484222325
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * 0x100000001b3) & 0xFFFFFFFFFFFFFFFF
    return value


def new_seed() -> int:
    """Draw a fresh 32-bit seed for a battle created without one."""
    return random.SystemRandom().getrandbits(32)
