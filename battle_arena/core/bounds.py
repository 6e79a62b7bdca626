"""
Bounds Policy.

Central clamp table for every numeric quantity that equipment, abilities,
psychology or judge rulings can push around. Out-of-range and non-finite
inputs are clamped, never raised, and reported as BOUNDS_VIOLATION log
records.
"""
import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Union

from battle_arena.core.errors import ErrorCode

logger = logging.getLogger("battle_arena.bounds")

Number = Union[int, float]


@dataclass(frozen=True)
class Bound:
    """Min/max pair for one quantity kind."""
    minimum: float
    maximum: Optional[float]   # None means supplied by the caller (health)
    integer: bool = True


BOUNDS: Dict[str, Bound] = {
    "stat": Bound(0, 9999),
    "attack": Bound(0, 9999),
    "defense": Bound(0, 9999),
    "speed": Bound(0, 9999),
    "equipment": Bound(0, 999),
    "ability_power": Bound(0, 999),
    "strength_bonus": Bound(0, 500),
    "health": Bound(0, None),
    "psychology": Bound(0, 100, integer=False),
    "damage": Bound(1, 9999),
    "relationship": Bound(-100, 100, integer=False),
    "multiplier": Bound(0.1, 2.0, integer=False),
    "chemistry": Bound(0, 100, integer=False),
    "morale": Bound(0, 100, integer=False),
    "stat_change": Bound(-100, 100),
    "duration": Bound(1, 5),
    "probability": Bound(0.0, 1.0, integer=False),
}


class BoundsPolicy:
    """
    Clamp values by kind.

    A single instance is shared by every component of a battle and counts
    the violations it has clamped.
    """

    def __init__(self, bounds: Optional[Dict[str, Bound]] = None):
        self.bounds = dict(BOUNDS)
        if bounds:
            self.bounds.update(bounds)
        self.violations = 0

    def clamp(
        self,
        kind: str,
        value: Number,
        maximum: Optional[Number] = None,
        report: bool = True
    ) -> Number:
        """
        Clamp a value to the range registered for ``kind``.

        Args:
            kind: Quantity kind from the bounds table
            value: Raw value
            maximum: Upper bound for kinds whose max depends on context
                (health uses the character's max health)
            report: Log out-of-range values. Off where clamping is the rule
                itself, e.g. armor exceeding offense still dealing 1 damage

        Returns:
            The clamped value, floored for integer kinds
        """
        bound = self.bounds.get(kind)
        if bound is None:
            raise KeyError(f"Unknown bounds kind: {kind}")

        upper = bound.maximum if maximum is None else maximum
        if upper is None:
            raise ValueError(f"Bounds kind '{kind}' needs an explicit maximum")
        lower = bound.minimum

        if value is None or not isinstance(value, (int, float)) or math.isnan(value):
            self._report(kind, value, lower)
            return int(lower) if bound.integer else float(lower)

        clamped = value
        if value < lower:
            clamped = lower
        elif value > upper:
            clamped = upper

        if clamped != value and report:
            self._report(kind, value, clamped)

        if bound.integer:
            return int(math.floor(clamped))
        return float(clamped)

    def floor_clamp(
        self,
        kind: str,
        value: Number,
        maximum: Optional[Number] = None,
        report: bool = True
    ) -> int:
        """Floor first, then clamp. Used where the formula itself floors."""
        if isinstance(value, float) and math.isfinite(value):
            value = math.floor(value)
        return int(self.clamp(kind, value, maximum, report))

    def _report(self, kind: str, value, clamped) -> None:
        self.violations += 1
        logger.warning(
            f"{ErrorCode.BOUNDS_VIOLATION.value}: {kind}={value!r} clamped to {clamped!r}",
            extra={"error_code": ErrorCode.BOUNDS_VIOLATION.value, "bounds_kind": kind},
        )


_default_policy = BoundsPolicy()


def clamp(kind: str, value: Number, maximum: Optional[Number] = None) -> Number:
    """Clamp with the shared default policy."""
    return _default_policy.clamp(kind, value, maximum)
