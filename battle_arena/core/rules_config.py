"""
Battle Rules Configuration.

Per-battle tunables. Defaults come from the application settings; presets
cover common variants and callers can override any field when a battle is
created.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class BattleRules:
    """
    Tunables for one battle.

    Attributes:
        round_cap: Rounds before the battle ends on time
        max_timeouts: Coaching timeouts allowed per battle (both teams)
        timeout_seconds: Advisory real-time budget per timeout
        adherence_jitter: Adherence jitter amplitude, clamped to [0, 10]
        judge_name: Preset judge ruling on chaos
        chemistry_enabled: Apply the team chemistry damage multiplier
        auto_timeouts: Open timeouts automatically on breakdown or collapse
    """
    round_cap: int = 20
    max_timeouts: int = 3
    timeout_seconds: int = 90
    adherence_jitter: float = 10.0
    judge_name: str = "Judge Wisdom"
    chemistry_enabled: bool = True
    auto_timeouts: bool = True

    def __post_init__(self):
        self.round_cap = max(1, int(self.round_cap))
        self.max_timeouts = max(0, int(self.max_timeouts))
        self.timeout_seconds = max(0, int(self.timeout_seconds))
        self.adherence_jitter = max(0.0, min(10.0, float(self.adherence_jitter)))

    def to_dict(self) -> Dict[str, Any]:
        """Convert rules to dictionary for serialization."""
        return {
            "round_cap": self.round_cap,
            "max_timeouts": self.max_timeouts,
            "timeout_seconds": self.timeout_seconds,
            "adherence_jitter": self.adherence_jitter,
            "judge_name": self.judge_name,
            "chemistry_enabled": self.chemistry_enabled,
            "auto_timeouts": self.auto_timeouts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["BattleRules"] = None) -> "BattleRules":
        """Create rules from a dictionary, filling gaps from ``base``."""
        base = base or cls()
        return cls(
            round_cap=data.get("round_cap", base.round_cap),
            max_timeouts=data.get("max_timeouts", base.max_timeouts),
            timeout_seconds=data.get("timeout_seconds", base.timeout_seconds),
            adherence_jitter=data.get("adherence_jitter", base.adherence_jitter),
            judge_name=data.get("judge_name", base.judge_name),
            chemistry_enabled=data.get("chemistry_enabled", base.chemistry_enabled),
            auto_timeouts=data.get("auto_timeouts", base.auto_timeouts),
        )

    @classmethod
    def from_settings(cls, settings=None) -> "BattleRules":
        """Defaults from the environment-backed application settings."""
        if settings is None:
            from battle_arena.config import get_settings
            settings = get_settings()
        return cls(
            round_cap=settings.ROUND_CAP,
            max_timeouts=settings.MAX_COACHING_TIMEOUTS,
            timeout_seconds=settings.COACHING_TIMEOUT_SECONDS,
            adherence_jitter=settings.ADHERENCE_JITTER,
            judge_name=settings.DEFAULT_JUDGE,
        )


PRESET_RULES: Dict[str, BattleRules] = {
    "standard": BattleRules(),
    "deterministic": BattleRules(adherence_jitter=0.0, auto_timeouts=False),
    "sudden_death": BattleRules(round_cap=5, max_timeouts=0, auto_timeouts=False),
    "chaos_cup": BattleRules(judge_name="Judge Chaos", adherence_jitter=10.0, max_timeouts=1),
}


def get_preset(name: str) -> BattleRules:
    """Copy of a preset so callers can change it freely."""
    if name not in PRESET_RULES:
        raise KeyError(f"Unknown rules preset: {name}")
    return BattleRules.from_dict(PRESET_RULES[name].to_dict())
