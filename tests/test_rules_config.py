"""Tests for battle rules and presets."""
import pytest

from battle_arena.config import Settings
from battle_arena.core.rules_config import PRESET_RULES, BattleRules, get_preset


class TestBattleRules:
    def test_defaults(self):
        rules = BattleRules()
        assert rules.round_cap == 20
        assert rules.max_timeouts == 3
        assert rules.judge_name == "Judge Wisdom"
        assert rules.chemistry_enabled

    def test_values_clamped(self):
        rules = BattleRules(round_cap=0, max_timeouts=-2, timeout_seconds=-5, adherence_jitter=50)
        assert rules.round_cap == 1
        assert rules.max_timeouts == 0
        assert rules.timeout_seconds == 0
        assert rules.adherence_jitter == 10.0

    def test_from_dict_fills_from_base(self):
        base = BattleRules(round_cap=7, judge_name="Judge Chaos")
        rules = BattleRules.from_dict({"max_timeouts": 1}, base=base)
        assert rules.round_cap == 7
        assert rules.judge_name == "Judge Chaos"
        assert rules.max_timeouts == 1

    def test_dict_round_trip(self):
        rules = BattleRules(round_cap=9, auto_timeouts=False)
        assert BattleRules.from_dict(rules.to_dict()) == rules

    def test_from_settings(self):
        settings = Settings()
        settings.ROUND_CAP = 12
        settings.ADHERENCE_JITTER = 4
        settings.DEFAULT_JUDGE = "Judge Chaos"
        rules = BattleRules.from_settings(settings)
        assert rules.round_cap == 12
        assert rules.adherence_jitter == 4.0
        assert rules.judge_name == "Judge Chaos"


class TestPresets:
    def test_known_presets(self):
        assert set(PRESET_RULES) == {"standard", "deterministic", "sudden_death", "chaos_cup"}

    def test_deterministic(self):
        rules = get_preset("deterministic")
        assert rules.adherence_jitter == 0
        assert not rules.auto_timeouts

    def test_preset_is_a_copy(self):
        rules = get_preset("sudden_death")
        rules.round_cap = 99
        assert PRESET_RULES["sudden_death"].round_cap == 5

    def test_unknown_preset(self):
        with pytest.raises(KeyError):
            get_preset("marathon")
