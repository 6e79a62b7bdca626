"""Tests for the seeded dice roller."""
import pytest

from battle_arena.core.dice import DiceRoller, derive_seed, new_seed


class TestDiceRoller:
    """Seeded random source."""

    def test_same_seed_same_sequence(self):
        """Two rollers with the same seed draw identical values."""
        a = DiceRoller(seed=42)
        b = DiceRoller(seed=42)
        assert [a.random() for _ in range(5)] == [b.random() for _ in range(5)]
        assert [a.randint(1, 100) for _ in range(5)] == [b.randint(1, 100) for _ in range(5)]

    def test_randint_inclusive_range(self):
        """randint stays within [low, high]."""
        dice = DiceRoller(seed=1)
        values = {dice.randint(1, 3) for _ in range(200)}
        assert values <= {1, 2, 3}
        assert len(values) == 3

    def test_randint_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            DiceRoller(seed=1).randint(5, 1)

    def test_chance_extremes(self):
        """Probability 0 never succeeds and 1 always does."""
        dice = DiceRoller(seed=3)
        assert not any(dice.chance(0.0) for _ in range(50))
        assert all(dice.chance(1.0) for _ in range(50))

    def test_chance_clamps_probability(self):
        """Probabilities outside [0, 1] are clamped."""
        dice = DiceRoller(seed=3)
        result = dice.roll_chance(7.5)
        assert result.chance == 1.0
        assert result.success is True

    def test_choice_empty_raises(self):
        with pytest.raises(ValueError):
            DiceRoller(seed=1).choice([])

    def test_weighted_choice_zero_weights(self):
        """All-zero weights return the first option."""
        assert DiceRoller(seed=1).weighted_choice(["a", "b"], [0, 0]) == "a"

    def test_weighted_choice_ignores_negative(self):
        """A negative weight can never be picked."""
        dice = DiceRoller(seed=9)
        picks = {dice.weighted_choice(["a", "b"], [-5, 1]) for _ in range(50)}
        assert picks == {"b"}

    def test_jitter_bounded(self):
        """Jitter stays within the amplitude."""
        dice = DiceRoller(seed=5)
        for _ in range(100):
            assert -10 <= dice.jitter(10) <= 10
        assert dice.jitter(0) == 0.0


class TestDeriveSeed:
    """Stable seed derivation."""

    def test_stable_across_calls(self):
        assert derive_seed(7, "attack everyone", "Judge Wisdom") == derive_seed(7, "attack everyone", "Judge Wisdom")

    def test_parts_change_seed(self):
        """Different text or judge gives a different seed."""
        base = derive_seed(7, "teleport", "Judge Wisdom")
        assert base != derive_seed(7, "teleport", "Judge Chaos")
        assert base != derive_seed(8, "teleport", "Judge Wisdom")

    def test_none_part_allowed(self):
        assert isinstance(derive_seed(None, "text"), int)

    def test_round_and_actor_change_seed(self):
        base = derive_seed(7, 1, "a", "teleport", "Judge Wisdom")
        assert base != derive_seed(7, 2, "a", "teleport", "Judge Wisdom")
        assert base != derive_seed(7, 1, "b", "teleport", "Judge Wisdom")

    def test_new_seed_range(self):
        seeds = {new_seed() for _ in range(20)}
        assert all(0 <= s < 2 ** 32 for s in seeds)
        assert len(seeds) > 1
