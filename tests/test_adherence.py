"""Tests for gameplan adherence."""
import pytest

from battle_arena.core.adherence import (
    AdherenceEvaluator,
    AdherenceResult,
    ReasonTag,
    classify_score,
    distance_to_nearest_threshold,
)
from battle_arena.core.dice import DiceRoller
from battle_arena.core.rogue_actions import RogueActionGenerator, BattleView
from battle_arena.core.actions import RogueType

from conftest import make_character


@pytest.fixture
def evaluator():
    return AdherenceEvaluator(jitter=0)


class TestScore:
    """The deterministic score."""

    def test_component_formula(self, evaluator):
        """base + 0.4(mh - 50) + 0.3(trust - 50) - 0.4 stress."""
        character = make_character(
            "c1", training=70, psych={"mental_health": 60, "team_trust": 70, "stress": 20}
        )
        check = evaluator.evaluate(character)
        assert check.mental_health_modifier == pytest.approx(4.0)
        assert check.team_trust_modifier == pytest.approx(6.0)
        assert check.stress_modifier == pytest.approx(-8.0)
        assert check.score == pytest.approx(72.0)
        assert check.result == AdherenceResult.SLIGHT_DEVIATION

    def test_score_clamped(self, evaluator):
        character = make_character("c1", training=100, psych={"mental_health": 100, "team_trust": 100, "stress": 0})
        assert evaluator.evaluate(character).score == 100

    def test_thresholds(self):
        assert classify_score(80) == AdherenceResult.FOLLOWS_STRATEGY
        assert classify_score(79.9) == AdherenceResult.SLIGHT_DEVIATION
        assert classify_score(60) == AdherenceResult.SLIGHT_DEVIATION
        assert classify_score(30) == AdherenceResult.IMPROVISES
        assert classify_score(29.9) == AdherenceResult.GOES_ROGUE

    def test_monotonic_in_mental_health(self, evaluator):
        """More mental health never lowers the score."""
        scores = [
            evaluator.unjittered_score(make_character("c1", training=60, psych={"mental_health": mh}))
            for mh in range(0, 101, 10)
        ]
        assert scores == sorted(scores)

    def test_monotonic_in_team_trust(self, evaluator):
        """More team trust never lowers the score."""
        scores = [
            evaluator.unjittered_score(make_character("c1", training=60, psych={"team_trust": trust}))
            for trust in range(0, 101, 10)
        ]
        assert scores == sorted(scores)
        assert scores[0] < scores[-1]

    def test_monotonic_in_stress(self, evaluator):
        """More stress never raises the score."""
        scores = [
            evaluator.unjittered_score(make_character("c1", training=60, psych={"stress": stress}))
            for stress in range(0, 101, 10)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_stressed_character_goes_rogue_and_flees(self, evaluator):
        """Score 25 with stress 85: goes rogue, and the substitute is fleeing."""
        character = make_character(
            "c1", training=59, psych={"mental_health": 50, "team_trust": 50, "stress": 85}
        )
        check = evaluator.evaluate(character)
        assert check.score == pytest.approx(25.0)
        assert check.result == AdherenceResult.GOES_ROGUE
        assert check.reason == ReasonTag.HIGH_STRESS

        enemy = make_character("enemy", team_id="team_b")
        outcome = RogueActionGenerator().generate(character, check, BattleView(enemies=[enemy]))
        assert outcome.rogue_type == RogueType.FLEES_BATTLE


class TestRelationships:
    """Relationship presence modifier."""

    def test_enemy_on_field(self, evaluator):
        character = make_character("c1", relationships=[{"target_id": "x", "kind": "enemy", "strength": -60}])
        assert evaluator.relationship_modifier(character, ["x"]) == -20
        assert evaluator.relationship_modifier(character, ["y"]) == 0

    def test_strong_ally_bonus(self, evaluator):
        character = make_character("c1", relationships=[{"target_id": "x", "kind": "ally", "strength": 60}])
        assert evaluator.relationship_modifier(character, ["x"]) == 10

    def test_weak_edges_ignored(self, evaluator):
        character = make_character("c1", relationships=[{"target_id": "x", "kind": "enemy", "strength": -40}])
        assert evaluator.relationship_modifier(character, ["x"]) == 0

    def test_capped(self, evaluator):
        character = make_character("c1", relationships=[
            {"target_id": "x", "kind": "enemy", "strength": -90},
            {"target_id": "y", "kind": "enemy", "strength": -90},
        ])
        assert evaluator.relationship_modifier(character, ["x", "y"]) == -20


class TestReasons:
    """Reason tags, first match wins."""

    @pytest.mark.parametrize("psych,traits,morale,expected", [
        ({"mental_health": 30}, {}, 50, ReasonTag.LOW_MENTAL_HEALTH),
        ({"stress": 80}, {}, 50, ReasonTag.HIGH_STRESS),
        ({}, {"ego": 90}, 50, ReasonTag.HIGH_EGO),
        ({}, {}, 20, ReasonTag.LOW_MORALE),
        ({"team_trust": 10}, {}, 50, ReasonTag.LOW_MORALE),
        ({}, {}, 50, ReasonTag.NONE),
    ])
    def test_reason_tag(self, evaluator, psych, traits, morale, expected):
        character = make_character("c1", psych=psych, personality=traits)
        assert evaluator.reason_tag(character, morale) == expected


class TestJitter:
    """Bounded adherence jitter."""

    def test_amplitude_clamped(self):
        assert AdherenceEvaluator(jitter=50).jitter_amplitude == 10
        assert AdherenceEvaluator(jitter=-3).jitter_amplitude == 0

    def test_far_from_thresholds_no_jitter(self):
        """A score more than 20 points from every threshold is never jittered."""
        evaluator = AdherenceEvaluator(dice=DiceRoller(seed=1), jitter=10)
        character = make_character("c1", training=0, psych={"mental_health": 50, "team_trust": 50, "stress": 0})
        assert distance_to_nearest_threshold(0) > 20
        for _ in range(20):
            check = evaluator.evaluate(character)
            assert check.jitter == 0.0
            assert check.result == AdherenceResult.GOES_ROGUE

    def test_jitter_bounded(self):
        """Jitter never moves the score more than the amplitude."""
        evaluator = AdherenceEvaluator(dice=DiceRoller(seed=2), jitter=10)
        character = make_character("c1", training=75, psych={"mental_health": 50, "team_trust": 50, "stress": 0})
        for _ in range(50):
            check = evaluator.evaluate(character)
            assert abs(check.score - check.unjittered_score) <= 10
            assert check.result in (AdherenceResult.FOLLOWS_STRATEGY, AdherenceResult.SLIGHT_DEVIATION)

    def test_top_score_always_follows(self):
        evaluator = AdherenceEvaluator(dice=DiceRoller(seed=3), jitter=10)
        character = make_character("c1", training=100, psych={"mental_health": 100, "team_trust": 100, "stress": 0})
        assert all(evaluator.evaluate(character).follows for _ in range(50))
