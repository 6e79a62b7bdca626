"""Tests for huddles, coaching timeouts and interventions."""
import pytest

from battle_arena.core.battle_state import TeamState
from battle_arena.core.coaching import (
    CoachingEngine,
    InterventionType,
    TimeoutTrigger,
)
from battle_arena.core.errors import InvalidInterventionError, ValidationError

from conftest import FixedDice, make_character


@pytest.fixture
def coach(always_dice):
    return CoachingEngine(dice=always_dice)


@pytest.fixture
def team():
    return TeamState("team_a", "Team A", members=[
        make_character("a1", psych={"stress": 60, "mental_health": 50}),
        make_character("a2", psych={"stress": 30, "mental_health": 35}),
    ])


class TestTriggers:
    """Automatic timeout triggers."""

    def test_no_trigger_for_healthy_team(self, coach, team):
        assert coach.detect_trigger(team) is None

    def test_breakdown_on_stress(self, coach, team):
        team.members[1].psych.stress = 95
        found = coach.detect_trigger(team)
        assert found == {"trigger": TimeoutTrigger.CHARACTER_BREAKDOWN, "character_id": "a2"}

    def test_breakdown_on_mental_health(self, coach, team):
        team.members[0].psych.mental_health = 10
        assert coach.detect_trigger(team)["character_id"] == "a1"

    def test_morale_collapse(self, coach, team):
        team.team_chemistry = 20
        found = coach.detect_trigger(team)
        assert found["trigger"] == TimeoutTrigger.MORALE_COLLAPSE

    def test_breakdown_takes_precedence(self, coach, team):
        team.team_chemistry = 20
        team.members[0].psych.stress = 95
        assert coach.detect_trigger(team)["trigger"] == TimeoutTrigger.CHARACTER_BREAKDOWN

    def test_dead_members_ignored(self, coach, team):
        team.members[0].psych.stress = 95
        team.members[0].current_health = 0
        assert coach.detect_trigger(team) is None


class TestTimeouts:
    """Opening a timeout."""

    def test_open_timeout_recommends(self, coach, team):
        team.members[0].psych.stress = 95
        team.current_morale = 20
        timeout = coach.open_timeout(team, TimeoutTrigger.CHARACTER_BREAKDOWN, 3, "a1")
        assert timeout.round_number == 3
        assert timeout.budget_seconds == 90
        issue_types = {i.issue_type for i in timeout.issues}
        assert {"extreme_stress", "low_morale"} <= issue_types
        assert InterventionType.STRESS_MANAGEMENT in timeout.recommended
        assert InterventionType.MOTIVATIONAL_SPEECH in timeout.recommended
        assert len(timeout.available_interventions) == len(InterventionType)


class TestInterventions:
    """Intervention effects."""

    def test_motivational_speech(self, coach, team):
        result = coach.apply_intervention(team, "motivational_speech")
        assert result.success
        assert team.current_morale == 65
        assert all(m.psych.confidence == 60 for m in team.members)

    def test_emergency_counseling_targets_lowest_mental_health(self, coach, team):
        result = coach.apply_intervention(team, "emergency_counseling")
        assert result.character_id == "a2"
        assert team.members[1].psych.mental_health == 55

    def test_stress_management_targets_most_stressed(self, coach, team):
        result = coach.apply_intervention(team, "stress_management")
        assert result.character_id == "a1"
        assert team.members[0].psych.stress == 30

    def test_explicit_target(self, coach, team):
        result = coach.apply_intervention(team, "stress_management", character_id="a2")
        assert result.character_id == "a2"
        assert team.members[1].psych.stress == 0

    def test_team_meeting(self, coach, team):
        team.environmental_penalty = 20
        coach.apply_intervention(team, "team_meeting")
        assert team.environmental_penalty == 5
        assert all(m.psych.team_trust == 60 for m in team.members)
        assert team.chemistry_history

    def test_strategic_reminder(self, coach, team):
        coach.apply_intervention(team, "strategic_reminder")
        assert all(m.gameplan_adherence == 100 for m in team.members)

    def test_unknown_intervention(self, coach, team):
        with pytest.raises(InvalidInterventionError):
            coach.apply_intervention(team, "pep_rally")

    def test_unknown_target(self, coach, team):
        with pytest.raises(ValidationError):
            coach.apply_intervention(team, "stress_management", character_id="ghost")

    def test_failure_changes_nothing(self, team):
        coach = CoachingEngine(dice=FixedDice(default=0.99))
        team.coaching_points = 100
        result = coach.apply_intervention(team, "motivational_speech")
        assert not result.success
        assert result.success_chance == 0.95
        assert result.effects == []
        assert team.current_morale == 50

    def test_success_chance(self, coach):
        assert coach.success_chance(InterventionType.TEAM_MEETING, 0) == pytest.approx(0.6)
        assert coach.success_chance(InterventionType.TEAM_MEETING, 10) == pytest.approx(0.7)
        assert coach.success_chance(InterventionType.MOTIVATIONAL_SPEECH, 50) == 0.95


class TestHuddle:
    """Pre-battle assessment."""

    def test_conflicts_and_synergies(self, coach):
        team = TeamState("team_a", "Team A", members=[
            make_character("a1", relationships=[
                {"target_id": "a2", "kind": "rival", "strength": -60},
                {"target_id": "b1", "kind": "enemy", "strength": -90},
            ]),
            make_character("a2", relationships=[{"target_id": "a3", "kind": "friend", "strength": 70}]),
            make_character("a3"),
        ])
        report = coach.huddle(team)
        assert [(c["from"], c["to"]) for c in report.conflicts] == [("a1", "a2")]
        assert [(s["from"], s["to"]) for s in report.synergies] == [("a2", "a3")]
        readiness = {r.character_id: r for r in report.readiness}
        assert "teammate_conflict" in readiness["a1"].concerns
        assert readiness["a3"].predicted_behavior == "follows_strategy"
        assert report.coaching_options == list(InterventionType)

    def test_concerns(self, coach):
        team = TeamState("team_a", "Team A", members=[
            make_character("a1", current_health=30, psych={"stress": 80, "mental_health": 30},
                           personality={"ego": 90}),
        ])
        concerns = coach.huddle(team).readiness[0].concerns
        assert set(concerns) == {"mental_health", "stress", "ego", "injured"}
