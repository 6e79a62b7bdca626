"""Tests for the round scheduler."""
import pytest

from battle_arena.core.actions import ActionSource, ActionType, PlannedAction
from battle_arena.core.battle_state import ArenaCondition, BattlePhase, EndReason
from battle_arena.core.coaching import TimeoutTrigger
from battle_arena.core.errors import (
    BattleOverError,
    InvalidInterventionError,
    InvalidPhaseError,
    PreconditionViolation,
    TimeoutUnavailableError,
    ValidationError,
)
from battle_arena.core.rules_config import BattleRules
from battle_arena.core.scheduler import RoundScheduler
from battle_arena.core.stats import Ability, StatusEffect

from conftest import FixedDice, make_battle, make_character


def deterministic_rules(**overrides):
    values = dict(adherence_jitter=0, auto_timeouts=False, chemistry_enabled=False)
    values.update(overrides)
    return BattleRules(**values)


def two_on_two(**kwargs):
    return make_battle(
        [make_character("a1", "team_a"), make_character("a2", "team_a")],
        [make_character("b1", "team_b"), make_character("b2", "team_b")],
        dice=FixedDice(),
        **kwargs,
    )


class TestPhases:
    """State machine transitions."""

    def test_round_before_huddle_rejected(self, duel):
        with pytest.raises(InvalidPhaseError):
            duel.run_round()
        assert duel.state.phase == BattlePhase.PRE_BATTLE

    def test_huddle_then_combat(self, duel):
        reports = duel.huddle()
        assert duel.state.phase == BattlePhase.HUDDLE
        assert [r["team_id"] for r in reports] == ["team_a", "team_b"]
        duel.start_combat()
        assert duel.state.phase == BattlePhase.ROUND_COMBAT

    def test_huddle_can_be_reread(self, duel):
        duel.huddle()
        duel.huddle()
        assert duel.state.phase == BattlePhase.HUDDLE

    def test_cannot_start_twice(self, duel):
        duel.huddle()
        duel.start_combat()
        with pytest.raises(InvalidPhaseError):
            duel.start_combat()

    def test_round_from_huddle_starts_combat(self, duel):
        duel.huddle()
        duel.run_round()
        assert duel.state.phase == BattlePhase.ROUND_COMBAT
        assert duel.state.current_round == 1

    def test_phase_changes_logged(self, duel):
        duel.huddle()
        duel.start_combat()
        phases = [e.description for e in duel.state.event_log if e.event_type == "phase_changed"]
        assert phases == ["pre_battle -> huddle", "huddle -> round_combat"]


class TestInitiative:
    """Turn order."""

    def test_speed_plus_mental_modifier(self, duel):
        order = duel.calculate_initiative()
        assert [e.character_id for e in order] == ["hero", "villain"]
        assert order[0].initiative == 55
        assert order[0].mental_modifier == -5

    def test_ties_keep_submission_order(self):
        scheduler = two_on_two()
        assert [e.character_id for e in scheduler.calculate_initiative()] == ["a1", "a2", "b1", "b2"]

    def test_calm_character_moves_up(self):
        scheduler = make_battle(
            [make_character("a1")],
            [make_character("b1", "team_b", psych={"stress": 0})],
        )
        assert [e.character_id for e in scheduler.calculate_initiative()] == ["b1", "a1"]

    def test_inactive_characters_excluded(self):
        scheduler = two_on_two()
        scheduler.state.get_character("a2").removed_rounds = 1
        scheduler.state.get_character("b2").current_health = 0
        assert [e.character_id for e in scheduler.calculate_initiative()] == ["a1", "b1"]


class TestRoundResolution:
    """A full round with default actions."""

    def test_first_round_numbers(self, duel):
        duel.huddle()
        record = duel.run_round()
        state = duel.state
        hero = state.get_character("hero")
        villain = state.get_character("villain")

        assert record.round_number == 1
        assert record.initiative == ["hero", "villain"]
        assert [a.character_id for a in record.actions] == ["hero", "villain"]
        assert villain.current_health == 20
        assert hero.current_health == 44
        assert record.actions[0].damage_breakdown.final_damage == 80
        assert record.actions[1].damage_breakdown.psychology_modifier == pytest.approx(0.7)
        assert all(a.success for a in record.actions)
        assert state.get_team("team_a").current_morale == 60
        assert state.get_team("team_b").current_morale == 55
        assert len(record.team_snapshots) == 2
        assert state.rounds == [record]

    def test_performance_counters(self, duel):
        duel.huddle()
        duel.run_round()
        hero = duel.state.get_character("hero")
        villain = duel.state.get_character("villain")
        assert hero.performance.followed_strategy == 1
        assert hero.performance.successful_hits == 1
        assert hero.performance.damage_dealt == 80
        assert villain.performance.damage_taken == 80
        assert hero.performance.rounds_survived == 1

    def test_run_to_completion(self, duel):
        state = duel.run_to_completion()
        assert state.phase == BattlePhase.POST_BATTLE
        assert state.winner == "team_a"
        assert state.end_reason == EndReason.TOTAL_VICTORY
        assert state.current_round == 2
        assert not state.get_character("villain").is_alive

    def test_defeated_character_does_not_act(self):
        scheduler = make_battle(
            [make_character("a1", speed=90)],
            [make_character("b1", "team_b", current_health=50)],
        )
        scheduler.huddle()
        record = scheduler.run_round()
        assert [a.character_id for a in record.actions] == ["a1"]
        assert scheduler.state.winner == "team_a"

    def test_seeded_battles_replay(self):
        def play():
            scripted = make_battle(
                [make_character("a1", training=60), make_character("a2", training=60)],
                [make_character("b1", "team_b", training=60), make_character("b2", "team_b", training=60)],
                rules=BattleRules(adherence_jitter=10, auto_timeouts=False),
                seed=99,
            )
            # Seeded dice instead of the scripted ones
            scheduler = RoundScheduler(scripted.state, scripted.rules)
            return scheduler.run_to_completion()

        first, second = play(), play()
        assert first.winner == second.winner
        assert first.current_round == second.current_round
        assert [r.to_dict()["actions"] for r in first.rounds] == [r.to_dict()["actions"] for r in second.rounds]


class TestPlannedActions:
    """Coach input handling."""

    def test_default_target_is_weakest(self):
        scheduler = make_battle(
            [make_character("a1", speed=90)],
            [make_character("b1", "team_b"), make_character("b2", "team_b", current_health=50)],
        )
        scheduler.huddle()
        record = scheduler.run_round()
        assert record.actions[0].executed_action.target_id == "b2"

    def test_default_target_tie_uses_roster_order(self):
        scheduler = two_on_two()
        view = scheduler.state.view_for(scheduler.state.get_character("a1"))
        assert scheduler.default_target(view).id == "b1"

    def test_explicit_target(self):
        scheduler = two_on_two()
        scheduler.huddle()
        record = scheduler.run_round({"a1": {"action_type": "basic_attack", "target_id": "b2"}})
        assert record.actions[0].executed_action.target_id == "b2"

    def test_unknown_target_falls_back(self):
        scheduler = two_on_two()
        scheduler.huddle()
        record = scheduler.run_round({"a1": PlannedAction(ActionType.BASIC_ATTACK, target_id="nobody")})
        assert record.actions[0].executed_action.target_id == "b1"

    def test_attack_on_teammate_is_betrayal(self):
        scheduler = two_on_two()
        scheduler.huddle()
        record = scheduler.run_round({"a1": {"action_type": "basic_attack", "target_id": "a2"}})
        first = record.actions[0]
        assert first.executed_action.action_type == ActionType.ATTACK_TEAMMATE
        assert first.damage_breakdown.target_id == "a2"
        assert not first.success
        assert "betrayal" in [e.event_type for e in first.morale_events]
        assert scheduler.state.get_team("team_a").environmental_penalty == 10
        assert scheduler.state.get_character("a1").performance.friendly_fire_dealt == 80

    def test_defend(self, duel):
        duel.huddle()
        record = duel.run_round({"hero": {"action_type": "defend"}})
        assert record.actions[0].executed_action.action_type == ActionType.DEFEND
        assert record.actions[0].success
        assert duel.state.get_character("villain").current_health == 100

    def test_ability(self, duel):
        duel.state.get_character("hero").abilities.append(Ability(id="slam", power=20))
        duel.huddle()
        record = duel.run_round({"hero": {"action_type": "ability", "ability_id": "slam", "target_id": "villain"}})
        assert record.actions[0].damage_breakdown.final_damage == 100
        assert "inspiring_action" in [e.event_type for e in record.actions[0].morale_events]


class TestRollback:
    """A bad round leaves no trace."""

    def test_bad_ability_restores_state(self, duel):
        duel.huddle()
        events_before = len(duel.state.event_log)
        with pytest.raises(PreconditionViolation):
            duel.run_round({"villain": {"action_type": "ability", "ability_id": "nope", "target_id": "hero"}})
        state = duel.state
        assert state.current_round == 0
        assert state.rounds == []
        assert state.get_character("villain").current_health == 100
        assert state.get_character("hero").psych.confidence == 50
        assert state.phase == BattlePhase.HUDDLE
        assert len(state.event_log) == events_before
        assert len(state.precedents) == 0

    def test_huddle_still_open_after_rollback(self, duel):
        """A first round that fails leaves the coach in the huddle."""
        duel.huddle()
        with pytest.raises(PreconditionViolation):
            duel.run_round({"villain": {"action_type": "ability", "ability_id": "nope"}})
        result = duel.apply_intervention("team_a", "team_meeting")
        assert result.intervention == "team_meeting"
        assert duel.state.huddle_interventions == {"team_a": ["team_meeting"]}

    def test_round_runs_after_rollback(self, duel):
        duel.huddle()
        with pytest.raises(PreconditionViolation):
            duel.run_round({"villain": {"action_type": "ability", "ability_id": "nope"}})
        record = duel.run_round()
        assert duel.state.get_character("villain").current_health == 20
        assert record.round_number == 1

    def test_unknown_character(self, duel):
        duel.huddle()
        with pytest.raises(PreconditionViolation):
            duel.run_round({"ghost": {"action_type": "basic_attack"}})
        with pytest.raises(PreconditionViolation):
            duel.run_round(chaos_descriptions={"ghost": "attack everyone"})
        assert duel.state.current_round == 0

    def test_invalid_action_type(self, duel):
        duel.huddle()
        with pytest.raises(PreconditionViolation):
            duel.run_round({"hero": {"action_type": "dance"}})

    def test_judge_log_restored(self, duel):
        """Rulings made before the failure are rolled back too."""
        duel.huddle()
        with pytest.raises(PreconditionViolation):
            duel.run_round(
                {"villain": {"action_type": "ability", "ability_id": "nope"}},
                {"hero": "I refuse to fight"},
            )
        assert len(duel.state.precedents) == 0
        assert duel.judge.precedents is duel.state.precedents


class TestSkips:
    """Characters who cannot act."""

    def test_skip_turns(self, duel):
        duel.state.get_character("hero").skip_turns = 1
        duel.huddle()
        record = duel.run_round()
        assert record.actions[0].skipped_reason == "skip_turn"
        assert duel.state.get_character("villain").current_health == 100
        assert duel.state.get_character("hero").skip_turns == 0

    def test_stunned(self, duel):
        duel.state.get_character("hero").add_status(StatusEffect.STUNNED.value)
        duel.huddle()
        record = duel.run_round()
        assert record.actions[0].skipped_reason == "stunned"
        assert StatusEffect.STUNNED.value not in duel.state.get_character("hero").status_effects


class TestChaos:
    """Judge rulings inside a round."""

    def test_refusal_skips(self, duel):
        duel.huddle()
        record = duel.run_round(chaos_descriptions={"hero": "I refuse to fight"})
        hero_action = record.actions[0]
        assert hero_action.judge_decision.pattern == "refuse"
        assert hero_action.executed_action.source == ActionSource.JUDGED
        assert hero_action.executed_action.action_type == ActionType.SKIP
        assert not hero_action.success
        assert duel.state.get_character("villain").current_health == 100
        assert len(duel.state.precedents) == 1
        assert duel.state.get_character("hero").performance.rogue_actions == 1

    def test_attack_everyone_hits_all(self):
        scheduler = make_battle(
            [make_character("a1", speed=90), make_character("a2")],
            [make_character("b1", "team_b"), make_character("b2", "team_b")],
        )
        scheduler.huddle()
        record = scheduler.run_round(chaos_descriptions={"a1": "attack everyone"})
        first = record.actions[0]
        assert first.character_id == "a1"
        assert {b.target_id for b in first.damage_breakdowns} == {"a2", "b1", "b2"}
        assert all(b.judge_amount == 14 for b in first.damage_breakdowns)
        assert all(b.final_damage == 1 for b in first.damage_breakdowns)
        assert first.executed_action.target_id is None
        assert first.success
        assert scheduler.state.get_character("a1").performance.friendly_fire_dealt == 1

    def test_escape(self, duel):
        duel.huddle()
        record = duel.run_round(chaos_descriptions={"hero": "tries to teleport away"})
        effect = record.actions[0].judge_decision.mechanical_effect
        hero = duel.state.get_character("hero")
        if effect.special_effect == "temporary_removal":
            assert hero.removed_rounds == effect.duration
            assert not hero.is_active
            assert not duel.state.is_over
            assert "hero" not in duel.run_round().initiative
        else:
            backfire = record.actions[0].damage_breakdown
            assert backfire.target_id == "hero"
            assert backfire.final_damage == 15

    def test_threatening_officials(self):
        scheduler = make_battle(
            [make_character("hero", speed=60, max_health=200)],
            [make_character("villain", "team_b", speed=40)],
        )
        scheduler.huddle()
        scheduler.run_round(chaos_descriptions={"hero": "yells at the referee"})
        assert scheduler.state.get_character("hero").skip_turns == 1
        # -10 for the threat, -15 for a round without a successful action
        assert scheduler.state.get_team("team_a").current_morale == 25
        assert any(e.event_type == "officials_threatened" for e in scheduler.state.event_log)
        record = scheduler.run_round()
        assert record.actions[0].skipped_reason == "skip_turn"

    def test_arena_damage(self, duel):
        duel.huddle()
        duel.run_round(chaos_descriptions={"hero": "starts to destroy the arena"})
        assert duel.state.arena_damage == 25
        assert duel.state.arena_condition == ArenaCondition.DAMAGED

    def test_identity_change(self, duel):
        duel.huddle()
        duel.run_round(chaos_descriptions={"hero": "decides to become a tree"})
        hero = duel.state.get_character("hero")
        assert hero.modifier_total("speed") == -50
        assert hero.modifier_total("defense") == 20

    def test_preview_does_not_touch_battle(self, duel):
        decision = duel.preview_ruling("hero", "attack everyone")
        assert decision.pattern == "attack_everyone"
        assert decision.mechanical_effect.amount == 14
        assert len(duel.state.precedents) == 0

    def test_preview_unknown_character(self, duel):
        with pytest.raises(ValidationError):
            duel.preview_ruling("ghost", "attack everyone")


class TestChemistryMultiplier:
    def test_applied_when_enabled(self):
        scheduler = make_battle(
            [make_character("a1", speed=90)],
            [make_character("b1", "team_b", max_health=200)],
            rules=deterministic_rules(chemistry_enabled=True),
        )
        scheduler.state.get_team("team_a").team_chemistry = 95
        scheduler.huddle()
        record = scheduler.run_round()
        breakdown = record.actions[0].damage_breakdown
        assert breakdown.chemistry_multiplier == 1.25
        assert breakdown.final_damage == 100


class TestTermination:
    """Ending a battle."""

    def test_forfeit(self, duel):
        duel.huddle()
        duel.forfeit("team_a")
        assert duel.state.winner == "team_b"
        assert duel.state.end_reason == EndReason.FORFEIT
        with pytest.raises(BattleOverError):
            duel.run_round()

    def test_forfeit_unknown_team(self, duel):
        with pytest.raises(ValidationError):
            duel.forfeit("team_z")

    def test_abort(self, duel):
        duel.abort()
        assert duel.state.winner is None
        assert duel.state.end_reason == EndReason.ABORTED
        with pytest.raises(BattleOverError):
            duel.abort()

    def test_time_limit(self):
        scheduler = make_battle(
            [make_character("hero", speed=60)],
            [make_character("villain", "team_b", speed=40)],
            rules=deterministic_rules(round_cap=1),
        )
        scheduler.huddle()
        scheduler.run_round()
        assert scheduler.state.end_reason == EndReason.TIME_LIMIT
        assert scheduler.state.winner == "team_a"

    def test_mutual_destruction(self, duel):
        duel.huddle()
        duel.start_combat()
        for character in duel.state.all_characters():
            character.current_health = 0
        assert duel.check_termination() == EndReason.MUTUAL_DESTRUCTION
        assert duel.state.winner is None

    def test_fled_team_loses(self, duel):
        duel.huddle()
        duel.start_combat()
        duel.state.get_character("villain").fled = True
        assert duel.check_termination() == EndReason.TOTAL_VICTORY
        assert duel.state.winner == "team_a"

    def test_removed_character_still_standing(self, duel):
        duel.huddle()
        duel.start_combat()
        duel.state.get_character("villain").removed_rounds = 2
        assert duel.check_termination() is None


class TestTimeouts:
    """Coaching timeouts inside the state machine."""

    def test_timeout_requires_combat(self, duel):
        duel.huddle()
        with pytest.raises(InvalidPhaseError):
            duel.request_timeout("team_a")

    def test_timeout_cycle(self, duel):
        duel.huddle()
        duel.start_combat()
        timeout = duel.request_timeout("team_a")
        assert duel.state.phase == BattlePhase.COACHING_TIMEOUT
        assert duel.state.timeouts_used == 1
        assert timeout.trigger == TimeoutTrigger.PLAYER_REQUESTED

        with pytest.raises(InvalidPhaseError):
            duel.run_round()
        with pytest.raises(ValidationError):
            duel.apply_intervention("team_b", "motivational_speech")

        result = duel.apply_intervention("team_a", "motivational_speech")
        assert timeout.applied == [result]
        with pytest.raises(InvalidInterventionError):
            duel.apply_intervention("team_a", "motivational_speech")

        duel.end_timeout()
        assert duel.state.phase == BattlePhase.ROUND_COMBAT
        assert duel.state.timeout_history == [timeout]
        assert duel.state.active_timeout is None

    def test_timeouts_run_out(self):
        scheduler = make_battle(
            [make_character("hero")],
            [make_character("villain", "team_b")],
            rules=deterministic_rules(max_timeouts=1),
        )
        scheduler.huddle()
        scheduler.start_combat()
        scheduler.request_timeout("team_a")
        scheduler.end_timeout()
        with pytest.raises(TimeoutUnavailableError):
            scheduler.request_timeout("team_b")

    def test_automatic_breakdown_timeout(self):
        scheduler = make_battle(
            [make_character("hero", speed=60)],
            [make_character("villain", "team_b", speed=40, psych={"mental_health": 10})],
            rules=deterministic_rules(auto_timeouts=True),
        )
        scheduler.huddle()
        scheduler.run_round()
        timeout = scheduler.state.active_timeout
        assert scheduler.state.phase == BattlePhase.COACHING_TIMEOUT
        assert timeout.team_id == "team_b"
        assert timeout.trigger == TimeoutTrigger.CHARACTER_BREAKDOWN
        assert timeout.character_id == "villain"

    def test_huddle_interventions_once_per_team(self, duel):
        duel.huddle()
        duel.apply_intervention("team_a", "team_meeting")
        with pytest.raises(InvalidInterventionError):
            duel.apply_intervention("team_a", "team_meeting")
        duel.apply_intervention("team_b", "team_meeting")
        assert duel.state.huddle_interventions == {"team_a": ["team_meeting"], "team_b": ["team_meeting"]}

    def test_intervention_outside_coaching_phase(self, duel):
        duel.huddle()
        duel.start_combat()
        with pytest.raises(InvalidPhaseError):
            duel.apply_intervention("team_a", "team_meeting")

    def test_successful_intervention_in_timeout(self):
        scheduler = make_battle(
            [make_character("hero")],
            [make_character("villain", "team_b")],
            dice=FixedDice(default=0.0),
        )
        scheduler.huddle()
        scheduler.start_combat()
        scheduler.request_timeout("team_a")
        result = scheduler.apply_intervention("team_a", "motivational_speech")
        assert result.success
        assert scheduler.state.get_team("team_a").current_morale == 65
