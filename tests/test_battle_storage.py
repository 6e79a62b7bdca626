"""Tests for the battle registry and per-battle actor."""
import pytest

from battle_arena.core.battle_state import BattlePhase
from battle_arena.core.battle_storage import BattleRegistry, build_team
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.errors import BattleNotFoundError, ConcurrencyConflict, ValidationError
from battle_arena.core.rules_config import BattleRules

from conftest import roster_dict


def team(team_id, *member_ids, **extra):
    data = {"team_id": team_id, "name": team_id.upper(), "members": [roster_dict(m) for m in member_ids]}
    data.update(extra)
    return data


@pytest.fixture
def registry():
    return BattleRegistry()


@pytest.fixture
def rules():
    return BattleRules(adherence_jitter=0, auto_timeouts=False)


class TestBuildTeam:
    def test_members_and_chemistry(self):
        built = build_team(team("red", "r1", "r2"), "team_a", BoundsPolicy())
        assert built.team_id == "red"
        assert [m.team_id for m in built.members] == ["red", "red"]
        assert built.team_chemistry == pytest.approx(170 / 3, abs=1e-4)
        assert built.chemistry_history == [built.team_chemistry]

    def test_default_id(self):
        built = build_team({"members": [roster_dict("r1")]}, "team_b", BoundsPolicy())
        assert built.team_id == "team_b"
        assert built.name == "team_b"

    def test_morale_clamped(self):
        built = build_team(team("red", "r1", morale=400), "team_a", BoundsPolicy())
        assert built.current_morale == 100

    def test_empty_team_rejected(self):
        with pytest.raises(ValidationError):
            build_team({"team_id": "red", "members": []}, "team_a", BoundsPolicy())


class TestRegistry:
    """Creating, finding and removing battles."""

    def test_create_and_get(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules, seed=3)
        assert registry.get(actor.battle_id) is actor
        assert actor.state.phase == BattlePhase.PRE_BATTLE
        assert actor.state.seed == 3
        assert actor.scheduler.state is actor.state
        assert actor.state.event_log[0].event_type == "battle_created"
        assert len(registry) == 1

    def test_seed_drawn_when_omitted(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        assert isinstance(actor.state.seed, int)
        assert actor.scheduler.judge.seed == actor.state.seed
        assert actor.state.event_log[0].data["seed"] == actor.state.seed

    def test_explicit_id_and_judge(self, registry, rules):
        actor = registry.create_battle(
            team("red", "r1"), team("blue", "b1"), rules=rules, judge_name="Judge Chaos", battle_id="b-1",
        )
        assert actor.battle_id == "b-1"
        assert actor.state.judge_name == "Judge Chaos"
        assert actor.scheduler.judge.personality.name == "Judge Chaos"

    def test_rules_applied(self, registry):
        actor = registry.create_battle(
            team("red", "r1"), team("blue", "b1"), rules=BattleRules(round_cap=4, max_timeouts=1),
        )
        assert actor.state.round_cap == 4
        assert actor.state.max_timeouts == 1

    def test_unknown_battle(self, registry):
        with pytest.raises(BattleNotFoundError):
            registry.get("missing")
        with pytest.raises(BattleNotFoundError):
            registry.remove("missing")

    def test_remove(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        registry.remove(actor.battle_id)
        with pytest.raises(BattleNotFoundError):
            registry.get(actor.battle_id)
        assert len(registry) == 0

    def test_duplicate_character_ids(self, registry, rules):
        with pytest.raises(ValidationError):
            registry.create_battle(team("red", "x"), team("blue", "x"), rules=rules)

    def test_same_team_ids(self, registry, rules):
        with pytest.raises(ValidationError):
            registry.create_battle(team("red", "r1"), team("red", "b1"), rules=rules)

    def test_list(self, registry, rules):
        registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules, battle_id="one")
        listed = registry.list()
        assert listed == [{
            "battle_id": "one",
            "phase": "pre_battle",
            "current_round": 0,
            "teams": ["RED", "BLUE"],
            "winner": None,
        }]
        registry.clear()
        assert registry.list() == []


class TestActor:
    """Single-writer access to one battle."""

    def test_execute_returns_result(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        reports = actor.execute(lambda s: s.huddle())
        assert len(reports) == 2
        assert not actor.busy

    def test_busy_battle_rejected(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        actor._lock.acquire()
        try:
            assert actor.busy
            with pytest.raises(ConcurrencyConflict):
                actor.execute(lambda s: s.huddle())
        finally:
            actor._lock.release()
        assert actor.state.phase == BattlePhase.PRE_BATTLE

    def test_nested_writer_rejected(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        with pytest.raises(ConcurrencyConflict):
            actor.execute(lambda s: actor.execute(lambda inner: inner.huddle()))
        assert not actor.busy

    def test_lock_released_after_error(self, registry, rules):
        actor = registry.create_battle(team("red", "r1"), team("blue", "b1"), rules=rules)
        with pytest.raises(ValidationError):
            actor.execute(lambda s: s.forfeit("green"))
        assert not actor.busy
        actor.execute(lambda s: s.forfeit("red"))
        assert actor.state.winner == "blue"
