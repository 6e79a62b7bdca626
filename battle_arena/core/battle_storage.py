"""
Shared storage for active battles.

Battles live in an in-memory registry keyed by battle id. Each battle is
wrapped in a BattleActor that owns the only mutable reference to its
BattleState; every mutation goes through ``BattleActor.execute`` under the
battle's lock, so a second concurrent writer is rejected with a
ConcurrencyConflict instead of interleaving with a running round.
"""
import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, TypeVar

from battle_arena.config import get_settings
from battle_arena.core.battle_state import BattleState, TeamState
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.dice import new_seed
from battle_arena.core.errors import BattleNotFoundError, ConcurrencyConflict, ValidationError
from battle_arena.core.morale import calculate_team_chemistry
from battle_arena.core.rules_config import BattleRules
from battle_arena.core.scheduler import RoundScheduler
from battle_arena.core.stats import CharacterSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_team(data: Dict[str, Any], default_id: str, policy: BoundsPolicy) -> TeamState:
    """
    Build a team from roster-provider data.

    Args:
        data: {"team_id", "name", "members": [...], "coaching_points"}
        default_id: Team id used when the data has none
        policy: Bounds policy for the defensive clamp on members

    Returns:
        TeamState with initial chemistry computed
    """
    team_id = data.get("team_id") or default_id
    members_data = data.get("members") or []
    if not members_data:
        raise ValidationError("members", f"Team '{team_id}' has no members")

    members = [CharacterSnapshot.from_dict(m, team_id=team_id, policy=policy) for m in members_data]
    team = TeamState(
        team_id=team_id,
        name=data.get("name", team_id),
        members=members,
        coaching_points=int(data.get("coaching_points", 0)),
    )
    if "morale" in data:
        team.current_morale = policy.clamp("morale", data["morale"])
    team.team_chemistry = calculate_team_chemistry(team.members, 0, policy)
    team.chemistry_history.append(team.team_chemistry)
    return team


class BattleActor:
    """
    Single writer for one battle.

    Args:
        state: The battle
        scheduler: Scheduler bound to ``state``
        lock_timeout: Seconds to wait for a busy battle (0 = fail at once)
    """

    def __init__(self, state: BattleState, scheduler: RoundScheduler, lock_timeout: float = 0.0):
        self.state = state
        self.scheduler = scheduler
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()

    @property
    def battle_id(self) -> str:
        return self.state.battle_id

    def execute(self, fn: Callable[[RoundScheduler], T]) -> T:
        """
        Run ``fn(scheduler)`` with exclusive access to the battle.

        Raises:
            ConcurrencyConflict: Another call holds the battle
        """
        if self.lock_timeout > 0:
            acquired = self._lock.acquire(timeout=self.lock_timeout)
        else:
            acquired = self._lock.acquire(blocking=False)
        if not acquired:
            logger.warning(f"Concurrent access to battle {self.battle_id} rejected")
            raise ConcurrencyConflict(self.battle_id)
        try:
            return fn(self.scheduler)
        finally:
            self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


class BattleRegistry:
    """In-memory registry of active battles."""

    def __init__(self, lock_timeout: float = 0.0):
        self.lock_timeout = lock_timeout
        self._battles: Dict[str, BattleActor] = {}
        self._registry_lock = threading.Lock()

    def create_battle(
        self,
        team_a: Dict[str, Any],
        team_b: Dict[str, Any],
        rules: Optional[BattleRules] = None,
        seed: Optional[int] = None,
        judge_name: Optional[str] = None,
        battle_id: Optional[str] = None,
    ) -> BattleActor:
        """
        Create and register a battle.

        Args:
            team_a: Home team roster data
            team_b: Away team roster data
            rules: Per-battle tunables (defaults from settings)
            seed: Seed for every random draw in the battle (drawn when omitted)
            judge_name: Overrides ``rules.judge_name``
            battle_id: Explicit id (generated when omitted)

        Returns:
            The registered BattleActor
        """
        rules = rules or BattleRules.from_settings()
        if judge_name:
            rules.judge_name = judge_name
        if seed is None:
            seed = new_seed()
        policy = BoundsPolicy()

        first = build_team(team_a, "team_a", policy)
        second = build_team(team_b, "team_b", policy)
        if first.team_id == second.team_id:
            raise ValidationError("team_id", "Teams need distinct ids", first.team_id)
        ids = [m.id for m in first.members + second.members]
        if len(ids) != len(set(ids)):
            raise ValidationError("members", "Character ids must be unique across both teams")

        state = BattleState(
            teams=[first, second],
            battle_id=battle_id or str(uuid.uuid4()),
            round_cap=rules.round_cap,
            seed=seed,
            judge_name=rules.judge_name,
            max_timeouts=rules.max_timeouts,
        )
        state.add_event(
            "battle_created",
            f"{first.name} vs {second.name}",
            data={"rules": rules.to_dict(), "seed": seed},
        )
        scheduler = RoundScheduler(state, rules, policy=policy)
        actor = BattleActor(state, scheduler, self.lock_timeout)

        with self._registry_lock:
            self._battles[state.battle_id] = actor
        logger.info(
            f"Battle {state.battle_id} created: {first.name} ({len(first.members)}) vs "
            f"{second.name} ({len(second.members)}), judge={rules.judge_name}, seed={seed}"
        )
        return actor

    def get(self, battle_id: str) -> BattleActor:
        with self._registry_lock:
            actor = self._battles.get(battle_id)
        if actor is None:
            raise BattleNotFoundError(battle_id)
        return actor

    def remove(self, battle_id: str) -> None:
        with self._registry_lock:
            actor = self._battles.pop(battle_id, None)
        if actor is None:
            raise BattleNotFoundError(battle_id)
        logger.info(f"Battle {battle_id} removed")

    def list(self) -> List[Dict[str, Any]]:
        with self._registry_lock:
            actors = list(self._battles.values())
        return [
            {
                "battle_id": a.state.battle_id,
                "phase": a.state.phase.value,
                "current_round": a.state.current_round,
                "teams": [t.name for t in a.state.teams],
                "winner": a.state.winner,
            }
            for a in actors
        ]

    def clear(self) -> None:
        with self._registry_lock:
            self._battles.clear()

    def __len__(self) -> int:
        return len(self._battles)


# In-memory storage for active battles
active_battles = BattleRegistry(get_settings().BATTLE_LOCK_TIMEOUT)
