"""
Round Scheduler.

Core state machine for a battle:

    pre_battle -> huddle -> round_combat <-> coaching_timeout -> post_battle

Within a round every active character acts in initiative order, and each
turn is fully applied (damage, morale and psychology side effects) before
the next character's adherence check reads the state. A precondition
violation stops the round and restores the pre-round snapshot, so a round is
either committed whole or not at all.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Tuple, Union

from battle_arena.core.actions import (
    ActionSource,
    ActionType,
    EffectTarget,
    EffectType,
    ExecutedAction,
    PlannedAction,
)
from battle_arena.core.adherence import AdherenceCheck, AdherenceEvaluator, AdherenceResult
from battle_arena.core.battle_state import (
    ActionRecord,
    ArenaCondition,
    BattlePhase,
    BattleState,
    EndReason,
    RoundRecord,
    TeamState,
)
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.coaching import CoachingEngine, CoachingTimeout, InterventionResult, TimeoutTrigger
from battle_arena.core.damage import DamageBreakdown, DamageResolver
from battle_arena.core.dice import DiceRoller
from battle_arena.core.errors import (
    BattleOverError,
    InvalidInterventionError,
    InvalidPhaseError,
    PreconditionViolation,
    TimeoutUnavailableError,
    ValidationError,
)
from battle_arena.core.judge import ChaosContext, JudgeArbiter, JudgeDecision, get_judge
from battle_arena.core.morale import MoraleEngine, chemistry_damage_multiplier
from battle_arena.core.psychology import mental_speed_modifier
from battle_arena.core.rogue_actions import BattleView, DeviationType, RogueActionGenerator
from battle_arena.core.rules_config import BattleRules
from battle_arena.core.stats import CharacterSnapshot, StatusEffect

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[BattlePhase, Tuple[BattlePhase, ...]] = {
    BattlePhase.PRE_BATTLE: (BattlePhase.HUDDLE, BattlePhase.POST_BATTLE),
    BattlePhase.HUDDLE: (BattlePhase.ROUND_COMBAT, BattlePhase.POST_BATTLE),
    BattlePhase.ROUND_COMBAT: (BattlePhase.COACHING_TIMEOUT, BattlePhase.POST_BATTLE),
    BattlePhase.COACHING_TIMEOUT: (BattlePhase.ROUND_COMBAT, BattlePhase.POST_BATTLE),
    BattlePhase.POST_BATTLE: (),
}

ARENA_DESTROYED_AT = 100
OFFICIALS_MORALE_DIVISOR = 5


@dataclass
class InitiativeEntry:
    """One character's place in the round order."""
    character_id: str
    speed: int
    mental_modifier: int
    initiative: int
    submission_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "speed": self.speed,
            "mental_modifier": self.mental_modifier,
            "initiative": self.initiative,
            "submission_index": self.submission_index,
        }


PlannedInput = Union[PlannedAction, Dict[str, Any]]


class RoundScheduler:
    """
    Orchestrates one battle.

    All collaborators share the battle's bounds policy and seeded dice, and
    the judge writes into the battle-owned precedent log.

    Args:
        state: The battle this scheduler owns
        rules: Per-battle tunables
        dice: Random source (defaults to one seeded with ``state.seed``)
        policy: Bounds policy shared by every component
        judge: Judge arbiter override
    """

    def __init__(
        self,
        state: BattleState,
        rules: Optional[BattleRules] = None,
        dice: Optional[DiceRoller] = None,
        policy: Optional[BoundsPolicy] = None,
        judge: Optional[JudgeArbiter] = None,
    ):
        self.state = state
        self.rules = rules or BattleRules(round_cap=state.round_cap, max_timeouts=state.max_timeouts)
        self.policy = policy or BoundsPolicy()
        self.dice = dice or DiceRoller(state.seed)
        self.adherence = AdherenceEvaluator(self.policy, self.dice, jitter=self.rules.adherence_jitter)
        self.rogue = RogueActionGenerator(self.dice)
        self.damage = DamageResolver(self.policy, self.dice)
        self.morale = MoraleEngine(self.policy)
        self.coaching = CoachingEngine(self.policy, self.dice, self.morale, self.rules.timeout_seconds)
        self.judge = judge or JudgeArbiter(
            get_judge(state.judge_name),
            self.policy,
            state.precedents,
            seed=state.seed,
        )

    # =========================================================================
    # State machine
    # =========================================================================

    def _transition(self, new_phase: BattlePhase, attempted: Optional[str] = None) -> None:
        current = self.state.phase
        if new_phase not in ALLOWED_TRANSITIONS[current]:
            raise InvalidPhaseError(current.value, attempted or f"move to {new_phase.value}")
        self.state.phase = new_phase
        self.state.add_event("phase_changed", f"{current.value} -> {new_phase.value}")
        logger.debug(f"Battle {self.state.battle_id}: {current.value} -> {new_phase.value}")

    def _require_not_over(self) -> None:
        if self.state.is_over:
            raise BattleOverError(
                self.state.battle_id,
                self.state.end_reason.value if self.state.end_reason else None,
            )

    def huddle(self) -> List[Dict[str, Any]]:
        """
        Enter (or re-read) the pre-battle huddle.

        Returns:
            One huddle report per team
        """
        self._require_not_over()
        if self.state.phase == BattlePhase.PRE_BATTLE:
            self._transition(BattlePhase.HUDDLE, "start huddle")
            self.state.add_event("huddle", "Teams gather for the pre-battle huddle")
        elif self.state.phase != BattlePhase.HUDDLE:
            raise InvalidPhaseError(self.state.phase.value, "hold a huddle")
        return [self.coaching.huddle(team, self.adherence).to_dict() for team in self.state.teams]

    def start_combat(self) -> None:
        """Leave the huddle and begin round combat."""
        self._require_not_over()
        self._transition(BattlePhase.ROUND_COMBAT, "start combat")
        self.state.add_event("combat_started", "The battle begins")
        logger.info(f"Battle {self.state.battle_id} started")

    # =========================================================================
    # Initiative
    # =========================================================================

    def calculate_initiative(self) -> List[InitiativeEntry]:
        """
        Turn order for the coming round.

        Speed (with temporary modifiers) plus mental speed modifier,
        descending. The sort is stable over submission order: team A roster
        first, then team B.
        """
        entries = []
        for index, character in enumerate(self.state.all_characters()):
            if not character.is_active:
                continue
            speed = character.effective_speed(self.policy)
            mental = mental_speed_modifier(character.psych)
            entries.append(InitiativeEntry(
                character_id=character.id,
                speed=speed,
                mental_modifier=mental,
                initiative=speed + mental,
                submission_index=index,
            ))
        return sorted(entries, key=lambda e: -e.initiative)

    # =========================================================================
    # Round loop
    # =========================================================================

    def run_round(
        self,
        planned_actions: Optional[Dict[str, PlannedInput]] = None,
        chaos_descriptions: Optional[Dict[str, str]] = None,
    ) -> RoundRecord:
        """
        Resolve one full round.

        Args:
            planned_actions: Coach input per character id. Missing entries
                default to a basic attack on the default target.
            chaos_descriptions: Pre-fetched free-text chaos per character id

        Returns:
            The committed RoundRecord

        Raises:
            BattleOverError: The battle has ended
            InvalidPhaseError: Not in a phase where rounds can run
            PreconditionViolation: Bad input; nothing from this round is kept
        """
        self._require_not_over()
        if self.state.phase not in (BattlePhase.HUDDLE, BattlePhase.ROUND_COMBAT):
            raise InvalidPhaseError(self.state.phase.value, "run a round")

        planned = self._parse_planned(planned_actions or {})
        chaos = dict(chaos_descriptions or {})
        for character_id in chaos:
            if self.state.get_character(character_id) is None:
                raise PreconditionViolation(f"Chaos text for unknown character '{character_id}'",
                                            character_id=character_id)

        # Taken before leaving the huddle so an aborted first round stays in it
        snapshot = self.state.snapshot()
        if self.state.phase == BattlePhase.HUDDLE:
            self.start_combat()
        round_number = self.state.current_round + 1
        initiative = self.calculate_initiative()
        record = RoundRecord(round_number=round_number, initiative=[e.character_id for e in initiative])

        try:
            for entry in initiative:
                character = self.state.get_character(entry.character_id)
                self._take_turn(character, planned.get(entry.character_id), chaos.get(entry.character_id),
                                record, round_number)
        except PreconditionViolation as e:
            self.state.restore(snapshot)
            self.judge.precedents = self.state.precedents
            logger.warning(f"Round {round_number} of {self.state.battle_id} aborted: {e.message}")
            raise

        self.state.current_round = round_number
        self._end_of_round(record)
        self.state.rounds.append(record)
        self.state.add_event(
            "round_resolved",
            f"Round {round_number} resolved ({len(record.actions)} actions)",
            data={"initiative": record.initiative},
        )
        logger.info(f"Battle {self.state.battle_id}: round {round_number} resolved")

        reason = self.check_termination()
        if reason is None and self.rules.auto_timeouts:
            self._auto_timeout()
        return record

    def _parse_planned(self, planned_actions: Dict[str, PlannedInput]) -> Dict[str, PlannedAction]:
        parsed: Dict[str, PlannedAction] = {}
        for character_id, action in planned_actions.items():
            if self.state.get_character(character_id) is None:
                raise PreconditionViolation(f"Planned action for unknown character '{character_id}'",
                                            character_id=character_id)
            if action is None:
                raise PreconditionViolation(f"Missing planned action for '{character_id}'",
                                            character_id=character_id)
            if isinstance(action, dict):
                try:
                    action = PlannedAction.from_dict(action)
                except ValueError:
                    raise PreconditionViolation(f"Invalid planned action for '{character_id}'",
                                                character_id=character_id)
            parsed[character_id] = action
        return parsed

    def default_target(self, view: BattleView) -> Optional[CharacterSnapshot]:
        """Active enemy with the lowest current health, ties by roster order."""
        if not view.enemies:
            return None
        return min(view.enemies, key=lambda c: c.current_health)

    def normalize_plan(
        self,
        character: CharacterSnapshot,
        planned: Optional[PlannedAction],
        view: BattleView,
    ) -> PlannedAction:
        """
        Fill in defaults and fix targets.

        Missing plans become a basic attack on the default target; dead or
        unknown targets fall back to the default target; attacks aimed at a
        teammate become teammate attacks.
        """
        default = self.default_target(view)
        default_id = default.id if default else None
        if planned is None:
            return PlannedAction(ActionType.BASIC_ATTACK, target_id=default_id)

        if planned.action_type in (ActionType.DEFEND, ActionType.FLEE, ActionType.SKIP):
            return planned

        if planned.action_type == ActionType.ABILITY and character.get_ability(planned.ability_id) is None:
            raise PreconditionViolation(
                f"{character.id} has no ability '{planned.ability_id}'",
                character_id=character.id,
                ability_id=planned.ability_id,
            )

        enemy_ids = view.enemy_ids()
        teammate_ids = [m.id for m in view.teammates]
        if planned.target_id in enemy_ids:
            if planned.action_type == ActionType.ATTACK_TEAMMATE:
                return PlannedAction(ActionType.BASIC_ATTACK, planned.target_id)
            return planned
        if planned.target_id in teammate_ids:
            if planned.action_type in (ActionType.BASIC_ATTACK, ActionType.ATTACK_TEAMMATE):
                return PlannedAction(ActionType.ATTACK_TEAMMATE, planned.target_id)
            return planned

        action_type = planned.action_type
        if action_type == ActionType.ATTACK_TEAMMATE:
            action_type = ActionType.BASIC_ATTACK
        return PlannedAction(action_type, target_id=default_id, ability_id=planned.ability_id)

    def _take_turn(
        self,
        character: CharacterSnapshot,
        planned: Optional[PlannedAction],
        chaos_text: Optional[str],
        record: RoundRecord,
        round_number: int,
    ) -> None:
        if character is None:
            raise PreconditionViolation("Initiative refers to a missing character")
        if not character.is_alive or character.fled:
            return

        team = self.state.get_team(character.team_id)
        skip_reason = None
        if character.removed_rounds > 0:
            skip_reason = "removed"
        elif character.skip_turns > 0:
            character.skip_turns -= 1
            skip_reason = "skip_turn"
        elif StatusEffect.STUNNED.value in character.status_effects:
            skip_reason = "stunned"
        if skip_reason is not None:
            record.actions.append(ActionRecord(
                character_id=character.id,
                team_id=team.team_id,
                planned_action=planned,
                executed_action=ExecutedAction(ActionType.SKIP, narrative=f"{character.name} cannot act"),
                skipped_reason=skip_reason,
            ))
            return

        view = self.state.view_for(character)
        if not view.enemies:
            return

        plan = self.normalize_plan(character, planned, view)
        check = self.adherence.evaluate(character, team.current_morale, self.state.present_ids())

        decision: Optional[JudgeDecision] = None
        deviation: Optional[DeviationType] = None
        if check.follows:
            action = ExecutedAction.from_planned(plan, narrative=f"{character.name} follows the game plan.")
        else:
            outcome = self.rogue.generate(character, check, view, plan)
            action = outcome.action
            deviation = outcome.deviation_type

        if check.result == AdherenceResult.GOES_ROGUE or chaos_text:
            context = ChaosContext(
                character_id=character.id,
                character_name=character.name,
                strength=character.effective_strength(self.policy),
                deviation_type=deviation,
                round_number=round_number,
            )
            if deviation is not None:
                decision = self.judge.rule_deviation(deviation, context, text=chaos_text)
            else:
                decision = self.judge.rule(chaos_text, context)
            breakdowns, success, action = self._apply_judgement(character, team, action, decision, view)
        else:
            breakdowns, success = self._apply_action(character, team, action)

        self._update_performance(character, team, action, check, breakdowns)
        events = self.morale.action_events(character, action, team, breakdowns, self.state.teams, success)

        record.actions.append(ActionRecord(
            character_id=character.id,
            team_id=team.team_id,
            planned_action=plan,
            executed_action=action,
            adherence_check=check,
            damage_breakdowns=breakdowns,
            judge_decision=decision,
            morale_events=events,
            deviation_type=deviation.value if deviation else None,
            success=success,
        ))
        record.morale_events.extend(events)

    # =========================================================================
    # Applying actions
    # =========================================================================

    def _chemistry_multiplier(self, team: TeamState) -> float:
        if not self.rules.chemistry_enabled:
            return 1.0
        return chemistry_damage_multiplier(team.team_chemistry)

    def _hit(
        self,
        attacker: CharacterSnapshot,
        target: CharacterSnapshot,
        action: ExecutedAction,
        team: TeamState,
        amount: Optional[int] = None,
    ) -> DamageBreakdown:
        breakdown = self.damage.resolve(
            attacker,
            target,
            action,
            team_morale=team.current_morale,
            chemistry_multiplier=self._chemistry_multiplier(team),
            amount_override=amount,
        )
        self.morale.apply_hit(attacker, target, breakdown)
        if breakdown.target_defeated:
            self.state.add_event("character_defeated", f"{target.name} is down", target.id)
        return breakdown

    def _apply_action(
        self,
        character: CharacterSnapshot,
        team: TeamState,
        action: ExecutedAction,
    ) -> Tuple[List[DamageBreakdown], bool]:
        """Apply an unjudged action. Returns (breakdowns, success)."""
        if action.action_type == ActionType.DEFEND:
            return [], True
        if action.action_type == ActionType.FLEE:
            character.fled = True
            self.state.add_event("character_fled", f"{character.name} fled the battle", character.id)
            return [], False
        if action.action_type == ActionType.SKIP:
            return [], False

        target = self.state.get_character(action.target_id)
        if target is None or not target.is_alive:
            raise PreconditionViolation(
                f"{character.id} has no valid target for {action.action_type.value}",
                character_id=character.id,
                target_id=action.target_id,
            )
        breakdown = self._hit(character, target, action, team)
        success = breakdown.health_change > 0 and target.team_id != character.team_id
        return [breakdown], success

    def _apply_judgement(
        self,
        character: CharacterSnapshot,
        team: TeamState,
        action: ExecutedAction,
        decision: JudgeDecision,
        view: BattleView,
    ) -> Tuple[List[DamageBreakdown], bool, ExecutedAction]:
        """
        Apply a judge ruling in place of the substitute action.

        The ruling picks the target(s) first; each hit then goes through the
        damage resolver with the ruling amount replacing the offense sum, so
        the relationship modifier is applied exactly once per hit.
        """
        effect = decision.mechanical_effect
        breakdowns: List[DamageBreakdown] = []
        judged = ExecutedAction(
            action_type=ActionType.SPECIAL,
            target_id=None,
            narrative=decision.narrative,
            mechanical_effect=effect,
            source=ActionSource.JUDGED,
            rogue_type=action.rogue_type,
        )

        if effect.effect_type in (EffectType.DAMAGE, EffectType.REDIRECT_ATTACK):
            targets = self._judged_targets(character, action, effect.target, view)
            if effect.target == EffectTarget.SELF:
                for target in targets:
                    breakdowns.append(self._direct_damage(character, effect.amount or 0))
            elif effect.target == EffectTarget.ENVIRONMENT:
                self._damage_arena(character, effect.amount or 0)
            else:
                if effect.target == EffectTarget.TEAMMATE:
                    judged.action_type = ActionType.ATTACK_TEAMMATE
                else:
                    judged.action_type = ActionType.BASIC_ATTACK
                for target in targets:
                    judged.target_id = target.id
                    breakdowns.append(self._hit(character, target, judged, team, amount=effect.amount))
                if len(targets) > 1:
                    judged.target_id = None

        elif effect.effect_type == EffectType.HEAL:
            before = character.current_health
            character.set_health(before + (effect.amount or 0), self.policy)

        elif effect.effect_type == EffectType.SKIP_TURN:
            judged.action_type = ActionType.SKIP
            if effect.duration and effect.duration > 1:
                character.skip_turns += effect.duration - 1

        elif effect.effect_type == EffectType.STAT_CHANGE:
            for change in effect.stat_changes:
                character.add_modifier(change.stat, change.change, change.duration, source=decision.pattern)

        elif effect.effect_type == EffectType.ENVIRONMENTAL:
            self._damage_arena(character, effect.amount or 0)

        elif effect.effect_type == EffectType.SPECIAL:
            self._apply_special(character, team, effect.special_effect or "", effect.amount, effect.duration)

        success = any(
            b.health_change > 0 and self.state.get_character(b.target_id).team_id != character.team_id
            for b in breakdowns
        )
        return breakdowns, success, judged

    def _judged_targets(
        self,
        character: CharacterSnapshot,
        action: ExecutedAction,
        effect_target: Optional[EffectTarget],
        view: BattleView,
    ) -> List[CharacterSnapshot]:
        if effect_target == EffectTarget.SELF:
            return [character]
        if effect_target == EffectTarget.ALL:
            return [c for c in self.state.all_characters() if c.is_active and c.id != character.id]
        if effect_target == EffectTarget.TEAMMATE:
            chosen = next((m for m in view.teammates if m.id == action.target_id), None)
            if chosen is None and view.teammates:
                chosen = self.dice.choice(view.teammates)
            return [chosen] if chosen else []
        if effect_target == EffectTarget.ENVIRONMENT:
            return []
        chosen = next((e for e in view.enemies if e.id == action.target_id), None)
        if chosen is None:
            chosen = self.default_target(view)
        return [chosen] if chosen else []

    def _direct_damage(self, character: CharacterSnapshot, amount: int) -> DamageBreakdown:
        """Backfire damage to the actor. Bypasses armor and psychology."""
        amount = self.policy.floor_clamp("damage", amount)
        previous = character.current_health
        change = min(previous, amount)
        character.set_health(previous - change, self.policy)
        if not character.is_alive:
            self.state.add_event("character_defeated", f"{character.name} is down", character.id)
        return DamageBreakdown(
            attacker_id=character.id,
            target_id=character.id,
            judge_amount=amount,
            raw_damage=float(amount),
            final_damage=amount,
            health_change=change,
            previous_health=previous,
            new_health=character.current_health,
            target_defeated=not character.is_alive,
            breakdown_lines=[f"Backfire: {amount}"],
        )

    def _damage_arena(self, character: CharacterSnapshot, amount: int) -> None:
        self.state.arena_damage += max(0, int(amount))
        if self.state.arena_damage >= ARENA_DESTROYED_AT:
            self.state.arena_condition = ArenaCondition.DESTROYED
        elif self.state.arena_damage > 0:
            self.state.arena_condition = ArenaCondition.DAMAGED
        self.state.add_event(
            "arena_damaged",
            f"{character.name} damages the arena ({self.state.arena_condition.value})",
            character.id,
            data={"arena_damage": self.state.arena_damage},
        )

    def _apply_special(
        self,
        character: CharacterSnapshot,
        team: TeamState,
        special: str,
        amount: Optional[int],
        duration: Optional[int],
    ) -> None:
        rounds = duration or 1
        if special == "temporary_removal":
            # +1 because the end-of-round tick runs right after this turn
            character.removed_rounds = rounds + 1
            self.state.add_event("character_removed", f"{character.name} vanishes for {rounds} round(s)",
                                 character.id)
        elif special == "flee":
            character.fled = True
            self.state.add_event("character_fled", f"{character.name} fled the battle", character.id)
        elif special == "judge_threatened":
            character.skip_turns += 1
            self.morale.adjust_morale(team, -(amount or 0) / OFFICIALS_MORALE_DIVISOR)
            self.state.add_event("officials_threatened", f"{character.name} threatened the officials",
                                 character.id)
        elif special == "lose_strategy_bonuses":
            character.add_modifier("effectiveness", -10, rounds, source=special)
        else:
            # creative_chaos and ai_interpretation_required are narrative only
            self.state.add_event("judge_special", f"{character.name}: {special}", character.id,
                                 data={"special_effect": special, "duration": rounds})

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _update_performance(
        self,
        character: CharacterSnapshot,
        team: TeamState,
        action: ExecutedAction,
        check: AdherenceCheck,
        breakdowns: List[DamageBreakdown],
    ) -> None:
        perf = character.performance
        perf.actions_taken += 1
        if check.follows and action.source == ActionSource.PLANNED:
            perf.followed_strategy += 1
        else:
            perf.strategy_deviations += 1
        if action.source in (ActionSource.ROGUE, ActionSource.JUDGED):
            perf.rogue_actions += 1
        if action.action_type == ActionType.ABILITY:
            perf.abilities_used += 1

        for breakdown in breakdowns:
            target = self.state.get_character(breakdown.target_id)
            if target is None or target.id == character.id:
                continue
            perf.attacks_attempted += 1
            if breakdown.health_change > 0:
                perf.successful_hits += 1
            perf.damage_dealt += breakdown.health_change
            target.performance.damage_taken += breakdown.health_change
            if breakdown.critical:
                perf.critical_hits += 1
            if breakdown.counter_attack:
                target.performance.counter_attacks += 1
            if target.team_id == team.team_id:
                perf.friendly_fire_dealt += breakdown.health_change
        for breakdown in breakdowns:
            if breakdown.target_id == character.id:
                perf.damage_taken += breakdown.health_change

        helped_team = (
            action.source == ActionSource.PLANNED
            and (action.action_type == ActionType.DEFEND or any(b.health_change > 0 for b in breakdowns))
        )
        if helped_team:
            perf.teamplay_actions += 1

    def _end_of_round(self, record: RoundRecord) -> None:
        for team in self.state.teams:
            result = self.morale.end_of_round(team, record.actions)
            record.morale_events.extend(result.events)
        for character in self.state.all_characters():
            if character.is_alive and not character.fled:
                character.performance.rounds_survived += 1
            for expired in character.tick_modifiers():
                logger.debug(f"{character.id}: {expired.stat} modifier expired")
        record.team_snapshots = [team.summary() for team in self.state.teams]

    # =========================================================================
    # Termination
    # =========================================================================

    def check_termination(self) -> Optional[EndReason]:
        """End the battle if a side is gone or the round cap is reached."""
        if self.state.is_over:
            return self.state.end_reason
        team_a, team_b = self.state.teams
        a_standing = bool(team_a.standing_members)
        b_standing = bool(team_b.standing_members)

        if not a_standing and not b_standing:
            self._end_battle(EndReason.MUTUAL_DESTRUCTION, None)
        elif not a_standing:
            self._end_battle(EndReason.TOTAL_VICTORY, team_b.team_id)
        elif not b_standing:
            self._end_battle(EndReason.TOTAL_VICTORY, team_a.team_id)
        elif self.state.current_round >= self.state.round_cap:
            a_health, b_health = team_a.health_fraction, team_b.health_fraction
            winner = None
            if a_health > b_health:
                winner = team_a.team_id
            elif b_health > a_health:
                winner = team_b.team_id
            self._end_battle(EndReason.TIME_LIMIT, winner)
        return self.state.end_reason

    def _end_battle(self, reason: EndReason, winner: Optional[str]) -> None:
        if self.state.phase == BattlePhase.COACHING_TIMEOUT and self.state.active_timeout is not None:
            self.state.timeout_history.append(self.state.active_timeout)
            self.state.active_timeout = None
        self._transition(BattlePhase.POST_BATTLE, "end the battle")
        self.state.end_reason = reason
        self.state.winner = winner
        self.state.add_event(
            "battle_ended",
            f"Battle ended: {reason.value}",
            data={"winner": winner, "rounds": self.state.current_round},
        )
        logger.info(
            f"Battle {self.state.battle_id} ended after {self.state.current_round} round(s): "
            f"{reason.value}, winner={winner}"
        )

    def forfeit(self, team_id: str) -> None:
        """A team concedes between rounds. The other team wins."""
        self._require_not_over()
        team = self.state.get_team(team_id)
        if team is None:
            raise ValidationError("team_id", f"Unknown team '{team_id}'", team_id)
        self._end_battle(EndReason.FORFEIT, self.state.opponent_of(team_id).team_id)

    def abort(self) -> None:
        """Host-issued stop between rounds. No winner."""
        self._require_not_over()
        self._end_battle(EndReason.ABORTED, None)

    # =========================================================================
    # Coaching timeouts
    # =========================================================================

    def request_timeout(
        self,
        team_id: str,
        trigger: TimeoutTrigger = TimeoutTrigger.PLAYER_REQUESTED,
        character_id: Optional[str] = None,
    ) -> CoachingTimeout:
        """
        Open a coaching timeout for a team.

        Raises:
            InvalidPhaseError: Not between combat rounds
            TimeoutUnavailableError: The battle's timeout allowance is used up
        """
        self._require_not_over()
        if self.state.phase != BattlePhase.ROUND_COMBAT:
            raise InvalidPhaseError(self.state.phase.value, "call a timeout")
        team = self.state.get_team(team_id)
        if team is None:
            raise ValidationError("team_id", f"Unknown team '{team_id}'", team_id)
        if self.state.timeouts_used >= self.state.max_timeouts:
            logger.warning(f"Timeout refused for {team_id}: {self.state.timeouts_used} already used")
            raise TimeoutUnavailableError()

        timeout = self.coaching.open_timeout(team, trigger, self.state.current_round, character_id)
        self._transition(BattlePhase.COACHING_TIMEOUT, "call a timeout")
        self.state.timeouts_used += 1
        self.state.active_timeout = timeout
        self.state.add_event(
            "timeout_called",
            f"{team.name} timeout ({trigger.value})",
            character_id,
            data={"budget_seconds": timeout.budget_seconds},
        )
        return timeout

    def _auto_timeout(self) -> Optional[CoachingTimeout]:
        if self.state.timeouts_used >= self.state.max_timeouts:
            return None
        for team in self.state.teams:
            found = self.coaching.detect_trigger(team)
            if found is not None:
                return self.request_timeout(team.team_id, found["trigger"], found["character_id"])
        return None

    def apply_intervention(
        self,
        team_id: str,
        intervention: str,
        character_id: Optional[str] = None,
    ) -> InterventionResult:
        """
        Apply a coaching intervention during a timeout or the huddle.

        Each intervention can be used once per timeout, and once per team
        during the huddle.
        """
        self._require_not_over()
        team = self.state.get_team(team_id)
        if team is None:
            raise ValidationError("team_id", f"Unknown team '{team_id}'", team_id)

        if self.state.phase == BattlePhase.COACHING_TIMEOUT:
            timeout = self.state.active_timeout
            if timeout.team_id != team_id:
                raise ValidationError("team_id", f"The active timeout belongs to '{timeout.team_id}'", team_id)
            if intervention not in [i.value for i in timeout.available_interventions]:
                raise InvalidInterventionError(intervention)
            result = self.coaching.apply_intervention(team, intervention, character_id)
            timeout.applied.append(result)
        elif self.state.phase == BattlePhase.HUDDLE:
            used = self.state.huddle_interventions.setdefault(team_id, [])
            if intervention in used:
                raise InvalidInterventionError(intervention)
            result = self.coaching.apply_intervention(team, intervention, character_id)
            used.append(intervention)
        else:
            raise InvalidPhaseError(self.state.phase.value, "apply an intervention")

        self.state.add_event(
            "intervention",
            f"{intervention} for {team.name}: {'success' if result.success else 'failed'}",
            result.character_id,
            data=result.to_dict(),
        )
        return result

    def end_timeout(self) -> None:
        """Close the active timeout and return to round combat."""
        self._require_not_over()
        if self.state.phase != BattlePhase.COACHING_TIMEOUT:
            raise InvalidPhaseError(self.state.phase.value, "end a timeout")
        self.state.timeout_history.append(self.state.active_timeout)
        self.state.active_timeout = None
        self._transition(BattlePhase.ROUND_COMBAT, "end a timeout")

    def preview_ruling(self, character_id: str, text: str) -> JudgeDecision:
        """
        What the judge would rule for ``text`` right now.

        Uses the battle's judge and seed with a scratch precedent log, so the
        battle itself is untouched.
        """
        character = self.state.get_character(character_id)
        if character is None:
            raise ValidationError("character_id", f"Unknown character '{character_id}'", character_id)
        scratch = JudgeArbiter(
            self.judge.personality,
            self.policy,
            seed=self.judge.seed,
            patterns=self.judge.patterns,
        )
        context = ChaosContext(
            character_id=character.id,
            character_name=character.name,
            strength=character.effective_strength(self.policy),
            round_number=self.state.current_round + 1,
        )
        return scratch.rule(text, context)

    def run_to_completion(self, max_rounds: Optional[int] = None) -> BattleState:
        """
        Auto-play with default actions until the battle ends.

        Open timeouts are closed without interventions.
        """
        limit = max_rounds or self.state.round_cap
        if self.state.phase == BattlePhase.PRE_BATTLE:
            self.huddle()
        for _ in range(limit):
            if self.state.is_over:
                break
            if self.state.phase == BattlePhase.COACHING_TIMEOUT:
                self.end_timeout()
            self.run_round()
        return self.state
