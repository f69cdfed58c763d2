"""
Action/Contribution Aggregator.
Turns player actions into pressure events on a war. Validates membership,
phase and cooldown, deducts the action's cost through the resource ledger,
rolls for success with the caller's RNG, records the resulting pressure event
and upserts the player's BattleParticipant row.
Returns (ActionResult, events) where events describe what happened.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from turfwar.config import ActionRule, GameRules, settings
from turfwar.engine.actions import Action, ActionType, ConsolidationTask
from turfwar.engine.collaborators import Cost, Membership, MembershipDirectory, ResourceLedger
from turfwar.engine.definitions import TerritoryRegistry
from turfwar.engine.errors import (
    Ineligible,
    InsufficientResources,
    InvalidTransition,
)
from turfwar.engine.events import WarEvent, action_resolved, participant_joined
from turfwar.engine.state import (
    BattleParticipant,
    PressureEventType,
    Side,
    War,
    WarPhase,
    WorldState,
)
from turfwar.engine.war import advance_war, get_war, record_pressure_event

logger = logging.getLogger(__name__)


# Phase rules: which action types are allowed in which phases
PHASE_ALLOWED_ACTIONS = {
    WarPhase.SCOUTING: [ActionType.SCOUT],
    WarPhase.SABOTAGE: [ActionType.SABOTAGE],
    WarPhase.SHOWDOWN: [ActionType.SHOWDOWN, ActionType.SUPPLY, ActionType.GUARD_DUTY],
    WarPhase.CONSOLIDATION: [ActionType.CONSOLIDATE],
}


@dataclass
class ActionResult:
    """Outcome of one resolved action."""
    war_id: str
    player_id: str
    action_type: ActionType
    side: Side
    success: bool
    delta: int = 0
    event_sequence: int | None = None
    contribution: int = 0
    duplicate: bool = False
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "war_id": self.war_id,
            "player_id": self.player_id,
            "action_type": self.action_type.value,
            "side": self.side.value,
            "success": self.success,
            "delta": self.delta,
            "event_sequence": self.event_sequence,
            "contribution": self.contribution,
            "duplicate": self.duplicate,
            "detail": dict(self.detail),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionResult":
        return cls(
            war_id=data["war_id"],
            player_id=data["player_id"],
            action_type=ActionType(data["action_type"]),
            side=Side(data["side"]),
            success=bool(data["success"]),
            delta=int(data.get("delta", 0)),
            event_sequence=data.get("event_sequence"),
            contribution=int(data.get("contribution", 0)),
            duplicate=bool(data.get("duplicate", False)),
            detail=dict(data.get("detail") or {}),
        )


@dataclass
class _Resolution:
    """What a handler decided; applied to the war by apply_action."""
    success: bool
    delta: int
    event_type: PressureEventType | None
    contribution: int = 0
    sabotage_points: int = 0
    cooldown: timedelta = timedelta(0)
    description: str = ""
    detail: dict[str, Any] = field(default_factory=dict)


# ===== Eligibility =====

def resolve_target_war(state: WorldState, action: Action) -> War:
    """The war an action targets: its war_id, or the active war on its territory."""
    if action.war_id:
        return get_war(state, action.war_id)
    if action.territory_id:
        war = state.active_war_for(action.territory_id)
        if war is None:
            raise InvalidTransition(f"No active war on territory {action.territory_id}")
        return war
    raise ValueError("Action must name a war_id or a territory_id")


def processed_key(action: Action) -> str:
    """action_id is unique per player, not per war."""
    return f"{action.player_id}:{action.action_id}"


def cooldown_key(action: Action) -> str:
    if action.type == ActionType.SABOTAGE:
        return f"sabotage:{action.payload.get('mission_id')}"
    return action.type.value


def check_eligibility(
    war: War,
    action: Action,
    membership: Membership | None,
    now: datetime,
) -> Side:
    """
    Raise if the player may not take this action in this war right now.
    Returns the side the player fights on.
    """
    if not war.is_active:
        raise InvalidTransition(f"War {war.id} is not active")
    if membership is None:
        raise Ineligible(f"Player {action.player_id} is not a member of any family")
    side = war.side_of(membership.family_id)
    if side is None:
        raise Ineligible(
            f"Family {membership.family_id} is not fighting war {war.id}"
        )
    participant = war.participants.get(action.player_id)
    if participant is not None and participant.family_id != membership.family_id:
        raise Ineligible(
            f"Player {action.player_id} fought war {war.id} for {participant.family_id}"
        )

    allowed = PHASE_ALLOWED_ACTIONS.get(war.phase, [])
    if action.type not in allowed:
        raise InvalidTransition(
            f"Action '{action.type.value}' is not allowed in phase '{war.phase.value}'. "
            f"Allowed actions: {', '.join(a.value for a in allowed)}"
        )

    if participant is not None:
        ready_at = participant.cooldowns.get(cooldown_key(action))
        if ready_at is not None and now < ready_at:
            raise Ineligible(
                f"Player {action.player_id} is on cooldown for {action.type.value} "
                f"until {ready_at.isoformat()}"
            )
    return side


# ===== Main entry point =====

def apply_action(
    state: WorldState,
    registry: TerritoryRegistry,
    action: Action,
    directory: MembershipDirectory,
    resources: ResourceLedger,
    now: datetime,
    rng: random.Random,
    rules: GameRules | None = None,
) -> tuple[ActionResult, list[WarEvent]]:
    """
    Resolve a player action against its war.

    The war is first brought up to date with `now`, so an action aimed at a
    phase whose window has elapsed is rejected rather than applied late.
    No pressure is recorded unless the cost deduction succeeds.

    Raises:
        NotFound: unknown war or mission
        InvalidTransition: war not active or action not allowed in its phase
        Ineligible: not a member of a warring family, rank/intel/cap, cooldown
        InsufficientResources: the resource ledger refused the cost
    """
    rules = rules or settings.rules
    war = resolve_target_war(state, action)
    events = advance_war(state, registry, war.id, now, rules)

    if action.action_id and processed_key(action) in war.processed_actions:
        result = ActionResult.from_dict(war.processed_actions[processed_key(action)])
        result.duplicate = True
        return result, events

    membership = directory.get_membership(action.player_id)
    side = check_eligibility(war, action, membership, now)
    participant = war.participants.get(action.player_id)

    if action.type == ActionType.SCOUT:
        resolution = _handle_scout(war, action, side, resources, rng, rules)
    elif action.type == ActionType.SABOTAGE:
        resolution = _handle_sabotage(war, registry, action, side, membership, resources, rng, rules)
    elif action.type == ActionType.SHOWDOWN:
        resolution = _handle_showdown(war, action, participant, resources, rng, rules)
    elif action.type == ActionType.SUPPLY:
        resolution = _handle_supply(war, action, resources, rng, rules)
    elif action.type == ActionType.GUARD_DUTY:
        resolution = _handle_guard_duty(war, action, resources, rng, rules)
    elif action.type == ActionType.CONSOLIDATE:
        resolution = _handle_consolidate(war, action, side, membership, resources, rng, rules)
    else:
        raise ValueError(f"Unknown action type: {action.type}")

    # Cost has been paid; from here on the action counts.
    if participant is None:
        participant = BattleParticipant(
            war_id=war.id,
            player_id=action.player_id,
            family_id=membership.family_id,
            side=side,
            joined_at=now,
        )
        war.participants[action.player_id] = participant
        events.append(participant_joined(war.id, action.player_id, membership.family_id, side.value))

    sequence = None
    phase = war.phase
    if resolution.event_type is not None:
        pressure_event, recorded = record_pressure_event(
            state, registry, war.id, side, resolution.event_type, phase,
            resolution.delta, now,
            player_id=action.player_id,
            description=resolution.description,
            sabotage_points=resolution.sabotage_points,
            rules=rules,
        )
        sequence = pressure_event.sequence
        events += recorded

    participant.total_actions += 1
    participant.contribution_score += resolution.contribution
    participant.last_action_at = now
    if resolution.cooldown > timedelta(0):
        participant.cooldowns[cooldown_key(action)] = now + resolution.cooldown
    if action.type == ActionType.SABOTAGE and resolution.success:
        participant.missions_completed += 1
    elif action.type == ActionType.SUPPLY and resolution.success:
        participant.supplies_provided += int(action.payload["supplies"])
    elif action.type == ActionType.GUARD_DUTY and resolution.success:
        participant.guard_duty_hours += float(action.payload["hours"])

    result = ActionResult(
        war_id=war.id,
        player_id=action.player_id,
        action_type=action.type,
        side=side,
        success=resolution.success,
        delta=resolution.delta if resolution.event_type is not None else 0,
        event_sequence=sequence,
        contribution=resolution.contribution,
        detail=resolution.detail,
    )
    if action.action_id:
        war.processed_actions[processed_key(action)] = result.to_dict()

    logger.debug(
        "War %s: %s %s by %s (%s) -> %s, delta %d",
        war.id, phase.value, action.type.value, action.player_id, side.value,
        "success" if result.success else "failure", result.delta,
    )
    events.append(action_resolved(
        war.id, action.player_id, action.type.value, result.success, result.delta, result.detail,
    ))
    return result, events


# ===== Helpers =====

def _roll(rng: random.Random, success_rate: float) -> bool:
    return rng.random() * 100.0 < success_rate


def _pay(resources: ResourceLedger, player_id: str, cost: Cost) -> None:
    if not resources.spend(player_id, cost):
        raise InsufficientResources(
            f"Player {player_id} cannot pay {cost.energy} energy, {cost.cash} cash"
            + (f" and items {', '.join(cost.items)}" if cost.items else "")
        )


def _minutes(value: float) -> timedelta:
    return timedelta(minutes=value)


def _resolve_simple(
    rule: ActionRule,
    player_id: str,
    resources: ResourceLedger,
    rng: random.Random,
) -> bool:
    _pay(resources, player_id, Cost(energy=rule.energy_cost))
    return _roll(rng, rule.success_rate)


# ===== Handlers =====

def _handle_scout(
    war: War,
    action: Action,
    side: Side,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    """Attackers gather intel; defenders counter-scout and degrade it."""
    rule = rules.action_rule("scout")
    success = _resolve_simple(rule, action.player_id, resources, rng)
    cooldown = _minutes(rule.cooldown_minutes)
    if not success:
        return _Resolution(
            success=False,
            delta=rule.failure_pressure,
            event_type=PressureEventType.SCOUTING_REPORT if rule.failure_pressure else None,
            cooldown=cooldown,
            description="Scouting run compromised",
        )
    if side == Side.ATTACKER:
        war.intel_quality = min(100, war.intel_quality + rules.intel_gain)
        event_type = PressureEventType.SCOUTING_REPORT
        description = "Scouts mapped the rackets"
    else:
        war.intel_quality = max(0, war.intel_quality - rules.counter_intel_loss)
        event_type = PressureEventType.COUNTER_INTEL
        description = "Counter-scouts fed the enemy bad information"
    return _Resolution(
        success=True,
        delta=rule.success_pressure,
        event_type=event_type,
        contribution=rule.contribution,
        cooldown=cooldown,
        description=description,
        detail={"intel_quality": war.intel_quality},
    )


def _handle_sabotage(
    war: War,
    registry: TerritoryRegistry,
    action: Action,
    side: Side,
    membership: Membership,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    """
    Run a war-scoped sabotage mission. Attacker success rates scale with intel
    quality, and only attacker successes count toward the sabotage threshold.
    A failed mission costs the acting side pressure equal to its risk level.
    """
    mission_id = action.payload.get("mission_id")
    if not mission_id:
        raise ValueError("Sabotage action requires a mission_id")
    mdef = registry.get_mission(mission_id)
    mstate = war.missions.get(mission_id)
    if mstate is None or not mstate.is_active:
        raise Ineligible(f"Mission {mission_id} is not available in war {war.id}")
    if not membership.rank.at_least(mdef.required_rank):
        raise Ineligible(
            f"Mission {mission_id} requires rank {mdef.required_rank.value}, "
            f"player is {membership.rank.value}"
        )
    if side == Side.ATTACKER and mdef.requires_intel and war.intel_quality < mdef.min_intel_quality:
        raise Ineligible(
            f"Mission {mission_id} requires intel quality {mdef.min_intel_quality}, "
            f"war has {war.intel_quality}"
        )
    if mdef.max_completions >= 0 and mstate.current_completions >= mdef.max_completions:
        raise Ineligible(f"Mission {mission_id} has reached its completion cap")

    _pay(resources, action.player_id, Cost(energy=mdef.energy_cost, items=mdef.required_items))

    success_rate = mdef.success_rate
    if side == Side.ATTACKER:
        success_rate *= 1 + (war.intel_quality / 100.0) * rules.intel_success_bonus
    success_rate = min(100.0, success_rate)
    cooldown = timedelta(hours=mdef.cooldown_hours)

    if not _roll(rng, success_rate):
        return _Resolution(
            success=False,
            delta=-mdef.risk_level,
            event_type=PressureEventType.MISSION_FAILURE,
            cooldown=cooldown,
            description=f"{mdef.display_name} failed",
            detail={"mission_id": mission_id, "success_rate": success_rate},
        )

    mstate.current_completions += 1
    if mdef.max_completions >= 0 and mstate.current_completions >= mdef.max_completions:
        mstate.is_active = False
    return _Resolution(
        success=True,
        delta=mdef.pressure_impact,
        event_type=PressureEventType.MISSION_SUCCESS,
        contribution=mdef.pressure_impact,
        sabotage_points=mdef.sabotage_points if side == Side.ATTACKER else 0,
        cooldown=cooldown,
        description=f"{mdef.display_name} succeeded",
        detail={
            "mission_id": mission_id,
            "success_rate": success_rate,
            "completions": mstate.current_completions,
        },
    )


def _handle_showdown(
    war: War,
    action: Action,
    participant: BattleParticipant | None,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    """Assault or hold the line. Seasoned participants hit harder, up to a cap."""
    rule = rules.action_rule("showdown")
    success = _resolve_simple(rule, action.player_id, resources, rng)
    cooldown = _minutes(rule.cooldown_minutes)
    if not success:
        return _Resolution(
            success=False,
            delta=rule.failure_pressure,
            event_type=PressureEventType.ASSAULT if rule.failure_pressure else None,
            cooldown=cooldown,
            description="Assault repelled",
        )
    score = participant.contribution_score if participant is not None else 0
    bonus = min(rules.showdown_contribution_bonus_cap, score // rules.showdown_contribution_divisor)
    return _Resolution(
        success=True,
        delta=rule.success_pressure + bonus,
        event_type=PressureEventType.ASSAULT,
        contribution=rule.contribution,
        cooldown=cooldown,
        description="Assault pressed home",
        detail={"contribution_bonus": bonus},
    )


def _handle_supply(
    war: War,
    action: Action,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    supplies = int(action.payload.get("supplies", 0))
    if supplies <= 0:
        raise ValueError("Supply delivery requires a positive number of supplies")
    rule = rules.action_rule("supply")
    success = _resolve_simple(rule, action.player_id, resources, rng)
    cooldown = _minutes(rule.cooldown_minutes)
    if not success:
        return _Resolution(
            success=False,
            delta=rule.failure_pressure,
            event_type=PressureEventType.SUPPLY_DELIVERY if rule.failure_pressure else None,
            cooldown=cooldown,
            description="Supply run intercepted",
        )
    return _Resolution(
        success=True,
        delta=rule.success_pressure * supplies,
        event_type=PressureEventType.SUPPLY_DELIVERY,
        contribution=rule.contribution * supplies,
        cooldown=cooldown,
        description=f"Delivered {supplies} supplies",
        detail={"supplies": supplies},
    )


def _handle_guard_duty(
    war: War,
    action: Action,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    """A guard shift; the player cannot stand another until this one ends."""
    hours = float(action.payload.get("hours", 0))
    if hours <= 0:
        raise ValueError("Guard duty requires a positive number of hours")
    rule = rules.action_rule("guard_duty")
    success = _resolve_simple(rule, action.player_id, resources, rng)
    cooldown = max(_minutes(rule.cooldown_minutes), timedelta(hours=hours))
    if not success:
        return _Resolution(
            success=False,
            delta=rule.failure_pressure,
            event_type=PressureEventType.GUARD_DUTY if rule.failure_pressure else None,
            cooldown=cooldown,
            description="Guard post abandoned",
        )
    return _Resolution(
        success=True,
        delta=int(round(rule.success_pressure * hours)),
        event_type=PressureEventType.GUARD_DUTY,
        contribution=int(round(rule.contribution * hours)),
        cooldown=cooldown,
        description=f"Stood guard for {hours:g} hours",
        detail={"hours": hours},
    )


def _handle_consolidate(
    war: War,
    action: Action,
    side: Side,
    membership: Membership,
    resources: ResourceLedger,
    rng: random.Random,
    rules: GameRules,
) -> _Resolution:
    """Winner's members stage defenses that are applied when control transfers."""
    if membership.family_id != war.winner_family_id:
        raise Ineligible(f"Only the winning family can consolidate war {war.id}")
    task = ConsolidationTask(action.payload.get("task", ConsolidationTask.FORTIFY.value))
    rule = rules.action_rule("consolidate")
    success = _resolve_simple(rule, action.player_id, resources, rng)
    cooldown = _minutes(rule.cooldown_minutes)
    if not success:
        return _Resolution(
            success=False,
            delta=0,
            event_type=None,
            cooldown=cooldown,
            detail={"task": task.value},
        )
    if task == ConsolidationTask.FORTIFY:
        war.staged_defense_points += rules.consolidation_defense_gain
        description = f"Fortified positions (+{rules.consolidation_defense_gain} defense)"
    else:
        war.staged_guards += 1
        description = "Posted a guard"
    return _Resolution(
        success=True,
        delta=rule.success_pressure,
        event_type=PressureEventType.CONSOLIDATION_TASK,
        contribution=rule.contribution,
        cooldown=cooldown,
        description=description,
        detail={
            "task": task.value,
            "staged_defense_points": war.staged_defense_points,
            "staged_guards": war.staged_guards,
        },
    )
