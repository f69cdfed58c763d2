"""
War State Machine.

none -> scouting -> sabotage -> showdown -> consolidation -> archived, with
stalemate and cancellation exiting straight to archived. Unclaimed territories
skip scouting and run shorter phases.

Each war's PressureEvent log is the source of truth; the pressure totals and
control bar on War are a projection of it (see replay_pressure). Every function
here mutates the WorldState in place and must be called with the territory's
lock held (turfwar.service does this).
"""

import logging
import uuid
from datetime import datetime, timedelta

from turfwar.config import GameRules, settings
from turfwar.engine import UNCLAIMED
from turfwar.engine.collaborators import Capability, Membership
from turfwar.engine.definitions import TerritoryDefinition, TerritoryRegistry
from turfwar.engine.errors import (
    AlreadyContested,
    Ineligible,
    InvalidTransition,
    NotFound,
    phase_mismatch,
)
from turfwar.engine.events import (
    WarEvent,
    phase_changed,
    pressure_recorded,
    war_archived,
    war_declared,
    war_ended,
)
from turfwar.engine.income import projected_control_percentage, settle_income
from turfwar.engine.ledger import adjust_defense, get_control, set_control
from turfwar.engine.state import (
    PHASE_ORDER,
    PhaseTransition,
    PressureEvent,
    PressureEventType,
    SabotageMissionState,
    Side,
    War,
    WarOutcome,
    WarPhase,
    WorldState,
)

logger = logging.getLogger(__name__)

CONTROL_BAR_LIMIT = 100


# ===== Rule helpers =====

def phase_duration_hours(
    phase: WarPhase,
    control_difficulty: int,
    abbreviated: bool = False,
    rules: GameRules | None = None,
) -> float:
    """Phase window interpolated linearly by control difficulty (1 = min, 10 = max)."""
    rules = rules or settings.rules
    window = rules.phase_windows[phase.value]
    fraction = (max(1, min(10, control_difficulty)) - 1) / 9.0
    hours = window.min_hours + (window.max_hours - window.min_hours) * fraction
    if abbreviated:
        hours *= rules.unclaimed_duration_factor
    return hours


def victory_threshold_for(control_difficulty: int, rules: GameRules | None = None) -> int:
    rules = rules or settings.rules
    threshold = rules.victory_threshold_base + rules.victory_threshold_per_difficulty * control_difficulty
    return max(1, min(CONTROL_BAR_LIMIT, threshold))


def sabotage_threshold_for(control_difficulty: int, rules: GameRules | None = None) -> int:
    rules = rules or settings.rules
    return rules.sabotage_threshold_per_difficulty * control_difficulty


def garrison_strength(defense_points: int, fortification_level: int, guard_count: int, rules: GameRules | None = None) -> int:
    rules = rules or settings.rules
    return (
        int(defense_points * rules.garrison_per_defense_point)
        + fortification_level * rules.garrison_per_fortification
        + guard_count * rules.garrison_per_guard
    )


def clamp_control_bar(attacking_pressure: int, defending_pressure: int) -> int:
    return max(-CONTROL_BAR_LIMIT, min(CONTROL_BAR_LIMIT, attacking_pressure - defending_pressure))


def replay_pressure(events: list[PressureEvent]) -> tuple[int, int, int, int]:
    """
    Rebuild (attacking_pressure, defending_pressure, control_bar_position,
    sabotage_points) from an event log, starting from empty.
    """
    attacking = defending = sabotage = 0
    for event in sorted(events, key=lambda e: e.sequence):
        if event.side == Side.ATTACKER:
            attacking += event.delta
        else:
            defending += event.delta
        sabotage += event.sabotage_points
    return attacking, defending, clamp_control_bar(attacking, defending), sabotage


def get_war(state: WorldState, war_id: str) -> War:
    war = state.wars.get(war_id)
    if war is None:
        raise NotFound(f"Unknown war: {war_id}")
    return war


# ===== Declaration =====

def declare_war(
    state: WorldState,
    registry: TerritoryRegistry,
    membership: Membership | None,
    territory_id: str,
    now: datetime,
    rules: GameRules | None = None,
    war_id: str | None = None,
) -> tuple[War, list[WarEvent]]:
    """
    Open a war over a territory for the declaring player's family.

    Raises:
        NotFound: unknown territory
        Ineligible: no family, missing can_declare_wars, territory not
            contestable, or the family already controls it
        AlreadyContested: an active war exists, or the territory is still
            under post-war protection
    """
    rules = rules or settings.rules
    tdef = registry.get(territory_id)
    if membership is None:
        raise Ineligible("Player is not a member of any family")
    if not membership.can(Capability.DECLARE_WARS):
        raise Ineligible(f"Player {membership.player_id} cannot declare wars")
    if not tdef.is_contestable:
        raise Ineligible(f"Territory {territory_id} cannot be contested")

    # Compare-and-set on the territory's war pointer; the caller holds its lock.
    if territory_id in state.active_wars:
        raise AlreadyContested(
            f"Territory {territory_id} already has active war {state.active_wars[territory_id]}"
        )
    protected_until = state.protected_until.get(territory_id)
    if protected_until is not None and now < protected_until:
        raise AlreadyContested(
            f"Territory {territory_id} is protected until {protected_until.isoformat()}"
        )

    record = get_control(state, registry, territory_id)
    attacker = membership.family_id
    if record is not None and record.family_id == attacker:
        raise Ineligible(f"Family {attacker} already controls {territory_id}")

    defender = record.family_id if record is not None else UNCLAIMED
    abbreviated = record is None
    first_phase = WarPhase.SABOTAGE if abbreviated else WarPhase.SCOUTING
    difficulty = tdef.control_difficulty

    war = War(
        id=war_id or f"war_{uuid.uuid4().hex[:12]}",
        territory_id=territory_id,
        attacking_family_id=attacker,
        defending_family_id=defender,
        phase=first_phase,
        declared_at=now,
        phase_started_at=now,
        phase_duration_hours=phase_duration_hours(first_phase, difficulty, abbreviated, rules),
        victory_threshold=victory_threshold_for(difficulty, rules),
        sabotage_threshold=sabotage_threshold_for(difficulty, rules),
        stalemate_timer_hours=phase_duration_hours(WarPhase.SHOWDOWN, difficulty, abbreviated, rules),
        abbreviated=abbreviated,
    )
    if war.id in state.wars:
        raise AlreadyContested(f"War id {war.id} is already in use")
    state.wars[war.id] = war
    state.active_wars[territory_id] = war.id
    state.protected_until.pop(territory_id, None)

    if record is not None:
        record.active_war_id = war.id
        record.times_contested += 1
        record.last_contested_at = now

    war.transitions.append(PhaseTransition(None, first_phase, now, "declared"))
    if first_phase == WarPhase.SABOTAGE:
        _open_sabotage_missions(war, registry)

    logger.info(
        "War %s declared on %s: %s vs %s (difficulty %d, starting in %s)",
        war.id, territory_id, attacker, defender, difficulty, first_phase.value,
    )
    events = [war_declared(war.id, territory_id, attacker, defender, first_phase.value)]
    return war, events


# ===== Pressure =====

def _append_pressure(
    war: War,
    side: Side,
    event_type: PressureEventType,
    delta: int,
    at: datetime,
    player_id: str | None = None,
    description: str = "",
    sabotage_points: int = 0,
) -> tuple[PressureEvent, WarEvent]:
    event = PressureEvent(
        war_id=war.id,
        sequence=len(war.events) + 1,
        side=side,
        event_type=event_type,
        phase=war.phase,
        delta=int(delta),
        created_at=at,
        player_id=player_id,
        description=description,
        sabotage_points=int(sabotage_points),
    )
    war.events.append(event)
    if side == Side.ATTACKER:
        war.attacking_pressure += event.delta
    else:
        war.defending_pressure += event.delta
    war.sabotage_points += event.sabotage_points
    war.control_bar_position = clamp_control_bar(war.attacking_pressure, war.defending_pressure)
    return event, pressure_recorded(
        war.id, event.sequence, side.value, event.delta,
        war.attacking_pressure, war.defending_pressure, war.control_bar_position,
    )


def record_pressure_event(
    state: WorldState,
    registry: TerritoryRegistry,
    war_id: str,
    side: Side,
    event_type: PressureEventType,
    phase: WarPhase,
    delta: int,
    now: datetime,
    player_id: str | None = None,
    description: str = "",
    sabotage_points: int = 0,
    rules: GameRules | None = None,
) -> tuple[PressureEvent, list[WarEvent]]:
    """
    Append a pressure event to an active war and update the projection.

    `phase` is the phase the event was produced for. The war is advanced to
    `now` first, so an event for a phase whose window has closed is rejected
    with a phase mismatch even if no tick has run yet. Crossing the sabotage
    threshold advances to showdown, and crossing the victory threshold in
    showdown ends the war, both immediately.
    """
    rules = rules or settings.rules
    war = get_war(state, war_id)
    events = advance_war(state, registry, war_id, now, rules)
    if not war.is_active:
        raise InvalidTransition(f"War {war_id} is not active")
    if war.phase != phase:
        raise phase_mismatch(war_id, phase.value, war.phase.value)

    event, recorded = _append_pressure(
        war, side, event_type, delta, now, player_id, description, sabotage_points,
    )
    events.append(recorded)
    if war.phase == WarPhase.SABOTAGE and _sabotage_threshold_met(war):
        events += _enter_phase(state, registry, war, WarPhase.SHOWDOWN, now, "sabotage_threshold", rules)
    elif war.phase == WarPhase.SHOWDOWN:
        events += _check_early_resolution(state, registry, war, now, rules)
    return event, events


def _sabotage_threshold_met(war: War) -> bool:
    return war.sabotage_threshold > 0 and war.sabotage_points >= war.sabotage_threshold


def _check_early_resolution(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    at: datetime,
    rules: GameRules,
) -> list[WarEvent]:
    if abs(war.control_bar_position) < war.victory_threshold:
        return []
    outcome = (
        WarOutcome.ATTACKER_VICTORY if war.control_bar_position > 0
        else WarOutcome.DEFENDER_VICTORY
    )
    return _end_war(state, registry, war, outcome, at, "victory_threshold", rules)


# ===== Phase transitions =====

def _open_sabotage_missions(war: War, registry: TerritoryRegistry) -> None:
    for mission_id in sorted(registry.missions):
        war.missions.setdefault(mission_id, SabotageMissionState(mission_id=mission_id))


def _enter_phase(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    phase: WarPhase,
    at: datetime,
    reason: str,
    rules: GameRules,
) -> list[WarEvent]:
    old_phase = war.phase
    if PHASE_ORDER.index(phase) <= PHASE_ORDER.index(old_phase):
        raise InvalidTransition(f"War {war.id} cannot move from {old_phase.value} to {phase.value}")

    tdef = registry.get(war.territory_id)
    events: list[WarEvent] = []
    if phase in (WarPhase.SHOWDOWN, WarPhase.CONSOLIDATION):
        events += settle_income(state, registry, war.territory_id, at, rules)
    war.phase = phase
    war.phase_started_at = at
    if phase == WarPhase.SHOWDOWN:
        war.phase_duration_hours = war.stalemate_timer_hours
    else:
        war.phase_duration_hours = phase_duration_hours(
            phase, tdef.control_difficulty, war.abbreviated, rules,
        )
    war.transitions.append(PhaseTransition(old_phase, phase, at, reason))
    logger.info("War %s: %s -> %s (%s)", war.id, old_phase.value, phase.value, reason)
    events.append(phase_changed(war.id, old_phase.value, phase.value, reason))

    if phase == WarPhase.SABOTAGE:
        _open_sabotage_missions(war, registry)
    elif phase == WarPhase.SHOWDOWN:
        events += _garrison_defenders(state, registry, war, tdef, at, rules)
        # pressure carried over from sabotage may already decide it
        events += _check_early_resolution(state, registry, war, at, rules)
    return events


def _garrison_defenders(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    tdef: TerritoryDefinition,
    at: datetime,
    rules: GameRules,
) -> list[WarEvent]:
    """The incumbent's standing defenses push back as the showdown opens."""
    record = get_control(state, registry, tdef.id)
    if record is None or record.family_id != war.defending_family_id:
        return []
    strength = garrison_strength(
        record.defense_points, record.fortification_level, record.guard_count, rules,
    )
    if strength <= 0:
        return []
    _, recorded = _append_pressure(
        war, Side.DEFENDER, PressureEventType.GARRISON, strength, at,
        description=f"Garrison of {tdef.display_name} holds the line",
    )
    return [recorded]


def _end_war(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    outcome: WarOutcome,
    at: datetime,
    reason: str,
    rules: GameRules,
) -> list[WarEvent]:
    war.outcome = outcome
    war.ended_at = at
    if outcome == WarOutcome.ATTACKER_VICTORY:
        war.winner_family_id = war.attacking_family_id
    elif outcome == WarOutcome.DEFENDER_VICTORY:
        war.winner_family_id = war.defending_family_id
    logger.info(
        "War %s on %s ended: %s (control bar %d)",
        war.id, war.territory_id, outcome.value, war.control_bar_position,
    )
    events = [war_ended(war.id, outcome.value, war.winner_family_id, war.control_bar_position)]

    if war.winner_family_id and war.winner_family_id != UNCLAIMED:
        events += _enter_phase(state, registry, war, WarPhase.CONSOLIDATION, at, reason, rules)
    else:
        events += _archive(state, registry, war, at, outcome.value, rules)
    return events


def _complete_consolidation(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    at: datetime,
    rules: GameRules,
) -> list[WarEvent]:
    """Hand the territory to the winner and apply defenses staged during consolidation."""
    winner = war.winner_family_id
    percentage = projected_control_percentage(war.control_bar_position)
    events = settle_income(state, registry, war.territory_id, at, rules)
    events += set_control(
        state, registry, war.territory_id, winner, percentage,
        defense_seed=rules.transfer_defense_seed,
        now=at,
        fortification_level=rules.transfer_fortification_baseline,
        war_id=war.id,
    )
    if war.staged_defense_points or war.staged_guards:
        events += adjust_defense(
            state, registry, war.territory_id,
            defense_delta=war.staged_defense_points,
            guard_delta=war.staged_guards,
        )
    events += _archive(state, registry, war, at, "consolidated", rules)
    return events


def _archive(
    state: WorldState,
    registry: TerritoryRegistry,
    war: War,
    at: datetime,
    reason: str,
    rules: GameRules,
) -> list[WarEvent]:
    events = settle_income(state, registry, war.territory_id, at, rules)
    war.archived_at = at
    if war.ended_at is None:
        war.ended_at = at
    war.transitions.append(PhaseTransition(war.phase, None, at, reason))
    if state.active_wars.get(war.territory_id) == war.id:
        del state.active_wars[war.territory_id]
    record = state.controls.get(war.territory_id)
    if record is not None and record.active_war_id == war.id:
        record.active_war_id = None
    if rules.post_war_protection_hours > 0:
        state.protected_until[war.territory_id] = at + timedelta(hours=rules.post_war_protection_hours)
    logger.info("War %s archived (%s)", war.id, reason)
    return events + [war_archived(war.id, war.territory_id, war.outcome.value if war.outcome else reason)]


# ===== Scheduler tick =====

def advance_war(
    state: WorldState,
    registry: TerritoryRegistry,
    war_id: str,
    now: datetime,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    """
    Apply every phase boundary that has elapsed by `now`.

    Idempotent: ticking an archived or already-advanced war is a no-op. A late
    tick applies each missed boundary at its scheduled time, so a single call
    may move a war through several phases.
    """
    rules = rules or settings.rules
    war = get_war(state, war_id)
    events: list[WarEvent] = []
    if not war.is_active:
        return events

    if war.phase == WarPhase.SABOTAGE and _sabotage_threshold_met(war) and now >= war.phase_started_at:
        events += _enter_phase(state, registry, war, WarPhase.SHOWDOWN, now, "sabotage_threshold", rules)

    while war.is_active and now >= war.phase_ends_at:
        boundary = war.phase_ends_at
        if war.phase == WarPhase.SCOUTING:
            events += _enter_phase(state, registry, war, WarPhase.SABOTAGE, boundary, "duration_elapsed", rules)
        elif war.phase == WarPhase.SABOTAGE:
            events += _enter_phase(state, registry, war, WarPhase.SHOWDOWN, boundary, "duration_elapsed", rules)
        elif war.phase == WarPhase.SHOWDOWN:
            if war.attacking_pressure > war.defending_pressure:
                outcome = WarOutcome.ATTACKER_VICTORY
            elif war.defending_pressure > war.attacking_pressure:
                outcome = WarOutcome.DEFENDER_VICTORY
            else:
                outcome = WarOutcome.STALEMATE
            events += _end_war(state, registry, war, outcome, boundary, "duration_elapsed", rules)
        else:
            events += _complete_consolidation(state, registry, war, boundary, rules)
    return events


def advance_all_wars(
    state: WorldState,
    registry: TerritoryRegistry,
    now: datetime,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    events: list[WarEvent] = []
    for war_id in sorted(state.active_wars.values()):
        events += advance_war(state, registry, war_id, now, rules)
    return events


# ===== Cancellation =====

def cancel_war(
    state: WorldState,
    registry: TerritoryRegistry,
    membership: Membership | None,
    war_id: str,
    now: datetime,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    """
    Call off a war before it is decided. Either side may cancel with
    can_declare_wars or can_negotiate_peace; control is left unchanged.
    """
    rules = rules or settings.rules
    war = get_war(state, war_id)
    if not war.is_active:
        raise InvalidTransition(f"War {war_id} is not active")
    if membership is None or war.side_of(membership.family_id) is None:
        raise Ineligible(f"Player is not in a family fighting war {war_id}")
    if not (membership.can(Capability.DECLARE_WARS) or membership.can(Capability.NEGOTIATE_PEACE)):
        raise Ineligible(f"Player {membership.player_id} cannot call off wars")
    if war.outcome is not None:
        raise InvalidTransition(f"War {war_id} is already decided ({war.outcome.value})")

    war.outcome = WarOutcome.CANCELLED
    war.ended_at = now
    events = [war_ended(war.id, war.outcome.value, None, war.control_bar_position)]
    events += _archive(state, registry, war, now, "cancelled", rules)
    return events
