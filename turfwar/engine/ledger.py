"""
Control Ledger: who holds each territory, how firmly, and with what defenses.
Ownership changes only through set_control, which the war machine calls on
resolution and claim_territory calls for a founding claim. Defense changes go
through adjust_defense.
"""

import logging
from datetime import datetime

from turfwar.config import GameRules, settings
from turfwar.engine import MAX_FORTIFICATION_LEVEL
from turfwar.engine.collaborators import Capability, Cost, Membership, ResourceLedger
from turfwar.engine.definitions import TerritoryDefinition, TerritoryRegistry
from turfwar.engine.errors import (
    AlreadyContested,
    Ineligible,
    InsufficientResources,
    NotFound,
)
from turfwar.engine.events import WarEvent, control_changed, defense_adjusted
from turfwar.engine.state import ControlRecord, ControlStatus, War, WarPhase, WorldState

logger = logging.getLogger(__name__)


def get_control(state: WorldState, registry: TerritoryRegistry, territory_id: str) -> ControlRecord | None:
    """Return the territory's control record, or None if nobody holds it."""
    registry.get(territory_id)
    record = state.controls.get(territory_id)
    if record is None or record.family_id is None:
        return None
    return record


def owned_territory_ids(state: WorldState, family_id: str) -> list[str]:
    return sorted(
        tid for tid, record in state.controls.items()
        if record.family_id == family_id and record.control_percentage > 0
    )


def set_control(
    state: WorldState,
    registry: TerritoryRegistry,
    territory_id: str,
    family_id: str | None,
    percentage: float,
    defense_seed: int = 0,
    now: datetime | None = None,
    fortification_level: int = 0,
    war_id: str | None = None,
) -> list[WarEvent]:
    """
    Assign control of a territory.

    A territory held by another family can only change hands through the war
    currently fought over it, so war_id must name that war. A percentage of 0
    releases the territory. Returns the events produced.
    """
    registry.get(territory_id)
    if not 0 <= percentage <= 100:
        raise ValueError(f"Control percentage must be within 0-100, got {percentage}")
    if percentage > 0 and not family_id:
        raise ValueError("A family is required for a non-zero control percentage")

    record = state.controls.get(territory_id)
    old_family = record.family_id if record else None

    if old_family and family_id and old_family != family_id:
        if war_id is None or record.active_war_id != war_id:
            raise Ineligible(
                f"Territory {territory_id} is held by {old_family}; control must be won through war"
            )

    if record is None:
        record = ControlRecord(territory_id=territory_id, family_id=None)
        state.controls[territory_id] = record

    if percentage == 0:
        record.family_id = None
        record.control_percentage = 0.0
        record.defense_points = 0
        record.guard_count = 0
        record.fortification_level = 0
        record.controlled_since = None
        record.last_income_at = None
        new_family = None
    elif old_family != family_id:
        record.family_id = family_id
        record.control_percentage = float(percentage)
        record.defense_points = max(0, defense_seed)
        record.guard_count = 0
        record.fortification_level = max(0, min(MAX_FORTIFICATION_LEVEL, fortification_level))
        record.income_modifier = 1.0
        record.total_income_generated = 0.0
        record.controlled_since = now
        record.last_income_at = now
        new_family = family_id
    else:
        # Same owner re-securing: percentage changes, standing defenses stay
        record.control_percentage = float(percentage)
        record.defense_points = max(record.defense_points, defense_seed)
        new_family = family_id

    if old_family != new_family:
        logger.info(
            "Control of %s: %s -> %s at %.1f%%",
            territory_id, old_family, new_family, record.control_percentage,
        )
    return [control_changed(territory_id, old_family, new_family, record.control_percentage)]


def adjust_defense(
    state: WorldState,
    registry: TerritoryRegistry,
    territory_id: str,
    defense_delta: int = 0,
    guard_delta: int = 0,
    fortification_delta: int = 0,
) -> list[WarEvent]:
    """Apply signed defense changes, keeping fortification in [0,5] and counts non-negative."""
    record = get_control(state, registry, territory_id)
    if record is None:
        raise NotFound(f"Territory {territory_id} is unclaimed; nothing to defend")
    record.defense_points = max(0, record.defense_points + defense_delta)
    record.guard_count = max(0, record.guard_count + guard_delta)
    record.fortification_level = max(
        0, min(MAX_FORTIFICATION_LEVEL, record.fortification_level + fortification_delta)
    )
    return [defense_adjusted(
        territory_id, record.defense_points, record.guard_count, record.fortification_level,
    )]


def claim_territory(
    state: WorldState,
    registry: TerritoryRegistry,
    membership: Membership | None,
    territory_id: str,
    now: datetime,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    """
    Founding claim: a family holding no territory may take one unclaimed
    territory without a contest. Every later expansion goes through war.
    """
    rules = rules or settings.rules
    tdef = registry.get(territory_id)
    if membership is None:
        raise Ineligible("Player is not a member of any family")
    if not membership.can(Capability.MANAGE_TERRITORIES):
        raise Ineligible(f"Player {membership.player_id} cannot manage territories")
    if state.active_war_for(territory_id) is not None:
        raise AlreadyContested(f"Territory {territory_id} has an active war")
    if get_control(state, registry, territory_id) is not None:
        raise Ineligible(f"Territory {territory_id} is already controlled")
    if owned_territory_ids(state, membership.family_id):
        raise Ineligible(
            f"Family {membership.family_id} already holds territory; declare war to expand"
        )
    return set_control(
        state, registry, tdef.id, membership.family_id,
        rules.founding_claim_percentage,
        defense_seed=rules.transfer_defense_seed,
        now=now,
        fortification_level=rules.transfer_fortification_baseline,
    )


def defense_cost(
    defense_points: int = 0,
    guards: int = 0,
    fortification_levels: int = 0,
    rules: GameRules | None = None,
) -> Cost:
    rules = rules or settings.rules
    cash = (
        defense_points * rules.defense_point_cost
        + guards * rules.guard_cost
        + fortification_levels * rules.fortification_cost
    )
    return Cost(cash=cash)


def invest_in_defense(
    state: WorldState,
    registry: TerritoryRegistry,
    membership: Membership | None,
    territory_id: str,
    resources: ResourceLedger,
    defense_points: int = 0,
    guards: int = 0,
    fortification_levels: int = 0,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    """
    Out-of-war defense purchase by a member of the controlling family.
    Cash is deducted through the resource ledger before anything changes.
    """
    rules = rules or settings.rules
    if defense_points < 0 or guards < 0 or fortification_levels < 0:
        raise ValueError("Defense investment amounts must be non-negative")
    if defense_points == 0 and guards == 0 and fortification_levels == 0:
        raise ValueError("Nothing to invest")
    if membership is None:
        raise Ineligible("Player is not a member of any family")

    record = get_control(state, registry, territory_id)
    if record is None or record.family_id != membership.family_id:
        raise Ineligible(f"Family {membership.family_id} does not control {territory_id}")
    if not (membership.can(Capability.MANAGE_TERRITORIES) or membership.can(Capability.SET_DEFENSES)):
        raise Ineligible(f"Player {membership.player_id} cannot set defenses")
    if guards and not (membership.can(Capability.MANAGE_TERRITORIES) or membership.can(Capability.ASSIGN_GUARDS)):
        raise Ineligible(f"Player {membership.player_id} cannot assign guards")
    if record.fortification_level + fortification_levels > MAX_FORTIFICATION_LEVEL:
        raise ValueError(
            f"Fortification level cannot exceed {MAX_FORTIFICATION_LEVEL} "
            f"(currently {record.fortification_level})"
        )

    cost = defense_cost(defense_points, guards, fortification_levels, rules)
    if not resources.spend(membership.player_id, cost):
        raise InsufficientResources(
            f"Player {membership.player_id} cannot pay {cost.cash} cash for defenses"
        )
    return adjust_defense(
        state, registry, territory_id,
        defense_delta=defense_points,
        guard_delta=guards,
        fortification_delta=fortification_levels,
    )


def derive_control_status(
    record: ControlRecord | None,
    tdef: TerritoryDefinition,
    war: War | None,
) -> ControlStatus:
    if war is not None and war.is_active:
        if war.phase == WarPhase.CONSOLIDATION:
            return ControlStatus.CONSOLIDATING
        return ControlStatus.CONTESTED
    if record is not None and record.family_id and record.defense_points < tdef.min_defense_points:
        return ControlStatus.VULNERABLE
    return ControlStatus.STABLE
