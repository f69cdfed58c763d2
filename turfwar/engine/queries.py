"""
Query functions for UI integration.
These functions describe territories, wars and contributions without
mutating world state.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from turfwar.config import GameRules, settings
from turfwar.engine.actions import Action
from turfwar.engine.aggregator import PHASE_ALLOWED_ACTIONS, check_eligibility, resolve_target_war
from turfwar.engine.collaborators import MembershipDirectory
from turfwar.engine.definitions import TerritoryRegistry
from turfwar.engine.errors import NotFound, TerritoryWarError
from turfwar.engine.income import territory_income
from turfwar.engine.ledger import derive_control_status, owned_territory_ids
from turfwar.engine.state import BattleParticipant, Side, War, WorldState
from turfwar.engine.war import advance_war, get_war


@dataclass
class ValidationResult:
    """Result of action validation."""
    valid: bool
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "error": self.error, "code": self.code}


# ===== Action Validation =====

def validate_action(
    state: WorldState,
    registry: TerritoryRegistry,
    action: Action,
    directory: MembershipDirectory,
    now: datetime,
    rules: GameRules | None = None,
) -> ValidationResult:
    """
    Check membership, phase, cooldown and mission gates without paying or
    rolling. Costs are not checked; the resource ledger decides those.

    Works on a copy of `state` brought up to `now`, so a phase whose window
    has closed is judged as the phase that follows it.
    """
    rules = rules or settings.rules
    state = state.copy()
    try:
        war = resolve_target_war(state, action)
        advance_war(state, registry, war.id, now, rules)
        membership = directory.get_membership(action.player_id)
        check_eligibility(war, action, membership, now)
        mission_id = action.payload.get("mission_id")
        if mission_id:
            mdef = registry.get_mission(mission_id)
            mstate = war.missions.get(mission_id)
            if mstate is None or not mstate.is_active:
                return ValidationResult(False, f"Mission {mission_id} is not available", "ineligible")
            if not membership.rank.at_least(mdef.required_rank):
                return ValidationResult(
                    False, f"Mission {mission_id} requires rank {mdef.required_rank.value}", "ineligible",
                )
            if (
                war.side_of(membership.family_id) == Side.ATTACKER
                and mdef.requires_intel
                and war.intel_quality < mdef.min_intel_quality
            ):
                return ValidationResult(
                    False, f"Mission {mission_id} requires intel quality {mdef.min_intel_quality}", "ineligible",
                )
    except TerritoryWarError as e:
        return ValidationResult(False, e.message, e.code)
    except ValueError as e:
        return ValidationResult(False, str(e), "invalid_request")
    return ValidationResult(True)


def get_available_action_types(war: War) -> list[str]:
    if not war.is_active:
        return []
    return [a.value for a in PHASE_ALLOWED_ACTIONS.get(war.phase, [])]


# ===== Territory queries =====

def get_territory_view(
    state: WorldState,
    registry: TerritoryRegistry,
    territory_id: str,
    rules: GameRules | None = None,
) -> dict[str, Any]:
    """Static definition, control record, status, income and active war for one territory."""
    tdef = registry.get(territory_id)
    record = state.controls.get(territory_id)
    war = state.active_war_for(territory_id)
    owner = record.family_id if record is not None else None
    return {
        "territory": tdef.to_dict(),
        "control": record.to_dict() if record is not None and owner else None,
        "owner": owner,
        "status": derive_control_status(record if owner else None, tdef, war).value,
        "income": territory_income(state, registry, territory_id, rules).to_dict(),
        "active_war_id": war.id if war is not None else None,
        "war_phase": war.phase.value if war is not None else None,
        "protected_until": (
            state.protected_until[territory_id].isoformat()
            if territory_id in state.protected_until else None
        ),
    }


def get_grid_snapshot(
    state: WorldState,
    registry: TerritoryRegistry,
    rules: GameRules | None = None,
) -> list[dict[str, Any]]:
    """Every territory with its control snapshot, in grid order."""
    return [get_territory_view(state, registry, t.id, rules) for t in registry.all()]


def get_family_territories(state: WorldState, registry: TerritoryRegistry, family_id: str) -> list[dict[str, Any]]:
    return [
        {
            "territory_id": tid,
            "display_name": registry.get(tid).display_name,
            "control": state.controls[tid].to_dict(),
        }
        for tid in owned_territory_ids(state, family_id)
    ]


# ===== War queries =====

def get_top_contributors(war: War, limit: int = 5) -> list[BattleParticipant]:
    return sorted(
        war.participants.values(),
        key=lambda p: (-p.contribution_score, p.joined_at or war.declared_at, p.player_id),
    )[:limit]


def get_war_summary(war: War, top: int = 5) -> dict[str, Any]:
    """Phase, pressures, control bar and top contributors, without the full event log."""
    return {
        "id": war.id,
        "territory_id": war.territory_id,
        "attacking_family_id": war.attacking_family_id,
        "defending_family_id": war.defending_family_id,
        "phase": war.phase.value,
        "phase_started_at": war.phase_started_at.isoformat(),
        "phase_ends_at": war.phase_ends_at.isoformat(),
        "attacking_pressure": war.attacking_pressure,
        "defending_pressure": war.defending_pressure,
        "control_bar_position": war.control_bar_position,
        "victory_threshold": war.victory_threshold,
        "sabotage_points": war.sabotage_points,
        "sabotage_threshold": war.sabotage_threshold,
        "stalemate_timer_hours": war.stalemate_timer_hours,
        "intel_quality": war.intel_quality,
        "abbreviated": war.abbreviated,
        "outcome": war.outcome.value if war.outcome else None,
        "winner_family_id": war.winner_family_id,
        "declared_at": war.declared_at.isoformat(),
        "ended_at": war.ended_at.isoformat() if war.ended_at else None,
        "archived_at": war.archived_at.isoformat() if war.archived_at else None,
        "is_active": war.is_active,
        "phase_history": [p.value for p in war.phase_history],
        "available_actions": get_available_action_types(war),
        "top_contributors": [p.to_dict() for p in get_top_contributors(war, top)],
    }


def get_active_war(state: WorldState, registry: TerritoryRegistry, territory_id: str) -> dict[str, Any] | None:
    registry.get(territory_id)
    war = state.active_war_for(territory_id)
    return get_war_summary(war) if war is not None else None


def get_wars(
    state: WorldState,
    family_id: str | None = None,
    active_only: bool = False,
) -> list[dict[str, Any]]:
    wars = [
        w for w in state.wars.values()
        if (not active_only or w.is_active)
        and (family_id is None or family_id in (w.attacking_family_id, w.defending_family_id))
    ]
    wars.sort(key=lambda w: w.declared_at, reverse=True)
    return [get_war_summary(w) for w in wars]


def get_war_events(state: WorldState, war_id: str, since_sequence: int = 0) -> list[dict[str, Any]]:
    war = get_war(state, war_id)
    return [e.to_dict() for e in war.events if e.sequence > since_sequence]


def get_war_transitions(state: WorldState, war_id: str) -> list[dict[str, Any]]:
    return [t.to_dict() for t in get_war(state, war_id).transitions]


def get_participants(state: WorldState, war_id: str) -> list[dict[str, Any]]:
    war = get_war(state, war_id)
    return [p.to_dict() for p in get_top_contributors(war, limit=len(war.participants))]


def get_participant(state: WorldState, war_id: str, player_id: str) -> BattleParticipant:
    war = get_war(state, war_id)
    participant = war.participants.get(player_id)
    if participant is None:
        raise NotFound(f"Player {player_id} has not fought in war {war_id}")
    return participant


def get_available_missions(state: WorldState, registry: TerritoryRegistry, war_id: str) -> list[dict[str, Any]]:
    """The war's sabotage missions with remaining completions. Empty before sabotage opens."""
    war = get_war(state, war_id)
    missions = []
    for mission_id, mstate in sorted(war.missions.items()):
        mdef = registry.get_mission(mission_id)
        remaining = (
            None if mdef.max_completions < 0
            else max(0, mdef.max_completions - mstate.current_completions)
        )
        missions.append({
            **mdef.to_dict(),
            "current_completions": mstate.current_completions,
            "remaining_completions": remaining,
            "is_active": mstate.is_active,
            "intel_met": not mdef.requires_intel or war.intel_quality >= mdef.min_intel_quality,
        })
    return missions
