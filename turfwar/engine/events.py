"""
War events for UI hooks and logging.
Events describe what happened while an operation was processed; every write
operation returns the list of events it produced.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class WarEvent:
    """Base event class. All events have a type and payload."""
    type: str
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WarEvent":
        return cls(type=data["type"], payload=data["payload"])


# ===== Event Type Constants =====

# War lifecycle events
WAR_DECLARED = "war_declared"
PHASE_CHANGED = "phase_changed"
WAR_ENDED = "war_ended"
WAR_ARCHIVED = "war_archived"

# Pressure events
PRESSURE_RECORDED = "pressure_recorded"

# Ledger events
CONTROL_CHANGED = "control_changed"
DEFENSE_ADJUSTED = "defense_adjusted"

# Participant events
PARTICIPANT_JOINED = "participant_joined"
ACTION_RESOLVED = "action_resolved"

# Income events
INCOME_ACCRUED = "income_accrued"


# ===== Event Factory Functions =====

def war_declared(
    war_id: str,
    territory_id: str,
    attacking_family_id: str,
    defending_family_id: str,
    phase: str,
) -> WarEvent:
    return WarEvent(WAR_DECLARED, {
        "war_id": war_id,
        "territory_id": territory_id,
        "attacking_family_id": attacking_family_id,
        "defending_family_id": defending_family_id,
        "phase": phase,
    })


def phase_changed(war_id: str, old_phase: str | None, new_phase: str | None, reason: str) -> WarEvent:
    return WarEvent(PHASE_CHANGED, {
        "war_id": war_id,
        "old_phase": old_phase,
        "new_phase": new_phase,
        "reason": reason,
    })


def war_ended(war_id: str, outcome: str, winner_family_id: str | None, control_bar_position: int) -> WarEvent:
    return WarEvent(WAR_ENDED, {
        "war_id": war_id,
        "outcome": outcome,
        "winner_family_id": winner_family_id,
        "control_bar_position": control_bar_position,
    })


def war_archived(war_id: str, territory_id: str, outcome: str) -> WarEvent:
    return WarEvent(WAR_ARCHIVED, {
        "war_id": war_id,
        "territory_id": territory_id,
        "outcome": outcome,
    })


def pressure_recorded(
    war_id: str,
    sequence: int,
    side: str,
    delta: int,
    attacking_pressure: int,
    defending_pressure: int,
    control_bar_position: int,
) -> WarEvent:
    return WarEvent(PRESSURE_RECORDED, {
        "war_id": war_id,
        "sequence": sequence,
        "side": side,
        "delta": delta,
        "attacking_pressure": attacking_pressure,
        "defending_pressure": defending_pressure,
        "control_bar_position": control_bar_position,
    })


def control_changed(
    territory_id: str,
    old_family_id: str | None,
    new_family_id: str | None,
    control_percentage: float,
) -> WarEvent:
    return WarEvent(CONTROL_CHANGED, {
        "territory_id": territory_id,
        "old_family_id": old_family_id,
        "new_family_id": new_family_id,
        "control_percentage": control_percentage,
    })


def defense_adjusted(
    territory_id: str,
    defense_points: int,
    guard_count: int,
    fortification_level: int,
) -> WarEvent:
    return WarEvent(DEFENSE_ADJUSTED, {
        "territory_id": territory_id,
        "defense_points": defense_points,
        "guard_count": guard_count,
        "fortification_level": fortification_level,
    })


def participant_joined(war_id: str, player_id: str, family_id: str, side: str) -> WarEvent:
    return WarEvent(PARTICIPANT_JOINED, {
        "war_id": war_id,
        "player_id": player_id,
        "family_id": family_id,
        "side": side,
    })


def action_resolved(
    war_id: str,
    player_id: str,
    action_type: str,
    success: bool,
    delta: int,
    detail: dict[str, Any] | None = None,
) -> WarEvent:
    return WarEvent(ACTION_RESOLVED, {
        "war_id": war_id,
        "player_id": player_id,
        "action_type": action_type,
        "success": success,
        "delta": delta,
        "detail": detail or {},
    })


def income_accrued(territory_id: str, family_id: str, net_income: float, hours: float) -> WarEvent:
    return WarEvent(INCOME_ACCRUED, {
        "territory_id": territory_id,
        "family_id": family_id,
        "net_income": net_income,
        "hours": hours,
    })
