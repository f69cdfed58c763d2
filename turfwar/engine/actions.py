"""
Action definitions for player war actions.
Actions are immutable instructions; the aggregator resolves them against a war.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(str, Enum):
    SCOUT = "scout"
    SABOTAGE = "sabotage"
    SHOWDOWN = "showdown"
    SUPPLY = "supply"
    GUARD_DUTY = "guard_duty"
    CONSOLIDATE = "consolidate"


class ConsolidationTask(str, Enum):
    FORTIFY = "fortify"  # stage defense points for the winner
    POST_GUARD = "post_guard"  # stage one guard for the winner


@dataclass(frozen=True)
class Action:
    """
    Base action class. The target is a war id, or a territory id whose active
    war is used. action_id, when given, makes resubmission a no-op.
    """
    type: ActionType
    player_id: str
    war_id: str | None = None
    territory_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    action_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "player_id": self.player_id,
            "war_id": self.war_id,
            "territory_id": self.territory_id,
            "payload": dict(self.payload),
            "action_id": self.action_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        return cls(
            type=ActionType(data["type"]),
            player_id=str(data["player_id"]),
            war_id=data.get("war_id"),
            territory_id=data.get("territory_id"),
            payload=dict(data.get("payload") or {}),
            action_id=data.get("action_id"),
        )


def scout(player_id: str, war_id: str | None = None, territory_id: str | None = None, action_id: str | None = None) -> Action:
    """
    Scouting run. Attackers raise the war's intel quality; defenders counter-scout
    and lower it.
    """
    return Action(ActionType.SCOUT, player_id, war_id, territory_id, {}, action_id)


def run_sabotage_mission(
    player_id: str,
    mission_id: str,
    war_id: str | None = None,
    territory_id: str | None = None,
    action_id: str | None = None,
) -> Action:
    """
    Run a catalog sabotage mission.
    Example: run_sabotage_mission("p1", "cut_supply_lines", war_id="war_ab12")
    """
    return Action(
        ActionType.SABOTAGE, player_id, war_id, territory_id,
        {"mission_id": mission_id}, action_id,
    )


def showdown_assault(player_id: str, war_id: str | None = None, territory_id: str | None = None, action_id: str | None = None) -> Action:
    return Action(ActionType.SHOWDOWN, player_id, war_id, territory_id, {}, action_id)


def deliver_supplies(
    player_id: str,
    supplies: int,
    war_id: str | None = None,
    territory_id: str | None = None,
    action_id: str | None = None,
) -> Action:
    return Action(
        ActionType.SUPPLY, player_id, war_id, territory_id,
        {"supplies": supplies}, action_id,
    )


def guard_duty(
    player_id: str,
    hours: float,
    war_id: str | None = None,
    territory_id: str | None = None,
    action_id: str | None = None,
) -> Action:
    return Action(
        ActionType.GUARD_DUTY, player_id, war_id, territory_id,
        {"hours": hours}, action_id,
    )


def consolidate(
    player_id: str,
    task: ConsolidationTask | str = ConsolidationTask.FORTIFY,
    war_id: str | None = None,
    territory_id: str | None = None,
    action_id: str | None = None,
) -> Action:
    """Consolidation task by a member of the winning family."""
    return Action(
        ActionType.CONSOLIDATE, player_id, war_id, territory_id,
        {"task": ConsolidationTask(task).value}, action_id,
    )
