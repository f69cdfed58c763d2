"""
World state representation: control records, wars, participants and the
append-only pressure event log.
Engine operations mutate a WorldState in place while the caller holds the lock
for the territory involved (see turfwar.service). Includes JSON serialization
for save/load.
"""

import json
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class WarPhase(str, Enum):
    SCOUTING = "scouting"
    SABOTAGE = "sabotage"
    SHOWDOWN = "showdown"
    CONSOLIDATION = "consolidation"

    def next(self) -> "WarPhase | None":
        idx = PHASE_ORDER.index(self)
        return PHASE_ORDER[idx + 1] if idx + 1 < len(PHASE_ORDER) else None


PHASE_ORDER = [
    WarPhase.SCOUTING,
    WarPhase.SABOTAGE,
    WarPhase.SHOWDOWN,
    WarPhase.CONSOLIDATION,
]


class WarOutcome(str, Enum):
    ATTACKER_VICTORY = "attacker_victory"
    DEFENDER_VICTORY = "defender_victory"
    STALEMATE = "stalemate"
    CANCELLED = "cancelled"


class Side(str, Enum):
    ATTACKER = "attacker"
    DEFENDER = "defender"


class PressureEventType(str, Enum):
    SCOUTING_REPORT = "scouting_report"
    COUNTER_INTEL = "counter_intel"
    MISSION_SUCCESS = "mission_success"
    MISSION_FAILURE = "mission_failure"
    ASSAULT = "assault"
    SUPPLY_DELIVERY = "supply_delivery"
    GUARD_DUTY = "guard_duty"
    CONSOLIDATION_TASK = "consolidation_task"
    # Systemic: defender's standing defenses entering the showdown
    GARRISON = "garrison"


class ControlStatus(str, Enum):
    STABLE = "stable"
    CONTESTED = "contested"
    VULNERABLE = "vulnerable"
    CONSOLIDATING = "consolidating"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: Any) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _int(v: Any, default: int) -> int:
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _float(v: Any, default: float) -> float:
    try:
        return float(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _enum(enum_cls, v: Any, default=None):
    try:
        return enum_cls(v) if v is not None else default
    except ValueError:
        return default


@dataclass
class ControlRecord:
    """Which family holds a territory, how firmly, and with what defenses."""
    territory_id: str
    family_id: str | None
    control_percentage: float = 0.0  # 0-100; 0 means unclaimed
    defense_points: int = 0
    guard_count: int = 0
    fortification_level: int = 0  # 0-5
    income_modifier: float = 1.0
    total_income_generated: float = 0.0
    controlled_since: datetime | None = None
    last_income_at: datetime | None = None
    last_contested_at: datetime | None = None
    times_contested: int = 0
    active_war_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "territory_id": self.territory_id,
            "family_id": self.family_id,
            "control_percentage": self.control_percentage,
            "defense_points": self.defense_points,
            "guard_count": self.guard_count,
            "fortification_level": self.fortification_level,
            "income_modifier": self.income_modifier,
            "total_income_generated": self.total_income_generated,
            "controlled_since": _iso(self.controlled_since),
            "last_income_at": _iso(self.last_income_at),
            "last_contested_at": _iso(self.last_contested_at),
            "times_contested": self.times_contested,
            "active_war_id": self.active_war_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ControlRecord":
        if not isinstance(data, dict):
            data = {}
        return cls(
            territory_id=str(data.get("territory_id") or ""),
            family_id=data.get("family_id") or None,
            control_percentage=_float(data.get("control_percentage"), 0.0),
            defense_points=_int(data.get("defense_points"), 0),
            guard_count=_int(data.get("guard_count"), 0),
            fortification_level=_int(data.get("fortification_level"), 0),
            income_modifier=_float(data.get("income_modifier"), 1.0),
            total_income_generated=_float(data.get("total_income_generated"), 0.0),
            controlled_since=_dt(data.get("controlled_since")),
            last_income_at=_dt(data.get("last_income_at")),
            last_contested_at=_dt(data.get("last_contested_at")),
            times_contested=_int(data.get("times_contested"), 0),
            active_war_id=data.get("active_war_id") or None,
        )


@dataclass(frozen=True)
class PressureEvent:
    """One resolved action in a war. Append-only; the war's totals are a projection of these."""
    war_id: str
    sequence: int  # 1-based position in the war's log
    side: Side
    event_type: PressureEventType
    phase: WarPhase
    delta: int
    created_at: datetime
    player_id: str | None = None  # None for systemic events
    description: str = ""
    sabotage_points: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "war_id": self.war_id,
            "sequence": self.sequence,
            "side": self.side.value,
            "event_type": self.event_type.value,
            "phase": self.phase.value,
            "delta": self.delta,
            "created_at": _iso(self.created_at),
            "player_id": self.player_id,
            "description": self.description,
            "sabotage_points": self.sabotage_points,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PressureEvent":
        return cls(
            war_id=str(data.get("war_id") or ""),
            sequence=_int(data.get("sequence"), 0),
            side=Side(data["side"]),
            event_type=PressureEventType(data["event_type"]),
            phase=WarPhase(data["phase"]),
            delta=_int(data.get("delta"), 0),
            created_at=_dt(data.get("created_at")) or utcnow(),
            player_id=data.get("player_id"),
            description=str(data.get("description") or ""),
            sabotage_points=_int(data.get("sabotage_points"), 0),
        )


@dataclass(frozen=True)
class PhaseTransition:
    """Entry in a war's transition log. to_phase None means the war was archived."""
    from_phase: WarPhase | None
    to_phase: WarPhase | None
    at: datetime
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_phase": self.from_phase.value if self.from_phase else None,
            "to_phase": self.to_phase.value if self.to_phase else None,
            "at": _iso(self.at),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PhaseTransition":
        return cls(
            from_phase=_enum(WarPhase, data.get("from_phase")),
            to_phase=_enum(WarPhase, data.get("to_phase")),
            at=_dt(data.get("at")) or utcnow(),
            reason=str(data.get("reason") or ""),
        )


@dataclass
class BattleParticipant:
    """A player's accumulated contribution to one war. One per (war, player)."""
    war_id: str
    player_id: str
    family_id: str  # family at time of first action; never changes
    side: Side
    contribution_score: int = 0
    missions_completed: int = 0
    supplies_provided: int = 0
    guard_duty_hours: float = 0.0
    total_actions: int = 0
    joined_at: datetime | None = None
    last_action_at: datetime | None = None
    # action key -> time the cooldown expires
    cooldowns: dict[str, datetime] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "war_id": self.war_id,
            "player_id": self.player_id,
            "family_id": self.family_id,
            "side": self.side.value,
            "contribution_score": self.contribution_score,
            "missions_completed": self.missions_completed,
            "supplies_provided": self.supplies_provided,
            "guard_duty_hours": self.guard_duty_hours,
            "total_actions": self.total_actions,
            "joined_at": _iso(self.joined_at),
            "last_action_at": _iso(self.last_action_at),
            "cooldowns": {k: _iso(v) for k, v in self.cooldowns.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BattleParticipant":
        cds = data.get("cooldowns") or {}
        if not isinstance(cds, dict):
            cds = {}
        cooldowns = {}
        for key, value in cds.items():
            parsed = _dt(value)
            if parsed is not None:
                cooldowns[str(key)] = parsed
        return cls(
            war_id=str(data.get("war_id") or ""),
            player_id=str(data.get("player_id") or ""),
            family_id=str(data.get("family_id") or ""),
            side=_enum(Side, data.get("side"), Side.ATTACKER),
            contribution_score=_int(data.get("contribution_score"), 0),
            missions_completed=_int(data.get("missions_completed"), 0),
            supplies_provided=_int(data.get("supplies_provided"), 0),
            guard_duty_hours=_float(data.get("guard_duty_hours"), 0.0),
            total_actions=_int(data.get("total_actions"), 0),
            joined_at=_dt(data.get("joined_at")),
            last_action_at=_dt(data.get("last_action_at")),
            cooldowns=cooldowns,
        )


@dataclass
class SabotageMissionState:
    """A catalog mission scoped to one war; tracks completions against the cap."""
    mission_id: str
    current_completions: int = 0
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_id": self.mission_id,
            "current_completions": self.current_completions,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SabotageMissionState":
        return cls(
            mission_id=str(data.get("mission_id") or ""),
            current_completions=_int(data.get("current_completions"), 0),
            is_active=bool(data.get("is_active", True)),
        )


@dataclass
class War:
    """
    A contest between an attacking and defending family over one territory.
    attacking_pressure, defending_pressure, sabotage_points and
    control_bar_position are a cached projection of `events`.
    """
    id: str
    territory_id: str
    attacking_family_id: str
    defending_family_id: str  # UNCLAIMED sentinel when nobody held the territory
    phase: WarPhase
    declared_at: datetime
    phase_started_at: datetime
    phase_duration_hours: float
    victory_threshold: int
    sabotage_threshold: int
    stalemate_timer_hours: float  # showdown bound: hours until an automatic draw
    attacking_pressure: int = 0
    defending_pressure: int = 0
    control_bar_position: int = 0  # -100..+100, positive favours the attacker
    sabotage_points: int = 0
    intel_quality: int = 0  # 0-100, earned in scouting
    abbreviated: bool = False  # unclaimed territory: scouting skipped, shorter phases
    outcome: WarOutcome | None = None
    winner_family_id: str | None = None
    ended_at: datetime | None = None
    archived_at: datetime | None = None
    # Defense raised by consolidation tasks, applied to the winner on transfer
    staged_defense_points: int = 0
    staged_guards: int = 0
    events: list[PressureEvent] = field(default_factory=list)
    transitions: list[PhaseTransition] = field(default_factory=list)
    participants: dict[str, BattleParticipant] = field(default_factory=dict)
    missions: dict[str, SabotageMissionState] = field(default_factory=dict)
    # action_id -> serialized result of the action, for resubmission
    processed_actions: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.archived_at is None

    @property
    def phase_ends_at(self) -> datetime:
        return self.phase_started_at + timedelta(hours=self.phase_duration_hours)

    @property
    def phase_history(self) -> list[WarPhase]:
        return [t.to_phase for t in self.transitions if t.to_phase is not None]

    def side_of(self, family_id: str) -> Side | None:
        if family_id == self.attacking_family_id:
            return Side.ATTACKER
        if family_id == self.defending_family_id:
            return Side.DEFENDER
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "territory_id": self.territory_id,
            "attacking_family_id": self.attacking_family_id,
            "defending_family_id": self.defending_family_id,
            "phase": self.phase.value,
            "declared_at": _iso(self.declared_at),
            "phase_started_at": _iso(self.phase_started_at),
            "phase_duration_hours": self.phase_duration_hours,
            "victory_threshold": self.victory_threshold,
            "sabotage_threshold": self.sabotage_threshold,
            "stalemate_timer_hours": self.stalemate_timer_hours,
            "attacking_pressure": self.attacking_pressure,
            "defending_pressure": self.defending_pressure,
            "control_bar_position": self.control_bar_position,
            "sabotage_points": self.sabotage_points,
            "intel_quality": self.intel_quality,
            "abbreviated": self.abbreviated,
            "outcome": self.outcome.value if self.outcome else None,
            "winner_family_id": self.winner_family_id,
            "ended_at": _iso(self.ended_at),
            "archived_at": _iso(self.archived_at),
            "staged_defense_points": self.staged_defense_points,
            "staged_guards": self.staged_guards,
            "events": [e.to_dict() for e in self.events],
            "transitions": [t.to_dict() for t in self.transitions],
            "participants": {pid: p.to_dict() for pid, p in self.participants.items()},
            "missions": {mid: m.to_dict() for mid, m in self.missions.items()},
            "processed_actions": {k: dict(v) for k, v in self.processed_actions.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "War":
        events = data.get("events") or []
        transitions = data.get("transitions") or []
        participants = data.get("participants") or {}
        missions = data.get("missions") or {}
        processed = data.get("processed_actions") or {}
        declared_at = _dt(data.get("declared_at")) or utcnow()
        return cls(
            id=str(data.get("id") or ""),
            territory_id=str(data.get("territory_id") or ""),
            attacking_family_id=str(data.get("attacking_family_id") or ""),
            defending_family_id=str(data.get("defending_family_id") or ""),
            phase=_enum(WarPhase, data.get("phase"), WarPhase.SCOUTING),
            declared_at=declared_at,
            phase_started_at=_dt(data.get("phase_started_at")) or declared_at,
            phase_duration_hours=_float(data.get("phase_duration_hours"), 0.0),
            victory_threshold=_int(data.get("victory_threshold"), 100),
            sabotage_threshold=_int(data.get("sabotage_threshold"), 0),
            stalemate_timer_hours=_float(data.get("stalemate_timer_hours"), 0.0),
            attacking_pressure=_int(data.get("attacking_pressure"), 0),
            defending_pressure=_int(data.get("defending_pressure"), 0),
            control_bar_position=_int(data.get("control_bar_position"), 0),
            sabotage_points=_int(data.get("sabotage_points"), 0),
            intel_quality=_int(data.get("intel_quality"), 0),
            abbreviated=bool(data.get("abbreviated", False)),
            outcome=_enum(WarOutcome, data.get("outcome")),
            winner_family_id=data.get("winner_family_id"),
            ended_at=_dt(data.get("ended_at")),
            archived_at=_dt(data.get("archived_at")),
            staged_defense_points=_int(data.get("staged_defense_points"), 0),
            staged_guards=_int(data.get("staged_guards"), 0),
            events=[PressureEvent.from_dict(e) for e in events if isinstance(e, dict)],
            transitions=[PhaseTransition.from_dict(t) for t in transitions if isinstance(t, dict)],
            participants={
                str(pid): BattleParticipant.from_dict(p)
                for pid, p in participants.items()
                if isinstance(p, dict)
            },
            missions={
                str(mid): SabotageMissionState.from_dict(m)
                for mid, m in missions.items()
                if isinstance(m, dict)
            },
            processed_actions={
                str(k): dict(v) for k, v in processed.items() if isinstance(v, dict)
            } if isinstance(processed, dict) else {},
        )


@dataclass
class IncomeRecord:
    """One row of the income ledger: what a territory paid its controller over a period."""
    territory_id: str
    family_id: str
    gross_income: float
    adjacency_bonus: float
    fortification_bonus: float
    maintenance_cost: float
    net_income: float
    control_percentage: float
    income_modifier: float
    period_start: datetime
    period_end: datetime

    @property
    def hours(self) -> float:
        return (self.period_end - self.period_start).total_seconds() / 3600.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "territory_id": self.territory_id,
            "family_id": self.family_id,
            "gross_income": self.gross_income,
            "adjacency_bonus": self.adjacency_bonus,
            "fortification_bonus": self.fortification_bonus,
            "maintenance_cost": self.maintenance_cost,
            "net_income": self.net_income,
            "control_percentage": self.control_percentage,
            "income_modifier": self.income_modifier,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IncomeRecord":
        start = _dt(data.get("period_start")) or utcnow()
        return cls(
            territory_id=str(data.get("territory_id") or ""),
            family_id=str(data.get("family_id") or ""),
            gross_income=_float(data.get("gross_income"), 0.0),
            adjacency_bonus=_float(data.get("adjacency_bonus"), 0.0),
            fortification_bonus=_float(data.get("fortification_bonus"), 0.0),
            maintenance_cost=_float(data.get("maintenance_cost"), 0.0),
            net_income=_float(data.get("net_income"), 0.0),
            control_percentage=_float(data.get("control_percentage"), 0.0),
            income_modifier=_float(data.get("income_modifier"), 1.0),
            period_start=start,
            period_end=_dt(data.get("period_end")) or start,
        )


@dataclass
class WorldState:
    """Complete mutable state for one world (one city map)."""
    # territory_id -> ControlRecord; absent = unclaimed
    controls: dict[str, ControlRecord] = field(default_factory=dict)
    # war_id -> War, archived wars included
    wars: dict[str, War] = field(default_factory=dict)
    # territory_id -> war_id of the single active war there
    active_wars: dict[str, str] = field(default_factory=dict)
    # territory_id -> earliest time a new war may be declared
    protected_until: dict[str, datetime] = field(default_factory=dict)
    income_history: list[IncomeRecord] = field(default_factory=list)

    def copy(self) -> "WorldState":
        """Return a deep copy of this world state."""
        return deepcopy(self)

    def active_war_for(self, territory_id: str) -> War | None:
        war_id = self.active_wars.get(territory_id)
        return self.wars.get(war_id) if war_id else None

    # ===== Serialization Methods =====

    def to_dict(self) -> dict[str, Any]:
        return {
            "controls": {tid: c.to_dict() for tid, c in self.controls.items()},
            "wars": {wid: w.to_dict() for wid, w in self.wars.items()},
            "active_wars": dict(self.active_wars),
            "protected_until": {tid: _iso(dt) for tid, dt in self.protected_until.items()},
            "income_history": [r.to_dict() for r in self.income_history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorldState":
        """Create WorldState from a dictionary (tolerates missing keys)."""
        controls = data.get("controls") or {}
        wars = data.get("wars") or {}
        active = data.get("active_wars") or {}
        protected = data.get("protected_until") or {}
        history = data.get("income_history") or []
        protected_until = {}
        for tid, value in protected.items() if isinstance(protected, dict) else []:
            parsed = _dt(value)
            if parsed is not None:
                protected_until[str(tid)] = parsed
        return cls(
            controls={
                tid: ControlRecord.from_dict(c)
                for tid, c in controls.items()
                if isinstance(c, dict)
            },
            wars={wid: War.from_dict(w) for wid, w in wars.items() if isinstance(w, dict)},
            active_wars={str(k): str(v) for k, v in active.items()} if isinstance(active, dict) else {},
            protected_until=protected_until,
            income_history=[IncomeRecord.from_dict(r) for r in history if isinstance(r, dict)],
        )

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> "WorldState":
        return cls.from_dict(json.loads(json_str))

    def save(self, filepath: str) -> None:
        with open(filepath, "w") as f:
            f.write(self.to_json())

    @classmethod
    def load(cls, filepath: str) -> "WorldState":
        with open(filepath, "r") as f:
            return cls.from_json(f.read())
