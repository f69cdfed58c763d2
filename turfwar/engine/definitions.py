"""
Static definitions for territories and sabotage missions.
Territories are created once at world-seed time and never mutated afterwards.
Mission reference data lives in data/missions.json; a territory map can be
generated from a seed or loaded from a territories.json file.
"""

import json
import random
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from turfwar.engine import (
    GRID_HEIGHT,
    GRID_WIDTH,
    MAX_CONTROL_DIFFICULTY,
    MIN_CONTROL_DIFFICULTY,
)
from turfwar.engine.collaborators import FamilyRank
from turfwar.engine.errors import NotFound

DATA_DIR = Path(__file__).parent.parent / "data"
MISSIONS_PATH = DATA_DIR / "missions.json"


class TerritoryType(str, Enum):
    DOWNTOWN = "downtown"
    DOCKS = "docks"
    WAREHOUSE = "warehouse"
    CASINO = "casino"
    NEIGHBORHOOD = "neighborhood"
    INDUSTRIAL = "industrial"
    SMUGGLING = "smuggling"
    POLITICAL = "political"


class ResourceType(str, Enum):
    CASH = "cash"
    CONTRABAND = "contraband"
    WEAPONS = "weapons"
    INFLUENCE = "influence"
    INFORMATION = "information"


@dataclass(frozen=True)
class TerritoryTypeConfig:
    display_name: str
    description: str
    base_income_range: tuple[int, int]
    difficulty_range: tuple[int, int]
    common_resources: tuple[ResourceType, ...]


TERRITORY_TYPE_CONFIG: dict[TerritoryType, TerritoryTypeConfig] = {
    TerritoryType.DOWNTOWN: TerritoryTypeConfig(
        "Downtown Core", "High-value commercial districts with maximum visibility",
        (200, 400), (7, 10), (ResourceType.CASH, ResourceType.INFLUENCE),
    ),
    TerritoryType.DOCKS: TerritoryTypeConfig(
        "Harbor District", "Import/export hub with smuggling opportunities",
        (150, 300), (5, 8), (ResourceType.CONTRABAND, ResourceType.CASH),
    ),
    TerritoryType.WAREHOUSE: TerritoryTypeConfig(
        "Industrial Storage", "Storage facilities and logistics centers",
        (100, 200), (3, 6), (ResourceType.CONTRABAND, ResourceType.WEAPONS),
    ),
    TerritoryType.CASINO: TerritoryTypeConfig(
        "Entertainment District", "Gambling and entertainment venues",
        (175, 350), (4, 7), (ResourceType.CASH, ResourceType.INFORMATION),
    ),
    TerritoryType.NEIGHBORHOOD: TerritoryTypeConfig(
        "Residential Area", "Stable communities with consistent tribute",
        (75, 150), (2, 5), (ResourceType.CASH, ResourceType.INFORMATION),
    ),
    TerritoryType.INDUSTRIAL: TerritoryTypeConfig(
        "Manufacturing Zone", "Factories and production facilities",
        (125, 250), (4, 7), (ResourceType.WEAPONS, ResourceType.CONTRABAND),
    ),
    TerritoryType.SMUGGLING: TerritoryTypeConfig(
        "Black Market Hub", "High-risk, high-reward illegal operations",
        (250, 500), (8, 10), (ResourceType.CONTRABAND, ResourceType.WEAPONS, ResourceType.CASH),
    ),
    TerritoryType.POLITICAL: TerritoryTypeConfig(
        "Government District", "Centers of political power and corruption",
        (300, 600), (9, 10), (ResourceType.INFLUENCE, ResourceType.INFORMATION),
    ),
}


@dataclass(frozen=True)
class TerritoryDefinition:
    """Defines immutable properties of a territory."""
    id: str
    display_name: str
    territory_type: TerritoryType
    x: int  # grid column, 0-based
    y: int  # grid row, 0-based
    base_income_per_hour: int
    maintenance_cost_per_hour: int
    control_difficulty: int  # 1-10
    resource_types: tuple[ResourceType, ...] = ()
    adjacent: tuple[str, ...] = ()
    is_strategic: bool = False
    is_contestable: bool = True
    # Defense below this marks the territory as vulnerable
    min_defense_points: int = 0
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["territory_type"] = self.territory_type.value
        out["resource_types"] = [r.value for r in self.resource_types]
        out["adjacent"] = list(self.adjacent)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TerritoryDefinition":
        return cls(
            id=data["id"],
            display_name=data.get("display_name", data["id"]),
            territory_type=TerritoryType(data["territory_type"]),
            x=int(data["x"]),
            y=int(data["y"]),
            base_income_per_hour=int(data["base_income_per_hour"]),
            maintenance_cost_per_hour=int(data.get("maintenance_cost_per_hour", 0)),
            control_difficulty=int(data.get("control_difficulty", MIN_CONTROL_DIFFICULTY)),
            resource_types=tuple(ResourceType(r) for r in data.get("resource_types", [])),
            adjacent=tuple(data.get("adjacent", [])),
            is_strategic=bool(data.get("is_strategic", False)),
            is_contestable=bool(data.get("is_contestable", True)),
            min_defense_points=int(data.get("min_defense_points", 0)),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class SabotageMissionDefinition:
    """Reference data for a sabotage mission. Instantiated per war when sabotage starts."""
    id: str
    display_name: str
    energy_cost: int
    required_rank: FamilyRank
    success_rate: float  # 0-100
    risk_level: int  # 1-5
    sabotage_points: int
    pressure_impact: int
    requires_intel: bool = False
    min_intel_quality: int = 0
    required_items: tuple[str, ...] = ()
    cooldown_hours: float = 0.0
    max_completions: int = -1  # -1 = unlimited
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["required_rank"] = self.required_rank.value
        out["required_items"] = list(self.required_items)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SabotageMissionDefinition":
        return cls(
            id=data["id"],
            display_name=data.get("display_name", data["id"]),
            energy_cost=int(data.get("energy_cost", 0)),
            required_rank=FamilyRank(data.get("required_rank", FamilyRank.ASSOCIATE.value)),
            success_rate=float(data.get("success_rate", 100)),
            risk_level=int(data.get("risk_level", 1)),
            sabotage_points=int(data.get("sabotage_points", 0)),
            pressure_impact=int(data.get("pressure_impact", 0)),
            requires_intel=bool(data.get("requires_intel", False)),
            min_intel_quality=int(data.get("min_intel_quality", 0)),
            required_items=tuple(data.get("required_items", [])),
            cooldown_hours=float(data.get("cooldown_hours", 0)),
            max_completions=int(data.get("max_completions", -1)),
            description=data.get("description", ""),
        )


@dataclass
class TerritoryRegistry:
    """
    Read-only catalog of territories and mission reference data.
    Validates the grid on construction: every cell holds at most one territory,
    coordinates are on the grid, and adjacency only names known territories.
    """
    territories: dict[str, TerritoryDefinition]
    missions: dict[str, SabotageMissionDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cells: dict[tuple[int, int], str] = {}
        for tid, tdef in self.territories.items():
            if tid != tdef.id:
                raise ValueError(f"Territory key {tid} does not match id {tdef.id}")
            if not (0 <= tdef.x < GRID_WIDTH and 0 <= tdef.y < GRID_HEIGHT):
                raise ValueError(f"Territory {tid} is off the grid at ({tdef.x}, {tdef.y})")
            if not (MIN_CONTROL_DIFFICULTY <= tdef.control_difficulty <= MAX_CONTROL_DIFFICULTY):
                raise ValueError(f"Territory {tid} has control difficulty {tdef.control_difficulty}")
            cell = (tdef.x, tdef.y)
            if cell in cells:
                raise ValueError(f"Cell {cell} holds both {cells[cell]} and {tid}")
            cells[cell] = tid
            for adj in tdef.adjacent:
                if adj not in self.territories:
                    raise ValueError(f"Territory {tid} lists unknown neighbour {adj}")
        self._cells = cells

    def get(self, territory_id: str) -> TerritoryDefinition:
        tdef = self.territories.get(territory_id)
        if tdef is None:
            raise NotFound(f"Unknown territory: {territory_id}")
        return tdef

    def all(self) -> list[TerritoryDefinition]:
        """All territories in grid order (row by row)."""
        return sorted(self.territories.values(), key=lambda t: (t.y, t.x))

    def at_cell(self, x: int, y: int) -> TerritoryDefinition | None:
        tid = self._cells.get((x, y))
        return self.territories[tid] if tid else None

    def adjacent(self, territory_id: str) -> list[TerritoryDefinition]:
        return [self.territories[adj] for adj in self.get(territory_id).adjacent]

    def by_type(self, territory_type: TerritoryType | str) -> list[TerritoryDefinition]:
        territory_type = TerritoryType(territory_type)
        return [t for t in self.all() if t.territory_type == territory_type]

    def strategic(self) -> list[TerritoryDefinition]:
        return [t for t in self.all() if t.is_strategic]

    def get_mission(self, mission_id: str) -> SabotageMissionDefinition:
        mdef = self.missions.get(mission_id)
        if mdef is None:
            raise NotFound(f"Unknown sabotage mission: {mission_id}")
        return mdef

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "territories": {tid: t.to_dict() for tid, t in self.territories.items()},
            "missions": {mid: m.to_dict() for mid, m in self.missions.items()},
        }

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> "TerritoryRegistry":
        """
        Build a registry from a snapshot (e.g. stored in world config).
        Used so a world always uses the definitions it was created with.
        """
        territories_data = snapshot.get("territories") or {}
        missions_data = snapshot.get("missions") or {}
        return cls(
            territories={tid: TerritoryDefinition.from_dict(d) for tid, d in territories_data.items()},
            missions={mid: SabotageMissionDefinition.from_dict(d) for mid, d in missions_data.items()},
        )


# ===== City map generation =====

_POLITICAL_CELLS = {(3, 3), (4, 3), (3, 4), (4, 4)}
_SMUGGLING_CELLS = {(0, 7), (7, 7), (7, 0)}


def _district_for_cell(x: int, y: int) -> TerritoryType:
    """Fixed district layout: government at the centre, downtown around it, docks on the south shore."""
    if (x, y) in _POLITICAL_CELLS:
        return TerritoryType.POLITICAL
    if (x, y) in _SMUGGLING_CELLS:
        return TerritoryType.SMUGGLING
    if 2 <= x <= 5 and 2 <= y <= 5:
        return TerritoryType.DOWNTOWN
    if y == 7:
        return TerritoryType.DOCKS
    if x >= 6 and y <= 2:
        return TerritoryType.CASINO
    if x <= 1 and y <= 3:
        return TerritoryType.INDUSTRIAL
    if x <= 1 and y >= 4:
        return TerritoryType.WAREHOUSE
    return TerritoryType.NEIGHBORHOOD


def _territory_id(territory_type: TerritoryType, x: int, y: int) -> str:
    return f"{territory_type.value}_{x}{y}"


def generate_city_map(seed: int) -> dict[str, TerritoryDefinition]:
    """
    Generate the 8x8 city grid deterministically from a seed.
    Income and difficulty are drawn from each type's configured ranges;
    maintenance is a quarter of base income; adjacency is the 4-neighbourhood.
    """
    rng = random.Random(seed)
    ids = {
        (x, y): _territory_id(_district_for_cell(x, y), x, y)
        for y in range(GRID_HEIGHT)
        for x in range(GRID_WIDTH)
    }
    counters: dict[TerritoryType, int] = {}
    territories: dict[str, TerritoryDefinition] = {}
    for y in range(GRID_HEIGHT):
        for x in range(GRID_WIDTH):
            ttype = _district_for_cell(x, y)
            config = TERRITORY_TYPE_CONFIG[ttype]
            counters[ttype] = counters.get(ttype, 0) + 1
            lo, hi = config.base_income_range
            base_income = int(round(rng.randint(lo, hi) / 5.0)) * 5
            difficulty = rng.randint(*config.difficulty_range)
            neighbours = [
                ids[(nx, ny)]
                for nx, ny in ((x, y - 1), (x + 1, y), (x, y + 1), (x - 1, y))
                if 0 <= nx < GRID_WIDTH and 0 <= ny < GRID_HEIGHT
            ]
            is_strategic = ttype in (TerritoryType.POLITICAL, TerritoryType.SMUGGLING) or (
                ttype == TerritoryType.DOWNTOWN and difficulty >= 9
            )
            tid = ids[(x, y)]
            territories[tid] = TerritoryDefinition(
                id=tid,
                display_name=f"{config.display_name} {counters[ttype]}",
                territory_type=ttype,
                x=x,
                y=y,
                base_income_per_hour=base_income,
                maintenance_cost_per_hour=int(round(base_income * 0.25)),
                control_difficulty=difficulty,
                resource_types=config.common_resources,
                adjacent=tuple(neighbours),
                is_strategic=is_strategic,
                min_defense_points=difficulty * 10,
                description=config.description,
            )
    return territories


# ===== Loaders =====

def load_territory_definitions(path: Path | str) -> dict[str, TerritoryDefinition]:
    """Load territories from a JSON file shaped {territory_id: {...fields...}}."""
    with open(path, "r") as f:
        data = json.load(f)
    return {tid: TerritoryDefinition.from_dict(d) for tid, d in data.items()}


def load_mission_definitions(path: Path | str | None = None) -> dict[str, SabotageMissionDefinition]:
    """Load the sabotage mission catalog; defaults to data/missions.json."""
    path = Path(path) if path is not None else MISSIONS_PATH
    with open(path, "r") as f:
        data = json.load(f)
    return {mid: SabotageMissionDefinition.from_dict(d) for mid, d in data.items()}


def build_registry(
    seed: int | None = None,
    territories_path: Path | str | None = None,
    missions_path: Path | str | None = None,
) -> TerritoryRegistry:
    """
    Build a registry from a territories file, or generate the city map from a seed.

    Args:
        seed: Map seed used when no territories_path is given.
        territories_path: Optional territories.json.
        missions_path: Optional missions.json (default catalog otherwise).
    """
    if territories_path is not None:
        territories = load_territory_definitions(territories_path)
    elif seed is not None:
        territories = generate_city_map(seed)
    else:
        raise ValueError("Either seed or territories_path must be provided")
    return TerritoryRegistry(territories=territories, missions=load_mission_definitions(missions_path))
