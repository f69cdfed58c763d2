"""
Utility functions for the turf war engine.
"""

import random
from datetime import datetime

from turfwar.config import GameRules, settings
from turfwar.engine.definitions import TerritoryRegistry
from turfwar.engine.ledger import adjust_defense, set_control
from turfwar.engine.state import WorldState


def make_rng(seed: int | None = None) -> random.Random:
    """Seeded RNG for action rolls; None gives a nondeterministic one."""
    return random.Random(seed)


def initialize_world_state(
    registry: TerritoryRegistry,
    now: datetime,
    starting_owners: dict[str, dict] | None = None,
    rules: GameRules | None = None,
) -> WorldState:
    """
    Create a world state, optionally with territories already held.

    Args:
        registry: Territory registry the world uses
        now: Time control begins for starting owners
        starting_owners: territory_id -> {"family_id", "control_percentage",
            "defense_points", "guard_count", "fortification_level"}; only
            family_id is required
    """
    rules = rules or settings.rules
    state = WorldState()
    for territory_id, setup in (starting_owners or {}).items():
        registry.get(territory_id)
        set_control(
            state, registry, territory_id, setup["family_id"],
            float(setup.get("control_percentage", 100.0)),
            defense_seed=int(setup.get("defense_points", 0)),
            now=now,
            fortification_level=int(setup.get("fortification_level", 0)),
        )
        guards = int(setup.get("guard_count", 0))
        if guards:
            adjust_defense(state, registry, territory_id, guard_delta=guards)
    return state


def print_world_state(state: WorldState, registry: TerritoryRegistry) -> None:
    """
    Pretty-print the city grid and active wars.
    Each cell shows the first letters of its owner, '..' when unclaimed and
    '!' after the owner when a war is being fought there.
    """
    width = max(t.x for t in registry.all()) + 1
    height = max(t.y for t in registry.all()) + 1
    print(f"\n{'='*60}")
    print(f"Territories: {len(registry.territories)} | Active wars: {len(state.active_wars)}")
    print(f"{'='*60}")
    for y in range(height):
        cells = []
        for x in range(width):
            tdef = registry.at_cell(x, y)
            if tdef is None:
                cells.append("    ")
                continue
            record = state.controls.get(tdef.id)
            owner = record.family_id[:2] if record is not None and record.family_id else ".."
            flag = "!" if tdef.id in state.active_wars else " "
            cells.append(f"{owner:>2}{flag} ")
        print("".join(cells))

    for territory_id, war_id in sorted(state.active_wars.items()):
        war = state.wars[war_id]
        print(
            f"\n{registry.get(territory_id).display_name}: {war.attacking_family_id} vs "
            f"{war.defending_family_id} | {war.phase.value} | "
            f"pressure {war.attacking_pressure}-{war.defending_pressure} | bar {war.control_bar_position:+d}"
        )
    print()
