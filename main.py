"""
Main entry point for the turf war engine.
Demonstrates a full war over one territory with a simulated clock.
"""

import logging
from datetime import datetime, timedelta, timezone

from turfwar.engine.actions import (
    consolidate,
    deliver_supplies,
    guard_duty,
    run_sabotage_mission,
    scout,
    showdown_assault,
)
from turfwar.engine.collaborators import (
    Capability,
    FamilyRank,
    InMemoryMembershipDirectory,
    InMemoryResourceLedger,
    Membership,
)
from turfwar.engine.definitions import build_registry
from turfwar.engine.errors import TerritoryWarError
from turfwar.engine.income import calculate_family_report
from turfwar.engine.utils import initialize_world_state, make_rng, print_world_state
from turfwar.service import TerritoryWarService

ALL_CAPABILITIES = frozenset(Capability)


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    print("Turf War Engine")
    print("=" * 60)

    start = datetime(1931, 5, 1, 20, 0, tzinfo=timezone.utc)
    registry = build_registry(seed=1931)
    target = registry.by_type("docks")[0]
    neighbour = registry.get(target.adjacent[0])

    state = initialize_world_state(registry, start, {
        target.id: {"family_id": "corleone", "control_percentage": 100, "defense_points": 40, "guard_count": 2},
        neighbour.id: {"family_id": "corleone", "control_percentage": 80},
    })

    directory = InMemoryMembershipDirectory([
        Membership("vito", "corleone", FamilyRank.BOSS, ALL_CAPABILITIES),
        Membership("sonny", "corleone", FamilyRank.UNDERBOSS, ALL_CAPABILITIES),
        Membership("philip", "tattaglia", FamilyRank.BOSS, ALL_CAPABILITIES),
        Membership("bruno", "tattaglia", FamilyRank.CAPOREGIME),
        Membership("rico", "tattaglia", FamilyRank.SOLDIER),
    ])
    resources = InMemoryResourceLedger()
    for player in ("vito", "sonny", "philip", "bruno", "rico"):
        resources.set_wallet(player, energy=500, cash=5000, items={"gasoline": 2})

    service = TerritoryWarService(
        registry, state=state, directory=directory, resources=resources,
        rng=make_rng(7), clock=lambda: start,
    )

    print("\n[INITIAL STATE]")
    print_world_state(service.state, registry)
    report = calculate_family_report(service.state, registry, "corleone")
    print(f"Corleone hourly net income: {report.total_net_income:.2f}")

    def attempt(action, now):
        try:
            result, _ = service.submit_action(action, now)
            outcome = "ok" if result.success else "failed"
            print(f"  {action.player_id:>6} {action.type.value:<11} {outcome:<6} delta {result.delta:+d}")
        except TerritoryWarError as e:
            print(f"  {action.player_id:>6} {action.type.value:<11} rejected: {e.code}")

    # ===== Declaration and scouting =====
    print(f"\n[WAR] Tattaglia declares war on {target.display_name}")
    war, _ = service.declare_war("philip", target.id, start)
    now = start
    for player in ("bruno", "rico", "philip"):
        attempt(scout(player, war_id=war.id), now)
    attempt(scout("sonny", war_id=war.id), now)

    # ===== Sabotage =====
    now = war.phase_ends_at
    service.tick(now)
    print(f"\n[SABOTAGE] intel quality {war.intel_quality}, threshold {war.sabotage_threshold} points")
    for hour in range(4):
        t = now + timedelta(hours=hour)
        attempt(run_sabotage_mission("rico", "cut_supply_lines", war_id=war.id), t)
        attempt(run_sabotage_mission("bruno", "bribe_officials", war_id=war.id), t)
        attempt(run_sabotage_mission("sonny", "disrupt_communications", war_id=war.id), t)
        if war.phase.value != "sabotage":
            break

    # ===== Showdown =====
    if war.phase.value == "sabotage":
        service.tick(war.phase_ends_at)
    now = war.phase_started_at
    print(f"\n[SHOWDOWN] pressure {war.attacking_pressure}-{war.defending_pressure}, "
          f"victory threshold {war.victory_threshold}")
    for round_no in range(12):
        if war.phase.value != "showdown":
            break
        t = now + timedelta(minutes=20 * round_no)
        for player in ("philip", "bruno", "rico"):
            attempt(showdown_assault(player, war_id=war.id), t)
        attempt(showdown_assault("sonny", war_id=war.id), t)
        if round_no == 0:
            attempt(deliver_supplies("vito", 3, war_id=war.id), t)
            attempt(guard_duty("rico", 2, war_id=war.id), t)

    # ===== Consolidation =====
    if war.phase.value == "showdown":
        service.tick(war.phase_ends_at)
    print(f"\n[RESULT] {war.outcome.value if war.outcome else 'undecided'}, "
          f"control bar {war.control_bar_position:+d}")
    if war.is_active and war.winner_family_id:
        winners = ("philip", "bruno") if war.winner_family_id == "tattaglia" else ("vito", "sonny")
        for player in winners:
            attempt(consolidate(player, war_id=war.id), war.phase_started_at)
        service.tick(war.phase_ends_at)

    print("\n[FINAL STATE]")
    print_world_state(service.state, registry)
    record = service.state.controls.get(target.id)
    if record is not None and record.family_id:
        print(f"{target.display_name}: {record.family_id} at {record.control_percentage:.0f}%, "
              f"defense {record.defense_points}, guards {record.guard_count}, "
              f"fortification {record.fortification_level}")
    print(f"Phase history: {[p.value for p in war.phase_history]}")
    print(f"Events recorded: {len(war.events)}")
    for family in ("corleone", "tattaglia"):
        report = service.family_report(family)
        print(f"{family}: {report.total_territories} territories, net {report.total_net_income:.2f}/hr")


if __name__ == "__main__":
    main()
