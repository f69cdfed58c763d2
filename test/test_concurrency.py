"""
Concurrency tests for TerritoryWarService: many writers against one war.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

from turfwar.engine.actions import scout
from turfwar.engine.collaborators import FamilyRank, Membership
from turfwar.engine.errors import AlreadyContested, InvalidTransition
from turfwar.engine.state import PressureEventType, Side, WarPhase
from turfwar.engine.war import replay_pressure

from conftest import ALL_CAPS, T0, hours


def _run(workers, fn, jobs):
    barrier = threading.Barrier(workers)

    def wrapped(job):
        barrier.wait()
        return fn(job)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(wrapped, jobs))


class TestConcurrentWrites:
    def test_concurrent_pressure_events_are_all_applied(self, service):
        war, _ = service.declare_war("don_b", "docks_a", T0)

        def record(i):
            for _ in range(50):
                side = Side.ATTACKER if i % 2 else Side.DEFENDER
                service.record_pressure_event(
                    war.id, side, PressureEventType.SCOUTING_REPORT, WarPhase.SCOUTING, 1, T0,
                )

        _run(8, record, range(8))
        assert len(war.events) == 400
        assert sorted(e.sequence for e in war.events) == list(range(1, 401))
        assert (war.attacking_pressure, war.defending_pressure) == (200, 200)
        assert replay_pressure(war.events)[:3] == (200, 200, 0)

    def test_only_one_declaration_wins(self, service, directory):
        families = [f"family_{i}" for i in range(10)]
        for family in families:
            directory.add(Membership(f"boss_{family}", family, FamilyRank.BOSS, ALL_CAPS))

        def declare(family):
            try:
                service.declare_war(f"boss_{family}", "casino_c", T0)
                return "ok"
            except AlreadyContested:
                return "contested"

        results = _run(10, declare, families)
        assert results.count("ok") == 1
        assert results.count("contested") == 9
        assert len(service.state.active_wars) == 1
        assert len(service.state.wars) == 1

    def test_events_race_the_phase_boundary(self, service):
        war, _ = service.declare_war("don_b", "docks_a", T0)
        service.advance_war(war.id, war.phase_ends_at)
        boundary = war.phase_ends_at
        outcomes = []
        lock = threading.Lock()

        def writer(i):
            if i == 0:
                service.tick(boundary)
                return
            for _ in range(25):
                try:
                    service.record_pressure_event(
                        war.id, Side.ATTACKER, PressureEventType.MISSION_SUCCESS,
                        WarPhase.SABOTAGE, 1, boundary - hours(0.01),
                    )
                    result = "applied"
                except InvalidTransition:
                    result = "rejected"
                with lock:
                    outcomes.append(result)

        _run(5, writer, range(5))
        assert war.phase == WarPhase.SHOWDOWN
        phases = [e.phase for e in sorted(war.events, key=lambda e: e.sequence)]
        # every sabotage event precedes every showdown event
        assert phases == sorted(phases, key=lambda p: p != WarPhase.SABOTAGE)
        assert phases.count(WarPhase.SABOTAGE) == outcomes.count("applied")
        assert len(outcomes) == 100

    def test_concurrent_actions_from_many_players(self, service, directory, resources):
        players = [f"scout_{i}" for i in range(20)]
        for player in players:
            directory.add(Membership(player, "barzini", FamilyRank.ASSOCIATE))
            resources.set_wallet(player, energy=10)
        war, _ = service.declare_war("don_b", "docks_a", T0)

        _run(20, lambda p: service.submit_action(scout(p, war_id=war.id), T0), players)
        assert len(war.participants) == 20
        assert war.intel_quality == 100
        assert len(war.events) == 20
        assert all(resources.wallet(p).energy == 5 for p in players)

    def test_snapshot_is_consistent_under_writes(self, service):
        war, _ = service.declare_war("don_b", "docks_a", T0)
        stop = threading.Event()

        def writer():
            for _ in range(2000):
                if stop.is_set():
                    break
                service.record_pressure_event(
                    war.id, Side.ATTACKER, PressureEventType.SCOUTING_REPORT, WarPhase.SCOUTING, 1, T0,
                )

        thread = threading.Thread(target=writer)
        thread.start()
        try:
            for _ in range(50):
                snap = service.snapshot().wars[war.id]
                assert snap.attacking_pressure == len(snap.events)
        finally:
            stop.set()
            thread.join()

    def test_income_accrual_runs_once_per_period(self, service):
        workers = 4

        def accrue(i):
            return service.accrue_income(T0 + hours(1))[0]

        results = _run(workers, accrue, range(workers))
        assert sum(len(r) for r in results) == 1
        assert len(service.state.income_history) == 1
