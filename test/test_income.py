"""
Tests for the income engine.
"""
import pytest

from turfwar.engine.income import (
    calculate_family_report,
    calculate_territory_income,
    income_history,
    projected_control_percentage,
    territory_income,
    accrue_income,
)
from turfwar.engine.ledger import adjust_defense, set_control
from turfwar.engine.state import ControlRecord, PressureEventType, Side, WarPhase, WorldState
from turfwar.engine.war import advance_war, declare_war, record_pressure_event

from conftest import T0, hours


def _record(tid="docks_a", family="corleone", pct=100.0, fortification=0):
    return ControlRecord(
        territory_id=tid, family_id=family, control_percentage=pct,
        fortification_level=fortification, controlled_since=T0, last_income_at=T0,
    )


class TestTerritoryIncome:
    """calculate_territory_income is pure arithmetic over its inputs."""

    def test_full_control_no_bonuses(self, registry, rules):
        breakdown = calculate_territory_income(registry.get("docks_a"), _record(), [], rules=rules)
        assert breakdown.gross_income == pytest.approx(200)
        assert breakdown.maintenance_cost == pytest.approx(50)
        assert breakdown.net_income == pytest.approx(150)
        assert breakdown.family_id == "corleone"

    def test_is_pure(self, registry, rules):
        args = (registry.get("docks_a"), _record(pct=73.5, fortification=2), [_record("docks_b")])
        assert calculate_territory_income(*args, rules=rules) == calculate_territory_income(*args, rules=rules)

    def test_partial_control_scales_gross(self, registry, rules):
        breakdown = calculate_territory_income(registry.get("docks_a"), _record(pct=50), [], rules=rules)
        assert breakdown.gross_income == pytest.approx(100)
        assert breakdown.net_income == pytest.approx(50)

    def test_unclaimed_yields_nothing(self, registry, rules):
        breakdown = calculate_territory_income(registry.get("docks_a"), None, [], rules=rules)
        assert breakdown.family_id is None
        assert breakdown.net_income == 0

    def test_adjacency_bonus_counts_same_family_only(self, registry, rules):
        neighbours = [_record("docks_b"), _record("casino_c", family="barzini")]
        breakdown = calculate_territory_income(registry.get("docks_a"), _record(), neighbours, rules=rules)
        assert breakdown.adjacency_bonus == pytest.approx(20)
        assert breakdown.net_income == pytest.approx(170)

    def test_fortification_bonus(self, registry, rules):
        breakdown = calculate_territory_income(registry.get("docks_a"), _record(fortification=2), [], rules=rules)
        assert breakdown.fortification_bonus == pytest.approx(20)
        assert breakdown.net_income == pytest.approx(170)

    def test_income_can_be_negative(self, registry, rules):
        breakdown = calculate_territory_income(registry.get("docks_a"), _record(pct=10), [], rules=rules)
        assert breakdown.net_income == pytest.approx(-30)


class TestIncomeDuringWar:
    def _war(self, state, registry, directory, rules):
        war, _ = declare_war(state, registry, directory.get_membership("don_b"), "docks_a", T0, rules)
        return war

    def test_scouting_still_pays_owner(self, state, registry, directory, rules):
        self._war(state, registry, directory, rules)
        breakdown = territory_income(state, registry, "docks_a", rules)
        assert breakdown.family_id == "corleone"
        assert breakdown.net_income == pytest.approx(150)

    def test_showdown_suppresses_income(self, state, registry, directory, rules):
        war = self._war(state, registry, directory, rules)
        advance_war(state, registry, war.id, T0 + hours(12), rules)
        assert war.phase == WarPhase.SHOWDOWN
        breakdown = territory_income(state, registry, "docks_a", rules)
        assert breakdown.suppressed
        assert breakdown.net_income == 0

    def test_consolidation_pays_projected_winner(self, state, registry, directory, rules):
        war = self._war(state, registry, directory, rules)
        advance_war(state, registry, war.id, T0 + hours(12), rules)
        record_pressure_event(
            state, registry, war.id, Side.ATTACKER, PressureEventType.ASSAULT,
            WarPhase.SHOWDOWN, 80, T0 + hours(13), rules=rules,
        )
        assert war.phase == WarPhase.CONSOLIDATION
        breakdown = territory_income(state, registry, "docks_a", rules)
        assert breakdown.family_id == "barzini"
        assert breakdown.control_percentage == pytest.approx(90)
        # 200 * 0.9 + baseline fortification 1 * 0.05 * 200 - 50
        assert breakdown.net_income == pytest.approx(140)

    def test_projected_percentage(self):
        assert projected_control_percentage(0) == 50
        assert projected_control_percentage(80) == 90
        assert projected_control_percentage(-60) == 80
        assert projected_control_percentage(100) == 100


class TestFamilyReport:
    def test_totals_over_owned_territories(self, state, registry, rules):
        set_control(state, registry, "docks_b", "corleone", 100, now=T0)
        report = calculate_family_report(state, registry, "corleone", rules)
        assert report.total_territories == 2
        # docks_a: 200 + 20 adjacency - 50; docks_b: 100 + 10 adjacency - 20
        assert report.total_net_income == pytest.approx(170 + 90)
        assert report.total_maintenance == pytest.approx(70)

    def test_family_without_territory(self, state, registry, rules):
        report = calculate_family_report(state, registry, "barzini", rules)
        assert report.total_territories == 0
        assert report.total_net_income == 0


class TestAccrual:
    def test_accrues_hours_since_last_income(self, state, registry, rules):
        records, events = accrue_income(state, registry, T0 + hours(2), rules)
        assert len(records) == 1
        row = records[0]
        assert row.hours == pytest.approx(2)
        assert row.net_income == pytest.approx(300)
        assert state.controls["docks_a"].total_income_generated == pytest.approx(300)
        assert state.controls["docks_a"].last_income_at == T0 + hours(2)
        assert events[0].type == "income_accrued"

    def test_second_accrual_at_same_time_is_empty(self, state, registry, rules):
        accrue_income(state, registry, T0 + hours(1), rules)
        records, _ = accrue_income(state, registry, T0 + hours(1), rules)
        assert records == []
        assert len(state.income_history) == 1

    def test_history_filters(self, state, registry, rules):
        set_control(state, registry, "docks_b", "barzini", 100, now=T0)
        accrue_income(state, registry, T0 + hours(1), rules)
        assert [r.territory_id for r in income_history(state, family_id="barzini")] == ["docks_b"]
        assert len(income_history(state, territory_id="docks_a")) == 1
        assert len(income_history(state)) == 2

    def test_defense_changes_do_not_reset_accrual(self, state, registry, rules):
        adjust_defense(state, registry, "docks_a", defense_delta=10)
        records, _ = accrue_income(state, registry, T0 + hours(1), rules)
        assert records[0].period_start == T0

    def test_income_before_showdown_is_kept(self, state, registry, directory, rules):
        war, _ = declare_war(state, registry, directory.get_membership("don_b"), "docks_a", T0, rules)
        advance_war(state, registry, war.id, T0 + hours(12), rules)
        showdown_start = war.phase_started_at
        accrue_income(state, registry, T0 + hours(12), rules)
        rows = income_history(state, territory_id="docks_a")
        assert [(r.family_id, r.period_start, r.period_end) for r in rows] == [
            ("corleone", T0, showdown_start),
        ]
        assert rows[0].hours == pytest.approx(34 / 3)
        assert rows[0].net_income == pytest.approx(150 * 34 / 3)
        assert state.controls["docks_a"].last_income_at == T0 + hours(12)

    def test_winner_is_paid_from_consolidation_only(self, state, registry, directory, rules):
        war, _ = declare_war(state, registry, directory.get_membership("don_b"), "docks_a", T0, rules)
        advance_war(state, registry, war.id, T0 + hours(12), rules)
        won_at = T0 + hours(13)
        record_pressure_event(
            state, registry, war.id, Side.ATTACKER, PressureEventType.ASSAULT,
            WarPhase.SHOWDOWN, 80, won_at, rules=rules,
        )
        accrue_income(state, registry, won_at + hours(2), rules)
        rows = income_history(state, territory_id="docks_a")
        assert [r.family_id for r in rows] == ["corleone", "barzini"]
        assert rows[1].period_start == won_at
        assert rows[1].net_income == pytest.approx(280)
        assert state.controls["docks_a"].total_income_generated == pytest.approx(rows[0].net_income)

    def test_empty_world(self, registry, rules):
        assert accrue_income(WorldState(), registry, T0, rules) == ([], [])
