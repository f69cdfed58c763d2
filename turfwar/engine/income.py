"""
Income Engine.
calculate_territory_income is pure: identical inputs give identical output, so
it serves both live display and reconciliation of income ledger rows.
accrue_income and settle_income are the only functions here that write state.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from turfwar.config import GameRules, settings
from turfwar.engine import UNCLAIMED
from turfwar.engine.definitions import TerritoryDefinition, TerritoryRegistry
from turfwar.engine.events import WarEvent, income_accrued
from turfwar.engine.state import (
    ControlRecord,
    IncomeRecord,
    War,
    WarPhase,
    WorldState,
)


@dataclass(frozen=True)
class IncomeBreakdown:
    """Hourly income of one territory for the family it pays (family_id None = nobody)."""
    territory_id: str
    family_id: str | None
    gross_income: float = 0.0
    adjacency_bonus: float = 0.0
    fortification_bonus: float = 0.0
    maintenance_cost: float = 0.0
    net_income: float = 0.0
    control_percentage: float = 0.0
    income_modifier: float = 1.0
    suppressed: bool = False  # contested in showdown

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FamilyIncomeReport:
    family_id: str
    total_territories: int = 0
    total_gross_income: float = 0.0
    total_maintenance: float = 0.0
    total_net_income: float = 0.0
    territories: list[IncomeBreakdown] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "family_id": self.family_id,
            "total_territories": self.total_territories,
            "total_gross_income": self.total_gross_income,
            "total_maintenance": self.total_maintenance,
            "total_net_income": self.total_net_income,
            "territories": [t.to_dict() for t in self.territories],
        }


def projected_control_percentage(control_bar_position: int) -> float:
    """Starting control for the winner of a war, from the final control bar."""
    return float(min(100, 50 + min(50, abs(control_bar_position) / 2)))


def _effective_control(
    record: ControlRecord | None,
    war: War | None,
    rules: GameRules,
) -> tuple[str | None, float, float, int]:
    """(family, percentage, modifier, fortification) that income is computed from."""
    if war is not None and war.is_active and war.phase == WarPhase.CONSOLIDATION:
        winner = war.winner_family_id
        if not winner or winner == UNCLAIMED:
            return None, 0.0, 1.0, 0
        pct = projected_control_percentage(war.control_bar_position)
        if record is not None and record.family_id == winner:
            return winner, pct, record.income_modifier, record.fortification_level
        return winner, pct, 1.0, rules.transfer_fortification_baseline
    if record is None or not record.family_id or record.control_percentage <= 0:
        return None, 0.0, 1.0, 0
    return record.family_id, record.control_percentage, record.income_modifier, record.fortification_level


def calculate_territory_income(
    territory: TerritoryDefinition,
    record: ControlRecord | None,
    adjacent_records: list[ControlRecord | None],
    war: War | None = None,
    rules: GameRules | None = None,
) -> IncomeBreakdown:
    """
    Net hourly income of a territory.

    gross = base x control% x modifier
    adjacency = rate x base per adjacent territory held by the same family
    fortification = level x rate x base
    net = gross + adjacency + fortification - maintenance

    Unclaimed territories yield nothing. During showdown the territory is
    contested and yields nothing; from consolidation on it pays the projected
    winner at the post-war percentage.
    """
    rules = rules or settings.rules
    if war is not None and war.is_active and war.phase == WarPhase.SHOWDOWN:
        owner = record.family_id if record is not None else None
        return IncomeBreakdown(territory_id=territory.id, family_id=owner, suppressed=True)

    family_id, pct, modifier, fortification = _effective_control(record, war, rules)
    if family_id is None:
        return IncomeBreakdown(territory_id=territory.id, family_id=None)

    base = territory.base_income_per_hour
    gross = base * (pct / 100.0) * modifier
    same_family_neighbours = sum(
        1 for adj in adjacent_records
        if adj is not None and adj.family_id == family_id and adj.control_percentage > 0
    )
    adjacency = same_family_neighbours * rules.adjacency_bonus_rate * base
    fort_bonus = fortification * rules.fortification_rate * base
    maintenance = float(territory.maintenance_cost_per_hour)
    net = gross + adjacency + fort_bonus - maintenance
    return IncomeBreakdown(
        territory_id=territory.id,
        family_id=family_id,
        gross_income=gross,
        adjacency_bonus=adjacency,
        fortification_bonus=fort_bonus,
        maintenance_cost=maintenance,
        net_income=net,
        control_percentage=pct,
        income_modifier=modifier,
    )


def territory_income(
    state: WorldState,
    registry: TerritoryRegistry,
    territory_id: str,
    rules: GameRules | None = None,
) -> IncomeBreakdown:
    """Gather a territory's context from world state and compute its income."""
    tdef = registry.get(territory_id)
    adjacent = [state.controls.get(adj) for adj in tdef.adjacent]
    return calculate_territory_income(
        tdef,
        state.controls.get(territory_id),
        adjacent,
        war=state.active_war_for(territory_id),
        rules=rules,
    )


def calculate_family_report(
    state: WorldState,
    registry: TerritoryRegistry,
    family_id: str,
    rules: GameRules | None = None,
) -> FamilyIncomeReport:
    """Sum of hourly income across every territory paying the family."""
    report = FamilyIncomeReport(family_id=family_id)
    for tdef in registry.all():
        breakdown = territory_income(state, registry, tdef.id, rules)
        if breakdown.family_id != family_id:
            continue
        report.territories.append(breakdown)
        report.total_territories += 1
        report.total_gross_income += (
            breakdown.gross_income + breakdown.adjacency_bonus + breakdown.fortification_bonus
        )
        report.total_maintenance += breakdown.maintenance_cost
        report.total_net_income += breakdown.net_income
    return report


def _accrue_territory(
    state: WorldState,
    registry: TerritoryRegistry,
    control: ControlRecord,
    now: datetime,
    rules: GameRules,
) -> IncomeRecord | None:
    start = control.last_income_at or control.controlled_since or now
    if now <= start:
        return None
    breakdown = territory_income(state, registry, control.territory_id, rules)
    control.last_income_at = now
    if breakdown.family_id is None or breakdown.suppressed:
        return None
    row = IncomeRecord(
        territory_id=control.territory_id,
        family_id=breakdown.family_id,
        gross_income=0.0,
        adjacency_bonus=0.0,
        fortification_bonus=0.0,
        maintenance_cost=0.0,
        net_income=0.0,
        control_percentage=breakdown.control_percentage,
        income_modifier=breakdown.income_modifier,
        period_start=start,
        period_end=now,
    )
    hours = row.hours
    row.gross_income = breakdown.gross_income * hours
    row.adjacency_bonus = breakdown.adjacency_bonus * hours
    row.fortification_bonus = breakdown.fortification_bonus * hours
    row.maintenance_cost = breakdown.maintenance_cost * hours
    row.net_income = breakdown.net_income * hours
    if breakdown.family_id == control.family_id:
        control.total_income_generated += row.net_income
    state.income_history.append(row)
    return row


def settle_income(
    state: WorldState,
    registry: TerritoryRegistry,
    territory_id: str,
    at: datetime,
    rules: GameRules | None = None,
) -> list[WarEvent]:
    """
    Close the territory's open income period at `at`, priced at the current
    rates. The war machine calls this just before a change that alters those
    rates (showdown, consolidation, transfer, archive).
    """
    rules = rules or settings.rules
    control = state.controls.get(territory_id)
    if control is None or not control.family_id:
        return []
    row = _accrue_territory(state, registry, control, at, rules)
    if row is None:
        return []
    return [income_accrued(territory_id, row.family_id, row.net_income, row.hours)]


def accrue_income(
    state: WorldState,
    registry: TerritoryRegistry,
    now: datetime,
    rules: GameRules | None = None,
) -> tuple[list[IncomeRecord], list[WarEvent]]:
    """
    Credit each controlled territory with net income for the hours since it
    last accrued, appending IncomeRecord rows to the world's income history.

    Wars must already be advanced to `now`: periods are split at every rate
    change by settle_income, so the open period has a single rate. Showdown
    hours produce no row.
    """
    rules = rules or settings.rules
    records: list[IncomeRecord] = []
    events: list[WarEvent] = []
    for tid in sorted(state.controls):
        control = state.controls[tid]
        if not control.family_id:
            continue
        row = _accrue_territory(state, registry, control, now, rules)
        if row is None:
            continue
        records.append(row)
        events.append(income_accrued(tid, row.family_id, row.net_income, row.hours))
    return records, events


def income_history(
    state: WorldState,
    territory_id: str | None = None,
    family_id: str | None = None,
) -> list[IncomeRecord]:
    return [
        r for r in state.income_history
        if (territory_id is None or r.territory_id == territory_id)
        and (family_id is None or r.family_id == family_id)
    ]