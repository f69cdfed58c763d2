"""Shared fixtures: a small hand-built city, families, wallets and a fixed clock."""
import os
import random
import tempfile
from datetime import datetime, timedelta, timezone

# Point the API at a throwaway SQLite file before turfwar.config is imported
_DB_DIR = tempfile.mkdtemp(prefix="turfwar-test-")
os.environ.setdefault("TURFWAR_DATABASE_URL", f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}")

import pytest

from turfwar.config import ActionRule, GameRules
from turfwar.engine.collaborators import (
    Capability,
    FamilyRank,
    InMemoryMembershipDirectory,
    InMemoryResourceLedger,
    Membership,
)
from turfwar.engine.definitions import (
    SabotageMissionDefinition,
    TerritoryDefinition,
    TerritoryRegistry,
    TerritoryType,
)
from turfwar.engine.utils import initialize_world_state
from turfwar.service import TerritoryWarService

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
ALL_CAPS = frozenset(Capability)


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def make_territory(tid, x, y, adjacent=(), base=200, maintenance=50, difficulty=4,
                   territory_type=TerritoryType.DOCKS, min_defense=0, strategic=False,
                   contestable=True) -> TerritoryDefinition:
    return TerritoryDefinition(
        id=tid,
        display_name=tid.replace("_", " ").title(),
        territory_type=territory_type,
        x=x,
        y=y,
        base_income_per_hour=base,
        maintenance_cost_per_hour=maintenance,
        control_difficulty=difficulty,
        adjacent=tuple(adjacent),
        is_strategic=strategic,
        is_contestable=contestable,
        min_defense_points=min_defense,
    )


def make_missions() -> dict[str, SabotageMissionDefinition]:
    missions = [
        SabotageMissionDefinition(
            id="sure_thing", display_name="Sure Thing", energy_cost=10,
            required_rank=FamilyRank.ASSOCIATE, success_rate=100, risk_level=2,
            sabotage_points=10, pressure_impact=8, cooldown_hours=1,
        ),
        SabotageMissionDefinition(
            id="hopeless", display_name="Hopeless", energy_cost=10,
            required_rank=FamilyRank.ASSOCIATE, success_rate=0, risk_level=3,
            sabotage_points=10, pressure_impact=8, cooldown_hours=1,
        ),
        SabotageMissionDefinition(
            id="intel_job", display_name="Intel Job", energy_cost=15,
            required_rank=FamilyRank.ASSOCIATE, success_rate=100, risk_level=1,
            sabotage_points=5, pressure_impact=12, requires_intel=True,
            min_intel_quality=20, cooldown_hours=0, max_completions=1,
        ),
        SabotageMissionDefinition(
            id="arson", display_name="Arson", energy_cost=20,
            required_rank=FamilyRank.CAPOREGIME, success_rate=100, risk_level=5,
            sabotage_points=25, pressure_impact=20, required_items=("gasoline",),
            cooldown_hours=4,
        ),
    ]
    return {m.id: m for m in missions}


def make_registry() -> TerritoryRegistry:
    """
    Three territories in a row:
      docks_a (difficulty 4, held by corleone in the default world)
      docks_b (difficulty 1, unclaimed)
      casino_c (difficulty 10, min defense 30)
    """
    territories = [
        make_territory("docks_a", 0, 0, adjacent=("docks_b",)),
        make_territory("docks_b", 1, 0, adjacent=("docks_a", "casino_c"), base=100, maintenance=20, difficulty=1),
        make_territory("casino_c", 2, 0, adjacent=("docks_b",), base=400, maintenance=100, difficulty=10,
                       territory_type=TerritoryType.CASINO, min_defense=30, strategic=True),
    ]
    return TerritoryRegistry(territories={t.id: t for t in territories}, missions=make_missions())


def rules_with_success_rate(rate: float, **overrides) -> GameRules:
    rules = GameRules(**overrides)
    rules.actions = {
        key: ActionRule(**{**rule.model_dump(), "success_rate": rate})
        for key, rule in rules.actions.items()
    }
    return rules


@pytest.fixture
def registry():
    return make_registry()


@pytest.fixture
def rules():
    return rules_with_success_rate(100)


@pytest.fixture
def directory():
    return InMemoryMembershipDirectory([
        Membership("don_a", "corleone", FamilyRank.BOSS, ALL_CAPS),
        Membership("soldier_a", "corleone", FamilyRank.SOLDIER),
        Membership("don_b", "barzini", FamilyRank.BOSS, ALL_CAPS),
        Membership("capo_b", "barzini", FamilyRank.CAPOREGIME),
        Membership("assoc_b", "barzini", FamilyRank.ASSOCIATE),
        Membership("peacemaker_a", "corleone", FamilyRank.UNDERBOSS, frozenset({Capability.NEGOTIATE_PEACE})),
        Membership("don_t", "tattaglia", FamilyRank.BOSS, ALL_CAPS),
    ])


@pytest.fixture
def resources():
    ledger = InMemoryResourceLedger()
    for player in ("don_a", "soldier_a", "don_b", "capo_b", "assoc_b", "peacemaker_a", "don_t"):
        ledger.set_wallet(player, energy=1000, cash=100_000)
    return ledger


@pytest.fixture
def state(registry, rules):
    return initialize_world_state(registry, T0, {"docks_a": {"family_id": "corleone"}}, rules)


@pytest.fixture
def service(registry, state, directory, resources, rules):
    return TerritoryWarService(
        registry,
        state=state,
        directory=directory,
        resources=resources,
        rules=rules,
        rng=random.Random(42),
        clock=lambda: T0,
    )
