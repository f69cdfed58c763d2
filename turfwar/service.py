"""
Thread-safe facade over the engine for one world.

Every write runs under the lock of the territory it touches. A territory has
at most one active war, so this serializes all pressure events, phase
transitions and the declare-war compare-and-set for any given war. Whole-world
operations (snapshot, income accrual, founding claims) take every territory
lock in sorted order.
"""

import logging
import random
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from datetime import datetime

from turfwar.config import GameRules, settings
from turfwar.engine import aggregator, income, ledger, queries, war as war_machine
from turfwar.engine.actions import Action
from turfwar.engine.collaborators import (
    InMemoryMembershipDirectory,
    InMemoryResourceLedger,
    MembershipDirectory,
    ResourceLedger,
)
from turfwar.engine.definitions import TerritoryRegistry
from turfwar.engine.errors import NotFound, TerritoryWarError
from turfwar.engine.events import WarEvent
from turfwar.engine.state import IncomeRecord, PressureEvent, PressureEventType, Side, War, WarPhase, WorldState, utcnow
from turfwar.engine.utils import make_rng

logger = logging.getLogger(__name__)


class TerritoryWarService:
    def __init__(
        self,
        registry: TerritoryRegistry,
        state: WorldState | None = None,
        directory: MembershipDirectory | None = None,
        resources: ResourceLedger | None = None,
        rules: GameRules | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.state = state or WorldState()
        self.directory = directory or InMemoryMembershipDirectory()
        self.resources = resources or InMemoryResourceLedger()
        self.rules = rules or settings.rules
        self.rng = rng or make_rng(settings.rng_seed)
        self.clock = clock
        # Created once up front; the set of territories never changes.
        self._locks = {tid: threading.Lock() for tid in sorted(registry.territories)}

    # ===== Locking =====

    @contextmanager
    def _territory(self, territory_id: str) -> Iterator[None]:
        lock = self._locks.get(territory_id)
        if lock is None:
            raise NotFound(f"Unknown territory: {territory_id}")
        with lock:
            yield

    @contextmanager
    def _all_territories(self) -> Iterator[None]:
        with ExitStack() as stack:
            for tid in sorted(self._locks):
                stack.enter_context(self._locks[tid])
            yield

    def _now(self, now: datetime | None) -> datetime:
        return now or self.clock()

    def _territory_of_war(self, war_id: str) -> str:
        # territory_id never changes after declaration, so no lock is needed to read it
        return war_machine.get_war(self.state, war_id).territory_id

    @contextmanager
    def _logged(self, operation: str, **context) -> Iterator[None]:
        try:
            yield
        except TerritoryWarError as e:
            logger.info("Rejected %s %s: [%s] %s", operation, context, e.code, e.message)
            raise

    # ===== Writes =====

    def declare_war(
        self,
        player_id: str,
        territory_id: str,
        now: datetime | None = None,
        war_id: str | None = None,
    ) -> tuple[War, list[WarEvent]]:
        now = self._now(now)
        with self._logged("declare_war", player=player_id, territory=territory_id):
            membership = self.directory.get_membership(player_id)
            with self._territory(territory_id):
                return war_machine.declare_war(
                    self.state, self.registry, membership, territory_id, now, self.rules, war_id,
                )

    def submit_action(
        self,
        action: Action,
        now: datetime | None = None,
    ) -> tuple[aggregator.ActionResult, list[WarEvent]]:
        now = self._now(now)
        with self._logged("action", type=action.type.value, player=action.player_id):
            territory_id = self._territory_of_war(action.war_id) if action.war_id else action.territory_id
            if not territory_id:
                raise ValueError("Action must name a war_id or a territory_id")
            with self._territory(territory_id):
                return aggregator.apply_action(
                    self.state, self.registry, action, self.directory, self.resources,
                    now, self.rng, self.rules,
                )

    def record_pressure_event(
        self,
        war_id: str,
        side: Side,
        event_type: PressureEventType,
        phase: WarPhase,
        delta: int,
        now: datetime | None = None,
        player_id: str | None = None,
        description: str = "",
        sabotage_points: int = 0,
    ) -> tuple[PressureEvent, list[WarEvent]]:
        """
        Record an event directly, bypassing the aggregator (admin tools, imports).
        The war is advanced to `now` first, under the same lock.
        """
        now = self._now(now)
        with self._logged("record_pressure_event", war=war_id):
            with self._territory(self._territory_of_war(war_id)):
                return war_machine.record_pressure_event(
                    self.state, self.registry, war_id, side, event_type, phase, delta, now,
                    player_id=player_id, description=description,
                    sabotage_points=sabotage_points, rules=self.rules,
                )

    def cancel_war(self, player_id: str, war_id: str, now: datetime | None = None) -> list[WarEvent]:
        now = self._now(now)
        with self._logged("cancel_war", player=player_id, war=war_id):
            membership = self.directory.get_membership(player_id)
            with self._territory(self._territory_of_war(war_id)):
                events = war_machine.advance_war(self.state, self.registry, war_id, now, self.rules)
                return events + war_machine.cancel_war(
                    self.state, self.registry, membership, war_id, now, self.rules,
                )

    def advance_war(self, war_id: str, now: datetime | None = None) -> list[WarEvent]:
        now = self._now(now)
        with self._territory(self._territory_of_war(war_id)):
            return war_machine.advance_war(self.state, self.registry, war_id, now, self.rules)

    def tick(self, now: datetime | None = None) -> list[WarEvent]:
        """Scheduler entry point: advance every active war to `now`."""
        now = self._now(now)
        events: list[WarEvent] = []
        for territory_id in sorted(self._locks):
            if territory_id not in self.state.active_wars:
                continue
            with self._territory(territory_id):
                war_id = self.state.active_wars.get(territory_id)
                if war_id is not None:
                    events += war_machine.advance_war(self.state, self.registry, war_id, now, self.rules)
        if events:
            logger.debug("Tick at %s produced %d events", now.isoformat(), len(events))
        return events

    def claim_territory(self, player_id: str, territory_id: str, now: datetime | None = None) -> list[WarEvent]:
        now = self._now(now)
        with self._logged("claim_territory", player=player_id, territory=territory_id):
            self.registry.get(territory_id)
            membership = self.directory.get_membership(player_id)
            # The "holds no territory yet" check spans the whole map
            with self._all_territories():
                return ledger.claim_territory(
                    self.state, self.registry, membership, territory_id, now, self.rules,
                )

    def invest_in_defense(
        self,
        player_id: str,
        territory_id: str,
        defense_points: int = 0,
        guards: int = 0,
        fortification_levels: int = 0,
    ) -> list[WarEvent]:
        with self._logged("invest_in_defense", player=player_id, territory=territory_id):
            membership = self.directory.get_membership(player_id)
            with self._territory(territory_id):
                return ledger.invest_in_defense(
                    self.state, self.registry, membership, territory_id, self.resources,
                    defense_points, guards, fortification_levels, self.rules,
                )

    def accrue_income(self, now: datetime | None = None) -> tuple[list[IncomeRecord], list[WarEvent]]:
        now = self._now(now)
        with self._all_territories():
            # Wars settle income at their phase changes; bring them up to now first
            events = war_machine.advance_all_wars(self.state, self.registry, now, self.rules)
            records, accrued = income.accrue_income(self.state, self.registry, now, self.rules)
        logger.info("Accrued income for %d territories", len(records))
        return records, events + accrued

    # ===== Reads =====

    def snapshot(self) -> WorldState:
        """Consistent deep copy of the world, safe to read without locks."""
        with self._all_territories():
            return self.state.copy()

    def validate_action(self, action: Action, now: datetime | None = None) -> queries.ValidationResult:
        now = self._now(now)
        with self._all_territories():
            return queries.validate_action(
                self.state, self.registry, action, self.directory, now, self.rules,
            )

    def family_report(self, family_id: str) -> income.FamilyIncomeReport:
        return income.calculate_family_report(self.snapshot(), self.registry, family_id, self.rules)

    def territory_income(self, territory_id: str) -> income.IncomeBreakdown:
        return income.territory_income(self.snapshot(), self.registry, territory_id, self.rules)
