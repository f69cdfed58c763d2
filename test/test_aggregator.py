"""
Tests for player actions: eligibility, costs, cooldowns and the pressure they produce.
"""
import random

import pytest

from turfwar.engine.actions import (
    Action,
    ActionType,
    ConsolidationTask,
    consolidate,
    deliver_supplies,
    guard_duty,
    run_sabotage_mission,
    scout,
    showdown_assault,
)
from turfwar.engine.aggregator import ActionResult, apply_action
from turfwar.engine.collaborators import FamilyRank, Membership
from turfwar.engine.errors import Ineligible, InsufficientResources, InvalidTransition, NotFound
from turfwar.engine.ledger import get_control
from turfwar.engine.state import PressureEventType, Side, WarOutcome, WarPhase
from turfwar.engine.war import declare_war
from turfwar.service import TerritoryWarService

from conftest import T0, hours, rules_with_success_rate


@pytest.fixture
def war(service):
    war, _ = service.declare_war("don_b", "docks_a", T0)
    return war


def _enter(service, war, phase):
    while war.phase != phase:
        service.advance_war(war.id, war.phase_ends_at)
    return war.phase_started_at


class TestScouting:
    def test_attacker_scout_raises_intel(self, service, war, resources):
        result, events = service.submit_action(scout("capo_b", war_id=war.id), T0)
        assert result.success
        assert result.side == Side.ATTACKER
        assert result.delta == 2
        assert war.intel_quality == 10
        assert war.events[-1].event_type == PressureEventType.SCOUTING_REPORT
        assert war.participants["capo_b"].contribution_score == 5
        assert resources.wallet("capo_b").energy == 995
        assert [e.type for e in events] == ["participant_joined", "pressure_recorded", "action_resolved"]

    def test_defender_counter_scouting_lowers_intel(self, service, war):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        service.submit_action(scout("soldier_a", war_id=war.id), T0)
        assert war.intel_quality == 5
        assert war.events[-1].event_type == PressureEventType.COUNTER_INTEL
        assert war.events[-1].side == Side.DEFENDER

    def test_failed_scout_records_no_pressure(self, registry, state, directory, resources):
        service = TerritoryWarService(
            registry, state=state, directory=directory, resources=resources,
            rules=rules_with_success_rate(0), rng=random.Random(1), clock=lambda: T0,
        )
        war, _ = service.declare_war("don_b", "docks_a", T0)
        result, _ = service.submit_action(scout("capo_b", war_id=war.id), T0)
        assert not result.success
        assert result.event_sequence is None
        assert war.events == []
        assert war.participants["capo_b"].total_actions == 1
        assert resources.wallet("capo_b").energy == 995

    def test_cooldown(self, service, war):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        with pytest.raises(Ineligible, match="cooldown"):
            service.submit_action(scout("capo_b", war_id=war.id), T0 + hours(0.25))
        result, _ = service.submit_action(scout("capo_b", war_id=war.id), T0 + hours(0.5))
        assert result.success
        assert war.intel_quality == 20


class TestEligibility:
    def test_outsider_family(self, service, war):
        with pytest.raises(Ineligible):
            service.submit_action(scout("don_t", war_id=war.id), T0)

    def test_unknown_player(self, service, war):
        with pytest.raises(Ineligible):
            service.submit_action(scout("nobody", war_id=war.id), T0)

    def test_wrong_phase(self, service, war):
        with pytest.raises(InvalidTransition, match="not allowed"):
            service.submit_action(showdown_assault("capo_b", war_id=war.id), T0)

    def test_unknown_war(self, service):
        with pytest.raises(NotFound):
            service.submit_action(scout("capo_b", war_id="war_missing"), T0)

    def test_territory_targets_active_war(self, service, war):
        result, _ = service.submit_action(scout("capo_b", territory_id="docks_a"), T0)
        assert result.war_id == war.id

    def test_territory_without_war(self, service):
        with pytest.raises(InvalidTransition):
            service.submit_action(scout("capo_b", territory_id="casino_c"), T0)

    def test_elapsed_phase_is_rejected(self, service, war):
        with pytest.raises(InvalidTransition):
            service.submit_action(scout("capo_b", war_id=war.id), T0 + hours(4))
        assert war.phase == WarPhase.SABOTAGE
        assert war.events == []

    def test_family_switch_mid_war(self, service, war, directory):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        directory.add(Membership("capo_b", "corleone", FamilyRank.CAPOREGIME))
        with pytest.raises(Ineligible, match="fought war"):
            service.submit_action(scout("capo_b", war_id=war.id), T0 + hours(1))

    def test_no_energy_no_pressure(self, service, war, resources):
        resources.set_wallet("capo_b", energy=0)
        with pytest.raises(InsufficientResources):
            service.submit_action(scout("capo_b", war_id=war.id), T0)
        assert war.events == []
        assert "capo_b" not in war.participants


class TestSabotage:
    def test_successful_mission(self, service, war, resources):
        at = _enter(service, war, WarPhase.SABOTAGE)
        result, _ = service.submit_action(run_sabotage_mission("assoc_b", "sure_thing", war_id=war.id), at)
        assert result.success
        assert result.delta == 8
        assert war.sabotage_points == 10
        assert war.missions["sure_thing"].current_completions == 1
        assert war.participants["assoc_b"].missions_completed == 1
        assert resources.wallet("assoc_b").energy == 990

    def test_failed_mission_costs_risk(self, service, war):
        at = _enter(service, war, WarPhase.SABOTAGE)
        result, _ = service.submit_action(run_sabotage_mission("assoc_b", "hopeless", war_id=war.id), at)
        assert not result.success
        assert result.delta == -3
        assert war.attacking_pressure == -3
        assert war.events[-1].event_type == PressureEventType.MISSION_FAILURE
        assert war.sabotage_points == 0

    def test_defender_mission_adds_no_sabotage_points(self, service, war):
        at = _enter(service, war, WarPhase.SABOTAGE)
        service.submit_action(run_sabotage_mission("soldier_a", "sure_thing", war_id=war.id), at)
        assert war.defending_pressure == 8
        assert war.sabotage_points == 0

    def test_rank_gate(self, service, war):
        at = _enter(service, war, WarPhase.SABOTAGE)
        with pytest.raises(Ineligible, match="rank"):
            service.submit_action(run_sabotage_mission("assoc_b", "arson", war_id=war.id), at)

    def test_intel_gate(self, service, war):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        at = _enter(service, war, WarPhase.SABOTAGE)
        with pytest.raises(Ineligible, match="intel"):
            service.submit_action(run_sabotage_mission("assoc_b", "intel_job", war_id=war.id), at)

    def test_intel_gate_met_after_scouting(self, service, war):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        service.submit_action(scout("assoc_b", war_id=war.id), T0)
        at = _enter(service, war, WarPhase.SABOTAGE)
        result, _ = service.submit_action(run_sabotage_mission("assoc_b", "intel_job", war_id=war.id), at)
        assert result.success

    def test_completion_cap(self, service, war):
        service.submit_action(scout("capo_b", war_id=war.id), T0)
        service.submit_action(scout("assoc_b", war_id=war.id), T0)
        at = _enter(service, war, WarPhase.SABOTAGE)
        service.submit_action(run_sabotage_mission("assoc_b", "intel_job", war_id=war.id), at)
        assert not war.missions["intel_job"].is_active
        with pytest.raises(Ineligible):
            service.submit_action(run_sabotage_mission("capo_b", "intel_job", war_id=war.id), at)

    def test_required_items_are_consumed(self, service, war, resources):
        resources.set_wallet("capo_b", energy=100, items={"gasoline": 1})
        at = _enter(service, war, WarPhase.SABOTAGE)
        service.submit_action(run_sabotage_mission("capo_b", "arson", war_id=war.id), at)
        assert resources.wallet("capo_b").items["gasoline"] == 0
        with pytest.raises(InsufficientResources):
            service.submit_action(run_sabotage_mission("don_b", "arson", war_id=war.id), at)

    def test_mission_cooldown_is_per_mission(self, service, war):
        at = _enter(service, war, WarPhase.SABOTAGE)
        service.submit_action(run_sabotage_mission("assoc_b", "sure_thing", war_id=war.id), at)
        with pytest.raises(Ineligible, match="cooldown"):
            service.submit_action(run_sabotage_mission("assoc_b", "sure_thing", war_id=war.id), at)
        result, _ = service.submit_action(run_sabotage_mission("assoc_b", "hopeless", war_id=war.id), at)
        assert not result.success

    def test_sabotage_threshold_from_missions(self, service, war, directory):
        at = _enter(service, war, WarPhase.SABOTAGE)
        for player in ("assoc_b", "capo_b", "don_b"):
            service.submit_action(run_sabotage_mission(player, "sure_thing", war_id=war.id), at)
        assert war.phase == WarPhase.SABOTAGE
        directory.add(Membership("assoc_b2", "barzini", FamilyRank.ASSOCIATE))
        service.resources.set_wallet("assoc_b2", energy=50)
        service.submit_action(run_sabotage_mission("assoc_b2", "sure_thing", war_id=war.id), at)
        assert war.sabotage_points == 40
        assert war.phase == WarPhase.SHOWDOWN


class TestShowdown:
    def test_assault_bonus_from_contribution(self, service, war):
        at = _enter(service, war, WarPhase.SABOTAGE)
        service.submit_action(run_sabotage_mission("capo_b", "sure_thing", war_id=war.id), at)
        at = _enter(service, war, WarPhase.SHOWDOWN)
        # contribution 8 from the mission: no bonus yet
        result, _ = service.submit_action(showdown_assault("capo_b", war_id=war.id), at)
        assert result.delta == 5
        war.participants["capo_b"].contribution_score = 200
        result, _ = service.submit_action(showdown_assault("capo_b", war_id=war.id), at + hours(1))
        assert result.delta == 10

    def test_supplies_scale_pressure(self, service, war):
        at = _enter(service, war, WarPhase.SHOWDOWN)
        result, _ = service.submit_action(deliver_supplies("soldier_a", 3, war_id=war.id), at)
        assert result.delta == 3
        assert war.participants["soldier_a"].supplies_provided == 3
        assert war.defending_pressure == 3

    def test_guard_duty_blocks_for_its_shift(self, service, war):
        at = _enter(service, war, WarPhase.SHOWDOWN)
        result, _ = service.submit_action(guard_duty("soldier_a", 2, war_id=war.id), at)
        assert result.delta == 4
        assert war.participants["soldier_a"].guard_duty_hours == 2
        with pytest.raises(Ineligible):
            service.submit_action(guard_duty("soldier_a", 1, war_id=war.id), at + hours(1.5))
        service.submit_action(guard_duty("soldier_a", 1, war_id=war.id), at + hours(2))

    def test_invalid_payloads(self, service, war):
        at = _enter(service, war, WarPhase.SHOWDOWN)
        with pytest.raises(ValueError):
            service.submit_action(deliver_supplies("soldier_a", 0, war_id=war.id), at)
        with pytest.raises(ValueError):
            service.submit_action(guard_duty("soldier_a", -1, war_id=war.id), at)


class TestConsolidation:
    def _win(self, service, war):
        at = _enter(service, war, WarPhase.SHOWDOWN)
        service.record_pressure_event(war.id, Side.ATTACKER, PressureEventType.ASSAULT, WarPhase.SHOWDOWN, 80, at)
        assert war.outcome == WarOutcome.ATTACKER_VICTORY
        return at

    def test_staged_defenses_apply_on_transfer(self, service, war, state, registry):
        at = self._win(service, war)
        service.submit_action(consolidate("capo_b", war_id=war.id), at)
        service.submit_action(consolidate("assoc_b", ConsolidationTask.POST_GUARD, war_id=war.id), at)
        assert war.staged_defense_points == 5
        assert war.staged_guards == 1
        service.tick(war.phase_ends_at)
        record = get_control(state, registry, "docks_a")
        assert record.family_id == "barzini"
        assert record.defense_points == 10 + 5
        assert record.guard_count == 1

    def test_loser_cannot_consolidate(self, service, war):
        at = self._win(service, war)
        with pytest.raises(Ineligible, match="winning family"):
            service.submit_action(consolidate("soldier_a", war_id=war.id), at)


class TestResubmission:
    def test_same_action_id_applies_once(self, service, war, resources):
        action = scout("capo_b", war_id=war.id, action_id="req-1")
        first, _ = service.submit_action(action, T0)
        again, events = service.submit_action(action, T0 + hours(0.1))
        assert again.duplicate
        assert not first.duplicate
        assert again.event_sequence == first.event_sequence
        assert events == []
        assert len(war.events) == 1
        assert resources.wallet("capo_b").energy == 995

    def test_action_ids_are_scoped_to_the_player(self, service, war):
        first, _ = service.submit_action(scout("capo_b", war_id=war.id, action_id="req-1"), T0)
        second, _ = service.submit_action(scout("assoc_b", war_id=war.id, action_id="req-1"), T0)
        assert not second.duplicate
        assert second.player_id == "assoc_b"
        assert second.event_sequence == first.event_sequence + 1
        assert len(war.events) == 2

    def test_result_round_trips(self):
        result = ActionResult("w", "p", ActionType.SCOUT, Side.ATTACKER, True, delta=2, event_sequence=1)
        assert ActionResult.from_dict(result.to_dict()) == result

    def test_action_round_trips(self):
        action = run_sabotage_mission("p", "sure_thing", war_id="w", action_id="x")
        assert Action.from_dict(action.to_dict()) == action


class TestEngineDirect:
    def test_apply_action_without_service(self, registry, state, directory, resources, rules):
        war, _ = declare_war(state, registry, directory.get_membership("don_b"), "docks_a", T0, rules)
        result, _ = apply_action(
            state, registry, scout("capo_b", war_id=war.id), directory, resources,
            T0, random.Random(3), rules,
        )
        assert result.success
        assert war.attacking_pressure == 2


class TestDirectEvents:
    def test_event_for_closed_phase_is_rejected_without_a_tick(self, service, war):
        _enter(service, war, WarPhase.SABOTAGE)
        late = war.phase_ends_at + hours(1)
        with pytest.raises(InvalidTransition, match="Phase mismatch"):
            service.record_pressure_event(
                war.id, Side.ATTACKER, PressureEventType.MISSION_SUCCESS, WarPhase.SABOTAGE, 30, late,
                sabotage_points=40,
            )
        assert war.phase == WarPhase.SHOWDOWN
        assert war.events == []


class TestValidation:
    def test_closed_phase_is_judged_as_the_next_one(self, service, war):
        late = war.phase_ends_at + hours(1)
        result = service.validate_action(scout("capo_b", war_id=war.id), late)
        assert not result.valid
        assert result.code == "invalid_transition"
        assert "not allowed in phase 'sabotage'" in result.error
        assert war.phase == WarPhase.SCOUTING

    def test_valid_action_leaves_state_alone(self, service, war, resources):
        result = service.validate_action(scout("capo_b", war_id=war.id), T0)
        assert result.valid
        assert war.events == []
        assert resources.wallet("capo_b").energy == 1000
