"""
HTTP tests for the FastAPI layer, against a throwaway SQLite database.
"""
import uuid

import pytest
from fastapi.testclient import TestClient

from turfwar.api import main as api
from turfwar.engine.definitions import build_registry

FAR_FUTURE = "2100-01-01T00:00:00+00:00"
ALL_FLAGS = [
    "can_view_territories", "can_manage_territories", "can_declare_wars",
    "can_negotiate_peace", "can_assign_guards", "can_set_defenses",
]

_registry = build_registry(seed=1931)
HELD = _registry.by_type("docks")[0].id
FREE = _registry.by_type("neighborhood")[0].id


@pytest.fixture(scope="module")
def client():
    with TestClient(api.app) as c:
        yield c


@pytest.fixture
def families(client):
    """Two fresh families with a boss and a soldier each, all with energy and cash."""
    suffix = uuid.uuid4().hex[:8]
    out = {"defender": f"corleone_{suffix}", "attacker": f"barzini_{suffix}"}
    for side, family in out.items():
        client.put(f"/members/boss_{family}", json={"family_id": family, "rank": "boss", "capabilities": ALL_FLAGS})
        client.put(f"/members/soldier_{family}", json={"family_id": family, "rank": "soldier"})
        for player in (f"boss_{family}", f"soldier_{family}"):
            client.put(f"/resources/{player}", json={"energy": 100, "cash": 1000})
    return out


@pytest.fixture
def world(client, families):
    response = client.post("/worlds", json={
        "name": "Little Italy",
        "map_seed": 1931,
        "starting_owners": {HELD: {"family_id": families["defender"], "defense_points": 0}},
    })
    assert response.status_code == 200
    return response.json()["world_id"]


def _declare(client, world, families):
    response = client.post(
        f"/worlds/{world}/territories/{HELD}/declare-war",
        json={"player_id": f"boss_{families['attacker']}"},
    )
    assert response.status_code == 200
    return response.json()["war"]


class TestWorlds:
    def test_create_and_list(self, client, world):
        listed = [w["world_id"] for w in client.get("/worlds").json()]
        assert world in listed
        grid = client.get(f"/worlds/{world}/territories").json()
        assert len(grid) == 64

    def test_starting_owner_is_visible(self, client, world, families):
        view = client.get(f"/worlds/{world}/territories/{HELD}").json()
        assert view["owner"] == families["defender"]
        assert view["status"] == "vulnerable"
        assert view["income"]["family_id"] == families["defender"]

    def test_unknown_world(self, client):
        assert client.get("/worlds/nope/territories").status_code == 404

    def test_unknown_territory(self, client, world):
        response = client.get(f"/worlds/{world}/territories/atlantis_99")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_world_reloads_from_database(self, client, world, families):
        api.worlds.pop(world)
        view = client.get(f"/worlds/{world}/territories/{HELD}").json()
        assert view["owner"] == families["defender"]


class TestWars:
    def test_declare_war(self, client, world, families):
        war = _declare(client, world, families)
        assert war["phase"] == "scouting"
        assert war["attacking_family_id"] == families["attacker"]
        active = client.get(f"/worlds/{world}/territories/{HELD}/war").json()["war"]
        assert active["id"] == war["id"]

    def test_second_declaration_conflicts(self, client, world, families):
        _declare(client, world, families)
        response = client.post(
            f"/worlds/{world}/territories/{HELD}/declare-war",
            json={"player_id": f"boss_{families['attacker']}"},
        )
        assert response.status_code == 409
        assert response.json()["code"] == "already_contested"

    def test_scout_spends_energy(self, client, world, families):
        war = _declare(client, world, families)
        player = f"soldier_{families['attacker']}"
        response = client.post(f"/worlds/{world}/actions", json={
            "type": "scout", "player_id": player, "war_id": war["id"],
        })
        assert response.status_code == 200
        assert response.json()["result"]["side"] == "attacker"
        assert client.get(f"/resources/{player}").json()["energy"] == 95
        participants = client.get(f"/worlds/{world}/wars/{war['id']}/participants").json()
        assert [p["player_id"] for p in participants] == [player]

    def test_outsider_is_forbidden(self, client, world, families):
        war = _declare(client, world, families)
        client.put("/members/stranger", json={"family_id": "tattaglia", "rank": "boss"})
        response = client.post(f"/worlds/{world}/actions", json={
            "type": "scout", "player_id": "stranger", "war_id": war["id"],
        })
        assert response.status_code == 403
        assert response.json()["code"] == "ineligible"

    def test_wrong_phase_conflicts(self, client, world, families):
        war = _declare(client, world, families)
        response = client.post(f"/worlds/{world}/actions", json={
            "type": "showdown", "player_id": f"boss_{families['attacker']}", "war_id": war["id"],
        })
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_transition"

    def test_validate_does_not_apply(self, client, world, families):
        war = _declare(client, world, families)
        response = client.post(f"/worlds/{world}/actions/validate", json={
            "type": "showdown", "player_id": f"boss_{families['attacker']}", "war_id": war["id"],
        })
        assert response.json()["valid"] is False
        assert response.json()["code"] == "invalid_transition"
        assert client.get(f"/worlds/{world}/wars/{war['id']}/events").json() == []

    def test_tick_runs_the_war_to_the_end(self, client, world, families):
        war = _declare(client, world, families)
        response = client.post(f"/worlds/{world}/tick", json={"now": FAR_FUTURE})
        assert response.status_code == 200
        detail = client.get(f"/worlds/{world}/wars/{war['id']}").json()
        assert detail["is_active"] is False
        assert detail["outcome"] == "stalemate"
        assert detail["transitions"][-1]["to_phase"] is None
        assert client.get(f"/worlds/{world}/wars", params={"active_only": True}).json() == []

    def test_cancel(self, client, world, families):
        war = _declare(client, world, families)
        response = client.post(
            f"/worlds/{world}/wars/{war['id']}/cancel",
            json={"player_id": f"boss_{families['defender']}"},
        )
        assert response.status_code == 200
        assert client.get(f"/worlds/{world}/wars/{war['id']}").json()["outcome"] == "cancelled"

    def test_unknown_war(self, client, world):
        assert client.get(f"/worlds/{world}/wars/war_missing").status_code == 404


class TestTerritoryManagement:
    def test_founding_claim(self, client, world, families):
        boss = f"boss_{families['attacker']}"
        response = client.post(f"/worlds/{world}/territories/{FREE}/claim", json={"player_id": boss})
        assert response.status_code == 200
        assert response.json()["territory"]["owner"] == families["attacker"]
        other = _registry.by_type("neighborhood")[1].id
        again = client.post(f"/worlds/{world}/territories/{other}/claim", json={"player_id": boss})
        assert again.status_code == 403

    def test_defense_investment(self, client, world, families):
        boss = f"boss_{families['defender']}"
        response = client.post(f"/worlds/{world}/territories/{HELD}/defense", json={
            "player_id": boss, "defense_points": 10,
        })
        assert response.status_code == 200
        assert response.json()["territory"]["control"]["defense_points"] == 10
        assert client.get(f"/resources/{boss}").json()["cash"] == 900

    def test_defense_investment_without_cash(self, client, world, families):
        response = client.post(f"/worlds/{world}/territories/{HELD}/defense", json={
            "player_id": f"boss_{families['defender']}", "fortification_levels": 3,
        })
        assert response.status_code == 402
        assert response.json()["code"] == "insufficient_resources"

    def test_income(self, client, world, families):
        family = families["defender"]
        report = client.get(f"/worlds/{world}/families/{family}/income").json()
        assert report["total_territories"] == 1
        accrued = client.post(f"/worlds/{world}/income/accrue", json={"now": FAR_FUTURE}).json()
        assert [r["territory_id"] for r in accrued["records"]] == [HELD]
        history = client.get(f"/worlds/{world}/territories/{HELD}/income-history").json()
        assert len(history) == 1
        owned = client.get(f"/worlds/{world}/families/{family}/territories").json()
        assert [t["territory_id"] for t in owned] == [HELD]
