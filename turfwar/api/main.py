"""
FastAPI backend for the turf war service.
Provides REST endpoints for the territory grid, wars, player actions and income.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from turfwar.config import settings
from turfwar.engine import income, queries
from turfwar.engine.actions import Action, ActionType
from turfwar.engine.collaborators import Capability, FamilyRank
from turfwar.engine.definitions import TerritoryRegistry, build_registry
from turfwar.engine.errors import TerritoryWarError
from turfwar.engine.state import WorldState
from turfwar.engine.utils import initialize_world_state, make_rng
from turfwar.engine.war import get_war as lookup_war
from turfwar.service import TerritoryWarService

from .collaborators import DbMembershipDirectory, DbResourceLedger, membership_from_row
from .database import SessionLocal, get_db, init_db
from .models import FamilyMember, PlayerResources, World

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Turf War API",
    description="Territory control and multi-phase family wars",
    version="1.0.0",
)

# CORS configuration for frontend
CORS_ORIGINS = settings.cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS = {
    "not_found": 404,
    "invalid_transition": 409,
    "already_contested": 409,
    "ineligible": 403,
    "insufficient_resources": 402,
}


@app.middleware("http")
async def log_requests(request, call_next):
    """Log method and path so 500s can be traced to the failing endpoint."""
    method = getattr(request, "method", "?")
    url = getattr(request, "url", None)
    path = url.path if url else "?"
    try:
        response = await call_next(request)
        if response.status_code >= 500:
            logger.error("[%d] %s %s", response.status_code, method, path)
        return response
    except Exception:
        logger.exception("[500] %s %s (exception)", method, path)
        raise


@app.exception_handler(TerritoryWarError)
async def territory_war_error_handler(request, exc: TerritoryWarError):
    return JSONResponse(status_code=ERROR_STATUS.get(exc.code, 400), content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": "invalid_request"})


# Shared collaborator stand-ins
directory = DbMembershipDirectory()
resources = DbResourceLedger()

# In-memory cache of loaded worlds (also persisted in DB)
worlds: dict[str, TerritoryWarService] = {}
_worlds_lock = threading.Lock()
# Per-world lock so the snapshot written last is always the newest one
_save_locks: dict[str, threading.Lock] = {}

_ticker_stop = threading.Event()


# ===== Pydantic Models =====

class CreateWorldRequest(BaseModel):
    name: str
    map_seed: int | None = None
    # territory_id -> {"family_id", "control_percentage", "defense_points", ...}
    starting_owners: dict[str, dict[str, Any]] | None = None


class PlayerRequest(BaseModel):
    player_id: str


class DefenseRequest(BaseModel):
    player_id: str
    defense_points: int = Field(default=0, ge=0)
    guards: int = Field(default=0, ge=0)
    fortification_levels: int = Field(default=0, ge=0)


class ActionRequest(BaseModel):
    type: ActionType
    player_id: str
    war_id: str | None = None
    territory_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    action_id: str | None = None


class TickRequest(BaseModel):
    now: datetime | None = None


class MemberRequest(BaseModel):
    family_id: str
    rank: FamilyRank = FamilyRank.ASSOCIATE
    capabilities: list[Capability] = Field(default_factory=list)


class ResourcesRequest(BaseModel):
    energy: int = Field(default=0, ge=0)
    cash: int = Field(default=0, ge=0)
    items: dict[str, int] = Field(default_factory=dict)


# ===== World loading =====

def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_service(registry: TerritoryRegistry, state: WorldState) -> TerritoryWarService:
    return TerritoryWarService(
        registry,
        state=state,
        directory=directory,
        resources=resources,
        rules=settings.rules,
        rng=make_rng(settings.rng_seed),
    )


def get_world(world_id: str, db: Session) -> TerritoryWarService:
    """Get a world's service from cache, or load it from DB; raise 404 if not found."""
    service = worlds.get(world_id)
    if service is not None:
        return service
    row = db.query(World).filter(World.id == world_id).first()
    if not row:
        raise HTTPException(status_code=404, detail=f"World {world_id} not found")
    try:
        registry = TerritoryRegistry.from_snapshot(json.loads(row.config))
        state = WorldState.from_json(row.state)
    except (TypeError, ValueError, KeyError):
        logger.exception("World %s has corrupt stored state", world_id)
        raise HTTPException(status_code=404, detail=f"World {world_id} not found")
    with _worlds_lock:
        # Another request may have loaded it meanwhile
        service = worlds.setdefault(world_id, _new_service(registry, state))
        _save_locks.setdefault(world_id, threading.Lock())
    return service


def save_world(world_id: str, service: TerritoryWarService, db: Session) -> None:
    """Persist the world's current state."""
    with _save_locks.setdefault(world_id, threading.Lock()):
        snapshot = service.snapshot()
        row = db.query(World).filter(World.id == world_id).first()
        if row:
            row.state = snapshot.to_json(indent=None)
            db.commit()


def _events(events) -> list[dict[str, Any]]:
    return [e.to_dict() for e in events]


def _tick_all_worlds() -> None:
    while not _ticker_stop.wait(settings.tick_interval_seconds):
        for world_id, service in list(worlds.items()):
            try:
                events = service.tick()
                if events:
                    with SessionLocal() as db:
                        save_world(world_id, service, db)
            except Exception:
                logger.exception("Scheduled tick failed for world %s", world_id)


@app.on_event("startup")
def on_startup():
    init_db()
    if settings.tick_interval_seconds > 0:
        _ticker_stop.clear()
        threading.Thread(target=_tick_all_worlds, name="turfwar-ticker", daemon=True).start()
        logger.info("Background ticker running every %ss", settings.tick_interval_seconds)


@app.on_event("shutdown")
def on_shutdown():
    _ticker_stop.set()


# ===== API Endpoints =====

@app.get("/")
def root():
    return {"message": "Turf War API", "version": "1.0.0"}


# ----- Worlds -----

@app.post("/worlds")
def create_world(request: CreateWorldRequest, db: Session = Depends(get_db)):
    """Create a world with a generated city map. Returns its id and territory count."""
    seed = request.map_seed if request.map_seed is not None else settings.default_map_seed
    registry = build_registry(seed=seed)
    state = initialize_world_state(
        registry, datetime.now(timezone.utc), request.starting_owners, settings.rules,
    )
    world_id = str(uuid.uuid4())
    row = World(
        id=world_id,
        name=request.name,
        map_seed=seed,
        config=json.dumps(registry.to_snapshot()),
        state=state.to_json(indent=None),
    )
    db.add(row)
    db.commit()
    with _worlds_lock:
        worlds[world_id] = _new_service(registry, state)
        _save_locks[world_id] = threading.Lock()
    logger.info("Created world %s (%s) with map seed %d", world_id, request.name, seed)
    return {"world_id": world_id, "name": request.name, "map_seed": seed, "territories": len(registry.territories)}


@app.get("/worlds")
def list_worlds(db: Session = Depends(get_db)):
    rows = db.query(World).order_by(World.created_at.desc()).all()
    return [
        {
            "world_id": r.id,
            "name": r.name,
            "map_seed": r.map_seed,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]


@app.get("/worlds/{world_id}/territories")
def get_grid(world_id: str, db: Session = Depends(get_db)):
    """Every territory with its control snapshot, in grid order."""
    service = get_world(world_id, db)
    return queries.get_grid_snapshot(service.snapshot(), service.registry, service.rules)


@app.get("/worlds/{world_id}/territories/{territory_id}")
def get_territory(world_id: str, territory_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_territory_view(service.snapshot(), service.registry, territory_id, service.rules)


@app.get("/worlds/{world_id}/territories/{territory_id}/war")
def get_territory_war(world_id: str, territory_id: str, db: Session = Depends(get_db)):
    """Active war on a territory with phase, pressures and top contributors; null when at peace."""
    service = get_world(world_id, db)
    return {"war": queries.get_active_war(service.snapshot(), service.registry, territory_id)}


@app.get("/worlds/{world_id}/territories/{territory_id}/income-history")
def get_territory_income_history(world_id: str, territory_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    service.registry.get(territory_id)
    return [r.to_dict() for r in income.income_history(service.snapshot(), territory_id=territory_id)]


@app.post("/worlds/{world_id}/territories/{territory_id}/declare-war")
def do_declare_war(world_id: str, territory_id: str, request: PlayerRequest, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    war, events = service.declare_war(request.player_id, territory_id)
    save_world(world_id, service, db)
    return {"war": queries.get_war_summary(war), "events": _events(events)}


@app.post("/worlds/{world_id}/territories/{territory_id}/claim")
def do_claim(world_id: str, territory_id: str, request: PlayerRequest, db: Session = Depends(get_db)):
    """Founding claim of an unclaimed territory by a family that holds none."""
    service = get_world(world_id, db)
    events = service.claim_territory(request.player_id, territory_id)
    save_world(world_id, service, db)
    return {
        "territory": queries.get_territory_view(service.snapshot(), service.registry, territory_id, service.rules),
        "events": _events(events),
    }


@app.post("/worlds/{world_id}/territories/{territory_id}/defense")
def do_invest_in_defense(world_id: str, territory_id: str, request: DefenseRequest, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    events = service.invest_in_defense(
        request.player_id, territory_id,
        defense_points=request.defense_points,
        guards=request.guards,
        fortification_levels=request.fortification_levels,
    )
    save_world(world_id, service, db)
    return {
        "territory": queries.get_territory_view(service.snapshot(), service.registry, territory_id, service.rules),
        "events": _events(events),
    }


# ----- Wars -----

@app.get("/worlds/{world_id}/wars")
def get_wars(world_id: str, family_id: str | None = None, active_only: bool = False, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_wars(service.snapshot(), family_id=family_id, active_only=active_only)


@app.get("/worlds/{world_id}/wars/{war_id}")
def get_war_detail(world_id: str, war_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    snapshot = service.snapshot()
    war = lookup_war(snapshot, war_id)
    out = queries.get_war_summary(war)
    out["transitions"] = queries.get_war_transitions(snapshot, war_id)
    return out


@app.get("/worlds/{world_id}/wars/{war_id}/events")
def get_war_events(world_id: str, war_id: str, since: int = 0, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_war_events(service.snapshot(), war_id, since_sequence=since)


@app.get("/worlds/{world_id}/wars/{war_id}/participants")
def get_war_participants(world_id: str, war_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_participants(service.snapshot(), war_id)


@app.get("/worlds/{world_id}/wars/{war_id}/missions")
def get_war_missions(world_id: str, war_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_available_missions(service.snapshot(), service.registry, war_id)


@app.post("/worlds/{world_id}/wars/{war_id}/cancel")
def do_cancel_war(world_id: str, war_id: str, request: PlayerRequest, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    events = service.cancel_war(request.player_id, war_id)
    save_world(world_id, service, db)
    return {"events": _events(events)}


# ----- Actions -----

def _action_from_request(request: ActionRequest) -> Action:
    return Action(
        type=request.type,
        player_id=request.player_id,
        war_id=request.war_id,
        territory_id=request.territory_id,
        payload=dict(request.payload),
        action_id=request.action_id,
    )


@app.post("/worlds/{world_id}/actions")
def do_action(world_id: str, request: ActionRequest, db: Session = Depends(get_db)):
    """Submit a player action (scout, sabotage, showdown, supply, guard_duty, consolidate)."""
    service = get_world(world_id, db)
    result, events = service.submit_action(_action_from_request(request))
    save_world(world_id, service, db)
    return {"result": result.to_dict(), "events": _events(events)}


@app.post("/worlds/{world_id}/actions/validate")
def do_validate_action(world_id: str, request: ActionRequest, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return service.validate_action(_action_from_request(request)).to_dict()


@app.post("/worlds/{world_id}/tick")
def do_tick(world_id: str, request: TickRequest | None = None, db: Session = Depends(get_db)):
    """Advance every active war to now. For an external scheduler when the built-in ticker is off."""
    service = get_world(world_id, db)
    now = _as_utc(request.now) if request is not None else None
    events = service.tick(now)
    save_world(world_id, service, db)
    return {"events": _events(events)}


# ----- Income -----

@app.post("/worlds/{world_id}/income/accrue")
def do_accrue_income(world_id: str, request: TickRequest | None = None, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    now = _as_utc(request.now) if request is not None else None
    records, events = service.accrue_income(now)
    save_world(world_id, service, db)
    return {"records": [r.to_dict() for r in records], "events": _events(events)}


@app.get("/worlds/{world_id}/families/{family_id}/income")
def get_family_income(world_id: str, family_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return service.family_report(family_id).to_dict()


@app.get("/worlds/{world_id}/families/{family_id}/territories")
def get_family_territories(world_id: str, family_id: str, db: Session = Depends(get_db)):
    service = get_world(world_id, db)
    return queries.get_family_territories(service.snapshot(), service.registry, family_id)


# ----- Collaborator stand-ins -----

@app.put("/members/{player_id}")
def put_member(player_id: str, request: MemberRequest, db: Session = Depends(get_db)):
    row = db.get(FamilyMember, player_id)
    if row is None:
        row = FamilyMember(player_id=player_id)
        db.add(row)
    row.family_id = request.family_id
    row.rank = request.rank.value
    row.capabilities = json.dumps([c.value for c in request.capabilities])
    db.commit()
    m = membership_from_row(row)
    return {
        "player_id": m.player_id,
        "family_id": m.family_id,
        "rank": m.rank.value,
        "capabilities": sorted(c.value for c in m.capabilities),
    }


@app.delete("/members/{player_id}")
def delete_member(player_id: str, db: Session = Depends(get_db)):
    row = db.get(FamilyMember, player_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Player {player_id} has no family")
    db.delete(row)
    db.commit()
    return {"deleted": player_id}


@app.put("/resources/{player_id}")
def put_resources(player_id: str, request: ResourcesRequest, db: Session = Depends(get_db)):
    row = db.get(PlayerResources, player_id)
    if row is None:
        row = PlayerResources(player_id=player_id)
        db.add(row)
    row.energy = request.energy
    row.cash = request.cash
    row.items = json.dumps(request.items)
    db.commit()
    return {"player_id": player_id, "energy": row.energy, "cash": row.cash, "items": request.items}


@app.get("/resources/{player_id}")
def get_resources(player_id: str, db: Session = Depends(get_db)):
    row = db.get(PlayerResources, player_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No resources for player {player_id}")
    return {
        "player_id": player_id,
        "energy": row.energy,
        "cash": row.cash,
        "items": json.loads(row.items or "{}"),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
