"""
Database-backed membership directory and resource ledger.
Stand-ins for the real player/family services, seeded through PUT /members and
PUT /resources.
"""

import json
import threading
from collections import Counter

from turfwar.engine.collaborators import Capability, Cost, FamilyRank, Membership

from .database import SessionLocal
from .models import FamilyMember, PlayerResources


def _load_json(raw: str | None, default):
    try:
        value = json.loads(raw) if raw else default
    except (TypeError, json.JSONDecodeError):
        return default
    return value if isinstance(value, type(default)) else default


def membership_from_row(row: FamilyMember) -> Membership:
    capabilities = set()
    for flag in _load_json(row.capabilities, []):
        try:
            capabilities.add(Capability(flag))
        except ValueError:
            continue
    try:
        rank = FamilyRank(row.rank)
    except ValueError:
        rank = FamilyRank.ASSOCIATE
    return Membership(
        player_id=row.player_id,
        family_id=row.family_id,
        rank=rank,
        capabilities=frozenset(capabilities),
    )


class DbMembershipDirectory:
    def get_membership(self, player_id: str) -> Membership | None:
        with SessionLocal() as db:
            row = db.get(FamilyMember, player_id)
            return membership_from_row(row) if row is not None else None


class DbResourceLedger:
    """Deducts costs in one transaction per spend; the lock keeps check-and-deduct atomic on SQLite."""

    def __init__(self):
        self._lock = threading.Lock()

    def spend(self, player_id: str, cost: Cost) -> bool:
        if cost.is_free:
            return True
        with self._lock, SessionLocal() as db:
            row = db.query(PlayerResources).filter(PlayerResources.player_id == player_id).with_for_update().first()
            if row is None:
                return False
            if row.energy < cost.energy or row.cash < cost.cash:
                return False
            items = _load_json(row.items, {})
            needed = Counter(cost.items)
            if any(int(items.get(item, 0)) < count for item, count in needed.items()):
                return False
            row.energy -= cost.energy
            row.cash -= cost.cash
            for item, count in needed.items():
                items[item] = int(items.get(item, 0)) - count
            row.items = json.dumps(items)
            db.commit()
            return True
