"""
Contracts for the external collaborators this core consumes:
player identity + family membership + capability flags, and the player
energy/currency ledger that pays for actions.
In-memory implementations are provided for tests, demos and the API layer.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class FamilyRank(str, Enum):
    ASSOCIATE = "associate"
    SOLDIER = "soldier"
    CAPOREGIME = "caporegime"
    UNDERBOSS = "underboss"
    BOSS = "boss"

    @property
    def level(self) -> int:
        return _RANK_ORDER.index(self)

    def at_least(self, other: "FamilyRank") -> bool:
        return self.level >= other.level


_RANK_ORDER = [
    FamilyRank.ASSOCIATE,
    FamilyRank.SOLDIER,
    FamilyRank.CAPOREGIME,
    FamilyRank.UNDERBOSS,
    FamilyRank.BOSS,
]


class Capability(str, Enum):
    """Family permission flags relevant to territory and war actions."""
    VIEW_TERRITORIES = "can_view_territories"
    MANAGE_TERRITORIES = "can_manage_territories"
    DECLARE_WARS = "can_declare_wars"
    NEGOTIATE_PEACE = "can_negotiate_peace"
    ASSIGN_GUARDS = "can_assign_guards"
    SET_DEFENSES = "can_set_defenses"


@dataclass(frozen=True)
class Membership:
    player_id: str
    family_id: str
    rank: FamilyRank = FamilyRank.ASSOCIATE
    capabilities: frozenset[Capability] = frozenset()

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class Cost:
    energy: int = 0
    cash: int = 0
    items: tuple[str, ...] = ()

    @property
    def is_free(self) -> bool:
        return self.energy == 0 and self.cash == 0 and not self.items


class MembershipDirectory(Protocol):
    def get_membership(self, player_id: str) -> Membership | None:
        ...


class ResourceLedger(Protocol):
    def spend(self, player_id: str, cost: Cost) -> bool:
        """Deduct cost atomically. Return False (deducting nothing) if the player cannot pay."""
        ...


class InMemoryMembershipDirectory:
    def __init__(self, memberships: list[Membership] | None = None):
        self._members: dict[str, Membership] = {}
        for m in memberships or []:
            self.add(m)

    def add(self, membership: Membership) -> None:
        self._members[membership.player_id] = membership

    def remove(self, player_id: str) -> None:
        self._members.pop(player_id, None)

    def get_membership(self, player_id: str) -> Membership | None:
        return self._members.get(player_id)


@dataclass
class PlayerWallet:
    energy: int = 0
    cash: int = 0
    items: dict[str, int] = field(default_factory=dict)


class InMemoryResourceLedger:
    def __init__(self):
        self._wallets: dict[str, PlayerWallet] = {}
        self._lock = threading.Lock()

    def set_wallet(self, player_id: str, energy: int = 0, cash: int = 0, items: dict[str, int] | None = None) -> None:
        with self._lock:
            self._wallets[player_id] = PlayerWallet(energy=energy, cash=cash, items=dict(items or {}))

    def wallet(self, player_id: str) -> PlayerWallet:
        with self._lock:
            w = self._wallets.get(player_id) or PlayerWallet()
            return PlayerWallet(energy=w.energy, cash=w.cash, items=dict(w.items))

    def spend(self, player_id: str, cost: Cost) -> bool:
        if cost.is_free:
            return True
        with self._lock:
            w = self._wallets.get(player_id)
            if w is None:
                return False
            if w.energy < cost.energy or w.cash < cost.cash:
                return False
            needed = Counter(cost.items)
            if any(w.items.get(item, 0) < count for item, count in needed.items()):
                return False
            w.energy -= cost.energy
            w.cash -= cost.cash
            for item, count in needed.items():
                w.items[item] -= count
            return True
