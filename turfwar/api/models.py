"""
SQLAlchemy models for worlds and the collaborator stand-ins
(family membership and player resources).
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Text

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class World(Base):
    __tablename__ = "worlds"

    id = Column(String(36), primary_key=True)  # uuid
    name = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    map_seed = Column(Integer, nullable=True)  # null when loaded from a territories file
    config = Column(Text, nullable=False)  # JSON snapshot of territory + mission definitions
    state = Column(Text, nullable=False)  # JSON string of full WorldState


class FamilyMember(Base):
    __tablename__ = "family_members"

    player_id = Column(String(64), primary_key=True)
    family_id = Column(String(64), nullable=False, index=True)
    rank = Column(String(32), nullable=False, default="associate")
    capabilities = Column(Text, nullable=False, default="[]")  # JSON array of capability flags


class PlayerResources(Base):
    __tablename__ = "player_resources"

    player_id = Column(String(64), primary_key=True)
    energy = Column(Integer, nullable=False, default=0)
    cash = Column(Integer, nullable=False, default=0)
    items = Column(Text, nullable=False, default="{}")  # JSON object item -> count
