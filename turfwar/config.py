"""
Single place for tunable game configuration.
Every numeric rule the engine uses lives in GameRules; the defaults below are a
reasonable policy and can be overridden through environment variables
(TURFWAR_ prefix, nested keys separated by "__") or a .env file.
"""

import os
from typing import Annotated

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PhaseWindow(BaseModel):
    """Duration bounds (hours) for one war phase, interpolated by control difficulty."""
    min_hours: Annotated[float, Field(gt=0)]
    max_hours: Annotated[float, Field(gt=0)]


class ActionRule(BaseModel):
    """Cost, odds and yield of one player action type."""
    energy_cost: Annotated[int, Field(ge=0)] = 0
    success_rate: Annotated[float, Field(ge=0, le=100)] = 100.0
    success_pressure: int = 0
    failure_pressure: int = 0
    cooldown_minutes: Annotated[float, Field(ge=0)] = 0.0
    contribution: Annotated[int, Field(ge=0)] = 0


def _default_phase_windows() -> dict[str, PhaseWindow]:
    return {
        "scouting": PhaseWindow(min_hours=2, max_hours=6),
        "sabotage": PhaseWindow(min_hours=6, max_hours=12),
        "showdown": PhaseWindow(min_hours=12, max_hours=48),
        "consolidation": PhaseWindow(min_hours=6, max_hours=24),
    }


def _default_action_rules() -> dict[str, ActionRule]:
    return {
        "scout": ActionRule(
            energy_cost=5, success_rate=70, success_pressure=2,
            failure_pressure=0, cooldown_minutes=30, contribution=5,
        ),
        "showdown": ActionRule(
            energy_cost=10, success_rate=80, success_pressure=5,
            failure_pressure=-1, cooldown_minutes=15, contribution=10,
        ),
        "supply": ActionRule(
            energy_cost=5, success_rate=100, success_pressure=1,
            failure_pressure=0, cooldown_minutes=10, contribution=3,
        ),
        "guard_duty": ActionRule(
            energy_cost=5, success_rate=100, success_pressure=2,
            failure_pressure=0, cooldown_minutes=60, contribution=4,
        ),
        "consolidate": ActionRule(
            energy_cost=5, success_rate=90, success_pressure=0,
            failure_pressure=0, cooldown_minutes=30, contribution=5,
        ),
    }


class GameRules(BaseModel):
    """Numeric policy for income, war phases and player actions."""

    # Income
    adjacency_bonus_rate: Annotated[float, Field(ge=0)] = 0.10
    fortification_rate: Annotated[float, Field(ge=0)] = 0.05

    # Phase timing
    phase_windows: dict[str, PhaseWindow] = Field(default_factory=_default_phase_windows)
    unclaimed_duration_factor: Annotated[float, Field(gt=0, le=1)] = 0.5

    # Thresholds
    victory_threshold_base: int = 40
    victory_threshold_per_difficulty: int = 5
    sabotage_threshold_per_difficulty: Annotated[int, Field(ge=0)] = 10

    # Scouting
    intel_gain: Annotated[int, Field(ge=0)] = 10
    counter_intel_loss: Annotated[int, Field(ge=0)] = 5
    intel_success_bonus: Annotated[float, Field(ge=0)] = 0.25

    # Showdown
    showdown_contribution_divisor: Annotated[int, Field(gt=0)] = 20
    showdown_contribution_bonus_cap: Annotated[int, Field(ge=0)] = 5
    garrison_per_defense_point: Annotated[float, Field(ge=0)] = 0.05
    garrison_per_fortification: Annotated[int, Field(ge=0)] = 3
    garrison_per_guard: Annotated[int, Field(ge=0)] = 1

    # Consolidation and transfer
    consolidation_defense_gain: Annotated[int, Field(ge=0)] = 5
    transfer_fortification_baseline: Annotated[int, Field(ge=0, le=5)] = 1
    transfer_defense_seed: Annotated[int, Field(ge=0)] = 10
    founding_claim_percentage: Annotated[float, Field(gt=0, le=100)] = 60.0
    post_war_protection_hours: Annotated[float, Field(ge=0)] = 0.0

    # Out-of-war defense investment prices (cash)
    defense_point_cost: Annotated[int, Field(ge=0)] = 10
    fortification_cost: Annotated[int, Field(ge=0)] = 500
    guard_cost: Annotated[int, Field(ge=0)] = 100

    actions: dict[str, ActionRule] = Field(default_factory=_default_action_rules)

    def action_rule(self, key: str) -> ActionRule:
        return self.actions.get(key) or ActionRule()


def _default_database_url() -> str:
    db_dir = os.path.dirname(os.path.abspath(__file__))
    return f"sqlite:///{os.path.join(db_dir, 'turfwar.db')}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TURFWAR_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default_factory=_default_database_url)
    default_map_seed: int = 1931
    # None = nondeterministic action rolls
    rng_seed: int | None = None
    # 0 disables the in-process scheduler; an external cron can POST /worlds/{id}/tick instead
    tick_interval_seconds: Annotated[float, Field(ge=0)] = 0.0
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )

    rules: GameRules = Field(default_factory=GameRules)


settings = Settings()
