"""Pydantic DTOs for the pet's state and balance policy.

PetStatus is a frozen value: every mutation produces a new, re-validated
instance. LifePolicy gathers every balance knob in one place.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Need = Literal["hunger", "cleanliness", "happiness"]
DeathCause = Literal["hunger", "dirty", "sadness"]
Mood = Literal["happy", "neutral", "sad", "critical", "dead"]

# Checked in this order; the first tripping need names the cause.
NEED_PRIORITY: tuple[Need, ...] = ("hunger", "cleanliness", "happiness")

CAUSE_BY_NEED: dict[Need, DeathCause] = {
    "hunger": "hunger",
    "cleanliness": "dirty",
    "happiness": "sadness",
}

# PetStatus field holding the last care time for each need
CARE_FIELD: dict[Need, str] = {
    "hunger": "last_fed",
    "cleanliness": "last_cleaned",
    "happiness": "last_played",
}

NEUTRAL_LEVEL = 50.0
MIN_LEVEL = 0.0
MAX_LEVEL = 100.0


class LifePolicy(BaseModel):
    """Balance knobs: decay, care bonuses and the death/attention thresholds."""

    model_config = ConfigDict(frozen=True)

    # Decay per hour
    hunger_decay: float = 10.0
    cleanliness_decay: float = 5.0
    happiness_decay: float = 7.0

    # Care bonuses
    feed_bonus: float = 30.0
    clean_bonus: float = 35.0
    play_bonus: float = 40.0

    death_threshold: float = 5.0
    neglect_window_hours: float = 24.0

    attention_threshold: float = 30.0
    warning_threshold: float = 20.0
    warning_window_hours: float = 20.0

    def decay_rate(self, need: Need) -> float:
        return {
            "hunger": self.hunger_decay,
            "cleanliness": self.cleanliness_decay,
            "happiness": self.happiness_decay,
        }[need]


class PetStatus(BaseModel):
    """Snapshot of the pet's needs, care timestamps and life state."""

    model_config = ConfigDict(frozen=True)

    hunger: float = Field(NEUTRAL_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)
    cleanliness: float = Field(NEUTRAL_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)
    happiness: float = Field(NEUTRAL_LEVEL, ge=MIN_LEVEL, le=MAX_LEVEL)

    last_update: datetime
    last_fed: datetime
    last_cleaned: datetime
    last_played: datetime

    is_dead: bool = False
    death_cause: DeathCause | None = None

    @model_validator(mode="after")
    def _cause_matches_life(self) -> PetStatus:
        if self.is_dead != (self.death_cause is not None):
            raise ValueError("death_cause must be set if and only if is_dead")
        return self

    @classmethod
    def fresh(cls, now: datetime) -> PetStatus:
        """Neutral status used on first run and on revival."""
        return cls(
            last_update=now,
            last_fed=now,
            last_cleaned=now,
            last_played=now,
        )

    def level(self, need: Need) -> float:
        return getattr(self, need)

    def last_care(self, need: Need) -> datetime:
        return getattr(self, CARE_FIELD[need])

    @property
    def mood(self) -> Mood:
        if self.is_dead:
            return "dead"
        average = (self.hunger + self.cleanliness + self.happiness) / 3
        if average > 70:
            return "happy"
        if average > 40:
            return "neutral"
        if average > 20:
            return "sad"
        return "critical"

    def lowest_need_below(self, threshold: float) -> Need | None:
        """First need (in priority order) strictly below threshold."""
        for need in NEED_PRIORITY:
            if self.level(need) < threshold:
                return need
        return None
