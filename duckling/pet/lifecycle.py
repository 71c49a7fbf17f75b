"""Lifecycle controller — life/death policy on top of the status engine.

State machine:

    ALIVE --[a need trips the death condition]--> DEAD
    DEAD  --[revive()]--> ALIVE

Death found while loading at startup is announced as ``pet_found_dead``
(collaborators show it quietly); death during a live tick is announced once
as ``pet_died``. Attention and warning signals are edge-triggered: they fire
when the pet enters the level, not on every tick.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Literal

from duckling.events import (
    CARE_GIVEN,
    DEATH_WARNING,
    NEEDS_ATTENTION,
    PET_DIED,
    PET_FOUND_DEAD,
    PET_REVIVED,
    STATUS_CHANGED,
    Event,
    EventBus,
)
from duckling.i18n import Localizer
from duckling.pet.schemas import CAUSE_BY_NEED, DeathCause, Need, PetStatus
from duckling.pet.status import StatusEngine

logger = logging.getLogger(__name__)

AlertLevel = Literal["ok", "attention", "warning"]

_NEED_LINE: dict[Need, str] = {
    "hunger": "hungry",
    "cleanliness": "dirty",
    "happiness": "sad",
}

_CARE_MESSAGE = {
    "feed": "fed_message",
    "clean": "cleaned_message",
    "play": "played_message",
}


def snapshot(status: PetStatus) -> dict[str, Any]:
    """JSON-ready view of a status, including the derived mood."""
    data = status.model_dump(mode="json")
    data["mood"] = status.mood
    return data


class LifecycleController:
    """Wraps StatusEngine with revival semantics and attention/death signalling."""

    def __init__(self, engine: StatusEngine, bus: EventBus, localizer: Localizer) -> None:
        self.engine = engine
        self._bus = bus
        self._i18n = localizer
        self._alert: AlertLevel = "ok"

    @property
    def status(self) -> PetStatus:
        return self.engine.status

    @property
    def alert_level(self) -> AlertLevel:
        return self._alert

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    async def startup(self) -> PetStatus:
        """Load persisted state and catch up on time spent offline."""
        await self.engine.load()
        now = self.engine.now()
        await self.engine.tick(now)
        await self.engine.check_death(now)
        await self.engine.save()

        status = self.engine.status
        if status.is_dead:
            logger.info("Pet found dead at startup (cause=%s)", status.death_cause)
            await self._emit(PET_FOUND_DEAD, self._death_payload(status))
        else:
            await self._update_alert(status, now)
        await self._emit(STATUS_CHANGED, snapshot(status))
        return status

    async def advance(self, now: datetime | None = None) -> bool:
        """Tick and run the death check. Returns True if the pet died during this call."""
        now = now or self.engine.now()
        was_dead = self.engine.is_dead
        await self.engine.tick(now)
        await self.engine.check_death(now)

        status = self.engine.status
        await self._emit(STATUS_CHANGED, snapshot(status))
        if status.is_dead:
            if not was_dead:
                await self._emit(PET_DIED, self._death_payload(status))
                return True
            return False
        await self._update_alert(status, now)
        return False

    # ------------------------------------------------------------------
    # Care and revival
    # ------------------------------------------------------------------

    async def feed(self) -> PetStatus:
        return await self._care("feed", self.engine.feed)

    async def clean(self) -> PetStatus:
        return await self._care("clean", self.engine.clean)

    async def play(self) -> PetStatus:
        return await self._care("play", self.engine.play)

    async def revive(self) -> PetStatus:
        status = await self.engine.revive()
        self._alert = "ok"
        await self._emit(PET_REVIVED, snapshot(status))
        await self._emit(STATUS_CHANGED, snapshot(status))
        return status

    async def _care(self, action: str, operation) -> PetStatus:
        if self.engine.is_dead:
            return self.engine.status
        status = await operation()
        await self._emit(CARE_GIVEN, {
            "action": action,
            "message": self._i18n.get(_CARE_MESSAGE[action]),
        })
        await self._emit(STATUS_CHANGED, snapshot(status))
        await self._update_alert(status, self.engine.now())
        return status

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def needs_attention(self, status: PetStatus | None = None) -> bool:
        status = status or self.engine.status
        if status.is_dead:
            return False
        return status.lowest_need_below(self.engine.policy.attention_threshold) is not None

    def attention_message(self, status: PetStatus | None = None) -> str | None:
        """Localized complaint for the first need below the attention threshold."""
        status = status or self.engine.status
        if status.is_dead:
            return None
        need = status.lowest_need_below(self.engine.policy.attention_threshold)
        return self._i18n.get(_NEED_LINE[need]) if need else None

    def warning(self, status: PetStatus | None = None) -> tuple[DeathCause, str] | None:
        """Cause and localized warning for the first need below the warning threshold."""
        status = status or self.engine.status
        if status.is_dead:
            return None
        need = status.lowest_need_below(self.engine.policy.warning_threshold)
        if need is None:
            return None
        cause = CAUSE_BY_NEED[need]
        return cause, self._i18n.get(f"warning_{cause}")

    def is_death_imminent(self, status: PetStatus | None = None, now: datetime | None = None) -> bool:
        """A need is below the warning threshold and uncared for longer than the warning window."""
        status = status or self.engine.status
        if status.is_dead:
            return False
        now = now or self.engine.now()
        policy = self.engine.policy
        window = timedelta(hours=policy.warning_window_hours)
        return any(
            status.level(need) < policy.warning_threshold
            and now - status.last_care(need) > window
            for need in CAUSE_BY_NEED
        )

    def death_message(self, cause: DeathCause | None = None) -> str:
        cause = cause or self.engine.status.death_cause or "hunger"
        return self._i18n.get(f"died_{cause}")

    def death_explanation(self, cause: DeathCause | None = None) -> str:
        cause = cause or self.engine.status.death_cause
        if cause is None:
            return self._i18n.get("explanation_adequate_care")
        return self._i18n.get(f"explanation_{cause}")

    async def _update_alert(self, status: PetStatus, now: datetime) -> None:
        warning = self.warning(status)
        if warning is not None:
            level: AlertLevel = "warning"
        elif self.needs_attention(status):
            level = "attention"
        else:
            level = "ok"

        previous, self._alert = self._alert, level
        if level == previous or level == "ok":
            return
        if level == "warning":
            cause, message = warning
            await self._emit(DEATH_WARNING, {
                "cause": cause,
                "message": message,
                "imminent": self.is_death_imminent(status, now),
            })
        elif previous == "ok":
            await self._emit(NEEDS_ATTENTION, {"message": self.attention_message(status)})

    def _death_payload(self, status: PetStatus) -> dict[str, Any]:
        return {
            "cause": status.death_cause,
            "message": self.death_message(status.death_cause),
            "explanation": self.death_explanation(status.death_cause),
        }

    async def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        await self._bus.emit(Event(type=event_type, data=data))
