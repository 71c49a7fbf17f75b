"""Status engine — owns the pet's needs, applies decay and detects death.

The math lives in module-level functions over frozen PetStatus values so it
can never fail or touch I/O. StatusEngine holds the current status, applies
those functions and persists the result after every mutation. A persistence
failure is logged and the in-memory status stays authoritative.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from duckling.errors import PersistenceFailure
from duckling.pet.schemas import (
    CAUSE_BY_NEED,
    CARE_FIELD,
    MAX_LEVEL,
    MIN_LEVEL,
    NEED_PRIORITY,
    DeathCause,
    LifePolicy,
    Need,
    PetStatus,
)
from duckling.storage.preferences import PreferenceStore
from duckling.utils import Clock, from_millis, hours_between, to_millis, utcnow

logger = logging.getLogger(__name__)

# Persisted preference keys
KEY_LEVEL: dict[Need, str] = {
    "hunger": "hunger",
    "cleanliness": "cleanliness",
    "happiness": "happiness",
}
KEY_LAST_UPDATE = "lastUpdate"
KEY_LAST_CARE: dict[Need, str] = {
    "hunger": "lastFeed",
    "cleanliness": "lastClean",
    "happiness": "lastPlay",
}
KEY_IS_DEAD = "isDead"
KEY_DEATH_CAUSE = "deathCause"
NO_CAUSE = "none"


def clamp(value: float) -> float:
    return max(MIN_LEVEL, min(MAX_LEVEL, value))


def _replace(status: PetStatus, **changes) -> PetStatus:
    # Re-validate so the range and cause invariants hold on every copy
    return PetStatus(**{**status.model_dump(), **changes})


# ----------------------------------------------------------------------
# Pure status math
# ----------------------------------------------------------------------


def decay(status: PetStatus, policy: LifePolicy, now: datetime) -> PetStatus:
    """Linear decay since last_update. Dead pets and non-positive spans are left as is."""
    if status.is_dead:
        return status
    hours = hours_between(status.last_update, now)
    if hours <= 0:
        return status
    changes: dict = {
        need: clamp(status.level(need) - policy.decay_rate(need) * hours)
        for need in NEED_PRIORITY
    }
    changes["last_update"] = now
    return _replace(status, **changes)


def apply_care(status: PetStatus, need: Need, bonus: float, now: datetime) -> PetStatus:
    """Raise one need by bonus (capped at 100) and stamp its care time."""
    if status.is_dead:
        return status
    return _replace(
        status,
        **{need: clamp(status.level(need) + bonus), CARE_FIELD[need]: now},
    )


def find_death_cause(status: PetStatus, policy: LifePolicy, now: datetime) -> DeathCause | None:
    """Cause of death for the first tripping need, or None if the pet survives.

    A need trips when it is at zero, or when it is at or below the death
    threshold and its last care is older than the neglect window.
    """
    if status.is_dead:
        return status.death_cause
    neglect = timedelta(hours=policy.neglect_window_hours)
    for need in NEED_PRIORITY:
        level = status.level(need)
        if level <= MIN_LEVEL:
            return CAUSE_BY_NEED[need]
        if level <= policy.death_threshold and now - status.last_care(need) > neglect:
            return CAUSE_BY_NEED[need]
    return None


class StatusEngine:
    """Holds the live PetStatus and persists every mutation."""

    def __init__(
        self,
        store: PreferenceStore,
        policy: LifePolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self.policy = policy or LifePolicy()
        self._clock = clock
        self._status = PetStatus.fresh(clock())

    @property
    def status(self) -> PetStatus:
        return self._status

    @property
    def is_dead(self) -> bool:
        return self._status.is_dead

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> PetStatus:
        """Apply decay up to now."""
        updated = decay(self._status, self.policy, now or self._clock())
        if updated is not self._status:
            await self._commit(updated)
        return self._status

    async def feed(self, now: datetime | None = None) -> PetStatus:
        return await self._care("hunger", self.policy.feed_bonus, now)

    async def clean(self, now: datetime | None = None) -> PetStatus:
        return await self._care("cleanliness", self.policy.clean_bonus, now)

    async def play(self, now: datetime | None = None) -> PetStatus:
        return await self._care("happiness", self.policy.play_bonus, now)

    async def check_death(self, now: datetime | None = None) -> DeathCause | None:
        """Kill the pet if a need trips the death condition. Returns the cause."""
        if self._status.is_dead:
            return self._status.death_cause
        cause = find_death_cause(self._status, self.policy, now or self._clock())
        if cause is not None:
            logger.info(
                "Pet died of %s (hunger=%.1f cleanliness=%.1f happiness=%.1f)",
                cause,
                self._status.hunger,
                self._status.cleanliness,
                self._status.happiness,
            )
            await self._commit(_replace(self._status, is_dead=True, death_cause=cause))
        return cause

    async def revive(self, now: datetime | None = None) -> PetStatus:
        """Unconditional reset to neutral needs, alive, timestamps at now."""
        await self._commit(PetStatus.fresh(now or self._clock()))
        logger.info("Pet revived")
        return self._status

    async def _care(self, need: Need, bonus: float, now: datetime | None) -> PetStatus:
        if self._status.is_dead:
            logger.debug("Ignoring care for %s: pet is dead", need)
            return self._status
        await self._commit(apply_care(self._status, need, bonus, now or self._clock()))
        return self._status

    async def _commit(self, status: PetStatus) -> None:
        self._status = status
        await self.save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> PetStatus:
        """Read the persisted status; missing values fall back to neutral defaults.

        Returns the loaded status without applying decay.
        """
        now = self._clock()
        try:
            levels = {need: await self._store.get_double(KEY_LEVEL[need]) for need in NEED_PRIORITY}
            last_update = await self._store.get_int(KEY_LAST_UPDATE)
            last_care = {need: await self._store.get_int(KEY_LAST_CARE[need]) for need in NEED_PRIORITY}
            is_dead = await self._store.get_bool(KEY_IS_DEAD)
            cause = await self._store.get_string(KEY_DEATH_CAUSE)
        except PersistenceFailure:
            logger.exception("Could not load pet status, starting fresh")
            self._status = PetStatus.fresh(now)
            return self._status

        def stamp(millis: int | None) -> datetime:
            return from_millis(millis) if millis is not None else now

        is_dead = bool(is_dead)
        death_cause: DeathCause | None = None
        if is_dead:
            # Older saves could leave a dead pet without a cause
            death_cause = cause if cause in CAUSE_BY_NEED.values() else "hunger"

        self._status = PetStatus(
            **{
                need: clamp(level if level is not None else 50.0)
                for need, level in levels.items()
            },
            last_update=stamp(last_update),
            **{CARE_FIELD[need]: stamp(millis) for need, millis in last_care.items()},
            is_dead=is_dead,
            death_cause=death_cause,
        )
        logger.debug("Loaded pet status: %s", self._status)
        return self._status

    async def save(self) -> bool:
        """Persist the current status. Failures are logged, never raised."""
        status = self._status
        values: dict = {KEY_LEVEL[need]: status.level(need) for need in NEED_PRIORITY}
        values[KEY_LAST_UPDATE] = to_millis(status.last_update)
        for need in NEED_PRIORITY:
            values[KEY_LAST_CARE[need]] = to_millis(status.last_care(need))
        values[KEY_IS_DEAD] = status.is_dead
        values[KEY_DEATH_CAUSE] = status.death_cause or NO_CAUSE
        try:
            await self._store.set_many(values)
        except PersistenceFailure:
            logger.warning("Could not persist pet status; keeping it in memory", exc_info=True)
            return False
        return True
