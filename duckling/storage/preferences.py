"""Typed key/value preferences on top of the async database.

Values are stored as text and converted on read, mirroring a
shared-preferences style API (get_double/get_int/get_bool/get_string and the
matching setters). Every database error surfaces as PersistenceFailure.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from duckling.errors import PersistenceFailure
from duckling.storage.database import Database
from duckling.storage.models import Preference

logger = logging.getLogger(__name__)

_TRUE = "true"
_FALSE = "false"

PreferenceValue = float | int | bool | str


class PreferenceStore(Protocol):
    """Read/write contract every persistence backend honours."""

    async def get_double(self, key: str) -> float | None: ...
    async def get_int(self, key: str) -> int | None: ...
    async def get_bool(self, key: str) -> bool | None: ...
    async def get_string(self, key: str) -> str | None: ...
    async def set_double(self, key: str, value: float) -> None: ...
    async def set_int(self, key: str, value: int) -> None: ...
    async def set_bool(self, key: str, value: bool) -> None: ...
    async def set_string(self, key: str, value: str) -> None: ...
    async def set_many(self, values: dict[str, PreferenceValue]) -> None: ...
    async def remove(self, key: str) -> None: ...


class SqlPreferenceStore:
    """PreferenceStore backed by the preferences table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    async def get_double(self, key: str) -> float | None:
        raw = await self._get(key)
        return _parse(key, raw, float)

    async def get_int(self, key: str) -> int | None:
        raw = await self._get(key)
        return _parse(key, raw, int)

    async def get_bool(self, key: str) -> bool | None:
        raw = await self._get(key)
        if raw is None:
            return None
        if raw not in (_TRUE, _FALSE):
            logger.warning("Ignoring non-boolean preference %s=%r", key, raw)
            return None
        return raw == _TRUE

    async def get_string(self, key: str) -> str | None:
        return await self._get(key)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    async def set_double(self, key: str, value: float) -> None:
        await self.set_many({key: float(value)})

    async def set_int(self, key: str, value: int) -> None:
        await self.set_many({key: int(value)})

    async def set_bool(self, key: str, value: bool) -> None:
        await self.set_many({key: bool(value)})

    async def set_string(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: dict[str, PreferenceValue]) -> None:
        """Write several typed values in one transaction."""
        try:
            async with self._db.session() as session:
                for key, value in values.items():
                    await session.merge(Preference(key=key, value=_encode(value)))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not write {sorted(values)}: {exc}") from exc

    async def remove(self, key: str) -> None:
        try:
            async with self._db.session() as session:
                await session.execute(delete(Preference).where(Preference.key == key))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not remove {key}: {exc}") from exc

    async def _get(self, key: str) -> str | None:
        try:
            async with self._db.session() as session:
                result = await session.execute(
                    select(Preference.value).where(Preference.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Could not read {key}: {exc}") from exc


def _encode(value: PreferenceValue) -> str:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return _TRUE if value else _FALSE
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _parse(key: str, raw: str | None, kind: type) -> float | int | None:
    if raw is None:
        return None
    try:
        return kind(raw)
    except ValueError:
        logger.warning("Ignoring malformed preference %s=%r", key, raw)
        return None
