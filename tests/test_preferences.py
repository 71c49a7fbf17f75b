"""Tests for SqlPreferenceStore and the preferences table."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from duckling.errors import PersistenceFailure
from duckling.storage.models import Preference
from duckling.storage.preferences import SqlPreferenceStore


class TestTypedValues:
    async def test_missing_keys_read_none(self, store):
        assert await store.get_double("nope") is None
        assert await store.get_int("nope") is None
        assert await store.get_bool("nope") is None
        assert await store.get_string("nope") is None

    async def test_round_trips(self, store):
        await store.set_double("hunger", 42.125)
        await store.set_int("lastUpdate", 1767268800000)
        await store.set_bool("isDead", True)
        await store.set_string("language", "pt_BR")

        assert await store.get_double("hunger") == 42.125
        assert await store.get_int("lastUpdate") == 1767268800000
        assert await store.get_bool("isDead") is True
        assert await store.get_string("language") == "pt_BR"

    async def test_overwrite(self, store):
        await store.set_string("duck_name", "Bill")
        await store.set_string("duck_name", "Daisy")
        assert await store.get_string("duck_name") == "Daisy"

    async def test_set_many_is_one_write(self, store, db):
        await store.set_many({"hunger": 10.0, "isDead": False, "deathCause": "none"})
        async with db.session() as session:
            rows = (await session.execute(select(Preference.key, Preference.value))).all()
        assert dict(rows) == {"hunger": "10.0", "isDead": "false", "deathCause": "none"}

    async def test_remove(self, store):
        await store.set_string("conversation_history", "[]")
        await store.remove("conversation_history")
        await store.remove("conversation_history")  # idempotent
        assert await store.get_string("conversation_history") is None


class TestMalformedValues:
    async def test_bad_number_reads_none(self, store):
        await store.set_string("hunger", "lots")
        assert await store.get_double("hunger") is None
        assert await store.get_int("hunger") is None

    async def test_bad_bool_reads_none(self, store):
        await store.set_string("isDead", "maybe")
        assert await store.get_bool("isDead") is None


class TestFailures:
    async def test_closed_database_raises_persistence_failure(self, settings):
        from duckling.storage.database import Database

        database = Database(settings)
        # Schema never created: every statement fails
        store = SqlPreferenceStore(database)
        with pytest.raises(PersistenceFailure):
            await store.get_string("language")
        with pytest.raises(PersistenceFailure):
            await store.set_string("language", "en_US")
        with pytest.raises(PersistenceFailure):
            await store.remove("language")
        await database.disconnect()
