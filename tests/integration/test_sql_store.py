"""
SQL key-value store tests on in-memory and file-backed SQLite, including a
full guard cycle persisted through SQLAlchemy
"""

import asyncio
import os
import tempfile
import threading

import pytest

from stableguard.guard import StableGuard
from stableguard.models import TriggerType
from stableguard.storage import (
    CONFIG_KEY,
    RECORD_INDEX_KEY,
    SqlStore,
    StorageError,
    create_database_engine,
    risk_key,
    validate_database_url,
)
from tests.factories import FakeClock, healthy_source

pytestmark = pytest.mark.integration


@pytest.fixture
def sql_store():
    store = SqlStore("sqlite://")
    yield store
    store.close()


@pytest.fixture
def temp_db():
    """Create a temporary SQLite database for testing"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        db_url = f"sqlite:///{tmp.name}"
        yield db_url

    # Cleanup
    try:
        os.unlink(tmp.name)
    except FileNotFoundError:
        pass


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_set_get_overwrite(self, sql_store):
        assert await sql_store.get("missing") is None

        await sql_store.set("stableguard_last_update", 1.5)
        await sql_store.set("stableguard_last_update", 2.5)

        assert await sql_store.get("stableguard_last_update") == 2.5

    @pytest.mark.asyncio
    async def test_json_values(self, sql_store):
        value = {"assets": ["usdt", "dai"], "nested": {"score": 12.5, "ok": True}}

        await sql_store.set("payload", value)

        assert await sql_store.get("payload") == value

    @pytest.mark.asyncio
    async def test_set_many_and_remove(self, sql_store):
        await sql_store.set_many({"stableguard_a": 1, "stableguard_b": 2, "other": 3})

        assert list(sql_store.keys("stableguard_")) == ["stableguard_a", "stableguard_b"]

        await sql_store.remove("stableguard_a", "missing")

        assert await sql_store.get("stableguard_a") is None
        assert await sql_store.get("stableguard_b") == 2

    @pytest.mark.asyncio
    async def test_remove_nothing(self, sql_store):
        await sql_store.remove()

    @pytest.mark.asyncio
    async def test_session_work_runs_off_the_event_loop(self, sql_store):
        threads = []
        make_session = sql_store._sessions

        def tracking_session():
            threads.append(threading.get_ident())
            return make_session()

        sql_store._sessions = tracking_session
        await sql_store.set("stableguard_last_update", 1.0)
        await sql_store.get("stableguard_last_update")

        assert len(threads) == 2
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_concurrent_writes(self, sql_store):
        await asyncio.gather(
            *(sql_store.set(f"stableguard_key_{i}", {"n": i}) for i in range(20))
        )

        values = await asyncio.gather(
            *(sql_store.get(f"stableguard_key_{i}") for i in range(20))
        )
        assert values == [{"n": i} for i in range(20)]

    def test_health_check(self, sql_store):
        health = sql_store.health_check()

        assert health["healthy"]
        assert health["dialect"] == "sqlite"

    @pytest.mark.asyncio
    async def test_survives_reopen(self, temp_db):
        first = SqlStore(temp_db)
        await first.set(CONFIG_KEY, {"strict_mode": "block"})
        first.close()

        second = SqlStore(temp_db)
        try:
            assert await second.get(CONFIG_KEY) == {"strict_mode": "block"}
        finally:
            second.close()


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "url,valid",
        [
            ("sqlite://", True),
            ("sqlite:///stableguard.db", True),
            ("postgresql://user:pw@localhost/stableguard", True),
            ("mysql://localhost/stableguard", False),
            ("not a url", False),
        ],
    )
    def test_validate(self, url, valid):
        assert validate_database_url(url) == valid

    def test_unsupported_engine(self):
        with pytest.raises(StorageError):
            create_database_engine("mysql://localhost/stableguard")


class TestGuardOnSql:
    @pytest.mark.asyncio
    async def test_full_cycle(self, sql_store):
        clock = FakeClock()
        guard = await StableGuard.create(
            sql_store, price_source=healthy_source(), clock=clock
        )

        result = await guard.run_scheduled_cycle()

        assert result.success
        assert (await sql_store.get(risk_key("usdt")))["risk_level"] == "very_low"
        assert len(await sql_store.get(RECORD_INDEX_KEY)) == 3

        history = await guard.get_execution_history()
        assert {r.trigger_type for r in history} == {TriggerType.SCHEDULED}

        report = await guard.get_latest_report("dai")
        assert report.asset_id == "dai"
        assert report.current_price == 1.0

    @pytest.mark.asyncio
    async def test_settings_survive_restart(self, sql_store):
        guard = await StableGuard.create(sql_store, price_source=healthy_source())
        await guard.update_settings(monitored_assets=["usdc"])

        restarted = await StableGuard.create(sql_store, price_source=healthy_source())

        assert restarted.settings.monitored_assets == ["usdc"]
