"""Unit tests for gcal_driver.db (pool creation is mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from gcal_driver.config import DbConfig
from gcal_driver.db import (
    Database,
    db_params_from_env,
    should_retry_with_ssl_disable,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _clean_db_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DATABASE_URL",
        "POSTGRES_HOST",
        "POSTGRES_PORT",
        "POSTGRES_USER",
        "POSTGRES_PASSWORD",
        "POSTGRES_SSLMODE",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDbParamsFromEnv:
    def test_defaults(self) -> None:
        assert db_params_from_env() == {
            "host": "localhost",
            "port": 5432,
            "user": "postgres",
            "password": "postgres",
            "ssl": None,
        }

    def test_database_url_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POSTGRES_HOST", "ignored")
        monkeypatch.setenv("DATABASE_URL", "postgresql://rc:pw@pg:6000/webmail?sslmode=disable")

        assert db_params_from_env() == {
            "host": "pg",
            "port": 6000,
            "user": "rc",
            "password": "pw",
            "ssl": "disable",
        }

    def test_invalid_sslmode_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("POSTGRES_SSLMODE", "sometimes")

        assert db_params_from_env()["ssl"] is None


class TestSslRetry:
    def test_retry_only_for_lost_upgrade_without_explicit_ssl(self) -> None:
        lost = ConnectionError("unexpected connection_lost() call")

        assert should_retry_with_ssl_disable(lost, None) is True
        assert should_retry_with_ssl_disable(lost, "require") is False
        assert should_retry_with_ssl_disable(ConnectionError("refused"), None) is False
        assert should_retry_with_ssl_disable(ValueError("x"), None) is False


class TestDatabase:
    def test_from_config(self) -> None:
        db = Database.from_config(
            DbConfig(name="webmail", host="pg", port=6000, user="rc", password="pw", ssl="Require")
        )

        assert db.db_name == "webmail"
        assert db.host == "pg"
        assert db.port == 6000
        assert db.ssl == "require"

    async def test_connect_and_close(self) -> None:
        pool = MagicMock()
        pool.close = AsyncMock()
        db = Database("webmail", ssl="require")

        with patch("gcal_driver.db.asyncpg.create_pool", AsyncMock(return_value=pool)) as create:
            assert await db.connect() is pool

        kwargs = create.await_args.kwargs
        assert kwargs["database"] == "webmail"
        assert kwargs["ssl"] == "require"

        await db.close()
        pool.close.assert_awaited_once()
        assert db.pool is None

    async def test_connect_retries_with_ssl_disable(self) -> None:
        pool = MagicMock()
        create = AsyncMock(side_effect=[ConnectionError("unexpected connection_lost() call"), pool])
        db = Database("webmail")

        with patch("gcal_driver.db.asyncpg.create_pool", create):
            assert await db.connect() is pool

        assert create.await_count == 2
        assert "ssl" not in create.await_args_list[0].kwargs
        assert create.await_args_list[1].kwargs["ssl"] == "disable"

    async def test_connect_other_errors_propagate(self) -> None:
        create = AsyncMock(side_effect=OSError("refused"))
        db = Database("webmail")

        with patch("gcal_driver.db.asyncpg.create_pool", create), pytest.raises(OSError):
            await db.connect()

        assert create.await_count == 1
