"""
Tenant database engine tests.
"""
import pytest

from helpdesk_sla.config import settings
from helpdesk_sla.core import NotFoundError
from helpdesk_sla.infrastructure import database


@pytest.fixture
def captured(monkeypatch):
    """Record create_async_engine arguments instead of building engines."""
    calls = []

    def fake_create_async_engine(url, **kwargs):
        calls.append((url, kwargs))
        return object()

    monkeypatch.setattr(database, "create_async_engine", fake_create_async_engine)
    return calls


def test_postgres_engine_has_command_timeout(captured):
    database._build_engine("postgresql+asyncpg://db.internal:5432/acme?sslmode=require")

    [(url, kwargs)] = captured
    assert url == "postgresql+asyncpg://db.internal:5432/acme?ssl=require"
    assert kwargs["connect_args"] == {"command_timeout": settings.db_command_timeout_seconds}
    assert kwargs["pool_timeout"] == settings.db_pool_timeout_seconds


def test_sqlite_engine_has_lock_timeout(captured):
    database._build_engine("sqlite+aiosqlite:///tenant.db")

    [(_, kwargs)] = captured
    assert kwargs["connect_args"] == {"timeout": settings.db_command_timeout_seconds}
    assert "pool_size" not in kwargs


def test_command_timeout_from_environment(monkeypatch):
    monkeypatch.setenv("DB_COMMAND_TIMEOUT_SECONDS", "7.5")
    assert type(settings)().db_command_timeout_seconds == 7.5


async def test_unknown_tenant_engine(engine):
    with pytest.raises(NotFoundError):
        database.get_engine("nobody")
