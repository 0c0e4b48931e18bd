"""Tests for agent_guard package exports and CLI wiring."""

from datetime import UTC, datetime, timedelta

from agent_guard.__main__ import build_backend, open_database, parse_args
from agent_guard.config import (
    CatalogConfig,
    Config,
    GatewayConfig,
    LLMConfig,
    StorageConfig,
)
from agent_guard.db import Database
from agent_guard.models import Message
from agent_guard.services.mock import MockBackend
from agent_guard.services.retry import RetryingBackend


class TestPackageExports:
    def test_all_exports(self):
        import agent_guard

        assert set(agent_guard.__all__) == {
            "AgentId",
            "AgentInvocationError",
            "ConfigError",
            "DispatchMode",
            "Mode",
            "Orchestrator",
            "PermissionEngine",
            "PermissionResult",
            "RateLimiter",
            "RiskLevel",
        }

    def test_same_reference(self):
        from agent_guard import PermissionEngine as FromPkg
        from agent_guard.engine import PermissionEngine as FromMod

        assert FromPkg is FromMod


def _config(api_key=None, db_path=":memory:", retention_days=90):
    return Config(
        gateway=GatewayConfig(host="127.0.0.1", port=8443, token="t"),
        catalog=CatalogConfig(api_index="a.yaml", permissions="p.yaml"),
        storage=StorageConfig(type="sqlite", path=db_path, retention_days=retention_days),
        llm=LLMConfig(api_key=api_key),
    )


class TestCli:
    def test_parse_args_defaults(self):
        args = parse_args([])
        assert args.config == "config.yaml"
        assert args.insecure is False

    def test_parse_args_flags(self):
        args = parse_args(["--insecure", "--config", "/etc/agent-guard.yaml"])
        assert args.insecure is True
        assert args.config == "/etc/agent-guard.yaml"

    def test_mock_backend_without_api_key(self):
        assert isinstance(build_backend(_config()), MockBackend)

    async def test_retrying_backend_with_api_key(self):
        backend = build_backend(_config(api_key="sk-test"))
        assert isinstance(backend, RetryingBackend)
        await backend.close()


async def _seed_messages(path):
    db = Database(path)
    await db.initialize()
    old = (datetime.now(UTC) - timedelta(days=120)).isoformat()
    await db.save_message(Message("c_old", "u1", "user", "old", created_at=old))
    await db.save_message(Message("c_new", "u1", "user", "new"))
    await db.close()


class TestOpenDatabase:
    async def test_drops_messages_past_retention(self, tmp_path):
        path = str(tmp_path / "guard.db")
        await _seed_messages(path)

        db = await open_database(_config(db_path=path, retention_days=90))
        try:
            assert await db.get_messages("c_old") == []
            assert len(await db.get_messages("c_new")) == 1
        finally:
            await db.close()

    async def test_zero_retention_keeps_everything(self, tmp_path):
        path = str(tmp_path / "guard.db")
        await _seed_messages(path)

        db = await open_database(_config(db_path=path, retention_days=0))
        try:
            assert len(await db.get_messages("c_old")) == 1
        finally:
            await db.close()
