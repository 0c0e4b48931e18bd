"""Tests for agent_guard.executor — backend call and action permission checks."""

from unittest.mock import AsyncMock

import pytest

from agent_guard.engine import PermissionEngine
from agent_guard.executor import AgentExecutor, AgentInvocationError
from agent_guard.models import AgentId, AuditStatus
from agent_guard.prompts import AgentPrompt, PromptMessage
from agent_guard.services.base import AgentReply, BackendError

PROMPT = AgentPrompt(messages=[PromptMessage("user", "hello")], model="m")


@pytest.fixture()
def engine(catalog_store, audit):
    return PermissionEngine(catalog_store, audit)


def _backend(content="plain answer", *, error=None):
    backend = AsyncMock()
    if error is not None:
        backend.invoke.side_effect = error
    else:
        backend.invoke.return_value = AgentReply(content=content, metadata={"model": "m"})
    return backend


class TestExecute:
    async def test_returns_reply(self, engine, audit):
        executor = AgentExecutor(_backend(), engine)
        reply = await executor.execute(AgentId.DEV, PROMPT)
        assert reply.content == "plain answer"
        assert "actions" not in reply.metadata
        # nothing to check, nothing audited
        assert audit.entries == []

    async def test_backend_error_wrapped(self, engine):
        executor = AgentExecutor(_backend(error=BackendError("quota exceeded")), engine)
        with pytest.raises(AgentInvocationError, match="quota exceeded"):
            await executor.execute(AgentId.DEV, PROMPT)

    async def test_actions_allowed_with_confirmation(self, engine, audit):
        executor = AgentExecutor(_backend("Plan:\n- [ ] update README"), engine)
        reply = await executor.execute(AgentId.DEV, PROMPT)

        actions = reply.metadata["actions"]
        assert actions["items"] == ["update README"]
        assert actions["endpoint_id"] == "github.repo.file.upsert"
        assert actions["mode"] == "write"
        assert actions["allowed"] is True
        assert actions["require_confirmation"] is True
        assert audit.entries[-1].status is AuditStatus.ALLOWED

    async def test_actions_blocked(self, engine, audit):
        # automation may only read webhooks.trigger in the test catalog
        executor = AgentExecutor(_backend("Next step: fire the webhook"), engine)
        reply = await executor.execute(AgentId.AUTOMATION, PROMPT)

        actions = reply.metadata["actions"]
        assert actions["allowed"] is False
        assert "write" in actions["reason"]
        assert audit.entries[-1].status is AuditStatus.DENIED

    async def test_agent_without_action_target(self, engine, audit):
        executor = AgentExecutor(_backend("TODO: check the logs"), engine)
        reply = await executor.execute(AgentId.ANALYTICS, PROMPT)
        assert "actions" not in reply.metadata
        assert audit.entries == []
