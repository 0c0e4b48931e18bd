"""Agent execution: one backend call, then permission checks for follow-up actions."""

from __future__ import annotations

import logging

from agent_guard.agents import action_target
from agent_guard.engine import PermissionEngine
from agent_guard.models import AgentId
from agent_guard.prompts import AgentPrompt
from agent_guard.services.base import AgentBackend, AgentReply, BackendError
from agent_guard.synthesizer import extract_actions

logger = logging.getLogger(__name__)


class AgentInvocationError(Exception):
    """Raised when an agent call or its action checks fail."""


class AgentExecutor:
    """Runs a single agent attempt. Retries belong to the backend."""

    def __init__(self, backend: AgentBackend, engine: PermissionEngine) -> None:
        self._backend = backend
        self._engine = engine

    async def execute(self, agent_id: AgentId, prompt: AgentPrompt) -> AgentReply:
        try:
            reply = await self._backend.invoke(agent_id, prompt)
        except BackendError as exc:
            raise AgentInvocationError(f"Agent {agent_id.value} failed: {exc}") from exc

        actions = await self.check_actions(agent_id, reply.content)
        if actions is not None:
            reply.metadata["actions"] = actions
        return reply

    async def check_actions(self, agent_id: AgentId, content: str) -> dict | None:
        """Evaluate the agent's write permission for the action items in *content*.

        Returns None when there is nothing to check. The actions themselves are
        not executed here; the decision travels with the reply for the caller.
        """
        items = extract_actions(content)
        target = action_target(agent_id)
        if not items or target is None:
            return None

        result = await self._engine.evaluate(agent_id.value, target.endpoint_id, target.mode)
        if not result.allowed:
            logger.info(
                "Agent %s: %d action(s) blocked on %s: %s",
                agent_id.value,
                len(items),
                target.endpoint_id,
                result.reason,
            )
        return {
            "items": items,
            "endpoint_id": target.endpoint_id,
            "mode": target.mode.value,
            **result.to_dict(),
        }
