"""Retry wrapper with exponential backoff around an AgentBackend."""

from __future__ import annotations

import asyncio
import logging

from agent_guard.models import AgentId
from agent_guard.prompts import AgentPrompt
from agent_guard.services.base import AgentBackend, AgentReply, BackendError

logger = logging.getLogger(__name__)


class RetryingBackend(AgentBackend):
    """Retries failed invocations, waiting base_delay * 2**(attempt-1) between attempts."""

    def __init__(
        self,
        inner: AgentBackend,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self._inner = inner
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay

    async def invoke(self, agent_id: AgentId, prompt: AgentPrompt) -> AgentReply:
        attempt = 1
        while True:
            try:
                return await self._inner.invoke(agent_id, prompt)
            except BackendError as exc:
                logger.warning(
                    "Agent %s: attempt %d/%d failed: %s",
                    agent_id.value,
                    attempt,
                    self._max_retries,
                    exc,
                )
                if attempt >= self._max_retries:
                    raise
            await asyncio.sleep(self._base_delay * 2 ** (attempt - 1))
            attempt += 1

    async def health_check(self) -> bool:
        return await self._inner.health_check()

    async def close(self) -> None:
        await self._inner.close()
