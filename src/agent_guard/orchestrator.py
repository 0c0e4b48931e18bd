"""Multi-agent dispatch coordinator.

One turn: select agents, then for each agent in order build its prompt,
acquire its rate limit, record the delegation, invoke it and record the
response. Agents run sequentially so rate-limit counters and audit order stay
deterministic. A failing agent becomes an error outcome; only shared setup
failures (conversation id, catalog, agent selection) fail the whole turn.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from agent_guard.audit import AuditSink, try_log
from agent_guard.catalog import CatalogStore
from agent_guard.config import RateLimitConfig
from agent_guard.db import MessageStore
from agent_guard.executor import AgentExecutor
from agent_guard.models import (
    COORDINATOR,
    ORCHESTRATOR,
    USER,
    AgentId,
    AgentOutcome,
    AuditEntry,
    AuditStatus,
    DispatchMode,
    DispatchResult,
    Message,
)
from agent_guard.prompts import PromptBuilder
from agent_guard.ratelimit import RateLimiter
from agent_guard.services.base import AgentReply
from agent_guard.synthesizer import generate_final_response

logger = logging.getLogger(__name__)

DISPATCH_ENDPOINT = "orchestrator.dispatch"
DISPATCH_PATH = "/orchestrator/dispatch"
RATE_LIMIT_EXCEEDED = "Rate limit exceeded"
FATAL_MESSAGE = "An error occurred while processing the request"


class Classifier(Protocol):
    def select(self, message: str) -> list[AgentId]: ...


def make_conversation_id(user_id: str, now_ms: int | None = None) -> str:
    if not user_id:
        raise ValueError("user_id must not be empty")
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"conv_{user_id}_{now_ms}"


class Orchestrator:
    """Entry point for dispatching a user message to one or more agents."""

    def __init__(
        self,
        *,
        catalog: CatalogStore,
        classifier: Classifier,
        prompts: PromptBuilder,
        rate_limiter: RateLimiter,
        executor: AgentExecutor,
        store: MessageStore,
        audit: AuditSink,
        rate_limit: RateLimitConfig | None = None,
        fallback_agent: AgentId = AgentId.DEV,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._catalog = catalog
        self._classifier = classifier
        self._prompts = prompts
        self._rate_limiter = rate_limiter
        self._executor = executor
        self._store = store
        self._audit = audit
        self._rate_limit = rate_limit or RateLimitConfig()
        self._fallback_agent = fallback_agent
        self._clock = clock

    async def dispatch(
        self,
        message: str,
        user_id: str,
        mode: DispatchMode = DispatchMode.AUTO,
        target_agent: AgentId | str | None = None,
    ) -> DispatchResult:
        conversation_id = ""
        try:
            conversation_id = make_conversation_id(user_id, int(self._clock() * 1000))
            await self._catalog.snapshot()
            agents, mode = self._select_agents(message, mode, target_agent)
        except Exception as exc:
            return await self._fail(user_id, conversation_id, exc)

        logger.info(
            "Turn %s: mode=%s agents=%s",
            conversation_id,
            mode.value,
            ", ".join(a.value for a in agents),
        )
        await self._save(
            Message(
                conversation_id=conversation_id,
                user_id=user_id,
                sender=USER,
                content=message,
                recipients=[COORDINATOR],
                metadata={"mode": mode.value},
            )
        )

        outcomes = []
        for agent_id in agents:
            outcome = await self._run_agent(agent_id, message, user_id, conversation_id)
            outcomes.append(outcome)

        final = generate_final_response(outcomes, mode)
        failed = [o.agent_id.value for o in outcomes if not o.ok]
        await try_log(
            self._audit,
            AuditEntry(
                agent=ORCHESTRATOR,
                endpoint_id=DISPATCH_ENDPOINT,
                method="POST",
                path=DISPATCH_PATH,
                status=AuditStatus.ALLOWED,
                metadata={
                    "user_id": user_id,
                    "agents_used": [a.value for a in agents],
                    "failed_agents": failed,
                    "mode": mode.value,
                    "conversation_id": conversation_id,
                },
            ),
        )
        return DispatchResult(
            success=True,
            message=final,
            agents_used=agents,
            conversation_id=conversation_id,
            outcomes=outcomes,
        )

    def _select_agents(
        self,
        message: str,
        mode: DispatchMode,
        target_agent: AgentId | str | None,
    ) -> tuple[list[AgentId], DispatchMode]:
        if mode is DispatchMode.MANUAL and target_agent is not None:
            return [AgentId(target_agent)], mode

        # Manual mode without a target is treated as auto.
        agents = list(dict.fromkeys(self._classifier.select(message)))
        if not agents:
            logger.info("Classifier selected no agent, using %s", self._fallback_agent.value)
            agents = [self._fallback_agent]
        return agents, DispatchMode.AUTO

    async def _run_agent(
        self,
        agent_id: AgentId,
        message: str,
        user_id: str,
        conversation_id: str,
    ) -> AgentOutcome:
        """One agent's attempt. Never raises; failures become error outcomes."""
        try:
            prompt = await self._prompts.build(agent_id, message, user_id, conversation_id)

            allowed = await self._rate_limiter.try_acquire(
                agent_id.value, self._rate_limit.limit, self._rate_limit.window_seconds
            )
            if not allowed:
                return AgentOutcome.failure(agent_id, RATE_LIMIT_EXCEEDED)

            await self._save(
                Message(
                    conversation_id=conversation_id,
                    user_id=user_id,
                    sender=COORDINATOR,
                    content=prompt.to_text(),
                    recipients=[agent_id.value],
                    metadata={"delegated_from": USER, "original_message": message},
                )
            )
            reply = await self._executor.execute(agent_id, prompt)
        except Exception as exc:
            logger.error("Agent %s failed: %s", agent_id.value, exc, exc_info=True)
            await try_log(
                self._audit,
                AuditEntry(
                    agent=agent_id.value,
                    endpoint_id=DISPATCH_ENDPOINT,
                    method="POST",
                    path=DISPATCH_PATH,
                    status=AuditStatus.ERROR,
                    reason=str(exc) or type(exc).__name__,
                    metadata={"conversation_id": conversation_id},
                ),
            )
            return AgentOutcome.failure(agent_id, str(exc) or type(exc).__name__)

        await self._save(
            Message(
                conversation_id=conversation_id,
                user_id=user_id,
                sender=agent_id.value,
                content=reply.content,
                recipients=[COORDINATOR],
                metadata=reply.metadata,
            )
        )
        await try_log(
            self._audit,
            AuditEntry(
                agent=agent_id.value,
                endpoint_id=DISPATCH_ENDPOINT,
                method="POST",
                path=DISPATCH_PATH,
                status=AuditStatus.ALLOWED,
                metadata={"conversation_id": conversation_id, **_usage_metadata(reply)},
            ),
        )
        logger.info("Agent %s responded", agent_id.value)
        return AgentOutcome(agent_id=agent_id, content=reply.content, metadata=reply.metadata)

    async def _save(self, message: Message) -> None:
        """Persist a message; failures are logged and never interrupt the turn."""
        try:
            await self._store.save_message(message)
        except Exception:
            logger.warning(
                "Failed to save %s message for %s",
                message.sender,
                message.conversation_id,
                exc_info=True,
            )

    async def _fail(self, user_id: str, conversation_id: str, exc: Exception) -> DispatchResult:
        error = str(exc) or type(exc).__name__
        logger.error("Dispatch failed for user %r: %s", user_id, error)
        await try_log(
            self._audit,
            AuditEntry(
                agent=ORCHESTRATOR,
                endpoint_id=DISPATCH_ENDPOINT,
                method="POST",
                path=DISPATCH_PATH,
                status=AuditStatus.ERROR,
                reason=error,
                metadata={"user_id": user_id},
            ),
        )
        return DispatchResult(
            success=False,
            message=FATAL_MESSAGE,
            agents_used=[],
            conversation_id=conversation_id,
            error=error,
        )

    # --- Conversation queries ---

    async def get_agent_conversation(
        self, user_id: str, agent_id: AgentId, limit: int = 50
    ) -> list[Message]:
        return await self._store.get_conversation(user_id, agent_id.value, limit)

    async def get_all_conversations(self, user_id: str) -> dict[AgentId, list[Message]]:
        return {
            agent_id: await self._store.get_conversation(user_id, agent_id.value, 10)
            for agent_id in AgentId
        }

    async def mark_as_read(self, conversation_id: str, reader: str) -> None:
        await self._store.mark_as_read(conversation_id, reader)


def _usage_metadata(reply: AgentReply) -> dict:
    if reply.usage is None:
        return {}
    return {"tokens": reply.usage.total_tokens}
