"""Prompt construction for agent calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agent_guard.agents import profile_for
from agent_guard.db import MessageStore
from agent_guard.models import USER, AgentId

logger = logging.getLogger(__name__)


@dataclass
class PromptMessage:
    role: str  # "system", "user" or "assistant"
    content: str


@dataclass
class AgentPrompt:
    messages: list[PromptMessage] = field(default_factory=list)
    model: str = ""
    temperature: float = 0.5
    max_tokens: int = 1000

    @property
    def user_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.role == "user":
                return msg.content
        return ""

    def to_text(self) -> str:
        """Flatten the prompt for storage in the delegation message."""
        return "\n\n".join(f"[{m.role}] {m.content}" for m in self.messages)


class PromptBuilder:
    """Builds an agent's prompt from its system prompt, recent history and the new message."""

    def __init__(
        self,
        store: MessageStore,
        models: dict[str, str],
        *,
        history_limit: int = 10,
    ) -> None:
        self._store = store
        self._models = models
        self._history_limit = history_limit

    async def build(
        self,
        agent_id: AgentId,
        message: str,
        user_id: str,
        conversation_id: str,
    ) -> AgentPrompt:
        profile = profile_for(agent_id)
        history = await self._store.get_conversation(
            user_id,
            agent_id.value,
            self._history_limit,
            exclude_conversation=conversation_id,
        )
        messages = [PromptMessage(role="system", content=profile.system_prompt)]
        messages.extend(
            PromptMessage(role="user" if m.sender == USER else "assistant", content=m.content)
            for m in history
        )
        messages.append(PromptMessage(role="user", content=message))

        return AgentPrompt(
            messages=messages,
            model=self._models[profile.model_tier],
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
        )
