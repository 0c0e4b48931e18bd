"""AgentBackend abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from agent_guard.models import AgentId
from agent_guard.prompts import AgentPrompt


class BackendError(Exception):
    """Raised when a backend fails to produce agent text (transport, quota, model)."""


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class AgentReply:
    content: str
    usage: TokenUsage | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AgentBackend(ABC):
    """Interface for the service that turns an agent prompt into text."""

    @abstractmethod
    async def invoke(self, agent_id: AgentId, prompt: AgentPrompt) -> AgentReply:
        """Run one completion for *agent_id*. Raises BackendError on failure."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        ...
