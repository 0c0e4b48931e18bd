"""Offline backend returning canned replies, used when no API key is configured."""

from __future__ import annotations

import logging

from agent_guard.agents import profile_for
from agent_guard.models import AgentId
from agent_guard.prompts import AgentPrompt
from agent_guard.services.base import AgentBackend, AgentReply, TokenUsage

logger = logging.getLogger(__name__)

_BODIES: dict[AgentId, str] = {
    AgentId.DEV: (
        "### Planned actions\n"
        "- [ ] Check the GitHub repository\n"
        "- [ ] Review changed files\n"
        "- [ ] Verify build status"
    ),
    AgentId.ANALYTICS: (
        "### System metrics\n"
        "| Metric | Value |\n"
        "|--------|-------|\n"
        "| Requests | n/a |\n"
        "| Errors | n/a |"
    ),
    AgentId.AUTOMATION: (
        "### Suggested workflow\n"
        "1. **Trigger:** new chat message\n"
        "2. **Action:** notify Slack\n\n"
        "Next step: confirm the workflow"
    ),
    AgentId.WORKER: (
        "### Ticket draft\n"
        "- **Type:** operational\n"
        "- **Status:** pending\n\n"
        "- [ ] Analyse the request\n"
        "- [ ] Plan the intervention"
    ),
}


class MockBackend(AgentBackend):
    """Deterministic replies per agent, echoing the start of the user message."""

    async def invoke(self, agent_id: AgentId, prompt: AgentPrompt) -> AgentReply:
        profile = profile_for(agent_id)
        request = prompt.user_message[:100]
        content = (
            f"{profile.emoji} **{profile.display_name} (mock mode)**\n\n"
            f'Request: "{request}"\n\n'
            f"{_BODIES[agent_id]}\n\n"
            "*Mock reply. Configure llm.api_key for real answers.*"
        )
        logger.debug("Agent %s: mock reply (%d chars)", agent_id.value, len(content))
        return AgentReply(
            content=content,
            usage=TokenUsage(),
            metadata={"model": "mock", "mock": True},
        )

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
