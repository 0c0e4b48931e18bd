"""Keyword-based agent selection.

A replaceable strategy: given free text it returns a non-empty, ordered,
de-duplicated list of agents, deterministically for the same input and table.
"""

from __future__ import annotations

import logging

from agent_guard.models import AgentId

logger = logging.getLogger(__name__)

# A message starting with one of these addresses a single agent directly.
EXPLICIT_PREFIXES: dict[AgentId, tuple[str, ...]] = {
    AgentId.WORKER: ("worker", "manus"),
    AgentId.DEV: ("dev", "gpt dev", "gptdev"),
    AgentId.ANALYTICS: ("analytics", "abacus"),
    AgentId.AUTOMATION: ("automation", "zapier"),
}

# Checked in this order; the order of hits is the order agents are called.
DEFAULT_KEYWORDS: dict[AgentId, tuple[str, ...]] = {
    AgentId.WORKER: (
        "server", "ssh", "pm2", "restart", "execute", "command", "deploy",
        "git pull", "status", "directory", "file system", "process", "ticket",
    ),
    AgentId.DEV: (
        "github", "code", "commit", "repo", "branch", "pull request", "merge",
        "file", "build", "compile", "dependency", "package.json", "npm", "yarn", "pnpm",
    ),
    AgentId.ANALYTICS: (
        "analyze", "analyse", "log", "metrics", "errors", "statistics", "guardian",
        "performance", "latency", "response time", "how many", "count", "dashboard",
        "report", "analysis", "trend", "chart",
    ),
    AgentId.AUTOMATION: (
        "automation", "webhook", "integration", "trigger", "workflow", "notification",
        "email", "slack", "telegram", "discord", "api call", "schedule", "cron",
    ),
}


class KeywordRouter:
    """Selects agents by explicit prefix, then by keyword hits."""

    def __init__(
        self,
        keywords: dict[AgentId, tuple[str, ...]] | None = None,
        *,
        prefixes: dict[AgentId, tuple[str, ...]] | None = None,
        fallback: AgentId = AgentId.DEV,
    ) -> None:
        self._keywords = keywords if keywords is not None else DEFAULT_KEYWORDS
        self._prefixes = prefixes if prefixes is not None else EXPLICIT_PREFIXES
        self._fallback = fallback

    def explicit_agent(self, message: str) -> AgentId | None:
        """Return the agent addressed by name at the start of *message*, if any."""
        lowered = message.lower().lstrip()
        for agent_id, names in self._prefixes.items():
            for name in names:
                if lowered.startswith(f"{name},") or lowered.startswith(f"{name} "):
                    return agent_id
        return None

    def select(self, message: str) -> list[AgentId]:
        explicit = self.explicit_agent(message)
        if explicit is not None:
            logger.info("Explicit agent detected: %s", explicit.value)
            return [explicit]

        lowered = message.lower()
        agents: list[AgentId] = []
        for agent_id, words in self._keywords.items():
            if agent_id not in agents and any(w in lowered for w in words):
                agents.append(agent_id)

        if not agents:
            logger.info("No specific agent detected, defaulting to %s", self._fallback.value)
            agents.append(self._fallback)

        logger.debug("Selected agents for %r: %s", message[:50], [a.value for a in agents])
        return agents
