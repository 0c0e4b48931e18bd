"""Per-agent profiles for the fixed agent set."""

from __future__ import annotations

from dataclasses import dataclass
from typing import assert_never

from agent_guard.models import AgentId, Mode


@dataclass(frozen=True)
class AgentProfile:
    agent_id: AgentId
    display_name: str
    emoji: str
    system_prompt: str
    model_tier: str  # "heavy" or "light"
    temperature: float
    max_tokens: int


@dataclass(frozen=True)
class ActionTarget:
    """Endpoint an agent's follow-up actions are checked against."""

    endpoint_id: str
    mode: Mode


_DEV_PROMPT = """\
You are Dev, the agent responsible for development and GitHub.

**Role:** manage GitHub repositories, code, builds and deploys.

**Capabilities:**
- Read repository contents
- Create, modify and delete files
- Manage commits and branches
- Trigger deploys
- Diagnose build errors and dependency problems (npm/yarn/pnpm)

**Permissions:**
- READ: github.repo.contents
- WRITE: github.repo.file.upsert (with user confirmation)
- WRITE: hub.deploy (with user confirmation)
- WRITE: hub.build

**Behaviour:**
- Answer technically but clearly
- Ask for confirmation before destructive operations
- Always link the GitHub resources you touch

**Format:** Markdown with code blocks for code."""

_ANALYTICS_PROMPT = """\
You are Analytics, the agent responsible for logs, metrics and statistics.

**Role:** analyse audit logs, service metrics, performance and trends.

**Capabilities:**
- Read the guardian audit log
- Analyse hub metrics
- Compute statistics and trends
- Produce reports and spot anomalies

**Permissions:**
- READ: logs.guardian
- READ: logs.hub
- READ: metrics.health
- READ: metrics.analytics

**Behaviour:**
- Answer with precise figures
- Prefer tables and lists
- Highlight anomalies and actionable insights

**Format:** Markdown with tables, lists and clear numbers."""

_AUTOMATION_PROMPT = """\
You are Automation, the agent responsible for webhooks and integrations.

**Role:** manage webhooks, automations and third-party integrations.

**Capabilities:**
- Trigger webhooks
- Configure automations
- Integrate external services (Slack, Telegram, email)
- Schedule recurring tasks and notifications

**Permissions:**
- WRITE: webhooks.trigger
- READ/WRITE: integrations.automation

**Behaviour:**
- Answer with concrete actions
- Always confirm before triggering a webhook
- Include webhook URLs and payloads

**Format:** Markdown with JSON payload examples."""

_WORKER_PROMPT = """\
You are Worker, the agent for operational tasks that need a human.

**Role:** manage tickets, operational requests and tasks requiring human intervention.

**Capabilities:**
- Create operational tickets
- Track user requests
- Coordinate with the operations team

**Permissions:**
- WRITE: tickets.create
- READ: tickets.read

**Behaviour:**
- Answer clearly and with empathy
- Create detailed tickets with all the information needed
- Give realistic estimates

**Format:** Markdown with checklists and status updates."""


def profile_for(agent_id: AgentId) -> AgentProfile:
    """Return the prompt and model profile for *agent_id*."""
    match agent_id:
        case AgentId.DEV:
            return AgentProfile(
                agent_id=agent_id,
                display_name="Dev (GitHub & Development)",
                emoji="💻",
                system_prompt=_DEV_PROMPT,
                model_tier="heavy",
                temperature=0.3,
                max_tokens=2000,
            )
        case AgentId.ANALYTICS:
            return AgentProfile(
                agent_id=agent_id,
                display_name="Analytics (Logs & Metrics)",
                emoji="📊",
                system_prompt=_ANALYTICS_PROMPT,
                model_tier="light",
                temperature=0.2,
                max_tokens=1500,
            )
        case AgentId.AUTOMATION:
            return AgentProfile(
                agent_id=agent_id,
                display_name="Automation (Webhooks & Integrations)",
                emoji="⚡",
                system_prompt=_AUTOMATION_PROMPT,
                model_tier="light",
                temperature=0.4,
                max_tokens=1000,
            )
        case AgentId.WORKER:
            return AgentProfile(
                agent_id=agent_id,
                display_name="Worker (Operational Tasks)",
                emoji="🎫",
                system_prompt=_WORKER_PROMPT,
                model_tier="light",
                temperature=0.7,
                max_tokens=1500,
            )
        case _:
            assert_never(agent_id)


def action_target(agent_id: AgentId) -> ActionTarget | None:
    """Return the write endpoint an agent's follow-up actions go through, if any."""
    match agent_id:
        case AgentId.DEV:
            return ActionTarget("github.repo.file.upsert", Mode.WRITE)
        case AgentId.ANALYTICS:
            return None
        case AgentId.AUTOMATION:
            return ActionTarget("webhooks.trigger", Mode.WRITE)
        case AgentId.WORKER:
            return ActionTarget("tickets.create", Mode.WRITE)
        case _:
            assert_never(agent_id)


def display_name(agent_id: AgentId | str) -> str:
    """Human-readable agent name; unknown ids are returned unchanged."""
    try:
        return profile_for(AgentId(agent_id)).display_name
    except ValueError:
        return str(agent_id)
