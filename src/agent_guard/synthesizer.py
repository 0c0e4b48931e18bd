"""Merges agent outcomes into the single reply shown to the user."""

from __future__ import annotations

import re
from collections.abc import Sequence

from agent_guard.agents import display_name, profile_for
from agent_guard.models import USER, AgentId, AgentOutcome, DispatchMode, Message

NO_AGENT_RESPONSE = "No response from the agent."
NO_AGENTS_RESPONDED = "No agent responded to the request."

_ACTION_PATTERNS = (
    re.compile(r"\[ \] (.+)"),
    re.compile(r"TODO: (.+)", re.IGNORECASE),
    re.compile(r"Action: (.+)", re.IGNORECASE),
    re.compile(r"Next step: (.+)", re.IGNORECASE),
)


def generate_final_response(outcomes: Sequence[AgentOutcome], mode: DispatchMode) -> str:
    """Build the user-facing reply.

    Manual mode returns the single agent's content verbatim (or its error).
    Auto mode prefixes a single reply with the agent's name, and for several
    agents renders one tagged section per agent followed by a summary.
    """
    if mode is DispatchMode.MANUAL:
        if not outcomes:
            return NO_AGENT_RESPONSE
        outcome = outcomes[0]
        if not outcome.ok:
            return f"❌ **Error:** {outcome.error}"
        return outcome.content or ""

    if not outcomes:
        return NO_AGENTS_RESPONDED

    if len(outcomes) == 1:
        outcome = outcomes[0]
        name = display_name(outcome.agent_id)
        if not outcome.ok:
            return f"❌ **Error from {name}:** {outcome.error}"
        return f"**{name}** handled the request:\n\n{outcome.content}"

    parts = [f"Coordinated **{len(outcomes)} agents** to handle your request:\n\n"]
    for outcome in outcomes:
        name = display_name(outcome.agent_id)
        if outcome.ok:
            parts.append(f"### ✅ {name}\n\n{outcome.content}\n\n")
        else:
            parts.append(f"### ❌ {name}\n\nError: {outcome.error}\n\n")
        parts.append("---\n\n")

    succeeded = sum(1 for o in outcomes if o.ok)
    failed = len(outcomes) - succeeded
    parts.append("## 📊 Summary\n\n")
    parts.append(f"- ✅ Agents completed: {succeeded}\n")
    if failed:
        parts.append(f"- ❌ Agents with errors: {failed}\n")
    return "".join(parts)


def format_response(content: str, agent_id: AgentId) -> str:
    """Prefix *content* with the agent's emoji and name."""
    profile = profile_for(agent_id)
    return f"{profile.emoji} **{profile.display_name}**\n\n{content}"


def conversation_summary(messages: Sequence[Message]) -> str:
    if not messages:
        return "No messages in the conversation."
    from_user = sum(1 for m in messages if m.sender == USER)
    return (
        f"**Conversation:** {len(messages)} messages total "
        f"({from_user} user, {len(messages) - from_user} agents)"
    )


def extract_actions(content: str) -> list[str]:
    """Pull actionable items (checklist entries, TODO/Action/Next step lines) from a reply."""
    actions: list[str] = []
    for pattern in _ACTION_PATTERNS:
        actions.extend(m.group(1).strip() for m in pattern.finditer(content))
    return actions
