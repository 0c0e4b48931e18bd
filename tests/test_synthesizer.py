"""Tests for agent_guard.synthesizer — merging agent outcomes into one reply."""

from agent_guard.models import AgentId, AgentOutcome, DispatchMode, Message
from agent_guard.synthesizer import (
    NO_AGENT_RESPONSE,
    NO_AGENTS_RESPONDED,
    conversation_summary,
    extract_actions,
    format_response,
    generate_final_response,
)


def _ok(agent_id, content):
    return AgentOutcome(agent_id=agent_id, content=content)


class TestManualMode:
    def test_content_verbatim(self):
        reply = generate_final_response([_ok(AgentId.DEV, "done")], DispatchMode.MANUAL)
        assert reply == "done"

    def test_error(self):
        outcome = AgentOutcome.failure(AgentId.DEV, "timeout")
        assert generate_final_response([outcome], DispatchMode.MANUAL) == "❌ **Error:** timeout"

    def test_empty(self):
        assert generate_final_response([], DispatchMode.MANUAL) == NO_AGENT_RESPONSE


class TestAutoMode:
    def test_empty(self):
        assert generate_final_response([], DispatchMode.AUTO) == NO_AGENTS_RESPONDED

    def test_single_agent(self):
        reply = generate_final_response([_ok(AgentId.DEV, "done")], DispatchMode.AUTO)
        assert reply == "**Dev (GitHub & Development)** handled the request:\n\ndone"

    def test_single_agent_error(self):
        outcome = AgentOutcome.failure(AgentId.WORKER, "Rate limit exceeded")
        reply = generate_final_response([outcome], DispatchMode.AUTO)
        assert reply == "❌ **Error from Worker (Operational Tasks):** Rate limit exceeded"

    def test_multiple_agents_sections_and_summary(self):
        outcomes = [
            _ok(AgentId.DEV, "repo checked"),
            AgentOutcome.failure(AgentId.ANALYTICS, "LLM down"),
            _ok(AgentId.AUTOMATION, "webhook ready"),
        ]
        reply = generate_final_response(outcomes, DispatchMode.AUTO)

        assert reply.startswith("Coordinated **3 agents** to handle your request:")
        assert "### ✅ Dev (GitHub & Development)\n\nrepo checked" in reply
        assert "### ❌ Analytics (Logs & Metrics)\n\nError: LLM down" in reply
        assert reply.count("---") == 3
        # sections keep dispatch order
        assert reply.index("Dev (") < reply.index("Analytics (") < reply.index("Automation (")
        assert "- ✅ Agents completed: 2" in reply
        assert "- ❌ Agents with errors: 1" in reply

    def test_error_line_omitted_when_all_succeed(self):
        outcomes = [_ok(AgentId.DEV, "a"), _ok(AgentId.WORKER, "b")]
        reply = generate_final_response(outcomes, DispatchMode.AUTO)
        assert "- ✅ Agents completed: 2" in reply
        assert "Agents with errors" not in reply


class TestHelpers:
    def test_format_response(self):
        assert format_response("hi", AgentId.ANALYTICS) == "📊 **Analytics (Logs & Metrics)**\n\nhi"

    def test_conversation_summary(self):
        messages = [
            Message(conversation_id="c", user_id="u", sender="user", content="a"),
            Message(conversation_id="c", user_id="u", sender="dev", content="b"),
            Message(conversation_id="c", user_id="u", sender="worker", content="c"),
        ]
        assert conversation_summary(messages) == (
            "**Conversation:** 3 messages total (1 user, 2 agents)"
        )

    def test_conversation_summary_empty(self):
        assert conversation_summary([]) == "No messages in the conversation."

    def test_extract_actions(self):
        content = (
            "- [ ] Review the diff\n"
            "- [x] Already done\n"
            "TODO: bump the version\n"
            "Next step: deploy to staging\n"
        )
        assert extract_actions(content) == [
            "Review the diff",
            "bump the version",
            "deploy to staging",
        ]

    def test_extract_actions_none(self):
        assert extract_actions("All good, nothing to do.") == []
