"""OpenAI-compatible Chat Completions backend."""

from __future__ import annotations

import logging
import time
from typing import Any

import aiohttp

from agent_guard.config import LLMConfig
from agent_guard.models import AgentId
from agent_guard.prompts import AgentPrompt
from agent_guard.services.base import AgentBackend, AgentReply, BackendError, TokenUsage

logger = logging.getLogger(__name__)


class OpenAIBackend(AgentBackend):
    """Backend calling ``POST {base_url}/chat/completions`` over aiohttp."""

    def __init__(self, config: LLMConfig) -> None:
        if not config.api_key:
            raise BackendError("LLM API key is not configured")
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        """Return the existing session or create a new one."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            )
        return self._session

    async def invoke(self, agent_id: AgentId, prompt: AgentPrompt) -> AgentReply:
        session = self._get_session()
        body = {
            "model": prompt.model,
            "messages": [{"role": m.role, "content": m.content} for m in prompt.messages],
            "temperature": prompt.temperature,
            "max_tokens": prompt.max_tokens,
        }
        logger.info("Agent %s: calling model %s", agent_id.value, prompt.model)
        start = time.monotonic()
        try:
            async with session.post(f"{self._base_url}/chat/completions", json=body) as resp:
                await self._check_response(resp)
                data = await resp.json()
        except aiohttp.ClientError as exc:
            raise BackendError(f"LLM service unreachable ({exc})") from exc
        response_ms = int((time.monotonic() - start) * 1000)

        content = _extract_content(data)
        usage = _extract_usage(data)
        logger.info(
            "Agent %s: response in %dms (%s tokens)",
            agent_id.value,
            response_ms,
            usage.total_tokens if usage else "?",
        )
        return AgentReply(
            content=content,
            usage=usage,
            metadata={"model": prompt.model, "response_time_ms": response_ms},
        )

    async def _check_response(self, resp: aiohttp.ClientResponse) -> None:
        """Raise BackendError for non-2xx responses."""
        if 200 <= resp.status < 300:
            return
        if resp.status == 401:
            raise BackendError("LLM authentication failed (API key invalid?)")
        if resp.status == 429:
            raise BackendError("LLM quota or rate limit exceeded")
        text = await resp.text()
        raise BackendError(f"LLM API error {resp.status}: {text}")

    async def health_check(self) -> bool:
        """Check if the API answers GET /models within 5 seconds."""
        try:
            session = self._get_session()
            async with session.get(
                f"{self._base_url}/models",
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status == 200
        except Exception:
            return False

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def _extract_content(data: dict[str, Any]) -> str:
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError):
        raise BackendError("LLM response has no choices") from None


def _extract_usage(data: dict[str, Any]) -> TokenUsage | None:
    usage = data.get("usage")
    if not usage:
        return None
    return TokenUsage(
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
        total_tokens=usage.get("total_tokens", 0),
    )
