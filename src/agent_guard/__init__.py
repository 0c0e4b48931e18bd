"""agent-guard: permission guard, rate limiter and multi-agent dispatcher."""

from agent_guard.config import ConfigError
from agent_guard.engine import PermissionEngine
from agent_guard.executor import AgentInvocationError
from agent_guard.models import AgentId, DispatchMode, Mode, PermissionResult, RiskLevel
from agent_guard.orchestrator import Orchestrator
from agent_guard.ratelimit import RateLimiter

__all__ = [
    "AgentId",
    "AgentInvocationError",
    "ConfigError",
    "DispatchMode",
    "Mode",
    "Orchestrator",
    "PermissionEngine",
    "PermissionResult",
    "RateLimiter",
    "RiskLevel",
]
