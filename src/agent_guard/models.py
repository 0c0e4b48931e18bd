"""Shared data models for agent-guard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

COORDINATOR = "coordinator"
ORCHESTRATOR = "orchestrator"
USER = "user"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AgentId(Enum):
    DEV = "dev"
    ANALYTICS = "analytics"
    AUTOMATION = "automation"
    WORKER = "worker"


class Mode(Enum):
    READ = "read"
    WRITE = "write"


class RiskLevel(Enum):
    """Ordered risk tier: low < medium < high."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)

    def __lt__(self, other: RiskLevel) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __gt__(self, other: RiskLevel) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: RiskLevel) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __ge__(self, other: RiskLevel) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


class AuditStatus(Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    ERROR = "error"


class DispatchMode(Enum):
    AUTO = "auto"
    MANUAL = "manual"


# --- Catalog ---


@dataclass(frozen=True)
class Service:
    id: str
    display_name: str
    base_url: str
    env: str = ""


@dataclass(frozen=True)
class Endpoint:
    id: str
    method: str
    path: str
    risk: RiskLevel
    service: Service
    description: str = ""


@dataclass(frozen=True)
class EndpointSummary:
    """Endpoint details returned to callers of an allowed evaluation."""

    id: str
    method: str
    path: str
    description: str
    risk: RiskLevel
    base_url: str

    @classmethod
    def from_endpoint(cls, endpoint: Endpoint) -> EndpointSummary:
        return cls(
            id=endpoint.id,
            method=endpoint.method,
            path=endpoint.path,
            description=endpoint.description,
            risk=endpoint.risk,
            base_url=endpoint.service.base_url,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["risk"] = self.risk.value
        return data


@dataclass(frozen=True)
class PermissionResult:
    """Outcome of a permission evaluation. Denials are values, not exceptions."""

    allowed: bool
    reason: str
    require_confirmation: bool = False
    endpoint: EndpointSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "reason": self.reason,
            "require_confirmation": self.require_confirmation,
        }
        if self.endpoint is not None:
            data["endpoint"] = self.endpoint.to_dict()
        return data


# --- Audit ---


@dataclass(frozen=True)
class AuditEntry:
    """An immutable record of one evaluation or dispatch attempt."""

    agent: str
    endpoint_id: str
    method: str
    path: str
    status: AuditStatus
    timestamp: str = field(default_factory=utc_now_iso)
    reason: str | None = None
    risk_level: RiskLevel | None = None
    require_confirmation: bool | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "agent": self.agent,
            "endpoint_id": self.endpoint_id,
            "method": self.method,
            "path": self.path,
            "status": self.status.value,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.risk_level is not None:
            data["risk_level"] = self.risk_level.value
        if self.require_confirmation is not None:
            data["require_confirmation"] = self.require_confirmation
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEntry:
        risk = data.get("risk_level")
        return cls(
            agent=data["agent"],
            endpoint_id=data.get("endpoint_id", ""),
            method=data.get("method", ""),
            path=data.get("path", ""),
            status=AuditStatus(data["status"]),
            timestamp=data["timestamp"],
            reason=data.get("reason"),
            risk_level=RiskLevel(risk) if risk else None,
            require_confirmation=data.get("require_confirmation"),
            metadata=data.get("metadata"),
        )


# --- Conversations ---


@dataclass
class Message:
    """A single message in a conversation turn."""

    conversation_id: str
    user_id: str
    sender: str  # "user", "coordinator" or an AgentId value
    content: str
    message_type: str = "text"
    recipients: list[str] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
    created_at: str = field(default_factory=utc_now_iso)
    message_id: str = ""


@dataclass
class AgentOutcome:
    """Result of one agent's part in a turn: content or error, never both."""

    agent_id: AgentId
    content: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, agent_id: AgentId, error: str) -> AgentOutcome:
        return cls(agent_id=agent_id, error=error)


@dataclass
class DispatchResult:
    success: bool
    message: str
    agents_used: list[AgentId]
    conversation_id: str
    timestamp: str = field(default_factory=utc_now_iso)
    error: str | None = None
    outcomes: list[AgentOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "agents_used": [a.value for a in self.agents_used],
            "conversation_id": self.conversation_id,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            data["error"] = self.error
        return data
