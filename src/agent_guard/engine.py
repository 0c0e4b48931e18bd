"""Permission engine: default-deny evaluation of (agent, endpoint, mode)."""

from __future__ import annotations

from typing import Any

from agent_guard.audit import AuditSink
from agent_guard.catalog import CatalogStore
from agent_guard.models import (
    AuditEntry,
    AuditStatus,
    EndpointSummary,
    Mode,
    PermissionResult,
)

REASON_UNKNOWN_AGENT = "Unknown agent"
REASON_UNKNOWN_ENDPOINT = "Unknown endpoint"
REASON_NO_RULE = "No permission rule found for this endpoint"
REASON_GRANTED = "Permission granted"


class PermissionEngine:
    """Evaluates agent requests against the catalog's permission rules.

    Evaluation order:
        1. unknown agent         -> deny
        2. unknown endpoint      -> defaults.unknown_endpoint.allow
        3. no rule for endpoint  -> deny
        4. mode not in rule      -> deny
        5. risk above max_risk   -> deny
        6. otherwise             -> allow (confirmation flag from the rule)

    Every outcome is appended to the audit sink before returning.
    """

    def __init__(self, catalog: CatalogStore, audit: AuditSink) -> None:
        self._catalog = catalog
        self._audit = audit

    async def evaluate(self, agent_id: str, endpoint_id: str, mode: Mode) -> PermissionResult:
        """Evaluate whether *agent_id* may use *endpoint_id* in *mode*."""
        catalog = await self._catalog.snapshot()

        agent = catalog.agents.get(agent_id)
        if agent is None:
            await self._log(
                agent_id, endpoint_id, mode.value.upper(), "", False, REASON_UNKNOWN_AGENT
            )
            return PermissionResult(allowed=False, reason=REASON_UNKNOWN_AGENT)

        endpoint = catalog.endpoints.get(endpoint_id)
        if endpoint is None:
            allowed = catalog.defaults.unknown_endpoint_allow
            await self._log(
                agent_id, endpoint_id, mode.value.upper(), "", allowed, REASON_UNKNOWN_ENDPOINT
            )
            return PermissionResult(allowed=allowed, reason=REASON_UNKNOWN_ENDPOINT)

        rule = agent.rule_for(endpoint_id)
        if rule is None:
            reason = REASON_NO_RULE
        elif mode not in rule.modes:
            reason = f"Mode {mode.value} not allowed for this endpoint"
        elif endpoint.risk > rule.max_risk:
            reason = (
                f"Risk level {endpoint.risk.value} exceeds maximum allowed {rule.max_risk.value}"
            )
        else:
            await self._audit.append(
                AuditEntry(
                    agent=agent_id,
                    endpoint_id=endpoint_id,
                    method=endpoint.method,
                    path=endpoint.path,
                    status=AuditStatus.ALLOWED,
                    reason=REASON_GRANTED,
                    risk_level=endpoint.risk,
                    require_confirmation=rule.require_confirmation,
                )
            )
            return PermissionResult(
                allowed=True,
                reason=REASON_GRANTED,
                require_confirmation=rule.require_confirmation,
                endpoint=EndpointSummary.from_endpoint(endpoint),
            )

        await self._audit.append(
            AuditEntry(
                agent=agent_id,
                endpoint_id=endpoint_id,
                method=endpoint.method,
                path=endpoint.path,
                status=AuditStatus.DENIED,
                reason=reason,
                risk_level=endpoint.risk,
            )
        )
        return PermissionResult(allowed=False, reason=reason)

    async def _log(
        self,
        agent_id: str,
        endpoint_id: str,
        method: str,
        path: str,
        allowed: bool,
        reason: str,
    ) -> None:
        await self._audit.append(
            AuditEntry(
                agent=agent_id,
                endpoint_id=endpoint_id,
                method=method,
                path=path,
                status=AuditStatus.ALLOWED if allowed else AuditStatus.DENIED,
                reason=reason,
            )
        )

    # --- Catalog queries ---

    async def list_endpoints(self) -> list[dict[str, Any]]:
        """Return every service with its endpoints, in catalog order."""
        catalog = await self._catalog.snapshot()
        result = []
        for service in catalog.services:
            result.append(
                {
                    "id": service.id,
                    "display_name": service.display_name,
                    "base_url": service.base_url,
                    "env": service.env,
                    "endpoints": [
                        {
                            "id": ep.id,
                            "method": ep.method,
                            "path": ep.path,
                            "description": ep.description,
                            "risk": ep.risk.value,
                        }
                        for ep in catalog.endpoints.values()
                        if ep.service.id == service.id
                    ],
                }
            )
        return result

    async def get_endpoint(self, endpoint_id: str) -> dict[str, Any] | None:
        """Return one endpoint with its owning service, or None if absent."""
        catalog = await self._catalog.snapshot()
        endpoint = catalog.endpoints.get(endpoint_id)
        if endpoint is None:
            return None
        return {
            "id": endpoint.id,
            "method": endpoint.method,
            "path": endpoint.path,
            "description": endpoint.description,
            "risk": endpoint.risk.value,
            "service": {
                "id": endpoint.service.id,
                "display_name": endpoint.service.display_name,
                "base_url": endpoint.service.base_url,
                "env": endpoint.service.env,
            },
        }

    async def get_agent_permissions(self, agent_id: str) -> dict[str, Any]:
        """Return an agent's rules and the global defaults; found=False if unknown."""
        catalog = await self._catalog.snapshot()
        defaults = {"unknown_endpoint": {"allow": catalog.defaults.unknown_endpoint_allow}}
        agent = catalog.agents.get(agent_id)
        if agent is None:
            return {"agent_id": agent_id, "found": False, "rules": [], "defaults": defaults}
        return {
            "agent_id": agent.id,
            "display_name": agent.display_name,
            "roles": list(agent.roles),
            "found": True,
            "rules": [
                {
                    "endpoint_id": rule.endpoint_id,
                    "modes": sorted(m.value for m in rule.modes),
                    "max_risk": rule.max_risk.value,
                    "require_confirmation": rule.require_confirmation,
                }
                for rule in agent.rules
            ],
            "defaults": defaults,
        }
