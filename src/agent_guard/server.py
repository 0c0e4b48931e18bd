"""WebSocket gateway exposing the guard and dispatcher as JSON requests.

Protocol:
    -> {"type": "auth", "token": "..."}
    <- {"type": "auth_ok"}                      (or close 4001)
    -> {"id": "1", "method": "evaluate", "params": {...}}
    <- {"id": "1", "result": {...}}             (or {"id": "1", "error": {...}})
"""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from typing import Any

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from agent_guard.audit import AuditSink
from agent_guard.config import ConfigError
from agent_guard.engine import PermissionEngine
from agent_guard.models import AuditEntry, AuditStatus, DispatchMode, Mode
from agent_guard.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

AUTH_TIMEOUT = 10.0
CLOSE_AUTH_FAILED = 4001


class RequestError(Exception):
    """Raised for malformed requests; reported back to the client."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _entry_dicts(entries: list[AuditEntry]) -> list[dict[str, Any]]:
    return [e.to_dict() for e in entries]


def _param(params: dict, name: str, *, required: bool = True, default: Any = None) -> Any:
    if name not in params or params[name] is None:
        if required:
            raise RequestError("invalid_params", f"Missing parameter: {name}")
        return default
    return params[name]


def _str_param(params: dict, name: str, *, required: bool = True) -> str | None:
    value = _param(params, name, required=required)
    if value is not None and not isinstance(value, str):
        raise RequestError("invalid_params", f"{name} must be a string")
    return value


def _int_param(params: dict, name: str, default: int) -> int:
    value = _param(params, name, required=False, default=default)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RequestError("invalid_params", f"{name} must be an integer") from None


class GatewayServer:
    """Authenticates a connection, then serves requests until it closes."""

    def __init__(
        self,
        *,
        token: str,
        engine: PermissionEngine,
        orchestrator: Orchestrator,
        audit: AuditSink,
    ) -> None:
        self._token = token
        self._engine = engine
        self._orchestrator = orchestrator
        self._audit = audit

    async def handle_connection(self, websocket: ServerConnection) -> None:
        if not await self._authenticate(websocket):
            return
        try:
            async for raw in websocket:
                response = await self.handle_request(raw)
                await websocket.send(json.dumps(response))
        except ConnectionClosed:
            logger.debug("Connection closed")

    async def _authenticate(self, websocket: ServerConnection) -> bool:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=AUTH_TIMEOUT)
            msg = json.loads(raw)
        except (TimeoutError, ValueError, ConnectionClosed):
            await websocket.close(CLOSE_AUTH_FAILED, "Authentication failed")
            return False

        token = msg.get("token") if isinstance(msg, dict) else None
        if (
            not isinstance(msg, dict)
            or msg.get("type") != "auth"
            or not isinstance(token, str)
            or not hmac.compare_digest(token, self._token)
        ):
            logger.warning("Rejected connection: bad auth frame")
            await websocket.close(CLOSE_AUTH_FAILED, "Authentication failed")
            return False

        await websocket.send(json.dumps({"type": "auth_ok"}))
        return True

    async def handle_request(self, raw: str | bytes) -> dict[str, Any]:
        """Decode one request frame and return the response frame."""
        request_id = None
        try:
            try:
                msg = json.loads(raw)
            except ValueError:
                raise RequestError("invalid_json", "Request is not valid JSON") from None
            if not isinstance(msg, dict):
                raise RequestError("invalid_request", "Request must be a JSON object")
            request_id = msg.get("id")
            method = msg.get("method")
            params = msg.get("params") or {}
            if not isinstance(params, dict):
                raise RequestError("invalid_params", "params must be an object")
            result = await self._call(method, params)
        except RequestError as exc:
            return {"id": request_id, "error": {"code": exc.code, "message": str(exc)}}
        except ConfigError as exc:
            logger.error("Configuration error while serving %r: %s", request_id, exc)
            return {"id": request_id, "error": {"code": "configuration", "message": str(exc)}}
        except Exception:
            logger.error("Request %r failed", request_id, exc_info=True)
            return {"id": request_id, "error": {"code": "internal", "message": "Internal error"}}
        return {"id": request_id, "result": result}

    async def _call(self, method: Any, params: dict) -> Any:
        if method == "evaluate":
            try:
                mode = Mode(_param(params, "mode"))
            except ValueError:
                raise RequestError("invalid_params", "mode must be read/write") from None
            result = await self._engine.evaluate(
                _str_param(params, "agent_id"), _str_param(params, "endpoint_id"), mode
            )
            return result.to_dict()
        if method == "list_endpoints":
            return await self._engine.list_endpoints()
        if method == "get_endpoint":
            return await self._engine.get_endpoint(_str_param(params, "endpoint_id"))
        if method == "get_agent_permissions":
            return await self._engine.get_agent_permissions(_str_param(params, "agent_id"))
        if method == "get_logs":
            status = _param(params, "status", required=False)
            try:
                status = AuditStatus(status) if status else None
            except ValueError:
                raise RequestError("invalid_params", "invalid status filter") from None
            entries = await self._audit.query(
                limit=_int_param(params, "limit", 100),
                agent=_str_param(params, "agent", required=False),
                status=status,
            )
            return _entry_dicts(entries)
        if method == "get_debug_logs":
            limit = _int_param(params, "limit", 50)
            return _entry_dicts(await self._audit.debug_entries(limit))
        if method == "dispatch":
            try:
                mode = DispatchMode(_param(params, "mode", required=False, default="auto"))
            except ValueError:
                raise RequestError("invalid_params", "mode must be auto/manual") from None
            result = await self._orchestrator.dispatch(
                _str_param(params, "message"),
                _str_param(params, "user_id"),
                mode,
                _str_param(params, "target_agent", required=False),
            )
            return result.to_dict()
        if method == "mark_as_read":
            await self._orchestrator.mark_as_read(
                _str_param(params, "conversation_id"), _str_param(params, "reader")
            )
            return {"ok": True}
        raise RequestError("unknown_method", f"Unknown method: {method}")
