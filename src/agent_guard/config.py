"""Configuration and catalog loading with env var substitution and validation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from agent_guard.models import AgentId, Endpoint, Mode, RiskLevel, Service


class ConfigError(Exception):
    """Raised on configuration or catalog loading and validation errors."""


# --- Env var substitution ---

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")


def _replacer(match: re.Match) -> str:
    var = match.group(1)
    val = os.environ.get(var)
    if val is None:
        raise ConfigError(f"Environment variable {var} is not set")
    return val


def substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} in all string values."""
    if isinstance(obj, str):
        return _ENV_VAR_RE.sub(_replacer, obj)
    if isinstance(obj, dict):
        return {k: substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    return obj


# --- Config dataclasses ---


@dataclass
class TLSConfig:
    cert: str
    key: str


@dataclass
class GatewayConfig:
    host: str
    port: int
    token: str
    tls: TLSConfig | None = None


@dataclass
class CatalogConfig:
    api_index: str
    permissions: str
    cache_ttl: float = 60.0


@dataclass
class StorageConfig:
    type: str
    path: str
    retention_days: int = 90  # 0 keeps messages forever


@dataclass
class AuditConfig:
    type: str = "sqlite"
    path: str | None = None


@dataclass
class RateLimitConfig:
    limit: int = 10
    window_seconds: int = 60
    cleanup_interval: int = 300


@dataclass
class LLMConfig:
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model_heavy: str = "gpt-4.1"
    model_light: str = "gpt-4o-mini"
    max_retries: int = 3
    timeout: int = 60


@dataclass
class DispatchConfig:
    fallback_agent: AgentId = AgentId.DEV
    history_limit: int = 10


@dataclass
class Config:
    gateway: GatewayConfig
    catalog: CatalogConfig
    storage: StorageConfig
    audit: AuditConfig = field(default_factory=AuditConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)


# --- Catalog dataclasses ---


@dataclass(frozen=True)
class PermissionRule:
    endpoint_id: str
    modes: frozenset[Mode]
    max_risk: RiskLevel
    require_confirmation: bool = False


@dataclass(frozen=True)
class AgentPermissions:
    id: str
    display_name: str
    roles: tuple[str, ...] = ()
    rules: tuple[PermissionRule, ...] = ()

    def rule_for(self, endpoint_id: str) -> PermissionRule | None:
        for rule in self.rules:
            if rule.endpoint_id == endpoint_id:
                return rule
        return None


@dataclass(frozen=True)
class Defaults:
    unknown_endpoint_allow: bool = False


@dataclass(frozen=True)
class Catalog:
    """Immutable snapshot of endpoints, agent permissions and defaults."""

    services: tuple[Service, ...]
    endpoints: dict[str, Endpoint]
    agents: dict[str, AgentPermissions]
    defaults: Defaults


# --- Helpers ---


def _require(data: dict, key: str, context: str) -> Any:
    """Get a required key from a dict or raise ConfigError."""
    if not isinstance(data, dict) or key not in data or data[key] is None:
        raise ConfigError(f"Missing required config: {context}.{key}")
    return data[key]


def _coerce_int(value: Any, field_name: str) -> int:
    """Coerce a value to int (handles env-substituted strings)."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Cannot convert {field_name} to int: {value!r}") from None


def _coerce_enum(enum_cls: type, value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = "/".join(m.value for m in enum_cls)
        raise ConfigError(f"Invalid {field_name}: {value!r} (must be {allowed})") from None


def _read_yaml(path: str, kind: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"{kind} file not found: {path}")
    try:
        with open(p) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Malformed {kind.lower()} file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{kind} file must contain a mapping: {path}")
    return substitute_env_vars(raw)


# --- Loaders ---


def load_config(path: str = "config.yaml") -> Config:
    """Load and validate config.yaml, returning a typed Config."""
    raw = _read_yaml(path, "Config")

    # Gateway
    gw_raw = _require(raw, "gateway", "")
    tls = None
    if gw_raw.get("tls"):
        tls_raw = gw_raw["tls"]
        tls = TLSConfig(
            cert=_require(tls_raw, "cert", "gateway.tls"),
            key=_require(tls_raw, "key", "gateway.tls"),
        )
    token = _require(gw_raw, "token", "gateway")
    if not token:
        raise ConfigError("Missing required config: gateway.token")
    gateway = GatewayConfig(
        host=_require(gw_raw, "host", "gateway"),
        port=_coerce_int(_require(gw_raw, "port", "gateway"), "gateway.port"),
        token=token,
        tls=tls,
    )

    # Catalog
    cat_raw = _require(raw, "catalog", "")
    cache_ttl = cat_raw.get("cache_ttl", 60)
    if not isinstance(cache_ttl, int | float) or cache_ttl < 0:
        raise ConfigError(f"catalog.cache_ttl must be a non-negative number, got: {cache_ttl!r}")
    catalog = CatalogConfig(
        api_index=_require(cat_raw, "api_index", "catalog"),
        permissions=_require(cat_raw, "permissions", "catalog"),
        cache_ttl=float(cache_ttl),
    )

    # Storage
    stor_raw = _require(raw, "storage", "")
    stor_type = _require(stor_raw, "type", "storage")
    if stor_type != "sqlite":
        raise ConfigError(f"Unsupported storage type: {stor_type!r} (only 'sqlite' is supported)")
    storage = StorageConfig(
        type=stor_type,
        path=_require(stor_raw, "path", "storage"),
        retention_days=_coerce_int(
            stor_raw.get("retention_days", 90), "storage.retention_days"
        ),
    )

    # Audit
    audit_raw = raw.get("audit") or {}
    audit_type = audit_raw.get("type", "sqlite")
    if audit_type not in ("sqlite", "jsonl"):
        raise ConfigError(f"Unsupported audit type: {audit_type!r} (must be sqlite/jsonl)")
    audit = AuditConfig(type=audit_type, path=audit_raw.get("path"))
    if audit.type == "jsonl" and not audit.path:
        raise ConfigError("Missing required config: audit.path")

    # Rate limit
    rl_raw = raw.get("rate_limit") or {}
    rate_limit = RateLimitConfig(
        limit=_coerce_int(rl_raw.get("limit", 10), "rate_limit.limit"),
        window_seconds=_coerce_int(rl_raw.get("window_seconds", 60), "rate_limit.window_seconds"),
        cleanup_interval=_coerce_int(
            rl_raw.get("cleanup_interval", 300), "rate_limit.cleanup_interval"
        ),
    )
    if rate_limit.limit <= 0 or rate_limit.window_seconds <= 0:
        raise ConfigError("rate_limit.limit and rate_limit.window_seconds must be positive")

    # LLM
    llm_raw = raw.get("llm") or {}
    llm = LLMConfig(
        api_key=llm_raw.get("api_key") or None,
        base_url=llm_raw.get("base_url", LLMConfig.base_url),
        model_heavy=llm_raw.get("model_heavy", LLMConfig.model_heavy),
        model_light=llm_raw.get("model_light", LLMConfig.model_light),
        max_retries=_coerce_int(llm_raw.get("max_retries", 3), "llm.max_retries"),
        timeout=_coerce_int(llm_raw.get("timeout", 60), "llm.timeout"),
    )

    # Dispatch
    disp_raw = raw.get("dispatch") or {}
    dispatch = DispatchConfig(
        fallback_agent=_coerce_enum(
            AgentId, disp_raw.get("fallback_agent", "dev"), "dispatch.fallback_agent"
        ),
        history_limit=_coerce_int(disp_raw.get("history_limit", 10), "dispatch.history_limit"),
    )

    return Config(
        gateway=gateway,
        catalog=catalog,
        storage=storage,
        audit=audit,
        rate_limit=rate_limit,
        llm=llm,
        dispatch=dispatch,
    )


def parse_api_index(raw: dict) -> tuple[tuple[Service, ...], dict[str, Endpoint]]:
    """Parse the endpoint catalog: services, each with a list of endpoints."""
    services: list[Service] = []
    endpoints: dict[str, Endpoint] = {}
    for svc_raw in _require(raw, "services", "api_index") or []:
        service = Service(
            id=_require(svc_raw, "id", "api_index.services[]"),
            display_name=svc_raw.get("display_name", svc_raw["id"]),
            base_url=svc_raw.get("base_url", ""),
            env=svc_raw.get("env", ""),
        )
        services.append(service)
        for ep_raw in svc_raw.get("endpoints") or []:
            ep_id = _require(ep_raw, "id", f"api_index.{service.id}.endpoints[]")
            if ep_id in endpoints:
                raise ConfigError(f"Duplicate endpoint id: {ep_id!r}")
            endpoints[ep_id] = Endpoint(
                id=ep_id,
                method=str(_require(ep_raw, "method", f"endpoint {ep_id}")).upper(),
                path=_require(ep_raw, "path", f"endpoint {ep_id}"),
                risk=_coerce_enum(RiskLevel, ep_raw.get("risk", "low"), f"risk of {ep_id}"),
                service=service,
                description=ep_raw.get("description", ""),
            )
    return tuple(services), endpoints


def parse_permissions(raw: dict) -> tuple[dict[str, AgentPermissions], Defaults]:
    """Parse the agent permission table and global defaults."""
    agents: dict[str, AgentPermissions] = {}
    for agent_raw in _require(raw, "agents", "permissions") or []:
        agent_id = _require(agent_raw, "id", "permissions.agents[]")
        if agent_id in agents:
            raise ConfigError(f"Duplicate agent id: {agent_id!r}")

        rules: list[PermissionRule] = []
        seen: set[str] = set()
        for rule_raw in agent_raw.get("rules") or []:
            endpoint_id = _require(rule_raw, "endpoint_id", f"rules of {agent_id}")
            if endpoint_id in seen:
                raise ConfigError(
                    f"Duplicate permission rule for agent {agent_id!r}: {endpoint_id!r}"
                )
            seen.add(endpoint_id)
            modes = frozenset(
                _coerce_enum(Mode, m, f"mode of {agent_id}/{endpoint_id}")
                for m in rule_raw.get("modes") or []
            )
            rules.append(
                PermissionRule(
                    endpoint_id=endpoint_id,
                    modes=modes,
                    max_risk=_coerce_enum(
                        RiskLevel,
                        rule_raw.get("max_risk", "low"),
                        f"max_risk of {agent_id}/{endpoint_id}",
                    ),
                    require_confirmation=bool(rule_raw.get("require_confirmation", False)),
                )
            )

        agents[agent_id] = AgentPermissions(
            id=agent_id,
            display_name=agent_raw.get("display_name", agent_id),
            roles=tuple(agent_raw.get("roles") or ()),
            rules=tuple(rules),
        )

    defaults_raw = raw.get("defaults") or {}
    unknown = defaults_raw.get("unknown_endpoint") or {}
    defaults = Defaults(unknown_endpoint_allow=bool(unknown.get("allow", False)))
    return agents, defaults


def load_catalog(api_index_path: str, permissions_path: str) -> Catalog:
    """Load both catalog files (YAML or JSON) into one immutable Catalog."""
    services, endpoints = parse_api_index(_read_yaml(api_index_path, "API index"))
    agents, defaults = parse_permissions(_read_yaml(permissions_path, "Permissions"))
    return Catalog(services=services, endpoints=endpoints, agents=agents, defaults=defaults)
