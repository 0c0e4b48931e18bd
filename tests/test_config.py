"""Tests for agent_guard.config — YAML loading, env var substitution, catalog parsing."""

import os
import textwrap
from pathlib import Path

import pytest

from agent_guard.config import (
    ConfigError,
    load_catalog,
    load_config,
    parse_api_index,
    parse_permissions,
    substitute_env_vars,
)
from agent_guard.models import AgentId, Mode, RiskLevel

from .fakes import PERMISSIONS_YAML, write_catalog


class TestSubstituteEnvVars:
    def test_replaces_env_var_in_string(self, monkeypatch):
        monkeypatch.setenv("MY_TOKEN", "secret123")
        assert substitute_env_vars("${MY_TOKEN}") == "secret123"

    def test_replaces_in_nested_structures(self, monkeypatch):
        monkeypatch.setenv("TOKEN", "abc")
        data = {"outer": {"inner": "${TOKEN}"}, "items": ["${TOKEN}", "literal"]}
        assert substitute_env_vars(data) == {
            "outer": {"inner": "abc"},
            "items": ["abc", "literal"],
        }

    def test_raises_on_unset_env_var(self):
        os.environ.pop("UNSET_VAR_XYZ", None)
        with pytest.raises(ConfigError, match="UNSET_VAR_XYZ"):
            substitute_env_vars("${UNSET_VAR_XYZ}")

    def test_ignores_non_string_values(self):
        assert substitute_env_vars(42) == 42
        assert substitute_env_vars(None) is None


VALID_CONFIG_YAML = textwrap.dedent("""\
    gateway:
      host: "0.0.0.0"
      port: 8443
      token: "test-token"
      tls:
        cert: "/path/cert.pem"
        key: "/path/key.pem"
    catalog:
      api_index: "./catalog/api-index.yaml"
      permissions: "./catalog/permissions.yaml"
    storage:
      type: "sqlite"
      path: "./data/test.db"
""")


@pytest.fixture()
def config_file(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text(VALID_CONFIG_YAML)
    return p


def _write(tmp_path, text):
    p = tmp_path / "config.yaml"
    p.write_text(text)
    return str(p)


class TestLoadConfig:
    def test_valid_config(self, config_file):
        cfg = load_config(str(config_file))
        assert cfg.gateway.host == "0.0.0.0"
        assert cfg.gateway.port == 8443
        assert cfg.gateway.token == "test-token"
        assert cfg.gateway.tls.cert == "/path/cert.pem"
        assert cfg.catalog.api_index == "./catalog/api-index.yaml"
        assert cfg.catalog.cache_ttl == 60.0
        assert cfg.storage.path == "./data/test.db"

    def test_defaults(self, config_file):
        cfg = load_config(str(config_file))
        assert cfg.audit.type == "sqlite"
        assert cfg.rate_limit.limit == 10
        assert cfg.rate_limit.window_seconds == 60
        assert cfg.rate_limit.cleanup_interval == 300
        assert cfg.llm.api_key is None
        assert cfg.llm.max_retries == 3
        assert cfg.dispatch.fallback_agent is AgentId.DEV
        assert cfg.dispatch.history_limit == 10
        assert cfg.storage.retention_days == 90

    def test_port_string_coerced_to_int(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_PORT", "9999")
        cfg = load_config(
            _write(tmp_path, VALID_CONFIG_YAML.replace("port: 8443", 'port: "${MY_PORT}"'))
        )
        assert cfg.gateway.port == 9999

    def test_no_tls_config(self, tmp_path):
        text = VALID_CONFIG_YAML.replace(
            '  tls:\n    cert: "/path/cert.pem"\n    key: "/path/key.pem"\n', ""
        )
        cfg = load_config(_write(tmp_path, text))
        assert cfg.gateway.tls is None

    def test_missing_gateway_token(self, tmp_path):
        text = VALID_CONFIG_YAML.replace('  token: "test-token"\n', "")
        with pytest.raises(ConfigError, match="gateway.token"):
            load_config(_write(tmp_path, text))

    def test_missing_catalog_section(self, tmp_path):
        text = VALID_CONFIG_YAML.split("catalog:")[0] + 'storage:\n  type: sqlite\n  path: "x"\n'
        with pytest.raises(ConfigError, match="catalog"):
            load_config(_write(tmp_path, text))

    def test_missing_config_file(self):
        with pytest.raises(ConfigError, match="not found"):
            load_config("/nonexistent/config.yaml")

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(ConfigError, match="Malformed"):
            load_config(_write(tmp_path, "gateway: [unclosed\n"))

    def test_storage_retention(self, tmp_path):
        text = VALID_CONFIG_YAML.replace(
            'path: "./data/test.db"', 'path: "./data/test.db"\n  retention_days: "30"'
        )
        assert load_config(_write(tmp_path, text)).storage.retention_days == 30

    def test_storage_retention_not_int(self, tmp_path):
        text = VALID_CONFIG_YAML.replace(
            'path: "./data/test.db"', 'path: "./data/test.db"\n  retention_days: soon'
        )
        with pytest.raises(ConfigError, match="storage.retention_days"):
            load_config(_write(tmp_path, text))

    def test_unsupported_storage_type(self, tmp_path):
        text = VALID_CONFIG_YAML.replace('type: "sqlite"', 'type: "postgres"')
        with pytest.raises(ConfigError, match="Unsupported storage type"):
            load_config(_write(tmp_path, text))

    def test_jsonl_audit_requires_path(self, tmp_path):
        with pytest.raises(ConfigError, match="audit.path"):
            load_config(_write(tmp_path, VALID_CONFIG_YAML + "audit:\n  type: jsonl\n"))

    def test_jsonl_audit(self, tmp_path):
        cfg = load_config(
            _write(tmp_path, VALID_CONFIG_YAML + "audit:\n  type: jsonl\n  path: ./a.jsonl\n")
        )
        assert cfg.audit.type == "jsonl"
        assert cfg.audit.path == "./a.jsonl"

    def test_rate_limit_must_be_positive(self, tmp_path):
        text = VALID_CONFIG_YAML + "rate_limit:\n  limit: 0\n"
        with pytest.raises(ConfigError, match="positive"):
            load_config(_write(tmp_path, text))

    def test_negative_cache_ttl(self, tmp_path):
        text = VALID_CONFIG_YAML.replace(
            'permissions: "./catalog/permissions.yaml"',
            'permissions: "./catalog/permissions.yaml"\n  cache_ttl: -1',
        )
        with pytest.raises(ConfigError, match="cache_ttl"):
            load_config(_write(tmp_path, text))

    def test_invalid_fallback_agent(self, tmp_path):
        text = VALID_CONFIG_YAML + "dispatch:\n  fallback_agent: nobody\n"
        with pytest.raises(ConfigError, match="fallback_agent"):
            load_config(_write(tmp_path, text))

    def test_llm_api_key_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LLM_KEY", "sk-test")
        text = VALID_CONFIG_YAML + 'llm:\n  api_key: "${LLM_KEY}"\n  model_light: small\n'
        cfg = load_config(_write(tmp_path, text))
        assert cfg.llm.api_key == "sk-test"
        assert cfg.llm.model_light == "small"
        assert cfg.llm.model_heavy == "gpt-4.1"


class TestParseApiIndex:
    def test_services_and_endpoints(self, tmp_path):
        catalog = load_catalog(*write_catalog(tmp_path))
        assert [s.id for s in catalog.services] == ["github", "hub"]
        ep = catalog.endpoints["github.repo.file.upsert"]
        assert ep.method == "PUT"
        assert ep.risk is RiskLevel.MEDIUM
        assert ep.service.base_url == "https://api.github.com"

    def test_risk_defaults_to_low(self):
        _, endpoints = parse_api_index(
            {"services": [{"id": "s", "endpoints": [{"id": "e", "method": "GET", "path": "/"}]}]}
        )
        assert endpoints["e"].risk is RiskLevel.LOW

    def test_invalid_risk(self):
        raw = {
            "services": [
                {
                    "id": "s",
                    "endpoints": [{"id": "e", "method": "GET", "path": "/", "risk": "extreme"}],
                }
            ]
        }
        with pytest.raises(ConfigError, match="extreme"):
            parse_api_index(raw)

    def test_duplicate_endpoint_id(self):
        ep = {"id": "e", "method": "GET", "path": "/"}
        raw = {"services": [{"id": "a", "endpoints": [ep]}, {"id": "b", "endpoints": [ep]}]}
        with pytest.raises(ConfigError, match="Duplicate endpoint"):
            parse_api_index(raw)

    def test_missing_method(self):
        raw = {"services": [{"id": "s", "endpoints": [{"id": "e", "path": "/"}]}]}
        with pytest.raises(ConfigError, match="method"):
            parse_api_index(raw)


class TestParsePermissions:
    def test_valid_permissions(self, tmp_path):
        catalog = load_catalog(*write_catalog(tmp_path))
        dev = catalog.agents["dev"]
        assert dev.roles == ("development",)
        rule = dev.rule_for("github.repo.file.upsert")
        assert rule.modes == frozenset({Mode.READ, Mode.WRITE})
        assert rule.max_risk is RiskLevel.MEDIUM
        assert rule.require_confirmation is True
        assert dev.rule_for("unknown") is None
        assert catalog.agents["analytics"].rules == ()
        assert catalog.defaults.unknown_endpoint_allow is False

    def test_defaults_missing_means_deny(self):
        agents, defaults = parse_permissions({"agents": []})
        assert agents == {}
        assert defaults.unknown_endpoint_allow is False

    def test_duplicate_rule_rejected(self):
        rule = {"endpoint_id": "e", "modes": ["read"], "max_risk": "low"}
        with pytest.raises(ConfigError, match="Duplicate permission rule"):
            parse_permissions({"agents": [{"id": "dev", "rules": [rule, rule]}]})

    def test_duplicate_agent_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate agent"):
            parse_permissions({"agents": [{"id": "dev"}, {"id": "dev"}]})

    def test_invalid_mode(self):
        rule = {"endpoint_id": "e", "modes": ["delete"], "max_risk": "low"}
        with pytest.raises(ConfigError, match="delete"):
            parse_permissions({"agents": [{"id": "dev", "rules": [rule]}]})

    def test_missing_agents_key(self):
        with pytest.raises(ConfigError, match="agents"):
            parse_permissions({"defaults": {}})


class TestLoadCatalog:
    def test_missing_file(self, tmp_path):
        api_path, _ = write_catalog(tmp_path)
        with pytest.raises(ConfigError, match="not found"):
            load_catalog(api_path, str(tmp_path / "nope.yaml"))

    def test_non_mapping_file(self, tmp_path):
        api_path, perm_path = write_catalog(tmp_path, permissions="- just\n- a list\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_catalog(api_path, perm_path)

    def test_json_catalog_accepted(self, tmp_path):
        api_path = tmp_path / "api-index.json"
        api_path.write_text(
            '{"services": [{"id": "s", "base_url": "https://s", "endpoints": '
            '[{"id": "e", "method": "get", "path": "/e", "risk": "high"}]}]}'
        )
        perm_path = tmp_path / "permissions.yaml"
        perm_path.write_text(PERMISSIONS_YAML)
        catalog = load_catalog(str(api_path), str(perm_path))
        assert catalog.endpoints["e"].risk is RiskLevel.HIGH
        assert catalog.endpoints["e"].method == "GET"

    def test_repository_catalog_loads(self):
        root = Path(__file__).resolve().parent.parent / "catalog"
        catalog = load_catalog(str(root / "api-index.yaml"), str(root / "permissions.yaml"))
        assert {a.value for a in AgentId} <= set(catalog.agents)
        for agent in catalog.agents.values():
            for rule in agent.rules:
                assert rule.endpoint_id in catalog.endpoints
