"""
Unit tests for configuration loading
"""

import pytest
import yaml
from pydantic import ValidationError

from dlq_intel.config import DlqIntelSettings, load_config, merge_configs
from dlq_intel.config.loader import UnresolvedVariableError, expand_env_references, load_yaml_config


def write_yaml(tmp_path, data) -> str:
    path = tmp_path / "dlq-intel.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestDefaults:
    """Test defaults without a config file"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DLQ_STORE_BACKEND", raising=False)
        config = load_config()

        assert config.store.backend == "memory"
        assert config.scanner.active_interval_seconds == 30
        assert config.scanner.inactive_interval_seconds == 300
        assert config.scanner.max_parallel_scans == 10
        assert config.replay.rate_limit_window_seconds == 3600
        assert config.rules.regex_timeout_seconds == 1.0
        assert config.api.max_page_size == 200
        assert config.api.export_max_rows == 10000
        assert config.namespaces == []

    def test_section_env_override(self, monkeypatch):
        monkeypatch.setenv("DLQ_SCANNER_MAX_PARALLEL_SCANS", "4")
        monkeypatch.setenv("DLQ_API_PORT", "9000")

        config = DlqIntelSettings()

        assert config.scanner.max_parallel_scans == 4
        assert config.api.port == 9000


class TestYamlLoading:
    """Test YAML-driven configuration"""

    def test_load_from_file(self, tmp_path):
        path = write_yaml(
            tmp_path,
            {
                "store": {"backend": "postgres", "connection_url": "postgresql://localhost/dlq"},
                "scanner": {"active_interval_seconds": 10, "peek_batch_size": 50},
                "namespaces": [
                    {"id": "ns-1", "name": "orders-prod", "connection_string": "Endpoint=sb://a/"},
                    {"id": "ns-2", "name": "billing", "active": False},
                ],
            },
        )

        config = load_config(path)

        assert config.store.backend == "postgres"
        assert config.scanner.active_interval_seconds == 10
        assert config.scanner.peek_batch_size == 50
        assert [ns.id for ns in config.namespaces] == ["ns-1", "ns-2"]
        assert config.namespaces[1].active is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_config(str(path)) == {}

    def test_invalid_backend(self, tmp_path):
        path = write_yaml(tmp_path, {"store": {"backend": "mongodb"}})
        with pytest.raises(ValidationError):
            load_config(path)

    def test_duplicate_namespace_ids(self, tmp_path):
        path = write_yaml(
            tmp_path,
            {"namespaces": [{"id": "ns-1", "name": "a"}, {"id": "ns-1", "name": "b"}]},
        )
        with pytest.raises(ValidationError):
            load_config(path)

    def test_client_factory_must_be_module_colon_attribute(self):
        with pytest.raises(ValidationError):
            DlqIntelSettings(broker={"client_factory": "not-a-path"})


class TestMergeConfigs:
    def test_later_configs_override(self):
        merged = merge_configs(
            {"scanner": {"enabled": True, "peek_batch_size": 100}, "api": {"port": 8080}},
            {"scanner": {"peek_batch_size": 20}},
            None,
        )

        assert merged == {
            "scanner": {"enabled": True, "peek_batch_size": 20},
            "api": {"port": 8080},
        }


class TestEnvReferences:
    """Test ${VAR} substitution in config files"""

    def test_nested_references_expanded(self):
        document = {
            "store": {"connection_url": "postgresql://${DB_USER}@db/${DB_NAME:-dlq}"},
            "namespaces": [{"id": "ns-1", "connection_string": "${NS1_CONN}"}],
            "api": {"port": 8080},
        }

        expanded = expand_env_references(
            document, {"DB_USER": "svc", "NS1_CONN": "Endpoint=sb://ns1/"}
        )

        assert expanded["store"]["connection_url"] == "postgresql://svc@db/dlq"
        assert expanded["namespaces"][0]["connection_string"] == "Endpoint=sb://ns1/"
        assert expanded["api"]["port"] == 8080

    def test_empty_default_allowed(self):
        assert expand_env_references("${MISSING:-}", {}) == ""

    def test_unset_variable_without_default(self):
        with pytest.raises(UnresolvedVariableError, match="MISSING"):
            expand_env_references({"a": ["${MISSING}"]}, {})

    def test_load_config_reads_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ORDERS_CONN", "Endpoint=sb://orders/;SharedAccessKey=abc")
        path = write_yaml(
            tmp_path,
            {"namespaces": [{"id": "ns-1", "name": "orders", "connection_string": "${ORDERS_CONN}"}]},
        )

        config = load_config(path)

        assert config.namespaces[0].connection_string.startswith("Endpoint=sb://orders/")

    def test_overrides_win_over_file(self, tmp_path):
        path = write_yaml(tmp_path, {"scanner": {"peek_batch_size": 50, "enabled": True}})

        config = load_config(path, {"scanner": {"enabled": False}})

        assert config.scanner.enabled is False
        assert config.scanner.peek_batch_size == 50
