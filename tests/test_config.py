"""
Tests for YAML configuration loading
"""

import pytest

from config.yaml_config import inject_env_vars, load_yaml_config


def write_config(tmp_path, body):
    path = tmp_path / "config.yaml"
    path.write_text(body)
    return str(path)


class TestEnvInjection:

    def test_substitutes_set_variables(self, monkeypatch):
        monkeypatch.setenv("SIM_TEST_DIR", "/data/accounts")
        assert inject_env_vars({"dir": "${SIM_TEST_DIR}"}) == {"dir": "/data/accounts"}

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("SIM_TEST_UNSET", raising=False)
        assert inject_env_vars(["${SIM_TEST_UNSET:-memory}"]) == ["memory"]

    def test_unset_without_default_is_empty(self, monkeypatch):
        monkeypatch.delenv("SIM_TEST_UNSET", raising=False)
        assert inject_env_vars("x${SIM_TEST_UNSET}y") == "xy"


class TestLoadYamlConfig:

    def test_defaults_fill_missing_sections(self, tmp_path):
        config = load_yaml_config(write_config(tmp_path, 'version: "1.0"\n'))

        assert config.market.symbol == "BTCUSDT"
        assert config.trading.open_policy == "reject"
        assert config.storage.backend == "json"
        assert config.exit_monitor.exit_retry_attempts == 3
        assert config.monitoring.log_level == "INFO"

    def test_values_are_normalized(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SIM_TEST_BACKEND", "MEMORY")
        config = load_yaml_config(write_config(tmp_path, """
version: "1.0"
market:
  symbol: eth/usdt
  price_feed:
    enabled: "false"
trading:
  open_policy: Overwrite
storage:
  backend: ${SIM_TEST_BACKEND}
monitoring:
  log_level: debug
"""))

        assert config.market.symbol == "ETHUSDT"
        assert config.market.price_feed.enabled is False
        assert config.trading.open_policy == "overwrite"
        assert config.storage.backend == "memory"
        assert config.monitoring.log_level == "DEBUG"

    @pytest.mark.parametrize("body", [
        'version: "1.0"\ntrading:\n  open_policy: merge\n',
        'version: "1.0"\nstorage:\n  backend: redis\n',
        'version: "1.0"\nexit_monitor:\n  exit_retry_attempts: 0\n',
        'market: {}\n',
    ])
    def test_invalid_values_rejected(self, tmp_path, body):
        with pytest.raises(ValueError):
            load_yaml_config(write_config(tmp_path, body))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml_config(str(tmp_path / "absent.yaml"))

    def test_bundled_config_loads(self):
        config = load_yaml_config("config.yaml")
        assert config.version == "1.0"
