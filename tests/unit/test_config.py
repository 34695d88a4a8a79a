"""
Unit tests for settings loading
"""

import pytest

from docker_log_shipper.config import Settings, load_settings
from docker_log_shipper.core.exceptions import ConfigurationError
from docker_log_shipper.services.error_policy import RelayErrorMode


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Keep the developer's environment and .env out of the tests"""
    for name in ("SHIPPER_LOG_LEVEL", "SHIPPER_LOGSTASH_PORT", "SHIPPER_RELAY_ERROR_POLICY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestSettings:
    def test_defaults(self):
        settings = load_settings()

        assert settings.docker_port == 2375
        assert settings.logstash_host == "localhost"
        assert settings.logstash_port == 5000
        assert settings.relay_error_policy is RelayErrorMode.ABORT
        assert settings.discovery_interval == 2.0
        assert settings.sample_interval == 30.0
        assert settings.top_enabled is True
        assert settings.stale_after_ticks == 5
        assert settings.log_level == "INFO"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("SHIPPER_LOGSTASH_PORT", "5044")
        monkeypatch.setenv("SHIPPER_RELAY_ERROR_POLICY", "continue")

        settings = Settings()

        assert settings.logstash_port == 5044
        assert settings.relay_error_policy is RelayErrorMode.CONTINUE

    def test_log_level_is_normalized(self):
        assert load_settings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_settings(log_level="chatty")


class TestLoadSettings:
    def test_yaml_file(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text(
            "logstash_host: logs.internal\n"
            "logstash_port: 5044\n"
            "sample_interval: 60\n"
            "relay_error_policy: continue\n"
        )

        settings = load_settings(str(config))

        assert settings.logstash_host == "logs.internal"
        assert settings.logstash_port == 5044
        assert settings.sample_interval == 60.0
        assert settings.relay_error_policy is RelayErrorMode.CONTINUE

    def test_overrides_win_over_file(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text("log_level: WARNING\n")

        assert load_settings(str(config), log_level="DEBUG").log_level == "DEBUG"

    def test_none_overrides_are_ignored(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text("log_level: WARNING\n")

        assert load_settings(str(config), log_level=None).log_level == "WARNING"

    def test_file_wins_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHIPPER_LOGSTASH_PORT", "6000")
        config = tmp_path / "shipper.yaml"
        config.write_text("logstash_port: 5044\n")

        assert load_settings(str(config)).logstash_port == 5044

    def test_empty_file(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text("")

        assert load_settings(str(config)).logstash_port == 5000

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text("logstash_port: [5044\n")

        with pytest.raises(ConfigurationError, match="Failed to parse"):
            load_settings(str(config))

    def test_not_a_mapping(self, tmp_path):
        config = tmp_path / "shipper.yaml"
        config.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(str(config))

    @pytest.mark.parametrize("content", [
        "logstash_port: 70000\n",
        "discovery_interval: 0\n",
        "stale_after_ticks: -1\n",
        "relay_error_policy: ignore\n",
    ])
    def test_invalid_values(self, tmp_path, content):
        config = tmp_path / "shipper.yaml"
        config.write_text(content)

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(str(config))
        assert exc_info.value.details["errors"]
