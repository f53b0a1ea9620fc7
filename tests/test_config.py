"""
Tests for configuration loading
"""

from pathlib import Path

import pytest

from wa_gateway.config import GatewayConfig, LifecycleConfig, apply_env_overrides, load_config, load_config_from_file
from wa_gateway.config.loader import interpolate_env_vars


class TestInterpolation:
    """Test ${VAR} and ${VAR:-default} substitution"""

    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("WA_TEST_URL", "http://hooks.example")
        assert interpolate_env_vars("${WA_TEST_URL}/in") == "http://hooks.example/in"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("WA_TEST_MISSING", raising=False)
        assert interpolate_env_vars("${WA_TEST_MISSING:-fallback}") == "fallback"
        assert interpolate_env_vars("${WA_TEST_MISSING:-}") == ""

    def test_required_variable_missing(self, monkeypatch):
        monkeypatch.delenv("WA_TEST_MISSING", raising=False)
        with pytest.raises(KeyError):
            interpolate_env_vars({"webhook": {"url": "${WA_TEST_MISSING}"}})

    def test_explicit_environ(self):
        assert interpolate_env_vars("${HOST}:${PORT:-3030}", {"HOST": "gw"}) == "gw:3030"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("WA_TEST_ARG", "--lang=en")
        value = {"bridge": {"client": {"browser_args": ["--no-sandbox", "${WA_TEST_ARG}"]}}, "port": 3030}
        assert interpolate_env_vars(value) == {
            "bridge": {"client": {"browser_args": ["--no-sandbox", "--lang=en"]}},
            "port": 3030,
        }


class TestLoadConfig:
    """Test file discovery, defaults and environment overrides"""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        # Keep the search away from any gateway.yaml in the checkout
        monkeypatch.chdir(tmp_path)
        for name in ("PORT", "WEBHOOK_URL", "WEBHOOK_TOKEN", "GATEWAY_CONFIG"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self, tmp_path):
        config = load_config(working_dir=tmp_path)

        assert config.server.port == 3030
        assert config.bridge.http_url == "http://localhost:3100"
        assert config.lifecycle == LifecycleConfig()
        assert config.data_dir == tmp_path / "data"
        assert config.sessions_path == tmp_path / "data" / "sessions.json"
        assert config.webhook_path == tmp_path / "data" / "webhook-config.json"

    def test_file_in_working_dir(self, tmp_path):
        (tmp_path / "gateway.yaml").write_text(
            "server:\n"
            "  port: 4000\n"
            "storage:\n"
            "  data_dir: state\n"
            "lifecycle:\n"
            "  stuck_threshold: 600\n"
            "  init_retry_attempts: '5'\n"
            "bridge:\n"
            "  client:\n"
            "    headless: false\n"
        )

        config = load_config(working_dir=tmp_path)

        assert config.server.port == 4000
        assert config.data_dir == tmp_path / "state"
        assert config.lifecycle.stuck_threshold == 600.0
        assert config.lifecycle.init_retry_attempts == 5
        assert config.lifecycle.loading_timeout == 120.0
        assert config.bridge.client == {"headless": False}

    def test_config_subdirectory(self, tmp_path):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "gateway.yaml").write_text("server:\n  port: 4100\n")

        assert load_config(working_dir=tmp_path).server.port == 4100

    def test_explicit_path_resolves_relative_to_file(self, tmp_path):
        config_dir = tmp_path / "etc"
        config_dir.mkdir()
        path = config_dir / "custom.yaml"
        path.write_text("storage:\n  data_dir: ./data\n")

        config = load_config(path)

        assert config.working_dir == config_dir.absolute()
        assert config.data_dir == config_dir.absolute() / "data"

    def test_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "service.yaml"
        path.write_text("server:\n  port: 4200\n")
        monkeypatch.setenv("GATEWAY_CONFIG", str(path))

        assert load_config().server.port == 4200

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "nope.yaml")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text("")
        assert load_config_from_file(path).server.port == 3030

    def test_environment_overrides(self, tmp_path, monkeypatch):
        (tmp_path / "gateway.yaml").write_text("server:\n  port: 4000\n")
        monkeypatch.setenv("PORT", "5000")
        monkeypatch.setenv("WEBHOOK_URL", "http://hooks.example/in")
        monkeypatch.setenv("WEBHOOK_TOKEN", "tok")

        config = load_config(working_dir=tmp_path)

        assert config.server.port == 5000
        assert config.webhook.url == "http://hooks.example/in"
        assert config.webhook.token == "tok"

    def test_apply_env_overrides_explicit_environ(self):
        config = apply_env_overrides(GatewayConfig(), {"PORT": "3999"})
        assert config.server.port == 3999

    def test_absolute_data_dir(self, tmp_path):
        config = GatewayConfig.from_dict({"storage": {"data_dir": str(tmp_path / "abs")}})
        assert config.data_dir == tmp_path / "abs"

    def test_round_trip_dict(self):
        config = GatewayConfig.from_dict({"server": {"port": 3031}, "working_dir": "/srv/wa"})
        data = config.to_dict()

        assert data["server"]["port"] == 3031
        assert data["working_dir"] == str(Path("/srv/wa"))
        assert GatewayConfig.from_dict(data).lifecycle == config.lifecycle


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
