import pytest
import yaml

from signoff.config.settings import SignoffSettings, YamlConfigSource
from signoff.permissions import Role


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run each test away from any real signoff.yaml or SIGNOFF_* vars."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SIGNOFF_CONFIG", raising=False)
    monkeypatch.delenv("SIGNOFF_DEBUG", raising=False)


def _write(path, data):
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


class TestDefaults:

    def test_defaults(self):
        settings = SignoffSettings(_env_file=None)
        assert settings.debug is False
        assert settings.workflows.default_timeout_hours == 72.0
        assert settings.workflows.expire_after_second_timeout is True
        assert settings.routing.seniority_cap is Role.PUBLISHER
        assert settings.routing.urgency_time_factors["urgent"] == 0.2
        assert settings.notifications.inbox_capacity == 50
        assert settings.notifications.admin_recipients == ["role:admin"]
        assert settings.otel.enabled is False
        assert settings.otel.endpoint == "http://localhost:4317"

    def test_defaults_validate(self):
        SignoffSettings(_env_file=None).validate()


class TestYamlMapping:
    """Simplified signoff.yaml keys land in the nested settings."""

    def _build_source(self, yaml_data):
        source = YamlConfigSource.__new__(YamlConfigSource)
        source._yaml_data = yaml_data
        return source

    def test_workflows_string_is_definitions_path(self):
        result = self._build_source({"workflows": "./flows"})._map_to_settings()
        assert result["workflows"] == {"definitions_path": "./flows"}

    def test_inbox_capacity_shortcut(self):
        result = self._build_source({"inbox_capacity": 10})._map_to_settings()
        assert result["notifications"] == {"inbox_capacity": 10}

    def test_tracing_maps_to_otel(self):
        result = self._build_source(
            {"tracing": {"type": "otlp_http", "endpoint": "http://collector:4318"}}
        )._map_to_settings()
        assert result["otel"] == {
            "exporter_type": "otlp_http",
            "enabled": True,
            "endpoint": "http://collector:4318",
        }

    def test_tracing_none_disables(self):
        result = self._build_source({"tracing": {"type": "none"}})._map_to_settings()
        assert result["otel"]["enabled"] is False

    def test_empty(self):
        assert self._build_source({})._map_to_settings() == {}

    def test_file_loaded(self, tmp_path):
        config = _write(
            tmp_path / "custom.yaml",
            {
                "debug": True,
                "workflows": {"default_timeout_hours": 24, "expire_after_second_timeout": False},
                "routing": {"workload_weight": 0.8},
                "inbox_capacity": 5,
                "tracing": {"type": "console"},
            },
        )
        settings = SignoffSettings(_config_path=str(config), _env_file=None)

        assert settings.debug is True
        assert settings.workflows.default_timeout_hours == 24
        assert settings.workflows.expire_after_second_timeout is False
        assert settings.routing.workload_weight == 0.8
        assert settings.routing.seniority_weight == 0.4
        assert settings.notifications.inbox_capacity == 5
        assert settings.otel.enabled is True
        assert settings.otel.exporter_type == "console"

    def test_example_config(self, examples_dir):
        settings = SignoffSettings(
            _config_path=str(examples_dir / "signoff.yaml"), _env_file=None
        )
        assert settings.otel.exporter_type == "console"

    def test_discovered_in_cwd(self, tmp_path):
        _write(tmp_path / "signoff.yaml", {"inbox_capacity": 7})
        assert SignoffSettings(_env_file=None).notifications.inbox_capacity == 7

    def test_discovered_via_env(self, tmp_path, monkeypatch):
        config = _write(tmp_path / "elsewhere.yml", {"inbox_capacity": 9})
        monkeypatch.setenv("SIGNOFF_CONFIG", str(config))
        assert SignoffSettings(_env_file=None).notifications.inbox_capacity == 9

    def test_invalid_yaml_raises(self, tmp_path):
        config = tmp_path / "bad.yaml"
        config.write_text("routing:\n  seniority_weight: 'missing quote")
        with pytest.raises(Exception, match="while scanning a quoted scalar"):
            SignoffSettings(_config_path=str(config))


class TestPriority:
    """init kwargs > signoff.yaml > env vars > defaults"""

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SIGNOFF_ROUTING__WORKLOAD_WEIGHT", "0.9")
        assert SignoffSettings(_env_file=None).routing.workload_weight == 0.9

    def test_yaml_beats_env(self, tmp_path, monkeypatch):
        config = _write(tmp_path / "c.yaml", {"debug": False})
        monkeypatch.setenv("SIGNOFF_DEBUG", "true")
        settings = SignoffSettings(_config_path=str(config), _env_file=None)
        assert settings.debug is False

    def test_init_beats_yaml(self, tmp_path):
        config = _write(tmp_path / "c.yaml", {"debug": False})
        settings = SignoffSettings(_config_path=str(config), _env_file=None, debug=True)
        assert settings.debug is True


class TestValidation:

    def test_missing_definitions_path(self, tmp_path):
        config = _write(tmp_path / "c.yaml", {"workflows": "does/not/exist"})
        settings = SignoffSettings(_config_path=str(config), _env_file=None)
        with pytest.raises(ValueError, match="Workflow definitions not found"):
            settings.validate()

    def test_negative_weight(self):
        settings = SignoffSettings(_env_file=None, routing={"expertise_bonus": -0.1})
        with pytest.raises(ValueError, match="non-negative"):
            settings.validate()

    def test_zero_weights(self):
        settings = SignoffSettings(
            _env_file=None, routing={"seniority_weight": 0, "workload_weight": 0}
        )
        with pytest.raises(ValueError, match="must be positive"):
            settings.validate()

    def test_urgency_factor_range(self):
        settings = SignoffSettings(
            _env_file=None, routing={"urgency_time_factors": {"urgent": 1.5}}
        )
        with pytest.raises(ValueError, match="'urgent'"):
            settings.validate()

    def test_capacity_constraint(self):
        with pytest.raises(Exception):
            SignoffSettings(_env_file=None, notifications={"inbox_capacity": 0})
