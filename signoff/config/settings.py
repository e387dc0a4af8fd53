"""
signoff configuration management using Pydantic Settings.

Configuration can be provided via:
1. signoff.yaml config file
2. SIGNOFF_* env vars (nested with double underscore)
3. .env file
4. Direct instantiation

Priority (highest wins): init kwargs > signoff.yaml > env vars > defaults

The simplified signoff.yaml format:
    workflows: ./workflows          # directory or file of workflow definitions
    inbox_capacity: 50
    routing:
      seniority_weight: 0.4
      workload_weight: 0.6
    notifications:
      admin_recipients: ["role:admin"]
    tracing:
      type: console
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from signoff.permissions import Role

logger = logging.getLogger(__name__)


class OTelConfig(BaseModel):
    """OpenTelemetry tracing configuration.

    Supports multiple exporters:
    - otlp: OTLP over gRPC (Jaeger, Tempo, collectors)
    - otlp_http: OTLP over HTTP/protobuf
    - console: Print spans to stdout (for debugging)
    - none: Disable tracing
    """

    enabled: bool = False
    endpoint: str = "http://localhost:4317"
    service_name: str = "signoff"
    exporter_type: Literal["otlp", "otlp_http", "console", "none"] = "otlp"
    insecure: bool = True  # No TLS for local collectors
    headers: Dict[str, str] = Field(default_factory=dict)


class WorkflowConfig(BaseModel):
    """Workflow engine behaviour."""

    # File or directory of workflow definitions loaded at startup
    definitions_path: Optional[str] = None
    default_timeout_hours: float = Field(default=72.0, gt=0)
    # After a timeout escalation, expire the request if the stage times out again
    expire_after_second_timeout: bool = True
    sweep_interval_seconds: float = Field(default=300.0, gt=0)
    system_actor_id: str = "system"


class RoutingConfig(BaseModel):
    """Approver ranking weights."""

    seniority_weight: float = 0.4
    workload_weight: float = 0.6
    expertise_bonus: float = 0.1
    # Seniority stops counting above this role
    seniority_cap: Role = Role.PUBLISHER
    urgency_time_factors: Dict[str, float] = Field(
        default_factory=lambda: {
            "low": 0.75,
            "medium": 0.5,
            "high": 0.35,
            "urgent": 0.2,
        }
    )


class NotificationConfig(BaseModel):
    inbox_capacity: int = Field(default=50, ge=1)
    # Recipients added on reject/escalate; "role:" entries are group addresses
    admin_recipients: List[str] = Field(default_factory=lambda: ["role:admin"])


class YamlConfigSource(PydanticBaseSettingsSource):
    """Custom settings source that reads from a signoff.yaml config file.

    Discovers config at:
    1. Explicit path passed via _config_path init kwarg
    2. $SIGNOFF_CONFIG env var
    3. ./signoff.yaml
    4. ./signoff.yml

    Maps simplified YAML keys to the nested SignoffSettings structure.
    """

    def __init__(
        self, settings_cls: Type[BaseSettings], config_path: Optional[str] = None
    ):
        super().__init__(settings_cls)
        self._config_path = config_path
        self._yaml_data: Optional[Dict[str, Any]] = None
        self._load()

    def _discover_config_file(self) -> Optional[Path]:
        """Find the config file to load."""
        if self._config_path:
            p = Path(self._config_path)
            return p if p.is_file() else None

        env_path = os.environ.get("SIGNOFF_CONFIG")
        if env_path:
            p = Path(env_path)
            return p if p.is_file() else None

        for name in ("signoff.yaml", "signoff.yml"):
            p = Path(name)
            if p.is_file():
                return p

        return None

    def _load(self) -> None:
        """Load and parse the YAML config file.

        Syntax errors propagate; a non-mapping document is ignored.
        """
        path = self._discover_config_file()
        if path is None:
            self._yaml_data = {}
            return

        import yaml

        with open(path) as f:
            data = yaml.safe_load(f)
        self._yaml_data = data if isinstance(data, dict) else {}
        logger.debug(f"Loaded config from {path}")

    _SECTIONS = ("workflows", "routing", "notifications")

    def _map_to_settings(self) -> Dict[str, Any]:
        """Map simplified YAML keys to the nested SignoffSettings structure."""
        if not self._yaml_data:
            return {}

        data = self._yaml_data
        result: Dict[str, Any] = {}

        for key in ("debug", "log_level"):
            if key in data:
                result[key] = data[key]

        # workflows: <path> -> workflows.definitions_path
        workflows = data.get("workflows")
        if isinstance(workflows, str):
            result["workflows"] = {"definitions_path": workflows}

        # Dict sections pass straight through
        for section in self._SECTIONS:
            value = data.get(section)
            if isinstance(value, dict) and value:
                result.setdefault(section, {}).update(value)

        # inbox_capacity -> notifications.inbox_capacity
        if "inbox_capacity" in data:
            result.setdefault("notifications", {})["inbox_capacity"] = data["inbox_capacity"]

        # tracing.* -> otel.*
        tracing_cfg = data.get("tracing", {})
        if isinstance(tracing_cfg, dict) and tracing_cfg:
            otel = result.setdefault("otel", {})
            if "type" in tracing_cfg:
                tracing_type = tracing_cfg["type"]
                otel["exporter_type"] = tracing_type
                otel["enabled"] = tracing_type != "none"
            for key in ("endpoint", "service_name", "insecure", "headers"):
                if key in tracing_cfg:
                    otel[key] = tracing_cfg[key]

        return result

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        mapped = self._map_to_settings()
        value = mapped.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> Dict[str, Any]:
        return self._map_to_settings()


class SignoffSettings(BaseSettings):
    """
    Main signoff configuration.

    All settings can be overridden via environment variables with SIGNOFF_ prefix.
    Nested settings use double underscore: SIGNOFF_ROUTING__WORKLOAD_WEIGHT

    A signoff.yaml config file is also supported (config takes priority).
    Pass _config_path to override the config file location.
    """

    model_config = SettingsConfigDict(
        env_prefix="SIGNOFF_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to signoff.yaml (set via _config_path kwarg, not a real setting field)
    _config_path: Optional[str] = None

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    workflows: WorkflowConfig = Field(default_factory=WorkflowConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    otel: OTelConfig = Field(default_factory=OTelConfig)

    def __init__(self, _config_path: Optional[str] = None, **kwargs: Any):
        self.__class__._config_path = _config_path
        super().__init__(**kwargs)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Insert YAML config source before env vars.

        Priority (highest first): init > yaml > env > dotenv > file_secret
        """
        yaml_source = YamlConfigSource(settings_cls, config_path=cls._config_path)
        return (
            init_settings,
            yaml_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    def validate(self) -> None:
        """
        Check settings that cannot be expressed as field constraints.

        Raises:
            ValueError: On the first problem found
        """
        path = self.workflows.definitions_path
        if path and not Path(path).exists():
            raise ValueError(f"Workflow definitions not found: {path}")

        weights = (
            self.routing.seniority_weight,
            self.routing.workload_weight,
            self.routing.expertise_bonus,
        )
        if any(w < 0 for w in weights):
            raise ValueError("Routing weights must be non-negative")
        if self.routing.seniority_weight + self.routing.workload_weight <= 0:
            raise ValueError("At least one of seniority_weight/workload_weight must be positive")

        for level, factor in self.routing.urgency_time_factors.items():
            if not 0 < factor <= 1:
                raise ValueError(
                    f"Urgency time factor for '{level}' must be in (0, 1], got {factor}"
                )
