"""signoff configuration."""

from signoff.config.settings import (
    NotificationConfig,
    OTelConfig,
    RoutingConfig,
    SignoffSettings,
    WorkflowConfig,
    YamlConfigSource,
)

__all__ = [
    "SignoffSettings",
    "WorkflowConfig",
    "RoutingConfig",
    "NotificationConfig",
    "OTelConfig",
    "YamlConfigSource",
]
