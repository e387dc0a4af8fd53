"""Role and capability model."""

from signoff.permissions.model import (
    ACTION_CAPABILITIES,
    ROLE_CAPABILITIES,
    Capability,
    CapabilityOverrides,
    PermissionChecker,
    Role,
    can_perform_action,
    get_available_actions,
    get_permissions,
    has_minimum_role,
    has_permission,
)

__all__ = [
    "Role",
    "Capability",
    "CapabilityOverrides",
    "ROLE_CAPABILITIES",
    "ACTION_CAPABILITIES",
    "PermissionChecker",
    "has_permission",
    "has_minimum_role",
    "get_permissions",
    "can_perform_action",
    "get_available_actions",
]
