"""
Role-based permission model.

Maps a role (plus optional per-check overrides) to a fixed capability set
and supplies ordinal role comparison.

Roles are ordered ``viewer < creator < approver < publisher < admin``;
each role's default capabilities are a superset of every lower role's.

Example:
    ```python
    from signoff.permissions import Role, Capability, has_permission

    has_permission(Role.APPROVER, Capability.CAN_APPROVE_CONTENT)  # True
    has_permission(
        Role.CREATOR,
        Capability.CAN_APPROVE_CONTENT,
        overrides={Capability.CAN_APPROVE_CONTENT: True},
    )  # True, for this check only
    ```
"""

from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, List, Mapping, Optional, Union


class Role(str, Enum):
    """User role, ordered by seniority."""

    VIEWER = "viewer"
    CREATOR = "creator"
    APPROVER = "approver"
    PUBLISHER = "publisher"
    ADMIN = "admin"

    @property
    def level(self) -> int:
        """Ordinal position, 1 (viewer) to 5 (admin)."""
        return _ROLE_ORDER.index(self) + 1

    @classmethod
    def parse(cls, value: Union[str, "Role"]) -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value}") from None

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


_ROLE_ORDER = [Role.VIEWER, Role.CREATOR, Role.APPROVER, Role.PUBLISHER, Role.ADMIN]


class Capability(str, Enum):
    """Named permission flags."""

    CAN_VIEW_CONTENT = "can_view_content"
    CAN_CREATE_CONTENT = "can_create_content"
    CAN_EDIT_CONTENT = "can_edit_content"
    CAN_DELETE_CONTENT = "can_delete_content"
    CAN_SUBMIT_FOR_REVIEW = "can_submit_for_review"
    CAN_APPROVE_CONTENT = "can_approve_content"
    CAN_REJECT_CONTENT = "can_reject_content"
    CAN_PUBLISH_CONTENT = "can_publish_content"
    CAN_ARCHIVE_CONTENT = "can_archive_content"
    CAN_BULK_APPROVE = "can_bulk_approve"
    CAN_VIEW_ALL_CONTENT = "can_view_all_content"
    CAN_MANAGE_USERS = "can_manage_users"
    CAN_CONFIGURE_WORKFLOW = "can_configure_workflow"


CapabilityOverrides = Mapping[Capability, bool]

_VIEWER = frozenset({Capability.CAN_VIEW_CONTENT})
_CREATOR = _VIEWER | {
    Capability.CAN_CREATE_CONTENT,
    Capability.CAN_EDIT_CONTENT,
    Capability.CAN_DELETE_CONTENT,
    Capability.CAN_SUBMIT_FOR_REVIEW,
}
_APPROVER = _CREATOR | {
    Capability.CAN_APPROVE_CONTENT,
    Capability.CAN_REJECT_CONTENT,
    Capability.CAN_ARCHIVE_CONTENT,
    Capability.CAN_BULK_APPROVE,
    Capability.CAN_VIEW_ALL_CONTENT,
}
_PUBLISHER = _APPROVER | {Capability.CAN_PUBLISH_CONTENT}
_ADMIN = frozenset(Capability)

ROLE_CAPABILITIES: Mapping[Role, FrozenSet[Capability]] = MappingProxyType(
    {
        Role.VIEWER: _VIEWER,
        Role.CREATOR: _CREATOR,
        Role.APPROVER: _APPROVER,
        Role.PUBLISHER: _PUBLISHER,
        Role.ADMIN: _ADMIN,
    }
)

# Artifact-level action -> capability that gates it
ACTION_CAPABILITIES: Mapping[str, Capability] = MappingProxyType(
    {
        "view": Capability.CAN_VIEW_CONTENT,
        "create": Capability.CAN_CREATE_CONTENT,
        "edit": Capability.CAN_EDIT_CONTENT,
        "delete": Capability.CAN_DELETE_CONTENT,
        "submit_for_review": Capability.CAN_SUBMIT_FOR_REVIEW,
        "approve": Capability.CAN_APPROVE_CONTENT,
        "reject": Capability.CAN_REJECT_CONTENT,
        "request_revision": Capability.CAN_REJECT_CONTENT,
        "publish": Capability.CAN_PUBLISH_CONTENT,
        "archive": Capability.CAN_ARCHIVE_CONTENT,
        "bulk_approve": Capability.CAN_BULK_APPROVE,
        "manage_users": Capability.CAN_MANAGE_USERS,
        "configure_workflow": Capability.CAN_CONFIGURE_WORKFLOW,
    }
)


def has_permission(
    role: Union[Role, str],
    capability: Capability,
    overrides: Optional[CapabilityOverrides] = None,
) -> bool:
    """Check a capability; an explicit override wins over the role default."""
    if overrides and capability in overrides:
        return bool(overrides[capability])
    return capability in ROLE_CAPABILITIES[Role.parse(role)]


def has_minimum_role(role: Union[Role, str], required: Union[Role, str]) -> bool:
    """True when ``role`` is at least as senior as ``required``."""
    return Role.parse(role).level >= Role.parse(required).level


def get_permissions(
    role: Union[Role, str], overrides: Optional[CapabilityOverrides] = None
) -> FrozenSet[Capability]:
    """Effective capability set for a role after overrides."""
    return frozenset(c for c in Capability if has_permission(role, c, overrides))


def can_perform_action(
    role: Union[Role, str],
    action: str,
    overrides: Optional[CapabilityOverrides] = None,
) -> bool:
    capability = ACTION_CAPABILITIES.get(action)
    if capability is None:
        return False
    return has_permission(role, capability, overrides)


def get_available_actions(
    role: Union[Role, str], overrides: Optional[CapabilityOverrides] = None
) -> List[str]:
    return [a for a in ACTION_CAPABILITIES if can_perform_action(role, a, overrides)]


class PermissionChecker:
    """
    Permission checks bound to one role and its overrides.

    Overrides live on the checker instance only; the shared default
    table is never touched.
    """

    def __init__(
        self,
        role: Union[Role, str],
        overrides: Optional[CapabilityOverrides] = None,
    ):
        self.role = Role.parse(role)
        self.overrides = dict(overrides or {})

    def has_permission(self, capability: Capability) -> bool:
        return has_permission(self.role, capability, self.overrides)

    def has_minimum_role(self, required: Union[Role, str]) -> bool:
        return has_minimum_role(self.role, required)

    def can_perform_action(self, action: str) -> bool:
        return can_perform_action(self.role, action, self.overrides)

    def get_permissions(self) -> FrozenSet[Capability]:
        return get_permissions(self.role, self.overrides)

    def get_available_actions(self) -> List[str]:
        return get_available_actions(self.role, self.overrides)
