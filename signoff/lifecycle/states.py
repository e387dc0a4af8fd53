"""Artifact status vocabularies and their display metadata."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class ArtifactStatus(str, Enum):
    """Content-level status of a single artifact."""

    DRAFT = "DRAFT"
    GENERATING = "GENERATING"
    GENERATED = "GENERATED"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == "REVIEWING":
                return cls.PENDING_REVIEW
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class ApprovalStatus(str, Enum):
    """Review outcome, tracked alongside ``ArtifactStatus``."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVISION = "NEEDS_REVISION"


@dataclass(frozen=True)
class StateInfo:
    label: str
    color: str
    description: str


STATE_INFO: Dict[ArtifactStatus, StateInfo] = {
    ArtifactStatus.DRAFT: StateInfo("Draft", "gray", "Being written or revised"),
    ArtifactStatus.GENERATING: StateInfo("Generating", "blue", "Content generation in progress"),
    ArtifactStatus.GENERATED: StateInfo("Generated", "purple", "Generated and ready for editing"),
    ArtifactStatus.PENDING_REVIEW: StateInfo("Pending Review", "yellow", "Waiting for an approver"),
    ArtifactStatus.APPROVED: StateInfo("Approved", "green", "Approved and ready to publish"),
    ArtifactStatus.REJECTED: StateInfo("Rejected", "red", "Rejected during review"),
    ArtifactStatus.PUBLISHED: StateInfo("Published", "blue", "Live"),
    ArtifactStatus.ARCHIVED: StateInfo("Archived", "gray", "No longer in use"),
}

APPROVAL_STATUS_INFO: Dict[ApprovalStatus, Tuple[str, str]] = {
    ApprovalStatus.PENDING: ("Pending Review", "yellow"),
    ApprovalStatus.APPROVED: ("Approved", "green"),
    ApprovalStatus.REJECTED: ("Rejected", "red"),
    ApprovalStatus.NEEDS_REVISION: ("Needs Revision", "orange"),
}
