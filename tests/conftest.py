"""Pytest fixtures for Signoff tests."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from signoff.config.settings import SignoffSettings
from signoff.notifications import NotificationService
from signoff.workflow import Actor, WorkflowDefinition, WorkflowEngine, WorkflowRegistry


@pytest.fixture
def examples_dir() -> Path:
    """Get path to examples directory."""
    return Path(__file__).parent.parent / "examples"


@pytest.fixture
def workflows_dir(examples_dir: Path) -> Path:
    return examples_dir / "workflows"


@pytest.fixture
def t0() -> datetime:
    return datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path, monkeypatch) -> SignoffSettings:
    """Settings isolated from any signoff.yaml or SIGNOFF_* env in the caller's shell."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SIGNOFF_CONFIG", raising=False)
    return SignoffSettings()


@pytest.fixture
def single_stage_dict():
    """One review stage, any approver may sign off."""
    return {
        "id": "quick-review",
        "name": "Quick Review",
        "applicable_target_types": ["content"],
        "stages": [
            {
                "id": "review",
                "name": "Review",
                "order": 0,
                "approver_roles": ["approver"],
                "timeout_hours": 24,
            }
        ],
    }


@pytest.fixture
def two_stage_dict():
    """Brand review needing two of three named approvers, then legal."""
    return {
        "id": "launch",
        "name": "Launch",
        "applicable_target_types": ["campaign", "journey"],
        "stages": [
            {
                "id": "brand",
                "name": "Brand Review",
                "order": 0,
                "approvers": ["ana", "ben", "cy"],
                "approvers_required": 2,
                "timeout_hours": 24,
            },
            {
                "id": "legal",
                "name": "Legal Review",
                "order": 1,
                "approvers": ["lena"],
                "timeout_hours": 48,
            },
        ],
    }


@pytest.fixture
def single_stage(single_stage_dict) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(single_stage_dict)


@pytest.fixture
def two_stage(two_stage_dict) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate(two_stage_dict)


@pytest.fixture
def registry(single_stage, two_stage) -> WorkflowRegistry:
    return WorkflowRegistry([single_stage, two_stage])


@pytest.fixture
def notifications() -> NotificationService:
    return NotificationService()


@pytest.fixture
def engine(registry, notifications, settings) -> WorkflowEngine:
    return WorkflowEngine(registry, notifications=notifications, settings=settings)


@pytest.fixture
def requester() -> Actor:
    return Actor(user_id="maya", role="creator", name="Maya")


@pytest.fixture
def make_actor():
    def _make(user_id: str, role: str = "approver") -> Actor:
        return Actor(user_id=user_id, role=role)

    return _make
