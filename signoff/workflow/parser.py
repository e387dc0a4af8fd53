"""
Workflow definition parser.

Loads and validates approval workflow definitions from YAML or JSON files.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from signoff.workflow.schema import TargetType, WorkflowDefinition

logger = logging.getLogger(__name__)

_SUFFIXES = (".yaml", ".yml", ".json")


class WorkflowParser:
    """
    Parse and validate workflow definitions.

    Supports:
    - YAML files (.yaml, .yml)
    - JSON files (.json)
    - Direct string parsing

    Example:
        ```python
        # From file
        workflow = WorkflowParser.parse_file("content_review.yaml")

        # From string
        yaml_content = '''
        name: quick-review
        stages:
          - id: review
            name: Review
            order: 0
            approver_roles: [approver]
        '''
        workflow = WorkflowParser.parse_string(yaml_content)
        ```
    """

    @staticmethod
    def parse_file(path: Union[str, Path]) -> WorkflowDefinition:
        """
        Parse workflow from file.

        Args:
            path: Path to workflow file (YAML or JSON)

        Returns:
            Validated WorkflowDefinition

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is unsupported
            ValidationError: If workflow is invalid
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            return WorkflowParser.parse_string(content, format="yaml")
        elif path.suffix == ".json":
            return WorkflowParser.parse_string(content, format="json")
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}")

    @staticmethod
    def parse_string(content: str, format: str = "yaml") -> WorkflowDefinition:
        """
        Parse workflow from string content.

        Args:
            content: YAML or JSON string
            format: "yaml" or "json"

        Raises:
            ValueError: If format is unsupported or content is empty
            ValidationError: If workflow is invalid
        """
        if format == "yaml":
            data = yaml.safe_load(content)
        elif format == "json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported format: {format}")

        if data is None:
            raise ValueError("Empty workflow definition")

        return WorkflowDefinition.model_validate(data)

    @staticmethod
    def parse_dict(data: dict) -> WorkflowDefinition:
        return WorkflowDefinition.model_validate(data)

    @staticmethod
    def validate_file(path: Union[str, Path]) -> tuple[bool, str]:
        """
        Validate a workflow file.

        Returns:
            Tuple of (is_valid, message)
        """
        try:
            workflow = WorkflowParser.parse_file(path)
            return True, f"Valid workflow: {workflow.name} v{workflow.version}"
        except FileNotFoundError as e:
            return False, f"File not found: {e}"
        except ValueError as e:
            return False, f"Invalid format: {e}"
        except Exception as e:
            return False, f"Validation error: {e}"


class WorkflowRegistry:
    """
    Store and retrieve workflow definitions by id.

    Example:
        ```python
        registry = WorkflowRegistry()
        registry.load_path("./workflows")
        workflow = registry.get("campaign-launch")
        ```
    """

    def __init__(self, workflows: Optional[List[WorkflowDefinition]] = None):
        self._workflows: Dict[str, WorkflowDefinition] = {}
        for workflow in workflows or []:
            self.register(workflow)

    def register(self, workflow: WorkflowDefinition) -> None:
        """Register a workflow definition, replacing any with the same id."""
        if workflow.id in self._workflows:
            logger.info(f"Replacing workflow: {workflow.id}")
        if workflow.allow_parallel_stages:
            logger.warning(
                f"Workflow '{workflow.id}' sets allow_parallel_stages; stages still run in order"
            )
        self._workflows[workflow.id] = workflow
        logger.info(f"Registered workflow: {workflow.id} ({len(workflow.stages)} stages)")

    def register_from_file(self, path: Union[str, Path]) -> str:
        """
        Register workflow from file.

        Returns:
            Id of registered workflow
        """
        workflow = WorkflowParser.parse_file(path)
        self.register(workflow)
        return workflow.id

    def load_path(self, path: Union[str, Path]) -> List[str]:
        """Register a single file, or every workflow file in a directory."""
        path = Path(path)
        if path.is_file():
            return [self.register_from_file(path)]
        if not path.is_dir():
            raise FileNotFoundError(f"Workflow path not found: {path}")

        loaded = []
        for file in sorted(path.iterdir()):
            if file.suffix in _SUFFIXES:
                loaded.append(self.register_from_file(file))
        return loaded

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def list_workflows(self) -> List[str]:
        return list(self._workflows.keys())

    def find_applicable(self, target_type: Union[TargetType, str]) -> List[WorkflowDefinition]:
        """Active workflows that accept ``target_type``."""
        target_type = TargetType(target_type)
        return [
            w for w in self._workflows.values() if w.is_active and w.applies_to(target_type)
        ]

    def get_auto_start(self, target_type: Union[TargetType, str]) -> Optional[WorkflowDefinition]:
        """First active ``auto_start`` workflow for ``target_type``, if any."""
        for workflow in self.find_applicable(target_type):
            if workflow.auto_start:
                return workflow
        return None

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows
