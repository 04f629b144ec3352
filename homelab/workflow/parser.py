"""
Workflow definition loading and validation.

Definitions are JSON or YAML documents named after the workflow::

    {
      "name": "nightly",
      "description": "Nightly backup and scan",
      "schedule": {"type": "cron", "expression": "0 2 * * *"},
      "conditions": {"time_window": {"start": "22:00", "end": "06:00"}},
      "steps": [
        {"name": "Backup", "script": "rclone-sync.sh", "args": ["--sync"],
         "skip_on_error": true, "timeout": 3600},
        {"name": "Scan", "script": "nmap-scan.sh", "args": ["--delta"],
         "when": {"weekday": {"days": [0, 6]}}}
      ],
      "notifications": {"triggers": ["failure"], "channels": ["slack"]}
    }

Documents in the override directory take priority over the workflow
directory.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..exit_codes import DefinitionError, StepResolutionError
from .conditions import parse_conditions
from .models import Step, WorkflowDefinition

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = ('.json', '.yaml', '.yml')
VALID_TRIGGERS = ('start', 'success', 'warning', 'failure')


class WorkflowParser:
    """Find, parse and validate workflow definition documents."""

    @staticmethod
    def find_workflow(name: str, search_dirs: List[Path]) -> Optional[Path]:
        """Return the first definition document for ``name`` in ``search_dirs``."""
        for directory in search_dirs:
            for suffix in DEFINITION_SUFFIXES:
                candidate = Path(directory).expanduser() / f"{name}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    @staticmethod
    def list_workflows(search_dirs: List[Path]) -> Dict[str, Path]:
        """Map workflow names to documents, earlier directories winning."""
        found: Dict[str, Path] = {}
        for directory in search_dirs:
            directory = Path(directory).expanduser()
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if path.suffix in DEFINITION_SUFFIXES and path.is_file():
                    found.setdefault(path.stem, path)
        return found

    @staticmethod
    def load_document(file_path) -> Dict[str, Any]:
        """Read a JSON or YAML document.

        Raises:
            DefinitionError: If the file is missing or not valid JSON/YAML.
        """
        path = Path(file_path)
        if not path.exists():
            raise DefinitionError(f"Workflow file not found: {file_path}")

        try:
            with open(path, 'r') as f:
                if path.suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except json.JSONDecodeError as e:
            raise DefinitionError(f"Invalid JSON in {path}: {e}")
        except yaml.YAMLError as e:
            raise DefinitionError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise DefinitionError(f"Cannot read {path}: {e}")

        return data

    @staticmethod
    def load_workflow(file_path) -> WorkflowDefinition:
        """Load and validate a workflow definition from a file."""
        data = WorkflowParser.load_document(file_path)
        return WorkflowParser.parse(data, source=Path(file_path))

    @staticmethod
    def parse(data: Any, source: Optional[Path] = None) -> WorkflowDefinition:
        """Build a WorkflowDefinition from a parsed document.

        Raises:
            DefinitionError: If required fields are missing or malformed.
        """
        WorkflowParser.validate_workflow(data)

        steps = [WorkflowParser._parse_step(step) for step in data['steps']]
        notifications = data.get('notifications')
        if notifications:
            notifications = {
                key: [str(v) for v in notifications[key]]
                for key in ('triggers', 'channels') if key in notifications
            }

        return WorkflowDefinition(
            name=data['name'],
            description=data.get('description', ''),
            schedule=data.get('schedule'),
            conditions=parse_conditions(data.get('conditions'), level='workflow'),
            steps=steps,
            notifications=notifications or None,
            source=source,
        )

    @staticmethod
    def _parse_step(step: Dict[str, Any]) -> Step:
        return Step(
            name=step['name'],
            target=str(step['script']),
            args=[str(arg) for arg in step.get('args', [])],
            skip_on_error=bool(step.get('skip_on_error', False)),
            timeout=int(step.get('timeout') or 0),
            when=parse_conditions(step.get('when'), level='step'),
        )

    @staticmethod
    def validate_workflow(workflow: Any):
        """Validate workflow definition structure.

        Raises:
            DefinitionError: On the first problem found.
        """
        if not isinstance(workflow, dict):
            raise DefinitionError("Workflow must be an object")

        if not workflow.get('name'):
            raise DefinitionError("Workflow missing required field 'name'")

        steps = workflow.get('steps')
        if not steps:
            raise DefinitionError("Workflow must have at least one step in 'steps'")
        if not isinstance(steps, list):
            raise DefinitionError("Workflow 'steps' must be an array")

        for i, step in enumerate(steps):
            WorkflowParser._validate_step(step, i)

        for key in ('conditions', 'schedule', 'notifications'):
            if key in workflow and workflow[key] is not None and not isinstance(workflow[key], dict):
                raise DefinitionError(f"Workflow '{key}' must be an object")

        notifications = workflow.get('notifications') or {}
        for key in ('triggers', 'channels'):
            if key in notifications and not isinstance(notifications[key], list):
                raise DefinitionError(f"notifications.{key} must be an array")
        for trigger in notifications.get('triggers', []):
            if trigger not in VALID_TRIGGERS:
                raise DefinitionError(f"Unknown notification trigger '{trigger}'")

    @staticmethod
    def _validate_step(step: Any, index: int):
        """Validate an individual step definition."""
        label = f"Step {index + 1}"
        if not isinstance(step, dict):
            raise DefinitionError(f"{label} must be an object")

        if not step.get('name'):
            raise DefinitionError(f"{label} missing required field 'name'")
        label = f"{label} ({step['name']})"

        if not step.get('script'):
            raise DefinitionError(f"{label} missing required field 'script'")

        if 'args' in step and not isinstance(step['args'], list):
            raise DefinitionError(f"{label} 'args' must be an array")

        if 'skip_on_error' in step and not isinstance(step['skip_on_error'], bool):
            raise DefinitionError(f"{label} 'skip_on_error' must be true or false")

        timeout = step.get('timeout')
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, int) or timeout < 0):
            raise DefinitionError(f"{label} 'timeout' must be a non-negative integer")

        if 'when' in step and step['when'] is not None and not isinstance(step['when'], dict):
            raise DefinitionError(f"{label} 'when' must be an object")

    @staticmethod
    def check_targets(definition: WorkflowDefinition, runner) -> List[str]:
        """Return a warning for each step whose script cannot be resolved."""
        warnings = []
        for step in definition.steps:
            if step.action is not None:
                continue
            try:
                runner.resolve_target(step.target)
            except StepResolutionError as e:
                warnings.append(f"{step.name}: {e}")
        return warnings


def validate_definition(file_path, runner=None) -> Tuple[WorkflowDefinition, List[str]]:
    """
    Fully validate a definition document.

    Returns:
        (definition, warnings). Unresolvable scripts are warnings only.

    Raises:
        DefinitionError: If the document is invalid.
    """
    definition = WorkflowParser.load_workflow(file_path)
    warnings = WorkflowParser.check_targets(definition, runner) if runner else []
    return definition, warnings
