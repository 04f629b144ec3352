"""
Data model for workflows and their runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class StepStatus(str, Enum):
    SUCCEEDED = 'succeeded'
    SKIPPED = 'skipped'
    FAILED = 'failed'
    # Turned off by a user skip flag on a built-in workflow; counts as completed
    DISABLED = 'disabled'


class RunStatus(str, Enum):
    SUCCESS = 'success'
    WARNING = 'warning'
    FAILURE = 'failure'


class RunState(str, Enum):
    NOT_STARTED = 'not_started'
    CONDITION_CHECK = 'condition_check'
    SKIPPED = 'skipped'
    ABORTED = 'aborted'
    RUNNING = 'running'
    COMPLETED = 'completed'


@dataclass
class Step:
    """
    One invocation of a maintenance executable.

    ``action`` replaces the executable for built-in checks that run inside
    the orchestrator. It is called with the StepRunner and returns an exit
    code like a script would.
    """

    name: str
    target: str = ''
    args: List[str] = field(default_factory=list)
    skip_on_error: bool = False
    timeout: int = 0
    when: List[Any] = field(default_factory=list)
    disabled: bool = False
    severity: Optional[str] = None
    action: Optional[Callable[[Any], int]] = None

    def to_dict(self) -> Dict[str, Any]:
        from .conditions import conditions_to_dict

        data = {
            'name': self.name,
            'script': self.target or '<internal>',
            'args': list(self.args),
            'skip_on_error': self.skip_on_error,
        }
        if self.timeout:
            data['timeout'] = self.timeout
        if self.when:
            data['when'] = conditions_to_dict(self.when)
        if self.disabled:
            data['disabled'] = True
        if self.severity:
            data['severity'] = self.severity
        return data


@dataclass
class WorkflowDefinition:
    """A named, ordered list of steps with optional gating conditions."""

    name: str
    steps: List[Step]
    description: str = ''
    schedule: Optional[Dict[str, Any]] = None
    conditions: List[Any] = field(default_factory=list)
    notifications: Optional[Dict[str, Any]] = None
    builtin: bool = False
    graded_exit: bool = False
    source: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        from .conditions import conditions_to_dict

        data: Dict[str, Any] = {'name': self.name, 'description': self.description}
        if self.schedule:
            data['schedule'] = self.schedule
        if self.conditions:
            data['conditions'] = conditions_to_dict(self.conditions)
        data['steps'] = [step.to_dict() for step in self.steps]
        if self.notifications:
            data['notifications'] = self.notifications
        return data


@dataclass
class StepOutcome:
    index: int
    name: str
    status: StepStatus
    exit_code: int = 0
    reason: str = ''
    severity: Optional[str] = None


@dataclass
class WorkflowRun:
    """
    The outcome of one invocation of a workflow.

    Steps after a stopping failure have no outcome at all, so
    ``completed + skipped + failed`` only equals ``total`` when every step
    was reached.
    """

    definition: WorkflowDefinition
    started_at: datetime
    dry_run: bool = False
    state: RunState = RunState.NOT_STARTED
    outcomes: List[StepOutcome] = field(default_factory=list)
    ended_at: Optional[datetime] = None
    exit_code: int = 0
    reason: str = ''
    log_file: Optional[Path] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def total(self) -> int:
        return len(self.definition.steps)

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes
                   if o.status in (StepStatus.SUCCEEDED, StepStatus.DISABLED))

    @property
    def skipped_steps(self) -> List[str]:
        return [o.name for o in self.outcomes if o.status == StepStatus.SKIPPED]

    @property
    def failed_steps(self) -> List[str]:
        return [o.name for o in self.outcomes if o.status == StepStatus.FAILED]

    @property
    def status(self) -> RunStatus:
        """Any failure wins, then any skip, otherwise success."""
        if self.state == RunState.ABORTED or self.failed_steps:
            return RunStatus.FAILURE
        if self.skipped_steps:
            return RunStatus.WARNING
        return RunStatus.SUCCESS

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or datetime.now()
        return max((end - self.started_at).total_seconds(), 0.0)
