"""
Pre-conditions gating workflows and steps.

A conditions block maps a condition type to its parameters::

    "conditions": {
        "disk": {"min_free_gb": 10, "path": "/", "action": "skip"},
        "time_window": {"start": "22:00", "end": "06:00"},
        "last_run": {"min_hours_since": 20},
        "command": {"script": "ping -c1 nas.local", "timeout": 5},
        "file_exists": {"path": "~/.maintenance", "negate": true}
    }

Steps use the same block under ``when`` and may also use ``weekday``
(``{"days": [0, 6]}``, 0 is Sunday).

Conditions in a block are ANDed and checked in a fixed order (the order of
``ConditionKind``); the first failure decides the outcome. A condition that
cannot be evaluated, because a parameter is missing or the tooling it needs
is unavailable, is logged and treated as passed.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional

from ..exit_codes import ConditionEvaluationError, DefinitionError
from ..utils import disk_free_gb, expand_path, format_gb, run_command, which

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30


class ConditionKind(str, Enum):
    # Declaration order is evaluation order
    DISK = 'disk'
    TIME_WINDOW = 'time_window'
    LAST_RUN = 'last_run'
    COMMAND = 'command'
    FILE_EXISTS = 'file_exists'
    WEEKDAY = 'weekday'


EVALUATION_ORDER = {kind: position for position, kind in enumerate(ConditionKind)}
STEP_ONLY_KINDS = {ConditionKind.WEEKDAY}


class ConditionAction(str, Enum):
    SKIP = 'skip'
    FAIL = 'fail'


@dataclass
class Condition:
    """Base for all condition variants. Parameters are kept as written."""

    kind: ClassVar[ConditionKind]
    action: ConditionAction = ConditionAction.SKIP

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if k != 'action' and v is not None}
        data['action'] = self.action.value
        return data


@dataclass
class DiskCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.DISK
    min_free_gb: Any = None
    path: str = '/'


@dataclass
class TimeWindowCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.TIME_WINDOW
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class LastRunCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.LAST_RUN
    min_hours_since: Any = None


@dataclass
class CommandCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.COMMAND
    script: Optional[str] = None
    timeout: Any = DEFAULT_COMMAND_TIMEOUT


@dataclass
class FileExistsCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.FILE_EXISTS
    path: Optional[str] = None
    negate: Any = False


@dataclass
class WeekdayCondition(Condition):
    kind: ClassVar[ConditionKind] = ConditionKind.WEEKDAY
    days: Any = None


CONDITION_TYPES = {
    cls.kind: cls for cls in (
        DiskCondition, TimeWindowCondition, LastRunCondition,
        CommandCondition, FileExistsCondition, WeekdayCondition,
    )
}


def parse_conditions(block: Optional[Dict[str, Any]], level: str = 'workflow') -> List[Condition]:
    """
    Parse a conditions block into condition objects in evaluation order.

    Args:
        block: Mapping of condition type to parameters
        level: 'workflow' or 'step'

    Returns:
        List of Condition instances

    Raises:
        DefinitionError: If the block or a parameter set is not a mapping, or
            an action is not skip/fail.
    """
    if not block:
        return []
    if not isinstance(block, dict):
        raise DefinitionError(f"{level.capitalize()} conditions must be an object")

    conditions = []
    for key, params in block.items():
        try:
            kind = ConditionKind(key)
        except ValueError:
            logger.warning(f"Unknown condition type '{key}' ignored")
            continue

        if level == 'workflow' and kind in STEP_ONLY_KINDS:
            logger.warning(f"Condition '{key}' is only supported on steps; ignored")
            continue

        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise DefinitionError(f"Condition '{key}' must be an object")

        params = dict(params)
        raw_action = params.pop('action', ConditionAction.SKIP.value)
        try:
            action = ConditionAction(raw_action)
        except ValueError:
            raise DefinitionError(f"Condition '{key}' has invalid action '{raw_action}' (use skip or fail)")

        cls = CONDITION_TYPES[kind]
        accepted = {name for name in cls.__dataclass_fields__ if name != 'action'}
        unknown = set(params) - accepted
        if unknown:
            logger.warning(f"Condition '{key}' ignores unknown parameters: {', '.join(sorted(unknown))}")
        values = {name: value for name, value in params.items() if name in accepted}
        conditions.append(cls(action=action, **values))

    conditions.sort(key=lambda c: EVALUATION_ORDER[c.kind])
    return conditions


def conditions_to_dict(conditions: List[Condition]) -> Dict[str, Dict[str, Any]]:
    return {c.kind.value: c.to_dict() for c in conditions}


@dataclass
class ConditionResult:
    passed: bool
    reason: str = ''
    action: ConditionAction = ConditionAction.SKIP

    @classmethod
    def ok(cls) -> 'ConditionResult':
        return cls(passed=True)

    @classmethod
    def failed(cls, reason: str, action: ConditionAction) -> 'ConditionResult':
        return cls(passed=False, reason=reason, action=action)


def run_shell_check(script: str, timeout: int) -> Optional[int]:
    """Run ``bash -c script``. Returns the exit code, or None without bash."""
    bash = which('bash')
    if bash is None:
        return None
    code, _ = run_command([str(bash), '-c', script], timeout=timeout, log_stderr=False)
    return code


@dataclass
class ConditionContext:
    """
    Everything conditions may consult, injectable for tests.

    Attributes:
        workflow: Name used for ``last_run`` lookups (also at step level)
        state_store: StateStore or None when unavailable
        clock: Returns local wall-clock time
        disk_probe: Returns free GB for a path, or None if unknown
        command_runner: Returns a command's exit code, or None without a shell
        file_probe: Returns True if the path is an existing regular file
    """

    workflow: str
    state_store: Any = None
    clock: Callable[[], datetime] = datetime.now
    disk_probe: Callable[[str], Optional[int]] = disk_free_gb
    command_runner: Callable[[str, int], Optional[int]] = run_shell_check
    file_probe: Callable[[Path], bool] = Path.is_file


def _number(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConditionEvaluationError(f"invalid {name} '{value}'")


def _minutes(value: Any, name: str) -> int:
    try:
        hours, minutes = str(value).split(':')
        hours, minutes = int(hours), int(minutes)
    except ValueError:
        raise ConditionEvaluationError(f"invalid {name} time '{value}' (expected HH:MM)")
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConditionEvaluationError(f"invalid {name} time '{value}' (expected HH:MM)")
    return hours * 60 + minutes


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes')
    return bool(value)


def _evaluate_disk(condition: DiskCondition, context: ConditionContext) -> ConditionResult:
    if condition.min_free_gb is None:
        raise ConditionEvaluationError("missing min_free_gb")
    minimum = _number(condition.min_free_gb, 'min_free_gb')
    path = condition.path or '/'

    available = context.disk_probe(path)
    if available is None:
        raise ConditionEvaluationError(f"cannot determine free space on {path}")

    if available < minimum:
        return ConditionResult.failed(
            f"Disk space below threshold: {format_gb(available)} < {minimum:g}GB (path: {path})",
            condition.action)
    return ConditionResult.ok()


def _evaluate_time_window(condition: TimeWindowCondition, context: ConditionContext) -> ConditionResult:
    if not condition.start or not condition.end:
        raise ConditionEvaluationError("missing start or end")
    start = _minutes(condition.start, 'start')
    end = _minutes(condition.end, 'end')

    now = context.clock()
    current = now.hour * 60 + now.minute
    if start > end:
        # Window wraps midnight, e.g. 22:00-06:00
        inside = current >= start or current < end
    else:
        inside = start <= current < end

    if not inside:
        return ConditionResult.failed(
            f"Outside time window: {now:%H:%M} not in [{condition.start} - {condition.end}]",
            condition.action)
    return ConditionResult.ok()


def _evaluate_last_run(condition: LastRunCondition, context: ConditionContext) -> ConditionResult:
    if condition.min_hours_since is None:
        raise ConditionEvaluationError("missing min_hours_since")
    minimum = _number(condition.min_hours_since, 'min_hours_since')
    if context.state_store is None:
        raise ConditionEvaluationError("state store unavailable")

    hours = context.state_store.hours_since(context.workflow)
    if hours is None:
        return ConditionResult.ok()

    if hours < minimum:
        return ConditionResult.failed(
            f"Too soon since last run: {hours}h < {minimum:g}h", condition.action)
    return ConditionResult.ok()


def _evaluate_command(condition: CommandCondition, context: ConditionContext) -> ConditionResult:
    if not condition.script:
        raise ConditionEvaluationError("missing script")
    timeout = int(_number(condition.timeout if condition.timeout is not None
                          else DEFAULT_COMMAND_TIMEOUT, 'timeout'))

    code = context.command_runner(condition.script, timeout)
    if code is None:
        raise ConditionEvaluationError("bash is not available")

    if code != 0:
        return ConditionResult.failed(
            f"Condition command failed (exit {code}): {condition.script}", condition.action)
    return ConditionResult.ok()


def _evaluate_file_exists(condition: FileExistsCondition, context: ConditionContext) -> ConditionResult:
    if not condition.path:
        raise ConditionEvaluationError("missing path")
    path = expand_path(condition.path)
    exists = context.file_probe(path)

    if _flag(condition.negate):
        if exists:
            return ConditionResult.failed(f"File exists (negate=true): {path}", condition.action)
    elif not exists:
        return ConditionResult.failed(f"File does not exist: {path}", condition.action)
    return ConditionResult.ok()


def _evaluate_weekday(condition: WeekdayCondition, context: ConditionContext) -> ConditionResult:
    if condition.days is None or condition.days == [] or condition.days == '':
        raise ConditionEvaluationError("missing days")
    raw_days = condition.days
    if isinstance(raw_days, str):
        raw_days = [d for d in raw_days.split(',') if d.strip()]
    elif not isinstance(raw_days, (list, tuple, set)):
        raw_days = [raw_days]
    days = {int(_number(d, 'day')) for d in raw_days}

    # isoweekday: Monday=1..Sunday=7, stored days use Sunday=0
    today = context.clock().isoweekday() % 7
    if today not in days:
        allowed = ','.join(str(d) for d in sorted(days))
        return ConditionResult.failed(
            f"Day not in allowed list: {today} not in [{allowed}]", condition.action)
    return ConditionResult.ok()


EVALUATORS: Dict[ConditionKind, Callable[[Any, ConditionContext], ConditionResult]] = {
    ConditionKind.DISK: _evaluate_disk,
    ConditionKind.TIME_WINDOW: _evaluate_time_window,
    ConditionKind.LAST_RUN: _evaluate_last_run,
    ConditionKind.COMMAND: _evaluate_command,
    ConditionKind.FILE_EXISTS: _evaluate_file_exists,
    ConditionKind.WEEKDAY: _evaluate_weekday,
}


class ConditionEvaluator:
    """Evaluates condition blocks against a ConditionContext."""

    def __init__(self, context: ConditionContext):
        self.context = context

    def evaluate(self, conditions: List[Condition]) -> ConditionResult:
        """
        Evaluate an ANDed block, stopping at the first failing condition.

        Args:
            conditions: Parsed conditions (any order)

        Returns:
            ConditionResult; on failure it carries the reason and action.
        """
        for condition in sorted(conditions, key=lambda c: EVALUATION_ORDER[c.kind]):
            evaluator = EVALUATORS[condition.kind]
            try:
                result = evaluator(condition, self.context)
            except ConditionEvaluationError as e:
                logger.warning(f"Cannot evaluate {condition.kind.value} condition ({e}); treating as passed")
                continue

            if not result.passed:
                logger.debug(f"{condition.kind.value} condition failed: {result.reason}")
                return result

        return ConditionResult.ok()


def evaluate(conditions: List[Condition], context: ConditionContext) -> ConditionResult:
    """Convenience wrapper around ConditionEvaluator."""
    return ConditionEvaluator(context).evaluate(conditions)
