"""
Workflow execution.

A run moves through ``not_started -> condition_check`` and then either ends
there (``skipped`` or ``aborted``) or goes ``running -> completed``.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..exit_codes import (
    CRITICAL, GENERAL_ERROR, SUCCESS, WARNING, DefinitionError, WorkflowNotFoundError,
)
from ..notifications import NotificationDispatcher, NotificationEvent, NotificationSettings
from ..run_log import RunLog
from ..state import StateRecord, StateStore
from ..utils import expand_path, format_duration
from .builtin import DESCRIPTIONS, builtin_names, get_builtin
from .conditions import ConditionAction, ConditionContext, ConditionEvaluator
from .models import RunState, Step, StepOutcome, StepStatus, WorkflowDefinition, WorkflowRun
from .parser import WorkflowParser
from .runner import ScriptRegistry, StepRunner

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """
    Loads and runs workflows.

    Args:
        config: Loaded configuration (see ``homelab.config.load_config``)
        dry_run: Log what would run instead of running it
        scheduled: The invocation came from the scheduler
        state_store: StateStore override
        dispatcher: NotificationDispatcher override
        runner: StepRunner override
        clock: Returns local time for run timestamps and conditions
        probes: Extra ConditionContext fields (disk_probe, command_runner, ...)
    """

    def __init__(self, config: Dict[str, Any], dry_run: bool = False, scheduled: bool = False,
                 state_store: Optional[StateStore] = None,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 runner: Optional[StepRunner] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 probes: Optional[Dict[str, Callable]] = None):
        self.config = config
        paths = config['paths']
        self.dry_run = dry_run
        self.scheduled = scheduled
        self.clock = clock
        self.probes = probes or {}
        self.log_dir = expand_path(paths['log_dir'])
        self.search_dirs = [expand_path(paths['override_dir']), expand_path(paths['workflow_dir'])]

        self.state_store = state_store or StateStore(expand_path(paths['state_file']))
        self.dispatcher = dispatcher or NotificationDispatcher(NotificationSettings.from_config(config))
        if runner is None:
            registry = ScriptRegistry(paths.get('script_dir'), config.get('scripts'))
            runner = StepRunner(registry, self.log_dir, dry_run=dry_run)
        self.runner = runner

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_workflow(self, name: str, **builtin_options) -> WorkflowDefinition:
        """
        Find a workflow by name.

        Definition documents (override directory first) win over built-ins.

        Raises:
            WorkflowNotFoundError: If nothing is called ``name``.
            DefinitionError: If the document is invalid.
        """
        path = WorkflowParser.find_workflow(name, self.search_dirs)
        if path is not None:
            logger.debug(f"Loading workflow {name} from {path}")
            ignored = sorted(key for key, value in builtin_options.items() if value)
            if ignored:
                logger.warning(f"Ignoring {', '.join(ignored)} for {name}: these options only "
                               f"apply to built-in workflows, but {path} defines it")
            return WorkflowParser.load_workflow(path)

        definition = get_builtin(name, self.config, **builtin_options)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {name}")
        return definition

    def list_workflows(self) -> List[Dict[str, Any]]:
        """Summaries of built-in and user-defined workflows."""
        documents = WorkflowParser.list_workflows(self.search_dirs)
        entries = []
        for name in builtin_names():
            if name not in documents:
                entries.append({'name': name, 'description': DESCRIPTIONS[name],
                                'schedule': None, 'builtin': True, 'source': None})

        for name, path in documents.items():
            entry = {'name': name, 'description': '', 'schedule': None,
                     'builtin': False, 'source': str(path)}
            try:
                data = WorkflowParser.load_document(path)
            except DefinitionError as e:
                logger.warning(f"Cannot read {path}: {e}")
                entry['description'] = '(unreadable)'
            else:
                if isinstance(data, dict):
                    entry['description'] = data.get('description', '')
                    entry['schedule'] = data.get('schedule')
            entries.append(entry)
        return entries

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, name: str, **builtin_options) -> WorkflowRun:
        return self.execute(self.load_workflow(name, **builtin_options))

    def execute(self, definition: WorkflowDefinition) -> WorkflowRun:
        """
        Run a workflow to completion.

        Returns:
            WorkflowRun with outcomes, derived status and exit code.
        """
        run = WorkflowRun(definition=definition, started_at=self.clock(), dry_run=self.dry_run)
        evaluator = ConditionEvaluator(
            ConditionContext(workflow=definition.name, state_store=self.state_store,
                             clock=self.clock, **self.probes))
        settings = self.dispatcher.settings.with_overrides(definition.notifications)

        run.state = RunState.CONDITION_CHECK
        if definition.conditions:
            result = evaluator.evaluate(definition.conditions)
            if not result.passed:
                return self._end_before_start(run, result.reason, result.action, settings)

        with RunLog(self.log_dir, definition.name, run.started_at) as run_log:
            run.log_file = run_log.path
            run.state = RunState.RUNNING
            prefix = "[Dry Run] " if self.dry_run else ""
            logger.info(f"{prefix}Starting workflow: {definition.name}")
            self._notify(run, 'start', settings)

            stop_code = None
            for index, step in enumerate(definition.steps):
                outcome = self._run_step(step, index, run.total, evaluator)
                run.outcomes.append(outcome)
                if outcome.status != StepStatus.FAILED:
                    continue
                if step.skip_on_error or definition.builtin:
                    logger.warning(f"{step.name} failed, continuing")
                    continue
                stop_code = outcome.exit_code or GENERAL_ERROR
                logger.error(f"Stopping workflow {definition.name}: {step.name} failed")
                break

            run.state = RunState.COMPLETED
            run.ended_at = self.clock()
            run.exit_code = self._exit_code(run, stop_code)
            self._log_summary(run)
            self._record_state(run)
            run_log.finish(run.duration_seconds, run.exit_code,
                           run.skipped_steps, run.failed_steps)

        self._notify(run, run.status.value, settings)
        return run

    def _end_before_start(self, run: WorkflowRun, reason: str, action: ConditionAction,
                          settings: NotificationSettings) -> WorkflowRun:
        run.ended_at = self.clock()
        run.reason = reason
        if action == ConditionAction.SKIP:
            run.state = RunState.SKIPPED
            run.exit_code = SUCCESS
            logger.info(f"Skipping workflow {run.name}: {reason}")
            return run

        run.state = RunState.ABORTED
        run.exit_code = GENERAL_ERROR
        with RunLog(self.log_dir, run.name, run.started_at) as run_log:
            run.log_file = run_log.path
            logger.error(f"Workflow {run.name} aborted: {reason}")
            run_log.finish(run.duration_seconds, run.exit_code)
        self._notify(run, 'failure', settings)
        return run

    def _run_step(self, step: Step, index: int, total: int,
                  evaluator: ConditionEvaluator) -> StepOutcome:
        logger.info(f"Step {index + 1}/{total}: {step.name}")
        if step.when and not step.disabled:
            result = evaluator.evaluate(step.when)
            if not result.passed:
                if result.action == ConditionAction.SKIP:
                    logger.info(f"Skipping {step.name}: {result.reason}")
                    return StepOutcome(index=index, name=step.name, status=StepStatus.SKIPPED,
                                       reason=result.reason, severity=step.severity)
                logger.error(f"{step.name} failed condition: {result.reason}")
                return StepOutcome(index=index, name=step.name, status=StepStatus.FAILED,
                                   exit_code=GENERAL_ERROR, reason=result.reason,
                                   severity=step.severity)
        return self.runner.run(step, index)

    def _exit_code(self, run: WorkflowRun, stop_code: Optional[int]) -> int:
        if stop_code is not None:
            return stop_code
        failed = [o for o in run.outcomes if o.status == StepStatus.FAILED]
        if run.definition.graded_exit:
            if any(o.severity == 'critical' for o in failed):
                return CRITICAL
            return WARNING if failed else SUCCESS
        return GENERAL_ERROR if failed else SUCCESS

    def _log_summary(self, run: WorkflowRun):
        message = (f"Workflow {run.name} finished with status {run.status.value}: "
                   f"{run.completed}/{run.total} completed, {len(run.skipped_steps)} skipped, "
                   f"{len(run.failed_steps)} failed in {format_duration(run.duration_seconds)}")
        if run.failed_steps:
            logger.error(message)
        elif run.skipped_steps:
            logger.warning(message)
        else:
            logger.info(message)

    def _record_state(self, run: WorkflowRun):
        if self.dry_run:
            return
        record = StateRecord.create(
            status=run.status.value,
            exit_code=run.exit_code,
            duration=format_duration(run.duration_seconds),
            completed=run.completed,
            total=run.total,
            failed=run.failed_steps,
            skipped=run.skipped_steps,
        )
        self.state_store.write(run.name, record)

    def _notify(self, run: WorkflowRun, trigger: str, settings: NotificationSettings):
        event = NotificationEvent(
            workflow=run.name,
            status=trigger,
            duration='' if trigger == 'start' else format_duration(run.duration_seconds),
            completed=run.completed,
            total=run.total,
            failed=run.failed_steps,
            skipped=run.skipped_steps,
            log_file=str(run.log_file) if run.log_file else None,
            is_scheduled=self.scheduled,
            dry_run=self.dry_run,
        )
        return self.dispatcher.dispatch(event, settings)
