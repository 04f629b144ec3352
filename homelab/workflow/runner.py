"""
Step execution: locating maintenance scripts and running them.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..exit_codes import StepExecutionError, StepResolutionError
from ..utils import expand_path, is_executable, run_command, sanitize_name, which
from .models import Step, StepOutcome, StepStatus

logger = logging.getLogger(__name__)

KNOWN_SCRIPTS = (
    'disk-cleanup.sh',
    'update-all.sh',
    'ssh-key-audit.sh',
    'nmap-scan.sh',
    'rclone-sync.sh',
    'smart-cleanup.sh',
)

# Directory holding the homelab package
ORCHESTRATOR_DIR = Path(__file__).resolve().parents[2]
SYSTEM_SCRIPT_DIRS = ('~/bin', '/usr/local/bin', '/opt/homelab')


class ScriptRegistry:
    """
    Maps known maintenance script names to their discovered locations.

    Each script is looked up in order: an explicitly configured path, the
    parent of the script directory, the script directory, a few system
    directories, then PATH.
    """

    def __init__(self, script_dir=None, explicit: Optional[Dict[str, str]] = None,
                 known: Iterable[str] = KNOWN_SCRIPTS):
        self.script_dir = expand_path(script_dir) if script_dir else ORCHESTRATOR_DIR / 'scripts'
        self.explicit = explicit or {}
        self.known = tuple(known)
        self._paths: Optional[Dict[str, Path]] = None

    def _candidates(self, name: str) -> List[Path]:
        candidates = []
        if self.explicit.get(name):
            candidates.append(expand_path(self.explicit[name]))
        candidates.append(self.script_dir.parent / name)
        candidates.append(self.script_dir / name)
        candidates.extend(expand_path(d) / name for d in SYSTEM_SCRIPT_DIRS)
        return candidates

    def locate(self, name: str) -> Optional[Path]:
        for candidate in self._candidates(name):
            if is_executable(candidate):
                return candidate
        return which(name)

    def discover(self) -> Dict[str, Path]:
        """Locate every known script. Missing ones are left out."""
        if self._paths is None:
            self._paths = {}
            for name in self.known:
                path = self.locate(name)
                if path is not None:
                    self._paths[name] = path
                else:
                    logger.debug(f"Script not found: {name}")
        return self._paths

    def get(self, name: str) -> Optional[Path]:
        return self.discover().get(name)


class StepRunner:
    """
    Runs single workflow steps.

    Args:
        registry: ScriptRegistry for known script names
        log_dir: Directory receiving ``step_<n>_<name>.log`` files
        dry_run: Log what would run instead of running it
        conventional_dirs: Last-resort directories searched for a target
    """

    def __init__(self, registry: ScriptRegistry, log_dir, dry_run: bool = False,
                 conventional_dirs: Optional[List[Path]] = None):
        self.registry = registry
        self.log_dir = expand_path(log_dir)
        self.dry_run = dry_run
        if conventional_dirs is None:
            conventional_dirs = [registry.script_dir, ORCHESTRATOR_DIR]
        self.conventional_dirs = [Path(d) for d in conventional_dirs]

    def resolve_target(self, target: str) -> Path:
        """
        Find the executable a step refers to.

        Search order: script registry, absolute path, PATH, conventional
        directories.

        Raises:
            StepResolutionError: If the target is not found anywhere.
        """
        if not target:
            raise StepResolutionError("Step has no script")

        registered = self.registry.get(target)
        if registered is not None:
            return registered

        expanded = expand_path(target)
        if expanded.is_absolute():
            if is_executable(expanded):
                return expanded
        else:
            found = which(target)
            if found is not None:
                return found
            for directory in self.conventional_dirs:
                candidate = directory / target
                if is_executable(candidate):
                    return candidate

        raise StepResolutionError(f"Script not found: {target}")

    def step_log_path(self, step: Step, index: int) -> Path:
        return self.log_dir / f"step_{index + 1}_{sanitize_name(step.name)}.log"

    def _write_step_log(self, path: Path, command: List[str], output: str):
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                f.write(f"$ {' '.join(command)}\n")
                f.write(output)
        except OSError as e:
            logger.warning(f"Could not write step log {path}: {e}")

    def run(self, step: Step, index: int) -> StepOutcome:
        """
        Run one step.

        Args:
            step: The step to run
            index: Zero-based position of the step in its workflow

        Returns:
            StepOutcome with status succeeded, skipped, failed or disabled.
        """
        outcome = StepOutcome(index=index, name=step.name, status=StepStatus.SUCCEEDED,
                              severity=step.severity)

        if step.disabled:
            logger.info(f"Skipping {step.name} (disabled)")
            outcome.status = StepStatus.DISABLED
            return outcome

        try:
            if step.action is not None:
                if self.dry_run:
                    logger.info(f"[Dry Run] Would run check: {step.name}")
                    return outcome
                return self._finish(outcome, step.action(self))

            path = self.resolve_target(step.target)
        except StepResolutionError as e:
            logger.warning(f"Skipping {step.name}: {e}")
            outcome.status = StepStatus.SKIPPED
            outcome.reason = str(e)
            return outcome

        if self.dry_run:
            command = [str(path)] + [str(arg) for arg in step.args]
            logger.info(f"[Dry Run] Would execute: {' '.join(command)}")
            return outcome

        try:
            exit_code = self.execute(path, step.args, self.step_log_path(step, index),
                                     step.timeout, check=True)
        except StepExecutionError as e:
            exit_code = e.exit_code
        return self._finish(outcome, exit_code)

    def execute(self, path: Path, args: List[str], log_path: Path, timeout: int = 0,
                check: bool = False) -> int:
        """
        Run a resolved executable, saving its combined output to ``log_path``.

        A nonzero ``timeout`` kills the process after that many seconds
        (exit code 124).

        Returns:
            The process exit code.

        Raises:
            StepExecutionError: If ``check`` is set and the process exited nonzero.
        """
        command = [str(path)] + [str(arg) for arg in args]
        logger.info(f"Running: {' '.join(command)}")
        exit_code, output = run_command(command, timeout=timeout or None)
        self._write_step_log(log_path, command, output)
        if check and exit_code != 0:
            raise StepExecutionError(f"{path.name} exited with code {exit_code}", exit_code=exit_code)
        return exit_code

    def _finish(self, outcome: StepOutcome, exit_code: int) -> StepOutcome:
        outcome.exit_code = exit_code
        if exit_code == 0:
            logger.info(f"✓ {outcome.name} completed")
        else:
            outcome.status = StepStatus.FAILED
            outcome.reason = f"exit code {exit_code}"
            logger.error(f"✗ {outcome.name} failed (exit code {exit_code})")
        return outcome
