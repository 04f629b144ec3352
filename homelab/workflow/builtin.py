"""
Built-in workflows.

Their step lists live in code instead of a definition document. Each step
can be switched off with a skip key (``--skip KEY`` on the command line);
switched-off steps count as completed. Built-in workflows always run every
step, whatever fails.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from ..exit_codes import GENERAL_ERROR, SUCCESS
from ..utils import disk_free_gb, format_gb, run_command, which
from .models import Step, WorkflowDefinition

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    'morning': "Daily maintenance (ssh-audit, nmap, sync check, updates preview)",
    'weekly': "Weekly deep clean (cleanup, updates, full scans)",
    'emergency': "Emergency disk cleanup (aggressive mode)",
    'pre-deploy': "Pre-deployment checks (ssh, disk, network, git)",
}

SKIP_KEYS = {
    'morning': ('ssh', 'nmap', 'sync', 'updates'),
    'weekly': ('cleanup', 'updates', 'scans'),
    'emergency': (),
    'pre-deploy': (),
}


def _step(name: str, script: str, args, skip_key: Optional[str] = None,
          skip: Iterable[str] = (), severity: Optional[str] = None) -> Step:
    return Step(name=name, target=script, args=list(args),
                disabled=skip_key is not None and skip_key in skip,
                severity=severity)


def build_morning(skip: Iterable[str] = (), **options) -> WorkflowDefinition:
    skip = set(skip)
    steps = [
        _step("SSH Key Audit", 'ssh-key-audit.sh', ['--all-users', '--risk'], 'ssh', skip),
        _step("Network Scan", 'nmap-scan.sh', ['--delta'], 'nmap', skip),
        _step("Backup Status", 'rclone-sync.sh', ['--status'], 'sync', skip),
        _step("Package Updates", 'update-all.sh', ['--dry-run'], 'updates', skip),
    ]
    return WorkflowDefinition(name='morning', description=DESCRIPTIONS['morning'],
                              steps=steps, builtin=True)


def build_weekly(skip: Iterable[str] = (), **options) -> WorkflowDefinition:
    skip = set(skip)
    steps = [
        _step("Disk Cleanup", 'disk-cleanup.sh',
              ['--smart-gc', '--clean-venvs', '--venv-age', '60'], 'cleanup', skip),
        _step("System Updates", 'update-all.sh', [], 'updates', skip),
        _step("SSH Key Audit", 'ssh-key-audit.sh', ['--all-users', '--risk-detail'], 'scans', skip),
        _step("Network Scan", 'nmap-scan.sh', ['--full', '--delta'], 'scans', skip),
        _step("Backup Verification", 'rclone-sync.sh', ['--check'], 'scans', skip),
    ]
    return WorkflowDefinition(name='weekly', description=DESCRIPTIONS['weekly'],
                              steps=steps, builtin=True)


def _disk_report(threshold: float, path: str = '/', fail_below: bool = False) -> Callable:
    def check(runner) -> int:
        available = disk_free_gb(path)
        if available is None:
            logger.warning(f"Cannot determine free space on {path}")
            return SUCCESS
        if available < threshold:
            log = logger.error if fail_below else logger.warning
            log(f"Free space on {path}: {format_gb(available)} (below {threshold:g}GB)")
            return GENERAL_ERROR if fail_below else SUCCESS
        logger.info(f"Free space on {path}: {format_gb(available)}")
        return SUCCESS
    return check


def _aggressive_cleanup(threshold: float, path: str = '/') -> Callable:
    def cleanup(runner) -> int:
        available = disk_free_gb(path)
        if available is not None and available >= threshold:
            logger.info(f"Disk space OK ({format_gb(available)} >= {threshold:g}GB), no cleanup needed")
            return SUCCESS
        script = runner.resolve_target('disk-cleanup.sh')
        return runner.execute(script, ['--full-gc', '--clean-venvs', '--venv-age', '30', '-y'],
                              runner.log_dir / 'step_2_Aggressive_Cleanup.log')
    return cleanup


def build_emergency(threshold_gb: float = 10, **options) -> WorkflowDefinition:
    threshold = float(threshold_gb)
    steps = [
        Step(name="Disk Space Check", action=_disk_report(threshold)),
        Step(name="Aggressive Cleanup", target='disk-cleanup.sh', action=_aggressive_cleanup(threshold)),
        Step(name="Disk Space Re-check", action=_disk_report(threshold, fail_below=True)),
    ]
    return WorkflowDefinition(name='emergency', description=DESCRIPTIONS['emergency'],
                              steps=steps, builtin=True)


def _git_clean(repo: Optional[str]) -> Callable:
    def check(runner) -> int:
        cwd = str(Path(repo).expanduser()) if repo else os.getcwd()
        if which('git') is None:
            logger.warning("git not installed, skipping working tree check")
            return SUCCESS
        code, _ = run_command(['git', 'rev-parse', '--is-inside-work-tree'], cwd=cwd, log_stderr=False)
        if code != 0:
            logger.info(f"{cwd} is not a git repository")
            return SUCCESS
        code, output = run_command(['git', 'status', '--porcelain'], cwd=cwd)
        if code != 0 or output.strip():
            logger.warning(f"Uncommitted changes in {cwd}")
            return GENERAL_ERROR
        logger.info("Git working tree clean")
        return SUCCESS
    return check


def build_pre_deploy(min_disk_gb: float = 10, repo: Optional[str] = None, **options) -> WorkflowDefinition:
    """
    Pre-deployment gate with graded exit codes: 2 if a critical check
    failed, 1 if only warning checks failed, 0 otherwise.
    """
    threshold = float(min_disk_gb)
    steps = [
        _step("SSH Key Audit", 'ssh-key-audit.sh', ['--all-users', '--risk', '--json'],
              severity='warning'),
        Step(name="Disk Space Check", action=_disk_report(threshold, fail_below=True),
             severity='critical'),
        _step("Network Scan", 'nmap-scan.sh', ['--delta'], severity='warning'),
        Step(name="Git Status", action=_git_clean(repo), severity='warning'),
    ]
    return WorkflowDefinition(name='pre-deploy', description=DESCRIPTIONS['pre-deploy'],
                              steps=steps, builtin=True, graded_exit=True)


BUILDERS: Dict[str, Callable[..., WorkflowDefinition]] = {
    'morning': build_morning,
    'weekly': build_weekly,
    'emergency': build_emergency,
    'pre-deploy': build_pre_deploy,
}


def builtin_names():
    return list(BUILDERS)


def get_builtin(name: str, config: Optional[Dict[str, Any]] = None, **options) -> Optional[WorkflowDefinition]:
    """
    Build a built-in workflow.

    Defaults come from the ``workflows`` config section (``pre-deploy`` reads
    ``workflows.pre_deploy``); keyword options override them.

    Returns:
        WorkflowDefinition, or None if ``name`` is not built in.
    """
    builder = BUILDERS.get(name)
    if builder is None:
        return None
    section = ((config or {}).get('workflows') or {}).get(name.replace('-', '_'), {})
    merged = dict(section)
    merged.update({k: v for k, v in options.items() if v is not None})
    return builder(**merged)
