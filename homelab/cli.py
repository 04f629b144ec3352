#!/usr/bin/env python3

import sys
from functools import wraps

import click

from . import __version__
from .config import load_config, logger, set_log_level
from .exit_codes import HomelabError, WorkflowNotFoundError, get_exit_code_for_exception
from .notifications import NotificationDispatcher, NotificationSettings, send_test_notification
from .render import render_definition, render_run, render_state, render_workflow_list
from .workflow.builtin import SKIP_KEYS, get_builtin
from .workflow.executor import WorkflowExecutor
from .workflow.parser import WorkflowParser, validate_definition


def handle_errors(func):
    """Turn homelab errors into a logged message and an exit code."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HomelabError as e:
            logger.error(str(e))
            sys.exit(e.exit_code)
        except KeyboardInterrupt as e:
            logger.error("Interrupted by user")
            sys.exit(get_exit_code_for_exception(e))
    return wrapper


def run_options(func):
    """Options shared by every command that runs a workflow."""
    func = click.option('--scheduled', is_flag=True,
                        help='Invoked by the scheduler (notifications on by default)')(func)
    func = click.option('--notify', is_flag=True,
                        help='Send notifications for this manual run')(func)
    func = click.option('--dry-run', is_flag=True,
                        help='Show what would run without running it')(func)
    return func


def _make_executor(config, dry_run=False, notify=False, scheduled=False):
    settings = NotificationSettings.from_config(config)
    if notify:
        settings.notify_manual = True
    return WorkflowExecutor(config, dry_run=dry_run, scheduled=scheduled,
                            dispatcher=NotificationDispatcher(settings))


def _run(config, name, dry_run, notify, scheduled, **builtin_options):
    executor = _make_executor(config, dry_run, notify, scheduled)
    run = executor.run(name, **builtin_options)
    render_run(run)
    sys.exit(run.exit_code)


@click.group()
@click.version_option(version=__version__)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='Config file (JSON or TOML)')
@click.option('-v', '--verbose', is_flag=True, help='Debug output')
@click.option('-q', '--quiet', is_flag=True, help='Only warnings and errors')
@click.pass_context
def cli(ctx, config_path, verbose, quiet):
    """Homelab maintenance workflow orchestrator."""
    config = load_config(config_path)
    set_log_level(verbose, quiet, config.get('logging', {}).get('level'))
    ctx.obj = config


@cli.command(name='run')
@click.argument('name')
@run_options
@click.option('--skip', 'skip', multiple=True,
              help='Skip a built-in step group (e.g. ssh, nmap, updates)')
@click.pass_obj
@handle_errors
def run_workflow(config, name, dry_run, notify, scheduled, skip):
    """Run a workflow by name.

    \b
    Exit codes:
      0  success or warning
      1+ failure (the failing step's exit code when the run stopped)
      pre-deploy: 1 = warnings, 2 = critical

    \b
    Examples:
      homelab run nightly
      homelab run morning --skip nmap --dry-run
      homelab run nightly --scheduled
    """
    options = {'skip': skip} if skip else {}
    _run(config, name, dry_run, notify, scheduled, **options)


@cli.command(name='morning')
@run_options
@click.option('--skip-ssh', is_flag=True, help='Skip the SSH key audit')
@click.option('--skip-nmap', is_flag=True, help='Skip the network scan')
@click.option('--skip-sync', is_flag=True, help='Skip the backup status check')
@click.option('--skip-updates', is_flag=True, help='Skip the updates preview')
@click.pass_obj
@handle_errors
def morning(config, dry_run, notify, scheduled, **flags):
    """Daily maintenance (ssh-audit, nmap, sync check, updates preview)."""
    skip = [key for key in SKIP_KEYS['morning'] if flags.get(f'skip_{key}')]
    _run(config, 'morning', dry_run, notify, scheduled, skip=skip)


@cli.command(name='weekly')
@run_options
@click.option('--skip-cleanup', is_flag=True, help='Skip disk cleanup')
@click.option('--skip-updates', is_flag=True, help='Skip system updates')
@click.option('--skip-scans', is_flag=True, help='Skip audits, scans and backup checks')
@click.pass_obj
@handle_errors
def weekly(config, dry_run, notify, scheduled, **flags):
    """Weekly deep clean (cleanup, updates, full scans)."""
    skip = [key for key in SKIP_KEYS['weekly'] if flags.get(f'skip_{key}')]
    _run(config, 'weekly', dry_run, notify, scheduled, skip=skip)


@cli.command(name='emergency')
@run_options
@click.option('--threshold', type=float, default=None,
              help='Free space (GB) below which cleanup runs [default: 10]')
@click.pass_obj
@handle_errors
def emergency(config, dry_run, notify, scheduled, threshold):
    """Emergency disk cleanup (aggressive mode)."""
    _run(config, 'emergency', dry_run, notify, scheduled, threshold_gb=threshold)


@cli.command(name='pre-deploy')
@run_options
@click.option('--min-disk', type=float, default=None,
              help='Minimum free space (GB) [default: 10]')
@click.option('--repo', type=click.Path(file_okay=False), default=None,
              help='Repository whose working tree must be clean [default: cwd]')
@click.pass_obj
@handle_errors
def pre_deploy(config, dry_run, notify, scheduled, min_disk, repo):
    """Pre-deployment checks (ssh, disk, network, git).

    Exits 0 when all checks pass, 1 on warnings, 2 on critical problems.
    """
    _run(config, 'pre-deploy', dry_run, notify, scheduled, min_disk_gb=min_disk, repo=repo)


@cli.command(name='validate')
@click.argument('name')
@click.pass_obj
@handle_errors
def validate_workflow(config, name):
    """Validate a workflow definition.

    Missing scripts are reported as warnings; they are skipped at run time.
    """
    executor = _make_executor(config)
    path = WorkflowParser.find_workflow(name, executor.search_dirs)
    if path is None:
        if get_builtin(name, config) is not None:
            click.echo(f"✓ {name} is a built-in workflow")
            return
        raise WorkflowNotFoundError(f"Workflow not found: {name}")

    definition, warnings = validate_definition(path, executor.runner)
    for warning in warnings:
        click.echo(f"⚠ {warning}")
    click.echo(f"✓ Workflow '{definition.name}' is valid ({len(definition.steps)} steps, {path})")


@cli.command(name='show')
@click.argument('name')
@click.option('--json', 'as_json', is_flag=True, help='Print the definition as JSON')
@click.pass_obj
@handle_errors
def show_workflow(config, name, as_json):
    """Show a workflow definition."""
    executor = _make_executor(config)
    render_definition(executor.load_workflow(name), as_json=as_json)


@cli.command(name='list')
@click.pass_obj
@handle_errors
def list_workflows(config):
    """List built-in and custom workflows."""
    render_workflow_list(_make_executor(config).list_workflows())


@cli.group(name='state', invoke_without_command=True)
@click.pass_context
def state_group(ctx):
    """Show the last recorded run of each workflow."""
    if ctx.invoked_subcommand is None:
        render_state(_make_executor(ctx.obj).state_store.all())


@state_group.command(name='show')
@click.argument('workflow')
@click.pass_obj
def show_state(config, workflow):
    """One-line summary of a workflow's last run."""
    store = _make_executor(config).state_store
    click.echo(f"{workflow}: {store.summary(workflow)}")


@state_group.command(name='clear')
@click.argument('workflow')
@click.pass_obj
def clear_state(config, workflow):
    """Forget the recorded run of a workflow."""
    store = _make_executor(config).state_store
    if store.clear(workflow):
        click.echo(f"Cleared state for {workflow}")
    else:
        click.echo(f"No state recorded for {workflow}")


@cli.group(name='notify')
def notify_group():
    """Notification tools."""
    pass


@notify_group.command(name='test')
@click.option('--dry-run', is_flag=True, help='Preview messages without sending them')
@click.pass_obj
def notify_test(config, dry_run):
    """Send a test notification through every configured channel."""
    dispatcher = NotificationDispatcher(NotificationSettings.from_config(config))
    result = send_test_notification(dispatcher, dry_run=dry_run)
    if result.dropped_reason:
        click.echo(f"Notification not sent: {result.dropped_reason}")
        sys.exit(1)
    if not result.success:
        click.echo("No channel delivered the test notification")
        sys.exit(1)
    click.echo(f"Delivered via {', '.join(result.delivered)}")


def main():
    cli()


if __name__ == "__main__":
    main()
