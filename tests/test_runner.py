"""
Tests for workflow/runner.py.

Covers script discovery, target resolution order, dry runs, step logs and
exit code mapping.
"""

from unittest.mock import MagicMock, patch

import pytest

from homelab.exit_codes import StepExecutionError, StepResolutionError
from homelab.workflow.models import Step, StepStatus
from homelab.workflow.runner import ScriptRegistry, StepRunner


@pytest.fixture
def registry(tmp_path):
    return ScriptRegistry(script_dir=tmp_path / 'scripts', known=('disk-cleanup.sh',))


@pytest.fixture
def runner(registry, tmp_path):
    return StepRunner(registry, tmp_path / 'logs', conventional_dirs=[tmp_path / 'scripts'])


class TestScriptRegistry:
    """Test discovery of known maintenance scripts."""

    def test_discovers_script_in_script_dir(self, registry, make_script):
        path = make_script('disk-cleanup.sh')
        assert registry.get('disk-cleanup.sh') == path

    def test_explicit_path_wins(self, tmp_path, make_script):
        make_script('disk-cleanup.sh')
        custom_dir = tmp_path / 'custom'
        custom_dir.mkdir()
        custom = custom_dir / 'disk-cleanup.sh'
        custom.write_text('#!/bin/sh\nexit 0\n')
        custom.chmod(0o755)

        registry = ScriptRegistry(script_dir=tmp_path / 'scripts',
                                  explicit={'disk-cleanup.sh': str(custom)},
                                  known=('disk-cleanup.sh',))
        assert registry.get('disk-cleanup.sh') == custom

    def test_non_executable_ignored(self, registry, tmp_path):
        script_dir = tmp_path / 'scripts'
        script_dir.mkdir()
        (script_dir / 'disk-cleanup.sh').write_text('exit 0')
        with patch('homelab.workflow.runner.which', return_value=None):
            assert registry.get('disk-cleanup.sh') is None

    def test_unknown_names_not_registered(self, registry, make_script):
        make_script('other.sh')
        assert registry.get('other.sh') is None


class TestResolveTarget:
    """Test the target search order."""

    def test_registry_first(self, runner, make_script):
        path = make_script('disk-cleanup.sh')
        assert runner.resolve_target('disk-cleanup.sh') == path

    def test_absolute_path(self, runner, make_script):
        path = make_script('custom.sh')
        assert runner.resolve_target(str(path)) == path

    def test_path_lookup(self, runner, tmp_path):
        found = tmp_path / 'bin' / 'tool'
        with patch('homelab.workflow.runner.which', return_value=found):
            assert runner.resolve_target('tool') == found

    def test_conventional_dirs_last(self, runner, make_script):
        path = make_script('helper.sh')
        with patch('homelab.workflow.runner.which', return_value=None):
            assert runner.resolve_target('helper.sh') == path

    def test_missing_target_raises(self, runner):
        with patch('homelab.workflow.runner.which', return_value=None):
            with pytest.raises(StepResolutionError):
                runner.resolve_target('does-not-exist.sh')

    def test_absolute_missing_raises(self, runner, tmp_path):
        with pytest.raises(StepResolutionError):
            runner.resolve_target(str(tmp_path / 'nope.sh'))


class TestStepRunner:
    """Test running steps."""

    def test_success(self, runner, make_script):
        make_script('ok.sh', 'echo hello')
        outcome = runner.run(Step(name='OK', target='ok.sh'), 0)

        assert outcome.status == StepStatus.SUCCEEDED
        assert outcome.exit_code == 0

    def test_failure_exit_code(self, runner, make_script):
        make_script('bad.sh', 'exit 3')
        outcome = runner.run(Step(name='Bad', target='bad.sh'), 0)

        assert outcome.status == StepStatus.FAILED
        assert outcome.exit_code == 3

    def test_args_passed_and_output_logged(self, runner, make_script, tmp_path):
        make_script('echo.sh', 'echo "args: $@"; echo oops >&2')
        runner.run(Step(name='Echo Args', target='echo.sh', args=['--delta', 'x']), 1)

        log = (tmp_path / 'logs' / 'step_2_Echo_Args.log').read_text()
        assert 'args: --delta x' in log
        assert 'oops' in log

    def test_missing_target_is_skipped(self, runner):
        """An unresolvable script is skipped, not failed."""
        with patch('homelab.workflow.runner.which', return_value=None):
            outcome = runner.run(Step(name='Ghost', target='ghost.sh'), 0)

        assert outcome.status == StepStatus.SKIPPED
        assert 'ghost.sh' in outcome.reason

    def test_dry_run_does_not_execute(self, registry, tmp_path, make_script):
        marker = tmp_path / 'ran'
        make_script('touch.sh', f'touch {marker}')
        runner = StepRunner(registry, tmp_path / 'logs', dry_run=True,
                            conventional_dirs=[tmp_path / 'scripts'])

        outcome = runner.run(Step(name='Touch', target='touch.sh'), 0)

        assert outcome.status == StepStatus.SUCCEEDED
        assert not marker.exists()

    def test_timeout_enforced(self, runner, make_script):
        make_script('slow.sh', 'exec sleep 5')
        outcome = runner.run(Step(name='Slow', target='slow.sh', timeout=1), 0)

        assert outcome.status == StepStatus.FAILED
        assert outcome.exit_code == 124

    def test_timeout_keeps_partial_log(self, runner, make_script, tmp_path):
        make_script('slow.sh', 'echo scanning; exec sleep 5')
        runner.run(Step(name='Slow', target='slow.sh', timeout=1), 0)

        assert 'scanning' in (tmp_path / 'logs' / 'step_1_Slow.log').read_text()

    def test_disabled_step_not_run(self, runner):
        outcome = runner.run(Step(name='Off', target='anything.sh', disabled=True), 0)
        assert outcome.status == StepStatus.DISABLED

    def test_internal_action(self, runner):
        action = MagicMock(return_value=1)
        outcome = runner.run(Step(name='Check', action=action), 0)

        action.assert_called_once_with(runner)
        assert outcome.status == StepStatus.FAILED
        assert outcome.exit_code == 1

    def test_internal_action_dry_run(self, registry, tmp_path):
        runner = StepRunner(registry, tmp_path / 'logs', dry_run=True)
        action = MagicMock(return_value=1)

        outcome = runner.run(Step(name='Check', action=action), 0)

        action.assert_not_called()
        assert outcome.status == StepStatus.SUCCEEDED

    def test_execute_check(self, runner, make_script, tmp_path):
        script = make_script('bad.sh', 'exit 7')

        assert runner.execute(script, [], tmp_path / 'logs' / 'plain.log') == 7
        with pytest.raises(StepExecutionError) as exc_info:
            runner.execute(script, [], tmp_path / 'logs' / 'checked.log', check=True)
        assert exc_info.value.exit_code == 7
