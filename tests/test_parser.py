"""
Tests for workflow/parser.py.
"""

import json
from unittest.mock import MagicMock

import pytest

from homelab.exit_codes import DefinitionError, StepResolutionError
from homelab.workflow.conditions import ConditionKind
from homelab.workflow.parser import WorkflowParser, validate_definition


def definition(**overrides):
    data = {
        'name': 'nightly',
        'description': 'Nightly maintenance',
        'steps': [
            {'name': 'Backup', 'script': 'rclone-sync.sh', 'args': ['--sync'], 'skip_on_error': True},
            {'name': 'Scan', 'script': 'nmap-scan.sh', 'when': {'weekday': {'days': [0, 6]}}},
        ],
    }
    data.update(overrides)
    return data


class TestParse:
    """Test building definitions from documents."""

    def test_basic_definition(self):
        workflow = WorkflowParser.parse(definition())

        assert workflow.name == 'nightly'
        assert workflow.description == 'Nightly maintenance'
        assert [s.name for s in workflow.steps] == ['Backup', 'Scan']
        assert workflow.steps[0].target == 'rclone-sync.sh'
        assert workflow.steps[0].args == ['--sync']
        assert workflow.steps[0].skip_on_error is True
        assert workflow.steps[1].skip_on_error is False
        assert workflow.steps[1].when[0].kind == ConditionKind.WEEKDAY
        assert workflow.builtin is False

    def test_conditions_and_notifications(self):
        workflow = WorkflowParser.parse(definition(
            conditions={'disk': {'min_free_gb': 5, 'action': 'fail'}},
            notifications={'triggers': ['failure'], 'channels': ['slack']},
        ))

        assert workflow.conditions[0].kind == ConditionKind.DISK
        assert workflow.notifications == {'triggers': ['failure'], 'channels': ['slack']}

    def test_args_stringified(self):
        workflow = WorkflowParser.parse(definition(steps=[
            {'name': 'Cleanup', 'script': 'disk-cleanup.sh', 'args': ['--venv-age', 60]},
        ]))
        assert workflow.steps[0].args == ['--venv-age', '60']

    def test_to_dict_uses_document_field_names(self):
        workflow = WorkflowParser.parse(definition())
        data = workflow.to_dict()

        assert data['steps'][0]['script'] == 'rclone-sync.sh'
        assert data['steps'][1]['when'] == {'weekday': {'days': [0, 6], 'action': 'skip'}}


class TestValidation:
    """Test definition validation errors."""

    @pytest.mark.parametrize('document, message', [
        ([], 'must be an object'),
        ({'steps': [{'name': 'a', 'script': 'b'}]}, "'name'"),
        ({'name': 'x'}, 'at least one step'),
        ({'name': 'x', 'steps': []}, 'at least one step'),
        ({'name': 'x', 'steps': 'step'}, 'must be an array'),
        ({'name': 'x', 'steps': [{'script': 'a.sh'}]}, "'name'"),
        ({'name': 'x', 'steps': [{'name': 'a'}]}, "'script'"),
        ({'name': 'x', 'steps': [{'name': 'a', 'script': 'a.sh', 'args': '--all'}]}, "'args' must be an array"),
        ({'name': 'x', 'steps': [{'name': 'a', 'script': 'a.sh', 'timeout': -1}]}, "'timeout'"),
        ({'name': 'x', 'steps': [{'name': 'a', 'script': 'a.sh', 'skip_on_error': 'yes'}]}, "'skip_on_error'"),
        ({'name': 'x', 'steps': [{'name': 'a', 'script': 'a.sh'}], 'notifications': {'triggers': ['never']}},
         "Unknown notification trigger"),
    ])
    def test_invalid_documents(self, document, message):
        with pytest.raises(DefinitionError) as exc_info:
            WorkflowParser.parse(document)
        assert message in str(exc_info.value)


class TestLoading:
    """Test loading documents from disk."""

    def test_load_json(self, tmp_path):
        path = tmp_path / 'nightly.json'
        path.write_text(json.dumps(definition()))

        workflow = WorkflowParser.load_workflow(path)

        assert workflow.name == 'nightly'
        assert workflow.source == path

    def test_load_yaml(self, tmp_path):
        path = tmp_path / 'nightly.yaml'
        path.write_text(
            "name: nightly\n"
            "steps:\n"
            "  - name: Backup\n"
            "    script: rclone-sync.sh\n"
            "    args: [--sync]\n"
        )

        workflow = WorkflowParser.load_workflow(path)

        assert workflow.steps[0].args == ['--sync']

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"name": ')
        with pytest.raises(DefinitionError, match='Invalid JSON'):
            WorkflowParser.load_workflow(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(DefinitionError, match='not found'):
            WorkflowParser.load_workflow(tmp_path / 'nope.json')

    def test_override_dir_wins(self, tmp_path):
        overrides = tmp_path / 'overrides'
        workflows = tmp_path / 'workflows'
        overrides.mkdir()
        workflows.mkdir()
        (overrides / 'nightly.json').write_text('{}')
        (workflows / 'nightly.json').write_text('{}')

        assert WorkflowParser.find_workflow('nightly', [overrides, workflows]) == overrides / 'nightly.json'
        assert WorkflowParser.find_workflow('other', [overrides, workflows]) is None

    def test_list_workflows(self, tmp_path):
        overrides = tmp_path / 'overrides'
        workflows = tmp_path / 'workflows'
        overrides.mkdir()
        workflows.mkdir()
        (overrides / 'nightly.json').write_text('{}')
        (workflows / 'nightly.json').write_text('{}')
        (workflows / 'backup.yml').write_text('{}')
        (workflows / 'state.txt').write_text('')

        found = WorkflowParser.list_workflows([overrides, workflows, tmp_path / 'missing'])

        assert found == {'nightly': overrides / 'nightly.json', 'backup': workflows / 'backup.yml'}


class TestTargetWarnings:
    """Unresolvable scripts are warnings, not errors."""

    def test_check_targets(self, tmp_path):
        path = tmp_path / 'nightly.json'
        path.write_text(json.dumps(definition()))
        runner = MagicMock()
        runner.resolve_target.side_effect = [tmp_path / 'rclone-sync.sh',
                                             StepResolutionError('Script not found: nmap-scan.sh')]

        workflow, warnings = validate_definition(path, runner)

        assert workflow.name == 'nightly'
        assert warnings == ['Scan: Script not found: nmap-scan.sh']
