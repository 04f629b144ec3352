import stat
from datetime import datetime

import pytest
from pyfakefs.fake_filesystem_unittest import Patcher

from homelab.config import get_default_config


@pytest.fixture
def fs():
    with Patcher() as patcher:
        yield patcher.fs


@pytest.fixture
def config(tmp_path):
    """Default configuration with every path inside tmp_path."""
    config = get_default_config()
    config['paths'].update({
        'config_dir': str(tmp_path / 'config'),
        'log_dir': str(tmp_path / 'logs'),
        'workflow_dir': str(tmp_path / 'config' / 'workflows'),
        'override_dir': str(tmp_path / 'config' / '.workflow-overrides'),
        'state_file': str(tmp_path / 'config' / 'workflows' / 'state.json'),
        'script_dir': str(tmp_path / 'scripts'),
    })
    config['notifications']['channels'] = []
    return config


@pytest.fixture
def make_script(tmp_path):
    """Create an executable shell script in tmp_path/scripts."""
    script_dir = tmp_path / 'scripts'
    script_dir.mkdir(exist_ok=True)

    def _make(name, body='exit 0'):
        path = script_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


class FakeClock:
    """Settable clock returning local datetimes."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 5, 1, 7, 0, 0)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
