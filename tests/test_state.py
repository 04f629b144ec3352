"""
Tests for state.py module.

Tests the run-state store including:
- Record round trips and field reads
- Cooldown arithmetic (hours_since)
- Atomic, key-scoped writes
- Tolerance of corrupt or unwritable documents
"""

import json
import os
import stat
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from homelab.state import StateRecord, StateStore


class TestStateRecord:
    """Test StateRecord creation and serialization."""

    def test_create_stamps_utc(self):
        now = datetime(2024, 5, 1, 7, 0, 12, tzinfo=timezone.utc)
        record = StateRecord.create('success', 0, '2m 15s', 4, 4, now=now)

        assert record.last_run == '2024-05-01T07:00:12Z'
        assert record.failed_steps == []
        assert record.skipped_steps == []

    def test_to_dict_field_names(self):
        """Stored field names are the documented snake_case names."""
        record = StateRecord.create('failure', 3, '10s', 1, 3, failed=['Backup'], skipped=['Scan'])
        assert set(record.to_dict()) == {
            'last_run', 'last_status', 'last_exit_code', 'last_duration',
            'completed_steps', 'total_steps', 'failed_steps', 'skipped_steps',
        }

    def test_from_dict_ignores_unknown_fields(self):
        record = StateRecord.from_dict({'last_run': '2024-05-01T07:00:00Z', 'extra': 1})
        assert record.last_status == 'unknown'
        assert record.last_run_time == datetime(2024, 5, 1, 7, 0, tzinfo=timezone.utc)


class TestStateStore:
    """Test StateStore reads and writes."""

    @pytest.fixture
    def state_file(self, tmp_path):
        return tmp_path / 'workflows' / 'state.json'

    @pytest.fixture
    def store(self, state_file):
        return StateStore(state_file)

    def morning_record(self):
        return StateRecord.create('success', 0, '2m15s', 4, 4, failed=[], skipped=[])

    # ========================================================================
    # Round trips
    # ========================================================================

    def test_write_then_read(self, store):
        """A fresh write reads back and is about zero hours old."""
        assert store.write('morning', self.morning_record())

        assert store.read('morning', 'last_status') == 'success'
        assert store.read('morning', 'completed_steps') == 4
        hours = store.hours_since('morning')
        assert hours is not None
        assert hours == pytest.approx(0.0, abs=0.01)

    def test_unknown_workflow_reads_none(self, store):
        assert store.read('never', 'last_status') is None
        assert store.get('never') is None
        assert store.hours_since('never') is None

    def test_write_replaces_only_one_key(self, store, state_file):
        """Writing one workflow leaves the others untouched."""
        other = StateRecord.create('failure', 2, '5s', 0, 2, failed=['a'])
        store.write('weekly', other)
        store.write('morning', self.morning_record())

        data = json.loads(state_file.read_text())
        assert data['weekly'] == other.to_dict()
        assert data['morning']['last_status'] == 'success'

    def test_rewrite_overwrites_not_merges(self, store):
        store.write('morning', StateRecord.create('failure', 1, '1s', 0, 4, failed=['x']))
        store.write('morning', self.morning_record())

        assert store.read('morning', 'failed_steps') == []

    def test_document_is_private(self, store, state_file):
        store.write('morning', self.morning_record())
        mode = stat.S_IMODE(os.stat(state_file).st_mode)
        assert mode == 0o600

    def test_no_temp_files_left_behind(self, store, state_file):
        store.write('morning', self.morning_record())
        assert [p.name for p in state_file.parent.iterdir()] == ['state.json']

    # ========================================================================
    # Cooldown arithmetic
    # ========================================================================

    def test_hours_since_rounds_to_two_decimals(self, state_file):
        last = datetime(2024, 5, 1, 7, 0, 0, tzinfo=timezone.utc)
        store = StateStore(state_file, clock=lambda: last + timedelta(minutes=100))
        store.write('morning', StateRecord.create('success', 0, '1s', 1, 1, now=last))

        assert store.hours_since('morning') == 1.67

    def test_unparsable_timestamp(self, store, state_file):
        state_file.parent.mkdir(parents=True)
        state_file.write_text(json.dumps({'morning': {'last_run': 'yesterday'}}))
        assert store.hours_since('morning') is None

    # ========================================================================
    # Failure tolerance
    # ========================================================================

    def test_corrupt_document_reads_empty(self, store, state_file):
        state_file.parent.mkdir(parents=True)
        state_file.write_text('{not json')

        assert store.get('morning') is None
        assert store.all() == {}

    def test_write_over_corrupt_document_keeps_it(self, store, state_file):
        """An unreadable document is moved aside, never overwritten."""
        state_file.parent.mkdir(parents=True)
        truncated = '{"nightly": {"last_run": "2024-05-01T02:00:00Z",'
        state_file.write_text(truncated)

        assert store.write('morning', self.morning_record())

        corrupt = state_file.with_name('state.json.corrupt')
        assert corrupt.read_text() == truncated
        assert list(json.loads(state_file.read_text())) == ['morning']

    def test_write_skipped_when_corrupt_document_cannot_move(self, store, state_file):
        state_file.parent.mkdir(parents=True)
        state_file.write_text('{not json')

        with patch('homelab.state.os.replace', side_effect=PermissionError('denied')):
            assert store.write('morning', self.morning_record()) is False

        assert state_file.read_text() == '{not json'

    def test_clear_leaves_corrupt_document(self, store, state_file):
        state_file.parent.mkdir(parents=True)
        state_file.write_text('{not json')

        assert store.clear('nightly') is False
        assert state_file.read_text() == '{not json'

    def test_write_failure_returns_false(self, store):
        """IO errors are reported, not raised."""
        with patch('homelab.state.os.replace', side_effect=PermissionError('denied')):
            assert store.write('morning', self.morning_record()) is False

    def test_write_in_fake_filesystem(self, fs):
        """Writes work against a pristine filesystem, creating directories."""
        store = StateStore('/home/user/.config/homelab/workflows/state.json')
        assert store.write('morning', self.morning_record())
        assert fs.exists('/home/user/.config/homelab/workflows/state.json')

    # ========================================================================
    # Summaries and clearing
    # ========================================================================

    def test_summary(self, store):
        record = self.morning_record()
        store.write('morning', record)
        assert store.summary('morning') == f"success - 4/4 steps - 2m15s - {record.last_run}"
        assert store.summary('weekly') == "never run"

    def test_clear(self, store):
        store.write('morning', self.morning_record())
        store.write('weekly', self.morning_record())

        assert store.clear('morning')
        assert store.get('morning') is None
        assert store.get('weekly') is not None
        assert store.clear('morning') is False

    def test_all(self, store):
        store.write('morning', self.morning_record())
        store.write('weekly', self.morning_record())
        assert sorted(store.all()) == ['morning', 'weekly']

