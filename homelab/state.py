"""
Persistent per-workflow run state.

All workflows share one JSON document mapping workflow name to its most
recent run record::

    {
      "morning": {
        "last_run": "2024-05-01T07:00:12Z",
        "last_status": "success",
        "last_exit_code": 0,
        "last_duration": "2m 15s",
        "completed_steps": 4,
        "total_steps": 4,
        "failed_steps": [],
        "skipped_steps": []
      }
    }

Writes replace a single key and land through a temp file renamed over the
document, so readers never see a half-written file. There is no locking: two
processes racing through read-modify-write can lose one update.

State problems never fail a workflow run; they are logged as warnings. A
document that cannot be parsed is moved to ``state.json.corrupt`` before the
next write starts a new one.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .exit_codes import StateIOError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StateRecord:
    """The stored outcome of a workflow's most recent run."""

    last_run: str
    last_status: str
    last_exit_code: int
    last_duration: str
    completed_steps: int
    total_steps: int
    failed_steps: List[str] = field(default_factory=list)
    skipped_steps: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, status: str, exit_code: int, duration: str,
               completed: int, total: int,
               failed: Optional[List[str]] = None,
               skipped: Optional[List[str]] = None,
               now: Optional[datetime] = None) -> 'StateRecord':
        """
        Build a record stamped with the current UTC time.

        Args:
            status: Overall run status (success, warning, failure)
            exit_code: Process exit code of the run
            duration: Human readable duration
            completed: Number of completed steps
            total: Number of steps in the workflow
            failed: Names of failed steps
            skipped: Names of skipped steps
            now: Timestamp override

        Returns:
            StateRecord instance
        """
        stamp = (now or utc_now()).astimezone(timezone.utc)
        return cls(
            last_run=stamp.strftime(TIMESTAMP_FORMAT),
            last_status=status,
            last_exit_code=exit_code,
            last_duration=duration,
            completed_steps=completed,
            total_steps=total,
            failed_steps=list(failed or []),
            skipped_steps=list(skipped or []),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StateRecord':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values.setdefault('last_status', 'unknown')
        values.setdefault('last_exit_code', 0)
        values.setdefault('last_duration', '')
        values.setdefault('completed_steps', 0)
        values.setdefault('total_steps', 0)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def last_run_time(self) -> Optional[datetime]:
        try:
            return datetime.strptime(self.last_run, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None


class StateStore:
    """
    Reads and writes the shared workflow state document.

    Args:
        state_file: Path to the JSON document
        clock: Callable returning the current aware datetime (for tests)
    """

    def __init__(self, state_file, clock: Optional[Callable[[], datetime]] = None):
        self.state_file = Path(state_file).expanduser()
        self.clock = clock or utc_now

    def _load(self) -> Dict[str, Any]:
        """Load the whole document, raising StateIOError on failure."""
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateIOError(f"Failed to load state file {self.state_file}: {e}")
        if not isinstance(data, dict):
            raise StateIOError(f"State file {self.state_file} is not a JSON object")
        return data

    def _load_or_empty(self) -> Dict[str, Any]:
        try:
            return self._load()
        except StateIOError as e:
            logger.warning(str(e))
            return {}

    def _load_for_update(self) -> Dict[str, Any]:
        """
        Load the document before changing it.

        An unreadable document is moved aside to ``<state_file>.corrupt``
        rather than overwritten, so the records it holds can be recovered.

        Raises:
            StateIOError: If the document is unreadable and cannot be moved.
        """
        try:
            return self._load()
        except StateIOError as e:
            logger.warning(str(e))
        corrupt = self.state_file.with_name(self.state_file.name + '.corrupt')
        try:
            os.replace(self.state_file, corrupt)
        except OSError as e:
            raise StateIOError(f"Cannot move unreadable state file {self.state_file} aside: {e}")
        logger.warning(f"Moved unreadable state file to {corrupt}, starting a new one")
        return {}

    def _save(self, data: Dict[str, Any]):
        """Write the document via a temp file renamed into place."""
        directory = self.state_file.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(directory), prefix='.state.', suffix='.tmp')
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self.state_file)
            except OSError:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StateIOError(f"Failed to write state file {self.state_file}: {e}")

    def write(self, name: str, record: StateRecord) -> bool:
        """
        Replace the record stored for one workflow.

        Returns:
            True if the document was written, False if it failed (logged).
        """
        try:
            data = self._load_for_update()
            data[name] = record.to_dict()
            self._save(data)
        except StateIOError as e:
            logger.warning(str(e))
            return False
        logger.debug(f"Recorded state for workflow {name}: {record.last_status}")
        return True

    def get(self, name: str) -> Optional[StateRecord]:
        entry = self._load_or_empty().get(name)
        if not isinstance(entry, dict) or 'last_run' not in entry:
            return None
        try:
            return StateRecord.from_dict(entry)
        except TypeError as e:
            logger.warning(f"Ignoring malformed state for {name}: {e}")
            return None

    def read(self, name: str, field_name: str) -> Optional[Any]:
        """Return one stored field for a workflow, or None if never run."""
        entry = self._load_or_empty().get(name)
        if not isinstance(entry, dict):
            return None
        return entry.get(field_name)

    def hours_since(self, name: str) -> Optional[float]:
        """
        Hours elapsed since the workflow last ran, to two decimals.

        Returns:
            float hours, or None if the workflow has never run or the stored
            timestamp is unreadable.
        """
        record = self.get(name)
        if record is None:
            return None
        last_run = record.last_run_time
        if last_run is None:
            logger.warning(f"Unreadable last_run timestamp for {name}: {record.last_run}")
            return None
        elapsed = (self.clock() - last_run).total_seconds()
        return round(elapsed / 3600, 2)

    def summary(self, name: str) -> str:
        """One-line summary such as ``success - 4/4 steps - 2m 15s - <time>``."""
        record = self.get(name)
        if record is None:
            return "never run"
        return (f"{record.last_status} - {record.completed_steps}/{record.total_steps} steps"
                f" - {record.last_duration} - {record.last_run}")

    def clear(self, name: str) -> bool:
        """Remove a workflow's record. Returns True if one was removed."""
        try:
            data = self._load()
        except StateIOError as e:
            logger.warning(f"Not clearing {name}: {e}")
            return False
        if name not in data:
            return False
        del data[name]
        try:
            self._save(data)
        except StateIOError as e:
            logger.warning(str(e))
            return False
        return True

    def all(self) -> Dict[str, StateRecord]:
        records = {}
        for name in self._load_or_empty():
            record = self.get(name)
            if record is not None:
                records[name] = record
        return records
