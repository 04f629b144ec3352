"""
Persistent log file for a single workflow run.

While a run is in progress every record from the ``homelab`` logger is also
written to ``<log_dir>/homelab_<workflow>_<YYYYmmdd_HHMMSS>.log``.
"""

import logging
import os
import socket
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from .utils import expand_path, format_duration

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
RULE = "=" * 60


def _count_and_names(names: Sequence[str]) -> str:
    if not names:
        return "0"
    return f"{len(names)} ({', '.join(names)})"


class RunLog:
    """
    Context manager attaching a file handler for the duration of a run.

    If the log file cannot be created the run continues with console
    logging only and ``path`` is None.
    """

    def __init__(self, log_dir, workflow: str, started_at: Optional[datetime] = None):
        started_at = started_at or datetime.now()
        self.workflow = workflow
        self.started_at = started_at
        self.path: Optional[Path] = (
            expand_path(log_dir) / f"homelab_{workflow}_{started_at:%Y%m%d_%H%M%S}.log"
        )
        self._handler: Optional[logging.FileHandler] = None

    def __enter__(self) -> 'RunLog':
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'a') as f:
                f.write(f"{RULE}\n")
                f.write(f"Workflow: {self.workflow}\n")
                f.write(f"Started: {self.started_at:{DATE_FORMAT}}\n")
                f.write(f"Host: {socket.gethostname()}\n")
                f.write(f"{RULE}\n")
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.warning(f"Could not create run log {self.path}: {e}")
            self.path = None
            return self

        self._handler = logging.FileHandler(self.path)
        self._handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        self._handler.setLevel(logging.DEBUG)
        logging.getLogger('homelab').addHandler(self._handler)
        return self

    def finish(self, duration_seconds: float, exit_code: int,
               skipped: Sequence[str] = (), failed: Sequence[str] = ()):
        """Write the closing summary block, naming skipped and failed steps."""
        if self.path is None:
            return
        if self._handler is not None:
            self._handler.flush()
        try:
            with open(self.path, 'a') as f:
                f.write(f"{RULE}\n")
                f.write(f"Workflow: {self.workflow}\n")
                f.write(f"Completed: {datetime.now():{DATE_FORMAT}}\n")
                f.write(f"Duration: {format_duration(duration_seconds)}\n")
                f.write(f"Exit code: {exit_code}\n")
                f.write(f"Skipped: {_count_and_names(skipped)}\n")
                f.write(f"Failed: {_count_and_names(failed)}\n")
                f.write(f"{RULE}\n")
        except OSError as e:
            logger.warning(f"Could not finish run log {self.path}: {e}")

    def __exit__(self, exc_type, exc, tb):
        if self._handler is not None:
            logging.getLogger('homelab').removeHandler(self._handler)
            self._handler.close()
            self._handler = None
        return False
