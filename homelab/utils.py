"""
Shared utility functions for homelab.
"""
import os
import re
import shutil
import subprocess
from pathlib import Path

from .config import logger
from .exit_codes import TIMEOUT, NOT_EXECUTABLE


def run_command(command, cwd=None, timeout=None, input_text=None, log_stderr=True):
    """
    Runs a command and captures its combined output.

    Args:
        command (list|str): Argument list, or a string run through the shell.
        cwd (str): The working directory.
        timeout (int): Seconds before the process is killed. None waits forever.
        input_text (str): Text fed to the process on stdin.
        log_stderr (bool): If False, do not log stderr of failed commands.

    Returns:
        tuple: (exit code, combined stdout/stderr). A timeout yields exit
        code 124 with the output captured so far, and a launch failure
        yields 126.
    """
    shell = isinstance(command, str)
    logger.debug(f"Running command: {command}")
    try:
        result = subprocess.run(
            command,
            shell=shell,
            cwd=cwd,
            input=input_text,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out after {timeout}s: {command}")
        # Output captured before the kill arrives as bytes even in text mode
        output = e.output or ""
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        return TIMEOUT, output
    except OSError as e:
        logger.error(f"Could not execute {command}: {e}")
        return NOT_EXECUTABLE, str(e)

    output = result.stdout or ""
    if result.returncode != 0 and log_stderr and output.strip():
        logger.debug(output.strip())
    return result.returncode, output


def format_duration(seconds):
    """
    Formats a duration the way run logs and notifications show it.

    Examples: ``45s``, ``2m 15s``, ``1h 5m``.
    """
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def sanitize_name(name):
    """Turn a step name into something safe for a file name."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", name)


def expand_path(path):
    """Expand ``~`` and environment variables in a path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path))))


def is_executable(path):
    path = Path(path)
    return path.is_file() and os.access(path, os.X_OK)


def which(name):
    """Look a command up on PATH, returning a Path or None."""
    found = shutil.which(name)
    return Path(found) if found else None


def disk_free_gb(path="/"):
    """
    Free space available on the filesystem holding ``path``, in GB.

    Not rounded, so fractional thresholds compare exactly.

    Returns:
        float: Gigabytes available, or None if the path cannot be inspected.
    """
    try:
        usage = shutil.disk_usage(str(expand_path(path)))
    except OSError as e:
        logger.debug(f"Cannot read disk usage for {path}: {e}")
        return None
    return usage.free / (1024 ** 3)


def format_gb(value):
    """Format a size in GB to one decimal, e.g. ``9.9GB`` or ``10GB``."""
    return f"{round(value, 1):g}GB"
