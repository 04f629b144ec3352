"""
Exit codes and error types shared across homelab.

Only ``DefinitionError`` (and its subclasses) escape to the CLI; every other
error is handled where it occurs and turned into a log line, a skipped step,
a failed step or an open circuit breaker.
"""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
# Graded exit codes for pre-deployment style workflows
WARNING = 1
CRITICAL = 2
TIMEOUT = 124
NOT_EXECUTABLE = 126
INTERRUPTED = 130


class HomelabError(Exception):
    """Base class for homelab errors."""

    exit_code = GENERAL_ERROR

    def __init__(self, message, exit_code=None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class DefinitionError(HomelabError):
    """A workflow definition could not be parsed or is missing required fields."""

    exit_code = USAGE_ERROR


class WorkflowNotFoundError(DefinitionError):
    """No built-in or user-defined workflow has the requested name."""

    exit_code = GENERAL_ERROR


class ConditionEvaluationError(HomelabError):
    """A condition could not be evaluated (missing parameter or tooling)."""


class StepResolutionError(HomelabError):
    """A step's target could not be found in any search location."""


class StepExecutionError(HomelabError):
    """A step's target exited nonzero."""


class NotificationDeliveryError(HomelabError):
    """A notification channel rejected or failed to deliver an event."""


class StateIOError(HomelabError):
    """The run-state document could not be read or written."""


def get_exit_code_for_exception(exc):
    """Map an exception to a process exit code."""
    if isinstance(exc, KeyboardInterrupt):
        return INTERRUPTED
    if isinstance(exc, HomelabError):
        return exc.exit_code
    return GENERAL_ERROR
