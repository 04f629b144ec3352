"""
Workflow engine for maintenance scripts.

Provides:
- JSON/YAML workflow definitions and built-in workflows
- Declarative pre-conditions for workflows and steps
- Sequential step execution with per-step error policy
"""

from .conditions import ConditionContext, ConditionEvaluator, parse_conditions
from .executor import WorkflowExecutor
from .models import Step, StepStatus, RunStatus, WorkflowDefinition, WorkflowRun
from .parser import WorkflowParser
from .runner import ScriptRegistry, StepRunner

__all__ = [
    'ConditionContext',
    'ConditionEvaluator',
    'parse_conditions',
    'WorkflowExecutor',
    'Step',
    'StepStatus',
    'RunStatus',
    'WorkflowDefinition',
    'WorkflowRun',
    'WorkflowParser',
    'ScriptRegistry',
    'StepRunner',
]
