"""Workflow engine: triggers, conditions, templating, expressions and node actions."""
from workflow.executor import WalkResult, WorkflowEngine
from workflow.expression import eval_bool, eval_expression
from workflow.templating import TemplateRenderer
from workflow.triggers import TriggerMatcher

__all__ = [
    "WorkflowEngine", "WalkResult",
    "TemplateRenderer", "TriggerMatcher",
    "eval_expression", "eval_bool",
]
