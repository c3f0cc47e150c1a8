"""
Stepflow - Automation step and workflow execution engine

Runs typed automation steps through pluggable handlers, threads each step's
output into the next, stops at the first failure and keeps the latest result
of every step for inspection.
"""

from stepflow.backend import BackendType
from stepflow.client import Client
from stepflow.config import Settings, load_settings
from stepflow.domain.entity import AutomationStep, Execution, ExecutionResult, WorkflowValidation
from stepflow.domain.port import StepHandler
from stepflow.domain.value_object import ExecutionContext
from stepflow.factory import create

__all__ = [
    "Client",
    "BackendType",
    "create",
    "Settings",
    "load_settings",
    "StepHandler",
    "AutomationStep",
    "ExecutionResult",
    "Execution",
    "ExecutionContext",
    "WorkflowValidation",
]
