from typing import Any

import msgspec

from stepflow.application.port import HandlerRegistry
from stepflow.domain.entity import AutomationStep, WorkflowValidation
from stepflow.domain.errors import EmptyWorkflow, InvalidStepConfig, InvalidStepDefinition, UnknownStepType
from stepflow.domain.service import validate_step, validate_workflow


def load_step(data: dict | AutomationStep) -> AutomationStep:
    """
    Decodes and validates a step from a Python dictionary.

    :param data: The step as a dictionary (camelCase keys) or an AutomationStep
    :type data: dict | AutomationStep
    :returns: A validated AutomationStep
    :rtype: AutomationStep
    :raises InvalidStepDefinition: If the step cannot be decoded or lacks an id or type
    """
    if isinstance(data, AutomationStep):
        validate_step(data)
        return data
    if not isinstance(data, dict):
        raise InvalidStepDefinition("Step object with id and type is required")

    try:
        step = msgspec.convert(data, type=AutomationStep)
    except msgspec.ValidationError as e:
        raise InvalidStepDefinition(f"Invalid step definition: {e}") from None
    validate_step(step)
    return step


def load_steps(data: Any) -> list[AutomationStep]:
    """
    Decodes and validates an ordered list of steps.

    :param data: A list of step dictionaries or AutomationStep instances
    :type data: Any
    :returns: The validated steps in the given order
    :rtype: list[AutomationStep]
    :raises EmptyWorkflow: If the list is missing or empty
    :raises InvalidStepDefinition: If any step is malformed
    """
    if not isinstance(data, (list, tuple)) or not data:
        raise EmptyWorkflow("Steps array is required")
    steps = [load_step(item) for item in data]
    validate_workflow(steps)
    return steps


def check_workflow(data: Any, registry: HandlerRegistry) -> WorkflowValidation:
    """
    Checks a workflow without executing any step.

    Every problem is collected rather than raised: malformed steps, step
    types with no handler, configs the handler rejects, and connections
    to step ids that are not part of the workflow.

    :param data: A list of step dictionaries or AutomationStep instances
    :type data: Any
    :param registry: Resolves step-type tags to handlers
    :type registry: HandlerRegistry
    :returns: Whether the workflow is valid, and the problems found
    :rtype: WorkflowValidation
    """
    if not isinstance(data, (list, tuple)) or not data:
        return WorkflowValidation(valid=False, errors=["Workflow must have at least one step"])

    errors: list[str] = []
    steps: list[AutomationStep] = []
    for index, item in enumerate(data):
        try:
            steps.append(load_step(item))
        except InvalidStepDefinition as e:
            errors.append(f"Step at position {index}: {e.message}")

    for step in steps:
        try:
            handler = registry.resolve(step.type)
        except UnknownStepType:
            errors.append(f"Unknown step type: {step.type} in step {step.id}")
            continue
        try:
            handler.parse_config(step.config)
        except InvalidStepConfig as e:
            errors.append(f"Step {step.id}: {e.message}")

    step_ids = {step.id for step in steps}
    for step in steps:
        for connection in step.connections:
            if connection.target_id not in step_ids:
                errors.append(f"Step {step.id} connects to non-existent step {connection.target_id}")

    return WorkflowValidation(valid=not errors, errors=errors)
