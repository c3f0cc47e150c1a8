from stepflow.domain.entity import AutomationStep
from stepflow.domain.errors import EmptyWorkflow, InvalidStepDefinition


def validate_step(step: AutomationStep) -> bool:
    """
    Validates a single step definition.

    :param step: The step to validate
    :type step: AutomationStep
    :returns: True if the step is valid
    :rtype: bool
    :raises InvalidStepDefinition: If the step is not a step or lacks an id or type
    """
    if not isinstance(step, AutomationStep):
        raise InvalidStepDefinition(f"Expected an AutomationStep, got {type(step).__name__}")
    step.validate()
    return True


def validate_workflow(steps: list[AutomationStep]) -> bool:
    """
    Validates the workflow structure and contents.

    :param steps: The ordered steps to validate
    :type steps: list[AutomationStep]
    :returns: True if the workflow is valid
    :rtype: bool
    :raises EmptyWorkflow: If there are no steps
    :raises InvalidStepDefinition: If any step is malformed
    """
    if not steps:
        raise EmptyWorkflow("Workflow has no steps")
    for step in steps:
        validate_step(step)
    return True
