from collections.abc import Mapping
from types import MappingProxyType

from stepflow.application.port import HandlerRegistry
from stepflow.domain.errors import UnknownStepType
from stepflow.domain.port import StepHandler


class StaticHandlerRegistry(HandlerRegistry):
    """Resolves handlers from a lookup table built once at start-up."""

    def __init__(self, handlers: Mapping[str, StepHandler]):
        """
        Initializes the registry from a tag to handler table.

        :param handlers: Mapping of step-type tag to handler instance
        :type handlers: Mapping[str, StepHandler]
        """
        self._registry: Mapping[str, StepHandler] = MappingProxyType(
            {str(getattr(tag, "value", tag)).lower(): handler for tag, handler in handlers.items()}
        )

    @classmethod
    def from_handlers(cls, handlers: list[StepHandler]) -> "StaticHandlerRegistry":
        """
        Builds a registry keyed by each handler's ``step_type``.

        :param handlers: Handler instances
        :type handlers: list[StepHandler]
        :returns: The registry
        :rtype: StaticHandlerRegistry
        """
        return cls({handler.step_type: handler for handler in handlers})

    def resolve(self, step_type: str) -> StepHandler:
        """
        Returns the handler registered for the tag. Tags match case-insensitively.

        :param step_type: The step-type tag
        :type step_type: str
        :returns: The handler registered for the tag
        :rtype: StepHandler
        :raises UnknownStepType: If no handler is registered for the tag
        """
        try:
            return self._registry[step_type.lower()]
        except (KeyError, AttributeError):
            raise UnknownStepType(str(step_type)) from None

    def step_types(self) -> list[str]:
        return sorted(self._registry)

    def handlers(self) -> list[StepHandler]:
        seen: dict[int, StepHandler] = {}
        for handler in self._registry.values():
            seen.setdefault(id(handler), handler)
        return list(seen.values())
