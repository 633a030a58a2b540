from typing import Optional

from switchboard.errors import FlowValidationError
from switchboard.logging_config import get_logger
from switchboard.services.workflow.definitions import FlowDefinition

logger = get_logger("workflow.registry")


def validate_flow(flow: FlowDefinition) -> None:
    """Raise FlowValidationError describing the first structural problem."""
    if not flow.name:
        raise FlowValidationError("Flow must have a name")
    if not flow.initial_step:
        raise FlowValidationError(f"Flow '{flow.name}' must declare an initial step")
    if not flow.steps:
        raise FlowValidationError(f"Flow '{flow.name}' has no steps")

    seen: set[str] = set()
    for step in flow.steps:
        if not step.id:
            raise FlowValidationError(f"Flow '{flow.name}' has a step without id")
        if step.id in seen:
            raise FlowValidationError(f"Flow '{flow.name}' has duplicate step id '{step.id}'")
        seen.add(step.id)
        if not step.name:
            raise FlowValidationError(f"Step '{step.id}' in '{flow.name}' must have a name")
        if not callable(step.execute):
            raise FlowValidationError(f"Step '{step.id}' in '{flow.name}' has no execute callable")
        if step.timeout_seconds is not None and step.timeout_seconds <= 0:
            raise FlowValidationError(f"Step '{step.id}' timeout must be positive")
        if step.retries is not None and step.retries < 0:
            raise FlowValidationError(f"Step '{step.id}' retries cannot be negative")

    if flow.initial_step not in seen:
        raise FlowValidationError(f"Initial step '{flow.initial_step}' not found in '{flow.name}'")
    if flow.final_step and flow.final_step not in seen:
        raise FlowValidationError(f"Final step '{flow.final_step}' not found in '{flow.name}'")
    for step in flow.steps:
        if step.next_step and step.next_step not in seen:
            raise FlowValidationError(f"Step '{step.id}' points to unknown step '{step.next_step}'")


class FlowRegistry:
    def __init__(self):
        self._flows: dict[str, FlowDefinition] = {}

    def register(self, flow: FlowDefinition) -> None:
        validate_flow(flow)
        if flow.name in self._flows:
            logger.warning(f"Replacing registered flow '{flow.name}'")
        self._flows[flow.name] = flow
        logger.info(f"Flow registered: {flow.name} v{flow.version} ({len(flow.steps)} steps)")

    def get(self, name: str) -> Optional[FlowDefinition]:
        return self._flows.get(name)

    def has(self, name: str) -> bool:
        return name in self._flows

    def list(self) -> list[str]:
        return sorted(self._flows)

    def unregister(self, name: str) -> bool:
        return self._flows.pop(name, None) is not None

    def clear(self) -> None:
        self._flows.clear()

    def get_stats(self) -> dict:
        return {
            "total_flows": len(self._flows),
            "total_steps": sum(len(f.steps) for f in self._flows.values()),
            "flows": {name: len(flow.steps) for name, flow in self._flows.items()},
        }
