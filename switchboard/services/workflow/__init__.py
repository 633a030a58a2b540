from switchboard.services.workflow.definitions import (
    START_STEP,
    FlowDefinition,
    StepContext,
    StepDefinition,
    StepResult,
    WorkflowState,
    WorkflowStatus,
)
from switchboard.services.workflow.engine import WorkflowEngine
from switchboard.services.workflow.flow_registry import FlowRegistry, validate_flow
from switchboard.services.workflow.step_executor import StepExecutor
from switchboard.services.workflow.steps import StepFactory

__all__ = [
    "START_STEP",
    "FlowDefinition",
    "FlowRegistry",
    "StepContext",
    "StepDefinition",
    "StepExecutor",
    "StepFactory",
    "StepResult",
    "WorkflowEngine",
    "WorkflowState",
    "WorkflowStatus",
    "validate_flow",
]
