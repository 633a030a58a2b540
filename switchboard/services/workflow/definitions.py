from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from switchboard.entities import Contact, Conversation, Message

START_STEP = "start"


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


@dataclass
class StepContext:
    company_id: str
    channel_id: str
    conversation: Conversation
    message: Optional[Message]
    collected_data: dict[str, Any]
    contact: Optional[Contact] = None

    @property
    def text(self) -> str:
        return (self.message.content if self.message else "") or ""


@dataclass
class StepResult:
    completed: bool
    error: Optional[str] = None
    message: Optional[str] = None
    next_step: Optional[str] = None
    should_send_message: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def done(cls, message: Optional[str] = None, **kwargs) -> "StepResult":
        return cls(completed=True, message=message, should_send_message=message is not None, **kwargs)

    @classmethod
    def waiting(cls, message: Optional[str] = None, **kwargs) -> "StepResult":
        """Step needs another customer message before it can complete."""
        return cls(completed=False, message=message, should_send_message=message is not None, **kwargs)

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        return cls(completed=False, error=error)


StepHandler = Callable[[StepContext], Awaitable[StepResult]]
ErrorHandler = Callable[[StepContext, Exception], Awaitable[StepResult]]
Condition = Callable[[StepContext], Union[bool, Awaitable[bool]]]


@dataclass
class StepDefinition:
    id: str
    name: str
    execute: StepHandler
    description: str = ""
    next_step: Optional[str] = None
    required_data: Sequence[str] = ()
    condition: Optional[Condition] = None
    on_error: Optional[ErrorHandler] = None
    timeout_seconds: Optional[float] = None
    retries: Optional[int] = None


@dataclass
class FlowDefinition:
    name: str
    initial_step: str
    steps: list[StepDefinition]
    final_step: Optional[str] = None
    version: str = "1.0"
    timeout_seconds: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


@dataclass
class WorkflowState:
    flow_name: str
    current_step: str
    intention_id: Optional[int]
    agent_id: Optional[int]
    last_step_at: datetime
    completed_steps: list[str] = field(default_factory=list)
    collected_data: dict[str, Any] = field(default_factory=dict)
    status: WorkflowStatus = WorkflowStatus.RUNNING
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_name": self.flow_name,
            "current_step": self.current_step,
            "completed_steps": list(self.completed_steps),
            "collected_data": dict(self.collected_data),
            "intention_id": self.intention_id,
            "agent_id": self.agent_id,
            "last_step_at": self.last_step_at.isoformat(),
            "status": self.status.value,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowState":
        return cls(
            flow_name=data["flow_name"],
            current_step=data.get("current_step") or START_STEP,
            completed_steps=list(data.get("completed_steps") or []),
            collected_data=dict(data.get("collected_data") or {}),
            intention_id=data.get("intention_id"),
            agent_id=data.get("agent_id"),
            last_step_at=datetime.fromisoformat(data["last_step_at"]),
            status=WorkflowStatus(data.get("status", WorkflowStatus.RUNNING.value)),
            error=data.get("error"),
        )
