"""Per-conversation workflow state and advancement.

State lives on the conversation (workflow_state JSON). Completing a step is
idempotent: a step id already in completed_steps is never applied twice.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from switchboard.entities import Contact, Conversation, Message
from switchboard.errors import NotFoundError, StepExecutionError, WorkflowPreconditionError
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ConversationRepository, ParametersRepository
from switchboard.services.drivers.base import OutboundMessage
from switchboard.services.workflow.definitions import (
    START_STEP,
    FlowDefinition,
    StepContext,
    WorkflowState,
    WorkflowStatus,
)
from switchboard.services.workflow.flow_registry import FlowRegistry
from switchboard.services.workflow.step_executor import StepExecutor

logger = get_logger("workflow.engine")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    def __init__(
        self,
        conversation_repository: ConversationRepository,
        parameters_repository: ParametersRepository,
        registry: FlowRegistry,
        executor: StepExecutor,
        sender=None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.conversations = conversation_repository
        self.parameters = parameters_repository
        self.registry = registry
        self.executor = executor
        self.sender = sender
        self._clock = clock

    @staticmethod
    def _parse_state(raw: Optional[dict]) -> Optional[WorkflowState]:
        if not raw:
            return None
        try:
            return WorkflowState.from_dict(raw)
        except (KeyError, ValueError) as e:
            logger.warning(f"Unreadable workflow state ignored: {e}")
            return None

    async def _load(self, conversation_id: str) -> tuple[Conversation, Optional[WorkflowState]]:
        conversation = await self.conversations.find_by_id(conversation_id)
        if conversation is None:
            raise NotFoundError("conversation", conversation_id)
        return conversation, self._parse_state(conversation.workflow_state)

    async def get_workflow_state(self, conversation_id: str) -> Optional[WorkflowState]:
        _, state = await self._load(conversation_id)
        return state

    async def initialize_workflow(self, conversation: Conversation) -> Optional[WorkflowState]:
        existing = self._parse_state(conversation.workflow_state)
        if existing is not None:
            return existing
        if conversation.intention_id is None or conversation.assigned_agent_id is None:
            raise WorkflowPreconditionError(
                f"Conversation {conversation.id} needs an intention and an assigned agent"
            )

        intention = await self.parameters.get_intention(conversation.intention_id)
        if intention is None:
            raise NotFoundError("intention", conversation.intention_id)
        if not intention.flow_name:
            logger.info(f"Intention {intention.code} has no flow bound; conversation {conversation.id} stays idle")
            return None

        state = WorkflowState(
            flow_name=intention.flow_name,
            current_step=START_STEP,
            intention_id=conversation.intention_id,
            agent_id=conversation.assigned_agent_id,
            last_step_at=self._clock(),
        )
        await self.update_workflow_state(conversation.id, state)
        conversation.workflow_state = state.to_dict()
        logger.info(
            "Workflow initialized",
            extra={"context": {"conversation_id": conversation.id, "flow": state.flow_name}},
        )
        return state

    async def update_workflow_state(self, conversation_id: str, state: WorkflowState) -> WorkflowState:
        """Replace the persisted state wholesale."""
        state.last_step_at = self._clock()
        updated = await self.conversations.update(conversation_id, workflow_state=state.to_dict())
        if updated is None:
            raise NotFoundError("conversation", conversation_id)
        return state

    def _apply_completion(self, state: WorkflowState, step_id: str, data: Optional[dict]) -> bool:
        if step_id in state.completed_steps:
            return False
        state.completed_steps.append(step_id)
        if data:
            state.collected_data.update(data)
        return True

    async def complete_step(self, conversation_id: str, step_id: str, data: Optional[dict] = None) -> WorkflowState:
        _, state = await self._load(conversation_id)
        if state is None:
            raise WorkflowPreconditionError(f"Conversation {conversation_id} has no workflow")
        if not self._apply_completion(state, step_id, data):
            return state
        return await self.update_workflow_state(conversation_id, state)

    async def is_step_completed(self, conversation_id: str, step_id: str) -> bool:
        state = await self.get_workflow_state(conversation_id)
        return state is not None and step_id in state.completed_steps

    async def reset_workflow(self, conversation_id: str) -> None:
        updated = await self.conversations.update(conversation_id, workflow_state=None)
        if updated is None:
            raise NotFoundError("conversation", conversation_id)
        logger.info(f"Workflow reset for conversation {conversation_id}")

    async def process_message(
        self,
        conversation: Conversation,
        message: Optional[Message],
        contact: Optional[Contact] = None,
    ) -> Optional[WorkflowState]:
        """Advance the conversation's flow by running steps until one waits or the flow ends."""
        state = self._parse_state(conversation.workflow_state) or await self.initialize_workflow(conversation)
        if state is None or state.status != WorkflowStatus.RUNNING:
            return state

        flow = self.registry.get(state.flow_name)
        if flow is None:
            return await self._fail(conversation, state, f"Flow '{state.flow_name}' is not registered")

        for _ in range(len(flow.steps)):
            step_id = flow.initial_step if state.current_step == START_STEP else state.current_step
            step = flow.get_step(step_id)
            if step is None:
                return await self._fail(conversation, state, f"Step '{step_id}' not found in '{flow.name}'")

            context = StepContext(
                company_id=conversation.company_id,
                channel_id=conversation.channel_id,
                conversation=conversation,
                message=message,
                collected_data=dict(state.collected_data),
                contact=contact,
            )
            try:
                result = await self.executor.execute_step(step, context)
            except StepExecutionError as e:
                return await self._fail(conversation, state, str(e))
            if result.error:
                return await self._fail(conversation, state, result.error)

            if not result.completed:
                if result.data:
                    state.collected_data.update(result.data)
                state.current_step = step.id
                await self._save(conversation, state)
                if result.should_send_message and result.message:
                    await self._send(conversation, result.message)
                return state

            self._apply_completion(state, step.id, result.data)
            next_step = result.next_step or step.next_step
            finished = next_step is None or step.id == flow.final_step
            if finished:
                state.status = WorkflowStatus.COMPLETED
                state.current_step = step.id
            else:
                state.current_step = next_step
            await self._save(conversation, state)
            if result.should_send_message and result.message:
                await self._send(conversation, result.message)
            if finished:
                logger.info(f"Workflow '{flow.name}' completed for conversation {conversation.id}")
                return state
        return state

    async def _save(self, conversation: Conversation, state: WorkflowState) -> None:
        await self.update_workflow_state(conversation.id, state)
        conversation.workflow_state = state.to_dict()

    async def _fail(self, conversation: Conversation, state: WorkflowState, error: str) -> WorkflowState:
        state.status = WorkflowStatus.FAILED
        state.error = error
        await self._save(conversation, state)
        logger.error(
            "Workflow failed",
            extra={"context": {"conversation_id": conversation.id, "flow": state.flow_name, "error": error}},
        )
        return state

    async def _send(self, conversation: Conversation, text: str) -> None:
        if self.sender is None:
            logger.warning(f"No sender configured, workflow reply for {conversation.id} dropped")
            return
        try:
            await self.sender.emit_message(
                conversation.channel_id,
                OutboundMessage(to=conversation.contact_id, text=text, conversation_id=conversation.id),
            )
        except Exception as e:
            logger.error(f"Workflow reply failed for conversation {conversation.id}: {e}")

    def get_flow(self, name: str) -> Optional[FlowDefinition]:
        return self.registry.get(name)
