"""Reusable step kinds for building flows."""

from typing import Any, Callable, Optional

from switchboard.logging_config import get_logger
from switchboard.services.llm.base import LLMProvider
from switchboard.services.workflow.definitions import StepContext, StepDefinition, StepResult

logger = get_logger("workflow.steps")

AWAITING_KEY = "_awaiting"


class _Blank(dict):
    def __missing__(self, key):
        return ""


def render(template: str, data: dict[str, Any]) -> str:
    return template.format_map(_Blank({k: v for k, v in data.items() if v is not None}))


class StepFactory:
    def __init__(self, llm: Optional[LLMProvider] = None, model: Optional[str] = None):
        self.llm = llm
        self.model = model

    def static_message(self, step_id: str, name: str, text: str, next_step: Optional[str] = None) -> StepDefinition:
        async def execute(context: StepContext) -> StepResult:
            return StepResult.done(render(text, context.collected_data))

        return StepDefinition(id=step_id, name=name, execute=execute, next_step=next_step, retries=0)

    def data_request(
        self,
        step_id: str,
        name: str,
        key: str,
        question: str,
        next_step: Optional[str] = None,
        validator: Optional[Callable[[str], bool]] = None,
        retry_message: Optional[str] = None,
    ) -> StepDefinition:
        """Ask a question, then store the next customer message under `key`."""

        async def execute(context: StepContext) -> StepResult:
            if context.collected_data.get(AWAITING_KEY) != key:
                return StepResult.waiting(render(question, context.collected_data), data={AWAITING_KEY: key})
            answer = context.text.strip()
            if not answer or (validator is not None and not validator(answer)):
                return StepResult.waiting(render(retry_message or question, context.collected_data))
            return StepResult.done(data={key: answer, AWAITING_KEY: None})

        return StepDefinition(id=step_id, name=name, execute=execute, next_step=next_step, retries=0)

    def data_validation(
        self,
        step_id: str,
        name: str,
        key: str,
        validator: Callable[[Any], bool],
        error_message: str,
        on_invalid: str,
        next_step: Optional[str] = None,
    ) -> StepDefinition:
        async def execute(context: StepContext) -> StepResult:
            if validator(context.collected_data.get(key)):
                return StepResult.done()
            return StepResult.done(error_message, next_step=on_invalid, data={key: None})

        return StepDefinition(
            id=step_id, name=name, execute=execute, next_step=next_step, required_data=(key,), retries=0
        )

    def ai_question(
        self,
        step_id: str,
        name: str,
        system_prompt: str,
        next_step: Optional[str] = None,
        fallback_message: Optional[str] = None,
    ) -> StepDefinition:
        """Answer the customer's message with the LLM."""

        async def execute(context: StepContext) -> StepResult:
            if self.llm is None:
                raise RuntimeError("No LLM provider configured")
            response = await self.llm.generate(
                [
                    {"role": "system", "content": render(system_prompt, context.collected_data)},
                    {"role": "user", "content": context.text},
                ],
                model=self.model,
                temperature=0.3,
                max_tokens=400,
            )
            answer = (response.content or "").strip()
            if not answer:
                raise ValueError("LLM returned an empty answer")
            return StepResult.done(answer)

        on_error = None
        if fallback_message:

            async def on_error(context: StepContext, error: Exception) -> StepResult:
                logger.warning(f"AI step '{step_id}' fell back: {error}")
                return StepResult.done(fallback_message)

        return StepDefinition(
            id=step_id, name=name, execute=execute, next_step=next_step, on_error=on_error, timeout_seconds=20
        )

    def data_extraction(
        self,
        step_id: str,
        name: str,
        fields: dict[str, str],
        next_step: Optional[str] = None,
        optional: bool = True,
    ) -> StepDefinition:
        """Pull structured fields out of what the customer said so far."""

        async def execute(context: StepContext) -> StepResult:
            if self.llm is None:
                raise RuntimeError("No LLM provider configured")
            known = {k: v for k, v in context.collected_data.items() if not k.startswith("_")}
            prompt = (
                "Extract the following fields from the customer's messages. "
                "Return a JSON object with exactly these keys, using null when unknown:\n"
                + "\n".join(f"- {field_name}: {description}" for field_name, description in fields.items())
            )
            data = await self.llm.generate_json(
                [
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": f"Known data: {known}\nLatest message: {context.text}"},
                ],
                model=self.model,
                temperature=0.0,
                max_tokens=300,
            )
            extracted = {k: data.get(k) for k in fields if data.get(k) not in (None, "")}
            return StepResult.done(data=extracted)

        on_error = None
        if optional:

            async def on_error(context: StepContext, error: Exception) -> StepResult:
                logger.warning(f"Extraction step '{step_id}' skipped: {error}")
                return StepResult.done()

        return StepDefinition(
            id=step_id, name=name, execute=execute, next_step=next_step, on_error=on_error, timeout_seconds=20
        )

    def conditional(
        self,
        step_id: str,
        name: str,
        predicate: Callable[[StepContext], bool],
        if_true: str,
        if_false: str,
    ) -> StepDefinition:
        async def execute(context: StepContext) -> StepResult:
            return StepResult.done(next_step=if_true if predicate(context) else if_false)

        return StepDefinition(id=step_id, name=name, execute=execute, retries=0)
