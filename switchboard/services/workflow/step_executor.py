import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional

from switchboard.errors import StepExecutionError
from switchboard.logging_config import get_logger
from switchboard.services.workflow.definitions import StepContext, StepDefinition, StepResult

logger = get_logger("workflow.step_executor")


class StepExecutor:
    """Runs one step with guard, required-input check, timeout and retries.

    Exceptions and timeouts are retried with linear backoff. When attempts run
    out the step's on_error callback gets a chance to produce a result; if it
    is missing or fails, StepExecutionError is raised.
    """

    def __init__(
        self,
        default_retries: int = 1,
        default_timeout_seconds: float = 30.0,
        backoff_seconds: float = 1.0,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.default_retries = default_retries
        self.default_timeout_seconds = default_timeout_seconds
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep_func

    async def execute_step(self, step: StepDefinition, context: StepContext) -> StepResult:
        if step.condition is not None and not await self._condition_holds(step, context):
            logger.info(f"Step '{step.id}' skipped: condition not met")
            return StepResult.failed("Step condition not met")

        missing = [key for key in step.required_data if context.collected_data.get(key) in (None, "")]
        if missing:
            return StepResult.failed(f"Missing required data: {', '.join(missing)}")

        retries = step.retries if step.retries is not None else self.default_retries
        timeout = step.timeout_seconds or self.default_timeout_seconds
        last_error: Optional[BaseException] = None

        for attempt in range(retries + 1):
            try:
                return await asyncio.wait_for(step.execute(context), timeout=timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"Step '{step.id}' timed out after {timeout}s (attempt {attempt + 1})")
            except Exception as e:
                last_error = e
                logger.warning(
                    "Step attempt failed",
                    extra={"context": {"step_id": step.id, "attempt": attempt + 1, "error": str(e)}},
                )
            if attempt < retries:
                await self._sleep(self.backoff_seconds * (attempt + 1))

        reason = str(last_error) or type(last_error).__name__
        if step.on_error is None:
            raise StepExecutionError(step.id, reason)

        try:
            return await asyncio.wait_for(step.on_error(context, last_error), timeout=timeout)
        except Exception as e:
            raise StepExecutionError(step.id, f"{reason}; recovery failed: {e}") from e

    async def _condition_holds(self, step: StepDefinition, context: StepContext) -> bool:
        try:
            outcome = step.condition(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return bool(outcome)
        except Exception as e:
            logger.warning(f"Condition for step '{step.id}' raised: {e}")
            return False
