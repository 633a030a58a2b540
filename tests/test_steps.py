import asyncio
from unittest.mock import AsyncMock

import pytest

from switchboard.entities import Message, MessageDirection
from switchboard.services.llm.base import LLMResponse
from switchboard.services.workflow import StepContext, StepExecutor, StepFactory
from switchboard.services.workflow.steps import AWAITING_KEY, render


def context_for(conversation, text="", **data):
    message = Message(id="m1", conversation_id=conversation.id, direction=MessageDirection.INCOMING, content=text)
    return StepContext(
        company_id=conversation.company_id,
        channel_id=conversation.channel_id,
        conversation=conversation,
        message=message,
        collected_data=data,
    )


@pytest.fixture
def llm():
    llm = AsyncMock()
    llm.generate.return_value = LLMResponse(content="We open at 9am.", model="gpt-4o-mini")
    return llm


@pytest.fixture
def executor(sleep):
    return StepExecutor(sleep_func=sleep)


class TestRender:
    def test_missing_keys_render_blank(self):
        assert render("Hi {customer_name}!", {}) == "Hi !"

    def test_none_values_render_blank(self):
        assert render("Hi {customer_name}!", {"customer_name": None}) == "Hi !"


class TestDataRequest:
    def test_invalid_answer_asks_again(self, conversation):
        step = StepFactory().data_request(
            "ask_phone",
            "Ask phone",
            key="phone",
            question="What is your phone number?",
            validator=str.isdigit,
            retry_message="Digits only, please.",
        )

        result = asyncio.run(step.execute(context_for(conversation, "call me", **{AWAITING_KEY: "phone"})))

        assert result.completed is False
        assert result.message == "Digits only, please."

    def test_valid_answer_is_stored(self, conversation):
        step = StepFactory().data_request(
            "ask_phone", "Ask phone", key="phone", question="Phone?", validator=str.isdigit
        )
        context = context_for(conversation, " 77010001122 ", **{AWAITING_KEY: "phone"})

        result = asyncio.run(step.execute(context))

        assert result.completed is True
        assert result.data == {"phone": "77010001122", AWAITING_KEY: None}


class TestDataValidation:
    def test_invalid_value_routes_back(self, conversation):
        step = StepFactory().data_validation(
            "check_phone",
            "Check phone",
            key="phone",
            validator=lambda value: len(value) >= 10,
            error_message="That number looks too short.",
            on_invalid="ask_phone",
            next_step="confirm",
        )

        result = asyncio.run(step.execute(context_for(conversation, phone="123")))

        assert result.next_step == "ask_phone"
        assert result.message == "That number looks too short."
        assert result.data == {"phone": None}

    def test_valid_value_continues(self, conversation):
        step = StepFactory().data_validation(
            "check_phone", "Check phone", key="phone", validator=bool, error_message="", on_invalid="ask_phone"
        )

        result = asyncio.run(step.execute(context_for(conversation, phone="77010001122")))

        assert result.completed is True
        assert result.next_step is None


class TestAiQuestion:
    def test_answers_with_llm(self, conversation, llm, executor):
        step = StepFactory(llm, model="gpt-4o-mini").ai_question(
            "faq", "FAQ", system_prompt="You help {customer_name}."
        )
        context = context_for(conversation, "When do you open?", customer_name="Dana")

        result = asyncio.run(executor.execute_step(step, context))

        assert result.message == "We open at 9am."
        messages = llm.generate.await_args.args[0]
        assert messages[0]["content"] == "You help Dana."
        assert messages[1]["content"] == "When do you open?"

    def test_falls_back_when_llm_fails(self, conversation, llm, executor):
        llm.generate.side_effect = RuntimeError("quota exceeded")
        step = StepFactory(llm).ai_question(
            "faq", "FAQ", system_prompt="Help.", fallback_message="An agent will answer shortly."
        )

        result = asyncio.run(executor.execute_step(step, context_for(conversation, "When do you open?")))

        assert result.message == "An agent will answer shortly."


class TestDataExtraction:
    def test_keeps_known_fields_only(self, conversation, llm, executor):
        llm.generate_json.return_value = {"product": "haircut", "preferred_date": None, "extra": "ignored"}
        step = StepFactory(llm).data_extraction(
            "extract", "Extract", fields={"product": "service", "preferred_date": "date"}
        )

        result = asyncio.run(executor.execute_step(step, context_for(conversation, "A haircut please")))

        assert result.completed is True
        assert result.data == {"product": "haircut"}


class TestConditional:
    def test_branches_on_predicate(self, conversation):
        step = StepFactory().conditional(
            "has_name",
            "Has name",
            predicate=lambda ctx: bool(ctx.collected_data.get("customer_name")),
            if_true="ask_request",
            if_false="ask_name",
        )

        known = asyncio.run(step.execute(context_for(conversation, customer_name="Dana")))
        unknown = asyncio.run(step.execute(context_for(conversation)))

        assert known.next_step == "ask_request"
        assert unknown.next_step == "ask_name"
