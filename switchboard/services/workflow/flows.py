from switchboard.services.workflow.definitions import FlowDefinition
from switchboard.services.workflow.flow_registry import FlowRegistry
from switchboard.services.workflow.steps import StepFactory

RECEPTION_FLOW = "reception"


def build_reception_flow(factory: StepFactory) -> FlowDefinition:
    """Greets, collects name and request, extracts details, hands off."""
    return FlowDefinition(
        name=RECEPTION_FLOW,
        initial_step="welcome",
        final_step="handoff",
        steps=[
            factory.static_message(
                "welcome",
                "Welcome",
                "Hello! Thanks for reaching out. A couple of quick questions before we connect you.",
                next_step="ask_name",
            ),
            factory.data_request(
                "ask_name",
                "Ask name",
                key="customer_name",
                question="What is your name?",
                next_step="ask_request",
            ),
            factory.data_request(
                "ask_request",
                "Ask request",
                key="request_summary",
                question="Nice to meet you, {customer_name}. How can we help you today?",
                next_step="extract_details",
            ),
            factory.data_extraction(
                "extract_details",
                "Extract details",
                fields={
                    "preferred_date": "date or time the customer mentioned, ISO 8601 if possible",
                    "product": "product or service the customer is asking about",
                },
                next_step="handoff",
            ),
            factory.static_message(
                "handoff",
                "Hand off",
                "Thank you, {customer_name}. An agent will continue the conversation shortly.",
            ),
        ],
        metadata={"description": "Default intake for new conversations"},
    )


def register_default_flows(registry: FlowRegistry, factory: StepFactory) -> None:
    registry.register(build_reception_flow(factory))
