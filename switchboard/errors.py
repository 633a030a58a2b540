"""Error taxonomy for the messaging core.

Classification timeouts and firewall degradation are not exceptions: both
fall back (heuristic classification, ALLOW) and are logged.
"""


class SwitchboardError(Exception):
    """Base error for the messaging core."""


class NotFoundError(SwitchboardError):
    """Channel, conversation or agent does not exist."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class AuthRequiredError(SwitchboardError):
    """Channel must be paired before the operation can proceed."""


class AuthFailedError(SwitchboardError):
    """Pairing was rejected or expired."""


class DriverError(SwitchboardError):
    """Unrecoverable driver failure."""


class TransientDriverError(DriverError):
    """Session locked or busy; safe to retry or ignore during teardown."""


class ChannelUnsupportedError(SwitchboardError):
    """Provider or operation not available for this channel."""


class StepExecutionError(SwitchboardError):
    def __init__(self, step_id: str, message: str):
        super().__init__(f"Step '{step_id}' failed: {message}")
        self.step_id = step_id


class WorkflowPreconditionError(SwitchboardError):
    """Workflow cannot start: intention or agent missing."""


class FlowValidationError(SwitchboardError):
    pass
