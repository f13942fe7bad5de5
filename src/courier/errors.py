"""Courier error taxonomy.

Local, field-scoped problems are reported with Protean's ``ValidationError``
and never reach the network. Everything below describes what went wrong
once a remote courier operation was involved, or an attempted status
advance that the state machine refuses.
"""

from protean.exceptions import ValidationError

GENERIC_VALIDATION_MESSAGE = "Validation failed"

CREATE_FALLBACK_MESSAGE = "Unable to create order. Please try again."
CONFIRM_FALLBACK_MESSAGE = "Unable to confirm order. Please try again."
STATUS_FALLBACK_MESSAGE = "Unable to update shipment status. Please try again."


class InvalidTransitionError(ValidationError):
    """A status advance was attempted along a missing edge, from a terminal
    state, or with an unsatisfied checklist gate.

    Messages are keyed on ``status`` like every other state machine error.
    """


class RemoteValidationError(Exception):
    """The remote quote/create operation rejected the intake data."""

    def __init__(self, message: str | None = None, field_errors: dict[str, list[str]] | None = None) -> None:
        self.message = message or GENERIC_VALIDATION_MESSAGE
        self.field_errors = dict(field_errors or {})
        super().__init__(self.display_message)

    @property
    def display_message(self) -> str:
        """Render the error the way operators see it.

        A specific remote message is shown verbatim. The generic
        "Validation failed" message is expanded with ``field: msg, msg``
        pairs joined by `` | ``.
        """
        if self.message != GENERIC_VALIDATION_MESSAGE or not self.field_errors:
            return self.message
        pairs = []
        for field, messages in self.field_errors.items():
            if isinstance(messages, str):
                messages = [messages]
            pairs.append(f"{field}: {', '.join(messages)}")
        return f"{GENERIC_VALIDATION_MESSAGE}: {' | '.join(pairs)}"


class RemoteOperationError(Exception):
    """A remote create/confirm/status-update call failed or timed out."""

    def __init__(self, message: str | None = None, fallback: str = CREATE_FALLBACK_MESSAGE) -> None:
        self.message = message or fallback
        super().__init__(self.message)


class PartialCompletionError(Exception):
    """The order was created remotely but confirming it failed.

    The order exists unconfirmed. Callers must retry confirmation for
    ``order_id`` instead of creating the order again.
    """

    def __init__(self, order_id: str, tracking_code: str, message: str | None = None) -> None:
        self.order_id = order_id
        self.tracking_code = tracking_code
        self.message = message or CONFIRM_FALLBACK_MESSAGE
        super().__init__(f"{self.message} (order {order_id}, tracking {tracking_code})")
