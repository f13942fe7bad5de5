"""Shared BDD fixtures and step definitions for the Courier domain."""

import pytest
from courier.errors import InvalidTransitionError
from courier.shipment.events import (
    ShipmentBooked,
    ShipmentIssueReported,
    ShipmentPriceReconciled,
    ShipmentStatusChanged,
)
from courier.shipment.gates import ChecklistGate
from courier.shipment.shipment import Action, ShipmentStatus
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then, when

_SHIPMENT_EVENT_CLASSES = {
    "ShipmentBooked": ShipmentBooked,
    "ShipmentStatusChanged": ShipmentStatusChanged,
    "ShipmentPriceReconciled": ShipmentPriceReconciled,
    "ShipmentIssueReported": ShipmentIssueReported,
}

_RECONCILIATION = {"recon_shift": "SHIFT_1", "check_in_time": "2026-01-01T08:00:00+00:00"}

# Forward route: BOOKED to DELIVERED
_DELIVERY_ROUTE = [
    (Action.ASSIGN_BRANCH, {"branch_id": "BR-HCM-01"}),
    (Action.SCHEDULE_PICKUP, "window"),
    (Action.START_PICKUP, {}),
    (Action.CHECK_ITEM, {}),
    (Action.CHECK_PRICE, {}),
    (Action.COLLECT_PAYMENT, {"method": "CASH"}),
    (Action.COMPLETE_PICKUP, {}),
    (Action.CREATE_RECONCILIATION, _RECONCILIATION),
    (Action.DISPATCH_TRANSIT, {}),
    (Action.ARRIVE_DEST_WAREHOUSE, {}),
    (Action.DISPATCH_DELIVERY, {}),
    (Action.DELIVER, {}),
]

# Return route branches off after dispatch for delivery
_RETURN_ROUTE = _DELIVERY_ROUTE[:-1] + [
    (Action.FAIL_DELIVERY, {"reason": "Receiver unreachable"}),
    (Action.CREATE_RETURN, {}),
    (Action.DISPATCH_RETURN, {}),
    (Action.ARRIVE_ORIGIN_RETURN, {}),
    (Action.COMPLETE_RETURN, {}),
]


def ticked_gate(action) -> ChecklistGate:
    names = ChecklistGate.for_action(action).names
    return ChecklistGate.for_action(action, **{name: True for name in names})


_RETURN_STATUSES = {
    ShipmentStatus.DELIVERY_FAILED,
    ShipmentStatus.RETURN_CREATED,
    ShipmentStatus.RETURN_IN_TRANSIT,
    ShipmentStatus.RETURNED_TO_ORIGIN,
    ShipmentStatus.RETURN_COMPLETED,
}


def _drive_to(shipment, status, future_window):
    route = _RETURN_ROUTE if status in {s.value for s in _RETURN_STATUSES} else _DELIVERY_ROUTE
    for action, payload in route:
        if shipment.status == status:
            break
        if payload == "window":
            payload = future_window()
        shipment.perform(action, ticked_gate(action), dict(payload))
    assert shipment.status == status, f"Could not drive shipment to {status}"
    shipment._events.clear()
    return shipment


@pytest.fixture()
def error():
    """Container for captured validation errors."""
    return {"exc": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a booked shipment", target_fixture="shipment")
def booked_shipment(new_shipment):
    return new_shipment()


@given(parsers.cfparse('a shipment at "{status}"'), target_fixture="shipment")
def shipment_at(status, new_shipment, future_window):
    return _drive_to(new_shipment(), status, future_window)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
def _perform(shipment, action, gate, payload, error):
    try:
        shipment.perform(action, gate, payload)
    except ValidationError as exc:
        error["exc"] = exc
    return shipment


@when(parsers.cfparse('staff perform "{action}" with every item ticked'), target_fixture="shipment")
def perform_ticked(shipment, action, error):
    return _perform(shipment, action, ticked_gate(action), {}, error)


@when(
    parsers.cfparse('staff perform "{action}" with every item ticked and reason "{reason}"'),
    target_fixture="shipment",
)
def perform_ticked_with_reason(shipment, action, reason, error):
    return _perform(shipment, action, ticked_gate(action), {"reason": reason}, error)


@when(parsers.cfparse('staff perform "{action}" with only "{items}" ticked'), target_fixture="shipment")
def perform_partly_ticked(shipment, action, items, error):
    flags = {name.strip(): True for name in items.split(",")}
    return _perform(shipment, action, ChecklistGate.for_action(action, **flags), {}, error)


@when(parsers.cfparse('staff perform "{action}" with nothing ticked'), target_fixture="shipment")
def perform_unticked(shipment, action, error):
    return _perform(shipment, action, ChecklistGate.for_action(action), {}, error)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the shipment status is "{status}"'))
def shipment_status_is(shipment, status):
    assert shipment.status == status


@then("the action is refused")
def action_refused(error):
    assert error["exc"] is not None, "Expected the action to be refused"
    assert isinstance(error["exc"], InvalidTransitionError)


@then("the action fails with a validation error")
def action_fails_validation(error):
    assert error["exc"] is not None, "Expected a validation error but none was raised"
    assert isinstance(error["exc"], ValidationError)


@then(parsers.cfparse('the refusal mentions "{text}"'))
def refusal_mentions(error, text):
    messages = [message for values in error["exc"].messages.values() for message in values]
    assert any(text in message for message in messages), messages


@then(parsers.cfparse("a {event_type} event is raised"))
def shipment_event_raised(shipment, event_type):
    event_cls = _SHIPMENT_EVENT_CLASSES[event_type]
    assert any(
        isinstance(e, event_cls) for e in shipment._events
    ), f"No {event_type} event found. Events: {[type(e).__name__ for e in shipment._events]}"


@then("no event is raised")
def no_event_raised(shipment):
    assert shipment._events == []


@then(parsers.cfparse('the allowed actions are "{actions}"'))
def allowed_actions_are(shipment, actions):
    expected = [name.strip() for name in actions.split(",")] if actions else []
    assert [action.value for action in shipment.allowed_actions()] == expected


@then("no action is allowed")
def no_action_allowed(shipment):
    assert shipment.allowed_actions() == []


@then(parsers.cfparse('the issue reason is "{reason}"'))
def issue_reason_is(shipment, reason):
    assert shipment.issue_reason == reason
