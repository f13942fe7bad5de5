"""Shipment domain events — immutable facts about shipment state changes.

All events are past tense, versioned, and carry enough data for the
shipment board projector and any downstream consumer.
"""

from protean.fields import Boolean, DateTime, Float, Identifier, String, Text

from courier.domain import courier


@courier.event(part_of="Shipment")
class ShipmentBooked:
    """A quoted order was created and confirmed; the shipment is now durable."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = String(required=True)
    tracking_code = String(required=True)
    service_type = String(required=True)
    sender_name = String()
    receiver_name = String()
    receiver_province = String()
    estimated_fee = Float(required=True)
    booked_at = DateTime(required=True)


@courier.event(part_of="Shipment")
class ShipmentStatusChanged:
    """A staff action advanced the shipment along one state machine edge."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = String(required=True)
    action = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    checklist = Text()  # JSON object {flag: bool}
    payload = Text()  # JSON object with stage details
    has_deviation = Boolean(default=False)
    changed_at = DateTime(required=True)


@courier.event(part_of="Shipment")
class ShipmentPriceReconciled:
    """The quoted fee was recomputed from the measured parcel."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = String(required=True)
    estimated_fee = Float()
    actual_fee = Float()
    price_difference = Float()
    scale = Float(required=True)
    provisional = Boolean(default=True)
    reconciled_at = DateTime(required=True)


@courier.event(part_of="Shipment")
class ShipmentIssueReported:
    """A problem checklist moved the shipment to ISSUE."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = String(required=True)
    from_status = String(required=True)
    problems = Text(required=True)  # JSON list of ticked problem flags
    reason = String(max_length=500)
    reported_at = DateTime(required=True)
