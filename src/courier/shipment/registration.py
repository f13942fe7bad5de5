"""Shipment registration — command and handler.

Issued by the booking flow once an order has been created and confirmed
remotely. This is where a shipment receives its first durable status.
"""

import json

from protean import handle
from protean.fields import Float, String, Text
from protean.utils.globals import current_domain

from courier.domain import courier
from courier.shipment.shipment import Shipment


@courier.command(part_of="Shipment")
class RegisterBookedShipment:
    """Register a confirmed booking as a shipment in BOOKED status."""

    order_id = String(required=True, max_length=50)
    tracking_code = String(required=True, max_length=50)
    idempotency_key = String(max_length=100)
    intake = Text(required=True)  # JSON intake payload
    pricing = Text(required=True)  # JSON pricing breakdown incl. estimated_fee
    declared_weight_g = Float()
    declared_volume_m3 = Float()


@courier.command_handler(part_of=Shipment)
class RegisterBookedShipmentHandler:
    @handle(RegisterBookedShipment)
    def register_booked_shipment(self, command):
        repo = current_domain.repository_for(Shipment)

        # A confirmed order is registered once, even if confirmation is retried
        existing = repo._dao.query.filter(order_id=command.order_id).all()
        if existing.items:
            return str(existing.first.id)

        shipment = Shipment.register_booked(
            order_id=command.order_id,
            tracking_code=command.tracking_code,
            idempotency_key=command.idempotency_key,
            intake=json.loads(command.intake),
            pricing=json.loads(command.pricing),
            declared_weight_g=command.declared_weight_g,
            declared_volume_m3=command.declared_volume_m3,
        )
        repo.add(shipment)
        return str(shipment.id)
