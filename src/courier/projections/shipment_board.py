"""Shipment board — back-office work queues, one row per shipment.

Staff screens list shipments by status (pickups to run, parcels to check
in, deliveries to dispatch). Rows are kept current from shipment events.
"""

from protean.core.projector import on
from protean.fields import Boolean, DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from courier.domain import courier
from courier.shipment.events import ShipmentBooked, ShipmentPriceReconciled, ShipmentStatusChanged
from courier.shipment.shipment import Shipment


@courier.projection
class ShipmentBoard:
    shipment_id = Identifier(identifier=True, required=True)
    order_id = String(required=True)
    tracking_code = String(required=True)
    status = String(required=True)
    service_type = String()
    sender_name = String()
    receiver_name = String()
    receiver_province = String()
    estimated_fee = Float()
    actual_fee = Float()
    fee_provisional = Boolean(default=True)
    has_deviation = Boolean(default=False)
    last_action = String()
    updated_at = DateTime()


@courier.projector(projector_for=ShipmentBoard, aggregates=[Shipment])
class ShipmentBoardProjector:
    @on(ShipmentBooked)
    def on_shipment_booked(self, event):
        current_domain.repository_for(ShipmentBoard).add(
            ShipmentBoard(
                shipment_id=event.shipment_id,
                order_id=event.order_id,
                tracking_code=event.tracking_code,
                status="BOOKED",
                service_type=event.service_type,
                sender_name=event.sender_name,
                receiver_name=event.receiver_name,
                receiver_province=event.receiver_province,
                estimated_fee=event.estimated_fee,
                updated_at=event.booked_at,
            )
        )

    @on(ShipmentPriceReconciled)
    def on_price_reconciled(self, event):
        repo = current_domain.repository_for(ShipmentBoard)
        row = repo.get(event.shipment_id)
        row.actual_fee = event.actual_fee
        row.fee_provisional = event.provisional
        row.updated_at = event.reconciled_at
        repo.add(row)

    @on(ShipmentStatusChanged)
    def on_status_changed(self, event):
        repo = current_domain.repository_for(ShipmentBoard)
        row = repo.get(event.shipment_id)
        row.status = event.to_status
        row.has_deviation = event.has_deviation
        row.last_action = event.action
        row.updated_at = event.changed_at
        repo.add(row)
