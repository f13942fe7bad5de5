"""End-to-end: book a shipment, then drive it into the origin warehouse."""

import json

import pytest
from courier.booking.orchestrator import BookingOrchestrator, BookingState
from courier.intake.intake import ShipmentIntake
from courier.shipment.shipment import Shipment, ShipmentStatus
from courier.shipment.workflow import ShipmentWorkflow
from protean.utils.globals import current_domain


class TestBookingToOriginWarehouse:
    @pytest.mark.asyncio
    async def test_full_pickup_flow(self, fake_gateway, intake_data, pickup_steps):
        booking = BookingOrchestrator(ShipmentIntake.from_dict(intake_data()))
        quote = await booking.quote()
        shipment_id = await booking.confirm()
        assert booking.state == BookingState.CONFIRMED

        workflow = ShipmentWorkflow()
        statuses = []
        for action, checklist, payload in pickup_steps:
            statuses.append(await workflow.advance(shipment_id, action, checklist, payload))

        assert statuses == [
            "BRANCH_ASSIGNED",
            "PICKUP_SCHEDULED",
            "ON_THE_WAY_PICKUP",
            "VERIFIED_ITEM",
            "CONFIRMED_PRICE",
            "CONFIRM_PAYMENT",
            "PICKUP_COMPLETED",
            "IN_ORIGIN_WAREHOUSE",
        ]

        shipment = current_domain.repository_for(Shipment).get(shipment_id)
        assert shipment.status == ShipmentStatus.IN_ORIGIN_WAREHOUSE.value
        assert shipment.actual_fee == quote.estimated_fee
        assert shipment.payment.amount == quote.estimated_fee
        assert shipment.check_in.recon_shift == "SHIFT_1"
        assert len(json.loads(shipment.stage_log)) == len(pickup_steps)

        order_id = booking.order.order_id
        assert fake_gateway.orders[order_id]["status"] == "IN_ORIGIN_WAREHOUSE"
        assert fake_gateway.statuses[order_id] == "IN_ORIGIN_WAREHOUSE"

    @pytest.mark.asyncio
    async def test_measured_parcel_reprices_collection(self, fake_gateway, intake_data, pickup_steps):
        booking = BookingOrchestrator(ShipmentIntake.from_dict(intake_data()))
        await booking.quote()
        shipment_id = await booking.confirm()
        workflow = ShipmentWorkflow()

        for action, checklist, payload in pickup_steps[:3]:
            await workflow.advance(shipment_id, action, checklist, payload)

        await workflow.advance(
            shipment_id,
            "CHECK_ITEM",
            {"dimensions_verified": False, "weight_verified": True, "image_verified": True},
            {"actual_weight": 1500, "actual_length": 60, "actual_width": 20, "actual_height": 10},
        )
        assert await workflow.advance(shipment_id, "CHECK_PRICE", {"price_reviewed_with_sender": True}) == (
            "ADJUSTED_PRICE"
        )
        await workflow.advance(
            shipment_id,
            "COLLECT_PAYMENT",
            {"payment_method_selected": True, "amount_collected": True},
            {"method": "CASH"},
        )

        shipment = current_domain.repository_for(Shipment).get(shipment_id)
        assert shipment.has_deviation is True
        assert shipment.actual_fee == 70000
        assert shipment.payment.amount == 70000
        assert fake_gateway.calls[-1]["payload"]["amount"] == 70000
