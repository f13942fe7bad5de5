"""FastAPI routes for the Courier domain."""

from dataclasses import asdict

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from protean.utils.globals import current_domain

from courier.api.schemas import (
    AdvanceRequest,
    AdvanceResponse,
    BookingResponse,
    ChecklistTemplateResponse,
    IntakeRequest,
    RetryRequest,
    ShipmentBoardRow,
    ShipmentResponse,
    StatusResponse,
)
from courier.booking.orchestrator import BookingOrchestrator, close_session, get_session, open_session
from courier.errors import (
    InvalidTransitionError,
    PartialCompletionError,
    RemoteOperationError,
    RemoteValidationError,
)
from courier.intake.intake import ShipmentIntake
from courier.projections.shipment_board import ShipmentBoard
from courier.shipment.gates import CHECKLIST_TEMPLATES
from courier.shipment.shipment import Shipment
from courier.shipment.workflow import get_workflow


def _booking_response(booking: BookingOrchestrator, in_flight: bool = False) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        state=booking.state.value,
        in_flight=in_flight,
        estimated_fee=booking.pricing.estimated_fee if booking.pricing else None,
        pricing_breakdown=asdict(booking.pricing.pricing_breakdown) if booking.pricing else None,
        order_id=booking.order.order_id if booking.order else None,
        tracking_code=booking.order.tracking_code if booking.order else None,
        shipment_id=booking.shipment_id,
    )


# ---------------------------------------------------------------------------
# Booking Router
# ---------------------------------------------------------------------------
booking_router = APIRouter(prefix="/bookings", tags=["bookings"])


@booking_router.post("/quote", status_code=201, response_model=BookingResponse)
async def start_booking(body: IntakeRequest) -> BookingResponse:
    """Open a booking for an intake and price it."""
    intake = ShipmentIntake.from_dict(body.model_dump(exclude_none=True))
    booking = open_session(intake)
    try:
        await booking.quote()
    except Exception:
        close_session(booking.id)
        raise
    return _booking_response(booking)


@booking_router.post("/{booking_id}/quote", response_model=BookingResponse)
async def requote_booking(booking_id: str, body: RetryRequest | None = None) -> BookingResponse:
    """Price the booking again, reusing the last key when retrying."""
    booking = get_session(booking_id)
    result = await booking.quote(retry=body.retry if body else False)
    return _booking_response(booking, in_flight=result is None)


@booking_router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(booking_id: str, body: RetryRequest | None = None) -> BookingResponse:
    """Create and confirm the order, then register the shipment."""
    booking = get_session(booking_id)
    result = await booking.confirm(retry=body.retry if body else False)
    return _booking_response(booking, in_flight=result is None)


@booking_router.delete("/{booking_id}", response_model=StatusResponse)
async def reset_booking(booking_id: str) -> StatusResponse:
    """Abandon a booking that has not been confirmed."""
    booking = get_session(booking_id)
    if not booking.reset():
        return StatusResponse(status="in_flight")
    close_session(booking_id)
    return StatusResponse(status="reset")


# ---------------------------------------------------------------------------
# Shipment Router
# ---------------------------------------------------------------------------
shipment_router = APIRouter(prefix="/shipments", tags=["shipments"])


@shipment_router.get("", response_model=list[ShipmentBoardRow])
async def list_shipments(status: str | None = None) -> list[ShipmentBoardRow]:
    """Back-office work queue, optionally filtered by status."""
    query = current_domain.repository_for(ShipmentBoard)._dao.query
    if status:
        query = query.filter(status=status)
    rows = query.all().items
    return [
        ShipmentBoardRow(
            shipment_id=str(row.shipment_id),
            order_id=row.order_id,
            tracking_code=row.tracking_code,
            status=row.status,
            service_type=row.service_type,
            sender_name=row.sender_name,
            receiver_name=row.receiver_name,
            receiver_province=row.receiver_province,
            estimated_fee=row.estimated_fee,
            actual_fee=row.actual_fee,
            fee_provisional=row.fee_provisional,
            has_deviation=row.has_deviation,
            last_action=row.last_action,
        )
        for row in rows
    ]


@shipment_router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: str) -> ShipmentResponse:
    shipment = current_domain.repository_for(Shipment).get(shipment_id)
    return ShipmentResponse(
        shipment_id=str(shipment.id),
        order_id=shipment.order_id,
        tracking_code=shipment.tracking_code,
        status=shipment.status,
        service_type=shipment.service_type,
        sender_name=shipment.sender.name if shipment.sender else None,
        receiver_name=shipment.receiver.name if shipment.receiver else None,
        estimated_fee=shipment.estimated_fee,
        actual_fee=shipment.actual_fee,
        price_difference=shipment.price_difference,
        fee_provisional=shipment.fee_provisional,
        has_deviation=shipment.has_deviation,
        branch_id=shipment.branch_id,
        pickup_window_start=shipment.pickup_window_start,
        pickup_window_end=shipment.pickup_window_end,
        issue_reason=shipment.issue_reason,
        allowed_actions=[action.value for action in shipment.allowed_actions()],
    )


@shipment_router.get("/{shipment_id}/actions", response_model=list[ChecklistTemplateResponse])
async def list_actions(shipment_id: str) -> list[ChecklistTemplateResponse]:
    """Actions available from the current status, with their checklists."""
    shipment = current_domain.repository_for(Shipment).get(shipment_id)
    templates = []
    for action in shipment.allowed_actions():
        mode, names = CHECKLIST_TEMPLATES[action.value]
        templates.append(ChecklistTemplateResponse(action=action.value, mode=mode.value, items=list(names)))
    return templates


@shipment_router.post("/{shipment_id}/actions/{action}", response_model=AdvanceResponse)
async def advance_shipment(shipment_id: str, action: str, body: AdvanceRequest) -> AdvanceResponse:
    """Run a checklist-gated staff action against the shipment."""
    status = await get_workflow().advance(shipment_id, action.upper(), body.checklist, body.payload)
    return AdvanceResponse(shipment_id=shipment_id, status=status, in_flight=status is None)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
async def _invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages})


async def _partial_completion(request: Request, exc: PartialCompletionError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": exc.message, "order_id": exc.order_id, "tracking_code": exc.tracking_code},
    )


async def _remote_validation(request: Request, exc: RemoteValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"error": exc.display_message, "field_errors": exc.field_errors})


async def _remote_operation(request: Request, exc: RemoteOperationError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"error": exc.message})


def register_courier_exception_handlers(app: FastAPI) -> None:
    """Map courier errors to HTTP responses.

    Register after Protean's handlers so that ``InvalidTransitionError``
    answers 409 rather than the generic 400 for ``ValidationError``.
    """
    app.add_exception_handler(InvalidTransitionError, _invalid_transition)
    app.add_exception_handler(PartialCompletionError, _partial_completion)
    app.add_exception_handler(RemoteValidationError, _remote_validation)
    app.add_exception_handler(RemoteOperationError, _remote_operation)
