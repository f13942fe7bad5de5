"""Booking orchestrator — quote, then create and confirm, exactly once.

Flow states:
    DRAFT → AWAITING_CONFIRMATION → CONFIRMED
    AWAITING_CONFIRMATION → PARTIALLY_CONFIRMED → CONFIRMED
    {DRAFT, AWAITING_CONFIRMATION, PARTIALLY_CONFIRMED} → DRAFT   (reset)

Idempotency keys:
    quote()    mints a fresh key per call; ``retry=True`` reuses the last one
    confirm()  mints a fresh key distinct from the quote key; ``retry=True``
               reuses it so the backend recognises a repeated create

Once ``create`` has produced an order, confirmation is retried against that
order id and the order is never created again. Only after the backend has
confirmed the order is the shipment registered locally in BOOKED status.

One call may be in flight at a time. Triggers that arrive meanwhile return
``None`` and are not queued.
"""

import json
import secrets
import string
import time
from dataclasses import asdict
from enum import Enum
from uuid import uuid4

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from courier.errors import PartialCompletionError, RemoteOperationError, RemoteValidationError
from courier.gateway import get_gateway
from courier.gateway.port import CourierGateway, CreateResult, QuoteResult
from courier.intake.intake import ShipmentIntake
from courier.shipment.registration import RegisterBookedShipment

logger = structlog.get_logger(__name__)

_KEY_ALPHABET = string.digits + string.ascii_lowercase


def new_idempotency_key() -> str:
    """Time-based prefix plus 9 random base36 characters."""
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(9))
    return f"idemp_{int(time.time() * 1000)}_{suffix}"


class BookingState(Enum):
    DRAFT = "DRAFT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    PARTIALLY_CONFIRMED = "PARTIALLY_CONFIRMED"
    CONFIRMED = "CONFIRMED"


class BookingOrchestrator:
    def __init__(self, intake: ShipmentIntake, gateway: CourierGateway | None = None) -> None:
        self.id = str(uuid4())
        self.intake = intake
        self._gateway = gateway
        self.state = BookingState.DRAFT
        self.quote_key: str | None = None
        self.confirm_key: str | None = None
        self.pricing: QuoteResult | None = None
        self.order: CreateResult | None = None
        self.shipment_id: str | None = None
        self.submitting = False
        self.last_error: str | None = None

    @property
    def gateway(self) -> CourierGateway:
        return self._gateway or get_gateway()

    # -------------------------------------------------------------------
    # Quote
    # -------------------------------------------------------------------
    async def quote(self, retry: bool = False) -> QuoteResult | None:
        """Price the intake. Nothing durable exists until ``confirm``."""
        if self.submitting:
            return None
        if self.state in (BookingState.PARTIALLY_CONFIRMED, BookingState.CONFIRMED):
            raise ValidationError({"booking": ["An order has already been created for this booking"]})

        self.intake.validate()

        key = self.quote_key if retry and self.quote_key else new_idempotency_key()
        self.quote_key = key
        self.submitting = True
        self.last_error = None
        try:
            result = await self.gateway.quote(self.intake.to_payload(), key)
        except (RemoteValidationError, RemoteOperationError) as exc:
            self.last_error = str(exc)
            logger.warning("Quote failed", booking_id=self.id, idempotency_key=key, error=self.last_error)
            raise
        finally:
            self.submitting = False

        self.pricing = result
        self.confirm_key = None
        self.state = BookingState.AWAITING_CONFIRMATION
        logger.info("Booking quoted", booking_id=self.id, estimated_fee=result.estimated_fee)
        return result

    # -------------------------------------------------------------------
    # Confirm
    # -------------------------------------------------------------------
    async def confirm(self, retry: bool = False) -> str | None:
        """Create and confirm the order, then register the shipment.

        Returns the shipment id, or ``None`` when another call is in flight.
        """
        if self.submitting:
            return None
        if self.state == BookingState.CONFIRMED:
            return self.shipment_id
        if self.state == BookingState.DRAFT:
            raise ValidationError({"booking": ["Request a quote before confirming"]})

        self.submitting = True
        self.last_error = None
        try:
            if self.order is None:
                self.order = await self._create(retry)
            await self._confirm_order()
        finally:
            self.submitting = False

        self.shipment_id = self._register()
        self.state = BookingState.CONFIRMED
        logger.info(
            "Booking confirmed",
            booking_id=self.id,
            order_id=self.order.order_id,
            tracking_code=self.order.tracking_code,
            shipment_id=self.shipment_id,
        )
        return self.shipment_id

    async def _create(self, retry: bool) -> CreateResult:
        key = self.confirm_key if retry and self.confirm_key else new_idempotency_key()
        while key == self.quote_key:
            key = new_idempotency_key()
        self.confirm_key = key

        payload = self.intake.to_payload()
        payload["estimated_fee"] = self.pricing.estimated_fee
        payload["pricing_breakdown"] = asdict(self.pricing.pricing_breakdown)
        try:
            return await self.gateway.create(payload, key)
        except (RemoteValidationError, RemoteOperationError) as exc:
            self.last_error = str(exc)
            logger.warning("Order creation failed", booking_id=self.id, idempotency_key=key, error=self.last_error)
            raise

    async def _confirm_order(self) -> None:
        try:
            await self.gateway.confirm_order(self.order.order_id)
        except (RemoteValidationError, RemoteOperationError) as exc:
            self.state = BookingState.PARTIALLY_CONFIRMED
            self.last_error = str(exc)
            logger.error(
                "Order created but not confirmed",
                booking_id=self.id,
                order_id=self.order.order_id,
                tracking_code=self.order.tracking_code,
                error=self.last_error,
            )
            raise PartialCompletionError(
                self.order.order_id,
                self.order.tracking_code,
                getattr(exc, "message", None),
            ) from exc

    def _register(self) -> str:
        pricing = {"estimated_fee": self.pricing.estimated_fee, **asdict(self.pricing.pricing_breakdown)}
        return current_domain.process(
            RegisterBookedShipment(
                order_id=self.order.order_id,
                tracking_code=self.order.tracking_code,
                idempotency_key=self.confirm_key,
                intake=json.dumps(self.intake.to_payload()),
                pricing=json.dumps(pricing),
                declared_weight_g=self.intake.declared_weight_g(),
                declared_volume_m3=self.intake.declared_volume_m3(),
            ),
            asynchronous=False,
        )

    # -------------------------------------------------------------------
    # Reset
    # -------------------------------------------------------------------
    def reset(self) -> bool:
        """Abandon the flow: forget keys and pricing, release intake resources.

        The server is not contacted. Returns ``False`` when a call is in
        flight and the reset was ignored.
        """
        if self.submitting:
            return False
        if self.state == BookingState.CONFIRMED:
            raise ValidationError({"booking": ["A confirmed booking cannot be reset"]})
        if self.state == BookingState.PARTIALLY_CONFIRMED:
            logger.warning(
                "Abandoning booking with an unconfirmed order",
                booking_id=self.id,
                order_id=self.order.order_id,
            )

        self.quote_key = None
        self.confirm_key = None
        self.pricing = None
        self.order = None
        self.last_error = None
        self.state = BookingState.DRAFT
        self.intake.discard()
        return True


# ---------------------------------------------------------------------------
# Open booking sessions
# ---------------------------------------------------------------------------
_sessions: dict[str, BookingOrchestrator] = {}


def open_session(intake: ShipmentIntake) -> BookingOrchestrator:
    booking = BookingOrchestrator(intake)
    _sessions[booking.id] = booking
    return booking


def get_session(booking_id: str) -> BookingOrchestrator:
    try:
        return _sessions[booking_id]
    except KeyError:
        raise ObjectNotFoundError(f"Booking {booking_id} does not exist") from None


def close_session(booking_id: str) -> None:
    _sessions.pop(booking_id, None)


def clear_sessions() -> None:
    _sessions.clear()
