"""Configurable fake courier backend for development and testing.

This adapter simulates the courier backend in-process. It can be
configured at runtime to succeed or fail per operation, which makes it
useful for:
- Manual API testing without a running backend
- Automated tests with predictable outcomes, including partial completion
  (create succeeds, confirm fails) and lost responses (the backend acted
  but the caller saw a timeout)

Quotes are priced with the real tariff rules. ``create`` is idempotent:
the same idempotency key always maps to the same order.
"""

import asyncio
import random
import string
from datetime import UTC, datetime

from protean.exceptions import ValidationError

from courier.errors import (
    CONFIRM_FALLBACK_MESSAGE,
    CREATE_FALLBACK_MESSAGE,
    STATUS_FALLBACK_MESSAGE,
    RemoteOperationError,
    RemoteValidationError,
)
from courier.gateway.port import CourierGateway, CreateResult, PricingQuote, QuoteResult, StatusAck
from courier.pricing import tariff

_OPERATIONS = ("quote", "create", "confirm_order", "update_status")
_ALPHANUMERIC = string.ascii_uppercase + string.digits


def _random_code(length: int) -> str:
    return "".join(random.choices(_ALPHANUMERIC, k=length))


class FakeCourierGateway(CourierGateway):
    """Configurable fake courier backend."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str | None = None
        self.field_errors: dict[str, list[str]] = {}
        self.failing_operations: set[str] = set(_OPERATIONS)
        self.lost_responses: set[str] = set()
        self.fee_override: float | None = None
        self.hold: asyncio.Event | None = None
        self.calls: list[dict] = []

        self.orders: dict[str, dict] = {}
        self._orders_by_key: dict[str, str] = {}
        self.statuses: dict[str, str] = {}

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str | None = None,
        operations: list[str] | None = None,
        field_errors: dict[str, list[str]] | None = None,
    ) -> None:
        """Configure gateway behavior at runtime.

        ``operations`` limits failures to the named operations; by default
        every operation fails when ``should_succeed`` is false.
        """
        unknown = set(operations or []) - set(_OPERATIONS)
        if unknown:
            raise ValidationError({"operations": [f"Unknown operation(s): {', '.join(sorted(unknown))}"]})
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.field_errors = dict(field_errors or {})
        self.failing_operations = set(operations or _OPERATIONS)

    def lose_response(self, *operations: str) -> None:
        """Perform the named operations but raise as if the response timed out."""
        self.lost_responses = set(operations)

    def price_measured_parcels(self, fee: float | None) -> None:
        """Make status updates acknowledge an authoritative actual fee."""
        self.fee_override = fee

    def reset(self) -> None:
        """Forget all orders, calls and configured failures."""
        self.configure(should_succeed=True)
        self.lost_responses = set()
        self.fee_override = None
        self.hold = None
        self.calls.clear()
        self.orders.clear()
        self._orders_by_key.clear()
        self.statuses.clear()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    async def _enter(self, method: str, **details) -> None:
        self.calls.append({"method": method, **details})
        if self.hold is not None:
            await self.hold.wait()
        else:
            await asyncio.sleep(0)

    def _fails(self, method: str) -> bool:
        return not self.should_succeed and method in self.failing_operations

    def _raise_failure(self, fallback: str) -> None:
        if self.field_errors:
            raise RemoteValidationError(self.failure_reason, self.field_errors)
        raise RemoteOperationError(self.failure_reason, fallback=fallback)

    # -------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------
    async def quote(self, intake: dict, idempotency_key: str) -> QuoteResult:
        await self._enter("quote", idempotency_key=idempotency_key)
        if self._fails("quote"):
            self._raise_failure(CREATE_FALLBACK_MESSAGE)

        try:
            priced = tariff.quote(intake)
        except ValidationError as exc:
            raise RemoteValidationError(None, exc.messages) from exc

        return QuoteResult(
            estimated_fee=priced.estimated_fee,
            pricing_breakdown=PricingQuote(
                base_price=priced.base_price,
                extra_weight_price=priced.extra_weight_price,
                route_type=priced.route_type,
                vehicle_type=priced.vehicle_type,
                sla=priced.sla,
                chargeable_weight=priced.chargeable_weight,
                actual_weight=priced.actual_weight,
                volumetric_weight=priced.volumetric_weight,
            ),
        )

    async def create(self, intake: dict, idempotency_key: str) -> CreateResult:
        await self._enter("create", idempotency_key=idempotency_key)

        existing = self._orders_by_key.get(idempotency_key)
        if existing is not None:
            order = self.orders[existing]
            return CreateResult(order_id=existing, tracking_code=order["tracking_code"])

        if self._fails("create"):
            self._raise_failure(CREATE_FALLBACK_MESSAGE)

        order_id = f"ORD-{datetime.now(UTC):%Y%m%d}-{_random_code(8)}"
        tracking_code = f"CX-{_random_code(10)}"
        self.orders[order_id] = {
            "tracking_code": tracking_code,
            "status": "PRICE_ESTIMATED",
            "confirmed": False,
            "intake": intake,
            "idempotency_key": idempotency_key,
        }
        self._orders_by_key[idempotency_key] = order_id

        if "create" in self.lost_responses:
            raise RemoteOperationError("Request timed out", fallback=CREATE_FALLBACK_MESSAGE)
        return CreateResult(order_id=order_id, tracking_code=tracking_code)

    async def confirm_order(self, order_id: str) -> None:
        await self._enter("confirm_order", order_id=order_id)
        if self._fails("confirm_order"):
            self._raise_failure(CONFIRM_FALLBACK_MESSAGE)

        order = self.orders.get(order_id)
        if order is None:
            raise RemoteOperationError("Order not found", fallback=CONFIRM_FALLBACK_MESSAGE)
        if order["status"] not in ("PRICE_ESTIMATED", "BOOKED"):
            raise RemoteOperationError(
                f"Order must be in PRICE_ESTIMATED status, got {order['status']}",
                fallback=CONFIRM_FALLBACK_MESSAGE,
            )
        order["status"] = "BOOKED"
        order["confirmed"] = True
        self.statuses[order_id] = "BOOKED"

    async def update_status(self, shipment_id: str, status: str, payload: dict | None = None) -> StatusAck:
        await self._enter("update_status", shipment_id=shipment_id, status=status, payload=payload or {})
        if self._fails("update_status"):
            raise RemoteOperationError(self.failure_reason, fallback=STATUS_FALLBACK_MESSAGE)

        self.statuses[shipment_id] = status
        if shipment_id in self.orders:
            self.orders[shipment_id]["status"] = status
        return StatusAck(status=status, actual_fee=self.fee_override)
