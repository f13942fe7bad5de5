"""Courier gateway port (abstract interface).

Defines the contract every courier backend adapter must implement. The
booking flow and the shipment workflow depend only on this port, so the
in-process FakeCourierGateway (dev/test) and an HTTP adapter can be
swapped without touching domain or application code.

All operations are coroutines: remote calls may be slow, fail, or time out.
Failures are raised as ``RemoteValidationError`` (quote/create rejected the
data) or ``RemoteOperationError`` (anything else).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class PricingQuote:
    """Pricing breakdown returned by the quoting authority."""

    base_price: float = 0
    extra_weight_price: float = 0
    route_type: str | None = None
    vehicle_type: str | None = None
    sla: str | None = None
    chargeable_weight: float | None = None
    actual_weight: float | None = None
    volumetric_weight: float | None = None


@dataclass(frozen=True)
class QuoteResult:
    estimated_fee: float
    pricing_breakdown: PricingQuote = field(default_factory=PricingQuote)


@dataclass(frozen=True)
class CreateResult:
    order_id: str
    tracking_code: str


@dataclass(frozen=True)
class StatusAck:
    """Acknowledgement of a durable status update.

    ``actual_fee`` is set only when the backend itself has priced the
    measured parcel; it is then authoritative.
    """

    status: str
    actual_fee: float | None = None


class CourierGateway(ABC):
    """Abstract courier backend interface."""

    @abstractmethod
    async def quote(self, intake: dict, idempotency_key: str) -> QuoteResult:
        """Price an intake without any durable effect."""
        ...

    @abstractmethod
    async def create(self, intake: dict, idempotency_key: str) -> CreateResult:
        """Create a durable, unconfirmed order. Idempotent by key."""
        ...

    @abstractmethod
    async def confirm_order(self, order_id: str) -> None:
        """Finalize a created-but-unconfirmed order."""
        ...

    @abstractmethod
    async def update_status(self, shipment_id: str, status: str, payload: dict | None = None) -> StatusAck:
        """Advance the durable status of a shipment."""
        ...
