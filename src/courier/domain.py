"""Courier bounded context — Parcel Pickup, Linehaul, Delivery and Returns.

Drives a booked parcel from pickup through warehousing, transit, delivery
and return handling. Shipments use CQRS: status moves along a
checklist-gated state machine and each advance is acknowledged by the
remote courier backend before it is applied locally.
"""

from protean.domain import Domain

from courier.utils.logging import get_logger

courier = Domain(name="courier")

logger = get_logger(__name__)
