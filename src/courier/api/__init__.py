"""Courier domain API package."""

from courier.api.routes import booking_router, register_courier_exception_handlers, shipment_router

__all__ = ["booking_router", "shipment_router", "register_courier_exception_handlers"]
