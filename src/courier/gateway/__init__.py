"""Courier gateway factory.

Provides get_gateway() / set_gateway() to swap implementations. The
adapter is selected by the COURIER_GATEWAY environment variable:
- "fake" (default): FakeCourierGateway, in-process, for development and testing
"""

import os

from courier.gateway.fake_adapter import FakeCourierGateway
from courier.gateway.port import CourierGateway

_ADAPTERS = {
    "fake": FakeCourierGateway,
}

_current_gateway: CourierGateway | None = None


def get_gateway() -> CourierGateway:
    """Return the current courier gateway, creating the configured one on first use."""
    global _current_gateway
    if _current_gateway is None:
        name = os.getenv("COURIER_GATEWAY", "fake").lower()
        if name not in _ADAPTERS:
            raise ValueError(f"Unknown courier gateway: {name}")
        _current_gateway = _ADAPTERS[name]()
    return _current_gateway


def set_gateway(gateway: CourierGateway) -> None:
    """Override the active courier gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
