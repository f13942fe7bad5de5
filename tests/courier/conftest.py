import json
from datetime import UTC, date, datetime, timedelta

import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def courier_bed():
    from courier.domain import courier

    bed = DomainFixture(courier)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(courier_bed):
    with courier_bed.domain_context():
        yield


@pytest.fixture()
def fake_gateway():
    """A fresh FakeCourierGateway installed as the active gateway."""
    from courier.gateway import reset_gateway, set_gateway
    from courier.gateway.fake_adapter import FakeCourierGateway

    gateway = FakeCourierGateway()
    set_gateway(gateway)
    yield gateway
    reset_gateway()


# ---------------------------------------------------------------------------
# Intake data
# ---------------------------------------------------------------------------
def _intake_data(**overrides) -> dict:
    """A complete STANDARD intake from Ho Chi Minh City to Hanoi."""
    data = {
        "service_type": "STANDARD",
        "sender": {
            "name": "Nguyen Van An",
            "phone": "0901234567",
            "address_detail": "12 Ly Thuong Kiet",
            "province_code": "79",
            "province_name": "Ho Chi Minh",
            "ward_code": "26734",
            "ward_name": "Ben Nghe",
        },
        "receiver": {
            "name": "Tran Thi Binh",
            "phone": "0912345678",
            "address_detail": "45 Hang Bai",
            "province_code": "01",
            "province_name": "Ha Noi",
            "ward_code": "00070",
            "ward_name": "Hang Bai",
        },
        "items": [
            {
                "name": "Cotton shirt",
                "weight_g": 1500,
                "quantity": 1,
                "category": "FASHION",
                "declared_value": 500000,
                "length_cm": 30,
                "width_cm": 20,
                "height_cm": 10,
                "images": ["img-shirt-1"],
            }
        ],
        "pickup_date": date.today().isoformat(),
        "pickup_slot": "ca1",
        "inspection_policy": "NO_VIEW",
        "payment_method": "CASH",
        "note": "Call before pickup",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def valid_intake():
    from courier.intake.intake import ShipmentIntake

    return ShipmentIntake.from_dict(_intake_data())


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------
PRICING = {
    "estimated_fee": 35000,
    "base_price": 35000,
    "extra_weight_price": 0,
    "route_type": "cross_region",
    "vehicle_type": "MOTORBIKE",
    "sla": "7 days",
    "chargeable_weight": 1.5,
    "actual_weight": 1.5,
    "volumetric_weight": 1.2,
}


def _new_shipment(order_id: str = "ORD-20260101-TEST0001", **intake_overrides):
    """An in-memory BOOKED shipment with its booking event cleared."""
    from courier.intake.intake import ShipmentIntake
    from courier.shipment.shipment import Shipment

    intake = ShipmentIntake.from_dict(_intake_data(**intake_overrides))
    shipment = Shipment.register_booked(
        order_id=order_id,
        tracking_code="CX-TEST000001",
        intake=intake.to_payload(),
        pricing=dict(PRICING),
        idempotency_key="idemp_1_test",
        declared_weight_g=intake.declared_weight_g(),
        declared_volume_m3=intake.declared_volume_m3(),
    )
    shipment._events.clear()
    return shipment


def _register_shipment(order_id: str = "ORD-20260101-TEST0001") -> str:
    """Persist a BOOKED shipment through the registration command."""
    from courier.intake.intake import ShipmentIntake
    from courier.shipment.registration import RegisterBookedShipment
    from protean.utils.globals import current_domain

    intake = ShipmentIntake.from_dict(_intake_data())
    return current_domain.process(
        RegisterBookedShipment(
            order_id=order_id,
            tracking_code="CX-TEST000001",
            idempotency_key="idemp_1_test",
            intake=json.dumps(intake.to_payload()),
            pricing=json.dumps(PRICING),
            declared_weight_g=intake.declared_weight_g(),
            declared_volume_m3=intake.declared_volume_m3(),
        ),
        asynchronous=False,
    )


def _future_window(hours: int = 2) -> dict:
    start = datetime.now(UTC) + timedelta(hours=hours)
    return {
        "pickup_window_start": start.isoformat(),
        "pickup_window_end": (start + timedelta(hours=2)).isoformat(),
    }


def _ticked(action: str) -> dict[str, bool]:
    """Every checklist item of ``action`` ticked."""
    from courier.shipment.gates import CHECKLIST_TEMPLATES

    return {name: True for name in CHECKLIST_TEMPLATES[action][1]}


# Happy path from BOOKED to IN_ORIGIN_WAREHOUSE: (action, checklist, payload)
PICKUP_STEPS = [
    ("ASSIGN_BRANCH", None, {"branch_id": "BR-HCM-01"}),
    ("SCHEDULE_PICKUP", None, "window"),
    ("START_PICKUP", None, {"driver": "Le Van Cuong"}),
    ("CHECK_ITEM", None, {}),
    ("CHECK_PRICE", None, {}),
    ("COLLECT_PAYMENT", None, {"method": "CASH"}),
    ("COMPLETE_PICKUP", None, {}),
    ("CREATE_RECONCILIATION", None, {"recon_shift": "SHIFT_1", "check_in_time": "2026-01-01T08:00:00+00:00"}),
]


def _pickup_steps():
    """``PICKUP_STEPS`` with checklists ticked and the pickup window filled in."""
    for action, checklist, payload in PICKUP_STEPS:
        yield action, checklist or _ticked(action), _future_window() if payload == "window" else dict(payload)


@pytest.fixture()
def intake_data():
    return _intake_data


@pytest.fixture()
def new_shipment():
    return _new_shipment


@pytest.fixture()
def shipment():
    return _new_shipment()


@pytest.fixture()
def register_shipment():
    return _register_shipment


@pytest.fixture()
def future_window():
    return _future_window


@pytest.fixture()
def ticked():
    return _ticked


@pytest.fixture()
def pickup_steps():
    return list(_pickup_steps())
