"""Tariff rules used by the quoting authority.

The fake courier gateway answers ``quote`` with these rules so that the
development stack and the test suite produce realistic fees and
breakdowns. Fees are in VND and weights in kilograms.

STANDARD
    < 20 kg    base price per route (first 3 kg) plus a surcharge for
               every started 0.5 kg above 3 kg
    20 - 50 kg banded price per route
    > 50 kg    50 kg band plus a per-kg surcharge, up to 300 kg

EXPRESS
    intra-city HCM or Hanoi only, up to 20 kg, priced by weight band and
    parcel volume
"""

import math
from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ValidationError

VOLUMETRIC_DIVISOR = 5000  # cm3 per kg

EXPRESS_SIZE_DIMENSIONS = {
    "S": (20, 20, 10),
    "M": (30, 30, 15),
    "L": (40, 40, 20),
    "XL": (50, 50, 25),
}


class RouteType(Enum):
    INTRA_PROVINCE = "intra_province"
    INTRA_REGION = "intra_region"
    ADJACENT_REGION = "adjacent_region"
    CROSS_REGION = "cross_region"


class Region(Enum):
    NORTH = "NORTH"
    CENTRAL = "CENTRAL"
    SOUTH = "SOUTH"


_ADJACENT_REGIONS = {
    frozenset({Region.NORTH, Region.CENTRAL}),
    frozenset({Region.CENTRAL, Region.SOUTH}),
}

# Province names that identify a region when no numeric code is available.
_REGION_KEYWORDS = {
    Region.NORTH: ("HANOI", "HA NOI", "HÀ NỘI", "HAIPHONG", "HAI PHONG", "QUANGNINH", "QUANG NINH"),
    Region.CENTRAL: ("DANANG", "DA NANG", "ĐÀ NẴNG", "HUE", "HUẾ", "QUANGNAM", "QUANG NAM"),
    Region.SOUTH: ("HCM", "HO CHI MINH", "HỒ CHÍ MINH", "CANTHO", "CAN THO", "CẦN THƠ", "DONGNAI", "ĐỒNG NAI"),
}

_HANOI_CODES = {"01", "HN"}
_HCM_CODES = {"79", "HCM"}

_STANDARD_BASE = {
    RouteType.INTRA_PROVINCE: 30000,
    RouteType.INTRA_REGION: 30000,
    RouteType.ADJACENT_REGION: 32000,
    RouteType.CROSS_REGION: 35000,
}

_STANDARD_EXTRA_PER_HALF_KG = {
    RouteType.INTRA_PROVINCE: 2500,
    RouteType.INTRA_REGION: 2500,
    RouteType.ADJACENT_REGION: 5000,
    RouteType.CROSS_REGION: 5000,
}

# Upper bound (kg) -> fee per route
_STANDARD_BANDS = [
    (30, {RouteType.INTRA_PROVINCE: 130000, RouteType.INTRA_REGION: 165000,
          RouteType.ADJACENT_REGION: 260000, RouteType.CROSS_REGION: 320000}),
    (40, {RouteType.INTRA_PROVINCE: 170000, RouteType.INTRA_REGION: 205000,
          RouteType.ADJACENT_REGION: 340000, RouteType.CROSS_REGION: 420000}),
    (50, {RouteType.INTRA_PROVINCE: 210000, RouteType.INTRA_REGION: 245000,
          RouteType.ADJACENT_REGION: 420000, RouteType.CROSS_REGION: 520000}),
]  # fmt: skip

_STANDARD_OVER_50_PER_KG = {
    RouteType.INTRA_PROVINCE: 5000,
    RouteType.INTRA_REGION: 5000,
    RouteType.ADJACENT_REGION: 7000,
    RouteType.CROSS_REGION: 8000,
}

_STANDARD_MAX_KG = 300
_EXPRESS_MAX_KG = 20

_SLA_DAYS = {
    RouteType.INTRA_PROVINCE: {"STANDARD": 2, "EXPRESS": 1},
    RouteType.INTRA_REGION: {"STANDARD": 3, "EXPRESS": 2},
    RouteType.ADJACENT_REGION: {"STANDARD": 5, "EXPRESS": 3},
    RouteType.CROSS_REGION: {"STANDARD": 7, "EXPRESS": 4},
}


@dataclass(frozen=True)
class Quote:
    estimated_fee: int
    base_price: int
    extra_weight_price: int
    route_type: str
    vehicle_type: str
    sla: str
    chargeable_weight: float
    actual_weight: float
    volumetric_weight: float


# ---------------------------------------------------------------------------
# Geography helpers
# ---------------------------------------------------------------------------
def region_of(province_code: str | None, province_name: str | None = None) -> Region | None:
    """Resolve a province to its region.

    Numeric administrative codes 01-37 are in the north, 38-68 in the
    central region and 70-96 in the south. Otherwise the province name is
    matched against well-known city names.
    """
    code = (province_code or "").strip()
    if code.isdigit():
        number = int(code)
        if 1 <= number <= 37:
            return Region.NORTH
        if 38 <= number <= 68:
            return Region.CENTRAL
        if 70 <= number <= 96:
            return Region.SOUTH

    text = f"{code} {province_name or ''}".upper()
    for region, keywords in _REGION_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return region
    return None


def city_of(province_code: str | None, province_name: str | None = None) -> str:
    code = (province_code or "").strip().upper()
    name = (province_name or "").upper()
    if code in _HCM_CODES or "HCM" in name or "HO CHI MINH" in name or "HỒ CHÍ MINH" in name:
        return "HCM"
    if code in _HANOI_CODES or "HANOI" in name or "HA NOI" in name or "HÀ NỘI" in name:
        return "HANOI"
    return "OTHER"


def route_type_for(sender: dict, receiver: dict) -> RouteType:
    sender_code = (sender.get("province_code") or "").strip().upper()
    receiver_code = (receiver.get("province_code") or "").strip().upper()
    if sender_code and sender_code == receiver_code:
        return RouteType.INTRA_PROVINCE

    sender_region = region_of(sender_code, sender.get("province_name"))
    receiver_region = region_of(receiver_code, receiver.get("province_name"))
    if sender_region is None or receiver_region is None:
        return RouteType.CROSS_REGION
    if sender_region == receiver_region:
        return RouteType.INTRA_REGION
    if frozenset({sender_region, receiver_region}) in _ADJACENT_REGIONS:
        return RouteType.ADJACENT_REGION
    return RouteType.CROSS_REGION


def vehicle_type_for(weight_kg: float, volume_cm3: float) -> str:
    if weight_kg <= 30 and volume_cm3 <= 125_000:
        return "MOTORBIKE"
    if weight_kg <= 500:
        return "VAN"
    return "TRUCK"


# ---------------------------------------------------------------------------
# Fee rules
# ---------------------------------------------------------------------------
def standard_fee(route: RouteType, weight_kg: float) -> tuple[int, int, int]:
    """Return ``(fee, base_price, extra_weight_price)`` for a STANDARD parcel."""
    if weight_kg > _STANDARD_MAX_KG:
        raise ValidationError({"weight": [f"STANDARD service accepts at most {_STANDARD_MAX_KG} kg"]})

    if weight_kg < 20:
        base = _STANDARD_BASE[route]
        extra = 0
        if weight_kg > 3:
            extra = math.ceil((weight_kg - 3) / 0.5) * _STANDARD_EXTRA_PER_HALF_KG[route]
        return base + extra, base, extra

    for upper, fees in _STANDARD_BANDS:
        if weight_kg <= upper:
            return fees[route], fees[route], 0

    top = _STANDARD_BANDS[-1][1][route]
    fee = top + round(weight_kg - 50) * _STANDARD_OVER_50_PER_KG[route]
    return fee, fee, 0


def express_fee(origin_city: str, destination_city: str, weight_kg: float, volume_cm3: float) -> int:
    if weight_kg > _EXPRESS_MAX_KG or origin_city != destination_city or origin_city not in ("HCM", "HANOI"):
        raise ValidationError(
            {"service_type": ["EXPRESS service is only available for intra-city HCM or Hanoi with weight <= 20kg"]}
        )

    if volume_cm3 < 9600:
        band = 0
    elif volume_cm3 < 100_000:
        band = 1
    else:
        band = 2
    return (50000, 60000, 70000)[band] if weight_kg <= 5 else (60000, 70000, 80000)[band]


def item_volume_cm3(item: dict, service_type: str) -> float:
    if service_type == "EXPRESS":
        length, width, height = EXPRESS_SIZE_DIMENSIONS.get(item.get("express_size") or "M", (0, 0, 0))
    else:
        length, width, height = item.get("length_cm") or 0, item.get("width_cm") or 0, item.get("height_cm") or 0
    return float(length) * float(width) * float(height) * max(int(item.get("quantity") or 1), 1)


def quote(payload: dict) -> Quote:
    """Price an intake payload (see ``ShipmentIntake.to_payload``)."""
    service_type = payload.get("service_type", "STANDARD")
    sender = payload.get("sender") or {}
    receiver = payload.get("receiver") or {}
    items = payload.get("items") or []

    actual_weight = sum((item.get("weight_g") or 0) * max(int(item.get("quantity") or 1), 1) for item in items) / 1000
    volume = sum(item_volume_cm3(item, service_type) for item in items)
    volumetric_weight = volume / VOLUMETRIC_DIVISOR
    chargeable_weight = max(actual_weight, volumetric_weight)

    route = route_type_for(sender, receiver)
    if service_type == "EXPRESS":
        fee = express_fee(
            city_of(sender.get("province_code"), sender.get("province_name")),
            city_of(receiver.get("province_code"), receiver.get("province_name")),
            chargeable_weight,
            volume,
        )
        base, extra = fee, 0
    else:
        fee, base, extra = standard_fee(route, chargeable_weight)

    return Quote(
        estimated_fee=int(fee),
        base_price=int(base),
        extra_weight_price=int(extra),
        route_type=route.value,
        vehicle_type=vehicle_type_for(chargeable_weight, volume),
        sla=f"{_SLA_DAYS[route][service_type]} days",
        chargeable_weight=round(chargeable_weight, 2),
        actual_weight=round(actual_weight, 2),
        volumetric_weight=round(volumetric_weight, 2),
    )
