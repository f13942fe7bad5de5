"""Shipment intake — the status-less draft a booking is built from.

An intake lives only in memory. It has no status and no durable identity
until the booking flow quotes, creates and confirms it. The intake owns:

- item bookkeeping, where STANDARD items carry length/width/height and
  EXPRESS items carry a size class, never both;
- local field validation, which must pass before anything reaches the
  network;
- scoped image references, acquired when a photo is attached and released
  when it is detached, its item removed, or the whole draft discarded.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from protean.exceptions import ValidationError

from courier.pricing.reconciliation import volume_m3
from courier.pricing.tariff import EXPRESS_SIZE_DIMENSIONS

MAX_ITEM_WEIGHT_G = 30000
MAX_DECLARED_VALUE = 10_000_000
MAX_IMAGES_PER_ITEM = 4

_PHONE_PATTERN = re.compile(r"^(0|\+84)[0-9]{9,10}$")


class ServiceType(Enum):
    STANDARD = "STANDARD"
    EXPRESS = "EXPRESS"


class ExpressSize(Enum):
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class PickupSlot(Enum):
    MORNING = "ca1"
    AFTERNOON = "ca2"


class InspectionPolicy(Enum):
    NO_VIEW = "NO_VIEW"
    VIEW_NO_TRY = "VIEW_NO_TRY"
    VIEW_AND_TRY = "VIEW_AND_TRY"


class PaymentMethod(Enum):
    CASH = "CASH"
    TRANSFER = "TRANSFER"


PRODUCT_CATEGORIES = (
    "ELECTRONICS",
    "FASHION",
    "DOCUMENTS",
    "FOOD",
    "COSMETICS",
    "HOUSEHOLD",
    "BOOKS",
    "OTHER",
)


# ---------------------------------------------------------------------------
# Draft parts
# ---------------------------------------------------------------------------
@dataclass
class PartyDraft:
    name: str = ""
    phone: str = ""
    address_detail: str = ""
    province_code: str = ""
    province_name: str = ""
    ward_code: str = ""
    ward_name: str = ""

    def address_key(self) -> str:
        return "|".join(
            _normalize_text(part)
            for part in (
                self.address_detail,
                self.ward_name or self.ward_code,
                self.province_name or self.province_code,
            )
        )

    def has_full_address(self) -> bool:
        return bool(
            self.address_detail.strip()
            and (self.ward_name or self.ward_code).strip()
            and (self.province_name or self.province_code).strip()
        )

    def to_payload(self) -> dict:
        return {
            "name": self.name.strip(),
            "phone": self.phone.strip(),
            "address_detail": self.address_detail.strip(),
            "province_code": self.province_code,
            "province_name": self.province_name,
            "ward_code": self.ward_code,
            "ward_name": self.ward_name,
        }


@dataclass
class IntakeItem:
    name: str = ""
    weight_g: float = 0
    quantity: int = 1
    category: str = ""
    declared_value: float = 0
    length_cm: float | None = 0
    width_cm: float | None = 0
    height_cm: float | None = 0
    express_size: str | None = None
    images: list[str] = field(default_factory=list)

    @classmethod
    def blank(cls, service_type: ServiceType) -> "IntakeItem":
        item = cls()
        item.apply_service_type(service_type)
        return item

    def apply_service_type(self, service_type: ServiceType) -> None:
        """Keep only the size fields that apply to ``service_type``.

        STANDARD items get zeroed dimensions and no size class; EXPRESS
        items get no dimensions and an unselected size class.
        """
        if service_type == ServiceType.STANDARD:
            self.length_cm = 0
            self.width_cm = 0
            self.height_cm = 0
            self.express_size = None
        else:
            self.length_cm = None
            self.width_cm = None
            self.height_cm = None
            self.express_size = None

    def dimensions(self, service_type: ServiceType) -> tuple[float, float, float]:
        if service_type == ServiceType.EXPRESS:
            return EXPRESS_SIZE_DIMENSIONS.get(self.express_size or "", (0, 0, 0))
        return (self.length_cm or 0, self.width_cm or 0, self.height_cm or 0)

    def to_payload(self, service_type: ServiceType) -> dict:
        payload = {
            "name": self.name.strip(),
            "weight_g": self.weight_g,
            "quantity": self.quantity,
            "category": self.category,
            "declared_value": self.declared_value,
            "image_count": len(self.images),
        }
        if service_type == ServiceType.EXPRESS:
            payload["express_size"] = self.express_size
        else:
            payload["length_cm"] = self.length_cm
            payload["width_cm"] = self.width_cm
            payload["height_cm"] = self.height_cm
        return payload


def _normalize_text(value: str) -> str:
    return " ".join((value or "").strip().lower().split())


def _normalize_phone(value: str) -> str:
    return re.sub(r"[^0-9+]", "", value or "")


def _build(cls, data: dict | None):
    data = data or {}
    return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------
class ShipmentIntake:
    """Mutable shipment draft edited by staff before booking."""

    def __init__(
        self,
        service_type: ServiceType | str = ServiceType.STANDARD,
        release_image: Callable[[str], None] | None = None,
    ) -> None:
        self.sender = PartyDraft()
        self.receiver = PartyDraft()
        self.service_type = ServiceType(service_type)
        self.items: list[IntakeItem] = [IntakeItem.blank(self.service_type)]
        self.pickup_date: date | None = None
        self.pickup_slot: str = ""
        self.inspection_policy: str = InspectionPolicy.NO_VIEW.value
        self.payment_method: str = PaymentMethod.CASH.value
        self.note: str = ""
        self._release_image = release_image
        self.released_images: list[str] = []

    @classmethod
    def from_dict(cls, data: dict, release_image: Callable[[str], None] | None = None) -> "ShipmentIntake":
        """Build an intake from a request body shaped like ``to_payload``."""
        service_type = data.get("service_type") or ServiceType.STANDARD.value
        if service_type not in {st.value for st in ServiceType}:
            raise ValidationError({"service_type": ["Please select a service type"]})

        intake = cls(service_type=service_type, release_image=release_image)
        intake.sender = _build(PartyDraft, data.get("sender"))
        intake.receiver = _build(PartyDraft, data.get("receiver"))
        intake.items = [_build(IntakeItem, item) for item in data.get("items") or []]
        for item in intake.items:
            item.images = list(item.images or [])
            if intake.service_type == ServiceType.EXPRESS:
                item.length_cm = item.width_cm = item.height_cm = None
            else:
                item.express_size = None

        pickup_date = data.get("pickup_date")
        if isinstance(pickup_date, str) and pickup_date:
            try:
                pickup_date = date.fromisoformat(pickup_date)
            except ValueError:
                raise ValidationError({"pickup_date": ["Pickup date is invalid"]}) from None
        intake.pickup_date = pickup_date or None
        intake.pickup_slot = data.get("pickup_slot") or ""
        intake.inspection_policy = data.get("inspection_policy") or InspectionPolicy.NO_VIEW.value
        intake.payment_method = data.get("payment_method") or ""
        intake.note = data.get("note") or ""
        return intake

    # -------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------
    def add_item(self, **fields) -> IntakeItem:
        item = IntakeItem.blank(self.service_type)
        for name, value in fields.items():
            setattr(item, name, value)
        self.items.append(item)
        return item

    def remove_item(self, index: int) -> None:
        """Remove an item and release its images. The last item stays."""
        if len(self.items) <= 1:
            raise ValidationError({"products": ["At least 1 item is required"]})
        item = self._item(index)
        self._release_all(item.images)
        del self.items[index]

    def switch_service_type(self, service_type: ServiceType | str) -> None:
        new_type = ServiceType(service_type)
        if new_type == self.service_type:
            return
        self.service_type = new_type
        for item in self.items:
            item.apply_service_type(new_type)

    # -------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------
    def attach_image(self, index: int, ref: str) -> None:
        item = self._item(index)
        if len(item.images) >= MAX_IMAGES_PER_ITEM:
            raise ValidationError(
                {f"product_images_{index}": [f"At most {MAX_IMAGES_PER_ITEM} images are allowed per item"]}
            )
        item.images.append(ref)

    def detach_image(self, index: int, ref: str) -> None:
        item = self._item(index)
        if ref in item.images:
            item.images.remove(ref)
            self._release_all([ref])

    def discard(self) -> None:
        """Release every image reference the draft still holds."""
        for item in self.items:
            self._release_all(item.images)
            item.images = []

    def _release_all(self, refs: list[str]) -> None:
        for ref in list(refs):
            if self._release_image is not None:
                self._release_image(ref)
            self.released_images.append(ref)

    def _item(self, index: int) -> IntakeItem:
        if index < 0 or index >= len(self.items):
            raise ValidationError({"products": [f"No item at position {index}"]})
        return self.items[index]

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------
    def validate(self, today: date | None = None) -> None:
        """Raise ``ValidationError`` with field-keyed messages, or return."""
        errors: dict[str, list[str]] = {}

        def add(key: str, message: str) -> None:
            errors[key] = [message]

        for role, party in (("sender", self.sender), ("receiver", self.receiver)):
            label = role.capitalize()
            if not party.name.strip():
                add(f"{role}_name", f"{label} name is required")
            phone = party.phone.strip()
            if not phone:
                add(f"{role}_phone", f"{label} phone number is required")
            elif not _PHONE_PATTERN.match(phone):
                add(f"{role}_phone", "Invalid phone number")
            if not party.address_detail.strip():
                add(f"{role}_address_detail", "Detailed address is required")
            if not party.ward_code.strip():
                add(f"{role}_ward", "Ward is required")
            if not party.province_code.strip():
                add(f"{role}_province", "Province/City is required")

        sender_phone = _normalize_phone(self.sender.phone)
        if sender_phone and sender_phone == _normalize_phone(self.receiver.phone):
            add("receiver_phone", "Receiver phone number must be different from sender")
        if (
            self.sender.has_full_address()
            and self.receiver.has_full_address()
            and self.sender.address_key() == self.receiver.address_key()
        ):
            add("receiver_address_detail", "Receiver address must be different from sender")

        if not self.items:
            add("products", "Please add at least 1 item")

        for index, item in enumerate(self.items):
            self._validate_item(index, item, add)

        today = today or date.today()
        if self.pickup_date is None:
            add("pickup_date", "Pickup date is required")
        elif self.pickup_date < today:
            add("pickup_date", "Pickup date must be today or later")

        if not self.pickup_slot:
            add("pickup_slot", "Pickup slot is required")
        elif self.pickup_slot not in {slot.value for slot in PickupSlot}:
            add("pickup_slot", "Pickup slot must be ca1 or ca2")

        if self.inspection_policy not in {policy.value for policy in InspectionPolicy}:
            add("inspection_policy", "Unknown inspection policy")

        if not self.payment_method:
            add("payment_method", "Payment method is required")
        elif self.payment_method not in {method.value for method in PaymentMethod}:
            add("payment_method", "Payment method must be CASH or TRANSFER")

        if errors:
            raise ValidationError(errors)

    def _validate_item(self, index: int, item: IntakeItem, add) -> None:
        if not item.name.strip():
            add(f"product_name_{index}", "Item name is required")

        if not item.weight_g or item.weight_g <= 0:
            add(f"product_weight_{index}", "Weight must be greater than 0")
        elif item.weight_g > MAX_ITEM_WEIGHT_G:
            add(f"product_weight_{index}", f"Weight must not exceed {MAX_ITEM_WEIGHT_G // 1000} kg")

        if self.service_type == ServiceType.STANDARD:
            for dim, label in (("length", "Length"), ("width", "Width"), ("height", "Height")):
                value = getattr(item, f"{dim}_cm")
                if not value or value <= 0:
                    add(f"product_{dim}_{index}", f"{label} is required")
        elif item.express_size not in {size.value for size in ExpressSize}:
            add(f"product_size_{index}", "Please select a size")

        if not item.category:
            add(f"product_category_{index}", "Please select an item category")

        if not item.declared_value or item.declared_value <= 0:
            add(f"product_value_{index}", "Declared value must be greater than 0")
        elif item.declared_value > MAX_DECLARED_VALUE:
            add(
                f"product_value_{index}",
                "Declared value exceeds the maximum insured amount (10,000,000 VND)",
            )

        if not item.images:
            add(f"product_images_{index}", "Please upload at least 1 image for this item")

    # -------------------------------------------------------------------
    # Remote payload
    # -------------------------------------------------------------------
    def to_payload(self) -> dict:
        return {
            "sender": self.sender.to_payload(),
            "receiver": self.receiver.to_payload(),
            "service_type": self.service_type.value,
            "items": [item.to_payload(self.service_type) for item in self.items],
            "pickup_date": self.pickup_date.isoformat() if self.pickup_date else None,
            "pickup_slot": self.pickup_slot,
            "inspection_policy": self.inspection_policy,
            "payment_method": self.payment_method,
            "note": self.note,
        }

    def declared_volume_m3(self) -> float | None:
        """Total declared volume of all items, in cubic metres."""
        total = 0.0
        for item in self.items:
            volume = volume_m3(*item.dimensions(self.service_type))
            if volume is None:
                return None
            total += volume * max(item.quantity or 1, 1)
        return total or None

    def declared_weight_g(self) -> float:
        return sum((item.weight_g or 0) * max(item.quantity or 1, 1) for item in self.items)
