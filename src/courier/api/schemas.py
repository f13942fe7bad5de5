"""Pydantic API schemas for the Courier domain.

These are the external API contracts — separate from domain commands.
The API layer translates between these schemas and the booking flow,
the shipment workflow and domain commands.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class PartyRequest(BaseModel):
    name: str = ""
    phone: str = ""
    address_detail: str = ""
    province_code: str = ""
    province_name: str = ""
    ward_code: str = ""
    ward_name: str = ""


class IntakeItemRequest(BaseModel):
    name: str = ""
    weight_g: float = 0
    quantity: int = 1
    category: str = ""
    declared_value: float = 0
    length_cm: float | None = None
    width_cm: float | None = None
    height_cm: float | None = None
    express_size: str | None = None
    images: list[str] = Field(default_factory=list)


class IntakeRequest(BaseModel):
    service_type: str = "STANDARD"
    sender: PartyRequest = Field(default_factory=PartyRequest)
    receiver: PartyRequest = Field(default_factory=PartyRequest)
    items: list[IntakeItemRequest] = Field(default_factory=list)
    pickup_date: date | None = None
    pickup_slot: str = ""
    inspection_policy: str | None = None
    payment_method: str = ""
    note: str = ""


class RetryRequest(BaseModel):
    retry: bool = False


class AdvanceRequest(BaseModel):
    checklist: dict[str, bool] = Field(default_factory=dict)
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class PricingBreakdownResponse(BaseModel):
    base_price: float = 0
    extra_weight_price: float = 0
    route_type: str | None = None
    vehicle_type: str | None = None
    sla: str | None = None
    chargeable_weight: float | None = None
    actual_weight: float | None = None
    volumetric_weight: float | None = None


class BookingResponse(BaseModel):
    booking_id: str
    state: str
    in_flight: bool = False
    estimated_fee: float | None = None
    pricing_breakdown: PricingBreakdownResponse | None = None
    order_id: str | None = None
    tracking_code: str | None = None
    shipment_id: str | None = None


class StatusResponse(BaseModel):
    status: str


class AdvanceResponse(BaseModel):
    shipment_id: str
    status: str | None = None
    in_flight: bool = False


class ChecklistTemplateResponse(BaseModel):
    action: str
    mode: str
    items: list[str]


class ShipmentResponse(BaseModel):
    shipment_id: str
    order_id: str
    tracking_code: str
    status: str
    service_type: str
    sender_name: str | None = None
    receiver_name: str | None = None
    estimated_fee: float | None = None
    actual_fee: float | None = None
    price_difference: float | None = None
    fee_provisional: bool = True
    has_deviation: bool = False
    branch_id: str | None = None
    pickup_window_start: datetime | None = None
    pickup_window_end: datetime | None = None
    issue_reason: str | None = None
    allowed_actions: list[str] = Field(default_factory=list)


class ShipmentBoardRow(BaseModel):
    shipment_id: str
    order_id: str
    tracking_code: str
    status: str
    service_type: str | None = None
    sender_name: str | None = None
    receiver_name: str | None = None
    receiver_province: str | None = None
    estimated_fee: float | None = None
    actual_fee: float | None = None
    fee_provisional: bool = True
    has_deviation: bool = False
    last_action: str | None = None
