"""Shipment aggregate (CQRS) — the core of the courier domain.

A Shipment is created once a quoted booking has been created and confirmed
remotely. From then on staff drive it through the handling process with
checklist-gated actions.

State Machine:
    BOOKED → BRANCH_ASSIGNED → PICKUP_SCHEDULED → PICKUP_RESCHEDULED* → ON_THE_WAY_PICKUP
    ON_THE_WAY_PICKUP → {VERIFIED_ITEM | ADJUST_ITEM}
    {VERIFIED_ITEM, ADJUST_ITEM} → {CONFIRMED_PRICE | ADJUSTED_PRICE}
    {CONFIRMED_PRICE, ADJUSTED_PRICE} → {CONFIRM_PAYMENT | PENDING_PAYMENT}
    PENDING_PAYMENT → CONFIRM_PAYMENT → PICKUP_COMPLETED
    PICKUP_COMPLETED → IN_ORIGIN_WAREHOUSE → IN_TRANSIT → IN_DEST_WAREHOUSE → OUT_FOR_DELIVERY
    OUT_FOR_DELIVERY → {DELIVERED, DELIVERY_FAILED}
    DELIVERY_FAILED → RETURN_CREATED → RETURN_IN_TRANSIT → RETURNED_TO_ORIGIN → {RETURN_COMPLETED, DISPOSED}
    pickup / transit / return stages → ISSUE
    booking prelude, early pickup stages, DELIVERY_FAILED → CLOSED

Branching pairs share one action and one downstream edge set. The clean
state is reached when the positive checklist passes; otherwise the
"needs adjustment" counterpart is reached and the deviation flag is set.

Terminal: DELIVERED, RETURN_COMPLETED, DISPOSED, CLOSED. ISSUE has no
outgoing edges.
"""

import json
import math
import os
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    Date,
    DateTime,
    Float,
    HasMany,
    Integer,
    String,
    Text,
    ValueObject,
)

from courier.domain import courier
from courier.errors import InvalidTransitionError
from courier.intake.intake import ExpressSize, ServiceType
from courier.pricing.reconciliation import cash_difference, reconcile, volume_m3
from courier.shipment.events import (
    ShipmentBooked,
    ShipmentIssueReported,
    ShipmentPriceReconciled,
    ShipmentStatusChanged,
)
from courier.shipment.gates import CHECKLIST_TEMPLATES, ChecklistGate


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ShipmentStatus(Enum):
    BOOKED = "BOOKED"
    BRANCH_ASSIGNED = "BRANCH_ASSIGNED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKUP_RESCHEDULED = "PICKUP_RESCHEDULED"
    ON_THE_WAY_PICKUP = "ON_THE_WAY_PICKUP"
    VERIFIED_ITEM = "VERIFIED_ITEM"
    ADJUST_ITEM = "ADJUST_ITEM"
    CONFIRMED_PRICE = "CONFIRMED_PRICE"
    ADJUSTED_PRICE = "ADJUSTED_PRICE"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    PICKUP_COMPLETED = "PICKUP_COMPLETED"
    IN_ORIGIN_WAREHOUSE = "IN_ORIGIN_WAREHOUSE"
    IN_TRANSIT = "IN_TRANSIT"
    IN_DEST_WAREHOUSE = "IN_DEST_WAREHOUSE"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    RETURN_CREATED = "RETURN_CREATED"
    RETURN_IN_TRANSIT = "RETURN_IN_TRANSIT"
    RETURNED_TO_ORIGIN = "RETURNED_TO_ORIGIN"
    RETURN_COMPLETED = "RETURN_COMPLETED"
    DISPOSED = "DISPOSED"
    ISSUE = "ISSUE"
    CLOSED = "CLOSED"


class Action(Enum):
    ASSIGN_BRANCH = "ASSIGN_BRANCH"
    SCHEDULE_PICKUP = "SCHEDULE_PICKUP"
    RESCHEDULE_PICKUP = "RESCHEDULE_PICKUP"
    START_PICKUP = "START_PICKUP"
    CHECK_ITEM = "CHECK_ITEM"
    CHECK_PRICE = "CHECK_PRICE"
    COLLECT_PAYMENT = "COLLECT_PAYMENT"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    COMPLETE_PICKUP = "COMPLETE_PICKUP"
    CREATE_RECONCILIATION = "CREATE_RECONCILIATION"
    DISPATCH_TRANSIT = "DISPATCH_TRANSIT"
    ARRIVE_DEST_WAREHOUSE = "ARRIVE_DEST_WAREHOUSE"
    DISPATCH_DELIVERY = "DISPATCH_DELIVERY"
    DELIVER = "DELIVER"
    FAIL_DELIVERY = "FAIL_DELIVERY"
    CREATE_RETURN = "CREATE_RETURN"
    DISPATCH_RETURN = "DISPATCH_RETURN"
    ARRIVE_ORIGIN_RETURN = "ARRIVE_ORIGIN_RETURN"
    COMPLETE_RETURN = "COMPLETE_RETURN"
    DISPOSE = "DISPOSE"
    REPORT_ISSUE = "REPORT_ISSUE"
    CLOSE = "CLOSE"


class CollectionMethod(Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"


class ReconShift(Enum):
    SHIFT_1 = "SHIFT_1"
    SHIFT_2 = "SHIFT_2"


S = ShipmentStatus

_VALID_TRANSITIONS = {
    S.BOOKED: {S.BRANCH_ASSIGNED, S.CLOSED},
    S.BRANCH_ASSIGNED: {S.PICKUP_SCHEDULED, S.CLOSED},
    S.PICKUP_SCHEDULED: {S.PICKUP_RESCHEDULED, S.ON_THE_WAY_PICKUP, S.CLOSED},
    S.PICKUP_RESCHEDULED: {S.PICKUP_RESCHEDULED, S.ON_THE_WAY_PICKUP, S.CLOSED},
    S.ON_THE_WAY_PICKUP: {S.VERIFIED_ITEM, S.ADJUST_ITEM, S.ISSUE, S.CLOSED},
    S.VERIFIED_ITEM: {S.CONFIRMED_PRICE, S.ADJUSTED_PRICE, S.ISSUE, S.CLOSED},
    S.ADJUST_ITEM: {S.CONFIRMED_PRICE, S.ADJUSTED_PRICE, S.ISSUE, S.CLOSED},
    S.CONFIRMED_PRICE: {S.PENDING_PAYMENT, S.CONFIRM_PAYMENT, S.ISSUE, S.CLOSED},
    S.ADJUSTED_PRICE: {S.PENDING_PAYMENT, S.CONFIRM_PAYMENT, S.ISSUE, S.CLOSED},
    S.PENDING_PAYMENT: {S.CONFIRM_PAYMENT, S.ISSUE, S.CLOSED},
    S.CONFIRM_PAYMENT: {S.PICKUP_COMPLETED, S.ISSUE},
    S.PICKUP_COMPLETED: {S.IN_ORIGIN_WAREHOUSE, S.ISSUE},
    S.IN_ORIGIN_WAREHOUSE: {S.IN_TRANSIT, S.ISSUE},
    S.IN_TRANSIT: {S.IN_DEST_WAREHOUSE, S.ISSUE},
    S.IN_DEST_WAREHOUSE: {S.OUT_FOR_DELIVERY, S.ISSUE},
    S.OUT_FOR_DELIVERY: {S.DELIVERED, S.DELIVERY_FAILED, S.ISSUE},
    S.DELIVERY_FAILED: {S.RETURN_CREATED, S.CLOSED},
    S.RETURN_CREATED: {S.RETURN_IN_TRANSIT, S.ISSUE},
    S.RETURN_IN_TRANSIT: {S.RETURNED_TO_ORIGIN, S.ISSUE},
    S.RETURNED_TO_ORIGIN: {S.RETURN_COMPLETED, S.DISPOSED, S.ISSUE},
    S.DELIVERED: set(),  # terminal
    S.RETURN_COMPLETED: set(),  # terminal
    S.DISPOSED: set(),  # terminal
    S.CLOSED: set(),  # terminal
    S.ISSUE: set(),
}

TERMINAL_STATUSES = {S.DELIVERED, S.RETURN_COMPLETED, S.DISPOSED, S.CLOSED}

# Action -> (clean outcome, needs-adjustment outcome)
_ACTION_OUTCOMES = {
    Action.ASSIGN_BRANCH: (S.BRANCH_ASSIGNED, None),
    Action.SCHEDULE_PICKUP: (S.PICKUP_SCHEDULED, None),
    Action.RESCHEDULE_PICKUP: (S.PICKUP_RESCHEDULED, None),
    Action.START_PICKUP: (S.ON_THE_WAY_PICKUP, None),
    Action.CHECK_ITEM: (S.VERIFIED_ITEM, S.ADJUST_ITEM),
    Action.CHECK_PRICE: (S.CONFIRMED_PRICE, S.ADJUSTED_PRICE),
    Action.COLLECT_PAYMENT: (S.CONFIRM_PAYMENT, S.PENDING_PAYMENT),
    Action.CONFIRM_PAYMENT: (S.CONFIRM_PAYMENT, None),
    Action.COMPLETE_PICKUP: (S.PICKUP_COMPLETED, None),
    Action.CREATE_RECONCILIATION: (S.IN_ORIGIN_WAREHOUSE, None),
    Action.DISPATCH_TRANSIT: (S.IN_TRANSIT, None),
    Action.ARRIVE_DEST_WAREHOUSE: (S.IN_DEST_WAREHOUSE, None),
    Action.DISPATCH_DELIVERY: (S.OUT_FOR_DELIVERY, None),
    Action.DELIVER: (S.DELIVERED, None),
    Action.FAIL_DELIVERY: (S.DELIVERY_FAILED, None),
    Action.CREATE_RETURN: (S.RETURN_CREATED, None),
    Action.DISPATCH_RETURN: (S.RETURN_IN_TRANSIT, None),
    Action.ARRIVE_ORIGIN_RETURN: (S.RETURNED_TO_ORIGIN, None),
    Action.COMPLETE_RETURN: (S.RETURN_COMPLETED, None),
    Action.DISPOSE: (S.DISPOSED, None),
    Action.REPORT_ISSUE: (S.ISSUE, None),
    Action.CLOSE: (S.CLOSED, None),
}

_PRICE_ACTIONS = {Action.CHECK_ITEM, Action.CHECK_PRICE}
_PAYMENT_ACTIONS = {Action.COLLECT_PAYMENT, Action.CONFIRM_PAYMENT}


def min_pickup_lead() -> timedelta:
    return timedelta(minutes=int(os.getenv("COURIER_MIN_PICKUP_LEAD_MINUTES", "30")))


def _parse_datetime(value, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except (TypeError, ValueError):
            raise ValidationError({field: [f"{field} must be an ISO 8601 datetime"]}) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _positive(payload: dict, field: str) -> float:
    value = payload.get(field)
    if value is None or value == "":
        raise ValidationError({field: [f"{field} is required"]})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError({field: [f"{field} must be a number"]}) from None
    if not math.isfinite(number) or number <= 0:
        raise ValidationError({field: [f"{field} must be greater than 0"]})
    return number


def _non_negative(payload: dict, field: str) -> float:
    try:
        number = float(payload.get(field))
    except (TypeError, ValueError):
        raise ValidationError({field: [f"{field} must be a number"]}) from None
    if not math.isfinite(number) or number < 0:
        raise ValidationError({field: [f"{field} must not be negative"]})
    return number


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@courier.value_object(part_of="Shipment")
class Party:
    """Sender or receiver contact and address."""

    name = String(required=True, max_length=200)
    phone = String(required=True, max_length=20)
    address_detail = String(required=True, max_length=500)
    province_code = String(max_length=20)
    province_name = String(max_length=100)
    ward_code = String(max_length=20)
    ward_name = String(max_length=100)


@courier.value_object(part_of="Shipment")
class PricingBreakdown:
    """Immutable pricing snapshot taken at quote time."""

    estimated_fee = Float(required=True, min_value=0)
    base_price = Float()
    extra_weight_price = Float()
    route_type = String(max_length=50)
    vehicle_type = String(max_length=50)
    sla = String(max_length=50)
    chargeable_weight = Float()
    actual_weight = Float()
    volumetric_weight = Float()


@courier.value_object(part_of="Shipment")
class MeasuredAttributes:
    """Parcel attributes measured at the physical check."""

    weight_g = Float()
    length_cm = Float()
    width_cm = Float()
    height_cm = Float()
    volume_m3 = Float()


@courier.value_object(part_of="Shipment")
class PaymentRecord:
    """Payment collected from the sender at pickup."""

    method = String(max_length=20, choices=CollectionMethod)
    amount = Float()
    currency = String(max_length=3, default="VND")
    collected_at = DateTime()


@courier.value_object(part_of="Shipment")
class WarehouseCheckIn:
    """Reconciliation record created when a pickup is handed in at the origin warehouse."""

    recon_shift = String(max_length=10, choices=ReconShift)
    check_in_time = DateTime()
    cash_collected = Float()
    cash_difference = Float()
    cash_status = String(max_length=10)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@courier.entity(part_of="Shipment")
class ShipmentItem:
    """One declared item in the parcel."""

    name = String(required=True, max_length=200)
    weight_g = Float(required=True, min_value=0)
    quantity = Integer(default=1, min_value=1)
    category = String(max_length=50)
    declared_value = Float(min_value=0)
    length_cm = Float()
    width_cm = Float()
    height_cm = Float()
    express_size = String(max_length=2, choices=ExpressSize)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@courier.aggregate
class Shipment:
    order_id = String(required=True, max_length=50)
    tracking_code = String(required=True, max_length=50)
    idempotency_key = String(max_length=100)
    sender = ValueObject(Party)
    receiver = ValueObject(Party)
    service_type = String(choices=ServiceType, default=ServiceType.STANDARD.value)
    items = HasMany(ShipmentItem)
    pickup_date = Date()
    pickup_slot = String(max_length=10)
    inspection_policy = String(max_length=20)
    payment_method = String(max_length=20)
    note = Text()
    status = String(choices=ShipmentStatus, default=ShipmentStatus.BOOKED.value)

    pricing = ValueObject(PricingBreakdown)
    declared_weight_g = Float()
    declared_volume_m3 = Float()
    measured = ValueObject(MeasuredAttributes)
    actual_fee = Float()
    price_difference = Float()
    fee_provisional = Boolean(default=True)
    has_deviation = Boolean(default=False)

    branch_id = String(max_length=50)
    vehicle_type = String(max_length=50)
    driver = String(max_length=100)
    pickup_window_start = DateTime()
    pickup_window_end = DateTime()
    payment = ValueObject(PaymentRecord)
    check_in = ValueObject(WarehouseCheckIn)
    issue_reason = String(max_length=500)
    closure_reason = String(max_length=500)
    stage_log = Text()  # JSON list of {action, from, to, payload, at}

    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register_booked(
        cls,
        order_id: str,
        tracking_code: str,
        intake: dict,
        pricing: dict,
        idempotency_key: str | None = None,
        declared_weight_g: float | None = None,
        declared_volume_m3: float | None = None,
    ):
        """Register a shipment whose order was created and confirmed remotely."""
        now = datetime.now(UTC)
        service_type = intake.get("service_type") or ServiceType.STANDARD.value
        shipment = cls(
            order_id=order_id,
            tracking_code=tracking_code,
            idempotency_key=idempotency_key,
            sender=Party(**intake["sender"]) if intake.get("sender") else None,
            receiver=Party(**intake["receiver"]) if intake.get("receiver") else None,
            service_type=service_type,
            pickup_date=intake.get("pickup_date"),
            pickup_slot=intake.get("pickup_slot"),
            inspection_policy=intake.get("inspection_policy"),
            payment_method=intake.get("payment_method"),
            note=intake.get("note"),
            status=ShipmentStatus.BOOKED.value,
            pricing=PricingBreakdown(**pricing),
            declared_weight_g=declared_weight_g,
            declared_volume_m3=declared_volume_m3,
            stage_log=json.dumps([]),
            created_at=now,
            updated_at=now,
        )
        for item in intake.get("items") or []:
            shipment.add_items(
                ShipmentItem(
                    name=item["name"],
                    weight_g=item["weight_g"],
                    quantity=item.get("quantity") or 1,
                    category=item.get("category"),
                    declared_value=item.get("declared_value"),
                    length_cm=item.get("length_cm") if service_type == ServiceType.STANDARD.value else None,
                    width_cm=item.get("width_cm") if service_type == ServiceType.STANDARD.value else None,
                    height_cm=item.get("height_cm") if service_type == ServiceType.STANDARD.value else None,
                    express_size=item.get("express_size") if service_type == ServiceType.EXPRESS.value else None,
                )
            )
        shipment.raise_(
            ShipmentBooked(
                shipment_id=str(shipment.id),
                order_id=order_id,
                tracking_code=tracking_code,
                service_type=service_type,
                sender_name=shipment.sender.name if shipment.sender else "",
                receiver_name=shipment.receiver.name if shipment.receiver else "",
                receiver_province=shipment.receiver.province_name if shipment.receiver else "",
                estimated_fee=shipment.pricing.estimated_fee,
                booked_at=now,
            )
        )
        return shipment

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_terminal(self) -> bool:
        return ShipmentStatus(self.status) in TERMINAL_STATUSES

    @property
    def estimated_fee(self) -> float | None:
        return self.pricing.estimated_fee if self.pricing else None

    @property
    def amount_due(self) -> float | None:
        """Fee to collect: the reconciled fee once known, else the quote."""
        return self.actual_fee if self.actual_fee is not None else self.estimated_fee

    def allowed_actions(self) -> list[Action]:
        """Actions with at least one outcome on an edge leaving the current status."""
        edges = _VALID_TRANSITIONS[ShipmentStatus(self.status)]
        return [
            action
            for action, outcomes in _ACTION_OUTCOMES.items()
            if any(outcome in edges for outcome in outcomes if outcome is not None)
        ]

    # -------------------------------------------------------------------
    # Transition planning
    # -------------------------------------------------------------------
    def plan(self, action: Action | str, gate: ChecklistGate, payload: dict | None = None) -> ShipmentStatus:
        """Decide where ``action`` leads from the current status, without mutating.

        Raises ``InvalidTransitionError`` for terminal states, missing
        edges and unsatisfied gates, and ``ValidationError`` for a bad
        stage payload.
        """
        action = self._coerce_action(action)
        current = ShipmentStatus(self.status)

        if current in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                {"status": [f"Shipment is {current.value}; no further transition is allowed"]}
            )

        edges = _VALID_TRANSITIONS[current]
        clean, adjust = _ACTION_OUTCOMES[action]
        if clean not in edges and adjust not in edges:
            raise InvalidTransitionError({"status": [f"Cannot {action.value} from {current.value}"]})

        self._assert_gate_matches(action, gate)
        target = self._resolve_outcome(action, gate, clean, adjust)

        if target not in edges:
            raise InvalidTransitionError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

        self._validate_payload(action, target, payload or {})
        return target

    @staticmethod
    def _coerce_action(action) -> Action:
        try:
            return Action(getattr(action, "value", action))
        except ValueError:
            raise ValidationError({"action": [f"Unknown action {action}"]}) from None

    @staticmethod
    def _assert_gate_matches(action: Action, gate: ChecklistGate) -> None:
        if gate is None:
            raise InvalidTransitionError({"status": [f"{action.value} requires a checklist"]})
        mode, names = CHECKLIST_TEMPLATES[action.value]
        if gate.mode != mode or tuple(gate.names) != names:
            raise ValidationError({"checklist": [f"Checklist does not match the {action.value} template"]})

    def _resolve_outcome(self, action, gate, clean, adjust) -> ShipmentStatus:
        if action == Action.CHECK_ITEM:
            return clean if gate.satisfied else adjust

        if action == Action.COLLECT_PAYMENT:
            return clean if gate.satisfied else adjust

        if not gate.satisfied:
            raise InvalidTransitionError(
                {"status": [f"Checklist for {action.value} is incomplete: {', '.join(gate.pending)}"]}
            )

        if action == Action.CHECK_PRICE and (self.has_deviation or (self.price_difference or 0) > 0):
            return adjust
        return clean

    def _validate_payload(self, action: Action, target: ShipmentStatus, payload: dict) -> None:
        if action == Action.ASSIGN_BRANCH:
            if not payload.get("branch_id"):
                raise ValidationError({"branch_id": ["branch_id is required"]})

        elif action in (Action.SCHEDULE_PICKUP, Action.RESCHEDULE_PICKUP):
            if not payload.get("pickup_window_start") or not payload.get("pickup_window_end"):
                raise ValidationError({"pickup_window": ["Pickup window start and end are required"]})
            start = _parse_datetime(payload["pickup_window_start"], "pickup_window_start")
            end = _parse_datetime(payload["pickup_window_end"], "pickup_window_end")
            if start > end:
                raise ValidationError({"pickup_window": ["Pickup window start must not be after its end"]})
            if start < datetime.now(UTC) + min_pickup_lead():
                minutes = int(min_pickup_lead().total_seconds() // 60)
                raise ValidationError(
                    {"pickup_window_start": [f"Pickup must be scheduled at least {minutes} minutes ahead"]}
                )

        elif action == Action.CHECK_ITEM and target == ShipmentStatus.ADJUST_ITEM:
            for field in ("actual_weight", "actual_length", "actual_width", "actual_height"):
                _positive(payload, field)

        elif action == Action.CHECK_ITEM:
            for field in ("actual_weight", "actual_length", "actual_width", "actual_height"):
                if payload.get(field) not in (None, ""):
                    _positive(payload, field)

        elif action in _PAYMENT_ACTIONS and target == ShipmentStatus.CONFIRM_PAYMENT:
            method = payload.get("method")
            if method not in {m.value for m in CollectionMethod}:
                raise ValidationError({"method": ["Payment method must be CASH or BANK_TRANSFER"]})
            if payload.get("amount") is not None:
                _positive(payload, "amount")

        elif action == Action.CREATE_RECONCILIATION:
            if payload.get("recon_shift") not in {shift.value for shift in ReconShift}:
                raise ValidationError({"recon_shift": ["Reconciliation shift must be SHIFT_1 or SHIFT_2"]})
            if not payload.get("check_in_time"):
                raise ValidationError({"check_in_time": ["check_in_time is required"]})
            _parse_datetime(payload["check_in_time"], "check_in_time")
            if payload.get("cash_collected") is not None:
                _non_negative(payload, "cash_collected")

    # -------------------------------------------------------------------
    # Remote payload
    # -------------------------------------------------------------------
    def status_payload(self, action: Action | str, payload: dict | None = None) -> dict:
        """Build the stage-specific body sent with the remote status update."""
        action = self._coerce_action(action)
        payload = dict(payload or {})

        if action in _PAYMENT_ACTIONS:
            return {
                "amount": payload.get("amount") if payload.get("amount") is not None else self.amount_due,
                "currency": "VND",
                "method": payload.get("method"),
                "provider": "INTERNAL",
            }
        if action == Action.CREATE_RECONCILIATION:
            return {
                "reconShift": payload.get("recon_shift"),
                "checkInTime": str(payload.get("check_in_time")),
            }
        return payload

    # -------------------------------------------------------------------
    # Transition
    # -------------------------------------------------------------------
    def perform(
        self,
        action: Action | str,
        gate: ChecklistGate,
        payload: dict | None = None,
        server_fee: float | None = None,
    ) -> ShipmentStatus:
        """Apply an acknowledged status advance.

        The transition is planned again here, so a caller that skipped
        the gate check still cannot move the shipment.
        """
        action = self._coerce_action(action)
        payload = dict(payload or {})
        target = self.plan(action, gate, payload)
        previous = ShipmentStatus(self.status)
        now = datetime.now(UTC)

        handler = getattr(self, f"_on_{action.value.lower()}", None)
        if handler is not None:
            handler(target, gate, payload, now)

        if server_fee is not None and action in _PRICE_ACTIONS:
            self._accept_server_fee(server_fee, now)

        self.status = target.value
        self.updated_at = now

        log = json.loads(self.stage_log) if self.stage_log else []
        log.append(
            {
                "action": action.value,
                "from": previous.value,
                "to": target.value,
                "checklist": gate.as_dict(),
                "payload": payload,
                "at": now.isoformat(),
            }
        )
        self.stage_log = json.dumps(log, default=str)

        self.raise_(
            ShipmentStatusChanged(
                shipment_id=str(self.id),
                order_id=self.order_id,
                action=action.value,
                from_status=previous.value,
                to_status=target.value,
                checklist=json.dumps(gate.as_dict()),
                payload=json.dumps(payload, default=str),
                has_deviation=bool(self.has_deviation),
                changed_at=now,
            )
        )
        return target

    # -------------------------------------------------------------------
    # Stage handlers
    # -------------------------------------------------------------------
    def _on_assign_branch(self, target, gate, payload, now) -> None:
        self.branch_id = str(payload["branch_id"])
        if payload.get("vehicle_type"):
            self.vehicle_type = payload["vehicle_type"]

    def _on_schedule_pickup(self, target, gate, payload, now) -> None:
        self.pickup_window_start = _parse_datetime(payload["pickup_window_start"], "pickup_window_start")
        self.pickup_window_end = _parse_datetime(payload["pickup_window_end"], "pickup_window_end")

    _on_reschedule_pickup = _on_schedule_pickup

    def _on_start_pickup(self, target, gate, payload, now) -> None:
        if payload.get("driver"):
            self.driver = payload["driver"]

    def _on_check_item(self, target, gate, payload, now) -> None:
        if target == ShipmentStatus.ADJUST_ITEM:
            self.has_deviation = True
            weight = float(payload["actual_weight"])
            dims = (
                float(payload["actual_length"]),
                float(payload["actual_width"]),
                float(payload["actual_height"]),
            )
            actual_volume = volume_m3(*dims)
        else:
            weight = float(payload["actual_weight"]) if payload.get("actual_weight") else self.declared_weight_g
            dims = (payload.get("actual_length"), payload.get("actual_width"), payload.get("actual_height"))
            actual_volume = volume_m3(*dims)
            if actual_volume is None:
                actual_volume = self.declared_volume_m3

        self.measured = MeasuredAttributes(
            weight_g=weight,
            length_cm=float(dims[0]) if dims[0] else None,
            width_cm=float(dims[1]) if dims[1] else None,
            height_cm=float(dims[2]) if dims[2] else None,
            volume_m3=actual_volume,
        )

        result = reconcile(
            estimated_fee=self.estimated_fee,
            estimated_volume=self.declared_volume_m3,
            estimated_weight=self.declared_weight_g,
            actual_volume=actual_volume,
            actual_weight=weight,
        )
        self.actual_fee = result.actual_fee
        self.price_difference = result.price_difference
        self.fee_provisional = True

        self.raise_(
            ShipmentPriceReconciled(
                shipment_id=str(self.id),
                order_id=self.order_id,
                estimated_fee=result.estimated_fee,
                actual_fee=result.actual_fee,
                price_difference=result.price_difference,
                scale=result.scale,
                provisional=True,
                reconciled_at=now,
            )
        )

    def _accept_server_fee(self, server_fee: float, now: datetime) -> None:
        """Adopt the backend's fee as authoritative, never below the quote."""
        estimated = self.estimated_fee or 0
        self.actual_fee = max(float(server_fee), estimated)
        self.price_difference = abs(self.actual_fee - estimated)
        self.fee_provisional = False
        self.raise_(
            ShipmentPriceReconciled(
                shipment_id=str(self.id),
                order_id=self.order_id,
                estimated_fee=self.estimated_fee,
                actual_fee=self.actual_fee,
                price_difference=self.price_difference,
                scale=self.actual_fee / estimated if estimated else 1.0,
                provisional=False,
                reconciled_at=now,
            )
        )

    def _on_collect_payment(self, target, gate, payload, now) -> None:
        if target == ShipmentStatus.CONFIRM_PAYMENT:
            self._record_payment(payload, now)

    def _on_confirm_payment(self, target, gate, payload, now) -> None:
        self._record_payment(payload, now)

    def _record_payment(self, payload, now) -> None:
        amount = payload.get("amount")
        self.payment = PaymentRecord(
            method=payload["method"],
            amount=float(amount) if amount is not None else self.amount_due,
            currency="VND",
            collected_at=now,
        )

    def _on_create_reconciliation(self, target, gate, payload, now) -> None:
        cash = payload.get("cash_collected")
        difference, label = (None, None)
        if cash is not None:
            difference, label = cash_difference(cash, self.amount_due)
        self.check_in = WarehouseCheckIn(
            recon_shift=payload["recon_shift"],
            check_in_time=_parse_datetime(payload["check_in_time"], "check_in_time"),
            cash_collected=float(cash) if cash is not None else None,
            cash_difference=difference,
            cash_status=label,
        )

    def _on_fail_delivery(self, target, gate, payload, now) -> None:
        ticked = [name for name, value in gate.flags if value]
        self.issue_reason = payload.get("reason") or ", ".join(ticked)

    def _on_report_issue(self, target, gate, payload, now) -> None:
        ticked = [name for name, value in gate.flags if value]
        self.issue_reason = payload.get("reason") or ", ".join(ticked)
        self.raise_(
            ShipmentIssueReported(
                shipment_id=str(self.id),
                order_id=self.order_id,
                from_status=self.status,
                problems=json.dumps(ticked),
                reason=self.issue_reason,
                reported_at=now,
            )
        )

    def _on_close(self, target, gate, payload, now) -> None:
        self.closure_reason = payload.get("reason") or ""
