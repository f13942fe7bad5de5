"""Checklist gates — the precondition every status advance must satisfy.

A gate is an ordered set of named boolean flags plus a mode:

    ALL  satisfied when every flag is true   (an empty gate is satisfied)
    ANY  satisfied when at least one is true (an empty gate is not)

Gates are immutable values. Staff tick flags one at a time with
``with_flag`` and read ``satisfied`` to decide whether the next action may
be offered. Each staff action has a checklist template; build its gate
with ``ChecklistGate.for_action(action, **flags)``.
"""

from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ValidationError


class GateMode(Enum):
    ALL = "ALL"
    ANY = "ANY"


@dataclass(frozen=True)
class ChecklistGate:
    flags: tuple[tuple[str, bool], ...] = ()
    mode: GateMode = GateMode.ALL

    @classmethod
    def of(cls, mode: GateMode | str = GateMode.ALL, **flags: bool) -> "ChecklistGate":
        return cls(flags=tuple((name, bool(value)) for name, value in flags.items()), mode=GateMode(mode))

    @classmethod
    def for_action(cls, action, **flags: bool) -> "ChecklistGate":
        """Build the gate for a staff action from its checklist template.

        Flags that are not supplied count as unticked. Unknown flag names
        are rejected so that a typo can never pass as a ticked item.
        """
        key = getattr(action, "value", action)
        if key not in CHECKLIST_TEMPLATES:
            raise ValidationError({"action": [f"Unknown action {key}"]})
        mode, names = CHECKLIST_TEMPLATES[key]

        unknown = sorted(set(flags) - set(names))
        if unknown:
            raise ValidationError({"checklist": [f"Unknown checklist item(s) for {key}: {', '.join(unknown)}"]})

        return cls(flags=tuple((name, bool(flags.get(name, False))) for name in names), mode=mode)

    @property
    def satisfied(self) -> bool:
        values = [value for _, value in self.flags]
        if self.mode == GateMode.ALL:
            return all(values)
        return any(values)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.flags]

    @property
    def pending(self) -> list[str]:
        """Flags still unticked, in checklist order."""
        return [name for name, value in self.flags if not value]

    def with_flag(self, name: str, value: bool = True) -> "ChecklistGate":
        if name not in self.names:
            raise ValidationError({"checklist": [f"Unknown checklist item: {name}"]})
        return ChecklistGate(
            flags=tuple((n, bool(value) if n == name else v) for n, v in self.flags),
            mode=self.mode,
        )

    def as_dict(self) -> dict[str, bool]:
        return dict(self.flags)


# ---------------------------------------------------------------------------
# Checklist templates, keyed by action name
# ---------------------------------------------------------------------------
CHECKLIST_TEMPLATES: dict[str, tuple[GateMode, tuple[str, ...]]] = {
    "ASSIGN_BRANCH": (GateMode.ALL, ("branch_selected", "vehicle_available")),
    "SCHEDULE_PICKUP": (GateMode.ALL, ("pickup_window_set", "window_in_future", "sender_contacted")),
    "RESCHEDULE_PICKUP": (GateMode.ALL, ("pickup_window_set", "reschedule_requested")),
    "START_PICKUP": (GateMode.ALL, ("pickup_window_set", "driver_ready")),
    "CHECK_ITEM": (GateMode.ALL, ("dimensions_verified", "weight_verified", "image_verified")),
    "CHECK_PRICE": (GateMode.ALL, ("price_reviewed_with_sender",)),
    "COLLECT_PAYMENT": (GateMode.ALL, ("payment_method_selected", "amount_collected")),
    "CONFIRM_PAYMENT": (GateMode.ALL, ("payment_received",)),
    "COMPLETE_PICKUP": (GateMode.ALL, ("handover_photos_taken",)),
    "CREATE_RECONCILIATION": (GateMode.ALL, ("shift_selected", "check_in_time_recorded")),
    "DISPATCH_TRANSIT": (GateMode.ALL, ("cash_collected", "seal_intact", "packed", "route_labeled")),
    "ARRIVE_DEST_WAREHOUSE": (
        GateMode.ALL,
        (
            "dispatch_handover_from_origin",
            "dispatch_enough_quantity",
            "dispatch_signed",
            "arrive_handover_to_dest",
            "arrive_enough_quantity",
            "arrive_signed",
        ),
    ),
    "DISPATCH_DELIVERY": (
        GateMode.ALL,
        ("documents_collected", "received_all_packages", "seal_intact", "route_label_correct"),
    ),
    "DELIVER": (GateMode.ALL, ("delivered_order_photo", "delivery_address_photo", "receiver_name_phone_matched")),
    "FAIL_DELIVERY": (GateMode.ANY, ("could_not_contact", "wrong_address", "customer_refused", "goods_damaged")),
    "CREATE_RETURN": (GateMode.ALL, ("return_approved",)),
    "DISPATCH_RETURN": (GateMode.ALL, ("seal_intact", "packed", "route_labeled")),
    "ARRIVE_ORIGIN_RETURN": (
        GateMode.ALL,
        (
            "dispatch_received",
            "dispatch_enough_quantity",
            "dispatch_signed",
            "arrive_handed_over",
            "arrive_enough_quantity",
            "arrive_signed",
        ),
    ),
    "COMPLETE_RETURN": (GateMode.ALL, ("has_all_documents", "customer_received")),
    "DISPOSE": (GateMode.ALL, ("disposal_approved", "disposal_recorded")),
    "REPORT_ISSUE": (
        GateMode.ANY,
        (
            "vehicle_changed",
            "accident_or_delay",
            "seal_damaged",
            "wrong_address",
            "customer_refused",
            "could_not_contact",
        ),
    ),
    "CLOSE": (GateMode.ALL, ("closure_reason_recorded",)),
}
