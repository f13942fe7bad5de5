"""Price reconciliation — adjusts a quoted fee once the parcel is measured.

The quoted ``estimated_fee`` is scaled by whichever measured attribute
(volume or weight) exceeds its declaration the most. The scale never
drops below 1, so reconciliation can raise a charge but never lower it.

    volume_ratio     = actual_volume / estimated_volume   (else 1)
    weight_ratio     = actual_weight / estimated_weight   (else 1)
    scale            = max(volume_ratio, weight_ratio, 1)
    actual_fee       = round(estimated_fee * scale)
    price_difference = |actual_fee - estimated_fee|

A ratio falls back to 1 when either side is missing, non-numeric,
non-finite or not positive. An unknown ``estimated_fee`` yields an unknown
``actual_fee``.
"""

import math
from dataclasses import dataclass

_CM3_PER_M3 = 1_000_000


@dataclass(frozen=True)
class Reconciliation:
    """Outcome of reconciling declared against measured attributes."""

    estimated_fee: float | None
    actual_fee: int | None
    price_difference: float | None
    scale: float
    volume_ratio: float
    weight_ratio: float

    @property
    def adjusted(self) -> bool:
        return bool(self.price_difference)


def _as_positive_number(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def ratio(actual, estimated) -> float:
    """Return ``actual / estimated``, or 1 when either side is unusable."""
    numerator = _as_positive_number(actual)
    denominator = _as_positive_number(estimated)
    if numerator is None or denominator is None:
        return 1.0
    return numerator / denominator


def volume_m3(length, width, height) -> float | None:
    """Volume in cubic metres of a box measured in centimetres."""
    dims = [_as_positive_number(d) for d in (length, width, height)]
    if any(d is None for d in dims):
        return None
    return dims[0] * dims[1] * dims[2] / _CM3_PER_M3


def reconcile(
    estimated_fee,
    estimated_volume,
    estimated_weight,
    actual_volume,
    actual_weight,
) -> Reconciliation:
    """Recompute the charge from measured parcel attributes."""
    volume_ratio = ratio(actual_volume, estimated_volume)
    weight_ratio = ratio(actual_weight, estimated_weight)
    scale = max(volume_ratio, weight_ratio, 1.0)

    fee = None if estimated_fee is None or isinstance(estimated_fee, bool) else _to_number(estimated_fee)
    if fee is None:
        return Reconciliation(
            estimated_fee=None,
            actual_fee=None,
            price_difference=None,
            scale=scale,
            volume_ratio=volume_ratio,
            weight_ratio=weight_ratio,
        )

    actual_fee = math.floor(fee * scale + 0.5)
    return Reconciliation(
        estimated_fee=fee,
        actual_fee=actual_fee,
        price_difference=abs(actual_fee - fee),
        scale=scale,
        volume_ratio=volume_ratio,
        weight_ratio=weight_ratio,
    )


def _to_number(value) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# ---------------------------------------------------------------------------
# Cash collection
# ---------------------------------------------------------------------------
CASH_MATCHED = "Matched"
CASH_OVER = "Over"
CASH_SHORT = "Short"


def cash_difference(collected, expected) -> tuple[float, str]:
    """Compare cash handed in at check-in with the amount due."""
    diff = float(collected or 0) - float(expected or 0)
    if diff == 0:
        return 0.0, CASH_MATCHED
    return diff, CASH_OVER if diff > 0 else CASH_SHORT
