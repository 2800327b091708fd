"""Pure pricing rules: rate variants, the minimum-distance floor and day counting.

Nothing in this module performs I/O. All figures are ``Decimal``; money is
quantized to cents with ROUND_HALF_UP only at the point a figure becomes part
of a bill.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone, date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from fleet_billing.config import (
    DEFAULT_MIN_KM_PER_DAY,
    HYBRID_FLOOR_KEY,
    PER_KM_FLOOR_KEY,
)
from fleet_billing.exceptions import DateRangeValidationError, RateValidationError
from fleet_billing.models import (
    RATE_TYPES,
    Booking,
    HybridRate,
    PerDayRate,
    PerKmRate,
    RateQuote,
    TotalRate,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ISO_TS = "%Y-%m-%dT%H:%M:%S.%fZ"


@dataclass(frozen=True)
class ThresholdPolicy:
    """Minimum billable kilometres per day for distance-priced variants."""

    per_km_floor: Decimal = DEFAULT_MIN_KM_PER_DAY
    hybrid_floor: Decimal = DEFAULT_MIN_KM_PER_DAY

    @classmethod
    def from_config(
        cls,
        lookup: Callable[[str], Optional[str]],
        default_per_km: Decimal = DEFAULT_MIN_KM_PER_DAY,
        default_hybrid: Decimal = DEFAULT_MIN_KM_PER_DAY,
    ) -> "ThresholdPolicy":
        return cls(
            per_km_floor=_parse_floor(lookup(PER_KM_FLOOR_KEY), PER_KM_FLOOR_KEY, default_per_km),
            hybrid_floor=_parse_floor(lookup(HYBRID_FLOOR_KEY), HYBRID_FLOOR_KEY, default_hybrid),
        )

    def floor_per_day(self, rate_type: str) -> Decimal:
        if rate_type == "per_km":
            return self.per_km_floor
        if rate_type == "hybrid":
            return self.hybrid_floor
        return ZERO

    def floor_for(self, rate_type: str, days: int) -> Decimal:
        return self.floor_per_day(rate_type) * days


@dataclass(frozen=True)
class RateResolution:
    final_amount: Decimal
    breakdown: dict[str, Any]
    charged_km: Optional[Decimal] = None
    threshold_note: Optional[str] = None


def resolve_rate(quote: RateQuote, days: int, actual_km: Decimal, policy: ThresholdPolicy) -> RateResolution:
    """Price one vehicle. The breakdown holds only the fields of the quote's variant."""
    if isinstance(quote, TotalRate):
        final_amount = money(quote.rate_total)
        return RateResolution(
            final_amount=final_amount,
            breakdown={"rate_total": money(quote.rate_total), "final_amount": final_amount},
        )

    if isinstance(quote, PerDayRate):
        final_amount = money(quote.rate_per_day * days)
        return RateResolution(
            final_amount=final_amount,
            breakdown={
                "rate_per_day": money(quote.rate_per_day),
                "days": days,
                "base_amount": final_amount,
                "final_amount": final_amount,
            },
        )

    if isinstance(quote, (PerKmRate, HybridRate)):
        floor_per_day = policy.floor_per_day(quote.rate_type)
        minimum_km = floor_per_day * days
        charged_km = max(actual_km, minimum_km)
        km_amount = money(quote.rate_per_km * charged_km)
        note = None
        if actual_km < minimum_km:
            note = threshold_note(floor_per_day, days, actual_km)

        breakdown: dict[str, Any] = {
            "rate_per_km": money(quote.rate_per_km),
            "days": days,
            "threshold_km_per_day": floor_per_day,
            "minimum_km": minimum_km,
            "actual_km": actual_km,
            "km_charged": charged_km,
            "km_amount": km_amount,
        }
        if isinstance(quote, HybridRate):
            base_amount = money(quote.rate_per_day * days)
            breakdown["rate_per_day"] = money(quote.rate_per_day)
            breakdown["base_amount"] = base_amount
            final_amount = base_amount + km_amount
        else:
            final_amount = km_amount
        breakdown["final_amount"] = final_amount
        return RateResolution(
            final_amount=final_amount,
            breakdown=breakdown,
            charged_km=charged_km,
            threshold_note=note,
        )

    raise RateValidationError(f"Unsupported rate quote: {quote!r}")


def threshold_note(floor_per_day: Decimal, days: int, actual_km: Decimal) -> str:
    minimum_km = floor_per_day * days
    return (
        f"Minimum KM threshold applied: {fmt_number(floor_per_day)} km/day × {days} days = "
        f"{fmt_number(minimum_km)} km (Company Policy). Actual KM: {fmt_number(actual_km)} km."
    )


def quote_from_fields(
    rate_type: Optional[str],
    rate_total: Any = None,
    rate_per_day: Any = None,
    rate_per_km: Any = None,
    strict: bool = False,
) -> RateQuote:
    """Build the rate variant named by ``rate_type`` from a flat record.

    With ``strict`` every field the variant needs must be present and positive.
    Otherwise absent numbers price as zero, matching stored legacy records.
    """
    if rate_type not in RATE_TYPES:
        raise RateValidationError(f"Unknown rate type: {rate_type!r}")

    def required(name: str, value: Any) -> Decimal:
        number = to_decimal(value, name)
        if number is None:
            if strict:
                raise RateValidationError(f"{name} is required for {rate_type} pricing")
            return ZERO
        if not number.is_finite() or number < 0 or (strict and number == 0):
            raise RateValidationError(f"{name} must be positive for {rate_type} pricing, got {number}")
        return number

    if rate_type == "total":
        return TotalRate(rate_total=required("rate_total", rate_total))
    if rate_type == "per_day":
        return PerDayRate(rate_per_day=required("rate_per_day", rate_per_day))
    if rate_type == "per_km":
        return PerKmRate(rate_per_km=required("rate_per_km", rate_per_km))
    return HybridRate(
        rate_per_day=required("rate_per_day", rate_per_day),
        rate_per_km=required("rate_per_km", rate_per_km),
    )


def quote_to_fields(quote: RateQuote) -> dict[str, Any]:
    return {
        "rate_type": quote.rate_type,
        "rate_total": getattr(quote, "rate_total", None),
        "rate_per_day": getattr(quote, "rate_per_day", None),
        "rate_per_km": getattr(quote, "rate_per_km", None),
    }


def uses_distance(quote: RateQuote) -> bool:
    return isinstance(quote, (PerKmRate, HybridRate))


def day_count(start: datetime, end: datetime) -> int:
    """Whole days between two instants, partial days rounded up, never below 1."""
    if start is None or end is None:
        raise DateRangeValidationError("Bill start and end dates are required.")
    if end < start:
        raise DateRangeValidationError(f"Bill end {end.isoformat()} is before start {start.isoformat()}.")
    delta = end - start
    days = delta.days + (1 if delta.seconds or delta.microseconds else 0)
    return max(days, 1)


def noon_utc(value: date) -> datetime:
    """Anchor a date-only input at 12:00 UTC so day counts ignore the operator's timezone."""
    return datetime.combine(value, time(12, 0), tzinfo=timezone.utc)


def advance_from_booking(booking: Booking) -> Optional[Decimal]:
    if booking.advance_amount is None or booking.advance_amount == 0:
        return None
    return booking.advance_amount


def advance_from_first_requested(booking: Booking) -> Optional[Decimal]:
    # Older bookings kept the advance on the first requested vehicle.
    if not booking.requested_vehicles:
        return None
    amount = booking.requested_vehicles[0].advance_amount
    if amount is None or amount <= 0:
        return None
    return amount


def resolve_advance_amount(booking: Booking) -> Decimal:
    for source in (advance_from_booking, advance_from_first_requested):
        amount = source(booking)
        if amount is not None:
            return money(amount)
    return money(ZERO)


def money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_decimal(value: Any, name: str = "value") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise RateValidationError(f"{name} must be numeric, got {value!r}") from exc


def fmt_number(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return f"{value.normalize():f}"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_TS)


def _parse_floor(raw: Optional[str], key: str, default: Decimal) -> Decimal:
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        logger.warning("Ignoring non-numeric %s=%r, using default %s km/day", key, raw, default)
        return default
    if not value.is_finite() or value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using default %s km/day", key, raw, default)
        return default
    return value
