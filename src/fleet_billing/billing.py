"""Bill assembly: price every billable vehicle, total the bill and mirror it for accounting."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from fleet_billing.core import ZERO, ThresholdPolicy, money, resolve_rate, uses_distance
from fleet_billing.exceptions import BillingValidationError, DistanceValidationError
from fleet_billing.models import (
    AdvanceInfo,
    BillableVehicle,
    CompanyBill,
    CustomerBill,
    DistanceInput,
    VehicleBillLine,
)
from fleet_billing.transfers import derive_transfer_requirements


@dataclass(frozen=True)
class ResolvedDistance:
    km: Decimal
    method: str
    start_odometer: Optional[Decimal] = None
    end_odometer: Optional[Decimal] = None


@dataclass(frozen=True)
class BillComputation:
    lines: tuple[VehicleBillLine, ...]
    total_amount: Decimal
    total_driver_allowance: Decimal
    threshold_note: Optional[str]


def needs_distance(vehicles: Sequence[BillableVehicle]) -> bool:
    return any(uses_distance(vehicle.quote) for vehicle in vehicles)


def resolve_distance(distance: Optional[DistanceInput], required: bool) -> ResolvedDistance:
    """Turn odometer readings or a manual figure into the distance driven.

    Bills that contain no distance-priced vehicle record zero kilometres.
    """
    if not required:
        return ResolvedDistance(km=ZERO, method="manual")
    if distance is None:
        raise DistanceValidationError("Distance evidence is required for per_km and hybrid pricing.")

    if distance.method == "odometer":
        start, end = distance.start_odometer, distance.end_odometer
        if start is None or end is None:
            raise DistanceValidationError("Both start and end odometer readings are required.")
        if start < 0 or end < 0:
            raise DistanceValidationError("Odometer readings cannot be negative.")
        if end <= start:
            raise DistanceValidationError("End odometer reading must be greater than start reading.")
        return ResolvedDistance(km=end - start, method="odometer", start_odometer=start, end_odometer=end)

    if distance.method == "manual":
        if distance.manual_km is None:
            raise DistanceValidationError("A manual distance is required.")
        if distance.manual_km <= 0:
            raise DistanceValidationError("Manual distance must be greater than zero.")
        return ResolvedDistance(km=distance.manual_km, method="manual")

    raise DistanceValidationError(f"Unknown distance method: {distance.method!r}")


def price_vehicles(
    vehicles: Sequence[BillableVehicle], days: int, actual_km: Decimal, policy: ThresholdPolicy
) -> BillComputation:
    if not vehicles:
        raise BillingValidationError("No vehicle on this trip can be priced.")

    lines: list[VehicleBillLine] = []
    total_amount = money(ZERO)
    total_allowance = money(ZERO)
    bill_note: Optional[str] = None

    for vehicle in vehicles:
        resolution = resolve_rate(vehicle.quote, days, actual_km, policy)
        allowance_per_day = money(vehicle.driver_allowance_per_day or ZERO)
        allowance_total = money(allowance_per_day * days)
        lines.append(
            VehicleBillLine(
                vehicle_number=vehicle.vehicle_number,
                driver_name=vehicle.driver_name,
                driver_phone=vehicle.driver_phone,
                rate_type=vehicle.quote.rate_type,
                rate_breakdown=resolution.breakdown,
                final_amount=resolution.final_amount,
                driver_allowance_per_day=allowance_per_day,
                driver_allowance_total=allowance_total,
                threshold_note=resolution.threshold_note,
            )
        )
        total_amount += resolution.final_amount
        total_allowance += allowance_total
        # First vehicle that hit the floor explains the bill.
        if bill_note is None and resolution.threshold_note:
            bill_note = resolution.threshold_note

    return BillComputation(
        lines=tuple(lines),
        total_amount=total_amount,
        total_driver_allowance=total_allowance,
        threshold_note=bill_note,
    )


def build_customer_bill(
    *,
    bill_number: str,
    booking_id: Optional[int],
    customer_name: str,
    customer_phone: str,
    start_at: datetime,
    end_at: datetime,
    pickup: Optional[str],
    dropoff: Optional[str],
    distance: ResolvedDistance,
    computation: BillComputation,
    advance_amount: Decimal,
    threshold_note: Optional[str] = None,
    created_by: Optional[str] = None,
) -> CustomerBill:
    advance = money(advance_amount)
    return CustomerBill(
        bill_number=bill_number,
        booking_id=booking_id,
        status="draft",
        customer_name=customer_name,
        customer_phone=customer_phone,
        start_at=start_at,
        end_at=end_at,
        pickup=pickup,
        dropoff=dropoff,
        start_odometer_reading=distance.start_odometer,
        end_odometer_reading=distance.end_odometer,
        total_km_driven=distance.km,
        km_calculation_method=distance.method,
        vehicle_details=computation.lines,
        total_amount=computation.total_amount,
        total_driver_allowance=computation.total_driver_allowance,
        advance_amount=advance,
        # Driver allowance is paid to the driver directly and never reduces the balance.
        balance_amount=computation.total_amount - advance,
        threshold_note=threshold_note if threshold_note is not None else computation.threshold_note,
        created_by=created_by,
    )


def build_company_bill(customer_bill: CustomerBill, bill_number: str, advance: AdvanceInfo) -> CompanyBill:
    if customer_bill.id is None:
        raise BillingValidationError("The customer bill must be saved before its company bill.")
    return CompanyBill(
        bill_number=bill_number,
        customer_bill_id=customer_bill.id,
        booking_id=customer_bill.booking_id,
        customer_name=customer_bill.customer_name,
        customer_phone=customer_bill.customer_phone,
        start_at=customer_bill.start_at,
        end_at=customer_bill.end_at,
        pickup=customer_bill.pickup,
        dropoff=customer_bill.dropoff,
        start_odometer_reading=customer_bill.start_odometer_reading,
        end_odometer_reading=customer_bill.end_odometer_reading,
        total_km_driven=customer_bill.total_km_driven,
        km_calculation_method=customer_bill.km_calculation_method,
        vehicle_details=customer_bill.vehicle_details,
        total_amount=customer_bill.total_amount,
        total_driver_allowance=customer_bill.total_driver_allowance,
        advance_amount=customer_bill.advance_amount,
        net_amount=customer_bill.total_amount - customer_bill.total_driver_allowance - customer_bill.advance_amount,
        advance_payment_method=advance.payment_method,
        advance_account_type=advance.account_type,
        advance_account_id=advance.account_id,
        advance_collected_by=advance.collected_by,
        transfer_requirements=derive_transfer_requirements(advance),
        threshold_note=customer_bill.threshold_note,
        created_by=customer_bill.created_by,
    )
