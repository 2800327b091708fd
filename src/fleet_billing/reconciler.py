"""Decide which vehicle records a bill covers and which price applies to each.

Resolution order for a booking:

1. assigned vehicles, each priced from its linked requested vehicle, falling
   back to the rates carried on the assigned record itself; assigned vehicles
   with neither are left off the bill;
2. when nothing is assigned, every requested vehicle, identified by brand and
   model since no physical unit exists.

Bills without a booking skip reconciliation and use the operator's manual
vehicles directly. Output order always follows the input order.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Sequence

from fleet_billing.core import quote_from_fields
from fleet_billing.models import (
    AssignedVehicle,
    BillableVehicle,
    Booking,
    ManualVehicle,
    RateQuote,
    RequestedVehicle,
)

logger = logging.getLogger(__name__)


def linked_requested_vehicle(
    assigned: AssignedVehicle, requested: Sequence[RequestedVehicle]
) -> Optional[RequestedVehicle]:
    if assigned.requested_vehicle_id is None:
        return None
    for candidate in requested:
        if candidate.id == assigned.requested_vehicle_id:
            return candidate
    return None


def requested_quote(requested: RequestedVehicle) -> RateQuote:
    return quote_from_fields(
        requested.rate_type,
        rate_total=requested.rate_total,
        rate_per_day=requested.rate_per_day,
        rate_per_km=requested.rate_per_km,
    )


def assigned_override_quote(assigned: AssignedVehicle) -> Optional[RateQuote]:
    """Quote synthesized from rates stored on the assigned record, if it has any."""
    if not assigned.rate_type:
        return None
    if not any((assigned.rate_total, assigned.rate_per_day, assigned.rate_per_km)):
        return None
    return quote_from_fields(
        assigned.rate_type,
        rate_total=assigned.rate_total,
        rate_per_day=assigned.rate_per_day,
        rate_per_km=assigned.rate_per_km,
    )


def resolve_assigned_vehicle(
    assigned: AssignedVehicle, requested: Sequence[RequestedVehicle]
) -> Optional[BillableVehicle]:
    vehicle_number = assigned.vehicle_number or "N/A"
    linked = linked_requested_vehicle(assigned, requested)
    if linked is not None:
        return BillableVehicle(
            vehicle_number=vehicle_number,
            quote=requested_quote(linked),
            driver_name=assigned.driver_name,
            driver_phone=assigned.driver_phone,
            driver_allowance_per_day=linked.driver_allowance_per_day,
            assigned_vehicle_id=assigned.id,
        )

    override = assigned_override_quote(assigned)
    if override is not None:
        return BillableVehicle(
            vehicle_number=vehicle_number,
            quote=override,
            driver_name=assigned.driver_name,
            driver_phone=assigned.driver_phone,
            assigned_vehicle_id=assigned.id,
        )

    logger.info(
        "Assigned vehicle %s on booking %s has no price source and is left off the bill",
        assigned.id,
        assigned.booking_id,
    )
    return None


def resolve_requested_vehicle(requested: RequestedVehicle) -> BillableVehicle:
    return BillableVehicle(
        vehicle_number=f"{requested.brand} {requested.model}".strip(),
        quote=requested_quote(requested),
        driver_allowance_per_day=requested.driver_allowance_per_day,
    )


def billable_vehicles_for_booking(booking: Booking) -> list[BillableVehicle]:
    if booking.assigned_vehicles:
        resolved = (
            resolve_assigned_vehicle(assigned, booking.requested_vehicles)
            for assigned in booking.assigned_vehicles
        )
        return [vehicle for vehicle in resolved if vehicle is not None]
    return [resolve_requested_vehicle(requested) for requested in booking.requested_vehicles]


def billable_vehicles_from_manual(vehicles: Sequence[ManualVehicle]) -> list[BillableVehicle]:
    return [
        BillableVehicle(
            vehicle_number=vehicle.vehicle_number.strip(),
            quote=vehicle.quote,
            driver_name=vehicle.driver_name or None,
            driver_phone=vehicle.driver_phone or None,
            driver_allowance_per_day=Decimal("0"),
        )
        for vehicle in vehicles
    ]
