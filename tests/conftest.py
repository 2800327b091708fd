import itertools
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fleet_billing.db import open_database
from fleet_billing.models import AssignedVehicle, Booking, RequestedVehicle
from fleet_billing.repositories import BookingRepository

_refs = itertools.count(1)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "billing.sqlite3"


@pytest.fixture
def conn(db_path):
    connection = open_database(db_path)
    yield connection
    connection.close()


@pytest.fixture
def seed_booking(conn):
    """Insert a two-day booking for one per-km Innova, assigned to KA-01-AB-1234."""

    def _seed(
        status="confirmed",
        advance_amount=Decimal("3000"),
        advance_payment_method="cash",
        advance_account_type=None,
        advance_collected_by="Ravi",
        rate_type="per_km",
        rate_total=None,
        rate_per_day=None,
        rate_per_km=Decimal("10"),
        driver_allowance_per_day=Decimal("500"),
        requested_advance=None,
        assign=True,
    ):
        repo = BookingRepository(conn)
        with conn:
            booking_id = repo.create_booking(
                Booking(
                    id=0,
                    booking_ref=f"BK-{next(_refs):04d}",
                    customer_name="Asha Verma",
                    customer_phone="+91 98450 00000",
                    start_at=datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc),
                    end_at=datetime(2026, 3, 3, 8, 0, tzinfo=timezone.utc),
                    status=status,
                    pickup="Bengaluru Airport",
                    dropoff="Mysuru",
                    advance_amount=advance_amount,
                    advance_payment_method=advance_payment_method,
                    advance_account_type=advance_account_type,
                    advance_collected_by=advance_collected_by,
                )
            )
            requested_id = repo.add_requested_vehicle(
                RequestedVehicle(
                    id=0,
                    booking_id=booking_id,
                    brand="Toyota",
                    model="Innova",
                    rate_type=rate_type,
                    rate_total=rate_total,
                    rate_per_day=rate_per_day,
                    rate_per_km=rate_per_km,
                    driver_allowance_per_day=driver_allowance_per_day,
                    advance_amount=requested_advance,
                )
            )
            if assign:
                car_id = repo.create_car(f"KA-01-AB-{booking_id:04d}", "Toyota", "Innova")
                repo.assign_vehicle(
                    AssignedVehicle(
                        id=0,
                        booking_id=booking_id,
                        car_id=car_id,
                        requested_vehicle_id=requested_id,
                        driver_name="Suresh",
                        driver_phone="+91 90000 11111",
                    )
                )
        return booking_id

    return _seed
