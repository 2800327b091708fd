from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Sequence

from fleet_billing.core import utc_now
from fleet_billing.models import (
    AssignedVehicle,
    BillingTask,
    Booking,
    CompanyBill,
    CustomerBill,
    RequestedVehicle,
    Transfer,
    TransferRequirement,
    VehicleBillLine,
)


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _lines_to_json(lines: Sequence[VehicleBillLine]) -> str:
    return json.dumps([line.to_dict() for line in lines])


def _lines_from_json(raw: str) -> tuple[VehicleBillLine, ...]:
    return tuple(VehicleBillLine.from_dict(item) for item in json.loads(raw))


def _requirements_to_json(requirements: Sequence[TransferRequirement]) -> str:
    return json.dumps([requirement.to_dict() for requirement in requirements])


def _requirements_from_json(raw: Optional[str]) -> tuple[TransferRequirement, ...]:
    return tuple(TransferRequirement.from_dict(item) for item in json.loads(raw or "[]"))


class BookingRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create_car(self, vehicle_number: str, brand: str | None = None, model: str | None = None) -> int:
        cursor = self.conn.execute(
            "INSERT INTO car(vehicle_number, brand, model) VALUES (?, ?, ?)",
            (vehicle_number, brand, model),
        )
        return int(cursor.lastrowid)

    def create_booking(self, booking: Booking) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO booking(
                booking_ref, customer_name, customer_phone, start_at, end_at, pickup, dropoff, status,
                advance_amount, advance_payment_method, advance_account_type, advance_account_id,
                advance_collected_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                booking.booking_ref,
                booking.customer_name,
                booking.customer_phone,
                booking.start_at.isoformat(),
                booking.end_at.isoformat(),
                booking.pickup,
                booking.dropoff,
                booking.status,
                _normalize_value(booking.advance_amount),
                booking.advance_payment_method,
                booking.advance_account_type,
                booking.advance_account_id,
                booking.advance_collected_by,
            ),
        )
        return int(cursor.lastrowid)

    def add_requested_vehicle(self, vehicle: RequestedVehicle) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO booking_requested_vehicle(
                booking_id, brand, model, rate_type, rate_total, rate_per_day, rate_per_km,
                driver_allowance_per_day, advance_amount
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                vehicle.booking_id,
                vehicle.brand,
                vehicle.model,
                vehicle.rate_type,
                _normalize_value(vehicle.rate_total),
                _normalize_value(vehicle.rate_per_day),
                _normalize_value(vehicle.rate_per_km),
                _normalize_value(vehicle.driver_allowance_per_day),
                _normalize_value(vehicle.advance_amount),
            ),
        )
        return int(cursor.lastrowid)

    def assign_vehicle(self, vehicle: AssignedVehicle) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO booking_vehicle(
                booking_id, car_id, requested_vehicle_id, driver_name, driver_phone,
                rate_type, rate_total, rate_per_day, rate_per_km
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                vehicle.booking_id,
                vehicle.car_id,
                vehicle.requested_vehicle_id,
                vehicle.driver_name,
                vehicle.driver_phone,
                vehicle.rate_type,
                _normalize_value(vehicle.rate_total),
                _normalize_value(vehicle.rate_per_day),
                _normalize_value(vehicle.rate_per_km),
            ),
        )
        return int(cursor.lastrowid)

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        row = self.conn.execute("SELECT * FROM booking WHERE id = ?", (booking_id,)).fetchone()
        if row is None:
            return None
        requested = self.conn.execute(
            "SELECT * FROM booking_requested_vehicle WHERE booking_id = ? ORDER BY id", (booking_id,)
        ).fetchall()
        assigned = self.conn.execute(
            "SELECT * FROM booking_vehicle WHERE booking_id = ? ORDER BY id", (booking_id,)
        ).fetchall()
        car_numbers = self._vehicle_numbers([a["car_id"] for a in assigned if a["car_id"] is not None])

        return Booking(
            id=row["id"],
            booking_ref=row["booking_ref"],
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            start_at=datetime.fromisoformat(row["start_at"]),
            end_at=datetime.fromisoformat(row["end_at"]),
            status=row["status"],
            pickup=row["pickup"],
            dropoff=row["dropoff"],
            advance_amount=_decimal(row["advance_amount"]),
            advance_payment_method=row["advance_payment_method"],
            advance_account_type=row["advance_account_type"],
            advance_account_id=row["advance_account_id"],
            advance_collected_by=row["advance_collected_by"],
            start_odometer_reading=_decimal(row["start_odometer_reading"]),
            end_odometer_reading=_decimal(row["end_odometer_reading"]),
            requested_vehicles=tuple(
                RequestedVehicle(
                    id=r["id"],
                    booking_id=r["booking_id"],
                    brand=r["brand"],
                    model=r["model"],
                    rate_type=r["rate_type"],
                    rate_total=_decimal(r["rate_total"]),
                    rate_per_day=_decimal(r["rate_per_day"]),
                    rate_per_km=_decimal(r["rate_per_km"]),
                    driver_allowance_per_day=_decimal(r["driver_allowance_per_day"]),
                    advance_amount=_decimal(r["advance_amount"]),
                )
                for r in requested
            ),
            assigned_vehicles=tuple(
                AssignedVehicle(
                    id=a["id"],
                    booking_id=a["booking_id"],
                    car_id=a["car_id"],
                    vehicle_number=car_numbers.get(a["car_id"]),
                    requested_vehicle_id=a["requested_vehicle_id"],
                    driver_name=a["driver_name"],
                    driver_phone=a["driver_phone"],
                    rate_type=a["rate_type"],
                    rate_total=_decimal(a["rate_total"]),
                    rate_per_day=_decimal(a["rate_per_day"]),
                    rate_per_km=_decimal(a["rate_per_km"]),
                    final_km=_decimal(a["final_km"]),
                )
                for a in assigned
            ),
        )

    def _vehicle_numbers(self, car_ids: list[int]) -> dict[int, str]:
        if not car_ids:
            return {}
        placeholders = ", ".join("?" for _ in car_ids)
        rows = self.conn.execute(
            f"SELECT id, vehicle_number FROM car WHERE id IN ({placeholders})", car_ids
        ).fetchall()
        return {row["id"]: row["vehicle_number"] for row in rows}

    def update_odometer(self, booking_id: int, start: Decimal, end: Decimal) -> None:
        self.conn.execute(
            """
            UPDATE booking
            SET start_odometer_reading = ?, end_odometer_reading = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (_normalize_value(start), _normalize_value(end), booking_id),
        )

    def update_status(self, booking_id: int, status: str) -> None:
        self.conn.execute(
            "UPDATE booking SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (status, booking_id),
        )

    def set_final_km(self, assigned_vehicle_id: int, km: Decimal) -> None:
        self.conn.execute(
            "UPDATE booking_vehicle SET final_km = ? WHERE id = ?",
            (_normalize_value(km), assigned_vehicle_id),
        )


class SystemConfigRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_value(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM system_config WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_value(self, key: str, value: str) -> None:
        self.conn.execute(
            """
            INSERT INTO system_config(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )


class BillSequenceRepository:
    """Per prefix and year counter for bill numbers.

    Must run inside a write transaction. The counter is seeded from the highest
    number already issued so numbers minted before it existed are skipped.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def next_number(self, prefix: str, year: int, width: int = 6) -> str:
        seed = self.highest_issued(prefix, year)
        self.conn.execute(
            """
            INSERT INTO bill_sequence(prefix, year, last_value) VALUES (?, ?, ?)
            ON CONFLICT(prefix, year) DO UPDATE SET last_value = MAX(bill_sequence.last_value, ?) + 1
            """,
            (prefix, year, seed + 1, seed),
        )
        row = self.conn.execute(
            "SELECT last_value FROM bill_sequence WHERE prefix = ? AND year = ?", (prefix, year)
        ).fetchone()
        return format_bill_number(prefix, year, int(row[0]), width)

    def highest_issued(self, prefix: str, year: int) -> int:
        pattern = f"{prefix}-{year}-%"
        row = self.conn.execute(
            """
            SELECT bill_number FROM bill WHERE bill_number LIKE ?
            UNION ALL
            SELECT bill_number FROM company_bill WHERE bill_number LIKE ?
            ORDER BY bill_number DESC
            LIMIT 1
            """,
            (pattern, pattern),
        ).fetchone()
        if row is None:
            return 0
        return parse_sequence(row[0])


def format_bill_number(prefix: str, year: int, sequence: int, width: int = 6) -> str:
    return f"{prefix}-{year}-{sequence:0{width}d}"


def parse_sequence(bill_number: str) -> int:
    suffix = bill_number.rsplit("-", 1)[-1]
    return int(suffix) if suffix.isdigit() else 0


class BillRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, bill: CustomerBill) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            """
            INSERT INTO bill(
                booking_id, bill_number, status, customer_name, customer_phone, start_at, end_at,
                pickup, dropoff, start_odometer_reading, end_odometer_reading, total_km_driven,
                km_calculation_method, vehicle_details, total_amount, total_driver_allowance,
                advance_amount, balance_amount, threshold_note, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                bill.booking_id,
                bill.bill_number,
                bill.status,
                bill.customer_name,
                bill.customer_phone,
                bill.start_at.isoformat(),
                bill.end_at.isoformat(),
                bill.pickup,
                bill.dropoff,
                _normalize_value(bill.start_odometer_reading),
                _normalize_value(bill.end_odometer_reading),
                _normalize_value(bill.total_km_driven),
                bill.km_calculation_method,
                _lines_to_json(bill.vehicle_details),
                _normalize_value(bill.total_amount),
                _normalize_value(bill.total_driver_allowance),
                _normalize_value(bill.advance_amount),
                _normalize_value(bill.balance_amount),
                bill.threshold_note,
                bill.created_by,
                now,
                now,
            ),
        )
        return int(cursor.lastrowid)

    def get_by_id(self, bill_id: int) -> Optional[CustomerBill]:
        row = self.conn.execute("SELECT * FROM bill WHERE id = ?", (bill_id,)).fetchone()
        return self._to_model(row) if row else None

    def list_by_booking(self, booking_id: int) -> list[CustomerBill]:
        rows = self.conn.execute(
            "SELECT * FROM bill WHERE booking_id = ? ORDER BY created_at DESC, id DESC", (booking_id,)
        ).fetchall()
        return [self._to_model(row) for row in rows]

    def list_all(self) -> list[CustomerBill]:
        rows = self.conn.execute("SELECT * FROM bill ORDER BY created_at DESC, id DESC").fetchall()
        return [self._to_model(row) for row in rows]

    def list_sent_between(self, earliest: str, latest: str) -> list[CustomerBill]:
        rows = self.conn.execute(
            """
            SELECT * FROM bill
            WHERE status = 'sent' AND sent_at >= ? AND sent_at <= ? AND payment_reminder_sent_at IS NULL
            ORDER BY sent_at
            """,
            (earliest, latest),
        ).fetchall()
        return [self._to_model(row) for row in rows]

    def update_status(self, bill_id: int, status: str, stamp_column: Optional[str], stamp: str) -> None:
        if stamp_column not in (None, "sent_at", "paid_at"):
            raise ValueError(f"Invalid bill timestamp column: {stamp_column}")
        if stamp_column is None:
            self.conn.execute(
                "UPDATE bill SET status = ?, updated_at = ? WHERE id = ?", (status, stamp, bill_id)
            )
            return
        self.conn.execute(
            f"UPDATE bill SET status = ?, {stamp_column} = ?, updated_at = ? WHERE id = ?",
            (status, stamp, stamp, bill_id),
        )

    def mark_reminder_sent(self, bill_id: int, stamp: str) -> None:
        self.conn.execute(
            "UPDATE bill SET payment_reminder_sent_at = ?, updated_at = ? WHERE id = ?",
            (stamp, stamp, bill_id),
        )

    @staticmethod
    def _to_model(row: sqlite3.Row) -> CustomerBill:
        return CustomerBill(
            id=row["id"],
            booking_id=row["booking_id"],
            bill_number=row["bill_number"],
            status=row["status"],
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            start_at=datetime.fromisoformat(row["start_at"]),
            end_at=datetime.fromisoformat(row["end_at"]),
            pickup=row["pickup"],
            dropoff=row["dropoff"],
            start_odometer_reading=_decimal(row["start_odometer_reading"]),
            end_odometer_reading=_decimal(row["end_odometer_reading"]),
            total_km_driven=Decimal(row["total_km_driven"]),
            km_calculation_method=row["km_calculation_method"],
            vehicle_details=_lines_from_json(row["vehicle_details"]),
            total_amount=Decimal(row["total_amount"]),
            total_driver_allowance=Decimal(row["total_driver_allowance"]),
            advance_amount=Decimal(row["advance_amount"]),
            balance_amount=Decimal(row["balance_amount"]),
            threshold_note=row["threshold_note"],
            created_by=row["created_by"],
            sent_at=row["sent_at"],
            paid_at=row["paid_at"],
            payment_reminder_sent_at=row["payment_reminder_sent_at"],
            created_at=row["created_at"],
        )


class CompanyBillRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, bill: CompanyBill) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            """
            INSERT INTO company_bill(
                booking_id, customer_bill_id, bill_number, customer_name, customer_phone, start_at,
                end_at, pickup, dropoff, start_odometer_reading, end_odometer_reading, total_km_driven,
                km_calculation_method, vehicle_details, total_amount, total_driver_allowance,
                advance_amount, net_amount, advance_payment_method, advance_account_type,
                advance_account_id, advance_collected_by, transfer_requirements, internal_notes,
                threshold_note, created_by, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                bill.booking_id,
                bill.customer_bill_id,
                bill.bill_number,
                bill.customer_name,
                bill.customer_phone,
                bill.start_at.isoformat(),
                bill.end_at.isoformat(),
                bill.pickup,
                bill.dropoff,
                _normalize_value(bill.start_odometer_reading),
                _normalize_value(bill.end_odometer_reading),
                _normalize_value(bill.total_km_driven),
                bill.km_calculation_method,
                _lines_to_json(bill.vehicle_details),
                _normalize_value(bill.total_amount),
                _normalize_value(bill.total_driver_allowance),
                _normalize_value(bill.advance_amount),
                _normalize_value(bill.net_amount),
                bill.advance_payment_method,
                bill.advance_account_type,
                bill.advance_account_id,
                bill.advance_collected_by,
                _requirements_to_json(bill.transfer_requirements),
                bill.internal_notes,
                bill.threshold_note,
                bill.created_by,
                now,
                now,
            ),
        )
        return int(cursor.lastrowid)

    def get_by_id(self, company_bill_id: int) -> Optional[CompanyBill]:
        row = self.conn.execute("SELECT * FROM company_bill WHERE id = ?", (company_bill_id,)).fetchone()
        return self._to_model(row) if row else None

    def get_by_customer_bill(self, customer_bill_id: int) -> Optional[CompanyBill]:
        row = self.conn.execute(
            "SELECT * FROM company_bill WHERE customer_bill_id = ?", (customer_bill_id,)
        ).fetchone()
        return self._to_model(row) if row else None

    def list_by_booking(self, booking_id: int) -> list[CompanyBill]:
        rows = self.conn.execute(
            "SELECT * FROM company_bill WHERE booking_id = ? ORDER BY created_at DESC, id DESC", (booking_id,)
        ).fetchall()
        return [self._to_model(row) for row in rows]

    def list_with_transfer_requirements(self) -> list[CompanyBill]:
        rows = self.conn.execute(
            "SELECT * FROM company_bill WHERE transfer_requirements != '[]' ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [self._to_model(row) for row in rows]

    def update_transfer_requirements(
        self, company_bill_id: int, requirements: Sequence[TransferRequirement], stamp: str
    ) -> None:
        self.conn.execute(
            "UPDATE company_bill SET transfer_requirements = ?, updated_at = ? WHERE id = ?",
            (_requirements_to_json(requirements), stamp, company_bill_id),
        )

    @staticmethod
    def _to_model(row: sqlite3.Row) -> CompanyBill:
        return CompanyBill(
            id=row["id"],
            booking_id=row["booking_id"],
            customer_bill_id=row["customer_bill_id"],
            bill_number=row["bill_number"],
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            start_at=datetime.fromisoformat(row["start_at"]),
            end_at=datetime.fromisoformat(row["end_at"]),
            pickup=row["pickup"],
            dropoff=row["dropoff"],
            start_odometer_reading=_decimal(row["start_odometer_reading"]),
            end_odometer_reading=_decimal(row["end_odometer_reading"]),
            total_km_driven=Decimal(row["total_km_driven"]),
            km_calculation_method=row["km_calculation_method"],
            vehicle_details=_lines_from_json(row["vehicle_details"]),
            total_amount=Decimal(row["total_amount"]),
            total_driver_allowance=Decimal(row["total_driver_allowance"]),
            advance_amount=Decimal(row["advance_amount"]),
            net_amount=Decimal(row["net_amount"]),
            advance_payment_method=row["advance_payment_method"],
            advance_account_type=row["advance_account_type"],
            advance_account_id=row["advance_account_id"],
            advance_collected_by=row["advance_collected_by"],
            transfer_requirements=_requirements_from_json(row["transfer_requirements"]),
            internal_notes=row["internal_notes"],
            threshold_note=row["threshold_note"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class TransferRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, transfer: Transfer) -> int:
        cursor = self.conn.execute(
            """
            INSERT INTO transfer(
                booking_id, bill_id, company_bill_id, requirement_index, amount, from_account_type,
                from_account_id, collected_by_name, status, transfer_date, cashier_name, notes,
                completed_by, completed_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transfer.booking_id,
                transfer.bill_id,
                transfer.company_bill_id,
                transfer.requirement_index,
                _normalize_value(transfer.amount),
                transfer.from_account_type,
                transfer.from_account_id,
                transfer.collected_by_name,
                transfer.status,
                transfer.transfer_date,
                transfer.cashier_name,
                transfer.notes,
                transfer.completed_by,
                transfer.completed_at,
                utc_now(),
            ),
        )
        return int(cursor.lastrowid)

    def list_completed(self, date_from: str | None = None, date_to: str | None = None) -> list[Transfer]:
        clauses = ["status = 'completed'"]
        params: list[Any] = []
        if date_from:
            clauses.append("transfer_date >= ?")
            params.append(date_from)
        if date_to:
            clauses.append("transfer_date <= ?")
            params.append(date_to)
        rows = self.conn.execute(
            f"SELECT * FROM transfer WHERE {' AND '.join(clauses)} ORDER BY transfer_date DESC, id DESC",
            params,
        ).fetchall()
        return [self._to_model(row) for row in rows]

    def get_by_id(self, transfer_id: int) -> Optional[Transfer]:
        row = self.conn.execute("SELECT * FROM transfer WHERE id = ?", (transfer_id,)).fetchone()
        return self._to_model(row) if row else None

    def list_for_company_bill(self, company_bill_id: int) -> list[Transfer]:
        rows = self.conn.execute(
            "SELECT * FROM transfer WHERE company_bill_id = ? ORDER BY id", (company_bill_id,)
        ).fetchall()
        return [self._to_model(row) for row in rows]

    @staticmethod
    def _to_model(row: sqlite3.Row) -> Transfer:
        return Transfer(
            id=row["id"],
            booking_id=row["booking_id"],
            bill_id=row["bill_id"],
            company_bill_id=row["company_bill_id"],
            requirement_index=row["requirement_index"],
            amount=Decimal(row["amount"]),
            from_account_type=row["from_account_type"],
            from_account_id=row["from_account_id"],
            collected_by_name=row["collected_by_name"],
            status=row["status"],
            transfer_date=row["transfer_date"],
            cashier_name=row["cashier_name"],
            notes=row["notes"],
            completed_by=row["completed_by"],
            completed_at=row["completed_at"],
            created_at=row["created_at"],
        )


class BillingTaskRepository:
    """Follow-up steps of a billing run that failed and can be replayed."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def create(self, kind: str, payload: dict[str, Any], error: str | None = None) -> int:
        now = utc_now()
        cursor = self.conn.execute(
            """
            INSERT INTO billing_task(kind, payload, status, attempts, last_error, created_at, updated_at)
            VALUES (?, ?, 'pending', 1, ?, ?, ?)
            """,
            (kind, json.dumps(payload), error, now, now),
        )
        return int(cursor.lastrowid)

    def list_pending(self) -> list[BillingTask]:
        rows = self.conn.execute(
            "SELECT * FROM billing_task WHERE status = 'pending' ORDER BY id"
        ).fetchall()
        return [
            BillingTask(
                id=row["id"],
                kind=row["kind"],
                payload=json.loads(row["payload"]),
                status=row["status"],
                attempts=row["attempts"],
                last_error=row["last_error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def mark_done(self, task_id: int) -> None:
        self.conn.execute(
            "UPDATE billing_task SET status = 'done', updated_at = ? WHERE id = ?", (utc_now(), task_id)
        )

    def record_failure(self, task_id: int, error: str) -> None:
        self.conn.execute(
            """
            UPDATE billing_task SET attempts = attempts + 1, last_error = ?, updated_at = ?
            WHERE id = ?
            """,
            (error, utc_now(), task_id),
        )


class AuditLogRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def append(self, event: str, entity_type: str, entity_id: int | None, details: dict[str, Any]) -> int:
        cursor = self.conn.execute(
            "INSERT INTO audit_log(event, entity_type, entity_id, details, created_at) VALUES (?, ?, ?, ?, ?)",
            (event, entity_type, entity_id, json.dumps(details, default=str), utc_now()),
        )
        return int(cursor.lastrowid)

    def list_for(self, entity_type: str, entity_id: int) -> list[sqlite3.Row]:
        return self.conn.execute(
            "SELECT * FROM audit_log WHERE entity_type = ? AND entity_id = ? ORDER BY id",
            (entity_type, entity_id),
        ).fetchall()
