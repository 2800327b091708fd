from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from fleet_billing.audit import AuditEvent, AuditSink, emit
from fleet_billing.billing import (
    BillComputation,
    ResolvedDistance,
    build_company_bill,
    build_customer_bill,
    needs_distance,
    price_vehicles,
    resolve_distance,
)
from fleet_billing.config import BillingSettings
from fleet_billing.core import (
    ISO_TS,
    ThresholdPolicy,
    day_count,
    money,
    noon_utc,
    resolve_advance_amount,
)
from fleet_billing.exceptions import (
    BillingError,
    BillingValidationError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from fleet_billing.models import (
    BILL_STATUS_ORDER,
    AdvanceInfo,
    BillGenerationResult,
    Booking,
    CompanyBill,
    CustomerBill,
    DistanceInput,
    PendingTransfer,
    StandaloneBillRequest,
    Transfer,
    TransferRequirement,
)
from fleet_billing.reconciler import billable_vehicles_for_booking, billable_vehicles_from_manual
from fleet_billing.repositories import (
    BillingTaskRepository,
    BillRepository,
    BillSequenceRepository,
    BookingRepository,
    CompanyBillRepository,
    SystemConfigRepository,
    TransferRepository,
)
from fleet_billing.transfers import advance_info, complete_requirement, requires_transfer

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

CREATE_COMPANY_BILL = "create_company_bill"
WRITE_BACK_SIDE_EFFECTS = "write_back_side_effects"

COMPANY_BILL_WARNING = "Customer bill created, but company bill creation failed. It has been queued for retry."
SIDE_EFFECT_WARNING = "Bill created, but updating the booking and vehicles failed. It has been queued for retry."


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    return _as_utc(moment).strftime(ISO_TS)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class BillGenerationService:
    """Turns a booking, or operator-entered vehicles, into a customer bill and its company twin.

    The customer bill is committed on its own. Creating the company bill and
    writing derived facts back to the booking follow as separate steps; when
    one of them fails it is recorded as a billing task for
    ``retry_pending_tasks`` instead of undoing the customer bill.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: BillingSettings | None = None,
        audit: AuditSink | None = None,
        clock: Clock = _utc_clock,
    ):
        self.conn = conn
        self.settings = settings or BillingSettings()
        self.audit = audit
        self.clock = clock
        self.bookings = BookingRepository(conn)
        self.config = SystemConfigRepository(conn)
        self.bills = BillRepository(conn)
        self.company_bills = CompanyBillRepository(conn)
        self.sequences = BillSequenceRepository(conn)
        self.tasks = BillingTaskRepository(conn)

    def threshold_policy(self) -> ThresholdPolicy:
        # Read on every run: organizations may change their floors at any time.
        return ThresholdPolicy.from_config(
            self.config.get_value,
            default_per_km=self.settings.default_per_km_floor,
            default_hybrid=self.settings.default_hybrid_floor,
        )

    def generate_bill(
        self,
        booking_id: int,
        distance: Optional[DistanceInput] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        created_by: Optional[str] = None,
    ) -> BillGenerationResult:
        booking = self.bookings.get_booking(booking_id)
        if booking is None:
            raise NotFoundError("booking", booking_id)

        bill_start = noon_utc(start_date) if start_date else _as_utc(booking.start_at)
        bill_end = noon_utc(end_date) if end_date else _as_utc(booking.end_at)
        days = day_count(bill_start, bill_end)

        vehicles = billable_vehicles_for_booking(booking)
        resolved = resolve_distance(distance, needs_distance(vehicles))
        computation = price_vehicles(vehicles, days, resolved.km, self.threshold_policy())
        advance_amount = resolve_advance_amount(booking)

        terms = AdvanceInfo(
            amount=advance_amount,
            payment_method=booking.advance_payment_method,
            account_type=booking.advance_account_type,
            account_id=booking.advance_account_id,
            collected_by=booking.advance_collected_by,
        )
        return self._persist_run(
            booking=booking,
            customer_name=booking.customer_name,
            customer_phone=booking.customer_phone,
            pickup=booking.pickup,
            dropoff=booking.dropoff,
            bill_start=bill_start,
            bill_end=bill_end,
            days=days,
            distance=resolved,
            computation=computation,
            terms=terms,
            created_by=created_by,
            assigned_vehicle_ids=[v.assigned_vehicle_id for v in vehicles if v.assigned_vehicle_id is not None],
        )

    def generate_standalone_bill(self, request: StandaloneBillRequest) -> BillGenerationResult:
        """Bill a trip that never had a booking, from operator-entered vehicles."""
        if not request.customer_name.strip() or not request.customer_phone.strip():
            raise BillingValidationError("Customer name and phone are required.")
        if not request.vehicles:
            raise BillingValidationError("At least one vehicle is required.")
        for position, vehicle in enumerate(request.vehicles, start=1):
            if not vehicle.vehicle_number.strip():
                raise BillingValidationError(f"Vehicle {position}: vehicle number is required.")
        if request.advance_amount < 0:
            raise BillingValidationError("Advance amount cannot be negative.")

        bill_start = noon_utc(request.start_date)
        bill_end = noon_utc(request.end_date)
        days = day_count(bill_start, bill_end)

        vehicles = billable_vehicles_from_manual(request.vehicles)
        resolved = resolve_distance(request.distance, needs_distance(vehicles))
        computation = price_vehicles(vehicles, days, resolved.km, self.threshold_policy())

        operator_note = (request.threshold_note or "").strip() or None
        terms = AdvanceInfo(
            amount=money(request.advance_amount),
            payment_method=request.advance_payment_method,
            account_type=request.advance_account_type,
            account_id=request.advance_account_id,
            collected_by=request.advance_collected_by,
        )
        return self._persist_run(
            booking=None,
            customer_name=request.customer_name.strip(),
            customer_phone=request.customer_phone.strip(),
            pickup=(request.pickup or "").strip() or None,
            dropoff=(request.dropoff or "").strip() or None,
            bill_start=bill_start,
            bill_end=bill_end,
            days=days,
            distance=resolved,
            computation=computation,
            terms=terms,
            created_by=request.created_by,
            threshold_note=computation.threshold_note or operator_note,
        )

    def _persist_run(
        self,
        *,
        booking: Optional[Booking],
        customer_name: str,
        customer_phone: str,
        pickup: Optional[str],
        dropoff: Optional[str],
        bill_start: datetime,
        bill_end: datetime,
        days: int,
        distance: ResolvedDistance,
        computation: BillComputation,
        terms: AdvanceInfo,
        created_by: Optional[str],
        threshold_note: Optional[str] = None,
        assigned_vehicle_ids: Sequence[int] = (),
    ) -> BillGenerationResult:
        year = self.clock().year
        with self.conn:
            bill_number = self.sequences.next_number(
                self.settings.customer_bill_prefix, year, self.settings.sequence_width
            )
            bill_id = self.bills.create(
                build_customer_bill(
                    bill_number=bill_number,
                    booking_id=booking.id if booking else None,
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                    start_at=bill_start,
                    end_at=bill_end,
                    pickup=pickup,
                    dropoff=dropoff,
                    distance=distance,
                    computation=computation,
                    advance_amount=terms.amount,
                    threshold_note=threshold_note,
                    created_by=created_by,
                )
            )
        customer_bill = self.bills.get_by_id(bill_id)
        logger.info(
            "Generated bill %s for booking %s: total=%s advance=%s balance=%s",
            customer_bill.bill_number,
            customer_bill.booking_id,
            customer_bill.total_amount,
            customer_bill.advance_amount,
            customer_bill.balance_amount,
        )
        emit(
            self.audit,
            AuditEvent(
                event="bill_generated",
                entity_type="bill",
                entity_id=customer_bill.id,
                details={
                    "bill_number": customer_bill.bill_number,
                    "booking_id": customer_bill.booking_id,
                    "total_amount": str(customer_bill.total_amount),
                },
            ),
        )

        warnings: list[str] = []
        company_bill = self._create_company_bill_or_queue(customer_bill, terms)
        if company_bill is None:
            warnings.append(COMPANY_BILL_WARNING)

        if booking is not None:
            payload = {
                "booking_id": booking.id,
                "assigned_vehicle_ids": list(assigned_vehicle_ids),
                "km": str(distance.km),
                "start_odometer": None if distance.start_odometer is None else str(distance.start_odometer),
                "end_odometer": None if distance.end_odometer is None else str(distance.end_odometer),
            }
            if not self._write_back_or_queue(payload):
                warnings.append(SIDE_EFFECT_WARNING)

        return BillGenerationResult(
            customer_bill=customer_bill,
            company_bill=company_bill,
            transfer_info=advance_info(
                terms.amount, terms.payment_method, terms.account_type, terms.account_id, terms.collected_by
            ),
            days=days,
            total_km=distance.km,
            bill_start=bill_start,
            bill_end=bill_end,
            requires_transfer=requires_transfer(terms.amount, terms.payment_method, terms.account_type),
            warnings=tuple(warnings),
        )

    def create_company_bill(self, customer_bill: CustomerBill, terms: AdvanceInfo) -> CompanyBill:
        existing = self.company_bills.get_by_customer_bill(customer_bill.id)
        if existing is not None:
            return existing
        with self.conn:
            bill_number = self.sequences.next_number(
                self.settings.company_bill_prefix, self.clock().year, self.settings.sequence_width
            )
            company_bill_id = self.company_bills.create(build_company_bill(customer_bill, bill_number, terms))
        company_bill = self.company_bills.get_by_id(company_bill_id)
        logger.info(
            "Generated company bill %s for bill %s with %d transfer requirement(s)",
            company_bill.bill_number,
            customer_bill.bill_number,
            len(company_bill.transfer_requirements),
        )
        emit(
            self.audit,
            AuditEvent(
                event="company_bill_generated",
                entity_type="company_bill",
                entity_id=company_bill.id,
                details={"bill_number": company_bill.bill_number, "customer_bill_id": customer_bill.id},
            ),
        )
        return company_bill

    def apply_side_effects(self, payload: dict[str, Any]) -> None:
        """Write the billed distance and completion back onto the booking. Safe to repeat.

        Each step is committed on its own so one failing update does not hold
        back the others. Failed steps are reported together as a ``BillingError``.
        """
        booking_id = payload["booking_id"]
        km = Decimal(payload["km"])
        steps: list[tuple[str, Callable[[], None]]] = []
        if payload.get("start_odometer") is not None and payload.get("end_odometer") is not None:
            start, end = Decimal(payload["start_odometer"]), Decimal(payload["end_odometer"])
            steps.append(("odometer", lambda: self.bookings.update_odometer(booking_id, start, end)))
        for assigned_vehicle_id in payload.get("assigned_vehicle_ids", []):
            steps.append(
                (
                    f"final_km[{assigned_vehicle_id}]",
                    lambda vehicle_id=assigned_vehicle_id: self.bookings.set_final_km(vehicle_id, km),
                )
            )
        steps.append(("status", lambda: self._complete_booking(booking_id)))

        failed: list[str] = []
        for name, step in steps:
            try:
                with self.conn:
                    step()
            except sqlite3.Error as exc:
                logger.error("Write-back step %s for booking %s failed: %s", name, booking_id, exc)
                failed.append(name)
        if failed:
            raise BillingError(f"Write-back for booking {booking_id} failed at: {', '.join(failed)}")

    def _complete_booking(self, booking_id: int) -> None:
        booking = self.bookings.get_booking(booking_id)
        if booking is not None and booking.status not in self.settings.terminal_booking_statuses:
            self.bookings.update_status(booking_id, self.settings.completed_booking_status)

    def ensure_company_bill(self, bill_id: int) -> CompanyBill:
        """Create the company bill for a customer bill that has none yet."""
        customer_bill = self.bills.get_by_id(bill_id)
        if customer_bill is None:
            raise NotFoundError("bill", bill_id)
        existing = self.company_bills.get_by_customer_bill(bill_id)
        if existing is not None:
            return existing

        queued = [
            task
            for task in self.tasks.list_pending()
            if task.kind == CREATE_COMPANY_BILL and task.payload.get("customer_bill_id") == bill_id
        ]
        if queued:
            terms = AdvanceInfo.from_dict(queued[0].payload["advance"])
        else:
            terms = self._terms_for(customer_bill)
        company_bill = self.create_company_bill(customer_bill, terms)
        if queued:
            with self.conn:
                for task in queued:
                    self.tasks.mark_done(task.id)
        return company_bill

    def _terms_for(self, customer_bill: CustomerBill) -> AdvanceInfo:
        booking = self.bookings.get_booking(customer_bill.booking_id) if customer_bill.booking_id else None
        if booking is None:
            return AdvanceInfo(amount=customer_bill.advance_amount)
        return AdvanceInfo(
            amount=customer_bill.advance_amount,
            payment_method=booking.advance_payment_method,
            account_type=booking.advance_account_type,
            account_id=booking.advance_account_id,
            collected_by=booking.advance_collected_by,
        )

    def retry_pending_tasks(self) -> dict[str, int]:
        outcome = {"done": 0, "failed": 0}
        for task in self.tasks.list_pending():
            try:
                if task.kind == CREATE_COMPANY_BILL:
                    customer_bill = self.bills.get_by_id(task.payload["customer_bill_id"])
                    if customer_bill is None:
                        raise NotFoundError("bill", task.payload["customer_bill_id"])
                    self.create_company_bill(customer_bill, AdvanceInfo.from_dict(task.payload["advance"]))
                elif task.kind == WRITE_BACK_SIDE_EFFECTS:
                    self.apply_side_effects(task.payload)
                else:
                    raise BillingError(f"Unknown billing task kind: {task.kind}")
            except (sqlite3.Error, BillingError, KeyError, TypeError, ValueError, ArithmeticError) as exc:
                logger.warning("Billing task %s (%s) failed again: %s", task.id, task.kind, exc)
                with self.conn:
                    self.tasks.record_failure(task.id, str(exc))
                outcome["failed"] += 1
                continue
            with self.conn:
                self.tasks.mark_done(task.id)
            outcome["done"] += 1
        logger.info("Retried billing tasks: %d done, %d failed", outcome["done"], outcome["failed"])
        return outcome

    def _create_company_bill_or_queue(self, customer_bill: CustomerBill, terms: AdvanceInfo) -> Optional[CompanyBill]:
        try:
            return self.create_company_bill(customer_bill, terms)
        except (sqlite3.Error, BillingError) as exc:
            logger.warning(
                "Company bill for %s failed, queued for retry: %s", customer_bill.bill_number, exc, exc_info=True
            )
            self._queue(
                CREATE_COMPANY_BILL,
                {"customer_bill_id": customer_bill.id, "advance": terms.to_dict()},
                str(exc),
            )
            return None

    def _write_back_or_queue(self, payload: dict[str, Any]) -> bool:
        try:
            self.apply_side_effects(payload)
        except (sqlite3.Error, BillingError) as exc:
            logger.error(
                "Write-back for booking %s failed, queued for retry: %s", payload["booking_id"], exc, exc_info=True
            )
            self._queue(WRITE_BACK_SIDE_EFFECTS, payload, str(exc))
            return False
        return True

    def _queue(self, kind: str, payload: dict[str, Any], error: str) -> None:
        try:
            with self.conn:
                self.tasks.create(kind, payload, error)
        except sqlite3.Error:
            logger.error("Could not record %s task %r", kind, payload, exc_info=True)


class BillStatusService:
    """Moves customer bills forward through draft, sent and paid."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: BillingSettings | None = None,
        audit: AuditSink | None = None,
        clock: Clock = _utc_clock,
    ):
        self.conn = conn
        self.settings = settings or BillingSettings()
        self.audit = audit
        self.clock = clock
        self.bills = BillRepository(conn)

    def update_status(self, bill_id: int, status: str) -> CustomerBill:
        if status not in BILL_STATUS_ORDER:
            raise BillingValidationError(f"Unknown bill status: {status!r}")
        bill = self.bills.get_by_id(bill_id)
        if bill is None:
            raise NotFoundError("bill", bill_id)

        current = BILL_STATUS_ORDER.index(bill.status)
        requested = BILL_STATUS_ORDER.index(status)
        if requested == current:
            return bill
        if requested < current:
            raise InvalidStatusTransitionError("bill", bill.status, status)

        stamp_column = {"sent": "sent_at", "paid": "paid_at"}.get(status)
        with self.conn:
            self.bills.update_status(bill_id, status, stamp_column, _stamp(self.clock()))
        logger.info("Bill %s moved from %s to %s", bill.bill_number, bill.status, status)
        emit(
            self.audit,
            AuditEvent(
                event="bill_status_changed",
                entity_type="bill",
                entity_id=bill_id,
                details={"from": bill.status, "to": status},
            ),
        )
        return self.bills.get_by_id(bill_id)

    def bills_needing_reminder(self, now: Optional[datetime] = None) -> list[CustomerBill]:
        """Sent bills that have waited long enough for a payment reminder and had none yet."""
        moment = now or self.clock()
        earliest = moment - timedelta(days=self.settings.reminder_max_age_days)
        latest = moment - timedelta(days=self.settings.reminder_min_age_days)
        return self.bills.list_sent_between(_stamp(earliest), _stamp(latest))

    def mark_reminder_sent(self, bill_id: int) -> None:
        if self.bills.get_by_id(bill_id) is None:
            raise NotFoundError("bill", bill_id)
        with self.conn:
            self.bills.mark_reminder_sent(bill_id, _stamp(self.clock()))


class BillQueryService:
    def __init__(self, conn: sqlite3.Connection):
        self.bills = BillRepository(conn)
        self.company_bills = CompanyBillRepository(conn)

    def bill(self, bill_id: int) -> CustomerBill:
        bill = self.bills.get_by_id(bill_id)
        if bill is None:
            raise NotFoundError("bill", bill_id)
        return bill

    def bills_for_booking(self, booking_id: int) -> list[CustomerBill]:
        return self.bills.list_by_booking(booking_id)

    def all_bills(self) -> list[CustomerBill]:
        return self.bills.list_all()

    def company_bill(self, company_bill_id: int) -> CompanyBill:
        company_bill = self.company_bills.get_by_id(company_bill_id)
        if company_bill is None:
            raise NotFoundError("company bill", company_bill_id)
        return company_bill

    def company_bills_for_booking(self, booking_id: int) -> list[CompanyBill]:
        return self.company_bills.list_by_booking(booking_id)

    def company_bill_for(self, customer_bill_id: int) -> Optional[CompanyBill]:
        return self.company_bills.get_by_customer_bill(customer_bill_id)


class TransferService:
    """Tracks advance money that still has to reach a company account."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: BillingSettings | None = None,
        audit: AuditSink | None = None,
        clock: Clock = _utc_clock,
    ):
        self.conn = conn
        self.settings = settings or BillingSettings()
        self.audit = audit
        self.clock = clock
        self.company_bills = CompanyBillRepository(conn)
        self.transfers = TransferRepository(conn)

    def pending_transfers(self) -> list[PendingTransfer]:
        return self._pending(self.company_bills.list_with_transfer_requirements())

    def transfers_needing_reminder(self, now: Optional[datetime] = None) -> list[PendingTransfer]:
        """Pending transfers from recent company bills that have not been reminded about, oldest first."""
        moment = now or self.clock()
        earliest = _stamp(moment - timedelta(days=self.settings.transfer_reminder_window_days))
        recent = [
            company_bill
            for company_bill in self.company_bills.list_with_transfer_requirements()
            if (company_bill.created_at or "") >= earliest
        ]
        due = [pending for pending in self._pending(recent) if pending.requirement.reminder_sent_at is None]
        return sorted(due, key=lambda pending: (pending.created_at or "", pending.company_bill_id, pending.index))

    def mark_reminder_sent(self, company_bill_id: int, index: int) -> TransferRequirement:
        company_bill, requirement = self._requirement(company_bill_id, index)
        if requirement.status != "pending":
            raise InvalidStatusTransitionError("transfer requirement", requirement.status, "reminded")
        stamp = _stamp(self.clock())
        requirements = list(company_bill.transfer_requirements)
        requirements[index] = replace(requirement, reminder_sent_at=stamp)
        with self.conn:
            self.company_bills.update_transfer_requirements(company_bill.id, requirements, stamp)
        logger.info("Transfer reminder sent for company bill %s, requirement %d", company_bill.bill_number, index)
        return requirements[index]

    def _requirement(self, company_bill_id: int, index: int) -> tuple[CompanyBill, TransferRequirement]:
        company_bill = self.company_bills.get_by_id(company_bill_id)
        if company_bill is None:
            raise NotFoundError("company bill", company_bill_id)
        if not 0 <= index < len(company_bill.transfer_requirements):
            raise NotFoundError("transfer requirement", f"{company_bill_id}/{index}")
        return company_bill, company_bill.transfer_requirements[index]

    @staticmethod
    def _pending(company_bills: Sequence[CompanyBill]) -> list[PendingTransfer]:
        pending: list[PendingTransfer] = []
        for company_bill in company_bills:
            for index, requirement in enumerate(company_bill.transfer_requirements):
                if requirement.status != "pending":
                    continue
                pending.append(
                    PendingTransfer(
                        company_bill_id=company_bill.id,
                        index=index,
                        customer_bill_id=company_bill.customer_bill_id,
                        booking_id=company_bill.booking_id,
                        bill_number=company_bill.bill_number,
                        requirement=requirement,
                        created_at=company_bill.created_at,
                    )
                )
        return pending

    def complete(
        self,
        company_bill_id: int,
        index: int,
        transfer_date: Optional[str],
        cashier_name: Optional[str] = None,
        notes: Optional[str] = None,
        completed_by: Optional[str] = None,
    ) -> Transfer:
        company_bill, requirement = self._requirement(company_bill_id, index)

        completed_at = _stamp(self.clock())
        completed = complete_requirement(
            requirement,
            transfer_date=transfer_date,
            completed_at=completed_at,
            cashier_name=cashier_name,
            notes=notes,
            completed_by=completed_by,
        )
        requirements = list(company_bill.transfer_requirements)
        requirements[index] = completed

        transfer = Transfer(
            booking_id=company_bill.booking_id,
            bill_id=company_bill.customer_bill_id,
            company_bill_id=company_bill.id,
            requirement_index=index,
            amount=completed.amount,
            from_account_type=completed.from_account_type,
            from_account_id=completed.from_account_id,
            collected_by_name=completed.collected_by_name,
            status="completed",
            transfer_date=completed.transfer_date,
            cashier_name=completed.cashier_name,
            notes=completed.notes,
            completed_by=completed_by,
            completed_at=completed_at,
        )
        with self.conn:
            self.company_bills.update_transfer_requirements(company_bill.id, requirements, completed_at)
            transfer_id = self.transfers.create(transfer)

        logger.info(
            "Transfer of %s from %s completed for company bill %s",
            completed.amount,
            completed.from_account_type,
            company_bill.bill_number,
        )
        emit(
            self.audit,
            AuditEvent(
                event="transfer_completed",
                entity_type="company_bill",
                entity_id=company_bill.id,
                details={"index": index, "amount": str(completed.amount), "transfer_id": transfer_id},
            ),
        )
        return self.transfers.get_by_id(transfer_id)

    def completed_transfers(self, date_from: str | None = None, date_to: str | None = None) -> list[Transfer]:
        return self.transfers.list_completed(date_from, date_to)
