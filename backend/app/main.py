from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterator, Literal, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from backend.services.excel_export import BillingRegisterExport
from fleet_billing.audit import SqliteAuditSink
from fleet_billing.config import BillingSettings, configure_logging, load_settings
from fleet_billing.core import quote_from_fields
from fleet_billing.db import connect_sqlite, open_database
from fleet_billing.exceptions import BillingValidationError, InvalidStatusTransitionError, NotFoundError
from fleet_billing.models import DistanceInput, ManualVehicle, StandaloneBillRequest
from fleet_billing.services import BillGenerationService, BillQueryService, BillStatusService, TransferService
from fleet_billing.ui import render_transfer_prompt

EXPORT_ROOT = Path("exports")
DEFAULT_DATABASE = "fleet_billing.sqlite3"

logger = logging.getLogger(__name__)


class DistancePayload(BaseModel):
    method: Literal["odometer", "manual"]
    start_odometer: Optional[Decimal] = None
    end_odometer: Optional[Decimal] = None
    manual_km: Optional[Decimal] = None

    def to_input(self) -> DistanceInput:
        return DistanceInput(
            method=self.method,
            start_odometer=self.start_odometer,
            end_odometer=self.end_odometer,
            manual_km=self.manual_km,
        )


class GenerateBillPayload(BaseModel):
    distance: Optional[DistancePayload] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_by: Optional[str] = None


class ManualVehiclePayload(BaseModel):
    vehicle_number: str
    rate_type: Literal["total", "per_day", "per_km", "hybrid"]
    rate_total: Optional[Decimal] = None
    rate_per_day: Optional[Decimal] = None
    rate_per_km: Optional[Decimal] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


class StandaloneBillPayload(BaseModel):
    customer_name: str
    customer_phone: str
    start_date: date
    end_date: date
    vehicles: list[ManualVehiclePayload] = Field(min_length=1)
    distance: Optional[DistancePayload] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    advance_amount: Decimal = Decimal("0")
    advance_payment_method: Optional[Literal["cash", "online"]] = None
    advance_account_type: Optional[Literal["company", "personal"]] = None
    advance_account_id: Optional[str] = None
    advance_collected_by: Optional[str] = None
    threshold_note: Optional[str] = None
    created_by: Optional[str] = None


class StatusPayload(BaseModel):
    status: Literal["draft", "sent", "paid"]


class CompleteTransferPayload(BaseModel):
    transfer_date: date
    cashier_name: Optional[str] = None
    notes: Optional[str] = None
    completed_by: Optional[str] = None


def _encode(value: Any) -> Any:
    return jsonable_encoder(asdict(value), custom_encoder={Decimal: str})


def create_app(
    database: str | Path | None = None,
    settings: BillingSettings | None = None,
    export_root: Path = EXPORT_ROOT,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    database = database or os.environ.get("FLEET_BILLING_DB", DEFAULT_DATABASE)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        open_database(database).close()
        logger.info("Billing database ready at %s", database)
        yield

    def get_connection() -> Iterator[sqlite3.Connection]:
        connection = connect_sqlite(database)
        try:
            yield connection
        finally:
            connection.close()

    def get_generation(connection: sqlite3.Connection = Depends(get_connection)) -> BillGenerationService:
        return BillGenerationService(connection, settings=settings, audit=SqliteAuditSink(connection))

    def get_statuses(connection: sqlite3.Connection = Depends(get_connection)) -> BillStatusService:
        return BillStatusService(connection, settings=settings, audit=SqliteAuditSink(connection))

    def get_queries(connection: sqlite3.Connection = Depends(get_connection)) -> BillQueryService:
        return BillQueryService(connection)

    def get_transfers(connection: sqlite3.Connection = Depends(get_connection)) -> TransferService:
        return TransferService(connection, settings=settings, audit=SqliteAuditSink(connection))

    app = FastAPI(title="Fleet Billing API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BillingValidationError)
    async def validation_error(_: Request, exc: BillingValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(_: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidStatusTransitionError)
    async def conflict(_: Request, exc: InvalidStatusTransitionError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    def result_payload(result) -> dict[str, Any]:
        payload = _encode(result)
        payload["transfer_prompt"] = render_transfer_prompt(result)
        return payload

    @app.post("/bookings/{booking_id}/bills", status_code=201)
    def generate_bill(
        booking_id: int,
        payload: GenerateBillPayload,
        generation: BillGenerationService = Depends(get_generation),
    ):
        result = generation.generate_bill(
            booking_id,
            distance=payload.distance.to_input() if payload.distance else None,
            start_date=payload.start_date,
            end_date=payload.end_date,
            created_by=payload.created_by,
        )
        return result_payload(result)

    @app.post("/bills/standalone", status_code=201)
    def generate_standalone_bill(
        payload: StandaloneBillPayload,
        generation: BillGenerationService = Depends(get_generation),
    ):
        vehicles = tuple(
            ManualVehicle(
                vehicle_number=vehicle.vehicle_number,
                quote=quote_from_fields(
                    vehicle.rate_type,
                    rate_total=vehicle.rate_total,
                    rate_per_day=vehicle.rate_per_day,
                    rate_per_km=vehicle.rate_per_km,
                    strict=True,
                ),
                driver_name=vehicle.driver_name,
                driver_phone=vehicle.driver_phone,
            )
            for vehicle in payload.vehicles
        )
        request = StandaloneBillRequest(
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            start_date=payload.start_date,
            end_date=payload.end_date,
            vehicles=vehicles,
            distance=payload.distance.to_input() if payload.distance else None,
            pickup=payload.pickup,
            dropoff=payload.dropoff,
            advance_amount=payload.advance_amount,
            advance_payment_method=payload.advance_payment_method,
            advance_account_type=payload.advance_account_type,
            advance_account_id=payload.advance_account_id,
            advance_collected_by=payload.advance_collected_by,
            threshold_note=payload.threshold_note,
            created_by=payload.created_by,
        )
        return result_payload(generation.generate_standalone_bill(request))

    @app.get("/bookings/{booking_id}/bills")
    def bills_for_booking(booking_id: int, queries: BillQueryService = Depends(get_queries)):
        return [_encode(bill) for bill in queries.bills_for_booking(booking_id)]

    @app.get("/bills/export.xlsx")
    def export_register(queries: BillQueryService = Depends(get_queries)):
        export_path = Path(export_root) / "billing-register.xlsx"
        bills = queries.all_bills()
        company_bills = [
            company_bill
            for company_bill in (queries.company_bill_for(bill.id) for bill in bills)
            if company_bill is not None
        ]
        BillingRegisterExport().generate_export(bills, company_bills, export_path)
        return FileResponse(
            export_path,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            filename="billing-register.xlsx",
        )

    @app.get("/bills/{bill_id}")
    def get_bill(bill_id: int, queries: BillQueryService = Depends(get_queries)):
        return _encode(queries.bill(bill_id))

    @app.patch("/bills/{bill_id}/status")
    def update_bill_status(
        bill_id: int,
        payload: StatusPayload,
        statuses: BillStatusService = Depends(get_statuses),
    ):
        return _encode(statuses.update_status(bill_id, payload.status))

    @app.post("/bills/{bill_id}/company-bill")
    def create_company_bill(bill_id: int, generation: BillGenerationService = Depends(get_generation)):
        return _encode(generation.ensure_company_bill(bill_id))

    @app.post("/billing-tasks/retry")
    def retry_billing_tasks(generation: BillGenerationService = Depends(get_generation)):
        return generation.retry_pending_tasks()

    @app.get("/company-bills/{company_bill_id}")
    def get_company_bill(company_bill_id: int, queries: BillQueryService = Depends(get_queries)):
        return _encode(queries.company_bill(company_bill_id))

    @app.get("/transfers/pending")
    def pending_transfers(transfers: TransferService = Depends(get_transfers)):
        return [_encode(pending) for pending in transfers.pending_transfers()]

    @app.get("/transfers/reminders")
    def transfers_needing_reminder(transfers: TransferService = Depends(get_transfers)):
        return [_encode(pending) for pending in transfers.transfers_needing_reminder()]

    @app.post("/company-bills/{company_bill_id}/transfers/{index}/complete")
    def complete_transfer(
        company_bill_id: int,
        index: int,
        payload: CompleteTransferPayload,
        transfers: TransferService = Depends(get_transfers),
    ):
        transfer = transfers.complete(
            company_bill_id,
            index,
            transfer_date=payload.transfer_date.isoformat(),
            cashier_name=payload.cashier_name,
            notes=payload.notes,
            completed_by=payload.completed_by,
        )
        return _encode(transfer)

    @app.post("/company-bills/{company_bill_id}/transfers/{index}/reminder")
    def mark_transfer_reminder_sent(
        company_bill_id: int,
        index: int,
        transfers: TransferService = Depends(get_transfers),
    ):
        return _encode(transfers.mark_reminder_sent(company_bill_id, index))

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
