from decimal import Decimal
from pathlib import Path
import sqlite3
import tempfile
import unittest
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from backend.app import main
from backend.app.main import create_app
from backend.services.excel_export import BillingRegisterExport, read_cells
from fleet_billing.config import BillingSettings, load_settings
from fleet_billing.exceptions import ConfigurationError
from fleet_billing.models import DistanceInput
from fleet_billing.repositories import CompanyBillRepository
from fleet_billing.services import BillGenerationService, BillQueryService
from fleet_billing.ui import render_transfer_prompt

REPO_ROOT = Path(__file__).resolve().parents[1]
REGISTER_MAPPING = REPO_ROOT / "backend" / "config" / "billing_register.yaml"
ODOMETER_400 = {"method": "odometer", "start_odometer": "10000", "end_odometer": "10400"}


def test_register_export_lists_bills_and_transfers(conn, seed_booking, tmp_path):
    booking_id = seed_booking()
    result = BillGenerationService(conn).generate_bill(
        booking_id, distance=DistanceInput("odometer", Decimal("10000"), Decimal("10400"))
    )
    queries = BillQueryService(conn)

    output = BillingRegisterExport(mapping_path=REGISTER_MAPPING).generate_export(
        queries.all_bills(), [result.company_bill], tmp_path / "register.xlsx"
    )

    bills = read_cells(output, ["A1", "A2", "G2", "J2", "K2"], "Bills")
    assert bills["A1"] == "Bill Number"
    assert bills["A2"] == result.customer_bill.bill_number
    assert bills["G2"] == 6000.0
    assert bills["J2"] == 3000.0
    assert bills["K2"].startswith("Minimum KM threshold applied")

    transfers = read_cells(output, ["A2", "B2", "C2", "E2"], "Transfers")
    assert transfers == {"A2": result.company_bill.bill_number, "B2": 3000.0, "C2": "cash", "E2": "pending"}


def test_transfer_prompt_reflects_requirement(conn, seed_booking):
    pending = BillGenerationService(conn).generate_bill(
        seed_booking(), distance=DistanceInput("manual", manual_km=Decimal("700"))
    )
    none_needed = BillGenerationService(conn).generate_bill(
        seed_booking(advance_payment_method="online", advance_account_type="company"),
        distance=DistanceInput("manual", manual_km=Decimal("700")),
    )

    html = render_transfer_prompt(pending)
    assert 'class="transfer-prompt pending"' in html
    assert "collected by Ravi in cash" in html
    assert "2 day(s), 700 km" in html
    assert "No transfer needed" in render_transfer_prompt(none_needed)


class SettingsTestCase(unittest.TestCase):
    def test_missing_file_yields_defaults(self):
        self.assertEqual(load_settings("does/not/exist.yaml"), BillingSettings())

    def test_bundled_settings_load(self):
        settings = load_settings(REPO_ROOT / "backend" / "config" / "billing.yaml")

        self.assertEqual(settings.customer_bill_prefix, "PT-BILL")
        self.assertEqual(settings.default_hybrid_floor, Decimal("300"))
        self.assertEqual(settings.terminal_booking_statuses, ("completed", "cancelled"))
        self.assertEqual(settings.transfer_reminder_window_days, 5)

    def test_invalid_settings_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmp:
            listed = Path(tmp) / "list.yaml"
            listed.write_text("- 1\n- 2\n", encoding="utf-8")
            negative = Path(tmp) / "negative.yaml"
            negative.write_text("thresholds:\n  per_km_default: -10\n", encoding="utf-8")
            custom = Path(tmp) / "custom.yaml"
            custom.write_text("numbering:\n  customer_prefix: INV\n  width: 4\n", encoding="utf-8")

            with self.assertRaises(ConfigurationError):
                load_settings(listed)
            with self.assertRaises(ConfigurationError):
                load_settings(negative)
            settings = load_settings(custom)

        self.assertEqual(settings.customer_bill_prefix, "INV")
        self.assertEqual(settings.sequence_width, 4)
        self.assertEqual(settings.company_bill_prefix, "PT-CB")


def _client(db_path, **kwargs):
    return TestClient(create_app(database=db_path, settings=BillingSettings(), **kwargs))


def test_api_generates_bill_and_completes_transfer(db_path, seed_booking):
    booking_id = seed_booking()
    client = _client(db_path)

    response = client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400})
    assert response.status_code == 201
    body = response.json()
    assert body["customer_bill"]["total_amount"] == "6000.00"
    assert body["company_bill"]["net_amount"] == "2000.00"
    assert body["requires_transfer"] is True
    assert 'transfer-prompt pending' in body["transfer_prompt"]

    listed = client.get(f"/bookings/{booking_id}/bills").json()
    assert [bill["id"] for bill in listed] == [body["customer_bill"]["id"]]

    pending = client.get("/transfers/pending").json()
    assert len(pending) == 1
    company_bill_id = pending[0]["company_bill_id"]

    missing_cashier = client.post(
        f"/company-bills/{company_bill_id}/transfers/0/complete", json={"transfer_date": "2026-03-02"}
    )
    assert missing_cashier.status_code == 422

    done = client.post(
        f"/company-bills/{company_bill_id}/transfers/0/complete",
        json={"transfer_date": "2026-03-02", "cashier_name": "Meena"},
    )
    assert done.status_code == 200
    assert done.json()["status"] == "completed"
    assert client.get("/transfers/pending").json() == []

    again = client.post(
        f"/company-bills/{company_bill_id}/transfers/0/complete",
        json={"transfer_date": "2026-03-02", "cashier_name": "Meena"},
    )
    assert again.status_code == 409

    company_bill = client.get(f"/company-bills/{company_bill_id}").json()
    assert company_bill["transfer_requirements"][0]["status"] == "completed"


def test_api_status_flow_and_errors(db_path, seed_booking):
    booking_id = seed_booking()
    client = _client(db_path)
    bill_id = client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400}).json()["customer_bill"]["id"]

    assert client.patch(f"/bills/{bill_id}/status", json={"status": "sent"}).json()["status"] == "sent"
    assert client.patch(f"/bills/{bill_id}/status", json={"status": "draft"}).status_code == 409
    assert client.get(f"/bills/{bill_id}").json()["status"] == "sent"
    assert client.get("/bills/9999").status_code == 404
    assert client.post("/bookings/9999/bills", json={}).status_code == 404
    assert client.post(f"/bookings/{booking_id}/bills", json={}).status_code == 422


def test_api_each_request_gets_its_own_connection(db_path, seed_booking, monkeypatch):
    opened = []
    real_connect = main.connect_sqlite

    def tracking_connect(path):
        connection = real_connect(path)
        opened.append(connection)
        return connection

    monkeypatch.setattr(main, "connect_sqlite", tracking_connect)
    booking_id = seed_booking()
    client = _client(db_path)

    client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400})
    client.get(f"/bookings/{booking_id}/bills")

    assert len(opened) == 2
    assert opened[0] is not opened[1]
    for connection in opened:
        with pytest.raises(sqlite3.ProgrammingError):
            connection.execute("SELECT 1")


def test_api_standalone_bill_validates_manual_rates(db_path):
    payload = {
        "customer_name": "Walk-in",
        "customer_phone": "+91 90000 22222",
        "start_date": "2026-04-10",
        "end_date": "2026-04-12",
        "vehicles": [{"vehicle_number": "KA-05-MN-4321", "rate_type": "per_km"}],
        "distance": {"method": "manual", "manual_km": "800"},
    }

    with _client(db_path) as client:
        assert client.post("/bills/standalone", json=payload).status_code == 422

        payload["vehicles"][0]["rate_per_km"] = "11"
        response = client.post("/bills/standalone", json=payload)
        assert response.status_code == 201
        body = response.json()
        assert body["customer_bill"]["booking_id"] is None
        assert body["customer_bill"]["total_amount"] == "8800.00"
        assert "No transfer needed" in body["transfer_prompt"]
        assert client.get("/health").json() == {"status": "ok"}


def test_api_recovers_missing_company_bill(db_path, seed_booking):
    booking_id = seed_booking()
    client = _client(db_path)

    with mock.patch.object(CompanyBillRepository, "create", side_effect=sqlite3.OperationalError("disk I/O error")):
        body = client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400}).json()
    assert body["company_bill"] is None
    assert body["warnings"]
    bill_id = body["customer_bill"]["id"]

    created = client.post(f"/bills/{bill_id}/company-bill")
    assert created.status_code == 200
    company_bill = created.json()
    assert company_bill["customer_bill_id"] == bill_id
    assert company_bill["bill_number"].startswith("PT-CB-")
    assert company_bill["transfer_requirements"][0]["collected_by_name"] == "Ravi"

    assert client.post(f"/bills/{bill_id}/company-bill").json()["id"] == company_bill["id"]
    assert client.post("/billing-tasks/retry").json() == {"done": 0, "failed": 0}
    assert client.post("/bills/9999/company-bill").status_code == 404


def test_api_retries_queued_billing_tasks(db_path, seed_booking):
    booking_id = seed_booking()
    client = _client(db_path)

    with mock.patch.object(CompanyBillRepository, "create", side_effect=sqlite3.OperationalError("disk I/O error")):
        bill_id = client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400}).json()[
            "customer_bill"
        ]["id"]

    assert client.post("/billing-tasks/retry").json() == {"done": 1, "failed": 0}
    assert client.post("/billing-tasks/retry").json() == {"done": 0, "failed": 0}
    assert [cb["customer_bill_id"] for cb in client.get("/transfers/pending").json()] == [bill_id]


def test_api_transfer_reminders(db_path, seed_booking):
    booking_id = seed_booking()
    client = _client(db_path)
    client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400})

    due = client.get("/transfers/reminders").json()
    assert len(due) == 1
    company_bill_id = due[0]["company_bill_id"]

    marked = client.post(f"/company-bills/{company_bill_id}/transfers/0/reminder")
    assert marked.status_code == 200
    assert marked.json()["reminder_sent_at"] is not None
    assert client.get("/transfers/reminders").json() == []
    assert client.post(f"/company-bills/{company_bill_id}/transfers/5/reminder").status_code == 404


def test_api_serves_register_workbook(db_path, seed_booking, tmp_path):
    booking_id = seed_booking()
    client = _client(db_path, export_root=tmp_path / "exports")
    bill_number = client.post(f"/bookings/{booking_id}/bills", json={"distance": ODOMETER_400}).json()[
        "customer_bill"
    ]["bill_number"]

    response = client.get("/bills/export.xlsx")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/vnd.openxmlformats")
    assert read_cells(tmp_path / "exports" / "billing-register.xlsx", ["A2"], "Bills") == {"A2": bill_number}
