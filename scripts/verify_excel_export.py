from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from backend.services.excel_export import BillingRegisterExport, read_cells
from fleet_billing.db import open_database
from fleet_billing.models import DistanceInput, ManualVehicle, PerKmRate, StandaloneBillRequest, TotalRate
from fleet_billing.services import BillGenerationService, BillQueryService


def main() -> int:
    conn = open_database(":memory:")
    generation = BillGenerationService(conn)
    queries = BillQueryService(conn)

    generation.generate_standalone_bill(
        StandaloneBillRequest(
            customer_name="Asha Verma",
            customer_phone="+91 98450 00000",
            start_date=date(2026, 2, 1),
            end_date=date(2026, 2, 3),
            vehicles=(
                ManualVehicle(vehicle_number="KA-01-AB-1234", quote=PerKmRate(rate_per_km=Decimal("12"))),
                ManualVehicle(vehicle_number="KA-01-CD-5678", quote=TotalRate(rate_total=Decimal("4500"))),
            ),
            distance=DistanceInput(method="manual", manual_km=Decimal("420")),
            advance_amount=Decimal("2000"),
            advance_payment_method="cash",
            advance_collected_by="Ravi",
        )
    )

    bills = queries.all_bills()
    company_bills = [cb for cb in (queries.company_bill_for(bill.id) for bill in bills) if cb is not None]

    export = BillingRegisterExport()
    output_path = Path("artifacts/sample_billing_register.xlsx")
    export.generate_export(bills, company_bills, output_path)

    bills_sheet = export.mapping["workbook"]["bills_sheet"]
    transfers_sheet = export.mapping["workbook"]["transfers_sheet"]
    checks = {bills_sheet: ["A2", "G2", "J2"], transfers_sheet: ["A2", "B2"]}
    missing = [
        f"{sheet_name}!{cell}"
        for sheet_name, cells in checks.items()
        for cell, value in read_cells(output_path, cells, sheet_name).items()
        if value in (None, "")
    ]

    if missing:
        print("Verification failed. Missing register values in:", ", ".join(missing))
        return 1

    print(f"Verification passed. Register generated at {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
