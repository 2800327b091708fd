from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

import yaml
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.worksheet.worksheet import Worksheet

from fleet_billing.models import CompanyBill, CustomerBill, TransferRequirement


@dataclass
class BillingRegisterExport:
    """Write customer bills and advance transfers into an xlsx register."""

    mapping_path: Path = Path("backend/config/billing_register.yaml")

    def __post_init__(self) -> None:
        self.mapping = self._load_mapping(self.mapping_path)

    @staticmethod
    def _load_mapping(mapping_path: Path) -> dict[str, Any]:
        with Path(mapping_path).open("r", encoding="utf-8") as mapping_file:
            loaded = yaml.safe_load(mapping_file)

        if not isinstance(loaded, dict):
            msg = f"Mapping file must contain a dictionary at root: {mapping_path}"
            raise ValueError(msg)

        return loaded

    def generate_export(
        self,
        bills: Sequence[CustomerBill],
        company_bills: Sequence[CompanyBill],
        output_path: Path | str,
    ) -> Path:
        workbook = Workbook()
        bills_sheet = workbook.active
        bills_sheet.title = self.mapping["workbook"]["bills_sheet"]
        transfers_sheet = workbook.create_sheet(self.mapping["workbook"]["transfers_sheet"])

        self._write_section(bills_sheet, self.mapping["bills"], [self._bill_row(bill) for bill in bills])
        self._write_section(
            transfers_sheet,
            self.mapping["transfers"],
            [
                self._transfer_row(company_bill, requirement)
                for company_bill in company_bills
                for requirement in company_bill.transfer_requirements
            ],
        )

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(output_path)

        return output_path

    def _write_section(self, sheet: Worksheet, section: dict[str, Any], rows: list[dict[str, Any]]) -> None:
        header_row = int(section["header_row"])
        columns = section["columns"]
        money_fields = set(self.mapping.get("money_fields", []))

        for layout in columns.values():
            cell = sheet[f"{layout['column']}{header_row}"]
            cell.value = layout["header"]
            cell.font = Font(bold=True)

        for offset, values in enumerate(rows, start=1):
            row = header_row + offset
            for key, layout in columns.items():
                sheet[f"{layout['column']}{row}"] = self._cell_value(values.get(key), key in money_fields)

    @staticmethod
    def _cell_value(value: Any, is_money: bool) -> Any:
        if isinstance(value, Decimal):
            return float(round(value, 2)) if is_money else float(value)
        if isinstance(value, datetime):
            return value.date().isoformat()
        return value

    @staticmethod
    def _bill_row(bill: CustomerBill) -> dict[str, Any]:
        return {
            "bill_number": bill.bill_number,
            "status": bill.status,
            "customer_name": bill.customer_name,
            "start_at": bill.start_at,
            "end_at": bill.end_at,
            "total_km_driven": bill.total_km_driven,
            "total_amount": bill.total_amount,
            "total_driver_allowance": bill.total_driver_allowance,
            "advance_amount": bill.advance_amount,
            "balance_amount": bill.balance_amount,
            "threshold_note": bill.threshold_note,
        }

    @staticmethod
    def _transfer_row(company_bill: CompanyBill, requirement: TransferRequirement) -> dict[str, Any]:
        return {
            "bill_number": company_bill.bill_number,
            "amount": requirement.amount,
            "from_account_type": requirement.from_account_type,
            "collected_by_name": requirement.collected_by_name,
            "status": requirement.status,
            "transfer_date": requirement.transfer_date,
            "cashier_name": requirement.cashier_name,
        }


def read_cells(path: Path | str, cells: list[str], sheet_name: str) -> dict[str, Any]:
    """Utility for validation/testing: read exact cell values from an exported workbook."""
    workbook = load_workbook(path, data_only=False)
    sheet = workbook[sheet_name]
    return {cell: sheet[cell].value for cell in cells}
