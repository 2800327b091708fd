from __future__ import annotations

from html import escape

from .models import BillGenerationResult


def render_transfer_prompt(result: BillGenerationResult) -> str:
    bill = result.customer_bill
    period = f"{result.bill_start.date().isoformat()} to {result.bill_end.date().isoformat()}"
    summary = (
        f"<p>Bill {escape(bill.bill_number)}: {result.days} day(s), {escape(str(result.total_km))} km, "
        f"{escape(period)}.</p>"
    )
    if not result.requires_transfer or result.transfer_info is None:
        return (
            '<section class="transfer-prompt none">'
            "<h2>Advance Transfer</h2>"
            f"{summary}"
            "<p>No transfer needed ✅</p>"
            "</section>"
        )

    info = result.transfer_info
    source = "cash" if info.payment_method == "cash" else "personal account"
    return (
        '<section class="transfer-prompt pending">'
        "<h2>Advance Transfer</h2>"
        f"{summary}"
        f"<p>Advance of {escape(str(info.amount))} was collected by "
        f"{escape(info.collected_by or 'Unknown')} in {escape(source)} "
        "and must be moved to a company account.</p>"
        "</section>"
    )
