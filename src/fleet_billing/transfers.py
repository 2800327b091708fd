"""Advance-money transfer obligations and their completion rules."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Optional

from fleet_billing.exceptions import BillingValidationError, InvalidStatusTransitionError
from fleet_billing.models import AdvanceInfo, TransferRequirement

AUTO_CREATED_NOTE = "Auto-created with bill generation"


def requires_transfer(
    advance_amount: Decimal, payment_method: Optional[str], account_type: Optional[str]
) -> bool:
    """Cash, or money received on a personal account, has to reach a company account."""
    return advance_amount > 0 and (payment_method == "cash" or account_type == "personal")


def advance_info(
    amount: Decimal,
    payment_method: Optional[str] = None,
    account_type: Optional[str] = None,
    account_id: Optional[str] = None,
    collected_by: Optional[str] = None,
) -> Optional[AdvanceInfo]:
    if amount <= 0:
        return None
    return AdvanceInfo(
        amount=amount,
        payment_method=payment_method,
        account_type=account_type,
        account_id=account_id,
        collected_by=collected_by,
    )


def derive_transfer_requirements(info: Optional[AdvanceInfo]) -> tuple[TransferRequirement, ...]:
    if info is None or not requires_transfer(info.amount, info.payment_method, info.account_type):
        return ()
    return (
        TransferRequirement(
            amount=info.amount,
            from_account_type="cash" if info.payment_method == "cash" else "personal",
            from_account_id=info.account_id,
            collected_by_name=info.collected_by or "Unknown",
            status="pending",
            notes=AUTO_CREATED_NOTE,
        ),
    )


def complete_requirement(
    requirement: TransferRequirement,
    transfer_date: Optional[str],
    completed_at: str,
    cashier_name: Optional[str] = None,
    notes: Optional[str] = None,
    completed_by: Optional[str] = None,
) -> TransferRequirement:
    if requirement.status != "pending":
        raise InvalidStatusTransitionError("transfer requirement", requirement.status, "completed")
    if not transfer_date:
        raise BillingValidationError("A transfer date is required to complete a transfer.")
    cashier = (cashier_name or "").strip() or requirement.cashier_name
    if requirement.from_account_type == "cash" and not cashier:
        raise BillingValidationError("Cash transfers need the name of the cashier who received them.")
    return replace(
        requirement,
        status="completed",
        transfer_date=transfer_date,
        cashier_name=cashier,
        notes=notes or requirement.notes,
        completed_at=completed_at,
        completed_by=completed_by,
    )
