from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar, Literal, Optional, Union

RateType = Literal["total", "per_day", "per_km", "hybrid"]
DistanceMethod = Literal["odometer", "manual"]
BillStatus = Literal["draft", "sent", "paid"]
PaymentMethod = Literal["cash", "online"]
AccountType = Literal["company", "personal"]
TransferSource = Literal["cash", "personal"]
TransferStatus = Literal["pending", "completed"]
TaskStatus = Literal["pending", "done"]

RATE_TYPES: tuple[str, ...] = ("total", "per_day", "per_km", "hybrid")
BILL_STATUS_ORDER: tuple[str, ...] = ("draft", "sent", "paid")


@dataclass(frozen=True)
class TotalRate:
    rate_total: Decimal
    rate_type: ClassVar[str] = "total"


@dataclass(frozen=True)
class PerDayRate:
    rate_per_day: Decimal
    rate_type: ClassVar[str] = "per_day"


@dataclass(frozen=True)
class PerKmRate:
    rate_per_km: Decimal
    rate_type: ClassVar[str] = "per_km"


@dataclass(frozen=True)
class HybridRate:
    rate_per_day: Decimal
    rate_per_km: Decimal
    rate_type: ClassVar[str] = "hybrid"


RateQuote = Union[TotalRate, PerDayRate, PerKmRate, HybridRate]


@dataclass(frozen=True)
class RequestedVehicle:
    """The originally quoted vehicle and its agreed pricing."""

    id: int
    booking_id: int
    brand: str
    model: str
    rate_type: str
    rate_total: Optional[Decimal] = None
    rate_per_day: Optional[Decimal] = None
    rate_per_km: Optional[Decimal] = None
    driver_allowance_per_day: Optional[Decimal] = None
    advance_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class AssignedVehicle:
    """A physical vehicle attached to a booking, optionally carrying override rates."""

    id: int
    booking_id: int
    car_id: Optional[int] = None
    vehicle_number: Optional[str] = None
    requested_vehicle_id: Optional[int] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    rate_type: Optional[str] = None
    rate_total: Optional[Decimal] = None
    rate_per_day: Optional[Decimal] = None
    rate_per_km: Optional[Decimal] = None
    final_km: Optional[Decimal] = None


@dataclass(frozen=True)
class Booking:
    id: int
    booking_ref: str
    customer_name: str
    customer_phone: str
    start_at: datetime
    end_at: datetime
    status: str
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    advance_amount: Optional[Decimal] = None
    advance_payment_method: Optional[str] = None
    advance_account_type: Optional[str] = None
    advance_account_id: Optional[str] = None
    advance_collected_by: Optional[str] = None
    start_odometer_reading: Optional[Decimal] = None
    end_odometer_reading: Optional[Decimal] = None
    requested_vehicles: tuple[RequestedVehicle, ...] = ()
    assigned_vehicles: tuple[AssignedVehicle, ...] = ()


@dataclass(frozen=True)
class ManualVehicle:
    """A vehicle typed in by the operator for a bill without a booking."""

    vehicle_number: str
    quote: RateQuote
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None


@dataclass(frozen=True)
class BillableVehicle:
    vehicle_number: str
    quote: RateQuote
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_allowance_per_day: Optional[Decimal] = None
    assigned_vehicle_id: Optional[int] = None


@dataclass(frozen=True)
class DistanceInput:
    method: DistanceMethod
    start_odometer: Optional[Decimal] = None
    end_odometer: Optional[Decimal] = None
    manual_km: Optional[Decimal] = None


@dataclass(frozen=True)
class AdvanceInfo:
    amount: Decimal
    payment_method: Optional[str] = None
    account_type: Optional[str] = None
    account_id: Optional[str] = None
    collected_by: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount),
            "payment_method": self.payment_method,
            "account_type": self.account_type,
            "account_id": self.account_id,
            "collected_by": self.collected_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdvanceInfo":
        return cls(
            amount=Decimal(data["amount"]),
            payment_method=data.get("payment_method"),
            account_type=data.get("account_type"),
            account_id=data.get("account_id"),
            collected_by=data.get("collected_by"),
        )


@dataclass(frozen=True)
class VehicleBillLine:
    vehicle_number: str
    rate_type: str
    rate_breakdown: dict[str, Any]
    final_amount: Decimal
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_allowance_per_day: Decimal = Decimal("0.00")
    driver_allowance_total: Decimal = Decimal("0.00")
    threshold_note: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vehicle_number": self.vehicle_number,
            "driver_name": self.driver_name,
            "driver_phone": self.driver_phone,
            "rate_type": self.rate_type,
            "rate_breakdown": {key: _encode(value) for key, value in self.rate_breakdown.items()},
            "final_amount": str(self.final_amount),
            "driver_allowance_per_day": str(self.driver_allowance_per_day),
            "driver_allowance_total": str(self.driver_allowance_total),
            "threshold_note": self.threshold_note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VehicleBillLine":
        return cls(
            vehicle_number=data["vehicle_number"],
            driver_name=data.get("driver_name"),
            driver_phone=data.get("driver_phone"),
            rate_type=data["rate_type"],
            rate_breakdown={key: _decode(key, value) for key, value in data["rate_breakdown"].items()},
            final_amount=Decimal(data["final_amount"]),
            driver_allowance_per_day=Decimal(data.get("driver_allowance_per_day") or "0.00"),
            driver_allowance_total=Decimal(data.get("driver_allowance_total") or "0.00"),
            threshold_note=data.get("threshold_note"),
        )


@dataclass(frozen=True)
class TransferRequirement:
    amount: Decimal
    from_account_type: TransferSource
    collected_by_name: str
    status: TransferStatus = "pending"
    from_account_id: Optional[str] = None
    notes: Optional[str] = None
    transfer_date: Optional[str] = None
    cashier_name: Optional[str] = None
    completed_at: Optional[str] = None
    completed_by: Optional[str] = None
    reminder_sent_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount),
            "from_account_type": self.from_account_type,
            "from_account_id": self.from_account_id,
            "collected_by_name": self.collected_by_name,
            "status": self.status,
            "notes": self.notes,
            "transfer_date": self.transfer_date,
            "cashier_name": self.cashier_name,
            "completed_at": self.completed_at,
            "completed_by": self.completed_by,
            "reminder_sent_at": self.reminder_sent_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferRequirement":
        return cls(
            amount=Decimal(data["amount"]),
            from_account_type=data["from_account_type"],
            from_account_id=data.get("from_account_id"),
            collected_by_name=data.get("collected_by_name") or "Unknown",
            status=data.get("status", "pending"),
            notes=data.get("notes"),
            transfer_date=data.get("transfer_date"),
            cashier_name=data.get("cashier_name"),
            completed_at=data.get("completed_at"),
            completed_by=data.get("completed_by"),
            reminder_sent_at=data.get("reminder_sent_at"),
        )


@dataclass(frozen=True)
class CustomerBill:
    bill_number: str
    customer_name: str
    customer_phone: str
    start_at: datetime
    end_at: datetime
    total_km_driven: Decimal
    km_calculation_method: DistanceMethod
    vehicle_details: tuple[VehicleBillLine, ...]
    total_amount: Decimal
    total_driver_allowance: Decimal
    advance_amount: Decimal
    balance_amount: Decimal
    status: BillStatus = "draft"
    id: Optional[int] = None
    booking_id: Optional[int] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    start_odometer_reading: Optional[Decimal] = None
    end_odometer_reading: Optional[Decimal] = None
    threshold_note: Optional[str] = None
    created_by: Optional[str] = None
    sent_at: Optional[str] = None
    paid_at: Optional[str] = None
    payment_reminder_sent_at: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class CompanyBill:
    bill_number: str
    customer_bill_id: int
    customer_name: str
    customer_phone: str
    start_at: datetime
    end_at: datetime
    total_km_driven: Decimal
    km_calculation_method: DistanceMethod
    vehicle_details: tuple[VehicleBillLine, ...]
    total_amount: Decimal
    total_driver_allowance: Decimal
    advance_amount: Decimal
    net_amount: Decimal
    id: Optional[int] = None
    booking_id: Optional[int] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    start_odometer_reading: Optional[Decimal] = None
    end_odometer_reading: Optional[Decimal] = None
    advance_payment_method: Optional[str] = None
    advance_account_type: Optional[str] = None
    advance_account_id: Optional[str] = None
    advance_collected_by: Optional[str] = None
    transfer_requirements: tuple[TransferRequirement, ...] = ()
    internal_notes: Optional[str] = None
    threshold_note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class Transfer:
    amount: Decimal
    from_account_type: TransferSource
    collected_by_name: str
    status: TransferStatus
    id: Optional[int] = None
    booking_id: Optional[int] = None
    bill_id: Optional[int] = None
    company_bill_id: Optional[int] = None
    requirement_index: Optional[int] = None
    from_account_id: Optional[str] = None
    transfer_date: Optional[str] = None
    cashier_name: Optional[str] = None
    notes: Optional[str] = None
    completed_by: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class BillingTask:
    kind: str
    payload: dict[str, Any]
    status: TaskStatus = "pending"
    attempts: int = 0
    last_error: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class BillGenerationResult:
    customer_bill: CustomerBill
    company_bill: Optional[CompanyBill]
    transfer_info: Optional[AdvanceInfo]
    days: int
    total_km: Decimal
    bill_start: datetime
    bill_end: datetime
    requires_transfer: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def _decode(key: str, value: Any) -> Any:
    if key == "days" or value is None:
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class StandaloneBillRequest:
    customer_name: str
    customer_phone: str
    start_date: date
    end_date: date
    vehicles: tuple[ManualVehicle, ...]
    distance: Optional[DistanceInput] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    advance_amount: Decimal = Decimal("0")
    advance_payment_method: Optional[str] = None
    advance_account_type: Optional[str] = None
    advance_account_id: Optional[str] = None
    advance_collected_by: Optional[str] = None
    threshold_note: Optional[str] = None
    created_by: Optional[str] = None


@dataclass(frozen=True)
class PendingTransfer:
    company_bill_id: int
    index: int
    customer_bill_id: int
    booking_id: Optional[int]
    bill_number: str
    requirement: TransferRequirement
    created_at: Optional[str] = None
