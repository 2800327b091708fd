from .core import ThresholdPolicy, day_count, quote_from_fields, resolve_rate
from .exceptions import (
    BillingError,
    BillingValidationError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from .models import (
    BillGenerationResult,
    CompanyBill,
    CustomerBill,
    DistanceInput,
    HybridRate,
    ManualVehicle,
    PerDayRate,
    PerKmRate,
    StandaloneBillRequest,
    TotalRate,
    TransferRequirement,
)
from .services import BillGenerationService, BillQueryService, BillStatusService, TransferService
from .transfers import requires_transfer
from .ui import render_transfer_prompt

__all__ = [
    "BillGenerationResult",
    "BillGenerationService",
    "BillQueryService",
    "BillStatusService",
    "BillingError",
    "BillingValidationError",
    "CompanyBill",
    "CustomerBill",
    "DistanceInput",
    "HybridRate",
    "InvalidStatusTransitionError",
    "ManualVehicle",
    "NotFoundError",
    "PerDayRate",
    "PerKmRate",
    "StandaloneBillRequest",
    "ThresholdPolicy",
    "TotalRate",
    "TransferRequirement",
    "TransferService",
    "day_count",
    "quote_from_fields",
    "render_transfer_prompt",
    "requires_transfer",
    "resolve_rate",
]
