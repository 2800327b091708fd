from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fleet_billing.exceptions import ConfigurationError

DEFAULT_SETTINGS_PATH = Path("backend/config/billing.yaml")

DEFAULT_MIN_KM_PER_DAY = Decimal("300")

# Keys of the organization-scoped threshold values in system_config.
PER_KM_FLOOR_KEY = "minimum_km_per_km"
HYBRID_FLOOR_KEY = "minimum_km_hybrid_per_day"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class BillingSettings:
    default_per_km_floor: Decimal = DEFAULT_MIN_KM_PER_DAY
    default_hybrid_floor: Decimal = DEFAULT_MIN_KM_PER_DAY
    customer_bill_prefix: str = "PT-BILL"
    company_bill_prefix: str = "PT-CB"
    sequence_width: int = 6
    terminal_booking_statuses: tuple[str, ...] = ("completed", "cancelled")
    completed_booking_status: str = "completed"
    reminder_min_age_days: int = 2
    reminder_max_age_days: int = 3
    transfer_reminder_window_days: int = 5
    log_level: str = "INFO"


def load_settings(path: Path | str | None = None) -> BillingSettings:
    """Read billing settings from YAML; a missing file yields the defaults."""
    settings_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    if not settings_path.exists():
        return BillingSettings()

    with settings_path.open("r", encoding="utf-8") as settings_file:
        loaded = yaml.safe_load(settings_file) or {}

    if not isinstance(loaded, dict):
        msg = f"Settings file must contain a dictionary at root: {settings_path}"
        raise ConfigurationError(msg)

    thresholds = loaded.get("thresholds", {}) or {}
    numbering = loaded.get("numbering", {}) or {}
    booking = loaded.get("booking", {}) or {}
    reminders = loaded.get("reminders", {}) or {}
    defaults = BillingSettings()

    return BillingSettings(
        default_per_km_floor=_decimal_setting(
            thresholds, "per_km_default", defaults.default_per_km_floor
        ),
        default_hybrid_floor=_decimal_setting(
            thresholds, "hybrid_default", defaults.default_hybrid_floor
        ),
        customer_bill_prefix=str(numbering.get("customer_prefix", defaults.customer_bill_prefix)),
        company_bill_prefix=str(numbering.get("company_prefix", defaults.company_bill_prefix)),
        sequence_width=int(numbering.get("width", defaults.sequence_width)),
        terminal_booking_statuses=tuple(
            booking.get("terminal_statuses", defaults.terminal_booking_statuses)
        ),
        completed_booking_status=str(booking.get("completed_status", defaults.completed_booking_status)),
        reminder_min_age_days=int(reminders.get("min_age_days", defaults.reminder_min_age_days)),
        reminder_max_age_days=int(reminders.get("max_age_days", defaults.reminder_max_age_days)),
        transfer_reminder_window_days=int(
            reminders.get("transfer_window_days", defaults.transfer_reminder_window_days)
        ),
        log_level=str(loaded.get("log_level", defaults.log_level)),
    )


def _decimal_setting(section: dict[str, Any], key: str, default: Decimal) -> Decimal:
    raw = section.get(key)
    if raw is None:
        return default
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ConfigurationError(f"thresholds.{key} must be numeric, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"thresholds.{key} must be positive, got {raw!r}")
    return value


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    else:
        root.setLevel(level.upper())
