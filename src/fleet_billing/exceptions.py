from __future__ import annotations


class BillingError(Exception):
    """Base class for every error raised by the billing engine."""


class BillingValidationError(BillingError, ValueError):
    """Raised when billing input is rejected before anything is written."""


class RateValidationError(BillingValidationError):
    pass


class DistanceValidationError(BillingValidationError):
    pass


class DateRangeValidationError(BillingValidationError):
    pass


class NotFoundError(BillingError, LookupError):
    def __init__(self, entity: str, identifier: object):
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class InvalidStatusTransitionError(BillingError):
    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(f"Cannot move {entity} from {current!r} to {requested!r}")
        self.entity = entity
        self.current = current
        self.requested = requested


class ConfigurationError(BillingError):
    pass
