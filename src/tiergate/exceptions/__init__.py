from tiergate.exceptions.handlers import (
    AccessDeniedError,
    ConfigurationError,
    DuplicateIdError,
    InstantiationError,
    InvalidTierError,
    ModuleValidationError,
    NotFoundError,
    QuotaExceededError,
    StoreError,
    TierGateError,
    ValidationError,
)

__all__ = [
    "TierGateError",
    "ValidationError",
    "ModuleValidationError",
    "DuplicateIdError",
    "InstantiationError",
    "InvalidTierError",
    "NotFoundError",
    "StoreError",
    "ConfigurationError",
    "QuotaExceededError",
    "AccessDeniedError",
]
