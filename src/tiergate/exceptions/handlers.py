from __future__ import annotations

from typing import Any, Dict, Optional


class TierGateError(Exception):
    """
    Base exception for the registry and entitlement core.

    Callers at the transport layer rely on:
    - attributes: message/code/details
    - method: to_dict()
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "TIERGATE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class ValidationError(TierGateError):
    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"field": field} if field else {}
        details.update(kwargs)
        super().__init__(message, code="VALIDATION_ERROR", details=details)
        self.field = field


class ModuleValidationError(TierGateError):
    def __init__(self, message: str, field: str, module_id: Optional[str] = None):
        details: Dict[str, Any] = {"field": field}
        if module_id:
            details["module_id"] = module_id
        super().__init__(message, code="MODULE_VALIDATION_ERROR", details=details)
        self.field = field
        self.module_id = module_id


class DuplicateIdError(TierGateError):
    def __init__(self, module_id: str):
        super().__init__(
            f"Module with id {module_id} is already registered",
            code="DUPLICATE_MODULE_ID",
            details={"module_id": module_id},
        )
        self.module_id = module_id


class InstantiationError(TierGateError):
    def __init__(self, candidate: str, reason: str):
        super().__init__(
            f"Error loading module {candidate}: {reason}",
            code="MODULE_INSTANTIATION_FAILED",
            details={"candidate": candidate, "reason": reason},
        )
        self.candidate = candidate


class InvalidTierError(TierGateError):
    def __init__(self, tier: Any):
        super().__init__(
            f"Invalid tier: {tier!r}",
            code="INVALID_TIER",
            details={"tier": str(tier)},
        )
        self.tier = tier


class NotFoundError(TierGateError):
    def __init__(self, kind: str, key: Any):
        super().__init__(
            f"{kind} not found: {key}",
            code="NOT_FOUND",
            details={"kind": kind, "key": key},
        )
        self.kind = kind
        self.key = key


class StoreError(TierGateError):
    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Store {operation} failed: {reason}",
            code="STORE_FAILURE",
            details={"operation": operation},
        )
        self.operation = operation


class ConfigurationError(TierGateError):
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        details.update(kwargs)
        super().__init__(message, code="CONFIGURATION_ERROR", details=details)


class QuotaExceededError(TierGateError):
    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Quota exceeded",
            code="QUOTA_EXCEEDED",
            details=details or {},
        )


class AccessDeniedError(TierGateError):
    def __init__(self, module_id: str, user_id: Any, reason: str = "not entitled"):
        super().__init__(
            f"Access to module {module_id} denied for user {user_id}: {reason}",
            code="ACCESS_DENIED",
            details={"module_id": module_id, "user_id": user_id, "reason": reason},
        )
        self.module_id = module_id
        self.user_id = user_id
