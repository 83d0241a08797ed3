# salesdesk/errors.py
"""
Typed failures raised by the sales services.

Every service operation either returns a value or raises one of these.
Blueprints never catch them; the app factory renders them as JSON using
`status_code` and `code`.
"""

from __future__ import annotations

from typing import Any


class SalesError(Exception):
    status_code = 400
    code = "sales_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# =========================================================
# Lookups
# =========================================================
class NotFound(SalesError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any = None, message: str | None = None):
        super().__init__(
            message or f"{entity} not found",
            entity=entity,
            id=None if entity_id is None else str(entity_id),
        )
        self.entity = entity
        self.entity_id = entity_id


# =========================================================
# State machine
# =========================================================
class InvalidTransition(SalesError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, entity_id: Any, current: str, requested: str, message: str | None = None):
        super().__init__(
            message or f"Invalid status transition from {current} to {requested}",
            entity=entity,
            id=str(entity_id),
            current_status=current,
            requested_status=requested,
        )
        self.current = current
        self.requested = requested


class InvalidState(SalesError):
    status_code = 409
    code = "invalid_state"

    def __init__(self, message: str, *, entity: str | None = None, entity_id: Any = None, current: str | None = None):
        super().__init__(
            message,
            entity=entity,
            id=None if entity_id is None else str(entity_id),
            current_status=current,
        )
        self.current = current


# =========================================================
# Idempotency guards
# =========================================================
class AlreadyExists(SalesError):
    status_code = 409
    code = "already_exists"


class AlreadyConverted(SalesError):
    status_code = 409
    code = "already_converted"


class AlreadyPaid(SalesError):
    status_code = 409
    code = "already_paid"


class Cancelled(SalesError):
    status_code = 409
    code = "cancelled"


# =========================================================
# Input
# =========================================================
class MissingRequiredData(SalesError):
    status_code = 422
    code = "missing_required_data"


class ValidationError(SalesError):
    status_code = 422
    code = "validation_error"


# =========================================================
# Infrastructure
# =========================================================
class ExternalServiceError(SalesError):
    status_code = 502
    code = "external_service_error"


class PersistenceError(SalesError):
    status_code = 500
    code = "persistence_error"
