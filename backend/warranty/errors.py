# Overview: Domain error taxonomy shared by services and routes.

"""
Warranty error taxonomy.

Every error carries a stable machine code, a human message and a dict of
structured details so the HTTP layer can build a user-facing response
without parsing strings.

RECOVERY RULES:
- ValidationError / NotFound: returned to the caller, not an incident
- DuplicateKey: retried internally by the barcode generator, surfaced elsewhere
- InvalidTransition: caller must re-read current state
- ConflictingTransition: caller may retry a bounded number of times
- GenerationExhausted: surfaced and logged at error level (algorithm review)
- StoreUnavailable / InternalError: bubbled up, operation treated as not executed
"""

from __future__ import annotations

from typing import Any


class WarrantyError(Exception):
    """Base class for all warranty domain errors."""

    code = "warranty_error"
    http_status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


class ValidationError(WarrantyError):
    """Input violates schema, state, or invariant."""

    code = "validation_error"
    http_status = 400


class BarcodeFormatError(ValidationError):
    """
    Barcode string failed format validation.

    kind is one of: length, prefix, year, character
    """

    code = "invalid_barcode_format"

    def __init__(self, kind: str, message: str, **details: Any):
        super().__init__(message, kind=kind, **details)
        self.kind = kind


class NotFound(WarrantyError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key} not found", entity=entity, key=key)


class DuplicateKey(WarrantyError):
    code = "duplicate_key"
    http_status = 409

    def __init__(self, message: str, *, key: Any = None, **details: Any):
        super().__init__(message, key=key, **details)
        self.key = key


class InvalidTransition(WarrantyError):
    """State-machine refusal. Nothing was mutated."""

    code = "invalid_transition"
    http_status = 409

    def __init__(self, entity: str, from_status: str, to_status: str, reason: str | None = None):
        message = f"Cannot transition {entity} from '{from_status}' to '{to_status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, entity=entity, from_status=from_status, to_status=to_status)
        self.from_status = from_status
        self.to_status = to_status


class ConflictingTransition(WarrantyError):
    """Optimistic-lock collision: another writer changed the row first."""

    code = "conflicting_transition"
    http_status = 409


class GenerationExhausted(WarrantyError):
    code = "generation_exhausted"
    http_status = 503

    def __init__(self, attempts: int, batch_id: int | None = None):
        super().__init__(
            f"Failed to generate a unique barcode after {attempts} attempts",
            attempts=attempts,
            batch_id=batch_id,
        )
        self.attempts = attempts


class StoreUnavailable(WarrantyError):
    code = "store_unavailable"
    http_status = 503


class InternalError(WarrantyError):
    code = "internal_error"
    http_status = 500


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)
