# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure a caller can act on is a DomainError subclass carrying:
- code:        machine-readable identifier (stable across releases)
- status_code: HTTP status the routes map it to
- details:     field-level / item-level context for the UI

Messages may name SKUs and quantities ("only 3 units of SKU X remain")
but never identifiers of unrelated records.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for expected, caller-facing failures."""
    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


# =============================================================================
# 400: bad input, rejected before any write
# =============================================================================

class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    status_code = 400


# =============================================================================
# 404: stale reference
# =============================================================================

class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = 404


class VariantNotFound(NotFoundError):
    code = "VARIANT_NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"


class ReturnNotFound(NotFoundError):
    code = "RETURN_NOT_FOUND"


class ShipmentNotFound(NotFoundError):
    code = "SHIPMENT_NOT_FOUND"


# =============================================================================
# 409: business rule conflicts, rejected after a read but before any write
# =============================================================================

class ConflictError(DomainError):
    code = "CONFLICT"
    status_code = 409


class InsufficientStock(ConflictError):
    code = "INSUFFICIENT_STOCK"


class InsufficientPayment(ConflictError):
    code = "INSUFFICIENT_PAYMENT"


class InvalidStateTransition(ConflictError):
    code = "INVALID_STATE_TRANSITION"


class DuplicateReference(ConflictError):
    code = "DUPLICATE_REFERENCE"


class OrderNotEligible(ConflictError):
    code = "ORDER_NOT_ELIGIBLE"


class InvalidItems(ConflictError):
    code = "INVALID_ITEMS"


class PaymentDeclined(ConflictError):
    code = "PAYMENT_DECLINED"


class PaymentRequestRejected(ConflictError):
    """Provider refused the request itself (bad credentials, malformed reference)."""
    code = "PAYMENT_REQUEST_REJECTED"


# =============================================================================
# 503: external dependency
# =============================================================================

class PaymentProviderUnavailable(DomainError):
    """Provider could not be reached or answered with a server error.

    Distinct from a declined payment, which is a normal FAILED outcome.
    """
    code = "PAYMENT_PROVIDER_UNAVAILABLE"
    status_code = 503
