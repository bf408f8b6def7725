# Overview: Typed errors raised by the inventory ledger and settlement services.

"""
Error taxonomy

- LedgerValidationError: bad input, rejected before any mutation (400).
- NotFoundError: referenced sale/product does not exist (404).
- LedgerConsistencyError: stock or balance conflict discovered inside the
  transaction; everything is rolled back (409).
- SaleStateError: forbidden sale state transition (409).

Every error carries a details dict that routes return verbatim.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base for all ledger/settlement errors."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_response(self) -> tuple[dict, int]:
        return {"error": str(self), "details": self.details}, self.http_status


# =============================================================================
# VALIDATION
# =============================================================================

class LedgerValidationError(LedgerError):
    http_status = 400


class InvalidLineError(LedgerValidationError):
    pass


class MissingCustomerForCreditError(LedgerValidationError):
    def __init__(self, message: str = "Credit sales require an identified customer", details: dict | None = None):
        super().__init__(message, details)


class InvalidAmountError(LedgerValidationError):
    pass


class InvalidCreditTermsError(LedgerValidationError):
    pass


class InvalidSaleRequestError(LedgerValidationError):
    pass


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(LedgerError):
    http_status = 404


class SaleNotFoundError(NotFoundError):
    def __init__(self, sale_id: int):
        super().__init__(f"Sale {sale_id} not found", {"sale_id": sale_id})


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})


# =============================================================================
# CONSISTENCY
# =============================================================================

class LedgerConsistencyError(LedgerError):
    http_status = 409


class InsufficientStockError(LedgerConsistencyError):
    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"ID {product_id}"
        super().__init__(
            f"Insufficient stock for product {label}",
            {"product_id": product_id, "requested_quantity": requested, "available": available},
        )
        self.product_id = product_id


class StockInconsistencyError(LedgerConsistencyError):
    """Batches hold less than the product aggregate promised."""


class OverpaymentError(LedgerConsistencyError):
    pass


# =============================================================================
# STATE MACHINE
# =============================================================================

class SaleStateError(LedgerError):
    http_status = 409

    def __init__(self, message: str, *, sale_id: int, from_status: str, action: str):
        super().__init__(message, {"sale_id": sale_id, "status": from_status, "action": action})


class AlreadyVoidedError(SaleStateError):
    def __init__(self, sale_id: int):
        super().__init__(
            f"Sale {sale_id} is already ANULADO",
            sale_id=sale_id, from_status="ANULADO", action="void",
        )


class PartialSaleVoidForbiddenError(SaleStateError):
    def __init__(self, sale_id: int):
        super().__init__(
            f"Sale {sale_id} has partial payments (PARCIAL) and cannot be voided; "
            "use a manual adjustment",
            sale_id=sale_id, from_status="PARCIAL", action="void",
        )


class SaleNotPayableError(SaleStateError):
    def __init__(self, sale_id: int, status: str):
        super().__init__(
            f"Sale {sale_id} with status {status} does not accept payments",
            sale_id=sale_id, from_status=status, action="pay",
        )
