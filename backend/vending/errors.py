# Overview: Error taxonomy shared by the ledger, sale lifecycle, and checkout services.

"""
Vending Error Taxonomy

- NotFound: unknown slot or sale.
- InsufficientStock: a reservation predicate failed at execution time.
- BusinessRuleError: invalid state transition, bad TTL, immutable field edits.
- ValidationError: malformed input caught before the state machine runs.
- StoreError: underlying store failure, including lock-acquisition timeout.

Every error carries a human message plus a details dict that routes return
verbatim to callers.
"""

from __future__ import annotations


class VendingError(Exception):
    """Base class for all domain errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(VendingError):
    status_code = 404


class SlotNotFound(NotFound):
    def __init__(self, slot_id):
        super().__init__(f"Slot {slot_id} not found", details={"slot_id": slot_id})
        self.slot_id = slot_id


class SaleNotFound(NotFound):
    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        self.sale_id = sale_id


class InsufficientStock(VendingError):
    """Raised when a slot cannot cover the requested reservation."""
    status_code = 409

    def __init__(self, slot_id, requested: int, available: int):
        super().__init__(
            f"Insufficient stock in slot {slot_id}: requested {requested}, available {available}",
            details={"slot_id": slot_id, "requested": requested, "available": available},
        )
        self.slot_id = slot_id
        self.requested = requested
        self.available = available


class BusinessRuleError(VendingError):
    status_code = 409


class InvalidTransition(BusinessRuleError):
    """A sale transition was attempted from a state that does not allow it."""

    def __init__(self, sale_id, current_state: str, target_state: str, reason: str | None = None):
        message = f"Cannot move sale {sale_id} from '{current_state}' to '{target_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={
                "sale_id": sale_id,
                "current_state": current_state,
                "target_state": target_state,
            },
        )
        self.current_state = current_state
        self.target_state = target_state


class NoPriceDefined(BusinessRuleError):
    def __init__(self, product_id, slot_id=None):
        super().__init__(
            f"No price defined for product {product_id}",
            details={"product_id": product_id, "slot_id": slot_id},
        )


class StockLedgerError(BusinessRuleError):
    """Release/consume/restock predicate failed against the slot counters."""


class ValidationError(VendingError, ValueError):
    """400-level input problem."""
    status_code = 400


class StoreError(VendingError):
    status_code = 503
    retryable = False


class StockLockTimeout(StoreError):
    """The slot write lock could not be acquired within the configured bound."""
    retryable = True


class PaymentDeclined(VendingError):
    status_code = 402


class CheckoutError(VendingError):
    """
    Raised by create-and-pay when one phase fails.

    phase is one of "create", "reserve", "pay". The original error is chained
    as __cause__ and exposed as .error.
    """

    def __init__(self, phase: str, error: Exception, sale_id=None):
        details = {"phase": phase, "sale_id": sale_id}
        if isinstance(error, VendingError):
            details["error"] = error.details
        super().__init__(f"Checkout failed during {phase}: {error}", details=details)
        self.phase = phase
        self.error = error
        self.sale_id = sale_id
        self.status_code = getattr(error, "status_code", 500)
