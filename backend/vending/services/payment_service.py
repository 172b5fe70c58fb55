# Overview: Service-layer operations for payment confirmation; the fallible external collaborator.

"""
Payment Collaborator

WHY: Payments are captured by the customer app's payment provider. Before a
sale is marked paid, checkout asks the collaborator to confirm that the
reference really covers the sale total. The collaborator may be slow or fail;
its failure must never change sale or slot state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from flask import current_app


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    reason: Optional[str] = None


class PaymentGateway(Protocol):
    def confirm(self, payment_ref: str, amount_cents: int) -> PaymentResult:
        ...


class PreauthorizedPaymentGateway:
    """
    Accepts references the app has already captured.

    Only the shape of the request is checked: a non-empty reference and a
    positive amount.
    """

    def confirm(self, payment_ref, amount_cents):
        if not isinstance(payment_ref, str) or not payment_ref.strip():
            return PaymentResult(False, "payment_ref required")
        if amount_cents <= 0:
            return PaymentResult(False, "amount must be positive")
        return PaymentResult(True)


def get_payment_gateway() -> PaymentGateway:
    return current_app.extensions["vending.payment_gateway"]
