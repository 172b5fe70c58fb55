# Overview: Service-layer operations for checkout; create, reserve, and pay as one client call.

"""
Checkout Orchestrator

Sequence: validate -> create (draft) -> reserve (hold) -> payment collaborator
confirm -> confirm_payment (paid).

Failure contract:
- Every failure is raised as CheckoutError naming the phase ("create",
  "reserve", "pay") and the sale id when one exists. Nothing partial is ever
  returned as success.
- reserve failure: the sale stays draft, no stock was touched.
- pay failure: the sale stays reserved with its hold intact. The hold is NOT
  released here; the caller decides between a retry of confirm_payment and
  an explicit cancel_sale, so the hold is never lost or released twice.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import CheckoutError, PaymentDeclined
from ..models import Sale
from . import sale_service
from .payment_service import get_payment_gateway


PHASE_CREATE = "create"
PHASE_RESERVE = "reserve"
PHASE_PAY = "pay"


def create_and_pay(
    slot_id: int,
    product_id: int,
    payment_ref: str,
    quantity: int = 1,
    user_id: str | None = None,
    ttl_minutes: int | None = None,
    metadata: dict | None = None,
    *,
    payment_gateway=None,
    price_resolver=None,
    now: datetime | None = None,
) -> Sale:
    """Create a sale and drive it to paid, or raise CheckoutError."""
    gateway = payment_gateway or get_payment_gateway()

    try:
        # Reject a bad TTL before anything is created or held
        sale_service.validate_ttl(ttl_minutes)
        sale = sale_service.create_sale(
            slot_id,
            product_id,
            quantity=quantity,
            user_id=user_id,
            metadata=metadata,
            price_resolver=price_resolver,
            now=now,
        )
    except Exception as exc:
        current_app.logger.warning("Checkout failed creating sale for slot %s: %s", slot_id, exc)
        raise CheckoutError(PHASE_CREATE, exc) from exc

    sale_id = sale.id

    try:
        sale_service.reserve_sale(sale_id, now=now)
    except Exception as exc:
        current_app.logger.warning("Checkout failed reserving stock for sale %s: %s", sale_id, exc)
        raise CheckoutError(PHASE_RESERVE, exc, sale_id=sale_id) from exc

    try:
        result = gateway.confirm(payment_ref, sale.total_price)
        if not result.success:
            raise PaymentDeclined(
                f"Payment {payment_ref!r} was not confirmed: {result.reason or 'declined'}",
                details={"payment_ref": payment_ref, "reason": result.reason},
            )
        sale = sale_service.confirm_payment(sale_id, payment_ref, ttl_minutes, now=now)
    except Exception as exc:
        current_app.logger.warning(
            "Checkout failed confirming payment for sale %s; sale left reserved: %s", sale_id, exc
        )
        raise CheckoutError(PHASE_PAY, exc, sale_id=sale_id) from exc

    return sale
