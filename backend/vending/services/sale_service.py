# Overview: Service-layer operations for the sale lifecycle; state machine over the slot stock ledger.

"""
Sale Lifecycle Service

WHY: A sale owns at most one stock hold on its slot. The state machine decides
when that hold is taken (reserve), converted (pickup), or returned
(cancel/expire), and guarantees each happens exactly once.

TRANSITIONS:
- draft    -> reserved   reserve_sale      Ledger.reserve
- reserved -> paid       confirm_payment   pickup code + expires_at
- paid     -> fulfilled  confirm_pickup    Ledger.consume
- draft/reserved/paid -> canceled          Ledger.release when holding
- reserved/paid -> expired                 Ledger.release (sweeper, once due)

TRANSACTIONS:
- Each transition is one write transaction: lock the sale row, re-read its
  persisted state, run the ledger call and the metadata writes, commit.
- Any failure rolls the whole transition back; a sale is never observed as
  paid without its pickup code, or canceled with its hold still in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from ..errors import (
    BusinessRuleError,
    InvalidTransition,
    NoPriceDefined,
    SaleNotFound,
    SlotNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, Slot
from ..models.sales import (
    HOLDING_STATES,
    MAX_SALE_QUANTITY,
    MIN_SALE_QUANTITY,
    SALE_CANCELED,
    SALE_DRAFT,
    SALE_EXPIRED,
    SALE_FULFILLED,
    SALE_PAID,
    SALE_RESERVED,
    TERMINAL_STATES,
)
from vending.time_utils import normalize_utc, utcnow
from . import pickup_code_service, stock_ledger_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pricing_service import get_price_resolver


ALLOWED_TRANSITIONS = {
    SALE_DRAFT: frozenset({SALE_RESERVED, SALE_CANCELED}),
    SALE_RESERVED: frozenset({SALE_PAID, SALE_CANCELED, SALE_EXPIRED}),
    SALE_PAID: frozenset({SALE_FULFILLED, SALE_CANCELED, SALE_EXPIRED}),
    SALE_FULFILLED: frozenset(),
    SALE_CANCELED: frozenset(),
    SALE_EXPIRED: frozenset(),
}

MIN_TTL_MINUTES = 1
MAX_TTL_MINUTES = 1440

DEFAULT_CANCEL_REASON = "Canceled by user"

# Fields update_sale may touch, by phase
DRAFT_MUTABLE_FIELDS = frozenset({"notes", "metadata", "user_id"})
LOCKED_MUTABLE_FIELDS = frozenset({"notes", "metadata"})


# =============================================================================
# GUARDS
# =============================================================================

def _now(now: datetime | None) -> datetime:
    return normalize_utc(now) or utcnow()


def can_transition(current_state: str, target_state: str) -> bool:
    return target_state in ALLOWED_TRANSITIONS.get(current_state, frozenset())


def _require_transition(sale: Sale, target_state: str) -> None:
    if not can_transition(sale.state, target_state):
        raise InvalidTransition(sale.id, sale.state, target_state)


def _validate_quantity(quantity) -> None:
    if (
        isinstance(quantity, bool)
        or not isinstance(quantity, int)
        or not MIN_SALE_QUANTITY <= quantity <= MAX_SALE_QUANTITY
    ):
        raise ValidationError(
            f"quantity must be an integer between {MIN_SALE_QUANTITY} and {MAX_SALE_QUANTITY}",
            details={"quantity": quantity},
        )


def validate_ttl(ttl_minutes) -> None:
    """Reject TTLs outside [1, 1440]. None means "use the default"."""
    if ttl_minutes is None:
        return
    if (
        isinstance(ttl_minutes, bool)
        or not isinstance(ttl_minutes, int)
        or not MIN_TTL_MINUTES <= ttl_minutes <= MAX_TTL_MINUTES
    ):
        raise BusinessRuleError(
            f"ttl_minutes must be an integer between {MIN_TTL_MINUTES} and {MAX_TTL_MINUTES}",
            details={"ttl_minutes": ttl_minutes},
        )


def _resolve_ttl(sale: Sale, ttl_minutes: int | None) -> int:
    if ttl_minutes is not None:
        return ttl_minutes
    machine = sale.slot.machine
    if machine is not None and machine.pickup_window_minutes:
        return machine.pickup_window_minutes
    return current_app.config.get("DEFAULT_PICKUP_TTL_MINUTES", 60)


def _get_sale_for_update(sale_id: int) -> Sale:
    # populate_existing: guards must see the persisted row, not a cached copy
    sale = (
        lock_for_update(db.session.query(Sale).filter_by(id=sale_id))
        .populate_existing()
        .first()
    )
    if not sale:
        raise SaleNotFound(sale_id)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(sale_id)
    return sale


# =============================================================================
# CREATE
# =============================================================================

def resolve_unit_price(slot: Slot, product_id: int, *, price_resolver=None, now: datetime | None = None) -> int:
    """
    Slot price override wins; otherwise ask the price resolver with the
    machine's location and service point.
    """
    if slot.price_override is not None:
        return slot.price_override

    resolver = price_resolver or get_price_resolver()
    machine = slot.machine
    price = resolver.resolve(
        product_id,
        location_ref=machine.location_ref if machine else None,
        point_ref=machine.service_point_ref if machine else None,
        as_of=_now(now).date(),
    )
    if price is None or price <= 0:
        raise NoPriceDefined(product_id, slot_id=slot.id)
    return price


def create_sale(
    slot_id: int,
    product_id: int,
    quantity: int = 1,
    user_id: str | None = None,
    metadata: dict | None = None,
    notes: str | None = None,
    *,
    price_resolver=None,
    now: datetime | None = None,
) -> Sale:
    """Create a draft sale with its price fixed."""
    _validate_quantity(quantity)
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object", details={"metadata": metadata})
    now = _now(now)

    def _op():
        slot = db.session.get(Slot, slot_id)
        if not slot:
            raise SlotNotFound(slot_id)
        if not slot.active:
            raise BusinessRuleError(f"Slot {slot_id} is not active", details={"slot_id": slot_id})
        if slot.product_id != product_id:
            raise BusinessRuleError(
                f"Slot {slot_id} does not dispense product {product_id}",
                details={"slot_id": slot_id, "product_id": product_id, "slot_product_id": slot.product_id},
            )

        unit_price = resolve_unit_price(slot, product_id, price_resolver=price_resolver, now=now)

        sale = Sale(
            slot_id=slot_id,
            product_id=product_id,
            user_id=user_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=unit_price * quantity,
            state=SALE_DRAFT,
            created_at=now,
            notes=notes,
            sale_metadata=metadata,
        )
        db.session.add(sale)
        db.session.commit()
        return sale

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def reserve_sale(sale_id: int, *, now: datetime | None = None) -> Sale:
    """
    draft -> reserved. Takes the stock hold.

    Raises:
        InsufficientStock: bubbled unchanged from the ledger; the sale stays draft
    """
    now = _now(now)

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        _require_transition(sale, SALE_RESERVED)

        if not sale.slot.active:
            raise BusinessRuleError(
                f"Slot {sale.slot_id} is not active",
                details={"slot_id": sale.slot_id, "sale_id": sale.id},
            )
        if sale.slot.product_id != sale.product_id:
            raise BusinessRuleError(
                f"Slot {sale.slot_id} no longer dispenses product {sale.product_id}",
                details={
                    "slot_id": sale.slot_id,
                    "sale_id": sale.id,
                    "product_id": sale.product_id,
                    "slot_product_id": sale.slot.product_id,
                },
            )

        stock_ledger_service.reserve(sale.slot_id, sale.quantity)

        sale.state = SALE_RESERVED
        sale.reserved_at = now
        db.session.commit()
        return sale

    return run_with_retry(_op)


def confirm_payment(
    sale_id: int,
    payment_ref: str,
    ttl_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> Sale:
    """
    reserved -> paid. Stores the payment reference, issues the pickup code and
    starts the pickup window.

    TTL is validated before any read or write so a bad value never partially
    mutates state.
    """
    validate_ttl(ttl_minutes)
    if not isinstance(payment_ref, str) or not payment_ref.strip():
        raise ValidationError("payment_ref required", details={"sale_id": sale_id})
    now = _now(now)

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        _require_transition(sale, SALE_PAID)

        ttl = _resolve_ttl(sale, ttl_minutes)

        sale.payment_ref = payment_ref.strip()
        sale.pickup_code = pickup_code_service.issue_code()
        sale.expires_at = now + timedelta(minutes=ttl)
        sale.paid_at = now
        sale.state = SALE_PAID
        db.session.commit()
        return sale

    return run_with_retry(_op)


def confirm_pickup(sale_id: int, code: str, *, now: datetime | None = None) -> Sale:
    """
    paid -> fulfilled. The unit leaves the machine: the hold is consumed.

    expires_at is a soft deadline enforced by the sweeper; a pickup between
    the deadline and the next sweep succeeds unless STRICT_PICKUP_EXPIRY is set.
    """
    now = _now(now)

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        _require_transition(sale, SALE_FULFILLED)

        expires_at = normalize_utc(sale.expires_at)
        if current_app.config.get("STRICT_PICKUP_EXPIRY") and expires_at and now > expires_at:
            raise InvalidTransition(sale.id, sale.state, SALE_FULFILLED, reason="pickup window has expired")

        if not pickup_code_service.verify_code(sale, code):
            raise BusinessRuleError("Invalid pickup code", details={"sale_id": sale.id, "current_state": sale.state})

        stock_ledger_service.consume(sale.slot_id, sale.quantity)

        sale.state = SALE_FULFILLED
        sale.fulfilled_at = now
        db.session.commit()
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, reason: str | None = None, *, now: datetime | None = None) -> Sale:
    """Cancel a non-terminal sale, returning its hold to available if it has one."""
    now = _now(now)

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        _require_transition(sale, SALE_CANCELED)

        if sale.holds_stock:
            stock_ledger_service.release(sale.slot_id, sale.quantity)

        sale.state = SALE_CANCELED
        sale.canceled_at = now
        sale.cancel_reason = reason or DEFAULT_CANCEL_REASON
        db.session.commit()
        return sale

    return run_with_retry(_op)


def _is_due(sale: Sale, now: datetime) -> bool:
    expires_at = normalize_utc(sale.expires_at)
    return expires_at is not None and now > expires_at


def _expire_locked(sale: Sale, now: datetime) -> int:
    stock_ledger_service.release(sale.slot_id, sale.quantity)
    sale.state = SALE_EXPIRED
    sale.expired_at = now
    return sale.quantity


def expire_sale(sale_id: int, *, now: datetime | None = None) -> Sale:
    """
    reserved/paid -> expired for a sale whose expires_at has passed.

    Raises InvalidTransition when the sale is terminal or not yet due.
    """
    now = _now(now)

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        _require_transition(sale, SALE_EXPIRED)
        if not _is_due(sale, now):
            raise InvalidTransition(sale.id, sale.state, SALE_EXPIRED, reason="sale has not reached its deadline")
        _expire_locked(sale, now)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def expire_sale_if_due(sale_id: int, *, now: datetime | None = None) -> int:
    """
    Sweeper variant of expire_sale: returns units released, or 0 when the
    persisted sale is no longer holding stock or not yet due. Never releases
    twice for the same sale.
    """
    now = _now(now)

    def _op():
        begin_write()
        sale = (
            lock_for_update(db.session.query(Sale).filter_by(id=sale_id))
            .populate_existing()
            .first()
        )
        if sale is None or sale.state not in HOLDING_STATES or not _is_due(sale, now):
            db.session.rollback()
            return 0
        released = _expire_locked(sale, now)
        db.session.commit()
        return released

    return run_with_retry(_op)


# =============================================================================
# EDITS
# =============================================================================

def update_sale(sale_id: int, changes: dict) -> Sale:
    """
    Partial update. Only notes/metadata may change once the sale has left
    draft; user_id is also editable while in draft. Terminal sales are frozen.
    """
    if not changes:
        raise ValidationError("No fields to update (allowed: notes, metadata)")
    if "metadata" in changes and changes["metadata"] is not None and not isinstance(changes["metadata"], dict):
        raise ValidationError("metadata must be an object", details={"metadata": changes["metadata"]})

    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        if sale.state in TERMINAL_STATES:
            raise BusinessRuleError(
                f"Cannot update sale {sale.id} in terminal state '{sale.state}'",
                details={"sale_id": sale.id, "current_state": sale.state},
            )

        allowed = DRAFT_MUTABLE_FIELDS if sale.state == SALE_DRAFT else LOCKED_MUTABLE_FIELDS
        rejected = sorted(set(changes) - allowed)
        if rejected:
            raise BusinessRuleError(
                f"Fields {', '.join(rejected)} cannot be changed while sale is '{sale.state}'",
                details={"sale_id": sale.id, "current_state": sale.state, "fields": rejected},
            )

        if "notes" in changes:
            sale.notes = changes["notes"]
        if "metadata" in changes:
            sale.sale_metadata = changes["metadata"]
        if "user_id" in changes:
            sale.user_id = changes["user_id"]

        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int) -> None:
    """Hard delete. Only drafts, which hold no stock, may be deleted."""
    def _op():
        begin_write()
        sale = _get_sale_for_update(sale_id)
        if sale.state != SALE_DRAFT:
            raise BusinessRuleError(
                f"Cannot delete sale {sale.id} in state '{sale.state}'; cancel it instead",
                details={"sale_id": sale.id, "current_state": sale.state, "required_state": SALE_DRAFT},
            )
        db.session.delete(sale)
        db.session.commit()

    run_with_retry(_op)
