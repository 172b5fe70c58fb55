# Overview: Service-layer operations for sales reporting; read-only lookups and aggregates.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import Sale, Slot
from ..models.sales import (
    HOLDING_STATES,
    SALE_EXPIRED,
    SALE_FULFILLED,
    SALE_PAID,
    SALE_STATES,
)
from vending.time_utils import minutes_between, normalize_utc, to_utc_z, utcnow
from . import pickup_code_service


MAX_LOOKAHEAD_MINUTES = 1440


def _now(now: datetime | None) -> datetime:
    return normalize_utc(now) or utcnow()


def _minutes_left(sale: Sale, now: datetime) -> int | None:
    expires_at = normalize_utc(sale.expires_at)
    if expires_at is None:
        return None
    return max(0, int(minutes_between(now, expires_at)))


def list_sales(
    *,
    user_id: str | None = None,
    slot_id: int | None = None,
    machine_id: int | None = None,
    product_id: int | None = None,
    state: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    min_total: int | None = None,
    max_total: int | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """Filtered sale listing, newest first. Returns (page, total_count)."""
    if state is not None and state not in SALE_STATES:
        raise ValidationError(f"Unknown state {state!r}", details={"state": state, "allowed": list(SALE_STATES)})

    query = db.session.query(Sale)
    if user_id is not None:
        query = query.filter(Sale.user_id == user_id)
    if slot_id is not None:
        query = query.filter(Sale.slot_id == slot_id)
    if machine_id is not None:
        query = query.join(Slot, Slot.id == Sale.slot_id).filter(Slot.machine_id == machine_id)
    if product_id is not None:
        query = query.filter(Sale.product_id == product_id)
    if state is not None:
        query = query.filter(Sale.state == state)
    if created_from is not None:
        query = query.filter(Sale.created_at >= normalize_utc(created_from))
    if created_to is not None:
        query = query.filter(Sale.created_at <= normalize_utc(created_to))
    if min_total is not None:
        query = query.filter(Sale.total_price >= min_total)
    if max_total is not None:
        query = query.filter(Sale.total_price <= max_total)

    total = query.count()
    query = query.order_by(Sale.created_at.desc(), Sale.id.desc()).offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all(), total


def get_active_sales(user_id: str, *, now: datetime | None = None) -> list[dict]:
    """A user's sales still holding stock, with minutes left to pick up."""
    now = _now(now)
    sales = (
        db.session.query(Sale)
        .filter(Sale.user_id == user_id)
        .filter(Sale.state.in_(HOLDING_STATES))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )
    return [
        {
            "sale_id": sale.id,
            "slot_id": sale.slot_id,
            "product_id": sale.product_id,
            "quantity": sale.quantity,
            "total_price": sale.total_price,
            "state": sale.state,
            "pickup_code": sale.pickup_code,
            "expires_at": to_utc_z(sale.expires_at),
            "minutes_remaining": _minutes_left(sale, now),
        }
        for sale in sales
    ]


def get_sales_expiring_within(minutes: int = 10, *, now: datetime | None = None) -> list[dict]:
    """Paid sales whose pickup window closes within the next `minutes`."""
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 1 <= minutes <= MAX_LOOKAHEAD_MINUTES:
        raise ValidationError(
            f"minutes must be between 1 and {MAX_LOOKAHEAD_MINUTES}", details={"minutes": minutes}
        )
    now = _now(now)
    horizon = now + timedelta(minutes=minutes)

    sales = (
        db.session.query(Sale)
        .filter(Sale.state == SALE_PAID)
        .filter(Sale.expires_at.isnot(None))
        .filter(Sale.expires_at >= now)
        .filter(Sale.expires_at <= horizon)
        .order_by(Sale.expires_at)
        .all()
    )
    return [
        {
            "sale_id": sale.id,
            "user_id": sale.user_id,
            "slot_id": sale.slot_id,
            "machine_id": sale.slot.machine_id,
            "quantity": sale.quantity,
            "total_price": sale.total_price,
            "pickup_code": sale.pickup_code,
            "paid_at": to_utc_z(sale.paid_at),
            "expires_at": to_utc_z(sale.expires_at),
            "minutes_remaining": _minutes_left(sale, now),
        }
        for sale in sales
    ]


def find_by_pickup_code(code: str) -> Sale | None:
    """
    Look up the paid sale presenting this code at a machine.

    Codes are not globally unique; only sales awaiting pickup are searched and
    the most recent match wins.
    """
    if not pickup_code_service.is_well_formed(code):
        raise ValidationError(
            "Invalid pickup code format (6-10 uppercase alphanumeric characters)",
            details={"code": code},
        )
    return (
        db.session.query(Sale)
        .filter(Sale.pickup_code == code)
        .filter(Sale.state == SALE_PAID)
        .order_by(Sale.paid_at.desc(), Sale.id.desc())
        .first()
    )


def count_by_state(state: str) -> int:
    if state not in SALE_STATES:
        raise ValidationError(f"Unknown state {state!r}", details={"state": state})
    return db.session.query(func.count(Sale.id)).filter(Sale.state == state).scalar() or 0


def get_sales_stats(*, now: datetime | None = None) -> dict:
    """Per-state counts, revenue, held stock and pickup timing."""
    now = _now(now)

    counts = {state: 0 for state in SALE_STATES}
    for state, count in db.session.query(Sale.state, func.count(Sale.id)).group_by(Sale.state).all():
        counts[state] = count

    completed_revenue = (
        db.session.query(func.coalesce(func.sum(Sale.total_price), 0))
        .filter(Sale.state == SALE_FULFILLED)
        .scalar()
    )
    pending_revenue = (
        db.session.query(func.coalesce(func.sum(Sale.total_price), 0))
        .filter(Sale.state == SALE_PAID)
        .scalar()
    )
    reserved_stock = db.session.query(func.coalesce(func.sum(Slot.reserved), 0)).scalar()

    pickup_times = (
        db.session.query(Sale.paid_at, Sale.fulfilled_at)
        .filter(Sale.state == SALE_FULFILLED)
        .filter(Sale.paid_at.isnot(None))
        .all()
    )
    avg_pickup_minutes = None
    if pickup_times:
        total = sum(minutes_between(normalize_utc(paid), normalize_utc(done)) for paid, done in pickup_times)
        avg_pickup_minutes = round(total / len(pickup_times), 1)

    expired_last_24h = (
        db.session.query(func.count(Sale.id))
        .filter(Sale.state == SALE_EXPIRED)
        .filter(Sale.expired_at >= now - timedelta(hours=24))
        .scalar()
    ) or 0

    return {
        "counts": counts,
        "total_sales": sum(counts.values()),
        "completed_revenue": int(completed_revenue or 0),
        "pending_revenue": int(pending_revenue or 0),
        "reserved_stock": int(reserved_stock or 0),
        "avg_pickup_minutes": avg_pickup_minutes,
        "expired_last_24h": expired_last_24h,
    }
