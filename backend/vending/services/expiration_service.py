# Overview: Service-layer operations for expiration; periodic sweep that releases stale holds.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..errors import VendingError
from ..extensions import db
from ..models import Sale
from ..models.sales import HOLDING_STATES
from vending.time_utils import normalize_utc, utcnow
from . import sale_service


@dataclass
class SweepResult:
    expired: int = 0
    units_released: int = 0
    failed: int = 0
    sale_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "expired": self.expired,
            "units_released": self.units_released,
            "failed": self.failed,
            "sale_ids": list(self.sale_ids),
        }


def find_expired_candidates(now: datetime, limit: int | None = None) -> list[int]:
    """Ids of sales still holding stock whose deadline has passed (unlocked read)."""
    query = (
        db.session.query(Sale.id)
        .filter(Sale.state.in_(HOLDING_STATES))
        .filter(Sale.expires_at.isnot(None))
        .filter(Sale.expires_at < now)
        .order_by(Sale.expires_at, Sale.id)
    )
    if limit:
        query = query.limit(limit)
    return [row.id for row in query.all()]


def sweep_expired_sales(*, now: datetime | None = None, limit: int | None = None) -> SweepResult:
    """
    One reconciliation pass.

    Candidates are read without locks; each one is then re-checked under its
    row lock by expire_sale_if_due, so a sale fulfilled, canceled, or already
    expired by a concurrent pass is skipped rather than released twice.
    """
    now = normalize_utc(now) or utcnow()
    if limit is None:
        limit = current_app.config.get("SWEEP_BATCH_SIZE")

    candidates = find_expired_candidates(now, limit)
    # Close the read transaction before taking per-sale write locks
    db.session.rollback()

    result = SweepResult()
    for sale_id in candidates:
        try:
            released = sale_service.expire_sale_if_due(sale_id, now=now)
        except VendingError as exc:
            # Left for the next pass; the sale still holds its stock
            current_app.logger.warning("Expiration sweep skipped sale %s: %s", sale_id, exc)
            result.failed += 1
            continue
        if released:
            result.expired += 1
            result.units_released += released
            result.sale_ids.append(sale_id)

    if candidates:
        current_app.logger.info(
            "Expiration sweep: %d candidates, %d expired, %d units released, %d failed",
            len(candidates),
            result.expired,
            result.units_released,
            result.failed,
        )
    return result
