# Overview: Service-layer operations for slot stock; the only code path that writes slot counters.

from __future__ import annotations

from sqlalchemy import update

from ..errors import InsufficientStock, SlotNotFound, StockLedgerError, ValidationError
from ..extensions import db
from ..models import Slot
from ..models.machines import SLOT_MAX_CAPACITY, SLOT_MIN_CAPACITY
from .concurrency import begin_write, run_with_retry
"""
Slot Stock Ledger Invariants (authoritative)

- For every slot: available >= 0, reserved >= 0, available + reserved <= capacity.
- Every mutation is ONE conditional UPDATE whose WHERE clause carries the
  precondition, so check-and-mutate happens atomically at the store. A racing
  caller either sees its predicate hold at execution time or gets zero rows.
- reserve:  available -= q, reserved += q     (requires available >= q)
- release:  reserved -= q, available += q     (requires reserved >= q)
- consume:  reserved -= q                     (requires reserved >= q)
- restock:  available += q                    (requires available + reserved + q <= capacity)
- Nothing else in the codebase assigns Slot.available / Slot.reserved.

Transactions:
- commit=False (default): participate in the caller's write transaction; the
  caller commits or rolls back together with its own writes.
- commit=True: run standalone in a retried write transaction.
"""


def _validate_quantity(quantity, field: str = "quantity") -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"{field} must be a positive integer", details={field: quantity})


def _conditional_update(slot_id: int, predicates: tuple, values: dict) -> tuple[bool, Slot]:
    """Apply values where the predicates hold; return (applied, fresh slot)."""
    result = db.session.execute(
        update(Slot)
        .where(Slot.id == slot_id, *predicates)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    slot = db.session.get(Slot, slot_id, populate_existing=True)
    if slot is None:
        raise SlotNotFound(slot_id)
    return result.rowcount == 1, slot


def _execute(op, *, commit: bool) -> Slot:
    if not commit:
        return op()

    def _op():
        begin_write()
        slot = op()
        db.session.commit()
        return slot

    return run_with_retry(_op)


def reserve(slot_id: int, quantity: int, *, commit: bool = False) -> Slot:
    """
    Move quantity units from available to reserved.

    Raises:
        InsufficientStock: available < quantity when the UPDATE executes
        SlotNotFound: unknown slot
    """
    _validate_quantity(quantity)

    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.available >= quantity,),
            {
                Slot.available: Slot.available - quantity,
                Slot.reserved: Slot.reserved + quantity,
            },
        )
        if not applied:
            raise InsufficientStock(slot_id, quantity, slot.available)
        return slot

    return _execute(_op, commit=commit)


def release(slot_id: int, quantity: int, *, commit: bool = False) -> Slot:
    """Return a hold: reserved -> available."""
    _validate_quantity(quantity)

    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.reserved >= quantity,),
            {
                Slot.reserved: Slot.reserved - quantity,
                Slot.available: Slot.available + quantity,
            },
        )
        if not applied:
            raise StockLedgerError(
                f"Cannot release {quantity} units from slot {slot_id}: only {slot.reserved} reserved",
                details={"slot_id": slot_id, "requested": quantity, "reserved": slot.reserved},
            )
        return slot

    return _execute(_op, commit=commit)


def consume(slot_id: int, quantity: int, *, commit: bool = False) -> Slot:
    """Convert a hold into a dispensed unit: reserved decreases, available is untouched."""
    _validate_quantity(quantity)

    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.reserved >= quantity,),
            {Slot.reserved: Slot.reserved - quantity},
        )
        if not applied:
            raise StockLedgerError(
                f"Cannot consume {quantity} units from slot {slot_id}: only {slot.reserved} reserved",
                details={"slot_id": slot_id, "requested": quantity, "reserved": slot.reserved},
            )
        return slot

    return _execute(_op, commit=commit)


def restock(slot_id: int, quantity: int, *, commit: bool = False) -> Slot:
    """Add units to available without breaching capacity."""
    _validate_quantity(quantity)

    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.available + Slot.reserved + quantity <= Slot.capacity,),
            {Slot.available: Slot.available + quantity},
        )
        if not applied:
            raise StockLedgerError(
                f"Restocking {quantity} units would exceed capacity of slot {slot_id}",
                details={
                    "slot_id": slot_id,
                    "requested": quantity,
                    "available": slot.available,
                    "reserved": slot.reserved,
                    "capacity": slot.capacity,
                },
            )
        return slot

    return _execute(_op, commit=commit)


def empty(slot_id: int, *, commit: bool = False) -> Slot:
    """Zero the available counter. Refused while any unit is held by a sale."""
    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.reserved == 0,),
            {Slot.available: 0},
        )
        if not applied:
            raise StockLedgerError(
                f"Slot {slot_id} has {slot.reserved} reserved units; cancel or complete those sales first",
                details={"slot_id": slot_id, "reserved": slot.reserved},
            )
        return slot

    return _execute(_op, commit=commit)


def resize(slot_id: int, capacity: int, *, commit: bool = False) -> Slot:
    """Change capacity; the new bound must still cover available + reserved."""
    if (
        isinstance(capacity, bool)
        or not isinstance(capacity, int)
        or not SLOT_MIN_CAPACITY <= capacity <= SLOT_MAX_CAPACITY
    ):
        raise ValidationError(
            f"capacity must be an integer between {SLOT_MIN_CAPACITY} and {SLOT_MAX_CAPACITY}",
            details={"capacity": capacity},
        )

    def _op():
        applied, slot = _conditional_update(
            slot_id,
            (Slot.available + Slot.reserved <= capacity,),
            {Slot.capacity: capacity},
        )
        if not applied:
            raise StockLedgerError(
                f"Slot {slot_id} holds {slot.available + slot.reserved} units; capacity {capacity} is too small",
                details={
                    "slot_id": slot_id,
                    "capacity": capacity,
                    "available": slot.available,
                    "reserved": slot.reserved,
                },
            )
        return slot

    return _execute(_op, commit=commit)
