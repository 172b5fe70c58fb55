# Overview: Service-layer operations for slot administration; counters go through the stock ledger.

from __future__ import annotations

from ..errors import BusinessRuleError, NotFound, SlotNotFound, ValidationError
from ..extensions import db
from ..models import Product, Sale, Slot, VendingMachine
from ..models.machines import SLOT_MAX_CAPACITY, SLOT_MIN_CAPACITY
from ..models.sales import TERMINAL_STATES
from . import stock_ledger_service
from .concurrency import begin_write, lock_for_update, run_with_retry


def _validate_int(value, field: str, *, minimum: int, maximum: int | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum or (
        maximum is not None and value > maximum
    ):
        bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
        raise ValidationError(f"{field} must be an integer {bound}", details={field: value})


def get_slot(slot_id: int) -> Slot:
    slot = db.session.get(Slot, slot_id)
    if not slot:
        raise SlotNotFound(slot_id)
    return slot


def create_slot(
    machine_id: int,
    slot_number: int,
    capacity: int = 10,
    product_id: int | None = None,
    initial_stock: int = 0,
    price_override: int | None = None,
) -> Slot:
    """Create a slot. slot_number is unique within its machine."""
    _validate_int(slot_number, "slot_number", minimum=1)
    _validate_int(capacity, "capacity", minimum=SLOT_MIN_CAPACITY, maximum=SLOT_MAX_CAPACITY)
    _validate_int(initial_stock, "initial_stock", minimum=0, maximum=capacity)
    if price_override is not None:
        _validate_int(price_override, "price_override", minimum=1)
    if initial_stock and product_id is None:
        raise BusinessRuleError("An empty slot cannot hold stock", details={"initial_stock": initial_stock})

    def _op():
        if not db.session.get(VendingMachine, machine_id):
            raise NotFound(f"Machine {machine_id} not found", details={"machine_id": machine_id})
        if product_id is not None and not db.session.get(Product, product_id):
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})

        existing = db.session.query(Slot).filter_by(machine_id=machine_id, slot_number=slot_number).first()
        if existing:
            raise BusinessRuleError(
                f"Slot number {slot_number} already exists in machine {machine_id}",
                details={"machine_id": machine_id, "slot_number": slot_number},
            )

        # Initial counters are set at creation; afterwards only the ledger writes them
        slot = Slot(
            machine_id=machine_id,
            slot_number=slot_number,
            capacity=capacity,
            product_id=product_id,
            available=initial_stock,
            reserved=0,
            price_override=price_override,
            active=True,
        )
        db.session.add(slot)
        db.session.commit()
        return slot

    return run_with_retry(_op)


def assign_product(slot_id: int, product_id: int, initial_stock: int = 0) -> Slot:
    """
    Load a product into a slot, replacing whatever was there.

    Refused while any non-terminal sale references the slot; the old stock is
    emptied and initial_stock is restocked through the ledger.
    """
    _validate_int(initial_stock, "initial_stock", minimum=0)

    def _op():
        begin_write()
        slot = lock_for_update(db.session.query(Slot).filter_by(id=slot_id)).first()
        if not slot:
            raise SlotNotFound(slot_id)
        if not db.session.get(Product, product_id):
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        open_sales = (
            db.session.query(Sale.id)
            .filter(Sale.slot_id == slot_id)
            .filter(Sale.state.notin_(TERMINAL_STATES))
            .order_by(Sale.id)
            .all()
        )
        if open_sales:
            sale_ids = [row.id for row in open_sales]
            raise BusinessRuleError(
                f"Slot {slot_id} has {len(sale_ids)} open sales; cancel or complete them first",
                details={"slot_id": slot_id, "sale_ids": sale_ids},
            )
        if initial_stock > slot.capacity:
            raise BusinessRuleError(
                f"Initial stock {initial_stock} exceeds slot capacity {slot.capacity}",
                details={"slot_id": slot_id, "initial_stock": initial_stock, "capacity": slot.capacity},
            )

        slot = stock_ledger_service.empty(slot_id)
        slot.product_id = product_id
        db.session.flush()
        if initial_stock:
            slot = stock_ledger_service.restock(slot_id, initial_stock)
        db.session.commit()
        return slot

    return run_with_retry(_op)


def restock_slot(slot_id: int, quantity: int) -> Slot:
    """Add units to a stocked slot (refill at the machine)."""
    def _op():
        begin_write()
        slot = get_slot(slot_id)
        if slot.product_id is None:
            raise BusinessRuleError(f"Slot {slot_id} has no product assigned", details={"slot_id": slot_id})
        slot = stock_ledger_service.restock(slot_id, quantity)
        db.session.commit()
        return slot

    return run_with_retry(_op)


def empty_slot(slot_id: int) -> Slot:
    return stock_ledger_service.empty(slot_id, commit=True)


def resize_slot(slot_id: int, capacity: int) -> Slot:
    return stock_ledger_service.resize(slot_id, capacity, commit=True)


def set_price_override(slot_id: int, price_override: int | None) -> Slot:
    """Set or clear the per-slot price. Existing sales keep their captured price."""
    if price_override is not None:
        _validate_int(price_override, "price_override", minimum=1)

    def _op():
        slot = get_slot(slot_id)
        slot.price_override = price_override
        db.session.commit()
        return slot

    return run_with_retry(_op)


def set_slot_active(slot_id: int, active: bool) -> Slot:
    """Enable or disable a slot. Disabled slots accept no new sales or reservations."""
    def _op():
        slot = get_slot(slot_id)
        slot.active = bool(active)
        db.session.commit()
        return slot

    return run_with_retry(_op)


def get_stock_summary(slot_id: int) -> dict:
    slot = get_slot(slot_id)
    occupied = slot.available + slot.reserved
    return {
        "slot_id": slot.id,
        "machine_id": slot.machine_id,
        "slot_number": slot.slot_number,
        "product_id": slot.product_id,
        "capacity": slot.capacity,
        "available": slot.available,
        "reserved": slot.reserved,
        "free_space": slot.capacity - occupied,
        "occupancy_pct": round(occupied * 100 / slot.capacity, 1),
    }


def find_low_stock(machine_id: int | None = None) -> list[Slot]:
    """Stocked, active slots with less than half their capacity available."""
    query = (
        db.session.query(Slot)
        .filter(Slot.active.is_(True))
        .filter(Slot.product_id.isnot(None))
        .filter(Slot.available * 2 < Slot.capacity)
    )
    if machine_id is not None:
        query = query.filter(Slot.machine_id == machine_id)
    return query.order_by(Slot.machine_id, Slot.slot_number).all()
