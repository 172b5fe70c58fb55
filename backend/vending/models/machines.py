from __future__ import annotations

from ..extensions import db
from vending.time_utils import to_utc_z


SLOT_MIN_CAPACITY = 1
SLOT_MAX_CAPACITY = 50


class VendingMachine(db.Model):
    """
    A physical vending machine holding numbered slots.

    location_ref / service_point_ref are opaque references handed to the
    price resolver; pickup_window_minutes overrides the default pickup TTL.
    """
    __tablename__ = "vending_machines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    location_ref = db.Column(db.String(64), nullable=True, index=True)
    service_point_ref = db.Column(db.String(64), nullable=True, index=True)

    # Minutes a paid sale may wait for pickup at this machine (1..1440)
    pickup_window_minutes = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location_ref": self.location_ref,
            "service_point_ref": self.service_point_ref,
            "pickup_window_minutes": self.pickup_window_minutes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Catalog entry dispensed from slots. price_cents feeds the default price resolver."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (minor currency units)
    price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Slot(db.Model):
    """
    One dispensing position in a machine.

    STOCK COUNTERS:
    - available: units free to reserve
    - reserved: units held against pending sales
    - available + reserved <= capacity, always

    The counters are written ONLY by stock_ledger_service (conditional UPDATEs).
    The CHECK constraints below restate these bounds at the store.
    """
    __tablename__ = "slots"
    __table_args__ = (
        db.UniqueConstraint("machine_id", "slot_number", name="uq_slots_machine_number"),
        db.CheckConstraint("slot_number > 0", name="ck_slots_slot_number_positive"),
        db.CheckConstraint(
            f"capacity >= {SLOT_MIN_CAPACITY} AND capacity <= {SLOT_MAX_CAPACITY}",
            name="ck_slots_capacity_bounds",
        ),
        db.CheckConstraint("available >= 0", name="ck_slots_available_nonnegative"),
        db.CheckConstraint("reserved >= 0", name="ck_slots_reserved_nonnegative"),
        db.CheckConstraint("available + reserved <= capacity", name="ck_slots_within_capacity"),
        db.CheckConstraint(
            "price_override IS NULL OR price_override > 0",
            name="ck_slots_price_override_positive",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    machine_id = db.Column(db.Integer, db.ForeignKey("vending_machines.id"), nullable=False, index=True)
    slot_number = db.Column(db.Integer, nullable=False)

    # Empty slot when NULL
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    capacity = db.Column(db.Integer, nullable=False, default=10)
    available = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    price_override = db.Column(db.Integer, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    machine = db.relationship("VendingMachine", backref=db.backref("slots", lazy=True))
    product = db.relationship("Product", backref=db.backref("slots", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<Slot id={self.id} machine_id={self.machine_id} number={self.slot_number} "
            f"available={self.available} reserved={self.reserved} capacity={self.capacity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "machine_id": self.machine_id,
            "slot_number": self.slot_number,
            "product_id": self.product_id,
            "capacity": self.capacity,
            "available": self.available,
            "reserved": self.reserved,
            "price_override": self.price_override,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
