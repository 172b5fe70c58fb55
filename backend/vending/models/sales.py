from __future__ import annotations

from ..extensions import db
from vending.time_utils import to_utc_z


SALE_DRAFT = "draft"
SALE_RESERVED = "reserved"
SALE_PAID = "paid"
SALE_FULFILLED = "fulfilled"
SALE_CANCELED = "canceled"
SALE_EXPIRED = "expired"

SALE_STATES = (
    SALE_DRAFT,
    SALE_RESERVED,
    SALE_PAID,
    SALE_FULFILLED,
    SALE_CANCELED,
    SALE_EXPIRED,
)

TERMINAL_STATES = frozenset({SALE_FULFILLED, SALE_CANCELED, SALE_EXPIRED})

# States in which the sale owns a hold on its slot's reserved counter
HOLDING_STATES = frozenset({SALE_RESERVED, SALE_PAID})

MIN_SALE_QUANTITY = 1
MAX_SALE_QUANTITY = 100


class Sale(db.Model):
    """
    One customer transaction against one slot.

    LIFECYCLE:
    draft -> reserved -> paid -> fulfilled
    draft/reserved/paid -> canceled
    reserved/paid -> expired (sweeper, once expires_at has passed)

    Prices are captured once at creation (total_price = unit_price * quantity).
    Timestamps are written exactly once by the transition that owns them.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint(
            f"quantity >= {MIN_SALE_QUANTITY} AND quantity <= {MAX_SALE_QUANTITY}",
            name="ck_sales_quantity_bounds",
        ),
        db.CheckConstraint("total_price = unit_price * quantity", name="ck_sales_total_price"),
        # Sweeper scan: state + deadline
        db.Index("ix_sales_state_expires", "state", "expires_at"),
        db.Index("ix_sales_user_state", "user_id", "state"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("slots.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    state = db.Column(db.String(16), nullable=False, default=SALE_DRAFT, index=True)

    pickup_code = db.Column(db.String(16), nullable=True, index=True)
    payment_ref = db.Column(db.String(128), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancel_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    # "metadata" is reserved on declarative classes
    sale_metadata = db.Column("metadata", db.JSON, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    slot = db.relationship("Slot", backref=db.backref("sales", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def holds_stock(self) -> bool:
        return self.state in HOLDING_STATES

    def __repr__(self) -> str:
        return f"<Sale id={self.id} slot_id={self.slot_id} state={self.state!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "state": self.state,
            "pickup_code": self.pickup_code,
            "payment_ref": self.payment_ref,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "reserved_at": to_utc_z(self.reserved_at),
            "paid_at": to_utc_z(self.paid_at),
            "fulfilled_at": to_utc_z(self.fulfilled_at),
            "canceled_at": to_utc_z(self.canceled_at),
            "expired_at": to_utc_z(self.expired_at),
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "metadata": self.sale_metadata,
            "version_id": self.version_id,
        }
