"""
Stock ledger tests.

Verifies:
- reserve/release/consume/restock move units between counters
- Failed predicates leave the slot untouched
- available + reserved never exceeds capacity
"""

import pytest

from conftest import counters
from vending.errors import InsufficientStock, SlotNotFound, StockLedgerError, ValidationError
from vending.extensions import db
from vending.services import stock_ledger_service as ledger


# =============================================================================
# RESERVE
# =============================================================================


class TestReserve:
    def test_moves_units_to_reserved(self, slot):
        ledger.reserve(slot.id, 2, commit=True)
        assert counters(slot.id) == (3, 2)

    def test_reserve_all_units(self, slot):
        ledger.reserve(slot.id, 5, commit=True)
        assert counters(slot.id) == (0, 5)

    def test_insufficient_stock_leaves_counters(self, slot):
        with pytest.raises(InsufficientStock) as exc_info:
            ledger.reserve(slot.id, 6, commit=True)

        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5
        assert exc_info.value.status_code == 409
        assert counters(slot.id) == (5, 0)

    def test_unknown_slot(self, db_session):
        with pytest.raises(SlotNotFound):
            ledger.reserve(9999, 1, commit=True)

    @pytest.mark.parametrize("quantity", [0, -1, True, "2", 1.5])
    def test_rejects_non_positive_quantity(self, slot, quantity):
        with pytest.raises(ValidationError):
            ledger.reserve(slot.id, quantity, commit=True)
        assert counters(slot.id) == (5, 0)

    def test_participates_in_caller_transaction(self, slot):
        ledger.reserve(slot.id, 1)
        db.session.rollback()
        assert counters(slot.id) == (5, 0)

        ledger.reserve(slot.id, 1)
        db.session.commit()
        assert counters(slot.id) == (4, 1)


# =============================================================================
# RELEASE / CONSUME
# =============================================================================


class TestReleaseAndConsume:
    def test_release_returns_hold(self, slot):
        ledger.reserve(slot.id, 3, commit=True)
        ledger.release(slot.id, 2, commit=True)
        assert counters(slot.id) == (4, 1)

    def test_release_more_than_reserved_fails(self, slot):
        ledger.reserve(slot.id, 1, commit=True)
        with pytest.raises(StockLedgerError):
            ledger.release(slot.id, 2, commit=True)
        assert counters(slot.id) == (4, 1)

    def test_consume_drops_reserved_only(self, slot):
        ledger.reserve(slot.id, 2, commit=True)
        ledger.consume(slot.id, 2, commit=True)
        assert counters(slot.id) == (3, 0)

    def test_consume_without_hold_fails(self, slot):
        with pytest.raises(StockLedgerError):
            ledger.consume(slot.id, 1, commit=True)
        assert counters(slot.id) == (5, 0)


# =============================================================================
# RESTOCK / EMPTY / RESIZE
# =============================================================================


class TestMaintenance:
    def test_restock_up_to_capacity(self, slot):
        ledger.reserve(slot.id, 2, commit=True)
        ledger.consume(slot.id, 2, commit=True)
        ledger.restock(slot.id, 2, commit=True)
        assert counters(slot.id) == (5, 0)

    def test_restock_counts_reserved_units(self, slot):
        ledger.reserve(slot.id, 2, commit=True)
        # 3 available + 2 reserved = capacity; no free space left
        with pytest.raises(StockLedgerError) as exc_info:
            ledger.restock(slot.id, 1, commit=True)
        assert exc_info.value.details["capacity"] == 5
        assert counters(slot.id) == (3, 2)

    def test_empty_zeroes_available(self, slot):
        ledger.empty(slot.id, commit=True)
        assert counters(slot.id) == (0, 0)

    def test_empty_refused_while_reserved(self, slot):
        ledger.reserve(slot.id, 1, commit=True)
        with pytest.raises(StockLedgerError):
            ledger.empty(slot.id, commit=True)
        assert counters(slot.id) == (4, 1)

    def test_resize_grows_capacity(self, slot):
        resized = ledger.resize(slot.id, 8, commit=True)
        assert resized.capacity == 8
        ledger.restock(slot.id, 3, commit=True)
        assert counters(slot.id) == (8, 0)

    def test_resize_below_stock_fails(self, slot):
        with pytest.raises(StockLedgerError):
            ledger.resize(slot.id, 4, commit=True)

    @pytest.mark.parametrize("capacity", [0, 51, "10"])
    def test_resize_bounds(self, slot, capacity):
        with pytest.raises(ValidationError):
            ledger.resize(slot.id, capacity, commit=True)


def test_counters_stay_within_capacity_across_sequence(slot):
    operations = [
        (ledger.reserve, 3),
        (ledger.release, 1),
        (ledger.consume, 2),
        (ledger.restock, 2),
        (ledger.reserve, 4),
        (ledger.consume, 4),
        (ledger.restock, 5),
    ]
    for op, quantity in operations:
        try:
            op(slot.id, quantity, commit=True)
        except (InsufficientStock, StockLedgerError):
            pass
        available, reserved = counters(slot.id)
        assert available >= 0
        assert reserved >= 0
        assert available + reserved <= 5
