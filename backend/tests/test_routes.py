"""
HTTP surface tests.

Verifies:
- Domain errors map to their status codes (404, 409, 400, 402)
- Checkout failures report the failing phase and sale id
- Happy-path JSON shapes
"""

import pytest

from conftest import counters
from vending.models.sales import SALE_DRAFT, SALE_FULFILLED, SALE_PAID, SALE_RESERVED
from vending.services.payment_service import PaymentResult


# =============================================================================
# SALES
# =============================================================================


class TestSalesRoutes:
    def test_create_reserve_pay_pickup(self, client, slot, product):
        resp = client.post("/api/sales/", json={"slot_id": slot.id, "product_id": product.id, "quantity": 2})
        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["state"] == SALE_DRAFT
        assert sale["total_price"] == 500

        resp = client.post(f"/api/sales/{sale['id']}/reserve")
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["state"] == SALE_RESERVED

        resp = client.post(f"/api/sales/{sale['id']}/confirm-payment", json={"payment_ref": "pay-1", "ttl_minutes": 15})
        assert resp.status_code == 200
        paid = resp.get_json()["sale"]
        assert paid["state"] == SALE_PAID
        assert paid["expires_at"].endswith("Z")

        resp = client.post(f"/api/sales/{sale['id']}/confirm-pickup", json={"code": paid["pickup_code"]})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["state"] == SALE_FULFILLED
        assert counters(slot.id) == (3, 0)

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/sales/", json={"slot_id": 1})
        assert resp.status_code == 400

    @pytest.mark.parametrize("body", [[1], "slot", 7])
    def test_non_object_body_is_400(self, client, db_session, body):
        resp = client.post("/api/sales/", json=body)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Request body must be a JSON object"

    def test_non_object_body_on_transition_is_400(self, client, sale_in_state):
        sale = sale_in_state(SALE_RESERVED)
        resp = client.post(f"/api/sales/{sale.id}/confirm-payment", json=["pay-1"])
        assert resp.status_code == 400

    def test_unknown_sale_is_404(self, client, db_session):
        resp = client.post("/api/sales/99999/reserve")
        assert resp.status_code == 404
        assert resp.get_json()["details"] == {"sale_id": 99999}

    def test_insufficient_stock_is_409(self, client, sale_in_state):
        sale = sale_in_state(SALE_DRAFT, quantity=9)
        resp = client.post(f"/api/sales/{sale.id}/reserve")
        assert resp.status_code == 409
        assert resp.get_json()["details"]["available"] == 5

    def test_invalid_transition_reports_states(self, client, sale_in_state):
        sale = sale_in_state(SALE_DRAFT)
        resp = client.post(f"/api/sales/{sale.id}/confirm-pickup", json={"code": "ABCDEFGH"})
        assert resp.status_code == 409
        details = resp.get_json()["details"]
        assert details["current_state"] == SALE_DRAFT
        assert details["target_state"] == SALE_FULFILLED

    def test_bad_ttl_is_409(self, client, sale_in_state):
        sale = sale_in_state(SALE_RESERVED)
        resp = client.post(f"/api/sales/{sale.id}/confirm-payment", json={"payment_ref": "p", "ttl_minutes": 0})
        assert resp.status_code == 409

    def test_cancel_with_reason(self, client, sale_in_state, slot):
        sale = sale_in_state(SALE_RESERVED)
        resp = client.post(f"/api/sales/{sale.id}/cancel", json={"reason": "out of time"})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["cancel_reason"] == "out of time"
        assert counters(slot.id) == (5, 0)

    def test_patch_and_delete(self, client, sale_in_state):
        sale = sale_in_state(SALE_DRAFT)
        resp = client.patch(f"/api/sales/{sale.id}", json={"notes": "front door"})
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["notes"] == "front door"

        resp = client.delete(f"/api/sales/{sale.id}")
        assert resp.status_code == 200
        assert client.get(f"/api/sales/{sale.id}").status_code == 404

    def test_list_rejects_bad_integers(self, client, db_session):
        resp = client.get("/api/sales/?slot_id=abc")
        assert resp.status_code == 400

    def test_list_and_stats(self, client, sale_in_state):
        sale_in_state(SALE_PAID)
        resp = client.get("/api/sales/?state=paid")
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

        resp = client.get("/api/sales/stats")
        assert resp.status_code == 200
        assert resp.get_json()["stats"]["counts"][SALE_PAID] == 1

    def test_by_code(self, client, sale_in_state):
        sale = sale_in_state(SALE_PAID)
        resp = client.get(f"/api/sales/by-code/{sale.pickup_code}")
        assert resp.status_code == 200
        assert resp.get_json()["sale"]["id"] == sale.id

        assert client.get("/api/sales/by-code/bad").status_code == 400

    def test_expire_sweep_endpoint(self, client, db_session):
        resp = client.post("/api/sales/expire-sweep")
        assert resp.status_code == 200
        assert resp.get_json()["sweep"]["expired"] == 0


# =============================================================================
# CHECKOUT
# =============================================================================


class TestCheckoutRoute:
    def test_success(self, client, slot, product):
        resp = client.post(
            "/api/sales/checkout",
            json={"slot_id": slot.id, "product_id": product.id, "payment_ref": "pay-7"},
        )
        assert resp.status_code == 201
        assert resp.get_json()["sale"]["state"] == SALE_PAID

    def test_reserve_failure_reports_phase(self, client, slot, product):
        resp = client.post(
            "/api/sales/checkout",
            json={"slot_id": slot.id, "product_id": product.id, "payment_ref": "pay-7", "quantity": 50},
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["phase"] == "reserve"
        assert body["sale_id"] is not None

    def test_declined_payment_is_402(self, app, client, slot, product):
        class Declining:
            def confirm(self, payment_ref, amount_cents):
                return PaymentResult(False, "insufficient funds")

        original = app.extensions["vending.payment_gateway"]
        app.extensions["vending.payment_gateway"] = Declining()
        try:
            resp = client.post(
                "/api/sales/checkout",
                json={"slot_id": slot.id, "product_id": product.id, "payment_ref": "pay-7"},
            )
        finally:
            app.extensions["vending.payment_gateway"] = original

        assert resp.status_code == 402
        body = resp.get_json()
        assert body["phase"] == "pay"
        assert counters(slot.id) == (4, 1)


# =============================================================================
# SLOTS
# =============================================================================


class TestSlotRoutes:
    def test_summary(self, client, slot):
        resp = client.get(f"/api/slots/{slot.id}")
        assert resp.status_code == 200
        assert resp.get_json()["slot"]["free_space"] == 0

    def test_non_object_body_is_400(self, client, slot):
        resp = client.post(f"/api/slots/{slot.id}/restock", json=[1])
        assert resp.status_code == 400

    def test_unknown_slot(self, client, db_session):
        assert client.get("/api/slots/4242").status_code == 404

    def test_restock_over_capacity_is_409(self, client, slot):
        resp = client.post(f"/api/slots/{slot.id}/restock", json={"quantity": 1})
        assert resp.status_code == 409

    @pytest.mark.parametrize("payload,status", [({"capacity": 8}, 200), ({"capacity": 2}, 409), ({"capacity": 99}, 400)])
    def test_resize_via_patch(self, client, slot, payload, status):
        resp = client.patch(f"/api/slots/{slot.id}", json=payload)
        assert resp.status_code == status

    def test_create_slot(self, client, machine, product):
        resp = client.post(
            "/api/slots/",
            json={"machine_id": machine.id, "slot_number": 7, "capacity": 6, "product_id": product.id, "initial_stock": 2},
        )
        assert resp.status_code == 201
        assert resp.get_json()["slot"]["available"] == 2
