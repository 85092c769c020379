# Overview: Pytest coverage for the HTTP API (auth, tenant scoping, response envelopes).

"""
API Route Tests

Every dashboard route requires a bearer token and is scoped to the caller's
stores: another store's entities look missing (404), and asking for another
store explicitly is forbidden (403). Platform admins see every store.
"""

import pytest

from conftest import PASSWORD, auth_headers
from marketplace.models import DraftOrder, Order
from marketplace.services import balance_service, order_service


@pytest.fixture
def hive_order(db_session, store, honey):
    listing, variant, _ = honey
    draft = order_service.create_draft_order(
        store.id,
        [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 2}],
        customer_email="buyer@example.com",
    )
    return order_service.complete_draft_order(draft.id)


@pytest.fixture
def candle_order(db_session, other_store, candle):
    listing, variant, _ = candle
    draft = order_service.create_draft_order(
        other_store.id,
        [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 1}],
        customer_email="buyer@example.com",
    )
    return order_service.complete_draft_order(draft.id)


class TestAuthentication:
    def test_login_returns_token_and_stores(self, client, owner, store):
        response = client.post("/api/auth/login", json={"email": "owner@goldenhive.test", "password": PASSWORD})

        assert response.status_code == 200
        data = response.get_json()
        assert data["token"]
        assert data["user"]["email"] == "owner@goldenhive.test"
        assert data["store_ids"] == [store.id]

    def test_wrong_password(self, client, owner):
        response = client.post("/api/auth/login", json={"email": "owner@goldenhive.test", "password": "Wrong1234"})

        assert response.status_code == 401
        assert response.get_json() == {"error": "Invalid credentials"}

    def test_missing_credentials(self, client, db_session):
        response = client.post("/api/auth/login", json={"email": "owner@goldenhive.test"})
        assert response.status_code == 400

    def test_no_token(self, client, db_session):
        response = client.get("/api/orders/")

        assert response.status_code == 401
        assert response.get_json() == {"error": "Authentication required"}

    def test_invalid_token(self, client, db_session):
        response = client.get("/api/orders/", headers=auth_headers("not-a-token"))

        assert response.status_code == 401
        assert response.get_json() == {"error": "Invalid or expired token"}

    def test_logout_revokes_token(self, client, owner_headers):
        assert client.post("/api/auth/logout", headers=owner_headers).status_code == 200
        assert client.get("/api/auth/me", headers=owner_headers).status_code == 401

    def test_me(self, client, owner_headers, store):
        response = client.get("/api/auth/me", headers=owner_headers)

        assert response.status_code == 200
        assert response.get_json()["store_ids"] == [store.id]


class TestOrderRoutes:
    def test_list_is_scoped_to_member_stores(self, client, owner_headers, hive_order, candle_order):
        response = client.get("/api/orders/", headers=owner_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["total"] == 1
        assert body["data"]["orders"][0]["id"] == hive_order.id

    def test_admin_sees_every_store(self, client, admin_headers, hive_order, candle_order):
        response = client.get("/api/orders/", headers=admin_headers)

        assert response.get_json()["data"]["total"] == 2

    def test_foreign_store_filter_forbidden(self, client, owner_headers, other_store):
        response = client.get(f"/api/orders/?store_id={other_store.id}", headers=owner_headers)

        assert response.status_code == 403
        assert response.get_json() == {"success": False, "error": "You do not have access to this store"}

    def test_foreign_order_looks_missing(self, client, owner_headers, candle_order):
        response = client.get(f"/api/orders/{candle_order.id}", headers=owner_headers)

        assert response.status_code == 404

    def test_detail_includes_timeline(self, client, owner_headers, hive_order):
        response = client.get(f"/api/orders/{hive_order.id}", headers=owner_headers)

        data = response.get_json()["data"]
        assert data["order_number"] == hive_order.order_number
        assert len(data["events"]) == 2
        assert data["payments"] == []

    def test_fulfill_then_mark_paid(self, client, db_session, owner_headers, hive_order):
        line_id = hive_order.items[0].id

        response = client.post(
            f"/api/orders/{hive_order.id}/fulfill",
            json={"items": [{"order_item_id": line_id, "quantity": 2}], "carrier": "DHL"},
            headers=owner_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["data"]["order"]["fulfillment_status"] == "fulfilled"

        response = client.post(
            f"/api/orders/{hive_order.id}/payment-status",
            json={"payment_status": "paid"},
            headers=owner_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["data"]["order"]["status"] == "completed"

    def test_over_fulfillment_is_400(self, client, owner_headers, hive_order):
        line_id = hive_order.items[0].id

        response = client.post(
            f"/api/orders/{hive_order.id}/fulfill",
            json={"items": [{"order_item_id": line_id, "quantity": 5}]},
            headers=owner_headers,
        )

        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_outsider_cannot_fulfill(self, client, outsider_headers, hive_order):
        line_id = hive_order.items[0].id

        response = client.post(
            f"/api/orders/{hive_order.id}/fulfill",
            json={"items": [{"order_item_id": line_id, "quantity": 1}]},
            headers=outsider_headers,
        )

        assert response.status_code == 404

    def test_cancel_twice_is_409(self, client, owner_headers, hive_order):
        url = f"/api/orders/{hive_order.id}/cancel"
        assert client.post(url, json={"reason": "Duplicate"}, headers=owner_headers).status_code == 200
        assert client.post(url, json={}, headers=owner_headers).status_code == 409

    def test_archive_round_trip(self, client, db_session, owner_headers, hive_order):
        response = client.post("/api/orders/archive", json={"order_ids": [hive_order.id]}, headers=owner_headers)
        assert response.get_json()["data"] == {"archived": 1}

        response = client.post("/api/orders/unarchive", json={"order_ids": [hive_order.id]}, headers=owner_headers)
        assert response.get_json()["data"] == {"unarchived": 1}
        db_session.expire_all()
        assert db_session.get(Order, hive_order.id).status == "open"


class TestDraftOrderRoutes:
    def test_create_and_complete(self, client, owner_headers, store, honey):
        listing, variant, _ = honey
        response = client.post(
            "/api/draft-orders/",
            json={
                "store_id": store.id,
                "customer_email": "buyer@example.com",
                "items": [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 2}],
            },
            headers=owner_headers,
        )
        assert response.status_code == 201
        draft_id = response.get_json()["data"]["draft_order"]["id"]

        response = client.post(f"/api/draft-orders/{draft_id}/complete", json={}, headers=owner_headers)
        assert response.status_code == 201
        assert response.get_json()["data"]["order"]["payment_status"] == "pending"

        response = client.post(f"/api/draft-orders/{draft_id}/complete", json={}, headers=owner_headers)
        assert response.status_code == 409

    def test_create_for_foreign_store_forbidden(self, client, db_session, outsider_headers, store, honey):
        listing, variant, _ = honey
        response = client.post(
            "/api/draft-orders/",
            json={"store_id": store.id, "items": [{"listing_id": listing.id, "quantity": 1}]},
            headers=outsider_headers,
        )

        assert response.status_code == 403
        assert db_session.query(DraftOrder).count() == 0

    def test_send_invoice(self, client, owner_headers, mailbox, store, honey):
        listing, variant, _ = honey
        draft = order_service.create_draft_order(
            store.id,
            [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 1}],
            customer_email="buyer@example.com",
        )

        response = client.post(f"/api/draft-orders/{draft.id}/send-invoice", json={}, headers=owner_headers)

        assert response.status_code == 200
        assert response.get_json()["data"]["delivered"] is True
        assert mailbox.sent[0].to == "buyer@example.com"


class TestInventoryRoutes:
    def test_rows_scoped(self, client, owner_headers, honey, candle):
        response = client.get("/api/inventory/rows", headers=owner_headers)

        data = response.get_json()["data"]
        assert data["total"] == 1
        assert data["rows"][0]["sku"] == "HONEY-1"

    def test_adjust_level(self, client, db_session, owner_headers, honey):
        _, _, level = honey

        response = client.post(
            f"/api/inventory/levels/{level.id}/adjust",
            json={"available": 15, "reason": "delivery"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["change"] == 5
        db_session.expire_all()
        assert (level.available, level.on_hand) == (15, 15)

    def test_outsider_cannot_adjust(self, client, db_session, outsider_headers, honey):
        _, _, level = honey

        response = client.post(
            f"/api/inventory/levels/{level.id}/adjust",
            json={"available": 0},
            headers=outsider_headers,
        )

        assert response.status_code == 404
        db_session.expire_all()
        assert level.available == 10

    def test_adjust_requires_available(self, client, owner_headers, honey):
        _, _, level = honey
        response = client.post(f"/api/inventory/levels/{level.id}/adjust", json={}, headers=owner_headers)
        assert response.status_code == 400


class TestBalanceRoutes:
    def test_owner_reads_own_balance(self, client, owner_headers, store):
        response = client.get(f"/api/balances/{store.id}", headers=owner_headers)

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["balance"]["available_balance"] == "0.00"
        assert data["transactions"] == []

    def test_outsider_forbidden(self, client, outsider_headers, store):
        response = client.get(f"/api/balances/{store.id}", headers=outsider_headers)
        assert response.status_code == 403

    def test_admin_allowed(self, client, admin_headers, store):
        assert client.get(f"/api/balances/{store.id}", headers=admin_headers).status_code == 200

    def test_owner_requests_payout(self, client, db_session, provider, owner_headers, store):
        balance_service.record_balance_transaction(store.id, balance_service.TX_ADJUSTMENT, "60.00", currency="EUR")
        db_session.commit()

        response = client.post(f"/api/balances/{store.id}/payouts", json={"amount": "40.00"}, headers=owner_headers)

        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["payout"]["status"] == "completed"
        assert data["balance"]["available_balance"] == "20.00"

        listed = client.get(f"/api/balances/{store.id}/payouts", headers=owner_headers).get_json()["data"]
        assert [p["amount"] for p in listed["payouts"]] == ["40.00"]

    def test_payout_validation_error(self, client, owner_headers, store):
        response = client.post(f"/api/balances/{store.id}/payouts", json={"amount": "40.00"}, headers=owner_headers)

        assert response.status_code == 400
        assert response.get_json()["error"].startswith("Insufficient available balance")

    def test_outsider_cannot_request_payout(self, client, outsider_headers, store):
        response = client.post(f"/api/balances/{store.id}/payouts", json={"amount": "40.00"}, headers=outsider_headers)
        assert response.status_code == 403

    def test_processing_requires_admin(self, client, db_session, owner_headers, admin_headers, store):
        balance_service.record_balance_transaction(store.id, balance_service.TX_ADJUSTMENT, "60.00", currency="EUR")
        db_session.commit()
        payout = balance_service.request_payout(store.id, "40.00")

        response = client.post(f"/api/balances/payouts/{payout.id}/process", headers=owner_headers)
        assert response.status_code == 403
        assert response.get_json() == {"error": "Admin access required"}

        response = client.post(f"/api/balances/payouts/{payout.id}/process", headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["payout"]["status"] == "completed"


class TestOrderEntryRoutes:
    def test_create_order(self, client, db_session, owner_headers, store, honey):
        listing, variant, level = honey

        response = client.post(
            "/api/orders/",
            json={
                "store_id": store.id,
                "customer_email": "walk.in@example.com",
                "items": [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 2}],
                "mark_as_paid": True,
            },
            headers=owner_headers,
        )

        assert response.status_code == 201
        order = response.get_json()["data"]["order"]
        assert (order["status"], order["payment_status"]) == ("open", "paid")
        assert order["payments"][0]["provider"] == "manual"
        db_session.expire_all()
        assert level.committed == 2

    def test_create_order_requires_email(self, client, owner_headers, store, honey):
        listing, variant, _ = honey
        response = client.post(
            "/api/orders/",
            json={"store_id": store.id, "items": [{"listing_id": listing.id, "quantity": 1}]},
            headers=owner_headers,
        )
        assert response.status_code == 400

    def test_create_order_for_foreign_store_forbidden(self, client, db_session, outsider_headers, store, honey):
        listing, variant, _ = honey
        response = client.post(
            "/api/orders/",
            json={
                "store_id": store.id,
                "customer_email": "walk.in@example.com",
                "items": [{"listing_id": listing.id, "quantity": 1}],
            },
            headers=outsider_headers,
        )

        assert response.status_code == 403
        assert db_session.query(Order).count() == 0


class TestDraftEditingRoutes:
    @pytest.fixture
    def open_draft(self, db_session, store, honey):
        listing, variant, _ = honey
        return order_service.create_draft_order(
            store.id,
            [{"listing_id": listing.id, "variant_id": variant.id, "quantity": 2}],
            customer_email="buyer@example.com",
        )

    def test_list_open_drafts(self, client, owner_headers, outsider_headers, open_draft):
        response = client.get("/api/draft-orders/?view=open", headers=owner_headers)

        data = response.get_json()["data"]
        assert data["total"] == 1
        assert data["draft_orders"][0]["id"] == open_draft.id
        assert client.get("/api/draft-orders/", headers=outsider_headers).get_json()["data"]["total"] == 0

    def test_patch_draft(self, client, owner_headers, open_draft):
        response = client.patch(
            f"/api/draft-orders/{open_draft.id}", json={"shipping_amount": "5.00"}, headers=owner_headers
        )

        assert response.status_code == 200
        assert response.get_json()["data"]["draft_order"]["total_amount"] == "25.00"

    def test_patch_completed_draft_is_409(self, client, owner_headers, open_draft):
        order_service.complete_draft_order(open_draft.id)

        response = client.patch(f"/api/draft-orders/{open_draft.id}", json={"note": "x"}, headers=owner_headers)

        assert response.status_code == 409

    def test_duplicate_and_delete(self, client, db_session, owner_headers, open_draft):
        response = client.post(f"/api/draft-orders/{open_draft.id}/duplicate", headers=owner_headers)
        assert response.status_code == 201
        copy_id = response.get_json()["data"]["draft_order"]["id"]

        response = client.post(
            "/api/draft-orders/delete", json={"draft_ids": [open_draft.id, copy_id]}, headers=owner_headers
        )

        assert response.status_code == 200
        assert response.get_json()["data"] == {"deleted": sorted([open_draft.id, copy_id]), "skipped": []}
        assert db_session.query(DraftOrder).count() == 0

    def test_outsider_cannot_delete(self, client, db_session, outsider_headers, open_draft):
        response = client.post(
            "/api/draft-orders/delete", json={"draft_ids": [open_draft.id]}, headers=outsider_headers
        )

        assert response.status_code == 400
        assert db_session.query(DraftOrder).count() == 1
