import pytest
from bson import ObjectId
from fastapi import HTTPException
from fastapi.testclient import TestClient

import orders
from conftest import bearer
from orders import reserve_stock

MISSING_ID = "ffffffffffffffffffffffff"


def available(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["available"]


def create(client, headers, user_id, items):
    return client.post("/api/orders/create", json={"userId": user_id, "items": items}, headers=headers)


# ------------- Creation -------------

def test_create_order_prices_and_reserves_stock(client, db, user_id, user_headers, make_product):
    product_id = make_product(price=9.99, available=3)

    resp = create(client, user_headers, user_id, [{"productId": product_id, "quantity": 2}])

    assert resp.status_code == 201, resp.text
    order = resp.json()
    assert order["totalPrice"] == 19.98
    assert order["status"] == "pending"
    assert order["userId"] == user_id
    assert order["items"] == [{"productId": product_id, "name": "Fjallraven Backpack", "unitPrice": 9.99, "quantity": 2}]
    assert order["id"] and order["createdAt"]
    assert available(db, product_id) == 1


def test_total_is_exact_to_the_cent(client, user_id, user_headers, make_product):
    a = make_product(name="Mens Casual Tee", price=19.99, available=10)
    b = make_product(name="Sticker Pack", price=0.1, available=10)

    resp = create(client, user_headers, user_id, [{"productId": a, "quantity": 3}, {"productId": b, "quantity": 7}])

    assert resp.status_code == 201
    assert resp.json()["totalPrice"] == 60.67


def test_snake_case_body_is_accepted(client, user_id, user_headers, make_product):
    product_id = make_product()
    resp = client.post(
        "/api/orders/create",
        json={"user_id": user_id, "items": [{"product_id": product_id, "quantity": 1}]},
        headers=user_headers,
    )
    assert resp.status_code == 201


@pytest.mark.parametrize("quantity", [0, -1, "2", 1.5, None])
def test_bad_quantity_fails_whole_batch(client, db, user_id, user_headers, make_product, quantity):
    product_id = make_product()

    resp = create(client, user_headers, user_id, [
        {"productId": product_id, "quantity": 1},
        {"productId": product_id, "quantity": quantity},
    ])

    assert resp.status_code == 400
    assert "error" in resp.json()
    assert db["order"].count_documents({}) == 0
    assert available(db, product_id) == 3


def test_item_without_product_id_fails_whole_batch(client, db, user_id, user_headers, make_product):
    product_id = make_product()

    resp = create(client, user_headers, user_id, [{"productId": product_id, "quantity": 1}, {"quantity": 1}])

    assert resp.status_code == 400
    assert db["order"].count_documents({}) == 0


def test_empty_items_rejected(client, db, user_id, user_headers):
    resp = create(client, user_headers, user_id, [])
    assert resp.status_code == 400
    assert db["order"].count_documents({}) == 0


def test_unknown_product_fails_whole_batch(client, db, user_id, user_headers, make_product):
    product_id = make_product()

    resp = create(client, user_headers, user_id, [
        {"productId": product_id, "quantity": 1},
        {"productId": MISSING_ID, "quantity": 1},
    ])

    assert resp.status_code == 404
    assert MISSING_ID in resp.json()["error"]
    assert db["order"].count_documents({}) == 0
    assert available(db, product_id) == 3


def test_uppercase_ids_resolve_to_stored_documents(client, db, user_id, user_headers, make_product):
    product_id = make_product(available=3)

    resp = create(client, user_headers, user_id.upper(), [{"productId": product_id.upper(), "quantity": 1}])

    assert resp.status_code == 201, resp.text
    assert resp.json()["userId"] == user_id
    assert resp.json()["items"][0]["productId"] == product_id
    assert available(db, product_id) == 2


def test_malformed_product_id_counts_as_unknown(client, user_id, user_headers):
    resp = create(client, user_headers, user_id, [{"productId": "42", "quantity": 1}])
    assert resp.status_code == 404


def test_insufficient_stock_names_counts(client, db, user_id, user_headers, make_product):
    product_id = make_product(available=3)

    resp = create(client, user_headers, user_id, [{"productId": product_id, "quantity": 4}])

    assert resp.status_code == 400
    error = resp.json()["error"]
    assert "Fjallraven Backpack" in error
    assert "available 3" in error
    assert "requested 4" in error
    assert db["order"].count_documents({}) == 0


def test_repeated_product_checked_against_combined_quantity(client, db, user_id, user_headers, make_product):
    product_id = make_product(available=3)

    resp = create(client, user_headers, user_id, [
        {"productId": product_id, "quantity": 2},
        {"productId": product_id, "quantity": 2},
    ])

    assert resp.status_code == 400
    assert "requested 4" in resp.json()["error"]
    assert available(db, product_id) == 3


def test_stock_can_not_be_oversold(client, db, user_id, user_headers, make_product):
    product_id = make_product(available=3)
    items = [{"productId": product_id, "quantity": 2}]

    assert create(client, user_headers, user_id, items).status_code == 201
    assert create(client, user_headers, user_id, items).status_code == 400
    assert db["order"].count_documents({}) == 1
    assert available(db, product_id) == 1


def test_failed_insert_gives_stock_back(app, db, user_id, user_headers, make_product, monkeypatch):
    product_id = make_product(available=3)

    def failing(*args, **kwargs):
        raise RuntimeError("write concern error")

    monkeypatch.setattr(orders, "create_document", failing)
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = create(client, user_headers, user_id, [{"productId": product_id, "quantity": 2}])

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}
    assert available(db, product_id) == 3
    assert db["order"].count_documents({}) == 0


def test_reserve_stock_is_all_or_nothing(db, make_product):
    plenty = make_product(name="Plenty", available=5)
    scarce = make_product(name="Scarce", available=1)

    with pytest.raises(HTTPException) as exc:
        reserve_stock(db, {plenty: 2, scarce: 2})

    assert exc.value.status_code == 400
    assert available(db, plenty) == 5
    assert available(db, scarce) == 1


@pytest.mark.parametrize("target", [MISSING_ID, "not-an-id"])
def test_non_admin_impersonation_is_always_403(client, db, user_id, user_headers, make_product, target):
    product_id = make_product()

    resp = create(client, user_headers, target, [{"productId": product_id, "quantity": 1}])

    assert resp.status_code == 403
    assert db["order"].count_documents({}) == 0


def test_non_admin_impersonating_existing_user_is_403(client, make_user, user_id, user_headers, make_product):
    other = make_user(email="other@store.com")
    product_id = make_product()

    resp = create(client, user_headers, other, [{"productId": product_id, "quantity": 1}])

    assert resp.status_code == 403


def test_admin_orders_for_unknown_user_is_404(client, admin_headers, make_product):
    product_id = make_product()
    resp = create(client, admin_headers, MISSING_ID, [{"productId": product_id, "quantity": 1}])
    assert resp.status_code == 404


def test_admin_can_order_for_another_user(client, user_id, admin_headers, make_product):
    product_id = make_product()
    resp = create(client, admin_headers, user_id, [{"productId": product_id, "quantity": 1}])
    assert resp.status_code == 201
    assert resp.json()["userId"] == user_id


def test_create_requires_authentication(client, db, user_id, make_product):
    product_id = make_product()
    resp = create(client, {}, user_id, [{"productId": product_id, "quantity": 1}])
    assert resp.status_code == 401
    assert db["order"].count_documents({}) == 0


# ------------- Reads -------------

@pytest.fixture
def order(client, user_id, user_headers, make_product):
    product_id = make_product(available=5)
    resp = create(client, user_headers, user_id, [{"productId": product_id, "quantity": 2}])
    assert resp.status_code == 201
    return resp.json()


def test_get_order_owner_admin_and_stranger(client, make_user, login, order, user_headers, admin_headers):
    make_user(email="stranger@store.com")
    stranger = bearer(login("stranger@store.com")["accessToken"])

    assert client.get(f"/api/orders/{order['id']}", headers=user_headers).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/orders/{order['id']}", headers=stranger).status_code == 403
    assert client.get(f"/api/orders/{MISSING_ID}", headers=admin_headers).status_code == 404
    assert client.get("/api/orders/bad-id", headers=admin_headers).status_code == 400


def test_user_orders(client, user_id, order, user_headers, admin_headers, make_user):
    other = make_user(email="other@store.com")

    resp = client.get(f"/api/orders/user_orders/{user_id}", headers=user_headers)
    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [order["id"]]

    assert client.get(f"/api/orders/user_orders/{other}", headers=user_headers).status_code == 403
    assert client.get(f"/api/orders/user_orders/{MISSING_ID}", headers=user_headers).status_code == 403
    assert client.get(f"/api/orders/user_orders/{MISSING_ID}", headers=admin_headers).status_code == 404
    assert client.get(f"/api/orders/user_orders/{other}", headers=admin_headers).json() == []


def test_list_orders_is_admin_only(client, order, user_headers, admin_headers):
    assert client.get("/api/orders", headers=user_headers).status_code == 403
    resp = client.get("/api/orders", headers=admin_headers)
    assert resp.status_code == 200
    assert len(resp.json()) == 1


# ------------- Status -------------

def change(client, headers, order_id, status):
    return client.patch(f"/api/orders/change_status/{order_id}", json={"status": status}, headers=headers)


def test_admin_moves_order_through_lifecycle(client, order, admin_headers):
    for status in ("processing", "shipped", "delivered"):
        resp = change(client, admin_headers, order["id"], status)
        assert resp.status_code == 200
        assert resp.json()["status"] == status


def test_same_status_is_rejected_without_write(client, db, order, admin_headers):
    before = db["order"].find_one({"_id": ObjectId(order["id"])})

    resp = change(client, admin_headers, order["id"], "pending")

    assert resp.status_code == 400
    assert resp.json()["error"] == "The status provided is already set"
    assert db["order"].find_one({"_id": ObjectId(order["id"])}) == before


def test_unknown_status_is_rejected(client, order, admin_headers):
    resp = change(client, admin_headers, order["id"], "lost")
    assert resp.status_code == 400
    assert client.patch(f"/api/orders/change_status/{order['id']}", json={}, headers=admin_headers).status_code == 400


def test_status_change_is_admin_only(client, order, user_headers):
    assert change(client, user_headers, order["id"], "shipped").status_code == 403


def test_status_change_unknown_order(client, admin_headers):
    assert change(client, admin_headers, MISSING_ID, "shipped").status_code == 404


def test_cancelling_releases_stock_and_reopening_takes_it_back(client, db, order, admin_headers):
    product_id = order["items"][0]["productId"]
    assert available(db, product_id) == 3

    assert change(client, admin_headers, order["id"], "cancelled").status_code == 200
    assert available(db, product_id) == 5

    assert change(client, admin_headers, order["id"], "processing").status_code == 200
    assert available(db, product_id) == 3


def test_reopening_fails_when_stock_is_gone(client, db, order, admin_headers):
    product_id = order["items"][0]["productId"]
    change(client, admin_headers, order["id"], "cancelled")
    db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"available": 1}})

    resp = change(client, admin_headers, order["id"], "pending")

    assert resp.status_code == 400
    assert db["order"].find_one({"_id": ObjectId(order["id"])})["status"] == "cancelled"
    assert available(db, product_id) == 1


@pytest.mark.parametrize("shipped", ["shipped", "delivered"])
def test_cancelling_shipped_order_keeps_stock_out(client, db, order, admin_headers, shipped):
    product_id = order["items"][0]["productId"]
    change(client, admin_headers, order["id"], "processing")
    change(client, admin_headers, order["id"], shipped)

    assert change(client, admin_headers, order["id"], "cancelled").status_code == 200
    assert available(db, product_id) == 3

    # never released, so reopening takes nothing more
    assert change(client, admin_headers, order["id"], "delivered" if shipped == "shipped" else "shipped").status_code == 200
    assert available(db, product_id) == 3


def test_reopened_order_restocks_when_cancelled_again(client, db, order, admin_headers):
    product_id = order["items"][0]["productId"]
    change(client, admin_headers, order["id"], "cancelled")
    change(client, admin_headers, order["id"], "pending")
    assert available(db, product_id) == 3

    assert change(client, admin_headers, order["id"], "cancelled").status_code == 200
    assert available(db, product_id) == 5


def test_owner_cancels_pending_order(client, db, order, user_headers):
    resp = client.patch(f"/api/orders/cancel/{order['id']}", headers=user_headers)

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert available(db, order["items"][0]["productId"]) == 5


def test_only_pending_orders_can_be_cancelled(client, order, user_headers, admin_headers):
    change(client, admin_headers, order["id"], "shipped")
    resp = client.patch(f"/api/orders/cancel/{order['id']}", headers=user_headers)
    assert resp.status_code == 400


def test_stranger_can_not_cancel(client, make_user, login, order):
    make_user(email="stranger@store.com")
    stranger = bearer(login("stranger@store.com")["accessToken"])
    assert client.patch(f"/api/orders/cancel/{order['id']}", headers=stranger).status_code == 403


# ------------- Checkout -------------

def test_checkout_orders_for_the_caller(client, db, user_id, user_headers, make_product):
    product_id = make_product(price=9.99, available=3)

    resp = client.post("/checkout", json={"items": [{"productId": product_id, "quantity": 3}]}, headers=user_headers)

    assert resp.status_code == 201
    assert resp.json()["userId"] == user_id
    assert resp.json()["totalPrice"] == 29.97
    assert available(db, product_id) == 0


def test_checkout_requires_authentication(client, make_product):
    product_id = make_product()
    resp = client.post("/checkout", json={"items": [{"productId": product_id, "quantity": 1}]})
    assert resp.status_code == 401
