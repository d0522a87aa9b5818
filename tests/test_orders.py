import pytest

import orders
from errors import InvalidStatusTransition, ValidationError
from schemas import OrderItem, Product


def _place(client, headers, shipping_address, **extra):
    return client.post("/api/orders", json={"shipping_address": shipping_address, **extra}, headers=headers)


def test_totals_below_threshold_pay_shipping(client, product, auth_headers, shipping_address):
    client.post("/api/cart", json={"product_id": product["id"], "size": "M"}, headers=auth_headers)
    res = _place(client, auth_headers, shipping_address)
    assert res.status_code == 200
    order = res.json()
    assert (order["subtotal"], order["shipping_fee"], order["total"]) == (450, 50, 500)
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["items"][0]["name"] == "Classic Cricket Jersey"
    assert order["items"][0]["price"] == 450
    assert order["items"][0]["image"] == "/attached_assets/cricket-jersey.png"


def test_totals_at_threshold_ship_free():
    items = [OrderItem(name="Tee", price=250, quantity=2)]
    assert orders.compute_totals(items) == (500.0, 0.0, 500.0)
    items = [OrderItem(name="Tee", price=600, quantity=1)]
    assert orders.compute_totals(items) == (600.0, 0.0, 600.0)
    items = [OrderItem(name="Tee", price=0.1, quantity=3)]
    assert orders.compute_totals(items) == (0.3, 50.0, 50.3)


def test_placing_an_order_empties_the_cart(client, product, auth_headers, shipping_address):
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 2}, headers=auth_headers)
    client.post("/api/cart", json={"custom_design": {"scale": 75, "price": 450, "image": "/api/images/a.png"}}, headers=auth_headers)
    order = _place(client, auth_headers, shipping_address, payment_status="paid").json()
    assert order["subtotal"] == 1350
    assert order["shipping_fee"] == 0
    assert order["payment_status"] == "paid"
    design_item = next(i for i in order["items"] if i["custom_design"])
    assert design_item["name"] == "Custom T-Shirt"
    assert design_item["product_id"] is None
    assert client.get("/api/cart", headers=auth_headers).json() == []


def test_custom_design_is_priced_by_scale_not_by_client(client, auth_headers, shipping_address):
    design = {"scale": 150, "rotation": 0, "x": 0, "y": 0, "image": "/api/images/a.png", "price": 0}
    line = client.post("/api/cart", json={"custom_design": design, "quantity": 3}, headers=auth_headers).json()
    assert line["custom_design"]["price"] == 600
    order = _place(client, auth_headers, shipping_address).json()
    assert (order["subtotal"], order["shipping_fee"], order["total"]) == (1800, 0, 1800)
    assert order["items"][0]["price"] == 600


def test_order_snapshot_survives_product_changes(client, storage, product, auth_headers, shipping_address):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    order = _place(client, auth_headers, shipping_address).json()
    storage.update_product(product["id"], {"price": 999, "name": "Renamed"})
    fetched = client.get(f"/api/orders/{order['id']}", headers=auth_headers).json()
    assert fetched["items"][0]["price"] == 450
    assert fetched["items"][0]["name"] == "Classic Cricket Jersey"


def test_empty_cart_cannot_be_ordered(client, auth_headers, shipping_address):
    res = _place(client, auth_headers, shipping_address)
    assert res.status_code == 400
    assert res.json() == {"message": "Cart is empty"}


def test_order_needs_an_address(client, product, auth_headers):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    assert client.post("/api/orders", json={}, headers=auth_headers).status_code == 400


def test_order_from_saved_address(client, product, auth_headers, shipping_address):
    address = client.post("/api/addresses", json=shipping_address, headers=auth_headers).json()
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    order = client.post("/api/orders", json={"address_id": address["id"]}, headers=auth_headers).json()
    assert order["shipping_address"]["pincode"] == "560001"


def test_inactive_product_blocks_checkout(client, storage, product, auth_headers, shipping_address):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    storage.update_product(product["id"], {"is_active": False})
    res = _place(client, auth_headers, shipping_address)
    assert res.status_code == 400
    assert len(client.get("/api/cart", headers=auth_headers).json()) == 1


def test_orders_are_private(client, product, auth_headers, other_user, admin_headers, shipping_address):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    order = _place(client, auth_headers, shipping_address).json()
    assert client.get(f"/api/orders/{order['id']}", headers=other_user[1]).status_code == 403
    assert client.get(f"/api/orders/{order['id']}", headers=admin_headers).status_code == 200
    assert client.get("/api/orders", headers=other_user[1]).json() == []
    assert [o["id"] for o in client.get("/api/orders", headers=auth_headers).json()] == [order["id"]]
    assert client.get("/api/orders/missing", headers=auth_headers).status_code == 404


def test_failed_cart_clear_is_retried(client, storage, product, user, auth_headers, shipping_address, monkeypatch):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)
    real_clear = storage.clear_cart
    calls = []

    def flaky_clear(user_id):
        calls.append(user_id)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        return real_clear(user_id)

    monkeypatch.setattr(storage, "clear_cart", flaky_clear)
    res = _place(client, auth_headers, shipping_address)
    assert res.status_code == 200
    assert user[0]["id"] in client.app.state.cart_cleanup

    assert client.get("/api/cart", headers=auth_headers).json() == []
    assert user[0]["id"] not in client.app.state.cart_cleanup
    assert len(client.get("/api/orders", headers=auth_headers).json()) == 1


def test_pending_cleanup_blocks_a_second_order(client, storage, product, user, auth_headers, shipping_address, monkeypatch):
    client.post("/api/cart", json={"product_id": product["id"]}, headers=auth_headers)

    def broken_clear(user_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(storage, "clear_cart", broken_clear)
    assert _place(client, auth_headers, shipping_address).status_code == 200
    assert _place(client, auth_headers, shipping_address).status_code == 409
    assert len(client.get("/api/orders", headers=auth_headers).json()) == 1


def _order(storage, user_id, status="pending"):
    product = storage.create_product(Product(slug=f"tee-{status}", name="Tee", price=100))
    order = orders.create_order(
        storage,
        user_id,
        [{"kind": "product", "product_id": product["id"], "quantity": 1, "product": product}],
        {"full_name": "A", "phone": "12345", "line1": "x", "city": "c", "state": "s", "pincode": "1234"},
    )
    if status != "pending":
        storage.update_order_status(order["id"], status)
    return order


def test_status_walks_forward(storage, user):
    order = _order(storage, user[0]["id"])
    for status in ("packed", "dispatched", "shipped", "delivered"):
        order = orders.set_status(storage, order["id"], status)
        assert order["status"] == status


@pytest.mark.parametrize("current,new", [
    ("packed", "pending"),
    ("pending", "shipped"),
    ("delivered", "cancelled"),
    ("cancelled", "pending"),
])
def test_illegal_transitions(storage, user, current, new):
    order = _order(storage, user[0]["id"], current)
    with pytest.raises(InvalidStatusTransition):
        orders.set_status(storage, order["id"], new)


def test_same_status_is_a_no_op(storage, user):
    order = _order(storage, user[0]["id"], "packed")
    assert orders.set_status(storage, order["id"], "packed")["status"] == "packed"


def test_stale_status_update_is_rejected(storage, user, monkeypatch):
    order = _order(storage, user[0]["id"])
    real_get = storage.get_order

    def stale_get(order_id):
        doc = real_get(order_id)
        storage.update_order_status(order_id, "cancelled")
        return doc

    monkeypatch.setattr(storage, "get_order", stale_get)
    with pytest.raises(InvalidStatusTransition):
        orders.set_status(storage, order["id"], "packed")
    assert real_get(order["id"])["status"] == "cancelled"


def test_create_order_rejects_empty_items(storage, user, shipping_address):
    with pytest.raises(ValidationError):
        orders.create_order(storage, user[0]["id"], [], shipping_address)


def test_admin_status_route(client, storage, user, admin_headers, auth_headers):
    order = _order(storage, user[0]["id"])
    res = client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "packed"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "packed"
    res = client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "pending"}, headers=admin_headers)
    assert res.status_code == 400
    res = client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "lost"}, headers=admin_headers)
    assert res.status_code == 400
    res = client.patch(f"/api/admin/orders/{order['id']}/status", json={"status": "shipped"}, headers=auth_headers)
    assert res.status_code == 403
    assert len(client.get("/api/admin/orders", headers=admin_headers).json()) == 1
