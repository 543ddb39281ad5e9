import pytest
from bson.objectid import ObjectId
from fastapi import HTTPException

import cart as cart_routes


def assert_totals_consistent(cart):
    assert cart["total_items"] == sum(i["quantity"] for i in cart["items"])
    assert cart["total_price"] == pytest.approx(sum(i["price"] * i["quantity"] for i in cart["items"]))


def test_empty_cart(client, user):
    _, headers = user
    body = client.get("/cart", headers=headers).json()
    assert body["items"] == []
    assert (body["total_items"], body["total_price"]) == (0, 0.0)


def test_cart_walkthrough(client, user, make_product):
    _, headers = user
    pid = make_product(price=100.0)

    res = client.post("/cart", json={"product_id": pid, "quantity": 2}, headers=headers)
    assert res.status_code == 200
    cart = res.json()["cart"]
    assert (cart["total_items"], cart["total_price"]) == (2, 200.0)
    item_id = cart["items"][0]["item_id"]

    cart = client.put(f"/cart/{item_id}", json={"quantity": 5}, headers=headers).json()["cart"]
    assert (cart["total_items"], cart["total_price"]) == (5, 500.0)

    cart = client.delete(f"/cart/{item_id}", headers=headers).json()["cart"]
    assert (cart["items"], cart["total_items"], cart["total_price"]) == ([], 0, 0.0)


def test_add_snapshots_product_and_merges_lines(client, user, make_product):
    _, headers = user
    pid = make_product(name="Kettle", price=35.5, image="/uploads/kettle.png")
    other = make_product(name="Mug", price=4.25)

    client.post("/cart", json={"product_id": pid, "quantity": 1}, headers=headers)
    client.post("/cart", json={"product_id": other, "quantity": 3}, headers=headers)
    cart = client.post("/cart", json={"product_id": pid, "quantity": 2}, headers=headers).json()["cart"]

    assert [(i["name"], i["quantity"]) for i in cart["items"]] == [("Kettle", 3), ("Mug", 3)]
    assert cart["items"][0]["image"] == "/uploads/kettle.png"
    assert cart["total_price"] == 119.25
    assert_totals_consistent(cart)


def test_add_unknown_or_inactive_product(client, user, make_product):
    _, headers = user
    res = client.post("/cart", json={"product_id": str(ObjectId()), "quantity": 1}, headers=headers)
    assert res.status_code == 404
    inactive = make_product(is_active=False)
    assert client.post("/cart", json={"product_id": inactive, "quantity": 1}, headers=headers).status_code == 404


def test_update_rejects_quantity_below_one(client, user, make_product):
    _, headers = user
    cart = client.post("/cart", json={"product_id": make_product(), "quantity": 1}, headers=headers).json()["cart"]
    res = client.put(f"/cart/{cart['items'][0]['item_id']}", json={"quantity": 0}, headers=headers)
    assert res.status_code == 400


def test_update_unknown_item(client, user):
    _, headers = user
    res = client.put("/cart/nope", json={"quantity": 2}, headers=headers)
    assert res.status_code == 404
    assert res.json() == {"message": "Cart item not found"}


def test_clear_cart(client, user, make_product):
    _, headers = user
    client.post("/cart", json={"product_id": make_product(), "quantity": 4}, headers=headers)
    body = client.delete("/cart", headers=headers).json()
    assert body["success"] is True
    assert (body["cart"]["items"], body["cart"]["total_items"], body["cart"]["total_price"]) == ([], 0, 0.0)


def test_carts_are_per_user(client, make_user, make_product):
    _, alice = make_user("Alice", "alice@example.com")
    _, bob = make_user("Bob", "bob@example.com")
    client.post("/cart", json={"product_id": make_product(), "quantity": 1}, headers=alice)
    assert client.get("/cart", headers=bob).json()["items"] == []


def test_cart_requires_auth(client):
    assert client.get("/cart").status_code == 401


# ---------- Concurrent writes ----------

def add(product_id, price, quantity=1):
    return lambda c: c.add_item(product_id, product_id.title(), price, None, quantity)


def test_stale_write_is_rejected(db):
    cart_routes.mutate_cart(db, "u1", add("p1", 10.0))
    stale, exists = cart_routes.load_cart(db, "u1")
    cart_routes.mutate_cart(db, "u1", add("p2", 5.0))

    stale.add_item("p3", "P3", 1.0, None, 1)
    assert cart_routes.save_cart(db, stale, exists) is False

    fresh, _ = cart_routes.load_cart(db, "u1")
    assert [i.product_id for i in fresh.items] == ["p1", "p2"]
    assert fresh.version == 2


def test_concurrent_first_write_is_rejected(db):
    stale, exists = cart_routes.load_cart(db, "u1")
    assert exists is False
    cart_routes.mutate_cart(db, "u1", add("p1", 10.0))
    stale.add_item("p2", "P2", 1.0, None, 1)
    assert cart_routes.save_cart(db, stale, exists) is False
    assert db["cart"].count_documents({"user_id": "u1"}) == 1


def test_mutation_replayed_after_concurrent_write(db):
    cart_routes.mutate_cart(db, "u1", add("p1", 10.0))
    calls = []

    def racing_add(cart):
        if not calls:
            # another request lands between this one's read and write
            cart_routes.mutate_cart(db, "u1", add("p2", 5.0))
        calls.append(1)
        cart.add_item("p1", "P1", 10.0, None, 2)

    result = cart_routes.mutate_cart(db, "u1", racing_add)
    assert len(calls) == 2
    assert [(i.product_id, i.quantity) for i in result.items] == [("p1", 3), ("p2", 1)]
    assert (result.total_items, result.total_price) == (4, 35.0)


def test_gives_up_after_repeated_conflicts(db, monkeypatch):
    monkeypatch.setattr(cart_routes, "save_cart", lambda *args: False)
    with pytest.raises(HTTPException) as exc:
        cart_routes.mutate_cart(db, "u1", add("p1", 10.0))
    assert exc.value.status_code == 409
