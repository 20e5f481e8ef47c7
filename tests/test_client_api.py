from decimal import Decimal

import pytest

from foodmarket.models import Role

from tests.conftest import seed_commerce, seed_commerce_type, seed_product


@pytest.fixture
def market(run, app_db):
    """Two commerces of one type, each with a product."""
    type_id = run(seed_commerce_type, app_db, "Fast food")
    grill = run(seed_commerce, app_db, type_id, "Grill House")
    juice = run(seed_commerce, app_db, type_id, "Juice Bar")
    return {
        "type_id": type_id,
        "grill": grill,
        "juice": juice,
        "burger": run(seed_product, app_db, grill, "Burger", "10.00", "Mains"),
        "smoothie": run(seed_product, app_db, juice, "Smoothie", "5.00"),
    }


@pytest.fixture
def shopper(make_user):
    return make_user(Role.CLIENT)


def _cart(client, headers, action, product_id):
    resp = client.post("/client/cart", headers=headers, json={"action": action, "product_id": product_id})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _address(client, headers) -> str:
    resp = client.post("/client/addresses", headers=headers, json={"name": "Home", "description": "Calle 1 #23"})
    assert resp.status_code == 200
    return resp.json()["data"]["id"]


class TestBrowsing:
    def test_home_lists_commerce_types(self, client, market, shopper):
        _, headers = shopper
        data = client.get("/client/home", headers=headers).json()["data"]
        assert [t["name"] for t in data] == ["Fast food"]

    def test_commerces_by_type_and_search(self, client, market, shopper):
        _, headers = shopper
        data = client.get(f"/client/commerces/{market['type_id']}", headers=headers).json()["data"]
        assert [c["name"] for c in data["commerces"]] == ["Grill House", "Juice Bar"]

        found = client.get("/client/search-commerces", params={"q": "juice"}, headers=headers).json()["data"]
        assert [c["name"] for c in found["commerces"]] == ["Juice Bar"]

    def test_catalog_groups_products(self, client, market, shopper):
        _, headers = shopper
        data = client.get(f"/client/catalog/{market['grill']}", headers=headers).json()["data"]
        assert data["commerce"]["name"] == "Grill House"
        assert [c["name"] for c in data["categories"]] == ["Mains"]
        assert data["categories"][0]["products"][0]["name"] == "Burger"
        assert data["cart"]["totalItems"] == 0

    def test_unknown_commerce(self, client, shopper):
        _, headers = shopper
        assert client.get("/client/catalog/not-an-id", headers=headers).status_code == 404


class TestCartApi:
    def test_cart_actions(self, client, market, shopper):
        _, headers = shopper
        _cart(client, headers, "add", market["burger"])
        _cart(client, headers, "add", market["burger"])
        body = _cart(client, headers, "add", market["smoothie"])
        assert body["success"] is True
        assert body["totalItems"] == 3
        assert Decimal(body["subtotal"]) == Decimal("25.00")

        body = _cart(client, headers, "decrement", market["smoothie"])
        assert [i["name"] for i in body["cart"]] == ["Burger"]

        body = _cart(client, headers, "remove", market["burger"])
        assert body["cart"] == []
        assert Decimal(body["subtotal"]) == 0

    def test_bad_action(self, client, market, shopper):
        _, headers = shopper
        resp = client.post("/client/cart", headers=headers, json={"action": "explode", "product_id": market["burger"]})
        assert resp.status_code == 400

    def test_cart_is_per_session(self, client, market, make_user):
        _, first = make_user(Role.CLIENT)
        _, second = make_user(Role.CLIENT)
        _cart(client, first, "add", market["burger"])
        assert client.get("/client/cart", headers=second).json()["cart"] == []


class TestCheckout:
    def test_summary_previews_each_commerce(self, client, market, shopper):
        _, headers = shopper
        _cart(client, headers, "add", market["burger"])
        _cart(client, headers, "add", market["smoothie"])

        data = client.get("/client/order/summary", headers=headers).json()["data"]
        assert [o["commerce_name"] for o in data["orders"]] == ["Grill House", "Juice Bar"]
        assert Decimal(data["orders"][0]["tax_amount"]) == Decimal("1.80")
        assert Decimal(data["total"]) == Decimal("17.70")

    def test_summary_with_empty_cart(self, client, shopper):
        _, headers = shopper
        resp = client.get("/client/order/summary", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Cart is empty"

    def test_create_requires_address(self, client, market, shopper):
        _, headers = shopper
        _cart(client, headers, "add", market["burger"])
        resp = client.post("/client/order/create", headers=headers, json={})
        assert resp.status_code == 400
        assert resp.json()["details"] == ["Select a delivery address"]

    def test_create_orders_end_to_end(self, client, market, shopper):
        client_id, headers = shopper
        _cart(client, headers, "add", market["burger"])
        _cart(client, headers, "add", market["burger"])
        _cart(client, headers, "add", market["smoothie"])

        resp = client.post("/client/order/create", headers=headers, json={"address_id": _address(client, headers)})
        assert resp.status_code == 200
        body = resp.json()
        assert body["redirect"] == "/client/home"
        assert len(body["orders"]) == 2

        assert client.get("/client/cart", headers=headers).json()["cart"] == []

        orders = client.get("/client/orders", headers=headers).json()["data"]
        totals = sorted(Decimal(o["total"]) for o in orders)
        assert totals == [Decimal("5.90"), Decimal("23.60")]
        assert all(o["status"] == "pending" for o in orders)

        detail = client.get(f"/client/orders/{body['orders'][0]}", headers=headers).json()["data"]
        assert detail["address"]["name"] == "Home"
        assert detail["items"][0]["name"] == "Burger"
        assert detail["items"][0]["quantity"] == 2

        flash = client.get("/auth/me", headers=headers).json()["messages"]
        assert flash[0]["category"] == "success"
        assert client.get("/auth/me", headers=headers).json()["messages"] == []

    def test_cannot_read_other_clients_orders(self, client, market, make_user):
        _, owner = make_user(Role.CLIENT)
        _, other = make_user(Role.CLIENT)
        _cart(client, owner, "add", market["smoothie"])
        order_id = client.post(
            "/client/order/create", headers=owner, json={"address_id": _address(client, owner)}
        ).json()["orders"][0]

        assert client.get(f"/client/orders/{order_id}", headers=other).status_code == 404


class TestProfileAndAddresses:
    def test_profile_update_sanitizes(self, client, shopper):
        _, headers = shopper
        resp = client.put("/client/profile", headers=headers, json={
            "first_name": " <b>Ana</b> ", "last_name": "Perez", "phone": "809-555-0199",
        })
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["first_name"] == "&lt;b&gt;Ana&lt;/b&gt;"
        assert "password_hash" not in data

    def test_address_crud_scoped_to_owner(self, client, make_user):
        _, owner = make_user(Role.CLIENT)
        _, other = make_user(Role.CLIENT)
        address_id = _address(client, owner)

        assert client.get(f"/client/addresses/{address_id}", headers=other).status_code == 404
        assert client.delete(f"/client/addresses/{address_id}", headers=other).status_code == 404

        resp = client.put(f"/client/addresses/{address_id}", headers=owner, json={"name": "Work", "description": "Av. 2"})
        assert resp.json()["data"]["name"] == "Work"
        assert client.delete(f"/client/addresses/{address_id}", headers=owner).status_code == 200
        assert client.get("/client/addresses", headers=owner).json()["data"] == []


class TestFavorites:
    def test_add_twice_then_remove(self, client, market, shopper):
        _, headers = shopper
        for _ in range(2):
            resp = client.post("/client/favorites", headers=headers, json={"commerce_id": market["grill"], "action": "add"})
            assert resp.json()["data"]["action"] == "added"

        favorites = client.get("/client/favorites", headers=headers).json()["data"]
        assert [f["commerce"]["name"] for f in favorites] == ["Grill House"]

        client.post("/client/favorites", headers=headers, json={"commerce_id": market["grill"], "action": "remove"})
        assert client.get("/client/favorites", headers=headers).json()["data"] == []
