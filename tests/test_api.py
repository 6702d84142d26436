import pytest
from fastapi.testclient import TestClient

from main import app
from schemas import User, UserRole
from sessions import SessionRegistry
from store import StoreState
from tests.conftest import NOW, FakeIdentity, run


@pytest.fixture
def registry(storage, identity, config):
    def identity_factory():
        fake = FakeIdentity()
        fake.accounts = identity.accounts
        return fake

    state = StoreState(storage, config=config, clock=lambda: NOW)
    reg = SessionRegistry(state, identity_factory, "test-secret")
    run(reg.start())
    app.state.sessions = reg
    yield reg
    reg.dispose()


@pytest.fixture
def client(registry):
    return TestClient(app)


@pytest.fixture
def shop(registry):
    """Engine used to inspect and seed the shared state."""
    return registry.anonymous


def open_session(client):
    token = client.post("/session").json()["token"]
    client.headers["Authorization"] = f"Bearer {token}"
    return token


def login(client, email="sophie@example.com", password="secret"):
    r = client.post("/auth/login", json={"email": email, "password": password})
    if r.status_code == 200:
        client.headers["Authorization"] = f"Bearer {r.json()['token']}"
    return r


def test_root(client):
    assert client.get("/").json() == {"message": "Frosty Bite store is running"}


def test_list_and_filter_products(client):
    assert len(client.get("/products").json()) == 6
    cakes = client.get("/products", params={"category": "Cakes", "sort": "price_desc"}).json()
    assert [p["id"] for p in cakes] == ["1", "6"]
    assert [p["id"] for p in client.get("/products", params={"featured": True}).json()] == ["1", "2", "5"]


def test_get_product_404(client):
    assert client.get("/products/nope").status_code == 404


def test_cart_requires_session(client):
    assert client.get("/cart").status_code == 401
    assert client.post("/cart/add", json={"product_id": "2"}).status_code == 401


def test_cart_flow_and_checkout(client):
    open_session(client)
    r = client.post("/cart/add", json={"product_id": "2", "quantity": 2})
    assert r.json()["total"] == 90
    r = client.post("/cart/coupon", json={"code": "WELCOME10"})
    assert r.json()["discount"] == 9

    assert client.post("/checkout", json={}).status_code == 401
    assert login(client).status_code == 200
    assert client.get("/cart").json()["count"] == 2
    r = client.post("/checkout", json={"coupon_code": "WELCOME10"})
    assert r.status_code == 200
    order = r.json()["order"]
    assert order["total"] == 90
    assert order["discount"] == 9
    assert client.get("/cart").json()["items"] == []
    assert [o["id"] for o in client.get("/orders").json()] == [order["id"]]


def test_carts_are_per_session(registry):
    alice, bob = TestClient(app), TestClient(app)
    open_session(alice)
    open_session(bob)
    alice.post("/cart/add", json={"product_id": "2", "quantity": 2})
    assert bob.get("/cart").json()["items"] == []
    assert alice.get("/cart").json()["count"] == 2


def test_cart_update_and_remove(client):
    open_session(client)
    client.post("/cart/add", json={"product_id": "4", "quantity": 3})
    assert client.put("/cart/4", json={"quantity": 1}).json()["count"] == 1
    assert client.put("/cart/4", json={"quantity": 0}).json()["items"] == []


def test_invalid_coupon_is_400(client):
    open_session(client)
    client.post("/cart/add", json={"product_id": "4"})
    assert client.post("/cart/coupon", json={"code": "WELCOME10"}).status_code == 400


def test_login_error_detail_is_service_message(client):
    r = login(client, password="bad")
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid login credentials"


def test_login_returns_token(client):
    r = login(client)
    assert r.json()["user"]["email"] == "sophie@example.com"
    assert r.json()["token"]
    assert client.get("/me").status_code == 200


def test_invalid_token_is_401(client):
    client.headers["Authorization"] = "Bearer not-a-token"
    assert client.get("/products").status_code == 401


def test_admin_routes_require_admin(client):
    assert client.get("/admin/stats").status_code == 403
    login(client)
    assert client.get("/admin/stats").status_code == 403


def test_admin_sign_in_does_not_leak_to_other_clients(registry):
    admin = TestClient(app)
    assert login(admin, "admin", "admin123").status_code == 200
    assert admin.get("/admin/stats").status_code == 200

    stranger = TestClient(app)
    assert stranger.delete("/admin/orders/ord-123").status_code == 403
    open_session(stranger)
    assert stranger.delete("/admin/orders/ord-123").status_code == 403
    assert stranger.get("/me").status_code == 401

    assert admin.delete("/admin/orders/ord-123").json() == {"deleted": True}


def test_admin_product_crud(client, shop):
    login(client, "admin", "admin123")
    r = client.post("/admin/products", json={"name": "Scone", "price": 4, "category": "Pastries", "stock": 10})
    pid = r.json()["id"]
    assert shop.products[0].id == pid
    assert client.put(f"/admin/products/{pid}", json={"price": 5}).json()["price"] == 5
    assert client.delete(f"/admin/products/{pid}").json() == {"deleted": True}
    assert client.delete(f"/admin/products/{pid}").status_code == 404


def test_admin_orders_status_and_export(client):
    login(client, "admin", "admin123")
    assert client.put("/admin/orders/ord-124/status", json={"status": "completed"}).status_code == 200
    completed = client.get("/admin/orders", params={"status": "completed"}).json()
    assert {o["id"] for o in completed} == {"ord-123", "ord-124"}
    csv = client.get("/admin/orders/export").text
    assert csv.splitlines()[0] == "Order ID,Date,Customer,Total,Status"
    assert client.put("/admin/orders/ord-124/status", json={"status": "shipped"}).status_code == 422


def test_admin_coupons(client):
    login(client, "admin", "admin123")
    assert client.post("/admin/coupons", json={"code": "fall5", "discount_type": "flat", "value": 5}).json()["code"] == "FALL5"
    assert client.post("/admin/coupons", json={"code": "FALL5", "discount_type": "flat", "value": 5}).status_code == 400
    client.delete("/admin/coupons/FALL5")
    assert "FALL5" not in [c["code"] for c in client.get("/admin/coupons").json()]


def test_admin_cannot_delete_admin_user(client, shop):
    shop.add_user(User(id="boss", name="Boss", email="boss@example.com", role=UserRole.ADMIN))
    shop.add_user(User(id="ann", name="Ann", email="ann@example.com"))
    login(client, "admin", "admin123")
    assert client.delete("/admin/users/boss").status_code == 400
    assert client.delete("/admin/users/ann").json() == {"deleted": True}
    assert [u["id"] for u in client.get("/admin/users").json()] == ["boss"]


def test_admin_stats_user_figures(client, shop):
    shop.add_user(User(id="u1", name="New", email="new@example.com", joined="2026-10-02"))
    shop.add_user(User(id="u2", name="Old", email="old@example.com", joined="2025-03-11"))
    login(client, "admin", "admin123")
    stats = client.get("/admin/stats").json()
    assert stats["new_users_this_month"] == 1
    assert stats["high_spenders"] == 0


def test_review_updates_rating(client):
    assert client.post("/reviews", json={"product_id": "3", "rating": 4}).status_code == 401
    login(client)
    r = client.post("/reviews", json={"product_id": "3", "rating": 4, "comment": "lovely"})
    assert r.json()["rating"] == 4.0
    assert len(client.get("/reviews", params={"product_id": "3"}).json()) == 1


def test_settings_update(client):
    login(client, "admin", "admin123")
    r = client.put("/admin/settings", json={"maintenance_mode": True})
    assert r.json()["maintenance_mode"] is True
    assert client.get("/settings").json()["store_name"] == "Frosty Bite"


def test_logout_and_me(client):
    login(client)
    assert client.get("/me").json()["user"]["name"] == "Sophie Laurent"
    client.post("/auth/logout")
    assert client.get("/me").status_code == 401
