from datetime import timedelta

import jwt
import pytest

from sessions import SessionRegistry
from store import StoreState
from tests.conftest import NOW, FakeIdentity, run


@pytest.fixture
def state(storage, config):
    return StoreState(storage, config=config, clock=lambda: NOW)


@pytest.fixture
def registry(state, identity):
    def identity_factory():
        fake = FakeIdentity()
        fake.accounts = identity.accounts
        return fake

    reg = SessionRegistry(state, identity_factory, "test-secret")
    run(reg.start())
    yield reg
    reg.dispose()


def test_token_resolves_to_its_engine(registry):
    token, engine = run(registry.open())
    assert registry.resolve(token) is engine
    assert registry.resolve(token) is not registry.anonymous


def test_bad_tokens_resolve_to_none(registry):
    assert registry.resolve("garbage") is None
    forged = jwt.encode({"sid": "x"}, "other-secret", algorithm="HS256")
    assert registry.resolve(forged) is None
    assert registry.resolve(registry.issue_token("never-opened")) is None


def test_expired_token_resolves_to_none(state):
    reg = SessionRegistry(state, FakeIdentity, "test-secret", ttl=timedelta(seconds=-30))
    token, _ = run(reg.open())
    assert reg.resolve(token) is None
    reg.dispose()


def test_sessions_keep_separate_users_and_carts(registry):
    _, sophie = run(registry.open())
    _, guest = run(registry.open())
    run(sophie.login("sophie@example.com", "secret"))
    sophie.add_to_cart(sophie.get_product("1"))
    assert guest.user is None
    assert guest.cart == []
    assert registry.anonymous.user is None


def test_sessions_share_orders(registry):
    _, sophie = run(registry.open())
    _, other = run(registry.open())
    run(sophie.login("sophie@example.com", "secret"))
    sophie.add_to_cart(sophie.get_product("2"))
    order = sophie.place_order()
    assert other.orders[0].id == order.id


def test_local_admin_marker_is_per_session(registry, storage):
    _, admin = run(registry.open())
    _, guest = run(registry.open())
    run(admin.login("admin", "admin123"))
    assert guest.user is None
    assert "frosty_local_admin" not in storage.data
    assert [k for k in storage.data if k.startswith("frosty_local_admin_")]
