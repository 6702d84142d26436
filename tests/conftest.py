import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from config import AppConfig
from errors import IdentityError
from identity import IdentityService, IdentityUser, Session
from storage import MemoryStorage
from store import StoreEngine

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeIdentity(IdentityService):
    """In-memory identity service with a few known accounts."""

    def __init__(self):
        super().__init__()
        self.accounts: Dict[str, Tuple[str, IdentityUser, bool]] = {}
        self.session: Optional[Session] = None
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    def add_account(self, email, password, full_name=None, confirmed=True, user_id=None, **extra):
        meta = {"full_name": full_name} if full_name else {}
        account = IdentityUser(id=user_id or f"uid-{email}", email=email, user_metadata=meta,
                               created_at="2026-01-05T08:00:00Z", **extra)
        self.accounts[email] = (password, account, confirmed)
        return account

    async def get_session(self):
        self.calls.append(("get_session",))
        return self.session

    async def sign_in_with_password(self, email, password):
        self.calls.append(("sign_in", email))
        if self.gate is not None:
            await self.gate.wait()
        entry = self.accounts.get(email)
        if entry is None or entry[0] != password:
            raise IdentityError("Invalid login credentials")
        if not entry[2]:
            raise IdentityError("Email not confirmed")
        self.session = Session(access_token="token-" + email, user=entry[1])
        self._emit("SIGNED_IN", self.session)

    async def sign_up(self, email, password, full_name, redirect_to):
        self.calls.append(("sign_up", email, full_name, redirect_to))
        if email in self.accounts:
            raise IdentityError("User already registered")
        self.add_account(email, password, full_name=full_name, confirmed=False)

    async def sign_out(self):
        self.calls.append(("sign_out",))
        self.session = None
        self._emit("SIGNED_OUT", None)

    async def reset_password_for_email(self, email, redirect_to):
        self.calls.append(("reset", email, redirect_to))


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def identity():
    fake = FakeIdentity()
    fake.add_account("sophie@example.com", "secret", full_name="Sophie Laurent")
    fake.add_account("pending@example.com", "secret", confirmed=False)
    fake.add_account("owner@frosty.test", "secret", full_name="Store Owner")
    return fake


@pytest.fixture
def config():
    return AppConfig(admin_emails=["owner@frosty.test"], site_url="https://shop.test")


@pytest.fixture
def make_engine(storage, identity, config):
    engines = []

    def factory(**kwargs):
        kwargs.setdefault("config", config)
        kwargs.setdefault("clock", lambda: NOW)
        e = StoreEngine(kwargs.pop("storage", storage), kwargs.pop("identity", identity), **kwargs)
        run(e.start())
        engines.append(e)
        return e

    yield factory
    for e in engines:
        e.dispose()


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def signed_in(engine):
    run(engine.login("sophie@example.com", "secret"))
    return engine


@pytest.fixture
def admin(engine):
    run(engine.login("admin", "admin123"))
    return engine
