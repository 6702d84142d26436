"""
Identity service client.

The store never stores credentials itself; it talks to a GoTrue-compatible
auth server (the auth API behind Supabase) and maps the returned account to
a store `User`.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote_plus

import httpx
from pydantic import BaseModel, Field

from config import AppConfig
from errors import IdentityError
from schemas import User, UserRole

logger = logging.getLogger(__name__)

SessionCallback = Callable[[str, Optional["Session"]], None]


class IdentityUser(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    user: IdentityUser


class IdentityService(ABC):
    """Contract the store engine consumes.

    Subclasses implement the network calls; listener bookkeeping lives here.
    """

    def __init__(self):
        self._listeners: List[SessionCallback] = []

    @abstractmethod
    async def get_session(self) -> Optional[Session]:
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> None:
        ...

    @abstractmethod
    async def sign_up(self, email: str, password: str, full_name: str, redirect_to: str) -> None:
        ...

    @abstractmethod
    async def sign_out(self) -> None:
        ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        ...

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, session: Optional[Session]) -> None:
        for cb in list(self._listeners):
            cb(event, session)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if not isinstance(body, dict):
        return str(body)
    for key in ("msg", "error_description", "message", "error"):
        if body.get(key):
            return str(body[key])
    return f"HTTP {resp.status_code}"


class GoTrueIdentityService(IdentityService):
    """Talks to ``{identity_url}/auth/v1`` over HTTP.

    The session is held in memory for the lifetime of the client.
    """

    def __init__(self, base_url: str, api_key: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 10.0):
        super().__init__()
        self.base_url = base_url.rstrip("/") + "/auth/v1"
        self.api_key = api_key
        self.transport = transport
        self.timeout = timeout
        self._session: Optional[Session] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"apikey": self.api_key},
            transport=self.transport,
            timeout=self.timeout,
        )

    async def _post(self, path: str, json: Optional[dict] = None,
                    params: Optional[dict] = None,
                    headers: Optional[dict] = None) -> httpx.Response:
        async with self._client() as client:
            try:
                resp = await client.post(path, json=json, params=params, headers=headers)
            except httpx.HTTPError as e:
                raise IdentityError(str(e) or "Identity service unreachable", status_code=503) from e
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.info("Identity call %s failed: %s", path, message)
            raise IdentityError(message, status_code=resp.status_code)
        return resp

    async def get_session(self) -> Optional[Session]:
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> None:
        resp = await self._post(
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        self._session = Session(**resp.json())
        self._emit("SIGNED_IN", self._session)

    async def sign_up(self, email: str, password: str, full_name: str, redirect_to: str) -> None:
        await self._post(
            "/signup",
            params={"redirect_to": redirect_to},
            json={"email": email, "password": password, "data": {"full_name": full_name}},
        )

    async def sign_out(self) -> None:
        session = self._session
        if session is not None:
            await self._post("/logout", headers={"Authorization": f"Bearer {session.access_token}"})
        self._session = None
        self._emit("SIGNED_OUT", None)

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        await self._post("/recover", params={"redirect_to": redirect_to}, json={"email": email})


def is_admin_account(account: IdentityUser, config: AppConfig) -> bool:
    if str(account.app_metadata.get("role", "")).lower() == "admin":
        return True
    email = (account.email or "").lower()
    if not email:
        return False
    if email in config.admin_emails:
        return True
    marker = config.admin_email_marker
    return bool(marker) and marker.lower() in email


def avatar_url(name: str, background: str = "1A1A1A", color: str = "D4AF37") -> str:
    return f"https://ui-avatars.com/api/?name={quote_plus(name)}&background={background}&color={color}"


def map_identity_user(account: IdentityUser, config: AppConfig, today: Optional[date] = None) -> User:
    """Build the store's view of an identity-service account."""
    full_name = account.user_metadata.get("full_name")
    email = account.email or ""
    name = full_name or email.split("@")[0] or "User"
    if account.created_at:
        joined = account.created_at.split("T")[0]
    else:
        joined = (today or date.today()).isoformat()
    return User(
        id=account.id,
        name=name,
        email=email,
        role=UserRole.ADMIN if is_admin_account(account, config) else UserRole.USER,
        avatar=avatar_url(name),
        joined=joined,
    )
