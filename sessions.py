"""
Shopper sessions for the HTTP app.

Each client gets its own `StoreEngine` (current user, cart, identity client)
on top of one shared `StoreState`. Clients hold a signed token naming their
session; requests without a token see the anonymous engine, which is never
signed in.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import jwt
from bson import ObjectId

from identity import IdentityService
from store import StoreEngine, StoreState

logger = logging.getLogger(__name__)

JWT_ALGO = "HS256"


class SessionRegistry:
    def __init__(self, state: StoreState, identity_factory: Callable[[], IdentityService],
                 secret: str, ttl: timedelta = timedelta(days=7)):
        self.state = state
        self.identity_factory = identity_factory
        self.secret = secret
        self.ttl = ttl
        self._engines: Dict[str, StoreEngine] = {}
        self.anonymous = self._engine("anonymous")

    def _engine(self, session_id: str) -> StoreEngine:
        return StoreEngine(self.state.storage, self.identity_factory(), state=self.state,
                           session_key=session_id)

    async def start(self) -> None:
        await self.anonymous.start()

    async def open(self) -> Tuple[str, StoreEngine]:
        """Start a new session and return its token and engine."""
        session_id = str(ObjectId())
        engine = self._engine(session_id)
        await engine.start()
        self._engines[session_id] = engine
        logger.info("Opened session %s (%d active)", session_id, len(self._engines))
        return self.issue_token(session_id), engine

    def issue_token(self, session_id: str) -> str:
        payload = {
            "sid": session_id,
            "exp": datetime.now(timezone.utc) + self.ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGO)

    def resolve(self, token: str) -> Optional[StoreEngine]:
        """Engine for ``token``, or None when the token is invalid, expired or unknown."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGO])
        except jwt.PyJWTError:
            return None
        return self._engines.get(payload.get("sid"))

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
        self._engines.clear()
        self.anonymous.dispose()
