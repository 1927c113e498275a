"""
Caller identity.

Core operations never look up a global session. The HTTP layer resolves the
bearer token once per request and passes the resulting Identity into every
service call.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import redis.asyncio as redis

from shopsphere.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated user acting on a request"""
    user_id: str
    email: Optional[str] = None


def require_identity(identity: Optional[Identity]) -> Identity:
    """Return the identity or raise Unauthorized when there is none."""
    if identity is None or not identity.user_id:
        raise Unauthorized()
    return identity


class SessionResolver(ABC):
    """Maps an access token issued by the auth platform to an Identity"""

    @abstractmethod
    async def resolve(self, token: str) -> Optional[Identity]:
        ...


class RedisSessionResolver(SessionResolver):
    """
    Reads sessions the auth platform writes to Redis.

    Each session lives under ``<prefix>:<token>`` as JSON
    ``{"user_id": ..., "email": ...}``.
    """

    def __init__(self, client: redis.Redis, prefix: str = "session"):
        self.client = client
        self.prefix = prefix

    async def resolve(self, token: str) -> Optional[Identity]:
        raw = await self.client.get(f"{self.prefix}:{token}")
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed session payload: {e}")
            return None
        user_id = data.get("user_id")
        if not user_id:
            return None
        return Identity(user_id=user_id, email=data.get("email"))


class StaticSessionResolver(SessionResolver):
    """Token table held in memory, for the memory backend and local runs"""

    def __init__(self, sessions: Dict[str, Identity] = None):
        self.sessions: Dict[str, Identity] = dict(sessions or {})

    def add(self, token: str, identity: Identity) -> None:
        self.sessions[token] = identity

    async def resolve(self, token: str) -> Optional[Identity]:
        return self.sessions.get(token)
