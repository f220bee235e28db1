"""Per-request session context.

The signed-in user is kept client side in two cookies: ``token`` holds the
opaque API token and ``user`` the JSON identity ``{id, name, email, role}``.
:meth:`SessionContext.load` reads them once per request and hands the
result to whoever needs it; nothing else in the portal reads the cookies.

A third, one-shot ``flash`` cookie carries a notification across a
post/redirect/get round trip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError
from starlette.responses import Response

from .models import Identity

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
IDENTITY_COOKIE = "user"
FLASH_COOKIE = "flash"


@dataclass(frozen=True)
class SessionContext:
    token: Optional[str] = None
    identity: Optional[Identity] = None

    @classmethod
    def load(cls, cookies: Mapping[str, str]) -> "SessionContext":
        """Build the context from request cookies.

        An identity that cannot be parsed is logged and treated as absent,
        which forces the visitor back to the login page. So is an identity
        without a token.
        """
        token = cookies.get(TOKEN_COOKIE) or None
        raw = cookies.get(IDENTITY_COOKIE)
        if not raw:
            return cls()
        try:
            identity = Identity.model_validate_json(unquote(raw))
        except ValidationError as exc:
            logger.warning("Discarding unreadable identity cookie: %s", exc.errors(include_url=False))
            return cls()
        if token is None:
            logger.warning("Identity cookie for user %s has no token; ignoring it", identity.id)
            return cls()
        return cls(token=token, identity=identity)

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    def persist(self, response: Response, *, secure: bool = False) -> None:
        """Write both session cookies; called once after a successful login."""
        if self.token is None or self.identity is None:
            raise ValueError("cannot persist an anonymous session")
        response.set_cookie(TOKEN_COOKIE, self.token, httponly=True, samesite="lax", secure=secure)
        response.set_cookie(
            IDENTITY_COOKIE,
            quote(self.identity.model_dump_json(), safe=""),
            httponly=True,
            samesite="lax",
            secure=secure,
        )

    @staticmethod
    def clear(response: Response) -> None:
        response.delete_cookie(TOKEN_COOKIE)
        response.delete_cookie(IDENTITY_COOKIE)


def set_flash(response: Response, message: str) -> None:
    response.set_cookie(FLASH_COOKIE, quote(message, safe=""), httponly=True, samesite="lax")


def read_flash(cookies: Mapping[str, str]) -> Optional[str]:
    raw = cookies.get(FLASH_COOKIE)
    return unquote(raw) if raw else None
