"""Role-based navigation guard.

Every protected page declares which roles may open it. :func:`can_enter`
decides, from the cached identity alone, whether a visitor may reach a route
or where to send them instead. It makes no network call; the remote API
remains the authority on what a token may actually do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Union

from .models import Identity, Role

logger = logging.getLogger(__name__)

LOGIN_ROUTE = "/"
ADMIN_HOME = "/admin/dashboard"
USER_HOME = "/user"

STAFF_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.LAB_STAFF})
STUDENT_ROLES: FrozenSet[Role] = frozenset({Role.STUDENT})


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Redirect:
    target: str


Decision = Union[Allow, Redirect]


@dataclass(frozen=True)
class RouteSpec:
    """A navigable route and the roles allowed on it (``None``: any signed-in user)."""

    path: str
    allowed_roles: Optional[FrozenSet[Role]] = None


ROUTES: Dict[str, RouteSpec] = {
    spec.path: spec
    for spec in (
        RouteSpec(ADMIN_HOME, STAFF_ROLES),
        RouteSpec("/admin/rooms", STAFF_ROLES),
        RouteSpec("/admin/bookings", STAFF_ROLES),
        RouteSpec("/admin/users", STAFF_ROLES),
        RouteSpec(USER_HOME, STUDENT_ROLES),
    )
}


def home_for(role: Role) -> str:
    """Return the landing page for ``role``: staff go to the admin dashboard."""
    return ADMIN_HOME if role.is_staff else USER_HOME


def can_enter(route: RouteSpec, identity: Optional[Identity]) -> Decision:
    """Decide whether ``identity`` may open ``route``.

    Without an identity the visitor is sent to the login page. A signed-in
    user whose role is not allowed is sent to their own home page and a
    warning is logged.
    """
    if identity is None:
        return Redirect(LOGIN_ROUTE)
    if route.allowed_roles is not None and identity.role not in route.allowed_roles:
        logger.warning("Access denied: role %r may not open %s", identity.role.value, route.path)
        return Redirect(home_for(identity.role))
    return Allow()
