"""Derived, recomputable views over the cached collections.

Nothing here is stored: every page rebuilds its filtered lists, building
groups and status counts from the synchronizer's collections and the
current query string on each render. All functions are pure and applying
the same filter twice gives the same result as applying it once.

Filter values live in the URL so filtered pages can be linked and
bookmarked. The ``*Query`` classes read them from the query string and
write them back; the query string is the only place they are kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import urlencode

from .models import Booking, BookingStatus, Role, Room, User

logger = logging.getLogger(__name__)

OTHER_BUILDING = "Other"


def _matches(term: str, *fields: Optional[str]) -> bool:
    return any(term in (field or "").lower() for field in fields)


def filter_rooms(rooms: Iterable[Room], search: str = "", building: str = "") -> List[Room]:
    """Rooms whose name or building contains ``search`` and, if given, in ``building``."""
    term = search.strip().lower()
    result = list(rooms)
    if term:
        result = [r for r in result if _matches(term, r.name, r.building)]
    if building:
        result = [r for r in result if r.building == building]
    return result


def filter_users(users: Iterable[User], search: str = "", role: Optional[Role] = None) -> List[User]:
    term = search.strip().lower()
    result = list(users)
    if term:
        result = [u for u in result if _matches(term, u.name, u.email)]
    if role is not None:
        result = [u for u in result if u.role is role]
    return result


def filter_bookings(
    bookings: Iterable[Booking], search: str = "", status: Optional[BookingStatus] = None
) -> List[Booking]:
    """Bookings matching ``search`` on the borrower's name/email or the room's name/building."""
    term = search.strip().lower()
    result = list(bookings)
    if term:
        result = [
            b
            for b in result
            if _matches(
                term,
                b.user.name if b.user else None,
                b.user.email if b.user else None,
                b.room.name if b.room else None,
                b.room.building if b.room else None,
            )
        ]
    if status is not None:
        result = [b for b in result if b.status is status]
    return result


def group_rooms_by_building(rooms: Iterable[Room], *, sort: bool = False) -> Dict[str, List[Room]]:
    """Map building name to its rooms.

    Buildings keep the order in which they first appear unless ``sort`` is
    set. Rooms without a building are collected under ``"Other"``.
    """
    groups: Dict[str, List[Room]] = {}
    for room in rooms:
        groups.setdefault(room.building or OTHER_BUILDING, []).append(room)
    if sort:
        return {name: groups[name] for name in sorted(groups, key=str.lower)}
    return groups


def building_names(rooms: Iterable[Room]) -> List[str]:
    return sorted({r.building for r in rooms if r.building}, key=str.lower)


def count_by_status(bookings: Iterable[Booking]) -> Dict[BookingStatus, int]:
    counts = {status: 0 for status in BookingStatus}
    for booking in bookings:
        counts[booking.status] += 1
    return counts


def newest_first(bookings: Iterable[Booking]) -> List[Booking]:
    return sorted(bookings, key=lambda b: b.id, reverse=True)


def rooms_by_name(rooms: Iterable[Room]) -> List[Room]:
    return sorted(rooms, key=lambda r: r.name.lower())


def bookings_for_user(bookings: Iterable[Booking], user_id: int) -> List[Booking]:
    """A user's own bookings, newest first."""
    return newest_first(b for b in bookings if b.user_id == user_id)


def with_references(
    bookings: Iterable[Booking],
    rooms: Optional[Sequence[Room]] = None,
    users: Optional[Sequence[User]] = None,
) -> List[Booking]:
    """Fill in missing ``room``/``user`` references from the cached collections.

    The API does not always embed them, and both searching and display rely
    on them. Bookings that already carry a reference are left as they are.
    """
    room_map = {r.id: r for r in rooms or ()}
    user_map = {u.id: u for u in users or ()}
    result = []
    for booking in bookings:
        update = {}
        if booking.room is None and booking.room_id in room_map:
            update["room"] = room_map[booking.room_id]
        if booking.user is None and booking.user_id in user_map:
            update["user"] = user_map[booking.user_id]
        result.append(booking.model_copy(update=update) if update else booking)
    return result


def _encode(pairs: Sequence[tuple]) -> str:
    return urlencode([(key, value) for key, value in pairs if value])


@dataclass(frozen=True)
class RoomQuery:
    search: str = ""
    building: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "RoomQuery":
        return cls(search=params.get("search", "").strip(), building=params.get("gedung", "").strip())

    def to_query_string(self) -> str:
        return _encode([("gedung", self.building), ("search", self.search)])

    def apply(self, rooms: Iterable[Room]) -> List[Room]:
        return filter_rooms(rooms, self.search, self.building)


@dataclass(frozen=True)
class BookingQuery:
    search: str = ""
    status: Optional[BookingStatus] = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "BookingQuery":
        raw = params.get("status", "").strip()
        status = None
        if raw:
            try:
                status = BookingStatus(raw)
            except ValueError:
                logger.debug("Ignoring unknown status filter %r", raw)
        return cls(search=params.get("search", "").strip(), status=status)

    def to_query_string(self) -> str:
        return _encode([("status", self.status.value if self.status else ""), ("search", self.search)])

    def apply(self, bookings: Iterable[Booking]) -> List[Booking]:
        return filter_bookings(bookings, self.search, self.status)


@dataclass(frozen=True)
class UserQuery:
    search: str = ""
    role: Optional[Role] = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "UserQuery":
        raw = params.get("role", "").strip()
        role = None
        if raw:
            try:
                role = Role(raw)
            except ValueError:
                logger.debug("Ignoring unknown role filter %r", raw)
        return cls(search=params.get("search", "").strip(), role=role)

    def to_query_string(self) -> str:
        return _encode([("role", self.role.value if self.role else ""), ("search", self.search)])

    def apply(self, users: Iterable[User]) -> List[User]:
        return filter_users(users, self.search, self.role)
