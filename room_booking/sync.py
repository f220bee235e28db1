"""Cached copies of the remote collections, kept fresh per session.

A :class:`Synchronizer` holds the rooms, users and bookings lists for one
signed-in session. When a page is opened it *mounts* the collections that
page needs: they are fetched in parallel and a background task then
re-fetches them every ``refresh_seconds``. Background refreshes never touch
the ``loading`` flag and never clear data; a fetch either replaces the
cached lists all at once or, on failure, leaves them exactly as they were
and records ``last_error`` for the page to show.

Foreground and background fetches are not coordinated. Whichever resolves
last wins, which is acceptable for read-mostly data. Everything runs on the
event loop, and each cache update is a single assignment, so no locking is
needed.

Mutations go through :meth:`Synchronizer.mutate`. Each :class:`Mutation`
names the collections it makes stale and exactly those are re-fetched once
the API accepts the change. Status changes are patched in place instead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

import httpx

from .api_client import BookingApi
from .errors import ApiError, InvalidStatusTransition, MutationFailed
from .models import Booking, BookingStatus, Room, UpdateBookingStatusRequest, User

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    ROOMS = "rooms"
    USERS = "users"
    BOOKINGS = "bookings"


_FETCHERS: Dict[Collection, Callable[[BookingApi], Awaitable[list]]] = {
    Collection.ROOMS: BookingApi.list_rooms,
    Collection.USERS: BookingApi.list_users,
    Collection.BOOKINGS: BookingApi.list_bookings,
}


@dataclass(frozen=True)
class Mutation:
    """A change sent to the API and the collections it makes stale.

    ``done`` is the confirmation shown once the API accepts the change.
    """

    action: str
    invalidates: FrozenSet[Collection] = frozenset()
    done: str = ""


ROOMS_ONLY = frozenset({Collection.ROOMS})
USERS_ONLY = frozenset({Collection.USERS})
BOOKINGS_ONLY = frozenset({Collection.BOOKINGS})

# Bookings embed their room and user, so editing either makes bookings stale too.
CREATE_ROOM = Mutation("Adding the room", ROOMS_ONLY, "Room added.")
UPDATE_ROOM = Mutation("Updating the room", ROOMS_ONLY | BOOKINGS_ONLY, "Room updated.")
DELETE_ROOM = Mutation("Deleting the room", ROOMS_ONLY | BOOKINGS_ONLY, "Room deleted.")
CREATE_USER = Mutation("Adding the user", USERS_ONLY, "User added.")
UPDATE_USER = Mutation("Updating the user", USERS_ONLY | BOOKINGS_ONLY, "User updated.")
DELETE_USER = Mutation("Deleting the user", USERS_ONLY | BOOKINGS_ONLY, "User deleted.")
CREATE_BOOKING = Mutation("Submitting the booking", BOOKINGS_ONLY, "Booking request submitted.")
UPDATE_BOOKING = Mutation("Updating the booking", BOOKINGS_ONLY, "Booking updated.")
DELETE_BOOKING = Mutation("Deleting the booking", BOOKINGS_ONLY, "Booking deleted.")
CHANGE_BOOKING_STATUS = Mutation("Changing the booking status")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Synchronizer:
    """Cached collections and background refresh for one session."""

    def __init__(
        self,
        api: BookingApi,
        *,
        refresh_seconds: float = 30,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_idle: Optional[Callable[["Synchronizer"], None]] = None,
    ) -> None:
        self.api = api
        self.refresh_seconds = refresh_seconds
        self.idle_seconds = idle_seconds
        self.last_error: Optional[str] = None
        self.fetched_at: Optional[datetime] = None
        self.version = 0
        self._clock = clock
        self._on_idle = on_idle
        self.last_used = clock()
        self._data: Dict[Collection, list] = {}
        self._watched: FrozenSet[Collection] = frozenset()
        self._foreground = 0
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    # -- reading ----------------------------------------------------------

    @property
    def loading(self) -> bool:
        """True while a foreground (user triggered) fetch is in flight."""
        return self._foreground > 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def watched(self) -> FrozenSet[Collection]:
        return self._watched

    def loaded(self, collection: Collection) -> bool:
        return collection in self._data

    @property
    def rooms(self) -> List[Room]:
        return list(self._data.get(Collection.ROOMS, []))

    @property
    def users(self) -> List[User]:
        return list(self._data.get(Collection.USERS, []))

    @property
    def bookings(self) -> List[Booking]:
        return list(self._data.get(Collection.BOOKINGS, []))

    def find_booking(self, booking_id: int) -> Optional[Booking]:
        return next((b for b in self._data.get(Collection.BOOKINGS, []) if b.id == booking_id), None)

    # -- fetching ---------------------------------------------------------

    async def mount(self, collections: Iterable[Collection], *, background: bool = False) -> bool:
        """Show a view: fetch its collections now and keep them refreshed.

        Mounting another view replaces the watched set, so the previous
        view's collections stop being refreshed. ``background`` fetches
        without raising the ``loading`` flag. Returns ``False`` when the
        fetch failed (see ``last_error``).
        """
        self._watched = frozenset(collections)
        ok = await self.refresh(self._watched, background=background)
        self._ensure_timer()
        return ok

    async def refresh(self, collections: Optional[Iterable[Collection]] = None, *, background: bool = False) -> bool:
        """Fetch ``collections`` (default: the watched ones) in parallel.

        All requested lists are replaced together, or none are. A result
        arriving after :meth:`close` is dropped.
        """
        names = sorted(set(self._watched if collections is None else collections), key=lambda c: c.value)
        if not names or self._closed:
            return not self._closed
        if not background:
            self._foreground += 1
        try:
            results = await asyncio.gather(*(_FETCHERS[name](self.api) for name in names))
        except ApiError as exc:
            if self._closed:
                return False
            logger.warning(
                "%s refresh of %s failed: %s",
                "Background" if background else "Foreground",
                ", ".join(n.value for n in names),
                exc.message,
            )
            self.last_error = exc.message
            return False
        finally:
            if not background:
                self._foreground -= 1
        if self._closed:
            logger.debug("Dropping fetch result that arrived after close")
            return False
        self._data = {**self._data, **dict(zip(names, results))}
        self.last_error = None
        self.fetched_at = _utcnow()
        self.version += 1
        return True

    def _ensure_timer(self) -> None:
        if self._closed or (self._task is not None and not self._task.done()):
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def idle(self) -> bool:
        """True once nothing has used this synchronizer for ``idle_seconds``."""
        return self.idle_seconds is not None and self._clock() - self.last_used > self.idle_seconds

    async def _run(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.refresh_seconds)
            if self.idle:
                logger.info("Closing synchronizer idle for more than %ss", self.idle_seconds)
                if self._on_idle is not None:
                    self._on_idle(self)
                self.close()
                return
            if self._closed or not self._watched:
                continue
            try:
                await self.refresh(background=True)
            except Exception:
                # Keep the timer alive; the next tick tries again.
                logger.exception("Unexpected error during background refresh")

    def close(self) -> None:
        """Stop the background timer; late fetch results become no-ops."""
        self._closed = True
        self._watched = frozenset()
        if self._task is not None:
            self._task.cancel()
            self._task = None

    # -- mutations --------------------------------------------------------

    async def mutate(self, mutation: Mutation, call: Awaitable[Any]) -> None:
        """Await ``call`` and re-fetch what ``mutation`` invalidates.

        Raises:
            MutationFailed: the API refused the change; the cache is untouched.
        """
        try:
            await call
        except ApiError as exc:
            logger.error("%s failed: %s", mutation.action, exc.message)
            raise MutationFailed(mutation.action, exc) from exc
        logger.info("%s succeeded", mutation.action)
        if mutation.invalidates:
            await self.refresh(mutation.invalidates)

    async def change_booking_status(self, booking_id: int, status: BookingStatus) -> None:
        """Move a pending booking to ``status`` and patch the cached record.

        Raises:
            InvalidStatusTransition: the booking is not pending, or ``status``
                is ``Pending``. Nothing is sent to the API.
            MutationFailed: the API refused the change.
        """
        current = self.find_booking(booking_id)
        if status is BookingStatus.PENDING or (current is not None and not current.status.can_transition_to(status)):
            label = current.status.value if current is not None else "This"
            raise InvalidStatusTransition(f"{label} booking cannot be changed to {status.value}.")
        await self.mutate(
            CHANGE_BOOKING_STATUS,
            self.api.update_booking_status(booking_id, UpdateBookingStatusRequest(status=status)),
        )
        bookings = self._data.get(Collection.BOOKINGS)
        if bookings is not None and not self._closed:
            patched = [b.model_copy(update={"status": status}) if b.id == booking_id else b for b in bookings]
            self._data = {**self._data, Collection.BOOKINGS: patched}
            self.version += 1


class SyncRegistry:
    """One :class:`Synchronizer` per session token.

    Synchronizers are created on first use, closed on logout and pruned
    after ``idle_seconds`` without a request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        refresh_seconds: float = 30,
        idle_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._refresh_seconds = refresh_seconds
        self._idle_seconds = idle_seconds
        self._clock = clock
        self._by_token: Dict[str, Synchronizer] = {}

    def __len__(self) -> int:
        return len(self._by_token)

    def __contains__(self, token: object) -> bool:
        return token in self._by_token

    def for_session(self, token: str) -> Synchronizer:
        self.prune_idle()
        sync = self._by_token.get(token)
        if sync is None or sync.closed:
            sync = Synchronizer(
                BookingApi(self._client, token),
                refresh_seconds=self._refresh_seconds,
                idle_seconds=self._idle_seconds,
                clock=self._clock,
                on_idle=self._forget,
            )
            self._by_token[token] = sync
            logger.debug("Created synchronizer (%d active)", len(self._by_token))
        sync.last_used = self._clock()
        return sync

    def _forget(self, sync: Synchronizer) -> None:
        # Called by a synchronizer whose own timer found it idle.
        token = sync.api.token
        if token and self._by_token.get(token) is sync:
            del self._by_token[token]

    def discard(self, token: Optional[str]) -> None:
        sync = self._by_token.pop(token, None) if token else None
        if sync is not None:
            sync.close()

    def prune_idle(self) -> None:
        for token in [t for t, s in self._by_token.items() if s.closed or s.idle]:
            logger.info("Closing synchronizer idle for more than %ss", self._idle_seconds)
            self.discard(token)

    def close_all(self) -> None:
        for sync in self._by_token.values():
            sync.close()
        self._by_token.clear()
