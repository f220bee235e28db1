"""Main application entry point for the room booking portal.

This module defines the FastAPI application, configures logging, and serves
the portal's HTML pages. All data lives in a remote REST API; the portal
keeps a per-session cache of it (see :mod:`room_booking.sync`) and renders
filtered views of that cache.

Endpoints:
  - ``/``: login page (``POST /login``, ``POST /logout``).
  - ``/admin/dashboard``, ``/admin/rooms``, ``/admin/bookings``,
    ``/admin/users``: staff pages and their create/update/delete forms.
  - ``/user``: room browsing and personal booking history for students.
  - ``/healthz``: simple health check endpoint.

Every protected endpoint runs the navigation guard first. Form posts follow
post/redirect/get: the handler validates the form, performs the mutation and
redirects back to the page it came from. The outcome, success or failure,
travels back as a one-shot flash message that the next page shows as a
blocking notification; the cache is only changed when the API accepted the
mutation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from . import pages
from .api_client import BookingApi
from .config import Settings, settings
from .errors import ApiError, BookingPortalError, BookingRangeError
from .guard import LOGIN_ROUTE, ROUTES, Redirect, can_enter, home_for
from .models import (
    BookingStatus,
    CreateBookingRequest,
    CreateRoomRequest,
    CreateUserRequest,
    LoginRequest,
    UpdateBookingRequest,
    UpdateRoomRequest,
    UpdateUserRequest,
)
from .session import FLASH_COOKIE, SessionContext, read_flash, set_flash
from .sync import (
    CREATE_BOOKING,
    CREATE_ROOM,
    CREATE_USER,
    DELETE_BOOKING,
    DELETE_ROOM,
    DELETE_USER,
    UPDATE_BOOKING,
    UPDATE_ROOM,
    UPDATE_USER,
    Collection,
    Mutation,
    SyncRegistry,
    Synchronizer,
)
from .validation import parse_datetime, validate_booking_range
from .views import (
    BookingQuery,
    RoomQuery,
    UserQuery,
    bookings_for_user,
    building_names,
    count_by_status,
    group_rooms_by_building,
    newest_first,
    rooms_by_name,
    with_references,
)

logger = logging.getLogger("room_booking")
logging.basicConfig(
    level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)


class RedirectRequired(Exception):
    """Raised by the guard dependency; turned into a ``303 See Other``."""

    def __init__(self, target: str, *, clear_session: bool = False) -> None:
        super().__init__(target)
        self.target = target
        self.clear_session = clear_session


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -- application -------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.settings
    client = httpx.AsyncClient(base_url=config.api_base_url, transport=app.state.transport)
    app.state.api = BookingApi(client)
    app.state.registry = SyncRegistry(
        client, refresh_seconds=config.refresh_seconds, idle_seconds=config.session_idle_seconds
    )
    logger.info("Portal started against %s", config.api_base_url)
    try:
        yield
    finally:
        app.state.registry.close_all()
        await client.aclose()


def create_app(config: Settings = settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the application.

    ``transport`` replaces the HTTP transport used to reach the remote API,
    which lets tests answer API calls in-process.
    """
    app = FastAPI(title=config.app_title, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = config
    app.state.transport = transport
    app.include_router(router)
    app.add_exception_handler(RedirectRequired, _redirect_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    return app


async def _redirect_handler(request: Request, exc: RedirectRequired) -> Response:
    response = RedirectResponse(exc.target, status_code=303)
    if exc.clear_session:
        SessionContext.clear(response)
    return response


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    if exc.status_code != 404:
        return await http_exception_handler(request, exc)
    session = SessionContext.load(request.cookies)
    html = pages.layout(
        title="Not found",
        brand=request.app.state.settings.app_title,
        content=pages.not_found_content(),
        identity=session.identity,
    )
    return HTMLResponse(html, status_code=404)


router = APIRouter()


# -- helpers -----------------------------------------------------------------


def guarded(path: str) -> Callable[[Request], SessionContext]:
    """Dependency factory applying the navigation guard for ``path``."""
    route = ROUTES[path]

    def dependency(request: Request) -> SessionContext:
        session = SessionContext.load(request.cookies)
        decision = can_enter(route, session.identity)
        if isinstance(decision, Redirect):
            raise RedirectRequired(decision.target, clear_session=decision.target == LOGIN_ROUTE)
        return session

    return dependency


def _sync(request: Request, session: SessionContext) -> Synchronizer:
    return request.app.state.registry.for_session(session.token)


def _current_url(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _safe_next(value: Any, default: str) -> str:
    # Only same-site paths; "//host" would be protocol relative.
    if isinstance(value, str) and value.startswith("/") and not value.startswith("//") and "\\" not in value:
        return value
    return default


def _canonical_redirect(request: Request, canonical_query: str) -> Optional[Response]:
    """Redirect to the canonical form of the filter URL, if it differs.

    The query string is the only store of filter values. Normalising it
    drops empty and unknown parameters so the same filters always give the
    same URL.
    """
    if request.headers.get(pages.FRAGMENT_HEADER) or request.url.query == canonical_query:
        return None
    target = f"{request.url.path}?{canonical_query}" if canonical_query else request.url.path
    return RedirectResponse(target, status_code=303)


def _describe(exc: ValidationError) -> str:
    error = exc.errors(include_url=False)[0]
    message = str(error.get("msg", "Invalid input."))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"{field}: {message}" if field else message


async def _render(
    request: Request,
    session: SessionContext,
    *,
    title: str,
    collections: Iterable[Collection],
    content: Callable[[Synchronizer], str],
    dialogs: Callable[[Synchronizer], str] = lambda sync: "",
) -> Response:
    """Mount the view's collections and render the page.

    Fragment requests (the page's own polling) render only the content
    region straight from the cache and never show the loading state. When
    the cache does not hold the view's collections (the synchronizer was
    pruned, or the process restarted) they are fetched in the background
    first; if that fails the response is 204 so the page keeps what it shows.
    """
    collections = tuple(collections)
    sync = _sync(request, session)
    fragment = bool(request.headers.get(pages.FRAGMENT_HEADER))
    if not fragment:
        await sync.mount(collections)
    elif not all(sync.loaded(c) for c in collections):
        await sync.mount(collections, background=True)
        if not all(sync.loaded(c) for c in collections):
            return Response(status_code=204)
    body = content(sync)
    if fragment:
        return HTMLResponse(body)
    flash = read_flash(request.cookies)
    html = pages.layout(
        title=title,
        brand=request.app.state.settings.app_title,
        content=body,
        identity=session.identity,
        active=request.url.path,
        flash=flash,
        refresh_seconds=request.app.state.settings.refresh_seconds,
        dialogs=dialogs(sync),
    )
    response = HTMLResponse(html)
    if flash:
        response.delete_cookie(FLASH_COOKIE)
    return response


async def _submit(
    request: Request,
    session: SessionContext,
    default_next: str,
    action: Callable[[Synchronizer, Dict[str, Any]], Awaitable[Optional[str]]],
) -> Response:
    """Run a form post and redirect back, flashing its outcome."""
    form = dict(await request.form())
    response = RedirectResponse(_safe_next(form.pop("next", None), default_next), status_code=303)
    try:
        message = await action(_sync(request, session), form)
    except ValidationError as exc:
        set_flash(response, _describe(exc))
    except BookingPortalError as exc:
        set_flash(response, exc.message)
    else:
        if message:
            set_flash(response, message)
    return response


def _booking_form(form: Dict[str, Any]) -> Dict[str, Any]:
    """Check the time range, then return form values ready for a booking request.

    Raises:
        BookingRangeError: when the range is rejected; nothing is sent.
    """
    check = validate_booking_range(form.get("tanggalPinjam"), form.get("tanggalSelesai"))
    if not check.ok:
        raise BookingRangeError(check.reason or "Invalid time range.")
    values = {k: v for k, v in form.items() if v != ""}
    values["tanggalPinjam"] = parse_datetime(form["tanggalPinjam"])
    values["tanggalSelesai"] = parse_datetime(form["tanggalSelesai"])
    return values


def _mutation(mutation: Mutation, call: Callable[[BookingApi], Awaitable[None]]):
    async def run(sync: Synchronizer) -> str:
        await sync.mutate(mutation, call(sync.api))
        return mutation.done

    return run


# -- authentication ----------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def login_page(request: Request) -> Response:
    session = SessionContext.load(request.cookies)
    if session.identity is not None:
        return RedirectResponse(home_for(session.identity.role), status_code=303)
    return _login_response(request)


def _login_response(request: Request, error: Optional[str] = None, email: str = "") -> Response:
    html = pages.layout(
        title="Sign in",
        brand=request.app.state.settings.app_title,
        content=pages.login_content(error, email),
        identity=None,
    )
    return HTMLResponse(html)


@router.post("/login")
async def login(request: Request) -> Response:
    form = await request.form()
    email = str(form.get("email", "")).strip()
    try:
        credentials = LoginRequest(email=email, password=str(form.get("password", "")))
    except ValidationError:
        return _login_response(request, "Please enter your email and password.", email)
    try:
        auth = await request.app.state.api.login(credentials)
    except ApiError as exc:
        logger.warning("Login failed for %s: %s", email, exc.message)
        return _login_response(request, exc.message, email)

    previous = SessionContext.load(request.cookies)
    request.app.state.registry.discard(previous.token)
    logger.info("User %s signed in as %s", auth.user.id, auth.user.role.value)
    response = RedirectResponse(home_for(auth.user.role), status_code=303)
    SessionContext(token=auth.token, identity=auth.user).persist(
        response, secure=request.app.state.settings.cookie_secure
    )
    return response


@router.post("/logout")
async def logout(request: Request) -> Response:
    session = SessionContext.load(request.cookies)
    request.app.state.registry.discard(session.token)
    response = RedirectResponse(LOGIN_ROUTE, status_code=303)
    SessionContext.clear(response)
    return response


@router.get("/healthz")
def healthz() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return {"ok": True, "time": _utcnow().isoformat().replace("+00:00", "Z")}


# -- admin: dashboard --------------------------------------------------------

ALL_COLLECTIONS = (Collection.ROOMS, Collection.USERS, Collection.BOOKINGS)


def _admin_dialogs(next_url: str) -> Callable[[Synchronizer], str]:
    def build(sync: Synchronizer) -> str:
        return (
            pages.room_dialog(next_url)
            + pages.user_dialog(next_url)
            + pages.booking_dialog(next_url, sync.users, rooms_by_name(sync.rooms))
        )

    return build


@router.get("/admin/dashboard", response_class=HTMLResponse)
async def admin_dashboard(request: Request, session: SessionContext = Depends(guarded("/admin/dashboard"))):
    url = _current_url(request)

    def content(sync: Synchronizer) -> str:
        return pages.dashboard_content(
            counts=count_by_status(sync.bookings),
            groups=group_rooms_by_building(sync.rooms),
            user_count=len(sync.users),
            loading=sync.loading,
            loaded=all(sync.loaded(c) for c in ALL_COLLECTIONS),
            error=sync.last_error,
            retry_url=url,
        )

    return await _render(
        request, session, title="Dashboard", collections=ALL_COLLECTIONS, content=content,
        dialogs=_admin_dialogs(url),
    )


# -- admin: rooms ------------------------------------------------------------


@router.get("/admin/rooms", response_class=HTMLResponse)
async def admin_rooms(request: Request, session: SessionContext = Depends(guarded("/admin/rooms"))):
    query = RoomQuery.from_params(request.query_params)
    redirect = _canonical_redirect(request, query.to_query_string())
    if redirect is not None:
        return redirect
    url = _current_url(request)

    def content(sync: Synchronizer) -> str:
        rooms = rooms_by_name(sync.rooms)
        return pages.rooms_content(
            rooms=query.apply(rooms),
            buildings=building_names(rooms),
            query=query,
            next_url=url,
            loading=sync.loading,
            loaded=sync.loaded(Collection.ROOMS),
            error=sync.last_error,
        )

    return await _render(
        request, session, title="Rooms", collections=(Collection.ROOMS,), content=content,
        dialogs=lambda sync: pages.room_dialog(url),
    )


@router.post("/admin/rooms")
async def create_room(request: Request, session: SessionContext = Depends(guarded("/admin/rooms"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        body = CreateRoomRequest.model_validate(form)
        return await _mutation(CREATE_ROOM, lambda api: api.create_room(body))(sync)

    return await _submit(request, session, "/admin/rooms", action)


@router.post("/admin/rooms/{room_id}")
async def update_room(room_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/rooms"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        body = UpdateRoomRequest.model_validate({**form, "id": room_id})
        return await _mutation(UPDATE_ROOM, lambda api: api.update_room(body))(sync)

    return await _submit(request, session, "/admin/rooms", action)


@router.post("/admin/rooms/{room_id}/delete")
async def delete_room(room_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/rooms"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        return await _mutation(DELETE_ROOM, lambda api: api.delete_room(room_id))(sync)

    return await _submit(request, session, "/admin/rooms", action)


# -- admin: bookings ---------------------------------------------------------


@router.get("/admin/bookings", response_class=HTMLResponse)
async def admin_bookings(request: Request, session: SessionContext = Depends(guarded("/admin/bookings"))):
    query = BookingQuery.from_params(request.query_params)
    redirect = _canonical_redirect(request, query.to_query_string())
    if redirect is not None:
        return redirect
    url = _current_url(request)

    def content(sync: Synchronizer) -> str:
        bookings = with_references(newest_first(sync.bookings), sync.rooms, sync.users)
        return pages.bookings_content(
            bookings=query.apply(bookings),
            query=query,
            next_url=url,
            loading=sync.loading,
            loaded=sync.loaded(Collection.BOOKINGS),
            error=sync.last_error,
        )

    return await _render(
        request, session, title="Bookings", collections=ALL_COLLECTIONS, content=content,
        dialogs=lambda sync: pages.booking_dialog(url, sync.users, rooms_by_name(sync.rooms)),
    )


@router.post("/admin/bookings")
async def create_booking(request: Request, session: SessionContext = Depends(guarded("/admin/bookings"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        values = _booking_form(form)
        values["status"] = BookingStatus.PENDING
        body = CreateBookingRequest.model_validate(values)
        return await _mutation(CREATE_BOOKING, lambda api: api.create_booking(body))(sync)

    return await _submit(request, session, "/admin/bookings", action)


@router.post("/admin/bookings/{booking_id}")
async def update_booking(
    booking_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/bookings"))
):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        values = _booking_form(form)
        current = sync.find_booking(booking_id)
        values["id"] = booking_id
        values["status"] = current.status if current is not None else BookingStatus.PENDING
        body = UpdateBookingRequest.model_validate(values)
        return await _mutation(UPDATE_BOOKING, lambda api: api.update_booking(body))(sync)

    return await _submit(request, session, "/admin/bookings", action)


@router.post("/admin/bookings/{booking_id}/status")
async def change_booking_status(
    booking_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/bookings"))
):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        try:
            status = BookingStatus(form.get("status", ""))
        except ValueError:
            raise BookingPortalError("Unknown booking status.") from None
        await sync.change_booking_status(booking_id, status)
        return f"Booking {status.value.lower()}."

    return await _submit(request, session, "/admin/bookings", action)


@router.post("/admin/bookings/{booking_id}/delete")
async def delete_booking(
    booking_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/bookings"))
):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        return await _mutation(DELETE_BOOKING, lambda api: api.delete_booking(booking_id))(sync)

    return await _submit(request, session, "/admin/bookings", action)


# -- admin: users ------------------------------------------------------------


@router.get("/admin/users", response_class=HTMLResponse)
async def admin_users(request: Request, session: SessionContext = Depends(guarded("/admin/users"))):
    query = UserQuery.from_params(request.query_params)
    redirect = _canonical_redirect(request, query.to_query_string())
    if redirect is not None:
        return redirect
    url = _current_url(request)

    def content(sync: Synchronizer) -> str:
        return pages.users_content(
            users=query.apply(sorted(sync.users, key=lambda u: u.name.lower())),
            query=query,
            next_url=url,
            loading=sync.loading,
            loaded=sync.loaded(Collection.USERS),
            error=sync.last_error,
        )

    return await _render(
        request, session, title="Users", collections=(Collection.USERS,), content=content,
        dialogs=lambda sync: pages.user_dialog(url),
    )


@router.post("/admin/users")
async def create_user(request: Request, session: SessionContext = Depends(guarded("/admin/users"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        body = CreateUserRequest.model_validate(form)
        return await _mutation(CREATE_USER, lambda api: api.create_user(body))(sync)

    return await _submit(request, session, "/admin/users", action)


@router.post("/admin/users/{user_id}")
async def update_user(user_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/users"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        body = UpdateUserRequest.model_validate({**form, "id": user_id})
        return await _mutation(UPDATE_USER, lambda api: api.update_user(body))(sync)

    return await _submit(request, session, "/admin/users", action)


@router.post("/admin/users/{user_id}/delete")
async def delete_user(user_id: int, request: Request, session: SessionContext = Depends(guarded("/admin/users"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        return await _mutation(DELETE_USER, lambda api: api.delete_user(user_id))(sync)

    return await _submit(request, session, "/admin/users", action)


# -- student -----------------------------------------------------------------


@router.get("/user", response_class=HTMLResponse)
async def student_dashboard(request: Request, session: SessionContext = Depends(guarded("/user"))):
    query = RoomQuery.from_params(request.query_params)
    redirect = _canonical_redirect(request, query.to_query_string())
    if redirect is not None:
        return redirect
    url = _current_url(request)
    identity = session.identity

    def content(sync: Synchronizer) -> str:
        rooms = rooms_by_name(sync.rooms)
        history = with_references(bookings_for_user(sync.bookings, identity.id), rooms)
        return pages.student_content(
            groups=group_rooms_by_building(query.apply(rooms)),
            history=history,
            query=query,
            next_url=url,
            loading=sync.loading,
            loaded=sync.loaded(Collection.ROOMS) and sync.loaded(Collection.BOOKINGS),
            error=sync.last_error,
        )

    return await _render(
        request, session, title="Book a room", collections=(Collection.ROOMS, Collection.BOOKINGS),
        content=content, dialogs=lambda sync: pages.student_booking_dialog(url),
    )


@router.post("/user/bookings")
async def student_create_booking(request: Request, session: SessionContext = Depends(guarded("/user"))):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        values = _booking_form(form)
        values["userId"] = session.identity.id
        values["status"] = BookingStatus.PENDING
        body = CreateBookingRequest.model_validate(values)
        return await _mutation(CREATE_BOOKING, lambda api: api.create_booking(body))(sync)

    return await _submit(request, session, "/user", action)


@router.post("/user/bookings/{booking_id}/cancel")
async def student_cancel_booking(
    booking_id: int, request: Request, session: SessionContext = Depends(guarded("/user"))
):
    async def action(sync: Synchronizer, form: Dict[str, Any]) -> Optional[str]:
        booking = sync.find_booking(booking_id)
        if booking is None or booking.user_id != session.identity.id:
            raise BookingPortalError("That booking was not found in your history.")
        await sync.change_booking_status(booking_id, BookingStatus.CANCELED)
        return "Booking canceled."

    return await _submit(request, session, "/user", action)


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    port = int(os.environ.get("PORT", "8000"))
    # Bind only to localhost by default. Use a reverse proxy to expose externally.
    uvicorn.run(app, host="127.0.0.1", port=port)
