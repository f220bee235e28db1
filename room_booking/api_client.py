"""Client for the remote room booking REST API.

This module wraps the API's login endpoint and the CRUD endpoints for
rooms (``/ruangan``), users (``/user``) and bookings (``/peminjaman``). Every
call goes through a shared ``httpx.AsyncClient`` so connections are pooled
across sessions; each :class:`BookingApi` instance only carries the bearer
token of the session it belongs to.

Errors never escape as raw ``httpx`` exceptions. Non-2xx responses and
transport failures are turned into :class:`~room_booking.errors.ApiError`
carrying a human readable message taken from the error payload when the API
provides one. There are no automatic retries: every failure is surfaced to
the user, who decides whether to try again.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import ApiError
from .models import (
    AuthResponse,
    Booking,
    CreateBookingRequest,
    CreateRoomRequest,
    CreateUserRequest,
    LoginRequest,
    Room,
    UpdateBookingRequest,
    UpdateBookingStatusRequest,
    UpdateRoomRequest,
    UpdateUserRequest,
    User,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Keys the API has been seen to use for error text, in order of preference.
_MESSAGE_KEYS = ("Message", "message", "detail", "title", "error")


def extract_error_message(response: httpx.Response, fallback: str) -> str:
    """Return the human readable error text from an API error response.

    The API is not consistent about the key it uses, and some errors come
    back as a bare JSON string or as plain text. ``fallback`` is returned
    when nothing usable is found.
    """
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return text if text and len(text) < 300 else fallback
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    if isinstance(payload, dict):
        for key in _MESSAGE_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


class BookingApi:
    """Remote API calls made on behalf of one session.

    Args:
        client: shared ``httpx.AsyncClient`` whose ``base_url`` points at the API root.
        token: bearer token returned by :meth:`login`; ``None`` before login.
    """

    def __init__(self, client: httpx.AsyncClient, token: Optional[str] = None) -> None:
        self._client = client
        self.token = token

    def with_token(self, token: str) -> "BookingApi":
        return BookingApi(self._client, token)

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, *, json: Any = None, fallback: str) -> Any:
        """Perform one request and return the decoded JSON body (``None`` when empty)."""
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise ApiError(f"{fallback} (the server could not be reached)") from exc
        if response.is_error:
            message = extract_error_message(response, fallback)
            logger.warning("%s %s returned %s: %s", method, path, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _parse(model: Type[ModelT], payload: Any, fallback: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.error("Unexpected %s payload: %s", model.__name__, exc)
            raise ApiError(fallback) from exc

    @staticmethod
    def _parse_list(model: Type[ModelT], payload: Any, fallback: str) -> List[ModelT]:
        if not isinstance(payload, list):
            logger.error("Expected a list of %s, got %s", model.__name__, type(payload).__name__)
            raise ApiError(fallback)
        return [BookingApi._parse(model, item, fallback) for item in payload]

    # -- authentication -------------------------------------------------

    async def login(self, credentials: LoginRequest) -> AuthResponse:
        """Exchange email and password for a token and the user's identity.

        Raises:
            ApiError: with the API's own message when the credentials are refused.
        """
        fallback = "Login failed. Check your email and password."
        payload = await self._request("POST", "/auth/login", json=credentials.to_wire(), fallback=fallback)
        return self._parse(AuthResponse, payload, fallback)

    # -- rooms ------------------------------------------------------------

    async def list_rooms(self) -> List[Room]:
        fallback = "Could not load rooms."
        return self._parse_list(Room, await self._request("GET", "/ruangan", fallback=fallback), fallback)

    async def get_room(self, room_id: int) -> Room:
        fallback = "Could not load the room."
        return self._parse(Room, await self._request("GET", f"/ruangan/{room_id}", fallback=fallback), fallback)

    async def create_room(self, body: CreateRoomRequest) -> None:
        await self._request("POST", "/ruangan", json=body.to_wire(), fallback="Could not add the room.")

    async def update_room(self, body: UpdateRoomRequest) -> None:
        await self._request("PUT", f"/ruangan/{body.id}", json=body.to_wire(), fallback="Could not update the room.")

    async def delete_room(self, room_id: int) -> None:
        await self._request("DELETE", f"/ruangan/{room_id}", fallback="Could not delete the room.")

    # -- users ------------------------------------------------------------

    async def list_users(self) -> List[User]:
        fallback = "Could not load users."
        return self._parse_list(User, await self._request("GET", "/user", fallback=fallback), fallback)

    async def get_user(self, user_id: int) -> User:
        fallback = "Could not load the user."
        return self._parse(User, await self._request("GET", f"/user/{user_id}", fallback=fallback), fallback)

    async def create_user(self, body: CreateUserRequest) -> None:
        await self._request("POST", "/user", json=body.to_wire(), fallback="Could not add the user.")

    async def update_user(self, body: UpdateUserRequest) -> None:
        await self._request("PUT", f"/user/{body.id}", json=body.to_wire(), fallback="Could not update the user.")

    async def delete_user(self, user_id: int) -> None:
        await self._request("DELETE", f"/user/{user_id}", fallback="Could not delete the user.")

    # -- bookings ---------------------------------------------------------

    async def list_bookings(self) -> List[Booking]:
        fallback = "Could not load bookings."
        return self._parse_list(Booking, await self._request("GET", "/peminjaman", fallback=fallback), fallback)

    async def get_booking(self, booking_id: int) -> Booking:
        fallback = "Could not load the booking."
        payload = await self._request("GET", f"/peminjaman/{booking_id}", fallback=fallback)
        return self._parse(Booking, payload, fallback)

    async def create_booking(self, body: CreateBookingRequest) -> None:
        await self._request("POST", "/peminjaman", json=body.to_wire(), fallback="Could not submit the booking.")

    async def update_booking(self, body: UpdateBookingRequest) -> None:
        await self._request(
            "PUT", f"/peminjaman/{body.id}", json=body.to_wire(), fallback="Could not update the booking."
        )

    async def update_booking_status(self, booking_id: int, body: UpdateBookingStatusRequest) -> None:
        await self._request(
            "PUT",
            f"/peminjaman/{booking_id}/status",
            json=body.to_wire(),
            fallback="Could not change the booking status.",
        )

    async def delete_booking(self, booking_id: int) -> None:
        await self._request("DELETE", f"/peminjaman/{booking_id}", fallback="Could not delete the booking.")
