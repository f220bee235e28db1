"""
Pytest Configuration and Fixtures

Provides an in-process stand-in for the remote booking API and a test
client for the portal wired to it.
"""

import copy
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from room_booking.config import Settings
from room_booking.main import create_app

API_BASE = "http://api.test/api"
PASSWORD = "secret"

ROOMS = [
    {"id": 1, "nama": "Lab Komputer 1", "gedung": "D4", "kapasitas": 40},
    {"id": 2, "nama": "Ruang Rapat", "gedung": "D4", "kapasitas": 12},
    {"id": 3, "nama": "Studio", "gedung": "D5", "kapasitas": 20},
]

USERS = [
    {"id": 1, "nama": "Admin Satu", "email": "admin@kampus.ac.id", "role": "Admin"},
    {"id": 2, "nama": "Budi Santoso", "email": "budi@kampus.ac.id", "role": "Mahasiswa"},
    {"id": 3, "nama": "Siti Aminah", "email": "siti@kampus.ac.id", "role": "Mahasiwa"},
    {"id": 4, "nama": "Joko Laboran", "email": "lab@kampus.ac.id", "role": "Petugas Lab"},
]

BOOKINGS = [
    {
        "id": 1,
        "userId": 2,
        "ruanganId": 1,
        "tanggalPinjam": "2025-01-10T08:00:00",
        "tanggalSelesai": "2025-01-10T10:00:00",
        "keperluan": "Praktikum basis data",
        "status": "Pending",
        "user": USERS[1],
        "ruangan": ROOMS[0],
    },
    {
        "id": 2,
        "userId": 3,
        "ruanganId": 3,
        "tanggalMulai": "2025-01-11T13:00:00",
        "tanggalSelesai": "2025-01-11T15:00:00",
        "keperluan": "Rekaman podcast",
        "status": "Approved",
    },
    {
        "id": 3,
        "userId": 2,
        "ruanganId": 2,
        "tanggalPinjam": "2025-01-12T09:00:00",
        "tanggalSelesai": "2025-01-12T11:00:00",
        "keperluan": "Rapat himpunan",
        "status": "Rejected",
        "user": USERS[1],
        "ruangan": ROOMS[1],
    },
]

_COLLECTIONS = {"ruangan": "rooms", "user": "users", "peminjaman": "bookings"}


class FakeBookingApi:
    """Minimal in-memory implementation of the remote REST API.

    Every request is recorded in ``calls`` as ``(method, path, body)``.
    ``failures`` maps ``(method, path)`` to a status code to answer with.
    """

    def __init__(self) -> None:
        self.rooms: List[Dict[str, Any]] = copy.deepcopy(ROOMS)
        self.users: List[Dict[str, Any]] = copy.deepcopy(USERS)
        self.bookings: List[Dict[str, Any]] = copy.deepcopy(BOOKINGS)
        self.calls: List[Tuple[str, str, Any]] = []
        self.failures: Dict[Tuple[str, str], int] = {}
        self.down = False

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method and p == path)

    def bodies(self, method: str, path: str) -> List[Any]:
        return [body for m, p, body in self.calls if m == method and p == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path[len("/api"):]
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))

        status = self.failures.get((request.method, path))
        if status is not None:
            return httpx.Response(status, json={"message": f"Server said no to {path}"})

        if path == "/auth/login":
            return self._login(body)
        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return httpx.Response(401, json={"Message": "Unauthorized"})

        match = re.fullmatch(r"/(ruangan|user|peminjaman)(?:/(\d+))?(/status)?", path)
        if match is None:
            return httpx.Response(404, json={"title": "Not Found"})
        items = getattr(self, _COLLECTIONS[match.group(1)])
        item_id = int(match.group(2)) if match.group(2) else None

        if match.group(3):
            item = self._find(items, item_id)
            if item is None:
                return httpx.Response(404, json={"message": "Booking not found"})
            item["status"] = body
            return httpx.Response(204)
        if item_id is None and request.method == "GET":
            return httpx.Response(200, json=items)
        if item_id is None and request.method == "POST":
            new = {**body, "id": max((i["id"] for i in items), default=0) + 1}
            new.pop("password", None)
            items.append(new)
            return httpx.Response(201, json=new)
        item = self._find(items, item_id)
        if item is None:
            return httpx.Response(404, json={"message": "Not found"})
        if request.method == "GET":
            return httpx.Response(200, json=item)
        if request.method == "PUT":
            item.update({k: v for k, v in body.items() if k != "password"})
            return httpx.Response(204)
        if request.method == "DELETE":
            items.remove(item)
            return httpx.Response(204)
        return httpx.Response(405)

    @staticmethod
    def _find(items: List[Dict[str, Any]], item_id: Optional[int]) -> Optional[Dict[str, Any]]:
        return next((i for i in items if i["id"] == item_id), None)

    def _login(self, body: Dict[str, Any]) -> httpx.Response:
        user = next((u for u in self.users if u["email"] == body.get("email")), None)
        if user is None or body.get("password") != PASSWORD:
            return httpx.Response(401, json={"Message": "Email atau password salah."})
        return httpx.Response(200, json={"token": f"token-{user['id']}", "user": user})


@pytest.fixture
def fake_api():
    """Provide a fresh fake remote API."""
    return FakeBookingApi()


@pytest.fixture
def make_client(fake_api):
    """Provide a factory for async HTTP clients talking to the fake API."""

    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(fake_api))

    return factory


@pytest.fixture
def test_settings():
    """Provide settings pointing at the fake API with background refresh effectively off."""
    return Settings(API_BASE_URL=API_BASE, REFRESH_SECONDS=3600, APP_TITLE="Room Booking Test")


@pytest.fixture
def app(test_settings, fake_api):
    """Provide the portal application wired to the fake API."""
    return create_app(test_settings, transport=httpx.MockTransport(fake_api))


@pytest.fixture
def client(app):
    """Provide a test client with the application's lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


def _sign_in(client: TestClient, email: str, password: str = PASSWORD) -> httpx.Response:
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=False)


@pytest.fixture
def admin_client(client):
    """Provide a test client signed in as an admin."""
    _sign_in(client, "admin@kampus.ac.id")
    return client


@pytest.fixture
def student_client(client):
    """Provide a test client signed in as the student Budi (user 2)."""
    _sign_in(client, "budi@kampus.ac.id")
    return client


@pytest.fixture
def sign_in():
    """Provide a helper posting the login form without following the redirect."""
    return _sign_in
