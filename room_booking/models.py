"""Pydantic data models for the remote booking API.

These models describe the records exchanged with the remote API (rooms,
users, bookings and the login response) and the typed request bodies the
portal sends. Wire field names follow the API, which uses Indonesian names
(``nama``, ``gedung``, ``tanggalPinjam``...); attributes use English names
and every model accepts either spelling on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .validation import validate_booking_range


class Role(str, Enum):
    """Canonical role vocabulary. Values are the strings the API sends."""

    ADMIN = "Admin"
    STUDENT = "Mahasiswa"
    LAB_STAFF = "Petugas Lab"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Role"]:
        if isinstance(value, str):
            key = value.strip().lower().replace(" ", "").replace("_", "")
            return _ROLE_ALIASES.get(key)
        return None

    @property
    def label(self) -> str:
        return _ROLE_LABELS[self]

    @property
    def is_staff(self) -> bool:
        return self in (Role.ADMIN, Role.LAB_STAFF)


_ROLE_ALIASES: Dict[str, Role] = {
    "admin": Role.ADMIN,
    "student": Role.STUDENT,
    "mahasiswa": Role.STUDENT,
    "mahasiwa": Role.STUDENT,
    "labstaff": Role.LAB_STAFF,
    "petugaslab": Role.LAB_STAFF,
}

_ROLE_LABELS: Dict[Role, str] = {
    Role.ADMIN: "Admin",
    Role.STUDENT: "Student",
    Role.LAB_STAFF: "Lab staff",
}


class BookingStatus(str, Enum):
    """Approval status of a booking.

    ``PENDING`` is the only state a transition can start from; the other
    three are terminal as far as the portal is concerned.
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELED = "Canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.PENDING

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return self is BookingStatus.PENDING and target is not BookingStatus.PENDING


class WireModel(BaseModel):
    """Base model: accept attribute or wire names, ignore unknown fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Return the JSON body the API expects for this model."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class _HasRole(WireModel):
    @field_validator("role", mode="before", check_fields=False)
    @classmethod
    def _parse_role(cls, value: Any) -> Role:
        return Role(value)


class Identity(_HasRole):
    """The signed-in user as cached in the session."""

    id: int
    name: str = Field(validation_alias=AliasChoices("name", "nama"))
    email: str = ""
    role: Role


class Room(WireModel):
    """A reservable room (``Ruangan``)."""

    id: int
    name: str = Field(alias="nama")
    building: str = Field(default="", alias="gedung")
    capacity: int = Field(default=0, alias="kapasitas")


class User(_HasRole):
    """A user account as listed by the API."""

    id: int
    name: str = Field(alias="nama")
    email: str = ""
    role: Role


class Booking(WireModel):
    """A room reservation (``Peminjaman``) with optional denormalised user and room."""

    id: int
    user_id: int = Field(alias="userId")
    room_id: int = Field(alias="ruanganId")
    start_time: datetime = Field(
        validation_alias=AliasChoices("start_time", "tanggalPinjam", "tanggalMulai"),
        serialization_alias="tanggalPinjam",
    )
    end_time: datetime = Field(
        validation_alias=AliasChoices("end_time", "tanggalSelesai"),
        serialization_alias="tanggalSelesai",
    )
    status: BookingStatus = BookingStatus.PENDING
    purpose: Optional[str] = Field(default=None, alias="keperluan")
    user: Optional[User] = None
    room: Optional[Room] = Field(default=None, alias="ruangan")


class LoginRequest(WireModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AuthResponse(WireModel):
    token: str
    user: Identity


class CreateRoomRequest(WireModel):
    name: str = Field(alias="nama", min_length=1)
    building: str = Field(alias="gedung", min_length=1)
    capacity: int = Field(alias="kapasitas", ge=0)


class UpdateRoomRequest(CreateRoomRequest):
    id: int


class CreateUserRequest(_HasRole):
    name: str = Field(alias="nama", min_length=1)
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    role: Role = Role.STUDENT


class UpdateUserRequest(_HasRole):
    """Update body; a missing password leaves the stored one unchanged."""

    id: int
    name: str = Field(alias="nama", min_length=1)
    email: str = Field(min_length=1)
    password: Optional[str] = None
    role: Role

    @field_validator("password", mode="before")
    @classmethod
    def _blank_password(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CreateBookingRequest(WireModel):
    """New booking. The time range is checked here as well as in the form handlers."""

    user_id: int = Field(alias="userId", gt=0)
    room_id: int = Field(alias="ruanganId", gt=0)
    start_time: datetime = Field(alias="tanggalPinjam")
    end_time: datetime = Field(alias="tanggalSelesai")
    purpose: Optional[str] = Field(default=None, alias="keperluan")
    status: BookingStatus = BookingStatus.PENDING

    @model_validator(mode="after")
    def _check_range(self) -> "CreateBookingRequest":
        check = validate_booking_range(self.start_time, self.end_time)
        if not check.ok:
            raise ValueError(check.reason)
        return self


class UpdateBookingRequest(CreateBookingRequest):
    id: int


class UpdateBookingStatusRequest(WireModel):
    status: BookingStatus

    def to_wire(self) -> str:  # type: ignore[override]
        # The status endpoint takes a bare JSON string, not an object.
        return self.status.value
