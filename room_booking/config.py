"""Runtime settings for the portal.

``Settings`` reads the portal's configuration from environment variables
through ``pydantic-settings``: where the remote API lives, how often cached
lists are refreshed, how long an idle session keeps its cache and how
cookies are issued.

Variables may also be supplied through a dotenv file. The file named by
``ROOM_BOOKING_ENV`` (default ``.env`` in the working directory) is loaded
before the settings are read; a missing file is silently ignored.
"""

import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(os.getenv("ROOM_BOOKING_ENV", ".env"))


class Settings(BaseSettings):
    """Portal configuration.

    Environment variable names map to fields by alias. Every value has a
    default so the portal starts against a local API without any setup.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    # Remote API
    api_base_url: str = Field(
        default="http://localhost:5000/api",
        alias="API_BASE_URL",
        description="Root URL of the room booking REST API, without a trailing slash.",
    )

    # Synchronizer behaviour
    refresh_seconds: int = Field(
        default=30,
        alias="REFRESH_SECONDS",
        gt=0,
        description="Interval (in seconds) between silent background refreshes of cached lists.",
    )
    session_idle_seconds: int = Field(
        default=1800,
        alias="SESSION_IDLE_SECONDS",
        gt=0,
        description="Cached data for a session is dropped after this many seconds without a request.",
    )

    # Cookies and UI
    cookie_secure: bool = Field(
        default=False,
        alias="COOKIE_SECURE",
        description="Mark session cookies as Secure. Enable when served over HTTPS.",
    )
    app_title: str = Field(default="Room Booking", alias="APP_TITLE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


# Read once at import; the rest of the package imports ``settings`` from here.
settings = Settings()
