# Package initializer for the room booking portal.

"""
The `room_booking` package contains all modules for the room booking web portal.

Modules:

- ``config``: application settings loaded from environment variables.
- ``models``: Pydantic data models for the remote API's records and request bodies.
- ``errors``: exception types reported to the user.
- ``validation``: checks run on a booking before it is submitted.
- ``api_client``: helpers for calling the remote booking API.
- ``guard``: role-based navigation rules.
- ``session``: the signed-in user as carried in cookies.
- ``sync``: per-session cached collections with background refresh.
- ``views``: filtering, grouping and counting over cached collections.
- ``pages``: HTML rendering.
- ``main``: the FastAPI application definition.

"""
