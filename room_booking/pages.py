"""HTML for the portal's pages.

The markup is built here with f-strings rather than kept in separate
templates, so the portal ships as a single Python package with no frontend
build chain. Every value that comes from the API or the visitor goes
through :func:`esc`.

Each page is split in two: :func:`layout` renders the navigation bar,
notifications and the polling script, while the ``*_content`` functions
render the ``#content`` region. The polling script re-requests the current
URL with an ``X-Fragment`` header every refresh period and swaps in the new
content region, so cached data refreshed in the background shows up without
a reload.
"""

from __future__ import annotations

import html
import json
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence

from .models import Booking, BookingStatus, Identity, Role, Room, User
from .views import BookingQuery, RoomQuery, UserQuery

FRAGMENT_HEADER = "X-Fragment"


def esc(value: object) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def js_string(value: str) -> str:
    """JSON-encode ``value`` for use inside a ``<script>`` element."""
    return json.dumps(value).replace("</", "<\\/")


def fmt_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%d %b %Y %H:%M") if value else "-"


def input_datetime(value: Optional[datetime]) -> str:
    """Format for a ``datetime-local`` input."""
    return value.strftime("%Y-%m-%dT%H:%M") if value else ""


CSS = """
:root {
  --bg: #f4f6fb;
  --fg: #1e293b;
  --muted: #64748b;
  --card-bg: #ffffff;
  --card-border: #e2e8f0;
  --accent: #2563eb;
  --pending: #b45309;
  --approved: #15803d;
  --rejected: #b91c1c;
  --canceled: #64748b;
}
body { margin: 0; font-family: system-ui, -apple-system, Segoe UI, Roboto, Ubuntu, Arial; background: var(--bg); color: var(--fg); }
nav.top { display: flex; gap: 18px; align-items: center; padding: 14px 22px; background: #0f172a; color: #e2e8f0; }
nav.top a { color: #e2e8f0; text-decoration: none; opacity: 0.8; }
nav.top a.active { opacity: 1; font-weight: 650; }
nav.top .brand { font-weight: 750; letter-spacing: 0.3px; margin-right: 12px; }
nav.top .who { margin-left: auto; text-align: right; font-size: 13px; }
nav.top .who .role { opacity: 0.7; }
nav.top form { margin: 0; }
main { padding: 20px 22px 32px; max-width: 1200px; margin: 0 auto; }
h1 { margin: 0 0 4px; font-size: 24px; }
.sub { color: var(--muted); margin: 0 0 18px; }
.card { background: var(--card-bg); border: 1px solid var(--card-border); border-radius: 14px; padding: 16px; }
.grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(220px, 1fr)); gap: 14px; margin-bottom: 20px; }
.tile { display: block; color: inherit; text-decoration: none; }
.tile .count { font-size: 30px; font-weight: 700; }
.filters { display: flex; gap: 10px; margin: 0 0 16px; }
input, select { padding: 9px 11px; border-radius: 10px; border: 1px solid var(--card-border); font-size: 14px; }
button { padding: 8px 12px; border-radius: 10px; border: 1px solid var(--card-border); background: #fff; cursor: pointer; }
button.primary { background: var(--accent); color: #fff; border-color: var(--accent); }
table { width: 100%; border-collapse: collapse; }
th, td { text-align: left; padding: 10px 8px; border-bottom: 1px solid var(--card-border); font-size: 14px; vertical-align: top; }
td.actions form { display: inline; }
.small { font-size: 12px; color: var(--muted); }
.badge { display: inline-block; padding: 3px 10px; border-radius: 999px; font-size: 12px; font-weight: 600; }
.badge.Pending { color: var(--pending); background: #fef3c7; }
.badge.Approved { color: var(--approved); background: #dcfce7; }
.badge.Rejected { color: var(--rejected); background: #fee2e2; }
.badge.Canceled { color: var(--canceled); background: #f1f5f9; }
.errorbar { margin: 0 0 16px; padding: 10px 12px; border-radius: 12px; border: 1px solid #fdba74; background: #fff7ed; font-size: 14px; }
.loading { height: 240px; border-radius: 14px; background: linear-gradient(90deg, #e2e8f0, #f8fafc, #e2e8f0); }
.empty { text-align: center; color: var(--muted); padding: 40px; }
dialog { border: none; border-radius: 16px; padding: 22px; min-width: 340px; }
dialog label { display: block; margin: 10px 0 4px; font-size: 13px; color: var(--muted); }
dialog input, dialog select { width: 100%; box-sizing: border-box; }
dialog .buttons { display: flex; justify-content: flex-end; gap: 8px; margin-top: 16px; }
.building { margin-bottom: 22px; }
.building h3 { margin: 0 0 10px; }
.login { max-width: 380px; margin: 80px auto; }
.login .error { color: var(--rejected); background: #fee2e2; padding: 10px 12px; border-radius: 10px; margin-bottom: 12px; }
"""

SCRIPT = """
function openDialog(id, action, values) {
  const dlg = document.getElementById(id);
  const form = dlg.querySelector("form");
  form.reset();
  if (action) form.action = action;
  Object.entries(values || {}).forEach(([k, v]) => {
    const el = form.elements[k];
    if (el) el.value = v;
  });
  dlg.showModal();
}
function dropEmpty(form) {
  Array.from(form.elements).forEach(el => { if (el.name && !el.value) el.disabled = true; });
}
async function refreshContent() {
  if (document.querySelector("dialog[open]")) return;
  const content = document.getElementById("content");
  if (content.contains(document.activeElement) && document.activeElement.tagName !== "BODY") return;
  try {
    const r = await fetch(location.href, {headers: {"X-Fragment": "content"}, cache: "no-store"});
    if (r.redirected || !r.ok || r.status === 204) return;
    content.innerHTML = await r.text();
  } catch (e) {
    console.warn("Background refresh failed", e);
  }
}
"""


def status_badge(status: BookingStatus) -> str:
    return f'<span class="badge {status.value}">{esc(status.value)}</span>'


def error_banner(error: Optional[str], retry_url: str) -> str:
    if not error:
        return ""
    return (
        f'<div class="errorbar" role="alert">Could not load the latest data: {esc(error)} '
        f'<a href="{esc(retry_url)}">Try again</a></div>'
    )


def _state_block(loading: bool, loaded: bool, error: Optional[str], retry_url: str) -> Optional[str]:
    """Banner for the data state, or a placeholder when there is nothing to show yet."""
    banner = error_banner(error, retry_url)
    if not loaded:
        return banner + ('<div class="loading"></div>' if loading else "")
    return None


def _hidden_next(next_url: str) -> str:
    return f'<input type="hidden" name="next" value="{esc(next_url)}">'


def _confirm_form(
    action: str, label: str, question: str, next_url: str, fields: Optional[Mapping[str, str]] = None
) -> str:
    hidden = "".join(f'<input type="hidden" name="{esc(k)}" value="{esc(v)}">' for k, v in (fields or {}).items())
    return (
        f'<form method="post" action="{esc(action)}" onsubmit="return confirm({esc(js_string(question))})">'
        f"{hidden}{_hidden_next(next_url)}<button type=\"submit\">{esc(label)}</button></form>"
    )


def _edit_button(dialog_id: str, action: str, values: Mapping[str, object]) -> str:
    call = f"openDialog({js_string(dialog_id)}, {js_string(action)}, {json.dumps(values)})"
    return f'<button type="button" onclick="{esc(call)}">Edit</button>'


def _options(values: Iterable[tuple], selected: str, placeholder: Optional[str] = None) -> str:
    parts = [f'<option value="">{esc(placeholder)}</option>'] if placeholder is not None else []
    for value, label in values:
        mark = " selected" if str(value) == selected else ""
        parts.append(f'<option value="{esc(value)}"{mark}>{esc(label)}</option>')
    return "".join(parts)


STATUS_OPTIONS = [(s.value, s.value) for s in BookingStatus]
ROLE_OPTIONS = [(r.value, r.label) for r in Role]


def layout(
    *,
    title: str,
    brand: str,
    content: str,
    identity: Optional[Identity],
    active: str = "",
    flash: Optional[str] = None,
    refresh_seconds: int = 30,
    dialogs: str = "",
) -> str:
    """Wrap a content region in the full page."""
    links: List[tuple] = []
    if identity is not None and identity.role.is_staff:
        links = [
            ("/admin/dashboard", "Dashboard"),
            ("/admin/bookings", "Bookings"),
            ("/admin/rooms", "Rooms"),
            ("/admin/users", "Users"),
        ]
    elif identity is not None:
        links = [("/user", "Rooms & my bookings")]
    nav_links = "".join(
        f'<a href="{href}" class="{"active" if href == active else ""}">{esc(label)}</a>' for href, label in links
    )
    who = ""
    if identity is not None:
        who = (
            f'<div class="who"><div>{esc(identity.name)}</div><div class="role">{esc(identity.role.label)}</div></div>'
            '<form method="post" action="/logout"><button type="submit" title="Log out">Log out</button></form>'
        )
    flash_script = f"<script>alert({js_string(flash)});</script>" if flash else ""
    poll = (
        f"<script>{SCRIPT}\nsetInterval(refreshContent, {int(refresh_seconds) * 1000});</script>"
        if identity is not None
        else ""
    )
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{esc(title)} · {esc(brand)}</title>
  <style>{CSS}</style>
</head>
<body>
  <nav class="top"><span class="brand">{esc(brand)}</span>{nav_links}{who}</nav>
  <main id="content">{content}</main>
  {dialogs}
  {poll}
  {flash_script}
</body>
</html>
"""


def login_content(error: Optional[str] = None, email: str = "") -> str:
    error_html = f'<div class="error" role="alert">{esc(error)}</div>' if error else ""
    return f"""
<div class="card login">
  <h1>Welcome</h1>
  <p class="sub">Sign in with your account.</p>
  {error_html}
  <form method="post" action="/login">
    <label>Email</label>
    <input type="email" name="email" value="{esc(email)}" required autofocus style="width:100%;box-sizing:border-box">
    <label>Password</label>
    <input type="password" name="password" required style="width:100%;box-sizing:border-box">
    <p><button class="primary" type="submit">Sign in</button></p>
  </form>
</div>
"""


def not_found_content() -> str:
    return '<div class="card empty"><h1>Page not found</h1><p><a href="/">Back to the start page</a></p></div>'


# -- dialogs -----------------------------------------------------------------


def room_dialog(next_url: str) -> str:
    return f"""
<dialog id="room-dialog"><form method="post" action="/admin/rooms">
  <h2>Room</h2>{_hidden_next(next_url)}
  <label>Name</label><input name="nama" required>
  <label>Building</label><input name="gedung" required>
  <label>Capacity</label><input name="kapasitas" type="number" min="0" required>
  <div class="buttons"><button type="button" onclick="this.closest('dialog').close()">Cancel</button>
  <button class="primary" type="submit">Save</button></div>
</form></dialog>"""


def user_dialog(next_url: str) -> str:
    return f"""
<dialog id="user-dialog"><form method="post" action="/admin/users">
  <h2>User</h2>{_hidden_next(next_url)}
  <label>Full name</label><input name="nama" required>
  <label>Email</label><input name="email" type="email" required>
  <label>Password <span class="small">(leave empty to keep when editing)</span></label><input name="password" type="password">
  <label>Role</label><select name="role">{_options(ROLE_OPTIONS, Role.STUDENT.value)}</select>
  <div class="buttons"><button type="button" onclick="this.closest('dialog').close()">Cancel</button>
  <button class="primary" type="submit">Save</button></div>
</form></dialog>"""


def booking_dialog(next_url: str, users: Sequence[User], rooms: Sequence[Room]) -> str:
    user_options = _options(((u.id, f"{u.name} ({u.email})") for u in users), "", "Choose a borrower")
    room_options = _options(((r.id, f"{r.name} - {r.building}") for r in rooms), "", "Choose a room")
    return f"""
<dialog id="booking-dialog"><form method="post" action="/admin/bookings">
  <h2>Booking</h2>{_hidden_next(next_url)}
  <label>Borrower</label><select name="userId" required>{user_options}</select>
  <label>Room</label><select name="ruanganId" required>{room_options}</select>
  <label>Start</label><input name="tanggalPinjam" type="datetime-local" required>
  <label>End</label><input name="tanggalSelesai" type="datetime-local" required>
  <label>Purpose</label><input name="keperluan">
  <div class="buttons"><button type="button" onclick="this.closest('dialog').close()">Cancel</button>
  <button class="primary" type="submit">Save</button></div>
</form></dialog>"""


def student_booking_dialog(next_url: str) -> str:
    return f"""
<dialog id="student-booking-dialog"><form method="post" action="/user/bookings">
  <h2>Book <span id="booking-room-name"></span></h2>{_hidden_next(next_url)}
  <input type="hidden" name="ruanganId">
  <label>Start</label><input name="tanggalPinjam" type="datetime-local" required>
  <label>End</label><input name="tanggalSelesai" type="datetime-local" required>
  <label>Purpose</label><input name="keperluan" placeholder="Meeting, practicum, ...">
  <div class="buttons"><button type="button" onclick="this.closest('dialog').close()">Cancel</button>
  <button class="primary" type="submit">Submit request</button></div>
</form></dialog>"""


# -- content regions ---------------------------------------------------------


def dashboard_content(
    *,
    counts: Mapping[BookingStatus, int],
    groups: Mapping[str, Sequence[Room]],
    user_count: int,
    loading: bool,
    loaded: bool,
    error: Optional[str],
    retry_url: str,
) -> str:
    state = _state_block(loading, loaded, error, retry_url)
    header = """
<h1>Dashboard</h1><p class="sub">Rooms, users and booking requests at a glance.</p>
<p><button class="primary" type="button" onclick="openDialog('room-dialog', '/admin/rooms')">Add room</button>
<button type="button" onclick="openDialog('user-dialog', '/admin/users')">Add user</button>
<button type="button" onclick="openDialog('booking-dialog', '/admin/bookings')">Add booking</button></p>"""
    if state is not None:
        return header + state
    tiles = "".join(
        f'<a class="card tile" href="/admin/bookings?{esc(BookingQuery(status=status).to_query_string())}">'
        f'<div class="small">{esc(status.value)}</div><div class="count">{count}</div></a>'
        for status, count in counts.items()
    )
    buildings = "".join(
        f'<a class="card tile" href="/admin/rooms?{esc(RoomQuery(building=name).to_query_string())}">'
        f"<h3>{esc(name)}</h3><div class=\"small\">{len(rooms)} room{'s' if len(rooms) != 1 else ''}</div></a>"
        for name, rooms in groups.items()
    ) or '<div class="card empty">No rooms yet.</div>'
    return f"""{header}{error_banner(error, retry_url)}
<h2>Booking requests</h2><div class="grid">{tiles}</div>
<h2>Buildings</h2><div class="grid">{buildings}</div>
<p class="small">{user_count} registered user{'s' if user_count != 1 else ''}.</p>"""


def rooms_content(
    *,
    rooms: Sequence[Room],
    buildings: Sequence[str],
    query: RoomQuery,
    next_url: str,
    loading: bool,
    loaded: bool,
    error: Optional[str],
) -> str:
    header = f"""
<h1>Rooms</h1><p class="sub">Manage the rooms that can be booked.</p>
<form method="get" class="filters" onsubmit="dropEmpty(this)">
  <input name="search" value="{esc(query.search)}" placeholder="Search room or building...">
  <select name="gedung" onchange="this.form.requestSubmit()" aria-label="Filter by building">
    {_options(((b, b) for b in buildings), query.building, "All buildings")}
  </select>
  <button type="button" class="primary" onclick="openDialog('room-dialog', '/admin/rooms')">Add room</button>
</form>"""
    state = _state_block(loading, loaded, error, next_url)
    if state is not None:
        return header + state
    rows = "".join(_room_row(r, next_url) for r in rooms) or '<tr><td colspan="4" class="empty">No rooms match.</td></tr>'
    return f"""{header}{error_banner(error, next_url)}
<div class="card"><table><thead><tr><th>Room</th><th>Building</th><th>Capacity</th><th>Actions</th></tr></thead>
<tbody>{rows}</tbody></table></div>"""


def bookings_content(
    *,
    bookings: Sequence[Booking],
    query: BookingQuery,
    next_url: str,
    loading: bool,
    loaded: bool,
    error: Optional[str],
) -> str:
    selected = query.status.value if query.status else ""
    header = f"""
<h1>Bookings</h1><p class="sub">Approve or reject room booking requests.</p>
<form method="get" class="filters" onsubmit="dropEmpty(this)">
  <input name="search" value="{esc(query.search)}" placeholder="Search borrower or room...">
  <select name="status" onchange="this.form.requestSubmit()" aria-label="Filter by status">
    {_options(STATUS_OPTIONS, selected, "All statuses")}
  </select>
  <button type="button" class="primary" onclick="openDialog('booking-dialog', '/admin/bookings')">Add booking</button>
</form>"""
    state = _state_block(loading, loaded, error, next_url)
    if state is not None:
        return header + state
    body = "".join(_booking_row(b, next_url) for b in bookings) or (
        '<tr><td colspan="5" class="empty">No bookings match.</td></tr>'
    )
    return f"""{header}{error_banner(error, next_url)}
<div class="card"><table><thead><tr><th>Borrower</th><th>Room</th><th>When</th><th>Status</th><th>Actions</th></tr></thead>
<tbody>{body}</tbody></table></div>"""


def users_content(
    *,
    users: Sequence[User],
    query: UserQuery,
    next_url: str,
    loading: bool,
    loaded: bool,
    error: Optional[str],
) -> str:
    selected = query.role.value if query.role else ""
    header = f"""
<h1>Users</h1><p class="sub">Accounts that can sign in to the portal.</p>
<form method="get" class="filters" onsubmit="dropEmpty(this)">
  <input name="search" value="{esc(query.search)}" placeholder="Search name or email...">
  <select name="role" onchange="this.form.requestSubmit()" aria-label="Filter by role">
    {_options(ROLE_OPTIONS, selected, "All roles")}
  </select>
  <button type="button" class="primary" onclick="openDialog('user-dialog', '/admin/users')">Add user</button>
</form>"""
    state = _state_block(loading, loaded, error, next_url)
    if state is not None:
        return header + state
    rows = "".join(_user_row(u, next_url) for u in users) or '<tr><td colspan="4" class="empty">No users match.</td></tr>'
    return f"""{header}{error_banner(error, next_url)}
<div class="card"><table><thead><tr><th>Name</th><th>Email</th><th>Role</th><th>Actions</th></tr></thead>
<tbody>{rows}</tbody></table></div>"""


def student_content(
    *,
    groups: Mapping[str, Sequence[Room]],
    history: Sequence[Booking],
    query: RoomQuery,
    next_url: str,
    loading: bool,
    loaded: bool,
    error: Optional[str],
) -> str:
    header = f"""
<h1>Book a room</h1><p class="sub">Pick a room and send a booking request.</p>
<form method="get" class="filters" onsubmit="dropEmpty(this)">
  <input name="search" value="{esc(query.search)}" placeholder="Search room or building...">
  <button type="submit">Search</button>
</form>"""
    state = _state_block(loading, loaded, error, next_url)
    if state is not None:
        return header + state
    sections: List[str] = []
    for building, rooms in groups.items():
        cards = "".join(
            f"""<div class="card"><strong>{esc(r.name)}</strong><div class="small">Capacity {r.capacity}</div>
<p><button type="button" class="primary" onclick="{esc(_book_call(r))}">Book</button></p></div>"""
            for r in rooms
        )
        sections.append(f'<div class="building"><h3>{esc(building)}</h3><div class="grid">{cards}</div></div>')
    rooms_html = "".join(sections) or '<div class="card empty">No rooms match your search.</div>'
    history_html = "".join(_history_row(b, next_url) for b in history) or (
        '<tr><td colspan="4" class="empty">You have not booked anything yet.</td></tr>'
    )
    return f"""{header}{error_banner(error, next_url)}
{rooms_html}
<h2>My bookings</h2>
<div class="card"><table><thead><tr><th>Room</th><th>When</th><th>Status</th><th></th></tr></thead>
<tbody>{history_html}</tbody></table></div>"""


def _book_call(room: Room) -> str:
    values = json.dumps({"ruanganId": room.id})
    return (
        f"openDialog('student-booking-dialog', null, {values});"
        f"document.getElementById('booking-room-name').textContent = {js_string(room.name)};"
    )


# -- table rows --------------------------------------------------------------


def _room_row(room: Room, next_url: str) -> str:
    edit = _edit_button(
        "room-dialog",
        f"/admin/rooms/{room.id}",
        {"nama": room.name, "gedung": room.building, "kapasitas": room.capacity},
    )
    delete = _confirm_form(f"/admin/rooms/{room.id}/delete", "Delete", f"Delete room {room.name}?", next_url)
    return (
        f"<tr><td><strong>{esc(room.name)}</strong></td><td>{esc(room.building)}</td>"
        f'<td>{room.capacity}</td><td class="actions">{edit} {delete}</td></tr>'
    )


def _user_row(user: User, next_url: str) -> str:
    edit = _edit_button(
        "user-dialog",
        f"/admin/users/{user.id}",
        {"nama": user.name, "email": user.email, "role": user.role.value},
    )
    delete = _confirm_form(f"/admin/users/{user.id}/delete", "Delete", f"Delete user {user.name}?", next_url)
    return (
        f"<tr><td><strong>{esc(user.name)}</strong></td><td>{esc(user.email)}</td>"
        f'<td>{esc(user.role.label)}</td><td class="actions">{edit} {delete}</td></tr>'
    )


def _booking_row(booking: Booking, next_url: str) -> str:
    status_action = f"/admin/bookings/{booking.id}/status"
    actions = ""
    if booking.status is BookingStatus.PENDING:
        actions = _confirm_form(
            status_action, "Approve", "Approve this booking?", next_url, {"status": BookingStatus.APPROVED.value}
        ) + _confirm_form(
            status_action, "Reject", "Reject this booking?", next_url, {"status": BookingStatus.REJECTED.value}
        )
    actions += _edit_button(
        "booking-dialog",
        f"/admin/bookings/{booking.id}",
        {
            "userId": booking.user_id,
            "ruanganId": booking.room_id,
            "tanggalPinjam": input_datetime(booking.start_time),
            "tanggalSelesai": input_datetime(booking.end_time),
            "keperluan": booking.purpose or "",
        },
    )
    actions += _confirm_form(f"/admin/bookings/{booking.id}/delete", "Delete", "Delete this booking?", next_url)
    user_name = booking.user.name if booking.user else "Unknown user"
    user_email = booking.user.email if booking.user else ""
    room_name = booking.room.name if booking.room else "Unknown room"
    building = booking.room.building if booking.room else ""
    return (
        f'<tr><td><strong>{esc(user_name)}</strong><div class="small">{esc(user_email)}</div></td>'
        f'<td>{esc(room_name)}<div class="small">{esc(building)}</div></td>'
        f'<td>{esc(fmt_datetime(booking.start_time))}<div class="small">until</div>'
        f"{esc(fmt_datetime(booking.end_time))}</td>"
        f'<td>{status_badge(booking.status)}</td><td class="actions">{actions}</td></tr>'
    )


def _history_row(booking: Booking, next_url: str) -> str:
    room_name = booking.room.name if booking.room else f"Room #{booking.room_id}"
    cancel = ""
    if booking.status is BookingStatus.PENDING:
        cancel = _confirm_form(
            f"/user/bookings/{booking.id}/cancel", "Cancel", "Cancel this booking request?", next_url
        )
    return (
        f"<tr><td>{esc(room_name)}</td>"
        f"<td>{esc(fmt_datetime(booking.start_time))} - {esc(fmt_datetime(booking.end_time))}</td>"
        f'<td>{status_badge(booking.status)}</td><td class="actions">{cancel}</td></tr>'
    )
