"""
Integration Tests for the Web Portal

Exercises the pages and form posts through FastAPI's TestClient, with the
remote API answered by the in-process fake.
"""

from room_booking.pages import FRAGMENT_HEADER


def fragment(client, url):
    """Fetch only the content region, the way the page's polling does."""
    return client.get(url, headers={FRAGMENT_HEADER: "content"}, follow_redirects=False)


def post(client, url, data):
    return client.post(url, data=data, follow_redirects=False)


class TestAuthentication:
    """Tests for login, logout and the navigation guard."""

    def test_login_page_for_anonymous_visitor(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert 'action="/login"' in response.text

    def test_protected_page_redirects_to_login(self, client):
        response = client.get("/admin/dashboard", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/"

    def test_admin_lands_on_dashboard(self, client, sign_in):
        response = sign_in(client, "admin@kampus.ac.id")

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/dashboard"
        assert client.cookies.get("token") == "token-1"

    def test_lab_staff_lands_on_dashboard(self, client, sign_in):
        assert sign_in(client, "lab@kampus.ac.id").headers["location"] == "/admin/dashboard"

    def test_students_land_on_user_page(self, client, sign_in):
        assert sign_in(client, "budi@kampus.ac.id").headers["location"] == "/user"
        assert sign_in(client, "siti@kampus.ac.id").headers["location"] == "/user"

    def test_failed_login_shows_api_message(self, client, sign_in):
        response = sign_in(client, "admin@kampus.ac.id", "wrong")

        assert response.status_code == 200
        assert "Email atau password salah." in response.text
        assert 'value="admin@kampus.ac.id"' in response.text
        assert client.cookies.get("token") is None

    def test_blank_credentials_are_not_sent(self, client, fake_api):
        response = post(client, "/login", {"email": "", "password": ""})

        assert "Please enter your email and password." in response.text
        assert fake_api.calls == []

    def test_signed_in_visitor_skips_login_page(self, admin_client):
        response = admin_client.get("/", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/admin/dashboard"

    def test_student_is_kept_out_of_admin_pages(self, student_client):
        response = student_client.get("/admin/rooms", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/user"

    def test_admin_is_kept_out_of_student_page(self, admin_client):
        response = admin_client.get("/user", follow_redirects=False)

        assert response.headers["location"] == "/admin/dashboard"

    def test_logout_clears_session_and_cache(self, admin_client):
        registry = admin_client.app.state.registry
        admin_client.get("/admin/dashboard")
        assert len(registry) == 1

        response = post(admin_client, "/logout", {})

        assert response.headers["location"] == "/"
        assert len(registry) == 0
        assert admin_client.get("/admin/dashboard", follow_redirects=False).headers["location"] == "/"

    def test_unreadable_identity_cookie_is_treated_as_signed_out(self, client):
        client.cookies.set("token", "token-1")
        client.cookies.set("user", "garbage")

        response = client.get("/admin/dashboard", follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "/"


class TestAdminPages:
    """Tests for the staff pages."""

    def test_dashboard_counts_and_buildings(self, admin_client):
        response = admin_client.get("/admin/dashboard")

        assert response.status_code == 200
        assert '<div class="small">Pending</div><div class="count">1</div>' in response.text
        assert '<div class="small">Canceled</div><div class="count">0</div>' in response.text
        assert 'href="/admin/bookings?status=Approved"' in response.text
        assert 'href="/admin/rooms?gedung=D4"' in response.text
        assert "2 rooms" in response.text and "1 room<" in response.text
        assert "4 registered users" in response.text

    def test_status_filter_url_reproduces_list(self, admin_client):
        assert admin_client.get("/admin/bookings?status=Approved").status_code == 200

        content = fragment(admin_client, "/admin/bookings?status=Approved").text

        assert "Siti Aminah" in content
        assert "Budi Santoso" not in content
        assert '<option value="Approved" selected>' in content

    def test_booking_search_by_borrower(self, admin_client):
        admin_client.get("/admin/bookings?search=Budi")

        content = fragment(admin_client, "/admin/bookings?search=Budi").text

        assert "Budi Santoso" in content
        assert "Siti Aminah" not in content

    def test_filter_urls_are_normalised(self, admin_client):
        def location(url):
            return admin_client.get(url, follow_redirects=False).headers["location"]

        assert location("/admin/bookings?status=&search=") == "/admin/bookings"
        assert location("/admin/bookings?status=Bogus") == "/admin/bookings"
        assert location("/admin/bookings?search=x&status=Approved") == "/admin/bookings?status=Approved&search=x"
        assert location("/admin/users?role=Mahasiwa") == "/admin/users?role=Mahasiswa"

    def test_fragment_renders_from_cache(self, admin_client, fake_api):
        admin_client.get("/admin/rooms")
        fake_api.calls.clear()

        response = fragment(admin_client, "/admin/rooms")

        assert response.status_code == 200
        assert "<html" not in response.text
        assert "Lab Komputer 1" in response.text
        assert fake_api.calls == []

    def test_fragment_reloads_a_discarded_cache(self, app, admin_client, fake_api):
        admin_client.get("/admin/rooms")
        app.state.registry.close_all()
        fake_api.calls.clear()

        response = fragment(admin_client, "/admin/rooms")

        assert response.status_code == 200
        assert "Lab Komputer 1" in response.text
        assert fake_api.count("GET", "/ruangan") == 1

    def test_fragment_without_data_leaves_page_alone(self, app, admin_client, fake_api):
        admin_client.get("/admin/rooms")
        app.state.registry.close_all()
        fake_api.down = True

        response = fragment(admin_client, "/admin/rooms")

        assert response.status_code == 204
        assert response.text == ""

    def test_room_filter_by_building(self, admin_client):
        admin_client.get("/admin/rooms?gedung=D5")

        content = fragment(admin_client, "/admin/rooms?gedung=D5").text

        assert "Studio" in content
        assert "Lab Komputer 1" not in content

    def test_approve_booking(self, admin_client, fake_api):
        admin_client.get("/admin/bookings")
        fake_api.calls.clear()

        response = post(admin_client, "/admin/bookings/1/status", {"status": "Approved", "next": "/admin/bookings"})

        assert response.headers["location"] == "/admin/bookings"
        assert fake_api.calls == [("PUT", "/peminjaman/1/status", "Approved")]
        assert fake_api.bookings[0]["status"] == "Approved"
        assert "Booking approved." in admin_client.get("/admin/bookings").text

    def test_status_change_of_decided_booking_is_refused(self, admin_client, fake_api):
        admin_client.get("/admin/bookings")
        fake_api.calls.clear()

        post(admin_client, "/admin/bookings/2/status", {"status": "Rejected", "next": "/admin/bookings"})
        page = admin_client.get("/admin/bookings")

        assert fake_api.count("PUT", "/peminjaman/2/status") == 0
        assert "Approved booking cannot be changed to Rejected." in page.text
        assert admin_client.cookies.get("flash") is None

    def test_create_room(self, admin_client, fake_api):
        response = post(admin_client, "/admin/rooms", {"nama": "Aula", "gedung": "D6", "kapasitas": "200"})

        assert response.headers["location"] == "/admin/rooms"
        assert fake_api.bodies("POST", "/ruangan") == [{"nama": "Aula", "gedung": "D6", "kapasitas": 200}]
        assert fake_api.count("GET", "/ruangan") == 1
        assert 'alert("Room added.")' in admin_client.get("/admin/rooms").text
        assert admin_client.cookies.get("flash") is None

    def test_invalid_room_form_is_not_sent(self, admin_client, fake_api):
        post(admin_client, "/admin/rooms", {"nama": "Aula", "gedung": "D6", "kapasitas": "-1"})

        assert fake_api.count("POST", "/ruangan") == 0
        assert "kapasitas: Input should be greater than or equal to 0" in admin_client.get("/admin/rooms").text

    def test_refused_mutation_is_reported(self, admin_client, fake_api):
        fake_api.failures[("POST", "/ruangan")] = 400

        post(admin_client, "/admin/rooms", {"nama": "Aula", "gedung": "D6", "kapasitas": "20"})
        page = admin_client.get("/admin/rooms")

        assert "Adding the room failed: Server said no to /ruangan" in page.text
        assert "Aula" not in page.text

    def test_inverted_booking_is_rejected_before_any_request(self, admin_client, fake_api):
        post(
            admin_client,
            "/admin/bookings",
            {"userId": "2", "ruanganId": "1", "tanggalPinjam": "2025-01-01T10:00", "tanggalSelesai": "2025-01-01T09:00"},
        )

        assert fake_api.count("POST", "/peminjaman") == 0

    def test_booking_edit_keeps_current_status(self, admin_client, fake_api):
        admin_client.get("/admin/bookings")

        post(
            admin_client,
            "/admin/bookings/2",
            {
                "userId": "3",
                "ruanganId": "2",
                "tanggalPinjam": "2025-01-11T13:00",
                "tanggalSelesai": "2025-01-11T16:00",
                "keperluan": "",
            },
        )

        (body,) = fake_api.bodies("PUT", "/peminjaman/2")
        assert body["status"] == "Approved"
        assert body["ruanganId"] == 2
        assert body["tanggalSelesai"] == "2025-01-11T16:00:00"
        assert "keperluan" not in body

    def test_user_update_without_password(self, admin_client, fake_api):
        post(
            admin_client,
            "/admin/users/2",
            {"nama": "Budi S.", "email": "budi@kampus.ac.id", "password": "", "role": "Mahasiswa"},
        )

        assert fake_api.bodies("PUT", "/user/2") == [
            {"id": 2, "nama": "Budi S.", "email": "budi@kampus.ac.id", "role": "Mahasiswa"}
        ]

    def test_delete_user_refreshes_users_and_bookings(self, admin_client, fake_api):
        post(admin_client, "/admin/users/4/delete", {"next": "/admin/users"})

        assert fake_api.count("DELETE", "/user/4") == 1
        assert fake_api.count("GET", "/user") == 1
        assert fake_api.count("GET", "/peminjaman") == 1

    def test_redirect_target_must_be_local(self, admin_client):
        response = post(
            admin_client,
            "/admin/rooms",
            {"nama": "Aula", "gedung": "D6", "kapasitas": "20", "next": "//evil.example/"},
        )

        assert response.headers["location"] == "/admin/rooms"

    def test_unreachable_api_shows_retry_banner(self, admin_client, fake_api):
        fake_api.down = True

        response = admin_client.get("/admin/rooms")

        assert response.status_code == 200
        assert "could not be reached" in response.text
        assert "Try again" in response.text


class TestStudentPage:
    """Tests for the student page and its forms."""

    def test_rooms_grouped_by_building_and_history(self, student_client):
        response = student_client.get("/user")

        assert response.status_code == 200
        assert "<h3>D4</h3>" in response.text and "<h3>D5</h3>" in response.text
        assert 'action="/user/bookings/1/cancel"' in response.text
        assert 'action="/user/bookings/3/cancel"' not in response.text

    def test_inverted_booking_is_rejected_before_any_request(self, student_client, fake_api):
        response = post(
            student_client,
            "/user/bookings",
            {"ruanganId": "1", "tanggalPinjam": "2025-01-01T10:00", "tanggalSelesai": "2025-01-01T09:00"},
        )

        assert response.headers["location"] == "/user"
        assert fake_api.count("POST", "/peminjaman") == 0
        assert "End time must be later than the start time." in student_client.get("/user").text

    def test_booking_is_submitted_as_own_pending_request(self, student_client, fake_api):
        post(
            student_client,
            "/user/bookings",
            {
                "userId": "1",
                "ruanganId": "3",
                "tanggalPinjam": "2025-02-01T08:00",
                "tanggalSelesai": "2025-02-01T09:30",
                "keperluan": "Latihan presentasi",
            },
        )

        assert fake_api.bodies("POST", "/peminjaman") == [
            {
                "userId": 2,
                "ruanganId": 3,
                "tanggalPinjam": "2025-02-01T08:00:00",
                "tanggalSelesai": "2025-02-01T09:30:00",
                "keperluan": "Latihan presentasi",
                "status": "Pending",
            }
        ]

    def test_cancel_own_pending_booking(self, student_client, fake_api):
        student_client.get("/user")

        post(student_client, "/user/bookings/1/cancel", {})

        assert fake_api.bodies("PUT", "/peminjaman/1/status") == ["Canceled"]

    def test_cannot_cancel_someone_elses_booking(self, student_client, fake_api):
        student_client.get("/user")

        post(student_client, "/user/bookings/2/cancel", {})

        assert fake_api.count("PUT", "/peminjaman/2/status") == 0
        assert "not found in your history" in student_client.get("/user").text


class TestMisc:
    """Tests for the health check and unknown pages."""

    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["ok"] is True

    def test_unknown_page(self, client):
        response = client.get("/no/such/page")

        assert response.status_code == 404
        assert "Page not found" in response.text
