"""Tests for the Flask JSON API."""

import io

import pytest


class TestSession:
    def test_requires_login(self, client):
        response = client.get("/api/branches")
        assert response.status_code == 401
        assert response.get_json()["kind"] == "authentication"

    def test_bad_credentials(self, client, context):
        context.identity.register("coach@example.com", "secret-pass")
        response = client.post("/api/auth/login", json={"email": "coach@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_register_login_logout(self, client):
        response = client.post("/api/auth/register", json={"email": "a@b.co", "password": "123456"})
        assert response.status_code == 201
        response = client.post("/api/auth/login", json={"email": "a@b.co", "password": "123456"})
        body = response.get_json()
        assert body["message"] == "Signed in"
        assert body["has_club"] is False
        assert client.get("/api/auth/session").status_code == 200
        client.post("/api/auth/logout")
        assert client.get("/api/auth/session").status_code == 401

    def test_logout_does_not_affect_other_users(self, app, context):
        context.identity.register("one@example.com", "secret-pass")
        context.identity.register("two@example.com", "secret-pass")
        first, second = app.test_client(), app.test_client()
        first.post("/api/auth/login", json={"email": "one@example.com", "password": "secret-pass"})
        second.post("/api/auth/login", json={"email": "two@example.com", "password": "secret-pass"})
        first.post("/api/auth/logout")
        assert first.get("/api/auth/session").status_code == 401
        assert second.get("/api/auth/session").get_json()["session"]["email"] == "two@example.com"
        assert context.identity.current_session is None

    def test_settings_change_toast_language(self, client, logged_in):
        response = client.put("/api/settings", json={"language": "tr", "theme": "dark"})
        assert response.get_json()["data"] == {"theme": "dark", "language": "tr"}
        response = client.post("/api/branches", json={"name": "Merkez"})
        assert response.get_json()["message"] == "Şube başarıyla eklendi"

    def test_invalid_settings(self, client):
        response = client.put("/api/settings", json={"theme": "neon"})
        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation"


class TestClubOnboarding:
    def test_setup_with_logo(self, client, logged_in):
        data = {"club_name": "Hoopers", "logo": (io.BytesIO(b"\x89PNG"), "crest.png")}
        response = client.post("/api/club", data=data, content_type="multipart/form-data")
        assert response.status_code == 201
        assert response.get_json()["message"] == "Club setup completed!"
        club = client.get("/api/club").get_json()["club"]
        assert club["club_name"] == "Hoopers"
        assert club["logo_url"].endswith("/logo.png")

    def test_rejects_unsupported_logo(self, client, logged_in):
        data = {"club_name": "Hoopers", "logo": (io.BytesIO(b"MZ"), "crest.exe")}
        response = client.post("/api/club", data=data, content_type="multipart/form-data")
        assert response.status_code == 400


class TestRosterApi:
    def _group(self, client):
        branch = client.post("/api/branches", json={"name": "Downtown"}).get_json()["data"]
        group = client.post(
            f"/api/branches/{branch['id']}/groups", json={"name": "U12", "capacity": 10}
        ).get_json()["data"]
        return branch, group

    def test_branch_crud(self, client, logged_in):
        response = client.post("/api/branches", json={"name": "Downtown", "address": "1 Main"})
        assert response.status_code == 201
        branch_id = response.get_json()["data"]["id"]
        response = client.put(f"/api/branches/{branch_id}", json={"name": "Uptown"})
        assert response.get_json()["data"]["name"] == "Uptown"
        assert client.delete(f"/api/branches/{branch_id}").get_json()["message"] == "Branch deleted successfully"
        assert client.get("/api/branches").get_json() == []

    def test_validation_errors_are_distinct(self, client, logged_in):
        branch, _ = self._group(client)
        response = client.post(f"/api/branches/{branch['id']}/groups", json={"name": "U9", "capacity": 0})
        assert response.status_code == 400
        body = response.get_json()
        assert body["kind"] == "validation"
        assert body["field"] == "capacity"

    def test_missing_parent_is_404(self, client, logged_in):
        response = client.post("/api/groups/ghost/students", json={"first_name": "A", "last_name": "B"})
        assert response.status_code == 404
        assert response.get_json()["kind"] == "not_found"

    def test_groups_include_stats(self, client, logged_in):
        branch, group = self._group(client)
        client.post(f"/api/groups/{group['id']}/students", json={"first_name": "Ann", "last_name": "Lee"})
        client.post("/api/trainers", json={"first_name": "Tess", "last_name": "Carter", "groups": [group["id"]]})
        [row] = client.get(f"/api/branches/{branch['id']}/groups").get_json()
        assert row["student_count"] == 1
        assert row["trainer_count"] == 1

    def test_attendance_session(self, client, logged_in):
        _, group = self._group(client)
        student = client.post(
            f"/api/groups/{group['id']}/students", json={"first_name": "Ann", "last_name": "Lee"}
        ).get_json()["data"]
        url = f"/api/groups/{group['id']}/attendance/2024-03-10/18:00"
        response = client.put(url, json={"marks": {student["id"]: True}})
        assert response.get_json()["message"] == "Attendance saved successfully"
        body = client.get(url).get_json()
        assert body["summary"] == {"present_count": 1, "absent_count": 0}
        sessions = client.get(
            f"/api/groups/{group['id']}/attendance?start=2024-03-01&end=2024-03-31"
        ).get_json()
        assert sessions[0]["time_slot"] == "18:00"

    def test_progress_trend(self, client, logged_in):
        _, group = self._group(client)
        student = client.post(
            f"/api/groups/{group['id']}/students", json={"first_name": "Ann", "last_name": "Lee"}
        ).get_json()["data"]
        url = f"/api/students/{student['id']}/progress"
        client.post(url, json={"date": "2024-01-10", "height": 150, "weight": 45})
        assert client.get(f"{url}/trend").get_json() == []
        client.post(url, json={"date": "2024-03-01", "height": 155, "weight": 44})
        rows = {row["metric"]: row for row in client.get(f"{url}/trend").get_json()}
        assert rows["height"]["ratio"] == 1.0
        assert rows["weight"]["max"] == 45


class TestPaymentsApi:
    def test_add_and_history(self, client, logged_in):
        response = client.post(
            "/api/payments",
            json={"amount": 50, "type": "income", "category": "membership", "description": "March"},
        )
        assert response.status_code == 201
        client.post("/api/payments", json={"amount": 20, "type": "expense", "category": "equipment"})
        history = client.get("/api/payments/history?type=income").get_json()
        assert [p["amount"] for p in history] == [50.0]

    def test_string_amount_is_rejected(self, client, logged_in):
        response = client.post("/api/payments", json={"amount": "a lot", "type": "income", "category": "other"})
        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation"

    def test_pending_and_mark_paid(self, client, logged_in):
        payment = client.post(
            "/api/payments",
            json={"amount": 30, "type": "income", "category": "membership", "due_date": "2024-03-01"},
        ).get_json()["data"]
        pending = client.get("/api/payments/pending").get_json()
        assert [p["id"] for p in pending["overdue"]] == [payment["id"]]
        response = client.post(f"/api/payments/{payment['id']}/paid")
        assert response.get_json()["data"]["status"] == "completed"
        assert client.get("/api/payments/pending").get_json()["overdue"] == []

    def test_csv_export(self, client, logged_in):
        client.post("/api/payments", json={"amount": 10, "type": "income", "category": "membership"})
        response = client.get("/api/payments/export")
        assert response.mimetype == "text/csv"
        assert "attachment" in response.headers["Content-Disposition"]
        assert response.get_data(as_text=True).startswith("Date,Type,Category,Amount,Status,Description")

    def test_finance_views(self, client, logged_in):
        client.post("/api/payments", json={"amount": 100, "type": "income", "category": "membership"})
        client.post("/api/payments", json={"amount": 40, "type": "expense", "category": "equipment"})
        overview = client.get("/api/finance/overview").get_json()
        assert {metric["id"] for metric in overview["metrics"]} == {"income", "expenses", "net"}
        expenses = client.get("/api/finance/expenses").get_json()
        assert expenses["total"] == 40
        report = client.get("/api/finance/report/download?range=custom&start_date=2024-03-01&end_date=2024-03-31")
        document = report.get_json()
        assert document["dateRange"] == "2024-03-01 to 2024-03-31"
        assert document["summary"] == {"income": 100, "expenses": 40, "net": 60}

    def test_dashboard(self, client, logged_in):
        client.post("/api/payments", json={"amount": 100, "type": "income", "category": "membership"})
        stats = client.get("/api/dashboard").get_json()
        assert stats["total_income"] == 100
        assert stats["pending_payments"] == 1


class TestMatchesApi:
    def test_schedule_and_auto_complete(self, client, logged_in):
        client.post("/api/matches", json={"date": "2024-03-01", "opponent": "Eagles"})
        client.post("/api/matches", json={"date": "2024-03-20", "opponent": "Hawks"})
        body = client.get("/api/matches").get_json()
        assert [m["status"] for m in body["matches"]] == ["completed", "upcoming"]
        assert body["summary"]["counts"]["completed"] == 1

    @pytest.mark.parametrize("payload", [{"opponent": "Eagles"}, {"date": "2024-13-01", "opponent": "Eagles"}])
    def test_invalid_match(self, client, logged_in, payload):
        assert client.post("/api/matches", json=payload).status_code == 400


def test_unknown_route_is_json(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"
