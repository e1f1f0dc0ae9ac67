"""Tests for the identity provider, blob store and exports."""

import json
from datetime import date

import pytest

from hoopclub import exports
from hoopclub.blobs import LocalBlobStore, upload_with_retry
from hoopclub.errors import AuthenticationError, ExternalCollaboratorError, ValidationError
from hoopclub.identity import IdentityProvider
from hoopclub.translations import message, success

from conftest import make_payment


class TestIdentityProvider:
    def test_register_and_sign_in(self, store):
        identity = IdentityProvider(store)
        uid = identity.register("Coach@Example.com", "hunter22")
        assert "passwordHash" in store.get(f"users/{uid}")
        assert store.get(f"users/{uid}/passwordHash") != "hunter22"
        session = identity.sign_in("coach@example.com", "hunter22")
        assert session.uid == uid
        assert identity.current_session == session

    def test_bad_credentials(self, store):
        identity = IdentityProvider(store)
        identity.register("coach@example.com", "hunter22")
        with pytest.raises(AuthenticationError):
            identity.sign_in("coach@example.com", "wrong")
        with pytest.raises(AuthenticationError):
            identity.sign_in("nobody@example.com", "hunter22")

    @pytest.mark.parametrize("email,password", [("not-an-email", "hunter22"), ("coach@example.com", "123")])
    def test_register_validation(self, store, email, password):
        with pytest.raises(ValidationError):
            IdentityProvider(store).register(email, password)

    def test_duplicate_account(self, store):
        identity = IdentityProvider(store)
        identity.register("coach@example.com", "hunter22")
        with pytest.raises(ValidationError):
            identity.register("COACH@example.com", "hunter22")

    def test_session_listeners(self, store):
        identity = IdentityProvider(store)
        identity.register("coach@example.com", "hunter22")
        seen = []
        unsubscribe = identity.on_session_change(lambda session: seen.append(session and session.email))
        identity.sign_in("coach@example.com", "hunter22")
        identity.sign_out()
        unsubscribe()
        identity.sign_in("coach@example.com", "hunter22")
        assert seen == [None, "coach@example.com", None]

    def test_authenticate_and_lookup_leave_current_session_alone(self, store):
        identity = IdentityProvider(store)
        uid = identity.register("coach@example.com", "hunter22")
        seen = []
        identity.on_session_change(seen.append)
        assert identity.authenticate("coach@example.com", "hunter22").uid == uid
        assert identity.lookup(uid).email == "coach@example.com"
        assert identity.current_session is None
        assert seen == [None]
        with pytest.raises(AuthenticationError):
            identity.lookup("ghost")


class TestBlobs:
    def test_upload_and_url(self, tmp_path):
        blobs = LocalBlobStore(tmp_path, "/uploads/")
        blobs.upload("clubs/o/logo.png", b"img")
        assert blobs.get_url("clubs/o/logo.png") == "/uploads/clubs/o/logo.png"
        assert blobs.read("clubs/o/logo.png") == b"img"

    def test_missing_blob(self, tmp_path):
        with pytest.raises(ExternalCollaboratorError):
            LocalBlobStore(tmp_path).get_url("nothing.png")

    def test_retry_recovers(self, tmp_path):
        class FlakyBlobStore(LocalBlobStore):
            failures = 2

            def upload(self, path, data):
                if self.failures:
                    self.failures -= 1
                    raise ExternalCollaboratorError("timeout")
                super().upload(path, data)

        sleeps = []
        url = upload_with_retry(FlakyBlobStore(tmp_path), "logo.png", b"x", sleep=sleeps.append)
        assert url == "/uploads/logo.png"
        assert sleeps == [1.0, 1.0]

    def test_retry_gives_up(self, tmp_path):
        class BrokenBlobStore(LocalBlobStore):
            def upload(self, path, data):
                raise ExternalCollaboratorError("denied")

        sleeps = []
        with pytest.raises(ExternalCollaboratorError, match="denied"):
            upload_with_retry(BrokenBlobStore(tmp_path), "logo.png", b"x", attempts=3, sleep=sleeps.append)
        assert len(sleeps) == 2


class TestExports:
    def test_csv_rows(self):
        payments = [
            make_payment(12.5, "expense", "equipment", status="pending", description="Balls, nets"),
            make_payment(100, "income", "membership", description=""),
        ]
        lines = exports.payments_csv(payments).splitlines()
        assert lines[0] == exports.CSV_HEADER
        assert lines[1].endswith(',12.5,pending,"Balls, nets"')
        assert lines[2].endswith(',100,completed,""')

    def test_empty_csv_has_header(self):
        assert exports.payments_csv([]) == exports.CSV_HEADER

    def test_date_range_label(self):
        assert exports.date_range_label("custom", date(2024, 1, 1), date(2024, 1, 31)) == "2024-01-01 to 2024-01-31"
        assert exports.date_range_label("custom", date(2024, 1, 1), None) == "custom"
        assert exports.date_range_label("lastMonth") == "lastMonth"

    def test_report_json_shape(self):
        report = {
            "totals": {"income": 10.0, "expenses": 4.0, "net": 6.0},
            "category_breakdown": {"membership": {"income": 10.0, "expenses": 0.0}},
            "monthly_trend": [],
            "date_range": "all",
        }
        document = json.loads(exports.report_json(report))
        assert set(document) == {"title", "dateRange", "summary", "categoryBreakdown", "monthlyTrend"}
        assert document["summary"]["net"] == 6.0


class TestTranslations:
    def test_success_messages(self):
        assert success("en", "branch", "add") == "Branch added successfully"
        assert success("tr", "payment", "delete") == "Ödeme başarıyla silindi"
        assert success("xx", "group", "update") == "Group updated successfully"

    def test_messages(self):
        assert message("en", "setup") == "Club setup completed!"
        assert message("tr", "unknown") == "unknown"
        assert message("en", "export") == "export"
