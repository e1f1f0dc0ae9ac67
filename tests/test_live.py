"""Tests for live views and the club context lifecycle."""

import pytest

from hoopclub.context import ClubContext, Settings
from hoopclub.errors import ValidationError
from hoopclub.live import LiveView, collection
from hoopclub.models import Payment

from conftest import OWNER


class TestLiveView:
    def test_recomputes_on_every_change(self, service):
        updates = []
        with service.watch_payments(on_update=lambda view: updates.append(view.result)) as view:
            assert view.result == []
            service.add_payment(100, "income", "membership")
            service.add_payment(40, "expense", "equipment")
            assert [bucket.to_dict() for bucket in view.result] == [
                {"month": "Mar 2024", "income": 100.0, "expenses": 40.0, "profit": 60.0}
            ]
        assert view.closed
        assert len(updates) == 3

    def test_malformed_snapshot_sets_error(self, service, store):
        path = f"clubs/{OWNER}/payments"
        with service.watch_payments() as view:
            store.set(f"{path}/bad", {"amount": "x", "type": "income", "category": "other"})
            assert view.result is None
            assert isinstance(view.error, ValidationError)
            store.remove(f"{path}/bad")
            assert view.error is None
            assert view.result == []

    def test_custom_aggregate(self, store):
        with LiveView(store, "clubs/o/payments", collection(Payment), len) as view:
            store.append("clubs/o/payments", {"amount": 1, "type": "income", "category": "other"})
            assert view.result == 1
            assert view.deliveries == 2
        assert store.subscription_count == 0

    def test_match_view_writes_back_completion(self, service, store):
        match = service.add_match("2024-02-01", "Eagles")
        with service.watch_matches() as view:
            assert view.result[0].status == "completed"
        assert store.get(f"clubs/{OWNER}/matches/{match.id}/status") == "completed"

    def test_many_past_matches_complete_in_one_write(self, service, store):
        path = f"clubs/{OWNER}/matches"
        for _ in range(400):
            store.append(path, {"date": "2023-01-01", "opponent": "Rivals", "status": "upcoming", "createdAt": 1})
        renders = []
        with service.watch_matches(on_update=lambda view: renders.append(view.deliveries)) as view:
            assert len(view.result) == 400
            assert {match.status for match in view.result} == {"completed"}
        assert len(renders) <= 2
        assert all(entry["status"] == "completed" for entry in store.get(path).values())

    def test_listing_with_an_open_view_does_not_cascade(self, service, store):
        path = f"clubs/{OWNER}/matches"
        for _ in range(3):
            store.append(path, {"date": "2024-03-20", "opponent": "Rivals", "status": "upcoming", "createdAt": 1})
        with service.watch_matches() as view:
            before = view.deliveries
            store.update(path, {f"{key}/date": "2024-01-05" for key in store.get(path)})
            service.list_matches()
            assert view.deliveries - before <= 2
            assert {match.status for match in view.result} == {"completed"}


class TestClubContext:
    def test_close_releases_views(self, context, store):
        service = context.service_for(OWNER)
        context.watch(service.watch_payments())
        context.watch(service.watch_matches())
        assert context.open_views == 2
        context.close()
        assert context.open_views == 0
        assert store.subscription_count == 0

    def test_release_single_view(self, context, store):
        view = context.watch(context.service_for(OWNER).watch_payments())
        context.release(view)
        assert view.closed
        assert store.subscription_count == 0

    def test_settings(self, context):
        assert context.settings == Settings("light", "en")
        assert context.update_settings(language="tr").language == "tr"
        with pytest.raises(ValidationError):
            context.update_settings(theme="neon")
        assert context.settings.theme == "light"

    def test_service_uses_configured_retry(self, context):
        service = context.service_for(OWNER)
        assert service.owner_id == OWNER
        assert service._retry_delay == 0.0

    def test_from_config(self, tmp_path):
        class LocalConfig:
            DATA_FILE = str(tmp_path / "data.json")
            UPLOAD_FOLDER = str(tmp_path / "uploads")
            UPLOAD_URL = "/files"

        with ClubContext.from_config(LocalConfig) as context:
            context.store.set("clubs/o/branches/b", {"name": "North"})
            assert context.blobs.base_url == "/files"
        assert (tmp_path / "data.json").exists()
