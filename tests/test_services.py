"""Tests for the tenant-scoped ClubService facade."""

import json
from datetime import date

import pytest

from hoopclub.blobs import LocalBlobStore
from hoopclub.errors import ExternalCollaboratorError, NotFoundError, ValidationError
from hoopclub.services import ClubService

from conftest import OWNER


class FailingBlobStore(LocalBlobStore):
    def __init__(self, root):
        super().__init__(root)
        self.attempts = 0

    def upload(self, path, data):
        self.attempts += 1
        raise ExternalCollaboratorError("quota exceeded")


class TestClubSetup:
    def test_setup_creates_club_and_user_mapping(self, service, store):
        club = service.setup_club("Hoopers", b"\x89PNG", "crest.png")
        assert club.logo_url == f"/uploads/clubs/{OWNER}/logo.png"
        assert store.get(f"userClubs/{OWNER}") == OWNER
        assert store.get(f"clubs/{OWNER}/clubName") == "Hoopers"
        assert service.get_club().club_name == "Hoopers"

    def test_second_setup_is_refused(self, service):
        service.setup_club("Hoopers", b"logo", "logo.png")
        with pytest.raises(ValidationError):
            service.setup_club("Again", b"logo", "logo.png")

    def test_requires_name_and_logo(self, service):
        with pytest.raises(ValidationError):
            service.setup_club("  ", b"logo")
        with pytest.raises(ValidationError):
            service.setup_club("Hoopers", b"")

    def test_upload_failure_is_retried_then_reported(self, store, clock, tmp_path):
        blobs = FailingBlobStore(tmp_path)
        service = ClubService(store, OWNER, blobs=blobs, clock=clock, retry_attempts=3, retry_delay=0.0)
        with pytest.raises(ExternalCollaboratorError):
            service.setup_club("Hoopers", b"logo")
        assert blobs.attempts == 3
        assert not service.has_club()

    def test_missing_club(self, service):
        assert service.get_club() is None


class TestRoster:
    def test_group_requires_existing_branch(self, service):
        with pytest.raises(NotFoundError):
            service.add_group("nope", "U10", 10)

    @pytest.mark.parametrize("capacity", [0, -3, "many", 2.5])
    def test_group_capacity_is_validated(self, service, capacity):
        branch = service.add_branch("North")
        with pytest.raises(ValidationError):
            service.add_group(branch.id, "U10", capacity)

    def test_empty_branch_has_no_groups(self, service):
        branch = service.add_branch("North")
        assert service.list_groups(branch.id) == []

    def test_groups_are_stored_under_their_branch(self, service, store, roster):
        group = roster["group"]
        assert store.get(f"clubs/{OWNER}/branches/{roster['branch'].id}/groups/{group.id}/capacity") == 12
        assert service.find_group(group.id).name == "U14"

    def test_group_overview_counts(self, service, roster):
        [(group, stats)] = service.group_overview(roster["branch"].id)
        assert group.id == roster["group"].id
        assert stats == {"student_count": 2, "trainer_count": 1}

    def test_student_requires_existing_group(self, service):
        with pytest.raises(NotFoundError):
            service.add_student("missing", "Ann", "Lee")

    def test_update_and_remove_student(self, service, roster):
        group_id = roster["group"].id
        updated = service.update_student(group_id, roster["bruno"].id, parent_phone="555-0101")
        assert updated.parent_phone == "555-0101"
        service.remove_student(group_id, roster["bruno"].id)
        assert [s.id for s in service.list_students(group_id)] == [roster["alice"].id]
        with pytest.raises(NotFoundError):
            service.remove_student(group_id, roster["bruno"].id)

    def test_trainer_groups(self, service, store, roster):
        trainer = roster["trainer"]
        assert trainer.groups == {roster["group"].id}
        assert [t.id for t in service.trainers_for_group(roster["group"].id)] == [trainer.id]
        with pytest.raises(NotFoundError):
            service.update_trainer(trainer.id, groups=["ghost"])
        cleared = service.update_trainer(trainer.id, groups=[])
        assert cleared.groups == set()
        assert "groups" not in store.get(f"clubs/{OWNER}/trainers/{trainer.id}")

    def test_removing_branch_takes_its_groups(self, service, roster):
        service.remove_branch(roster["branch"].id)
        assert service.list_branches() == []
        with pytest.raises(NotFoundError):
            service.find_group(roster["group"].id)

    def test_tenants_are_isolated(self, service, store, clock, roster):
        other = ClubService(store, "owner-2", clock=clock)
        assert other.list_branches() == []
        assert other.list_trainers() == []


class TestAttendance:
    def test_record_session(self, service, store, roster):
        group_id = roster["group"].id
        entries = service.record_attendance(group_id, date(2024, 3, 10), "18:00", {roster["alice"].id: True})
        assert len(entries) == 2
        stored = store.get(f"clubs/{OWNER}/attendance/{group_id}/20240310/18_00")
        assert isinstance(stored, list)
        summary = service.attendance_summary(group_id, "2024-03-10", "18:00")
        assert summary == {"present_count": 1, "absent_count": 1}

    def test_resave_replaces_session(self, service, roster):
        group_id = roster["group"].id
        service.record_attendance(group_id, "2024-03-10", "18:00", {roster["alice"].id: True})
        service.record_attendance(group_id, "2024-03-10", "18:00", {})
        assert service.attendance_summary(group_id, "2024-03-10", "18:00")["present_count"] == 0

    def test_bad_time_slot(self, service, roster):
        with pytest.raises(ValidationError):
            service.record_attendance(roster["group"].id, "2024-03-10", "6pm", {})

    def test_unknown_student(self, service, roster):
        with pytest.raises(NotFoundError):
            service.record_attendance(roster["group"].id, "2024-03-10", "18:00", {"ghost": True})

    def test_student_name_is_not_rewritten(self, service, roster):
        group_id = roster["group"].id
        service.record_attendance(group_id, "2024-03-10", "18:00", {roster["alice"].id: True})
        service.update_student(group_id, roster["alice"].id, last_name="Stone")
        names = {e.student_name for e in service.get_attendance(group_id, "2024-03-10", "18:00")}
        assert "Alice Moss" in names

    def test_trainer_removal_keeps_history(self, service, roster):
        group_id = roster["group"].id
        service.record_attendance(group_id, "2024-03-10", "18:00", {roster["alice"].id: True})
        service.remove_trainer(roster["trainer"].id)
        assert len(service.get_attendance(group_id, "2024-03-10", "18:00")) == 2

    def test_records_between_dates(self, service, roster):
        group_id = roster["group"].id
        service.record_attendance(group_id, "2024-03-01", "18:00", {})
        service.record_attendance(group_id, "2024-03-08", "09:30", {roster["bruno"].id: True})
        service.record_attendance(group_id, "2024-04-01", "18:00", {})
        sessions = service.attendance_records(group_id, "2024-03-01", "2024-03-31")
        assert [(s.date, s.time_slot) for s in sessions] == [("20240308", "09:30"), ("20240301", "18:00")]
        assert service.attendance_records(group_id, None, "2024-03-31") == []


class TestProgress:
    def test_add_and_update(self, service, roster):
        student_id = roster["alice"].id
        record = service.add_progress(student_id, height=150, weight="41,5", academic_score=88)
        assert record.date == date(2024, 3, 10)
        assert record.weight == 41.5
        updated = service.update_progress(student_id, record.id, notes="Strong week")
        assert updated.notes == "Strong week"
        assert updated.academic_score == 88

    def test_academic_score_range(self, service, roster):
        with pytest.raises(ValidationError):
            service.add_progress(roster["alice"].id, academic_score=101)

    def test_unknown_student(self, service):
        with pytest.raises(NotFoundError):
            service.add_progress("ghost", height=100)


class TestMatches:
    def test_past_matches_are_completed_on_read(self, service, store):
        past = service.add_match("2024-03-01", "Eagles")
        future = service.add_match("2024-03-20", "Hawks", time="18:00")
        matches = service.list_matches()
        assert [m.id for m in matches] == [past.id, future.id]
        assert matches[0].status == "completed"
        assert store.get(f"clubs/{OWNER}/matches/{past.id}/status") == "completed"
        assert store.get(f"clubs/{OWNER}/matches/{future.id}/status") == "upcoming"

    def test_in_progress_is_left_alone(self, service):
        match = service.add_match("2024-03-01", "Eagles", status="in_progress")
        assert service.list_matches()[0].status == "in_progress"
        assert service.get_match(match.id).status == "in_progress"

    def test_score_and_player_stats(self, service, roster):
        match = service.add_match("2024-03-20", "Hawks")
        service.record_score(match.id, 72, 65)
        updated = service.set_player_stats(match.id, roster["alice"].id, points=18, rebounds=7)
        assert updated.status == "completed"
        assert updated.score == {"home": 72, "away": 65}
        assert updated.players[roster["alice"].id] == {"points": 18.0, "rebounds": 7.0}
        assert service.match_summary()["record"]["wins"] == 1

    def test_invalid_status(self, service):
        with pytest.raises(ValidationError):
            service.add_match("2024-03-20", "Hawks", status="postponed")


class TestPayments:
    def test_amount_validation(self, service):
        with pytest.raises(ValidationError):
            service.add_payment(0, "income", "membership")
        with pytest.raises(ValidationError):
            service.add_payment("ten", "income", "membership")
        assert service.add_payment("12,5", "income", "membership").amount == 12.5

    def test_category_validation(self, service):
        with pytest.raises(ValidationError):
            service.add_payment(10, "income", "snacks")

    def test_linked_student_must_exist(self, service):
        with pytest.raises(NotFoundError):
            service.add_payment(10, "income", "membership", student_id="ghost")

    def test_mark_paid(self, service):
        payment = service.add_payment(30, "income", "membership", due_date="2024-03-01")
        assert payment.paid_at is None
        paid = service.mark_paid(payment.id)
        assert paid.status == "completed"
        assert paid.paid_at is not None

    def test_pending_and_overview(self, service):
        overdue = service.add_payment(10, "income", "membership", due_date="2024-03-01")
        upcoming = service.add_payment(20, "income", "membership", due_date="2024-03-20")
        service.add_payment(5, "expense", "equipment", status="completed")
        late, soon = service.pending_payments()
        assert [p.id for p in late] == [overdue.id]
        assert [p.id for p in soon] == [upcoming.id]
        overview = service.payment_overview()
        assert overview["stats"]["pending_payments"] == 2
        assert [p.id for p in overview["overdue"]] == [overdue.id]

    def test_clear_due_date(self, service, store):
        payment = service.add_payment(10, "income", "membership", due_date="2024-03-01")
        service.update_payment(payment.id, due_date=None)
        assert "dueDate" not in store.get(f"clubs/{OWNER}/payments/{payment.id}")

    def test_history_filters_by_range_and_type(self, service, clock):
        clock.set(2024, 2, 14, 10, 0)
        february = service.add_payment(10, "income", "membership", description="Feb dues")
        clock.set(2024, 3, 10, 12, 0)
        service.add_payment(20, "expense", "equipment", description="Balls")
        history = service.payment_history(date_range="lastMonth")
        assert [p.id for p in history] == [february.id]
        assert [p.amount for p in service.payment_history(payment_type="expense", search="ball")] == [20]

    def test_csv_export(self, service):
        service.add_payment(10, "income", "membership", status="completed", description='Coach "Ace" fee')
        lines = service.export_payments_csv().splitlines()
        assert lines[0] == "Date,Type,Category,Amount,Status,Description"
        assert lines[1] == '2024-03-10,income,membership,10,completed,"Coach ""Ace"" fee"'

    def test_malformed_record_is_reported(self, service, store):
        store.set(f"clubs/{OWNER}/payments/bad", {"amount": "lots", "type": "income", "category": "other"})
        with pytest.raises(ValidationError):
            service.list_payments()


class TestFinance:
    def test_overview_metrics(self, service, clock):
        clock.set(2024, 2, 5, 9, 0)
        service.add_payment(100, "income", "membership", status="completed")
        clock.set(2024, 3, 10, 12, 0)
        service.add_payment(150, "income", "membership", status="completed")
        overview = service.finance_overview()
        income = next(m for m in overview["metrics"] if m["id"] == "income")
        assert income["change"] == pytest.approx(50.0)
        assert [row["month"] for row in overview["chart"]] == ["Feb 2024", "Mar 2024"]

    def test_expense_overview(self, service):
        service.add_payment(40, "expense", "equipment")
        service.add_payment(60, "expense", "facility")
        service.add_payment(500, "income", "membership")
        overview = service.expense_overview(category="equipment")
        assert [p.amount for p in overview["expenses"]] == [40]
        assert {c["name"] for c in overview["categories"]} == {"equipment", "facility"}
        assert overview["total"] == 40

    def test_custom_report(self, service):
        service.add_payment(100, "income", "tournament")
        service.add_payment(30, "expense", "tournament")
        report = service.financial_report(date_range="custom", start_date="2024-03-01", end_date="2024-03-31")
        assert report["totals"] == {"income": 100, "expenses": 30, "net": 70}
        assert report["date_range"] == "2024-03-01 to 2024-03-31"
        document = json.loads(service.financial_report_json(date_range="thisMonth"))
        assert document["title"] == "Financial Report"
        assert document["dateRange"] == "thisMonth"
        assert document["summary"] == {"income": 100, "expenses": 30, "net": 70}
        assert document["categoryBreakdown"] == {"tournament": {"income": 100, "expenses": 30}}


class TestDashboard:
    def test_dashboard(self, service, roster):
        service.add_payment(25, "income", "membership")
        stats = service.dashboard()
        assert stats["total_students"] == 2
        assert stats["total_groups"] == 1
        assert stats["total_trainers"] == 1
        assert stats["pending_payments"] == 1
        assert stats["monthly_stats"] == [{"month": "Mar 2024", "income": 25.0, "expenses": 0.0, "profit": 25.0}]
