"""Business services for one club (tenant) of the dashboard."""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from . import aggregation, exports, models, storage
from .blobs import LocalBlobStore, upload_with_retry
from .errors import ExternalCollaboratorError, NotFoundError, ValidationError
from .live import LiveView, collection
from .storage import RecordStore, join_path

logger = logging.getLogger(__name__)

UNSET = object()
TIME_SLOT_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

T = TypeVar("T")


class ClubService:
    """Facade that exposes CRUD helpers and derived views for one club."""

    def __init__(
        self,
        store: RecordStore,
        owner_id: str,
        *,
        blobs: Optional[LocalBlobStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        if not owner_id:
            raise ValueError("A club service needs an owner id")
        self.store = store
        self.owner_id = owner_id
        self.blobs = blobs
        self._clock = clock or datetime.now
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

    # Generic helpers -------------------------------------------------
    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self.now().date()

    def _now_ms(self) -> int:
        return round(self.now().timestamp() * 1000)

    @property
    def _tz(self):
        return self.now().tzinfo

    def _path(self, *parts: Any) -> str:
        return join_path("clubs", self.owner_id, *parts)

    def _create_entity(self, path: str, model_cls: Type[T], entity: Any) -> T:
        if not getattr(entity, "created_at", 0):
            entity.created_at = self._now_ms()
        payload = storage.encode_record(entity)
        storage.decode_record(model_cls, payload)
        key = self.store.append(path, payload)
        logger.info("Created %s %s at %s", model_cls.__name__, key, path)
        return storage.decode_record(model_cls, payload, key)

    def _list_entities(self, path: str, model_cls: Type[T]) -> List[T]:
        return storage.decode_collection(model_cls, self.store.get(path))

    def _find_entity(self, path: str, key: str, model_cls: Type[T]) -> Optional[T]:
        payload = self.store.get(join_path(path, key))
        if payload is None:
            return None
        return storage.decode_record(model_cls, payload, key)

    def _require_entity(self, path: str, key: str, model_cls: Type[T]) -> T:
        entity = self._find_entity(path, key, model_cls)
        if entity is None:
            raise NotFoundError(f"{model_cls.__name__} with id {key} not found")
        return entity

    def _update_entity(self, path: str, key: str, model_cls: Type[T], updates: Dict[str, Any]) -> T:
        record_path = join_path(path, key)
        current = self.store.get(record_path)
        if current is None:
            raise NotFoundError(f"{model_cls.__name__} with id {key} not found")
        partial = storage.encode_fields(updates)
        merged = dict(current)
        for name, value in partial.items():
            if value is None:
                merged.pop(name, None)
            else:
                merged[name] = value
        entity = storage.decode_record(model_cls, merged, key)
        if partial:
            self.store.update(record_path, partial)
            logger.info("Updated %s %s (%s)", model_cls.__name__, key, ", ".join(sorted(partial)))
        return entity

    def _remove_entity(self, path: str, key: str, label: str) -> None:
        record_path = join_path(path, key)
        if self.store.get(record_path) is None:
            raise NotFoundError(f"{label} with id {key} not found")
        self.store.remove(record_path)
        logger.info("Removed %s %s", label, key)

    def _clean_text(self, value: Any, field: str, *, required: bool = False) -> str:
        text = value.strip() if isinstance(value, str) else ("" if value is None else str(value).strip())
        if required and not text:
            raise ValidationError(f"{field} is required", field=field)
        return text

    def _coerce_amount(self, value: Any, field: str = "amount") -> float:
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be a number", field=field)
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            text = str(value).strip().replace(",", ".") if value is not None else ""
            try:
                number = float(text)
            except ValueError as exc:
                raise ValidationError(f"{field} must be a number (got {value!r})", field=field) from exc
        if number != number or number in (float("inf"), float("-inf")):
            raise ValidationError(f"{field} must be a finite number", field=field)
        return number

    def _coerce_int(self, value: Any, field: str) -> int:
        number = self._coerce_amount(value, field)
        if not number.is_integer():
            raise ValidationError(f"{field} must be a whole number", field=field)
        return int(number)

    def _coerce_date(self, value: Any, field: str) -> Optional[date]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return storage.parse_date(str(value))
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", field=field) from exc

    # Club ------------------------------------------------------------
    def has_club(self) -> bool:
        return self.store.get(join_path("userClubs", self.owner_id)) is not None

    def get_club(self) -> Optional[models.Club]:
        if not self.has_club():
            return None
        payload = self.store.get(self._path())
        if not payload:
            return None
        club = storage.decode_record(models.Club, payload)
        logo_path = payload.get("logoPath")
        if self.blobs is not None and logo_path:
            try:
                club.logo_url = self.blobs.get_url(logo_path)
            except ExternalCollaboratorError as exc:
                logger.error("Error fetching logo for club %s: %s", self.owner_id, exc)
        return club

    def setup_club(self, club_name: str, logo: bytes, filename: str = "logo.png") -> models.Club:
        """Onboard the tenant: upload the logo, then create the club records."""
        if self.has_club():
            raise ValidationError("You already have a registered club", field="club")
        name = self._clean_text(club_name, "club_name", required=True)
        if not logo:
            raise ValidationError("Please upload a club logo", field="logo")
        if self.blobs is None:
            raise ExternalCollaboratorError("No blob store configured for logo uploads")
        extension = PurePosixPath(filename).suffix.lower() or ".png"
        logo_path = join_path("clubs", self.owner_id, f"logo{extension}")
        logo_url = upload_with_retry(
            self.blobs,
            logo_path,
            logo,
            attempts=self._retry_attempts,
            delay=self._retry_delay,
        )
        club = models.Club(club_name=name, user_id=self.owner_id, logo_url=logo_url, created_at=self._now_ms())
        payload = storage.encode_record(club)
        payload["logoPath"] = logo_path
        self.store.update(self._path(), payload)
        self.store.set(join_path("userClubs", self.owner_id), self.owner_id)
        logger.info("Club %r set up for owner %s", name, self.owner_id)
        return club

    # Branches --------------------------------------------------------
    def add_branch(self, name: str, address: str = "") -> models.Branch:
        branch = models.Branch(
            id="",
            name=self._clean_text(name, "name", required=True),
            address=self._clean_text(address, "address"),
        )
        return self._create_entity(self._path("branches"), models.Branch, branch)

    def list_branches(self) -> List[models.Branch]:
        return aggregation.sort_by_created_desc(self._list_entities(self._path("branches"), models.Branch))

    def get_branch(self, branch_id: str) -> models.Branch:
        return self._require_entity(self._path("branches"), branch_id, models.Branch)

    def update_branch(self, branch_id: str, *, name: Optional[str] = None, address: Optional[str] = None) -> models.Branch:
        updates: Dict[str, Any] = {}
        if name is not None:
            updates["name"] = self._clean_text(name, "name", required=True)
        if address is not None:
            updates["address"] = self._clean_text(address, "address")
        return self._update_entity(self._path("branches"), branch_id, models.Branch, updates)

    def remove_branch(self, branch_id: str) -> None:
        # Groups live below the branch and go with it; rosters and history stay.
        self._remove_entity(self._path("branches"), branch_id, "Branch")

    # Groups ----------------------------------------------------------
    def _groups_path(self, branch_id: str) -> str:
        return self._path("branches", branch_id, "groups")

    def add_group(
        self,
        branch_id: str,
        name: str,
        capacity: Any,
        description: str = "",
        age_group: str = "",
        schedule: str = "",
    ) -> models.Group:
        self.get_branch(branch_id)
        group = models.Group(
            id="",
            name=self._clean_text(name, "name", required=True),
            capacity=self._coerce_int(capacity, "capacity"),
            branch_id=branch_id,
            description=self._clean_text(description, "description"),
            age_group=self._clean_text(age_group, "age_group"),
            schedule=self._clean_text(schedule, "schedule"),
        )
        return self._create_entity(self._groups_path(branch_id), models.Group, group)

    def list_groups(self, branch_id: str) -> List[models.Group]:
        self.get_branch(branch_id)
        return aggregation.sort_by_created_desc(self._list_entities(self._groups_path(branch_id), models.Group))

    def groups_by_branch(self) -> Dict[str, List[models.Group]]:
        branches = self.store.get(self._path("branches")) or {}
        return {
            branch_id: storage.decode_collection(models.Group, (payload or {}).get("groups"))
            for branch_id, payload in branches.items()
        }

    def find_group(self, group_id: str) -> models.Group:
        for groups in self.groups_by_branch().values():
            for group in groups:
                if group.id == group_id:
                    return group
        raise NotFoundError(f"Group with id {group_id} not found")

    def update_group(
        self,
        branch_id: str,
        group_id: str,
        *,
        name: Optional[str] = None,
        capacity: Any = None,
        description: Optional[str] = None,
        age_group: Optional[str] = None,
        schedule: Optional[str] = None,
    ) -> models.Group:
        self.get_branch(branch_id)
        updates: Dict[str, Any] = {}
        if name is not None:
            updates["name"] = self._clean_text(name, "name", required=True)
        if capacity is not None:
            updates["capacity"] = self._coerce_int(capacity, "capacity")
        if description is not None:
            updates["description"] = self._clean_text(description, "description")
        if age_group is not None:
            updates["age_group"] = self._clean_text(age_group, "age_group")
        if schedule is not None:
            updates["schedule"] = self._clean_text(schedule, "schedule")
        return self._update_entity(self._groups_path(branch_id), group_id, models.Group, updates)

    def remove_group(self, branch_id: str, group_id: str) -> None:
        self._remove_entity(self._groups_path(branch_id), group_id, "Group")

    def group_overview(self, branch_id: str) -> List[Tuple[models.Group, Dict[str, int]]]:
        groups = self.list_groups(branch_id)
        stats = aggregation.group_stats(
            [group.id for group in groups], self.students_by_group(), self.list_trainers()
        )
        return [(group, stats[group.id]) for group in groups]

    # Students --------------------------------------------------------
    def _students_path(self, group_id: str) -> str:
        return self._path("students", group_id)

    def add_student(
        self,
        group_id: str,
        first_name: str,
        last_name: str,
        date_of_birth: Any = None,
        parent_name: str = "",
        parent_phone: str = "",
        email: str = "",
    ) -> models.Student:
        self.find_group(group_id)
        student = models.Student(
            id="",
            first_name=self._clean_text(first_name, "first_name", required=True),
            last_name=self._clean_text(last_name, "last_name", required=True),
            group_id=group_id,
            date_of_birth=self._coerce_date(date_of_birth, "date_of_birth"),
            parent_name=self._clean_text(parent_name, "parent_name"),
            parent_phone=self._clean_text(parent_phone, "parent_phone"),
            email=self._clean_text(email, "email"),
        )
        return self._create_entity(self._students_path(group_id), models.Student, student)

    def list_students(self, group_id: str) -> List[models.Student]:
        self.find_group(group_id)
        return aggregation.sort_by_created_desc(self._list_entities(self._students_path(group_id), models.Student))

    def students_by_group(self) -> Dict[str, List[models.Student]]:
        tree = self.store.get(self._path("students")) or {}
        return {group_id: storage.decode_collection(models.Student, roster) for group_id, roster in tree.items()}

    def find_student(self, student_id: str) -> models.Student:
        for students in self.students_by_group().values():
            for student in students:
                if student.id == student_id:
                    return student
        raise NotFoundError(f"Student with id {student_id} not found")

    def update_student(
        self,
        group_id: str,
        student_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        date_of_birth: Any = UNSET,
        parent_name: Optional[str] = None,
        parent_phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> models.Student:
        updates: Dict[str, Any] = {}
        if first_name is not None:
            updates["first_name"] = self._clean_text(first_name, "first_name", required=True)
        if last_name is not None:
            updates["last_name"] = self._clean_text(last_name, "last_name", required=True)
        if date_of_birth is not UNSET:
            updates["date_of_birth"] = self._coerce_date(date_of_birth, "date_of_birth")
        if parent_name is not None:
            updates["parent_name"] = self._clean_text(parent_name, "parent_name")
        if parent_phone is not None:
            updates["parent_phone"] = self._clean_text(parent_phone, "parent_phone")
        if email is not None:
            updates["email"] = self._clean_text(email, "email")
        return self._update_entity(self._students_path(group_id), student_id, models.Student, updates)

    def remove_student(self, group_id: str, student_id: str) -> None:
        self._remove_entity(self._students_path(group_id), student_id, "Student")

    # Trainers --------------------------------------------------------
    def _normalize_group_selection(self, group_ids: Iterable[str]) -> set:
        known = {group.id for groups in self.groups_by_branch().values() for group in groups}
        selection = set()
        for group_id in group_ids:
            if group_id not in known:
                raise NotFoundError(f"Group with id {group_id} not found")
            selection.add(group_id)
        return selection

    def add_trainer(
        self,
        first_name: str,
        last_name: str,
        email: str = "",
        phone: str = "",
        specialization: str = "",
        groups: Iterable[str] = (),
    ) -> models.Trainer:
        trainer = models.Trainer(
            id="",
            first_name=self._clean_text(first_name, "first_name", required=True),
            last_name=self._clean_text(last_name, "last_name", required=True),
            email=self._clean_text(email, "email"),
            phone=self._clean_text(phone, "phone"),
            specialization=self._clean_text(specialization, "specialization"),
            groups=self._normalize_group_selection(groups),
        )
        return self._create_entity(self._path("trainers"), models.Trainer, trainer)

    def list_trainers(self) -> List[models.Trainer]:
        return aggregation.sort_by_created_desc(self._list_entities(self._path("trainers"), models.Trainer))

    def trainers_for_group(self, group_id: str) -> List[models.Trainer]:
        return [trainer for trainer in self.list_trainers() if group_id in trainer.groups]

    def update_trainer(
        self,
        trainer_id: str,
        *,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        specialization: Optional[str] = None,
        groups: Optional[Iterable[str]] = None,
    ) -> models.Trainer:
        # Reassigning groups never touches attendance or progress history.
        updates: Dict[str, Any] = {}
        if first_name is not None:
            updates["first_name"] = self._clean_text(first_name, "first_name", required=True)
        if last_name is not None:
            updates["last_name"] = self._clean_text(last_name, "last_name", required=True)
        if email is not None:
            updates["email"] = self._clean_text(email, "email")
        if phone is not None:
            updates["phone"] = self._clean_text(phone, "phone")
        if specialization is not None:
            updates["specialization"] = self._clean_text(specialization, "specialization")
        if groups is not None:
            updates["groups"] = self._normalize_group_selection(groups)
        return self._update_entity(self._path("trainers"), trainer_id, models.Trainer, updates)

    def remove_trainer(self, trainer_id: str) -> None:
        self._remove_entity(self._path("trainers"), trainer_id, "Trainer")

    # Attendance ------------------------------------------------------
    def _attendance_path(self, group_id: str, day: date, time_slot: str) -> str:
        if not TIME_SLOT_PATTERN.match(time_slot or ""):
            raise ValidationError("time_slot must use the HH:MM format", field="time_slot")
        return self._path("attendance", group_id, day.strftime("%Y%m%d"), time_slot.replace(":", "_"))

    def record_attendance(
        self, group_id: str, day: Any, time_slot: str, marks: Mapping[str, bool]
    ) -> List[models.AttendanceEntry]:
        """Save one session; students without a mark are stored as absent."""
        session_day = self._coerce_date(day, "date")
        if session_day is None:
            raise ValidationError("date is required", field="date")
        path = self._attendance_path(group_id, session_day, time_slot)
        roster = self.list_students(group_id)
        known = {student.id for student in roster}
        unknown = sorted(set(marks) - known)
        if unknown:
            raise NotFoundError(f"Students not in group {group_id}: {', '.join(unknown)}")
        timestamp = self._now_ms()
        entries = [
            models.AttendanceEntry(
                student_id=student.id,
                student_name=student.full_name,
                present=bool(marks.get(student.id, False)),
                timestamp=timestamp,
            )
            for student in roster
        ]
        self.store.set(path, [storage.encode_record(entry) for entry in entries])
        logger.info("Saved attendance for group %s on %s %s", group_id, session_day, time_slot)
        return entries

    def get_attendance(self, group_id: str, day: Any, time_slot: str) -> List[models.AttendanceEntry]:
        session_day = self._coerce_date(day, "date")
        if session_day is None:
            raise ValidationError("date is required", field="date")
        path = self._attendance_path(group_id, session_day, time_slot)
        return storage.decode_collection(models.AttendanceEntry, self.store.get(path))

    def attendance_summary(self, group_id: str, day: Any, time_slot: str) -> Dict[str, int]:
        return aggregation.attendance_summary(self.get_attendance(group_id, day, time_slot))

    def attendance_records(
        self,
        group_id: str,
        start: Any,
        end: Any,
        *,
        sort_key: str = "date",
        direction: str = "desc",
    ) -> List[models.AttendanceSession]:
        self.find_group(group_id)
        start_day = self._coerce_date(start, "start_date")
        end_day = self._coerce_date(end, "end_date")
        if start_day is None or end_day is None:
            return []
        tree = self.store.get(self._path("attendance", group_id)) or {}
        sessions = {
            day: {slot: storage.decode_collection(models.AttendanceEntry, entries) for slot, entries in slots.items()}
            for day, slots in tree.items()
        }
        return aggregation.attendance_sessions(
            sessions,
            start_day.strftime("%Y%m%d"),
            end_day.strftime("%Y%m%d"),
            sort_key=sort_key,
            direction=direction,
        )

    # Progress --------------------------------------------------------
    def _progress_fields(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for name in ("height", "weight", "vertical_jump", "speed_test"):
            if values.get(name) is not None:
                fields[name] = self._coerce_amount(values[name], name)
        if values.get("academic_score") is not None:
            fields["academic_score"] = self._coerce_int(values["academic_score"], "academic_score")
        if values.get("notes") is not None:
            fields["notes"] = self._clean_text(values["notes"], "notes")
        if values.get("date") is not None:
            fields["date"] = self._coerce_date(values["date"], "date")
        return fields

    def add_progress(self, student_id: str, **values: Any) -> models.ProgressRecord:
        self.find_student(student_id)
        fields = self._progress_fields(values)
        fields.setdefault("date", self.today())
        record = models.ProgressRecord(id="", **fields)
        return self._create_entity(self._path("progress", student_id), models.ProgressRecord, record)

    def list_progress(self, student_id: str) -> List[models.ProgressRecord]:
        self.find_student(student_id)
        return aggregation.sort_by_created_desc(
            self._list_entities(self._path("progress", student_id), models.ProgressRecord)
        )

    def update_progress(self, student_id: str, record_id: str, **values: Any) -> models.ProgressRecord:
        return self._update_entity(
            self._path("progress", student_id), record_id, models.ProgressRecord, self._progress_fields(values)
        )

    def progress_trend(self, student_id: str) -> List[Dict[str, Any]]:
        return aggregation.progress_trend(self.list_progress(student_id))

    # Matches ---------------------------------------------------------
    def _write_back_completed(self, changed: Iterable[str]) -> None:
        changed = list(changed)
        if not changed:
            return
        self.store.update(self._path("matches"), {f"{match_id}/status": "completed" for match_id in changed})
        logger.info("Marked %d past match(es) as completed", len(changed))

    def add_match(
        self,
        match_date: Any,
        opponent: str,
        time: str = "",
        location: str = "",
        home_team: bool = True,
        status: str = "upcoming",
        notes: str = "",
    ) -> models.Match:
        day = self._coerce_date(match_date, "date")
        if day is None:
            raise ValidationError("date is required", field="date")
        match = models.Match(
            id="",
            date=day,
            opponent=self._clean_text(opponent, "opponent", required=True),
            time=self._clean_text(time, "time"),
            location=self._clean_text(location, "location"),
            home_team=bool(home_team),
            status=status,
            notes=self._clean_text(notes, "notes"),
        )
        return self._create_entity(self._path("matches"), models.Match, match)

    def list_matches(self, *, status: Optional[str] = None, search: Optional[str] = None) -> List[models.Match]:
        """Matches by date; past ``upcoming`` matches are completed on read."""
        matches = self._list_entities(self._path("matches"), models.Match)
        matches, changed = aggregation.complete_past_matches(matches, self.today())
        self._write_back_completed(changed)
        return aggregation.filter_matches(aggregation.sort_matches(matches), status=status, search=search)

    def get_match(self, match_id: str) -> models.Match:
        return self._require_entity(self._path("matches"), match_id, models.Match)

    def update_match(
        self,
        match_id: str,
        *,
        match_date: Any = None,
        opponent: Optional[str] = None,
        time: Optional[str] = None,
        location: Optional[str] = None,
        home_team: Optional[bool] = None,
        status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> models.Match:
        updates: Dict[str, Any] = {}
        if match_date is not None:
            updates["date"] = self._coerce_date(match_date, "date")
        if opponent is not None:
            updates["opponent"] = self._clean_text(opponent, "opponent", required=True)
        if time is not None:
            updates["time"] = self._clean_text(time, "time")
        if location is not None:
            updates["location"] = self._clean_text(location, "location")
        if home_team is not None:
            updates["home_team"] = bool(home_team)
        if status is not None:
            updates["status"] = status
        if notes is not None:
            updates["notes"] = self._clean_text(notes, "notes")
        return self._update_entity(self._path("matches"), match_id, models.Match, updates)

    def record_score(self, match_id: str, home: Any, away: Any, *, status: str = "completed") -> models.Match:
        score = {"home": self._coerce_int(home, "home"), "away": self._coerce_int(away, "away")}
        if score["home"] < 0 or score["away"] < 0:
            raise ValidationError("Scores cannot be negative", field="score")
        return self._update_entity(self._path("matches"), match_id, models.Match, {"score": score, "status": status})

    def set_player_stats(self, match_id: str, student_id: str, **stats: Any) -> models.Match:
        match = self.get_match(match_id)
        self.find_student(student_id)
        line = dict(match.players.get(student_id, {}))
        for name in models.PLAYER_STAT_FIELDS:
            if stats.get(name) is not None:
                value = self._coerce_amount(stats[name], name)
                if value < 0:
                    raise ValidationError(f"{name} cannot be negative", field=name)
                line[name] = value
        players = dict(match.players)
        players[student_id] = line
        return self._update_entity(self._path("matches"), match_id, models.Match, {"players": players})

    def remove_match(self, match_id: str) -> None:
        self._remove_entity(self._path("matches"), match_id, "Match")

    def match_summary(self) -> Dict[str, Any]:
        return aggregation.match_summary(self.list_matches(), self.today())

    # Payments --------------------------------------------------------
    def add_payment(
        self,
        amount: Any,
        payment_type: str,
        category: str,
        status: str = "pending",
        description: str = "",
        student_id: Optional[str] = None,
        trainer_id: Optional[str] = None,
        due_date: Any = None,
    ) -> models.Payment:
        if student_id:
            self.find_student(student_id)
        if trainer_id:
            self._require_entity(self._path("trainers"), trainer_id, models.Trainer)
        payment = models.Payment(
            id="",
            amount=self._coerce_amount(amount),
            type=payment_type,
            category=category,
            status=status,
            description=self._clean_text(description, "description"),
            student_id=student_id or None,
            trainer_id=trainer_id or None,
            due_date=self._coerce_date(due_date, "due_date"),
            paid_at=self._now_ms() if status == "completed" else None,
        )
        return self._create_entity(self._path("payments"), models.Payment, payment)

    def list_payments(self) -> List[models.Payment]:
        return aggregation.sort_by_created_desc(self._list_entities(self._path("payments"), models.Payment))

    def get_payment(self, payment_id: str) -> models.Payment:
        return self._require_entity(self._path("payments"), payment_id, models.Payment)

    def update_payment(
        self,
        payment_id: str,
        *,
        amount: Any = None,
        payment_type: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        description: Optional[str] = None,
        student_id: Any = UNSET,
        trainer_id: Any = UNSET,
        due_date: Any = UNSET,
    ) -> models.Payment:
        current = self.get_payment(payment_id)
        updates: Dict[str, Any] = {}
        if amount is not None:
            updates["amount"] = self._coerce_amount(amount)
        if payment_type is not None:
            updates["type"] = payment_type
        if category is not None:
            updates["category"] = category
        if status is not None:
            updates["status"] = status
            if status == "completed" and current.paid_at is None:
                updates["paid_at"] = self._now_ms()
        if description is not None:
            updates["description"] = self._clean_text(description, "description")
        if student_id is not UNSET:
            if student_id:
                self.find_student(student_id)
            updates["student_id"] = student_id or None
        if trainer_id is not UNSET:
            if trainer_id:
                self._require_entity(self._path("trainers"), trainer_id, models.Trainer)
            updates["trainer_id"] = trainer_id or None
        if due_date is not UNSET:
            updates["due_date"] = self._coerce_date(due_date, "due_date")
        return self._update_entity(self._path("payments"), payment_id, models.Payment, updates)

    def mark_paid(self, payment_id: str) -> models.Payment:
        return self.update_payment(payment_id, status="completed")

    def remove_payment(self, payment_id: str) -> None:
        self._remove_entity(self._path("payments"), payment_id, "Payment")

    def payment_overview(self) -> Dict[str, Any]:
        payments = self.list_payments()
        overdue, _ = aggregation.partition_pending(payments, self.now())
        return {
            "stats": aggregation.payment_stats(payments, self._tz),
            "overdue": overdue,
            "recent": payments[:5],
        }

    def payment_history(
        self,
        *,
        date_range: str = "all",
        start_date: Any = None,
        end_date: Any = None,
        payment_type: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[models.Payment]:
        payments = aggregation.filter_by_date_range(
            self.list_payments(),
            date_range,
            self.now(),
            self._coerce_date(start_date, "start_date"),
            self._coerce_date(end_date, "end_date"),
        )
        return aggregation.filter_payments(
            payments, payment_type=payment_type, category=category, status=status, search=search
        )

    def pending_payments(self) -> Tuple[List[models.Payment], List[models.Payment]]:
        return aggregation.partition_pending(self.list_payments(), self.now())

    def export_payments_csv(self, **filters: Any) -> str:
        return exports.payments_csv(self.payment_history(**filters), self._tz)

    # Finance ---------------------------------------------------------
    def finance_overview(self) -> Dict[str, Any]:
        payments = self.list_payments()
        return {
            "metrics": aggregation.finance_metrics(payments, self.now()),
            "chart": [bucket.to_dict() for bucket in aggregation.monthly_buckets(payments, self._tz)],
        }

    def expense_overview(
        self,
        *,
        category: Optional[str] = None,
        date_range: str = "thisMonth",
        start_date: Any = None,
        end_date: Any = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        expenses = aggregation.filter_payments(self.list_payments(), payment_type="expense")
        filtered = aggregation.filter_by_date_range(
            expenses,
            date_range,
            self.now(),
            self._coerce_date(start_date, "start_date"),
            self._coerce_date(end_date, "end_date"),
        )
        filtered = aggregation.filter_payments(filtered, category=category, search=search)
        return {
            "categories": aggregation.category_chart(expenses),
            "breakdown": aggregation.category_breakdown(filtered),
            "expenses": filtered,
            "total": aggregation.payment_totals(filtered)["expenses"],
        }

    def financial_report(
        self,
        *,
        date_range: str = "thisMonth",
        start_date: Any = None,
        end_date: Any = None,
    ) -> Dict[str, Any]:
        start = self._coerce_date(start_date, "start_date")
        end = self._coerce_date(end_date, "end_date")
        payments = aggregation.filter_by_date_range(self.list_payments(), date_range, self.now(), start, end)
        report = aggregation.financial_report(payments, self._tz)
        report["date_range"] = exports.date_range_label(date_range, start, end)
        return report

    def financial_report_json(self, **filters: Any) -> str:
        return exports.report_json(self.financial_report(**filters))

    # Dashboard and live views ---------------------------------------
    def dashboard(self) -> Dict[str, Any]:
        return aggregation.dashboard_stats(
            students_by_group=self.students_by_group(),
            groups_by_branch=self.groups_by_branch(),
            trainers=self.list_trainers(),
            payments=self.list_payments(),
            tz=self._tz,
        )

    def watch_payments(
        self,
        aggregate: Optional[Callable[[List[models.Payment]], Any]] = None,
        *,
        on_update: Optional[Callable[[LiveView], None]] = None,
    ) -> LiveView:
        """Subscribe to the payments path; defaults to the monthly buckets."""
        if aggregate is None:
            def aggregate(payments: List[models.Payment]) -> List[models.MonthlyBucket]:
                return aggregation.monthly_buckets(payments, self._tz)

        return LiveView(
            self.store, self._path("payments"), collection(models.Payment), aggregate, on_update=on_update
        )

    def watch_matches(self, *, on_update: Optional[Callable[[LiveView], None]] = None) -> LiveView:
        def aggregate(matches: List[models.Match]) -> List[models.Match]:
            matches, changed = aggregation.complete_past_matches(matches, self.today())
            self._write_back_completed(changed)
            return aggregation.sort_matches(matches)

        return LiveView(
            self.store, self._path("matches"), collection(models.Match), aggregate, on_update=on_update
        )


def format_person(person: Any) -> str:
    return f"[{person.id}] {person.full_name} | {getattr(person, 'email', '') or '-'}"


def format_payment(payment: models.Payment) -> str:
    due = payment.due_date.isoformat() if payment.due_date else "-"
    return (
        f"[{payment.id}] {payment.type} | {payment.category} | {payment.amount:.2f} | "
        f"{payment.status} | due {due} | {payment.description or '-'}"
    )
