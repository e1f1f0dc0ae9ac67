"""Domain models for the hoopclub basketball club dashboard."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Dict, List, Optional, Set

from .errors import ValidationError

PAYMENT_TYPES = ("income", "expense")
PAYMENT_CATEGORIES = (
    "membership",
    "training",
    "tournament",
    "equipment",
    "facility",
    "salary",
    "other",
)
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")
MATCH_STATUSES = ("upcoming", "in_progress", "completed")
PLAYER_STAT_FIELDS = ("minutes", "points", "assists", "rebounds")


def _require_choice(value: str, choices, field_name: str) -> None:
    if value not in choices:
        raise ValidationError(
            f"{field_name} must be one of {', '.join(choices)} (got {value!r})",
            field=field_name,
        )


@dataclass
class Club:
    """Tenant root stored at ``clubs/{ownerId}``."""

    club_name: str
    user_id: str
    logo_url: Optional[str] = None
    created_at: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Branch:
    id: str
    name: str
    address: str = ""
    created_at: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Group:
    id: str
    name: str
    capacity: int
    branch_id: str
    description: str = ""
    age_group: str = ""
    schedule: str = ""
    created_at: int = 0

    def validate(self) -> None:
        if self.capacity <= 0:
            raise ValidationError("capacity must be greater than zero", field="capacity")

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Student:
    id: str
    first_name: str
    last_name: str
    group_id: str
    date_of_birth: Optional[date] = None
    parent_name: str = ""
    parent_phone: str = ""
    email: str = ""
    created_at: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict:
        data = asdict(self)
        if self.date_of_birth is not None:
            data["date_of_birth"] = self.date_of_birth.isoformat()
        data["full_name"] = self.full_name
        return data


@dataclass
class Trainer:
    id: str
    first_name: str
    last_name: str
    email: str = ""
    phone: str = ""
    specialization: str = ""
    groups: Set[str] = field(default_factory=set)
    created_at: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["groups"] = sorted(self.groups)
        data["full_name"] = self.full_name
        return data


@dataclass
class AttendanceEntry:
    """One student's mark inside a ``group/date/timeSlot`` session.

    ``student_name`` is copied at write time and never refreshed, so renaming a
    student leaves historical sessions untouched.
    """

    student_id: str
    student_name: str = ""
    present: bool = False
    timestamp: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ProgressRecord:
    id: str
    date: date
    height: float = 0.0
    weight: float = 0.0
    vertical_jump: float = 0.0
    speed_test: float = 0.0
    academic_score: int = 0
    notes: str = ""
    created_at: int = 0

    def validate(self) -> None:
        if not 0 <= self.academic_score <= 100:
            raise ValidationError("academic_score must be between 0 and 100", field="academic_score")

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass
class Match:
    id: str
    date: date
    opponent: str
    time: str = ""
    location: str = ""
    home_team: bool = True
    status: str = "upcoming"
    score: Dict[str, int] = field(default_factory=lambda: {"home": 0, "away": 0})
    players: Dict[str, Dict[str, float]] = field(default_factory=dict)
    notes: str = ""
    created_at: int = 0

    def validate(self) -> None:
        _require_choice(self.status, MATCH_STATUSES, "status")

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass
class Payment:
    id: str
    amount: float
    type: str
    category: str
    status: str = "pending"
    description: str = ""
    student_id: Optional[str] = None
    trainer_id: Optional[str] = None
    due_date: Optional[date] = None
    paid_at: Optional[int] = None
    created_at: int = 0

    def validate(self) -> None:
        if self.amount <= 0:
            raise ValidationError("amount must be greater than zero", field="amount")
        _require_choice(self.type, PAYMENT_TYPES, "type")
        _require_choice(self.category, PAYMENT_CATEGORIES, "category")
        _require_choice(self.status, PAYMENT_STATUSES, "status")

    def to_dict(self) -> Dict:
        data = asdict(self)
        if self.due_date is not None:
            data["due_date"] = self.due_date.isoformat()
        return data


@dataclass
class MonthlyBucket:
    month: str
    income: float = 0.0
    expenses: float = 0.0

    @property
    def profit(self) -> float:
        return self.income - self.expenses

    def to_dict(self) -> Dict:
        return {
            "month": self.month,
            "income": self.income,
            "expenses": self.expenses,
            "profit": self.profit,
        }


@dataclass
class AttendanceSession:
    date: str
    time_slot: str
    records: List[AttendanceEntry] = field(default_factory=list)

    def to_dict(self) -> Dict:
        present = sum(1 for record in self.records if record.present is True)
        return {
            "date": self.date,
            "time_slot": self.time_slot,
            "records": [record.to_dict() for record in self.records],
            "summary": {"present_count": present, "absent_count": len(self.records) - present},
        }
