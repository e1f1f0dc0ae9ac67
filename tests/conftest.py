"""Pytest configuration and fixtures for the hoopclub tests."""

from datetime import date, datetime, timezone

import pytest

from hoopclub.blobs import LocalBlobStore
from hoopclub.config import TestingConfig
from hoopclub.context import ClubContext
from hoopclub.identity import IdentityProvider
from hoopclub.models import Payment
from hoopclub.services import ClubService
from hoopclub.storage import RecordStore
from hoopclub.web import create_app

OWNER = "owner-1"


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def set(self, *args) -> None:
        self.moment = datetime(*args, tzinfo=timezone.utc)


def ms(*args) -> int:
    """Epoch milliseconds of a UTC datetime."""
    return round(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def make_payment(
    amount,
    payment_type="income",
    category="membership",
    created=(2024, 1, 15),
    status="completed",
    due_date=None,
    description="",
    key=None,
):
    return Payment(
        id=key or f"p-{amount}-{created}",
        amount=amount,
        type=payment_type,
        category=category,
        status=status,
        description=description,
        due_date=due_date,
        created_at=ms(*created),
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return RecordStore(None)


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def service(store, blobs, clock):
    return ClubService(store, OWNER, blobs=blobs, clock=clock, retry_delay=0.0)


@pytest.fixture
def roster(service):
    """A branch with one group of two students and one trainer."""
    branch = service.add_branch("Downtown", "1 Main St")
    group = service.add_group(branch.id, "U14", 12, age_group="U14")
    alice = service.add_student(group.id, "Alice", "Moss", date_of_birth=date(2011, 4, 2))
    bruno = service.add_student(group.id, "Bruno", "Diaz")
    trainer = service.add_trainer("Tess", "Carter", groups=[group.id])
    return {"branch": branch, "group": group, "alice": alice, "bruno": bruno, "trainer": trainer}


@pytest.fixture
def context(store, blobs, clock):
    ctx = ClubContext(store, IdentityProvider(store), blobs, config=TestingConfig, clock=clock)
    yield ctx
    ctx.close()


@pytest.fixture
def app(context):
    app = create_app(TestingConfig, context=context)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client, context):
    uid = context.identity.register("coach@example.com", "secret-pass")
    response = client.post("/api/auth/login", json={"email": "coach@example.com", "password": "secret-pass"})
    assert response.status_code == 200
    return uid
