from datetime import datetime, timedelta

import pytest

from scheduling_service.attendance import AttendanceGate
from scheduling_service.database import init_db, make_engine, make_session_factory
from scheduling_service.events import EventPublisher
from scheduling_service.membership import LocalMembershipOracle
from scheduling_service.models import Membership
from scheduling_service.scheduling import SchedulingService
from scheduling_service.schemas import CreateClassRequest

# Monday morning; test classes start a week later
NOW = datetime(2026, 10, 12, 8, 0)
CLASS_START = datetime(2026, 10, 19, 9, 0)
CLASS_END = datetime(2026, 10, 19, 10, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingPublisher(EventPublisher):
    """Keeps published events in memory instead of sending them to Kafka."""

    def __init__(self):
        super().__init__()
        self.events = []

    def _send(self, topic, event, data):
        self.events.append((topic, event, data))

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def scheduling(session_factory, publisher, clock):
    return SchedulingService(session_factory, publisher, clock=clock, default_occurrences=6)


@pytest.fixture
def oracle(session_factory):
    return LocalMembershipOracle(session_factory)


@pytest.fixture
def gate(session_factory, scheduling, oracle, publisher, clock):
    return AttendanceGate(session_factory, scheduling, oracle, publisher, clock=clock)


@pytest.fixture
def create_class(scheduling):
    """Create one occurrence (or a series) with sensible defaults."""

    def _create(**overrides):
        fields = {
            "name": "Yoga",
            "category": "YOGA",
            "instructor_id": "instructor-1",
            "start_time": CLASS_START,
            "end_time": CLASS_END,
            "max_capacity": 10,
        }
        fields.update(overrides)
        created = scheduling.create_class(CreateClassRequest(**fields))
        return created if len(created) > 1 else created[0]

    return _create


@pytest.fixture
def add_membership(session_factory):
    def _add(member_id: str, expires_at: datetime, status: str = "active"):
        with session_factory() as db:
            db.add(Membership(member_id=member_id, status=status, expires_at=expires_at))
            db.commit()

    return _add
