from datetime import datetime

from scheduling_service.membership import LocalMembershipOracle
from scheduling_service.models import ClassOccurrence, Instructor, Member
from scheduling_service.populate_db import populate

from conftest import NOW


def test_demo_data(session_factory):
    with session_factory() as db:
        populate(db, today=NOW)

        classes = db.query(ClassOccurrence).order_by(ClassOccurrence.start_time).all()
        assert db.query(Instructor).count() == 2
        assert db.query(Member).count() == 4

    yoga = [c for c in classes if c.name == "Yoga"]
    assert len(yoga) == 8
    assert len({c.series_id for c in yoga}) == 1
    # series anchored on a Tuesday evening starts on the next listed day
    assert yoga[0].start_time == datetime(2026, 10, 14, 18, 0)
    assert {c.start_time.weekday() for c in yoga} == {0, 2}
    assert [c.name for c in classes].count("Crossfit") == 1

    oracle = LocalMembershipOracle(session_factory)
    assert oracle.is_membership_active("member-1", NOW)
    assert not oracle.is_membership_active("member-2", NOW)
    assert oracle.is_membership_active("member-3", NOW)
    assert not oracle.is_membership_active("member-4", NOW)
