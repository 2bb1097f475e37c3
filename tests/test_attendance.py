"""
Check-in, check-out and attendance reporting.
"""
import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from scheduling_service.errors import (
    ClassFull,
    ClassIdRequired,
    ClassInactive,
    ClassNotFound,
    InvalidTransition,
    NoActiveMembership,
    SessionAlreadyClosed,
    SessionAlreadyOpen,
    SessionNotFound,
)
from scheduling_service.models import AttendanceSession, AttendanceType, Member, RosterStatus

from conftest import NOW

CLASS = AttendanceType.CLASS_ATTENDANCE
GYM = AttendanceType.GYM_VISIT


@pytest.fixture
def member(add_membership):
    add_membership("member-1", NOW + timedelta(days=30))
    return "member-1"


# ---------------------------------------------------------------------------
# Membership gate
# ---------------------------------------------------------------------------


class TestMembershipGate:
    def test_membership_expiring_right_now_is_valid(self, gate, add_membership):
        add_membership("member-1", NOW)

        session = gate.check_in("member-1")

        assert session.check_in_time == NOW

    def test_expired_membership_is_refused(self, gate, add_membership):
        add_membership("member-1", NOW - timedelta(seconds=1))

        with pytest.raises(NoActiveMembership):
            gate.check_in("member-1")

        assert gate.get_open_session("member-1") is None

    @pytest.mark.parametrize("status", ["created", "paid", "cancelled"])
    def test_inactive_status_is_refused(self, gate, add_membership, status):
        add_membership("member-1", NOW + timedelta(days=30), status=status)

        with pytest.raises(NoActiveMembership):
            gate.check_in("member-1")

    def test_extended_membership_is_valid(self, gate, add_membership):
        add_membership("member-1", NOW + timedelta(days=30), status="extended")

        assert gate.check_in("member-1").member_id == "member-1"

    def test_unknown_member_is_refused(self, gate):
        with pytest.raises(NoActiveMembership):
            gate.check_in("stranger")


# ---------------------------------------------------------------------------
# Gym visits
# ---------------------------------------------------------------------------


class TestGymVisit:
    def test_check_in_and_out(self, gate, member, clock, publisher):
        session = gate.check_in(member)
        assert session.type == GYM
        assert session.is_open
        assert gate.get_open_session(member).id == session.id

        clock.advance(hours=1, minutes=15)
        closed = gate.check_out(session.id)

        assert closed.check_out_time == NOW + timedelta(hours=1, minutes=15)
        assert not closed.is_open
        assert gate.get_open_session(member) is None
        assert publisher.names() == ["checked_in", "checked_out"]

    def test_second_check_in_returns_the_open_session(self, gate, member):
        first = gate.check_in(member)

        with pytest.raises(SessionAlreadyOpen) as error:
            gate.check_in(member)

        assert error.value.session.id == first.id
        assert error.value.details["session_id"] == first.id
        assert [s.id for s in gate.list_sessions(member_id=member)] == [first.id]

    def test_check_in_again_after_check_out(self, gate, member, clock):
        first = gate.check_in(member)
        clock.advance(hours=1)
        gate.check_out(first.id)
        clock.advance(hours=5)

        second = gate.check_in(member)

        assert second.id != first.id
        assert [s.id for s in gate.list_sessions(member_id=member)] == [second.id, first.id]

    def test_check_out_twice(self, gate, member):
        session = gate.check_in(member)
        gate.check_out(session.id)

        with pytest.raises(SessionAlreadyClosed):
            gate.check_out(session.id)

    def test_check_out_unknown_session(self, gate):
        with pytest.raises(SessionNotFound):
            gate.check_out("missing")

    def test_concurrent_check_ins_open_a_single_session(self, gate, member):
        racers = 8
        barrier = threading.Barrier(racers)
        opened, refused, unexpected = [], [], []

        def check_in():
            barrier.wait()
            try:
                opened.append(gate.check_in(member))
            except SessionAlreadyOpen as error:
                refused.append(error)
            except Exception as error:
                unexpected.append(error)

        threads = [threading.Thread(target=check_in) for _ in range(racers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert unexpected == []
        assert len(opened) == 1
        assert len(refused) == racers - 1
        assert len(gate.list_sessions(member_id=member)) == 1
        assert len(gate.member_locks) == 0


class TestOpenSessionIndex:
    def test_database_rejects_a_second_open_session(self, session_factory):
        with session_factory() as db:
            db.add(AttendanceSession(member_id="member-1", type=GYM, check_in_time=NOW))
            db.commit()

            db.add(AttendanceSession(member_id="member-1", type=GYM, check_in_time=NOW))
            with pytest.raises(IntegrityError):
                db.commit()

    def test_closed_sessions_do_not_count(self, session_factory):
        with session_factory() as db:
            db.add(AttendanceSession(member_id="member-1", type=GYM, check_in_time=NOW,
                                     check_out_time=NOW + timedelta(hours=1)))
            db.add(AttendanceSession(member_id="member-1", type=GYM, check_in_time=NOW,
                                     check_out_time=NOW + timedelta(hours=2)))
            db.add(AttendanceSession(member_id="member-1", type=GYM, check_in_time=NOW + timedelta(hours=3)))
            db.commit()

    def test_lost_race_with_another_instance_is_reported(self, gate, session_factory, member):
        existing = gate.check_in(member)

        # skip the in-process check, as another service instance would
        with session_factory() as db:
            with pytest.raises(SessionAlreadyOpen) as error:
                gate._open_session(db, member, GYM, None, NOW)

        assert error.value.session.id == existing.id


# ---------------------------------------------------------------------------
# Class attendance
# ---------------------------------------------------------------------------


class TestClassAttendance:
    def test_booked_member_is_marked_attended(self, gate, scheduling, create_class, member):
        created = create_class()
        scheduling.add_member_to_roster(created.id, member)

        session = gate.check_in(member, CLASS, created.id)

        assert session.class_occurrence_id == created.id
        entry = scheduling.get_roster(created.id)[0]
        assert entry.status == RosterStatus.ATTENDED
        assert entry.checked_in_at == NOW

    def test_walk_in_takes_a_free_seat(self, gate, scheduling, create_class, member):
        created = create_class(max_capacity=2)

        gate.check_in(member, CLASS, created.id)

        assert [(e.member_id, e.status) for e in scheduling.get_roster(created.id)] == [
            (member, RosterStatus.ATTENDED),
        ]
        assert scheduling.get_class(created.id).confirmed_count == 1

    def test_walk_in_to_a_full_class_is_refused(self, gate, scheduling, create_class, member):
        created = create_class(max_capacity=1)
        scheduling.add_member_to_roster(created.id, "member-2")

        with pytest.raises(ClassFull):
            gate.check_in(member, CLASS, created.id)

        assert gate.get_open_session(member) is None
        assert [e.member_id for e in scheduling.get_roster(created.id)] == ["member-2"]

    def test_class_id_is_required(self, gate, member):
        with pytest.raises(ClassIdRequired):
            gate.check_in(member, CLASS)

    def test_unknown_class(self, gate, member):
        with pytest.raises(ClassNotFound):
            gate.check_in(member, CLASS, "missing")

        assert gate.get_open_session(member) is None

    def test_inactive_class(self, gate, scheduling, create_class, member):
        created = create_class()
        scheduling.delete_class(created.id)

        with pytest.raises(ClassInactive):
            gate.check_in(member, CLASS, created.id)

    def test_check_out_keeps_the_roster_status(self, gate, scheduling, create_class, member, clock):
        created = create_class()
        session = gate.check_in(member, CLASS, created.id)
        clock.advance(hours=1)

        gate.check_out(session.id)

        assert scheduling.get_roster(created.id)[0].status == RosterStatus.ATTENDED

    def test_no_show_cannot_check_in(self, gate, scheduling, create_class, member, clock):
        created = create_class()
        scheduling.add_member_to_roster(created.id, member)
        clock.now = created.end_time
        scheduling.update_roster_status(created.id, member, RosterStatus.NO_SHOW)

        with pytest.raises(InvalidTransition):
            gate.check_in(member, CLASS, created.id)

        assert gate.get_open_session(member) is None

    def test_repeat_visit_keeps_attended(self, gate, scheduling, create_class, member, clock):
        created = create_class()
        first = gate.check_in(member, CLASS, created.id)
        clock.advance(minutes=10)
        gate.check_out(first.id)

        second = gate.check_in(member, CLASS, created.id)

        assert second.id != first.id
        assert scheduling.get_roster(created.id)[0].checked_in_at == NOW

    def test_membership_is_checked_before_the_class(self, gate, create_class):
        created = create_class()

        with pytest.raises(NoActiveMembership):
            gate.check_in("stranger", CLASS, created.id)


# ---------------------------------------------------------------------------
# History and reports
# ---------------------------------------------------------------------------


class TestReport:
    @pytest.fixture
    def history(self, gate, create_class, session_factory, add_membership, clock):
        add_membership("member-1", datetime(2026, 12, 31))
        with session_factory() as db:
            db.add(Member(id="member-1", name="Jan Kowalski", email="jan.kowalski@example.com"))
            db.commit()

        evening = create_class(start_time=datetime(2026, 10, 14, 18, 0), end_time=datetime(2026, 10, 14, 19, 0))

        visits = [
            (datetime(2026, 10, 12, 8, 0), GYM, None),
            (datetime(2026, 10, 13, 8, 30), GYM, None),
            (datetime(2026, 10, 14, 18, 0), CLASS, evening.id),
        ]
        for moment, type, class_id in visits:
            clock.now = moment
            session = gate.check_in("member-1", type, class_id)
            clock.advance(hours=1)
            gate.check_out(session.id)

    def test_totals_and_breakdowns(self, gate, history):
        report = gate.report("member-1", datetime(2026, 10, 5), datetime(2026, 10, 19))

        assert report.member_name == "Jan Kowalski"
        assert (report.total_gym_visits, report.total_class_attendances, report.total_visits) == (2, 1, 3)
        assert report.average_visits_per_week == 1.5
        assert [(h.hour, h.count) for h in report.peak_visit_hours] == [(8, 2), (18, 1)]
        assert [(d.day_of_week, d.count) for d in report.visits_by_day_of_week] == [
            ("Monday", 1), ("Tuesday", 1), ("Wednesday", 1),
        ]

    def test_short_window_counts_as_one_week(self, gate, history):
        report = gate.report("member-1", datetime(2026, 10, 13), datetime(2026, 10, 15))

        assert report.total_visits == 2
        assert report.average_visits_per_week == 2.0

    def test_empty_window(self, gate, history):
        report = gate.report("member-1", datetime(2026, 11, 1), datetime(2026, 11, 8))

        assert report.total_visits == 0
        assert report.peak_visit_hours == []

    def test_list_sessions_filters(self, gate, history):
        assert len(gate.list_sessions(member_id="member-1")) == 3
        assert len(gate.list_sessions(member_id="member-1", type=CLASS)) == 1
        assert len(gate.list_sessions(start=datetime(2026, 10, 13), end=datetime(2026, 10, 13, 23, 59))) == 1
        assert len(gate.list_sessions(member_id="member-1", limit=2)) == 2
        assert gate.list_sessions(member_id="someone-else") == []
