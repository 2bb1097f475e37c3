"""
Check-in and check-out.

A member may hold a single open attendance session. The check is made under
a per-member lock and backed by a partial unique index, so it holds across
threads and across service instances.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.clock import as_utc, utcnow
from scheduling_service.errors import (
    ClassIdRequired,
    ClassInactive,
    NoActiveMembership,
    SessionAlreadyClosed,
    SessionAlreadyOpen,
    SessionNotFound,
)
from scheduling_service.events import EventPublisher
from scheduling_service.locks import KeyedLock
from scheduling_service.membership import MembershipOracle
from scheduling_service.models import AttendanceSession, AttendanceType, new_id
from scheduling_service.scheduling import SchedulingService, validate_window
from scheduling_service.schemas import AttendanceReport, AttendanceSessionOut, DayCount, HourCount

logger = logging.getLogger(__name__)

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
PEAK_HOURS_LIMIT = 5


class AttendanceGate:
    def __init__(self, session_factory, scheduling: SchedulingService, oracle: MembershipOracle,
                 publisher: EventPublisher | None = None, clock=utcnow):
        self.session_factory = session_factory
        self.scheduling = scheduling
        self.oracle = oracle
        self.publisher = publisher or scheduling.publisher
        self.clock = clock
        self.member_locks = KeyedLock()

    def check_in(self, member_id: str, type: AttendanceType = AttendanceType.GYM_VISIT,
                 class_id: str | None = None) -> AttendanceSessionOut:
        type = AttendanceType(type)
        now = self.clock()

        if not self.oracle.is_membership_active(member_id, now):
            raise NoActiveMembership(member_id)

        with self.member_locks.hold(member_id):
            with self.session_factory() as db:
                existing = crud.get_open_session(db, member_id)
                if existing is not None:
                    raise SessionAlreadyOpen(member_id, AttendanceSessionOut.model_validate(existing))

                if type == AttendanceType.CLASS_ATTENDANCE:
                    if not class_id:
                        raise ClassIdRequired()
                    with self.scheduling.class_lock(class_id):
                        occurrence = self.scheduling.fetch_class(db, class_id, for_update=True)
                        if not occurrence.is_active:
                            raise ClassInactive(class_id)
                        self.scheduling.admit_for_attendance(db, occurrence, member_id, now)
                        session = self._open_session(db, member_id, type, class_id, now)
                else:
                    session = self._open_session(db, member_id, type, None, now)

                result = AttendanceSessionOut.model_validate(session)

        logger.info(f"Member {member_id} checked in ({type.value})")
        self.publisher.attendance_event(
            "checked_in",
            session_id=result.id,
            member_id=member_id,
            type=type.value,
            class_id=result.class_occurrence_id,
        )
        return result

    def _open_session(self, db: Session, member_id: str, type: AttendanceType,
                      class_id: str | None, now: datetime) -> AttendanceSession:
        session = AttendanceSession(
            id=new_id(),
            member_id=member_id,
            type=type,
            class_occurrence_id=class_id,
            check_in_time=now,
        )
        db.add(session)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = crud.get_open_session(db, member_id)
            if existing is None:
                raise
            # another instance opened a session between our check and commit
            raise SessionAlreadyOpen(member_id, AttendanceSessionOut.model_validate(existing))
        return session

    def check_out(self, session_id: str) -> AttendanceSessionOut:
        with self.session_factory() as db:
            session = crud.get_session(db, session_id)
            if session is None:
                raise SessionNotFound(session_id)

            with self.member_locks.hold(session.member_id):
                db.refresh(session)
                if session.check_out_time is not None:
                    raise SessionAlreadyClosed(session_id)

                session.check_out_time = self.clock()
                db.commit()
                result = AttendanceSessionOut.model_validate(session)

        logger.info(f"Member {result.member_id} checked out of session {session_id}")
        self.publisher.attendance_event("checked_out", session_id=session_id, member_id=result.member_id)
        return result

    def get_open_session(self, member_id: str) -> AttendanceSessionOut | None:
        with self.session_factory() as db:
            session = crud.get_open_session(db, member_id)
            return AttendanceSessionOut.model_validate(session) if session else None

    def list_sessions(self, member_id: str | None = None, type: AttendanceType | None = None,
                      start: datetime | None = None, end: datetime | None = None,
                      limit: int = 100, offset: int = 0) -> list[AttendanceSessionOut]:
        with self.session_factory() as db:
            sessions = crud.get_sessions(db, member_id, type, as_utc(start), as_utc(end), limit, offset)
            return [AttendanceSessionOut.model_validate(s) for s in sessions]

    def report(self, member_id: str, start: datetime, end: datetime) -> AttendanceReport:
        start, end = as_utc(start), as_utc(end)
        validate_window(start, end)

        with self.session_factory() as db:
            sessions = crud.get_sessions(db, member_id, start=start, end=end, limit=None)
            member = crud.get_members(db, [member_id]).get(member_id)

        gym_visits = sum(1 for s in sessions if s.type == AttendanceType.GYM_VISIT)
        class_attendances = sum(1 for s in sessions if s.type == AttendanceType.CLASS_ATTENDANCE)
        total = len(sessions)
        weeks = max(1.0, (end - start) / timedelta(weeks=1))

        check_ins = sorted(s.check_in_time for s in sessions)
        hours = Counter(moment.hour for moment in check_ins)
        days = Counter(DAY_NAMES[moment.weekday()] for moment in check_ins)

        return AttendanceReport(
            member_id=member_id,
            member_name=member.name if member else None,
            start=start,
            end=end,
            total_gym_visits=gym_visits,
            total_class_attendances=class_attendances,
            total_visits=total,
            average_visits_per_week=round(total / weeks, 2),
            peak_visit_hours=[HourCount(hour=h, count=c) for h, c in hours.most_common(PEAK_HOURS_LIMIT)],
            visits_by_day_of_week=[DayCount(day_of_week=d, count=c) for d, c in days.most_common()],
        )
