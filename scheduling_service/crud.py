from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from scheduling_service.capacity import CONFIRMED_STATUSES
from scheduling_service.models import (
    AttendanceSession,
    AttendanceType,
    ClassOccurrence,
    Instructor,
    Member,
    Membership,
    RosterEntry,
    WaitlistEntry,
    WaitlistStatus,
)


def get_class(db: Session, class_id: str, for_update: bool = False):
    query = db.query(ClassOccurrence).filter(ClassOccurrence.id == class_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_classes_in_window(db: Session, start: datetime, end: datetime, include_inactive: bool = False,
                          instructor_id: str | None = None, category: str | None = None):
    query = db.query(ClassOccurrence).filter(
        ClassOccurrence.start_time >= start,
        ClassOccurrence.start_time < end,
    )
    if not include_inactive:
        query = query.filter(ClassOccurrence.is_active.is_(True))
    if instructor_id:
        query = query.filter(ClassOccurrence.instructor_id == instructor_id)
    if category:
        query = query.filter(ClassOccurrence.category == category)
    return query.order_by(ClassOccurrence.start_time, ClassOccurrence.id).all()


def get_conflicting_class(db: Session, instructor_id: str, start_time: datetime, end_time: datetime,
                          exclude_class_id: str | None = None):
    query = db.query(ClassOccurrence).filter(
        ClassOccurrence.instructor_id == instructor_id,
        ClassOccurrence.is_active.is_(True),
        ClassOccurrence.start_time < end_time,
        ClassOccurrence.end_time > start_time,
    )
    if exclude_class_id:
        query = query.filter(ClassOccurrence.id != exclude_class_id)
    return query.first()


def count_confirmed(db: Session, class_id: str) -> int:
    return db.query(func.count(RosterEntry.id)).filter(
        RosterEntry.class_occurrence_id == class_id,
        RosterEntry.status.in_(CONFIRMED_STATUSES),
    ).scalar()


def count_confirmed_by_class(db: Session, class_ids: list[str]) -> dict[str, int]:
    if not class_ids:
        return {}
    rows = db.query(RosterEntry.class_occurrence_id, func.count(RosterEntry.id)).filter(
        RosterEntry.class_occurrence_id.in_(class_ids),
        RosterEntry.status.in_(CONFIRMED_STATUSES),
    ).group_by(RosterEntry.class_occurrence_id).all()
    return dict(rows)


def get_roster_entry(db: Session, class_id: str, member_id: str):
    return db.query(RosterEntry).filter(
        RosterEntry.class_occurrence_id == class_id,
        RosterEntry.member_id == member_id,
    ).first()


def get_roster(db: Session, class_id: str):
    return db.query(RosterEntry).filter(
        RosterEntry.class_occurrence_id == class_id,
    ).order_by(RosterEntry.booked_at, RosterEntry.id).all()


def get_waitlist_entry(db: Session, class_id: str, member_id: str):
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.class_occurrence_id == class_id,
        WaitlistEntry.member_id == member_id,
    ).first()


def get_waiting(db: Session, class_id: str):
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.class_occurrence_id == class_id,
        WaitlistEntry.status == WaitlistStatus.WAITING,
    ).order_by(WaitlistEntry.position).all()


def next_waitlist_position(db: Session, class_id: str) -> int:
    highest = db.query(func.max(WaitlistEntry.position)).filter(
        WaitlistEntry.class_occurrence_id == class_id,
        WaitlistEntry.status == WaitlistStatus.WAITING,
    ).scalar()
    return (highest or 0) + 1


def get_session(db: Session, session_id: str):
    return db.query(AttendanceSession).filter(AttendanceSession.id == session_id).first()


def get_open_session(db: Session, member_id: str):
    return db.query(AttendanceSession).filter(
        AttendanceSession.member_id == member_id,
        AttendanceSession.check_out_time.is_(None),
    ).first()


def get_sessions(db: Session, member_id: str | None = None, type: AttendanceType | None = None,
                 start: datetime | None = None, end: datetime | None = None,
                 limit: int = 100, offset: int = 0):
    query = db.query(AttendanceSession)
    if member_id:
        query = query.filter(AttendanceSession.member_id == member_id)
    if type:
        query = query.filter(AttendanceSession.type == type)
    if start:
        query = query.filter(AttendanceSession.check_in_time >= start)
    if end:
        query = query.filter(AttendanceSession.check_in_time <= end)
    return query.order_by(AttendanceSession.check_in_time.desc()).offset(offset).limit(limit).all()


def get_membership(db: Session, member_id: str):
    return db.query(Membership).filter(Membership.member_id == member_id).first()


def upsert_membership(db: Session, member_id: str, status: str, expires_at: datetime | None):
    membership = get_membership(db, member_id)
    if membership:
        membership.status = status
        membership.expires_at = expires_at
    else:
        membership = Membership(member_id=member_id, status=status, expires_at=expires_at)
        db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership


def get_instructor(db: Session, instructor_id: str):
    return db.query(Instructor).filter(Instructor.id == instructor_id).first()


def get_instructors(db: Session, instructor_ids: list[str]) -> dict[str, Instructor]:
    if not instructor_ids:
        return {}
    return {i.id: i for i in db.query(Instructor).filter(Instructor.id.in_(instructor_ids)).all()}


def get_members(db: Session, member_ids: list[str]) -> dict[str, Member]:
    if not member_ids:
        return {}
    return {m.id: m for m in db.query(Member).filter(Member.id.in_(member_ids)).all()}
