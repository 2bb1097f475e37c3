import enum
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from scheduling_service.clock import utcnow

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class RosterStatus(str, enum.Enum):
    BOOKED = "BOOKED"
    ATTENDED = "ATTENDED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


class AttendanceType(str, enum.Enum):
    GYM_VISIT = "GYM_VISIT"
    CLASS_ATTENDANCE = "CLASS_ATTENDANCE"


class WaitlistStatus(str, enum.Enum):
    WAITING = "WAITING"
    PROMOTED = "PROMOTED"
    CANCELLED = "CANCELLED"


class Instructor(Base):
    __tablename__ = "instructors"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, index=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Member(Base):
    __tablename__ = "members"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, index=True)


class Membership(Base):
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(String, unique=True, index=True, nullable=False)
    status = Column(String, nullable=False)     # 'created', 'paid', 'active', 'extended', 'cancelled'
    expires_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ClassOccurrence(Base):
    __tablename__ = "class_occurrences"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="OTHER")
    instructor_id = Column(String, index=True, nullable=False)
    start_time = Column(DateTime, index=True, nullable=False)
    end_time = Column(DateTime, nullable=False)
    max_capacity = Column(Integer, nullable=False)
    recurrence_rule = Column(String)
    series_id = Column(String, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    roster = relationship("RosterEntry", back_populates="occurrence")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="valid_time_window"),
        CheckConstraint("max_capacity >= 1", name="positive_capacity"),
    )


class RosterEntry(Base):
    __tablename__ = "roster_entries"

    id = Column(String, primary_key=True, default=new_id)
    class_occurrence_id = Column(String, ForeignKey("class_occurrences.id"), nullable=False, index=True)
    member_id = Column(String, nullable=False, index=True)
    status = Column(Enum(RosterStatus), nullable=False, default=RosterStatus.BOOKED)
    booked_at = Column(DateTime, nullable=False, default=utcnow)
    checked_in_at = Column(DateTime)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    occurrence = relationship("ClassOccurrence", back_populates="roster")

    __table_args__ = (
        UniqueConstraint("class_occurrence_id", "member_id", name="one_entry_per_member"),
    )


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(String, primary_key=True, default=new_id)
    class_occurrence_id = Column(String, ForeignKey("class_occurrences.id"), nullable=False, index=True)
    member_id = Column(String, nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(Enum(WaitlistStatus), nullable=False, default=WaitlistStatus.WAITING)
    created_at = Column(DateTime, default=utcnow)
    promoted_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("class_occurrence_id", "member_id", name="one_waitlist_entry_per_member"),
    )


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"

    id = Column(String, primary_key=True, default=new_id)
    member_id = Column(String, nullable=False, index=True)
    type = Column(Enum(AttendanceType), nullable=False)
    class_occurrence_id = Column(String, ForeignKey("class_occurrences.id"))
    check_in_time = Column(DateTime, nullable=False, index=True)
    check_out_time = Column(DateTime)

    __table_args__ = (
        # a member can hold a single open session
        Index(
            "one_open_session_per_member",
            "member_id",
            unique=True,
            sqlite_where=text("check_out_time IS NULL"),
            postgresql_where=text("check_out_time IS NULL"),
        ),
        CheckConstraint(
            "type != 'CLASS_ATTENDANCE' OR class_occurrence_id IS NOT NULL",
            name="class_attendance_has_class",
        ),
    )
