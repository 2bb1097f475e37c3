"""
Class lifecycle, roster and waitlist commands.

Every command that reads roster state and then writes it runs under the
class occurrence's lock and inside a single database transaction, so the
confirmed count used for admission is never stale.
"""
import dataclasses
import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling_service import capacity, crud, recurrence, roster
from scheduling_service.clock import as_utc, utcnow
from scheduling_service.config import DEFAULT_OCCURRENCES
from scheduling_service.errors import (
    AlreadyBooked,
    CapacityBelowRoster,
    ClassFull,
    ClassInactive,
    ClassNotFound,
    ClassNotFull,
    InstructorConflict,
    InvalidCapacity,
    InvalidTimeWindow,
    RosterEntryNotFound,
    WaitlistEntryNotFound,
)
from scheduling_service.events import EventPublisher
from scheduling_service.locks import KeyedLock
from scheduling_service.models import (
    ClassOccurrence,
    RosterEntry,
    RosterStatus,
    WaitlistEntry,
    WaitlistStatus,
    new_id,
)
from scheduling_service.schemas import (
    ClassOut,
    CreateClassRequest,
    RosterEntryOut,
    UpdateClassRequest,
    WaitlistEntryOut,
)

logger = logging.getLogger(__name__)

VIEWS = ("day", "week")


def validate_window(start_time: datetime | None, end_time: datetime | None) -> None:
    if start_time is None or end_time is None or start_time >= end_time:
        raise InvalidTimeWindow(start_time, end_time)


def _whole_seconds(moment: datetime | None) -> datetime | None:
    # rrule drops microseconds from its dtstart
    return moment.replace(microsecond=0) if moment is not None else None


def validate_capacity(max_capacity: int | None) -> None:
    if max_capacity is None or max_capacity < 1:
        raise InvalidCapacity(f"Capacity must be at least 1, got {max_capacity}", requested=max_capacity)


def window_for(anchor: date | datetime, view: str = "week") -> tuple[datetime, datetime]:
    """Day window, or the Monday based week containing anchor."""
    day = anchor.date() if isinstance(anchor, datetime) else anchor
    start = datetime.combine(day, time.min)

    if view == "day":
        return start, start + timedelta(days=1)
    if view == "week":
        start -= timedelta(days=start.weekday())
        return start, start + timedelta(days=7)
    raise ValueError(f"Unknown view {view!r}, expected one of {VIEWS}")


def class_out(occurrence: ClassOccurrence, confirmed: int, instructor=None) -> ClassOut:
    return ClassOut(
        id=occurrence.id,
        name=occurrence.name,
        category=occurrence.category,
        instructor_id=occurrence.instructor_id,
        instructor_name=instructor.name if instructor else None,
        start_time=occurrence.start_time,
        end_time=occurrence.end_time,
        max_capacity=occurrence.max_capacity,
        recurrence_rule=occurrence.recurrence_rule,
        series_id=occurrence.series_id,
        is_active=occurrence.is_active,
        confirmed_count=confirmed,
        available_slots=capacity.available_slots(occurrence, confirmed),
        occupancy=capacity.occupancy(occurrence, confirmed),
    )


def roster_out(entry: RosterEntry, member=None) -> RosterEntryOut:
    return RosterEntryOut(
        id=entry.id,
        class_occurrence_id=entry.class_occurrence_id,
        member_id=entry.member_id,
        member_name=member.name if member else None,
        member_email=member.email if member else None,
        status=entry.status,
        booked_at=entry.booked_at,
        checked_in_at=entry.checked_in_at,
    )


class SchedulingService:
    def __init__(self, session_factory, publisher: EventPublisher | None = None, clock=utcnow,
                 default_occurrences: int = DEFAULT_OCCURRENCES):
        self.session_factory = session_factory
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.default_occurrences = default_occurrences
        self.class_locks = KeyedLock()
        self.instructor_locks = KeyedLock()

    def class_lock(self, class_id: str):
        return self.class_locks.hold(class_id)

    @contextmanager
    def instructor_and_class_lock(self, class_id: str, instructor_id: str | None = None):
        """
        Hold an instructor lock and then the class lock.

        Without instructor_id the class's current instructor is locked; if the
        class changes hands before the class lock is taken, the locks are retaken.
        """
        while True:
            held = instructor_id or self._instructor_of(class_id)
            with self.instructor_locks.hold(held), self.class_lock(class_id):
                if instructor_id or self._instructor_of(class_id) == held:
                    yield
                    return

    def _instructor_of(self, class_id: str) -> str:
        with self.session_factory() as db:
            return self.fetch_class(db, class_id).instructor_id

    def fetch_class(self, db: Session, class_id: str, for_update: bool = False) -> ClassOccurrence:
        occurrence = crud.get_class(db, class_id, for_update=for_update)
        if occurrence is None:
            raise ClassNotFound(class_id)
        return occurrence

    # Classes

    def _descriptor_for(self, request: CreateClassRequest, start_time: datetime):
        if not request.recurring:
            return None

        if request.recurrence is not None:
            return recurrence.descriptor_for(
                start_time,
                request.recurrence.days_of_week,
                request.recurrence.occurrence_count,
            )

        descriptor = recurrence.parse_descriptor(request.recurrence_rule, start_time, self.default_occurrences)
        if request.occurrences:
            descriptor = dataclasses.replace(descriptor, occurrence_count=max(1, request.occurrences))
        return descriptor

    def create_class(self, request: CreateClassRequest) -> list[ClassOut]:
        start_time, end_time = _whole_seconds(as_utc(request.start_time)), _whole_seconds(as_utc(request.end_time))
        validate_window(start_time, end_time)
        validate_capacity(request.max_capacity)

        descriptor = self._descriptor_for(request, start_time)
        if descriptor is not None:
            slots = recurrence.expand(descriptor, start_time, end_time)
            rule, series_id = descriptor.to_rule(), new_id()
        else:
            slots = [(start_time, end_time)]
            rule, series_id = None, None

        now = self.clock()
        with self.instructor_locks.hold(request.instructor_id):
            with self.session_factory() as db:
                for slot_start, slot_end in slots:
                    conflict = crud.get_conflicting_class(db, request.instructor_id, slot_start, slot_end)
                    if conflict:
                        raise InstructorConflict(request.instructor_id, conflict.id)

                occurrences = [
                    ClassOccurrence(
                        id=new_id(),
                        name=request.name,
                        category=request.category,
                        instructor_id=request.instructor_id,
                        start_time=slot_start,
                        end_time=slot_end,
                        max_capacity=request.max_capacity,
                        recurrence_rule=rule,
                        series_id=series_id,
                        is_active=True,
                        created_at=now,
                        updated_at=now,
                    )
                    for slot_start, slot_end in slots
                ]
                db.add_all(occurrences)
                db.commit()

                instructor = crud.get_instructor(db, request.instructor_id)
                created = [class_out(o, 0, instructor) for o in occurrences]

        logger.info(f"Created {len(created)} occurrence(s) of {request.name!r} for instructor {request.instructor_id}")
        self.publisher.class_event(
            "class_created",
            class_ids=[c.id for c in created],
            series_id=series_id,
            name=request.name,
            instructor_id=request.instructor_id,
            start_time=created[0].start_time,
        )
        return created

    def get_class(self, class_id: str) -> ClassOut:
        with self.session_factory() as db:
            occurrence = self.fetch_class(db, class_id)
            return class_out(
                occurrence,
                crud.count_confirmed(db, class_id),
                crud.get_instructor(db, occurrence.instructor_id),
            )

    def list_classes(self, start: datetime, end: datetime, include_inactive: bool = False,
                     instructor_id: str | None = None, category: str | None = None) -> list[ClassOut]:
        start, end = as_utc(start), as_utc(end)
        validate_window(start, end)

        with self.session_factory() as db:
            occurrences = crud.get_classes_in_window(db, start, end, include_inactive, instructor_id, category)
            counts = crud.count_confirmed_by_class(db, [o.id for o in occurrences])
            instructors = crud.get_instructors(db, list({o.instructor_id for o in occurrences}))
            return [
                class_out(o, counts.get(o.id, 0), instructors.get(o.instructor_id))
                for o in occurrences
            ]

    def list_window(self, anchor: date | datetime, view: str = "week", **filters) -> list[ClassOut]:
        start, end = window_for(anchor, view)
        return self.list_classes(start, end, **filters)

    def update_class(self, class_id: str, request: UpdateClassRequest) -> ClassOut:
        now = self.clock()
        if request.instructor_id:
            locks = self.instructor_and_class_lock(class_id, request.instructor_id)
        else:
            locks = self.class_lock(class_id)

        with locks:
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)
                confirmed = crud.count_confirmed(db, class_id)

                if request.max_capacity is not None:
                    validate_capacity(request.max_capacity)
                    if request.max_capacity < confirmed and not request.override_capacity_check:
                        raise CapacityBelowRoster(request.max_capacity, confirmed)

                if request.instructor_id and request.instructor_id != occurrence.instructor_id:
                    conflict = crud.get_conflicting_class(
                        db, request.instructor_id, occurrence.start_time, occurrence.end_time,
                        exclude_class_id=occurrence.id,
                    )
                    if conflict:
                        raise InstructorConflict(request.instructor_id, conflict.id)

                for field in ("name", "category", "instructor_id", "max_capacity"):
                    value = getattr(request, field)
                    if value is not None:
                        setattr(occurrence, field, value)
                occurrence.updated_at = now

                promoted = self._promote_waitlist(db, occurrence, now)
                db.commit()

                result = class_out(
                    occurrence,
                    crud.count_confirmed(db, class_id),
                    crud.get_instructor(db, occurrence.instructor_id),
                )

        logger.info(f"Updated class {class_id}")
        self.publisher.class_event("class_updated", class_id=class_id, name=result.name)
        self._announce_promotions(promoted)
        return result

    def reschedule_class(self, class_id: str, new_start: datetime, new_end: datetime) -> ClassOut:
        new_start, new_end = _whole_seconds(as_utc(new_start)), _whole_seconds(as_utc(new_end))
        validate_window(new_start, new_end)

        now = self.clock()
        with self.instructor_and_class_lock(class_id):
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)

                conflict = crud.get_conflicting_class(
                    db, occurrence.instructor_id, new_start, new_end, exclude_class_id=occurrence.id,
                )
                if conflict:
                    raise InstructorConflict(occurrence.instructor_id, conflict.id)

                occurrence.start_time = new_start
                occurrence.end_time = new_end
                occurrence.updated_at = now
                db.commit()

                members = self._confirmed_member_ids(db, class_id)
                result = class_out(occurrence, len(members), crud.get_instructor(db, occurrence.instructor_id))

        logger.info(f"Rescheduled class {class_id} to {new_start} - {new_end}")
        self.publisher.class_event(
            "class_rescheduled",
            class_id=class_id,
            name=result.name,
            start_time=new_start,
            end_time=new_end,
            member_ids=members,
        )
        return result

    def delete_class(self, class_id: str) -> None:
        now = self.clock()
        with self.class_lock(class_id):
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)
                if not occurrence.is_active:
                    return

                occurrence.is_active = False
                occurrence.updated_at = now
                db.commit()
                name = occurrence.name
                members = self._confirmed_member_ids(db, class_id)

        logger.info(f"Deactivated class {class_id}")
        self.publisher.class_event("class_cancelled", class_id=class_id, name=name, member_ids=members)

    def _confirmed_member_ids(self, db: Session, class_id: str) -> list[str]:
        return [e.member_id for e in crud.get_roster(db, class_id) if capacity.is_confirmed(e.status)]

    # Roster

    def get_roster(self, class_id: str, include_cancelled: bool = True) -> list[RosterEntryOut]:
        with self.session_factory() as db:
            self.fetch_class(db, class_id)
            entries = crud.get_roster(db, class_id)
            if not include_cancelled:
                entries = [e for e in entries if e.status != RosterStatus.CANCELLED]
            members = crud.get_members(db, [e.member_id for e in entries])
            return [roster_out(e, members.get(e.member_id)) for e in entries]

    def _book(self, db: Session, occurrence: ClassOccurrence, member_id: str, now: datetime) -> RosterEntry:
        """Create or reopen a BOOKED entry. The caller holds the class lock."""
        if not occurrence.is_active:
            raise ClassInactive(occurrence.id)

        entry = crud.get_roster_entry(db, occurrence.id, member_id)
        if entry is not None and capacity.is_confirmed(entry.status):
            raise AlreadyBooked(occurrence.id, member_id)

        if not capacity.can_admit(occurrence, crud.count_confirmed(db, occurrence.id)):
            raise ClassFull(occurrence.id)

        if entry is None:
            entry = RosterEntry(
                id=new_id(),
                class_occurrence_id=occurrence.id,
                member_id=member_id,
                status=RosterStatus.BOOKED,
                booked_at=now,
                updated_at=now,
            )
            db.add(entry)
        else:
            roster.reopen(entry, now)

        waiting = crud.get_waitlist_entry(db, occurrence.id, member_id)
        if waiting is not None and waiting.status == WaitlistStatus.WAITING:
            waiting.status = WaitlistStatus.PROMOTED
            waiting.promoted_at = now

        db.flush()
        return entry

    def add_member_to_roster(self, class_id: str, member_id: str) -> RosterEntryOut:
        now = self.clock()
        with self.class_lock(class_id):
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)
                entry = self._book(db, occurrence, member_id, now)
                try:
                    db.commit()
                except IntegrityError:
                    # another instance booked the same member first
                    db.rollback()
                    raise AlreadyBooked(class_id, member_id)

                result = roster_out(entry, crud.get_members(db, [member_id]).get(member_id))
                name = occurrence.name

        logger.info(f"Member {member_id} booked class {class_id}")
        self.publisher.class_event("member_booked", class_id=class_id, name=name, member_id=member_id)
        return result

    def admit_for_attendance(self, db: Session, occurrence: ClassOccurrence, member_id: str, now: datetime) -> RosterEntry:
        """Mark a member as attended, booking a seat first when needed. The caller holds the class lock."""
        entry = crud.get_roster_entry(db, occurrence.id, member_id)
        if entry is None or entry.status == RosterStatus.CANCELLED:
            entry = self._book(db, occurrence, member_id, now)

        roster.transition(entry, RosterStatus.ATTENDED, occurrence, now)
        db.flush()
        return entry

    def update_roster_status(self, class_id: str, member_id: str, target: RosterStatus) -> RosterEntryOut:
        target = RosterStatus(target)
        now = self.clock()
        with self.class_lock(class_id):
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)
                entry = crud.get_roster_entry(db, class_id, member_id)
                if entry is None:
                    raise RosterEntryNotFound(class_id, member_id)

                changed = roster.transition(entry, target, occurrence, now)
                promoted = []
                if changed and target == RosterStatus.CANCELLED:
                    promoted = self._promote_waitlist(db, occurrence, now)
                db.commit()

                result = roster_out(entry, crud.get_members(db, [member_id]).get(member_id))
                name = occurrence.name

        if changed:
            logger.info(f"Roster entry of {member_id} in class {class_id} is now {target.value}")
            self.publisher.class_event(
                "roster_status_changed",
                class_id=class_id,
                name=name,
                member_id=member_id,
                status=target.value,
            )
        self._announce_promotions(promoted)
        return result

    def remove_member_from_roster(self, class_id: str, member_id: str) -> RosterEntryOut:
        return self.update_roster_status(class_id, member_id, RosterStatus.CANCELLED)

    # Waitlist

    def _promote_waitlist(self, db: Session, occurrence: ClassOccurrence, now: datetime) -> list[WaitlistEntryOut]:
        """Move waiting members onto the roster while seats are free and the class has not started."""
        if not occurrence.is_active or now >= occurrence.start_time:
            return []

        db.flush()
        promoted = []
        for waiting in crud.get_waiting(db, occurrence.id):
            if not capacity.can_admit(occurrence, crud.count_confirmed(db, occurrence.id)):
                break

            entry = crud.get_roster_entry(db, occurrence.id, waiting.member_id)
            if entry is None:
                db.add(RosterEntry(
                    id=new_id(),
                    class_occurrence_id=occurrence.id,
                    member_id=waiting.member_id,
                    status=RosterStatus.BOOKED,
                    booked_at=now,
                    updated_at=now,
                ))
            elif entry.status == RosterStatus.CANCELLED:
                roster.reopen(entry, now)

            waiting.status = WaitlistStatus.PROMOTED
            waiting.promoted_at = now
            db.flush()
            promoted.append(WaitlistEntryOut.model_validate(waiting))

        return promoted

    def _announce_promotions(self, promoted: list[WaitlistEntryOut]) -> None:
        for entry in promoted:
            logger.info(f"Promoted {entry.member_id} from the waitlist of {entry.class_occurrence_id}")
            self.publisher.class_event(
                "waitlist_promoted",
                class_id=entry.class_occurrence_id,
                member_id=entry.member_id,
            )

    def join_waitlist(self, class_id: str, member_id: str) -> WaitlistEntryOut:
        now = self.clock()
        with self.class_lock(class_id):
            with self.session_factory() as db:
                occurrence = self.fetch_class(db, class_id, for_update=True)
                if not occurrence.is_active:
                    raise ClassInactive(class_id)

                entry = crud.get_roster_entry(db, class_id, member_id)
                if entry is not None and capacity.is_confirmed(entry.status):
                    raise AlreadyBooked(class_id, member_id)

                if capacity.can_admit(occurrence, crud.count_confirmed(db, class_id)):
                    raise ClassNotFull(class_id)

                waiting = crud.get_waitlist_entry(db, class_id, member_id)
                if waiting is not None and waiting.status == WaitlistStatus.WAITING:
                    return WaitlistEntryOut.model_validate(waiting)

                position = crud.next_waitlist_position(db, class_id)
                if waiting is None:
                    waiting = WaitlistEntry(
                        id=new_id(),
                        class_occurrence_id=class_id,
                        member_id=member_id,
                        position=position,
                        status=WaitlistStatus.WAITING,
                        created_at=now,
                    )
                    db.add(waiting)
                else:
                    waiting.position = position
                    waiting.status = WaitlistStatus.WAITING
                    waiting.created_at = now
                    waiting.promoted_at = None
                db.commit()
                result = WaitlistEntryOut.model_validate(waiting)

        logger.info(f"Member {member_id} joined the waitlist of {class_id} at position {result.position}")
        return result

    def leave_waitlist(self, class_id: str, member_id: str) -> WaitlistEntryOut:
        with self.class_lock(class_id):
            with self.session_factory() as db:
                waiting = crud.get_waitlist_entry(db, class_id, member_id)
                if waiting is None or waiting.status != WaitlistStatus.WAITING:
                    raise WaitlistEntryNotFound(class_id, member_id)

                waiting.status = WaitlistStatus.CANCELLED
                db.commit()
                return WaitlistEntryOut.model_validate(waiting)

    def get_waitlist(self, class_id: str) -> list[WaitlistEntryOut]:
        with self.session_factory() as db:
            self.fetch_class(db, class_id)
            return [WaitlistEntryOut.model_validate(w) for w in crud.get_waiting(db, class_id)]
