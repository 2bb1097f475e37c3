"""
Error kinds raised by the scheduling engine.

Every expected, recoverable condition has its own exception class with an
HTTP status and a machine readable code. Persistence failures are not
wrapped here; they propagate as SQLAlchemy errors.
"""


class SchedulingError(Exception):
    status_code = 400
    code = "SCHEDULING_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code, **self.details}


class InvalidTimeWindow(SchedulingError):
    code = "INVALID_TIME_WINDOW"

    def __init__(self, start_time, end_time):
        super().__init__(
            "Start time must be before end time.",
            start_time=str(start_time),
            end_time=str(end_time),
        )


class InvalidCapacity(SchedulingError):
    code = "INVALID_CAPACITY"


class CapacityBelowRoster(InvalidCapacity):
    status_code = 409
    code = "CAPACITY_BELOW_ROSTER"

    def __init__(self, requested: int, confirmed: int):
        super().__init__(
            f"Capacity {requested} is below the {confirmed} confirmed roster entries.",
            requested=requested,
            confirmed=confirmed,
        )


class ClassNotFound(SchedulingError):
    status_code = 404
    code = "CLASS_NOT_FOUND"

    def __init__(self, class_id: str):
        super().__init__(f"Class occurrence {class_id} not found", class_id=class_id)


class ClassInactive(SchedulingError):
    code = "CLASS_INACTIVE"

    def __init__(self, class_id: str):
        super().__init__(f"Class occurrence {class_id} is not active", class_id=class_id)


class InstructorConflict(SchedulingError):
    status_code = 409
    code = "INSTRUCTOR_CONFLICT"

    def __init__(self, instructor_id: str, conflicting_class_id: str):
        super().__init__(
            "Instructor has a scheduling conflict at this time",
            instructor_id=instructor_id,
            conflicting_class_id=conflicting_class_id,
        )


class ClassFull(SchedulingError):
    status_code = 409
    code = "CLASS_FULL"

    def __init__(self, class_id: str):
        super().__init__("Class is at full capacity", class_id=class_id)


class ClassNotFull(SchedulingError):
    status_code = 409
    code = "CLASS_NOT_FULL"

    def __init__(self, class_id: str):
        super().__init__("Class still has free slots, book it directly", class_id=class_id)


class AlreadyBooked(SchedulingError):
    status_code = 409
    code = "ALREADY_BOOKED"

    def __init__(self, class_id: str, member_id: str):
        super().__init__(
            "Member already has a booking for this class",
            class_id=class_id,
            member_id=member_id,
        )


class RosterEntryNotFound(SchedulingError):
    status_code = 404
    code = "ROSTER_ENTRY_NOT_FOUND"

    def __init__(self, class_id: str, member_id: str):
        super().__init__(
            "Member is not on the roster of this class",
            class_id=class_id,
            member_id=member_id,
        )


class WaitlistEntryNotFound(SchedulingError):
    status_code = 404
    code = "WAITLIST_ENTRY_NOT_FOUND"

    def __init__(self, class_id: str, member_id: str):
        super().__init__(
            "Member is not waiting for this class",
            class_id=class_id,
            member_id=member_id,
        )


class InvalidTransition(SchedulingError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, current, requested, reason: str | None = None):
        current = getattr(current, "value", current)
        requested = getattr(requested, "value", requested)
        message = f"Cannot change roster status from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, current=current, requested=requested)
        self.current = current
        self.requested = requested


class NoActiveMembership(SchedulingError):
    status_code = 403
    code = "NO_ACTIVE_MEMBERSHIP"

    def __init__(self, member_id: str):
        super().__init__("Member does not have an active membership", member_id=member_id)


class MembershipServiceUnavailable(SchedulingError):
    status_code = 503
    code = "MEMBERSHIP_SERVICE_UNAVAILABLE"

    def __init__(self, reason: str):
        super().__init__("Membership service is unavailable", reason=reason)


class ClassIdRequired(SchedulingError):
    code = "CLASS_ID_REQUIRED"

    def __init__(self):
        super().__init__("Class occurrence ID is required for class attendance")


class SessionAlreadyOpen(SchedulingError):
    status_code = 409
    code = "SESSION_ALREADY_OPEN"

    def __init__(self, member_id: str, session=None):
        details = {"member_id": member_id}
        if session is not None:
            details["session_id"] = session.id
        super().__init__("Member is already checked in", **details)
        self.session = session


class SessionNotFound(SchedulingError):
    status_code = 404
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Attendance session {session_id} not found", session_id=session_id)


class SessionAlreadyClosed(SchedulingError):
    status_code = 409
    code = "SESSION_ALREADY_CLOSED"

    def __init__(self, session_id: str):
        super().__init__("Already checked out", session_id=session_id)
