"""
Roster status transitions for one member in one class occurrence.

BOOKED is the only state with outgoing transitions. ATTENDED, NO_SHOW and
CANCELLED are final for the entry; a cancelled entry can only come back
through reopen(), which is what booking the same class again does.
"""
from datetime import datetime

from scheduling_service.errors import InvalidTransition
from scheduling_service.models import RosterStatus

TRANSITIONS = {
    RosterStatus.BOOKED: {RosterStatus.ATTENDED, RosterStatus.NO_SHOW, RosterStatus.CANCELLED},
    RosterStatus.ATTENDED: set(),
    RosterStatus.NO_SHOW: set(),
    RosterStatus.CANCELLED: set(),
}


def check_transition(entry, target: RosterStatus, occurrence, now: datetime) -> bool:
    """Validate a transition without applying it. Returns False for a no-op."""
    target = RosterStatus(target)
    current = RosterStatus(entry.status)

    if current == target:
        return False

    if target not in TRANSITIONS[current]:
        raise InvalidTransition(current, target)

    if target == RosterStatus.NO_SHOW and now < occurrence.end_time:
        raise InvalidTransition(current, target, "the class has not ended yet")

    if target == RosterStatus.CANCELLED and now >= occurrence.start_time:
        raise InvalidTransition(current, target, "the class has already started")

    return True


def transition(entry, target: RosterStatus, occurrence, now: datetime) -> bool:
    """Apply a transition to entry. Returns False when the entry already had the target status."""
    if not check_transition(entry, target, occurrence, now):
        return False

    target = RosterStatus(target)
    entry.status = target
    entry.updated_at = now
    if target == RosterStatus.ATTENDED:
        entry.checked_in_at = now
    return True


def reopen(entry, now: datetime) -> None:
    current = RosterStatus(entry.status)
    if current != RosterStatus.CANCELLED:
        raise InvalidTransition(current, RosterStatus.BOOKED, "only cancelled entries can be booked again")

    entry.status = RosterStatus.BOOKED
    entry.booked_at = now
    entry.checked_in_at = None
    entry.updated_at = now
