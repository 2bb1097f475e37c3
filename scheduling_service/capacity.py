"""Seat accounting for a class occurrence. Capacity is always derived from the live roster, never stored."""
from scheduling_service.models import RosterStatus

CONFIRMED_STATUSES = (RosterStatus.BOOKED, RosterStatus.ATTENDED)


def is_confirmed(status) -> bool:
    return status in CONFIRMED_STATUSES


def occupancy(occurrence, confirmed_count: int) -> int:
    if occurrence.max_capacity <= 0:
        return 0
    percentage = round(confirmed_count / occurrence.max_capacity * 100)
    return min(max(percentage, 0), 100)


def can_admit(occurrence, confirmed_count: int) -> bool:
    return confirmed_count < occurrence.max_capacity


def available_slots(occurrence, confirmed_count: int) -> int:
    return max(occurrence.max_capacity - confirmed_count, 0)
