from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scheduling_service.config import DEFAULT_OCCURRENCES
from scheduling_service.models import AttendanceType, RosterStatus, WaitlistStatus


class RecurrenceRequest(BaseModel):
    days_of_week: List[str] = []
    occurrence_count: int = Field(DEFAULT_OCCURRENCES, ge=1)


class CreateClassRequest(BaseModel):
    name: str
    category: str = "OTHER"
    instructor_id: str
    start_time: datetime
    end_time: datetime
    max_capacity: int
    recurrence: Optional[RecurrenceRequest] = None
    recurrence_rule: Optional[str] = None
    occurrences: Optional[int] = None

    @property
    def recurring(self) -> bool:
        return self.recurrence is not None or bool(self.recurrence_rule)


class UpdateClassRequest(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    instructor_id: Optional[str] = None
    max_capacity: Optional[int] = None
    override_capacity_check: bool = False


class RescheduleRequest(BaseModel):
    start_time: datetime
    end_time: datetime


class RosterMemberRequest(BaseModel):
    member_id: str


class RosterStatusRequest(BaseModel):
    status: RosterStatus


class CheckInRequest(BaseModel):
    member_id: str
    type: AttendanceType = AttendanceType.GYM_VISIT
    class_id: Optional[str] = None


class ClassOut(BaseModel):
    id: str
    name: str
    category: str
    instructor_id: str
    instructor_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    max_capacity: int
    recurrence_rule: Optional[str] = None
    series_id: Optional[str] = None
    is_active: bool
    confirmed_count: int
    available_slots: int
    occupancy: int


class RosterEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    class_occurrence_id: str
    member_id: str
    member_name: Optional[str] = None
    member_email: Optional[str] = None
    status: RosterStatus
    booked_at: datetime
    checked_in_at: Optional[datetime] = None


class WaitlistEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    class_occurrence_id: str
    member_id: str
    position: int
    status: WaitlistStatus
    created_at: datetime
    promoted_at: Optional[datetime] = None


class AttendanceSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    member_id: str
    type: AttendanceType
    class_occurrence_id: Optional[str] = None
    check_in_time: datetime
    check_out_time: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None


class HourCount(BaseModel):
    hour: int
    count: int


class DayCount(BaseModel):
    day_of_week: str
    count: int


class AttendanceReport(BaseModel):
    member_id: str
    member_name: Optional[str] = None
    start: datetime
    end: datetime
    total_gym_visits: int
    total_class_attendances: int
    total_visits: int
    average_visits_per_week: float
    peak_visit_hours: List[HourCount]
    visits_by_day_of_week: List[DayCount]
