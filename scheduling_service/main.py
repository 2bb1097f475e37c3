import logging
import threading
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from scheduling_service.attendance import AttendanceGate
from scheduling_service.config import (
    KAFKA_BROKER,
    LOG_LEVEL,
    MEMBERSHIP_SERVICE_TIMEOUT,
    MEMBERSHIP_SERVICE_URL,
)
from scheduling_service.consumer import build_consumer, consume_membership_events
from scheduling_service.database import SessionLocal, init_db
from scheduling_service.errors import SchedulingError
from scheduling_service.events import EventPublisher, build_producer
from scheduling_service.membership import HttpMembershipOracle, LocalMembershipOracle
from scheduling_service.models import AttendanceType
from scheduling_service.scheduling import SchedulingService
from scheduling_service.schemas import (
    AttendanceReport,
    AttendanceSessionOut,
    CheckInRequest,
    ClassOut,
    CreateClassRequest,
    RescheduleRequest,
    RosterEntryOut,
    RosterMemberRequest,
    RosterStatusRequest,
    UpdateClassRequest,
    WaitlistEntryOut,
)

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

publisher = EventPublisher()
scheduling = SchedulingService(SessionLocal, publisher)

if MEMBERSHIP_SERVICE_URL:
    oracle = HttpMembershipOracle(MEMBERSHIP_SERVICE_URL, MEMBERSHIP_SERVICE_TIMEOUT)
else:
    oracle = LocalMembershipOracle(SessionLocal)

gate = AttendanceGate(SessionLocal, scheduling, oracle, publisher)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    if KAFKA_BROKER:
        publisher.producer = build_producer(KAFKA_BROKER)

        def run_consumer():
            consume_membership_events(build_consumer(KAFKA_BROKER), SessionLocal)

        thread = threading.Thread(target=run_consumer, daemon=True)
        thread.start()
    else:
        logger.info("KAFKA_BROKER not set, events are only logged")

    yield
    publisher.close()


app = FastAPI(title="Gym Scheduling Service", lifespan=lifespan)


def get_scheduling() -> SchedulingService:
    return scheduling


def get_gate() -> AttendanceGate:
    return gate


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/classes", response_model=List[ClassOut], status_code=201)
def create_class(req: CreateClassRequest, service: SchedulingService = Depends(get_scheduling)):
    return service.create_class(req)


@app.get("/classes", response_model=List[ClassOut])
def list_classes(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    day: Optional[date] = Query(None, alias="date"),
    view: Literal["day", "week"] = "week",
    include_inactive: bool = False,
    instructor_id: Optional[str] = None,
    category: Optional[str] = None,
    service: SchedulingService = Depends(get_scheduling),
):
    filters = {"include_inactive": include_inactive, "instructor_id": instructor_id, "category": category}
    if start is not None and end is not None:
        return service.list_classes(start, end, **filters)
    return service.list_window(day or service.clock().date(), view, **filters)


@app.get("/classes/{class_id}", response_model=ClassOut)
def get_class(class_id: str, service: SchedulingService = Depends(get_scheduling)):
    return service.get_class(class_id)


@app.patch("/classes/{class_id}", response_model=ClassOut)
def update_class(class_id: str, req: UpdateClassRequest, service: SchedulingService = Depends(get_scheduling)):
    return service.update_class(class_id, req)


@app.post("/classes/{class_id}/reschedule", response_model=ClassOut)
def reschedule_class(class_id: str, req: RescheduleRequest, service: SchedulingService = Depends(get_scheduling)):
    return service.reschedule_class(class_id, req.start_time, req.end_time)


@app.delete("/classes/{class_id}")
def delete_class(class_id: str, service: SchedulingService = Depends(get_scheduling)):
    service.delete_class(class_id)
    return {"message": "Class deactivated"}


@app.get("/classes/{class_id}/roster", response_model=List[RosterEntryOut])
def get_roster(class_id: str, include_cancelled: bool = True, service: SchedulingService = Depends(get_scheduling)):
    return service.get_roster(class_id, include_cancelled)


@app.post("/classes/{class_id}/roster", response_model=RosterEntryOut, status_code=201)
def add_member(class_id: str, req: RosterMemberRequest, service: SchedulingService = Depends(get_scheduling)):
    return service.add_member_to_roster(class_id, req.member_id)


@app.delete("/classes/{class_id}/roster/{member_id}", response_model=RosterEntryOut)
def remove_member(class_id: str, member_id: str, service: SchedulingService = Depends(get_scheduling)):
    return service.remove_member_from_roster(class_id, member_id)


@app.put("/classes/{class_id}/roster/{member_id}/status", response_model=RosterEntryOut)
def update_roster_status(class_id: str, member_id: str, req: RosterStatusRequest,
                         service: SchedulingService = Depends(get_scheduling)):
    return service.update_roster_status(class_id, member_id, req.status)


@app.get("/classes/{class_id}/waitlist", response_model=List[WaitlistEntryOut])
def get_waitlist(class_id: str, service: SchedulingService = Depends(get_scheduling)):
    return service.get_waitlist(class_id)


@app.post("/classes/{class_id}/waitlist", response_model=WaitlistEntryOut, status_code=201)
def join_waitlist(class_id: str, req: RosterMemberRequest, service: SchedulingService = Depends(get_scheduling)):
    return service.join_waitlist(class_id, req.member_id)


@app.delete("/classes/{class_id}/waitlist/{member_id}", response_model=WaitlistEntryOut)
def leave_waitlist(class_id: str, member_id: str, service: SchedulingService = Depends(get_scheduling)):
    return service.leave_waitlist(class_id, member_id)


@app.post("/attendance/check-in", response_model=AttendanceSessionOut, status_code=201)
def check_in(req: CheckInRequest, gate: AttendanceGate = Depends(get_gate)):
    return gate.check_in(req.member_id, req.type, req.class_id)


@app.post("/attendance/{session_id}/check-out", response_model=AttendanceSessionOut)
def check_out(session_id: str, gate: AttendanceGate = Depends(get_gate)):
    return gate.check_out(session_id)


@app.get("/attendance", response_model=List[AttendanceSessionOut])
def list_attendance(
    member_id: Optional[str] = None,
    type: Optional[AttendanceType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    gate: AttendanceGate = Depends(get_gate),
):
    return gate.list_sessions(member_id, type, start, end, limit, offset)


@app.get("/attendance/open/{member_id}", response_model=Optional[AttendanceSessionOut])
def open_session(member_id: str, gate: AttendanceGate = Depends(get_gate)):
    return gate.get_open_session(member_id)


@app.get("/attendance/report", response_model=AttendanceReport)
def attendance_report(member_id: str, start: datetime, end: Optional[datetime] = None,
                      gate: AttendanceGate = Depends(get_gate)):
    return gate.report(member_id, start, end or gate.clock())
