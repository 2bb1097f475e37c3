"""
Membership status lookups.

The engine only ever asks one question: does this member hold a valid
membership at a given instant? Two answers are available: the local
projection kept up to date from the membership service's Kafka events, and
a direct HTTP call to the membership service.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, time

import httpx
from jsonschema import ValidationError, validate
from sqlalchemy.orm import Session

from scheduling_service import crud
from scheduling_service.clock import as_utc
from scheduling_service.errors import MembershipServiceUnavailable

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "extended")

membership_status_schema = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["member_id", "status"],
    "properties": {
        "member_id": {"type": "string", "minLength": 1},
        "status": {"type": "string", "minLength": 1},
        "expiration_date": {"type": ["string", "null"]},
    },
    "additionalProperties": True,
}


def is_active(status: str | None, expires_at: datetime | None, at_time: datetime) -> bool:
    """A membership expiring at T is still valid at T."""
    if status not in ACTIVE_STATUSES or expires_at is None:
        return False
    return expires_at >= at_time


def parse_expiration(value: str | None) -> datetime | None:
    """Dates without a time mean the membership lasts until the end of that day."""
    if not value:
        return None
    if len(value) == 10:
        return datetime.combine(date.fromisoformat(value), time.max)
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


class MembershipOracle(ABC):
    @abstractmethod
    def is_membership_active(self, member_id: str, at_time: datetime) -> bool:
        pass


class LocalMembershipOracle(MembershipOracle):
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def is_membership_active(self, member_id: str, at_time: datetime) -> bool:
        with self.session_factory() as db:
            membership = crud.get_membership(db, member_id)
            if membership is None:
                return False
            return is_active(membership.status, membership.expires_at, at_time)


class HttpMembershipOracle(MembershipOracle):
    def __init__(self, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.Client(timeout=timeout)

    def is_membership_active(self, member_id: str, at_time: datetime) -> bool:
        try:
            response = self.client.get(f"{self.base_url}/members/{member_id}/membership")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            data = response.json()
        except httpx.RequestError as error:
            raise MembershipServiceUnavailable(str(error)) from error
        except httpx.HTTPStatusError as error:
            raise MembershipServiceUnavailable(f"status {error.response.status_code}") from error
        except ValueError as error:
            raise MembershipServiceUnavailable(f"invalid response body: {error}") from error

        if not isinstance(data, dict):
            raise MembershipServiceUnavailable("invalid response body: expected an object")

        try:
            expires_at = parse_expiration(data.get("expiration_date"))
        except (TypeError, ValueError) as error:
            raise MembershipServiceUnavailable(f"invalid expiration_date: {error}") from error

        return is_active(data.get("status"), expires_at, at_time)


def apply_membership_event(db: Session, event: dict):
    """Update the local projection from a membership-status event. Returns None for invalid events."""
    try:
        validate(event, membership_status_schema)
        expires_at = parse_expiration(event.get("expiration_date"))
    except (ValidationError, ValueError) as error:
        logger.warning(f"Ignoring invalid membership event {event}: {error}")
        return None

    membership = crud.upsert_membership(db, event["member_id"], event["status"], expires_at)
    logger.info(f"Membership of {membership.member_id} is now {membership.status} until {membership.expires_at}")
    return membership
