import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")

KAFKA_BROKER = os.getenv("KAFKA_BROKER")
CLASS_EVENTS_TOPIC = os.getenv("CLASS_EVENTS_TOPIC", "class-events")
ATTENDANCE_EVENTS_TOPIC = os.getenv("ATTENDANCE_EVENTS_TOPIC", "attendance-events")
MEMBERSHIP_STATUS_TOPIC = os.getenv("MEMBERSHIP_STATUS_TOPIC", "membership-status")
KAFKA_GROUP_ID = os.getenv("KAFKA_GROUP_ID", "scheduling-group")

# When set, membership checks go to the membership service instead of the local projection
MEMBERSHIP_SERVICE_URL = os.getenv("MEMBERSHIP_SERVICE_URL")
MEMBERSHIP_SERVICE_TIMEOUT = float(os.getenv("MEMBERSHIP_SERVICE_TIMEOUT", "5.0"))

DEFAULT_OCCURRENCES = int(os.getenv("DEFAULT_OCCURRENCES", "12"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
