"""
Firestore document models using Python dataclasses.

Each model includes:
  - An `id` field for the Firestore document ID
  - A `to_dict()` instance method for serialization to Firestore
  - A `from_dict(data, doc_id)` classmethod for deserialization
  - A `to_api()` method producing JSON-safe output for the HTTP layer

Datetime fields are kept as timezone-aware UTC datetime objects since
Firestore handles them natively and returns them in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


LESSON_TYPE_ONE = "one"
LESSON_TYPE_GROUP = "group"
LESSON_TYPE_DEMO = "demo"
LESSON_TYPES = (LESSON_TYPE_ONE, LESSON_TYPE_GROUP, LESSON_TYPE_DEMO)

STATUS_SCHEDULED = "Scheduled"
STATUS_CANCELLED = "Cancelled"
STATUS_COMPLETED = "Completed"
LESSON_STATUSES = (STATUS_SCHEDULED, STATUS_CANCELLED, STATUS_COMPLETED)

PROGRAM_ONE_ON_ONE = "One-on-one"
PROGRAM_GROUP = "Group"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_datetime(value) -> Optional[datetime]:
    """Convert a value to an aware UTC datetime. Accepts datetime objects,
    ISO-format strings, and Firestore DatetimeWithNanoseconds objects."""
    if value is None:
        return None
    if isinstance(value, str):
        # Handle ISO format strings (with or without trailing Z)
        value = value.replace("Z", "+00:00")
        try:
            value = datetime.fromisoformat(value)
        except (ValueError, TypeError):
            return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ===========================================================================
# 1. Lesson
# ===========================================================================

@dataclass
class Lesson:
    id: Optional[str] = None
    type: str = LESSON_TYPE_ONE
    student_id: Optional[str] = None      # absent only for demo lessons
    group_id: Optional[str] = None        # set once linked to a group occurrence
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: str = STATUS_SCHEDULED
    notes: Optional[str] = None
    demo_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        # Optional links are left out rather than stored as null so that
        # "unlinked" means the same thing for new and legacy documents.
        data = {
            "type": self.type,
            "start": self.start,
            "end": self.end,
            "status": self.status,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }
        if self.student_id:
            data["student_id"] = self.student_id
        if self.group_id:
            data["group_id"] = self.group_id
        if self.notes is not None:
            data["notes"] = self.notes
        if self.demo_name:
            data["demo_name"] = self.demo_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Lesson:
        return cls(
            id=doc_id or data.get("id"),
            type=data.get("type", LESSON_TYPE_ONE),
            student_id=data.get("student_id"),
            group_id=data.get("group_id"),
            start=parse_datetime(data.get("start")),
            end=parse_datetime(data.get("end")),
            status=data.get("status", STATUS_SCHEDULED),
            notes=data.get("notes"),
            demo_name=data.get("demo_name"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "student_id": self.student_id,
            "group_id": self.group_id,
            "start": _isoformat(self.start),
            "end": _isoformat(self.end),
            "status": self.status,
            "notes": self.notes,
            "demo_name": self.demo_name,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


# ===========================================================================
# 2. Group
# ===========================================================================

@dataclass
class Group:
    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    member_ids: List[str] = field(default_factory=list)
    active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "member_ids": unique_ids(self.member_ids),
            "active": self.active,
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Group:
        return cls(
            id=doc_id or data.get("id"),
            name=(data.get("name") or "").strip(),
            description=data.get("description"),
            member_ids=unique_ids(data.get("member_ids") or []),
            active=data.get("active", True),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "member_ids": list(self.member_ids),
            "active": self.active,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


def unique_ids(ids) -> List[str]:
    """Deduplicate ids keeping first-seen order (set-add semantics)."""
    seen = set()
    result = []
    for value in ids:
        key = str(value)
        if key not in seen:
            seen.add(key)
            result.append(key)
    return result


# ===========================================================================
# 3. Student
# ===========================================================================

@dataclass
class DefaultSlot:
    weekday: int = 0     # 0=Sunday .. 6=Saturday
    time: str = "00:00"  # "HH:MM", wall clock in the student's timezone

    @property
    def hour_minute(self):
        hour, minute = (int(part) for part in self.time.split(":", 1))
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"invalid slot time {self.time!r}")
        return hour, minute

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[DefaultSlot]:
        if not data or data.get("weekday") is None or not data.get("time"):
            return None
        return cls(weekday=int(data["weekday"]), time=str(data["time"]))


@dataclass
class Student:
    id: Optional[str] = None
    name: str = ""
    user_id: Optional[str] = None         # portal account that owns the student
    program: str = PROGRAM_ONE_ON_ONE
    active: bool = True
    timezone: Optional[str] = None
    default_slot: Optional[DefaultSlot] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_group_program(self) -> bool:
        return self.program == PROGRAM_GROUP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "user_id": self.user_id,
            "program": self.program,
            "active": self.active,
            "timezone": self.timezone,
            "default_slot": (
                {"weekday": self.default_slot.weekday, "time": self.default_slot.time}
                if self.default_slot else None
            ),
            "created_at": self.created_at or _now(),
            "updated_at": self.updated_at or _now(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> Student:
        return cls(
            id=doc_id or data.get("id"),
            name=data.get("name", ""),
            user_id=data.get("user_id"),
            program=data.get("program", PROGRAM_ONE_ON_ONE),
            active=data.get("active", True),
            timezone=data.get("timezone"),
            default_slot=DefaultSlot.from_dict(data.get("default_slot")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


# ===========================================================================
# 4. NotificationSettings
# ===========================================================================

@dataclass(frozen=True)
class NotificationSettings:
    """Studio-wide reminder configuration, passed explicitly to scheduling code."""
    enabled: bool = True
    lead_minutes: int = 24 * 60
    quiet_start: int = 22
    quiet_end: int = 7

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "lead_minutes": self.lead_minutes,
            "quiet_hours": {"start": self.quiet_start, "end": self.quiet_end},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> NotificationSettings:
        defaults = cls()
        if not data:
            return defaults
        quiet = data.get("quiet_hours") or {}
        return cls(
            enabled=data.get("enabled", defaults.enabled),
            lead_minutes=data.get("lead_minutes", defaults.lead_minutes),
            quiet_start=quiet.get("start", defaults.quiet_start),
            quiet_end=quiet.get("end", defaults.quiet_end),
        )
