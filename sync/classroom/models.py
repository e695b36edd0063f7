"""
Typed views of Google Classroom payloads.

Each `from_api` accepts the raw JSON dict from the discovery client and
either returns a complete record or raises MappingError; partially
understood payloads never reach the store.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from errors import MappingError

ACTIVE_COURSE_STATE = "ACTIVE"


def _require_text(payload: dict, key: str, payload_id: str | None) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MappingError(f"Missing or invalid '{key}'", payload_id=payload_id)
    return value.strip()


def _optional_text(payload: dict, key: str, payload_id: str | None) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MappingError(f"Field '{key}' must be a string", payload_id=payload_id)
    return value


def _as_mapping(payload: Any, kind: str) -> dict:
    if not isinstance(payload, dict):
        raise MappingError(f"{kind} payload must be an object, got {type(payload).__name__}")
    return payload


def parse_due_date(raw: Any, payload_id: str | None = None) -> date | None:
    """{year, month, day} -> date; absent or partial -> None."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MappingError("dueDate must be an object", payload_id=payload_id)
    parts = [raw.get("year"), raw.get("month"), raw.get("day")]
    if any(p is None for p in parts):
        return None
    try:
        return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except (TypeError, ValueError) as exc:
        raise MappingError(f"Invalid dueDate {raw!r}: {exc}", payload_id=payload_id) from exc


@dataclass(frozen=True)
class Course:
    id: str
    name: str
    section: str
    description: str
    owner_id: str
    is_active: bool

    @classmethod
    def from_api(cls, payload: Any) -> "Course":
        payload = _as_mapping(payload, "Course")
        course_id = _require_text(payload, "id", None)
        heading = _optional_text(payload, "descriptionHeading", course_id)
        return cls(
            id=course_id,
            name=_require_text(payload, "name", course_id),
            section=_optional_text(payload, "section", course_id),
            description=heading or _optional_text(payload, "description", course_id),
            owner_id=_optional_text(payload, "ownerId", course_id),
            is_active=payload.get("courseState") == ACTIVE_COURSE_STATE,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "external_id": self.id,
            "name": self.name,
            "section": self.section,
            "description": self.description,
            "owner_ref": self.owner_id,
            "is_active": 1 if self.is_active else 0,
        }


@dataclass(frozen=True)
class CourseWork:
    id: str
    course_id: str
    title: str
    description: str
    due_date: date | None
    max_points: float | None
    state: str
    work_type: str

    @classmethod
    def from_api(cls, payload: Any) -> "CourseWork":
        payload = _as_mapping(payload, "CourseWork")
        work_id = _require_text(payload, "id", None)

        max_points = payload.get("maxPoints")
        if max_points is not None:
            if isinstance(max_points, bool) or not isinstance(max_points, (int, float)):
                raise MappingError("maxPoints must be numeric", payload_id=work_id)
            max_points = float(max_points)

        return cls(
            id=work_id,
            course_id=_optional_text(payload, "courseId", work_id),
            title=_require_text(payload, "title", work_id),
            description=_optional_text(payload, "description", work_id),
            due_date=parse_due_date(payload.get("dueDate"), work_id),
            max_points=max_points,
            state=_optional_text(payload, "state", work_id) or "COURSE_WORK_STATE_UNSPECIFIED",
            work_type=_optional_text(payload, "workType", work_id) or "COURSE_WORK_TYPE_UNSPECIFIED",
        )

    def to_row(self, course_db_id: int) -> dict[str, Any]:
        return {
            "external_id": self.id,
            "course_id": course_db_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "max_points": self.max_points,
            "state": self.state,
            "work_type": self.work_type,
        }
