import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from database import db  # noqa: E402
from errors import TransportError  # noqa: E402

NOW = datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", db_path)
    db.init_db()
    return db_path


def add_credential(user_id, *, expires_at=None, refresh_token="refresh-1", access_token="access-1"):
    expires_at = expires_at or NOW + timedelta(hours=1)
    with db.get_db() as conn:
        conn.execute(
            """INSERT INTO classroom_credentials
                 (user_id, access_token, refresh_token, expires_at)
               VALUES (?, ?, ?, ?)""",
            (user_id, access_token, refresh_token, db.to_db_time(expires_at)),
        )


def add_lesson(student_id, started_at, minutes, *, title="Fractions", subject="math", score=None):
    with db.get_db() as conn:
        conn.execute(
            """INSERT INTO lesson_progress
                 (student_id, lesson_title, subject, started_at, time_spent_minutes, score)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (student_id, title, subject,
             started_at if isinstance(started_at, str) else db.to_db_time(started_at),
             minutes, score),
        )


def add_link(student_id, teacher_id, *, active=True, telegram_id="555", student_name=None):
    with db.get_db() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO students (id, full_name) VALUES (?, ?)",
            (student_id, student_name or f"Student {student_id}"),
        )
        conn.execute(
            "INSERT OR IGNORE INTO teachers (id, name, telegram_id) VALUES (?, ?, ?)",
            (teacher_id, f"Teacher {teacher_id}", telegram_id),
        )
        conn.execute(
            """INSERT INTO student_teacher_links (student_id, teacher_id, is_active)
               VALUES (?, ?, ?)""",
            (student_id, teacher_id, 1 if active else 0),
        )


def count_rows(table):
    with db.get_db() as conn:
        return conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"]


class FakeClassroom:
    """Stands in for ClassroomClient; courses/work keyed by course id."""

    def __init__(self, courses, course_work=None, failing_courses=()):
        self.courses = courses
        self.course_work = course_work or {}
        self.failing_courses = set(failing_courses)
        self.calls = []

    def list_active_courses(self):
        self.calls.append("courses")
        return list(self.courses)

    def list_course_work(self, course_id):
        self.calls.append(f"work:{course_id}")
        if course_id in self.failing_courses:
            raise TransportError(f"courseWork.list({course_id}) failed with HTTP 503", status=503)
        return list(self.course_work.get(course_id, []))


def course_payload(course_id, name="Algebra", state="ACTIVE", **extra):
    payload = {
        "id": course_id,
        "name": name,
        "section": "8/1",
        "descriptionHeading": f"{name} heading",
        "ownerId": "owner-1",
        "courseState": state,
    }
    payload.update(extra)
    return payload


def work_payload(work_id, title="Homework", due=(2025, 3, 15), **extra):
    payload = {
        "id": work_id,
        "title": title,
        "description": "Do the thing",
        "maxPoints": 10,
        "state": "PUBLISHED",
        "workType": "ASSIGNMENT",
    }
    if due:
        payload["dueDate"] = {"year": due[0], "month": due[1], "day": due[2]}
    payload.update(extra)
    return payload


def passthrough_refresher(credential, now=None):
    return credential
