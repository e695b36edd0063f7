import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config import DB_PATH, SCHEMA_PATH
from errors import StoreError, StoreUnavailableError

logger = logging.getLogger("store")

COURSE_FIELDS = ("name", "section", "description", "owner_ref", "is_active")
WORK_ITEM_FIELDS = (
    "course_id", "title", "description", "due_date",
    "max_points", "state", "work_type",
)

# ── Time helpers ──────────────────────────────────────────

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_db_time(text: str | None) -> datetime | None:
    raw = (text or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

# ── Connection ────────────────────────────────────────────

def _connect(create: bool = False) -> sqlite3.Connection:
    path = Path(DB_PATH).resolve()
    try:
        if create:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(path, timeout=10)
        else:
            # mode=rw refuses to silently create an empty database.
            conn = sqlite3.connect(f"{path.as_uri()}?mode=rw", uri=True, timeout=10)
    except (sqlite3.Error, OSError) as exc:
        raise StoreUnavailableError(f"Cannot open database {path}: {exc}") from exc
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db(create: bool = False):
    conn = _connect(create=create)
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreError(str(exc)) from exc
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create all tables from schema.sql"""
    with get_db(create=True) as conn:
        conn.executescript(Path(SCHEMA_PATH).read_text(encoding="utf-8"))
        _run_migrations(conn)
    logger.info("Database initialized at %s", DB_PATH)


def ping() -> bool:
    """True when the store can be opened and the sync tables are readable."""
    try:
        with get_db() as conn:
            conn.execute("SELECT 1 FROM classroom_credentials LIMIT 1").fetchall()
        return True
    except StoreError as exc:
        logger.error("Store health check failed: %s", exc)
        return False


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row["name"] == column for row in rows)


def _run_migrations(conn: sqlite3.Connection) -> None:
    # Databases created before per-entry scores were recorded.
    if not _column_exists(conn, "lesson_progress", "score"):
        conn.execute("ALTER TABLE lesson_progress ADD COLUMN score REAL")
    if not _column_exists(conn, "lesson_progress", "subject"):
        conn.execute("ALTER TABLE lesson_progress ADD COLUMN subject TEXT")
    # Report breakdowns added after the first report table.
    for column, default in (("strengths", "[]"), ("areas_for_improvement", "[]"),
                            ("subject_metrics", "{}")):
        if not _column_exists(conn, "teacher_reports", column):
            conn.execute(
                f"ALTER TABLE teacher_reports ADD COLUMN {column} TEXT NOT NULL DEFAULT '{default}'"
            )

# ── Credentials ───────────────────────────────────────────

def list_credentials() -> list[dict]:
    with get_db() as conn:
        rows = conn.execute(
            """SELECT user_id, access_token, refresh_token, expires_at
               FROM classroom_credentials
               ORDER BY user_id"""
        ).fetchall()
        return [dict(r) for r in rows]


def save_refreshed_credential(user_id: str, access_token: str,
                              refresh_token: str, expires_at: datetime) -> None:
    with get_db() as conn:
        result = conn.execute(
            """UPDATE classroom_credentials
               SET access_token = ?, refresh_token = ?,
                   expires_at = ?, updated_at = ?
               WHERE user_id = ?""",
            (access_token, refresh_token, to_db_time(expires_at),
             to_db_time(utc_now()), user_id)
        )
        if result.rowcount == 0:
            raise StoreError(f"No stored credential for user {user_id}")

# ── Courses / work items ──────────────────────────────────

def _changed_fields(row: sqlite3.Row, values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if row[k] != v}


def upsert_course(conn: sqlite3.Connection, user_id: str, values: dict[str, Any],
                  stats: dict[str, int], synced_at: str) -> int:
    external_id = values["external_id"]
    fields = {k: values[k] for k in COURSE_FIELDS}
    row = conn.execute(
        f"""SELECT id, {', '.join(COURSE_FIELDS)}
            FROM classroom_courses
            WHERE user_id = ? AND external_id = ?""",
        (user_id, external_id),
    ).fetchone()

    if not row:
        cursor = conn.execute(
            f"""INSERT INTO classroom_courses
                  (user_id, external_id, {', '.join(COURSE_FIELDS)}, synced_at)
                VALUES (?, ?, {', '.join('?' for _ in COURSE_FIELDS)}, ?)""",
            (user_id, external_id, *fields.values(), synced_at),
        )
        stats["courses_added"] += 1
        logger.debug("Inserted course user=%s external_id=%s", user_id, external_id)
        return int(cursor.lastrowid)

    updates = _changed_fields(row, fields)
    if updates:
        sets = ", ".join(f"{k} = ?" for k in updates)
        conn.execute(
            f"UPDATE classroom_courses SET {sets}, synced_at = ? WHERE id = ?",
            (*updates.values(), synced_at, row["id"]),
        )
        stats["courses_updated"] += 1
        logger.debug("Updated course user=%s external_id=%s fields=%s",
                     user_id, external_id, ",".join(updates))
    return int(row["id"])


def get_course_id(conn: sqlite3.Connection, user_id: str, external_id: str) -> int | None:
    row = conn.execute(
        "SELECT id FROM classroom_courses WHERE user_id = ? AND external_id = ?",
        (user_id, external_id),
    ).fetchone()
    return int(row["id"]) if row else None


def upsert_work_item(conn: sqlite3.Connection, user_id: str, values: dict[str, Any],
                     stats: dict[str, int], updated_at: str) -> int:
    external_id = values["external_id"]
    fields = {k: values[k] for k in WORK_ITEM_FIELDS}
    row = conn.execute(
        f"""SELECT id, {', '.join(WORK_ITEM_FIELDS)}
            FROM classroom_work_items
            WHERE user_id = ? AND external_id = ?""",
        (user_id, external_id),
    ).fetchone()

    if not row:
        cursor = conn.execute(
            f"""INSERT INTO classroom_work_items
                  (user_id, external_id, {', '.join(WORK_ITEM_FIELDS)}, updated_at)
                VALUES (?, ?, {', '.join('?' for _ in WORK_ITEM_FIELDS)}, ?)""",
            (user_id, external_id, *fields.values(), updated_at),
        )
        stats["work_items_added"] += 1
        return int(cursor.lastrowid)

    updates = _changed_fields(row, fields)
    if updates:
        sets = ", ".join(f"{k} = ?" for k in updates)
        conn.execute(
            f"UPDATE classroom_work_items SET {sets}, updated_at = ? WHERE id = ?",
            (*updates.values(), updated_at, row["id"]),
        )
        stats["work_items_updated"] += 1
        logger.debug("Updated work item user=%s external_id=%s fields=%s",
                     user_id, external_id, ",".join(updates))
    return int(row["id"])


def log_sync_run(source: str, accounts_total: int, accounts_synced: int,
                 rows_added: int, rows_updated: int, error_count: int,
                 notes: str | None = None) -> None:
    with get_db() as conn:
        conn.execute(
            """INSERT INTO sync_log
                 (source, accounts_total, accounts_synced, rows_added,
                  rows_updated, error_count, notes, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (source, accounts_total, accounts_synced, rows_added,
             rows_updated, error_count, notes, to_db_time(utc_now()))
        )


def fetch_sync_log(limit: int = 50) -> list[dict]:
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM sync_log ORDER BY id DESC LIMIT ?",
            (limit,)
        ).fetchall()
        return [dict(r) for r in rows]

# ── Reports ───────────────────────────────────────────────

def list_active_links() -> list[dict]:
    with get_db() as conn:
        rows = conn.execute(
            """SELECT student_id, teacher_id
               FROM student_teacher_links
               WHERE is_active = 1
               ORDER BY student_id, teacher_id"""
        ).fetchall()
        return [dict(r) for r in rows]


def _recent_report(conn: sqlite3.Connection, student_id: str, teacher_id: str,
                   since: datetime) -> sqlite3.Row | None:
    return conn.execute(
        """SELECT id, created_at FROM teacher_reports
           WHERE student_id = ? AND teacher_id = ? AND created_at >= ?
           ORDER BY created_at DESC
           LIMIT 1""",
        (student_id, teacher_id, to_db_time(since))
    ).fetchone()


def find_recent_report(student_id: str, teacher_id: str, since: datetime) -> dict | None:
    with get_db() as conn:
        row = _recent_report(conn, student_id, teacher_id, since)
        return dict(row) if row else None


def fetch_lessons(student_id: str, start: datetime, end: datetime) -> list[dict]:
    """Lesson rows with start <= started_at < end.

    Rows come from other writers, so started_at is compared as an instant
    (julianday honours any UTC offset) rather than as text.
    """
    with get_db() as conn:
        rows = conn.execute(
            """SELECT lesson_title, subject, started_at, time_spent_minutes, score
               FROM lesson_progress
               WHERE student_id = ?
                 AND julianday(started_at) >= julianday(?)
                 AND julianday(started_at) < julianday(?)
               ORDER BY julianday(started_at)""",
            (student_id, to_db_time(start), to_db_time(end))
        ).fetchall()
        return [dict(r) for r in rows]


REPORT_JSON_FIELDS = {
    "recommendations": "[]",
    "strengths": "[]",
    "areas_for_improvement": "[]",
    "subject_metrics": "{}",
}


def _insert_report_row(conn: sqlite3.Connection, record: dict[str, Any]) -> int:
    cursor = conn.execute(
        """INSERT INTO teacher_reports
             (student_id, teacher_id, week_start, week_end,
              total_study_minutes, active_days, topics_studied,
              average_comprehension, recommendations, strengths,
              areas_for_improvement, subject_metrics, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            record["student_id"], record["teacher_id"],
            record["week_start"], record["week_end"],
            record["total_study_minutes"], record["active_days"],
            record["topics_studied"], record["average_comprehension"],
            json.dumps(record.get("recommendations") or []),
            json.dumps(record.get("strengths") or []),
            json.dumps(record.get("areas_for_improvement") or []),
            json.dumps(record.get("subject_metrics") or {}),
            record["created_at"],
        )
    )
    return int(cursor.lastrowid)


def insert_report_unless_recent(record: dict[str, Any], since: datetime) -> int | None:
    """Insert the report unless the pair already has one created at or after `since`.

    The check and the insert share one write transaction, so overlapping
    runs cannot both insert. Returns the new id, or None when skipped.
    """
    with get_db() as conn:
        conn.execute("BEGIN IMMEDIATE")
        if _recent_report(conn, record["student_id"], record["teacher_id"], since):
            return None
        return _insert_report_row(conn, record)


def get_report(report_id: int) -> dict | None:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM teacher_reports WHERE id = ?",
            (report_id,)
        ).fetchone()
    if not row:
        return None
    report = dict(row)
    for name, empty in REPORT_JSON_FIELDS.items():
        report[name] = json.loads(report.get(name) or empty)
    return report


def get_display_identities(student_id: str, teacher_id: str) -> tuple[dict | None, dict | None]:
    with get_db() as conn:
        student = conn.execute(
            "SELECT id, full_name FROM students WHERE id = ?",
            (student_id,)
        ).fetchone()
        teacher = conn.execute(
            "SELECT id, name, telegram_id FROM teachers WHERE id = ?",
            (teacher_id,)
        ).fetchone()
        return (dict(student) if student else None,
                dict(teacher) if teacher else None)
