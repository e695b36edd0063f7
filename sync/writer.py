from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from config import SYNC_MAX_WORKERS, SYNC_SOURCE
from database import db
from errors import MappingError, StoreError, StoreUnavailableError, error_entry
from pipeline import escalate_if_unreachable, map_bounded
from sync.classroom import ClassroomClient, Course, CourseWork, ExternalCredential, refresh

logger = logging.getLogger("classroom_sync")


@dataclass
class SyncTotals:
    credentials_refreshed: int = 0
    courses_seen: int = 0
    courses_added: int = 0
    courses_updated: int = 0
    work_items_seen: int = 0
    work_items_added: int = 0
    work_items_updated: int = 0

    def merge(self, other: "SyncTotals") -> None:
        for key, value in asdict(other).items():
            setattr(self, key, getattr(self, key) + value)


@dataclass
class AccountResult:
    user_id: str
    status: str = "synced"
    errors: list[dict] = field(default_factory=list)
    totals: SyncTotals = field(default_factory=SyncTotals)

    def fail(self, exc: BaseException) -> None:
        self.status = "failed"
        self.errors.append(error_entry(exc, user_id=self.user_id))

    def fail_course(self, course_id: str, exc: BaseException, item_id: str | None = None) -> None:
        if self.status == "synced":
            self.status = "partial"
        tags: dict[str, Any] = {"user_id": self.user_id, "course_id": course_id}
        if item_id:
            tags["item_id"] = item_id
        self.errors.append(error_entry(exc, **tags))


@dataclass
class SyncRunSummary:
    synced_count: int
    total_count: int
    partial_count: int = 0
    errors: list[dict] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced_count,
            "total": self.total_count,
            "partial": self.partial_count,
            "errors": self.errors,
            "stats": self.stats,
        }


def _new_upsert_stats() -> dict[str, int]:
    return {
        "courses_added": 0,
        "courses_updated": 0,
        "work_items_added": 0,
        "work_items_updated": 0,
    }


def _apply_stats(totals: SyncTotals, stats: dict[str, int]) -> None:
    totals.courses_added += stats["courses_added"]
    totals.courses_updated += stats["courses_updated"]
    totals.work_items_added += stats["work_items_added"]
    totals.work_items_updated += stats["work_items_updated"]


def _sync_course_work(
    client: ClassroomClient,
    result: AccountResult,
    course: Course,
    synced_at: str,
) -> None:
    user_id = result.user_id
    # Work items reference the local course row, never the external id.
    with db.get_db() as conn:
        course_db_id = db.get_course_id(conn, user_id, course.id)
    if course_db_id is None:
        raise StoreError(f"Course {course.id} has no local row for user {user_id}")

    raw_items = client.list_course_work(course.id)
    result.totals.work_items_seen += len(raw_items)

    items: list[CourseWork] = []
    for raw in raw_items:
        try:
            items.append(CourseWork.from_api(raw))
        except MappingError as exc:
            item_id = getattr(exc, "payload_id", None) or (raw.get("id") if isinstance(raw, dict) else None)
            logger.warning("Skipping course work user=%s course=%s item=%s: %s",
                           user_id, course.id, item_id, exc)
            result.fail_course(course.id, exc, item_id=str(item_id or "?"))

    stats = _new_upsert_stats()
    with db.get_db() as conn:
        for item in items:
            db.upsert_work_item(conn, user_id, item.to_row(course_db_id), stats, synced_at)
    _apply_stats(result.totals, stats)


def sync_account(
    credential: ExternalCredential,
    *,
    now: datetime,
    client_factory: Callable[[ExternalCredential], ClassroomClient],
    refresher: Callable[..., ExternalCredential],
) -> AccountResult:
    """LoadCredential -> RefreshIfStale -> ListCourses -> [Upsert -> ListWork -> Upsert]*"""
    result = AccountResult(user_id=credential.user_id)
    synced_at = db.to_db_time(now)

    try:
        fresh = refresher(credential, now=now)
        if fresh is not credential:
            db.save_refreshed_credential(
                fresh.user_id, fresh.access_token, fresh.refresh_token, fresh.expires_at
            )
            result.totals.credentials_refreshed += 1

        client = client_factory(fresh)
        raw_courses = client.list_active_courses()
        result.totals.courses_seen += len(raw_courses)

        courses: list[Course] = []
        for raw in raw_courses:
            try:
                courses.append(Course.from_api(raw))
            except MappingError as exc:
                course_id = getattr(exc, "payload_id", None) or "?"
                logger.warning("Skipping course user=%s course=%s: %s",
                               result.user_id, course_id, exc)
                result.fail_course(str(course_id), exc)

        stats = _new_upsert_stats()
        with db.get_db() as conn:
            for course in courses:
                db.upsert_course(conn, result.user_id, course.to_row(), stats, synced_at)
        _apply_stats(result.totals, stats)
    except StoreError as exc:
        escalate_if_unreachable(exc)
        logger.warning("Sync failed for user %s: %s", result.user_id, exc)
        result.fail(exc)
        return result
    except Exception as exc:
        logger.warning("Sync failed for user %s: %s", result.user_id, exc)
        result.fail(exc)
        return result

    for course in courses:
        try:
            _sync_course_work(client, result, course, synced_at)
        except StoreError as exc:
            escalate_if_unreachable(exc)
            logger.warning("Course work sync failed user=%s course=%s: %s",
                           result.user_id, course.id, exc)
            result.fail_course(course.id, exc)
        except Exception as exc:
            logger.warning("Course work sync failed user=%s course=%s: %s",
                           result.user_id, course.id, exc)
            result.fail_course(course.id, exc)

    logger.info(
        "User %s %s: courses=%d (+%d ~%d), work items=%d (+%d ~%d)",
        result.user_id, result.status,
        result.totals.courses_seen, result.totals.courses_added, result.totals.courses_updated,
        result.totals.work_items_seen, result.totals.work_items_added, result.totals.work_items_updated,
    )
    return result


def sync_all(
    *,
    now: datetime | None = None,
    client_factory: Callable[[ExternalCredential], ClassroomClient] | None = None,
    refresher: Callable[..., ExternalCredential] | None = None,
    max_workers: int | None = None,
) -> SyncRunSummary:
    now = now or db.utc_now()
    client_factory = client_factory or ClassroomClient.from_credential
    refresher = refresher or refresh
    workers = max_workers or SYNC_MAX_WORKERS

    try:
        rows = db.list_credentials()
    except StoreError as exc:
        raise StoreUnavailableError(f"Cannot load linked accounts: {exc}") from exc

    credentials = [ExternalCredential.from_row(row) for row in rows]
    logger.info("Starting Classroom sync for %d linked account(s)", len(credentials))

    results = map_bounded(
        lambda cred: sync_account(
            cred, now=now, client_factory=client_factory, refresher=refresher
        ),
        credentials,
        workers,
        name="classroom-sync",
    )

    totals = SyncTotals()
    errors: list[dict] = []
    for result in results:
        totals.merge(result.totals)
        errors.extend(result.errors)

    summary = SyncRunSummary(
        synced_count=sum(1 for r in results if r.status == "synced"),
        total_count=len(results),
        partial_count=sum(1 for r in results if r.status == "partial"),
        errors=errors,
        stats=asdict(totals),
    )

    try:
        db.log_sync_run(
            SYNC_SOURCE,
            accounts_total=summary.total_count,
            accounts_synced=summary.synced_count,
            rows_added=totals.courses_added + totals.work_items_added,
            rows_updated=totals.courses_updated + totals.work_items_updated,
            error_count=len(errors),
            notes=f"partial={summary.partial_count}",
        )
    except StoreError as exc:
        logger.warning("Could not write sync_log row: %s", exc)

    logger.info(
        "Classroom sync complete | synced=%d/%d | partial=%d | errors=%d",
        summary.synced_count, summary.total_count, summary.partial_count, len(errors),
    )
    return summary
