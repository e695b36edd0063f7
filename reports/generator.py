from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from config import REPORT_DEDUP_HOURS, REPORT_WINDOW_DAYS, SYNC_MAX_WORKERS
from database import db
from errors import StoreError, StoreUnavailableError, error_entry
from pipeline import escalate_if_unreachable, map_bounded
from reports.aggregator import aggregate
from reports.notifier import TelegramNotifier
from reports.recommendations import (
    build_recommendations,
    identify_improvements,
    identify_strengths,
)

logger = logging.getLogger("report_job")

GENERATED = "generated"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ReportRunSummary:
    generated_count: int = 0
    skipped_count: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated": self.generated_count,
            "skipped": self.skipped_count,
            "errors": self.errors,
        }


def generate_for_link(
    link: dict,
    *,
    now: datetime,
    window_days: int,
    notifier,
    dedup_hours: int = REPORT_DEDUP_HOURS,
) -> tuple[str, dict | None]:
    """Returns (outcome, error_entry_or_None) for one student/teacher link."""
    student_id = str(link["student_id"])
    teacher_id = str(link["teacher_id"])

    since = now - timedelta(hours=dedup_hours)
    try:
        recent = db.find_recent_report(student_id, teacher_id, since)
        if recent:
            logger.info("Skipping student %s / teacher %s: report %s created at %s",
                        student_id, teacher_id, recent["id"], recent["created_at"])
            return SKIPPED, None

        window_start = now - timedelta(days=window_days)
        summary = aggregate(student_id, window_start, now)
        record = {
            "student_id": student_id,
            "teacher_id": teacher_id,
            "week_start": window_start.date().isoformat(),
            "week_end": now.date().isoformat(),
            "total_study_minutes": summary.total_minutes,
            "active_days": summary.active_days,
            "topics_studied": summary.topics_studied,
            "average_comprehension": summary.avg_comprehension,
            "recommendations": build_recommendations(summary),
            "strengths": identify_strengths(summary),
            "areas_for_improvement": identify_improvements(summary),
            "subject_metrics": {
                subject: metrics.to_dict() for subject, metrics in summary.subjects.items()
            },
            "created_at": db.to_db_time(now),
        }
        # Re-checked inside the insert transaction; an overlapping run may have won.
        report_id = db.insert_report_unless_recent(record, since)
        if report_id is None:
            logger.info("Skipping student %s / teacher %s: report created by an overlapping run",
                        student_id, teacher_id)
            return SKIPPED, None
        record["id"] = report_id
    except StoreError as exc:
        escalate_if_unreachable(exc)
        logger.warning("Report failed for student %s: %s", student_id, exc)
        return FAILED, error_entry(exc, student_id=student_id, teacher_id=teacher_id)
    except Exception as exc:
        logger.warning("Report failed for student %s: %s", student_id, exc)
        return FAILED, error_entry(exc, student_id=student_id, teacher_id=teacher_id)

    # Best effort: the report row already exists whatever happens here.
    try:
        delivery = notifier.send(record)
    except Exception as exc:
        logger.warning("Report %s saved but notifier raised: %s", record["id"], exc)
        return GENERATED, None
    if delivery.error:
        logger.warning("Report %s saved but notification failed: %s", record["id"], delivery.error)
    return GENERATED, None


def generate_all(
    window_days: int = REPORT_WINDOW_DAYS,
    *,
    now: datetime | None = None,
    notifier=None,
    max_workers: int | None = None,
) -> ReportRunSummary:
    now = now or db.utc_now()
    notifier = notifier or TelegramNotifier()
    workers = max_workers or SYNC_MAX_WORKERS
    if window_days < 1:
        raise ValueError("window_days must be at least 1")

    try:
        links = db.list_active_links()
    except StoreError as exc:
        raise StoreUnavailableError(f"Cannot load student/teacher links: {exc}") from exc

    logger.info("Starting report generation for %d active link(s), window=%d day(s)",
                len(links), window_days)

    outcomes = map_bounded(
        lambda link: generate_for_link(
            link, now=now, window_days=window_days, notifier=notifier
        ),
        links,
        workers,
        name="report-job",
    )

    summary = ReportRunSummary()
    for outcome, error in outcomes:
        if outcome == GENERATED:
            summary.generated_count += 1
        elif outcome == SKIPPED:
            summary.skipped_count += 1
        elif error:
            summary.errors.append(error)

    logger.info("Report generation complete | generated=%d | skipped=%d | errors=%d",
                summary.generated_count, summary.skipped_count, len(summary.errors))
    return summary
