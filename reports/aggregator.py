"""
reports/aggregator.py

Usage summary for one student over a half-open window [start, end).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime

from database import db

GENERAL_SUBJECT = "general"


@dataclass(frozen=True)
class TopicScore:
    title: str
    subject: str
    score: float


@dataclass
class SubjectMetrics:
    topics_completed: int = 0
    average_score: float = 0.0
    minutes: int = 0
    topics: list[TopicScore] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class UsageSummary:
    total_minutes: int = 0
    active_days: int = 0
    topics_studied: int = 0
    avg_comprehension: float = 0.0
    topics: list[TopicScore] = field(default_factory=list)
    subjects: dict[str, SubjectMetrics] = field(default_factory=dict)


def _minutes(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def _clamp_score(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def _mean(values: list[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


def _subject_key(value) -> str:
    return (str(value or "").strip().lower()) or GENERAL_SUBJECT


def summarize(rows: list[dict]) -> UsageSummary:
    days = set()
    scores: list[float] = []
    topics: list[TopicScore] = []
    subjects: dict[str, SubjectMetrics] = {}
    subject_scores: dict[str, list[float]] = {}
    total = 0

    for row in rows:
        minutes = _minutes(row.get("time_spent_minutes"))
        total += minutes
        started = db.from_db_time(row.get("started_at"))
        if started is not None:
            days.add(started.date())

        subject = _subject_key(row.get("subject"))
        metrics = subjects.setdefault(subject, SubjectMetrics())
        metrics.topics_completed += 1
        metrics.minutes += minutes

        score = row.get("score")
        if score is None:
            continue
        try:
            score = _clamp_score(score)
        except (TypeError, ValueError):
            continue
        topic = TopicScore(
            title=row.get("lesson_title") or "Unknown topic",
            subject=subject,
            score=score,
        )
        scores.append(score)
        topics.append(topic)
        metrics.topics.append(topic)
        subject_scores.setdefault(subject, []).append(score)

    for subject, metrics in subjects.items():
        metrics.average_score = _mean(subject_scores.get(subject, []))

    return UsageSummary(
        total_minutes=total,
        active_days=len(days),
        # One lesson row is one topic touch; repeats are not collapsed.
        topics_studied=len(rows),
        avg_comprehension=_mean(scores),
        topics=topics,
        subjects=subjects,
    )


def aggregate(student_id: str, window_start: datetime, window_end: datetime) -> UsageSummary:
    if window_end <= window_start:
        raise ValueError("window_end must be after window_start")
    return summarize(db.fetch_lessons(student_id, window_start, window_end))
