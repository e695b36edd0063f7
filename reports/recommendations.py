"""
reports/recommendations.py

Strengths, improvement areas and recommendations derived from topic scores.
"""
from __future__ import annotations

from reports.aggregator import TopicScore, UsageSummary

STRENGTH_THRESHOLD = 85.0
IMPROVEMENT_THRESHOLD = 60.0
MAX_HIGHLIGHTS = 3

SUBJECT_LABELS = {
    "math": "Math",
    "english": "English",
    "science": "Science",
}

IMPROVEMENT_TEMPLATES = {
    "math": "Reinforce {topic} with additional practice exercises.",
    "english": "Practise {topic} with interactive activities.",
    "science": "Review {topic} together in class.",
}
DEFAULT_IMPROVEMENT = "Revisit {topic} with extra guided practice."


def subject_label(subject: str) -> str:
    return SUBJECT_LABELS.get(subject) or subject.replace("_", " ").title()


def _highlight(topic: TopicScore) -> dict:
    return {
        "topic": topic.title,
        "subject": subject_label(topic.subject),
        "score": topic.score,
    }


def identify_strengths(summary: UsageSummary, limit: int = MAX_HIGHLIGHTS) -> list[dict]:
    """Topics at or above the strength threshold, highest score first."""
    strong = sorted(
        (t for t in summary.topics if t.score >= STRENGTH_THRESHOLD),
        key=lambda t: t.score,
        reverse=True,
    )
    return [_highlight(t) for t in strong[:limit]]


def identify_improvements(summary: UsageSummary, limit: int = MAX_HIGHLIGHTS) -> list[dict]:
    """Topics below the improvement threshold, lowest score first."""
    weak = sorted(
        (t for t in summary.topics if t.score < IMPROVEMENT_THRESHOLD),
        key=lambda t: t.score,
    )
    areas = []
    for topic in weak[:limit]:
        entry = _highlight(topic)
        template = IMPROVEMENT_TEMPLATES.get(topic.subject, DEFAULT_IMPROVEMENT)
        entry["recommendation"] = template.format(topic=topic.title)
        areas.append(entry)
    return areas


def build_recommendations(summary: UsageSummary) -> list[dict]:
    recommendations: list[dict] = []

    if summary.topics_studied == 0:
        recommendations.append({
            "priority": "high",
            "topic": "Engagement",
            "recommendation": "No completed lessons this period. Check in with the student.",
        })

    for area in identify_improvements(summary):
        recommendations.append({
            "priority": "high",
            "topic": area["topic"],
            "subject": area["subject"],
            "recommendation": area["recommendation"],
        })

    for strength in identify_strengths(summary):
        recommendations.append({
            "priority": "low",
            "topic": strength["topic"],
            "subject": strength["subject"],
            "recommendation": f"Build on the strength in {strength['topic']} "
                              f"({strength['subject']}) to keep motivation up.",
        })

    recommendations.append({
        "priority": "medium",
        "topic": "Consistency",
        "recommendation": "Keep a regular study routine for steadier results.",
    })
    return recommendations
