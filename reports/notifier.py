"""
reports/notifier.py

Best-effort Telegram delivery of a saved report to the teacher.
`send` never raises: the outcome is returned as a DeliveryResult and the
caller decides what to log.
"""
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from config import BOT_TOKEN, NOTIFY_TIMEOUT_SEC
from database import db
from errors import NotifyError

logger = logging.getLogger("telegram_notifier")

MAX_MESSAGE_CHARS = 3900

REPORT_TEMPLATE = (
    "Weekly progress report: {student_name}\n"
    "Period: {week_start} to {week_end}\n\n"
    "Hi {teacher_name}, here is this week's summary:\n"
    "- Minutes studied: {minutes}\n"
    "- Active days: {active_days}\n"
    "- Topics: {topics}\n"
    "- Comprehension: {comprehension}%\n\n"
    "{recommendation_list}"
)


@dataclass
class DeliveryResult:
    delivered: bool = False
    skipped: bool = False
    error: str | None = None


def render_report_message(report: dict[str, Any], student_name: str, teacher_name: str) -> str:
    recs = report.get("recommendations") or []
    lines = [
        f"- [{r.get('priority', 'medium')}] {r.get('recommendation', '')}"
        for r in recs
        if isinstance(r, dict)
    ]
    recommendation_list = ("Recommendations:\n" + "\n".join(lines)) if lines else ""
    text = REPORT_TEMPLATE.format(
        student_name=student_name,
        teacher_name=teacher_name,
        week_start=report.get("week_start", "?"),
        week_end=report.get("week_end", "?"),
        minutes=report.get("total_study_minutes", 0),
        active_days=report.get("active_days", 0),
        topics=report.get("topics_studied", 0),
        comprehension=round(float(report.get("average_comprehension") or 0)),
        recommendation_list=recommendation_list,
    )
    return text.strip()[:MAX_MESSAGE_CHARS]


class TelegramNotifier:
    def __init__(self, bot_token: str | None = None, timeout: float = NOTIFY_TIMEOUT_SEC):
        self.bot_token = BOT_TOKEN if bot_token is None else bot_token
        self.timeout = timeout

    def _send_message(self, chat_id: str, text: str) -> None:
        payload = urllib.parse.urlencode(
            {
                "chat_id": str(chat_id),
                "text": text,
                "disable_web_page_preview": "true",
            }
        ).encode("utf-8")
        req = urllib.request.Request(
            f"https://api.telegram.org/bot{self.bot_token}/sendMessage",
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                data = json.loads(response.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError, OSError, ValueError) as exc:
            raise NotifyError(f"Telegram sendMessage failed: {exc}") from exc
        if not data.get("ok"):
            raise NotifyError(data.get("description", "Telegram API sendMessage failed"))

    def send(self, report: dict[str, Any]) -> DeliveryResult:
        if not self.bot_token:
            logger.warning("BOT_TOKEN is not configured; skipping report %s", report.get("id"))
            return DeliveryResult(skipped=True)

        try:
            student, teacher = db.get_display_identities(
                report["student_id"], report["teacher_id"]
            )
            if not teacher or not teacher.get("telegram_id"):
                logger.warning("Teacher %s has no Telegram chat; skipping report %s",
                               report["teacher_id"], report.get("id"))
                return DeliveryResult(skipped=True)

            text = render_report_message(
                report,
                student_name=(student or {}).get("full_name") or "Student",
                teacher_name=teacher.get("name") or "Teacher",
            )
            self._send_message(str(teacher["telegram_id"]), text)
        except Exception as exc:
            return DeliveryResult(error=str(exc) or exc.__class__.__name__)

        logger.info("Report %s sent to teacher %s", report.get("id"), report["teacher_id"])
        return DeliveryResult(delivered=True)
