from __future__ import annotations

import hmac
import logging
from functools import wraps
from typing import Any

from flask import Flask, jsonify, request

import config
from database import db
from errors import StoreUnavailableError
from reports import generate_all
from sync import sync_all

logger = logging.getLogger("scheduler_api")

app = Flask(__name__)


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _json_ok(data: Any = None, message: str | None = None):
    payload = {"ok": True}
    if data is not None:
        payload["data"] = data
    if message:
        payload["message"] = message
    return jsonify(payload)


def _json_error(message: str, status_code: int = 400):
    return jsonify({"ok": False, "error": message}), status_code


def _authorized() -> bool:
    secret = config.CRON_SECRET
    if not secret:
        return False
    header = request.headers.get("Authorization", "")
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def require_cron_secret(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not _authorized():
            logger.warning("Rejected %s from %s: bad or missing cron secret",
                           request.path, request.remote_addr)
            return _json_error("Unauthorized", 401)
        return view(*args, **kwargs)
    return wrapper


@app.route("/api/cron/sync-classroom", methods=["POST"])
@require_cron_secret
def api_cron_sync_classroom():
    try:
        summary = sync_all()
    except StoreUnavailableError as exc:
        logger.error("Classroom sync aborted: %s", exc, exc_info=True)
        return _json_error(str(exc), 500)
    except Exception as exc:
        logger.error("Classroom sync job failed: %s", exc, exc_info=True)
        return _json_error(str(exc), 500)

    return _json_ok(
        summary.to_dict(),
        f"Synced {summary.synced_count}/{summary.total_count} account(s); "
        f"{len(summary.errors)} error(s).",
    )


@app.route("/api/cron/send-reports", methods=["POST"])
@require_cron_secret
def api_cron_send_reports():
    body = request.get_json(silent=True) or {}
    window_days = _safe_int(body.get("window_days"), config.REPORT_WINDOW_DAYS)
    if window_days < 1 or window_days > 90:
        return _json_error("window_days must be between 1 and 90", 400)

    try:
        summary = generate_all(window_days)
    except StoreUnavailableError as exc:
        logger.error("Report job aborted: %s", exc, exc_info=True)
        return _json_error(str(exc), 500)
    except Exception as exc:
        logger.error("Report job failed: %s", exc, exc_info=True)
        return _json_error(str(exc), 500)

    return _json_ok(
        summary.to_dict(),
        f"Generated {summary.generated_count} report(s); "
        f"skipped {summary.skipped_count}; {len(summary.errors)} error(s).",
    )


@app.route("/api/cron/sync-log")
@require_cron_secret
def api_cron_sync_log():
    limit = max(1, min(500, _safe_int(request.args.get("limit"), 50)))
    try:
        rows = db.fetch_sync_log(limit)
    except StoreUnavailableError as exc:
        return _json_error(str(exc), 500)
    return _json_ok(rows)


def run():
    app.run(host="127.0.0.1", port=8787, debug=False)


if __name__ == "__main__":
    run()
