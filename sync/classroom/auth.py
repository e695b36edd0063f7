"""
Access-token refresh for linked Google Classroom accounts.

`refresh` is a pure transformation: it takes one ExternalCredential and
returns a new one (or raises AuthError carrying the user id). Persisting the
result is the caller's job.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from database.db import from_db_time
from config import (
    CLASSROOM_TIMEOUT_SEC,
    CREDENTIAL_REFRESH_SKEW_SEC,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URI,
)
from errors import AuthError

logger = logging.getLogger("token_refresher")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ExternalCredential:
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "ExternalCredential":
        expires_at = from_db_time(row.get("expires_at"))
        return cls(
            user_id=str(row["user_id"]),
            access_token=row.get("access_token") or "",
            refresh_token=row.get("refresh_token") or "",
            # Unknown expiry is treated as already expired.
            expires_at=expires_at or datetime.fromtimestamp(0, timezone.utc),
        )

    def is_stale(self, now: datetime | None = None,
                 skew_seconds: int = CREDENTIAL_REFRESH_SKEW_SEC) -> bool:
        now = _as_utc(now or datetime.now(timezone.utc))
        return _as_utc(self.expires_at) - timedelta(seconds=skew_seconds) <= now


def default_request(session: requests.Session, timeout: float = CLASSROOM_TIMEOUT_SEC):
    """google-auth transport over `session` with a bounded timeout on the token call."""
    return functools.partial(Request(session=session), timeout=timeout)


def refresh(
    credential: ExternalCredential,
    *,
    force: bool = False,
    now: datetime | None = None,
    request=None,
    client_id: str | None = None,
    client_secret: str | None = None,
    token_uri: str | None = None,
) -> ExternalCredential:
    if not credential.refresh_token:
        raise AuthError(credential.user_id, "Credential has no refresh token")

    if not force and not credential.is_stale(now):
        return credential

    client_id = client_id if client_id is not None else GOOGLE_CLIENT_ID
    client_secret = client_secret if client_secret is not None else GOOGLE_CLIENT_SECRET
    if not client_id or not client_secret:
        raise AuthError(credential.user_id, "GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not configured")

    creds = Credentials(
        token=credential.access_token or None,
        refresh_token=credential.refresh_token,
        token_uri=token_uri or GOOGLE_TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
    )
    try:
        if request is not None:
            creds.refresh(request)
        else:
            with requests.Session() as session:
                creds.refresh(default_request(session))
    except google_auth_exceptions.RefreshError as exc:
        raise AuthError(credential.user_id, f"Refresh rejected: {exc}") from exc
    except google_auth_exceptions.TransportError as exc:
        raise AuthError(credential.user_id, f"Token endpoint unreachable: {exc}") from exc

    if not creds.token or creds.expiry is None:
        raise AuthError(credential.user_id, "Token endpoint returned no access token or expiry")

    logger.info("Refreshed access token for user=%s (expires %s)",
                credential.user_id, _as_utc(creds.expiry).isoformat(timespec="seconds"))
    return replace(
        credential,
        access_token=creds.token,
        # google-auth keeps the old refresh token unless a new one was issued.
        refresh_token=creds.refresh_token or credential.refresh_token,
        expires_at=_as_utc(creds.expiry),
    )
