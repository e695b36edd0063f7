from __future__ import annotations

import logging
import socket
from typing import Any, Callable

import httplib2
from google.auth import exceptions as google_auth_exceptions
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError
from googleapiclient.errors import HttpError

from config import CLASSROOM_PAGE_SIZE, CLASSROOM_TIMEOUT_SEC
from errors import AuthError, MappingError, TransportError

logger = logging.getLogger("classroom_client")

AUTH_STATUSES = {401, 403}


def _http_status(exc: HttpError) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None and getattr(exc, "resp", None) is not None:
        status = getattr(exc.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class ClassroomClient:
    """Read-only view over a Classroom discovery service.

    Every list call drains pagination before returning; a failure on any
    page raises and the pages already read are discarded.
    """

    def __init__(self, service, user_id: str = "", page_size: int = CLASSROOM_PAGE_SIZE):
        self._service = service
        self.user_id = user_id
        self.page_size = page_size

    @classmethod
    def from_credential(cls, credential, timeout: float = CLASSROOM_TIMEOUT_SEC) -> "ClassroomClient":
        creds = Credentials(token=credential.access_token)
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
        try:
            service = build("classroom", "v1", http=http,
                            cache_discovery=False, static_discovery=True)
        except GoogleApiError as exc:
            raise TransportError(f"Could not build Classroom service: {exc}") from exc
        return cls(service, user_id=credential.user_id)

    def _execute(self, request, what: str) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            status = _http_status(exc)
            if status in AUTH_STATUSES:
                raise AuthError(self.user_id, f"{what} rejected with HTTP {status}") from exc
            raise TransportError(f"{what} failed with HTTP {status}", status=status) from exc
        except google_auth_exceptions.RefreshError as exc:
            raise AuthError(self.user_id, f"{what} needs a fresh token: {exc}") from exc
        except google_auth_exceptions.TransportError as exc:
            raise TransportError(f"{what} failed: {exc}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransportError(f"{what} timed out") from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise TransportError(f"{what} failed: {exc}") from exc

    def _drain(self, make_request: Callable[[str | None], Any], key: str, what: str) -> list[dict]:
        items: list[dict] = []
        seen_tokens: set[str] = set()
        page_token = None
        pages = 0
        while True:
            response = self._execute(make_request(page_token), what)
            pages += 1
            if not isinstance(response, dict):
                raise MappingError(f"{what} returned a non-object page")
            batch = response.get(key, [])
            if not isinstance(batch, list):
                raise MappingError(f"{what} field '{key}' is not a list")
            items.extend(batch)

            page_token = response.get("nextPageToken")
            if not page_token:
                break
            if page_token in seen_tokens:
                raise TransportError(f"{what} repeated page token after {pages} page(s)")
            seen_tokens.add(page_token)

        logger.debug("%s: %d item(s) over %d page(s)", what, len(items), pages)
        return items

    def list_active_courses(self) -> list[dict]:
        return self._drain(
            lambda token: self._service.courses().list(
                courseStates=["ACTIVE"], pageSize=self.page_size, pageToken=token
            ),
            "courses",
            "courses.list",
        )

    def list_course_work(self, course_id: str) -> list[dict]:
        return self._drain(
            lambda token: self._service.courses().courseWork().list(
                courseId=course_id, pageSize=self.page_size, pageToken=token
            ),
            "courseWork",
            f"courseWork.list({course_id})",
        )
