import json
from datetime import datetime, timedelta, timezone

import pytest
from google.auth import exceptions as google_auth_exceptions

from errors import AuthError
from sync.classroom import auth
from sync.classroom.auth import ExternalCredential, refresh

NOW = datetime.now(timezone.utc)


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        self.headers = {"content-type": "application/json"}
        self.data = json.dumps(payload).encode("utf-8")


class FakeTokenTransport:
    """google-auth transport double recording every token call."""

    def __init__(self, status=200, payload=None, exc=None):
        self.status = status
        self.payload = payload or {}
        self.exc = exc
        self.calls = []

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "method": method, "body": body})
        if self.exc:
            raise self.exc
        return FakeResponse(self.status, self.payload)


def make_credential(expires_at, refresh_token="refresh-1"):
    return ExternalCredential(
        user_id="teacher-1",
        access_token="old-access",
        refresh_token=refresh_token,
        expires_at=expires_at,
    )


def do_refresh(credential, transport, **kwargs):
    return refresh(
        credential,
        request=transport,
        client_id="client-id",
        client_secret="client-secret",
        token_uri="https://oauth2.example.test/token",
        **kwargs,
    )


def test_fresh_credential_is_returned_without_network_call():
    credential = make_credential(NOW + timedelta(hours=1))
    transport = FakeTokenTransport()

    assert do_refresh(credential, transport, now=NOW) is credential
    assert transport.calls == []


def test_expired_credential_gets_new_token_and_expiry():
    credential = make_credential(NOW - timedelta(minutes=5))
    transport = FakeTokenTransport(payload={"access_token": "new-access", "expires_in": 3600})

    fresh = do_refresh(credential, transport, now=NOW)

    assert fresh is not credential
    assert fresh.access_token == "new-access"
    assert fresh.refresh_token == "refresh-1"
    assert fresh.expires_at.tzinfo is not None
    assert fresh.expires_at > NOW + timedelta(minutes=50)
    assert credential.access_token == "old-access"
    assert len(transport.calls) == 1
    assert transport.calls[0]["method"] == "POST"


def test_new_refresh_token_from_provider_replaces_the_old_one():
    credential = make_credential(NOW - timedelta(minutes=5))
    transport = FakeTokenTransport(payload={
        "access_token": "new-access", "expires_in": 3600, "refresh_token": "refresh-2",
    })

    assert do_refresh(credential, transport, now=NOW).refresh_token == "refresh-2"


def test_force_refreshes_a_valid_credential():
    credential = make_credential(NOW + timedelta(hours=1))
    transport = FakeTokenTransport(payload={"access_token": "forced", "expires_in": 60})

    assert do_refresh(credential, transport, now=NOW, force=True).access_token == "forced"


def test_credential_inside_skew_counts_as_stale():
    credential = make_credential(NOW + timedelta(seconds=30))
    assert credential.is_stale(NOW, skew_seconds=60)
    assert not credential.is_stale(NOW, skew_seconds=0)


def test_rejected_refresh_raises_auth_error_with_user_id():
    credential = make_credential(NOW - timedelta(minutes=5))
    transport = FakeTokenTransport(status=400, payload={
        "error": "invalid_grant", "error_description": "Token has been revoked.",
    })

    with pytest.raises(AuthError) as excinfo:
        do_refresh(credential, transport, now=NOW)
    assert excinfo.value.user_id == "teacher-1"


def test_unreachable_token_endpoint_is_an_auth_error_for_that_user():
    credential = make_credential(NOW - timedelta(minutes=5))
    transport = FakeTokenTransport(exc=google_auth_exceptions.TransportError("connection reset"))

    with pytest.raises(AuthError) as excinfo:
        do_refresh(credential, transport, now=NOW)
    assert excinfo.value.user_id == "teacher-1"
    assert "connection reset" in str(excinfo.value)


def test_empty_refresh_token_is_rejected_before_any_call():
    credential = make_credential(NOW - timedelta(minutes=5), refresh_token="")
    transport = FakeTokenTransport()

    with pytest.raises(AuthError):
        do_refresh(credential, transport, now=NOW)
    assert transport.calls == []


def test_missing_client_configuration_is_an_auth_error():
    credential = make_credential(NOW - timedelta(minutes=5))
    with pytest.raises(AuthError):
        refresh(credential, now=NOW, request=FakeTokenTransport(), client_id="", client_secret="")


def test_from_row_treats_unknown_expiry_as_expired():
    credential = ExternalCredential.from_row({
        "user_id": "u1", "access_token": "a", "refresh_token": "r", "expires_at": None,
    })
    assert credential.is_stale(NOW)


class FakeRequestsResponse:
    status_code = 200
    headers = {"content-type": "application/json"}
    content = json.dumps({"access_token": "session-access", "expires_in": 3600}).encode("utf-8")


class FakeSession:
    instances = []

    def __init__(self):
        self.closed = False
        self.calls = 0
        FakeSession.instances.append(self)

    def request(self, method, url, data=None, headers=None, timeout=None, **kwargs):
        self.calls += 1
        return FakeRequestsResponse()

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def test_default_transport_session_is_closed_after_refresh(monkeypatch):
    FakeSession.instances.clear()
    monkeypatch.setattr(auth.requests, "Session", FakeSession)
    credential = make_credential(NOW - timedelta(minutes=5))

    fresh = refresh(
        credential,
        now=NOW,
        client_id="client-id",
        client_secret="client-secret",
        token_uri="https://oauth2.example.test/token",
    )

    assert fresh.access_token == "session-access"
    assert len(FakeSession.instances) == 1
    assert FakeSession.instances[0].calls == 1
    assert FakeSession.instances[0].closed is True
