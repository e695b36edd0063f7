"""
errors.py

Failure taxonomy shared by the sync and report jobs.
Everything except StoreUnavailableError is recovered per entity.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure the jobs know how to classify."""


class AuthError(PipelineError):
    def __init__(self, user_id: str, message: str):
        super().__init__(message)
        self.user_id = user_id


class TransportError(PipelineError):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class MappingError(PipelineError):
    def __init__(self, message: str, payload_id: str | None = None):
        super().__init__(message)
        self.payload_id = payload_id


class StoreError(PipelineError):
    pass


class StoreUnavailableError(StoreError):
    """The local store cannot be reached at all; the run must stop."""


class NotifyError(PipelineError):
    pass


def error_entry(exc: BaseException, **tags) -> dict:
    entry = dict(tags)
    entry["error"] = str(exc) or exc.__class__.__name__
    entry["kind"] = exc.__class__.__name__
    return entry
