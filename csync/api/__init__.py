"""Google People API access for csync."""

from csync.api.people_api import (
    ApiTimeoutError,
    PeopleAPI,
    PeopleAPIError,
    RevisionConflictError,
)
from csync.api.retry import BackoffPolicy, call_with_backoff

__all__ = [
    "ApiTimeoutError",
    "BackoffPolicy",
    "PeopleAPI",
    "PeopleAPIError",
    "RevisionConflictError",
    "call_with_backoff",
]
