"""Error taxonomy shared by callable operations and workflows.

Every error carries a machine-readable ``kind`` and the HTTP status the
transport layer maps it to.
"""

from __future__ import annotations


class RewardsError(Exception):
    """Base class for all expected failures."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthenticated(RewardsError):
    kind = "unauthenticated"
    status_code = 401


class PermissionDenied(RewardsError):
    kind = "permission_denied"
    status_code = 403


class InvalidArgument(RewardsError):
    kind = "invalid_argument"
    status_code = 400


class NotFound(RewardsError):
    kind = "not_found"
    status_code = 404


class FailedPrecondition(RewardsError):
    kind = "failed_precondition"
    status_code = 409


class Internal(RewardsError):
    kind = "internal"
    status_code = 500
