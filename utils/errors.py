"""
Error taxonomy for the GitOps pipeline.

Each error carries the HTTP status the webhook routes answer with when the
error escapes the pipeline. Most per-file failures never get that far: they
are turned into "ignored file" activities instead.
"""

from typing import Optional


class GitOpsError(Exception):
    """Base error for the pipeline. Maps to HTTP 500 unless overridden."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(GitOpsError):
    """Malformed payload, invalid ref or template."""

    status_code = 400


class PermissionDeniedError(GitOpsError):
    """The current license plan does not allow the requested feature."""

    status_code = 403


class NotFoundError(GitOpsError):
    """Unknown webhook endpoint, project or repository."""

    status_code = 404


class DataIntegrityError(GitOpsError):
    """Stored data is ambiguous (e.g. a file matching several projects)."""

    status_code = 500


class DatabaseResolutionError(GitOpsError):
    """No usable target database for a (database name, environment) pair."""

    status_code = 404


class SQLReviewUnavailableError(GitOpsError):
    """Every file of a SQL review request failed to be reviewed."""

    status_code = 503


class VCSError(GitOpsError):
    """A call to the VCS provider failed."""

    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status

    @property
    def not_found(self) -> bool:
        return self.upstream_status == 404
