"""
Exception taxonomy for sync operations.

Each error carries the :class:`FailureReason` it is reported as, so the
engine can turn any raised error into a tagged ``SyncResult``.
"""

from __future__ import annotations

import re
from typing import Optional

from git import GitCommandError

from .models import FailureReason


class SyncError(Exception):
    """Base exception for sync operations."""

    reason = FailureReason.GIT_ERROR

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class GitError(SyncError):
    """A Git command failed for a reason outside the taxonomy."""


class NotAGitRepoError(SyncError):
    """Raised when operation requires a Git repository but none exists."""

    reason = FailureReason.NOT_A_REPOSITORY


class AuthenticationError(SyncError):
    """Raised when authentication fails for remote operations."""

    reason = FailureReason.AUTHENTICATION_FAILED


class MergeConflictError(SyncError):
    """Raised when a pull cannot be merged without manual resolution."""

    reason = FailureReason.MERGE_CONFLICT


class PushRejectedError(SyncError):
    """Raised when push is rejected by remote."""

    reason = FailureReason.PUSH_REJECTED


class NetworkUnreachableError(SyncError):
    reason = FailureReason.NETWORK_UNREACHABLE


class SyncTimeoutError(SyncError):
    reason = FailureReason.TIMEOUT


class InvalidRemoteUrlError(SyncError):
    reason = FailureReason.INVALID_REMOTE_URL


class SyncBusyError(SyncError):
    reason = FailureReason.BUSY


class SyncCancelledError(SyncError):
    reason = FailureReason.CANCELLED


class IdentityMissingError(SyncError):
    """Raised when a commit identity was configured but left empty."""

    reason = FailureReason.IDENTITY_MISSING


class RepositoryMismatchError(SyncError):
    """Raised when the working directory is bound to another remote or branch."""

    reason = FailureReason.REPOSITORY_MISMATCH


_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "returned error: 401",
    "returned error: 403",
    "permission denied",
)

_REJECT_MARKERS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "updates were rejected",
)

_CONFLICT_MARKERS = (
    "conflict",
    "automatic merge failed",
    "would be overwritten by merge",
    "refusing to merge unrelated histories",
    "not possible to fast-forward",
)

_NETWORK_MARKERS = (
    "could not resolve host",
    "could not resolve proxy",
    "failed to connect",
    "couldn't connect to server",
    "connection refused",
    "connection timed out",
    "network is unreachable",
    "operation timed out",
    "returned error: 502",
    "returned error: 504",
    "proxy error",
)

_INVALID_REMOTE_MARKERS = (
    "repository not found",
    "does not appear to be a git repository",
    "not a valid repository name",
    "returned error: 404",
    "unsupported protocol",
    "is not supported",
    "not found in upstream",
    "couldn't find remote ref",
)

# git's wording for an HTTP 404: fatal: repository '<url>' not found
_REPOSITORY_NOT_FOUND = re.compile(r"repository '.*' not found")


def classify_git_error(exc: GitCommandError, action: str = "git") -> SyncError:
    """Map a failed Git command to the sync error taxonomy.

    Args:
        exc: The GitPython error, including captured stdout/stderr
        action: Short name of the step, used in the message ("pull", "push", ...)
    """
    text = str(exc).lower()

    if any(marker in text for marker in _AUTH_MARKERS):
        return AuthenticationError(
            f"Authentication failed during {action}",
            "Check the username and token",
        )
    if any(marker in text for marker in _REJECT_MARKERS):
        return PushRejectedError(
            "Push was rejected by remote",
            "The remote advanced since the last pull; sync again to merge it",
        )
    if any(marker in text for marker in _CONFLICT_MARKERS):
        return MergeConflictError(
            f"{action.capitalize()} resulted in merge conflicts",
            "Resolve conflicts manually and sync again",
        )
    if any(marker in text for marker in _NETWORK_MARKERS):
        return NetworkUnreachableError(
            f"Remote unreachable during {action}",
            "Check your network connection or proxy",
        )
    if any(marker in text for marker in _INVALID_REMOTE_MARKERS) or _REPOSITORY_NOT_FOUND.search(text):
        return InvalidRemoteUrlError(
            f"Remote repository or branch not found during {action}",
            "Check the remote URL and branch name",
        )
    return GitError(f"{action.capitalize()} failed (exit {exc.status})", str(exc))
