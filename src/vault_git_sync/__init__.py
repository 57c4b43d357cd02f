"""
Vault Git Sync - keep a notes vault in sync with a Git remote.
"""

__version__ = "0.1.0"

from .engine import (
    # Core
    SyncEngine,
    render_commit_message,
    resolve_actor,
)
from .errors import (
    # Exceptions
    SyncError,
    GitError,
    NotAGitRepoError,
    AuthenticationError,
    MergeConflictError,
    PushRejectedError,
    NetworkUnreachableError,
    SyncTimeoutError,
    InvalidRemoteUrlError,
    SyncBusyError,
    SyncCancelledError,
    IdentityMissingError,
    RepositoryMismatchError,
)
from .models import (
    # Data classes
    Change,
    ChangeKind,
    ChangeSet,
    CommitInfo,
    Credentials,
    FailureReason,
    RepositoryHandle,
    StatusSnapshot,
    SyncOutcome,
    SyncResult,
    SyncState,
)
from .reporter import LoggingReporter, StatusEvent, StatusHub, StatusReporter
from .repository import VaultRepository
from .scheduler import AutoSyncScheduler
from .transport import GitTransport

__all__ = [
    # Core
    "SyncEngine",
    "VaultRepository",
    "GitTransport",
    "AutoSyncScheduler",
    "render_commit_message",
    "resolve_actor",

    # Status
    "StatusHub",
    "StatusEvent",
    "StatusReporter",
    "LoggingReporter",

    # Exceptions
    "SyncError",
    "GitError",
    "NotAGitRepoError",
    "AuthenticationError",
    "MergeConflictError",
    "PushRejectedError",
    "NetworkUnreachableError",
    "SyncTimeoutError",
    "InvalidRemoteUrlError",
    "SyncBusyError",
    "SyncCancelledError",
    "IdentityMissingError",
    "RepositoryMismatchError",

    # Data classes
    "Change",
    "ChangeKind",
    "ChangeSet",
    "CommitInfo",
    "Credentials",
    "FailureReason",
    "RepositoryHandle",
    "StatusSnapshot",
    "SyncOutcome",
    "SyncResult",
    "SyncState",
]
