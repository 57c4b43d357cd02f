"""
Data model for vault-git-sync.

Plain dataclasses and enums shared by the repository accessor, the sync
engine, the status reporter and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence


PLACEHOLDER_AUTHOR_NAME = "Sync Bot"
PLACEHOLDER_AUTHOR_EMAIL = "sync@local"


@dataclass(frozen=True)
class Credentials:
    """Remote credentials and commit identity for one sync call.

    ``author_name`` and ``author_email`` are ``None`` when the identity was
    deliberately left unset; empty strings mean it was configured empty.
    """

    username: str = ""
    token: str = field(default="", repr=False)
    author_name: Optional[str] = None
    author_email: Optional[str] = None

    @property
    def has_secret(self) -> bool:
        return bool(self.username and self.token)

    @property
    def identity_unset(self) -> bool:
        return self.author_name is None and self.author_email is None


@dataclass(frozen=True)
class RepositoryHandle:
    """A working directory bound to one remote URL and one branch."""

    path: Path
    remote_url: str
    branch: str


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class Change:
    path: str
    kind: ChangeKind
    previous_path: Optional[str] = None

    def __str__(self) -> str:
        if self.kind is ChangeKind.RENAMED and self.previous_path:
            return f"{self.kind.value}: {self.previous_path} -> {self.path}"
        return f"{self.kind.value}: {self.path}"


class ChangeSet(Sequence[Change]):
    """Ordered, immutable set of file-level changes against the last commit."""

    def __init__(self, changes: Sequence[Change] = ()) -> None:
        self._changes = tuple(changes)

    def __getitem__(self, index):  # type: ignore[override]
        return self._changes[index]

    def __len__(self) -> int:
        return len(self._changes)

    def __iter__(self) -> Iterator[Change]:
        return iter(self._changes)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ChangeSet):
            return self._changes == other._changes
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._changes)

    def __repr__(self) -> str:
        return f"ChangeSet({list(self._changes)!r})"

    def paths(self) -> list[str]:
        """Every path touched, including the old side of renames."""
        result: list[str] = []
        for change in self._changes:
            if change.previous_path:
                result.append(change.previous_path)
            result.append(change.path)
        return result

    def by_kind(self, kind: ChangeKind) -> list[Change]:
        return [c for c in self._changes if c.kind is kind]


@dataclass(frozen=True)
class CommitInfo:
    """One entry of the commit history."""

    hexsha: str
    date: datetime
    message: str
    author: str

    def __str__(self) -> str:
        return f"{self.date:%Y-%m-%d %H:%M:%S} - {self.message} ({self.author})"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    NO_CHANGES = "no_changes"
    FAILED = "failed"


class FailureReason(str, Enum):
    NOT_A_REPOSITORY = "not_a_repository"
    AUTHENTICATION_FAILED = "authentication_failed"
    MERGE_CONFLICT = "merge_conflict"
    PUSH_REJECTED = "push_rejected"
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    INVALID_REMOTE_URL = "invalid_remote_url"
    BUSY = "busy"
    CANCELLED = "cancelled"
    IDENTITY_MISSING = "identity_missing"
    REPOSITORY_MISMATCH = "repository_mismatch"
    GIT_ERROR = "git_error"

    @property
    def retryable(self) -> bool:
        """Network-class failures may be retried on the next scheduled tick."""
        return self in (FailureReason.NETWORK_UNREACHABLE, FailureReason.TIMEOUT)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync call."""

    outcome: SyncOutcome
    files_changed: int = 0
    commit_id: Optional[str] = None
    reason: Optional[FailureReason] = None
    message: str = ""
    changes: ChangeSet = field(default_factory=ChangeSet)

    @classmethod
    def succeeded(cls, changes: ChangeSet, commit_id: str) -> "SyncResult":
        return cls(
            outcome=SyncOutcome.SUCCESS,
            files_changed=len(changes),
            commit_id=commit_id,
            message=f"Synced {len(changes)} file(s)",
            changes=changes,
        )

    @classmethod
    def no_changes(cls, message: str = "No changes to commit") -> "SyncResult":
        return cls(outcome=SyncOutcome.NO_CHANGES, message=message)

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        message: str,
        changes: Optional[ChangeSet] = None,
        commit_id: Optional[str] = None,
    ) -> "SyncResult":
        changes = changes if changes is not None else ChangeSet()
        return cls(
            outcome=SyncOutcome.FAILED,
            files_changed=len(changes),
            commit_id=commit_id,
            reason=reason,
            message=message,
            changes=changes,
        )

    @property
    def ok(self) -> bool:
        return self.outcome is not SyncOutcome.FAILED

    def __str__(self) -> str:
        if self.outcome is SyncOutcome.FAILED and self.reason is not None:
            return f"Failed ({self.reason.value}): {self.message}"
        if self.outcome is SyncOutcome.SUCCESS and self.commit_id:
            return f"{self.message} in {self.commit_id[:8]}"
        return self.message


class SyncState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PULLING = "pulling"
    STAGING = "staging"
    COMMITTING = "committing"
    PUSHING = "pushing"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusSnapshot:
    """Last-known branch position and engine state."""

    branch: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    state: SyncState = SyncState.IDLE
    last_result: Optional[SyncResult] = None
    updated_at: Optional[datetime] = None

    def __str__(self) -> str:
        lines = [f"On branch: {self.branch or 'unknown'}"]
        if self.ahead or self.behind:
            status = []
            if self.ahead:
                status.append(f"ahead {self.ahead}")
            if self.behind:
                status.append(f"behind {self.behind}")
            lines.append(f"Remote status: {', '.join(status)}")
        lines.append(f"State: {self.state.value}")
        if self.last_result is not None:
            lines.append(f"Last sync: {self.last_result}")
        return "\n".join(lines)
