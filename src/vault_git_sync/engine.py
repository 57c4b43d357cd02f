"""
Sync engine: one pull-merge-commit-push cycle per call.

The cycle runs initialize -> pull -> diff -> stage -> commit -> push. A
failing step stops the cycle and is reported as a tagged ``SyncResult``;
steps already completed are kept (a commit whose push failed stays local
and the next call pushes it). Only one cycle runs per working directory at
a time.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from git import Actor, GitCommandError

from .errors import (
    IdentityMissingError,
    RepositoryMismatchError,
    SyncCancelledError,
    SyncError,
    classify_git_error,
)
from .log import mask_secrets
from .models import (
    PLACEHOLDER_AUTHOR_EMAIL,
    PLACEHOLDER_AUTHOR_NAME,
    ChangeSet,
    Credentials,
    FailureReason,
    RepositoryHandle,
    StatusSnapshot,
    SyncResult,
    SyncState,
)
from .reporter import StatusHub, StatusReporter, Subscriber
from .repository import VaultRepository
from .transport import CredentialSource, GitTransport, resolve_credentials, validate_remote_url

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = "{{date}}"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_COMMIT_MESSAGE = "Vault backup: {{date}}"

_path_locks: dict[Path, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """One lock per working directory, shared by every engine in the process."""
    with _path_locks_guard:
        return _path_locks.setdefault(path, threading.Lock())


def render_commit_message(template: str, now: datetime) -> str:
    """Replace every ``{{date}}`` in ``template`` with the local time ``now``."""
    return template.replace(DATE_PLACEHOLDER, now.strftime(DATE_FORMAT))


def resolve_actor(credentials: Credentials) -> Actor:
    """Commit identity for ``credentials``.

    Unset identity falls back to the placeholder; an identity configured with
    both fields empty is an error.
    """
    if credentials.identity_unset:
        return Actor(PLACEHOLDER_AUTHOR_NAME, PLACEHOLDER_AUTHOR_EMAIL)

    name = (credentials.author_name or "").strip()
    email = (credentials.author_email or "").strip()
    if not name and not email:
        raise IdentityMissingError(
            "Commit author name and email are both empty",
            f"Set them, or leave them unset to commit as "
            f"{PLACEHOLDER_AUTHOR_NAME} <{PLACEHOLDER_AUTHOR_EMAIL}>",
        )
    return Actor(name or PLACEHOLDER_AUTHOR_NAME, email or PLACEHOLDER_AUTHOR_EMAIL)


class SyncEngine:
    """Synchronizes one vault directory with one remote branch."""

    def __init__(
        self,
        path: Union[str, Path],
        credentials: CredentialSource = None,
        *,
        transport: Optional[GitTransport] = None,
        reporter: Optional[StatusReporter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Args:
            path: Vault working directory
            credentials: ``Credentials`` or a callback returning them for a remote URL
            transport: Network access for Git; a direct one with defaults if omitted
            reporter: Optional display surface for state transitions
            clock: Source of the local time substituted for ``{{date}}``
        """
        self.repository = VaultRepository(path)
        self.path = self.repository.path
        self.transport = transport or GitTransport()
        self.hub = StatusHub(reporter)
        self.clock = clock or datetime.now
        self.handle: Optional[RepositoryHandle] = None
        self._credentials = credentials
        self._lock = _lock_for(self.path)
        self._cancel = threading.Event()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.hub.subscribe(callback)

    def status(self) -> StatusSnapshot:
        return self.hub.snapshot

    def is_busy(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Stop the in-flight sync at its next network wait; local steps stay done."""
        if self.is_busy():
            logger.info(f"Cancelling sync of {self.path}")
            self._cancel.set()

    def test_connection(self, remote_url: str) -> bool:
        """True if the remote answers with the configured credentials; raises ``SyncError``."""
        url = validate_remote_url(remote_url)
        credentials = resolve_credentials(self._credentials, url)
        try:
            return self.transport.test_connection(url, credentials)
        except SyncError as e:
            e.message = mask_secrets(e.message, [credentials.token])
            e.details = mask_secrets(e.details or "", [credentials.token]) or None
            logger.error(f"Connection test failed: {e.message}")
            raise

    def refresh_status(self, branch: Optional[str] = None) -> StatusSnapshot:
        """Recompute ahead/behind from local refs (no network)."""
        self._refresh_position(branch)
        return self.hub.snapshot

    def sync(
        self,
        remote_url: str,
        branch: str,
        commit_message_template: str = DEFAULT_COMMIT_MESSAGE,
        wait: bool = False,
    ) -> SyncResult:
        """Run one sync cycle.

        Args:
            remote_url: Remote repository URL (fixed for the working directory)
            branch: Branch to sync (fixed for the working directory)
            commit_message_template: Commit message; ``{{date}}`` is replaced
            wait: Queue behind a running sync instead of returning ``Busy``

        Returns:
            SyncResult; failures are reported in it, never raised
        """
        if not self._lock.acquire(blocking=wait):
            logger.warning(f"Sync of {self.path} skipped: another sync is running")
            return SyncResult.failed(FailureReason.BUSY, "A sync is already running for this vault")

        self._cancel.clear()
        try:
            result = self._run(remote_url, branch, commit_message_template)
            self._refresh_position(branch)
            self.hub.finished(result)
            return result
        finally:
            self.hub.transition(SyncState.IDLE)
            self._cancel.clear()
            self._lock.release()

    def _run(self, remote_url: str, branch: str, template: str) -> SyncResult:
        credentials: Optional[Credentials] = None
        changes = ChangeSet()
        commit_id: Optional[str] = None

        try:
            url = validate_remote_url(remote_url)
            credentials = resolve_credentials(self._credentials, url)
            actor = resolve_actor(credentials)

            self._initialize(url, branch, credentials)

            self.hub.transition(SyncState.PULLING, f"origin/{branch}")
            self.repository.pull(branch, url, self.transport, actor, credentials, self._cancel)

            self.hub.transition(SyncState.STAGING, "Checking for changes")
            changes = self.repository.changed_paths()

            if not changes:
                if self.repository.has_unpushed_commits(branch):
                    self.hub.transition(SyncState.PUSHING, "Pushing earlier commits")
                    self.repository.push(branch, url, self.transport, credentials, self._cancel)
                logger.info("No changes to commit")
                return SyncResult.no_changes()

            if self._cancel.is_set():
                raise SyncCancelledError("Sync cancelled before staging")
            self.repository.stage_all()

            self.hub.transition(SyncState.COMMITTING, f"{len(changes)} file(s)")
            message = render_commit_message(template, self.clock())
            commit_id = self.repository.commit(message, actor)

            self.hub.transition(SyncState.PUSHING, f"origin/{branch}")
            self.repository.push(branch, url, self.transport, credentials, self._cancel)

            return SyncResult.succeeded(changes, commit_id)

        except SyncError as e:
            return self._failure(e, changes, commit_id, credentials)
        except GitCommandError as e:
            return self._failure(classify_git_error(e, "sync"), changes, commit_id, credentials)
        except Exception as e:
            logger.exception("Unexpected error during sync")
            error = SyncError(f"Sync failed: {e}", "Check the log for the full traceback")
            return self._failure(error, changes, commit_id, credentials)

    def _initialize(self, url: str, branch: str, credentials: Credentials) -> None:
        if self.repository.is_repository():
            self.hub.transition(SyncState.INITIALIZING, str(self.path))
            self._verify_handle(url, branch)
        elif self.path.exists() and any(self.path.iterdir()):
            self.hub.transition(SyncState.INITIALIZING, "Initializing repository in place")
            self.repository.adopt(url, branch, self.transport, credentials, self._cancel)
        else:
            self.hub.transition(SyncState.INITIALIZING, "Cloning repository")
            self.repository.clone(url, branch, self.transport, credentials, self._cancel)
        self.handle = RepositoryHandle(path=self.path, remote_url=url, branch=branch)

    def _verify_handle(self, url: str, branch: str) -> None:
        origin = self.repository.origin_url()
        if origin is None or origin.rstrip("/") != url.rstrip("/"):
            raise RepositoryMismatchError(
                f"'{self.path}' is bound to a different remote",
                f"origin is {mask_secrets(origin or 'not configured')}; "
                "re-clone into a new directory to change it",
            )
        current = self.repository.current_branch()
        if current != branch:
            raise RepositoryMismatchError(
                f"'{self.path}' has branch {current or '(detached)'} checked out, not {branch}",
                "Re-clone into a new directory to change the branch",
            )

    def _failure(
        self,
        error: SyncError,
        changes: ChangeSet,
        commit_id: Optional[str],
        credentials: Optional[Credentials],
    ) -> SyncResult:
        secrets = [credentials.token] if credentials is not None else []
        message = mask_secrets(error.message, secrets)
        logger.error(f"Sync failed ({error.reason.value}): {message}")
        if error.details:
            logger.debug(mask_secrets(error.details, secrets))
        if commit_id:
            logger.info(f"Commit {commit_id[:8]} kept locally; the next sync will push it")
        self.hub.transition(SyncState.FAILED, message)
        return SyncResult.failed(error.reason, message, changes, commit_id)

    def _refresh_position(self, branch: Optional[str]) -> None:
        try:
            if not self.repository.is_repository():
                return
            branch = branch or self.repository.current_branch()
            if branch is None:
                return
            ahead, behind = self.repository.ahead_behind(branch)
        except (SyncError, GitCommandError, ValueError) as e:
            logger.debug(f"Could not compute ahead/behind: {e}")
            return
        self.hub.update_position(branch, ahead, behind)
