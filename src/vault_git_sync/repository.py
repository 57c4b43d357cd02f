"""
Repository state accessor for a vault working directory.

Answers "is this a repository", "what changed" and "how far ahead/behind"
through GitPython, and performs the individual Git steps the sync engine
strings together. Network steps go through a :class:`GitTransport`.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

import git
from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import GitError, MergeConflictError, NotAGitRepoError, SyncError, classify_git_error
from .models import Change, ChangeKind, ChangeSet, CommitInfo, Credentials
from .transport import GitTransport

logger = logging.getLogger(__name__)

# Hash of the empty tree, used as the diff base before the first commit.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

# Git reports a branch missing on the remote with one of these.
_MISSING_BRANCH_MARKERS = ("couldn't find remote ref", "not found in upstream")

_STATUS_KINDS = {
    "A": ChangeKind.ADDED,
    "C": ChangeKind.ADDED,
    "M": ChangeKind.MODIFIED,
    "T": ChangeKind.MODIFIED,
    "D": ChangeKind.DELETED,
    "R": ChangeKind.RENAMED,
}


def _missing_remote_branch(exc: GitCommandError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _MISSING_BRANCH_MARKERS)


def identity_env(actor: Actor) -> dict[str, str]:
    """Environment that gives merge commits created by ``git pull`` an identity."""
    return {
        "GIT_AUTHOR_NAME": actor.name,
        "GIT_AUTHOR_EMAIL": actor.email,
        "GIT_COMMITTER_NAME": actor.name,
        "GIT_COMMITTER_EMAIL": actor.email,
    }


def parse_name_status(output: str) -> ChangeSet:
    """Parse ``git diff --name-status -z`` output into a ChangeSet."""
    tokens = output.split("\0")
    changes: list[Change] = []
    i = 0
    while i < len(tokens):
        status = tokens[i].strip()
        i += 1
        if not status:
            continue
        kind = _STATUS_KINDS.get(status[0])
        if kind is None:
            logger.warning(f"Ignoring unexpected diff status {status!r}")
            i += 1
            continue
        if status[0] in "RC":
            old_path, new_path = tokens[i], tokens[i + 1]
            i += 2
            previous = old_path if kind is ChangeKind.RENAMED else None
            changes.append(Change(path=new_path, kind=kind, previous_path=previous))
        else:
            changes.append(Change(path=tokens[i], kind=kind))
            i += 1
    return ChangeSet(changes)


class VaultRepository:
    """Git state of one vault directory."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser().resolve()

    def is_repository(self) -> bool:
        """True iff the vault directory itself is a repository root."""
        try:
            repo = git.Repo(self.path, search_parent_directories=False)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False
        working_tree = repo.working_tree_dir
        return working_tree is not None and Path(working_tree).resolve() == self.path

    def open(self) -> git.Repo:
        if not self.is_repository():
            raise NotAGitRepoError(
                f"'{self.path}' is not a Git repository",
                "The first sync clones the remote into it",
            )
        return git.Repo(self.path)

    def has_commits(self) -> bool:
        try:
            self.open().head.commit
            return True
        except ValueError:
            return False

    def current_branch(self) -> Optional[str]:
        try:
            return self.open().active_branch.name
        except TypeError:
            return None  # Detached HEAD

    def origin_url(self) -> Optional[str]:
        repo = self.open()
        try:
            urls = list(repo.remote("origin").urls)
        except ValueError:
            return None
        return urls[0] if urls else None

    def changed_paths(self) -> ChangeSet:
        """Working-tree changes relative to the last commit.

        The whole tree is staged into a throwaway copy of the index so renames
        are detected; the real index is left untouched.
        """
        repo = self.open()
        base = "HEAD" if self.has_commits() else EMPTY_TREE_SHA

        with tempfile.TemporaryDirectory(prefix="vault-git-sync-") as tmp:
            scratch_index = Path(tmp) / "index"
            real_index = Path(repo.git_dir) / "index"
            if real_index.exists():
                shutil.copyfile(real_index, scratch_index)

            with repo.git.custom_environment(GIT_INDEX_FILE=str(scratch_index)):
                repo.git.add(A=True)
                output = repo.git.diff("--cached", "--name-status", "-M", "-z", base)

        return parse_name_status(output)

    def log(self, limit: int = 20) -> list[CommitInfo]:
        """Most recent commits on the current branch, newest first."""
        if not self.has_commits():
            return []
        return [
            CommitInfo(
                hexsha=commit.hexsha,
                date=commit.authored_datetime,
                message=commit.summary,
                author=commit.author.name,
            )
            for commit in self.open().iter_commits(max_count=limit)
        ]

    def _remote_ref_exists(self, repo: git.Repo, branch: str) -> bool:
        try:
            repo.git.rev_parse("--verify", "--quiet", f"refs/remotes/origin/{branch}")
            return True
        except GitCommandError:
            return False

    def ahead_behind(self, branch: str) -> tuple[int, int]:
        """Commits only on the local branch vs. only on ``origin/<branch>``.

        ``(0, 0)`` when the remote branch has never been fetched or pushed.
        """
        repo = self.open()
        if not self._remote_ref_exists(repo, branch):
            return 0, 0

        upstream = f"origin/{branch}"
        if not self.has_commits():
            return 0, int(repo.git.rev_list("--count", upstream) or 0)

        output = repo.git.rev_list("--left-right", "--count", f"{branch}...{upstream}")
        ahead, behind = output.split()
        return int(ahead), int(behind)

    def has_unpushed_commits(self, branch: str) -> bool:
        repo = self.open()
        if not self.has_commits():
            return False
        if not self._remote_ref_exists(repo, branch):
            return True
        ahead, _ = self.ahead_behind(branch)
        return ahead > 0

    # -- steps driven by the sync engine ------------------------------------

    def clone(
        self,
        remote_url: str,
        branch: str,
        transport: GitTransport,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
    ) -> git.Repo:
        """Shallow, single-branch clone into the (missing or empty) vault directory.

        If the remote has no such branch yet, a new repository is started
        instead and the first push creates the branch.
        """
        existed = self.path.exists()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            transport.run(
                git.Git(str(self.path.parent)),
                "clone",
                "--depth", "1",
                "--single-branch",
                "--branch", branch,
                "--",
                remote_url,
                str(self.path),
                remote_url=remote_url,
                credentials=credentials,
                cancel=cancel,
            )
        except GitCommandError as e:
            if _missing_remote_branch(e):
                logger.info(f"Remote has no branch {branch} yet, starting a new repository")
                return self.adopt(remote_url, branch, transport, credentials, cancel)
            self._discard_partial_clone(existed)
            raise classify_git_error(e, "clone")
        except SyncError:
            # A killed clone leaves its half-written checkout behind.
            self._discard_partial_clone(existed)
            raise
        logger.info(f"Cloned branch {branch} into {self.path}")
        return git.Repo(self.path)

    def _discard_partial_clone(self, existed: bool) -> None:
        """Return the vault directory to the missing or empty state it had before the clone."""
        if not self.path.exists():
            return
        if not existed:
            shutil.rmtree(self.path)
        else:
            for child in self.path.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        logger.warning(f"Removed incomplete clone in {self.path}")

    def adopt(
        self,
        remote_url: str,
        branch: str,
        transport: GitTransport,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
    ) -> git.Repo:
        """Turn an existing, non-empty vault directory into a clone in place.

        Local files are kept as working-tree changes on top of the remote
        branch; remote files missing locally are restored, not deleted.
        """
        created = not (self.path / ".git").exists()
        repo = git.Repo.init(self.path, initial_branch=branch)
        try:
            repo.git.remote("add", "-t", branch, "origin", remote_url)
            transport.run(
                repo.git,
                "fetch",
                "--depth", "1",
                "origin",
                f"+refs/heads/{branch}:refs/remotes/origin/{branch}",
                remote_url=remote_url,
                credentials=credentials,
                cancel=cancel,
            )
        except GitCommandError as e:
            if _missing_remote_branch(e):
                logger.info(f"origin/{branch} does not exist yet, keeping local files as they are")
                return repo
            self._discard_git_dir(created)
            raise classify_git_error(e, "fetch")
        except SyncError:
            self._discard_git_dir(created)
            raise

        repo.git.reset("--mixed", f"origin/{branch}")
        missing = [p for p in repo.git.ls_files("--deleted", "-z").split("\0") if p]
        if missing:
            repo.git.checkout("--", *missing)
        repo.git.branch(f"--set-upstream-to=origin/{branch}", branch)
        logger.info(f"Initialized {self.path} on top of origin/{branch}")
        return repo

    def _discard_git_dir(self, created: bool) -> None:
        """Drop the repository ``adopt`` started so the next sync adopts again."""
        git_dir = self.path / ".git"
        if created and git_dir.exists():
            shutil.rmtree(git_dir)
            logger.warning(f"Removed incomplete repository in {self.path}")

    def pull(
        self,
        branch: str,
        remote_url: str,
        transport: GitTransport,
        actor: Actor,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """Fetch and merge ``origin/<branch>``; a conflicted merge is aborted."""
        repo = self.open()
        try:
            transport.run(
                repo.git,
                "pull",
                "--no-rebase",
                "--no-edit",
                "origin",
                branch,
                remote_url=remote_url,
                credentials=credentials,
                cancel=cancel,
                extra_env=identity_env(actor),
            )
        except GitCommandError as e:
            if _missing_remote_branch(e):
                logger.info(f"origin/{branch} does not exist yet, nothing to pull")
                return
            error = classify_git_error(e, "pull")
            if isinstance(error, MergeConflictError):
                self.abort_merge()
            raise error
        logger.info(f"Pulled from origin/{branch}")

    def abort_merge(self) -> bool:
        """Undo a half-finished merge so no later step commits over it."""
        repo = self.open()
        if not (Path(repo.git_dir) / "MERGE_HEAD").exists():
            return False
        try:
            repo.git.merge("--abort")
        except GitCommandError as e:
            raise GitError("Could not abort the conflicted merge", str(e))
        logger.warning("Aborted conflicted merge")
        return True

    def stage_all(self) -> None:
        self.open().git.add(A=True)
        logger.debug("Staged all files")

    def commit(self, message: str, actor: Actor) -> str:
        commit = self.open().index.commit(message, author=actor, committer=actor)
        logger.info(f"Created commit: {commit.hexsha[:8]} - {message}")
        return commit.hexsha

    def push(
        self,
        branch: str,
        remote_url: str,
        transport: GitTransport,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        repo = self.open()
        try:
            transport.run(
                repo.git,
                "push",
                "--porcelain",
                "origin",
                f"{branch}:{branch}",
                remote_url=remote_url,
                credentials=credentials,
                cancel=cancel,
            )
        except GitCommandError as e:
            raise classify_git_error(e, "push")
        logger.info(f"Pushed {branch} to origin")
