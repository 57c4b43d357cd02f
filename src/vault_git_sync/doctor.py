"""Doctor module for diagnosing common sync setup issues."""

import logging
import shutil
from pathlib import Path
from typing import Optional

import httpx
from git import GitCommandError

from .errors import SyncError
from .log import mask_secrets
from .repository import VaultRepository
from .settings import SyncSettings


class Doctor:
    """Diagnose vault sync configuration problems."""

    def __init__(self, vault_path: Path, settings: SyncSettings, verbose: bool = False) -> None:
        self.vault_path = vault_path
        self.settings = settings
        self.verbose = verbose
        self.repository = VaultRepository(vault_path)
        self.issues: list[dict] = []

        if verbose:
            logging.getLogger("vault_git_sync").setLevel(logging.DEBUG)

    def run_checks(self) -> list[dict]:
        """Run all diagnostic checks."""
        self.issues = []

        self._check_git_installed()
        self._check_remote_configured()
        if self.repository.is_repository():
            self._check_origin_matches()
            self._check_branch_matches()
            self._check_unpushed_commits()
        else:
            self._add("info", "Vault is not a Git repository yet; the first sync will clone the remote")
        self._check_proxy()

        return self.issues

    def _add(self, severity: str, message: str, details: Optional[str] = None) -> None:
        issue = {"severity": severity, "message": message}
        if details:
            issue["details"] = details
        self.issues.append(issue)

    def _check_git_installed(self) -> None:
        if shutil.which("git") is None:
            self._add("error", "Git is not installed or not in PATH")

    def _check_remote_configured(self) -> None:
        if not self.settings.remote_url:
            self._add("error", "No remote repository URL configured")

    def _check_origin_matches(self) -> None:
        if not self.settings.remote_url:
            return
        origin = self.repository.origin_url()
        if origin is None:
            self._add("error", "Repository has no 'origin' remote")
        elif origin.rstrip("/") != self.settings.remote_url.rstrip("/"):
            self._add(
                "error",
                "Repository 'origin' differs from the configured remote URL",
                f"origin: {mask_secrets(origin)}",
            )

    def _check_branch_matches(self) -> None:
        branch = self.repository.current_branch()
        if branch != self.settings.branch:
            self._add(
                "error",
                f"Checked-out branch is {branch or '(detached)'}, configured branch is {self.settings.branch}",
            )

    def _check_unpushed_commits(self) -> None:
        try:
            if self.repository.has_unpushed_commits(self.settings.branch):
                self._add("warning", "Local commits have not been pushed yet")
        except (SyncError, GitCommandError) as e:
            self._add("warning", f"Could not compare with the remote branch: {e}")

    def _check_proxy(self) -> None:
        if not self.settings.proxy_url:
            return
        url = f"{self.settings.proxy_url.rstrip('/')}/health"
        try:
            response = httpx.get(url, timeout=5.0)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._add("error", f"Proxy not reachable at {self.settings.proxy_url}", str(e))
