"""
Network access for Git commands.

Every clone, fetch, pull, push and ls-remote goes through a ``GitTransport``.
It decides how credentials reach Git (an inline credential helper, or
forwarded headers when a transport proxy is configured), bounds each
network phase with a deadline and stops promptly on cancellation.
"""

from __future__ import annotations

import logging
import re
import subprocess
import threading
import time
from typing import Callable, Optional, Union
from urllib.parse import urlsplit

import git
from git import GitCommandError

from .errors import (
    InvalidRemoteUrlError,
    SyncCancelledError,
    SyncTimeoutError,
    classify_git_error,
)
from .log import mask_secrets
from .models import Credentials

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[str], Optional[Credentials]]
CredentialSource = Union[Credentials, CredentialProvider, None]

USERNAME_ENV = "VAULT_GIT_SYNC_USERNAME"
TOKEN_ENV = "VAULT_GIT_SYNC_TOKEN"

USERNAME_HEADER = "X-Git-Username"
PASSWORD_HEADER = "X-Git-Password"

# Answers Git's credential challenge from the environment of the git process.
CREDENTIAL_HELPER = (
    r'!f() { test "$1" = get || exit 0; '
    r"printf 'username=%s\npassword=%s\n' "
    f'"${USERNAME_ENV}" "${TOKEN_ENV}"; }}; f'
)

DEFAULT_TIMEOUT = 120.0

_SUPPORTED_SCHEMES = {"http", "https", "ssh", "git", "file"}
_SCP_LIKE = re.compile(r"^[\w.-]+@[\w.-]+:[^/].*")


def validate_remote_url(remote_url: str) -> str:
    """Return the stripped URL or raise ``InvalidRemoteUrlError``."""
    url = (remote_url or "").strip()
    if not url:
        raise InvalidRemoteUrlError("Remote URL is empty", "Configure the repository URL")
    if _SCP_LIKE.match(url):
        return url

    parts = urlsplit(url)
    if parts.scheme not in _SUPPORTED_SCHEMES:
        raise InvalidRemoteUrlError(
            f"Unsupported remote URL: {mask_secrets(url)}",
            "Use an https://, ssh:// or git@host:path URL",
        )
    if parts.scheme != "file" and not parts.hostname:
        raise InvalidRemoteUrlError(f"Remote URL has no host: {mask_secrets(url)}")
    return url


def resolve_credentials(source: CredentialSource, remote_url: str) -> Credentials:
    """Turn a credentials value or provider callback into ``Credentials``."""
    if source is None:
        return Credentials()
    if isinstance(source, Credentials):
        return source
    return source(remote_url) or Credentials()


class GitTransport:
    """Runs Git network commands with credentials, a deadline and cancellation."""

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = 0.1,
    ) -> None:
        self.proxy_url = proxy_url.rstrip("/") if proxy_url else None
        self.timeout = timeout
        self.poll_interval = poll_interval

    def environment(self, remote_url: str, credentials: Optional[Credentials] = None) -> dict[str, str]:
        """Environment for one network command against ``remote_url``.

        Configuration goes through ``GIT_CONFIG_COUNT`` so nothing is written
        to the repository config and the secret never appears in argv.
        """
        env = {"GIT_TERMINAL_PROMPT": "0"}
        config: list[tuple[str, str]] = []

        parts = urlsplit(remote_url)
        if self.proxy_url and parts.scheme in ("http", "https"):
            host = parts.hostname or ""
            if parts.port:
                host = f"{host}:{parts.port}"
            origin = f"{parts.scheme}://{host}/"
            config.append((f"url.{self.proxy_url}/proxy?url={origin}.insteadOf", origin))
            if credentials is not None and credentials.has_secret:
                config.append(("http.extraHeader", f"{USERNAME_HEADER}: {credentials.username}"))
                config.append(("http.extraHeader", f"{PASSWORD_HEADER}: {credentials.token}"))
        elif credentials is not None and credentials.has_secret:
            # An empty value resets helpers inherited from the user's config.
            config.append(("credential.helper", ""))
            config.append(("credential.helper", CREDENTIAL_HELPER))
            env[USERNAME_ENV] = credentials.username
            env[TOKEN_ENV] = credentials.token

        if config:
            env["GIT_CONFIG_COUNT"] = str(len(config))
            for index, (key, value) in enumerate(config):
                env[f"GIT_CONFIG_KEY_{index}"] = key
                env[f"GIT_CONFIG_VALUE_{index}"] = value
        return env

    def run(
        self,
        git_cmd: git.Git,
        command: str,
        *args: str,
        remote_url: str,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
        extra_env: Optional[dict[str, str]] = None,
    ) -> str:
        """Run ``git <command> <args>`` and return its stdout.

        Raises:
            SyncTimeoutError: The phase deadline passed; the process is killed
            SyncCancelledError: ``cancel`` was set; the process is killed
            GitCommandError: Git exited non-zero
        """
        if cancel is not None and cancel.is_set():
            raise SyncCancelledError(f"{command} cancelled before it started")

        env = self.environment(remote_url, credentials)
        if extra_env:
            env.update(extra_env)

        logger.debug(f"Running git {command} against {mask_secrets(remote_url)}")
        with git_cmd.custom_environment(**env):
            proc = getattr(git_cmd, command.replace("-", "_"))(*args, as_process=True)

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                stdout, stderr = proc.proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    self._kill(proc)
                    raise SyncCancelledError(f"{command} cancelled")
                if time.monotonic() >= deadline:
                    self._kill(proc)
                    raise SyncTimeoutError(
                        f"git {command} did not complete in {self.timeout:g} secs",
                        "The remote may be slow or unreachable",
                    )

        out = _decode(stdout)
        if proc.proc.returncode != 0:
            raise GitCommandError(proc.args, proc.proc.returncode, _decode(stderr), out)
        return out

    def test_connection(
        self,
        remote_url: str,
        credentials: Optional[Credentials] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Check that ``remote_url`` answers ``git ls-remote`` with these credentials."""
        url = validate_remote_url(remote_url)
        try:
            self.run(
                git.Git(),
                "ls-remote",
                "--heads",
                url,
                remote_url=url,
                credentials=credentials,
                cancel=cancel,
            )
        except GitCommandError as e:
            raise classify_git_error(e, "connection test")
        logger.info(f"Connection to {mask_secrets(url)} successful")
        return True

    @staticmethod
    def _kill(proc) -> None:
        proc.proc.kill()
        try:
            proc.proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            pass


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace").strip()
    return str(data).strip()
