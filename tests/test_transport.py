"""Tests for the Git transport and credential delivery."""

import base64
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import git
import pytest
import uvicorn

from vault_git_sync.errors import (
    InvalidRemoteUrlError,
    SyncCancelledError,
    SyncError,
    SyncTimeoutError,
)
from vault_git_sync.models import Credentials
from vault_git_sync.proxy import create_app
from vault_git_sync.transport import (
    CREDENTIAL_HELPER,
    TOKEN_ENV,
    USERNAME_ENV,
    GitTransport,
    resolve_credentials,
    validate_remote_url,
)


def _config(env):
    """GIT_CONFIG_* entries as a list of (key, value)."""
    count = int(env.get("GIT_CONFIG_COUNT", 0))
    return [(env[f"GIT_CONFIG_KEY_{i}"], env[f"GIT_CONFIG_VALUE_{i}"]) for i in range(count)]


class TestValidateRemoteUrl:
    """Test validate_remote_url."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://github.com/alice/notes.git",
            "http://localhost:8080/notes.git",
            "ssh://git@github.com/alice/notes.git",
            "git@github.com:alice/notes.git",
            "file:///srv/git/notes.git",
        ],
    )
    def test_accepts(self, url):
        assert validate_remote_url(f"  {url} ") == url

    @pytest.mark.parametrize("url", ["", "   ", "ftp://host/repo.git", "notes.git", "https:///repo.git"])
    def test_rejects(self, url):
        with pytest.raises(InvalidRemoteUrlError):
            validate_remote_url(url)


class TestResolveCredentials:
    """Test resolve_credentials."""

    def test_none(self):
        assert resolve_credentials(None, "https://h/r.git") == Credentials()

    def test_value(self):
        creds = Credentials(username="alice", token="t0ken")
        assert resolve_credentials(creds, "https://h/r.git") is creds

    def test_provider_called_with_url(self):
        seen = []

        def provider(url):
            seen.append(url)
            return Credentials(username="bob", token="abc")

        assert resolve_credentials(provider, "https://h/r.git").username == "bob"
        assert seen == ["https://h/r.git"]

    def test_provider_returning_none(self):
        assert resolve_credentials(lambda url: None, "https://h/r.git") == Credentials()


class TestEnvironment:
    """Test how credentials reach git."""

    def test_no_credentials(self):
        env = GitTransport().environment("https://github.com/a/b.git")
        assert env == {"GIT_TERMINAL_PROMPT": "0"}

    def test_direct_uses_credential_helper(self):
        creds = Credentials(username="alice", token="ghp_secret")
        env = GitTransport().environment("https://github.com/a/b.git", creds)

        assert _config(env) == [("credential.helper", ""), ("credential.helper", CREDENTIAL_HELPER)]
        assert env[USERNAME_ENV] == "alice"
        assert env[TOKEN_ENV] == "ghp_secret"
        assert "ghp_secret" not in CREDENTIAL_HELPER

    def test_proxy_rewrites_url_and_forwards_headers(self):
        creds = Credentials(username="alice", token="ghp_secret")
        transport = GitTransport(proxy_url="http://localhost:3001/")
        env = transport.environment("https://github.com/a/b.git", creds)

        assert _config(env) == [
            ("url.http://localhost:3001/proxy?url=https://github.com/.insteadOf", "https://github.com/"),
            ("http.extraHeader", "X-Git-Username: alice"),
            ("http.extraHeader", "X-Git-Password: ghp_secret"),
        ]
        assert TOKEN_ENV not in env

    def test_proxy_keeps_port(self):
        env = GitTransport(proxy_url="http://p:3001").environment("http://git.local:8080/r.git")
        assert _config(env)[0][1] == "http://git.local:8080/"

    def test_proxy_not_used_for_ssh(self):
        """Only HTTP remotes can be proxied."""
        creds = Credentials(username="alice", token="ghp_secret")
        env = GitTransport(proxy_url="http://p:3001").environment("ssh://git@host/r.git", creds)
        assert not any(key.startswith("url.") for key, _ in _config(env))


class TestRun:
    """Test running network commands."""

    def test_connection_to_file_remote(self, remote):
        assert GitTransport().test_connection(remote.url) is True

    def test_connection_to_missing_remote(self, tmp_path):
        with pytest.raises(InvalidRemoteUrlError):
            GitTransport().test_connection((tmp_path / "missing.git").as_uri())

    def test_cancel_before_start(self, remote):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SyncCancelledError):
            GitTransport().test_connection(remote.url, cancel=cancel)

    def test_timeout_kills_command(self):
        """A command running past the deadline is killed and reported."""
        transport = GitTransport(timeout=0.3, poll_interval=0.05)
        with pytest.raises(SyncTimeoutError):
            transport.run(
                git.Git(),
                "ls-remote",
                "ssh://example.invalid/repo.git",
                remote_url="ssh://example.invalid/repo.git",
                extra_env={"GIT_SSH_COMMAND": "sleep 2 #"},
            )


class ChallengeHandler(BaseHTTPRequestHandler):
    """Upstream that demands Basic auth, then reports the repository missing."""

    def do_GET(self):
        auth = self.headers.get("Authorization")
        self.server.seen.append(auth)
        if auth is None:
            self.send_response(401)
            self.send_header("WWW-Authenticate", 'Basic realm="vault"')
        else:
            self.send_response(404)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        pass


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def challenge_upstream():
    """HTTP server on localhost recording the Authorization header of each request."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), ChallengeHandler)
    server.seen = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def proxy_server():
    """The transport proxy served by uvicorn on a free local port."""
    port = _free_port()
    server = uvicorn.Server(uvicorn.Config(create_app(timeout=10), host="127.0.0.1", port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    deadline = time.monotonic() + 10
    while not server.started and time.monotonic() < deadline:
        time.sleep(0.05)
    assert server.started
    yield f"http://127.0.0.1:{port}"
    server.should_exit = True
    thread.join(10)


class TestCredentialDelivery:
    """Test that git answers an auth challenge with the configured credentials."""

    EXPECTED = "Basic " + base64.b64encode(b"alice:s3cret").decode()

    def test_direct_credential_helper(self, challenge_upstream):
        url = f"http://127.0.0.1:{challenge_upstream.server_port}/alice/notes.git"
        with pytest.raises(InvalidRemoteUrlError):
            GitTransport(timeout=20).test_connection(url, Credentials(username="alice", token="s3cret"))

        assert challenge_upstream.seen[0] is None
        assert self.EXPECTED in challenge_upstream.seen

    def test_headers_through_proxy(self, challenge_upstream, proxy_server):
        url = f"http://127.0.0.1:{challenge_upstream.server_port}/alice/notes.git"
        transport = GitTransport(proxy_url=proxy_server, timeout=20)
        with pytest.raises(SyncError):
            transport.test_connection(url, Credentials(username="alice", token="s3cret"))

        assert challenge_upstream.seen
        assert challenge_upstream.seen[0] == self.EXPECTED
