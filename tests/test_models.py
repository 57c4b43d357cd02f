"""Tests for the data model."""

from vault_git_sync.models import (
    Change,
    ChangeKind,
    ChangeSet,
    Credentials,
    FailureReason,
    StatusSnapshot,
    SyncOutcome,
    SyncResult,
    SyncState,
)


class TestCredentials:
    """Test Credentials."""

    def test_token_not_in_repr(self):
        """The token never shows up in repr."""
        creds = Credentials(username="alice", token="s3cret-token")
        assert "s3cret-token" not in repr(creds)
        assert "alice" in repr(creds)

    def test_has_secret_needs_both(self):
        assert Credentials(username="alice", token="t0k").has_secret
        assert not Credentials(username="alice").has_secret
        assert not Credentials(token="t0k").has_secret

    def test_identity_unset(self):
        assert Credentials().identity_unset
        assert not Credentials(author_name="").identity_unset
        assert not Credentials(author_email="a@b.c").identity_unset


class TestChangeSet:
    """Test ChangeSet."""

    def test_sequence_behaviour(self):
        changes = ChangeSet([
            Change("a.md", ChangeKind.ADDED),
            Change("b.md", ChangeKind.MODIFIED),
        ])
        assert len(changes) == 2
        assert changes[1].path == "b.md"
        assert [c.path for c in changes] == ["a.md", "b.md"]
        assert bool(ChangeSet()) is False

    def test_paths_include_rename_source(self):
        changes = ChangeSet([Change("new.md", ChangeKind.RENAMED, previous_path="old.md")])
        assert changes.paths() == ["old.md", "new.md"]

    def test_by_kind(self):
        changes = ChangeSet([
            Change("a.md", ChangeKind.ADDED),
            Change("gone.md", ChangeKind.DELETED),
        ])
        assert changes.by_kind(ChangeKind.DELETED) == [Change("gone.md", ChangeKind.DELETED)]
        assert changes.by_kind(ChangeKind.RENAMED) == []

    def test_equality_and_hash(self):
        first = ChangeSet([Change("a.md", ChangeKind.ADDED)])
        second = ChangeSet([Change("a.md", ChangeKind.ADDED)])
        assert first == second
        assert hash(first) == hash(second)

    def test_change_str(self):
        assert str(Change("a.md", ChangeKind.ADDED)) == "added: a.md"
        assert str(Change("b.md", ChangeKind.RENAMED, "a.md")) == "renamed: a.md -> b.md"


class TestSyncResult:
    """Test SyncResult constructors."""

    def test_succeeded(self):
        changes = ChangeSet([Change("a.md", ChangeKind.ADDED)])
        result = SyncResult.succeeded(changes, "abcdef1234567890")
        assert result.outcome is SyncOutcome.SUCCESS
        assert result.files_changed == 1
        assert result.ok
        assert str(result) == "Synced 1 file(s) in abcdef12"

    def test_no_changes(self):
        result = SyncResult.no_changes()
        assert result.outcome is SyncOutcome.NO_CHANGES
        assert result.files_changed == 0
        assert result.commit_id is None
        assert result.ok

    def test_failed_keeps_commit(self):
        result = SyncResult.failed(FailureReason.PUSH_REJECTED, "rejected", commit_id="abc")
        assert not result.ok
        assert result.commit_id == "abc"
        assert str(result) == "Failed (push_rejected): rejected"

    def test_retryable_reasons(self):
        assert FailureReason.TIMEOUT.retryable
        assert FailureReason.NETWORK_UNREACHABLE.retryable
        assert not FailureReason.MERGE_CONFLICT.retryable
        assert not FailureReason.AUTHENTICATION_FAILED.retryable


def test_status_snapshot_str():
    """Snapshot text mentions branch and position."""
    snapshot = StatusSnapshot(branch="main", ahead=2, behind=1, state=SyncState.IDLE)
    text = str(snapshot)
    assert "On branch: main" in text
    assert "ahead 2" in text
    assert "behind 1" in text
