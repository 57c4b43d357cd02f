"""Shared fixtures: bare remotes on disk and vault directories."""

from pathlib import Path

import git
import pytest
from git import Actor

AUTHOR = Actor("Remote Author", "remote@example.com")


class RemoteRepo:
    """A bare repository reachable over file:// plus a scratch clone to edit it."""

    def __init__(self, root: Path, branch: str = "main") -> None:
        self.branch = branch
        self.path = root / "remote.git"
        self.url = self.path.as_uri()
        git.Repo.init(self.path, bare=True, initial_branch=branch)

        self.work_path = root / "remote-work"
        self.work = git.Repo.init(self.work_path, initial_branch=branch)
        self.work.create_remote("origin", self.url)
        self.pushed = False

    def commit(self, files: dict, message: str = "Remote edit", delete: tuple = ()) -> str:
        """Write/delete files in the scratch clone, commit and push them."""
        if self.pushed:
            self.work.git.pull("--ff-only", "origin", self.branch)
        for name, content in files.items():
            target = self.work_path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            self.work.index.add([name])
        if delete:
            self.work.index.remove(list(delete), working_tree=True)
        commit = self.work.index.commit(message, author=AUTHOR, committer=AUTHOR)
        self.work.git.push("origin", f"{self.branch}:{self.branch}")
        self.pushed = True
        return commit.hexsha

    def files(self) -> set:
        """Paths in the tip commit of the remote branch."""
        bare = git.Repo(self.path)
        tree = bare.commit(self.branch).tree
        return {blob.path for blob in tree.traverse() if blob.type == "blob"}

    def read(self, name: str) -> str:
        bare = git.Repo(self.path)
        return bare.git.show(f"{self.branch}:{name}")

    def head(self) -> git.Commit:
        return git.Repo(self.path).commit(self.branch)


@pytest.fixture
def remote(tmp_path):
    """Bare remote with one commit containing welcome.md."""
    repo = RemoteRepo(tmp_path)
    repo.commit({"welcome.md": "# Welcome\n\nFirst line.\n"}, message="Initial commit")
    return repo


@pytest.fixture
def empty_remote(tmp_path):
    """Bare remote without any branch."""
    return RemoteRepo(tmp_path)


@pytest.fixture
def vault(tmp_path):
    """Path of a vault directory that does not exist yet."""
    return tmp_path / "vault"
