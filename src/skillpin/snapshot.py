from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ContextManager, Iterator, Protocol

from .client import SkillpinError

if TYPE_CHECKING:
    from .client import GitHubClient
    from .source import SourceLocation

logger = logging.getLogger(__name__)


class SnapshotError(SkillpinError):
    pass


@dataclass(frozen=True)
class Snapshot:
    root: Path
    commit_id: str


class SnapshotProvider(Protocol):
    def acquire(self, location: SourceLocation) -> ContextManager[Snapshot]:
        ...

    def resolve_commit(self, location: SourceLocation) -> str:
        ...


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    # Never prompt: https remotes get no credentials, ssh remotes only the agent.
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    return env


def run_git(args: list[str], *, cwd: Path | None = None) -> str:
    if shutil.which("git") is None:
        raise SnapshotError("git executable not found on PATH")
    logger.debug("Running %s", " ".join(args))
    result = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        check=False,
        env=_git_env(),
    )
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip()
        raise SnapshotError(f"Git command failed: git {' '.join(args)}\n{stderr}")
    return result.stdout


def resolve_git_commit(repo_root: Path, revision: str = "HEAD") -> str:
    output = run_git(["rev-parse", f"{revision}^{{commit}}"], cwd=repo_root)
    values = output.strip().splitlines()
    commit = values[0].strip() if values else ""
    if not commit:
        raise SnapshotError(f"Could not resolve {revision} in {repo_root}")
    return commit


@contextmanager
def acquire(location: SourceLocation) -> Iterator[Snapshot]:
    """Shallow-clone `location` into a temporary directory that lives for the `with` block."""
    with tempfile.TemporaryDirectory(prefix="skillpin-", ignore_cleanup_errors=True) as td:
        checkout = Path(td) / "repo"
        args = ["clone", "--depth", "1", "--quiet"]
        if location.ref:
            args.extend(["--branch", location.ref])
        args.extend([location.url, str(checkout)])
        try:
            run_git(args)
        except SnapshotError as e:
            raise SnapshotError(f"Failed to clone {location.url}: {e}") from e
        commit = resolve_git_commit(checkout)
        logger.debug("Cloned %s at %s", location.url, commit)
        yield Snapshot(root=checkout, commit_id=commit)


def resolve_commit_only(location: SourceLocation, *, client: GitHubClient | None = None) -> str:
    """
    Return the commit the location currently points at.

    The hosting API is only a shortcut; any failure there falls back to a full
    shallow clone. Results are never cached.
    """
    if client is not None and location.is_github and location.owner and location.repo:
        try:
            return client.latest_commit(location.owner, location.repo, location.ref)
        except SkillpinError as e:
            logger.debug("Commit lookup for %s failed (%s); falling back to clone", location.canonical(), e)
    with acquire(location) as snapshot:
        return snapshot.commit_id


class GitSnapshotProvider:
    def __init__(self, client: GitHubClient | None = None) -> None:
        self.client = client

    def acquire(self, location: SourceLocation) -> ContextManager[Snapshot]:
        return acquire(location)

    def resolve_commit(self, location: SourceLocation) -> str:
        return resolve_commit_only(location, client=self.client)


class SnapshotCache:
    """
    Per-command snapshot cache keyed by (url, ref).

    Every snapshot acquired through the cache stays on disk until `close()`,
    so skills sharing a source are fetched once per command.
    """

    def __init__(self, provider: SnapshotProvider) -> None:
        self.provider = provider
        self._stack = ExitStack()
        self._snapshots: dict[tuple[str, str | None], Snapshot] = {}

    def get(self, location: SourceLocation) -> Snapshot:
        key = (location.url, location.ref)
        cached = self._snapshots.get(key)
        if cached is not None:
            logger.debug("Reusing snapshot of %s", location.url)
            return cached
        snapshot = self._stack.enter_context(self.provider.acquire(location))
        self._snapshots[key] = snapshot
        return snapshot

    def close(self) -> None:
        self._snapshots.clear()
        self._stack.close()

    def __enter__(self) -> "SnapshotCache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
