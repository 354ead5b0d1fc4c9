import subprocess
import unittest
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

import httpx

from skillpin.client import GitHubClient
from skillpin.snapshot import (
    GitSnapshotProvider,
    Snapshot,
    SnapshotCache,
    SnapshotError,
    acquire,
    resolve_commit_only,
    run_git,
)
from skillpin.source import parse_source


def _client(handler) -> GitHubClient:
    client = GitHubClient(api_url="https://api.github.com", token="tok_123")
    client._http = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)  # type: ignore[attr-defined]
    return client


class _CountingProvider:
    def __init__(self) -> None:
        self.acquired: list[tuple[str, str | None]] = []
        self.released: list[tuple[str, str | None]] = []

    @contextmanager
    def acquire(self, location):
        key = (location.url, location.ref)
        self.acquired.append(key)
        try:
            yield Snapshot(root=Path("/snapshots") / str(len(self.acquired)), commit_id="a" * 40)
        finally:
            self.released.append(key)

    def resolve_commit(self, location) -> str:
        return "a" * 40


class TestSnapshotCache(unittest.TestCase):
    def test_same_location_is_acquired_once(self) -> None:
        provider = _CountingProvider()
        loc = parse_source("acme/skills")

        with SnapshotCache(provider) as cache:
            first = cache.get(loc)
            again = cache.get(parse_source("https://github.com/acme/skills"))
            other_ref = cache.get(loc.with_ref("dev"))
            self.assertIs(first, again)
            self.assertIsNot(first, other_ref)
            self.assertEqual(provider.released, [])

        self.assertEqual(provider.acquired, [(loc.url, None), (loc.url, "dev")])
        self.assertEqual(sorted(provider.released), sorted(provider.acquired))

    def test_snapshots_released_on_error(self) -> None:
        provider = _CountingProvider()
        with self.assertRaises(RuntimeError):
            with SnapshotCache(provider) as cache:
                cache.get(parse_source("acme/skills"))
                raise RuntimeError("boom")
        self.assertEqual(len(provider.released), 1)


class TestResolveCommitOnly(unittest.TestCase):
    def test_uses_commit_lookup_for_github(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"sha": "c" * 40})

        client = _client(handler)
        try:
            with patch("skillpin.snapshot.acquire") as mock_acquire:
                commit = resolve_commit_only(parse_source("https://github.com/acme/skills/tree/v1.0"), client=client)
                head = resolve_commit_only(parse_source("acme/skills"), client=client)
        finally:
            client.close()

        self.assertEqual(commit, "c" * 40)
        self.assertEqual(head, "c" * 40)
        self.assertEqual(seen, ["/repos/acme/skills/commits/v1.0", "/repos/acme/skills/commits/HEAD"])
        mock_acquire.assert_not_called()

    def test_falls_back_to_clone_when_lookup_fails(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "Not Found"})

        @contextmanager
        def fake_acquire(location):
            yield Snapshot(root=Path("/tmp/clone"), commit_id="f" * 40)

        client = _client(handler)
        try:
            with patch("skillpin.snapshot.acquire", side_effect=fake_acquire) as mock_acquire:
                commit = resolve_commit_only(parse_source("acme/private"), client=client)
        finally:
            client.close()

        self.assertEqual(commit, "f" * 40)
        self.assertEqual(mock_acquire.call_count, 1)

    def test_non_github_sources_always_clone(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
            raise AssertionError("API must not be called")

        @contextmanager
        def fake_acquire(location):
            yield Snapshot(root=Path("/tmp/clone"), commit_id="e" * 40)

        client = _client(handler)
        try:
            with patch("skillpin.snapshot.acquire", side_effect=fake_acquire):
                provider = GitSnapshotProvider(client)
                commit = provider.resolve_commit(parse_source("https://gitlab.com/acme/toolbox/-/tree/dev/skills"))
        finally:
            client.close()

        self.assertEqual(commit, "e" * 40)


class TestGit(unittest.TestCase):
    def test_missing_git_executable(self) -> None:
        with patch("skillpin.snapshot.shutil.which", return_value=None):
            with self.assertRaises(SnapshotError):
                run_git(["status"])

    def test_failure_carries_stderr(self) -> None:
        failed = subprocess.CompletedProcess(args=["git"], returncode=128, stdout="", stderr="fatal: repository not found\n")
        with (
            patch("skillpin.snapshot.shutil.which", return_value="/usr/bin/git"),
            patch("skillpin.snapshot.subprocess.run", return_value=failed) as mock_run,
        ):
            with self.assertRaises(SnapshotError) as ctx:
                run_git(["ls-remote", "https://example.com/x.git"])

        self.assertIn("repository not found", str(ctx.exception))
        env = mock_run.call_args.kwargs["env"]
        self.assertEqual(env["GIT_TERMINAL_PROMPT"], "0")

    def test_acquire_shallow_clones_into_temporary_directory(self) -> None:
        calls: list[list[str]] = []

        def fake_run_git(args, *, cwd=None):
            calls.append(list(args))
            Path(args[-1]).mkdir(parents=True)
            return ""

        with (
            patch("skillpin.snapshot.run_git", side_effect=fake_run_git),
            patch("skillpin.snapshot.resolve_git_commit", return_value="d" * 40),
        ):
            with acquire(parse_source("https://github.com/acme/skills/tree/main/skills/pdf")) as snapshot:
                self.assertTrue(snapshot.root.is_dir())
                self.assertEqual(snapshot.commit_id, "d" * 40)
                root = snapshot.root

        self.assertFalse(root.exists())
        self.assertEqual(
            calls,
            [["clone", "--depth", "1", "--quiet", "--branch", "main", "https://github.com/acme/skills.git", str(root)]],
        )

    def test_acquire_reports_clone_failure(self) -> None:
        with patch("skillpin.snapshot.run_git", side_effect=SnapshotError("fatal: nope")):
            with self.assertRaises(SnapshotError) as ctx:
                with acquire(parse_source("acme/missing")):
                    pass  # pragma: no cover

        self.assertIn("Failed to clone https://github.com/acme/missing.git", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
