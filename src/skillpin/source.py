"""Parsing of user-supplied skill source strings into git locations."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from pathlib import Path

from .client import SkillpinError

# Order matters: the first pattern that matches wins.
_GITHUB_TREE_PATH_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/tree/([^/]+)/(.+)")
_GITHUB_TREE_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/tree/([^/]+)$")
_GITHUB_REPO_RE = re.compile(r"github\.com/([^/]+)/([^/]+?)(?:\.git)?$")
_GITLAB_TREE_PATH_RE = re.compile(r"gitlab\.com/([^/]+)/([^/]+)/-/tree/([^/]+)/(.+)")
_SCP_RE = re.compile(r"^([\w.-]+)@([^:/]+):([^/]+)/([^/]+?)(?:\.git)?$")
_SHORTHAND_RE = re.compile(r"^([^/]+)/([^/]+?)(?:\.git)?(?:/(.+))?$")


class SourceError(SkillpinError):
    pass


@dataclass(frozen=True)
class SourceLocation:
    url: str
    owner: str | None = None
    repo: str | None = None
    ref: str | None = None
    subpath: str | None = None

    def canonical(self) -> str:
        """Persisted, re-parseable form: ``owner/repo`` for GitHub https remotes, else the remote url."""
        if self.owner and self.repo and self.url == f"https://github.com/{self.owner}/{self.repo}.git":
            return f"{self.owner}/{self.repo}"
        return self.url

    @property
    def is_github(self) -> bool:
        return bool(self.owner and self.repo and "github.com" in self.url)

    def with_ref(self, ref: str | None) -> "SourceLocation":
        if not ref:
            return self
        return replace(self, ref=ref)

    def with_subpath(self, subpath: str | None) -> "SourceLocation":
        return replace(self, subpath=_clean_subpath(subpath))

    @property
    def is_local_path(self) -> bool:
        # No owner/repo and no scheme or scp host: git reads the url as a filesystem path.
        return self.owner is None and ":" not in self.url

    def anchored(self, base: Path) -> "SourceLocation":
        """Resolve a relative local path against `base`; remote locations are returned unchanged."""
        if not self.is_local_path:
            return self
        path = Path(self.url).expanduser()
        if not path.is_absolute():
            path = (base / path).resolve()
        if str(path) == self.url:
            return self
        return replace(self, url=str(path))

    def __str__(self) -> str:
        text = self.canonical()
        if self.ref:
            text += f"@{self.ref}"
        if self.subpath:
            text += f" ({self.subpath})"
        return text


def _clean_subpath(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip().strip("/")
    return cleaned or None


def _github(owner: str, repo: str, ref: str | None = None, subpath: str | None = None) -> SourceLocation:
    return SourceLocation(
        url=f"https://github.com/{owner}/{repo}.git",
        owner=owner,
        repo=repo,
        ref=ref,
        subpath=_clean_subpath(subpath),
    )


def parse_source(value: str) -> SourceLocation:
    """
    Parse a source string.

    Accepted forms, tried in this order:
      - https://github.com/<owner>/<repo>/tree/<ref>/<subpath>
      - https://github.com/<owner>/<repo>/tree/<ref>
      - https://github.com/<owner>/<repo>[.git]
      - https://gitlab.com/<owner>/<repo>/-/tree/<ref>/<subpath>
      - git@<host>:<owner>/<repo>[.git]
      - <owner>/<repo>[/<subpath>]
      - anything else is used verbatim as a git remote (local path, other hosts)
    """
    raw = value.strip()
    if len(raw) > 1:
        raw = raw.rstrip("/")
    if not raw:
        raise SourceError("Empty source. Expected <owner>/<repo>, a repository URL or a path.")

    if m := _GITHUB_TREE_PATH_RE.search(raw):
        return _github(m.group(1), m.group(2), ref=m.group(3), subpath=m.group(4))

    if m := _GITHUB_TREE_RE.search(raw):
        return _github(m.group(1), m.group(2), ref=m.group(3))

    if m := _GITHUB_REPO_RE.search(raw):
        return _github(m.group(1), m.group(2))

    if m := _GITLAB_TREE_PATH_RE.search(raw):
        owner, repo = m.group(1), m.group(2)
        return SourceLocation(
            url=f"https://gitlab.com/{owner}/{repo}.git",
            owner=owner,
            repo=repo,
            ref=m.group(3),
            subpath=_clean_subpath(m.group(4)),
        )

    if m := _SCP_RE.search(raw):
        user, host, owner, repo = m.groups()
        return SourceLocation(url=f"{user}@{host}:{owner}/{repo}.git", owner=owner, repo=repo)

    # Guard against local relative/absolute paths and anything with a scheme.
    if ":" not in raw and not raw.startswith((".", "/")):
        if m := _SHORTHAND_RE.match(raw):
            return _github(m.group(1), m.group(2), subpath=m.group(3))

    return SourceLocation(url=raw)
