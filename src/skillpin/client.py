from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from ._version import __version__
from .config import DEFAULT_API_URL, DEFAULT_TIMEOUT_S


class SkillpinError(RuntimeError):
    pass


@dataclass(frozen=True)
class SkillpinHTTPError(SkillpinError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


class GitHubClient:
    """
    Minimal client for the source-hosting REST API. Only the commit lookup used
    by `update` is needed; everything else goes through git.
    """

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._default_headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"skillpin/{__version__}",
        }
        self._default_headers.update(default_headers or {})

        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def request(
        self,
        *,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: bool = True,
    ) -> httpx.Response:
        if path.startswith(("http://", "https://")):
            url = path
        else:
            if not path.startswith("/"):
                path = "/" + path
            url = f"{self.api_url}{path}"

        req_headers = dict(self._default_headers)
        if headers:
            req_headers.update(headers)
        if auth and self.token:
            req_headers["Authorization"] = f"Bearer {self.token}"

        try:
            resp = self._http.request(method.upper(), url, params=params, headers=req_headers)
        except httpx.HTTPError as e:
            raise SkillpinError(f"Request failed: {e}") from e

        if resp.status_code >= 400:
            raise SkillpinHTTPError(resp.status_code, resp.text)
        return resp

    def latest_commit(self, owner: str, repo: str, ref: str | None = None) -> str:
        """Return the commit id `ref` (default branch when None) currently points at."""
        path = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/commits/{quote(ref or 'HEAD', safe='/')}"
        resp = self.request(method="GET", path=path)
        try:
            data = resp.json()
        except ValueError as e:
            raise SkillpinError(f"Commit lookup for {owner}/{repo} returned invalid JSON") from e
        sha = data.get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str) or not sha.strip():
            raise SkillpinError(f"Commit lookup for {owner}/{repo} returned no sha")
        return sha.strip()
