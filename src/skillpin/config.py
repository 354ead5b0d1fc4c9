from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from platformdirs import user_config_path

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 30.0

ENV_CONFIG_PATH = "SKILLPIN_CONFIG_PATH"
ENV_API_URL = "SKILLPIN_API_URL"
ENV_TIMEOUT_S = "SKILLPIN_TIMEOUT_S"
# First non-empty wins.
ENV_TOKENS = ("SKILLPIN_TOKEN", "GITHUB_TOKEN")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    api_url: str = DEFAULT_API_URL
    token: str | None = None  # hosting API token (optional; raises rate limits)
    timeout_s: float = DEFAULT_TIMEOUT_S


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv(ENV_CONFIG_PATH):
        return Path(env).expanduser()
    return user_config_path("skillpin") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    allowed = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered: dict[str, Any] = {k: v for k, v in raw.items() if k in allowed}
    if "timeout_s" in filtered:
        timeout_s = _parse_timeout(filtered.pop("timeout_s"), where=str(path))
        if timeout_s is not None:
            filtered["timeout_s"] = timeout_s
    return Config(**filtered)  # type: ignore[arg-type]


def _parse_timeout(raw: Any, *, where: str) -> float | None:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid timeout %r from %s", raw, where)
        return None
    if value <= 0:
        logger.warning("Ignoring non-positive timeout %r from %s", raw, where)
        return None
    return value


def apply_env(cfg: Config, environ: Mapping[str, str] | None = None) -> Config:
    """
    Layer the SKILLPIN_* variables (and GITHUB_TOKEN) over a loaded config.

    Empty variables count as unset. An unusable SKILLPIN_TIMEOUT_S keeps the
    configured timeout.
    """
    env = os.environ if environ is None else environ
    api_url = env.get(ENV_API_URL) or cfg.api_url
    token = next((env[name] for name in ENV_TOKENS if env.get(name)), cfg.token)
    timeout_s = cfg.timeout_s
    if raw_timeout := env.get(ENV_TIMEOUT_S):
        timeout_s = _parse_timeout(raw_timeout, where=ENV_TIMEOUT_S) or cfg.timeout_s
    return replace(cfg, api_url=api_url, token=token, timeout_s=timeout_s)


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Best-effort permissions hardening (the token is a secret).
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
