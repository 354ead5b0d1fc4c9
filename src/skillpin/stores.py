"""
Declared (skills.json) and resolved (skills-lock.json) documents.

Both stores remember the exact bytes they were loaded from and refuse to save
over a file that changed on disk in the meantime.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .client import SkillpinError

DECLARED_FILENAME = "skills.json"
RESOLVED_FILENAME = "skills-lock.json"
DECLARED_SCHEMA = "https://skills.sh/schemas/skills.json"
RESOLVED_SCHEMA = "https://skills.sh/schemas/skills-lock.json"
RESOLVED_VERSION = 1


class StoreError(SkillpinError):
    pass


class StoreConflictError(StoreError):
    pass


def _opt_str(raw: dict[str, Any], key: str, *, where: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise StoreError(f"{where}: '{key}' must be a string")
    return value.strip() or None


def _req_str(raw: dict[str, Any], key: str, *, where: str) -> str:
    value = _opt_str(raw, key, where=where)
    if value is None:
        raise StoreError(f"{where}: '{key}' is required")
    return value


def _str_list(raw: dict[str, Any], key: str, *, where: str) -> list[str]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise StoreError(f"{where}: '{key}' must be a list of strings")
    return list(dict.fromkeys(v.strip() for v in value if v.strip()))


def _mapping(value: Any, *, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise StoreError(f"{where} must be an object")
    return value


# -- declared ---------------------------------------------------------------


@dataclass(frozen=True)
class SkillSpec:
    name: str
    source: str
    ref: str | None = None
    path: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "SkillSpec":
        if not isinstance(raw, dict):
            raise StoreError(f"{DECLARED_FILENAME}: skill entries must be objects")
        name = _req_str(raw, "name", where=f"{DECLARED_FILENAME} skill")
        where = f"{DECLARED_FILENAME} skill {name!r}"
        return cls(
            name=name,
            source=_req_str(raw, "source", where=where),
            ref=_opt_str(raw, "ref", where=where),
            path=_opt_str(raw, "path", where=where),
        )

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {"name": self.name, "source": self.source}
        if self.ref:
            item["ref"] = self.ref
        if self.path:
            item["path"] = self.path
        return item


@dataclass(frozen=True)
class Marketplace:
    name: str
    source: str
    ref: str | None = None
    enabled: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> "Marketplace":
        if not isinstance(raw, dict):
            raise StoreError(f"{DECLARED_FILENAME}: marketplace entries must be objects")
        name = _req_str(raw, "name", where=f"{DECLARED_FILENAME} marketplace")
        where = f"{DECLARED_FILENAME} marketplace {name!r}"
        return cls(
            name=name,
            source=_req_str(raw, "source", where=where),
            ref=_opt_str(raw, "ref", where=where),
            enabled=tuple(_str_list(raw, "enabled", where=where)),
        )

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {"name": self.name, "source": self.source, "enabled": list(self.enabled)}
        if self.ref:
            item["ref"] = self.ref
        return item


@dataclass
class SkillsConfig:
    marketplaces: list[Marketplace] = field(default_factory=list)
    skills: list[SkillSpec] = field(default_factory=list)
    schema: str = DECLARED_SCHEMA

    @classmethod
    def from_dict(cls, raw: Any) -> "SkillsConfig":
        if not isinstance(raw, dict):
            raise StoreError(f"{DECLARED_FILENAME} must contain a JSON object")
        skills_raw = raw.get("skills") or []
        markets_raw = raw.get("marketplaces") or []
        if not isinstance(skills_raw, list) or not isinstance(markets_raw, list):
            raise StoreError(f"{DECLARED_FILENAME}: 'skills' and 'marketplaces' must be lists")

        skills: list[SkillSpec] = []
        for item in skills_raw:
            spec = SkillSpec.from_dict(item)
            # Later duplicates replace earlier ones; names stay unique.
            skills = [s for s in skills if s.name != spec.name]
            skills.append(spec)

        schema = raw.get("$schema")
        return cls(
            marketplaces=[Marketplace.from_dict(m) for m in markets_raw],
            skills=skills,
            schema=schema if isinstance(schema, str) and schema else DECLARED_SCHEMA,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "$schema": self.schema,
            "marketplaces": [m.to_dict() for m in self.marketplaces],
            "skills": [s.to_dict() for s in self.skills],
        }

    @property
    def is_empty(self) -> bool:
        return not self.skills and not any(m.enabled for m in self.marketplaces)

    def get_skill(self, name: str) -> SkillSpec | None:
        for spec in self.skills:
            if spec.name == name:
                return spec
        return None

    def upsert_skill(self, spec: SkillSpec) -> bool:
        """Insert or replace by name. Returns True when an entry was replaced."""
        replaced = self.get_skill(spec.name) is not None
        self.skills = [s for s in self.skills if s.name != spec.name]
        self.skills.append(spec)
        return replaced

    def remove_skill(self, name: str) -> bool:
        before = len(self.skills)
        self.skills = [s for s in self.skills if s.name != name]
        return len(self.skills) < before

    def disable_everywhere(self, name: str) -> list[str]:
        """Drop `name` from every marketplace's enabled list; returns the marketplaces touched."""
        touched: list[str] = []
        updated: list[Marketplace] = []
        for market in self.marketplaces:
            if name in market.enabled:
                touched.append(market.name)
                market = Marketplace(
                    name=market.name,
                    source=market.source,
                    ref=market.ref,
                    enabled=tuple(n for n in market.enabled if n != name),
                )
            updated.append(market)
        self.marketplaces = updated
        return touched


# -- resolved ---------------------------------------------------------------


@dataclass(frozen=True)
class LockedSkill:
    name: str
    source: str
    commit_id: str
    path: str
    description: str | None = None
    marketplace: str | None = None

    @classmethod
    def from_dict(cls, key: str, raw: Any) -> "LockedSkill":
        where = f"{RESOLVED_FILENAME} skill {key!r}"
        if not isinstance(raw, dict):
            raise StoreError(f"{where} must be an object")
        commit = _opt_str(raw, "commit_id", where=where) or _opt_str(raw, "sha", where=where)
        if commit is None:
            raise StoreError(f"{where}: 'commit_id' is required")
        path = raw.get("path", "")
        if not isinstance(path, str):
            raise StoreError(f"{where}: 'path' must be a string")
        return cls(
            name=_opt_str(raw, "name", where=where) or key,
            source=_req_str(raw, "source", where=where),
            commit_id=commit,
            path=path.strip(),
            description=_opt_str(raw, "description", where=where),
            marketplace=_opt_str(raw, "marketplace", where=where),
        )

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "name": self.name,
            "source": self.source,
            "commit_id": self.commit_id,
            "path": self.path,
        }
        if self.description:
            item["description"] = self.description
        if self.marketplace:
            item["marketplace"] = self.marketplace
        return item


@dataclass(frozen=True)
class LockedMarketplace:
    source: str
    commit_id: str
    available_skills: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, key: str, raw: Any) -> "LockedMarketplace":
        where = f"{RESOLVED_FILENAME} marketplace {key!r}"
        if not isinstance(raw, dict):
            raise StoreError(f"{where} must be an object")
        commit = _opt_str(raw, "commit_id", where=where) or _opt_str(raw, "sha", where=where)
        if commit is None:
            raise StoreError(f"{where}: 'commit_id' is required")
        return cls(
            source=_req_str(raw, "source", where=where),
            commit_id=commit,
            available_skills=tuple(_str_list(raw, "available_skills", where=where)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "commit_id": self.commit_id,
            "available_skills": list(self.available_skills),
        }


@dataclass
class SkillsLock:
    marketplaces: dict[str, LockedMarketplace] = field(default_factory=dict)
    skills: dict[str, LockedSkill] = field(default_factory=dict)
    version: int = RESOLVED_VERSION
    schema: str = RESOLVED_SCHEMA

    @classmethod
    def from_dict(cls, raw: Any) -> "SkillsLock":
        if not isinstance(raw, dict):
            raise StoreError(f"{RESOLVED_FILENAME} must contain a JSON object")
        version = raw.get("version", RESOLVED_VERSION)
        if not isinstance(version, int) or isinstance(version, bool):
            raise StoreError(f"{RESOLVED_FILENAME}: 'version' must be an integer")
        schema = raw.get("$schema")
        markets = _mapping(raw.get("marketplaces"), where=f"{RESOLVED_FILENAME} marketplaces")
        skills = _mapping(raw.get("skills"), where=f"{RESOLVED_FILENAME} skills")
        return cls(
            marketplaces={k: LockedMarketplace.from_dict(k, v) for k, v in markets.items()},
            skills={k: LockedSkill.from_dict(k, v) for k, v in skills.items()},
            version=version,
            schema=schema if isinstance(schema, str) and schema else RESOLVED_SCHEMA,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "$schema": self.schema,
            "version": self.version,
            "marketplaces": {k: self.marketplaces[k].to_dict() for k in sorted(self.marketplaces)},
            "skills": {k: self.skills[k].to_dict() for k in sorted(self.skills)},
        }


# -- persistence ------------------------------------------------------------


def _dump(data: Any) -> bytes:
    return (json.dumps(data, indent=2, sort_keys=True) + "\n").encode("utf-8")


def _write_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(content)
    tmp.replace(path)


class JsonDocumentStore:
    filename = ""

    def __init__(self, project_dir: Path) -> None:
        self.path = project_dir / self.filename
        self._loaded_bytes: bytes | None = None
        self._loaded = False

    def _read_bytes(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreError(f"Failed to read {self.path}: {e}") from e

    def read(self) -> Any | None:
        data = self._read_bytes()
        self._loaded_bytes = data
        self._loaded = True
        if data is None:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to parse {self.path}: {e}") from e

    def write(self, payload: Any) -> None:
        if self._loaded and self._read_bytes() != self._loaded_bytes:
            raise StoreConflictError(f"{self.path} was modified by another process; re-run the command.")
        content = _dump(payload)
        try:
            _write_atomic(self.path, content)
        except OSError as e:
            raise StoreError(f"Failed to write {self.path}: {e}") from e
        self._loaded_bytes = content
        self._loaded = True


class DeclaredStore(JsonDocumentStore):
    filename = DECLARED_FILENAME

    def load(self) -> SkillsConfig:
        raw = self.read()
        if raw is None:
            return SkillsConfig()
        return SkillsConfig.from_dict(raw)

    def save(self, config: SkillsConfig) -> None:
        self.write(config.to_dict())


class ResolvedStore(JsonDocumentStore):
    filename = RESOLVED_FILENAME

    def load(self) -> SkillsLock:
        raw = self.read()
        if raw is None:
            return SkillsLock()
        return SkillsLock.from_dict(raw)

    def save(self, lock: SkillsLock) -> None:
        self.write(lock.to_dict())
