from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .client import SkillpinError
from .manifest import SkillManifest, load_manifest

logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 5

# Conventional skill-holding directories, scanned in this order.
SEARCH_DIRS = (
    "skills",
    "skills/.curated",
    "skills/.experimental",
    "skills/.system",
    ".agent/skills",
    ".agents/skills",
    ".claude/skills",
    ".codex/skills",
    ".cursor/skills",
    ".github/skills",
    ".goose/skills",
    ".kilocode/skills",
    ".kiro/skills",
    ".opencode/skills",
    ".roo/skills",
    ".trae/skills",
    ".windsurf/skills",
)

# Never descended into by the recursive fallback (dot-directories are skipped too).
SKIP_DIRS = {"node_modules", ".git", "dist", "build", "__pycache__", "target"}


class SkillNotFoundError(SkillpinError):
    pass


@dataclass(frozen=True)
class DiscoveredSkill:
    manifest: SkillManifest
    path: Path
    relative_path: str

    @property
    def name(self) -> str:
        return self.manifest.name

    @property
    def description(self) -> str:
        return self.manifest.description


def _relative_posix(path: Path, *, base: Path) -> str:
    try:
        rel = path.relative_to(base)
    except ValueError:
        return path.as_posix()
    text = rel.as_posix()
    return "" if text == "." else text


def _try_skill(path: Path, *, base: Path) -> DiscoveredSkill | None:
    manifest = load_manifest(path)
    if manifest is None:
        return None
    return DiscoveredSkill(manifest=manifest, path=path, relative_path=_relative_posix(path, base=base))


def _child_dirs(path: Path) -> list[Path]:
    return sorted((p for p in path.iterdir() if p.is_dir()), key=lambda p: p.name)


class _Collector:
    def __init__(self, base: Path) -> None:
        self.base = base
        self.skills: list[DiscoveredSkill] = []
        self._seen: set[str] = set()

    def add(self, skill: DiscoveredSkill) -> None:
        if skill.name in self._seen:
            logger.debug("Ignoring duplicate skill %r at %s", skill.name, skill.relative_path)
            return
        self._seen.add(skill.name)
        self.skills.append(skill)

    def scan_dir(self, directory: Path) -> None:
        for child in _child_dirs(directory):
            skill = _try_skill(child, base=self.base)
            if skill is not None:
                self.add(skill)

    def scan_recursive(self, directory: Path, depth: int = 0) -> None:
        if depth > MAX_SEARCH_DEPTH:
            return
        skill = _try_skill(directory, base=self.base)
        if skill is not None:
            self.add(skill)
            return
        try:
            children = _child_dirs(directory)
        except OSError:
            return
        for child in children:
            if child.name in SKIP_DIRS or child.name.startswith("."):
                continue
            self.scan_recursive(child, depth + 1)


def discover_skills(root: Path, subpath: str | None = None) -> list[DiscoveredSkill]:
    """
    Find skills below `root` (optionally scoped to `subpath`).

    A root that is itself a skill wins outright. Otherwise the conventional
    directories in SEARCH_DIRS are scanned, and only if they hold nothing is the
    tree walked recursively. An invalid SKILL.md anywhere on the way raises
    ManifestValidationError.
    """
    base = root.resolve()
    search_root = base
    if subpath:
        search_root = (base / subpath).resolve()
        try:
            search_root.relative_to(base)
        except ValueError as e:
            raise SkillNotFoundError(f"Skill path escapes repository root: {subpath}") from e
        if not search_root.is_dir():
            raise SkillNotFoundError(f"Skill path not found in repository: {subpath}")

    own = _try_skill(search_root, base=base)
    if own is not None:
        return [own]

    collector = _Collector(base)
    for name in SEARCH_DIRS:
        candidate = search_root / name
        if candidate.is_dir():
            collector.scan_dir(candidate)

    if not collector.skills:
        collector.scan_recursive(search_root)

    return collector.skills
