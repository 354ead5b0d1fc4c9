from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .client import SkillpinError
from .discovery import DiscoveredSkill, SkillNotFoundError, discover_skills
from .snapshot import SnapshotCache, SnapshotProvider
from .source import SourceLocation, parse_source
from .stores import (
    DeclaredStore,
    LockedMarketplace,
    LockedSkill,
    ResolvedStore,
    SkillSpec,
    SkillsLock,
)
from .targets import DEFAULT_TARGETS, InstallTarget, install_to_targets, remove_from_targets, targets_holding

logger = logging.getLogger(__name__)


class DisambiguationRequiredError(SkillpinError):
    def __init__(self, message: str, candidates: Iterable[DiscoveredSkill]) -> None:
        super().__init__(message)
        self.candidates = tuple(candidates)


@dataclass(frozen=True)
class AddResult:
    added: tuple[str, ...]
    replaced: tuple[str, ...]
    source: str
    commit_id: str
    manifest_path: Path


@dataclass(frozen=True)
class ReconcileResult:
    installed: tuple[str, ...]
    updated: tuple[str, ...]
    unchanged: tuple[str, ...]
    manifest_path: Path
    lock_path: Path


@dataclass(frozen=True)
class RemoveResult:
    name: str
    found: bool
    removed_from_manifest: bool
    disabled_in: tuple[str, ...]
    removed_from_lock: bool
    removed_from_targets: tuple[str, ...]


@dataclass(frozen=True)
class SkillStatus:
    name: str
    source: str
    ref: str | None
    path: str | None
    marketplace: str | None
    commit_id: str | None
    description: str | None
    targets: tuple[str, ...]


def _find_skill(skills: Sequence[DiscoveredSkill], name: str, *, origin: str) -> DiscoveredSkill:
    for skill in skills:
        if skill.name == name:
            return skill
    raise SkillNotFoundError(f"Skill '{name}' not found in {origin}")


def _locked(skill: DiscoveredSkill, location: SourceLocation, commit_id: str, marketplace: str | None = None) -> LockedSkill:
    return LockedSkill(
        name=skill.name,
        source=location.url,
        commit_id=commit_id,
        path=skill.relative_path,
        description=skill.description,
        marketplace=marketplace,
    )


def _spec_location(spec: SkillSpec) -> tuple[SourceLocation, str | None]:
    location = parse_source(spec.source).with_ref(spec.ref)
    subpath = spec.path if spec.path is not None else location.subpath
    return location, subpath


class LocalSkillManager:
    """
    Keeps skills.json (declared), skills-lock.json (resolved) and the install
    target directories of one project in step.

    Each public method loads the stores, works entirely in memory, and saves
    each store at most once at the very end, so a failure leaves the files as
    they were. Target copies made before a failure are not rolled back.

    Relative local sources are resolved against `project_dir`, never the
    process working directory, and are stored as written.
    """

    def __init__(
        self,
        *,
        project_dir: Path,
        provider: SnapshotProvider,
        targets: Sequence[InstallTarget] = DEFAULT_TARGETS,
    ) -> None:
        self.project_dir = project_dir.expanduser().resolve()
        self.provider = provider
        self.targets = tuple(targets)
        self.declared = DeclaredStore(self.project_dir)
        self.resolved = ResolvedStore(self.project_dir)
        self.manifest_path = self.declared.path
        self.lock_path = self.resolved.path

    def _ensure_project_dir(self) -> None:
        if not self.project_dir.is_dir():
            raise SkillpinError(f"Project directory does not exist: {self.project_dir}")

    def _fan_out(self, name: str, source_dir: Path) -> None:
        install_to_targets(name, source_dir, project_dir=self.project_dir, targets=self.targets)

    def add(self, *, source: str, skill: str | None = None) -> AddResult:
        self._ensure_project_dir()
        location = parse_source(source)
        config = self.declared.load()

        with self.provider.acquire(location.anchored(self.project_dir)) as snapshot:
            found = discover_skills(snapshot.root, location.subpath)
            commit_id = snapshot.commit_id

        if not found:
            raise SkillNotFoundError(f"No skills found in {source}")

        if skill is not None:
            selected = [s for s in found if s.name == skill]
            if not selected:
                available = ", ".join(s.name for s in found)
                raise SkillNotFoundError(f"Skill '{skill}' not found in {source} (available: {available})")
        elif len(found) == 1:
            selected = list(found)
        else:
            raise DisambiguationRequiredError(
                f"Multiple skills found in {source}. Pass --skill <name> to select one.",
                found,
            )

        added: list[str] = []
        replaced: list[str] = []
        for item in selected:
            spec = SkillSpec(
                name=item.name,
                source=location.canonical(),
                ref=location.ref,
                path=item.relative_path or None,
            )
            if config.upsert_skill(spec):
                replaced.append(item.name)
            added.append(item.name)

        self.declared.save(config)
        return AddResult(
            added=tuple(added),
            replaced=tuple(replaced),
            source=location.canonical(),
            commit_id=commit_id,
            manifest_path=self.manifest_path,
        )

    def install(self) -> ReconcileResult:
        self._ensure_project_dir()
        config = self.declared.load()
        lock = self.resolved.load()
        if config.is_empty:
            return self._result()

        installed: list[str] = []
        with SnapshotCache(self.provider) as cache:
            for spec in config.skills:
                location, subpath = _spec_location(spec)
                snapshot = cache.get(location.anchored(self.project_dir))
                item = _find_skill(discover_skills(snapshot.root, subpath), spec.name, origin=spec.source)
                lock.skills[spec.name] = _locked(item, location, snapshot.commit_id)
                self._fan_out(spec.name, item.path)
                installed.append(spec.name)
                logger.debug("Installed %s @ %s", spec.name, snapshot.commit_id)

            for market in config.marketplaces:
                if not market.enabled:
                    continue
                location = parse_source(market.source).with_ref(market.ref)
                snapshot = cache.get(location.anchored(self.project_dir))
                found = discover_skills(snapshot.root, location.subpath)
                lock.marketplaces[market.name] = LockedMarketplace(
                    source=location.url,
                    commit_id=snapshot.commit_id,
                    available_skills=tuple(s.name for s in found),
                )
                for name in market.enabled:
                    item = _find_skill(found, name, origin=f"marketplace '{market.name}'")
                    lock.skills[name] = _locked(item, location, snapshot.commit_id, marketplace=market.name)
                    self._fan_out(name, item.path)
                    installed.append(name)

        self.resolved.save(lock)
        return self._result(installed=installed)

    def update(self, *, skill: str | None = None) -> ReconcileResult:
        self._ensure_project_dir()
        config = self.declared.load()
        lock = self.resolved.load()
        if skill is not None and config.get_skill(skill) is None and not any(
            skill in m.enabled for m in config.marketplaces
        ):
            raise SkillNotFoundError(f"Skill '{skill}' is not declared in {self.manifest_path.name}")

        updated: list[str] = []
        unchanged: list[str] = []
        with SnapshotCache(self.provider) as cache:
            for spec in config.skills:
                if skill is not None and spec.name != skill:
                    continue
                location, subpath = _spec_location(spec)
                latest = self.provider.resolve_commit(location.anchored(self.project_dir))
                current = lock.skills.get(spec.name)
                if current is not None and current.commit_id == latest:
                    unchanged.append(spec.name)
                    continue
                snapshot = cache.get(location.anchored(self.project_dir))
                item = _find_skill(discover_skills(snapshot.root, subpath), spec.name, origin=spec.source)
                lock.skills[spec.name] = _locked(item, location, snapshot.commit_id)
                updated.append(spec.name)

            for market in config.marketplaces:
                wanted = [n for n in market.enabled if skill is None or n == skill]
                if not wanted:
                    continue
                location = parse_source(market.source).with_ref(market.ref)
                latest = self.provider.resolve_commit(location.anchored(self.project_dir))
                stale = [n for n in wanted if n not in lock.skills or lock.skills[n].commit_id != latest]
                unchanged.extend(n for n in wanted if n not in stale)
                if not stale:
                    continue
                snapshot = cache.get(location.anchored(self.project_dir))
                found = discover_skills(snapshot.root, location.subpath)
                lock.marketplaces[market.name] = LockedMarketplace(
                    source=location.url,
                    commit_id=snapshot.commit_id,
                    available_skills=tuple(s.name for s in found),
                )
                for name in stale:
                    item = _find_skill(found, name, origin=f"marketplace '{market.name}'")
                    lock.skills[name] = _locked(item, location, snapshot.commit_id, marketplace=market.name)
                    updated.append(name)

        if updated:
            self.resolved.save(lock)
        return self._result(updated=updated, unchanged=unchanged)

    def remove(self, *, name: str) -> RemoveResult:
        self._ensure_project_dir()
        config = self.declared.load()
        lock = self.resolved.load()

        removed_from_manifest = config.remove_skill(name)
        disabled_in = config.disable_everywhere(name)
        removed_from_lock = lock.skills.pop(name, None) is not None
        removed_from_targets = remove_from_targets(name, project_dir=self.project_dir, targets=self.targets)

        if removed_from_manifest or disabled_in:
            self.declared.save(config)
        if removed_from_lock:
            self.resolved.save(lock)

        return RemoveResult(
            name=name,
            found=removed_from_manifest or bool(disabled_in) or removed_from_lock,
            removed_from_manifest=removed_from_manifest,
            disabled_in=tuple(disabled_in),
            removed_from_lock=removed_from_lock,
            removed_from_targets=tuple(removed_from_targets),
        )

    def list_skills(self) -> list[SkillStatus]:
        config = self.declared.load()
        lock = self.resolved.load()
        rows: list[SkillStatus] = []
        for spec in config.skills:
            rows.append(self._status(spec.name, spec.source, lock, ref=spec.ref, path=spec.path))
        for market in config.marketplaces:
            for name in market.enabled:
                rows.append(self._status(name, market.source, lock, ref=market.ref, marketplace=market.name))
        return rows

    def _status(
        self,
        name: str,
        source: str,
        lock: SkillsLock,
        *,
        ref: str | None = None,
        path: str | None = None,
        marketplace: str | None = None,
    ) -> SkillStatus:
        locked = lock.skills.get(name)
        return SkillStatus(
            name=name,
            source=source,
            ref=ref,
            path=path,
            marketplace=marketplace,
            commit_id=locked.commit_id if locked else None,
            description=locked.description if locked else None,
            targets=tuple(targets_holding(name, project_dir=self.project_dir, targets=self.targets)),
        )

    def _result(
        self,
        *,
        installed: Iterable[str] = (),
        updated: Iterable[str] = (),
        unchanged: Iterable[str] = (),
    ) -> ReconcileResult:
        return ReconcileResult(
            installed=tuple(installed),
            updated=tuple(updated),
            unchanged=tuple(unchanged),
            manifest_path=self.manifest_path,
            lock_path=self.lock_path,
        )

