from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable
from uuid import uuid4

from .client import SkillpinError

logger = logging.getLogger(__name__)

# Repository metadata never belongs in an installed copy.
COPY_IGNORE = shutil.ignore_patterns(".git")


class TargetError(SkillpinError):
    pass


@dataclass(frozen=True)
class InstallTarget:
    name: str
    skills_dir: str

    def root(self, project_dir: Path) -> Path:
        return project_dir / self.skills_dir

    def skill_dir(self, project_dir: Path, skill: str) -> Path:
        if not skill or skill in {".", ".."} or "/" in skill or "\\" in skill:
            raise TargetError(f"Skill name {skill!r} cannot be used as a directory name")
        return self.root(project_dir) / skill


DEFAULT_TARGETS: tuple[InstallTarget, ...] = (
    InstallTarget("claude-code", ".claude/skills"),
    InstallTarget("opencode", ".opencode/skills"),
    InstallTarget("cursor", ".cursor/skills"),
    InstallTarget("codex", ".codex/skills"),
)


def replace_tree(source_dir: Path, dest: Path) -> None:
    """
    Copy `source_dir` to `dest`, replacing whatever was there.

    The copy is staged next to `dest` and swapped in with os.replace, so `dest`
    is always either the complete old tree or the complete new one.
    """
    parent = dest.parent
    parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=parent, prefix=f".{dest.name}.stage-") as td:
        staged = Path(td) / dest.name
        shutil.copytree(source_dir, staged, symlinks=True, ignore=COPY_IGNORE)

        if not dest.exists():
            os.replace(staged, dest)
            return

        backup = parent / f".{dest.name}.backup-{uuid4().hex}"
        os.replace(dest, backup)
        try:
            os.replace(staged, dest)
        except Exception:
            os.replace(backup, dest)
            raise
        shutil.rmtree(backup)


def install_to_targets(
    name: str,
    source_dir: Path,
    *,
    project_dir: Path,
    targets: Iterable[InstallTarget],
) -> list[str]:
    installed: list[str] = []
    for target in targets:
        dest = target.skill_dir(project_dir, name)
        replace_tree(source_dir, dest)
        logger.debug("Copied %s to %s", name, dest)
        installed.append(target.name)
    return installed


def remove_from_targets(name: str, *, project_dir: Path, targets: Iterable[InstallTarget]) -> list[str]:
    removed: list[str] = []
    for target in targets:
        dest = target.skill_dir(project_dir, name)
        if dest.is_symlink() or dest.is_file():
            dest.unlink()
        elif dest.is_dir():
            shutil.rmtree(dest)
        else:
            continue
        removed.append(target.name)
    return removed


def targets_holding(name: str, *, project_dir: Path, targets: Iterable[InstallTarget]) -> list[str]:
    return [t.name for t in targets if t.skill_dir(project_dir, name).is_dir()]
