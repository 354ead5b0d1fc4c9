from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .client import SkillpinError

MANIFEST_FILENAME = "SKILL.md"
FRONTMATTER_DELIMITER = "---"


class ManifestValidationError(SkillpinError):
    pass


@dataclass(frozen=True)
class SkillManifest:
    name: str
    description: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data["name"] = self.name
        data["description"] = self.description
        return data


def _split_frontmatter(content: str) -> str:
    text = content.replace("\r\n", "\n").replace("\r", "\n").lstrip()
    lines = text.split("\n")
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        raise ManifestValidationError(f"{MANIFEST_FILENAME} must start with YAML frontmatter ({FRONTMATTER_DELIMITER})")
    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            return "\n".join(lines[1:idx])
    raise ManifestValidationError(f"{MANIFEST_FILENAME} frontmatter not closed (missing {FRONTMATTER_DELIMITER})")


def parse_manifest(content: str, *, source: str = MANIFEST_FILENAME) -> SkillManifest:
    block = _split_frontmatter(content)
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise ManifestValidationError(f"Failed to parse frontmatter in {source}: {e}") from e
    if not isinstance(data, dict):
        raise ManifestValidationError(f"Frontmatter in {source} must be a mapping")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ManifestValidationError(f"{source} must have a non-empty 'name' field")
    description = data.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ManifestValidationError(f"{source} must have a non-empty 'description' field")

    extra = {str(k): v for k, v in data.items() if k not in ("name", "description")}
    return SkillManifest(name=name.strip(), description=description.strip(), extra=extra)


def load_manifest(skill_dir: Path) -> SkillManifest | None:
    """Parse ``skill_dir/SKILL.md``; None when the directory has no manifest."""
    path = skill_dir / MANIFEST_FILENAME
    if not path.is_file():
        return None
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestValidationError(f"Failed to read {path}: {e}") from e
    return parse_manifest(content, source=str(path))
