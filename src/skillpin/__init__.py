from ._version import __version__
from .client import GitHubClient, SkillpinError, SkillpinHTTPError
from .discovery import DiscoveredSkill, SkillNotFoundError, discover_skills
from .local_skills import DisambiguationRequiredError, LocalSkillManager
from .manifest import ManifestValidationError, SkillManifest, parse_manifest
from .snapshot import GitSnapshotProvider, Snapshot, SnapshotCache, SnapshotError
from .source import SourceError, SourceLocation, parse_source
from .stores import StoreConflictError, StoreError
from .targets import DEFAULT_TARGETS, InstallTarget

__all__ = [
    "DEFAULT_TARGETS",
    "DisambiguationRequiredError",
    "DiscoveredSkill",
    "GitHubClient",
    "GitSnapshotProvider",
    "InstallTarget",
    "LocalSkillManager",
    "ManifestValidationError",
    "SkillManifest",
    "SkillNotFoundError",
    "SkillpinError",
    "SkillpinHTTPError",
    "Snapshot",
    "SnapshotCache",
    "SnapshotError",
    "SourceError",
    "SourceLocation",
    "StoreConflictError",
    "StoreError",
    "__version__",
    "discover_skills",
    "parse_manifest",
    "parse_source",
]
