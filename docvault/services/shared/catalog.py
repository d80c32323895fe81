"""Library catalog loader for DocVault.

Seeds libraries and their versions from a YAML catalog file::

    libraries:
      - name: spring-boot
        display_name: Spring Boot
        source_type: GITHUB
        source_url: https://github.com/spring-projects/spring-boot
        versions:
          - version: v3.2.0
            latest: true
            docs_path: docs
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .models import SourceType
from .registry import DocumentRegistry

logger = logging.getLogger(__name__)


@dataclass
class VersionEntry:
    """A version listed under a catalog library."""
    version: str
    latest: bool = False
    lts: bool = False
    docs_path: Optional[str] = None

    def __post_init__(self):
        if not self.version or not str(self.version).strip():
            raise ValueError("Version cannot be empty")
        self.version = str(self.version).strip()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VersionEntry':
        return cls(
            version=data.get('version', ''),
            latest=bool(data.get('latest', False)),
            lts=bool(data.get('lts', False)),
            docs_path=data.get('docs_path'),
        )


@dataclass
class LibraryEntry:
    """A library listed in the catalog."""
    name: str
    source_type: str = SourceType.GITHUB.value
    display_name: Optional[str] = None
    source_url: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    versions: List[VersionEntry] = field(default_factory=list)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Library name cannot be empty")

        valid = [s.value for s in SourceType]
        self.source_type = str(self.source_type).upper()
        if self.source_type not in valid:
            raise ValueError(f"Invalid source type for {self.name}: {self.source_type}")

        if self.source_type == SourceType.GITHUB.value and not self.source_url:
            raise ValueError(f"GitHub library {self.name} needs a source_url")

        if sum(1 for v in self.versions if v.latest) > 1:
            raise ValueError(f"Library {self.name} marks more than one version as latest")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LibraryEntry':
        return cls(
            name=data.get('name', ''),
            source_type=data.get('source_type', SourceType.GITHUB.value),
            display_name=data.get('display_name'),
            source_url=data.get('source_url'),
            description=data.get('description'),
            category=data.get('category'),
            tags=list(data.get('tags') or []),
            versions=[VersionEntry.from_dict(v) for v in data.get('versions') or []],
        )


def parse_catalog(data: Dict[str, Any]) -> List[LibraryEntry]:
    """Validate a decoded catalog document."""
    if not isinstance(data, dict) or not isinstance(data.get('libraries'), list):
        raise ValueError("Catalog must contain a 'libraries' list")
    return [LibraryEntry.from_dict(item) for item in data['libraries']]


def load_catalog(path: Union[str, Path], registry: DocumentRegistry) -> Dict[str, int]:
    """Create the libraries and versions a catalog lists.

    Existing libraries and versions are left untouched, so loading the same
    catalog twice is harmless.

    Returns:
        Counts of libraries and versions created
    """
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        entries = parse_catalog(yaml.safe_load(f) or {})

    created = {"libraries": 0, "versions": 0}
    for entry in entries:
        library = registry.find_library_by_name(entry.name)
        if library is None:
            library = registry.create_library(
                name=entry.name,
                display_name=entry.display_name,
                source_type=SourceType(entry.source_type),
                source_url=entry.source_url,
                description=entry.description,
                category=entry.category,
                tags=entry.tags,
            )
            created["libraries"] += 1

        known = {v.version for v in registry.list_versions(library.id)}
        for version in entry.versions:
            if version.version in known:
                continue
            registry.add_version(
                library.id,
                version.version,
                is_latest=version.latest,
                docs_path=version.docs_path,
                is_lts=version.lts,
            )
            created["versions"] += 1

    logger.info(f"Loaded catalog {path}: {created['libraries']} libraries, {created['versions']} versions")
    return created
