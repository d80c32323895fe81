"""Tests for the YAML library catalog."""

import pytest

from docvault.services.shared.catalog import LibraryEntry, VersionEntry, load_catalog, parse_catalog
from docvault.services.shared.models import SourceType

CATALOG = """
libraries:
  - name: spring-boot
    display_name: Spring Boot
    source_type: github
    source_url: https://github.com/spring-projects/spring-boot
    tags: [java, web]
    versions:
      - version: v3.2.0
        latest: true
        docs_path: docs
      - version: v3.1.0
  - name: internal-handbook
    source_type: LOCAL
    versions:
      - version: "1.0"
"""


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.yaml"
    path.write_text(CATALOG, encoding="utf-8")
    return path


class TestLoadCatalog:
    """Seeding the registry."""

    def test_load(self, catalog_file, registry):
        """Test that libraries and versions are created."""
        assert load_catalog(catalog_file, registry) == {"libraries": 2, "versions": 3}

        boot = registry.find_library_by_name("spring-boot")
        assert boot.source_type == SourceType.GITHUB
        assert boot.tags == ["java", "web"]
        latest_id = registry.resolve_version_id(boot.id)
        assert registry.get_version(latest_id).version == "v3.2.0"
        assert registry.get_version(latest_id).docs_path == "docs"

    def test_load_is_idempotent(self, catalog_file, registry):
        """Test that a second load creates nothing."""
        load_catalog(catalog_file, registry)
        assert load_catalog(catalog_file, registry) == {"libraries": 0, "versions": 0}
        assert len(registry.list_libraries()) == 2

    def test_empty_file(self, tmp_path, registry):
        """Test that an empty document is rejected."""
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError):
            load_catalog(path, registry)


class TestParseCatalog:
    """Entry validation."""

    def test_requires_library_list(self):
        """Test the top-level shape."""
        with pytest.raises(ValueError):
            parse_catalog({"libraries": "spring"})

    def test_source_type_normalized(self):
        """Test case-insensitive source types."""
        entry = LibraryEntry(name="docs", source_type="manual")
        assert entry.source_type == "MANUAL"

    @pytest.mark.parametrize("kwargs", [
        {"name": ""},
        {"name": "x", "source_type": "FTP"},
        {"name": "x", "source_type": "GITHUB"},
        {"name": "x", "source_type": "LOCAL",
         "versions": [VersionEntry("1", latest=True), VersionEntry("2", latest=True)]},
    ])
    def test_invalid_library(self, kwargs):
        """Test rejected library entries."""
        with pytest.raises(ValueError):
            LibraryEntry(**kwargs)

    def test_version_required(self):
        """Test that a blank version is rejected and others are stripped."""
        with pytest.raises(ValueError):
            VersionEntry.from_dict({"version": " "})
        assert VersionEntry.from_dict({"version": 2.0}).version == "2.0"
