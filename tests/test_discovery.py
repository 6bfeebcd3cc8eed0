"""Tests for file discovery and context injection."""

import logging
import os
import tempfile
from pathlib import Path

import pytest

from docctx.config import DiscoveryConfig
from docctx.discovery import (
    FileDiscovery,
    inject_files,
    inject_high_relevance_fragments,
    load_existing_documents,
    slugify,
)
from docctx.exceptions import DiscoveryIOError
from docctx.store import ContextStore

REQUIREMENTS_DOC = "\n".join([
    "# Requirements",
    "## Scope",
    "## Architecture",
    "The project application system requirements features functionality "
    "architecture design implementation goals objectives scope stakeholder.",
]) + "\n" + ("Detailed requirement text. " * 60)


def write(root: Path, rel: str, content) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)
    return path


@pytest.fixture
def project():
    """A small project tree with good, bad and excluded files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        write(root, "README.md", REQUIREMENTS_DOC)
        write(root, "docs/requirements.md", REQUIREMENTS_DOC)
        write(root, "docs/design/architecture.md", REQUIREMENTS_DOC)
        write(root, "notes.txt", "groceries: milk, eggs, bread, butter, coffee, and tea")
        write(root, "tiny.md", "too short")
        write(root, "node_modules/pkg/requirements.md", REQUIREMENTS_DOC)
        write(root, ".hidden/requirements.md", REQUIREMENTS_DOC)
        write(root, "a/b/c/d/requirements.md", REQUIREMENTS_DOC)
        write(root, "a/b/c/roadmap.md", REQUIREMENTS_DOC)
        write(root, "docs/corrupt.md", b"\xff\xfe\xfa" * 100)
        write(root, "src/main.py", "print('not a document')" * 10)
        yield root


class TestFileDiscovery:
    """Test the bounded walk and scoring."""

    def test_finds_documents(self, project):
        report = FileDiscovery(project).discover()
        paths = [f.rel_path for f in report.files]
        assert "docs/requirements.md" in paths
        assert "docs/design/architecture.md" in paths
        assert "notes.txt" in paths

    def test_skips_readme(self, project):
        paths = [f.rel_path for f in FileDiscovery(project).discover().files]
        assert "README.md" not in paths

    def test_skips_excluded_and_hidden_dirs(self, project):
        paths = [f.rel_path for f in FileDiscovery(project).discover().files]
        assert not any(p.startswith("node_modules/") for p in paths)
        assert not any(p.startswith(".hidden/") for p in paths)

    def test_respects_max_depth(self, project):
        paths = [f.rel_path for f in FileDiscovery(project).discover().files]
        assert "a/b/c/roadmap.md" in paths
        assert "a/b/c/d/requirements.md" not in paths

    def test_skips_other_extensions(self, project):
        paths = [f.rel_path for f in FileDiscovery(project).discover().files]
        assert "src/main.py" not in paths

    def test_unreadable_file_is_counted_not_raised(self, project):
        report = FileDiscovery(project).discover()
        assert report.unreadable == 1
        assert "corrupt.md" in report.errors[0]
        assert "docs/corrupt.md" not in [f.rel_path for f in report.files]

    def test_short_files_skipped(self, project):
        report = FileDiscovery(project).discover()
        assert report.too_small == 1

    def test_oversize_files_skipped(self, project):
        report = FileDiscovery(project, DiscoveryConfig(max_file_bytes=500)).discover()
        assert report.oversize >= 3
        assert "docs/requirements.md" not in [f.rel_path for f in report.files]

    def test_sorted_best_first_then_path(self, project):
        files = FileDiscovery(project).discover().files
        keys = [(-f.score, f.rel_path) for f in files]
        assert keys == sorted(keys)
        assert files[-1].rel_path == "notes.txt"

    def test_expired_timeout_returns_partial_result(self, project):
        report = FileDiscovery(project).discover(timeout=-1)
        assert report.timed_out
        assert report.files == []

    def test_missing_root(self):
        report = FileDiscovery(Path("/nonexistent/docctx-root")).discover()
        assert report.files == []
        assert report.scanned == 0

    def test_read_file_raises_discovery_error(self, project):
        with pytest.raises(DiscoveryIOError) as exc:
            FileDiscovery(project).read_file(project / "docs" / "corrupt.md")
        assert "corrupt.md" in str(exc.value)

    def test_custom_exclude(self, project):
        config = DiscoveryConfig(exclude=["docs/"])
        paths = [f.rel_path for f in FileDiscovery(project, config).discover().files]
        assert not any(p.startswith("docs/") for p in paths)
        assert any(p.startswith("node_modules/") for p in paths)


class TestInjectHighRelevance:
    """Test injection into the store."""

    def test_injects_only_high_scores(self, project):
        store = ContextStore()
        count = inject_high_relevance_fragments(store, project, min_score=75)
        keys = [f.key for f in store.injected_fragments()]
        assert count == len(keys)
        assert "injected-docs/requirements.md" in keys
        assert not any("notes" in k for k in keys)

    def test_content_and_metadata(self, project):
        store = ContextStore()
        inject_high_relevance_fragments(store, project)
        fragment = store.get("injected-docs/requirements.md")
        assert fragment.source_path == "docs/requirements.md"
        assert "**Source**: docs/requirements.md" in fragment.content
        assert "**Relevance Score**:" in fragment.content
        assert "requirements" in fragment.tags
        assert 0.75 <= fragment.relevance_hint <= 1.0

    def test_max_count(self, project):
        store = ContextStore()
        assert inject_high_relevance_fragments(store, project, min_score=0, max_count=2) == 2
        assert len(store.injected_fragments()) == 2

    def test_idempotent(self, project):
        store = ContextStore()
        first = inject_high_relevance_fragments(store, project)
        snapshot = {f.key: f.content for f in store.injected_fragments()}
        version = store.version

        second = inject_high_relevance_fragments(store, project)
        assert second == first
        assert {f.key: f.content for f in store.injected_fragments()} == snapshot
        assert store.version == version

    def test_similar_names_get_distinct_keys(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            for name in ("design-notes.md", "design_notes.md", "design-notes.txt"):
                write(root, f"docs/{name}", REQUIREMENTS_DOC)
            store = ContextStore()
            count = inject_high_relevance_fragments(store, root, min_score=0)

            keys = sorted(f.key for f in store.injected_fragments())
            assert count == len(keys) == 3
            assert keys == [
                "injected-docs/design-notes.md",
                "injected-docs/design-notes.txt",
                "injected-docs/design_notes.md",
            ]

    def test_nothing_qualifies(self, project):
        store = ContextStore()
        assert inject_high_relevance_fragments(store, project, min_score=101) == 0
        assert store.injected_fragments() == []

    def test_missing_root_returns_zero(self):
        assert inject_high_relevance_fragments(ContextStore(), Path("/nonexistent/x")) == 0


class TestInjectFiles:
    def test_injects_named_files(self, project):
        store = ContextStore()
        count = inject_files(store, [project / "docs" / "requirements.md"], project)
        assert count == 1
        fragment = store.get("injected-docs/requirements.md")
        assert fragment.content.startswith("## Injected File: docs/requirements.md")

    def test_skips_readme_short_and_unreadable(self, project):
        store = ContextStore()
        count = inject_files(store, [
            project / "README.md",
            project / "tiny.md",
            project / "docs" / "corrupt.md",
            project / "missing.md",
        ], project)
        assert count == 0
        assert store.injected_fragments() == []

    def test_same_file_twice_counts_once(self, project):
        store = ContextStore()
        path = project / "docs" / "requirements.md"
        assert inject_files(store, [path, path], project) == 1
        assert len(store.injected_fragments()) == 1

    def test_unreadable_files_are_counted(self, project, caplog):
        caplog.set_level(logging.INFO, logger="docctx")
        store = ContextStore()
        count = inject_files(store, [
            project / "docs" / "requirements.md",
            project / "docs" / "corrupt.md",
            project / "missing.md",
        ], project)
        assert count == 1
        assert "Injected 1 specific file(s) (2 unreadable skipped)" in caplog.text


class TestLoadExistingDocuments:
    """Test previously generated documents as priority context."""

    @pytest.fixture
    def docs_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "generated-documents"
            write(root, "planning/project-charter.md", "# Charter\n" + "Objectives and scope. " * 10)
            charter = root / "planning" / "project-charter.md"
            os.utime(charter, (1_600_000_000, 1_600_000_000))
            write(root, "risk/risk-analysis.md", "# Risks\n" + "Mitigation detail. " * 10)
            write(root, "README.md", "# Index\n" + "Listing of documents. " * 10)
            write(root, "overview.md", "# Overview\n" + "High level summary. " * 10)
            yield root

    def test_registers_enriched_fragments(self, docs_dir):
        store = ContextStore()
        assert load_existing_documents(store, docs_dir) == 3
        keys = {f.key for f in store.enriched_fragments()}
        assert keys == {
            "existing-planning-project-charter",
            "existing-risk-risk-analysis",
            "existing-general-overview",
        }

    def test_newest_registered_first(self, docs_dir):
        store = ContextStore()
        load_existing_documents(store, docs_dir)
        assert store.enriched_fragments()[-1].key == "existing-planning-project-charter"

    def test_priority_hint_and_tags(self, docs_dir):
        store = ContextStore()
        load_existing_documents(store, docs_dir)
        fragment = store.get("existing-risk-risk-analysis")
        assert fragment.relevance_hint == 1.0
        assert "risk-analysis" in fragment.tags
        assert "EXISTING DOCUMENT" in fragment.content

    def test_colliding_names_keep_newest(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            older = write(root, "planning/risk_analysis.md", "# Old\n" + "Superseded text. " * 10)
            os.utime(older, (1_600_000_000, 1_600_000_000))
            write(root, "planning/risk-analysis.md", "# New\n" + "Current text. " * 10)
            store = ContextStore()

            assert load_existing_documents(store, root) == 1
            fragment = store.get("existing-planning-risk-analysis")
            assert "Current text." in fragment.content
            assert "Superseded text." not in fragment.content

    def test_missing_directory(self):
        assert load_existing_documents(ContextStore(), Path("/nonexistent/generated")) == 0


def test_slugify():
    assert slugify("docs/Design Notes") == "docs-design-notes"
