"""File-tree discovery and context injection.

Walks a project tree (bounded depth, hidden and build directories pruned),
reads candidate text files, scores them with the generic project rubric and
registers the best ones in a ContextStore's injected pool. Unreadable files
are skipped and counted; discovery itself never fails on a single file.
"""

from __future__ import annotations

import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from pathspec import PathSpec

from docctx.config import DiscoveryConfig
from docctx.exceptions import DiscoveryIOError
from docctx.logger import get_logger
from docctx.relevance import categorize_project_file, score_project_file, terms_of
from docctx.store import ContextStore

logger = get_logger()

README_NAMES = {"readme.md", "readme.rst", "readme.txt", "readme"}
EXISTING_DOCUMENT_HINT = 1.0

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower()).strip("-")


def injected_key(rel_path: str) -> str:
    """One key per relative path; distinct files never share a key."""
    return "injected-" + Path(rel_path).as_posix()


@dataclass
class DiscoveredFile:
    """A readable candidate file and its rubric score."""
    path: Path
    rel_path: str
    content: str
    score: int
    category: str

    @property
    def key(self) -> str:
        """Path-derived key: re-discovery of the same file overwrites it."""
        return injected_key(self.rel_path)

    @property
    def tags(self) -> Tuple[str, ...]:
        return (self.category, self.path.stem.lower())


@dataclass
class DiscoveryReport:
    files: List[DiscoveredFile] = field(default_factory=list)
    scanned: int = 0
    unreadable: int = 0
    oversize: int = 0
    too_small: int = 0
    timed_out: bool = False
    errors: List[str] = field(default_factory=list)


class FileDiscovery:
    """Finds and scores candidate text files under a root directory."""

    def __init__(self, root: Path, config: Optional[DiscoveryConfig] = None):
        self.root = Path(root).resolve()
        self.config = config or DiscoveryConfig()
        self._pathspec = PathSpec.from_lines("gitwildmatch", self.config.exclude)
        self._extensions = {e.lower() for e in self.config.extensions}

    def _skip_dir(self, rel_dir: str, name: str) -> bool:
        if name.startswith("."):
            return True
        return self._pathspec.match_file(rel_dir + "/")

    def _walk(self, deadline: Optional[float], report: DiscoveryReport) -> Iterator[Path]:
        """Yield candidate files in sorted order, depth- and time-bounded."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            if deadline is not None and time.monotonic() > deadline:
                report.timed_out = True
                return

            current = Path(dirpath)
            rel_dir = current.relative_to(self.root)
            depth = len(rel_dir.parts)

            if depth >= self.config.max_depth:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(
                    d for d in dirnames
                    if not self._skip_dir(str(rel_dir / d), d)
                )

            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                path = current / name
                if path.suffix.lower() not in self._extensions:
                    continue
                if self._pathspec.match_file(str(rel_dir / name)):
                    continue
                yield path

    def read_file(self, path: Path) -> str:
        """Read one text file.

        Raises:
            DiscoveryIOError: the file cannot be read or is not UTF-8 text.
        """
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise DiscoveryIOError(f"not UTF-8 text ({e.reason})", str(path)) from e
        except OSError as e:
            raise DiscoveryIOError(e.strerror or str(e), str(path)) from e

    def _load(self, path: Path, deadline: Optional[float]) -> Tuple[str, Optional[str], str]:
        """Return (status, content, detail) for one path."""
        if deadline is not None and time.monotonic() > deadline:
            return "timeout", None, ""
        try:
            size = path.stat().st_size
        except OSError as e:
            return "unreadable", None, str(DiscoveryIOError(e.strerror or str(e), str(path)))
        if size > self.config.max_file_bytes:
            return "oversize", None, f"{path}: {size:,} bytes"
        try:
            return "ok", self.read_file(path), ""
        except DiscoveryIOError as e:
            return "unreadable", None, str(e)

    def discover(self, timeout: Optional[float] = None) -> DiscoveryReport:
        """Scan the tree; files come back best score first, then by path."""
        report = DiscoveryReport()
        if not self.root.is_dir():
            logger.warning(f"Discovery root does not exist: {self.root}")
            return report

        deadline = time.monotonic() + timeout if timeout is not None else None
        paths = [
            p for p in self._walk(deadline, report)
            if p.name.lower() not in README_NAMES
        ]
        report.scanned = len(paths)
        logger.debug(f"Discovery: {len(paths)} candidate files under {self.root}")

        workers = max(1, self.config.workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            loaded = list(pool.map(lambda p: self._load(p, deadline), paths))

        for path, (status, content, detail) in zip(paths, loaded):
            if status == "timeout":
                report.timed_out = True
                continue
            if status == "oversize":
                report.oversize += 1
                logger.debug(f"Skipping oversize file {detail}")
                continue
            if status == "unreadable":
                report.unreadable += 1
                report.errors.append(detail)
                logger.warning(f"Could not read {detail}")
                continue
            if len(content.strip()) < self.config.min_chars:
                report.too_small += 1
                continue

            rel = path.relative_to(self.root).as_posix()
            report.files.append(DiscoveredFile(
                path=path,
                rel_path=rel,
                content=content,
                score=score_project_file(path.name, content, rel),
                category=categorize_project_file(path.name, rel),
            ))

        if report.timed_out:
            logger.warning(f"Discovery under {self.root} stopped at the time limit")

        report.files.sort(key=lambda f: (-f.score, f.rel_path))
        return report


def format_injected_content(file: DiscoveredFile) -> str:
    return (
        f"## Injected Document: {file.path.name}\n"
        f"**Source**: {file.rel_path}\n"
        f"**Category**: {file.category}\n"
        f"**Relevance Score**: {file.score}/100\n\n"
        f"{file.content}"
    )


def inject_high_relevance_fragments(
    store: ContextStore,
    root_path: Path,
    min_score: int = 75,
    max_count: int = 10,
    config: Optional[DiscoveryConfig] = None,
    timeout: Optional[float] = None,
) -> int:
    """Inject the top *max_count* files scoring at least *min_score*.

    Returns the number injected; 0 is a normal outcome.
    """
    discovery = FileDiscovery(root_path, config)
    report = discovery.discover(timeout=timeout)

    selected = [f for f in report.files if f.score >= min_score][:max(0, max_count)]
    if not selected:
        logger.info(f"No files scored >= {min_score} under {discovery.root}")
        return 0

    for file in selected:
        store.add_injected(
            file.key,
            format_injected_content(file),
            source_path=file.rel_path,
            relevance_hint=file.score / 100,
            tags=file.tags,
        )
        logger.debug(f"Injected {file.rel_path} (score {file.score}) as {file.key}")

    injected = len({file.key for file in selected})
    logger.info(
        f"Injected {injected} file(s) from {discovery.root} "
        f"({report.unreadable} unreadable, {report.oversize} oversize)"
    )
    return injected


def inject_files(
    store: ContextStore,
    paths: Iterable[Path],
    root: Path,
    config: Optional[DiscoveryConfig] = None,
) -> int:
    """Inject specific files by path; returns how many distinct files were injected.

    README files and files under ``min_chars`` are passed over; unreadable
    files are counted as skipped and logged, never raised.
    """
    config = config or DiscoveryConfig()
    discovery = FileDiscovery(root, config)
    injected = set()
    unreadable = 0

    for raw in paths:
        path = Path(raw).resolve()
        if path.name.lower() in README_NAMES:
            continue
        try:
            rel = path.relative_to(discovery.root).as_posix()
        except ValueError:
            rel = path.as_posix()

        status, content, detail = discovery._load(path, None)
        if status != "ok":
            unreadable += 1
            logger.warning(f"Could not inject {detail or path}")
            continue
        if len(content.strip()) < config.min_chars:
            continue

        key = injected_key(rel)
        store.add_injected(
            key,
            f"## Injected File: {rel}\n\n{content}",
            source_path=rel,
            tags=(categorize_project_file(path.name, rel), path.stem.lower()),
        )
        injected.add(key)

    logger.info(f"Injected {len(injected)} specific file(s) ({unreadable} unreadable skipped)")
    return len(injected)


def load_existing_documents(
    store: ContextStore,
    docs_path: Path,
    config: Optional[DiscoveryConfig] = None,
    relevance_hint: float = EXISTING_DOCUMENT_HINT,
) -> int:
    """Register previously generated documents as priority enriched context.

    Newest documents are registered first; an older document whose key is
    already taken is passed over. Returns the number registered.
    """
    config = config or DiscoveryConfig()
    docs_path = Path(docs_path)
    if not docs_path.is_dir():
        logger.info(f"No generated documents directory at {docs_path}")
        return 0

    discovery = FileDiscovery(docs_path, config)
    documents = []
    for path in sorted(docs_path.rglob("*.md")):
        if path.name.lower() in README_NAMES:
            continue
        status, content, detail = discovery._load(path, None)
        if status != "ok":
            logger.warning(f"Could not read document {detail or path}")
            continue
        if len(content.strip()) < config.min_chars:
            continue
        category = path.parent.name if path.parent != docs_path else "general"
        documents.append((path.stat().st_mtime, path, category, content))

    documents.sort(key=lambda d: (-d[0], str(d[1])))

    loaded = set()
    for mtime, path, category, content in documents:
        name = path.stem
        key = f"existing-{slugify(category)}-{slugify(name)}"
        if key in loaded:
            logger.debug(f"Skipping {path}: a newer document already uses {key}")
            continue
        loaded.add(key)
        modified = datetime.fromtimestamp(mtime).isoformat(timespec="seconds")
        store.add_enriched(
            key,
            (
                "# EXISTING DOCUMENT (USER MODIFIED) - HIGHEST PRIORITY\n"
                f"**Document:** {name}\n"
                f"**Category:** {category}\n"
                f"**Last Modified:** {modified}\n\n"
                "This document may contain manual user modifications. Keep generated "
                "content consistent with it.\n\n"
                f"## Content:\n{content}"
            ),
            relevance_hint=relevance_hint,
            tags=(category, name.lower(), *sorted(terms_of(name))),
        )

    logger.info(f"Loaded {len(loaded)} existing document(s) from {docs_path}")
    return len(loaded)
