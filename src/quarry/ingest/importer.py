"""File importer: walks directories of .md / .txt files into the store.

Each file is committed in its own transaction, so an interrupted import
leaves every file either fully indexed or untouched. Unchanged files are
skipped by comparing a SHA-256 of their content with the hash stored in the
metadata of their existing chunks.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from quarry.db.repository import Repository
from quarry.ingest.base import ChunkerOptions
from quarry.ingest.embedder import Embedder
from quarry.ingest.pipeline import ingest_text

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".md", ".markdown", ".txt"})
_MAX_DEPTH = 10


@dataclass
class ImportOptions:
    """Where and how imported files are stored."""

    collection_id: str
    chunker: ChunkerOptions = field(default_factory=ChunkerOptions)
    embedder: Embedder | None = None


@dataclass
class ImportResult:
    files_processed: int = 0
    chunks_created: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    cancelled: bool = False

    def merge(self, other: ImportResult) -> ImportResult:
        return ImportResult(
            files_processed=self.files_processed + other.files_processed,
            chunks_created=self.chunks_created + other.chunks_created,
            files_skipped=self.files_skipped + other.files_skipped,
            files_failed=self.files_failed + other.files_failed,
            cancelled=self.cancelled or other.cancelled,
        )


def source_key(path: str | Path) -> str:
    """Canonical ``source_file`` value for *path* (absolute, ``~`` expanded)."""
    return str(Path(path).expanduser().resolve())


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def scan_files(directory: str | Path) -> list[Path]:
    """Return supported files under *directory*, recursively, in sorted order."""
    root = Path(directory).expanduser()
    if not root.is_dir():
        logger.warning("Not a directory, skipping: %s", directory)
        return []
    return _scan_dir(root, depth=0)


def _scan_dir(directory: Path, depth: int) -> list[Path]:
    if depth > _MAX_DEPTH:
        return []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        logger.warning("Permission denied, skipping: %s", directory)
        return []
    files: list[Path] = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.is_file() and entry.suffix.lower() in SUPPORTED_EXTENSIONS:
            files.append(entry)
        elif entry.is_dir():
            files.extend(_scan_dir(entry, depth=depth + 1))
    return files


class FileImporter:
    """Import files and directories through the shared ingest pipeline."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def import_directory(
        self,
        directory: str | Path,
        options: ImportOptions,
        cancel: threading.Event | None = None,
    ) -> ImportResult:
        """Import every supported file under *directory*.

        Args:
            directory: Directory to crawl (``~`` is expanded).
            options: Target collection, chunker options and embedder.
            cancel: If set between two files, the import stops there; files
                already imported stay committed.
        """
        result = ImportResult()
        for path in scan_files(directory):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                logger.info("Import of %s cancelled after %d files", directory, result.files_processed)
                break
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                logger.error("Cannot read %s: %s", path, exc)
                result.files_failed += 1
                continue

            key = source_key(path)
            digest = content_hash(text)
            if self._is_unchanged(key, digest, options.collection_id):
                result.files_skipped += 1
                continue

            result.chunks_created += self._ingest(key, text, digest, path.stem, options)
            result.files_processed += 1

        logger.info(
            "Imported %s: %d files, %d chunks, %d skipped, %d failed",
            directory,
            result.files_processed,
            result.chunks_created,
            result.files_skipped,
            result.files_failed,
        )
        return result

    def reindex_file(self, file_path: str | Path, options: ImportOptions) -> int:
        """Replace the stored chunks of one file. Returns the new chunk count.

        A file that no longer exists has its chunks removed and yields 0.

        Raises:
            OSError: If the file exists but cannot be read.
        """
        path = Path(file_path).expanduser()
        key = source_key(path)
        if not path.is_file():
            removed = self._repo.delete_chunks_by_source_file(key)
            logger.info("%s is gone, removed %d chunks", key, removed)
            return 0
        text = path.read_text(encoding="utf-8", errors="replace")
        return self._ingest(key, text, content_hash(text), path.stem, options)

    def _ingest(
        self, key: str, text: str, digest: str, title: str, options: ImportOptions
    ) -> int:
        outcome = ingest_text(
            self._repo,
            text,
            options.collection_id,
            options=options.chunker,
            embedder=options.embedder,
            source_file=key,
            title=title,
            metadata={"content_hash": digest},
            replace=True,
        )
        return outcome.chunk_count

    def _is_unchanged(self, key: str, digest: str, collection_id: str) -> bool:
        existing = self._repo.chunks_by_source_file(key)
        if not existing:
            return False
        first = existing[0]
        return (
            first.collection_id == collection_id
            and first.metadata.get("content_hash") == digest
        )
