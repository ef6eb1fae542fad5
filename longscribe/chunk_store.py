"""Run-scoped scratch directory for chunk files."""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from longscribe.config import TEMP_DIR_PREFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    """Outcome of releasing a chunk store."""

    removed: int = 0
    skipped: int = 0
    errors: int = 0
    directory_removed: bool = False


class ChunkStore:
    """Owns a scratch directory and the chunk files created inside it.

    Only files whose paths were handed out by ``allocate`` are ever deleted.
    Anything else found in the directory is left alone, so a misconfigured or
    shared temporary location cannot cost the user data.

    Example:
        >>> with ChunkStore() as store:
        ...     path = store.allocate(0, "mp3")
    """

    def __init__(self, root: Optional[str] = None, prefix: str = TEMP_DIR_PREFIX):
        self.root = root
        self.prefix = prefix
        self.directory: Optional[Path] = None
        self._created: dict[Path, None] = {}

    def open(self) -> Path:
        """Create a fresh, uniquely named scratch directory."""
        if self.directory is not None:
            raise RuntimeError(f"Chunk store already open at {self.directory}")
        if self.root:
            os.makedirs(self.root, exist_ok=True)
        self.directory = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.root)).resolve()
        logger.info("Created temporary directory: %s", self.directory)
        return self.directory

    def allocate(self, index: int, extension: str) -> Path:
        """Return the path for chunk ``index`` and record it as ours.

        The file itself is not created; the slicer writes it.
        """
        if self.directory is None:
            raise RuntimeError("Chunk store is not open")
        path = self.directory / f"temp_chunk_{index}.{extension.lstrip('.')}"
        self._created[path] = None
        return path

    def forget(self, path: Path) -> None:
        """Stop tracking a path whose file the caller already removed."""
        self._created.pop(Path(path).resolve(), None)

    @property
    def created(self) -> list[Path]:
        return list(self._created)

    def release(self, known_artifacts: Optional[Iterable[os.PathLike]] = None) -> CleanupReport:
        """Delete known chunk files and the scratch directory.

        Args:
            known_artifacts: Paths allowed to be deleted. Defaults to every
                path this store allocated; an explicit list is narrowed to
                paths this store allocated.

        Returns:
            CleanupReport with counts of removed, skipped and failed files
        """
        directory = self.directory
        if directory is None or not directory.exists():
            logger.info("Temporary directory not found, nothing to clean up.")
            return CleanupReport()

        if not directory.name.startswith(self.prefix):
            logger.error(
                "Refusing to clean unexpected directory: %s. Aborting cleanup.",
                directory,
            )
            return CleanupReport(errors=1)

        if known_artifacts is None:
            deletable = set(self._created)
        else:
            deletable = {Path(p).resolve() for p in known_artifacts} & set(self._created)

        removed = skipped = errors = 0
        for entry in sorted(directory.iterdir()):
            path = entry.resolve()
            if path not in deletable:
                logger.warning("Skipping deletion of unexpected file in temp dir: %s", entry)
                skipped += 1
                continue
            try:
                path.unlink()
                self._created.pop(path, None)
                removed += 1
            except OSError as e:
                logger.error("Error deleting chunk file %s: %s", path, e)
                errors += 1

        directory_removed = False
        try:
            directory.rmdir()
            directory_removed = True
            logger.info("Temporary directory %s removed.", directory)
        except OSError as e:
            logger.warning("Temporary directory %s left in place: %s", directory, e)
            if not skipped and not errors:
                errors += 1

        logger.info(
            "Cleanup complete. Cleaned %d files. Encountered %d errors.", removed, errors
        )
        return CleanupReport(
            removed=removed,
            skipped=skipped,
            errors=errors,
            directory_removed=directory_removed,
        )

    def __enter__(self) -> "ChunkStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
