"""Migration discovery.

Lists the immediate entries of a migrations directory and turns the ones
named like migrations into ``MigrationFile`` values. The result is
unsorted; the pipeline orders it after consulting history.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from semver import Version

from fireway.errors import DuplicateVersionError, MigrationDirectoryError
from fireway.logging import get_logger
from fireway.versioning import UnversionedFile, parse_filename

logger = get_logger(__name__)


@dataclass(frozen=True)
class MigrationFile:
    """One migration script found on disk."""

    filename: str
    path: Path
    version: Version
    description: str

    @property
    def type(self) -> str:
        """File extension without the leading dot."""
        return self.path.suffix[1:]

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


def resolve_directory(directory: str | Path) -> Path:
    """Make *directory* absolute, relative to the working directory."""
    path = Path(directory)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def scan_directory(directory: str | Path, *, verbose: bool = False) -> list[MigrationFile]:
    """Return every migration file directly inside *directory*.

    Raises:
        MigrationDirectoryError: the directory does not exist
        MigrationFilenameError: a file has a version but no description
        DuplicateVersionError: two files share a version
    """
    root = resolve_directory(directory)
    if not root.exists():
        raise MigrationDirectoryError(str(root))

    files: list[MigrationFile] = []
    seen: dict[Version, str] = {}

    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            continue

        parsed = parse_filename(entry.name)
        if parsed is None:
            continue
        if isinstance(parsed, UnversionedFile):
            if verbose:
                logger.warning("migration.unversioned", filename=entry.name)
            continue

        existing = seen.get(parsed.version)
        if existing is not None:
            raise DuplicateVersionError(entry.name, existing, str(parsed.version))
        seen[parsed.version] = entry.name

        files.append(
            MigrationFile(
                filename=entry.name,
                path=entry,
                version=parsed.version,
                description=parsed.description,
            )
        )

    return files


__all__ = ["MigrationFile", "resolve_directory", "scan_directory"]
