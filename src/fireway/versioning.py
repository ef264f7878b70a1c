"""Migration filename parsing.

A migration file is named ``<version>__<description>.<ext>``, for example
``v1.2__add_user_roles.py``. The version token is coerced leniently: the
first run of up to three dot-separated numbers is taken and missing
components default to ``0``.
A token that is already a full semantic version keeps its pre-release.

================  ===========  ==============================================
version coerces   description  outcome
================  ===========  ==============================================
no                no           not a migration, skipped silently
no                yes          skipped, ``migration.unversioned`` logged
yes               no           ``MigrationFilenameError``, the run aborts
yes               yes          ``ParsedFilename(version, description)``
================  ===========  ==============================================

Files starting with ``.`` are always skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePath

from semver import Version

from fireway.errors import MigrationFilenameError

SEPARATOR = "__"

# At most 16 digits per component.
_COERCE_RE = re.compile(r"(?:^|[^\d])(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?:$|[^\d])")


@dataclass(frozen=True)
class ParsedFilename:
    version: Version
    description: str


@dataclass(frozen=True)
class UnversionedFile:
    """A file that looks like a migration but has no usable version."""

    filename: str
    description: str


def coerce_version(token: str) -> Version | None:
    """Coerce *token* into a semantic version, or ``None`` if it has no digits.

    >>> str(coerce_version("v1.2"))
    '1.2.0'
    >>> str(coerce_version("2.0.0-rc.1"))
    '2.0.0-rc.1'
    >>> coerce_version("init") is None
    True
    """
    candidate = token[1:] if token[:1] in ("v", "V") else token
    if Version.is_valid(candidate):
        return Version.parse(candidate)

    match = _COERCE_RE.search(token)
    if match is None:
        return None
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return Version(major, minor, patch)


def parse_filename(filename: str) -> ParsedFilename | UnversionedFile | None:
    """Split a migration filename into version and description.

    Returns ``None`` for files that are not migrations at all and an
    ``UnversionedFile`` for files that were probably meant to be one.

    Raises:
        MigrationFilenameError: the name has a version but no description
    """
    if filename.startswith("."):
        return None

    version_token, _, description = filename.partition(SEPARATOR)
    version = coerce_version(version_token)

    if version is None:
        if description:
            return UnversionedFile(filename=filename, description=description)
        return None

    if not description:
        raise MigrationFilenameError(filename)

    return ParsedFilename(version=version, description=_strip_extension(description))


def _strip_extension(description: str) -> str:
    path = PurePath(description)
    return description[: -len(path.suffix)] if path.suffix else description
