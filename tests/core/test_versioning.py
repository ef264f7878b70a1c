"""Tests for migration filename parsing."""

from __future__ import annotations

import pytest
from semver import Version

from fireway.errors import MigrationFilenameError
from fireway.versioning import (
    ParsedFilename,
    UnversionedFile,
    coerce_version,
    parse_filename,
)


class TestCoerceVersion:
    @pytest.mark.parametrize(
        "token, expected",
        [
            ("v1", "1.0.0"),
            ("v1.2", "1.2.0"),
            ("1.2.3", "1.2.3"),
            ("V0.0.1", "0.0.1"),
            ("2.0.0-rc.1", "2.0.0-rc.1"),
            ("release-3.4", "3.4.0"),
            ("20240101", "20240101.0.0"),
        ],
    )
    def test_coerces(self, token: str, expected: str):
        assert str(coerce_version(token)) == expected

    @pytest.mark.parametrize("token", ["", "init", "README", "vx"])
    def test_no_digits(self, token: str):
        assert coerce_version(token) is None


class TestParseFilename:
    def test_version_and_description(self):
        parsed = parse_filename("v1.2__add_roles.py")
        assert parsed == ParsedFilename(version=Version(1, 2, 0), description="add_roles")

    def test_description_keeps_inner_separator(self):
        parsed = parse_filename("v1__users__backfill.py")
        assert isinstance(parsed, ParsedFilename)
        assert parsed.description == "users__backfill"

    def test_description_without_extension(self):
        parsed = parse_filename("v3__no_extension")
        assert isinstance(parsed, ParsedFilename)
        assert parsed.description == "no_extension"

    def test_only_version_and_description_matter(self):
        a = parse_filename("v1__init.py")
        b = parse_filename("1.0.0__init.py")
        assert a == b

    def test_dotfile_skipped(self):
        assert parse_filename(".v1__hidden.py") is None

    def test_not_a_migration(self):
        assert parse_filename("README.md") is None

    def test_unversioned_with_description(self):
        parsed = parse_filename("first__init.py")
        assert parsed == UnversionedFile(filename="first__init.py", description="init.py")

    def test_version_without_description_is_error(self):
        with pytest.raises(MigrationFilenameError) as exc_info:
            parse_filename("v1.py")
        assert "v1.py" in str(exc_info.value)
        assert exc_info.value.context.filename == "v1.py"
