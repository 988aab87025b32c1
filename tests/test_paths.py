"""
Tests for s3zipper/paths.py – name sanitising and entry path building.

The tests are organised to verify:
  1. Exactly the unsafe character set is stripped, nothing else.
  2. Fallback names apply when nothing is left.
  3. Entry paths follow ``[{id}.{project}/][{folder}/]{name}``.
  4. Content-Disposition values for ASCII and non-ASCII names.
"""

from __future__ import annotations

import pytest

from s3zipper.paths import (
    DOWNLOAD_NAME_FALLBACK,
    build_entry_path,
    content_disposition,
    safe_download_name,
    safe_file_name,
    safe_folder,
    safe_project_name,
    sanitize,
)
from s3zipper.schema import FileDescriptor

# ── sanitize ─────────────────────────────────────────────────────────────────


class TestSanitize:
    @pytest.mark.parametrize("char", list('#<>:"/\\|?*'))
    def test_strips_each_unsafe_character(self, char: str) -> None:
        assert sanitize(f"a{char}b", "x") == "ab"

    def test_keeps_everything_else(self) -> None:
        """Spaces, dots, unicode and punctuation outside the set survive."""
        raw = "Ünïcødé name (v2) [final] & co.; 100% ~ 'q'.txt"
        assert sanitize(raw, "x") == raw

    def test_fallback_when_empty(self) -> None:
        assert sanitize("", "fallback") == "fallback"

    def test_fallback_when_all_unsafe(self) -> None:
        assert sanitize('#<>:"/\\|?*', "fallback") == "fallback"

    def test_none_treated_as_empty(self) -> None:
        assert sanitize(None, "fallback") == "fallback"

    def test_context_fallbacks(self) -> None:
        assert safe_file_name("") == "file"
        assert safe_project_name("") == "Project"
        assert safe_download_name(None) == "download.zip"
        assert safe_download_name("???") == DOWNLOAD_NAME_FALLBACK

    def test_download_name_stripped(self) -> None:
        assert safe_download_name('my "files"/2015.zip') == "my files2015.zip"


# ── safe_folder ──────────────────────────────────────────────────────────────


class TestSafeFolder:
    def test_keeps_nested_segments(self) -> None:
        assert safe_folder("Level 1/Level 2 x/Level 3") == "Level 1/Level 2 x/Level 3"

    def test_drops_empty_segments(self) -> None:
        """Leading, trailing and doubled slashes never reach the entry path."""
        assert safe_folder("/a//b/") == "a/b"

    def test_drops_segments_emptied_by_stripping(self) -> None:
        assert safe_folder("a/??/b") == "a/b"

    def test_backslash_is_stripped_not_split(self) -> None:
        assert safe_folder("a\\b/c") == "ab/c"

    def test_empty_and_none(self) -> None:
        assert safe_folder("") == ""
        assert safe_folder(None) == ""

    def test_dot_segments_kept_by_default(self) -> None:
        assert safe_folder("../a/./b") == "../a/./b"

    def test_dot_segments_dropped_when_stripping_traversal(self) -> None:
        assert safe_folder("../a/./b/..", strip_traversal=True) == "a/b"


# ── build_entry_path ─────────────────────────────────────────────────────────


class TestBuildEntryPath:
    def test_full_layout(self) -> None:
        d = FileDescriptor(
            storage_path="1/x.jpg",
            file_name="a1.jpg",
            project_id=23216,
            project_name="Superman",
            folder="Level 1/Level 2 x/Level 3",
        )
        assert build_entry_path(d) == "23216.Superman/Level 1/Level 2 x/Level 3/a1.jpg"

    def test_name_only(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="report.pdf")
        assert build_entry_path(d) == "report.pdf"

    def test_project_without_folder(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="r.pdf", project_id=5, project_name="P")
        assert build_entry_path(d) == "5.P/r.pdf"

    def test_folder_without_project(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="r.pdf", folder="docs")
        assert build_entry_path(d) == "docs/r.pdf"

    def test_zero_project_id_means_no_project_folder(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="r.pdf", project_id=0, project_name="P")
        assert build_entry_path(d) == "r.pdf"

    def test_empty_project_name_falls_back(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="r.pdf", project_id=9, project_name="")
        assert build_entry_path(d) == "9.Project/r.pdf"

    def test_unsafe_names_sanitized(self) -> None:
        d = FileDescriptor(
            storage_path="1/x",
            file_name="a:b*c?.txt",
            project_id=1,
            project_name="Pro/ject",
            folder="f<o>o",
        )
        assert build_entry_path(d) == "1.Project/foo/abc.txt"

    def test_empty_file_name_falls_back(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="***")
        assert build_entry_path(d) == "file"

    def test_storage_path_not_used(self) -> None:
        d = FileDescriptor(storage_path="secret/key/path.bin", file_name="public.bin")
        assert "secret" not in build_entry_path(d)

    def test_strip_traversal_passed_through(self) -> None:
        d = FileDescriptor(storage_path="1/x", file_name="r.pdf", folder="../../etc")
        assert build_entry_path(d) == "../../etc/r.pdf"
        assert build_entry_path(d, strip_traversal=True) == "etc/r.pdf"


# ── content_disposition ──────────────────────────────────────────────────────


class TestContentDisposition:
    def test_ascii(self) -> None:
        assert content_disposition("files.zip") == 'attachment; filename="files.zip"'

    def test_non_ascii_gets_rfc5987_parameter(self) -> None:
        value = content_disposition("Résumé.zip")
        assert value.startswith('attachment; filename="Resume.zip"; ')
        assert "filename*=UTF-8''R%C3%A9sum%C3%A9.zip" in value

    def test_non_ascii_without_ascii_approximation(self) -> None:
        value = content_disposition("文件.zip")
        assert value.startswith(f'attachment; filename="{DOWNLOAD_NAME_FALLBACK}"; ')
        assert "filename*=UTF-8''%E6%96%87%E4%BB%B6.zip" in value

    def test_value_is_latin1_encodable(self) -> None:
        content_disposition("Ωmega ☃.zip").encode("latin-1")

    def test_control_characters_replaced(self) -> None:
        """CR/LF in a name can never end the header line early."""
        value = content_disposition("a.zip\r\nSet-Cookie x=1")
        assert value == 'attachment; filename="a.zip  Set-Cookie x=1"'

    def test_control_characters_replaced_in_non_ascii_name(self) -> None:
        value = content_disposition("é\n.zip")
        assert "\n" not in value
        assert "filename*=UTF-8''%C3%A9%20.zip" in value
