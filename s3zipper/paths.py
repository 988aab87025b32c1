"""
s3zipper/paths.py
-----------------------------------------------------------------------------
Name sanitising and archive path construction.

Every string that ends up in an archive entry name or in the
``Content-Disposition`` header comes from an untrusted producer.  This module
strips the characters that are unsafe in file names on common platforms and
assembles the hierarchical entry path for a descriptor.

Exports
-------
sanitize(raw, fallback) -> str
    Strip ``# < > : " / \\ | ? *``; return ``fallback`` if nothing is left.

safe_file_name / safe_project_name / safe_download_name
    ``sanitize`` with the fallback for each context ("file", "Project",
    "download.zip").

safe_folder(raw, strip_traversal=False) -> str
    Sanitize a slash-separated folder prefix segment by segment.

build_entry_path(descriptor, strip_traversal=False) -> str
    ``[{project_id}.{project_name}/][{folder}/]{file_name}``

content_disposition(name) -> str
    ``attachment`` header value for a sanitized download name.

Design notes
------------
All functions are pure and total: they never raise and never touch I/O.
``storage_path`` is deliberately absent from this module; it is an internal
object-store key and is used verbatim.
"""

from __future__ import annotations

import re
import unicodedata
from urllib.parse import quote

from s3zipper.schema import FileDescriptor

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# Characters removed from every untrusted name.  Nothing else is touched.
UNSAFE_CHARACTERS = '#<>:"/\\|?*'
_UNSAFE_PATTERN = re.compile("[" + re.escape(UNSAFE_CHARACTERS) + "]")

FILE_NAME_FALLBACK = "file"
PROJECT_NAME_FALLBACK = "Project"
DOWNLOAD_NAME_FALLBACK = "download.zip"

_TRAVERSAL_SEGMENTS = frozenset({".", ".."})

# C0 controls and DEL; replaced with spaces in header values.
_CONTROL_PATTERN = re.compile(r"[\x00-\x1f\x7f]")


# -----------------------------------------------------------------------------
# Sanitising
# -----------------------------------------------------------------------------


def sanitize(raw: str | None, fallback: str) -> str:
    """
    Remove unsafe characters from ``raw``.

    Parameters
    ----------
    raw      : Untrusted name.  ``None`` is treated as empty.
    fallback : Returned when nothing is left after stripping.

    Returns
    -------
    str : ``raw`` without any of ``# < > : " / \\ | ? *``, or ``fallback``.
    """
    cleaned = _UNSAFE_PATTERN.sub("", raw or "")
    return cleaned or fallback


def safe_file_name(raw: str | None) -> str:
    return sanitize(raw, FILE_NAME_FALLBACK)


def safe_project_name(raw: str | None) -> str:
    return sanitize(raw, PROJECT_NAME_FALLBACK)


def safe_download_name(raw: str | None) -> str:
    return sanitize(raw, DOWNLOAD_NAME_FALLBACK)


def safe_folder(raw: str | None, *, strip_traversal: bool = False) -> str:
    """
    Sanitize a slash-separated folder prefix.

    The folder is split on ``/`` and each segment is stripped of unsafe
    characters.  Segments that end up empty are dropped, so the result has
    no leading, trailing, or doubled separators.  Backslashes are unsafe
    characters, not separators, and are removed like the rest.

    Parameters
    ----------
    raw             : Folder prefix from the descriptor (may be empty).
    strip_traversal : Also drop ``.`` and ``..`` segments.

    Returns
    -------
    str : The cleaned prefix without a trailing slash, or ``""``.
    """
    segments = []
    for segment in (raw or "").split("/"):
        cleaned = _UNSAFE_PATTERN.sub("", segment)
        if not cleaned:
            continue
        if strip_traversal and cleaned in _TRAVERSAL_SEGMENTS:
            continue
        segments.append(cleaned)
    return "/".join(segments)


# -----------------------------------------------------------------------------
# Entry paths
# -----------------------------------------------------------------------------


def build_entry_path(descriptor: FileDescriptor, *, strip_traversal: bool = False) -> str:
    """
    Build the archive entry path for one descriptor.

    Layout::

        {project_id}.{project_name}/{folder}/{file_name}

    The project prefix is only present when ``project_id > 0`` and the
    folder only when it is non-empty after sanitising.

    Example
    -------
    ``FileDescriptor(file_name="a1.jpg", project_id=23216,
    project_name="Superman", folder="Level 1/Level 2 x/Level 3",
    storage_path="1/x.jpg")`` →
    ``"23216.Superman/Level 1/Level 2 x/Level 3/a1.jpg"``
    """
    path = ""
    if descriptor.project_id > 0:
        path += f"{descriptor.project_id}.{safe_project_name(descriptor.project_name)}/"

    folder = safe_folder(descriptor.folder, strip_traversal=strip_traversal)
    if folder:
        path += folder + "/"

    return path + safe_file_name(descriptor.file_name)


# -----------------------------------------------------------------------------
# Content-Disposition
# -----------------------------------------------------------------------------


def content_disposition(name: str) -> str:
    """
    Build an ``attachment`` Content-Disposition value for ``name``.

    ASCII names produce ``attachment; filename="<name>"``.  HTTP header
    values are latin-1 on the wire, so a non-ASCII name additionally gets an
    RFC 5987 ``filename*`` parameter, with an ASCII approximation in
    ``filename`` for clients that ignore it.

    Control characters (CR, LF, tab …) are replaced with spaces so the
    value is always a single legal header line.

    Parameters
    ----------
    name : An already sanitized download name (no quotes, no slashes).
    """
    name = _CONTROL_PATTERN.sub(" ", name)
    if name.isascii():
        return f'attachment; filename="{name}"'

    fallback = (
        unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii").strip()
    )
    if not fallback or fallback.startswith("."):
        fallback = DOWNLOAD_NAME_FALLBACK
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(name, safe='')}"
