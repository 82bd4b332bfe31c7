# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Name and path normalization helpers shared by all matching strategies."""

import logging
import re

logger = logging.getLogger(__name__)

_ROLE_MARKERS = ("test", "it", "should", "describe")
_LEADING_MARKER_RE = re.compile(
    rf"^\s*(?:(?:{'|'.join(_ROLE_MARKERS)})\b[\s_\-.:]*)+", re.IGNORECASE
)
_TRAILING_MARKER_RE = re.compile(
    rf"(?:[\s_\-.:]*\b(?:{'|'.join(_ROLE_MARKERS)}))+\s*$", re.IGNORECASE
)
_SEPARATOR_RE = re.compile(r"[_\-.]+")
_CAMEL_RE = re.compile(r"([a-z])([A-Z])")
_STOP_WORD_RE = re.compile(
    r"\b(?:test|spec|should|can|will|does|is|has|with|when|then|given)\b",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")
_QUOTES = "'\"`"
_FLATTENED_SEPARATOR = ">"
_TEST_FILE_RE = re.compile(r"\.(?:spec|test|cy)\.[cm]?[jt]sx?$", re.IGNORECASE)


def normalize_name(text: str) -> str:
    """Normalize a test title or grouping label for comparison.

    Args:
        text: Raw title as written by an author or reported by a CI agent.

    Returns:
        Lower-cased, separator-free text without role markers or stop words.
    """
    if not text:
        return ""
    normalized = _strip_role_markers(text)
    normalized = _SEPARATOR_RE.sub(" ", normalized)
    normalized = _CAMEL_RE.sub(r"\1 \2", normalized)
    normalized = _STOP_WORD_RE.sub(" ", normalized)
    # Stop-word removal can expose a marker at a boundary ("given it works").
    normalized = _strip_role_markers(_WHITESPACE_RE.sub(" ", normalized).strip())
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip().lower()


def _strip_role_markers(text: str) -> str:
    """Remove leading and trailing role-marker words."""
    stripped = _LEADING_MARKER_RE.sub("", text)
    return _TRAILING_MARKER_RE.sub("", stripped)


def normalize_path(file_path: str | None) -> str:
    """Normalize a file path to forward slashes and relative form.

    Args:
        file_path: Path as written in source or reported by a CI agent.

    Returns:
        Path with ``/`` separators and without a leading ``./`` or ``/``.
    """
    if not file_path:
        return ""
    normalized = re.sub(r"[\\/]+", "/", file_path.strip())
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def comparable_path(file_path: str | None) -> str:
    """Return the case-insensitive comparison form of a path."""
    return normalize_path(file_path).lower()


def path_segments(file_path: str | None) -> list[str]:
    """Split a comparable path into non-empty segments."""
    return [part for part in comparable_path(file_path).split("/") if part]


def strip_quotes(text: str) -> str:
    """Remove quote characters that CI agents wrap around titles."""
    return "".join(char for char in text if char not in _QUOTES).strip()


def split_flattened_title(title: str) -> tuple[str | None, str | None, str]:
    """Split a ``file > group > title`` string flattened by a CI agent.

    Args:
        title: Reported title, possibly carrying file and group prefixes.

    Returns:
        Tuple of (file_path, group, leaf_title). Missing parts are ``None``;
        titles without a separator are returned unchanged as the leaf.
    """
    if _FLATTENED_SEPARATOR not in title:
        return None, None, title
    parts = [strip_quotes(part) for part in title.split(_FLATTENED_SEPARATOR)]
    parts = [part for part in parts if part]
    if len(parts) < 2:
        return None, None, title
    file_path: str | None = None
    if _TEST_FILE_RE.search(parts[0]):
        file_path = parts.pop(0)
    leaf = parts.pop()
    group = " > ".join(parts) if parts else None
    return file_path, group, leaf
