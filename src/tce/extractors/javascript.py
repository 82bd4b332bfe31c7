# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Structural test-declaration extractor for JavaScript/TypeScript test files."""

import bisect
import logging
import re
from typing import Any, cast

from tce.extractor import (
    MODIFIERS,
    AuthoringFamily,
    ExtractionError,
    ExtractionResult,
    FileMetadata,
    GroupLabel,
    ImportRef,
    Modifier,
    SourceDeclaration,
)
from tce.extractors.profiles import GROUP_PATTERN, PROFILES, FamilyProfile, detect_family

logger = logging.getLogger(__name__)

_IMPORT_RE = re.compile(r"import\s+(?:[\w\s{},*]+\s+from\s+)?['\"`]([^'\"`]+)['\"`]")
_REQUIRE_RE = re.compile(r"require\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*\)")
_ESCAPE_RE = re.compile(r"\\(.)")


class JavaScriptExtractor:
    """Extract test declarations using the authoring-family strategy table."""

    def extract(
        self,
        file_text: str,
        file_path: str,
        family_hint: AuthoringFamily | None = None,
    ) -> ExtractionResult:
        """Extract declarations and file metadata from one test file.

        Args:
            file_text: Full source text.
            file_path: Project-relative file path recorded on declarations.
            family_hint: Authoring family to use instead of detection.

        Returns:
            Declarations in source order, file metadata, and per-declaration
            errors for skipped regions.
        """
        family = family_hint or detect_family(file_text)
        profile = PROFILES.get(family, PROFILES["generic"])
        line_starts = _line_starts(file_text)
        imports = self._extract_imports(file_text, line_starts)
        groups = (
            self._extract_groups(file_text, line_starts) if profile.uses_groups else []
        )

        declarations: list[SourceDeclaration] = []
        errors: list[ExtractionError] = []
        for offset, match in self._iter_matches(file_text, profile):
            line_number = _line_number(line_starts, offset)
            try:
                declarations.append(
                    self._build_declaration(
                        profile=profile,
                        text=file_text,
                        file_path=file_path,
                        match=match,
                        offset=offset,
                        line_number=line_number,
                        groups=groups,
                    )
                )
            except (ValueError, IndexError, re.error) as exc:
                logger.warning(
                    f"Skipping malformed declaration (file_path={file_path} "
                    f"line={line_number} error={exc})"
                )
                errors.append(
                    ExtractionError(
                        file_path=file_path, message=str(exc), line_number=line_number
                    )
                )

        metadata = FileMetadata(
            family=profile.family,
            file_path=file_path,
            imports=imports,
            groups=groups,
            flags=self._extract_flags(profile, file_text, imports, groups),
            mocks=_captures(profile.mock_pattern, file_text),
            custom_commands=_captures(profile.command_pattern, file_text),
        )
        logger.debug(
            f"Extraction completed (file_path={file_path} family={profile.family} "
            f"declarations={len(declarations)} errors={len(errors)})"
        )
        return ExtractionResult(
            declarations=declarations, metadata=metadata, errors=errors
        )

    def _iter_matches(
        self, text: str, profile: FamilyProfile
    ) -> list[tuple[int, re.Match[str]]]:
        """Collect declaration matches from all profile patterns in offset order."""
        by_offset: dict[int, re.Match[str]] = {}
        for pattern in profile.declaration_patterns:
            for match in pattern.finditer(text):
                by_offset.setdefault(match.start(), match)
        return sorted(by_offset.items())

    def _build_declaration(
        self,
        profile: FamilyProfile,
        text: str,
        file_path: str,
        match: re.Match[str],
        offset: int,
        line_number: int,
        groups: list[GroupLabel],
    ) -> SourceDeclaration:
        title = _unescape(match.group("title")).strip()
        modifiers = _modifiers(match.groupdict().get("modifier"))
        attributes: dict[str, Any] = {}
        for extractor in profile.attribute_extractors:
            attributes.update(extractor(text, offset, modifiers))
        return SourceDeclaration(
            family=profile.family,
            title=title,
            file_path=file_path,
            line_number=line_number,
            group_label=_nearest_group(offset, groups),
            is_async=profile.is_async(text, offset),
            modifiers=modifiers,
            attributes=attributes,
        )

    def _extract_imports(self, text: str, line_starts: list[int]) -> list[ImportRef]:
        imports = [
            ImportRef(
                kind="es6",
                module=match.group(1),
                line_number=_line_number(line_starts, match.start()),
            )
            for match in _IMPORT_RE.finditer(text)
        ]
        imports.extend(
            ImportRef(
                kind="commonjs",
                module=match.group(1),
                line_number=_line_number(line_starts, match.start()),
            )
            for match in _REQUIRE_RE.finditer(text)
        )
        return imports

    def _extract_groups(self, text: str, line_starts: list[int]) -> list[GroupLabel]:
        groups: list[GroupLabel] = []
        for match in GROUP_PATTERN.finditer(text):
            label = _unescape(match.group("title")).strip()
            if not label:
                continue
            groups.append(
                GroupLabel(
                    label=label,
                    offset=match.start(),
                    line_number=_line_number(line_starts, match.start()),
                    modifier=match.group("modifier"),
                )
            )
        return groups

    def _extract_flags(
        self,
        profile: FamilyProfile,
        text: str,
        imports: list[ImportRef],
        groups: list[GroupLabel],
    ) -> dict[str, bool]:
        flags = profile.flag_extractor(text, imports, groups)
        if profile.mock_pattern is not None:
            flags["uses_mocks"] = bool(profile.mock_pattern.search(text))
        if profile.command_pattern is not None:
            flags["has_custom_commands"] = bool(profile.command_pattern.search(text))
        return flags


def extract_declarations(file_text: str, file_path: str) -> list[SourceDeclaration]:
    """Extract declarations from one file using detected family profile.

    Args:
        file_text: Full source text.
        file_path: Project-relative file path.

    Returns:
        Declarations in source order.
    """
    return JavaScriptExtractor().extract(file_text, file_path).declarations


def _nearest_group(offset: int, groups: list[GroupLabel]) -> str | None:
    """Return the label of the closest grouping declaration before ``offset``."""
    nearest: GroupLabel | None = None
    for group in groups:
        if group.offset < offset and (nearest is None or group.offset > nearest.offset):
            nearest = group
    return nearest.label if nearest else None


def _modifiers(raw: str | None) -> tuple[Modifier, ...]:
    if raw in MODIFIERS:
        return (cast(Modifier, raw),)
    return ()


def _unescape(text: str) -> str:
    return _ESCAPE_RE.sub(r"\1", text)


def _captures(pattern: re.Pattern[str] | None, text: str) -> list[str]:
    if pattern is None:
        return []
    return [match.group(1) for match in pattern.finditer(text)]


def _line_starts(text: str) -> list[int]:
    starts = [0]
    starts.extend(match.end() for match in re.finditer("\n", text))
    return starts


def _line_number(line_starts: list[int], offset: int) -> int:
    """Map a text offset to its 1-based line number."""
    return bisect.bisect_right(line_starts, offset)
