# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Deterministic identifiers and canonical identity construction."""

import hashlib
import logging
import re
from datetime import datetime, timezone

from tce.extractor import AuthoringFamily, SourceDeclaration
from tce.model import (
    BuildContext,
    CanonicalIdentity,
    ExecutionResult,
    IdentityConflict,
    TestKind,
)
from tce.normalizer import (
    comparable_path,
    normalize_name,
    normalize_path,
    split_flattened_title,
    strip_quotes,
)

logger = logging.getLogger(__name__)

IDENTIFIER_LENGTH = 16
_TAG_RE = re.compile(r"@([\w-]+)")
_FAMILY_CUES: tuple[tuple[str, AuthoringFamily], ...] = (
    (".cy.", "cypress"),
    ("playwright", "playwright"),
    ("cypress", "cypress"),
    ("vitest", "vitest"),
    ("jest", "jest"),
    ("mocha", "mocha"),
    ("jasmine", "jasmine"),
)


def id_from_triple(file_path: str, title: str, group_label: str | None = None) -> str:
    """Compute the identifier of one declaration.

    Args:
        file_path: Source file path; separators are normalized first.
        title: Title exactly as written.
        group_label: Grouping label, if any.

    Returns:
        First 16 hex characters of the SHA-256 of ``path::title[::group]``.
    """
    key = f"{normalize_path(file_path)}::{title}"
    if group_label:
        key = f"{key}::{group_label}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:IDENTIFIER_LENGTH]


def resolve_reported_parts(result: ExecutionResult) -> tuple[str, str, str | None]:
    """Recover file path, leaf title and suite from a reported result.

    Reported fields win over the parts of a flattened ``file > group > title``
    string.

    Args:
        result: Execution result as reported.

    Returns:
        Tuple of (normalized file path, leaf title, suite).
    """
    flat_file, flat_group, leaf = split_flattened_title(result.title)
    file_path = normalize_path(result.file_path or flat_file)
    suite = result.suite or flat_group
    return file_path, strip_quotes(leaf) or leaf, suite


def id_from_execution(result: ExecutionResult) -> str:
    """Compute the identifier of an execution result from normalized parts.

    Args:
        result: Execution result as reported.

    Returns:
        Identifier over the normalized path, title and suite.
    """
    file_path, title, suite = resolve_reported_parts(result)
    normalized_suite = normalize_name(suite) if suite else None
    return id_from_triple(file_path, normalize_name(title), normalized_suite or None)


def infer_test_kind(
    file_path: str | None, title: str, family: AuthoringFamily | None = None
) -> TestKind:
    """Infer the test kind from family, path and title cues."""
    path = comparable_path(file_path)
    if family in ("playwright", "cypress") or "e2e" in path:
        return "end_to_end"
    if "integration" in path or "integration" in title.lower():
        return "integration"
    if "unit" in path:
        return "unit"
    return "functional"


def infer_family(result: ExecutionResult) -> AuthoringFamily:
    """Infer the authoring family of an execution result.

    Args:
        result: Execution result as reported.

    Returns:
        Reported family, else the first family whose naming cue appears in the
        reported path, else ``generic``.
    """
    if result.family:
        return result.family
    file_path, _, _ = resolve_reported_parts(result)
    path = file_path.lower()
    for cue, family in _FAMILY_CUES:
        if cue in path:
            return family
    return "generic"


def describe(title: str, group_label: str | None) -> str:
    return f"{group_label} - {title}" if group_label else title


def identity_from_execution(
    result: ExecutionResult,
    build_context: BuildContext | None = None,
    now: datetime | None = None,
) -> CanonicalIdentity:
    """Synthesize the auto-created identity for an unmatched result.

    Args:
        result: Execution result without a plausible stored identity.
        build_context: Build the result was reported from.
        now: Timestamp used for ``updated_at``; defaults to current UTC time.

    Returns:
        Auto-created identity keyed by :func:`id_from_execution`.
    """
    timestamp = now or datetime.now(tz=timezone.utc)
    file_path, title, suite = resolve_reported_parts(result)
    family = infer_family(result)
    context = build_context or BuildContext()
    return CanonicalIdentity(
        identifier=id_from_execution(result),
        file_path=file_path,
        title=title,
        group_label=suite,
        description=describe(title, suite),
        tags=tuple(result.tags),
        priority="medium",
        repository_id=context.repository_id,
        test_kind=infer_test_kind(file_path, title, family),
        family=family,
        auto_created=True,
        branch=context.branch,
        last_seen_at=result.reported_at or timestamp,
        updated_at=timestamp,
    )


class IdentityBuilder:
    """Turn extracted declarations into canonical identities."""

    def build(
        self,
        declarations: list[SourceDeclaration],
        repository_id: str | None = None,
        branch: str | None = None,
        now: datetime | None = None,
    ) -> tuple[list[CanonicalIdentity], list[IdentityConflict]]:
        """Build identities and report identifier collisions.

        Declarations that hash to an identifier already seen keep the first
        declaration's record and are reported as conflicts.

        Args:
            declarations: Declarations in source order.
            repository_id: Repository the declarations belong to.
            branch: Branch the declarations were scanned on.
            now: Timestamp used for ``last_seen_at`` and ``updated_at``.

        Returns:
            Tuple of (unique identities, conflicts).
        """
        timestamp = now or datetime.now(tz=timezone.utc)
        identities: dict[str, CanonicalIdentity] = {}
        lines: dict[str, list[int]] = {}
        for declaration in declarations:
            identifier = id_from_triple(
                declaration.file_path, declaration.title, declaration.group_label
            )
            lines.setdefault(identifier, []).append(declaration.line_number)
            if identifier in identities:
                continue
            identities[identifier] = CanonicalIdentity(
                identifier=identifier,
                file_path=normalize_path(declaration.file_path),
                title=declaration.title,
                group_label=declaration.group_label,
                description=describe(declaration.title, declaration.group_label),
                tags=tuple(_TAG_RE.findall(declaration.title)),
                repository_id=repository_id,
                test_kind=infer_test_kind(
                    declaration.file_path, declaration.title, declaration.family
                ),
                family=declaration.family,
                branch=branch,
                last_seen_at=timestamp,
                updated_at=timestamp,
            )

        conflicts: list[IdentityConflict] = []
        for identifier, line_numbers in lines.items():
            if len(line_numbers) < 2:
                continue
            identity = identities[identifier]
            logger.warning(
                f"Duplicate test declaration (identifier={identifier} "
                f"file_path={identity.file_path} title={identity.title!r} "
                f"lines={line_numbers})"
            )
            conflicts.append(
                IdentityConflict(
                    identifier=identifier,
                    file_path=identity.file_path,
                    title=identity.title,
                    group_label=identity.group_label,
                    line_numbers=tuple(line_numbers),
                )
            )
        return list(identities.values()), conflicts
