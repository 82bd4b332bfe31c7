# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Weighted multi-signal scoring of correlation candidates."""

import logging
from datetime import datetime, timezone
from typing import Callable

import Levenshtein

from tce.extractor import AuthoringFamily
from tce.identity import infer_family, resolve_reported_parts
from tce.model import (
    BuildContext,
    CanonicalIdentity,
    ExecutionResult,
    MatchType,
    RetrievalSource,
    ScoreBreakdown,
)
from tce.normalizer import comparable_path, normalize_name, path_segments
from tce.settings import CorrelationSettings

logger = logging.getLogger(__name__)

NAME_WEIGHT = 0.4
PATH_WEIGHT = 0.25
FRAMEWORK_WEIGHT = 0.15
CONTENT_WEIGHT = 0.1
CONTEXT_WEIGHT = 0.1

FRAMEWORK_COMPATIBLE = 0.7
FRAMEWORK_FLOOR = 0.3
COMPATIBLE_FAMILIES: frozenset[frozenset[AuthoringFamily]] = frozenset(
    {
        frozenset({"jest", "vitest"}),
        frozenset({"mocha", "jasmine"}),
    }
)


def similarity(left: str, right: str) -> float:
    """Return ``1 - distance / max(len)`` for two strings.

    Args:
        left: First string.
        right: Second string.

    Returns:
        Similarity in [0, 1]; 0 when either string is empty.
    """
    if not left or not right:
        return 0.0
    return 1.0 - Levenshtein.distance(left, right) / max(len(left), len(right))


def name_score(reported: str, stored: str) -> float:
    if not reported or not stored:
        return 0.0
    if reported == stored:
        return 1.0
    if reported.lower() == stored.lower():
        return 0.95
    normalized_reported = normalize_name(reported)
    normalized_stored = normalize_name(stored)
    if normalized_reported and normalized_reported == normalized_stored:
        return 0.9
    return similarity(normalized_reported, normalized_stored)


def path_score(reported: str | None, stored: str | None) -> float:
    """Score agreement between two file paths.

    Args:
        reported: Path reported with the execution result.
        stored: Path of the stored identity.

    Returns:
        1.0 for equal paths, 0.8 for equal file names, 0.6 for containment,
        else the shared-segment fraction scaled into [0, 0.5].
    """
    left = comparable_path(reported)
    right = comparable_path(stored)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    left_parts = path_segments(left)
    right_parts = path_segments(right)
    if left_parts[-1] == right_parts[-1]:
        return 0.8
    if left in right or right in left:
        return 0.6
    shared = len(set(left_parts) & set(right_parts))
    return min(0.5, shared / max(len(left_parts), len(right_parts)) * 0.5)


def framework_score(
    inferred: AuthoringFamily, stored: AuthoringFamily | None
) -> float:
    if stored == inferred:
        return 1.0
    if stored is not None and frozenset({inferred, stored}) in COMPATIBLE_FAMILIES:
        return FRAMEWORK_COMPATIBLE
    return FRAMEWORK_FLOOR


def content_score(description: str, details: str | None) -> float:
    if not description or not details:
        return 0.0
    return similarity(normalize_name(description), normalize_name(details))


class WeightedScorer:
    """Score stored identities against execution results."""

    def __init__(
        self,
        settings: CorrelationSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize scorer.

        Args:
            settings: Recency window source; defaults to :class:`CorrelationSettings`.
            clock: Current-time provider used by the recency score.
        """
        self._settings = settings or CorrelationSettings()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def score(
        self,
        result: ExecutionResult,
        candidate: CanonicalIdentity,
        build_context: BuildContext | None = None,
        sources: tuple[RetrievalSource, ...] = (),
    ) -> ScoreBreakdown:
        """Compute the five sub-scores and their weighted composite.

        Args:
            result: Execution result being correlated.
            candidate: Stored identity under consideration.
            build_context: Build the result was reported from.
            sources: Retrieval paths that produced the candidate.

        Returns:
            Score breakdown with the composite ``total``.
        """
        file_path, leaf, _ = resolve_reported_parts(result)
        name = name_score(leaf, candidate.title)
        path = path_score(file_path, candidate.file_path)
        framework = framework_score(infer_family(result), candidate.family)
        content = content_score(candidate.description, result.details)
        context = self.context_score(candidate, build_context)
        total = (
            NAME_WEIGHT * name
            + PATH_WEIGHT * path
            + FRAMEWORK_WEIGHT * framework
            + CONTENT_WEIGHT * content
            + CONTEXT_WEIGHT * context
        )
        total = round(min(1.0, total), 6)
        return ScoreBreakdown(
            name=name,
            path=path,
            framework=framework,
            content=content,
            context=context,
            total=total,
            primary_match_type=_primary_match_type(name, path, total),
            sources=sources,
        )

    def context_score(
        self, candidate: CanonicalIdentity, build_context: BuildContext | None
    ) -> float:
        """Score repository, branch and recency agreement.

        Branch and recency only count when the repositories are not known to
        differ.

        Args:
            candidate: Stored identity under consideration.
            build_context: Build the result was reported from.

        Returns:
            Context score in [0, 1].
        """
        if build_context is None:
            return 0.0
        if repositories_differ(candidate, build_context):
            return 0.0
        score = 0.0
        if candidate.repository_id and candidate.repository_id == build_context.repository_id:
            score += 0.5
        if candidate.branch and candidate.branch == build_context.branch:
            score += 0.3
        if candidate.last_seen_at is not None:
            window = self._settings.recency_window_days
            last_seen = candidate.last_seen_at
            if last_seen.tzinfo is None:
                last_seen = last_seen.replace(tzinfo=timezone.utc)
            age_days = max(0.0, (self._clock() - last_seen).total_seconds() / 86400)
            if age_days < window:
                score += 0.2 * (1 - age_days / window)
        return min(1.0, score)


def repositories_differ(
    candidate: CanonicalIdentity, build_context: BuildContext | None
) -> bool:
    """Whether both repositories are known and different."""
    if build_context is None:
        return False
    return bool(
        candidate.repository_id
        and build_context.repository_id
        and candidate.repository_id != build_context.repository_id
    )


def _primary_match_type(name: float, path: float, total: float) -> MatchType:
    if total <= 0:
        return "none"
    if path > name:
        return "file_path"
    if name >= 0.95:
        return "exact_name"
    if name >= 0.8:
        return "similar_name"
    return "fuzzy_name"
