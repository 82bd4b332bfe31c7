# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Domain models for canonical identities, correlations and failure patterns."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from tce.extractor import AuthoringFamily

TestKind = Literal["unit", "integration", "end_to_end", "functional"]
Priority = Literal["low", "medium", "high", "critical"]
Strategy = Literal[
    "direct_id",
    "file_path_name",
    "file_path_name_disambiguated",
    "name_suite",
    "fuzzy",
    "created_new",
    "none",
]
MatchType = Literal["exact_name", "similar_name", "fuzzy_name", "file_path", "none"]
PatternType = Literal["persistent", "recent_spike", "consistent", "intermittent"]
RetrievalSource = Literal["title", "normalized_title", "file_path", "family_pool", "fuzzy"]


@dataclass(frozen=True)
class CanonicalIdentity:
    """Represent the single stable record of one logical test.

    Attributes:
        identifier: Deterministic identifier derived from path, title and group.
        file_path: Normalized project-relative source file path.
        title: Test title as written by the author.
        group_label: Grouping label the test was declared under.
        description: Human-readable description, ``"{group} - {title}"``.
        tags: Free-form tags collected from the title or the reporter.
        priority: Triage priority.
        owner: Owning team or person, when known.
        repository_id: Repository the declaration belongs to.
        test_kind: Inferred test kind.
        family: Authoring family of the declaration, when known.
        auto_created: Whether the record was synthesized by fallback creation.
        branch: Last branch the test was observed on.
        last_seen_at: Last time the test was declared or reported.
        updated_at: Last metadata refresh.
    """

    identifier: str
    file_path: str
    title: str
    group_label: str | None = None
    description: str = ""
    tags: tuple[str, ...] = ()
    priority: Priority = "medium"
    owner: str | None = None
    repository_id: str | None = None
    test_kind: TestKind = "functional"
    family: AuthoringFamily | None = None
    auto_created: bool = False
    branch: str | None = None
    last_seen_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """Represent one test outcome reported by a CI system.

    Attributes:
        title: Reported title, possibly flattened as ``file > group > title``.
        file_path: Reported source path, when the reporter provides one.
        suite: Reported suite or grouping name.
        family: Reported authoring family, when the reporter provides one.
        status: Reported outcome (``passed``, ``failed``, ...).
        duration_ms: Reported duration in milliseconds.
        error_messages: Failure messages attached to the outcome.
        tags: Reporter-supplied tags.
        details: Free text compared with stored descriptions.
        reported_at: Time the outcome was reported.
    """

    title: str
    file_path: str | None = None
    suite: str | None = None
    family: AuthoringFamily | None = None
    status: str = "passed"
    duration_ms: int | None = None
    error_messages: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    details: str | None = None
    reported_at: datetime | None = None


@dataclass(frozen=True)
class BuildContext:
    """Describe the build an execution result was reported from."""

    repository_id: str | None = None
    branch: str | None = None
    platform: str | None = None
    build_id: str | None = None


@dataclass(frozen=True)
class ScoreBreakdown:
    """Represent the weighted score of one candidate against one result.

    Attributes:
        name: Title similarity in [0, 1].
        path: File-path similarity in [0, 1].
        framework: Authoring-family agreement in [0.3, 1].
        content: Description/detail similarity in [0, 1].
        context: Repository, branch and recency agreement in [0, 1].
        total: Weighted composite in [0, 1].
        primary_match_type: Dominant signal of the composite.
        sources: Retrieval paths that produced the candidate.
    """

    name: float
    path: float
    framework: float
    content: float
    context: float
    total: float
    primary_match_type: MatchType = "none"
    sources: tuple[RetrievalSource, ...] = ()


@dataclass(frozen=True)
class ScoredCandidate:
    """Pair a candidate identity with its score breakdown."""

    identity: CanonicalIdentity
    breakdown: ScoreBreakdown


@dataclass(frozen=True)
class Correlation:
    """Represent the outcome of linking one execution result to an identity.

    Attributes:
        result: Execution result that was correlated.
        identity: Matched or created identity; ``None`` when unmatched.
        confidence: Certainty of the link in [0, 1].
        strategy: Strategy that produced the outcome.
        breakdown: Score breakdown of the chosen candidate, when scored.
        alternatives: Up to two runner-up candidates kept for audit.
    """

    result: ExecutionResult
    identity: CanonicalIdentity | None
    confidence: float
    strategy: Strategy
    breakdown: ScoreBreakdown | None = None
    alternatives: tuple[ScoredCandidate, ...] = ()

    @property
    def matched(self) -> bool:
        """Whether the correlation resolved to an identity."""
        return self.identity is not None


@dataclass(frozen=True)
class FailureRecord:
    """Represent one correlated failure of a canonical identity."""

    identifier: str
    occurred_at: datetime
    message: str | None = None
    build_id: str | None = None


@dataclass(frozen=True)
class FailurePattern:
    """Represent how the failures of one identity recur over time.

    Attributes:
        identifier: Canonical identity the failures belong to.
        frequency: Number of failures considered.
        earliest: Oldest failure timestamp considered.
        latest: Newest failure timestamp considered.
        time_span: ``latest - earliest``.
        consistency: ``1 - distinct / total`` over non-empty messages.
        pattern_type: Classification of the recurrence.
        significance: Classification weight used for filtering.
    """

    identifier: str
    frequency: int
    earliest: datetime
    latest: datetime
    time_span: timedelta
    consistency: float
    pattern_type: PatternType
    significance: float


@dataclass(frozen=True)
class IdentityConflict:
    """Represent static declarations that collapse onto one identifier."""

    identifier: str
    file_path: str
    title: str
    group_label: str | None = None
    line_numbers: tuple[int, ...] = field(default_factory=tuple)
