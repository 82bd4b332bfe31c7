# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Tunable settings of the correlation engine."""

from dataclasses import dataclass

MIN_SIMILARITY_THRESHOLD = 0.6


@dataclass(frozen=True)
class CorrelationSettings:
    """Describe thresholds and limits used during correlation.

    Attributes:
        similarity_threshold: Minimum composite score accepted by fuzzy matching.
        cache_min_confidence: Minimum confidence of a cached correlation.
        cache_max_entries: Maximum number of cached correlations.
        candidate_limit: Row limit of title and path lookups.
        fuzzy_limit: Row limit of the token-overlap search.
        family_pool_limit: Row limit of the same-repository family pool.
        recency_window_days: Window over which the recency score decays to 0.
        max_workers: Worker threads used by batch correlation.
        progress_batch_size: Emit a progress line every N correlations.
    """

    similarity_threshold: float = 0.6
    cache_min_confidence: float = 0.7
    cache_max_entries: int = 10000
    candidate_limit: int = 10
    fuzzy_limit: int = 10
    family_pool_limit: int = 5
    recency_window_days: int = 30
    max_workers: int = 4
    progress_batch_size: int = 10

    def __post_init__(self) -> None:
        if not MIN_SIMILARITY_THRESHOLD <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in [{MIN_SIMILARITY_THRESHOLD}, 1]"
            )
        if not 0.0 <= self.cache_min_confidence <= 1.0:
            raise ValueError("cache_min_confidence must be in [0, 1]")
        for name in (
            "cache_max_entries",
            "candidate_limit",
            "fuzzy_limit",
            "family_pool_limit",
            "recency_window_days",
            "max_workers",
            "progress_batch_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
