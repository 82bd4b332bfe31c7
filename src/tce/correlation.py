# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Correlation of execution results with canonical identities."""

import concurrent.futures
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from tce.identity import (
    id_from_execution,
    id_from_triple,
    identity_from_execution,
    infer_family,
    resolve_reported_parts,
)
from tce.model import (
    BuildContext,
    Correlation,
    ExecutionResult,
    ScoredCandidate,
    Strategy,
)
from tce.normalizer import comparable_path, path_segments
from tce.retriever import CandidateRetriever
from tce.scoring import WeightedScorer, repositories_differ
from tce.settings import CorrelationSettings
from tce.storage import IdentityStore

logger = logging.getLogger(__name__)

DIRECT_CONFIDENCE = 1.0
PATH_NAME_CONFIDENCE = 0.95
PATH_NAME_DISAMBIGUATED_CONFIDENCE = 0.85
NAME_SUITE_CONFIDENCE = 0.8
CREATED_CONFIDENCE = 0.6
DIRECT_STATS_THRESHOLD = 0.9
MAX_ALTERNATIVES = 2

CacheKey = tuple[str, str, str, str, str]
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CorrelationStats:
    """Represent running correlation counters.

    Attributes:
        direct: Correlations with confidence >= 0.9.
        fuzzy: Correlations with confidence in [0.6, 0.9).
        failed: Correlations below 0.6.
        total: All correlations, cache hits included.
        success_rate: ``(direct + fuzzy) / total``; 0 before any correlation.
        cache_size: Current number of cached correlations.
    """

    direct: int
    fuzzy: int
    failed: int
    total: int
    success_rate: float
    cache_size: int


class CorrelationContext:
    """Hold the correlation cache and counters shared by one batch of work.

    All access goes through one lock, so counters stay exact when several
    worker threads correlate concurrently.
    """

    def __init__(
        self, max_entries: int = 10000, min_confidence: float = 0.7
    ) -> None:
        """Initialize context.

        Args:
            max_entries: Maximum number of cached correlations.
            min_confidence: Minimum confidence of a cached correlation.

        Raises:
            ValueError: If ``max_entries`` is not greater than zero.
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._max_entries = max_entries
        self._min_confidence = min_confidence
        self._lock = threading.Lock()
        self._cache: OrderedDict[CacheKey, Correlation] = OrderedDict()
        self._direct = 0
        self._fuzzy = 0
        self._failed = 0
        self._total = 0

    @classmethod
    def from_settings(cls, settings: CorrelationSettings) -> "CorrelationContext":
        return cls(
            max_entries=settings.cache_max_entries,
            min_confidence=settings.cache_min_confidence,
        )

    def lookup(self, key: CacheKey) -> Correlation | None:
        with self._lock:
            correlation = self._cache.get(key)
            if correlation is not None:
                self._cache.move_to_end(key)
            return correlation

    def store(self, key: CacheKey, correlation: Correlation) -> None:
        """Cache ``correlation`` when it is confident enough; evict the oldest entry."""
        if correlation.identity is None or correlation.confidence < self._min_confidence:
            return
        with self._lock:
            self._cache[key] = correlation
            self._cache.move_to_end(key)
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)

    def record(self, correlation: Correlation) -> None:
        with self._lock:
            self._total += 1
            if correlation.confidence >= DIRECT_STATS_THRESHOLD:
                self._direct += 1
            elif correlation.matched:
                self._fuzzy += 1
            else:
                self._failed += 1

    def stats(self) -> CorrelationStats:
        with self._lock:
            succeeded = self._direct + self._fuzzy
            return CorrelationStats(
                direct=self._direct,
                fuzzy=self._fuzzy,
                failed=self._failed,
                total=self._total,
                success_rate=succeeded / self._total if self._total else 0.0,
                cache_size=len(self._cache),
            )

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def reset_stats(self) -> None:
        with self._lock:
            self._direct = 0
            self._fuzzy = 0
            self._failed = 0
            self._total = 0


class CorrelationEngine:
    """Link execution results to canonical identities with auditable confidence."""

    def __init__(
        self,
        store: IdentityStore,
        settings: CorrelationSettings | None = None,
        retriever: CandidateRetriever | None = None,
        scorer: WeightedScorer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            store: Storage collaborator used for retrieval and fallback creation.
            settings: Engine settings; defaults to :class:`CorrelationSettings`.
            retriever: Candidate retriever; built from ``store`` when omitted.
            scorer: Weighted scorer; built from ``settings`` when omitted.
            clock: Current-time provider for created records and recency.
        """
        self._store = store
        self._settings = settings or CorrelationSettings()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._retriever = retriever or CandidateRetriever(store, self._settings)
        self._scorer = scorer or WeightedScorer(self._settings, clock=self._clock)
        self._context = CorrelationContext.from_settings(self._settings)

    @property
    def context(self) -> CorrelationContext:
        """Context used when callers do not pass their own."""
        return self._context

    def correlate(
        self,
        result: ExecutionResult,
        build_context: BuildContext | None = None,
        context: CorrelationContext | None = None,
    ) -> Correlation:
        """Correlate one execution result.

        Strategies run in order and the first success wins: direct identifier,
        path and title, title and suite, weighted fuzzy match. Results without
        any plausible candidate get a new auto-created identity. Results whose
        best candidate stays below the similarity threshold are returned
        unmatched with strategy ``none``.

        Args:
            result: Execution result to correlate.
            build_context: Build the result was reported from.
            context: Cache and counters to use; defaults to :attr:`context`.

        Returns:
            Correlation with confidence, strategy and up to two alternatives.

        Raises:
            StorageError: Propagated unchanged from the storage collaborator.
        """
        context = context or self._context
        key = _cache_key(result, build_context)
        cached = context.lookup(key)
        if cached is not None:
            correlation = replace(cached, result=result)
            context.record(correlation)
            return correlation

        candidates = self._retriever.retrieve(result, build_context)
        scored = sorted(
            (
                ScoredCandidate(
                    identity=candidate.identity,
                    breakdown=self._scorer.score(
                        result, candidate.identity, build_context, candidate.sources
                    ),
                )
                for candidate in candidates
            ),
            key=lambda item: (-item.breakdown.total, item.identity.identifier),
        )
        correlation = self._resolve(result, build_context, scored)
        context.record(correlation)
        context.store(key, correlation)
        logger.debug(
            f"Correlation completed (title={result.title!r} strategy={correlation.strategy} "
            f"confidence={correlation.confidence:.3f} candidates={len(scored)})"
        )
        return correlation

    def correlate_batch(
        self,
        results: list[ExecutionResult],
        build_context: BuildContext | None = None,
        context: CorrelationContext | None = None,
    ) -> list[Correlation]:
        """Correlate results concurrently, preserving input order.

        Args:
            results: Execution results to correlate.
            build_context: Build all results were reported from.
            context: Cache and counters shared by the workers.

        Returns:
            One correlation per input result, in input order.

        Raises:
            StorageError: Propagated from the first failing correlation.
        """
        context = context or self._context
        total = len(results)
        if total == 0:
            self._log_progress(completed=0, total=0, matched=0)
            return []

        correlations: list[Correlation | None] = [None] * total
        completed = 0
        matched = 0
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self._settings.max_workers
        ) as executor:
            future_to_index = {
                executor.submit(self.correlate, result, build_context, context): index
                for index, result in enumerate(results)
            }
            for future in concurrent.futures.as_completed(future_to_index):
                correlation = future.result()
                correlations[future_to_index[future]] = correlation
                completed += 1
                if correlation.matched:
                    matched += 1
                if (
                    completed % self._settings.progress_batch_size == 0
                    or completed == total
                ):
                    self._log_progress(completed=completed, total=total, matched=matched)

        return [correlation for correlation in correlations if correlation is not None]

    def _resolve(
        self,
        result: ExecutionResult,
        build_context: BuildContext | None,
        scored: list[ScoredCandidate],
    ) -> Correlation:
        file_path, leaf, suite = resolve_reported_parts(result)

        direct_ids = {id_from_execution(result), id_from_triple(file_path, leaf, suite)}
        for candidate in scored:
            if candidate.identity.identifier in direct_ids:
                return _matched(result, candidate, DIRECT_CONFIDENCE, "direct_id", scored)

        reported_path = comparable_path(file_path)
        path_matches = [
            candidate
            for candidate in scored
            if reported_path
            and comparable_path(candidate.identity.file_path) == reported_path
            and _same_title(candidate.identity.title, leaf)
        ]
        if len(path_matches) == 1:
            return _matched(
                result, path_matches[0], PATH_NAME_CONFIDENCE, "file_path_name", scored
            )
        if path_matches:
            chosen = _disambiguate(path_matches, suite, infer_family(result))
            return _matched(
                result,
                chosen,
                PATH_NAME_DISAMBIGUATED_CONFIDENCE,
                "file_path_name_disambiguated",
                scored,
            )

        eligible = [
            candidate
            for candidate in scored
            if not (
                repositories_differ(candidate.identity, build_context)
                and not _shares_segment(file_path, candidate.identity.file_path)
            )
        ]
        if suite:
            suite_matches = [
                candidate
                for candidate in eligible
                if _same_title(candidate.identity.title, leaf)
                and suite.lower() in candidate.identity.description.lower()
            ]
            if len(suite_matches) == 1:
                return _matched(
                    result, suite_matches[0], NAME_SUITE_CONFIDENCE, "name_suite", scored
                )

        if not eligible:
            return self._create(result, build_context, scored)
        best = eligible[0]
        if best.breakdown.total >= self._settings.similarity_threshold:
            return _matched(result, best, best.breakdown.total, "fuzzy", scored)

        logger.info(
            f"Execution result left unmatched (title={result.title!r} "
            f"best_identifier={best.identity.identifier} best_total={best.breakdown.total:.3f})"
        )
        return Correlation(
            result=result,
            identity=None,
            confidence=best.breakdown.total,
            strategy="none",
            breakdown=best.breakdown,
            alternatives=tuple(scored[:MAX_ALTERNATIVES]),
        )

    def _create(
        self,
        result: ExecutionResult,
        build_context: BuildContext | None,
        scored: list[ScoredCandidate],
    ) -> Correlation:
        identity = identity_from_execution(result, build_context, now=self._clock())
        stored = self._store.upsert_by_identifier(identity)
        logger.info(
            f"Created canonical identity (identifier={stored.identifier} "
            f"file_path={stored.file_path} title={stored.title!r})"
        )
        return Correlation(
            result=result,
            identity=stored,
            confidence=CREATED_CONFIDENCE,
            strategy="created_new",
            alternatives=tuple(scored[:MAX_ALTERNATIVES]),
        )

    def _log_progress(self, completed: int, total: int, matched: int) -> None:
        """Emit structured progress log line.

        Args:
            completed: Number of completed correlations.
            total: Total correlations in the batch.
            matched: Number of correlations resolved to an identity.
        """
        percent = 100.0 if total == 0 else (completed / total) * 100.0
        logger.info(
            "correlation_progress completed=%s total=%s matched=%s percent=%.2f",
            completed,
            total,
            matched,
            percent,
        )


def _matched(
    result: ExecutionResult,
    chosen: ScoredCandidate,
    confidence: float,
    strategy: Strategy,
    scored: list[ScoredCandidate],
) -> Correlation:
    alternatives = [
        candidate
        for candidate in scored
        if candidate.identity.identifier != chosen.identity.identifier
    ]
    return Correlation(
        result=result,
        identity=chosen.identity,
        confidence=confidence,
        strategy=strategy,
        breakdown=chosen.breakdown,
        alternatives=tuple(alternatives[:MAX_ALTERNATIVES]),
    )


def _same_title(stored: str, reported: str) -> bool:
    return stored.strip().lower() == reported.strip().lower()


def _shares_segment(reported: str | None, stored: str | None) -> bool:
    """Whether two paths have at least one directory or file segment in common."""
    return bool(set(path_segments(reported)) & set(path_segments(stored)))


def _disambiguate(
    matches: list[ScoredCandidate], suite: str | None, family: str
) -> ScoredCandidate:
    """Pick one of several path-and-title matches.

    Prefers a group label contained in the reported suite, then the inferred
    family, then the most recently updated record.
    """
    if suite:
        by_group = [
            candidate
            for candidate in matches
            if candidate.identity.group_label
            and candidate.identity.group_label.lower() in suite.lower()
        ]
        if by_group:
            matches = by_group
    by_family = [candidate for candidate in matches if candidate.identity.family == family]
    if by_family:
        matches = by_family
    return max(matches, key=lambda candidate: _updated_at(candidate))


def _updated_at(candidate: ScoredCandidate) -> datetime:
    updated_at = candidate.identity.updated_at
    if updated_at is None:
        return _EPOCH
    if updated_at.tzinfo is None:
        return updated_at.replace(tzinfo=timezone.utc)
    return updated_at


def _cache_key(result: ExecutionResult, build_context: BuildContext | None) -> CacheKey:
    file_path, leaf, suite = resolve_reported_parts(result)
    platform = build_context.platform if build_context else None
    repository_id = build_context.repository_id if build_context else None
    return (
        result.family or platform or "",
        comparable_path(file_path),
        leaf,
        suite or "",
        repository_id or "",
    )
