# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Recurrence classification of correlated failures."""

import logging
from datetime import datetime, timedelta, timezone

from tce.model import FailurePattern, FailureRecord, PatternType
from tce.storage import IdentityStore

logger = logging.getLogger(__name__)

MIN_FAILURES = 3
SIGNIFICANCE_CUTOFF = 0.5
RECENT_SPIKE_WINDOW = timedelta(days=7)
SIGNIFICANCE: dict[PatternType, float] = {
    "persistent": 0.9,
    "recent_spike": 0.7,
    "consistent": 0.6,
    "intermittent": 0.3,
}


def classify(frequency: int, time_span: timedelta, consistency: float) -> PatternType:
    """Classify a failure series; the first matching rule wins."""
    if frequency >= 5 and consistency > 0.8:
        return "persistent"
    if frequency >= 3 and time_span < RECENT_SPIKE_WINDOW:
        return "recent_spike"
    if consistency > 0.6:
        return "consistent"
    return "intermittent"


def message_consistency(messages: list[str | None]) -> float:
    """Return ``1 - distinct / total`` over non-empty messages, 0 when none."""
    present = [message for message in messages if message]
    if not present:
        return 0.0
    return 1.0 - len(set(present)) / len(present)


class FailurePatternDetector:
    """Detect how the failures of canonical identities recur."""

    def __init__(self, store: IdentityStore | None = None, lookback: int = 10) -> None:
        """Initialize detector.

        Args:
            store: Storage collaborator holding failure records; required by
                :meth:`detect_for_identity` and :meth:`detect_patterns`.
            lookback: Default number of most recent failures considered.

        Raises:
            ValueError: If ``lookback`` is lower than the minimum failure count.
        """
        if lookback < MIN_FAILURES:
            raise ValueError(f"lookback must be >= {MIN_FAILURES}")
        self._store = store
        self._lookback = lookback

    def detect(
        self, failures: list[FailureRecord], lookback: int | None = None
    ) -> FailurePattern | None:
        """Classify the most recent failures of one identity.

        Args:
            failures: Failures of a single identity, in any order.
            lookback: Number of most recent failures considered.

        Returns:
            Failure pattern, or ``None`` when fewer than three failures exist.

        Raises:
            ValueError: If failures of several identities are mixed or
                ``lookback`` is lower than the minimum failure count.
        """
        window = sorted(
            failures, key=lambda failure: _as_utc(failure.occurred_at), reverse=True
        )
        window = window[: self._window(lookback)]
        if len(window) < MIN_FAILURES:
            return None
        identifiers = {failure.identifier for failure in window}
        if len(identifiers) > 1:
            raise ValueError("failures must belong to a single identity")

        latest = _as_utc(window[0].occurred_at)
        earliest = _as_utc(window[-1].occurred_at)
        time_span = latest - earliest
        frequency = len(window)
        consistency = message_consistency([failure.message for failure in window])
        pattern_type = classify(frequency, time_span, consistency)
        return FailurePattern(
            identifier=window[0].identifier,
            frequency=frequency,
            earliest=earliest,
            latest=latest,
            time_span=time_span,
            consistency=consistency,
            pattern_type=pattern_type,
            significance=SIGNIFICANCE[pattern_type],
        )

    def detect_for_identity(
        self, identifier: str, lookback: int | None = None
    ) -> FailurePattern | None:
        """Read recent failures of one identity from storage and classify them.

        Raises:
            ValueError: If the detector has no storage collaborator.
            StorageError: Propagated unchanged from the storage collaborator.
        """
        limit = self._window(lookback)
        return self.detect(self._require_store().find_recent_failures(identifier, limit), limit)

    def detect_patterns(
        self, identifiers: list[str], lookback: int | None = None
    ) -> list[FailurePattern]:
        """Return significant patterns for several identities.

        Args:
            identifiers: Canonical identifiers to analyze.
            lookback: Number of most recent failures considered per identity.

        Returns:
            Patterns with significance above 0.5, most significant first.
        """
        patterns: list[FailurePattern] = []
        for identifier in identifiers:
            pattern = self.detect_for_identity(identifier, lookback)
            if pattern is None or pattern.significance <= SIGNIFICANCE_CUTOFF:
                continue
            patterns.append(pattern)
        logger.info(
            f"Failure pattern detection completed (identities={len(identifiers)} "
            f"patterns={len(patterns)})"
        )
        return sorted(patterns, key=lambda pattern: -pattern.significance)

    def _window(self, lookback: int | None) -> int:
        if lookback is None:
            return self._lookback
        if lookback < MIN_FAILURES:
            raise ValueError(f"lookback must be >= {MIN_FAILURES}")
        return lookback

    def _require_store(self) -> IdentityStore:
        if self._store is None:
            raise ValueError("A storage collaborator is required to read failures")
        return self._store


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
