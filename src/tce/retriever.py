# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Candidate retrieval for execution-result correlation."""

import logging
from dataclasses import dataclass

from tce.identity import infer_family, resolve_reported_parts
from tce.model import (
    BuildContext,
    CanonicalIdentity,
    ExecutionResult,
    RetrievalSource,
)
from tce.normalizer import normalize_name
from tce.settings import CorrelationSettings
from tce.storage import IdentityStore

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class RetrievedCandidate:
    """Pair a stored identity with the retrieval paths that found it."""

    identity: CanonicalIdentity
    sources: tuple[RetrievalSource, ...]


class CandidateRetriever:
    """Collect plausible stored identities for one execution result."""

    def __init__(
        self, store: IdentityStore, settings: CorrelationSettings | None = None
    ) -> None:
        """Initialize retriever.

        Args:
            store: Storage collaborator queried for candidates.
            settings: Row limits; defaults to :class:`CorrelationSettings`.
        """
        self._store = store
        self._settings = settings or CorrelationSettings()

    def retrieve(
        self, result: ExecutionResult, build_context: BuildContext | None = None
    ) -> list[RetrievedCandidate]:
        """Return deduplicated candidates for ``result``.

        Args:
            result: Execution result to correlate.
            build_context: Build the result was reported from; enables the
                same-repository family pool.

        Returns:
            Candidates in discovery order, each with the union of the
            retrieval paths that produced it. Empty when nothing is plausible.

        Raises:
            StorageError: Propagated unchanged from the storage collaborator.
        """
        limit = self._settings.candidate_limit
        file_path, leaf, _ = resolve_reported_parts(result)
        normalized = normalize_name(leaf)
        found: dict[str, CanonicalIdentity] = {}
        sources: dict[str, list[RetrievalSource]] = {}

        def add(identities: list[CanonicalIdentity], source: RetrievalSource) -> None:
            for identity in identities:
                found.setdefault(identity.identifier, identity)
                tags = sources.setdefault(identity.identifier, [])
                if source not in tags:
                    tags.append(source)

        for title in dict.fromkeys((result.title, leaf)):
            add(self._store.find_by_title(title, limit), "title")
        add(self._store.find_by_normalized_title(normalized, limit), "normalized_title")
        if file_path:
            add(self._store.find_by_file_path_like(file_path, limit), "file_path")
        if build_context is not None and build_context.repository_id:
            add(self._family_pool(result, build_context.repository_id), "family_pool")
        tokens = [token for token in normalized.split() if len(token) >= MIN_TOKEN_LENGTH]
        add(
            self._store.find_by_title_tokens(tokens, self._settings.fuzzy_limit),
            "fuzzy",
        )

        candidates = [
            RetrievedCandidate(identity=identity, sources=tuple(sources[identifier]))
            for identifier, identity in found.items()
        ]
        logger.debug(
            f"Candidate retrieval completed (title={result.title!r} "
            f"candidates={len(candidates)})"
        )
        return candidates

    def _family_pool(
        self, result: ExecutionResult, repository_id: str
    ) -> list[CanonicalIdentity]:
        """Return same-repository, same-family identities named in the reported title."""
        pool = self._store.find_by_repository_and_family(
            repository_id, infer_family(result), self._settings.family_pool_limit
        )
        reported = normalize_name(result.title)
        matching: list[CanonicalIdentity] = []
        for identity in pool:
            stored = normalize_name(identity.title)
            if stored and reported and (stored in reported or reported in stored):
                matching.append(identity)
        return matching
