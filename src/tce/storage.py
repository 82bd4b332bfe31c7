# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Storage contracts consumed by the correlation engine."""

from typing import Protocol

from tce.extractor import AuthoringFamily
from tce.model import CanonicalIdentity, FailureRecord, IdentityConflict


class StorageError(RuntimeError):
    """Represent a fatal storage operation failure."""


class IdentityStore(Protocol):
    """Define the storage collaborator of the engine.

    Lookups return an empty list when nothing matches. Failures raise
    :class:`StorageError` and are never retried by the engine.
    """

    def find_by_title(self, title: str, limit: int = 10) -> list[CanonicalIdentity]:
        """Return identities whose title equals ``title``."""

    def find_by_normalized_title(
        self, normalized_title: str, limit: int = 10
    ) -> list[CanonicalIdentity]:
        """Return identities whose normalized title equals the given one."""

    def find_by_file_path_like(
        self, file_path: str, limit: int = 10
    ) -> list[CanonicalIdentity]:
        """Return identities whose path contains, or is contained in, ``file_path``."""

    def find_by_repository_and_family(
        self, repository_id: str, family: AuthoringFamily, limit: int = 5
    ) -> list[CanonicalIdentity]:
        """Return identities of one repository declared in one family."""

    def find_by_title_tokens(
        self, tokens: list[str], limit: int = 10
    ) -> list[CanonicalIdentity]:
        """Return identities whose normalized title contains every token."""

    def upsert_by_identifier(self, identity: CanonicalIdentity) -> CanonicalIdentity:
        """Insert ``identity`` or refresh the metadata of the stored record."""

    def record_failure(self, failure: FailureRecord) -> None:
        """Persist one correlated failure."""

    def find_recent_failures(
        self, identifier: str, limit: int = 10
    ) -> list[FailureRecord]:
        """Return the most recent failures of one identity, newest first."""

    def record_conflicts(self, conflicts: list[IdentityConflict]) -> None:
        """Persist identifier collisions between static declarations."""
