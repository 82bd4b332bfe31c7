# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Storage backends for the test identity engine."""

from tce.database.sqlite import SQLiteIdentityStore

__all__ = ["SQLiteIdentityStore"]
