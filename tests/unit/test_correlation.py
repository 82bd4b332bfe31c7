from datetime import datetime, timezone
from pathlib import Path

import pytest

from tce.correlation import CorrelationContext, CorrelationEngine
from tce.database import SQLiteIdentityStore
from tce.identity import id_from_triple
from tce.model import BuildContext, CanonicalIdentity, Correlation, ExecutionResult
from tce.retriever import CandidateRetriever
from tce.settings import CorrelationSettings
from tce.storage import StorageError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _identity(
    title: str,
    file_path: str,
    group_label: str | None = None,
    **overrides,
) -> CanonicalIdentity:
    values = {
        "identifier": id_from_triple(file_path, title, group_label),
        "file_path": file_path,
        "title": title,
        "group_label": group_label,
        "description": f"{group_label} - {title}" if group_label else title,
        "updated_at": NOW,
    }
    values.update(overrides)
    return CanonicalIdentity(**values)


def _engine(
    tmp_path: Path, settings: CorrelationSettings | None = None
) -> tuple[SQLiteIdentityStore, CorrelationEngine]:
    store = SQLiteIdentityStore(db_path=tmp_path / "tce.db")
    return store, CorrelationEngine(store=store, settings=settings, clock=lambda: NOW)


class _CountingRetriever(CandidateRetriever):
    def __init__(self, store: SQLiteIdentityStore) -> None:
        super().__init__(store)
        self.calls = 0

    def retrieve(self, result, build_context=None):
        self.calls += 1
        return super().retrieve(result, build_context)


class _FailingStore:
    def find_by_title(self, title: str, limit: int = 10):
        raise StorageError("database unavailable")


def test_ph4_cor_001_exact_stored_identity_matches_by_direct_id(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    stored = store.upsert_by_identifier(
        _identity("Valid admin login", "tests/login.spec", "Login Functional")
    )
    result = ExecutionResult(
        title="Valid admin login", file_path="tests/login.spec", suite="Login Functional"
    )

    correlation = engine.correlate(result)

    assert correlation.strategy == "direct_id"
    assert correlation.confidence == 1.0
    assert correlation.identity == stored
    assert correlation.matched is True


def test_ph4_cor_002_normalized_name_with_shared_filename_is_fuzzy_match(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    stored = store.upsert_by_identifier(
        _identity("Valid Admin Login", "tests/login.spec", family="generic")
    )
    result = ExecutionResult(title="valid_admin_login", file_path="e2e/login.spec")

    correlation = engine.correlate(result)

    assert correlation.strategy == "fuzzy"
    assert correlation.identity == stored
    assert correlation.confidence >= 0.6
    assert correlation.confidence == pytest.approx(0.71)
    assert correlation.breakdown is not None
    assert correlation.breakdown.name == 0.9
    assert correlation.breakdown.path == 0.8


def test_ph4_cor_003_unknown_result_creates_new_identity(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    result = ExecutionResult(
        title="exports invoice", file_path="billing/export.spec.ts", suite="Billing"
    )

    correlation = engine.correlate(result, BuildContext(repository_id="erp", branch="main"))

    assert correlation.strategy == "created_new"
    assert correlation.confidence == 0.6
    assert correlation.identity is not None
    assert correlation.identity.auto_created is True
    assert correlation.identity.description == "Billing - exports invoice"
    assert store.find_by_title("exports invoice") == [correlation.identity]


def test_ph4_cor_004_below_threshold_candidate_is_reported_unmatched(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_by_identifier(
        _identity(
            "login page renders quickly on mobile devices",
            "mobile/home.spec.ts",
            family="jest",
        )
    )
    result = ExecutionResult(title="login page renders", file_path="auth/other.spec.ts")

    correlation = engine.correlate(result)

    assert correlation.confidence < 0.6
    assert correlation.strategy == "none"
    assert correlation.identity is None
    assert correlation.matched is False
    assert len(correlation.alternatives) == 1
    assert engine.context.stats().failed == 1


def test_ph4_cor_005_direct_id_wins_over_other_strategies(tmp_path: Path) -> None:
    store, engine = _engine(tmp_path)
    direct = store.upsert_by_identifier(
        _identity("Valid admin login", "tests/login.spec", "Login Functional")
    )
    sibling = store.upsert_by_identifier(_identity("Valid admin login", "tests/login.spec"))
    result = ExecutionResult(
        title="Valid admin login", file_path="tests/login.spec", suite="Login Functional"
    )

    correlation = engine.correlate(result)

    assert correlation.strategy == "direct_id"
    assert correlation.identity == direct
    assert [alt.identity for alt in correlation.alternatives] == [sibling]


def test_ph4_cor_006_same_title_in_unrelated_repository_is_not_merged(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    existing = store.upsert_by_identifier(
        _identity(
            "Valid admin login",
            "tests/login.spec.ts",
            family="playwright",
            repository_id="web",
            branch="main",
            last_seen_at=NOW,
        )
    )
    result = ExecutionResult(title="Valid admin login", file_path="suite/auth/signin.cy.ts")

    correlation = engine.correlate(
        result, BuildContext(repository_id="mobile", branch="main")
    )

    assert correlation.strategy != "fuzzy"
    assert correlation.identity is not None
    assert correlation.identity.identifier != existing.identifier


def test_ph4_cor_007_path_and_title_matches_are_disambiguated_by_suite(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    store.upsert_by_identifier(_identity("opens menu", "nav/menu.spec.ts", "Admin"))
    guest = store.upsert_by_identifier(_identity("opens menu", "nav/menu.spec.ts", "Guest"))
    single = store.upsert_by_identifier(_identity("closes menu", "nav/menu.spec.ts", "Admin"))

    ambiguous = engine.correlate(
        ExecutionResult(title="opens menu", file_path="nav/menu.spec.ts", suite="Guest flows")
    )
    unique = engine.correlate(
        ExecutionResult(title="closes menu", file_path="nav/menu.spec.ts", suite="Other")
    )

    assert ambiguous.strategy == "file_path_name_disambiguated"
    assert ambiguous.confidence == 0.85
    assert ambiguous.identity == guest
    assert unique.strategy == "file_path_name"
    assert unique.confidence == 0.95
    assert unique.identity == single


def test_ph4_cor_008_title_with_suite_in_description_matches_name_suite(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    stored = store.upsert_by_identifier(_identity("Remove item", "cart/remove.spec.ts", "Cart"))

    correlation = engine.correlate(ExecutionResult(title="Remove item", suite="cart"))

    assert correlation.strategy == "name_suite"
    assert correlation.confidence == 0.8
    assert correlation.identity == stored


def test_ph4_cor_009_cache_reuses_confident_correlations(tmp_path: Path) -> None:
    store = SQLiteIdentityStore(db_path=tmp_path / "tce.db")
    store.upsert_by_identifier(
        _identity("Valid admin login", "tests/login.spec", "Login Functional")
    )
    retriever = _CountingRetriever(store)
    engine = CorrelationEngine(store=store, retriever=retriever, clock=lambda: NOW)
    context = CorrelationContext()
    first = ExecutionResult(
        title="Valid admin login", file_path="tests/login.spec", suite="Login Functional"
    )
    retry = ExecutionResult(
        title="Valid admin login",
        file_path="tests/login.spec",
        suite="Login Functional",
        status="failed",
    )

    engine.correlate(first, context=context)
    cached = engine.correlate(retry, context=context)

    assert retriever.calls == 1
    assert cached.result == retry
    assert cached.strategy == "direct_id"
    stats = context.stats()
    assert (stats.total, stats.direct, stats.cache_size) == (2, 2, 1)
    assert stats.success_rate == 1.0

    context.clear_cache()
    context.reset_stats()
    assert context.stats().cache_size == 0
    assert context.stats().total == 0


def test_ph4_cor_010_created_identities_are_not_cached(tmp_path: Path) -> None:
    _, engine = _engine(tmp_path)
    context = CorrelationContext()

    correlation = engine.correlate(
        ExecutionResult(title="brand new", file_path="a/new.spec.ts"), context=context
    )

    assert correlation.strategy == "created_new"
    stats = context.stats()
    assert (stats.fuzzy, stats.failed, stats.cache_size) == (1, 0, 0)


def test_ph4_cor_011_batch_preserves_order_and_creates_one_record_per_test(
    tmp_path: Path, caplog
) -> None:
    settings = CorrelationSettings(max_workers=4, progress_batch_size=5)
    store, engine = _engine(tmp_path, settings=settings)
    store.find_by_title("warm up schema")
    repeated = [ExecutionResult(title="Brand new flow", file_path="e2e/new.spec.ts")] * 8
    distinct = [
        ExecutionResult(title=title, file_path=f"{area}/{area}.spec.ts")
        for title, area in (
            ("renders header", "layout"),
            ("submits form", "forms"),
            ("deletes account", "account"),
            ("uploads avatar", "profile"),
        )
    ]
    results = repeated + distinct
    context = CorrelationContext()
    caplog.set_level("INFO")

    correlations = engine.correlate_batch(results, context=context)

    assert [c.result.title for c in correlations] == [r.title for r in results]
    assert {c.identity.identifier for c in correlations[:8] if c.identity} == {
        correlations[0].identity.identifier
    }
    assert len(store.find_by_title("Brand new flow")) == 1
    assert context.stats().total == len(results)
    progress = [
        rec.getMessage()
        for rec in caplog.records
        if rec.getMessage().startswith("correlation_progress")
    ]
    assert progress[-1].startswith("correlation_progress completed=12 total=12")


def test_ph4_cor_012_storage_failures_propagate(tmp_path: Path) -> None:
    engine = CorrelationEngine(store=_FailingStore())

    with pytest.raises(StorageError):
        engine.correlate(ExecutionResult(title="anything"))


def test_ph4_cor_013_settings_reject_invalid_values() -> None:
    with pytest.raises(ValueError):
        CorrelationSettings(similarity_threshold=0.5)
    with pytest.raises(ValueError):
        CorrelationSettings(max_workers=0)
    with pytest.raises(ValueError):
        CorrelationContext(max_entries=0)


def test_ph4_cor_014_substring_path_in_other_repository_is_not_merged(
    tmp_path: Path,
) -> None:
    store, engine = _engine(tmp_path)
    existing = store.upsert_by_identifier(
        _identity(
            "Valid admin login",
            "tests/xlogin.spec.ts",
            family="generic",
            repository_id="web",
        )
    )
    result = ExecutionResult(title="Valid admin login", file_path="login.spec.ts")

    correlation = engine.correlate(result, BuildContext(repository_id="mobile"))

    assert correlation.strategy == "created_new"
    assert correlation.identity is not None
    assert correlation.identity.identifier != existing.identifier
    assert len(store.find_by_title("Valid admin login")) == 2


def test_ph4_cor_015_cache_evicts_least_recently_used_entry() -> None:
    context = CorrelationContext(max_entries=2)
    correlations = {
        key: Correlation(
            result=ExecutionResult(title=key),
            identity=_identity(key, f"{key}/{key}.spec.ts"),
            confidence=1.0,
            strategy="direct_id",
        )
        for key in ("alpha", "beta", "gamma")
    }

    def _key(name: str) -> tuple[str, str, str, str, str]:
        return ("generic", f"{name}/{name}.spec.ts", name, "", "")

    context.store(_key("alpha"), correlations["alpha"])
    context.store(_key("beta"), correlations["beta"])
    assert context.lookup(_key("alpha")) == correlations["alpha"]
    context.store(_key("gamma"), correlations["gamma"])

    assert context.stats().cache_size == 2
    assert context.lookup(_key("beta")) is None
    assert context.lookup(_key("alpha")) == correlations["alpha"]
    assert context.lookup(_key("gamma")) == correlations["gamma"]


def test_ph4_cor_016_low_confidence_correlations_are_not_cached() -> None:
    context = CorrelationContext(max_entries=2, min_confidence=0.7)
    key = ("generic", "a/a.spec.ts", "a", "", "")

    context.store(
        key,
        Correlation(
            result=ExecutionResult(title="a"),
            identity=_identity("a", "a/a.spec.ts"),
            confidence=0.65,
            strategy="fuzzy",
        ),
    )

    assert context.lookup(key) is None
    assert context.stats().cache_size == 0
