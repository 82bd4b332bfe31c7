from datetime import datetime, timedelta, timezone

import pytest

from tce.model import BuildContext, CanonicalIdentity, ExecutionResult
from tce.scoring import (
    WeightedScorer,
    content_score,
    framework_score,
    name_score,
    path_score,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(**overrides) -> CanonicalIdentity:
    values = {
        "identifier": "0123456789abcdef",
        "file_path": "tests/login.spec",
        "title": "Valid Admin Login",
        "description": "Valid Admin Login",
        "family": "generic",
    }
    values.update(overrides)
    return CanonicalIdentity(**values)


def test_ph4_scr_001_name_score_tiers() -> None:
    assert name_score("Valid Admin Login", "Valid Admin Login") == 1.0
    assert name_score("valid admin login", "Valid Admin Login") == 0.95
    assert name_score("valid_admin_login", "Valid Admin Login") == 0.9
    assert name_score("abc", "abd") == pytest.approx(1 - 1 / 3)
    assert name_score("", "abc") == 0.0


def test_ph4_scr_002_path_score_tiers() -> None:
    assert path_score("./tests/login.spec", "tests/login.spec") == 1.0
    assert path_score("e2e/login.spec", "tests/login.spec") == 0.8
    assert path_score("tests/login", "tests/login/form.spec.ts") == 0.6
    assert path_score("a/b/c.ts", "a/x/d.ts") == pytest.approx(1 / 3 * 0.5)
    assert path_score("x/y.ts", "p/q.ts") == 0.0
    assert path_score(None, "p/q.ts") == 0.0


def test_ph4_scr_003_framework_score_never_drops_below_floor() -> None:
    assert framework_score("jest", "jest") == 1.0
    assert framework_score("vitest", "jest") == 0.7
    assert framework_score("jasmine", "mocha") == 0.7
    assert framework_score("playwright", "jest") == 0.3
    assert framework_score("generic", None) == 0.3


def test_ph4_scr_004_content_score_requires_both_texts() -> None:
    assert content_score("Login - Valid admin login", None) == 0.0
    assert content_score("Login - Valid admin login", "Login - Valid admin login") == 1.0


def test_ph4_scr_005_context_score_combines_repository_branch_and_recency() -> None:
    scorer = WeightedScorer(clock=lambda: NOW)
    context = BuildContext(repository_id="web", branch="main")

    fresh = _candidate(repository_id="web", branch="main", last_seen_at=NOW)
    half = _candidate(repository_id="web", last_seen_at=NOW - timedelta(days=15))
    stale = _candidate(repository_id="web", last_seen_at=NOW - timedelta(days=45))
    other_repo = _candidate(repository_id="api", branch="main", last_seen_at=NOW)

    assert scorer.context_score(fresh, context) == pytest.approx(1.0)
    assert scorer.context_score(half, context) == pytest.approx(0.6)
    assert scorer.context_score(stale, context) == pytest.approx(0.5)
    assert scorer.context_score(other_repo, context) == 0.0
    assert scorer.context_score(fresh, None) == 0.0


def test_ph4_scr_006_normalized_name_and_shared_filename_compose_total() -> None:
    scorer = WeightedScorer(clock=lambda: NOW)
    result = ExecutionResult(title="valid_admin_login", file_path="e2e/login.spec")

    breakdown = scorer.score(result, _candidate(), sources=("normalized_title",))

    assert breakdown.name == 0.9
    assert breakdown.path == 0.8
    assert breakdown.framework == 1.0
    assert breakdown.content == 0.0
    assert breakdown.context == 0.0
    assert breakdown.total == pytest.approx(0.4 * 0.9 + 0.25 * 0.8 + 0.15)
    assert breakdown.primary_match_type == "similar_name"
    assert breakdown.sources == ("normalized_title",)


def test_ph4_scr_007_unrelated_repository_keeps_same_title_below_threshold() -> None:
    scorer = WeightedScorer(clock=lambda: NOW)
    candidate = _candidate(
        title="Valid admin login",
        file_path="tests/login.spec.ts",
        family="playwright",
        repository_id="web",
        branch="main",
        last_seen_at=NOW,
    )
    result = ExecutionResult(title="Valid admin login", file_path="suite/auth/signin.cy.ts")

    breakdown = scorer.score(
        result, candidate, BuildContext(repository_id="mobile", branch="main")
    )

    assert breakdown.path == 0.0
    assert breakdown.context == 0.0
    assert breakdown.total < 0.6
    assert breakdown.primary_match_type == "exact_name"
