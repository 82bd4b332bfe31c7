# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Authoring-family profiles used by the declaration extractor.

Each profile is a row in a strategy table: detection indicators, the
declaration patterns, the modifiers the family accepts, how asynchronous
bodies are recognised, and the attribute and metadata extractors. The
extractor dispatches on the family tag and never branches on family names.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Literal

from tce.extractor import AuthoringFamily, GroupLabel, ImportRef, Modifier

AsyncRule = Literal["always", "never", "scan"]
AttributeExtractor = Callable[[str, int, tuple[Modifier, ...]], dict[str, Any]]
FlagExtractor = Callable[[str, list[ImportRef], list[GroupLabel]], dict[str, bool]]

QUOTED_TITLE = (
    r"(?P<quote>['\"`])(?P<title>(?:\\.|(?!(?P=quote))[^\\\n])+)(?P=quote)"
)
GROUP_PATTERN = re.compile(
    r"(?<![\w$])(?:test\.)?(?:describe|context)"
    r"(?:\.(?P<modifier>only|skip|parallel|serial|fixme))?\s*\(\s*" + QUOTED_TITLE
)
ASYNC_WINDOW = 500
_ASYNC_RE = re.compile(r"async\s*\([^)]*\)\s*=>|async\s+function|await\s+")


def _declaration_pattern(callees: str, modifiers: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?<![\w.$])(?:{callees})(?:\.(?P<modifier>{modifiers}))?\s*\(\s*"
        + QUOTED_TITLE
    )


def _unique(values: list[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _browsers(text: str, offset: int, modifiers: tuple[Modifier, ...]) -> dict[str, Any]:
    window = text[max(0, offset - 200) : offset + 200]
    if "browserName" not in window:
        return {}
    names = re.findall(r"browserName:\s*['\"`]([^'\"`]+)['\"`]", window)
    return {"browsers": names} if names else {}


def _annotations(
    text: str, offset: int, modifiers: tuple[Modifier, ...]
) -> dict[str, Any]:
    before = text[max(0, offset - 300) : offset]
    names = re.findall(r"test\.(slow|fixme|fail|skip)\s*\(", before)
    return {"annotations": names} if names else {}


def _expectations(
    text: str, offset: int, modifiers: tuple[Modifier, ...]
) -> dict[str, Any]:
    window = text[offset : offset + 1000]
    names = _unique(re.findall(r"expect\([^)]+\)\.(\w+)", window))
    return {"expectations": names} if names else {}


def _timeout(text: str, offset: int, modifiers: tuple[Modifier, ...]) -> dict[str, Any]:
    window = text[offset : offset + 500]
    match = re.search(r"\.timeout\s*\(\s*(\d+)\s*\)", window)
    return {"timeout_ms": int(match.group(1))} if match else {}


def _cypress_commands(
    text: str, offset: int, modifiers: tuple[Modifier, ...]
) -> dict[str, Any]:
    window = text[offset : offset + 1000]
    names = _unique(re.findall(r"\bcy\.(\w+)", window))
    return {"commands": names} if names else {}


def _concurrent(
    text: str, offset: int, modifiers: tuple[Modifier, ...]
) -> dict[str, Any]:
    return {"concurrent": "concurrent" in modifiers}


def _playwright_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {
        "has_parallel_tests": "test.describe.parallel" in text,
        "has_serial_tests": "test.describe.serial" in text,
        "has_custom_fixtures": "test.extend" in text,
        "has_page_object_pattern": any(
            "page-objects" in ref.module for ref in imports
        ),
        "has_test_use": "test.use(" in text,
        "has_describe_config": "test.describe.configure(" in text,
    }


def _jest_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {
        "has_setup": "beforeEach" in text or "beforeAll" in text,
        "has_teardown": "afterEach" in text or "afterAll" in text,
        "uses_snapshots": "toMatchSnapshot" in text,
    }


def _mocha_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {
        "has_hooks": "before" in text or "after" in text,
        "uses_chai": any("chai" in ref.module for ref in imports),
        "has_suites": bool(groups),
    }


def _cypress_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {
        "has_fixtures": "cy.fixture" in text,
        "has_intercepts": "cy.intercept" in text,
        "has_viewport_commands": "cy.viewport" in text,
    }


def _vitest_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {
        "has_concurrent_tests": ".concurrent" in text,
        "uses_vi": any(ref.module == "vitest" for ref in imports),
    }


def _no_flags(
    text: str, imports: list[ImportRef], groups: list[GroupLabel]
) -> dict[str, bool]:
    return {}


@dataclass(frozen=True)
class FamilyProfile:
    """Describe how one authoring family declares and annotates tests.

    Attributes:
        family: Family tag produced by this profile.
        indicators: Substrings whose presence selects the family.
        declaration_patterns: Patterns exposing ``title`` and optional
            ``modifier`` groups.
        uses_groups: Whether declarations inherit grouping labels.
        async_rule: ``always``/``never`` or ``scan`` the body window.
        attribute_extractors: Window scanners for declaration attributes.
        flag_extractor: File-level boolean facts.
        mock_pattern: Pattern capturing mocked module names.
        command_pattern: Pattern capturing registered custom commands.
    """

    family: AuthoringFamily
    indicators: tuple[str, ...]
    declaration_patterns: tuple[re.Pattern[str], ...]
    uses_groups: bool = True
    async_rule: AsyncRule = "scan"
    attribute_extractors: tuple[AttributeExtractor, ...] = ()
    flag_extractor: FlagExtractor = _no_flags
    mock_pattern: re.Pattern[str] | None = None
    command_pattern: re.Pattern[str] | None = None

    def is_async(self, text: str, offset: int) -> bool:
        """Decide whether the declaration at ``offset`` has an async body."""
        if self.async_rule == "always":
            return True
        if self.async_rule == "never":
            return False
        return bool(_ASYNC_RE.search(text[offset : offset + ASYNC_WINDOW]))


_SUITE_STYLE_PATTERNS = (_declaration_pattern("it", "only|skip"),)

PLAYWRIGHT = FamilyProfile(
    family="playwright",
    indicators=("@playwright/test", "test.describe", "page.goto"),
    declaration_patterns=(_declaration_pattern("test", "only|skip|fixme"),),
    async_rule="always",
    attribute_extractors=(_browsers, _annotations),
    flag_extractor=_playwright_flags,
)
CYPRESS = FamilyProfile(
    family="cypress",
    indicators=("cypress", "cy.visit", "cy.get"),
    declaration_patterns=_SUITE_STYLE_PATTERNS,
    async_rule="never",
    attribute_extractors=(_cypress_commands,),
    flag_extractor=_cypress_flags,
    command_pattern=re.compile(r"Cypress\.Commands\.add\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
)
JEST = FamilyProfile(
    family="jest",
    indicators=("jest", "expect(", "jest.mock"),
    declaration_patterns=(
        _declaration_pattern("test|it", "only|skip|todo|concurrent"),
    ),
    attribute_extractors=(_expectations,),
    flag_extractor=_jest_flags,
    mock_pattern=re.compile(r"jest\.mock\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
)
VITEST = FamilyProfile(
    family="vitest",
    indicators=("vitest", "vi.mock", "import { test"),
    declaration_patterns=(
        _declaration_pattern("test|it", "only|skip|todo|concurrent"),
    ),
    attribute_extractors=(_concurrent,),
    flag_extractor=_vitest_flags,
    mock_pattern=re.compile(r"vi\.mock\s*\(\s*['\"`]([^'\"`]+)['\"`]"),
)
MOCHA = FamilyProfile(
    family="mocha",
    indicators=("mocha", "chai", "should"),
    declaration_patterns=_SUITE_STYLE_PATTERNS,
    attribute_extractors=(_timeout,),
    flag_extractor=_mocha_flags,
)
JASMINE = FamilyProfile(
    family="jasmine",
    indicators=(),
    declaration_patterns=_SUITE_STYLE_PATTERNS,
    attribute_extractors=(_timeout,),
    flag_extractor=_mocha_flags,
)
GENERIC = FamilyProfile(
    family="generic",
    indicators=(),
    declaration_patterns=(
        _declaration_pattern("test|it|should", "only|skip"),
        re.compile(r"function\s+test(?P<title>\w+)"),
        re.compile(r"const\s+test(?P<title>\w+)\s*="),
    ),
    uses_groups=False,
)

# Detection order matters: the first family whose indicators appear wins.
DETECTION_ORDER: tuple[FamilyProfile, ...] = (PLAYWRIGHT, CYPRESS, JEST, VITEST, MOCHA)

PROFILES: dict[AuthoringFamily, FamilyProfile] = {
    profile.family: profile
    for profile in (PLAYWRIGHT, CYPRESS, JEST, VITEST, MOCHA, JASMINE, GENERIC)
}


def detect_family(text: str) -> AuthoringFamily:
    """Detect the authoring family of a file from indicator substrings.

    Args:
        text: Full source text.

    Returns:
        First family in detection order with a present indicator, else
        ``generic``.
    """
    for profile in DETECTION_ORDER:
        if any(indicator in text for indicator in profile.indicators):
            return profile.family
    return "generic"
