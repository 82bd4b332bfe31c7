import pytest

from tce.extractor import SourceDeclaration
from tce.extractors import JavaScriptExtractor, detect_family, extract_declarations

PLAYWRIGHT_SOURCE = "\n".join(
    [
        "import { test, expect } from '@playwright/test';",
        "",
        "test.describe('Login Functional', () => {",
        "  test('Valid admin login', async ({ page }) => {",
        "    await page.goto('/login');",
        "  });",
        "",
        "  test.skip('Locked account', async ({ page }) => {",
        "    await page.goto('/locked');",
        "  });",
        "});",
    ]
)

JEST_SOURCE = "\n".join(
    [
        "const { sum } = require('./sum');",
        "jest.mock('./api');",
        "",
        "describe('sum', () => {",
        "  beforeEach(() => {});",
        "  it('adds numbers', () => {",
        "    expect(result).toBe(3);",
        "  });",
        '  it.only("handles \\"quoted\\" input", async () => {',
        "    expect(value).toEqual([]);",
        "  });",
        "});",
    ]
)

CYPRESS_SOURCE = "\n".join(
    [
        "describe('Checkout', () => {",
        "  it('pays with card', () => {",
        "    cy.visit('/checkout');",
        "    cy.get('#pay').click();",
        "  });",
        "});",
        "Cypress.Commands.add('login', () => {});",
    ]
)

MOCHA_SOURCE = "\n".join(
    [
        "const chai = require('chai');",
        "chai.should();",
        "describe('Array', function () {",
        "  context('when empty', function () {",
        "    it('has no items', function () {",
        "      this.timeout(5000);",
        "      [].length.should.equal(0);",
        "    });",
        "  });",
        "});",
    ]
)


def test_ph1_ext_001_playwright_declarations_carry_group_line_and_modifiers() -> None:
    result = JavaScriptExtractor().extract(PLAYWRIGHT_SOURCE, "tests/login.spec.ts")

    assert result.metadata.family == "playwright"
    assert [d.title for d in result.declarations] == [
        "Valid admin login",
        "Locked account",
    ]
    first, second = result.declarations
    assert first.line_number == 4
    assert second.line_number == 8
    assert first.group_label == "Login Functional"
    assert second.group_label == "Login Functional"
    assert first.modifiers == ()
    assert second.modifiers == ("skip",)
    assert first.is_async is True
    assert result.metadata.imports[0].module == "@playwright/test"
    assert result.errors == []


def test_ph1_ext_002_jest_extracts_expectations_mocks_and_escaped_titles() -> None:
    result = JavaScriptExtractor().extract(JEST_SOURCE, "src/sum.test.js")

    assert result.metadata.family == "jest"
    titles = [d.title for d in result.declarations]
    assert titles == ["adds numbers", 'handles "quoted" input']
    adds, quoted = result.declarations
    assert adds.line_number == 6
    assert adds.group_label == "sum"
    assert adds.attributes["expectations"][0] == "toBe"
    assert quoted.modifiers == ("only",)
    assert quoted.is_async is True
    assert result.metadata.mocks == ["./api"]
    assert result.metadata.flags["uses_mocks"] is True
    assert result.metadata.flags["has_setup"] is True
    assert [(ref.kind, ref.module) for ref in result.metadata.imports] == [
        ("commonjs", "./sum")
    ]


def test_ph1_ext_003_cypress_collects_commands_and_custom_commands() -> None:
    result = JavaScriptExtractor().extract(CYPRESS_SOURCE, "cypress/e2e/checkout.cy.ts")

    assert result.metadata.family == "cypress"
    (declaration,) = result.declarations
    assert declaration.title == "pays with card"
    assert declaration.group_label == "Checkout"
    assert declaration.is_async is False
    assert declaration.attributes["commands"] == ["visit", "get"]
    assert result.metadata.custom_commands == ["login"]
    assert result.metadata.flags["has_custom_commands"] is True


def test_ph1_ext_004_mocha_uses_nearest_context_and_timeout() -> None:
    result = JavaScriptExtractor().extract(MOCHA_SOURCE, "test/array.test.js")

    assert result.metadata.family == "mocha"
    (declaration,) = result.declarations
    assert declaration.group_label == "when empty"
    assert declaration.line_number == 5
    assert declaration.attributes["timeout_ms"] == 5000
    assert result.metadata.flags["uses_chai"] is True
    assert [group.label for group in result.metadata.groups] == ["Array", "when empty"]


def test_ph1_ext_005_file_without_declarations_is_generic_and_empty() -> None:
    result = JavaScriptExtractor().extract("const x = 1;\nconsole.log(x);\n", "src/x.js")

    assert result.metadata.family == "generic"
    assert result.declarations == []
    assert result.errors == []
    assert extract_declarations("", "empty.test.js") == []


def test_ph1_ext_006_generic_fallback_recognises_function_style_tests() -> None:
    source = "function testAddition() {}\nconst testSubtraction = () => {};\n"

    declarations = extract_declarations(source, "legacy/math.js")

    assert [d.title for d in declarations] == ["Addition", "Subtraction"]
    assert [d.line_number for d in declarations] == [1, 2]
    assert all(d.family == "generic" and d.group_label is None for d in declarations)


def test_ph1_ext_007_malformed_declaration_is_skipped_and_reported(caplog) -> None:
    source = "\n".join(
        [
            "describe('Cart', () => {",
            "  it('   ', () => {});",
            "  it('adds item', () => { expect(cart).toHaveLength(1); });",
            "});",
        ]
    )
    caplog.set_level("WARNING")

    result = JavaScriptExtractor().extract(source, "cart.test.js")

    assert [d.title for d in result.declarations] == ["adds item"]
    assert len(result.errors) == 1
    assert result.errors[0].line_number == 2
    assert any("Skipping malformed declaration" in rec.getMessage() for rec in caplog.records)


def test_ph1_ext_008_family_hint_overrides_detection() -> None:
    source = "describe('Parser', () => {\n  it('parses', () => {});\n});\n"

    result = JavaScriptExtractor().extract(source, "parser.spec.js", family_hint="jasmine")

    assert result.metadata.family == "jasmine"
    assert [d.title for d in result.declarations] == ["parses"]
    assert result.declarations[0].family == "jasmine"


def test_ph1_ext_009_detection_follows_fixed_priority_order() -> None:
    assert detect_family("import { test } from '@playwright/test'; jest.fn()") == "playwright"
    assert detect_family("cy.get('#a'); jest.fn()") == "cypress"
    assert detect_family("import { vi } from 'vitest'; expect(a)") == "jest"
    assert detect_family("import { describe } from 'vitest'") == "vitest"
    assert detect_family("const chai = require('chai')") == "mocha"
    assert detect_family("nothing to see") == "generic"


def test_ph1_ext_010_declaration_rejects_empty_title() -> None:
    with pytest.raises(ValueError):
        SourceDeclaration(family="jest", title=" ", file_path="a.test.js", line_number=1)
    with pytest.raises(ValueError):
        SourceDeclaration(family="jest", title="a", file_path="a.test.js", line_number=0)
