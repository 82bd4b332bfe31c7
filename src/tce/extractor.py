"""Extractor interfaces and DTOs for test declaration extraction."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping, Protocol


AuthoringFamily = Literal[
    "playwright", "cypress", "jest", "vitest", "mocha", "jasmine", "generic"
]
Modifier = Literal["only", "skip", "todo", "concurrent", "fixme"]

MODIFIERS: tuple[Modifier, ...] = ("only", "skip", "todo", "concurrent", "fixme")


@dataclass(frozen=True)
class SourceDeclaration:
    """Represent one test declared in a source file.

    Attributes:
        family: Authoring family whose profile produced the declaration.
        title: Test title exactly as written by the author.
        file_path: Project-relative source file path.
        line_number: Line of the declaration call (1-based).
        group_label: Nearest preceding grouping label, if any.
        is_async: Whether the test body appears to run asynchronously.
        modifiers: Modifier suffixes attached to the call.
        attributes: Family-specific attributes (browsers, expectations, ...).
    """

    family: AuthoringFamily
    title: str
    file_path: str
    line_number: int
    group_label: str | None = None
    is_async: bool = False
    modifiers: tuple[Modifier, ...] = ()
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.title.strip():
            raise ValueError("Declaration title must not be empty.")
        if not self.file_path.strip():
            raise ValueError("Declaration file path must not be empty.")
        if self.line_number < 1:
            raise ValueError("Declaration line number must be >= 1.")


@dataclass(frozen=True)
class ImportRef:
    """Represent one import or require statement."""

    kind: Literal["es6", "commonjs"]
    module: str
    line_number: int


@dataclass(frozen=True)
class GroupLabel:
    """Represent one grouping-label declaration and its position."""

    label: str
    offset: int
    line_number: int
    modifier: str | None = None


@dataclass(frozen=True)
class FileMetadata:
    """Represent file-level facts gathered during extraction.

    Attributes:
        family: Detected or hinted authoring family.
        file_path: Project-relative source file path.
        imports: Import and require statements in source order.
        groups: Grouping-label declarations in source order.
        flags: Family-specific boolean facts about the file.
        mocks: Module names mocked by the file.
        custom_commands: Custom command names registered by the file.
    """

    family: AuthoringFamily
    file_path: str
    imports: list[ImportRef] = field(default_factory=list)
    groups: list[GroupLabel] = field(default_factory=list)
    flags: dict[str, bool] = field(default_factory=dict)
    mocks: list[str] = field(default_factory=list)
    custom_commands: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionError:
    """Represent a recoverable extraction error for one file or declaration."""

    file_path: str
    message: str
    line_number: int | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """Represent all facts extracted from one source file."""

    declarations: list[SourceDeclaration]
    metadata: FileMetadata
    errors: list[ExtractionError] = field(default_factory=list)


class Extractor(Protocol):
    """Source declaration extractor contract."""

    def extract(
        self,
        file_text: str,
        file_path: str,
        family_hint: AuthoringFamily | None = None,
    ) -> ExtractionResult:
        """Extract test declarations and file metadata from one file."""


class Scanner(Protocol):
    """Repository scanner contract."""

    def scan(
        self, root_path: Path
    ) -> tuple[list[ExtractionResult], list[ExtractionError]]:
        """Scan a repository root and return per-file results and errors."""
