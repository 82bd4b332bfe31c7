# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Repository scanner that feeds test files to the declaration extractor."""

import logging
import os
import re
from pathlib import Path

import pathspec

from tce.extractor import ExtractionError, ExtractionResult, Extractor
from tce.extractors.javascript import JavaScriptExtractor

logger = logging.getLogger(__name__)

TEST_FILE_PATTERN = re.compile(r"\.(?:spec|test|cy)\.(?:[cm]?js|jsx|ts|tsx)$")
ALWAYS_SKIPPED_DIRS: frozenset[str] = frozenset({".git", "node_modules"})


class ProjectFileFilter:
    """Select test files under a project root, honoring nested .gitignore files."""

    def __init__(self, ignored: pathspec.GitIgnoreSpec | None = None) -> None:
        self._ignored = (
            ignored if ignored is not None else pathspec.GitIgnoreSpec.from_lines([])
        )

    @classmethod
    def from_root(cls, root_path: Path) -> "ProjectFileFilter":
        """Compile every .gitignore beneath ``root_path`` into one root-relative spec.

        Patterns of a nested .gitignore are rewritten so they only apply to its
        own directory. Files inside always-skipped directories are not read.

        Raises:
            OSError: If a .gitignore file cannot be read.
            UnicodeDecodeError: If a .gitignore file is not valid UTF-8.
        """
        lines: list[str] = []
        for ignore_file in sorted(root_path.rglob(".gitignore")):
            scope = ignore_file.parent.relative_to(root_path)
            if ALWAYS_SKIPPED_DIRS.intersection(scope.parts):
                continue
            base = "" if scope == Path(".") else scope.as_posix()
            lines.extend(
                _scoped_pattern(line, base)
                for line in ignore_file.read_text(encoding="utf-8").splitlines()
            )
        return cls(pathspec.GitIgnoreSpec.from_lines(lines))

    def skips_dir(self, relative_dir: str) -> bool:
        """Whether the walk should not descend into ``relative_dir``."""
        if Path(relative_dir).name in ALWAYS_SKIPPED_DIRS:
            return True
        return self._is_ignored(relative_dir) or self._is_ignored(f"{relative_dir}/")

    def selects(self, relative_file: str) -> bool:
        """Whether ``relative_file`` is a test file that is not ignored."""
        return bool(TEST_FILE_PATTERN.search(relative_file)) and not self._is_ignored(
            relative_file
        )

    def _is_ignored(self, relative_path: str) -> bool:
        posix = relative_path.replace(os.sep, "/").lstrip("/")
        return bool(posix.strip("/")) and self._ignored.match_file(posix)


class DeclarationScanner:
    """Scan a repository for test files and extract their declarations."""

    def __init__(self, extractor: Extractor | None = None) -> None:
        """Initialize scanner.

        Args:
            extractor: Declaration extractor; defaults to the JavaScript one.
        """
        self._extractor = extractor or JavaScriptExtractor()

    def scan(
        self, root_path: Path
    ) -> tuple[list[ExtractionResult], list[ExtractionError]]:
        """Extract declarations from every test file beneath ``root_path``.

        Args:
            root_path: Repository root directory.

        Returns:
            A tuple of per-file extraction results and recoverable errors.
        """
        results: list[ExtractionResult] = []
        errors: list[ExtractionError] = []
        try:
            file_filter = ProjectFileFilter.from_root(root_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                f"Failed to read .gitignore files; scanning without ignore rules "
                f"(root_path={root_path} error={exc})"
            )
            file_filter = ProjectFileFilter()

        for file_path in self._iter_test_files(root_path, file_filter):
            relative_path = file_path.relative_to(root_path).as_posix()
            try:
                source = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(
                    f"Skipping file due to read failure (file_path={relative_path} error={exc})"
                )
                errors.append(ExtractionError(file_path=relative_path, message=str(exc)))
                continue
            result = self._extractor.extract(source, relative_path)
            errors.extend(result.errors)
            results.append(result)

        logger.info(
            f"Declaration scan completed (root_path={root_path} files={len(results)} "
            f"declarations={sum(len(r.declarations) for r in results)} errors={len(errors)})"
        )
        return results, errors

    def _iter_test_files(self, root_path: Path, file_filter: ProjectFileFilter) -> list[Path]:
        files: list[Path] = []
        for current, dir_names, file_names in os.walk(root_path):
            current_path = Path(current)
            relative_dir = current_path.relative_to(root_path)
            dir_names[:] = [
                name
                for name in sorted(dir_names)
                if not file_filter.skips_dir((relative_dir / name).as_posix())
            ]
            files.extend(
                current_path / name
                for name in sorted(file_names)
                if file_filter.selects((relative_dir / name).as_posix())
            )
        return files


def _scoped_pattern(line: str, base: str) -> str:
    """Rewrite a .gitignore line of directory ``base`` relative to the project root."""
    if not base or not line.strip() or line.lstrip().startswith("#"):
        return line
    if line.startswith(("\\!", "\\#")):
        return line
    negated = line.startswith("!")
    body = line[1:] if negated else line
    anchored = body.startswith("/")
    body = body.lstrip("/")
    if not body:
        scoped = base
    elif anchored or "/" in body.rstrip("/"):
        scoped = f"{base}/{body}"
    else:
        # Slash-free patterns match at any depth below their directory.
        scoped = f"{base}/**/{body}"
    if anchored:
        scoped = f"/{scoped}"
    return f"!{scoped}" if negated else scoped
