# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""CLI harness for declaration extraction, indexing and result correlation."""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TextIO, cast

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from tce.correlation import CorrelationContext, CorrelationEngine
from tce.database.sqlite import SQLiteIdentityStore
from tce.extractor import AuthoringFamily, ExtractionError, SourceDeclaration
from tce.extractors.profiles import PROFILES
from tce.extractors.scanner import DeclarationScanner
from tce.identity import IdentityBuilder
from tce.model import BuildContext, Correlation, ExecutionResult, FailureRecord
from tce.patterns import FailurePatternDetector
from tce.settings import CorrelationSettings
from tce.storage import StorageError

logger = logging.getLogger(__name__)

FAILED_STATUSES = frozenset({"failed", "failure", "error", "broken", "timedout"})


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="tce")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_parser = subparsers.add_parser("extract")
    extract_parser.add_argument("--path", required=True, help="Repository root to scan.")
    _add_output_arguments(extract_parser)

    index_parser = subparsers.add_parser("index")
    index_parser.add_argument("--path", required=True, help="Repository root to scan.")
    index_parser.add_argument("--db", required=True, help="SQLite database path.")
    index_parser.add_argument("--repository", help="Repository identifier.")
    index_parser.add_argument("--branch", help="Branch being indexed.")
    _add_output_arguments(index_parser)

    correlate_parser = subparsers.add_parser("correlate")
    correlate_parser.add_argument("--db", required=True, help="SQLite database path.")
    correlate_parser.add_argument(
        "--input", required=True, help="JSON file with a list of execution results."
    )
    correlate_parser.add_argument("--repository", help="Repository identifier.")
    correlate_parser.add_argument("--branch", help="Branch of the build.")
    correlate_parser.add_argument("--platform", help="CI platform name.")
    correlate_parser.add_argument("--build-id", help="CI build identifier.")
    correlate_parser.add_argument(
        "--threshold",
        type=float,
        default=CorrelationSettings.similarity_threshold,
        help="Minimum composite score accepted by fuzzy matching.",
    )
    correlate_parser.add_argument(
        "--workers",
        type=int,
        default=CorrelationSettings.max_workers,
        help="Worker threads used for correlation.",
    )
    correlate_parser.add_argument(
        "--progress-batch-size",
        type=int,
        default=CorrelationSettings.progress_batch_size,
        help="Emit progress line every N completed correlations.",
    )
    correlate_parser.add_argument(
        "--record-failures",
        action="store_true",
        help="Store failed results of matched identities for pattern detection.",
    )
    _add_output_arguments(correlate_parser)

    patterns_parser = subparsers.add_parser("patterns")
    patterns_parser.add_argument("--db", required=True, help="SQLite database path.")
    patterns_parser.add_argument(
        "--identifier",
        action="append",
        help="Identity to analyze; repeatable. Defaults to every failing identity.",
    )
    patterns_parser.add_argument(
        "--lookback", type=int, default=10, help="Most recent failures considered."
    )
    _add_output_arguments(patterns_parser)
    return parser


def _add_output_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Output format.",
    )
    parser.add_argument(
        "--output",
        required=False,
        help="Optional output file path for raw JSON when --format json is used.",
    )


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    handlers = {
        "extract": _run_extract,
        "index": _run_index,
        "correlate": _run_correlate,
        "patterns": _run_patterns,
    }
    handler = handlers.get(args.command)
    if handler is None:
        logger.warning(f"Unsupported command (command={args.command})")
        stderr.write(f"Unsupported command: {args.command}\n")
        return 2
    try:
        return handler(args=args, stdout=stdout, stderr=stderr)
    except StorageError as exc:
        logger.warning(f"Storage operation failed (command={args.command} error={exc})")
        stderr.write(f"Storage operation failed: {exc}\n")
        return 2


def _run_extract(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run extract command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    root_path = Path(args.path)
    if not root_path.is_dir():
        logger.warning(f"Path is not a directory (path={root_path})")
        stderr.write(f"Path is not a directory: {root_path}\n")
        return 2

    results, errors = DeclarationScanner().scan(root_path)
    declarations = [
        declaration for result in results for declaration in result.declarations
    ]
    _write_errors(errors=errors, stderr=stderr)
    payload = {
        "declarations": [asdict(declaration) for declaration in declarations],
        "files": [asdict(result.metadata) for result in results],
        "errors": [asdict(error) for error in errors],
    }
    if args.format == "json":
        return _emit_json(payload=payload, args=args, stdout=stdout, stderr=stderr)
    _write_declarations_table(declarations=declarations, root_path=root_path, stdout=stdout)
    return 0


def _run_index(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run index command: scan, build identities and upsert them."""
    root_path = Path(args.path)
    if not root_path.is_dir():
        logger.warning(f"Path is not a directory (path={root_path})")
        stderr.write(f"Path is not a directory: {root_path}\n")
        return 2

    results, errors = DeclarationScanner().scan(root_path)
    declarations = [
        declaration for result in results for declaration in result.declarations
    ]
    identities, conflicts = IdentityBuilder().build(
        declarations, repository_id=args.repository, branch=args.branch
    )
    store = SQLiteIdentityStore(db_path=Path(args.db))
    stored = [store.upsert_by_identifier(identity) for identity in identities]
    store.record_conflicts(conflicts)
    logger.info(
        f"Index completed (path={root_path} identities={len(stored)} "
        f"conflicts={len(conflicts)} errors={len(errors)})"
    )
    _write_errors(errors=errors, stderr=stderr)
    payload = {
        "identities": [asdict(identity) for identity in stored],
        "conflicts": [asdict(conflict) for conflict in conflicts],
        "errors": [asdict(error) for error in errors],
    }
    if args.format == "json":
        return _emit_json(payload=payload, args=args, stdout=stdout, stderr=stderr)
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(show_header=True, show_lines=False, expand=True)
    for column in ("identifier", "file_path", "group_label", "title", "test_kind"):
        table.add_column(column, overflow="fold")
    for identity in stored:
        table.add_row(
            identity.identifier,
            identity.file_path,
            str(identity.group_label or ""),
            identity.title,
            identity.test_kind,
        )
    console.print(table)
    for conflict in conflicts:
        stderr.write(
            f"identity_conflict: {conflict.identifier} {conflict.file_path} "
            f"{conflict.title!r} lines={list(conflict.line_numbers)}\n"
        )
    return 0


def _run_correlate(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run correlate command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    try:
        settings = CorrelationSettings(
            similarity_threshold=args.threshold,
            max_workers=args.workers,
            progress_batch_size=args.progress_batch_size,
        )
    except ValueError as exc:
        logger.warning(f"Invalid correlation settings (error={exc})")
        stderr.write(f"Invalid settings: {exc}\n")
        return 2
    try:
        results = load_execution_results(Path(args.input))
    except (OSError, ValueError) as exc:
        logger.warning(f"Failed to load execution results (input={args.input} error={exc})")
        stderr.write(f"Failed to load execution results: {exc}\n")
        return 2

    build_context = BuildContext(
        repository_id=args.repository,
        branch=args.branch,
        platform=args.platform,
        build_id=args.build_id,
    )
    store = SQLiteIdentityStore(db_path=Path(args.db))
    engine = CorrelationEngine(store=store, settings=settings)
    context = CorrelationContext.from_settings(settings)
    correlations = engine.correlate_batch(results, build_context, context)
    if args.record_failures:
        recorded = _record_failures(store, correlations, build_context)
        logger.info(f"Failures recorded (count={recorded})")

    stats = context.stats()
    logger.info(
        f"Correlation completed (results={stats.total} direct={stats.direct} "
        f"fuzzy={stats.fuzzy} failed={stats.failed} success_rate={stats.success_rate:.2f})"
    )
    payload = {
        "correlations": [_correlation_payload(correlation) for correlation in correlations],
        "stats": asdict(stats),
    }
    if args.format == "json":
        return _emit_json(payload=payload, args=args, stdout=stdout, stderr=stderr)
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(show_header=True, show_lines=False, expand=True)
    for column in ("title", "file_path", "identifier", "strategy", "confidence"):
        table.add_column(column, overflow="fold")
    for correlation in correlations:
        table.add_row(
            correlation.result.title,
            str(correlation.result.file_path or ""),
            correlation.identity.identifier if correlation.identity else "-",
            correlation.strategy,
            f"{correlation.confidence:.2f}",
        )
    console.print(table)
    return 0


def _run_patterns(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run patterns command."""
    try:
        store = SQLiteIdentityStore(db_path=Path(args.db))
        detector = FailurePatternDetector(store=store, lookback=args.lookback)
    except ValueError as exc:
        logger.warning(f"Invalid lookback (lookback={args.lookback} error={exc})")
        stderr.write(f"Invalid lookback: {exc}\n")
        return 2
    identifiers = args.identifier or store.list_failing_identifiers()
    patterns = detector.detect_patterns(identifiers)
    payload = {"patterns": [asdict(pattern) for pattern in patterns]}
    if args.format == "json":
        return _emit_json(payload=payload, args=args, stdout=stdout, stderr=stderr)
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(show_header=True, show_lines=False, expand=True)
    for column in ("identifier", "pattern_type", "frequency", "consistency", "significance"):
        table.add_column(column, overflow="fold")
    for pattern in patterns:
        table.add_row(
            pattern.identifier,
            pattern.pattern_type,
            str(pattern.frequency),
            f"{pattern.consistency:.2f}",
            f"{pattern.significance:.2f}",
        )
    console.print(table)
    return 0


def load_execution_results(input_path: Path) -> list[ExecutionResult]:
    """Load execution results from a JSON list.

    Args:
        input_path: JSON file containing a list of result objects.

    Returns:
        Parsed execution results.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the payload is not a list of valid result objects.
    """
    payload = json.loads(input_path.read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("expected a JSON list of execution results")
    return [parse_execution_result(item) for item in payload]


def parse_execution_result(item: Any) -> ExecutionResult:
    """Build an execution result from one decoded JSON object.

    Raises:
        ValueError: If required fields are missing or malformed.
    """
    if not isinstance(item, dict):
        raise ValueError("execution result must be a JSON object")
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValueError("execution result requires a non-empty title")
    family = item.get("family")
    if family is not None and family not in PROFILES:
        raise ValueError(f"unsupported family: {family}")
    reported_at = item.get("reported_at")
    return ExecutionResult(
        title=title,
        file_path=item.get("file_path"),
        suite=item.get("suite"),
        family=cast(AuthoringFamily | None, family),
        status=str(item.get("status", "passed")),
        duration_ms=item.get("duration_ms"),
        error_messages=tuple(item.get("error_messages") or ()),
        tags=tuple(item.get("tags") or ()),
        details=item.get("details"),
        reported_at=_parse_timestamp(reported_at) if reported_at else None,
    )


def _parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _record_failures(
    store: SQLiteIdentityStore,
    correlations: list[Correlation],
    build_context: BuildContext,
) -> int:
    recorded = 0
    for correlation in correlations:
        result = correlation.result
        if correlation.identity is None or result.status.lower() not in FAILED_STATUSES:
            continue
        store.record_failure(
            FailureRecord(
                identifier=correlation.identity.identifier,
                occurred_at=result.reported_at or datetime.now(tz=timezone.utc),
                message=result.error_messages[0] if result.error_messages else None,
                build_id=build_context.build_id,
            )
        )
        recorded += 1
    return recorded


def _correlation_payload(correlation: Correlation) -> dict[str, Any]:
    return {
        "title": correlation.result.title,
        "file_path": correlation.result.file_path,
        "suite": correlation.result.suite,
        "identifier": correlation.identity.identifier if correlation.identity else None,
        "matched": correlation.matched,
        "confidence": correlation.confidence,
        "strategy": correlation.strategy,
        "breakdown": asdict(correlation.breakdown) if correlation.breakdown else None,
        "alternatives": [
            {
                "identifier": alternative.identity.identifier,
                "total": alternative.breakdown.total,
            }
            for alternative in correlation.alternatives
        ],
    }


def _emit_json(
    payload: dict[str, Any], args: argparse.Namespace, stdout: TextIO, stderr: TextIO
) -> int:
    """Write ``payload`` to ``--output`` or stdout.

    Returns:
        Exit code.
    """
    text = json.dumps(payload, indent=2, sort_keys=True, default=str)
    if args.output:
        output_path = Path(args.output)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.warning(
                f"Failed to write JSON output file (output_path={args.output} error={exc})"
            )
            stderr.write(f"Failed to write JSON output file: {args.output}\n")
            return 2
        return 0
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.print(text, markup=False, highlight=False, soft_wrap=True)
    return 0


def _write_errors(errors: list[ExtractionError], stderr: TextIO) -> None:
    for error in errors:
        stderr.write(f"extraction_error: {error}\n")


def _write_declarations_table(
    declarations: list[SourceDeclaration], root_path: Path, stdout: TextIO
) -> None:
    """Write declarations grouped by file.

    Args:
        declarations: Extracted declarations.
        root_path: Root path used for scanning.
        stdout: Standard output stream.
    """
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    by_file: dict[str, list[SourceDeclaration]] = {}
    for declaration in declarations:
        by_file.setdefault(declaration.file_path, []).append(declaration)

    for file_path in sorted(by_file):
        full_path = str((root_path / file_path).resolve())
        console.rule(f"{full_path}", style=Style(color="cyan"), characters="-")
        table = Table(show_header=True, show_lines=True, expand=True)
        table.add_column("family", ratio=1, overflow="fold")
        table.add_column("line", ratio=1, justify="right", overflow="fold")
        table.add_column("group_label", ratio=3, overflow="fold")
        table.add_column("title", ratio=5, overflow="fold")
        table.add_column("modifiers", ratio=1, overflow="fold")
        for declaration in by_file[file_path]:
            table.add_row(
                declaration.family,
                str(declaration.line_number),
                str(declaration.group_label or ""),
                declaration.title,
                ",".join(declaration.modifiers),
            )
        console.print(table)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
