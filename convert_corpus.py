#!/usr/bin/env -S uv run --quiet --script
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "rich>=14.0",
#     "numpy>=1.26",
# ]
# ///
#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Corpus Converter

Converts every image under the content directory to both AVIF (avifenc) and
WebP (cwebp), mirroring the directory structure under avif/ and webp/, and
records per-file sizes and compression ratios in results.json.

Runs are resumable:
    - progress.json is rewritten after every batch of files
    - files whose AVIF and WebP outputs both exist are never re-encoded
    - an interrupted run picks up after the last saved batch

Prerequisites:
    - Requires: avifenc (libavif), cwebp (libwebp)

Usage:
    ./convert_corpus.py                       # Use ./contents, ./avif, ./webp
    ./convert_corpus.py --project-dir ~/site  # Different project root
"""

from __future__ import annotations

import argparse
import itertools
import logging
import os
import sys
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import StrEnum, auto
from pathlib import Path
from typing import Final, Self

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from conversion_results import (
    ConversionResult,
    ResultsPublisher,
    format_file_size,
    summarize_results,
)
from corpus_paths import PathResolver
from corpus_scan import scan_corpus
from image_encoders import Encoder, EncoderAdapter, discard_output, find_missing_encoders
from progress_store import ProgressCheckpoint, ProgressStore
from transcode_config import ConfigError, TranscodeConfig

__all__: Final[list[str]] = [
    "ConversionPipeline",
    "FileState",
    "RunReport",
    "RunStatistics",
    "ValidationError",
    "main",
]

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()

# Progress line cadence when no progress bar is attached
PROGRESS_LOG_EVERY: Final[int] = 10


# ═══════════════════════════════════════════════════════════════════
#                        EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════


class ValidationError(Exception):
    """Raised when environment validation fails."""


# ═══════════════════════════════════════════════════════════════════
#                        DATA MODELS
# ═══════════════════════════════════════════════════════════════════


class FileState(StrEnum):
    """Where a discovered file stands in the current run."""

    PROCESSED = auto()  # Recorded in the checkpoint by an earlier run
    ALREADY_CONVERTED = auto()  # Both outputs on disk, encoder not needed
    PENDING = auto()  # Needs encoding


type ProgressCallback = Callable[[RunStatistics], None]


@dataclass(frozen=True, slots=True, kw_only=True)
class RunStatistics:
    """Progress figures derived from counts and the run clock."""

    processed: int  # Corpus files done, including earlier runs
    total: int
    handled_this_run: int
    elapsed: float

    @property
    def remaining(self) -> int:
        return max(self.total - self.processed, 0)

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 100
        return round(self.processed / self.total * 100)

    @property
    def eta_seconds(self) -> float | None:
        if self.handled_this_run == 0:
            return None
        return self.elapsed / self.handled_this_run * self.remaining

    @property
    def eta_label(self) -> str:
        eta = self.eta_seconds
        if eta is None:
            return ""
        return f"~{round(eta / 60)} min left"


@dataclass(slots=True, kw_only=True)
class RunReport:
    """What a pipeline run did."""

    total: int = 0
    encoded: int = 0
    already_converted: int = 0
    skipped: int = 0
    errored: int = 0
    elapsed: float = 0.0
    results: list[ConversionResult] = field(default_factory=list)
    results_file: Path | None = None

    @property
    def processed(self) -> int:
        return self.skipped + self.encoded + self.already_converted + self.errored

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful


# ═══════════════════════════════════════════════════════════════════
#                        PIPELINE
# ═══════════════════════════════════════════════════════════════════


@dataclass(slots=True, kw_only=True)
class ConversionPipeline:
    """Resumable batch conversion of the whole corpus."""

    config: TranscodeConfig
    encoder: Encoder
    store: ProgressStore
    publisher: ResultsPublisher
    resolver: PathResolver
    on_progress: ProgressCallback | None = None
    clock: Callable[[], float] = time.monotonic

    @classmethod
    def from_config(
        cls,
        config: TranscodeConfig,
        *,
        encoder: Encoder | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Self:
        resolver = PathResolver.from_config(config)
        return cls(
            config=config,
            encoder=encoder or EncoderAdapter(config=config),
            store=ProgressStore(path=config.progress_file),
            publisher=ResultsPublisher(config=config, resolver=resolver),
            resolver=resolver,
            on_progress=on_progress,
        )

    @property
    def worker_count(self) -> int:
        return max(1, min(self.config.max_workers, os.cpu_count() or 1))

    def convert_file(self, input_path: Path) -> ConversionResult:
        """Encode one input to every format; one format failing never blocks another."""
        encoded: dict[str, bool] = {}
        for fmt, output_path in self.resolver.output_paths(input_path).items():
            try:
                encoded[fmt] = self.encoder.encode(fmt, input_path, output_path)
            except Exception:
                logger.exception("%s encoder crashed on %s", fmt.upper(), input_path)
                encoded[fmt] = False
            if not encoded[fmt]:
                discard_output(output_path)
        return self.publisher.build_result(input_path, encoded)

    def run(self) -> RunReport:
        """Convert everything not yet processed, checkpointing after each batch.

        Raises:
            FileNotFoundError: If the content directory is missing.
        """
        started = self.clock()
        report = RunReport()

        checkpoint = self.store.load()
        processed = checkpoint.processed_files
        results = checkpoint.results
        report.results = results

        files = scan_corpus(self.config.content_dir, self.config.supported_formats)
        report.total = len(files)
        logger.info("Found %d image file(s)", len(files))
        if not files:
            logger.warning("No image files found in %s", self.config.content_dir)
            return report

        self._warn_collisions(files)

        remaining = sum(1 for path in files if str(path) not in processed)
        logger.info("Unprocessed files: %d", remaining)

        if remaining == 0:
            logger.info("All files already processed")
            if not results:
                results = self.publisher.regenerate_from_disk(files)
                report.results = results
            if self._publish(results, report):
                self.store.clear()
            report.skipped = len(files)
            report.elapsed = self.clock() - started
            return report

        done = len(files) - remaining
        handled = 0
        active_batches = 0

        def file_done() -> None:
            nonlocal done, handled
            done += 1
            handled += 1
            self._emit_progress(done, len(files), handled, started)

        executor = ThreadPoolExecutor(max_workers=self.worker_count) if self.worker_count > 1 else None
        try:
            for batch_number, batch in enumerate(itertools.batched(files, self.config.batch_size), 1):
                count, added = self._process_batch(
                    batch, processed, results, report, executor, file_done
                )
                if count:
                    logger.debug("Batch %d: %d file(s) handled", batch_number, count)

                self.store.save(
                    ProgressCheckpoint(
                        processed_count=len(processed),
                        total_count=len(files),
                        results=results,
                        processed_files=processed,
                    )
                )

                if added:
                    active_batches += 1
                    if active_batches % self.config.snapshot_every == 0:
                        if self._publish(results, report):
                            logger.info("Saved intermediate results")
        except BaseException:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
                executor = None
            raise
        finally:
            if executor is not None:
                executor.shutdown()

        published = self._publish(results, report)
        report.elapsed = self.clock() - started
        logger.info(
            "Conversion complete: %d succeeded, %d failed in %ds",
            report.successful,
            report.failed,
            round(report.elapsed),
        )

        if published:
            self.store.clear()
        else:
            logger.warning(
                "Kept %s so the next run can republish its results", self.store.path.name
            )
        return report

    def _classify(self, input_path: Path, processed: set[str]) -> FileState:
        if str(input_path) in processed:
            return FileState.PROCESSED
        if self.resolver.output_paths(input_path).all_exist():
            return FileState.ALREADY_CONVERTED
        return FileState.PENDING

    def _process_batch(
        self,
        batch: Sequence[Path],
        processed: set[str],
        results: list[ConversionResult],
        report: RunReport,
        executor: ThreadPoolExecutor | None,
        file_done: Callable[[], None],
    ) -> tuple[int, int]:
        """Handle one batch in discovery order.

        Returns:
            Tuple of (files newly marked processed, results appended)
        """
        entries: list[tuple[Path, FileState, Future[ConversionResult] | None]] = []
        for path in batch:
            state = self._classify(path, processed)
            if state is FileState.PROCESSED:
                report.skipped += 1
                continue
            future = None
            if executor is not None and state is FileState.PENDING:
                future = executor.submit(self.convert_file, path)
            entries.append((path, state, future))

        added = 0
        for path, state, future in entries:
            display = self.resolver.display_path(path)
            try:
                if state is FileState.ALREADY_CONVERTED:
                    logger.debug("Skipping %s (already converted)", display)
                    result = self.publisher.result_from_disk(path)
                    report.already_converted += 1
                else:
                    logger.debug("Converting %s", display)
                    result = future.result() if future is not None else self.convert_file(path)
                    report.encoded += 1
            except Exception:
                # Still marked processed: no automatic retries within a run
                logger.exception("Failed to process %s", display)
                report.errored += 1
            else:
                results.append(result)
                added += 1
            processed.add(str(path))
            file_done()

        return len(entries), added

    def _emit_progress(self, done: int, total: int, handled: int, started: float) -> None:
        stats = RunStatistics(
            processed=done,
            total=total,
            handled_this_run=handled,
            elapsed=self.clock() - started,
        )
        if self.on_progress is not None:
            self.on_progress(stats)
        elif handled % PROGRESS_LOG_EVERY == 0:
            logger.info(
                "Progress: %d/%d (%d%%) %s",
                stats.processed,
                stats.total,
                stats.percentage,
                stats.eta_label,
            )

    def _publish(self, results: list[ConversionResult], report: RunReport) -> bool:
        try:
            report.results_file = self.publisher.publish(results)
        except OSError as e:
            logger.error("Failed to save results to %s: %s", self.publisher.results_file, e)
            return False
        return True

    def _warn_collisions(self, files: Sequence[Path]) -> None:
        owners: dict[Path, Path] = {}
        for path in files:
            target = self.resolver.output_paths(path).avif
            first = owners.setdefault(target, path)
            if first != path:
                logger.warning(
                    "%s and %s map to the same outputs; one will overwrite the other",
                    self.resolver.display_path(first),
                    self.resolver.display_path(path),
                )


# ═══════════════════════════════════════════════════════════════════
#                        VALIDATION
# ═══════════════════════════════════════════════════════════════════


def validate_environment(config: TranscodeConfig, *, check_encoders: bool = True) -> None:
    """Validate the content directory and look for encoder binaries.

    Raises:
        ValidationError: If the content directory is unusable.
    """
    source = config.content_dir
    if not source.exists():
        raise ValidationError(f"Content directory does not exist: {source}")
    if not source.is_dir():
        raise ValidationError(f"Content path is not a directory: {source}")

    if check_encoders:
        for binary in find_missing_encoders(config):
            console.print(
                f"[yellow]Warning:[/] {binary} not found in PATH. "
                "Every file will be recorded as failed for that format."
            )


# ═══════════════════════════════════════════════════════════════════
#                        OUTPUT
# ═══════════════════════════════════════════════════════════════════


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Route log records through rich so they render above progress bars."""
    level = logging.WARNING if quiet else (logging.DEBUG if verbose else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )


def print_summary(results: Sequence[ConversionResult]) -> None:
    """Per-format size and compression table."""
    table = Table(title="Compression Summary")
    table.add_column("Format", style="cyan")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right")
    table.add_column("Original", justify="right")
    table.add_column("Encoded", justify="right")
    table.add_column("Saved", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("Median", justify="right")

    for summary in summarize_results(results):
        table.add_row(
            summary.fmt.upper(),
            str(summary.count),
            f"[red]{summary.failed}[/]" if summary.failed else "0",
            format_file_size(summary.original_bytes),
            format_file_size(summary.output_bytes),
            f"{summary.overall_ratio}%",
            f"{summary.mean_ratio:.1f}%",
            f"{summary.median_ratio:.1f}%",
        )

    console.print(table)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Options shared by all entry scripts."""
    parser.add_argument(
        "--project-dir",
        "-p",
        type=Path,
        default=None,
        help="Project root holding contents/, avif/, webp/ (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="JSON config file (default: <project>/transcode.json if present)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every file and encoder command",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only log warnings and errors",
    )


# ═══════════════════════════════════════════════════════════════════
#                        CLI
# ═══════════════════════════════════════════════════════════════════


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Convert an image corpus to AVIF and WebP, resumably.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Layout (relative to the project directory):
  contents/      source images (scanned recursively)
  avif/ webp/    converted outputs, same structure as contents/
  progress.json  checkpoint, removed after a complete run
  results.json   per-file sizes and compression ratios

Examples:
  %(prog)s                       # Convert using defaults / transcode.json
  %(prog)s --batch-size 100      # Checkpoint every 100 files
  %(prog)s --workers 4           # Encode up to 4 files at once
""",
    )
    add_common_arguments(parser)
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Files per checkpoint (default: 50)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent encodes, capped at CPU count (default: 1)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Script entry point."""
    args = parse_arguments(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    console.print("\n[bold]Corpus Converter[/] (AVIF + WebP)\n")

    try:
        config = TranscodeConfig.create(
            project_dir=args.project_dir,
            config_file=args.config,
            batch_size=args.batch_size,
            max_workers=args.workers,
        )
        validate_environment(config)

        console.print(
            f"Settings: AVIF q{config.avif.quality} s{config.avif.speed}, "
            f"WebP q{config.webp.quality} m{config.webp.method}"
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[eta]}"),
            console=console,
        ) as progress:
            task = progress.add_task("Converting images...", total=None, eta="")

            def on_progress(stats: RunStatistics) -> None:
                progress.update(
                    task,
                    total=stats.total,
                    completed=stats.processed,
                    eta=stats.eta_label,
                )

            pipeline = ConversionPipeline.from_config(config, on_progress=on_progress)
            console.print(
                f"Batch size: {config.batch_size} file(s), workers: {pipeline.worker_count}\n"
            )
            report = pipeline.run()

        if report.total == 0:
            console.print(f"[yellow]No image files found in {config.content_dir}[/]")
            return

        if report.results:
            print_summary(report.results)

        console.print(
            f"\n[bold green]Done![/] {report.successful} succeeded, "
            f"[red]{report.failed}[/] failed "
            f"({report.encoded} encoded, {report.already_converted} already converted, "
            f"{report.skipped} resumed from checkpoint) in {round(report.elapsed)}s."
        )
        if report.errored:
            console.print(f"[yellow]{report.errored} file(s) raised unexpected errors; see log.[/]")

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/] (progress saved up to the last batch)")
        sys.exit(130)
    except (ConfigError, ValidationError) as e:
        console.print(f"\n[red]Configuration error:[/] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
