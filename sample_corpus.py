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
Corpus Sampler

Analyzes the content directory and optionally thins it into
contents_sample/ for a quick trial conversion before committing to the
full corpus.

Methods:
    0  Analyze only (default)
    1  Random 10%
    2  Random 1%
    3  Size filter, 50KB - 2MB
    4  Per directory, at most 50 files
    5  Per directory, at most 10 files

Usage:
    ./sample_corpus.py 2            # Copy a random 1% into contents_sample/
    ./sample_corpus.py 4 --seed 7   # Reproducible per-directory sample
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Literal

import numpy as np

from rich.table import Table

from conversion_results import file_size, format_file_size
from convert_corpus import (
    ValidationError,
    add_common_arguments,
    configure_logging,
    console,
    validate_environment,
)
from corpus_paths import PathResolver
from corpus_scan import scan_corpus
from transcode_config import ConfigError, TranscodeConfig

__all__: Final[list[str]] = [
    "CorpusAnalysis",
    "FileInfo",
    "analyze",
    "copy_to_sample",
    "directory_sample",
    "random_sample",
    "size_sample",
]

logger = logging.getLogger(__name__)

ROOT_GROUP: Final[str] = "root"
TOP_DIRECTORIES: Final[int] = 10
COPY_LOG_EVERY: Final[int] = 100

type CopyMethod = Literal["copy", "move"]


# ═══════════════════════════════════════════════════════════════════
#                        ANALYSIS
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class FileInfo:
    """One source image as seen by the sampler."""

    path: Path
    relative_path: Path
    size: int

    @property
    def extension(self) -> str:
        return self.path.suffix.lower()

    @property
    def directory(self) -> str:
        parent = self.relative_path.parent.as_posix()
        return ROOT_GROUP if parent == "." else parent


@dataclass(frozen=True, slots=True, kw_only=True)
class GroupStats:
    count: int
    size: int


@dataclass(frozen=True, slots=True, kw_only=True)
class CorpusAnalysis:
    """Totals plus per-directory and per-extension breakdowns."""

    files: tuple[FileInfo, ...]
    total_size: int
    by_directory: dict[str, GroupStats]
    by_extension: dict[str, GroupStats]

    def top_directories(self, limit: int = TOP_DIRECTORIES) -> list[tuple[str, GroupStats]]:
        ranked = sorted(self.by_directory.items(), key=lambda item: item[1].count, reverse=True)
        return ranked[:limit]


def _group(infos: Sequence[FileInfo], key: str) -> dict[str, GroupStats]:
    counts: dict[str, int] = defaultdict(int)
    sizes: dict[str, int] = defaultdict(int)
    for info in infos:
        name = getattr(info, key)
        counts[name] += 1
        sizes[name] += info.size
    return {name: GroupStats(count=counts[name], size=sizes[name]) for name in counts}


def analyze(files: Sequence[Path], resolver: PathResolver) -> CorpusAnalysis:
    """Collect sizes and group files by directory and extension."""
    infos = tuple(
        FileInfo(path=path, relative_path=resolver.relative_path(path), size=file_size(path))
        for path in files
    )
    sizes = np.array([info.size for info in infos], dtype=np.int64)
    return CorpusAnalysis(
        files=infos,
        total_size=int(sizes.sum()),
        by_directory=_group(infos, "directory"),
        by_extension=_group(infos, "extension"),
    )


# ═══════════════════════════════════════════════════════════════════
#                        SAMPLING
# ═══════════════════════════════════════════════════════════════════


def random_sample(
    files: Sequence[Path], percentage: float, rng: np.random.Generator
) -> list[Path]:
    """Pick floor(len * percentage / 100) files uniformly, without replacement."""
    count = int(len(files) * percentage / 100)
    if count <= 0:
        return []
    picked = rng.choice(len(files), size=count, replace=False)
    return [files[i] for i in sorted(picked)]


def size_sample(files: Sequence[Path], min_kb: int, max_kb: int) -> list[Path]:
    """Keep files whose size lies within [min_kb, max_kb] KiB, inclusive."""
    low, high = min_kb * 1024, max_kb * 1024
    return [path for path in files if low <= file_size(path) <= high]


def directory_sample(
    files: Sequence[Path],
    max_per_directory: int,
    resolver: PathResolver,
    rng: np.random.Generator,
) -> list[Path]:
    """At most max_per_directory random files from each source directory."""
    groups: dict[str, list[Path]] = defaultdict(list)
    for path in files:
        parent = resolver.relative_path(path).parent.as_posix()
        groups[ROOT_GROUP if parent == "." else parent].append(path)

    sampled: list[Path] = []
    for directory, members in groups.items():
        take = min(max_per_directory, len(members))
        picked = rng.choice(len(members), size=take, replace=False)
        sampled.extend(members[i] for i in sorted(picked))
        logger.debug("%s: %d → %d", directory, len(members), take)
    return sampled


def copy_to_sample(
    files: Sequence[Path],
    resolver: PathResolver,
    sample_dir: Path,
    method: CopyMethod = "copy",
) -> int:
    """Copy or move files into sample_dir, keeping their relative layout."""
    count = 0
    for path in files:
        target = sample_dir / resolver.relative_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if method == "copy":
            shutil.copy2(path, target)
        else:
            shutil.move(path, target)
        count += 1
        if count % COPY_LOG_EVERY == 0:
            logger.info("Processed %d/%d", count, len(files))
    return count


# ═══════════════════════════════════════════════════════════════════
#                        OUTPUT
# ═══════════════════════════════════════════════════════════════════


def print_analysis(analysis: CorpusAnalysis) -> None:
    """Render totals, top directories and extensions."""
    console.print(f"Total files: {len(analysis.files):,}")
    console.print(f"Total size: {format_file_size(analysis.total_size)}\n")

    table = Table(title=f"Top {TOP_DIRECTORIES} Directories")
    table.add_column("Directory", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    for name, stats in analysis.top_directories():
        table.add_row(name, f"{stats.count:,}", format_file_size(stats.size))
    console.print(table)

    table = Table(title="Extensions")
    table.add_column("Extension", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    ranked = sorted(analysis.by_extension.items(), key=lambda item: item[1].count, reverse=True)
    for name, stats in ranked:
        table.add_row(name or "(none)", f"{stats.count:,}", format_file_size(stats.size))
    console.print(table)


# ═══════════════════════════════════════════════════════════════════
#                        CLI
# ═══════════════════════════════════════════════════════════════════


METHODS: Final[dict[str, str]] = {
    "0": "Analyze only",
    "1": "Random 10%",
    "2": "Random 1%",
    "3": "Size filter (50KB - 2MB)",
    "4": "Per directory, max 50",
    "5": "Per directory, max 10",
}


def select_files(
    method: str,
    files: Sequence[Path],
    resolver: PathResolver,
    rng: np.random.Generator,
) -> list[Path]:
    """Apply one of the numbered sampling methods."""
    match method:
        case "1":
            return random_sample(files, 10, rng)
        case "2":
            return random_sample(files, 1, rng)
        case "3":
            return size_sample(files, 50, 2048)
        case "4":
            return directory_sample(files, 50, resolver, rng)
        case "5":
            return directory_sample(files, 10, resolver, rng)
        case _:
            return []


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Analyze the corpus and copy a sample into contents_sample/.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Methods:\n"
        + "\n".join(f"  {key}: {label}" for key, label in METHODS.items())
        + "\n\nExample:\n  %(prog)s 2   # Copy a random 1% sample",
    )
    parser.add_argument(
        "method",
        nargs="?",
        default="0",
        choices=sorted(METHODS),
        help="Sampling method number (default: 0, analyze only)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for reproducible samples",
    )
    parser.add_argument(
        "--move",
        action="store_true",
        help="Move files into the sample instead of copying",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Script entry point."""
    args = parse_arguments(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    console.print("\n[bold]Corpus Sampler[/]\n")

    try:
        config = TranscodeConfig.create(project_dir=args.project_dir, config_file=args.config)
        validate_environment(config, check_encoders=False)
        resolver = PathResolver.from_config(config)

        files = scan_corpus(config.content_dir, config.supported_formats)
        if not files:
            console.print(f"[yellow]No image files found in {config.content_dir}[/]")
            return

        print_analysis(analyze(files, resolver))

        if args.method == "0":
            console.print("\nAnalysis complete. No files were sampled.")
            return

        rng = np.random.default_rng(args.seed)
        selected = select_files(args.method, files, resolver, rng)
        console.print(
            f"\n{METHODS[args.method]}: selected {len(selected):,} of {len(files):,} file(s)"
        )
        if not selected:
            return

        method: CopyMethod = "move" if args.move else "copy"
        count = copy_to_sample(selected, resolver, config.sample_dir, method)
        console.print(f"[bold green]Done![/] {method.capitalize()} complete: {count:,} file(s)")

        console.print("\n[bold]Next steps:[/]")
        console.print(f"  1. Review {config.sample_dir}")
        console.print(
            f"  2. mv {config.content_dir} {config.content_dir}_original && "
            f"mv {config.sample_dir} {config.content_dir}"
        )

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        sys.exit(130)
    except (ConfigError, ValidationError) as e:
        console.print(f"\n[red]Configuration error:[/] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
