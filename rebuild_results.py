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
Results Rebuilder

Regenerates results.json from the AVIF/WebP files already on disk, without
running any encoder. Every source image whose two outputs both exist gets a
result built from the current file sizes; the rest are left out.

Usage:
    ./rebuild_results.py
    ./rebuild_results.py --project-dir ~/site
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from conversion_results import ResultsPublisher
from convert_corpus import (
    ValidationError,
    add_common_arguments,
    configure_logging,
    console,
    print_summary,
    validate_environment,
)
from corpus_paths import PathResolver
from transcode_config import ConfigError, TranscodeConfig


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Rebuild results.json from existing outputs (no re-encoding).",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Script entry point."""
    args = parse_arguments(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet)

    console.print("\n[bold]Results Rebuilder[/] (existing outputs only)\n")

    try:
        config = TranscodeConfig.create(project_dir=args.project_dir, config_file=args.config)
        validate_environment(config, check_encoders=False)

        publisher = ResultsPublisher(config=config, resolver=PathResolver.from_config(config))
        results = publisher.regenerate_from_disk()
        results_file = publisher.publish(results)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/]")
        sys.exit(130)
    except (ConfigError, ValidationError) as e:
        console.print(f"\n[red]Configuration error:[/] {e}")
        sys.exit(1)
    except OSError as e:
        console.print(f"\n[red]Could not write results:[/] {e}")
        sys.exit(1)

    if results:
        print_summary(results)
    console.print(f"\n[bold green]Done![/] Rebuilt {len(results)} result(s) in {results_file.name}.")


if __name__ == "__main__":
    main()
