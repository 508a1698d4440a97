#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Corpus Path Resolver

Maps a source image under the content root to its output locations:

    contents/2024/trip/img001.png → avif/2024/trip/img001.avif
                                  → webp/2024/trip/img001.webp

Pure functions of the configured roots; nothing here touches the disk.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Self

from transcode_config import OUTPUT_FORMATS, TranscodeConfig

__all__: Final[list[str]] = [
    "OutputPaths",
    "PathOutsideRoot",
    "PathResolver",
]


class PathOutsideRoot(ValueError):
    """Raised when an input file does not live under the content root."""


@dataclass(frozen=True, slots=True)
class OutputPaths:
    """Output location of one input, per target format."""

    avif: Path
    webp: Path

    def for_format(self, fmt: str) -> Path:
        match fmt:
            case "avif":
                return self.avif
            case "webp":
                return self.webp
            case _:
                raise ValueError(f"Unknown output format: {fmt!r}")

    def items(self) -> Iterator[tuple[str, Path]]:
        for fmt in OUTPUT_FORMATS:
            yield fmt, self.for_format(fmt)

    def all_exist(self) -> bool:
        return all(path.exists() for _, path in self.items())


@dataclass(frozen=True, slots=True, kw_only=True)
class PathResolver:
    """Derives output and display paths from the configured roots."""

    content_dir: Path
    output_dirs: Mapping[str, Path]
    project_dir: Path

    @classmethod
    def from_config(cls, config: TranscodeConfig) -> Self:
        return cls(
            content_dir=config.content_dir,
            output_dirs=config.output_dirs(),
            project_dir=config.project_dir,
        )

    def relative_path(self, input_path: Path) -> Path:
        """Strip the content root from an input path.

        Raises:
            PathOutsideRoot: If input_path is not under the content root.
        """
        try:
            return input_path.relative_to(self.content_dir)
        except ValueError:
            raise PathOutsideRoot(
                f"{input_path} is not under content root {self.content_dir}"
            ) from None

    def output_paths(self, input_path: Path) -> OutputPaths:
        """Swap root and extension per format, keeping subdirectories."""
        relative = self.relative_path(input_path)
        return OutputPaths(
            avif=self.output_dirs["avif"] / relative.with_suffix(".avif"),
            webp=self.output_dirs["webp"] / relative.with_suffix(".webp"),
        )

    def display_path(self, input_path: Path) -> str:
        """Content-relative posix path, as shown to the results viewer."""
        return self.relative_path(input_path).as_posix()

    def project_relative(self, path: Path) -> str:
        """Posix path relative to the project directory (may climb with '..')."""
        return Path(os.path.relpath(path, self.project_dir)).as_posix()
