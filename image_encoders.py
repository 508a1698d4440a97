#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Image Encoder Adapter

Shells out to the external encoders, one process per input and format:

    avifenc -q <quality> -s <speed> <input> <output>
    cwebp -metadata <metadata> -q <quality> -m <method> <input> -o <output>

Exit code 0 means success; anything else (including a missing binary or an
I/O error while preparing the output directory) is reported as False and
logged, and whatever partial output the encoder left behind is removed. No
I/O or process error raises past encode(); an unknown format name does.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Protocol

from transcode_config import OUTPUT_FORMATS, TranscodeConfig

__all__: Final[list[str]] = [
    "Encoder",
    "EncoderAdapter",
    "build_avifenc_command",
    "build_cwebp_command",
    "discard_output",
    "find_missing_encoders",
]

logger = logging.getLogger(__name__)

type CommandRunner = Callable[..., subprocess.CompletedProcess[str]]


class Encoder(Protocol):
    """Anything that can turn one input into one output of a given format."""

    def encode(self, fmt: str, input_path: Path, output_path: Path) -> bool: ...


def build_avifenc_command(config: TranscodeConfig, input_path: Path, output_path: Path) -> list[str]:
    """Build avifenc argument list from static AVIF settings."""
    return [
        config.avifenc,
        "-q",
        str(config.avif.quality),
        "-s",
        str(config.avif.speed),
        str(input_path),
        str(output_path),
    ]


def build_cwebp_command(config: TranscodeConfig, input_path: Path, output_path: Path) -> list[str]:
    """Build cwebp argument list from static WebP settings."""
    return [
        config.cwebp,
        "-metadata",
        str(config.webp.metadata),
        "-q",
        str(config.webp.quality),
        "-m",
        str(config.webp.method),
        str(input_path),
        "-o",
        str(output_path),
    ]


_COMMAND_BUILDERS: Final[dict[str, Callable[[TranscodeConfig, Path, Path], list[str]]]] = {
    "avif": build_avifenc_command,
    "webp": build_cwebp_command,
}


def find_missing_encoders(config: TranscodeConfig) -> list[str]:
    """Return encoder binaries that cannot be found on PATH."""
    binaries = (config.avifenc, config.cwebp)
    return [binary for binary in binaries if shutil.which(binary) is None]


def discard_output(output_path: Path) -> None:
    """Remove an untrusted output left by a failed encode."""
    try:
        output_path.unlink(missing_ok=True)
    except OSError as e:
        logger.error("Could not remove partial output %s: %s", output_path, e)


def _tail(output: str | None, lines: int = 5) -> str:
    if not output:
        return "(no output)"
    return "\n".join(output.strip().splitlines()[-lines:])


@dataclass(slots=True, kw_only=True)
class EncoderAdapter:
    """Runs avifenc / cwebp for one input→output pair at a time."""

    config: TranscodeConfig
    runner: CommandRunner = field(default=subprocess.run, repr=False)

    def command_for(self, fmt: str, input_path: Path, output_path: Path) -> list[str]:
        try:
            builder = _COMMAND_BUILDERS[fmt]
        except KeyError:
            raise ValueError(
                f"Unknown output format {fmt!r}, expected one of {', '.join(OUTPUT_FORMATS)}"
            ) from None
        return builder(self.config, input_path, output_path)

    def encode(self, fmt: str, input_path: Path, output_path: Path) -> bool:
        """Encode input_path to output_path; True only on exit code 0.

        After a False return output_path does not exist unless it could not
        be removed.
        """
        cmd = self.command_for(fmt, input_path, output_path)

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Running: %s", _quote(cmd))
            result = self.runner(cmd, capture_output=True, text=True, check=False)
        except (OSError, subprocess.SubprocessError) as e:
            logger.error("%s encoding failed for %s: %s", fmt.upper(), input_path, e)
            discard_output(output_path)
            return False

        if result.returncode != 0:
            logger.error(
                "%s encoding failed for %s (exit code %d)",
                fmt.upper(),
                input_path,
                result.returncode,
            )
            logger.debug("%s stderr:\n%s", cmd[0], _tail(result.stderr))
            discard_output(output_path)
            return False

        return True


def _quote(cmd: Sequence[str]) -> str:
    return " ".join(f'"{part}"' if " " in part else part for part in cmd)
