#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Conversion Results

Per-file outcome records, the results artifact consumed by the browser
viewer, and the publisher that writes (or rebuilds) it.

Results artifact shape (field names are a contract with the viewer):

    {
      "timestamp": "2025-01-01T00:00:00.000Z",
      "config": {"supportedFormats": [...], "avif": {...}, "webp": {...}},
      "results": [
        {
          "original": {"path", "size", "sizeFormatted"},
          "avif": {"path", "size", "sizeFormatted", "compressionRatio", "success"},
          "webp": {"path", "size", "sizeFormatted", "compressionRatio", "success"}
        }
      ]
    }
"""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, Self

import numpy as np

from corpus_paths import PathResolver
from corpus_scan import scan_corpus
from transcode_config import OUTPUT_FORMATS, TranscodeConfig

__all__: Final[list[str]] = [
    "ConversionResult",
    "FormatOutcome",
    "FormatSummary",
    "OriginalInfo",
    "ResultsFormatError",
    "ResultsPublisher",
    "compression_ratio",
    "file_size",
    "format_file_size",
    "load_results",
    "summarize_results",
    "utc_timestamp",
    "write_json_atomic",
]

logger = logging.getLogger(__name__)

_SIZE_UNITS: Final[tuple[str, ...]] = ("Bytes", "KB", "MB", "GB", "TB")


class ResultsFormatError(ValueError):
    """Raised when a stored result does not match the expected schema."""


# ═══════════════════════════════════════════════════════════════════
#                        HELPERS
# ═══════════════════════════════════════════════════════════════════


def compression_ratio(original_size: int, compressed_size: int) -> int:
    """Percentage saved, rounded half-up; negative when the output grew."""
    if original_size == 0:
        return 0
    return math.floor((1 - compressed_size / original_size) * 100 + 0.5)


def format_file_size(size: int) -> str:
    """Human-readable size in binary units, e.g. '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    exponent = min(int(math.log(size) / math.log(1024)), len(_SIZE_UNITS) - 1)
    value = math.floor(size / 1024**exponent * 100 + 0.5) / 100
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def file_size(path: Path) -> int:
    """Size in bytes, 0 if the file cannot be stat'ed."""
    try:
        return path.stat().st_size
    except OSError:
        return 0


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and 'Z' suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a sibling temp file, fsync, then rename over path.

    Readers see either the old document or the new one, never a partial
    write.

    Raises:
        OSError: If the temp file cannot be written or renamed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def _expect(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...], where: str) -> Any:
    if key not in data:
        raise ResultsFormatError(f"{where}: missing '{key}'")
    value = data[key]
    # bool is an int subclass; sizes must not accept True/False
    if kind is int and isinstance(value, bool):
        raise ResultsFormatError(f"{where}: '{key}' must be int, got bool")
    if not isinstance(value, kind):
        raise ResultsFormatError(
            f"{where}: '{key}' has type {type(value).__name__}"
        )
    return value


# ═══════════════════════════════════════════════════════════════════
#                        DATA MODELS
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, kw_only=True)
class OriginalInfo:
    """Source image as recorded in a result."""

    path: str  # Relative to the content root
    size: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "sizeFormatted": format_file_size(self.size),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            path=_expect(data, "path", str, "original"),
            size=_expect(data, "size", int, "original"),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class FormatOutcome:
    """Result of encoding one input into one target format."""

    path: str  # Relative to the project directory
    size: int
    compression_ratio: int
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "sizeFormatted": format_file_size(self.size),
            "compressionRatio": self.compression_ratio,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], fmt: str) -> Self:
        return cls(
            path=_expect(data, "path", str, fmt),
            size=_expect(data, "size", int, fmt),
            compression_ratio=_expect(data, "compressionRatio", int, fmt),
            success=_expect(data, "success", bool, fmt),
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class ConversionResult:
    """Immutable outcome for one input file across all target formats."""

    original: OriginalInfo
    outputs: Mapping[str, FormatOutcome] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(self.outputs[fmt].success for fmt in OUTPUT_FORMATS)

    def outcome(self, fmt: str) -> FormatOutcome:
        return self.outputs[fmt]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"original": self.original.to_dict()}
        for fmt in OUTPUT_FORMATS:
            data[fmt] = self.outputs[fmt].to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        """Parse one stored result.

        Raises:
            ResultsFormatError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, Mapping):
            raise ResultsFormatError("result entry must be an object")
        original = OriginalInfo.from_dict(_expect(data, "original", Mapping, "result"))
        outputs = {
            fmt: FormatOutcome.from_dict(_expect(data, fmt, Mapping, "result"), fmt)
            for fmt in OUTPUT_FORMATS
        }
        return cls(original=original, outputs=outputs)


@dataclass(frozen=True, slots=True, kw_only=True)
class FormatSummary:
    """Aggregate statistics for one format over successful encodes."""

    fmt: str
    count: int
    failed: int
    original_bytes: int
    output_bytes: int
    mean_ratio: float
    median_ratio: float

    @property
    def overall_ratio(self) -> int:
        return compression_ratio(self.original_bytes, self.output_bytes)


def summarize_results(results: Sequence[ConversionResult]) -> list[FormatSummary]:
    """Per-format totals and compression statistics."""
    summaries: list[FormatSummary] = []
    for fmt in OUTPUT_FORMATS:
        ok = [r for r in results if r.outputs[fmt].success]
        ratios = np.array([r.outputs[fmt].compression_ratio for r in ok], dtype=np.float64)
        summaries.append(
            FormatSummary(
                fmt=fmt,
                count=len(ok),
                failed=len(results) - len(ok),
                original_bytes=sum(r.original.size for r in ok),
                output_bytes=sum(r.outputs[fmt].size for r in ok),
                mean_ratio=float(ratios.mean()) if ratios.size else 0.0,
                median_ratio=float(np.median(ratios)) if ratios.size else 0.0,
            )
        )
    return summaries


def load_results(path: Path) -> list[ConversionResult]:
    """Read a results artifact back into result objects.

    Raises:
        OSError: If the file cannot be read.
        ResultsFormatError: If the document does not match the schema.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ResultsFormatError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        raise ResultsFormatError(f"{path} has no 'results' list")
    return [ConversionResult.from_dict(entry) for entry in data["results"]]


# ═══════════════════════════════════════════════════════════════════
#                        PUBLISHER
# ═══════════════════════════════════════════════════════════════════


@dataclass(slots=True, kw_only=True)
class ResultsPublisher:
    """Builds ConversionResults from disk and writes the results artifact."""

    config: TranscodeConfig
    resolver: PathResolver
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    @property
    def results_file(self) -> Path:
        return self.config.results_file

    def build_result(self, input_path: Path, encoded: Mapping[str, bool]) -> ConversionResult:
        """Probe sizes on disk and assemble a result.

        A format counts as successful only if the encoder reported success
        and its output actually exists; failures record size 0, ratio 0.
        """
        original_size = file_size(input_path)
        outputs: dict[str, FormatOutcome] = {}
        for fmt, output_path in self.resolver.output_paths(input_path).items():
            success = bool(encoded.get(fmt)) and output_path.is_file()
            size = file_size(output_path) if success else 0
            outputs[fmt] = FormatOutcome(
                path=self.resolver.project_relative(output_path),
                size=size,
                compression_ratio=compression_ratio(original_size, size) if success else 0,
                success=success,
            )
        return ConversionResult(
            original=OriginalInfo(
                path=self.resolver.display_path(input_path), size=original_size
            ),
            outputs=outputs,
        )

    def result_from_disk(self, input_path: Path) -> ConversionResult:
        """Result for an input whose outputs already exist (success assumed)."""
        return self.build_result(input_path, dict.fromkeys(OUTPUT_FORMATS, True))

    def regenerate_from_disk(self, files: Iterable[Path] | None = None) -> list[ConversionResult]:
        """Synthesize results for every input whose outputs all exist.

        Re-scans the corpus unless files is given. No encoder is invoked.
        """
        if files is None:
            files = scan_corpus(self.config.content_dir, self.config.supported_formats)

        results = [
            self.result_from_disk(path)
            for path in files
            if self.resolver.output_paths(path).all_exist()
        ]
        logger.info("Rebuilt %d result(s) from existing outputs", len(results))
        return results

    def publish(self, results: Sequence[ConversionResult]) -> Path:
        """Write the full results artifact atomically.

        Raises:
            OSError: If the artifact cannot be written.
        """
        payload = {
            "timestamp": utc_timestamp(),
            "config": self.config.snapshot(),
            "results": [result.to_dict() for result in results],
        }
        with self._lock:
            write_json_atomic(self.results_file, payload)
        logger.info("Saved %d result(s) to %s", len(results), self.results_file.name)
        return self.results_file
