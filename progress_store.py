#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Progress Store

Durable checkpoint of a conversion run, so an interrupted run resumes where
it left off. The checkpoint is rewritten atomically after every batch and
removed once the corpus is fully processed.

Checkpoint shape:

    {
      "timestamp": "...",
      "processedCount": 120,
      "totalCount": 5000,
      "results": [<ConversionResult>, ...],
      "processedFiles": ["/abs/path/contents/a.png", ...]
    }

A checkpoint that cannot be read or does not match this shape is treated as
absent: the run starts fresh instead of failing.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Self

from conversion_results import (
    ConversionResult,
    ResultsFormatError,
    utc_timestamp,
    write_json_atomic,
)

__all__: Final[list[str]] = [
    "CheckpointFormatError",
    "ProgressCheckpoint",
    "ProgressStore",
]

logger = logging.getLogger(__name__)


class CheckpointFormatError(ValueError):
    """Raised when a checkpoint document does not match the expected schema."""


@dataclass(slots=True, kw_only=True)
class ProgressCheckpoint:
    """Snapshot of run progress: what is done and what it produced."""

    timestamp: str = field(default_factory=utc_timestamp)
    processed_count: int = 0
    total_count: int = 0
    results: list[ConversionResult] = field(default_factory=list)
    processed_files: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.processed_files and not self.results

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "processedCount": self.processed_count,
            "totalCount": self.total_count,
            "results": [result.to_dict() for result in self.results],
            "processedFiles": sorted(self.processed_files),
        }

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        """Parse and validate a checkpoint document.

        Raises:
            CheckpointFormatError: On any missing field or wrong type.
        """
        if not isinstance(data, Mapping):
            raise CheckpointFormatError("checkpoint must be a JSON object")

        processed = data.get("processedFiles", [])
        if not isinstance(processed, list) or not all(isinstance(p, str) for p in processed):
            raise CheckpointFormatError("'processedFiles' must be a list of paths")

        raw_results = data.get("results", [])
        if not isinstance(raw_results, list):
            raise CheckpointFormatError("'results' must be a list")
        try:
            results = [ConversionResult.from_dict(entry) for entry in raw_results]
        except ResultsFormatError as e:
            raise CheckpointFormatError(f"invalid result entry: {e}") from e

        counts: dict[str, int] = {}
        for key in ("processedCount", "totalCount"):
            value = data.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int):
                raise CheckpointFormatError(f"'{key}' must be an integer")
            counts[key] = value

        timestamp = data.get("timestamp", "")
        if not isinstance(timestamp, str):
            raise CheckpointFormatError("'timestamp' must be a string")

        return cls(
            timestamp=timestamp,
            processed_count=counts["processedCount"],
            total_count=counts["totalCount"],
            results=results,
            processed_files=set(processed),
        )


@dataclass(slots=True, kw_only=True)
class ProgressStore:
    """Loads, saves and clears the checkpoint file."""

    path: Path
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def load(self) -> ProgressCheckpoint:
        """Read the checkpoint; any problem yields an empty one."""
        if not self.path.exists():
            return ProgressCheckpoint()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            checkpoint = ProgressCheckpoint.from_dict(data)
        except (OSError, json.JSONDecodeError, CheckpointFormatError) as e:
            logger.warning(
                "Could not load progress file %s, starting fresh: %s", self.path, e
            )
            return ProgressCheckpoint()

        logger.info(
            "Loaded previous progress: %d file(s) processed", len(checkpoint.processed_files)
        )
        return checkpoint

    def save(self, checkpoint: ProgressCheckpoint) -> bool:
        """Atomically overwrite the checkpoint. Returns False if the write failed."""
        checkpoint.timestamp = utc_timestamp()
        payload = checkpoint.to_dict()
        with self._lock:
            try:
                write_json_atomic(self.path, payload)
            except OSError as e:
                logger.error("Failed to save progress to %s: %s", self.path, e)
                return False
        return True

    def clear(self) -> None:
        """Remove the checkpoint: nothing left to resume."""
        with self._lock:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as e:
                logger.error("Failed to remove progress file %s: %s", self.path, e)
                return
        logger.info("Cleaned up progress file")
