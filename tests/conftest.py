#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""Shared pytest configuration, marker assignment and corpus fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from transcode_config import TranscodeConfig


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Attach suite markers based on test file path."""
    del config
    for item in items:
        parts = set(Path(str(item.fspath)).parts)
        if "integration_tests" in parts:
            item.add_marker(pytest.mark.integration)
        elif "unit_tests" in parts:
            item.add_marker(pytest.mark.unit)


def write_image(root: Path, relative: str, size: int) -> Path:
    """Create a placeholder source image of exactly size bytes."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\0" * size)
    return path


@dataclass
class FakeEncoder:
    """Writes outputs of fixed sizes instead of running avifenc / cwebp."""

    sizes: Mapping[str, int] = field(default_factory=lambda: {"avif": 600, "webp": 800})
    fail_formats: set[str] = field(default_factory=set)
    interrupt_on_call: int | None = None
    calls: list[tuple[str, Path, Path]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def encode(self, fmt: str, input_path: Path, output_path: Path) -> bool:
        with self._lock:
            self.calls.append((fmt, input_path, output_path))
            if self.interrupt_on_call is not None and len(self.calls) == self.interrupt_on_call:
                raise KeyboardInterrupt
        if fmt in self.fail_formats:
            return False
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"\1" * self.sizes[fmt])
        return True

    def inputs(self) -> list[Path]:
        """Distinct inputs in first-call order."""
        return list(dict.fromkeys(call[1] for call in self.calls))


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Empty project directory with a contents/ root."""
    root = tmp_path.resolve()
    (root / "contents").mkdir()
    return root


@pytest.fixture
def make_config(project: Path) -> Callable[..., TranscodeConfig]:
    """Build a TranscodeConfig for the temporary project, with camelCase overrides."""

    def factory(**overrides: Any) -> TranscodeConfig:
        return TranscodeConfig.from_mapping(overrides, project_dir=project)

    return factory


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def add_image(project: Path) -> Callable[[str, int], Path]:
    """Create a source image under contents/ by relative path and size."""

    def factory(relative: str, size: int = 2000) -> Path:
        return write_image(project / "contents", relative, size)

    return factory
