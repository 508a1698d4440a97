#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Corpus Scanner

Recursively enumerates source images under the content root whose extension
matches the configured list, case-insensitively. Hidden files and anything
inside hidden directories are ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Final

__all__: Final[list[str]] = ["scan_corpus"]

logger = logging.getLogger(__name__)


def _is_hidden(path: Path, root: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(root).parts)


def scan_corpus(content_dir: Path, extensions: Sequence[str]) -> tuple[Path, ...]:
    """Find every input image under content_dir.

    Matches are grouped by extension in configuration order; within one
    extension they come in filesystem enumeration order. A file matched by
    two spellings of the same extension is listed once.

    Raises:
        FileNotFoundError: If content_dir does not exist.
        NotADirectoryError: If content_dir is not a directory.
    """
    if not content_dir.exists():
        raise FileNotFoundError(f"Content directory does not exist: {content_dir}")
    if not content_dir.is_dir():
        raise NotADirectoryError(f"Content path is not a directory: {content_dir}")

    found: dict[Path, None] = {}
    for ext in extensions:
        pattern = f"**/*.{ext.lstrip('.')}"
        matches = [
            path
            for path in content_dir.glob(pattern, case_sensitive=False)
            if path.is_file() and not _is_hidden(path, content_dir)
        ]
        logger.debug("Pattern %s matched %d file(s)", pattern, len(matches))
        found.update(dict.fromkeys(matches))

    return tuple(found)
