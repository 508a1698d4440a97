#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Transcode Configuration

A single immutable configuration object, built once at startup and handed
to every component. Defaults come from the CONFIGURATION block below; an
optional JSON file (``transcode.json`` in the project directory) overrides
them using the same camelCase keys the results artifact snapshot uses.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, ClassVar, Final, Self

__all__: Final[list[str]] = [
    "AvifSettings",
    "ConfigError",
    "OUTPUT_FORMATS",
    "TranscodeConfig",
    "WebpSettings",
]

# ╔══════════════════════════════════════════════════════════════════╗
# ║                        CONFIGURATION                              ║
# ╠══════════════════════════════════════════════════════════════════╣
# ║  Defaults used when no transcode.json is present                 ║
# ╚══════════════════════════════════════════════════════════════════╝

SUPPORTED_FORMATS: tuple[str, ...] = ("jpg", "jpeg", "png")

# avifenc: quality 0-100 (higher = better), speed 0-10 (lower = slower+better)
AVIF_QUALITY: int = 50
AVIF_SPEED: int = 6

# cwebp: quality 0-100, method 0-6 (higher = slower+smaller), metadata to keep
WEBP_QUALITY: int = 80
WEBP_METHOD: int = 6
WEBP_METADATA: str = "all"

BATCH_SIZE: int = 50  # Files per checkpoint
# Publish intermediate results every N batches that produced results;
# batches made up only of files finished in an earlier run do not count
SNAPSHOT_EVERY: int = 2
MAX_WORKERS: int = 1  # Concurrent encodes (clamped to CPU count)

AVIFENC: str = "avifenc"
CWEBP: str = "cwebp"

# ═══════════════════════════════════════════════════════════════════
#                        END CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

CONFIG_FILENAME: Final[str] = "transcode.json"
PROGRESS_FILENAME: Final[str] = "progress.json"
RESULTS_FILENAME: Final[str] = "results.json"

# Order matters: results and summaries list formats in this order
OUTPUT_FORMATS: Final[tuple[str, ...]] = ("avif", "webp")


class ConfigError(Exception):
    """Raised when configuration is missing required values."""


@dataclass(frozen=True, slots=True, kw_only=True)
class AvifSettings:
    """avifenc parameters, passed through verbatim."""

    quality: Any
    speed: Any

    REQUIRED_KEYS: ClassVar[tuple[str, ...]] = ("quality", "speed")

    def snapshot(self) -> dict[str, Any]:
        return {"quality": self.quality, "speed": self.speed}


@dataclass(frozen=True, slots=True, kw_only=True)
class WebpSettings:
    """cwebp parameters, passed through verbatim."""

    quality: Any
    method: Any
    metadata: Any

    REQUIRED_KEYS: ClassVar[tuple[str, ...]] = ("quality", "method", "metadata")

    def snapshot(self) -> dict[str, Any]:
        return {
            "quality": self.quality,
            "method": self.method,
            "metadata": self.metadata,
        }


def _require(section: Mapping[str, Any], keys: tuple[str, ...], where: str) -> None:
    """Presence-only validation: every key must exist, values are not checked."""
    missing = [key for key in keys if key not in section]
    if missing:
        raise ConfigError(f"{where} is missing required key(s): {', '.join(missing)}")


def _resolve_dir(project_dir: Path, value: str | Path | None, default: str) -> Path:
    path = Path(value) if value is not None else Path(default)
    return path if path.is_absolute() else project_dir / path


@dataclass(frozen=True, slots=True, kw_only=True)
class TranscodeConfig:
    """Everything a conversion run needs to know, fixed for its lifetime."""

    project_dir: Path
    content_dir: Path
    avif_dir: Path
    webp_dir: Path
    supported_formats: tuple[str, ...]
    avif: AvifSettings
    webp: WebpSettings
    batch_size: int = BATCH_SIZE
    snapshot_every: int = SNAPSHOT_EVERY
    max_workers: int = MAX_WORKERS
    avifenc: str = AVIFENC
    cwebp: str = CWEBP

    def __post_init__(self) -> None:
        for name in ("batch_size", "snapshot_every", "max_workers"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be an integer >= 1, got {value!r}")
        if not self.supported_formats:
            raise ConfigError("supportedFormats must list at least one extension")

    @property
    def progress_file(self) -> Path:
        return self.project_dir / PROGRESS_FILENAME

    @property
    def results_file(self) -> Path:
        return self.project_dir / RESULTS_FILENAME

    @property
    def sample_dir(self) -> Path:
        return self.project_dir / "contents_sample"

    def output_dir(self, fmt: str) -> Path:
        """Output root for one target format."""
        match fmt:
            case "avif":
                return self.avif_dir
            case "webp":
                return self.webp_dir
            case _:
                raise ValueError(f"Unknown output format: {fmt!r}")

    def output_dirs(self) -> dict[str, Path]:
        return {fmt: self.output_dir(fmt) for fmt in OUTPUT_FORMATS}

    def snapshot(self) -> dict[str, Any]:
        """Static config snapshot embedded in the results artifact."""
        return {
            "supportedFormats": list(self.supported_formats),
            "avif": self.avif.snapshot(),
            "webp": self.webp.snapshot(),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, project_dir: Path) -> Self:
        """Build config from a parsed transcode.json document.

        Raises:
            ConfigError: If a settings group lacks a required key.
        """
        project_dir = project_dir.resolve()

        avif_data = data.get("avif", {"quality": AVIF_QUALITY, "speed": AVIF_SPEED})
        webp_data = data.get(
            "webp",
            {"quality": WEBP_QUALITY, "method": WEBP_METHOD, "metadata": WEBP_METADATA},
        )
        if not isinstance(avif_data, Mapping) or not isinstance(webp_data, Mapping):
            raise ConfigError("'avif' and 'webp' must be objects")
        _require(avif_data, AvifSettings.REQUIRED_KEYS, "avif")
        _require(webp_data, WebpSettings.REQUIRED_KEYS, "webp")

        formats = data.get("supportedFormats", SUPPORTED_FORMATS)
        if isinstance(formats, str) or not isinstance(formats, (list, tuple)):
            raise ConfigError("supportedFormats must be a list of extensions")

        try:
            return cls(
                project_dir=project_dir,
                content_dir=_resolve_dir(project_dir, data.get("contentDir"), "contents"),
                avif_dir=_resolve_dir(project_dir, data.get("avifDir"), "avif"),
                webp_dir=_resolve_dir(project_dir, data.get("webpDir"), "webp"),
                supported_formats=tuple(str(ext).lstrip(".") for ext in formats),
                avif=AvifSettings(
                    quality=avif_data["quality"], speed=avif_data["speed"]
                ),
                webp=WebpSettings(
                    quality=webp_data["quality"],
                    method=webp_data["method"],
                    metadata=webp_data["metadata"],
                ),
                batch_size=data.get("batchSize", BATCH_SIZE),
                snapshot_every=data.get("snapshotEvery", SNAPSHOT_EVERY),
                max_workers=data.get("maxWorkers", MAX_WORKERS),
                avifenc=str(data.get("avifenc", AVIFENC)),
                cwebp=str(data.get("cwebp", CWEBP)),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc

    @classmethod
    def from_file(cls, path: Path, *, project_dir: Path | None = None) -> Self:
        """Load config from a JSON file; relative dirs resolve against project_dir.

        Raises:
            ConfigError: If the file is unreadable, not JSON, or incomplete.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

        return cls.from_mapping(data, project_dir=project_dir or path.parent)

    @classmethod
    def create(
        cls,
        *,
        project_dir: Path | None = None,
        config_file: Path | None = None,
        batch_size: int | None = None,
        max_workers: int | None = None,
    ) -> Self:
        """Create config from arguments, falling back to transcode.json then defaults."""
        project_dir = (project_dir or Path.cwd()).resolve()

        if config_file is None and (project_dir / CONFIG_FILENAME).is_file():
            config_file = project_dir / CONFIG_FILENAME

        if config_file is not None:
            config = cls.from_file(config_file, project_dir=project_dir)
        else:
            config = cls.from_mapping({}, project_dir=project_dir)

        overrides: dict[str, int] = {}
        if batch_size is not None:
            overrides["batch_size"] = batch_size
        if max_workers is not None:
            overrides["max_workers"] = max_workers

        return replace(config, **overrides) if overrides else config
