#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""Integration tests for the resumable conversion pipeline."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import conversion_results
import convert_corpus
from conversion_results import load_results
from convert_corpus import ConversionPipeline, RunStatistics
from progress_store import ProgressCheckpoint, ProgressStore


def _artifact_without_timestamp(path: Path) -> dict:
    document = json.loads(path.read_text(encoding="utf-8"))
    document.pop("timestamp")
    return document


def _by_path(results) -> dict:
    return {r.original.path: r.to_dict() for r in results}


def test_end_to_end_single_file(make_config, add_image, fake_encoder) -> None:
    """A 2000 byte input with 600/800 byte outputs saves 70% and 60%."""
    config = make_config()
    add_image("a/x.png", 2000)

    report = ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    (result,) = load_results(config.results_file)
    assert result.original.path == "a/x.png"
    assert result.original.size == 2000
    assert (result.outcome("avif").size, result.outcome("avif").compression_ratio) == (600, 70)
    assert (result.outcome("webp").size, result.outcome("webp").compression_ratio) == (800, 60)
    assert result.succeeded
    assert (report.total, report.encoded, report.successful) == (1, 1, 1)
    assert report.results_file == config.results_file
    assert not config.progress_file.exists()


def test_rerun_is_idempotent_and_encodes_nothing(make_config, add_image, fake_encoder) -> None:
    """A second run republishes the same results without any encoder calls."""
    config = make_config(batchSize=2)
    for name in ("a.png", "b/c.jpg", "b/d.jpeg", "e.png"):
        add_image(name, 1500)

    ConversionPipeline.from_config(config, encoder=fake_encoder).run()
    first = _artifact_without_timestamp(config.results_file)

    rerun_encoder = type(fake_encoder)()
    report = ConversionPipeline.from_config(config, encoder=rerun_encoder).run()
    second = _artifact_without_timestamp(config.results_file)

    assert rerun_encoder.calls == []
    assert report.already_converted == 4
    assert second == first
    assert len(second["results"]) == 4


def test_existing_outputs_skip_the_encoder(make_config, add_image, fake_encoder) -> None:
    """Inputs with both outputs present are never handed to the encoder."""
    config = make_config()
    done = add_image("done.png", 1000)
    todo = add_image("todo.png", 1000)
    for fmt, suffix in (("avif", ".avif"), ("webp", ".webp")):
        target = config.output_dir(fmt) / f"done{suffix}"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"arbitrary")

    report = ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    assert fake_encoder.inputs() == [todo]
    assert report.already_converted == 1
    results = _by_path(report.results)
    assert results["done.png"]["avif"]["size"] == len(b"arbitrary")
    assert done.exists()


def test_one_format_failing_does_not_block_the_other(
    make_config, add_image, fake_encoder
) -> None:
    """avif fails, webp succeeds, and the file is not retried in the run."""
    config = make_config()
    source = add_image("x.png", 1000)
    fake_encoder.fail_formats = {"avif"}

    report = ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    (result,) = report.results
    assert result.outcome("avif").success is False
    assert result.outcome("avif").size == 0
    assert result.outcome("webp").success is True
    assert [call[0] for call in fake_encoder.calls] == ["avif", "webp"]
    assert fake_encoder.inputs() == [source]
    assert report.failed == 1


def test_encoder_exception_is_recorded_as_failure(make_config, add_image) -> None:
    """An exception from one encoder call becomes success=false for that format."""

    class ExplodingEncoder:
        def encode(self, fmt: str, input_path: Path, output_path: Path) -> bool:
            if fmt == "webp":
                raise RuntimeError("encoder crashed")
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(b"\1" * 10)
            return True

    config = make_config()
    add_image("x.png", 100)

    report = ConversionPipeline.from_config(config, encoder=ExplodingEncoder()).run()

    (result,) = report.results
    assert result.outcome("avif").success
    assert not result.outcome("webp").success
    assert report.errored == 0


def test_crash_resumes_from_last_checkpoint(make_config, add_image, fake_encoder) -> None:
    """Interrupting batch 3 of 3 keeps batches 1-2; the restart handles the rest."""
    config = make_config(batchSize=2)
    for i in range(5):
        add_image(f"img{i}.png", 1000)
    # Two encoder calls per file: call 9 is the first call for the fifth file
    fake_encoder.interrupt_on_call = 9

    with pytest.raises(KeyboardInterrupt):
        ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    checkpoint = ProgressStore(path=config.progress_file).load()
    finished = fake_encoder.inputs()[:4]
    assert checkpoint.processed_files == {str(p) for p in finished}
    assert len(checkpoint.results) == 4

    resumed_encoder = type(fake_encoder)()
    report = ConversionPipeline.from_config(config, encoder=resumed_encoder).run()

    assert report.skipped == 4
    assert report.encoded == 1
    assert resumed_encoder.inputs() == [fake_encoder.inputs()[4]]
    assert len(load_results(config.results_file)) == 5
    assert not config.progress_file.exists()


def test_checkpoint_without_results_regenerates_from_disk(
    make_config, add_image, fake_encoder
) -> None:
    """All files checkpointed but no stored results: rebuild them from outputs."""
    config = make_config()
    files = [add_image(f"{i}.png", 1000) for i in range(3)]
    ConversionPipeline.from_config(config, encoder=fake_encoder).run()
    config.results_file.unlink()
    ProgressStore(path=config.progress_file).save(
        ProgressCheckpoint(processed_files={str(p) for p in files}, total_count=3)
    )

    rerun_encoder = type(fake_encoder)()
    report = ConversionPipeline.from_config(config, encoder=rerun_encoder).run()

    assert rerun_encoder.calls == []
    assert report.skipped == 3
    assert len(load_results(config.results_file)) == 3
    assert not config.progress_file.exists()


def test_rebuild_matches_a_full_run(make_config, add_image, fake_encoder) -> None:
    """Regenerating from disk gives the same cardinality and sizes as converting."""
    config = make_config(batchSize=3)
    for i, size in enumerate((900, 1200, 4000, 50)):
        add_image(f"set{i % 2}/p{i}.png", size)

    pipeline = ConversionPipeline.from_config(config, encoder=fake_encoder)
    converted = pipeline.run().results
    rebuilt = pipeline.publisher.regenerate_from_disk()

    assert _by_path(rebuilt) == _by_path(converted)


def test_intermediate_snapshots_and_progress(make_config, add_image, fake_encoder) -> None:
    """Results are published after each snapshot interval and progress reaches 100%."""
    config = make_config(batchSize=1, snapshotEvery=1)
    for i in range(3):
        add_image(f"{i}.png", 1000)
    seen: list[int | None] = []
    stats: list[RunStatistics] = []

    def on_progress(current: RunStatistics) -> None:
        stats.append(current)
        seen.append(
            len(load_results(config.results_file)) if config.results_file.exists() else None
        )

    pipeline = ConversionPipeline.from_config(config, encoder=fake_encoder, on_progress=on_progress)
    pipeline.run()

    assert seen == [None, 1, 2]
    assert [s.processed for s in stats] == [1, 2, 3]
    assert stats[-1].percentage == 100
    assert stats[-1].remaining == 0
    assert stats[0].eta_seconds is not None


def test_worker_pool_encodes_each_file_once(
    make_config, add_image, fake_encoder, monkeypatch: pytest.MonkeyPatch
) -> None:
    """With several workers every file is submitted once and results keep scan order."""
    monkeypatch.setattr(convert_corpus.os, "cpu_count", lambda: 8)
    config = make_config(batchSize=3, maxWorkers=4)
    for i in range(7):
        add_image(f"w{i}.png", 1000)

    pipeline = ConversionPipeline.from_config(config, encoder=fake_encoder)
    report = pipeline.run()

    assert pipeline.worker_count == 4
    assert len(fake_encoder.calls) == 14
    assert len(set(fake_encoder.inputs())) == 7
    scanned = [pipeline.resolver.display_path(p) for p in convert_corpus.scan_corpus(
        config.content_dir, config.supported_formats
    )]
    assert [r.original.path for r in report.results] == scanned


def test_worker_count_is_capped_by_cpu_count(
    make_config, monkeypatch: pytest.MonkeyPatch, fake_encoder
) -> None:
    monkeypatch.setattr(convert_corpus.os, "cpu_count", lambda: 2)

    pipeline = ConversionPipeline.from_config(make_config(maxWorkers=16), encoder=fake_encoder)

    assert pipeline.worker_count == 2


def test_empty_corpus_publishes_nothing(make_config, fake_encoder) -> None:
    config = make_config()

    report = ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    assert report.total == 0
    assert not config.results_file.exists()
    assert fake_encoder.calls == []


def test_colliding_stems_are_reported(
    make_config, add_image, fake_encoder, caplog: pytest.LogCaptureFixture
) -> None:
    """photo.jpg and photo.png share outputs; warn about it."""
    config = make_config()
    add_image("photo.jpg", 100)
    add_image("photo.png", 100)

    ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    assert "map to the same outputs" in caplog.text


def test_partial_output_from_failed_encode_is_retried(
    make_config, add_image, fake_encoder
) -> None:
    """A failed encode leaves no output behind, so the next run encodes the file again."""

    class PartialWriteEncoder:
        def encode(self, fmt: str, input_path: Path, output_path: Path) -> bool:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_bytes(b"partial")
            return fmt != "avif"

    config = make_config()
    source = add_image("x.png", 1000)

    first = ConversionPipeline.from_config(config, encoder=PartialWriteEncoder()).run()

    assert first.results[0].outcome("avif").success is False
    assert not (config.avif_dir / "x.avif").exists()
    assert (config.webp_dir / "x.webp").exists()

    retry = ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    assert fake_encoder.inputs() == [source]
    assert retry.results[0].outcome("avif").success is True


def test_failed_final_publish_keeps_checkpoint(
    make_config, add_image, fake_encoder, monkeypatch: pytest.MonkeyPatch
) -> None:
    """If results.json cannot be written the checkpoint survives and the next run republishes it."""
    config = make_config()
    add_image("x.png", 1000)
    fake_encoder.fail_formats = {"avif"}

    def disk_full(self, results):
        raise OSError("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(conversion_results.ResultsPublisher, "publish", disk_full)
        ConversionPipeline.from_config(config, encoder=fake_encoder).run()

    assert config.progress_file.exists()
    assert not config.results_file.exists()

    rerun_encoder = type(fake_encoder)()
    report = ConversionPipeline.from_config(config, encoder=rerun_encoder).run()

    assert rerun_encoder.calls == []
    (result,) = load_results(config.results_file)
    assert result.outcome("avif").success is False
    assert report.results_file == config.results_file
    assert not config.progress_file.exists()


def test_resumed_batches_do_not_trigger_snapshots(
    make_config, add_image, fake_encoder
) -> None:
    """Only batches that produced results count toward the snapshot interval."""
    config = make_config(batchSize=1, snapshotEvery=1)
    for i in range(3):
        add_image(f"{i}.png", 1000)
    pipeline = ConversionPipeline.from_config(config, encoder=fake_encoder)
    first, *_ = convert_corpus.scan_corpus(config.content_dir, config.supported_formats)
    pipeline.store.save(
        ProgressCheckpoint(
            processed_files={str(first)},
            results=[pipeline.convert_file(first)],
            total_count=3,
        )
    )
    seen: list[int | None] = []
    pipeline.on_progress = lambda _: seen.append(
        len(load_results(config.results_file)) if config.results_file.exists() else None
    )

    pipeline.run()

    assert seen == [None, 2]
