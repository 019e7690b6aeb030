"""Tests for the background build and export workers."""

from __future__ import annotations

import zipfile
from pathlib import Path

from gigaview.preprocess.backends import VIPSBackend
from gigaview.preprocess.metadata import MANIFEST_NAME
from gigaview.preprocess.pyramid import Pyramid
from gigaview.ui.preprocess import OFFLINE_BUILD_HINT, BuildWorker, ExportWorker


class _Recorder:
    """Collects every signal a worker emits."""

    def __init__(self, worker) -> None:
        self.progress: list[tuple[int, int]] = []
        self.results: list[object] = []
        self.errors: list[str] = []
        worker.progressChanged.connect(lambda a, b: self.progress.append((a, b)))
        worker.errorOccurred.connect(self.errors.append)

    @property
    def done(self) -> bool:
        return bool(self.results or self.errors)


def _run(worker, recorder: _Recorder, wait_until) -> None:
    worker.start()
    assert worker.wait(30_000)
    assert wait_until(lambda: recorder.done)


class TestBuildWorker:
    """Tests for BuildWorker."""

    def test_builds_pyramid(self, qapp, sample_image_file: Path, wait_until) -> None:
        worker = BuildWorker(sample_image_file)
        recorder = _Recorder(worker)
        worker.pyramidReady.connect(recorder.results.append)
        _run(worker, recorder, wait_until)

        assert recorder.errors == []
        pyramid = recorder.results[0]
        assert isinstance(pyramid, Pyramid)
        assert pyramid.original_dimensions == (300, 200)
        assert recorder.progress == [(2, 3), (1, 3), (0, 3)]

    def test_cancel_before_start(self, qapp, sample_image_file: Path, wait_until) -> None:
        worker = BuildWorker(sample_image_file)
        recorder = _Recorder(worker)
        worker.pyramidReady.connect(recorder.results.append)
        worker.cancel()
        _run(worker, recorder, wait_until)

        assert recorder.results == []
        assert recorder.errors == ["Build cancelled"]
        assert recorder.progress == []

    def test_cancel_takes_effect_at_next_tile_row(
        self, qapp, sample_image_file: Path, wait_until, monkeypatch
    ) -> None:
        worker = BuildWorker(sample_image_file)
        recorder = _Recorder(worker)
        worker.pyramidReady.connect(recorder.results.append)

        encoded = []
        original = VIPSBackend.encode_png

        def encode_png(img) -> bytes:
            encoded.append(1)
            worker.cancel()
            return original(img)

        monkeypatch.setattr(VIPSBackend, "encode_png", staticmethod(encode_png))
        _run(worker, recorder, wait_until)

        assert recorder.results == []
        assert recorder.errors == ["Build cancelled"]
        assert recorder.progress == []
        # The first row of the finest level (3 tiles) finishes, the second never starts
        assert len(encoded) == 3

    def test_too_large_points_to_offline_builder(
        self, qapp, sample_image_file: Path, wait_until
    ) -> None:
        worker = BuildWorker(sample_image_file, max_pixels=1000)
        recorder = _Recorder(worker)
        worker.pyramidReady.connect(recorder.results.append)
        _run(worker, recorder, wait_until)

        assert recorder.results == []
        assert OFFLINE_BUILD_HINT in recorder.errors[0]
        assert "python -m gigaview.preprocess" in recorder.errors[0]

    def test_undecodable_file_reports_error(self, qapp, temp_dir: Path, wait_until) -> None:
        path = temp_dir / "broken.png"
        path.write_bytes(b"this is not an image")
        worker = BuildWorker(path)
        recorder = _Recorder(worker)
        worker.pyramidReady.connect(recorder.results.append)
        _run(worker, recorder, wait_until)

        assert recorder.results == []
        assert "broken.png" in recorder.errors[0]


class TestExportWorker:
    """Tests for ExportWorker."""

    def test_exports_archive(self, qapp, built_pyramid: Pyramid, temp_dir: Path, wait_until) -> None:
        path = temp_dir / "export_tiles.zip"
        worker = ExportWorker(built_pyramid, path)
        recorder = _Recorder(worker)
        worker.exported.connect(recorder.results.append)
        _run(worker, recorder, wait_until)

        assert recorder.errors == []
        assert recorder.results == [str(path)]
        total = len(built_pyramid.tiles)
        assert recorder.progress[-1] == (total, total)
        with zipfile.ZipFile(path) as zf:
            assert MANIFEST_NAME in zf.namelist()

    def test_unwritable_target_reports_error(
        self, qapp, built_pyramid: Pyramid, temp_dir: Path, wait_until
    ) -> None:
        blocker = temp_dir / "not_a_dir"
        blocker.write_bytes(b"")
        worker = ExportWorker(built_pyramid, blocker / "export_tiles.zip")
        recorder = _Recorder(worker)
        worker.exported.connect(recorder.results.append)
        _run(worker, recorder, wait_until)

        assert recorder.results == []
        assert len(recorder.errors) == 1
