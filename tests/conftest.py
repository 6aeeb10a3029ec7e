"""Shared fixtures for pack-ingest tests."""

import io
import shutil
import tarfile
import zipfile
from pathlib import Path

import pytest

from pack_ingest.config import IngestSettings
from pack_ingest.ingest.context import IngestContext
from pack_ingest.ingest.transcoder import ProbeResult, TranscodeResult, TranscodeStatus
from pack_ingest.storage.blob_store import LocalBlobStore
from pack_ingest.storage.document_store import SQLiteDocumentStore


class FakeTranscoder:
    """In-process transcoder: copies files instead of encoding them."""

    def __init__(self, available: bool = True, duration: int = 3, fail_convert: bool = False):
        self.available = available
        self.duration = duration
        self.fail_convert = fail_convert
        self.calls = []

    def convert(self, source: Path, target: Path) -> TranscodeResult:
        self.calls.append(('convert', source.name))
        if not self.available:
            return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail='ffmpeg not found')
        if self.fail_convert:
            return TranscodeResult(TranscodeStatus.FAILED, detail='exit code 1')
        shutil.copyfile(source, target)
        return TranscodeResult(TranscodeStatus.OK, output=target)

    def render_preview(self, source: Path, target: Path) -> TranscodeResult:
        self.calls.append(('preview', source.name))
        if not self.available:
            return TranscodeResult(TranscodeStatus.UNAVAILABLE, detail='ffmpeg not found')
        shutil.copyfile(source, target)
        return TranscodeResult(TranscodeStatus.OK, output=target)

    def probe_duration(self, source: Path) -> ProbeResult:
        self.calls.append(('probe', source.name))
        if not self.available:
            return ProbeResult(TranscodeStatus.UNAVAILABLE)
        return ProbeResult(TranscodeStatus.OK, seconds=self.duration)


@pytest.fixture
def blob_store(tmp_path):
    """Local blob store in a temporary directory."""
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def doc_store(tmp_path):
    """SQLite document store in a temporary directory."""
    store = SQLiteDocumentStore(tmp_path / "catalog.db")
    yield store
    store.close()


@pytest.fixture
def scratch_root(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def make_context(blob_store, doc_store, scratch_root):
    """Factory for an IngestContext around the temporary stores."""

    def _make(transcoder=None, **settings):
        options = {
            'scratch_directory': str(scratch_root),
            'max_pending': 2,
            'worker_threads': 2,
            'min_free_disk_mb': 0,
            'io_chunk_size': 4096,
        }
        options.update(settings)
        return IngestContext(
            blob_store=blob_store,
            document_store=doc_store,
            transcoder=transcoder if transcoder is not None else FakeTranscoder(),
            settings=IngestSettings(**options),
        )

    return _make


@pytest.fixture
def fake_transcoder():
    """Factory for FakeTranscoder instances."""
    return FakeTranscoder


@pytest.fixture
def make_zip(tmp_path):
    """Build a zip archive from a {name: bytes} mapping (names ending in '/' are directories)."""

    def _make(name: str, members: dict) -> Path:
        path = tmp_path / "archives" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, 'w') as zf:
            for member, data in members.items():
                zf.writestr(member, data)
        return path

    return _make


@pytest.fixture
def make_tar(tmp_path):
    """Build a gzipped tar archive from a {name: bytes} mapping."""

    def _make(name: str, members: dict) -> Path:
        path = tmp_path / "archives" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, 'w:gz') as tf:
            for member, data in members.items():
                info = tarfile.TarInfo(name=member)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))
        return path

    return _make
