"""Tests for streaming archive reading."""

import zipfile

import pytest

from pack_ingest.ingest.archive_reader import (
    ArchiveFormat,
    ArchiveStreamReader,
    BlobArchiveSource,
    LocalArchiveSource,
    detect_format,
)
from pack_ingest.ingest.categories import ARCHIVE_SUFFIXES, pack_name_from_filename
from pack_ingest.ingest.errors import CorruptArchiveError, EntryReadError, UnsupportedArchiveError


class TestDetectFormat:

    @pytest.mark.parametrize("name,expected", [
        ("pack.zip", ArchiveFormat.ZIP),
        ("PACK.ZIP", ArchiveFormat.ZIP),
        ("pack.tar", ArchiveFormat.TAR),
        ("pack.tar.gz", ArchiveFormat.TAR),
        ("pack.tgz", ArchiveFormat.TAR),
        ("pack.tar.xz", ArchiveFormat.TAR),
        ("pack.txz", ArchiveFormat.TAR),
    ])
    def test_known(self, name, expected):
        assert detect_format(name) is expected

    def test_unknown(self):
        with pytest.raises(UnsupportedArchiveError):
            detect_format("pack.rar")

    @pytest.mark.parametrize("suffix", ARCHIVE_SUFFIXES)
    def test_pack_name_strips_every_readable_suffix(self, suffix):
        detect_format(f"grades{suffix}")
        assert pack_name_from_filename(f"grades{suffix}") == "grades"


class TestZipReading:

    def test_entries_in_storage_order(self, make_zip, tmp_path):
        archive = make_zip("pack.zip", {"b.png": b"b", "dir/": b"", "a.png": b"a"})

        with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path / "scratch") as reader:
            assert reader.total_entries == 3
            entries = list(reader)

        assert [e.path for e in entries] == ["b.png", "dir/", "a.png"]
        assert [e.is_dir for e in entries] == [False, True, False]

    def test_copy_to(self, make_zip, tmp_path):
        archive = make_zip("pack.zip", {"clip.mov": b"x" * 10000})
        target = tmp_path / "out.mov"

        with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path, chunk_size=4096) as reader:
            written = next(iter(reader)).copy_to(target, chunk_size=4096)

        assert written == 10000
        assert target.read_bytes() == b"x" * 10000

    def test_single_pass(self, make_zip, tmp_path):
        archive = make_zip("pack.zip", {"a.png": b"a"})
        with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path) as reader:
            list(reader)
            with pytest.raises(RuntimeError):
                iter(reader)

    def test_corrupt_zip(self, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"this is not a zip file")

        with pytest.raises(CorruptArchiveError):
            ArchiveStreamReader(LocalArchiveSource(archive), tmp_path).open()

    def test_damaged_entry_is_entry_error(self, tmp_path):
        archive = tmp_path / "damaged.zip"
        with zipfile.ZipFile(archive, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("a.png", b"a" * 5000)
        data = bytearray(archive.read_bytes())
        # Corrupt the compressed payload just after the local header
        header_len = 30 + len("a.png")
        for offset in range(header_len, header_len + 8):
            data[offset] ^= 0xFF
        archive.write_bytes(bytes(data))

        with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path) as reader:
            entry = next(iter(reader))
            with pytest.raises(EntryReadError):
                entry.copy_to(tmp_path / "out.png")

    def test_remote_zip_is_spooled_and_removed(self, make_zip, blob_store, tmp_path):
        archive = make_zip("remote.zip", {"a.png": b"a"})
        blob_store.write("uploads/remote.zip", archive)
        scratch = tmp_path / "scratch"

        reader = ArchiveStreamReader(BlobArchiveSource(blob_store, "uploads/remote.zip"), scratch)
        with reader:
            assert (scratch / "source-remote.zip").exists()
            assert [e.path for e in reader] == ["a.png"]

        assert not (scratch / "source-remote.zip").exists()

    def test_missing_remote_archive(self, blob_store, tmp_path):
        source = BlobArchiveSource(blob_store, "uploads/missing.zip")
        with pytest.raises(CorruptArchiveError):
            ArchiveStreamReader(source, tmp_path).open()


class TestTarReading:

    def test_streams_entries(self, make_tar, tmp_path):
        archive = make_tar("pack.tar.gz", {"a.wav": b"aaa", "sub/b.wav": b"bb"})
        contents = {}

        with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path) as reader:
            assert reader.total_entries is None
            for entry in reader:
                with entry.open() as stream:
                    contents[entry.path] = stream.read()

        assert contents == {"a.wav": b"aaa", "sub/b.wav": b"bb"}

    def test_truncated_tar(self, make_tar, tmp_path):
        archive = make_tar("pack.tar.gz", {"a.wav": b"a" * 50000})
        truncated = tmp_path / "truncated.tar.gz"
        truncated.write_bytes(archive.read_bytes()[:40])

        with pytest.raises(CorruptArchiveError):
            with ArchiveStreamReader(LocalArchiveSource(truncated), tmp_path) as reader:
                for entry in reader:
                    entry.copy_to(tmp_path / "out.wav")

    def test_garbage_tar(self, tmp_path):
        archive = tmp_path / "garbage.tar"
        archive.write_bytes(b"\x01" * 1024)

        with pytest.raises(CorruptArchiveError):
            with ArchiveStreamReader(LocalArchiveSource(archive), tmp_path) as reader:
                list(reader)
