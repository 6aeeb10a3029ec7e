"""End-to-end tests of ingestion jobs against local stores."""

import pytest

from pack_ingest.ingest.archive_reader import BlobArchiveSource, LocalArchiveSource
from pack_ingest.ingest.categories import Category
from pack_ingest.ingest.job import IngestRequest, IngestionJob, SideAsset, ingest_local_archive
from pack_ingest.ingest.progress import ErrorFrame, ProgressFrame, ResultFrame
from pack_ingest.ingest.synchronizer import child_collection
from pack_ingest.storage.errors import CommitError, StorageError


def run_job(context, archive, category, **kwargs):
    frames = list(ingest_local_archive(context, archive, category, **kwargs))
    return frames, frames[-1]


def result_of(frames):
    terminal = frames[-1]
    assert isinstance(terminal, ResultFrame), terminal
    return terminal.results


OVERLAY_MEMBERS = {
    "a.png": b"png",
    "b.jpg": b"jpg",
    "._b.jpg": b"shadow",
    "dir/": b"",
}


class TestOverlayIngestion:

    def test_filters_shadow_and_directory_entries(self, make_context, make_zip, doc_store, blob_store):
        context = make_context()
        archive = make_zip("Neon.zip", OVERLAY_MEMBERS)

        frames, _ = run_job(context, archive, Category.OVERLAYS)
        result = result_of(frames)

        assert result.files_processed == 2
        assert result.documents_created == 2
        assert result.errors == []
        children = doc_store.query(child_collection(result.pack_id, "overlays"))
        assert sorted(doc.data["fileName"] for doc in children) == ["a.png", "b.jpg"]
        assert blob_store.exists("assets/overlays/Neon.zip")
        assert blob_store.exists("assets/overlays/Neon/a.png")

        pack = doc_store.get("packs", result.pack_id).data
        assert pack["title"] == "Neon"
        assert pack["storagePath"] == "assets/overlays/Neon.zip"

    def test_rerun_skips_without_duplicates(self, make_context, make_zip, doc_store):
        context = make_context()
        archive = make_zip("Neon.zip", OVERLAY_MEMBERS)
        first = result_of(run_job(context, archive, Category.OVERLAYS)[0])

        frames, _ = run_job(context, archive, Category.OVERLAYS)
        second = result_of(frames)

        assert second.pack_id == first.pack_id
        assert second.skipped == 2
        assert second.documents_created == 0
        assert doc_store.count(child_collection(first.pack_id, "overlays")) == 2
        assert frames[-2].progress == 100

    def test_missing_transcoder_degrades(self, make_context, make_zip, fake_transcoder, doc_store):
        context = make_context(transcoder=fake_transcoder(available=False))
        archive = make_zip("Clips.zip", {"one.mp4": b"1", "two.webm": b"2", "three.mov": b"3"})

        result = result_of(run_job(context, archive, Category.OVERLAYS)[0])

        assert result.files_processed == 3
        assert result.conversions_completed == 0
        assert result.previews_generated == 0
        assert result.errors == ["Could not convert three.mov (ffmpeg not available)"]
        children = doc_store.query(child_collection(result.pack_id, "overlays"))
        assert sorted(doc.data["fileName"] for doc in children) == ["one.mp4", "three.mov", "two.webm"]

    def test_conversion_and_previews(self, make_context, make_zip, doc_store):
        context = make_context()
        archive = make_zip("Clips.zip", {"one.mp4": b"1", "three.mov": b"3"})

        result = result_of(run_job(context, archive, Category.OVERLAYS)[0])

        assert result.conversions_completed == 1
        assert result.previews_generated == 2
        names = {doc.data["fileName"]: doc.data
                 for doc in doc_store.query(child_collection(result.pack_id, "overlays"))}
        assert set(names) == {"one.mp4", "three.mp4"}
        assert names["three.mp4"]["previewStoragePath"] == "assets/overlays/Clips/three_720p.mp4"

    def test_title_and_progress(self, make_context, make_zip):
        frames, _ = run_job(make_context(), make_zip("neon-glow_pack.zip", {"a.png": b"a"}),
                            Category.OVERLAYS, title=None)

        progress = [frame.progress for frame in frames if isinstance(frame, ProgressFrame)]
        assert progress[0] == 5
        assert progress[-1] == 100
        assert progress == sorted(progress)
        assert result_of(frames).pack_id

    def test_explicit_title(self, make_context, make_zip, doc_store):
        frames, _ = run_job(make_context(), make_zip("x.zip", {"a.png": b"a"}), Category.OVERLAYS,
                            title="Custom Title")
        result = result_of(frames)
        assert doc_store.get("packs", result.pack_id).data["title"] == "Custom Title"


class TestFailures:

    def test_corrupt_archive(self, make_context, tmp_path, doc_store, scratch_root):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"not a zip")

        frames, terminal = run_job(make_context(), archive, Category.OVERLAYS)

        assert isinstance(terminal, ErrorFrame)
        assert "broken.zip" in terminal.error
        assert doc_store.query("packs") == []
        assert list(scratch_root.iterdir()) == []

    def test_unsupported_archive(self, make_context, tmp_path):
        archive = tmp_path / "pack.rar"
        archive.write_bytes(b"rar")

        _, terminal = run_job(make_context(), archive, Category.OVERLAYS)
        assert isinstance(terminal, ErrorFrame)

    def test_commit_failure_leaves_no_records(self, make_context, make_zip, doc_store, scratch_root, monkeypatch):
        def failing_apply(writes):
            raise CommitError("store unavailable")

        monkeypatch.setattr(doc_store, "_apply", failing_apply)
        _, terminal = run_job(make_context(), make_zip("Neon.zip", {"a.png": b"a"}), Category.OVERLAYS)
        monkeypatch.undo()

        assert terminal == ErrorFrame("store unavailable")
        assert doc_store.query("packs") == []
        assert list(scratch_root.iterdir()) == []

    def test_upload_failure_is_recorded(self, make_context, make_zip, blob_store, doc_store, scratch_root,
                                        monkeypatch):
        real_write = blob_store.write

        def flaky_write(path, data, content_type="application/octet-stream"):
            if path.endswith("/b.png"):
                raise StorageError("disk full", path=path)
            real_write(path, data, content_type)

        monkeypatch.setattr(blob_store, "write", flaky_write)
        archive = make_zip("Neon.zip", {"a.png": b"a", "b.png": b"b"})

        result = result_of(run_job(make_context(), archive, Category.OVERLAYS)[0])

        assert result.files_processed == 2
        assert result.documents_created == 1
        assert result.errors == ["Error processing b.png: disk full"]
        children = doc_store.query(child_collection(result.pack_id, "overlays"))
        assert [doc.data["fileName"] for doc in children] == ["a.png"]
        assert list(scratch_root.iterdir()) == []

    def test_scratch_removed_after_run(self, make_context, make_zip, scratch_root):
        run_job(make_context(), make_zip("Neon.zip", {"a.png": b"a"}), Category.OVERLAYS)
        assert list(scratch_root.iterdir()) == []

    def test_scratch_removed_when_consumer_stops(self, make_context, make_zip, scratch_root):
        frames = ingest_local_archive(make_context(), make_zip("Neon.zip", {"a.png": b"a"}), Category.OVERLAYS)
        first = next(frames)
        assert first.progress == 5
        assert len(list(scratch_root.iterdir())) == 1

        frames.close()
        assert list(scratch_root.iterdir()) == []


class TestSoundEffects:

    def test_tar_archive_with_durations(self, make_context, make_tar, fake_transcoder, doc_store):
        context = make_context(transcoder=fake_transcoder(duration=4))
        archive = make_tar("Booms.tar.gz", {"boom.wav": b"b", "sub/hit.mp3": b"h", "notes.txt": b"n"})

        result = result_of(run_job(context, archive, Category.SFX)[0])

        assert result.files_processed == 2
        assert result.durations_extracted == 2
        children = doc_store.query(child_collection(result.pack_id, "soundEffects"))
        assert {doc.data["storagePath"] for doc in children} == {
            "assets/sfx/Booms/sounds/boom.wav",
            "assets/sfx/Booms/sounds/hit.mp3",
        }
        assert all(doc.data["duration"] == 4 for doc in children)


class TestLutIngestion:

    MEMBERS = {
        "packX/lutOne/before.mp4": b"b1",
        "packX/lutOne/after.mp4": b"a1",
        "packX/lutTwo/before.mp4": b"b2",
        "packX/CUBE/lutOne.cube": b"TITLE lutOne",
        "packX/CUBE/Stray.cube": b"TITLE stray",
        "packX/loose.cube": b"ignored",
    }

    def test_pairs_and_table_files(self, make_context, make_zip, doc_store):
        result = result_of(run_job(make_context(), make_zip("packX.zip", self.MEMBERS), Category.LUTS)[0])

        assert result.lut_previews_created == 1
        assert result.table_files_matched == 1
        assert result.unmatched_table_files == ["Stray.cube"]
        assert {"unit": "lutTwo", "reason": "incomplete", "missing": ["after"]} in result.skipped_units

        previews = doc_store.query(child_collection(result.pack_id, "lutPreviews"))
        assert len(previews) == 1
        preview = previews[0].data
        assert preview["lutName"] == "lutOne"
        assert preview["beforeVideoPath"] == "assets/luts/packX/lutOne/before.mp4"
        assert preview["afterVideoPath"] == "assets/luts/packX/lutOne/after.mp4"
        assert preview["lutFilePath"] == "assets/luts/packX/CUBE/lutOne.cube"
        assert doc_store.count(child_collection(result.pack_id, "lutFiles")) == 2

    def test_rerun_fills_missing_table_files(self, make_context, make_zip, doc_store):
        context = make_context()
        clips_only = {
            "packX/lutOne/before.mp4": b"b1",
            "packX/lutOne/after.mp4": b"a1",
        }
        first = result_of(run_job(context, make_zip("packX.zip", clips_only), Category.LUTS)[0])
        assert first.table_files_matched == 0

        with_table = dict(clips_only, **{"packX/CUBE/lutOne.cube": b"TITLE lutOne"})
        second = result_of(run_job(context, make_zip("packX.zip", with_table), Category.LUTS)[0])

        assert second.pack_id == first.pack_id
        assert second.files_processed == 1
        assert second.table_files_matched == 1
        assert second.documents_created == 1
        preview = doc_store.query(child_collection(first.pack_id, "lutPreviews"))[0].data
        assert preview["lutFilePath"] == "assets/luts/packX/CUBE/lutOne.cube"

        third = result_of(run_job(context, make_zip("packX.zip", with_table), Category.LUTS)[0])
        assert third.skipped == 2
        assert third.documents_created == 0


class TestSideAssets:

    def test_local_thumbnail_and_staged_preview_clip(self, make_context, make_zip, blob_store, doc_store, tmp_path):
        thumbnail = tmp_path / "cover.JPG"
        thumbnail.write_bytes(b"jpg")
        blob_store.write("uploads/teaser.mp4", b"clip")
        request = IngestRequest(
            source=LocalArchiveSource(make_zip("Neon.zip", {"a.png": b"a"})),
            category=Category.OVERLAYS,
            thumbnail=SideAsset("cover.JPG", local_path=thumbnail),
            preview_clip=SideAsset("teaser.mp4", blob_path="uploads/teaser.mp4"),
        )

        result = result_of(list(IngestionJob(make_context(), request).run()))

        pack = doc_store.get("packs", result.pack_id).data
        assert pack["thumbnailPath"] == "assets/overlays/Neon/preview.jpg"
        assert pack["previewClipPath"] == "assets/overlays/Neon/preview-clip.mp4"
        assert blob_store.exists("assets/overlays/Neon/preview-clip.mp4")
        assert not blob_store.exists("uploads/teaser.mp4")

    def test_fallback_thumbnail(self, make_context, make_zip, blob_store, doc_store):
        blob_store.write("assets/overlays/Neon/preview.png", b"png")
        result = result_of(run_job(make_context(), make_zip("Neon.zip", {"a.png": b"a"}), Category.OVERLAYS)[0])
        assert doc_store.get("packs", result.pack_id).data["thumbnailPath"] == "assets/overlays/Neon/preview.png"

    def test_missing_side_asset_is_soft_failure(self, make_context, make_zip, doc_store):
        request = IngestRequest(
            source=LocalArchiveSource(make_zip("Neon.zip", {"a.png": b"a"})),
            category=Category.OVERLAYS,
            preview_clip=SideAsset("teaser.mp4", blob_path="uploads/missing.mp4"),
        )

        result = result_of(list(IngestionJob(make_context(), request).run()))

        assert result.documents_created == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Error processing teaser.mp4:")
        assert "previewClipPath" not in doc_store.get("packs", result.pack_id).data


    def test_staged_upload_kept_until_commit(self, make_context, make_zip, blob_store, doc_store, scratch_root):
        blob_store.write("uploads/Neon.zip", b"not a zip")
        blob_store.write("uploads/thumb.png", b"png")
        request = IngestRequest(
            source=BlobArchiveSource(blob_store, "uploads/Neon.zip"),
            category=Category.OVERLAYS,
            thumbnail=SideAsset("thumb.png", blob_path="uploads/thumb.png"),
        )
        context = make_context()

        frames = list(IngestionJob(context, request).run())

        assert isinstance(frames[-1], ErrorFrame)
        assert blob_store.exists("uploads/thumb.png")
        assert list(scratch_root.iterdir()) == []

        blob_store.write("uploads/Neon.zip", make_zip("Neon.zip", {"a.png": b"a"}))
        result = result_of(list(IngestionJob(context, request).run()))

        assert result.errors == []
        assert doc_store.get("packs", result.pack_id).data["thumbnailPath"] == "assets/overlays/Neon/preview.png"
        assert blob_store.open_read("assets/overlays/Neon/preview.png").read() == b"png"
        assert not blob_store.exists("uploads/thumb.png")

    def test_staged_upload_kept_when_commit_fails(self, make_context, make_zip, blob_store, doc_store,
                                                  monkeypatch):
        def failing_apply(writes):
            raise CommitError("store unavailable")

        blob_store.write("uploads/teaser.mp4", b"clip")
        request = IngestRequest(
            source=LocalArchiveSource(make_zip("Neon.zip", {"a.png": b"a"})),
            category=Category.OVERLAYS,
            preview_clip=SideAsset("teaser.mp4", blob_path="uploads/teaser.mp4"),
        )
        monkeypatch.setattr(doc_store, "_apply", failing_apply)

        frames = list(IngestionJob(make_context(), request).run())
        monkeypatch.undo()

        assert frames[-1] == ErrorFrame("store unavailable")
        assert blob_store.exists("uploads/teaser.mp4")


class TestBlobSource:

    def test_archive_read_from_store(self, make_context, make_zip, blob_store, doc_store):
        blob_store.write("uploads/Neon.zip", make_zip("Neon.zip", {"a.png": b"a", "b.png": b"b"}))
        request = IngestRequest(source=BlobArchiveSource(blob_store, "uploads/Neon.zip"),
                                category=Category.OVERLAYS)

        result = result_of(list(IngestionJob(make_context(), request).run()))

        assert result.files_processed == 2
        assert doc_store.get("packs", result.pack_id).data["storagePath"] == "uploads/Neon.zip"
        assert not blob_store.exists("assets/overlays/Neon.zip")
