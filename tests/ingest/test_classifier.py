"""Tests for archive entry classification."""

import pytest

from pack_ingest.ingest.categories import Category
from pack_ingest.ingest.classifier import (
    Accept,
    EntryRole,
    Skip,
    SkipReason,
    classify_entry,
    in_table_folder,
    is_shadow_path,
)


class TestShadowPaths:

    @pytest.mark.parametrize("path", [
        "._b.jpg",
        "pack/._b.jpg",
        "__MACOSX/pack/b.jpg",
        "pack/._folder/b.jpg",
    ])
    def test_shadow(self, path):
        assert is_shadow_path(path)

    def test_regular(self):
        assert not is_shadow_path("pack/b.jpg")
        assert not is_shadow_path("pack/my._file.jpg")


class TestOverlayClassification:

    def test_accepts_image_with_lowercased_extension(self):
        result = classify_entry("Pack/Glow.PNG", Category.OVERLAYS)
        assert result == Accept("Pack/Glow.PNG", ".png", "Glow.PNG", EntryRole.MEDIA)

    def test_directory_entries(self):
        assert classify_entry("dir/", Category.OVERLAYS).reason is SkipReason.DIRECTORY
        assert classify_entry("dir", Category.OVERLAYS, is_dir=True).reason is SkipReason.DIRECTORY

    def test_shadow_file(self):
        assert classify_entry("._b.jpg", Category.OVERLAYS) == Skip("._b.jpg", SkipReason.SHADOW_FILE)

    def test_unsupported(self):
        result = classify_entry("readme.txt", Category.OVERLAYS)
        assert result.reason is SkipReason.UNSUPPORTED_EXTENSION

    def test_audio_not_an_overlay(self):
        assert isinstance(classify_entry("boom.wav", Category.OVERLAYS), Skip)


class TestSfxClassification:

    def test_accepts_audio(self):
        result = classify_entry("sounds/Boom.WAV", Category.SFX)
        assert isinstance(result, Accept)
        assert result.role is EntryRole.MEDIA
        assert result.extension == ".wav"

    def test_rejects_image(self):
        assert isinstance(classify_entry("cover.png", Category.SFX), Skip)


class TestLutClassification:

    def test_table_in_table_folder(self):
        result = classify_entry("pack/CUBE/Teal.cube", Category.LUTS)
        assert isinstance(result, Accept)
        assert result.role is EntryRole.TABLE

    def test_table_outside_table_folder(self):
        result = classify_entry("pack/Teal.cube", Category.LUTS)
        assert result == Skip("pack/Teal.cube", SkipReason.OUTSIDE_TABLE_FOLDER)

    def test_table_in_folder_merely_containing_cube(self):
        result = classify_entry("pack/not-a-cube-folder/x.cube", Category.LUTS)
        assert result == Skip("pack/not-a-cube-folder/x.cube", SkipReason.OUTSIDE_TABLE_FOLDER)

    def test_preview_clip(self):
        result = classify_entry("pack/Teal/before.mp4", Category.LUTS)
        assert isinstance(result, Accept)
        assert result.role is EntryRole.PREVIEW

    def test_image_rejected(self):
        assert isinstance(classify_entry("pack/cover.png", Category.LUTS), Skip)

    def test_in_table_folder(self):
        assert in_table_folder("a/cube/x.cube")
        assert in_table_folder("a/CUBE/x.cube")
        assert in_table_folder("a/Cube/sub/x.cube")
        assert not in_table_folder("a/cubes/x.cube")
        assert not in_table_folder("a/CUBE Files/x.cube")
        assert not in_table_folder("a/x.cube/y.cube")
        assert not in_table_folder("x.cube")
        assert not in_table_folder("a/luts/x.cube")
