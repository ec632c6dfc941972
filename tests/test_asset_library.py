"""Tests for the asset library operations

Run with pytest from project root:
    pytest tests/test_asset_library.py -v
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from PIL import Image

from conftest import decode_bytes, encode_test_image
from errors import (
    DecodeError,
    NotFoundError,
    PayloadTooLargeError,
    StorageError,
    UnsupportedFormatError,
    ValidationError,
)
from managers.asset_library import SAVE_DEFAULT_NAME, UPLOAD_DEFAULT_NAME, AssetLibrary
from managers.settings_manager import SettingsManager
from models.asset import new_asset_id
from transforms import TransformConfig


def is_webp(data: bytes) -> bool:
    return data[:4] == b"RIFF" and data[8:12] == b"WEBP"


class TestCreate:
    """Tests for uploading images"""

    def test_upload_jpeg(self, asset_library, make_image):
        """Test a 100x100 JPEG is stored as WebP with one listed record"""
        data = make_image(size=(100, 100), mime_type="image/jpeg")
        record = asset_library.create(data, "image/jpeg", original_name="photo.jpg")

        assert record.stored_name == f"{record.asset_id}.webp"
        assert record.original_name == "photo.jpg"
        assert record.size_bytes == len(data)
        assert record.mime_type == "image/jpeg"

        stored = asset_library.fetch(record.asset_id)
        assert is_webp(stored)
        assert decode_bytes(stored).size == (100, 100)

        listed = asset_library.list_assets()
        assert [r.asset_id for r in listed] == [record.asset_id]

    def test_files_land_in_images_dir(self, asset_library, settings_manager, make_image):
        record = asset_library.create(make_image(), "image/png")
        assert (settings_manager.images_dir / record.stored_name).is_file()
        assert settings_manager.metadata_file.is_file()

    def test_default_name(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        assert record.original_name == UPLOAD_DEFAULT_NAME

    def test_large_image_is_fitted(self, asset_library, make_image):
        """Test oversized images are scaled into the 2000x2000 box"""
        record = asset_library.create(make_image(size=(3000, 1500)), "image/png")
        assert decode_bytes(asset_library.fetch(record.asset_id)).size == (2000, 1000)

    def test_resize_can_be_disabled(self, asset_library, make_image):
        record = asset_library.create(make_image(size=(2400, 600)), "image/png", resize=False)
        assert decode_bytes(asset_library.fetch(record.asset_id)).size == (2400, 600)

    def test_small_image_is_not_enlarged(self, asset_library, make_image):
        record = asset_library.create(make_image(size=(20, 10)), "image/gif")
        assert decode_bytes(asset_library.fetch(record.asset_id)).size == (20, 10)

    def test_runtime_size_box(self, asset_library, settings_manager, make_image):
        settings_manager.set_settings({"max_width": 100, "max_height": 100})
        record = asset_library.create(make_image(size=(400, 200)), "image/png")
        assert decode_bytes(asset_library.fetch(record.asset_id)).size == (100, 50)

    def test_empty_payload(self, asset_library):
        with pytest.raises(ValidationError) as exc_info:
            asset_library.create(b"", "image/png")
        assert exc_info.value.message == "No file uploaded"

    def test_oversized_payload_is_rejected_before_decoding(self, asset_library, settings_manager, make_image):
        """Test the size limit is checked before any decoding"""
        settings_manager.set_settings({"max_upload_bytes": 100})
        data = make_image(size=(200, 200), mime_type="image/jpeg")
        with patch("managers.asset_library.decode_image") as mock_decode:
            with pytest.raises(PayloadTooLargeError) as exc_info:
                asset_library.create(data, "image/jpeg")
        mock_decode.assert_not_called()
        assert exc_info.value.error_code == "PAYLOAD_TOO_LARGE"
        assert asset_library.list_assets() == []

    def test_disallowed_type_stores_nothing(self, asset_library, make_image):
        with pytest.raises(UnsupportedFormatError):
            asset_library.create(make_image(), "image/tiff")
        assert asset_library.list_assets() == []
        assert asset_library.repository.list_ids() == []

    def test_corrupt_image_stores_nothing(self, asset_library):
        with pytest.raises(DecodeError):
            asset_library.create(b"\x89PNG\r\n\x1a\n garbage", "image/png")
        assert asset_library.list_assets() == []
        assert asset_library.repository.list_ids() == []

    def test_metadata_failure_removes_file(self, asset_library, make_image):
        """Test a failed metadata append rolls back the written file"""
        with patch.object(asset_library.metadata_store, "append", side_effect=StorageError("disk full")):
            with pytest.raises(StorageError):
                asset_library.create(make_image(), "image/png")
        assert asset_library.repository.list_ids() == []
        assert asset_library.list_assets() == []

    def test_concurrent_uploads_keep_every_record(self, asset_library, make_image):
        """Test parallel uploads neither lose nor duplicate records"""
        data = make_image(size=(32, 32))
        with ThreadPoolExecutor(max_workers=6) as pool:
            records = list(pool.map(lambda i: asset_library.create(data, "image/png", f"img-{i}"), range(12)))
        listed_ids = [r.asset_id for r in asset_library.list_assets()]
        assert len(listed_ids) == 12
        assert set(listed_ids) == {r.asset_id for r in records}
        assert sorted(listed_ids) == asset_library.repository.list_ids()


class TestPreviewAndSave:
    """Tests for editing without storing, and saving edited images"""

    def test_preview_returns_webp_without_storing(self, asset_library, make_image):
        config = TransformConfig.from_params({"rotate": 90, "grayscale": True})
        encoded = asset_library.preview(make_image(size=(60, 20)), "image/png", config)
        assert encoded.mime_type == "image/webp"
        assert is_webp(encoded.data)
        assert encoded.size_px == (20, 60)
        assert asset_library.list_assets() == []
        assert asset_library.repository.list_ids() == []

    def test_preview_identity(self, asset_library, make_image):
        encoded = asset_library.preview(make_image(size=(30, 40)), "image/webp")
        assert decode_bytes(encoded.data).size == (30, 40)

    def test_preview_does_not_resize(self, asset_library, make_image):
        encoded = asset_library.preview(make_image(size=(2200, 100)), "image/png", TransformConfig(flop=True))
        assert encoded.size_px == (2200, 100)

    def test_preview_checks_size_limit(self, asset_library, settings_manager, make_image):
        settings_manager.set_settings({"max_upload_bytes": 10})
        with pytest.raises(PayloadTooLargeError):
            asset_library.preview(make_image(), "image/png")

    def test_save_keeps_dimensions(self, asset_library, make_image):
        """Test saved images are not fitted to the size box"""
        data = make_image(size=(2500, 400))
        record = asset_library.save(data, "image/png")
        assert decode_bytes(asset_library.fetch(record.asset_id)).size == (2500, 400)
        assert record.original_name == SAVE_DEFAULT_NAME
        assert record.mime_type == "image/webp"
        assert record.size_bytes == len(data)

    def test_save_with_name(self, asset_library, make_image):
        record = asset_library.save(make_image(), "image/png", original_name="mine.webp")
        assert asset_library.get_asset(record.asset_id).original_name == "mine.webp"


class TestLookupAndDelete:
    """Tests for get, fetch and delete"""

    def test_get_asset(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        assert asset_library.get_asset(record.asset_id) == record

    def test_unknown_ids(self, asset_library):
        with pytest.raises(NotFoundError):
            asset_library.get_asset(new_asset_id())
        with pytest.raises(NotFoundError):
            asset_library.fetch(new_asset_id())
        with pytest.raises(NotFoundError):
            asset_library.fetch("../data.json")

    def test_delete(self, asset_library, make_image):
        """Test delete removes both the file and the record"""
        keep = asset_library.create(make_image(), "image/png", "keep")
        drop = asset_library.create(make_image(), "image/png", "drop")
        asset_library.delete(drop.asset_id)

        assert [r.asset_id for r in asset_library.list_assets()] == [keep.asset_id]
        assert not asset_library.repository.exists(drop.asset_id)
        with pytest.raises(NotFoundError):
            asset_library.fetch(drop.asset_id)

    def test_delete_twice(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        asset_library.delete(record.asset_id)
        with pytest.raises(NotFoundError):
            asset_library.delete(record.asset_id)

    def test_delete_unknown_changes_nothing(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        before = asset_library.metadata_store.path.read_bytes()
        with pytest.raises(NotFoundError):
            asset_library.delete(new_asset_id())
        assert asset_library.metadata_store.path.read_bytes() == before
        assert asset_library.repository.exists(record.asset_id)

    def test_failed_file_delete_keeps_record(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        with patch.object(asset_library.repository, "delete", side_effect=StorageError("busy")):
            with pytest.raises(StorageError):
                asset_library.delete(record.asset_id)
        assert asset_library.get_asset(record.asset_id) == record

    def test_delete_file_without_record(self, asset_library):
        asset_id = new_asset_id()
        asset_library.repository.put(asset_id, b"orphan")
        asset_library.delete(asset_id)
        assert not asset_library.repository.exists(asset_id)


class TestOrphans:
    """Tests for storage consistency checks"""

    def test_find_orphans(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        orphan_id = new_asset_id()
        asset_library.repository.put(orphan_id, b"orphan")
        asset_library.repository.path_for(record.asset_id).unlink()

        assert asset_library.find_orphans() == {
            "files_without_records": [orphan_id],
            "records_without_files": [record.asset_id],
        }

    def test_cleanup_respects_grace_period(self, asset_library):
        """Test recently written files are kept"""
        orphan_id = new_asset_id()
        asset_library.repository.put(orphan_id, b"orphan")
        assert asset_library.cleanup_orphans() == []
        assert asset_library.repository.exists(orphan_id)

    def test_cleanup_removes_old_orphans(self, asset_library, make_image):
        record = asset_library.create(make_image(), "image/png")
        orphan_id = new_asset_id()
        path = asset_library.repository.put(orphan_id, b"orphan")
        old = time.time() - 3600
        os.utime(path, (old, old))

        assert asset_library.cleanup_orphans() == [orphan_id]
        assert not asset_library.repository.exists(orphan_id)
        assert asset_library.repository.exists(record.asset_id)


class TestConfiguredFormat:
    """Tests for a non-default output format"""

    def test_png_output(self, tmp_path, data_dir, monkeypatch, make_image):
        monkeypatch.setenv("IMAGE_SERVER_OUTPUT_FORMAT", "png")
        library = AssetLibrary(SettingsManager(config_file=tmp_path / "png-config.json"))
        record = library.create(make_image(), "image/png")
        assert record.stored_name.endswith(".png")
        assert decode_bytes(library.fetch(record.asset_id)).format == "PNG"

    def test_rgba_survives(self, asset_library):
        data = encode_test_image(Image.new("RGBA", (10, 10), (1, 2, 3, 0)), "image/png")
        record = asset_library.create(data, "image/png")
        assert decode_bytes(asset_library.fetch(record.asset_id)).mode == "RGBA"
