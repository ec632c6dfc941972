"""Asset library: upload, edit, save, list, fetch and delete images"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

from errors import ImageServiceError, NotFoundError, PayloadTooLargeError, StorageError, ValidationError
from image_codec import (
    EncodedImage,
    decode_image,
    encode_image,
    extension_for_format,
    normalize_format,
    normalize_mime_type,
)
from managers.asset_repository import AssetRepository
from managers.metadata_store import MetadataStore
from managers.settings_manager import SettingsManager
from models.asset import AssetRecord, new_asset_id, stored_name_for
from transforms import TransformConfig, apply_transforms, fit_within

logger = logging.getLogger("ImageServer")

UPLOAD_DEFAULT_NAME = "image"
SAVE_DEFAULT_NAME = "edited-image.webp"

# Files younger than this may belong to a create that has not recorded metadata yet
ORPHAN_GRACE_SECONDS = 60


class AssetLibrary:
    """Runs the image operations against the repository and metadata store.

    Asset bytes are always written before their metadata record and
    removed before it, so a record never points at a missing file.
    """

    def __init__(
        self,
        settings: SettingsManager,
        metadata_store: Optional[MetadataStore] = None,
        repository: Optional[AssetRepository] = None,
    ):
        self.settings = settings
        self.output_format = normalize_format(settings.get("output_format"))
        self.metadata_store = metadata_store or MetadataStore(settings.metadata_file)
        self.repository = repository or AssetRepository(
            settings.images_dir, extension=extension_for_format(self.output_format)
        )
        logger.info(
            f"Initialized AssetLibrary (format={self.output_format}, "
            f"metadata={self.metadata_store.path}, images={self.repository.root_dir})"
        )

    def _check_payload(self, data: bytes):
        if not data:
            raise ValidationError("No file uploaded")
        max_bytes = self.settings.get("max_upload_bytes")
        if len(data) > max_bytes:
            raise PayloadTooLargeError(
                f"Upload is {len(data)} bytes; the limit is {max_bytes} bytes"
            )

    def _encode(self, raster) -> EncodedImage:
        return encode_image(raster, self.output_format, self.settings.get("output_quality"))

    def _persist(self, encoded: EncodedImage, original_name: str, size_bytes: int, mime_type: str) -> AssetRecord:
        asset_id = new_asset_id()
        self.repository.put(asset_id, encoded.data)

        record = AssetRecord(
            asset_id=asset_id,
            stored_name=stored_name_for(asset_id, self.repository.extension),
            original_name=original_name,
            created_at=datetime.now(timezone.utc),
            size_bytes=size_bytes,
            mime_type=mime_type,
        )
        try:
            self.metadata_store.append(record)
        except StorageError:
            try:
                self.repository.delete(asset_id)
            except ImageServiceError as cleanup_error:
                logger.warning(f"Left orphaned image file for {asset_id}: {cleanup_error}")
            raise

        logger.info(
            f"Stored image {asset_id} ({encoded.size_px[0]}x{encoded.size_px[1]}, "
            f"{encoded.bytes_len}B {encoded.mime_type}) from '{original_name}'"
        )
        return record

    def create(
        self,
        data: bytes,
        mime_type: str,
        original_name: Optional[str] = None,
        resize: bool = True,
    ) -> AssetRecord:
        """Upload: decode, fit inside the size box, encode and store.

        The record keeps the size and MIME type of the uploaded input.
        """
        self._check_payload(data)
        raster = decode_image(data, mime_type)
        if resize:
            raster = fit_within(raster, self.settings.get("max_width"), self.settings.get("max_height"))
        encoded = self._encode(raster)
        return self._persist(
            encoded,
            original_name=original_name or UPLOAD_DEFAULT_NAME,
            size_bytes=len(data),
            mime_type=normalize_mime_type(mime_type),
        )

    def preview(self, data: bytes, mime_type: str, config: Optional[TransformConfig] = None) -> EncodedImage:
        """Edit: apply transforms and return the encoded result without storing it"""
        self._check_payload(data)
        config = config or TransformConfig()
        raster = decode_image(data, mime_type)
        edited = apply_transforms(raster, config)
        encoded = self._encode(edited)
        logger.debug(f"Preview with steps {config.active_steps()}: {encoded.bytes_len}B")
        return encoded

    def save(self, data: bytes, mime_type: str, original_name: Optional[str] = None) -> AssetRecord:
        """Save an edited image as-is (no resize).

        The record's MIME type is the stored output type.
        """
        self._check_payload(data)
        raster = decode_image(data, mime_type)
        encoded = self._encode(raster)
        return self._persist(
            encoded,
            original_name=original_name or SAVE_DEFAULT_NAME,
            size_bytes=len(data),
            mime_type=encoded.mime_type,
        )

    def list_assets(self) -> List[AssetRecord]:
        return self.metadata_store.list_all()

    def get_asset(self, asset_id: str) -> AssetRecord:
        record = self.metadata_store.get(asset_id)
        if record is None:
            raise NotFoundError(f"Image not found: {asset_id}")
        return record

    def fetch(self, asset_id: str) -> bytes:
        return self.repository.get(asset_id)

    def delete(self, asset_id: str):
        """Delete the image file, then its metadata record.

        Raises:
            NotFoundError: If no file exists for asset_id; nothing is changed
            StorageError: If the file cannot be removed; the record is kept
        """
        if not self.repository.exists(asset_id):
            raise NotFoundError(f"Image not found: {asset_id}")
        self.repository.delete(asset_id)
        if not self.metadata_store.remove_by_id(asset_id):
            logger.warning(f"Deleted image {asset_id} had no metadata record")
        logger.info(f"Deleted image {asset_id}")

    def find_orphans(self) -> Dict[str, List[str]]:
        """Report files without records and records without files"""
        record_ids = {record.asset_id for record in self.metadata_store.list_all()}
        file_ids = set(self.repository.list_ids())
        return {
            "files_without_records": sorted(file_ids - record_ids),
            "records_without_files": sorted(record_ids - file_ids),
        }

    def cleanup_orphans(self, grace_seconds: int = ORPHAN_GRACE_SECONDS) -> List[str]:
        """Remove image files that have no metadata record.

        Files modified within grace_seconds are kept.
        """
        now = time.time()
        removed = []
        for asset_id in self.find_orphans()["files_without_records"]:
            path = self.repository.path_for(asset_id)
            try:
                if now - path.stat().st_mtime < grace_seconds:
                    continue
                self.repository.delete(asset_id)
            except FileNotFoundError:
                continue
            except ImageServiceError as e:
                logger.warning(f"Failed to remove orphaned image {asset_id}: {e}")
                continue
            removed.append(asset_id)

        if removed:
            logger.info(f"Cleaned up {len(removed)} orphaned image files")
        return removed
