"""Flat file storage for encoded image bytes"""

import logging
import os
import re
from pathlib import Path
from typing import List, Union

from errors import NotFoundError, StorageError

logger = logging.getLogger("ImageServer")

ASSET_ID_REGEX = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$')


def canonicalize_path(path: Union[str, Path], must_exist: bool = True) -> Path:
    """Resolve path to absolute real path (handles symlinks).

    Raises:
        ValueError: If path cannot be resolved and must_exist=True
    """
    try:
        return Path(path).resolve(strict=must_exist)
    except (OSError, RuntimeError) as e:
        raise ValueError(f"Cannot resolve path {path}: {e}")


def is_within(child_path: Union[str, Path], parent_path: Union[str, Path], child_must_exist: bool = True) -> bool:
    """Check if child_path is within parent_path after resolving symlinks"""
    try:
        child_real = canonicalize_path(child_path, must_exist=child_must_exist)
        parent_real = canonicalize_path(parent_path, must_exist=True)
        return child_real.is_relative_to(parent_real)
    except (ValueError, OSError):
        return False


def validate_asset_id(asset_id: str) -> bool:
    """Asset ids are canonical lower-case UUID strings"""
    return isinstance(asset_id, str) and bool(ASSET_ID_REGEX.match(asset_id))


class AssetRepository:
    """Maps asset ids to `<root_dir>/<id>.<extension>` files"""

    def __init__(self, root_dir: Union[str, Path], extension: str = "webp"):
        self.root_dir = Path(root_dir)
        self.extension = extension.lstrip(".")
        self.root_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized AssetRepository at {self.root_dir} (extension: .{self.extension})")

    def path_for(self, asset_id: str) -> Path:
        """Resolve the storage path for an asset id.

        Raises:
            NotFoundError: If asset_id is not a valid id or escapes the root
        """
        if not validate_asset_id(asset_id):
            raise NotFoundError(f"Image not found: '{asset_id}' is not a valid image id")
        path = self.root_dir / f"{asset_id}.{self.extension}"
        if not is_within(path, self.root_dir, child_must_exist=False):
            raise NotFoundError(f"Image not found: {asset_id}")
        return path

    def exists(self, asset_id: str) -> bool:
        try:
            return self.path_for(asset_id).is_file()
        except NotFoundError:
            return False

    def put(self, asset_id: str, data: bytes) -> Path:
        """Write asset bytes atomically, returning the final path"""
        target_path = self.path_for(asset_id)
        temp_path = target_path.with_suffix(target_path.suffix + ".tmp")
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(target_path)
        except OSError as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorageError(f"Failed to write image {asset_id}: {e}")

        logger.debug(f"Stored image {asset_id} ({len(data)} bytes) at {target_path}")
        return target_path

    def get(self, asset_id: str) -> bytes:
        path = self.path_for(asset_id)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFoundError(f"Image not found: {asset_id}")
        except OSError as e:
            raise StorageError(f"Failed to read image {asset_id}: {e}")

    def delete(self, asset_id: str):
        path = self.path_for(asset_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError(f"Image not found: {asset_id}")
        except OSError as e:
            raise StorageError(f"Failed to delete image {asset_id}: {e}")
        logger.debug(f"Deleted image file {path}")

    def list_ids(self) -> List[str]:
        """Ids of all stored files, sorted"""
        ids = []
        for path in self.root_dir.glob(f"*.{self.extension}"):
            if validate_asset_id(path.stem):
                ids.append(path.stem)
        return sorted(ids)