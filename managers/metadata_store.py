"""JSON-backed metadata store for image asset records"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from errors import StorageError
from models.asset import AssetRecord

logger = logging.getLogger("ImageServer")


class MetadataStore:
    """Ordered list of AssetRecords persisted as a single JSON array.

    The whole document is read on every access and rewritten on every
    mutation. Writes go to a temp file that replaces the document, so the
    file always holds exactly one well-formed array. Mutations hold a
    process-level lock across the read-modify-write cycle.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._write_lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write([])
            logger.info(f"Created empty metadata store at {self.path}")

    def _read(self) -> List[AssetRecord]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError) as e:
            raise StorageError(f"Failed to read metadata store {self.path}: {e}")

        if not isinstance(data, list):
            raise StorageError(f"Metadata store {self.path} is not a JSON array")

        try:
            return [AssetRecord.from_dict(item) for item in data]
        except ValueError as e:
            raise StorageError(f"Metadata store {self.path} holds an invalid record: {e}")

    def _write(self, records: List[AssetRecord]):
        payload: List[Any] = [record.to_dict() for record in records]
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            logger.error(f"Failed to write metadata store {self.path}: {e}")
            raise StorageError(f"Failed to write metadata store {self.path}: {e}")

    def _mutate(self, change: Callable[[List[AssetRecord]], Optional[List[AssetRecord]]]) -> bool:
        """Run one read-modify-write cycle under the write lock.

        `change` returns the new record list, or None to skip the write.
        """
        with self._write_lock:
            records = self._read()
            updated = change(records)
            if updated is None:
                return False
            self._write(updated)
            return True

    def list_all(self) -> List[AssetRecord]:
        """All records in insertion order"""
        return self._read()

    def get(self, asset_id: str) -> Optional[AssetRecord]:
        for record in self._read():
            if record.asset_id == asset_id:
                return record
        return None

    def append(self, record: AssetRecord):
        self._mutate(lambda records: records + [record])
        logger.debug(f"Appended metadata record {record.asset_id}")

    def remove_by_id(self, asset_id: str) -> bool:
        """Remove the record with asset_id. Returns False if none matched."""
        def _filter(records: List[AssetRecord]) -> Optional[List[AssetRecord]]:
            remaining = [r for r in records if r.asset_id != asset_id]
            if len(remaining) == len(records):
                return None
            return remaining

        removed = self._mutate(_filter)
        if removed:
            logger.debug(f"Removed metadata record {asset_id}")
        return removed
