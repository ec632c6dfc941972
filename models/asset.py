"""Asset data models"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def new_asset_id() -> str:
    """Generate a fresh asset id (UUID4 string)"""
    return str(uuid.uuid4())


def stored_name_for(asset_id: str, extension: str) -> str:
    return f"{asset_id}.{extension}"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a 'Z' suffix"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, raising ValueError if it is not one"""
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {value!r}")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class AssetRecord:
    """Metadata describing one stored image.

    Persisted as a JSON object with the keys id, filename, originalName,
    editedAt, size and type.
    """
    asset_id: str
    stored_name: str
    original_name: str
    created_at: datetime
    size_bytes: int
    mime_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.asset_id,
            "filename": self.stored_name,
            "originalName": self.original_name,
            "editedAt": format_timestamp(self.created_at),
            "size": self.size_bytes,
            "type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetRecord":
        """Build a record from its persisted form.

        Raises:
            ValueError: If a required key is missing or malformed
        """
        try:
            asset_id = str(data["id"])
            created_raw: Optional[str] = data.get("editedAt")
            return cls(
                asset_id=asset_id,
                stored_name=str(data.get("filename") or stored_name_for(asset_id, "webp")),
                original_name=str(data.get("originalName", "")),
                created_at=parse_timestamp(created_raw) if created_raw else datetime.fromtimestamp(0, timezone.utc),
                size_bytes=int(data.get("size", 0)),
                mime_type=str(data.get("type", "")),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid asset record {data!r}: {e}")
