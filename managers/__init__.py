"""Manager classes for the image edit MCP server"""

from managers.asset_library import AssetLibrary
from managers.asset_repository import AssetRepository
from managers.metadata_store import MetadataStore
from managers.settings_manager import SettingsManager

__all__ = ["AssetLibrary", "AssetRepository", "MetadataStore", "SettingsManager"]
