"""Data models for the image edit MCP server"""

from models.asset import AssetRecord

__all__ = ["AssetRecord"]
