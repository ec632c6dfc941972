import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from mcp.server.fastmcp import FastMCP

from errors import ImageServiceError
from managers.asset_library import AssetLibrary
from managers.settings_manager import SettingsManager
from tools.configuration import register_configuration_tools
from tools.images import register_image_tools

# Configure logging
logging.basicConfig(level=os.getenv("IMAGE_SERVER_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("ImageServer")

settings_manager = SettingsManager()
asset_library = AssetLibrary(settings_manager)


class AppContext:
    def __init__(self, asset_library: AssetLibrary, settings_manager: SettingsManager):
        self.asset_library = asset_library
        self.settings_manager = settings_manager


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting image server lifecycle...")
    try:
        orphans = asset_library.find_orphans()
    except ImageServiceError as e:
        logger.error(f"Could not check storage consistency: {e}")
        orphans = {"files_without_records": [], "records_without_files": []}
    if orphans["files_without_records"] or orphans["records_without_files"]:
        logger.warning(
            f"Storage inconsistencies at startup: "
            f"{len(orphans['files_without_records'])} files without records, "
            f"{len(orphans['records_without_files'])} records without files"
        )
    try:
        yield AppContext(asset_library=asset_library, settings_manager=settings_manager)
    finally:
        logger.info("Shutting down image server")


mcp = FastMCP(
    "Image_Edit_MCP_Server",
    lifespan=app_lifespan,
    host=settings_manager.get("host"),
    port=settings_manager.get("port"),
)

register_image_tools(mcp, asset_library)
register_configuration_tools(mcp, settings_manager)

logger.info(
    f"Registered image tools (data_dir={settings_manager.data_dir}, "
    f"max_upload_bytes={settings_manager.get('max_upload_bytes')})"
)

if __name__ == "__main__":
    mcp.run(transport="streamable-http")
