"""Configuration tools for the image edit MCP server"""

from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from managers.settings_manager import STARTUP_ONLY_KEYS
from tools.helpers import error_response


def register_configuration_tools(
    mcp: FastMCP,
    settings_manager
):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_settings() -> dict:
        """Get the effective server settings.

        Returns merged settings from all sources (runtime, config file, env,
        hardcoded) plus the resolved storage paths.
        """
        return {
            "settings": settings_manager.get_all(),
            "images_dir": str(settings_manager.images_dir),
            "metadata_file": str(settings_manager.metadata_file),
            "config_file": str(settings_manager.config_file),
            "startup_only": list(STARTUP_ONLY_KEYS),
        }

    @mcp.tool()
    def set_settings(settings: Dict[str, Any], persist: bool = False) -> dict:
        """Change runtime settings such as max_upload_bytes or output_quality.

        Startup-only settings (data_dir, output_format, host, port) can only
        be changed with persist=True and take effect on the next start.

        Args:
            settings: Dict of setting names to values (e.g. {"output_quality": 90})
            persist: If True, also write them to the config file
                (~/.config/image-edit-mcp/config.json)

        Returns:
            Success status and the applied values, or an error dict.
        """
        try:
            if not persist:
                updated = settings_manager.set_settings(settings)
                return {"success": True, "updated": updated}

            # Validate everything before applying or writing anything
            validated = settings_manager.validate_settings(settings)
            runtime = {k: v for k, v in validated.items() if k not in STARTUP_ONLY_KEYS}
            updated = settings_manager.set_settings(runtime) if runtime else {}
            persisted = settings_manager.persist_settings(validated)
            result = {"success": True, "updated": updated, "persisted": persisted}
            pending = [k for k in validated if k in STARTUP_ONLY_KEYS]
            if pending:
                result["restart_required"] = pending
            return result
        except Exception as e:
            return error_response(e, "set_settings")
