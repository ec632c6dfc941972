"""Image tools for the image edit MCP server"""

import logging
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP, Image as FastMCPImage

from image_codec import get_image_metadata
from tools.helpers import decode_image_payload, error_response, record_response
from transforms import TransformConfig

logger = logging.getLogger("ImageServer")


def register_image_tools(
    mcp: FastMCP,
    asset_library
):
    """Register image tools with the MCP server"""

    @mcp.tool()
    def upload_image(
        image_base64: str,
        mime_type: Optional[str] = None,
        original_name: Optional[str] = None,
        resize: bool = True,
    ) -> dict:
        """Upload an image, optimize it and store it in the library.

        The image is re-encoded as WebP (quality 80) and, unless resize is
        False, scaled down to fit inside 2000x2000 keeping its aspect ratio.
        Smaller images are never enlarged.

        Args:
            image_base64: Base64 image data or a data URI ("data:image/png;base64,...")
            mime_type: One of image/jpeg, image/png, image/gif, image/webp.
                Optional when image_base64 is a data URI.
            original_name: Label stored with the record (e.g. the source filename)
            resize: Fit the image inside the maximum bounding box (default: True)

        Returns:
            The stored record: id, filename, originalName, editedAt, size, type
        """
        try:
            data, declared_type = decode_image_payload(image_base64, mime_type)
            record = asset_library.create(data, declared_type, original_name=original_name, resize=resize)
            return record_response(record)
        except Exception as e:
            return error_response(e, "upload_image")

    @mcp.tool()
    def edit_image(
        image_base64: str,
        mime_type: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        """Apply edits to an image and return the result without storing it.

        Edits run in a fixed order: rotate, flip, flop, brightness, contrast,
        grayscale. Values may be given as numbers/booleans or as strings
        ("90", "true"). Invalid values reject the whole request.

        Args:
            image_base64: Base64 image data or a data URI
            mime_type: Declared input type (optional for data URIs)
            options: Dict with any of:
                - rotate: degrees clockwise (default 0)
                - flip: mirror top/bottom (default false)
                - flop: mirror left/right (default false)
                - brightness: channel multiplier >= 0 (default 1)
                - contrast: linear contrast around 128 (default 1)
                - grayscale: convert to grey (default false)

        Returns:
            The edited image (WebP) for inline display, or an error dict
        """
        try:
            config = TransformConfig.from_params(options)
            data, declared_type = decode_image_payload(image_base64, mime_type)
            encoded = asset_library.preview(data, declared_type, config)
            logger.info(
                f"edit_image success: steps={config.active_steps()} "
                f"dims={encoded.size_px[0]}x{encoded.size_px[1]} encoded={encoded.bytes_len}B"
            )
            return FastMCPImage(data=encoded.data, format=encoded.mime_type.split("/", 1)[1])
        except Exception as e:
            return error_response(e, "edit_image")

    @mcp.tool()
    def save_image(
        image_base64: str,
        mime_type: Optional[str] = None,
        original_name: Optional[str] = None,
    ) -> dict:
        """Save an (already edited) image to the library without resizing.

        Args:
            image_base64: Base64 image data or a data URI
            mime_type: Declared input type (optional for data URIs)
            original_name: Label stored with the record (default "edited-image.webp")

        Returns:
            The stored record: id, filename, originalName, editedAt, size, type
        """
        try:
            data, declared_type = decode_image_payload(image_base64, mime_type)
            record = asset_library.save(data, declared_type, original_name=original_name)
            return record_response(record)
        except Exception as e:
            return error_response(e, "save_image")

    @mcp.tool()
    def list_images() -> dict:
        """List all stored images in the order they were added."""
        try:
            records = asset_library.list_assets()
            return {
                "images": [record_response(record) for record in records],
                "count": len(records),
            }
        except Exception as e:
            return error_response(e, "list_images")

    @mcp.tool()
    def get_image(asset_id: str, mode: str = "image"):
        """Fetch a stored image.

        Args:
            asset_id: Image id returned by upload_image or save_image
            mode: "image" (default) returns the stored WebP for inline display;
                "metadata" returns the record plus pixel dimensions

        Returns:
            The stored image, or a metadata dict, or an error dict
        """
        try:
            if mode not in ("image", "metadata"):
                return {
                    "error": f"Mode '{mode}' not supported. Use 'image' or 'metadata'.",
                    "error_code": "VALIDATION_ERROR",
                }
            data = asset_library.fetch(asset_id)
            if mode == "metadata":
                result = record_response(asset_library.get_asset(asset_id))
                dims = get_image_metadata(data)
                result["width"] = dims["width"]
                result["height"] = dims["height"]
                result["storedBytes"] = len(data)
                return result
            return FastMCPImage(data=data, format=asset_library.output_format)
        except Exception as e:
            return error_response(e, "get_image")

    @mcp.tool()
    def delete_image(asset_id: str) -> dict:
        """Delete a stored image and its metadata record.

        Args:
            asset_id: Image id to delete
        """
        try:
            asset_library.delete(asset_id)
            return {"success": True, "message": "Image deleted successfully"}
        except Exception as e:
            return error_response(e, "delete_image")

    @mcp.tool()
    def cleanup_orphans(dry_run: bool = True) -> dict:
        """Find (and optionally remove) image files that have no metadata record.

        Orphaned files can be left behind when a metadata write fails during
        an upload. Records without files are reported but never removed.

        Args:
            dry_run: Only report orphans (default: True)
        """
        try:
            orphans = asset_library.find_orphans()
            if dry_run:
                return {"dry_run": True, **orphans}
            removed = asset_library.cleanup_orphans()
            return {"dry_run": False, "removed": removed, **orphans}
        except Exception as e:
            return error_response(e, "cleanup_orphans")
