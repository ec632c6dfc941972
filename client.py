"""
Command-line client for the image edit MCP server.

Connects to the server's streamable-http endpoint and calls its tools with
JSON-RPC requests. Image files are sent as data URIs; image results are
written to disk.

Examples:
  python client.py upload photo.jpg
  python client.py edit photo.png -o out.webp --rotate 90 --grayscale
  python client.py list
  python client.py get <id> -o copy.webp
  python client.py delete <id>
"""
import argparse
import base64
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import requests

MCP_ENDPOINT = "http://127.0.0.1:9000/mcp"
REQUEST_TIMEOUT = 120
REQUEST_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}
PROTOCOL_VERSION = "2025-03-26"


def parse_sse_response(response_text: str) -> dict:
    """Parse Server-Sent Events (SSE) response format."""
    lines = response_text.replace("\r\n", "\n").split("\n")
    for line in lines:
        line = line.strip()
        if line.startswith("data: "):
            json_str = line[6:]  # Remove "data: " prefix
            try:
                return json.loads(json_str)
            except json.JSONDecodeError:
                continue
    raise ValueError("No valid JSON data found in SSE response")


class ImageServerClient:
    """Minimal MCP client for the image server tools"""

    def __init__(self, endpoint: str = MCP_ENDPOINT, timeout: int = REQUEST_TIMEOUT):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(REQUEST_HEADERS)
        self._request_id = 0
        self._initialized = False

    def _post(self, payload: Dict[str, Any]) -> Optional[dict]:
        response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        response.raise_for_status()

        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self.session.headers["mcp-session-id"] = session_id

        if response.status_code == 202 or not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            return parse_sse_response(response.text)
        return response.json()

    def _request(self, method: str, params: Dict[str, Any]) -> dict:
        self._request_id += 1
        result = self._post({
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        })
        if result is None:
            raise ValueError(f"Empty response to {method}")
        if "error" in result:
            raise RuntimeError(f"Server error for {method}: {json.dumps(result['error'])}")
        return result.get("result", {})

    def initialize(self):
        if self._initialized:
            return
        self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "image-edit-client", "version": "0.1.0"},
        })
        self._post({"jsonrpc": "2.0", "method": "notifications/initialized"})
        self._initialized = True

    def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> dict:
        """Call a tool and return the raw MCP result (content list etc.)"""
        self.initialize()
        return self._request("tools/call", {"name": tool_name, "arguments": arguments})


def file_to_data_uri(path: Path) -> str:
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def extract_result(result: dict) -> Any:
    """Return the first image content as bytes, or the first text content parsed as JSON"""
    for item in result.get("content", []):
        if item.get("type") == "image":
            return base64.b64decode(item["data"])
        if item.get("type") == "text":
            try:
                return json.loads(item["text"])
            except (json.JSONDecodeError, TypeError):
                return item["text"]
    return result.get("structuredContent", result)


def _print_or_save(value: Any, output: Optional[str]) -> int:
    if isinstance(value, bytes):
        if not output:
            print("Received image data; pass -o/--output to save it", file=sys.stderr)
            return 1
        Path(output).write_bytes(value)
        print(f"Wrote {len(value)} bytes to {output}")
        return 0
    print(json.dumps(value, indent=2))
    if isinstance(value, dict) and "error" in value:
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Client for the image edit MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--endpoint", default=MCP_ENDPOINT, help=f"MCP endpoint (default: {MCP_ENDPOINT})")
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload and store an image (resized to fit)")
    upload.add_argument("file")
    upload.add_argument("--name", help="Original name to record (default: file name)")
    upload.add_argument("--no-resize", action="store_true", help="Keep the original dimensions")

    edit = sub.add_parser("edit", help="Preview edits without storing")
    edit.add_argument("file")
    edit.add_argument("-o", "--output", required=True)
    edit.add_argument("--rotate", type=str)
    edit.add_argument("--flip", action="store_true")
    edit.add_argument("--flop", action="store_true")
    edit.add_argument("--brightness", type=str)
    edit.add_argument("--contrast", type=str)
    edit.add_argument("--grayscale", action="store_true")

    save = sub.add_parser("save", help="Store an edited image without resizing")
    save.add_argument("file")
    save.add_argument("--name")

    sub.add_parser("list", help="List stored images")

    get = sub.add_parser("get", help="Download a stored image")
    get.add_argument("asset_id")
    get.add_argument("-o", "--output")
    get.add_argument("--metadata", action="store_true", help="Show the record instead of the bytes")

    delete = sub.add_parser("delete", help="Delete a stored image")
    delete.add_argument("asset_id")
    return parser


def run(args: argparse.Namespace) -> int:
    client = ImageServerClient(endpoint=args.endpoint)

    if args.command == "upload":
        path = Path(args.file)
        result = client.call_tool("upload_image", {
            "image_base64": file_to_data_uri(path),
            "original_name": args.name or path.name,
            "resize": not args.no_resize,
        })
        return _print_or_save(extract_result(result), None)

    if args.command == "edit":
        options: Dict[str, Any] = {
            "rotate": args.rotate,
            "flip": args.flip,
            "flop": args.flop,
            "brightness": args.brightness,
            "contrast": args.contrast,
            "grayscale": args.grayscale,
        }
        options = {k: v for k, v in options.items() if v not in (None, False)}
        result = client.call_tool("edit_image", {
            "image_base64": file_to_data_uri(Path(args.file)),
            "options": options,
        })
        return _print_or_save(extract_result(result), args.output)

    if args.command == "save":
        path = Path(args.file)
        arguments = {"image_base64": file_to_data_uri(path)}
        if args.name:
            arguments["original_name"] = args.name
        result = client.call_tool("save_image", arguments)
        return _print_or_save(extract_result(result), None)

    if args.command == "list":
        return _print_or_save(extract_result(client.call_tool("list_images", {})), None)

    if args.command == "get":
        mode = "metadata" if args.metadata else "image"
        result = client.call_tool("get_image", {"asset_id": args.asset_id, "mode": mode})
        return _print_or_save(extract_result(result), args.output)

    if args.command == "delete":
        result = client.call_tool("delete_image", {"asset_id": args.asset_id})
        return _print_or_save(extract_result(result), None)

    return 2


def main():
    """Main entry point."""
    args = build_parser().parse_args()
    try:
        sys.exit(run(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(1)
    except (requests.RequestException, ValueError, RuntimeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
