"""MCP tool registration for the image edit server"""
