"""Shared helpers for the MCP surface."""
