"""Starlette middleware for the plugin server."""
