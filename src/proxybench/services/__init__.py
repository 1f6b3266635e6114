"""Proxy and backend service renderers."""
