"""Precious-metals price resolution and caching service."""
