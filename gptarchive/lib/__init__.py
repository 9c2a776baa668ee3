"""Shared library helpers."""

from gptarchive.lib.log import collection_context, configure_logging, get_logger

__all__ = ["collection_context", "configure_logging", "get_logger"]
