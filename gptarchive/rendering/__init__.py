"""Renderers for stored conversations."""

from gptarchive.rendering.markdown import ConversionReport, convert_conversation, convert_directory

__all__ = ["ConversionReport", "convert_conversation", "convert_directory"]
