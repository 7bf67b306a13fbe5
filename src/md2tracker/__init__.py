"""Markdown transcoding for issue tracker rich-text formats."""

from .core import markdown_to_adf, markdown_to_linear
from .reader import adf_to_markdown
from .version import __version__

__all__ = ["__version__", "adf_to_markdown", "markdown_to_adf", "markdown_to_linear"]
