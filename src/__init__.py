# src/__init__.py — v1
"""chatpipe — budgeted, cached and retrying chat-completion client pipeline."""

from chatpipe.version import __version__

__all__ = ["__version__"]
