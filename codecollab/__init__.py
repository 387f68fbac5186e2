# codecollab/__init__.py
"""Session coordinator for shared coding rooms."""

__version__ = "1.0.0"
