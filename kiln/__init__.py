# kiln/__init__.py
"""kiln - a minimal source-based package manager."""

__version__ = "1.0.0"
