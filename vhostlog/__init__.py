"""Per-vhost access log splitter."""

__version__ = "1.0.0"
