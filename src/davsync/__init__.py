"""davsync - keep a local folder synchronized with WebDAV servers."""

__version__ = "0.1.0"
