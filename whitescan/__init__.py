"""WhiteScan - find edge IPs that answer HTTP and keep them in a white list."""

__version__ = "1.0.0"
