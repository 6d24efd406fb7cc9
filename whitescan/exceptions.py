class WhiteScanError(Exception):
    """Base class for errors raised by whitescan."""


class ConfigurationError(WhiteScanError):
    """The configuration file could not be read and repair was disabled."""
