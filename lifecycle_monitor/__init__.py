"""Black-box UI lifecycle compliance monitor."""

__version__ = "0.1.0"
