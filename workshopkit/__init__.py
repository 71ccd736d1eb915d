"""Steam Workshop content transfer toolkit."""

__version__ = "0.4.0"
