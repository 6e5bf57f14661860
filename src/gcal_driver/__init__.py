"""Read-only Google Calendar overlay driver for webmail calendar hosts."""

__version__ = "0.1.0"
