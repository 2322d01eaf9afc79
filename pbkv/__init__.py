"""Primary/backup replicated key/value service coordinated by a view service."""

__version__ = "0.1.0"