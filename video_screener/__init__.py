"""Background worker that screens uploaded videos for sensitive content."""

__version__ = "0.1.0"
