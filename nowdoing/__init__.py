"""nowdoing: what the subject is doing right now."""

__version__ = "0.1.0"
