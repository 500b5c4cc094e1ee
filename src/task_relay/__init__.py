"""Client-side relay for long-running queue-backed generation and OCR jobs."""

__version__ = "0.1.0"
