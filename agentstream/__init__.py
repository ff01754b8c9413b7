"""Client engine for streaming AI-agent sessions."""

__version__ = "0.1.0"
