"""Canvas backend: bounded tool execution, progress streaming and versioned artifacts."""

__version__ = "0.1.0"
