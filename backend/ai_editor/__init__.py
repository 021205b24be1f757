"""AI Editor Server - streaming chat completions for topic conversations."""

__version__ = "1.0.0"
