"""plotarc - narrative arc suggestions with durable per-conversation state."""

__version__ = "0.1.0"
