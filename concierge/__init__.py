"""Concierge — chat agent that routes conversation commands and AI replies."""

__version__ = "0.3.0"
