"""Terminal client for the fleet hub live channel."""

from .client import format_event, main

__all__ = ["format_event", "main"]
