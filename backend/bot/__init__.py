"""Inbound message handling."""

from backend.bot.responder import AutoResponder

__all__ = ["AutoResponder"]
