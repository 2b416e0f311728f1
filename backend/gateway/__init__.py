"""Realtime dashboard gateway."""

from backend.gateway.events import AppState, EventGateway

__all__ = ["AppState", "EventGateway"]
