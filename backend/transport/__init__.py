"""WhatsApp Web transport."""

from backend.transport.whatsapp_client import InboundMessage, WhatsAppClient

__all__ = ["InboundMessage", "WhatsAppClient"]
