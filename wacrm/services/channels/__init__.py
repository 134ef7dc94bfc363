"""Channel adapters for the WhatsApp gateway."""

from wacrm.services.channels.base import ChannelAdapter
from wacrm.services.channels.whatsapp import EvolutionWhatsAppAdapter, get_whatsapp_adapter

__all__ = ["ChannelAdapter", "EvolutionWhatsAppAdapter", "get_whatsapp_adapter"]
