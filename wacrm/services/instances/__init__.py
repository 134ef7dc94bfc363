"""WhatsApp instance lifecycle."""

from wacrm.services.instances.manager import InstanceManager, webhook_url

__all__ = ["InstanceManager", "webhook_url"]
