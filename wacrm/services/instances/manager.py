"""WhatsApp instance lifecycle on top of the gateway."""

import asyncio
import uuid
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.config import settings
from wacrm.core.exceptions import AppException, Conflict, NotFound, PermissionDenied, ValidationFailed
from wacrm.core.phone import extract_phone_from_jid
from wacrm.models import InstanceStatus, WhatsAppInstance, status_from_gateway_state
from wacrm.services.channels.whatsapp import EvolutionWhatsAppAdapter
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

MIN_NAME_LENGTH = 3
# Gateway needs a moment after a delete before the name can be reused
RECREATE_DELAY_SECONDS = 1.0


def webhook_url() -> str:
    return f"{settings.webhook_base_url.rstrip('/')}/functions/v1/receive-webhook"


class InstanceManager:
    """Creates, connects, inspects and deletes a user's instances."""

    def __init__(
        self,
        storage: StorageBackend,
        gateway: EvolutionWhatsAppAdapter,
        recreate_delay: float = RECREATE_DELAY_SECONDS,
    ) -> None:
        self.storage = storage
        self.gateway = gateway
        self.recreate_delay = recreate_delay

    async def _same_organization(self, user_id: str, owner_id: str) -> bool:
        caller = await self.storage.get_team_member_by_user(user_id)
        owner = await self.storage.get_team_member_by_user(owner_id)
        return caller is not None and owner is not None and caller.organization_id == owner.organization_id

    async def get_accessible(self, user_id: str, instance_name: str | None) -> WhatsAppInstance:
        """Instance owned by the user or by someone in the user's organization.

        Raises:
            ValidationFailed: If no name is given
            NotFound: If the instance does not exist or is not visible
        """
        if not instance_name:
            raise ValidationFailed("instanceName is required")
        instance = await self.storage.get_instance_by_name(instance_name.strip())
        if instance is None:
            raise NotFound("Instância não encontrada", details={"instanceName": instance_name})
        if instance.user_id != user_id and not await self._same_organization(user_id, instance.user_id):
            raise NotFound("Instância não encontrada", details={"instanceName": instance_name})
        return instance

    async def create(
        self,
        user_id: str,
        instance_name: Any,
        force_recreate: bool = False,
        is_notification_only: bool = False,
    ) -> dict[str, Any]:
        """Create the instance on the gateway and store it as disconnected."""
        if not instance_name or not isinstance(instance_name, str):
            raise ValidationFailed("Nome da instância é obrigatório")
        name = instance_name.strip()
        if len(name) < MIN_NAME_LENGTH:
            raise ValidationFailed(
                f"O nome da instância deve ter pelo menos {MIN_NAME_LENGTH} caracteres",
                details={"instanceName": name},
            )

        owned = await self.storage.list_instances(user_id)
        if any(i.instance_name == name for i in owned):
            raise ValidationFailed(
                f'Você já possui uma instância chamada "{name}"',
                details={"instanceName": name},
            )

        if await self.gateway.fetch_instance(name) is not None:
            if not force_recreate:
                raise Conflict(
                    f'Já existe uma instância chamada "{name}" na Evolution API.',
                    code="INSTANCE_EXISTS_IN_EVOLUTION",
                    details={"instanceName": name},
                )
            logger.info("Recreating instance that already exists on gateway", instance_name=name)
            await self.gateway.delete_instance(name)
            if self.recreate_delay:
                await asyncio.sleep(self.recreate_delay)

        gateway_data = await self.gateway.create_instance(name, webhook_url())

        member = await self.storage.get_team_member_by_user(user_id)
        instance = WhatsAppInstance(
            id=str(uuid.uuid4()),
            user_id=user_id,
            organization_id=member.organization_id if member else None,
            instance_name=name,
            status=InstanceStatus.DISCONNECTED,
            is_notification_only=bool(is_notification_only),
        )
        await self.storage.save_instance(instance)

        logger.info("Instance created", instance_name=name, user_id=user_id, instance_id=instance.id)
        return {
            "success": True,
            "instance": instance.model_dump(mode="json"),
            "evolution": gateway_data,
        }

    async def connect(self, user_id: str, instance_name: str | None) -> dict[str, Any]:
        """Fetch a QR code and mark the instance as connecting."""
        instance = await self.get_accessible(user_id, instance_name)
        codes = await self.gateway.connect_instance(instance.instance_name)

        instance.qr_code = codes.get("base64")
        instance.qr_code_updated_at = utcnow()
        instance.status = InstanceStatus.CONNECTING
        await self.storage.save_instance(instance)

        logger.info("Instance connecting", instance_name=instance.instance_name)
        return {"success": True, **codes}

    async def check_status(self, user_id: str, instance_name: str | None) -> dict[str, Any]:
        """Sync the local status (and profile when connected) with the gateway."""
        instance = await self.get_accessible(user_id, instance_name)
        state = await self.gateway.connection_state(instance.instance_name)
        instance.status = status_from_gateway_state(state)

        if instance.is_connected:
            try:
                details = await self.gateway.fetch_instance(instance.instance_name) or {}
            except AppException as e:
                logger.warning("Could not fetch instance profile", instance_name=instance.instance_name, error=e.message)
                details = {}
            if details:
                owner = details.get("owner") or details.get("ownerJid")
                instance.phone_number = extract_phone_from_jid(owner) or None
                instance.profile_name = details.get("profileName")
                instance.profile_picture_url = details.get("profilePictureUrl") or details.get("profilePicUrl")
                instance.profile_status = details.get("profileStatus")
                instance.is_business = bool(details.get("isBusiness"))
            instance.qr_code = None

        await self.storage.save_instance(instance)
        return {
            "success": True,
            "status": instance.status.value,
            "state": state,
            "phoneNumber": instance.phone_number,
            "profileName": instance.profile_name,
            "profilePictureUrl": instance.profile_picture_url,
            "isBusiness": instance.is_business,
        }

    async def delete(self, user_id: str, instance_name: str | None) -> dict[str, Any]:
        """Delete the instance. Only its owner or an organization admin may.

        Gateway failures are logged; the local row is removed regardless.
        """
        instance = await self.get_accessible(user_id, instance_name)
        if instance.user_id != user_id:
            member = await self.storage.get_team_member_by_user(user_id)
            if member is None or not member.is_admin:
                raise PermissionDenied("Only the owner or an admin can delete this instance", "delete_instances")

        try:
            await self.gateway.delete_instance(instance.instance_name)
        except AppException as e:
            logger.warning("Gateway delete failed, removing local instance anyway", instance_name=instance.instance_name, error=e.message)

        await self.storage.clear_instance_references(instance.id)
        await self.storage.delete_instance(instance.id)

        logger.info("Instance deleted", instance_name=instance.instance_name, user_id=user_id)
        return {"success": True}
