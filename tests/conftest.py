"""Pytest configuration and fixtures."""

import json
import uuid
from datetime import datetime

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from wacrm.api.dependencies import get_storage
from wacrm.api.main import create_app
from wacrm.core.security import create_access_token
from wacrm.models import (
    Contact,
    Conversation,
    InstanceStatus,
    Organization,
    TeamMember,
    WhatsAppInstance,
)
from wacrm.core.permissions import TeamRole
from wacrm.services.channels.whatsapp import EvolutionWhatsAppAdapter, get_whatsapp_adapter
from wacrm.storage.memory import InMemoryStorage

USER_ID = "user-1"
USER_EMAIL = "owner@example.com"
GATEWAY_KEY = "gateway-key"


class FakeGateway:
    """In-process stand-in for the WhatsApp gateway HTTP API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.instances: dict[str, dict] = {}
        self.states: dict[str, str] = {}
        self.sent: list[dict] = []
        self.fail_delete = False
        self.fail_send = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        parts = path.strip("/").split("/")

        if path == "/instance/fetchInstances":
            name = request.url.params.get("instanceName")
            if name in self.instances:
                return httpx.Response(200, json=[self.instances[name]])
            return httpx.Response(404, json={"status": 404, "response": {"message": ["Instance not found"]}})

        if path == "/instance/create":
            body = json.loads(request.content)
            name = body["instanceName"]
            self.instances[name] = {"name": name, "connectionStatus": "close"}
            return httpx.Response(201, json={"instance": {"instanceName": name, "status": "created"}})

        if parts[:2] == ["instance", "connect"]:
            return httpx.Response(200, json={"base64": "data:image/png;base64,QR", "pairingCode": "ABCD1234", "code": "2@qr"})

        if parts[:2] == ["instance", "connectionState"]:
            return httpx.Response(200, json={"instance": {"instanceName": parts[2], "state": self.states.get(parts[2], "close")}})

        if parts[:2] == ["instance", "delete"]:
            if self.fail_delete:
                return httpx.Response(500, json={"message": "boom"})
            self.instances.pop(parts[2], None)
            return httpx.Response(200, json={"status": "SUCCESS"})

        if parts[:2] == ["message", "sendText"]:
            if self.fail_send:
                return httpx.Response(400, json={"response": {"message": ["number does not exist"]}})
            body = json.loads(request.content)
            self.sent.append({"instance": parts[2], **body})
            return httpx.Response(201, json={"key": {"id": f"WA-{len(self.sent)}"}, "status": "PENDING"})

        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})


@pytest.fixture
def storage():
    """Create in-memory storage for tests."""
    return InMemoryStorage()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def whatsapp(gateway):
    """Gateway adapter wired to the fake gateway."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    return EvolutionWhatsAppAdapter(base_url="http://gateway.test", api_key=GATEWAY_KEY, http_client=client)


@pytest.fixture
def app(storage, whatsapp):
    """Create test application."""
    app = create_app()
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_whatsapp_adapter] = lambda: whatsapp
    return app


@pytest_asyncio.fixture
async def client(app):
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers_for(user_id: str, email: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


@pytest.fixture
def auth_headers():
    return auth_headers_for(USER_ID, USER_EMAIL)


@pytest_asyncio.fixture
async def organization(storage):
    """Organization with USER_ID as admin."""
    org = Organization(id="org-1", name="Acme", owner_id=USER_ID)
    await storage.save_organization(org)
    await storage.save_team_member(
        TeamMember(id="tm-1", organization_id=org.id, user_id=USER_ID, email=USER_EMAIL, role=TeamRole.ADMIN)
    )
    return org


@pytest_asyncio.fixture
async def instance(storage):
    """Connected instance owned by USER_ID."""
    inst = WhatsAppInstance(
        id="inst-1",
        user_id=USER_ID,
        instance_name="vendas",
        status=InstanceStatus.CONNECTED,
        phone_number="5511900000001",
    )
    await storage.save_instance(inst)
    return inst


@pytest_asyncio.fixture
async def conversation(storage, instance):
    """Open conversation with a contact on the connected instance."""
    contact = Contact(id="contact-1", user_id=USER_ID, phone="5511987654321", name="Maria Silva")
    await storage.save_contact(contact)
    conv = Conversation(
        id="conv-1",
        user_id=USER_ID,
        contact_id=contact.id,
        instance_id=instance.id,
        created_at=datetime(2026, 1, 5, 12, 0),
    )
    await storage.save_conversation(conv)
    return conv


def new_id() -> str:
    return str(uuid.uuid4())
