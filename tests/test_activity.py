"""Tests for activity (time tracking) sessions."""

from datetime import datetime, timedelta

import pytest

from wacrm.core.exceptions import NotFound
from wacrm.models import SessionType
from wacrm.services.activity import ActivitySessionService

START = datetime(2026, 1, 5, 9, 0)


@pytest.fixture
def service(storage):
    return ActivitySessionService(storage)


@pytest.mark.asyncio
async def test_start_and_end(service):
    session = await service.start("user-1", now=START)
    assert session.is_open
    assert (await service.current("user-1")).id == session.id

    ended = await service.end("user-1", now=START + timedelta(minutes=90))

    assert ended.duration_seconds == 5400
    assert await service.current("user-1") is None


@pytest.mark.asyncio
async def test_starting_closes_the_open_session(service, storage):
    work = await service.start("user-1", now=START)
    lunch = await service.start("user-1", SessionType.LUNCH, now=START + timedelta(hours=3))

    history = await service.history("user-1")

    assert [s.id for s in history] == [lunch.id, work.id]
    closed = history[1]
    assert closed.ended_at == START + timedelta(hours=3)
    assert closed.duration_seconds == 3 * 3600
    open_sessions = [s for s in history if s.is_open]
    assert [s.session_type for s in open_sessions] == [SessionType.LUNCH]


@pytest.mark.asyncio
async def test_end_without_open_session(service):
    with pytest.raises(NotFound):
        await service.end("user-1")


@pytest.mark.asyncio
async def test_sessions_are_per_user(service):
    await service.start("user-1", now=START)
    await service.start("user-2", now=START)

    await service.end("user-1", now=START + timedelta(minutes=1))

    assert await service.current("user-1") is None
    assert await service.current("user-2") is not None


@pytest.mark.asyncio
async def test_session_endpoints(client, auth_headers, organization):
    response = await client.get("/api/activity/session", headers=auth_headers)
    assert response.json() == {"session": None, "elapsed_seconds": None}

    response = await client.post("/api/activity/session", json={"session_type": "break"}, headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["session"]["session_type"] == "break"
    assert body["session"]["organization_id"] == "org-1"
    assert body["elapsed_seconds"] >= 0

    response = await client.post("/api/activity/session/end", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["session"]["ended_at"] is not None

    response = await client.get("/api/activity/sessions", headers=auth_headers)
    assert len(response.json()) == 1


@pytest.mark.asyncio
async def test_end_endpoint_without_session(client, auth_headers):
    response = await client.post("/api/activity/session/end", headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "No active session"


@pytest.mark.asyncio
async def test_invalid_session_type(client, auth_headers):
    response = await client.post("/api/activity/session", json={"session_type": "nap"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
