"""Tests for CaseRecordClient."""
import asyncio

import aiohttp
import pytest

from crisiswatch.services.case_service import CaseRecordClient, CaseReference, CaseServiceError


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def json(self, content_type="application/json"):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Stands in for aiohttp.ClientSession.request()."""

    def __init__(self, *responses, error=None):
        self.responses = list(responses)
        self.error = error
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


def make_client(*responses, error=None):
    session = FakeSession(*responses, error=error)
    return CaseRecordClient("http://cases:5000/api/", api_key="secret", session=session), session


class TestCreateCase:

    @pytest.mark.asyncio
    async def test_success_returns_reference(self):
        client, session = make_client(FakeResponse(201, {
            "success": True,
            "data": {"_id": "665f", "caseNumber": "CW-2026-0001"},
        }))

        reference = await client.create_case({"crisisType": "mental_health"})

        assert reference == CaseReference(case_id="665f", case_number="CW-2026-0001")
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", "http://cases:5000/api/cases")
        assert kwargs["json"] == {"crisisType": "mental_health"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_declined_returns_none(self):
        client, _ = make_client(FakeResponse(400, {"success": False, "message": "Validation failed"}))
        assert await client.create_case({}) is None

    @pytest.mark.asyncio
    async def test_success_false_returns_none(self):
        client, _ = make_client(FakeResponse(200, {"success": False}))
        assert await client.create_case({}) is None

    @pytest.mark.asyncio
    async def test_missing_id_returns_none(self):
        client, _ = make_client(FakeResponse(201, {"success": True, "data": {}}))
        assert await client.create_case({}) is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        client, _ = make_client(FakeResponse(503, {}))
        with pytest.raises(CaseServiceError):
            await client.create_case({})

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        client, _ = make_client(error=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(CaseServiceError):
            await client.create_case({})

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        client, _ = make_client(error=asyncio.TimeoutError())
        with pytest.raises(CaseServiceError) as exc:
            await client.create_case({})
        assert "timed out" in str(exc.value)

    @pytest.mark.asyncio
    async def test_non_json_body_is_declined(self):
        client, _ = make_client(FakeResponse(200, ValueError("not json")))
        assert await client.create_case({}) is None


class TestOtherCalls:

    @pytest.mark.asyncio
    async def test_update_case(self):
        client, session = make_client(FakeResponse(200, {"success": True}))
        assert await client.update_case("665f", {"assessment": {}}) is True
        method, url, _ = session.requests[0]
        assert (method, url) == ("PUT", "http://cases:5000/api/cases/665f")

    @pytest.mark.asyncio
    async def test_update_declined(self):
        client, _ = make_client(FakeResponse(404, {"success": False}))
        assert await client.update_case("missing", {}) is False

    @pytest.mark.asyncio
    async def test_get_case(self):
        client, _ = make_client(FakeResponse(200, {"success": True, "data": {"_id": "665f"}}))
        assert await client.get_case("665f") == {"_id": "665f"}

    @pytest.mark.asyncio
    async def test_health_check_unreachable(self):
        client, _ = make_client(error=aiohttp.ClientConnectionError("refused"))
        health = await client.health_check()
        assert health["healthy"] is False
        assert health["details"]["api_url"] == "http://cases:5000/api"

    @pytest.mark.asyncio
    async def test_injected_session_left_open(self):
        client, session = make_client()
        await client.close()
        assert not session.closed
