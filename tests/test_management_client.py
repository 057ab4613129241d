"""Tests for the BIG-IP management API client.

Tests cover:
- Readiness polling (ready, never ready, malformed documents)
- Readiness state transitions
- Authenticated requests and error kinds
"""

import asyncio
import base64

import httpx
import pytest

from conftest import ready_document
from runtime_init.bigip.management_client import (
    READY_ENDPOINT,
    DeviceNotReady,
    ManagementClient,
    ReadinessState,
    parse_ready_response,
)
from runtime_init.errors import ApplicationError, ReadyCheckFailed, TransportError


def make_client(device, **kwargs):
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("retry_interval", 0)
    return ManagementClient(transport=device.transport, **kwargs)


async def check_ready(client):
    async with client:
        return await client.is_ready()


class TestParseReadyResponse:
    """Tests for parse_ready_response()."""

    def test_extracts_descriptions(self):
        descriptions = parse_ready_response(ready_document("yes"))
        assert descriptions == {"configReady": "yes", "licenseReady": "yes", "provisionReady": "yes"}

    @pytest.mark.parametrize("body", [{}, {"entries": {}}, "not json", {"entries": {"x": {}}}])
    def test_unexpected_shape(self, body):
        with pytest.raises(DeviceNotReady):
            parse_ready_response(body)


class TestIsReady:
    """Tests for ManagementClient.is_ready()."""

    def test_ready(self, device):
        client = make_client(device)

        assert asyncio.run(check_ready(client)) is True
        assert client.ready_state == ReadinessState.READY
        assert len(device.calls("GET", READY_ENDPOINT)) == 1

    def test_never_ready(self, device):
        device.ready = False
        client = make_client(device, max_retries=4)

        with pytest.raises(ReadyCheckFailed, match="after 4 attempt"):
            asyncio.run(check_ready(client))

        assert client.ready_state == ReadinessState.EXHAUSTED
        assert len(device.calls("GET", READY_ENDPOINT)) == 4

    def test_becomes_ready(self, device):
        device.route(
            "GET",
            READY_ENDPOINT,
            (503, {"message": "starting"}),
            (200, ready_document("no")),
            (200, ready_document("yes")),
        )
        client = make_client(device, max_retries=5)

        assert asyncio.run(check_ready(client)) is True
        assert len(device.calls("GET", READY_ENDPOINT)) == 3

    def test_one_entry_not_ready(self, device):
        device.route("GET", READY_ENDPOINT, (200, ready_document("yes", provisionReady="no")))
        client = make_client(device, max_retries=2)

        with pytest.raises(ReadyCheckFailed, match="provisionReady"):
            asyncio.run(check_ready(client))

    def test_malformed_document(self, device):
        device.route("GET", READY_ENDPOINT, (200, {"kind": "unexpected"}))
        client = make_client(device, max_retries=2)

        with pytest.raises(ReadyCheckFailed, match="Unexpected ready check response"):
            asyncio.run(check_ready(client))


class TestRequest:
    """Tests for ManagementClient.request()."""

    def test_defaults(self):
        client = ManagementClient()

        assert client.base_url == "http://localhost:8100"
        assert client.verify_tls is True
        assert client.port == 8100
        assert "hunter2" not in repr(ManagementClient(password="hunter2"))

    def test_basic_auth_and_json(self, device):
        device.route("POST", "/mgmt/shared/appsvcs/declare", (200, {"results": [{"code": 200}]}))
        client = make_client(device, user="admin", password="secret")

        async def post():
            async with client:
                return await client.request("POST", "/mgmt/shared/appsvcs/declare", {"class": "AS3"})

        response = asyncio.run(post())

        assert response == {"code": 200, "body": {"results": [{"code": 200}]}}
        request = device.calls("POST", "/mgmt/shared/appsvcs/declare")[0]
        assert request.headers["authorization"] == "Basic " + base64.b64encode(b"admin:secret").decode()
        assert device.json_body("POST", "/mgmt/shared/appsvcs/declare") == {"class": "AS3"}

    def test_non_2xx_is_application_error(self, device):
        device.route("POST", "/mgmt/shared/appsvcs/declare", (422, {"message": "invalid declaration"}))
        client = make_client(device)

        async def post():
            async with client:
                await client.request("POST", "/mgmt/shared/appsvcs/declare", {})

        with pytest.raises(ApplicationError) as exc_info:
            asyncio.run(post())

        assert exc_info.value.code == 422
        assert exc_info.value.body == {"message": "invalid declaration"}

    def test_connection_failure_is_transport_error(self):
        def refused(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = ManagementClient(transport=httpx.MockTransport(refused))

        async def get():
            async with client:
                await client.request("GET", "/mgmt/tm/sys/version")

        with pytest.raises(TransportError, match="Connection refused"):
            asyncio.run(get())

    def test_session_reused_and_closed(self, device):
        client = make_client(device)

        async def two_calls():
            await client.request("GET", READY_ENDPOINT)
            session = client._client
            await client.request("GET", READY_ENDPOINT)
            assert client._client is session
            await client.aclose()

        asyncio.run(two_calls())
        assert client._client is None
