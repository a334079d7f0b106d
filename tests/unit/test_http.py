"""Tests for the HTTP control-plane adapter."""

import json

import httpx
import pytest
import respx

from dnsmigrate.collaborators.http import HttpControlPlane
from dnsmigrate.config import CollaboratorConfig
from dnsmigrate.constants import RESOURCE_DNS_SERVER
from dnsmigrate.models.resources import ResourceHandle, ResourceSpec
from dnsmigrate.models.rules import ForwardingRule, TargetSelection
from dnsmigrate.models.topology import DnsServer, Record
from dnsmigrate.utils.exceptions import ApplyRejected, TransientCollaboratorError

BASE = "https://control.example.com/api"
HUB_DNS = DnsServer(id="hub-dns", segment="hub", address="10.1.0.4")


class TestHttpControlPlane:
    """Test HttpControlPlane requests and error mapping."""

    @pytest.fixture
    def plane(self):
        """Create an HttpControlPlane for testing."""
        return HttpControlPlane(CollaboratorConfig(base_url=BASE + "/", token="secret"))

    def test_requires_base_url(self):
        with pytest.raises(ValueError, match="base_url"):
            HttpControlPlane(CollaboratorConfig())

    @pytest.mark.asyncio
    @respx.mock
    async def test_create_or_update_returns_handle(self, plane):
        route = respx.put(f"{BASE}/resources/dns_server/hub-dns").mock(
            return_value=httpx.Response(200, json={"id": "/servers/hub-dns"})
        )
        spec = ResourceSpec(
            kind=RESOURCE_DNS_SERVER,
            name="hub-dns",
            container="rg-hub",
            properties={"segment": "hub"},
        )

        handle = await plane.create_or_update(spec)

        assert handle.resource_id == "/servers/hub-dns"
        assert handle.container == "rg-hub"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "container": "rg-hub",
            "properties": {"segment": "hub"},
        }
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_delete_accepts_empty_response(self, plane):
        route = respx.delete(f"{BASE}/resources/dns_server/hub-dns").mock(
            return_value=httpx.Response(204)
        )
        handle = ResourceHandle(
            kind=RESOURCE_DNS_SERVER, name="hub-dns", container="rg-hub", resource_id="x"
        )

        await plane.delete(handle)

        assert route.called
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_probe(self, plane):
        respx.get(f"{BASE}/links/onprem/hub/probe").mock(
            return_value=httpx.Response(200, json={"reachable": True})
        )

        assert await plane.probe("onprem", "hub")
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_push_forwarding_rules_payload(self, plane):
        route = respx.put(f"{BASE}/servers/hub-dns/forwarders").mock(
            return_value=httpx.Response(204)
        )
        rule = ForwardingRule(
            holder="hub-dns",
            zone="onprem.pvt",
            target="onprem-dns",
            target_address="10.0.0.4",
            selection=TargetSelection.AUTHORITY,
        )

        await plane.push_forwarding_rules(HUB_DNS, [rule])

        body = json.loads(route.calls.last.request.content)
        assert body == {"rules": [{"zone": "onprem.pvt", "forward_to": "10.0.0.4"}]}
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_push_zone_file_payload(self, plane):
        route = respx.put(f"{BASE}/servers/hub-dns/zones/hub.pvt").mock(
            return_value=httpx.Response(204)
        )

        await plane.push_zone_file(HUB_DNS, "hub.pvt", [Record("vm1.hub.pvt", "10.1.0.10")])

        body = json.loads(route.calls.last.request.content)
        assert body["records"] == [{"name": "vm1.hub.pvt", "type": "A", "address": "10.1.0.10"}]
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_resolve(self, plane):
        route = respx.get(f"{BASE}/segments/onprem/resolve").mock(
            return_value=httpx.Response(
                200, json={"address": "10.1.0.10", "authoritative": False}
            )
        )

        answer = await plane.resolve("onprem", "vm1.hub.pvt")

        assert answer.address == "10.1.0.10"
        assert not answer.authoritative
        assert route.calls.last.request.url.params["name"] == "vm1.hub.pvt"
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status", [400, 404, 409, 422])
    async def test_client_errors_are_rejections(self, plane, status):
        respx.put(f"{BASE}/segments/hub/default-resolver").mock(
            return_value=httpx.Response(
                status, json={"message": "Invalid resolver", "code": "E_RESOLVER"}
            )
        )

        with pytest.raises(ApplyRejected) as exc_info:
            await plane.set_default_resolver("hub", HUB_DNS)

        assert exc_info.value.target == "hub"
        assert "Invalid resolver" in str(exc_info.value)
        assert "E_RESOLVER" in str(exc_info.value)
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    async def test_server_errors_are_transient(self, plane, status):
        respx.put(f"{BASE}/servers/hub-dns/forwarders").mock(
            return_value=httpx.Response(status, text="try later")
        )

        with pytest.raises(TransientCollaboratorError, match=f"HTTP {status}"):
            await plane.push_forwarding_rules(HUB_DNS, [])
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_is_transient(self, plane):
        respx.get(f"{BASE}/links/onprem/hub/probe").mock(
            side_effect=httpx.ConnectError("connection refused")
        )

        with pytest.raises(TransientCollaboratorError, match="connection refused"):
            await plane.probe("onprem", "hub")
        await plane.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_handle_is_rejected(self, plane):
        respx.put(f"{BASE}/resources/dns_server/hub-dns").mock(
            return_value=httpx.Response(200, json={"name": "hub-dns"})
        )
        spec = ResourceSpec(kind=RESOURCE_DNS_SERVER, name="hub-dns", container="rg-hub")

        with pytest.raises(ApplyRejected, match="Malformed response"):
            await plane.create_or_update(spec)
        await plane.close()

    @pytest.mark.asyncio
    async def test_injected_client_is_used(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"reachable": False})
        )
        client = httpx.AsyncClient(transport=transport)

        async with HttpControlPlane(CollaboratorConfig(base_url=BASE), client=client) as plane:
            assert not await plane.probe("hub", "managed")

        assert client.is_closed
