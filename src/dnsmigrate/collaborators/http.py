"""HTTP adapter for a network control-plane REST API.

Implements Provisioner, LinkProbe, DnsAdmin and Resolver against one base URL.

Endpoints:
- PUT    /resources/{kind}/{name}             - Create or converge a resource
- DELETE /resources/{kind}/{name}             - Delete a resource
- GET    /links/{a}/{b}/probe                 - Directional reachability
- PUT    /servers/{server}/zones/{zone}       - Replace a zone file
- PUT    /servers/{server}/forwarders         - Replace forwarding rules
- PUT    /segments/{segment}/default-resolver - Point a segment at a resolver
- GET    /segments/{segment}/resolve?name=    - Resolution probe

Error mapping:
- 400, 404, 409, 422       -> ApplyRejected (the request is wrong)
- 408, 429, 5xx            -> TransientCollaboratorError
- network errors, timeouts -> TransientCollaboratorError

Retries are not done here. The CallPolicy wrapped around each call decides.
"""

from collections.abc import Sequence
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from ..config import CollaboratorConfig
from ..models.resources import ResourceHandle, ResourceSpec
from ..models.rules import ForwardingRule
from ..models.topology import DnsServer, Record
from ..models.validation import Resolution
from ..utils.exceptions import ApplyRejected, TransientCollaboratorError

logger = structlog.get_logger(__name__)

REJECTED_STATUS = {400, 404, 409, 422}
TRANSIENT_STATUS = {408, 429}


class HandleResponse(BaseModel):
    id: str


class ProbeResponse(BaseModel):
    reachable: bool


class ResolveResponse(BaseModel):
    address: str | None = None
    authoritative: bool = False


class ErrorResponse(BaseModel):
    message: str | None = None
    detail: str | None = None
    code: str | None = None

    def get_full_message(self) -> str:
        parts = [p for p in (self.message, self.detail) if p]
        text = " - ".join(parts) or "unknown error"
        return f"{text} (Code: {self.code})" if self.code else text


class HttpControlPlane:
    """
    Control-plane REST client implementing all four collaborator protocols.

    Usage:
        async with HttpControlPlane(config) as plane:
            await plane.push_forwarding_rules(server, rules)
    """

    def __init__(self, config: CollaboratorConfig, client: httpx.AsyncClient | None = None):
        if not config.base_url:
            raise ValueError("HTTP control plane requires collaborator.base_url")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.token:
                headers["Authorization"] = f"Bearer {self.config.token}"
            self._client = httpx.AsyncClient(
                verify=self.config.verify_ssl,
                timeout=self.config.call_timeout,
                headers=headers,
            )
        return self._client

    async def __aenter__(self) -> "HttpControlPlane":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        target: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self.client.request(method, url, json=json, params=params)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise TransientCollaboratorError(operation, target, f"HTTP request failed: {e}") from e

        if response.is_error:
            message = self._error_message(response)
            status = response.status_code
            logger.warning(
                "Control plane error", operation=operation, target=target, status=status
            )
            if status in REJECTED_STATUS:
                raise ApplyRejected(operation, target, f"HTTP {status}: {message}")
            if status in TRANSIENT_STATUS or status >= 500:
                raise TransientCollaboratorError(operation, target, f"HTTP {status}: {message}")
            raise ApplyRejected(operation, target, f"HTTP {status}: {message}")

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                return ErrorResponse.model_validate(response.json()).get_full_message()
            except (ValidationError, ValueError):
                pass
        return response.text or response.reason_phrase

    # ------------------------------------------------------------------
    # Provisioner
    # ------------------------------------------------------------------

    async def create_or_update(self, spec: ResourceSpec) -> ResourceHandle:
        target = f"{spec.kind}/{spec.name}"
        data = await self._request(
            "PUT",
            f"resources/{spec.kind}/{spec.name}",
            "create_or_update",
            target,
            json={"container": spec.container, "properties": spec.properties},
        )
        try:
            handle = HandleResponse.model_validate(data)
        except ValidationError as e:
            raise ApplyRejected("create_or_update", target, f"Malformed response: {e}") from e
        return ResourceHandle(
            kind=spec.kind, name=spec.name, container=spec.container, resource_id=handle.id
        )

    async def delete(self, handle: ResourceHandle) -> None:
        await self._request(
            "DELETE",
            f"resources/{handle.kind}/{handle.name}",
            "delete",
            f"{handle.kind}/{handle.name}",
        )

    # ------------------------------------------------------------------
    # LinkProbe
    # ------------------------------------------------------------------

    async def probe(self, segment_a: str, segment_b: str) -> bool:
        target = f"{segment_a}->{segment_b}"
        data = await self._request("GET", f"links/{segment_a}/{segment_b}/probe", "probe", target)
        try:
            return ProbeResponse.model_validate(data).reachable
        except ValidationError as e:
            raise TransientCollaboratorError("probe", target, f"Malformed response: {e}") from e

    # ------------------------------------------------------------------
    # DnsAdmin
    # ------------------------------------------------------------------

    async def push_zone_file(self, server: DnsServer, zone: str, records: Sequence[Record]) -> None:
        await self._request(
            "PUT",
            f"servers/{server.id}/zones/{zone}",
            "push_zone_file",
            f"{server.id}/{zone}",
            json={"records": [r.to_dict() for r in records]},
        )

    async def push_forwarding_rules(
        self, server: DnsServer, rules: Sequence[ForwardingRule]
    ) -> None:
        await self._request(
            "PUT",
            f"servers/{server.id}/forwarders",
            "push_forwarding_rules",
            server.id,
            json={
                "rules": [
                    {"zone": rule.zone, "forward_to": rule.target_address} for rule in rules
                ]
            },
        )

    async def set_default_resolver(self, segment: str, server: DnsServer) -> None:
        await self._request(
            "PUT",
            f"segments/{segment}/default-resolver",
            "set_default_resolver",
            segment,
            json={"server": server.id, "address": server.address},
        )

    # ------------------------------------------------------------------
    # Resolver
    # ------------------------------------------------------------------

    async def resolve(self, segment: str, name: str) -> Resolution:
        target = f"{segment}/{name}"
        data = await self._request(
            "GET", f"segments/{segment}/resolve", "resolve", target, params={"name": name}
        )
        try:
            answer = ResolveResponse.model_validate(data)
        except ValidationError as e:
            raise TransientCollaboratorError("resolve", target, f"Malformed response: {e}") from e
        return Resolution(address=answer.address, authoritative=answer.authoritative)
