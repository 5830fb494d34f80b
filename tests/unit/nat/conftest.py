"""In-memory gateway doubles for the NAT tests."""

from __future__ import annotations

from collections import Counter

import pytest
import pytest_asyncio

from igdmap.models import GatewayConfig
from igdmap.nat.exceptions import GatewayProtocolError
from igdmap.nat.gateway import DiscoveryClient, GatewayDevice, PortMappingEntry
from igdmap.nat.session import GatewaySession


class FakeGatewayDevice(GatewayDevice):
    """Gateway keeping its mapping table in a dict and counting calls."""

    def __init__(
        self,
        name: str = "Fake Router",
        local_address: str = "192.168.1.10",
        external_address: str | None = "203.0.113.5",
        valid: bool = True,
        connected: bool = True,
        accept_add: bool = True,
        accept_delete: bool = True,
        entry_count: int | None = 0,
    ) -> None:
        self.name = name
        self._local_address = local_address
        self.external_address = external_address
        self.valid = valid
        self.connected = connected
        self.accept_add = accept_add
        self.accept_delete = accept_delete
        self.entry_count = entry_count
        self.mappings: dict[tuple[int, str], PortMappingEntry] = {}
        self.calls: Counter[str] = Counter()
        self.fail: set[str] = set()

    def _check(self, action: str) -> None:
        self.calls[action] += 1
        if action in self.fail:
            msg = f"{action} failed: connection reset"
            raise GatewayProtocolError(msg)

    @property
    def friendly_name(self) -> str:
        return self.name

    @property
    def model_name(self) -> str:
        return "FakeIGD"

    @property
    def model_number(self) -> str:
        return "1.0"

    @property
    def presentation_url(self) -> str | None:
        return "http://192.168.1.1/"

    @property
    def local_address(self) -> str:
        return self._local_address

    async def is_valid_gateway(self) -> bool:
        self.calls["is_valid_gateway"] += 1
        return self.valid

    async def is_connected(self) -> bool:
        self._check("is_connected")
        return self.connected

    async def get_external_ip_address(self) -> str | None:
        self._check("get_external_ip_address")
        return self.external_address

    async def get_port_mapping_number_of_entries(self) -> int | None:
        self._check("get_port_mapping_number_of_entries")
        return self.entry_count

    async def get_generic_port_mapping_entry(
        self, index: int
    ) -> PortMappingEntry | None:
        self._check("get_generic_port_mapping_entry")
        entries = list(self.mappings.values())
        return entries[index] if index < len(entries) else None

    async def get_specific_port_mapping_entry(
        self, external_port: int, protocol: str
    ) -> PortMappingEntry | None:
        self._check("get_specific_port_mapping_entry")
        return self.mappings.get((external_port, protocol))

    async def add_port_mapping(
        self,
        external_port: int,
        internal_port: int,
        internal_host: str,
        protocol: str,
        description: str,
    ) -> bool:
        self._check("add_port_mapping")
        if not self.accept_add:
            return False
        self.mappings[(external_port, protocol)] = PortMappingEntry(
            external_port=external_port,
            protocol=protocol,
            internal_client=internal_host,
            internal_port=internal_port,
            description=description,
        )
        return True

    async def delete_port_mapping(self, external_port: int, protocol: str) -> bool:
        self._check("delete_port_mapping")
        if not self.accept_delete:
            return False
        return self.mappings.pop((external_port, protocol), None) is not None

    def add_existing(
        self,
        port: int,
        protocol: str = "TCP",
        client: str = "192.168.1.50",
        description: str = "other app",
    ) -> PortMappingEntry:
        entry = PortMappingEntry(port, protocol, client, port, description)
        self.mappings[(port, protocol)] = entry
        return entry


class FakeDiscoveryClient(DiscoveryClient):
    """Returns a fixed set of gateways, or raises a configured error."""

    def __init__(
        self,
        gateways: dict[str, GatewayDevice] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.gateways = gateways or {}
        self.error = error
        self.rounds = 0

    async def discover(self) -> dict[str, GatewayDevice]:
        self.rounds += 1
        if self.error is not None:
            raise self.error
        return dict(self.gateways)


@pytest.fixture
def gateway():
    """A valid, connected gateway with no mappings."""
    return FakeGatewayDevice()


@pytest.fixture
def discovery_client(gateway):
    """Discovery client answering with the default gateway."""
    return FakeDiscoveryClient({gateway.local_address: gateway})


@pytest.fixture
def session(discovery_client):
    """Unbound session over the fake discovery client."""
    return GatewaySession(discovery_client, GatewayConfig())


@pytest_asyncio.fixture
async def bound_session(session):
    """Session bound to the default gateway."""
    await session.discover()
    return session


@pytest.fixture
def make_gateway():
    """Factory for additional fake gateways."""
    return FakeGatewayDevice


@pytest.fixture
def make_discovery():
    """Factory for fake discovery clients."""
    return FakeDiscoveryClient
