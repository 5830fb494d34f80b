"""Unit tests for the gateway session."""

from __future__ import annotations

import asyncio
import logging

import pytest

from igdmap.models import GatewayConfig
from igdmap.nat.exceptions import (
    GatewayProtocolError,
    NoActiveGatewayError,
    NoGatewayFoundError,
    NoValidGatewayError,
)
from igdmap.nat.session import BindingLock, GatewaySession

pytestmark = [pytest.mark.unit, pytest.mark.nat]


class TestDiscover:
    """Tests for GatewaySession.discover()."""

    @pytest.mark.asyncio
    async def test_binds_gateway_and_addresses(self, make_gateway, make_discovery):
        """One valid device at 192.168.1.1 reporting 203.0.113.5."""
        router = make_gateway(
            name="Home Router",
            local_address="192.168.1.1",
            external_address="203.0.113.5",
        )
        session = GatewaySession(make_discovery({"192.168.1.1": router}))

        assert await session.discover() is True

        assert session.active_gateway is router
        assert session.get_private_address() == "192.168.1.1"
        assert session.get_public_address() == "203.0.113.5"
        assert await session.is_active() is True

    @pytest.mark.asyncio
    async def test_no_gateways_found(self, make_discovery):
        """An empty search result raises and leaves the session unbound."""
        session = GatewaySession(make_discovery({}))

        with pytest.raises(NoGatewayFoundError):
            await session.discover()

        assert session.active_gateway is None
        assert session.binding is None
        assert await session.is_active() is False

    @pytest.mark.asyncio
    async def test_no_valid_gateway(self, make_gateway, make_discovery):
        """Devices that answer but are not usable gateways raise NoValidGatewayError."""
        gateways = {
            "192.168.1.10": make_gateway(name="Printer", valid=False),
            "10.0.0.2": make_gateway(name="TV", local_address="10.0.0.2", valid=False),
        }
        session = GatewaySession(make_discovery(gateways))

        with pytest.raises(NoValidGatewayError) as exc_info:
            await session.discover()

        assert exc_info.value.details == {"gateways": 2}
        assert session.active_gateway is None

    @pytest.mark.asyncio
    async def test_selects_first_valid_in_discovery_order(
        self, make_gateway, make_discovery
    ):
        """The first valid device wins; later ones are never probed."""
        invalid = make_gateway(name="Invalid", valid=False)
        first = make_gateway(name="First", local_address="10.0.0.2")
        second = make_gateway(name="Second", local_address="10.0.1.2")
        session = GatewaySession(
            make_discovery(
                {"192.168.1.10": invalid, "10.0.0.2": first, "10.0.1.2": second}
            )
        )

        await session.discover()

        assert session.active_gateway is first
        assert session.get_private_address() == "10.0.0.2"
        assert second.calls["is_valid_gateway"] == 0
        assert set(session.gateways) == {"192.168.1.10", "10.0.0.2", "10.0.1.2"}

    @pytest.mark.asyncio
    async def test_discover_is_idempotent_while_active(self, bound_session, discovery_client):
        """A second call while the gateway is still connected runs no new search."""
        gateway = bound_session.active_gateway

        assert await bound_session.discover() is True

        assert discovery_client.rounds == 1
        assert bound_session.active_gateway is gateway

    @pytest.mark.asyncio
    async def test_rediscovers_after_disconnect(self, bound_session, gateway, discovery_client):
        """A gateway that stopped reporting Connected triggers a new search."""
        gateway.connected = False

        await bound_session.discover()

        assert discovery_client.rounds == 2

    @pytest.mark.asyncio
    async def test_external_address_unsupported(self, make_gateway, make_discovery, caplog):
        """A gateway without GetExternalIPAddress still binds, with no public address."""
        caplog.set_level(logging.INFO, logger="igdmap")
        router = make_gateway(external_address=None, entry_count=None)
        session = GatewaySession(make_discovery({"192.168.1.10": router}))

        assert await session.discover() is True

        assert session.get_public_address() is None
        assert session.get_private_address() == "192.168.1.10"
        assert "External address: (unsupported)" in caplog.text
        assert "GetPortMappingNumberOfEntries: (unsupported)" in caplog.text

    @pytest.mark.asyncio
    async def test_protocol_error_keeps_previous_binding(
        self, bound_session, make_gateway, discovery_client
    ):
        """A failure halfway through a rediscovery does not disturb the binding."""
        old = bound_session.binding
        old.gateway.connected = False
        replacement = make_gateway(name="Replacement", local_address="10.0.0.2")
        replacement.fail.add("get_external_ip_address")
        discovery_client.gateways = {"10.0.0.2": replacement}

        with pytest.raises(GatewayProtocolError):
            await bound_session.discover()

        assert bound_session.binding is old
        assert set(bound_session.gateways) == {"192.168.1.10"}

    @pytest.mark.asyncio
    async def test_discovery_error_propagates(self, make_discovery):
        """A failed search surfaces as GatewayProtocolError."""
        client = make_discovery(error=GatewayProtocolError("SSDP search failed"))
        session = GatewaySession(client)

        with pytest.raises(GatewayProtocolError):
            await session.discover()

        assert session.binding is None

    @pytest.mark.asyncio
    async def test_logs_each_gateway(self, session, caplog):
        """Discovery logs the number of devices and the chosen one."""
        caplog.set_level(logging.INFO, logger="igdmap")

        await session.discover()

        assert "1 gateway(s) found" in caplog.text
        assert "Using gateway: Fake Router" in caplog.text
        assert "Using local address: 192.168.1.10" in caplog.text


class TestEnumerateMappings:
    """Tests for the diagnostic mapping listing."""

    @pytest.mark.asyncio
    async def test_queries_entries_plus_one(self, session, gateway):
        """A device holding N entries is asked for exactly N + 1 indices."""
        for port in (8080, 8081, 8082):
            gateway.add_existing(port)

        await session.discover()

        assert gateway.calls["get_generic_port_mapping_entry"] == 4

    @pytest.mark.asyncio
    async def test_returns_entries_in_index_order(self, bound_session, gateway):
        """Entries come back in the order the device reports them."""
        gateway.add_existing(8080, description="web")
        gateway.add_existing(53, "UDP", description="dns")

        entries = await bound_session.enumerate_mappings()

        assert [(e.external_port, e.protocol) for e in entries] == [
            (8080, "TCP"),
            (53, "UDP"),
        ]

    @pytest.mark.asyncio
    async def test_single_entry_when_listing_disabled(self, make_gateway, make_discovery):
        """With list_all_mappings off only entry #0 is fetched."""
        router = make_gateway()
        router.add_existing(8080)
        router.add_existing(8081)
        session = GatewaySession(
            make_discovery({"192.168.1.10": router}),
            GatewayConfig(list_all_mappings=False),
        )

        await session.discover()

        assert router.calls["get_generic_port_mapping_entry"] == 1

    @pytest.mark.asyncio
    async def test_stops_at_configured_bound(self, make_gateway, make_discovery, caplog):
        """Enumeration never runs past max_mapping_entries."""
        caplog.set_level(logging.WARNING, logger="igdmap")
        router = make_gateway()
        for port in range(1000, 1010):
            router.add_existing(port)
        session = GatewaySession(
            make_discovery({"192.168.1.10": router}),
            GatewayConfig(max_mapping_entries=5),
        )

        await session.discover()
        entries = await session.enumerate_mappings()

        assert len(entries) == 5
        assert router.calls["get_generic_port_mapping_entry"] == 10
        assert "Stopped listing port mappings after 5 entries" in caplog.text

    @pytest.mark.asyncio
    async def test_retrieval_failure_stops_listing(self, bound_session, gateway, caplog):
        """A failing entry fetch ends the listing without raising."""
        caplog.set_level(logging.WARNING, logger="igdmap")
        gateway.add_existing(8080)
        gateway.fail.add("get_generic_port_mapping_entry")

        entries = await bound_session.enumerate_mappings()

        assert entries == []
        assert "Portmapping #0 retrieval failed" in caplog.text

    @pytest.mark.asyncio
    async def test_requires_binding(self, session):
        """Without a gateway argument the session must be bound."""
        with pytest.raises(NoActiveGatewayError):
            await session.enumerate_mappings()


class TestSessionState:
    """Tests for accessors, liveness and reset."""

    def test_unbound_accessors(self, session):
        """Before discovery there is no binding and no addresses."""
        assert session.active_gateway is None
        assert session.get_public_address() is None
        assert session.get_private_address() is None
        assert session.gateways == {}

    def test_require_binding_raises(self, session):
        """require_binding() refuses to work on an unbound session."""
        with pytest.raises(NoActiveGatewayError):
            session.require_binding()

    @pytest.mark.asyncio
    async def test_is_active_false_on_protocol_error(self, bound_session, gateway):
        """A liveness probe that fails reports the gateway as inactive."""
        gateway.fail.add("is_connected")

        assert await bound_session.is_active() is False

    @pytest.mark.asyncio
    async def test_gateways_is_a_copy(self, bound_session):
        """Mutating the returned mapping does not touch the session."""
        bound_session.gateways.clear()

        assert len(bound_session.gateways) == 1

    @pytest.mark.asyncio
    async def test_reset(self, bound_session, discovery_client):
        """reset() forgets the binding so the next discover() searches again."""
        await bound_session.reset()

        assert bound_session.binding is None
        assert bound_session.gateways == {}

        await bound_session.discover()
        assert discovery_client.rounds == 2


class TestBindingLock:
    """Tests for the readers/writer lock."""

    @pytest.mark.asyncio
    async def test_readers_share(self):
        """Two readers hold the lock at the same time."""
        lock = BindingLock()
        inside = 0
        peak = 0

        async def reader():
            nonlocal inside, peak
            async with lock.shared():
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(reader(), reader())

        assert peak == 2

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        """A reader waits until the writer releases the lock."""
        lock = BindingLock()
        order: list[str] = []
        writer_inside = asyncio.Event()

        async def writer():
            async with lock.exclusive():
                writer_inside.set()
                await asyncio.sleep(0.01)
                order.append("writer")

        async def reader():
            await writer_inside.wait()
            async with lock.shared():
                order.append("reader")

        await asyncio.gather(writer(), reader())

        assert order == ["writer", "reader"]

    @pytest.mark.asyncio
    async def test_mapping_waits_for_discovery(self, session, gateway):
        """Operations started during discovery see the finished binding."""
        release = asyncio.Event()
        original = gateway.get_external_ip_address

        async def slow_external_ip():
            await release.wait()
            return await original()

        gateway.get_external_ip_address = slow_external_ip

        discovery = asyncio.create_task(session.discover())
        await asyncio.sleep(0)

        async def read_binding():
            async with session.lock.shared():
                return session.require_binding()

        reader = asyncio.create_task(read_binding())
        await asyncio.sleep(0)
        assert not reader.done()

        release.set()
        await discovery
        binding = await reader

        assert binding.local_address == "192.168.1.10"
