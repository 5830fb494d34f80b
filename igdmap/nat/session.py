"""Gateway session: discovery and active gateway binding."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from igdmap.models import GatewayConfig
from igdmap.nat.exceptions import (
    GatewayProtocolError,
    NoActiveGatewayError,
    NoGatewayFoundError,
    NoValidGatewayError,
)
from igdmap.nat.gateway import DiscoveryClient, GatewayDevice, PortMappingEntry

logger = logging.getLogger(__name__)


class BindingLock:
    """Readers/writer lock guarding the active gateway binding.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so discovery is not starved
    by a steady stream of mapping calls.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                self._condition.notify_all()

    @contextlib.asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer = False
                self._condition.notify_all()


@dataclass(frozen=True)
class GatewayBinding:
    """Snapshot of the active gateway and the addresses it reported."""

    gateway: GatewayDevice
    local_address: str
    external_address: str | None = None


@dataclass
class _SessionState:
    gateways: dict[str, GatewayDevice] = field(default_factory=dict)
    binding: GatewayBinding | None = None


class GatewaySession:
    """Owns discovery and the single active gateway.

    State moves from unbound to bound only through a successful
    :meth:`discover`; a failed discovery leaves the previous state intact.
    """

    def __init__(
        self,
        discovery_client: DiscoveryClient,
        config: GatewayConfig | None = None,
    ) -> None:
        """Initialize gateway session.

        Args:
            discovery_client: Client used to find gateways on the network
            config: Gateway configuration (defaults apply when None)

        """
        self.discovery_client = discovery_client
        self.config = config or GatewayConfig()
        self.lock = BindingLock()
        self._state = _SessionState()

    @property
    def gateways(self) -> dict[str, GatewayDevice]:
        """Gateways found by the last successful discovery, by local address."""
        return dict(self._state.gateways)

    @property
    def active_gateway(self) -> GatewayDevice | None:
        """The bound gateway, or None."""
        binding = self._state.binding
        return binding.gateway if binding else None

    @property
    def binding(self) -> GatewayBinding | None:
        """Current binding snapshot, or None before a successful discovery."""
        return self._state.binding

    def require_binding(self) -> GatewayBinding:
        """Return the current binding or raise NoActiveGatewayError."""
        binding = self._state.binding
        if binding is None:
            msg = "No active gateway; run discover() first"
            raise NoActiveGatewayError(msg)
        return binding

    def get_public_address(self) -> str | None:
        """External address reported by the active gateway."""
        binding = self._state.binding
        return binding.external_address if binding else None

    def get_private_address(self) -> str | None:
        """Local interface address used to reach the active gateway."""
        binding = self._state.binding
        return binding.local_address if binding else None

    async def is_active(self) -> bool:
        """Whether a gateway is bound and currently reports itself connected."""
        binding = self._state.binding
        if binding is None:
            return False
        try:
            return await binding.gateway.is_connected()
        except GatewayProtocolError as e:
            logger.debug("Liveness check of active gateway failed: %s", e)
            return False

    async def discover(self) -> bool:
        """Discover gateways and bind the first valid one.

        Returns:
            True once a gateway is bound

        Raises:
            NoGatewayFoundError: Nothing answered the search
            NoValidGatewayError: No answering device is a usable gateway
            GatewayProtocolError: Discovery or device communication failed

        """
        async with self.lock.exclusive():
            if await self.is_active():
                logger.debug("Active gateway still connected, skipping discovery")
                return True

            gateways = await self.discovery_client.discover()
            if not gateways:
                logger.warning("No gateways found")
                msg = "No gateways found"
                raise NoGatewayFoundError(msg)

            logger.info("%d gateway(s) found", len(gateways))
            for counter, (local_address, gw) in enumerate(gateways.items(), start=1):
                logger.info(
                    "Gateway #%d: friendly name: %s, presentation URL: %s, "
                    "model name: %s, model number: %s, local interface address: %s",
                    counter,
                    gw.friendly_name,
                    gw.presentation_url,
                    gw.model_name,
                    gw.model_number,
                    local_address,
                )

            active = await self._select_gateway(gateways)
            if active is None:
                logger.warning("No active gateway device found")
                msg = "No active gateway device found"
                raise NoValidGatewayError(msg, {"gateways": len(gateways)})
            logger.info("Using gateway: %s", active.friendly_name)

            count = await active.get_port_mapping_number_of_entries()
            logger.info(
                "GetPortMappingNumberOfEntries: %s",
                count if count is not None else "(unsupported)",
            )

            await self.enumerate_mappings(active)

            local_address = active.local_address
            logger.info("Using local address: %s", local_address)
            external_address = await active.get_external_ip_address()
            if external_address is None:
                logger.warning("External address: (unsupported)")
            else:
                logger.info("External address: %s", external_address)

            self._state = _SessionState(
                gateways=dict(gateways),
                binding=GatewayBinding(
                    gateway=active,
                    local_address=local_address,
                    external_address=external_address,
                ),
            )
            return True

    async def _select_gateway(
        self, gateways: dict[str, GatewayDevice]
    ) -> GatewayDevice | None:
        """Return the first gateway, in discovery order, that is valid."""
        for gw in gateways.values():
            if await gw.is_valid_gateway():
                return gw
        return None

    async def enumerate_mappings(
        self, gateway: GatewayDevice | None = None
    ) -> list[PortMappingEntry]:
        """List port mappings on a gateway for diagnostics.

        Fetches generic entries from index 0 until the device reports no
        further entry or a fetch fails, and never past
        ``config.max_mapping_entries``. Only entry #0 is fetched when
        ``config.list_all_mappings`` is off.

        Args:
            gateway: Gateway to scan (default: the active gateway)

        Returns:
            Entries retrieved before the scan stopped

        """
        if gateway is None:
            gateway = self.require_binding().gateway

        limit = self.config.max_mapping_entries if self.config.list_all_mappings else 1
        entries: list[PortMappingEntry] = []
        for index in range(limit):
            try:
                entry = await gateway.get_generic_port_mapping_entry(index)
            except GatewayProtocolError as e:
                logger.warning("Portmapping #%d retrieval failed: %s", index, e)
                break
            if entry is None:
                if self.config.list_all_mappings:
                    logger.info("Portmapping #%d: no further entries", index)
                else:
                    logger.warning("Portmapping #%d retrieval failed", index)
                break
            logger.info(
                "Portmapping #%d successfully retrieved (%s:%d)",
                index,
                entry.description,
                entry.external_port,
            )
            entries.append(entry)
        else:
            if self.config.list_all_mappings:
                logger.warning(
                    "Stopped listing port mappings after %d entries", limit
                )
        return entries

    async def reset(self) -> None:
        """Forget the active gateway and discovered devices."""
        async with self.lock.exclusive():
            self._state = _SessionState()
            logger.debug("Gateway session reset")
