"""Port mapping operations against the active gateway."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from igdmap.nat.exceptions import MappingRejectedError, PortAlreadyMappedError
from igdmap.nat.gateway import PortMappingEntry, normalize_protocol, validate_port
from igdmap.nat.session import GatewaySession

logger = logging.getLogger(__name__)


class PortMappingManager:
    """Adds, removes and queries port mappings on the session's gateway.

    Mapping entries are never cached: every call asks the gateway. Calls for
    the same external port and protocol are serialized so the existence
    check and the add request of :meth:`map_port` cannot interleave.
    """

    def __init__(self, session: GatewaySession, description: str | None = None) -> None:
        """Initialize port mapping manager.

        Args:
            session: Session holding the active gateway
            description: Description tag for new mappings
                (default: ``session.config.mapping_description``)

        """
        self.session = session
        self.description = description or session.config.mapping_description
        self._port_locks: dict[str, asyncio.Lock] = {}
        self._port_lock_users: dict[str, int] = {}

    def _make_key(self, protocol: str, external_port: int) -> str:
        """Create mapping key."""
        return f"{protocol.lower()}:{external_port}"

    @contextlib.asynccontextmanager
    async def _port_lock(self, protocol: str, external_port: int) -> AsyncIterator[None]:
        """Hold the lock for one mapping key; the lock is dropped once unused."""
        key = self._make_key(protocol, external_port)
        lock = self._port_locks.setdefault(key, asyncio.Lock())
        self._port_lock_users[key] = self._port_lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._port_lock_users[key] -= 1
            if not self._port_lock_users[key]:
                del self._port_lock_users[key]
                del self._port_locks[key]

    async def map_port(self, port: int, protocol: str = "TCP") -> PortMappingEntry:
        """Map external ``port`` to the same port on the local address.

        Args:
            port: External and internal port
            protocol: "TCP" or "UDP"

        Returns:
            The mapping that was created

        Raises:
            NoActiveGatewayError: No gateway is bound
            PortAlreadyMappedError: The gateway already maps this port
            MappingRejectedError: The gateway declined the request
            GatewayProtocolError: Communication with the gateway failed

        """
        port = validate_port(port)
        protocol = normalize_protocol(protocol)

        async with self.session.lock.shared():
            binding = self.session.require_binding()
            gateway = binding.gateway
            async with self._port_lock(protocol, port):
                logger.info(
                    "Querying device to see if a port mapping already exists for port %d",
                    port,
                )
                existing = await gateway.get_specific_port_mapping_entry(port, protocol)
                if existing is not None:
                    logger.warning("Port %d is already mapped. Aborting.", port)
                    raise PortAlreadyMappedError(port, protocol, existing)

                logger.info(
                    "Mapping free. Sending port mapping request for port %d", port
                )
                accepted = await gateway.add_port_mapping(
                    port, port, binding.local_address, protocol, self.description
                )
                if not accepted:
                    logger.warning("Mapping UNSUCCESSFUL.")
                    msg = f"Gateway rejected mapping for port {port}/{protocol}"
                    raise MappingRejectedError(msg, {"port": port, "protocol": protocol})

        logger.info("Mapping SUCCESSFUL.")
        return PortMappingEntry(
            external_port=port,
            protocol=protocol,
            internal_client=binding.local_address,
            internal_port=port,
            description=self.description,
        )

    async def remove_port(self, port: int, protocol: str = "TCP") -> None:
        """Delete the mapping for external ``port``.

        Raises:
            NoActiveGatewayError: No gateway is bound
            MappingRejectedError: The gateway declined, e.g. no such mapping
            GatewayProtocolError: Communication with the gateway failed

        """
        port = validate_port(port)
        protocol = normalize_protocol(protocol)

        async with self.session.lock.shared():
            gateway = self.session.require_binding().gateway
            async with self._port_lock(protocol, port):
                removed = await gateway.delete_port_mapping(port, protocol)

        if not removed:
            logger.warning("Port mapping removal FAILED")
            msg = f"Gateway rejected removal of port {port}/{protocol}"
            raise MappingRejectedError(msg, {"port": port, "protocol": protocol})
        logger.info("Port mapping removed")

    async def get_mapping(
        self, port: int, protocol: str = "TCP"
    ) -> PortMappingEntry | None:
        """Return the gateway's mapping for external ``port``, if any."""
        port = validate_port(port)
        protocol = normalize_protocol(protocol)

        async with self.session.lock.shared():
            gateway = self.session.require_binding().gateway
            return await gateway.get_specific_port_mapping_entry(port, protocol)

    async def list_mappings(self) -> list[PortMappingEntry]:
        """Enumerate every mapping on the active gateway."""
        async with self.session.lock.shared():
            gateway = self.session.require_binding().gateway
            return await self.session.enumerate_mappings(gateway)
