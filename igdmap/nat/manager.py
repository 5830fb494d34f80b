"""NAT manager: boolean facade over the gateway session and port mappings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from igdmap.nat.exceptions import NATError
from igdmap.nat.port_mapping import PortMappingManager
from igdmap.nat.session import GatewaySession
from igdmap.nat.upnp import UPnPDiscoveryClient
from igdmap.utils.logging_config import LoggingContext, log_exception

if TYPE_CHECKING:  # pragma: no cover
    from igdmap.models import Config
    from igdmap.nat.gateway import DiscoveryClient

logger = logging.getLogger(__name__)


class NATManager:
    """UPnP port forwarding for one local application.

    Create one instance, call :meth:`discover` to find the gateway, then
    :meth:`map_port` to make a local port reachable from outside. The boolean
    methods log failures and return False; ``session`` and ``port_mapper``
    raise the typed errors from :mod:`igdmap.nat.exceptions` instead.
    """

    def __init__(
        self,
        config: Config,
        discovery_client: DiscoveryClient | None = None,
    ) -> None:
        """Initialize NAT manager.

        Args:
            config: Configuration object with gateway settings
            discovery_client: Discovery client (default: UPnP over SSDP)

        """
        self.config = config
        gateway_config = config.gateway
        if discovery_client is None:
            discovery_client = UPnPDiscoveryClient(
                timeout=gateway_config.discovery_timeout,
                http_timeout=gateway_config.http_timeout,
                source_address=gateway_config.source_address,
            )
        self.session = GatewaySession(discovery_client, gateway_config)
        self.port_mapper = PortMappingManager(self.session)

    async def __aenter__(self) -> NATManager:
        await self.discover()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    async def discover(self) -> bool:
        """Discover gateways and bind one. Returns True once bound."""
        with LoggingContext("gateway_discovery"):
            try:
                return await self.session.discover()
            except NATError as e:
                log_exception(logger, e, "Gateway discovery failed")
                return False

    async def is_active(self) -> bool:
        """Whether a gateway is bound and connected."""
        return await self.session.is_active()

    async def map_port(self, port: int) -> bool:
        """Map TCP ``port`` on the gateway to the same local port.

        Returns False, after logging why, when the port is invalid or the
        mapping could not be made.
        """
        try:
            await self.port_mapper.map_port(port)
        except ValueError as e:
            logger.warning("Mapping port %s failed: %s", port, e)
            return False
        except NATError as e:
            log_exception(logger, e, f"Mapping port {port} failed")
            return False
        return True

    async def remove_port(self, port: int) -> bool:
        """Remove the TCP mapping for ``port``. Returns False on any failure."""
        try:
            await self.port_mapper.remove_port(port)
        except ValueError as e:
            logger.warning("Removing port %s failed: %s", port, e)
            return False
        except NATError as e:
            log_exception(logger, e, f"Removing port {port} failed")
            return False
        return True

    def get_public_address(self) -> str | None:
        """External address of the active gateway."""
        return self.session.get_public_address()

    def get_private_address(self) -> str | None:
        """Local address used to reach the active gateway."""
        return self.session.get_private_address()
