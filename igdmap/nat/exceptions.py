"""NAT traversal exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from igdmap.utils.exceptions import IGDMapError

if TYPE_CHECKING:  # pragma: no cover
    from igdmap.nat.gateway import PortMappingEntry


class NATError(IGDMapError):
    """Base exception for NAT traversal errors."""


class DiscoveryError(NATError):
    """Discovery finished without a usable gateway."""


class NoGatewayFoundError(DiscoveryError):
    """No gateway answered the discovery search."""


class NoValidGatewayError(DiscoveryError):
    """Gateways answered but none exposes a usable IGD control endpoint."""


class GatewayProtocolError(NATError):
    """Malformed response, I/O failure or interrupted wait talking to a device."""


class NoActiveGatewayError(NATError):
    """A mapping operation was attempted before a gateway was bound."""


class PortAlreadyMappedError(NATError):
    """The requested external port already has a mapping on the gateway."""

    def __init__(
        self,
        port: int,
        protocol: str,
        entry: PortMappingEntry | None = None,
    ) -> None:
        """Initialize conflict error with the existing entry, when known."""
        details = {"port": port, "protocol": protocol}
        if entry is not None:
            details["internal_client"] = entry.internal_client
            details["description"] = entry.description
        super().__init__(f"Port {port}/{protocol} is already mapped", details)
        self.port = port
        self.protocol = protocol
        self.entry = entry


class MappingRejectedError(NATError):
    """The gateway declined to add or delete a port mapping."""
