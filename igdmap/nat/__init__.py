"""NAT traversal through UPnP Internet Gateway Devices.

Discovers IGD-capable gateways, binds one active gateway and manages
port mappings on it.
"""

from igdmap.nat.exceptions import (
    DiscoveryError,
    GatewayProtocolError,
    MappingRejectedError,
    NATError,
    NoActiveGatewayError,
    NoGatewayFoundError,
    NoValidGatewayError,
    PortAlreadyMappedError,
)
from igdmap.nat.gateway import DiscoveryClient, GatewayDevice, PortMappingEntry
from igdmap.nat.manager import NATManager
from igdmap.nat.port_mapping import PortMappingManager
from igdmap.nat.session import GatewaySession

__all__ = [
    "DiscoveryClient",
    "DiscoveryError",
    "GatewayDevice",
    "GatewayProtocolError",
    "GatewaySession",
    "MappingRejectedError",
    "NATError",
    "NATManager",
    "NoActiveGatewayError",
    "NoGatewayFoundError",
    "NoValidGatewayError",
    "PortAlreadyMappedError",
    "PortMappingEntry",
    "PortMappingManager",
]
