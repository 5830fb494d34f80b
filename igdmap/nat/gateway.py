"""Abstract gateway interfaces.

A :class:`DiscoveryClient` finds gateways on the local network and a
:class:`GatewayDevice` exposes the IGD control actions of one of them. The
session and port mapping layers only talk to these interfaces, so they can
be driven by the UPnP adapter in :mod:`igdmap.nat.upnp` or by a test double.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

PROTOCOLS = ("TCP", "UDP")


def normalize_protocol(protocol: str) -> str:
    """Return the upper-case protocol name, rejecting anything but TCP/UDP."""
    value = protocol.upper()
    if value not in PROTOCOLS:
        msg = f"Unsupported protocol: {protocol!r} (expected TCP or UDP)"
        raise ValueError(msg)
    return value


def validate_port(port: int) -> int:
    """Return ``port`` if it is a valid TCP/UDP port number."""
    if isinstance(port, bool) or not isinstance(port, int):
        msg = f"Port must be an integer, got {port!r}"
        raise ValueError(msg)
    if not 0 < port < 65536:
        msg = f"Port out of range: {port}"
        raise ValueError(msg)
    return port


@dataclass(frozen=True)
class PortMappingEntry:
    """One port mapping as reported by a gateway."""

    external_port: int
    protocol: str  # "TCP" or "UDP"
    internal_client: str
    internal_port: int
    description: str = ""
    remote_host: str = ""
    enabled: bool = True
    lease_duration: int = 0  # seconds, 0 for permanent


class GatewayDevice(ABC):
    """Control interface of one discovered Internet Gateway Device.

    Optional IGD actions return ``None`` when the device does not support
    them. Communication failures raise
    :class:`~igdmap.nat.exceptions.GatewayProtocolError`.
    """

    @property
    @abstractmethod
    def friendly_name(self) -> str:
        """Human readable device name."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Device model name."""

    @property
    @abstractmethod
    def model_number(self) -> str:
        """Device model number."""

    @property
    @abstractmethod
    def presentation_url(self) -> str | None:
        """Administration page of the device, if advertised."""

    @property
    @abstractmethod
    def local_address(self) -> str:
        """Address of the local interface the device was reached through."""

    @abstractmethod
    async def is_valid_gateway(self) -> bool:
        """Whether the device exposes a usable IGD connection service."""

    @abstractmethod
    async def is_connected(self) -> bool:
        """Whether the device currently reports its WAN connection as up."""

    @abstractmethod
    async def get_external_ip_address(self) -> str | None:
        """External IP address, or None if unsupported."""

    @abstractmethod
    async def get_port_mapping_number_of_entries(self) -> int | None:
        """Number of port mappings, or None if unsupported."""

    @abstractmethod
    async def get_generic_port_mapping_entry(
        self, index: int
    ) -> PortMappingEntry | None:
        """Port mapping at position ``index``, or None past the last one."""

    @abstractmethod
    async def get_specific_port_mapping_entry(
        self, external_port: int, protocol: str
    ) -> PortMappingEntry | None:
        """Port mapping for ``external_port``/``protocol``, or None if absent."""

    @abstractmethod
    async def add_port_mapping(
        self,
        external_port: int,
        internal_port: int,
        internal_host: str,
        protocol: str,
        description: str,
    ) -> bool:
        """Ask the device to add a mapping. Returns the device's acknowledgement."""

    @abstractmethod
    async def delete_port_mapping(self, external_port: int, protocol: str) -> bool:
        """Ask the device to delete a mapping. Returns the device's acknowledgement."""


class DiscoveryClient(ABC):
    """Finds gateway devices on the local network."""

    @abstractmethod
    async def discover(self) -> dict[str, GatewayDevice]:
        """Run one discovery cycle.

        Returns:
            Mapping of local interface address to gateway device, in
            discovery order. Empty if nothing answered.

        Raises:
            GatewayProtocolError: If the search itself failed

        """
