"""UPnP IGD (Internet Gateway Device) adapter.

Implements :class:`~igdmap.nat.gateway.DiscoveryClient` and
:class:`~igdmap.nat.gateway.GatewayDevice` on top of ``async_upnp_client``,
which provides the SSDP search, device description parsing and SOAP calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from async_upnp_client.aiohttp import AiohttpRequester
from async_upnp_client.client import UpnpDevice, UpnpService
from async_upnp_client.client_factory import UpnpFactory
from async_upnp_client.exceptions import UpnpActionResponseError, UpnpError
from async_upnp_client.profiles.igd import IgdDevice
from async_upnp_client.utils import get_local_ip

from igdmap.nat.exceptions import GatewayProtocolError
from igdmap.nat.gateway import (
    DiscoveryClient,
    GatewayDevice,
    PortMappingEntry,
    normalize_protocol,
)

logger = logging.getLogger(__name__)

# Connection services able to carry port mappings, in order of preference
WAN_CONNECTION_SERVICE_TYPES = (
    "urn:schemas-upnp-org:service:WANIPConnection:2",
    "urn:schemas-upnp-org:service:WANIPConnection:1",
    "urn:schemas-upnp-org:service:WANPPPConnection:1",
)

# UPnP error codes
UPNP_INVALID_ACTION = 401
UPNP_OPTIONAL_ACTION_NOT_IMPLEMENTED = 602
UPNP_SPECIFIED_ARRAY_INDEX_INVALID = 713
UPNP_NO_SUCH_ENTRY_IN_ARRAY = 714

_UNSUPPORTED_CODES = {UPNP_INVALID_ACTION, UPNP_OPTIONAL_ACTION_NOT_IMPLEMENTED}
_NO_ENTRY_CODES = {UPNP_SPECIFIED_ARRAY_INDEX_INVALID, UPNP_NO_SUCH_ENTRY_IN_ARRAY}

# Errors raised by the transport underneath async_upnp_client
_TRANSPORT_ERRORS = (UpnpError, aiohttp.ClientError, OSError, asyncio.TimeoutError)


class _UnsupportedActionError(Exception):
    """The connection service does not offer the requested action."""


def _fault_code(err: UpnpActionResponseError) -> int | None:
    """Return the UPnP error code of a SOAP fault as an int, if any."""
    try:
        return int(err.error_code) if err.error_code is not None else None
    except (TypeError, ValueError):
        return None


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return bool(value)


class UPnPGatewayDevice(GatewayDevice):
    """Gateway device backed by an ``async_upnp_client`` UpnpDevice."""

    def __init__(self, device: UpnpDevice, local_address: str) -> None:
        """Initialize gateway device.

        Args:
            device: Device built from the gateway's description document
            local_address: Local interface address the gateway is reached through

        """
        self._device = device
        self._local_address = local_address
        self._service = self._find_connection_service(device)

    @staticmethod
    def _find_connection_service(device: UpnpDevice) -> UpnpService | None:
        for service_type in WAN_CONNECTION_SERVICE_TYPES:
            service = device.find_service(service_type)
            if service is not None and service.control_url:
                return service
        return None

    @property
    def device(self) -> UpnpDevice:
        """Underlying UpnpDevice."""
        return self._device

    @property
    def has_connection_service(self) -> bool:
        """Whether the description advertises a WAN connection control URL."""
        return self._service is not None

    @property
    def friendly_name(self) -> str:
        return self._device.friendly_name or ""

    @property
    def model_name(self) -> str:
        return self._device.model_name or ""

    @property
    def model_number(self) -> str:
        return self._device.model_number or ""

    @property
    def presentation_url(self) -> str | None:
        return self._device.presentation_url

    @property
    def local_address(self) -> str:
        return self._local_address

    def __repr__(self) -> str:
        return f"<UPnPGatewayDevice {self.friendly_name!r} via {self._local_address}>"

    async def _call(self, action_name: str, **kwargs: Any) -> dict[str, Any]:
        """Call an action on the WAN connection service.

        Raises:
            _UnsupportedActionError: If the service lacks the action
            UpnpActionResponseError: If the device answered with a SOAP fault
            GatewayProtocolError: On any transport or parsing failure

        """
        if self._service is None:
            msg = f"{self.friendly_name or 'Device'} has no WAN connection service"
            raise GatewayProtocolError(msg)
        if not self._service.has_action(action_name):
            raise _UnsupportedActionError(action_name)

        action = self._service.action(action_name)
        try:
            result = await action.async_call(**kwargs)
        except UpnpActionResponseError:
            raise
        except _TRANSPORT_ERRORS as e:
            msg = f"{action_name} failed: {e}"
            raise GatewayProtocolError(
                msg, {"device": self.friendly_name, "action": action_name}
            ) from e
        return dict(result)

    async def _call_optional(
        self, action_name: str, **kwargs: Any
    ) -> dict[str, Any] | None:
        """Call an optional action, returning None when it is not implemented."""
        try:
            return await self._call(action_name, **kwargs)
        except _UnsupportedActionError:
            logger.debug("%s is not offered by %s", action_name, self.friendly_name)
            return None
        except UpnpActionResponseError as e:
            if _fault_code(e) in _UNSUPPORTED_CODES:
                logger.debug(
                    "%s not implemented by %s (UPnP error %s)",
                    action_name,
                    self.friendly_name,
                    e.error_code,
                )
                return None
            msg = f"{action_name} failed: UPnP error {e.error_code} {e.error_desc or ''}".rstrip()
            raise GatewayProtocolError(msg) from e

    async def is_valid_gateway(self) -> bool:
        if self._service is None:
            return False
        try:
            return await self.is_connected()
        except GatewayProtocolError as e:
            logger.debug("Gateway %s failed liveness check: %s", self.friendly_name, e)
            return False

    async def is_connected(self) -> bool:
        response = await self._call_optional("GetStatusInfo")
        if response is None:
            return False
        return response.get("NewConnectionStatus") == "Connected"

    async def get_external_ip_address(self) -> str | None:
        response = await self._call_optional("GetExternalIPAddress")
        if response is None:
            return None
        return response.get("NewExternalIPAddress") or None

    async def get_port_mapping_number_of_entries(self) -> int | None:
        response = await self._call_optional("GetPortMappingNumberOfEntries")
        if response is None:
            return None
        value = response.get("NewPortMappingNumberOfEntries")
        return None if value is None else _as_int(value)

    async def get_generic_port_mapping_entry(
        self, index: int
    ) -> PortMappingEntry | None:
        try:
            response = await self._call(
                "GetGenericPortMappingEntry", NewPortMappingIndex=index
            )
        except _UnsupportedActionError:
            return None
        except UpnpActionResponseError as e:
            if _fault_code(e) in _NO_ENTRY_CODES:
                return None
            msg = f"GetGenericPortMappingEntry({index}) failed: UPnP error {e.error_code}"
            raise GatewayProtocolError(msg) from e

        return PortMappingEntry(
            external_port=_as_int(response.get("NewExternalPort")),
            protocol=str(response.get("NewProtocol") or "").upper(),
            internal_client=str(response.get("NewInternalClient") or ""),
            internal_port=_as_int(response.get("NewInternalPort")),
            description=str(response.get("NewPortMappingDescription") or ""),
            remote_host=str(response.get("NewRemoteHost") or ""),
            enabled=_as_bool(response.get("NewEnabled", True)),
            lease_duration=_as_int(response.get("NewLeaseDuration")),
        )

    async def get_specific_port_mapping_entry(
        self, external_port: int, protocol: str
    ) -> PortMappingEntry | None:
        protocol = normalize_protocol(protocol)
        try:
            response = await self._call(
                "GetSpecificPortMappingEntry",
                NewRemoteHost="",
                NewExternalPort=external_port,
                NewProtocol=protocol,
            )
        except _UnsupportedActionError as e:
            msg = "GetSpecificPortMappingEntry is not supported by the gateway"
            raise GatewayProtocolError(msg) from e
        except UpnpActionResponseError as e:
            if _fault_code(e) in _NO_ENTRY_CODES:
                return None
            msg = (
                f"GetSpecificPortMappingEntry({external_port}/{protocol}) failed: "
                f"UPnP error {e.error_code}"
            )
            raise GatewayProtocolError(msg) from e

        return PortMappingEntry(
            external_port=external_port,
            protocol=protocol,
            internal_client=str(response.get("NewInternalClient") or ""),
            internal_port=_as_int(response.get("NewInternalPort")),
            description=str(response.get("NewPortMappingDescription") or ""),
            enabled=_as_bool(response.get("NewEnabled", True)),
            lease_duration=_as_int(response.get("NewLeaseDuration")),
        )

    async def add_port_mapping(
        self,
        external_port: int,
        internal_port: int,
        internal_host: str,
        protocol: str,
        description: str,
    ) -> bool:
        protocol = normalize_protocol(protocol)
        try:
            await self._call(
                "AddPortMapping",
                NewRemoteHost="",
                NewExternalPort=external_port,
                NewProtocol=protocol,
                NewInternalPort=internal_port,
                NewInternalClient=internal_host,
                NewEnabled=True,
                NewPortMappingDescription=description,
                NewLeaseDuration=0,
            )
        except _UnsupportedActionError as e:
            msg = "AddPortMapping is not supported by the gateway"
            raise GatewayProtocolError(msg) from e
        except UpnpActionResponseError as e:
            logger.warning(
                "Gateway rejected AddPortMapping %s/%s: UPnP error %s %s",
                external_port,
                protocol,
                e.error_code,
                e.error_desc or "",
            )
            return False
        return True

    async def delete_port_mapping(self, external_port: int, protocol: str) -> bool:
        protocol = normalize_protocol(protocol)
        try:
            await self._call(
                "DeletePortMapping",
                NewRemoteHost="",
                NewExternalPort=external_port,
                NewProtocol=protocol,
            )
        except _UnsupportedActionError as e:
            msg = "DeletePortMapping is not supported by the gateway"
            raise GatewayProtocolError(msg) from e
        except UpnpActionResponseError as e:
            logger.warning(
                "Gateway rejected DeletePortMapping %s/%s: UPnP error %s %s",
                external_port,
                protocol,
                e.error_code,
                e.error_desc or "",
            )
            return False
        return True


class UPnPDiscoveryClient(DiscoveryClient):
    """SSDP discovery of Internet Gateway Devices."""

    def __init__(
        self,
        timeout: int = 4,
        http_timeout: float = 5.0,
        source_address: str = "0.0.0.0",  # nosec B104 - SSDP search from all interfaces
        factory: UpnpFactory | None = None,
    ) -> None:
        """Initialize discovery client.

        Args:
            timeout: SSDP search duration (MX) in seconds
            http_timeout: Timeout for description and SOAP requests in seconds
            source_address: Local address to send the search from
            factory: Device factory (default: aiohttp requester, non-strict parsing)

        """
        self.timeout = timeout
        self.source_address = source_address
        self.factory = factory or UpnpFactory(
            AiohttpRequester(timeout=http_timeout), non_strict=True
        )

    async def discover(self) -> dict[str, GatewayDevice]:
        """Search for IGDs and load the description of every responder.

        Devices whose description cannot be loaded are logged and skipped,
        unless no responder could be loaded at all, which raises
        GatewayProtocolError.
        When several gateways sit behind the same local interface the first
        one exposing a WAN connection service wins.
        """
        try:
            responses = await IgdDevice.async_search(
                source=(self.source_address, 0), timeout=self.timeout
            )
        except (UpnpError, OSError) as e:
            msg = f"SSDP search failed: {e}"
            raise GatewayProtocolError(msg) from e

        locations = sorted(
            {response.get("location") for response in responses} - {None, ""}
        )
        logger.debug("SSDP search returned %d location(s)", len(locations))

        gateways: dict[str, GatewayDevice] = {}
        failed: list[str] = []
        last_error: Exception | None = None
        for location in locations:
            try:
                device = await self.factory.async_create_device(location)
            except _TRANSPORT_ERRORS as e:
                logger.warning(
                    "Failed to load device description from %s: %s", location, e
                )
                failed.append(location)
                last_error = e
                continue

            try:
                local_address = get_local_ip(location)
            except OSError as e:
                logger.warning("No local route to gateway at %s: %s", location, e)
                failed.append(location)
                last_error = e
                continue

            gateway = UPnPGatewayDevice(device, local_address)
            existing = gateways.get(local_address)
            if existing is None or (
                isinstance(existing, UPnPGatewayDevice)
                and not existing.has_connection_service
                and gateway.has_connection_service
            ):
                gateways[local_address] = gateway
            else:
                logger.debug(
                    "Ignoring additional gateway %s on interface %s",
                    location,
                    local_address,
                )

        if not gateways and failed:
            msg = (
                f"No device description could be loaded from {len(failed)} "
                "responder(s)"
            )
            raise GatewayProtocolError(msg, {"locations": failed}) from last_error

        return gateways
