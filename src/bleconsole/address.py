"""
Parsing of ``service/characteristic`` and bare ``characteristic`` addresses.
"""

from __future__ import annotations

import logging

from .errors import (
    AttributeNotFoundError,
    MalformedAddressError,
    NoServiceSelectedError,
)
from .model import Attribute, GattTree, ResolvedTarget
from .resolver import find
from .transport import GattTransport

logger = logging.getLogger(__name__)


class AddressParser:
    """Resolves user address tokens against the GATT tree.

    The two-part form always enumerates the named service's characteristics
    afresh from the transport, even when that service is the selected one.
    """

    def __init__(self, tree: GattTree, transport: GattTransport) -> None:
        self.tree = tree
        self.transport = transport

    async def parse(self, token: str) -> ResolvedTarget:
        """Resolve an address token.

        Args:
            token: ``service/characteristic`` or ``characteristic``; each part
                may be a name or ``#N`` index

        Returns:
            ResolvedTarget for the characteristic

        Raises:
            MalformedAddressError: Empty token or more than one '/'
            NoServiceSelectedError: Bare characteristic with no selected service
            AttributeNotFoundError: Service or characteristic does not resolve
            TransportFailure: Characteristic enumeration failed
        """
        token = token.strip()
        if not token:
            raise MalformedAddressError(
                "Please specify characteristic name or #."
            )

        parts = token.split("/")
        if len(parts) > 2:
            raise MalformedAddressError(f"Malformed address {token!r}")

        if len(parts) == 2:
            service_token, char_token = parts
            service = self.tree.find_service(service_token)
            handles = await self.transport.get_characteristics(service.handle)
            characteristics = [Attribute.from_handle(h) for h in handles]
            logger.debug(
                f"Enumerated {len(characteristics)} characteristics of {service.name}"
            )
        else:
            char_token = parts[0]
            service = self.tree.selected_service
            if service is None:
                raise NoServiceSelectedError("No service is selected.")
            characteristics = self.tree.characteristics

        characteristic = find(characteristics, char_token)
        if len(parts) == 2:
            for other in characteristics:
                if other is not characteristic:
                    other.release()
        if characteristic is None or not characteristic.is_valid:
            raise AttributeNotFoundError(f"Invalid characteristic {char_token}")
        return ResolvedTarget(service=service, characteristic=characteristic)
