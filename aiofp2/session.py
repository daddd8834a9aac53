#
# Copyright 2023 aiofp2 team
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
from __future__ import annotations

import logging
from typing import Any, Callable

from aiofp2.exceptions import NotPairedError
from aiofp2.model import CapabilityMap, DeviceRecord
from aiofp2.storage import PairingMaterial
from aiofp2.transport import AccessoryTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[DeviceRecord, "PairingMaterial | None"], AccessoryTransport]


class SessionMap:
    """
    An authenticated session with one accessory and the capability map
    built from its accessory description.

    The transport is created on connect and closed on disconnect, so each
    connect/disconnect cycle owns exactly one transport.
    """

    def __init__(self, transport_factory: TransportFactory) -> None:
        self._transport_factory = transport_factory
        self._transport: AccessoryTransport | None = None
        self._capabilities: CapabilityMap | None = None
        self._accessories: list[dict[str, Any]] | None = None

    @property
    def is_connected(self) -> bool:
        return self._capabilities is not None

    @property
    def transport(self) -> AccessoryTransport | None:
        return self._transport

    @property
    def capabilities(self) -> CapabilityMap | None:
        return self._capabilities

    @property
    def accessories(self) -> list[dict[str, Any]] | None:
        """The /accessories document the capability map was built from."""
        return self._accessories

    async def connect(
        self, record: DeviceRecord, material: PairingMaterial | None
    ) -> CapabilityMap:
        """
        Open a session and build the capability map.

        Calling this again while connected returns the cached map without any
        network traffic. On failure the transport is closed and nothing is
        cached.

        :raises NotPairedError: if there is no pairing material
        """
        if material is None:
            raise NotPairedError(f"{record.id}: not paired")

        if self._capabilities is not None:
            return self._capabilities

        transport = self._transport_factory(record, material)
        try:
            accessories = await transport.get_accessories()
            capabilities = CapabilityMap.from_accessories(accessories)
        except Exception:
            await transport.close()
            raise

        logger.debug("%s: connected, %r", record.id, capabilities)

        self._transport = transport
        self._accessories = accessories
        self._capabilities = capabilities
        return capabilities

    async def disconnect(self) -> None:
        transport, self._transport = self._transport, None
        self._capabilities = None
        self._accessories = None
        if transport is not None:
            await transport.close()

    def resolve(
        self, service_type: str, char_type: str, discriminator: int | None = None
    ) -> int | None:
        if self._capabilities is None:
            return None
        return self._capabilities.resolve(service_type, char_type, discriminator)
