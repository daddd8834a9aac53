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
"""
The AccessoryClient façade.

A client moves strictly forward through Disconnected, Connected and
Subscribed; ``disconnect()`` goes back to Disconnected from anywhere.
Whether the client holds pairing material is a separate question that gates
the move to Connected.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import logging
from typing import Any, Callable, Union

from aiofp2.const import MAX_ZONES, CharacteristicsTypes, ServicesTypes
from aiofp2.dispatcher import EventDispatcher, SubscriptionSet
from aiofp2.events import DomainEvent, ErrorListener, EventListener
from aiofp2.exceptions import CharacteristicError, NotPairedError
from aiofp2.model import CapabilityMap, DeviceRecord
from aiofp2.pairing import PairingManager
from aiofp2.session import SessionMap, TransportFactory
from aiofp2.storage import PairingMaterial, PairingStore
from aiofp2.transport.ip import HapIpTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Disconnected:
    pass


@dataclass(frozen=True, slots=True)
class Connected:
    capabilities: CapabilityMap


@dataclass(frozen=True, slots=True)
class Subscribed:
    capabilities: CapabilityMap
    subscriptions: SubscriptionSet


SessionState = Union[Disconnected, Connected, Subscribed]


class AccessoryClient:
    def __init__(
        self,
        record: DeviceRecord,
        material: PairingMaterial | None = None,
        *,
        store: PairingStore | None = None,
        transport_factory: TransportFactory = HapIpTransport,
        zone_count: int = MAX_ZONES,
    ) -> None:
        self.record = record
        self.store = store
        self.transport_factory = transport_factory
        self.zone_count = zone_count

        if material is None and store is not None:
            material = store.get_pairing(record.id)
        self.material = material

        self.state: SessionState = Disconnected()
        self._session = SessionMap(transport_factory)
        self._dispatcher: EventDispatcher | None = None
        self._pairing = PairingManager(transport_factory, store)

        self._listeners: set[EventListener] = set()
        self._error_listeners: set[ErrorListener] = set()

    def __repr__(self) -> str:
        return f"AccessoryClient(id={self.record.id!r}, state={self.state!r})"

    @property
    def is_paired(self) -> bool:
        return self.material is not None

    @property
    def capabilities(self) -> CapabilityMap | None:
        if isinstance(self.state, Disconnected):
            return None
        return self.state.capabilities

    def add_listener(self, callback: EventListener) -> Callable[[], None]:
        self._listeners.add(callback)

        def stop_listening() -> None:
            self._listeners.discard(callback)

        return stop_listening

    def add_error_listener(self, callback: ErrorListener) -> Callable[[], None]:
        self._error_listeners.add(callback)

        def stop_listening() -> None:
            self._error_listeners.discard(callback)

        return stop_listening

    def _emit(self, event: DomainEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Unhandled error when processing %s", event)

    def _emit_error(self, error: Exception) -> None:
        logger.warning("%s: %s", self.record.id, error)
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Unhandled error when processing error %s", error)

    async def connect(self) -> CapabilityMap:
        """
        Open the session (once) and return the capability map.

        :raises NotPairedError: if no pairing material is available
        """
        capabilities = await self._session.connect(self.record, self.material)
        if isinstance(self.state, Disconnected):
            self.state = Connected(capabilities)
        return capabilities

    async def disconnect(self) -> None:
        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            await dispatcher.stop()
        await self._session.disconnect()
        self.state = Disconnected()

    def resolve(
        self, service_type: str, char_type: str, discriminator: int | None = None
    ) -> int | None:
        return self._session.resolve(service_type, char_type, discriminator)

    async def get(self, iids: Iterable[int]) -> dict[int, Any]:
        """
        Read characteristics of the connected accessory by iid.

        :raises CharacteristicError: if the accessory reports a failed read
        """
        capabilities = await self.connect()
        keys = [(capabilities.aid, iid) for iid in iids]
        response = await self._session.transport.get_characteristics(keys)

        result: dict[int, Any] = {}
        for (_, iid), entry in response.items():
            if "value" not in entry:
                raise CharacteristicError(
                    f"Reading iid {iid} failed: {entry.get('description', entry)}"
                )
            result[iid] = entry["value"]
        return result

    async def put(self, values: Mapping[int, Any]) -> None:
        """
        Write characteristics of the connected accessory by iid.

        :raises CharacteristicError: if the accessory reports a failed write
        """
        capabilities = await self.connect()
        failures = await self._session.transport.put_characteristics(
            [(capabilities.aid, iid, value) for iid, value in values.items()]
        )
        if failures:
            raise CharacteristicError(
                "Writing failed: "
                + ", ".join(
                    f"iid {iid}: {entry.get('description', entry.get('status'))}"
                    for (_, iid), entry in failures.items()
                )
            )

    async def _read_info(self, char_type: str) -> Any:
        await self.connect()
        iid = self.resolve(ServicesTypes.ACCESSORY_INFORMATION, char_type)
        if iid is None:
            raise CharacteristicError(f"{self.record.id}: no {char_type} characteristic")
        return (await self.get([iid]))[iid]

    async def identify(self) -> None:
        """
        Make the device identify itself.

        Unpaired devices get the unauthenticated HAP identify request. The FP2
        is known to refuse it, but it is still sent.
        """
        if not self.is_paired:
            transport = self.transport_factory(self.record, None)
            try:
                await transport.identify()
            finally:
                await transport.close()
            return

        await self.connect()
        iid = self.resolve(ServicesTypes.ACCESSORY_INFORMATION, CharacteristicsTypes.IDENTIFY)
        if iid is None:
            raise CharacteristicError(f"{self.record.id}: no identify characteristic")
        await self.put({iid: True})

    async def get_id(self) -> str:
        """The serial number, e.g. 54EF444A850F."""
        return await self._read_info(CharacteristicsTypes.SERIAL_NUMBER)

    async def accessories(self) -> list[dict[str, Any]]:
        """The accessory description fetched when the session was opened."""
        await self.connect()
        return self._session.accessories

    async def subscribe(self) -> SubscriptionSet:
        """
        Emit the current value of every known characteristic, then start
        forwarding changes to the listeners.
        """
        capabilities = await self.connect()
        if isinstance(self.state, Subscribed):
            return self.state.subscriptions

        dispatcher = EventDispatcher(
            self._session.transport,
            capabilities,
            on_event=self._emit,
            on_error=self._emit_error,
            zone_count=self.zone_count,
        )
        subscriptions = await dispatcher.subscribe()
        self._dispatcher = dispatcher
        self.state = Subscribed(capabilities, subscriptions)
        return subscriptions

    def reconnect_soon(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.reconnect_soon()

    async def pair(self, setup_code: str) -> PairingMaterial:
        self.material = await self._pairing.pair(self.record, setup_code)
        return self.material

    async def unpair(self) -> None:
        """
        :raises NotPairedError: if there is no open session; nothing is sent
        """
        if isinstance(self.state, Disconnected):
            raise NotPairedError(f"{self.record.id}: connect before unpairing")

        dispatcher, self._dispatcher = self._dispatcher, None
        if dispatcher is not None:
            await dispatcher.stop()

        try:
            await self._pairing.unpair(self.record, self._session)
        finally:
            self.state = Disconnected()
        self.material = None
