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
In-memory stand-ins for an FP2 and the network.

``FakeAccessory`` plays the device: it keeps characteristic values and the
list of paired controllers, and hands out ``FakeAccessoryTransport``
instances through ``transport_factory`` so the whole client stack can run
without sockets.
"""
from __future__ import annotations

from collections.abc import Iterable
import copy
import logging
import os
from typing import Any, Callable
import uuid

from aiofp2 import exceptions
from aiofp2.const import MODEL_SIGNATURE, CharacteristicsTypes, ServicesTypes
from aiofp2.model import DeviceRecord
from aiofp2.transport import AccessoryTransport
from aiofp2.transport.statuscodes import HapStatusCode
from aiofp2.uuid import normalize_uuid

_LOGGER = logging.getLogger(__name__)

FAKE_DEVICE_ID = "12:34:56:78:9a:bc"
FAKE_SERIAL = "54EF444A850F"
FAKE_SETUP_CODE = "111-22-333"


def _char(iid: int, char_type: str, value: Any = None, perms=("pr",)) -> dict[str, Any]:
    char: dict[str, Any] = {"iid": iid, "type": char_type, "perms": list(perms)}
    if value is not None:
        char["value"] = value
    return char


def fp2_accessories(
    zones: Iterable[int] = (0, 1, 2),
    light: bool = True,
    serial: str = FAKE_SERIAL,
    lux: float = 120.0,
) -> list[dict[str, Any]]:
    """
    An /accessories document shaped like the one an FP2 returns.

    Occupancy services are laid out in the order given, so zones can be
    sparse or out of order.
    """
    services = [
        {
            "iid": 1,
            "type": ServicesTypes.ACCESSORY_INFORMATION,
            "characteristics": [
                _char(2, CharacteristicsTypes.IDENTIFY, perms=("pw",)),
                _char(3, CharacteristicsTypes.MANUFACTURER, "Aqara"),
                _char(4, CharacteristicsTypes.MODEL, MODEL_SIGNATURE),
                _char(5, CharacteristicsTypes.NAME, "Presence-Sensor-FP2-850F"),
                _char(6, CharacteristicsTypes.SERIAL_NUMBER, serial),
                _char(7, CharacteristicsTypes.FIRMWARE_REVISION, "1.1.7"),
            ],
        },
        {
            "iid": 8,
            "type": ServicesTypes.PROTOCOL_INFORMATION,
            "characteristics": [_char(9, CharacteristicsTypes.VERSION, "1.1.0")],
        },
    ]

    if light:
        services.append(
            {
                "iid": 10,
                "type": ServicesTypes.LIGHT_SENSOR,
                "characteristics": [
                    _char(11, CharacteristicsTypes.NAME, "Light Sensor"),
                    _char(
                        12,
                        CharacteristicsTypes.CURRENT_AMBIENT_LIGHT_LEVEL,
                        lux,
                        perms=("pr", "ev"),
                    ),
                ],
            }
        )

    for position, zone in enumerate(zones):
        base = 100 + 10 * position
        services.append(
            {
                "iid": base,
                "type": ServicesTypes.OCCUPANCY_SENSOR,
                "characteristics": [
                    _char(base + 1, CharacteristicsTypes.OCCUPANCY_DETECTED, 0, perms=("pr", "ev")),
                    _char(base + 2, CharacteristicsTypes.AQARA_INDEX, zone),
                    _char(base + 3, CharacteristicsTypes.NAME, f"Zone {zone + 1}"),
                ],
            }
        )

    return [{"aid": 1, "services": services}]


def fake_record(
    device_id: str = FAKE_DEVICE_ID, pairable: bool = True, **kwargs
) -> DeviceRecord:
    kwargs.setdefault("address", "192.168.1.20")
    kwargs.setdefault("port", 8080)
    kwargs.setdefault("model", MODEL_SIGNATURE)
    kwargs.setdefault("name", "Presence-Sensor-FP2-850F")
    return DeviceRecord(id=device_id, pairable=pairable, **kwargs)


class FakeAccessory:
    """The simulated device behind every FakeAccessoryTransport it creates."""

    def __init__(
        self,
        accessories: list[dict[str, Any]] | None = None,
        *,
        device_id: str = FAKE_DEVICE_ID,
        setup_code: str = FAKE_SETUP_CODE,
    ) -> None:
        self.accessories = accessories if accessories is not None else fp2_accessories()
        self.device_id = device_id
        self.setup_code = setup_code

        self.values: dict[tuple[int, int], Any] = {}
        self.types: dict[tuple[int, int], str] = {}
        for accessory in self.accessories:
            for service in accessory["services"]:
                for char in service["characteristics"]:
                    key = (accessory["aid"], char["iid"])
                    self.types[key] = normalize_uuid(char["type"])
                    if "value" in char:
                        self.values[key] = char["value"]

        # pairing id -> (public key, admin)
        self.pairings: dict[str, tuple[bytes, bool]] = {}
        self.transports: list[FakeAccessoryTransport] = []

        self.get_accessories_calls = 0
        self.subscribe_calls = 0
        self.identify_calls = 0
        self.fail_subscribe = 0

    @property
    def is_paired(self) -> bool:
        return bool(self.pairings)

    def transport_factory(
        self, record: DeviceRecord, material: dict[str, Any] | None
    ) -> FakeAccessoryTransport:
        transport = FakeAccessoryTransport(self, material)
        self.transports.append(transport)
        return transport

    def set_value(self, iid: int, value: Any, aid: int = 1) -> None:
        """Change a value and notify every transport subscribed to it."""
        self.values[(aid, iid)] = value
        for transport in list(self.transports):
            if transport.is_connected and (aid, iid) in transport.subscribed:
                transport._callback_event_listeners([(aid, iid, value)])

    def push_event(self, batch: list[tuple[int, int, Any]]) -> None:
        """Deliver a raw batch to every connected transport, subscribed or not."""
        for transport in list(self.transports):
            if transport.is_connected:
                transport._callback_event_listeners(batch)

    def drop_connections(self) -> None:
        for transport in list(self.transports):
            if transport.is_connected:
                transport._drop()


class FakeAccessoryTransport(AccessoryTransport):
    def __init__(
        self, accessory: FakeAccessory, material: dict[str, Any] | None = None
    ) -> None:
        super().__init__()
        self.accessory = accessory
        self.material = material
        self.subscribed: set[tuple[int, int]] = set()
        self.close_calls = 0
        self.connect_calls = 0
        self._connected = False
        self._setup_state: dict[str, Any] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _drop(self) -> None:
        self._connected = False
        self._callback_disconnect_listeners()

    def _ensure_connected(self) -> None:
        if self._connected:
            return

        if self.material is None:
            raise exceptions.NotPairedError("No pairing data")

        if self.material.get("AccessoryPairingID") != self.accessory.device_id:
            raise exceptions.IncorrectPairingIdError("M2")

        if self.material.get("iOSPairingId") not in self.accessory.pairings:
            raise exceptions.AuthenticationError("M4")

        self.connect_calls += 1
        self._connected = True

    async def get_accessories(self) -> list[dict[str, Any]]:
        self._ensure_connected()
        self.accessory.get_accessories_calls += 1

        accessories = copy.deepcopy(self.accessory.accessories)
        for accessory in accessories:
            for service in accessory["services"]:
                for char in service["characteristics"]:
                    key = (accessory["aid"], char["iid"])
                    if key in self.accessory.values:
                        char["value"] = self.accessory.values[key]
        return accessories

    async def get_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        self._ensure_connected()
        result = {}
        for key in characteristics:
            if key in self.accessory.values:
                result[key] = {"value": self.accessory.values[key]}
            else:
                status = HapStatusCode.RESOURCE_NOT_EXIST
                result[key] = {"status": status.value, "description": status.description}
        return result

    async def put_characteristics(
        self, characteristics: Iterable[tuple[int, int, Any]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        self._ensure_connected()
        failures = {}
        for aid, iid, value in characteristics:
            char_type = self.accessory.types.get((aid, iid))
            if char_type is None:
                status = HapStatusCode.RESOURCE_NOT_EXIST
                failures[(aid, iid)] = {"status": status.value, "description": status.description}
                continue
            if char_type == CharacteristicsTypes.IDENTIFY:
                self.accessory.identify_calls += 1
                continue
            self.accessory.values[(aid, iid)] = value
        return failures

    async def subscribe_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        if self.accessory.fail_subscribe > 0:
            self.accessory.fail_subscribe -= 1
            raise exceptions.AccessoryDisconnectedError("Device unreachable")

        self._ensure_connected()
        self.accessory.subscribe_calls += 1
        self.subscribed = set(characteristics)
        return {}

    async def identify(self) -> None:
        if self.accessory.is_paired:
            raise exceptions.AlreadyPairedError("Identify failed: device is paired")
        self.accessory.identify_calls += 1

    async def start_pairing(self, with_auth: bool) -> dict[str, Any]:
        if self.accessory.is_paired:
            raise exceptions.UnavailableError("M2")
        self._setup_state = {"with_auth": with_auth}
        return self._setup_state

    async def finish_pairing(self, state: Any, setup_code: str) -> dict[str, Any]:
        if state is not self._setup_state:
            raise exceptions.InvalidError("M3")
        if setup_code != self.accessory.setup_code:
            raise exceptions.AuthenticationError("M4")

        ios_pairing_id = str(uuid.uuid4())
        ios_public = os.urandom(32)
        self.accessory.pairings[ios_pairing_id] = (ios_public, True)

        self.material = {
            "AccessoryPairingID": self.accessory.device_id,
            "AccessoryLTPK": os.urandom(32).hex(),
            "iOSPairingId": ios_pairing_id,
            "iOSDeviceLTSK": os.urandom(32).hex(),
            "iOSDeviceLTPK": ios_public.hex(),
            "Connection": "Fake",
        }
        return self.material

    async def add_pairing(
        self, pairing_id: str, public_key: bytes, admin: bool = False
    ) -> None:
        self._ensure_connected()
        self.accessory.pairings[pairing_id] = (bytes(public_key), admin)

    async def remove_pairing(self, pairing_id: str) -> None:
        self._ensure_connected()
        self.accessory.pairings.pop(pairing_id, None)

    def get_long_term_data(self) -> dict[str, Any] | None:
        return self.material

    async def close(self) -> None:
        self.close_calls += 1
        self._connected = False
        self.subscribed = set()


class FakeDiscoveryTransport:
    """A discovery transport whose announcements are driven by the test."""

    def __init__(self, records: Iterable[DeviceRecord] = ()) -> None:
        self.records = list(records)
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self._listeners: set[Callable[[DeviceRecord], None]] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, callback: Callable[[DeviceRecord], None]) -> Callable[[], None]:
        self._listeners.add(callback)

        def stop_listening() -> None:
            self._listeners.discard(callback)

        return stop_listening

    async def async_start(self) -> None:
        self.running = True
        self.start_calls += 1
        for record in self.records:
            self.announce(record)

    async def async_stop(self) -> None:
        self.running = False
        self.stop_calls += 1

    def announce(self, record: DeviceRecord) -> None:
        if not self.running:
            return
        for listener in list(self._listeners):
            listener(record)
