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

from collections.abc import Iterator
from dataclasses import dataclass, field
import enum
import logging
from typing import Any, NamedTuple

from aiofp2.const import INDEXED_SERVICES
from aiofp2.uuid import normalize_uuid, shorten_uuid

logger = logging.getLogger(__name__)


class FeatureFlags(enum.IntFlag):
    """The "ff" TXT record of a HAP service (Table 5-8)."""

    SUPPORTS_APPLE_AUTHENTICATION_COPROCESSOR = 0x01
    SUPPORTS_SOFTWARE_AUTHENTICATION = 0x02


class StatusFlags(enum.IntFlag):
    """The "sf" TXT record of a HAP service (Table 5-9)."""

    UNPAIRED = 0x01
    WIFI_NOT_CONFIGURED = 0x02
    PROBLEM_DETECTED = 0x04


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    """An accessory seen on the network.

    Records are re-discovered every session as the address and port can
    change whenever the device renews its DHCP lease or reboots.
    """

    id: str
    address: str
    port: int
    model: str
    pairable: bool
    name: str
    feature_flags: FeatureFlags = FeatureFlags(0)
    config_num: int = 0

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "port": self.port,
            "model": self.model,
            "pairable": self.pairable,
        }


class CapabilityKey(NamedTuple):
    service_type: str
    discriminator: int | None = None

    def __str__(self) -> str:
        if self.discriminator is None:
            return shorten_uuid(self.service_type)
        return f"{shorten_uuid(self.service_type)}|{self.discriminator}"


@dataclass(slots=True)
class ServiceEntry:
    iid: int
    characteristics: dict[str, int] = field(default_factory=dict)


class CapabilityMap:
    """
    Lookup table from (service type, discriminator) to instance ids.

    Built once per connection from the /accessories document of one accessory.
    Services whose type appears in INDEXED_SERVICES (the FP2 repeats its
    occupancy sensor once per zone) are keyed by the value of their index
    characteristic so that same-typed services don't collide.
    """

    def __init__(self, aid: int, entries: dict[CapabilityKey, ServiceEntry]) -> None:
        self.aid = aid
        self._entries = entries

    @classmethod
    def from_accessories(
        cls, accessories: list[dict[str, Any]], aid: int | None = None
    ) -> CapabilityMap:
        if not accessories:
            raise ValueError("Accessory description contains no accessories")

        if aid is None:
            accessory = accessories[0]
        else:
            accessory = next((a for a in accessories if a["aid"] == aid), None)
            if accessory is None:
                raise ValueError(f"Accessory description has no aid {aid}")

        entries: dict[CapabilityKey, ServiceEntry] = {}
        seen_iids: set[int] = set()

        for service in accessory["services"]:
            service_type = normalize_uuid(service["type"])
            service_iid = service["iid"]

            if service_iid in seen_iids:
                logger.debug("Ignoring service with duplicate iid %d", service_iid)
                continue

            entry = ServiceEntry(iid=service_iid)
            values: dict[str, Any] = {}
            for char in service.get("characteristics", []):
                char_type = normalize_uuid(char["type"])
                entry.characteristics[char_type] = char["iid"]
                values[char_type] = char.get("value")

            discriminator = None
            if index_type := INDEXED_SERVICES.get(service_type):
                index_value = values.get(index_type)
                if index_value is not None:
                    discriminator = int(index_value)

            key = CapabilityKey(service_type, discriminator)
            if key in entries:
                logger.debug(
                    "Service %d has the same key (%s) as service %d; keeping the first",
                    service_iid,
                    key,
                    entries[key].iid,
                )
                continue

            entries[key] = entry
            seen_iids.add(service_iid)

        return cls(accessory["aid"], entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CapabilityKey]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def service(
        self, service_type: str, discriminator: int | None = None
    ) -> ServiceEntry | None:
        return self._entries.get(
            CapabilityKey(normalize_uuid(service_type), discriminator)
        )

    def resolve(
        self, service_type: str, char_type: str, discriminator: int | None = None
    ) -> int | None:
        """Returns the iid of a characteristic, or None if the device doesn't have it."""
        if not (entry := self.service(service_type, discriminator)):
            return None
        return entry.characteristics.get(normalize_uuid(char_type))

    def discriminators(self, service_type: str) -> list[int]:
        service_type = normalize_uuid(service_type)
        return sorted(
            key.discriminator
            for key in self._entries
            if key.service_type == service_type and key.discriminator is not None
        )

    def serialize(self) -> dict[str, Any]:
        return {
            str(key): {
                "iid": entry.iid,
                "characteristics": {
                    shorten_uuid(char_type): iid
                    for char_type, iid in entry.characteristics.items()
                },
            }
            for key, entry in self._entries.items()
        }

    def __repr__(self) -> str:
        return f"CapabilityMap(aid={self.aid}, services={len(self._entries)})"
