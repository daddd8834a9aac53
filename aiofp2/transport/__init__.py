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
The accessory transport: everything the session engine needs from the wire.

A transport belongs to exactly one AccessoryClient (or one pairing attempt)
and talks to exactly one device.
"""
from __future__ import annotations

from abc import ABCMeta, abstractmethod
from collections.abc import Iterable
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

# (aid, iid, value) triples, in the order the accessory sent them
EventBatch = list[tuple[int, int, Any]]
EventCallback = Callable[[EventBatch], None]
DisconnectCallback = Callable[[], None]


class AccessoryTransport(metaclass=ABCMeta):
    def __init__(self) -> None:
        self.event_listeners: set[EventCallback] = set()
        self.disconnect_listeners: set[DisconnectCallback] = set()

    def add_event_listener(self, callback: EventCallback) -> Callable[[], None]:
        self.event_listeners.add(callback)

        def stop_listening() -> None:
            self.event_listeners.discard(callback)

        return stop_listening

    def add_disconnect_listener(
        self, callback: DisconnectCallback
    ) -> Callable[[], None]:
        self.disconnect_listeners.add(callback)

        def stop_listening() -> None:
            self.disconnect_listeners.discard(callback)

        return stop_listening

    def _callback_event_listeners(self, batch: EventBatch) -> None:
        for listener in list(self.event_listeners):
            try:
                listener(batch)
            except Exception:
                logger.exception("Unhandled error when processing event")

    def _callback_disconnect_listeners(self) -> None:
        for listener in list(self.disconnect_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Unhandled error when processing disconnect")

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Returns true if a session with the accessory is currently open."""

    @abstractmethod
    async def get_accessories(self) -> list[dict[str, Any]]:
        """Fetch the full accessory/service/characteristic description."""

    @abstractmethod
    async def get_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        """Read characteristics. Maps (aid, iid) to {"value": ...} or {"status": ...}."""

    @abstractmethod
    async def put_characteristics(
        self, characteristics: Iterable[tuple[int, int, Any]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        """Write characteristics. Only failed writes appear in the result."""

    @abstractmethod
    async def subscribe_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        """Enable events. Re-establishes the session first if it was lost."""

    @abstractmethod
    async def identify(self) -> None:
        """Unauthenticated identify of an unpaired accessory."""

    @abstractmethod
    async def start_pairing(self, with_auth: bool) -> Any:
        """Run pair-setup M1/M2 and return the state needed to finish."""

    @abstractmethod
    async def finish_pairing(self, state: Any, setup_code: str) -> dict[str, Any]:
        """Run pair-setup M3..M6 and return the long term pairing data."""

    @abstractmethod
    async def add_pairing(
        self, pairing_id: str, public_key: bytes, admin: bool = False
    ) -> None:
        """Register another controller with the accessory."""

    @abstractmethod
    async def remove_pairing(self, pairing_id: str) -> None:
        """Remove a controller from the accessory."""

    @abstractmethod
    def get_long_term_data(self) -> dict[str, Any] | None:
        """The pairing data in use, if any."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
