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
"""Turning characteristic notifications into DomainEvents."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Callable

from async_interrupt import interrupt

from aiofp2.const import MAX_ZONES, CharacteristicsTypes, ServicesTypes
from aiofp2.events import (
    DomainEvent,
    ErrorListener,
    EventListener,
    Reachability,
    decode_light_level,
    occupancy_decoder,
)
from aiofp2.model import CapabilityMap
from aiofp2.transport import AccessoryTransport, EventBatch
from aiofp2.utils import async_create_task

logger = logging.getLogger(__name__)

MIN_RETRY_INTERVAL = 0.5
MAX_RETRY_INTERVAL = 60


class ResubscribeNow(Exception):
    """Raised inside the retry wait to cut it short."""


@dataclass(frozen=True, slots=True)
class SubscriptionEntry:
    iid: int
    decode: Callable[[Any], DomainEvent]


SubscriptionSet = dict[int, SubscriptionEntry]


def build_subscriptions(
    capabilities: CapabilityMap, zone_count: int = MAX_ZONES
) -> SubscriptionSet:
    """
    The ambient light level plus OccupancyDetected of every zone that exists.

    Zones are sparse, so every index below zone_count is probed and a missing
    zone says nothing about the ones after it.
    """
    entries: SubscriptionSet = {}

    if (
        iid := capabilities.resolve(
            ServicesTypes.LIGHT_SENSOR, CharacteristicsTypes.CURRENT_AMBIENT_LIGHT_LEVEL
        )
    ) is not None:
        entries[iid] = SubscriptionEntry(iid, decode_light_level)

    for zone in range(zone_count):
        iid = capabilities.resolve(
            ServicesTypes.OCCUPANCY_SENSOR, CharacteristicsTypes.OCCUPANCY_DETECTED, zone
        )
        if iid is not None:
            entries[iid] = SubscriptionEntry(iid, occupancy_decoder(zone))

    return entries


class EventDispatcher:
    """
    Owns the subscription of one session.

    Events are handed to ``on_event`` in the order the accessory sent them.
    When the transport drops, ``Reachability(False)`` goes out straight away
    and the same ids are resubscribed in the background, backing off between
    attempts; failures go to ``on_error`` and never stop the retries.
    """

    def __init__(
        self,
        transport: AccessoryTransport,
        capabilities: CapabilityMap,
        *,
        on_event: EventListener,
        on_error: ErrorListener,
        zone_count: int = MAX_ZONES,
    ) -> None:
        self.transport = transport
        self.capabilities = capabilities
        self.on_event = on_event
        self.on_error = on_error
        self.zone_count = zone_count

        self.subscriptions: SubscriptionSet = {}
        self._active = False
        self._remove_listeners: list[Callable[[], None]] = []
        self._resubscriber: asyncio.Task[None] | None = None
        self._retry_future: asyncio.Future[None] | None = None

    @property
    def ids(self) -> list[tuple[int, int]]:
        return [(self.capabilities.aid, iid) for iid in self.subscriptions]

    @property
    def is_resubscribing(self) -> bool:
        return self._resubscriber is not None and not self._resubscriber.done()

    async def subscribe(self) -> SubscriptionSet:
        self.subscriptions = build_subscriptions(self.capabilities, self.zone_count)
        ids = self.ids

        values = await self.transport.get_characteristics(ids)
        for key in ids:
            entry = values.get(key, {})
            if "value" in entry:
                self._dispatch(key[1], entry["value"])
            else:
                logger.debug("No initial value for %s: %s", key, entry)

        # Listen before subscribing so an event sent right after the
        # subscribe response is not missed
        self._active = True
        self._remove_listeners = [
            self.transport.add_event_listener(self._on_events),
            self.transport.add_disconnect_listener(self._on_disconnect),
        ]

        try:
            failures = await self.transport.subscribe_characteristics(ids)
        except Exception:
            await self.stop()
            raise

        for key, status in failures.items():
            logger.warning("Could not subscribe to %s: %s", key, status)

        return self.subscriptions

    def _dispatch(self, iid: int, value: Any) -> None:
        if not (entry := self.subscriptions.get(iid)):
            logger.debug("Ignoring event for unknown iid %d", iid)
            return

        try:
            event = entry.decode(value)
        except (TypeError, ValueError):
            logger.warning("Could not decode %r for iid %d", value, iid)
            return

        self.on_event(event)

    def _on_events(self, batch: EventBatch) -> None:
        if not self._active:
            return

        for aid, iid, value in batch:
            if aid != self.capabilities.aid:
                continue
            self._dispatch(iid, value)

    def _on_disconnect(self) -> None:
        # A failed reconnect attempt also ends in a disconnect; the consumer
        # already knows the device is unreachable
        if not self._active or self.is_resubscribing:
            return

        self.on_event(Reachability(reachable=False))
        self._resubscriber = async_create_task(
            self._resubscribe(), name="aiofp2-resubscribe"
        )

    def reconnect_soon(self) -> None:
        """Skip the current backoff wait, e.g. because the device was seen again."""
        if self._retry_future and not self._retry_future.done():
            self._retry_future.set_result(None)

    async def _resubscribe(self) -> None:
        interval = MIN_RETRY_INTERVAL
        loop = asyncio.get_running_loop()

        while self._active:
            try:
                failures = await self.transport.subscribe_characteristics(self.ids)
            except Exception as ex:
                logger.debug(
                    "Resubscribe failed: %s; retrying in %.1f seconds", ex, interval
                )
                self.on_error(ex)
            else:
                if not self._active:
                    return
                for key, status in failures.items():
                    logger.warning("Could not resubscribe to %s: %s", key, status)
                self.on_event(Reachability(reachable=True))
                return

            self._retry_future = loop.create_future()
            try:
                async with interrupt(self._retry_future, ResubscribeNow, None):
                    await asyncio.sleep(interval)
            except ResubscribeNow:
                pass
            finally:
                self._retry_future = None

            interval = min(MAX_RETRY_INTERVAL, interval * 1.5)

    async def stop(self) -> None:
        """Stop delivering events. Anything arriving afterwards is dropped."""
        self._active = False

        while self._remove_listeners:
            self._remove_listeners.pop()()

        resubscriber, self._resubscriber = self._resubscriber, None
        if resubscriber and not resubscriber.done():
            resubscriber.cancel()
            try:
                await resubscriber
            except asyncio.CancelledError:
                pass
