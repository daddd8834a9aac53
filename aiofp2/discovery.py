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
"""Finding FP2 sensors on the local network."""
from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
from typing import Protocol

from zeroconf import (
    BadTypeInNameException,
    IPVersion,
    ServiceStateChange,
    Zeroconf,
)
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from aiofp2.const import DEFAULT_DISCOVERY_TIMEOUT, HAP_TYPE_TCP, MODEL_SIGNATURE
from aiofp2.exceptions import AccessoryNotFoundError
from aiofp2.model import DeviceRecord, FeatureFlags, StatusFlags
from aiofp2.utils import async_create_task, asyncio_timeout

logger = logging.getLogger(__name__)

_TIMEOUT_MS = 3000

RecordListener = Callable[[DeviceRecord], None]


def device_record_from_service_info(service: AsyncServiceInfo) -> DeviceRecord:
    """
    Build a DeviceRecord from a resolved _hap._tcp service.

    :raises ValueError: if the record lacks a usable address or a device id
    """
    if not (addresses := service.ip_addresses_by_version(IPVersion.All)):
        raise ValueError("Invalid HomeKit Zeroconf record: Missing address")

    # Zeroconf returns the most recently seen IPv4 addresses first
    valid_addresses = [
        str(ip_addr)
        for ip_addr in addresses
        if not ip_addr.is_link_local and not ip_addr.is_unspecified
    ]
    if not valid_addresses:
        raise ValueError(
            "Invalid HomeKit Zeroconf record: Missing non-link-local or unspecified address"
        )

    props = {k.lower(): v for k, v in service.decoded_properties.items() if v is not None}
    if "id" not in props:
        raise ValueError("Invalid HomeKit Zeroconf record: Missing device ID")

    status_flags = StatusFlags(int(props.get("sf", 0)))

    return DeviceRecord(
        id=props["id"].lower(),
        address=valid_addresses[0],
        port=service.port,
        model=props.get("md", ""),
        pairable=bool(status_flags & StatusFlags.UNPAIRED),
        name=service.name.removesuffix(f".{service.type}"),
        feature_flags=FeatureFlags(int(props.get("ff", 0))),
        config_num=int(props.get("c#", 0)),
    )


class DiscoveryTransport(Protocol):
    """Something that announces DeviceRecords while it is started."""

    async def async_start(self) -> None:
        ...

    async def async_stop(self) -> None:
        ...

    def add_listener(self, callback: RecordListener) -> Callable[[], None]:
        ...


class ZeroconfDiscoveryTransport:
    """
    Browse _hap._tcp with python-zeroconf.

    An AsyncZeroconf instance can be shared with the rest of the application;
    if none is given one is created on start and closed on stop.
    """

    def __init__(self, zeroconf_instance: AsyncZeroconf | None = None) -> None:
        self._azc = zeroconf_instance
        self._owns_zeroconf = zeroconf_instance is None
        self._browser: AsyncServiceBrowser | None = None
        self._listeners: set[RecordListener] = set()
        self._tasks: set[asyncio.Task] = set()

    def add_listener(self, callback: RecordListener) -> Callable[[], None]:
        self._listeners.add(callback)

        def stop_listening() -> None:
            self._listeners.discard(callback)

        return stop_listening

    async def async_start(self) -> None:
        if self._browser:
            return
        if self._azc is None:
            self._azc = AsyncZeroconf()
        self._browser = AsyncServiceBrowser(
            self._azc.zeroconf, [HAP_TYPE_TCP], handlers=[self._handle_service]
        )

    async def async_stop(self) -> None:
        browser, self._browser = self._browser, None
        if browser:
            await browser.async_cancel()

        while self._tasks:
            self._tasks.pop().cancel()

        if self._owns_zeroconf and self._azc:
            await self._azc.async_close()
            self._azc = None

    def _handle_service(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if service_type != HAP_TYPE_TCP or state_change == ServiceStateChange.Removed:
            return

        try:
            info = AsyncServiceInfo(service_type, name)
        except BadTypeInNameException as ex:
            logger.debug("Ignoring record with bad type in name: %s: %s", name, ex)
            return

        task = async_create_task(self._async_resolve(zeroconf, info))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _async_resolve(self, zeroconf: Zeroconf, info: AsyncServiceInfo) -> None:
        # AsyncServiceInfo already tries 3x
        if not await info.async_request(zeroconf, _TIMEOUT_MS):
            logger.debug("%s: Could not resolve service", info.name)
            return

        try:
            record = device_record_from_service_info(info)
        except ValueError as e:
            logger.debug("%s: Not a valid homekit device: %s", info.name, e)
            return

        for listener in list(self._listeners):
            listener(record)


class Discovery:
    """
    Time bounded sweeps over a discovery transport.

    Only records whose model matches ``model`` are surfaced. ``on_alive`` is
    called for every matching record seen, for callers that want to log them.
``on_search_done`` receives the records collected by a completed search.
    """

    def __init__(
        self,
        transport: DiscoveryTransport | None = None,
        *,
        model: str | None = MODEL_SIGNATURE,
        on_alive: RecordListener | None = None,
        on_search_done: Callable[[dict[str, DeviceRecord]], None] | None = None,
    ) -> None:
        self.transport = transport if transport is not None else ZeroconfDiscoveryTransport()
        self.model = model
        self.on_alive = on_alive
        self.on_search_done = on_search_done

    def _accept(self, record: DeviceRecord) -> bool:
        if self.model is not None and record.model != self.model:
            return False
        logger.debug("alive: %s %s at %s:%s", record.id, record.name, record.address, record.port)
        if self.on_alive:
            self.on_alive(record)
        return True

    async def find(
        self, device_id: str, timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> DeviceRecord:
        """
        Wait for a specific device to announce itself.

        :raises AccessoryNotFoundError: if it is not seen within timeout seconds
        """
        device_id = device_id.lower()
        waiter: asyncio.Future[DeviceRecord] = asyncio.get_running_loop().create_future()

        def on_record(record: DeviceRecord) -> None:
            if self._accept(record) and record.id == device_id and not waiter.done():
                waiter.set_result(record)

        stop_listening = self.transport.add_listener(on_record)
        try:
            await self.transport.async_start()
            async with asyncio_timeout(timeout):
                return await waiter
        except asyncio.TimeoutError:
            raise AccessoryNotFoundError(
                f"Accessory with device id {device_id} not found"
            ) from None
        finally:
            stop_listening()
            await self.transport.async_stop()

    async def search(
        self, timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> dict[str, DeviceRecord]:
        """Collect every matching device seen during the next timeout seconds."""
        records: dict[str, DeviceRecord] = {}

        def on_record(record: DeviceRecord) -> None:
            if self._accept(record):
                records[record.id] = record

        stop_listening = self.transport.add_listener(on_record)
        try:
            await self.transport.async_start()
            await asyncio.sleep(timeout)
        finally:
            stop_listening()
            await self.transport.async_stop()

        logger.debug("searchDone: %d device(s)", len(records))
        if self.on_search_done:
            self.on_search_done(records)
        return records
