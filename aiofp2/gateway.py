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
Forwarding DomainEvents to a deCONZ gateway.

The gateway models the FP2 as CLIP sensors (one CLIPLightLevel and one
CLIPPresence per zone) that were created beforehand. GatewaySync finds them by
uniqueid and writes their state as events come in.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Any

import aiohttp

from aiofp2.const import MANUFACTURER, MODEL_SIGNATURE
from aiofp2.events import DomainEvent, LightLevel, Reachability, ZoneOccupancy
from aiofp2.exceptions import GatewayError
import aiofp2.hkjson as hkjson
from aiofp2.utils import async_create_task

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_TYPE = "aiofp2"

CLUSTER_ILLUMINANCE = "0400"
CLUSTER_OCCUPANCY = "0406"


def serial_to_mac(serial: str) -> str:
    """
    The EUI-64 deCONZ uses in uniqueids, from the 12 digit serial number.

    >>> serial_to_mac("54EF444A850F")
    '54:ef:44:ff:fe:4a:85:0f'
    """
    serial = serial.strip().lower()
    if len(serial) != 12 or any(c not in "0123456789abcdef" for c in serial):
        raise ValueError(f"Not a MAC based serial number: {serial!r}")

    octets = [serial[i : i + 2] for i in range(0, 12, 2)]
    return ":".join(octets[:3] + ["ff", "fe"] + octets[3:])


def light_level_uniqueid(mac: str) -> str:
    return f"{mac}-01-{CLUSTER_ILLUMINANCE}"


def presence_uniqueid(mac: str, zone: int) -> str:
    return f"{mac}-{zone + 1:02x}-{CLUSTER_OCCUPANCY}"


def _presence_zone(mac: str, uniqueid: str | None) -> int | None:
    if not uniqueid:
        return None
    prefix, suffix = f"{mac}-", f"-{CLUSTER_OCCUPANCY}"
    if not (uniqueid.startswith(prefix) and uniqueid.endswith(suffix)):
        return None
    try:
        endpoint = int(uniqueid[len(prefix) : -len(suffix)], 16)
    except ValueError:
        return None
    return endpoint - 1 if endpoint > 0 else None


def lux_to_lightlevel(lux: float) -> int:
    """deCONZ lightlevel is 10000 * log10(lux) + 1."""
    if lux < 1:
        return 0
    return round(10000 * math.log10(lux) + 1)


class GatewayClient:
    """
    A small client for the deCONZ REST API.

    Use as an async context manager, or call close() when done. A session can
    be shared; it is only closed here if this client created it.
    """

    def __init__(
        self,
        host: str = "localhost",
        api_key: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 5,
    ) -> None:
        self.host = host
        self.api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}/api"

    async def __aenter__(self) -> GatewayClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    def _resource(self, path: str) -> str:
        if self.api_key is None:
            raise GatewayError("missing API key - unlock the gateway and run get-api-key")
        return f"{self.base_url}/{self.api_key}{path}"

    async def _request(self, method: str, url: str, body: Any = None) -> Any:
        logger.debug("%s %s %s", method, url, body if body is not None else "")
        data = hkjson.dump_bytes(body) if body is not None else None
        try:
            async with self._get_session().request(
                method,
                url,
                data=data,
                headers={"Content-Type": "application/json"} if data else None,
            ) as response:
                text = await response.text()
                logger.debug("%s %s: %d %s", method, url, response.status, text)
                result = hkjson.loads(text) if text else None
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayError(f"{self.host}: {e}") from e
        except hkjson.JSON_DECODE_EXCEPTIONS as e:
            raise GatewayError(f"{self.host}: malformed response") from e

        errors = _errors(result)
        if status >= 400 or errors:
            raise GatewayError(
                f"{self.host}: {method} {url}: "
                + ("; ".join(errors) if errors else f"HTTP status {status}")
            )
        return result

    async def get_config(self) -> dict[str, Any]:
        """The unauthenticated gateway config, including ``bridgeid``."""
        return await self._request("GET", f"{self.base_url}/config")

    async def get_api_key(self, devicetype: str = DEFAULT_DEVICE_TYPE) -> str:
        """Ask for a new API key. The gateway must be unlocked first."""
        result = await self._request("POST", self.base_url, {"devicetype": devicetype})
        try:
            self.api_key = result[0]["success"]["username"]
        except (IndexError, KeyError, TypeError):
            raise GatewayError(f"{self.host}: unexpected response {result!r}") from None
        return self.api_key

    async def get_sensors(self) -> dict[str, dict[str, Any]]:
        return await self._request("GET", self._resource("/sensors"))

    async def put_sensor_state(self, sensor_id: str, state: dict[str, Any]) -> Any:
        return await self._request("PUT", self._resource(f"/sensors/{sensor_id}/state"), state)

    async def put_sensor_config(self, sensor_id: str, config: dict[str, Any]) -> Any:
        return await self._request("PUT", self._resource(f"/sensors/{sensor_id}/config"), config)


def _errors(result: Any) -> list[str]:
    if not isinstance(result, list):
        return []
    return [
        f"{entry['error'].get('address', '')}: {entry['error'].get('description', '')}"
        for entry in result
        if isinstance(entry, dict) and "error" in entry
    ]


class GatewaySync:
    """Write the DomainEvents of one FP2 to its CLIP sensors."""

    def __init__(self, client: GatewayClient, serial: str) -> None:
        self.client = client
        self.mac = serial_to_mac(serial)
        self.light_level_id: str | None = None
        self.presence_ids: dict[int, str] = {}
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def sensor_ids(self) -> list[str]:
        ids = list(self.presence_ids.values())
        if self.light_level_id is not None:
            ids.insert(0, self.light_level_id)
        return ids

    async def async_setup(self) -> None:
        """Find the sensors belonging to this device."""
        by_uniqueid = {
            sensor.get("uniqueid"): sensor_id
            for sensor_id, sensor in (await self.client.get_sensors()).items()
            if sensor.get("manufacturername") == MANUFACTURER
            and sensor.get("modelid") == MODEL_SIGNATURE
        }

        self.light_level_id = by_uniqueid.get(light_level_uniqueid(self.mac))
        self.presence_ids = {}
        for uniqueid, sensor_id in by_uniqueid.items():
            if (zone := _presence_zone(self.mac, uniqueid)) is not None:
                self.presence_ids[zone] = sensor_id

        for sensor_id in self.sensor_ids:
            logger.info("/sensors/%s: mapped for %s", sensor_id, self.mac)

    async def handle(self, event: DomainEvent) -> None:
        async with self._lock:
            if isinstance(event, LightLevel):
                if self.light_level_id is None:
                    logger.debug("%s: no light level sensor", self.mac)
                    return
                await self.client.put_sensor_state(
                    self.light_level_id, {"lightlevel": lux_to_lightlevel(event.value)}
                )
            elif isinstance(event, ZoneOccupancy):
                if (sensor_id := self.presence_ids.get(event.zone)) is None:
                    logger.debug("%s: no presence sensor for zone %d", self.mac, event.zone)
                    return
                await self.client.put_sensor_state(sensor_id, {"presence": event.present})
            elif isinstance(event, Reachability):
                for sensor_id in self.sensor_ids:
                    await self.client.put_sensor_config(
                        sensor_id, {"reachable": event.reachable}
                    )

    async def _handle_logged(self, event: DomainEvent) -> None:
        try:
            await self.handle(event)
        except GatewayError as e:
            logger.warning("%s: %s", self.mac, e)

    def __call__(self, event: DomainEvent) -> None:
        """Event listener for AccessoryClient.add_listener."""
        task = async_create_task(self._handle_logged(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def async_stop(self) -> None:
        """Cancel gateway writes that are still pending."""
        tasks, self._tasks = self._tasks, set()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
