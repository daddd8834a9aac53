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

import asyncio
from collections.abc import Iterable
from itertools import groupby
import logging
from operator import itemgetter
from typing import Any
import uuid

from aiofp2.exceptions import (
    AccessoryDisconnectedError,
    AlreadyPairedError,
    AuthenticationError,
    HttpErrorResponse,
    InvalidError,
    NotPairedError,
)
import aiofp2.hkjson as hkjson
from aiofp2.model import DeviceRecord
from aiofp2.transport import AccessoryTransport
from aiofp2.transport.connection import HapConnection, SecureHapConnection
from aiofp2.transport.protocol import (
    error_handler,
    perform_pair_setup_part1,
    perform_pair_setup_part2,
)
from aiofp2.transport.statuscodes import describe_status
from aiofp2.transport.tlv import TLV
from aiofp2.uuid import normalize_uuid

logger = logging.getLogger(__name__)


def format_characteristic_list(data: dict[str, Any]) -> dict[tuple[int, int], dict[str, Any]]:
    """Key a /characteristics body by (aid, iid), dropping zero statuses."""
    result = {}
    for row in data.get("characteristics", []):
        entry = {k: v for k, v in row.items() if k not in ("aid", "iid")}
        status = entry.get("status")
        if status == 0:
            del entry["status"]
        elif status is not None:
            entry["description"] = describe_status(status)
        result[(row["aid"], row["iid"])] = entry
    return result


class HapIpTransport(AccessoryTransport):
    """
    HAP over TCP/IP.

    Pair-setup and identify use a plain connection. Everything else runs over
    a pair-verified session that is opened on first use and reopened on
    demand after the accessory drops it.
    """

    def __init__(
        self,
        record: DeviceRecord,
        pairing_data: dict[str, Any] | None = None,
        *,
        timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.record = record
        self.pairing_data = pairing_data
        self.timeout = timeout

        self._secure: SecureHapConnection | None = None
        self._plain: HapConnection | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return f"{self.record.name} [{self.record.address}:{self.record.port}] (id={self.record.id})"

    @property
    def is_connected(self) -> bool:
        return bool(self._secure and self._secure.is_connected)

    async def _ensure_secure(self) -> SecureHapConnection:
        if self.pairing_data is None:
            raise NotPairedError(f"{self.name}: no pairing data")

        async with self._connect_lock:
            if self._secure and self._secure.is_connected:
                return self._secure

            connection = SecureHapConnection(
                self.record.address,
                self.record.port,
                self.pairing_data,
                timeout=self.timeout,
                on_event=self._event_received,
                on_disconnect=self._connection_dropped,
            )
            await connection.connect()
            self._secure = connection
            return connection

    async def _ensure_plain(self) -> HapConnection:
        if self._plain and self._plain.is_connected:
            return self._plain
        self._plain = HapConnection(
            self.record.address, self.record.port, timeout=self.timeout
        )
        await self._plain.connect()
        return self._plain

    def _event_received(self, event: dict[str, Any]) -> None:
        batch = [
            (row["aid"], row["iid"], row.get("value"))
            for row in event.get("characteristics", [])
            if "aid" in row and "iid" in row
        ]
        if batch:
            self._callback_event_listeners(batch)

    def _connection_dropped(self) -> None:
        logger.debug("%s: session dropped", self.name)
        self._callback_disconnect_listeners()

    async def get_accessories(self) -> list[dict[str, Any]]:
        connection = await self._ensure_secure()
        response = await connection.get_json("/accessories")

        accessories = response["accessories"]
        for accessory in accessories:
            for service in accessory["services"]:
                service["type"] = normalize_uuid(service["type"])
                for characteristic in service["characteristics"]:
                    characteristic["type"] = normalize_uuid(characteristic["type"])

        return accessories

    async def get_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        connection = await self._ensure_secure()
        ids = dict.fromkeys(characteristics)
        if not ids:
            return {}

        url = "/characteristics?id=" + ",".join(f"{aid}.{iid}" for aid, iid in ids)
        try:
            response = await connection.get_json(url)
        except HttpErrorResponse as e:
            # A failed read of every id comes back as a 4xx with per-id statuses
            response = hkjson.loads(bytes(e.response.body))

        return format_characteristic_list(response)

    async def put_characteristics(
        self, characteristics: Iterable[tuple[int, int, Any]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        connection = await self._ensure_secure()
        payload = [
            {"aid": aid, "iid": iid, "value": value} for aid, iid, value in characteristics
        ]
        response = await connection.put_json("/characteristics", {"characteristics": payload})

        return {
            key: entry
            for key, entry in format_characteristic_list(response or {}).items()
            if "status" in entry
        }

    async def subscribe_characteristics(
        self, characteristics: Iterable[tuple[int, int]]
    ) -> dict[tuple[int, int], dict[str, Any]]:
        connection = await self._ensure_secure()
        status: dict[tuple[int, int], dict[str, Any]] = {}

        # One request per aid, the same way iOS does it. Payloads are built
        # before the first await so the input cannot change underneath us.
        payloads = [
            [{"aid": aid, "iid": iid, "ev": True} for aid, iid in group]
            for _, group in groupby(sorted(set(characteristics)), key=itemgetter(0))
        ]
        for payload in payloads:
            response = await connection.put_json(
                "/characteristics", {"characteristics": payload}
            )
            for key, entry in format_characteristic_list(response or {}).items():
                if "status" in entry:
                    status[key] = entry

        return status

    async def identify(self) -> None:
        connection = await self._ensure_plain()
        try:
            await connection.post_json("/identify", {})
        except HttpErrorResponse as e:
            body = hkjson.loads(bytes(e.response.body)) if e.response.body else {}
            raise AlreadyPairedError(
                f"Identify failed because: {describe_status(body.get('status', -70401))}"
            ) from None
        finally:
            await connection.close()

    async def _post_pair_setup(self, connection: HapConnection, state_machine):
        request, expected = state_machine.send(None)
        while True:
            response = await connection.post_tlv("/pair-setup", body=request, expected=expected)
            try:
                request, expected = state_machine.send(response)
            except StopIteration as result:
                return result.value

    async def start_pairing(self, with_auth: bool) -> tuple[bytes, bytes]:
        connection = await self._ensure_plain()
        return await self._post_pair_setup(
            connection, perform_pair_setup_part1(with_auth)
        )

    async def finish_pairing(self, state: tuple[bytes, bytes], setup_code: str) -> dict[str, Any]:
        if not self._plain or not self._plain.is_connected:
            raise AccessoryDisconnectedError("Pair-setup connection was lost")

        salt, pub_key = state
        pairing = await self._post_pair_setup(
            self._plain,
            perform_pair_setup_part2(setup_code, str(uuid.uuid4()), salt, pub_key),
        )
        await self._plain.close()
        self._plain = None

        pairing["AccessoryIP"] = self.record.address
        pairing["AccessoryPort"] = self.record.port
        pairing["Connection"] = "IP"
        self.pairing_data = pairing
        return pairing

    async def _post_pairings(self, request: list[tuple[int, bytes]], stage: str) -> None:
        connection = await self._ensure_secure()
        data = dict(await connection.post_tlv("/pairings", request))

        if data.get(TLV.kTLVType_State, TLV.M2) != TLV.M2:
            raise InvalidError(f"Unexpected state after {stage} request")

        if TLV.kTLVType_Error in data:
            error_handler(data[TLV.kTLVType_Error], stage)

    async def add_pairing(
        self, pairing_id: str, public_key: bytes, admin: bool = False
    ) -> None:
        permissions = (
            TLV.kTLVType_Permission_AdminUser if admin else TLV.kTLVType_Permission_RegularUser
        )
        await self._post_pairings(
            [
                (TLV.kTLVType_State, TLV.M1),
                (TLV.kTLVType_Method, TLV.AddPairing),
                (TLV.kTLVType_Identifier, pairing_id.encode()),
                (TLV.kTLVType_PublicKey, public_key),
                (TLV.kTLVType_Permissions, permissions),
            ],
            "add pairing",
        )

    async def remove_pairing(self, pairing_id: str) -> None:
        try:
            await self._post_pairings(
                [
                    (TLV.kTLVType_State, TLV.M1),
                    (TLV.kTLVType_Method, TLV.RemovePairing),
                    (TLV.kTLVType_Identifier, pairing_id.encode()),
                ],
                "remove pairing",
            )
        except AuthenticationError:
            raise AuthenticationError("Remove pairing failed: insufficient access") from None

    def get_long_term_data(self) -> dict[str, Any] | None:
        return self.pairing_data

    async def close(self) -> None:
        secure, self._secure = self._secure, None
        plain, self._plain = self._plain, None
        if secure:
            await secure.close()
        if plain:
            await plain.close()
