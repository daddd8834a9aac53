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
import logging
from typing import Any, Callable

from aiofp2.exceptions import (
    AccessoryDisconnectedError,
    ConnectionError,
    HttpErrorResponse,
    TimeoutError,
)
import aiofp2.hkjson as hkjson
from aiofp2.transport.crypto import (
    PACK_NONCE,
    ChaCha20Poly1305Decryptor,
    ChaCha20Poly1305Encryptor,
    DecryptionError,
)
from aiofp2.transport.http import HttpContentTypes, HttpResponse
from aiofp2.transport.protocol import get_session_keys
from aiofp2.transport.tlv import TLV
from aiofp2.utils import asyncio_timeout

logger = logging.getLogger(__name__)

RESPONSE_TIMEOUT = 30
BLOCK_SIZE = 1024
TAG_SIZE = 16


class InsecureHapProtocol(asyncio.Protocol):
    """Plain HTTP framing for an accessory connection."""

    def __init__(self, connection: HapConnection) -> None:
        self.connection = connection
        self.transport: asyncio.Transport | None = None
        self.result_cbs: list[asyncio.Future[HttpResponse]] = []
        self.current_response = HttpResponse()
        self.loop = asyncio.get_running_loop()

    def connection_made(self, transport):
        self.transport = transport

    def connection_lost(self, exception):
        self.close()
        self.connection._connection_lost(exception)

    def _handle_timeout(self, fut: asyncio.Future[Any]) -> None:
        if not fut.done():
            fut.set_exception(asyncio.TimeoutError)

    async def send_bytes(self, payload: bytes) -> HttpResponse:
        if self.transport is None or self.transport.is_closing():
            raise AccessoryDisconnectedError("Transport is closed")

        self.transport.write(payload)

        # Responses arrive in request order, so each request waits on its own
        # future and no lock is needed around a request/reply cycle
        result: asyncio.Future[HttpResponse] = self.loop.create_future()
        self.result_cbs.append(result)
        timeout_handle = self.loop.call_later(
            RESPONSE_TIMEOUT, self._handle_timeout, result
        )
        try:
            return await result
        except asyncio.TimeoutError:
            self.transport.close()
            raise AccessoryDisconnectedError("Timeout while waiting for response")
        finally:
            timeout_handle.cancel()

    def data_received(self, data: bytes) -> None:
        while data:
            data = self.current_response.parse(data)

            if not self.current_response.is_read_completely():
                break

            http_name = self.current_response.get_http_name().lower()
            if http_name == "http":
                if self.result_cbs:
                    next_callback = self.result_cbs.pop(0)
                    if not next_callback.done():
                        next_callback.set_result(self.current_response)
                else:
                    logger.debug("Dropping unsolicited response %r", self.current_response)
            elif http_name == "event":
                self.connection.event_received(self.current_response)
            else:
                logger.warning("Unknown message type %r", http_name)

            self.current_response = HttpResponse()

    def eof_received(self):
        self.close()
        return False

    def close(self) -> None:
        # Pending requests will never be answered once the socket is gone
        while self.result_cbs:
            result = self.result_cbs.pop(0)
            if not result.done():
                result.set_exception(AccessoryDisconnectedError("Connection closed"))


class SecureHapProtocol(InsecureHapProtocol):
    """
    HTTP framing inside ChaCha20-Poly1305 sealed blocks.

    Each direction has its own key and 64 bit counter. A block is a 2 byte
    little endian length (used as AAD), up to 1024 bytes of cipher text and
    a 16 byte tag.
    """

    def __init__(self, connection: HapConnection, a2c_key: bytes, c2a_key: bytes) -> None:
        super().__init__(connection)
        self._incoming_buffer = bytearray()
        self.c2a_counter = 0
        self.a2c_counter = 0
        self.encryptor = ChaCha20Poly1305Encryptor(c2a_key)
        self.decryptor = ChaCha20Poly1305Decryptor(a2c_key)

    def seal(self, payload: bytes) -> bytes:
        buffer: list[bytes] = []
        for start in range(0, len(payload), BLOCK_SIZE):
            current = payload[start : start + BLOCK_SIZE]
            len_bytes = len(current).to_bytes(2, byteorder="little")
            buffer.append(len_bytes)
            buffer.append(
                self.encryptor.encrypt(len_bytes, PACK_NONCE(self.c2a_counter), current)
            )
            self.c2a_counter += 1
        return b"".join(buffer)

    async def send_bytes(self, payload: bytes) -> HttpResponse:
        return await super().send_bytes(self.seal(payload))

    def data_received(self, data: bytes) -> None:
        self._incoming_buffer += data

        while len(self._incoming_buffer) >= 2:
            block_length_bytes = bytes(self._incoming_buffer[:2])
            block_length = int.from_bytes(block_length_bytes, "little")

            if len(self._incoming_buffer) < 2 + block_length + TAG_SIZE:
                return

            del self._incoming_buffer[:2]
            block_and_tag = bytes(self._incoming_buffer[: block_length + TAG_SIZE])
            del self._incoming_buffer[: block_length + TAG_SIZE]

            try:
                decrypted = self.decryptor.decrypt(
                    block_length_bytes, PACK_NONCE(self.a2c_counter), block_and_tag
                )
            except DecryptionError:
                # The key stream is out of step; nothing after this can be read
                logger.warning("%s: Could not decrypt block, closing", self.connection)
                self.transport.close()
                return

            self.a2c_counter += 1
            super().data_received(decrypted)


class HapConnection:
    """
    A single TCP connection to the accessory's HAP server.

    The connection does not reconnect on its own. When it drops, pending
    requests fail with AccessoryDisconnectedError and ``on_disconnect`` fires.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        timeout: float = 10.0,
        on_event: Callable[[Any], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.on_event = on_event
        self.on_disconnect = on_disconnect

        self.closing = False
        self.transport: asyncio.Transport | None = None
        self.protocol: InsecureHapProtocol | None = None
        self._concurrency_limit = asyncio.Semaphore(1)

    @property
    def is_connected(self) -> bool:
        return bool(self.transport and self.protocol and not self.closing)

    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        logger.debug("Attempting connection to %s:%s", self.host, self.port)
        self.closing = False

        try:
            async with asyncio_timeout(self.timeout):
                self.transport, self.protocol = await loop.create_connection(
                    lambda: InsecureHapProtocol(self), self.host, self.port
                )
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timeout connecting to {self.host}:{self.port}")
        except OSError as e:
            raise ConnectionError(str(e))

    async def get(self, target: str) -> HttpResponse:
        return await self.request("GET", target)

    async def get_json(self, target: str) -> Any:
        response = await self.get(target)
        return self._decode_json(response)

    async def put(
        self, target: str, body: bytes, content_type=HttpContentTypes.JSON
    ) -> HttpResponse:
        return await self.request(
            "PUT",
            target,
            headers=[
                ("Content-Type", content_type.value),
                ("Content-Length", len(body)),
            ],
            body=body,
        )

    async def put_json(self, target: str, body: Any) -> Any:
        response = await self.put(target, hkjson.dump_bytes(body))
        if response.code == 204:
            return {}
        return self._decode_json(response)

    async def post(
        self, target: str, body: bytes, content_type=HttpContentTypes.TLV
    ) -> HttpResponse:
        return await self.request(
            "POST",
            target,
            headers=[
                ("Content-Type", content_type.value),
                ("Content-Length", len(body)),
            ],
            body=body,
        )

    async def post_json(self, target: str, body: Any) -> Any:
        response = await self.post(
            target, hkjson.dump_bytes(body), content_type=HttpContentTypes.JSON
        )
        if response.code == 204 or not response.body:
            return {}
        return self._decode_json(response)

    async def post_tlv(self, target: str, body: list, expected=None) -> list:
        try:
            response = await self.post(target, TLV.encode_list(body))
        except HttpErrorResponse as e:
            # Pairing endpoints report failures as TLV bodies on 4xx responses
            self.transport.close()
            response = e.response
        return TLV.decode_bytes(response.body, expected=expected)

    def _decode_json(self, response: HttpResponse) -> Any:
        try:
            return hkjson.loads(bytes(response.body))
        except hkjson.JSON_DECODE_EXCEPTIONS:
            self.transport.close()
            raise AccessoryDisconnectedError(
                "Session closed after receiving malformed response from device"
            )

    async def request(
        self,
        method: str,
        target: str,
        headers: list[tuple[str, Any]] | None = None,
        body: bytes | None = None,
    ) -> HttpResponse:
        """
        Send one HTTP request and wait for its response.

        :raises AccessoryDisconnectedError: if the connection is gone
        :raises HttpErrorResponse: for 4xx status codes
        """
        if not self.protocol:
            raise AccessoryDisconnectedError("Connection lost before request could be sent")

        # Some accessories reject requests without a Host header or with bare \n
        buffer = [f"{method.upper()} {target} HTTP/1.1", f"Host: {self.host}"]
        for header, value in headers or ():
            buffer.append(f"{header}: {value}")
        buffer.extend(("", ""))
        request_bytes = "\r\n".join(buffer).encode("utf-8")

        # Each request must go out in a single write
        if body:
            request_bytes += body

        async with self._concurrency_limit:
            if not self.protocol:
                raise AccessoryDisconnectedError("Tried to send while not connected")
            logger.debug("%s: raw request: %r", self.host, request_bytes)
            resp = await self.protocol.send_bytes(request_bytes)

        logger.debug("%s: raw response: %r", self.host, bytes(resp.body))

        if 400 <= resp.code <= 499:
            raise HttpErrorResponse(
                f"Got HTTP error {resp.code} for {method} against {target}",
                response=resp,
            )

        return resp

    async def close(self) -> None:
        self.closing = True
        if self.transport:
            self.transport.close()
        self.protocol = None
        self.transport = None

    def _connection_lost(self, exception: Exception | None) -> None:
        logger.debug("Connection %r lost: %s", self, exception)
        was_closing = self.closing
        self.transport = None
        self.protocol = None
        if not was_closing and self.on_disconnect:
            self.on_disconnect()

    def event_received(self, event: HttpResponse) -> None:
        if not self.on_event or not event.body:
            return

        try:
            parsed = hkjson.loads(bytes(event.body))
        except hkjson.JSON_DECODE_EXCEPTIONS:
            logger.debug("%s: Ignoring malformed event %r", self.host, bytes(event.body))
            return

        self.on_event(parsed)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(host={self.host!r}, port={self.port!r})"


class SecureHapConnection(HapConnection):
    """A connection that runs pair-verify and then encrypts all traffic."""

    def __init__(self, host: str, port: int, pairing_data: dict[str, Any], **kwargs) -> None:
        super().__init__(host, port, **kwargs)
        self.pairing_data = pairing_data
        self.is_secure = False

    @property
    def is_connected(self) -> bool:
        return super().is_connected and self.is_secure

    async def connect(self) -> None:
        self.is_secure = False
        await super().connect()

        try:
            async with asyncio_timeout(self.timeout):
                derive = await self._pair_verify()
        except asyncio.TimeoutError:
            await self.close()
            raise TimeoutError(f"Timeout verifying {self.host}:{self.port}")
        except BaseException:
            await self.close()
            raise

        c2a_key = derive(b"Control-Salt", b"Control-Write-Encryption-Key")
        a2c_key = derive(b"Control-Salt", b"Control-Read-Encryption-Key")

        # Everything after pair-verify is encrypted
        self.protocol = SecureHapProtocol(self, a2c_key, c2a_key)
        self.transport.set_protocol(self.protocol)
        self.protocol.connection_made(self.transport)
        self.is_secure = True

        logger.debug("Secure connection to %s:%s established", self.host, self.port)

    async def _pair_verify(self):
        state_machine = get_session_keys(self.pairing_data)
        request, expected = state_machine.send(None)
        while True:
            response = await self.post_tlv("/pair-verify", body=request, expected=expected)
            try:
                request, expected = state_machine.send(response)
            except StopIteration as result:
                return result.value
