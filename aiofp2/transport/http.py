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
"""HTTP/1.1 framing for the accessory's HAP server."""
from __future__ import annotations

from enum import Enum


class HttpContentTypes(Enum):
    JSON = "application/hap+json"
    TLV = "application/pairing+tlv8"


class HttpResponse:
    """
    Incrementally parse one HTTP/1.1 (or EVENT/1.0) response.

    Feed bytes to :meth:`parse`; it returns whatever was not consumed, which
    belongs to the next message on the connection.
    """

    STATE_PRE_STATUS = 0
    STATE_HEADERS = 1
    STATE_BODY = 2
    STATE_DONE = 3

    def __init__(self) -> None:
        self._state = self.STATE_PRE_STATUS
        self._raw = bytearray()
        self._chunked = False
        self._content_length = -1

        self.version: str | None = None
        self.code: int | None = None
        self.reason: str | None = None
        self.headers: list[tuple[str, str]] = []
        self.body = bytearray()

    def parse(self, data: bytes) -> bytes:
        self._raw += data

        while self._state != self.STATE_DONE:
            if self._state in (self.STATE_PRE_STATUS, self.STATE_HEADERS):
                idx = self._raw.find(b"\r\n")
                if idx == -1:
                    break
                line = self._raw[:idx].decode()
                del self._raw[: idx + 2]

                if self._state == self.STATE_PRE_STATUS:
                    self._parse_status_line(line)
                    self._state = self.STATE_HEADERS
                elif line:
                    name, _, value = line.partition(":")
                    self._add_header(name.strip(), value.strip())
                else:
                    self._state = self.STATE_BODY
                    if not self._chunked and self._content_length <= 0:
                        self._state = self.STATE_DONE
                continue

            if self._chunked:
                if not self._parse_chunk():
                    break
                continue

            missing = self._content_length - len(self.body)
            self.body += self._raw[:missing]
            del self._raw[:missing]
            if len(self.body) == self._content_length:
                self._state = self.STATE_DONE
            break

        if self._state != self.STATE_DONE:
            return b""

        remaining = bytes(self._raw)
        self._raw.clear()
        return remaining

    def _parse_status_line(self, line: str) -> None:
        parts = line.split(" ", 2)
        if len(parts) < 2:
            raise ValueError(f"Malformed status line {line!r}")
        self.version = parts[0]
        self.code = int(parts[1])
        self.reason = parts[2] if len(parts) > 2 else ""

    def _add_header(self, name: str, value: str) -> None:
        self.headers.append((name, value))
        lowered = name.lower()
        if lowered == "content-length":
            self._content_length = int(value)
        elif lowered == "transfer-encoding" and value.lower() == "chunked":
            self._chunked = True

    def _parse_chunk(self) -> bool:
        idx = self._raw.find(b"\r\n")
        if idx == -1:
            return False
        size = int(self._raw[:idx].split(b";")[0], 16)
        end = idx + 2 + size + 2
        if len(self._raw) < end:
            return False
        self.body += self._raw[idx + 2 : idx + 2 + size]
        del self._raw[:end]
        if size == 0:
            self._state = self.STATE_DONE
        return True

    def get_http_name(self) -> str:
        if self.version is None:
            return ""
        return self.version.split("/", 1)[0]

    def get_header(self, name: str) -> str | None:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None

    def is_read_completely(self) -> bool:
        return self._state == self.STATE_DONE

    def __repr__(self) -> str:
        return f"HttpResponse(code={self.code!r}, body={bytes(self.body)!r})"
