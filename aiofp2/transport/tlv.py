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
"""TLV8 encoding used by the pairing endpoints (Appendix 12)."""
from __future__ import annotations

from collections.abc import Iterable
import logging

logger = logging.getLogger(__name__)

K_TLV_TYPE_NAMES = {
    0: "Method",
    1: "Identifier",
    2: "Salt",
    3: "PublicKey",
    4: "Proof",
    5: "EncryptedData",
    6: "State",
    7: "Error",
    8: "RetryDelay",
    9: "Certificate",
    10: "Signature",
    11: "Permissions",
    12: "FragmentData",
    13: "FragmentLast",
    14: "SessionID",
    255: "Separator",
}


class TlvParseException(Exception):
    """Raised upon parse error with some TLV"""


class TLV:
    # Steps
    M1 = b"\x01"
    M2 = b"\x02"
    M3 = b"\x03"
    M4 = b"\x04"
    M5 = b"\x05"
    M6 = b"\x06"

    # Methods (table 4-4)
    PairSetup = b"\x00"
    PairSetupWithAuth = b"\x01"
    PairVerify = b"\x02"
    AddPairing = b"\x03"
    RemovePairing = b"\x04"
    ListPairings = b"\x05"

    # Types (table 4-6)
    kTLVType_Method = 0
    kTLVType_Identifier = 1
    kTLVType_Salt = 2
    kTLVType_PublicKey = 3
    kTLVType_Proof = 4
    kTLVType_EncryptedData = 5
    kTLVType_State = 6
    kTLVType_Error = 7
    kTLVType_RetryDelay = 8
    kTLVType_Certificate = 9
    kTLVType_Signature = 10
    kTLVType_Permissions = 11
    kTLVType_FragmentData = 12
    kTLVType_FragmentLast = 13
    kTLVType_SessionID = 14
    kTLVType_Separator = 255

    kTLVType_Permission_RegularUser = b"\x00"
    kTLVType_Permission_AdminUser = b"\x01"

    # Errors (table 4-5)
    kTLVError_Unknown = b"\x01"
    kTLVError_Authentication = b"\x02"
    kTLVError_Backoff = b"\x03"
    kTLVError_MaxPeers = b"\x04"
    kTLVError_MaxTries = b"\x05"
    kTLVError_Unavailable = b"\x06"
    kTLVError_Busy = b"\x07"

    @staticmethod
    def decode_bytes(
        data: bytes | bytearray, expected: Iterable[int] | None = None
    ) -> list[tuple[int, bytes]]:
        """
        Decode a TLV8 blob into (type, value) pairs.

        Consecutive items of the same type are one value split into 255 byte
        fragments and are joined. If expected is given, decoding stops at the
        first type not in it.
        """
        expected = set(expected) if expected else None
        result: list[tuple[int, bytes]] = []
        offset = 0

        while offset < len(data):
            if offset + 2 > len(data):
                raise TlvParseException(f"Truncated TLV header at offset {offset}")

            key = data[offset]
            if expected and key not in expected:
                break

            length = data[offset + 1]
            value = bytes(data[offset + 2 : offset + 2 + length])
            if len(value) != length:
                raise TlvParseException(
                    f"Not enough data for length {length} while decoding {bytes(data)!r}"
                )
            offset += 2 + length

            if result and result[-1][0] == key:
                result[-1] = (key, result[-1][1] + value)
            else:
                result.append((key, value))

        logger.debug("receiving %s", TLV.to_string(result))
        return result

    @staticmethod
    def encode_list(items: Iterable[tuple[int, bytes]]) -> bytes:
        items = list(items)
        logger.debug("sending %s", TLV.to_string(items))

        result = bytearray()
        for key, value in items:
            if not 0 <= key <= 255:
                raise ValueError(f"Invalid TLV type {key}")

            if key == TLV.kTLVType_Separator:
                if value:
                    raise ValueError("Separator must not have data")
                result += bytes((key, 0))
                continue

            value = bytes(value)
            if not value:
                result += bytes((key, 0))
                continue

            for start in range(0, len(value), 255):
                chunk = value[start : start + 255]
                result += bytes((key, len(chunk))) + chunk

        return bytes(result)

    @staticmethod
    def to_string(items: Iterable[tuple[int, bytes]]) -> str:
        lines = []
        for key, value in items:
            name = K_TLV_TYPE_NAMES.get(key, "Unknown")
            lines.append(f"  {key} ({name}): ({len(value)} bytes) 0x{bytes(value).hex()}")
        return "[\n" + "\n".join(lines) + "\n]"
