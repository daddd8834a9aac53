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
Pair-setup and pair-verify state machines.

Each exchange is a generator that yields ``(request, expected_types)`` and
receives the decoded TLV response of the accessory, so the same code drives
any transport able to POST TLV8 bodies.
"""
from __future__ import annotations

from collections.abc import Generator
import logging
from typing import Any, Callable

from cryptography import exceptions as cryptography_exceptions
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519

from aiofp2.exceptions import (
    AuthenticationError,
    BackoffError,
    BusyError,
    IllegalData,
    IncorrectPairingIdError,
    InvalidAuthTagError,
    InvalidError,
    InvalidSignatureError,
    MaxPeersError,
    MaxTriesError,
    UnavailableError,
)
from aiofp2.transport.crypto import (
    NONCE_PADDING,
    ChaCha20Poly1305Decryptor,
    ChaCha20Poly1305Encryptor,
    DecryptionError,
    SrpClient,
    hkdf_derive,
)
from aiofp2.transport.tlv import TLV

logger = logging.getLogger(__name__)

TlvRequest = list[tuple[int, bytes]]
TlvResponse = list[tuple[int, bytes]]
Exchange = Generator[tuple[TlvRequest, list[int]], TlvResponse, Any]

_ERRORS = {
    TLV.kTLVError_Unavailable: UnavailableError,
    TLV.kTLVError_Authentication: AuthenticationError,
    TLV.kTLVError_Backoff: BackoffError,
    TLV.kTLVError_MaxPeers: MaxPeersError,
    TLV.kTLVError_MaxTries: MaxTriesError,
    TLV.kTLVError_Busy: BusyError,
}


def error_handler(error: bytes, stage: str):
    """Raise the exception matching a kTLVType_Error value (table 4-5)."""
    raise _ERRORS.get(bytes(error), InvalidError)(stage)


def handle_state_step(tlv_dict: dict[int, bytes], expected_state: bytes) -> None:
    actual_state = tlv_dict.get(TLV.kTLVType_State)

    if actual_state is None:
        # Some firmwares leave out kTLVType_State; iOS tolerates it
        return

    if actual_state != expected_state:
        raise InvalidError(
            f"Expected state {expected_state.hex()} but got {actual_state.hex()}"
        )

    if TLV.kTLVType_Error in tlv_dict:
        error_handler(tlv_dict[TLV.kTLVType_Error], f"step {expected_state.hex()}")


def _decrypt(key: bytes, nonce: bytes, data: bytes, exc: type[Exception], stage: str):
    try:
        return ChaCha20Poly1305Decryptor(key).decrypt(b"", NONCE_PADDING + nonce, data)
    except DecryptionError:
        raise exc(stage) from None


def _raw_public(key) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


def perform_pair_setup_part1(with_auth: bool = False) -> Exchange:
    """
    Ask the accessory to start pair-setup (M1) and collect its salt and SRP
    public key from M2.

    :raises UnavailableError: if the device is already paired
    :raises MaxTriesError: if the device saw too many unsuccessful attempts
    :raises BusyError: if a parallel pairing is ongoing
    """
    logger.debug("#1 controller -> accessory: send SRP start request")
    request = [
        (TLV.kTLVType_State, TLV.M1),
        (TLV.kTLVType_Method, TLV.PairSetupWithAuth if with_auth else TLV.PairSetup),
    ]
    response = yield (
        request,
        [TLV.kTLVType_State, TLV.kTLVType_Error, TLV.kTLVType_PublicKey, TLV.kTLVType_Salt],
    )

    response = dict(response)
    handle_state_step(response, TLV.M2)

    if TLV.kTLVType_PublicKey not in response:
        raise InvalidError("M2: Accessory did not send public key")

    if TLV.kTLVType_Salt not in response:
        raise InvalidError("M2: Accessory did not send salt")

    return response[TLV.kTLVType_Salt], response[TLV.kTLVType_PublicKey]


def perform_pair_setup_part2(
    pin: str, ios_pairing_id: str, salt: bytes, server_public_key: bytes
) -> Exchange:
    """
    Finish pair-setup (M3 to M6) and return the long-term pairing material.

    :raises AuthenticationError: if the setup code was wrong
    :raises InvalidSignatureError: if the accessory signature does not verify
    :raises IllegalData: if the accessory's encrypted data cannot be read
    """
    srp_client = SrpClient("Pair-Setup", pin)
    srp_client.set_salt(salt)
    srp_client.set_server_public_key(server_public_key)

    logger.debug("#3 controller -> accessory: send SRP verify request")
    request = [
        (TLV.kTLVType_State, TLV.M3),
        (TLV.kTLVType_PublicKey, srp_client.get_public_key_bytes()),
        (TLV.kTLVType_Proof, srp_client.get_proof_bytes()),
    ]
    response = yield (
        request,
        [TLV.kTLVType_State, TLV.kTLVType_Error, TLV.kTLVType_Proof, TLV.kTLVType_EncryptedData],
    )

    response = dict(response)
    handle_state_step(response, TLV.M4)

    if TLV.kTLVType_Proof not in response:
        raise InvalidError("M4: not an error or a proof")

    if not srp_client.verify_servers_proof_bytes(response[TLV.kTLVType_Proof]):
        raise AuthenticationError("M4: wrong proof")

    logger.debug("#5 controller -> accessory: send SRP exchange request")
    srp_key = srp_client.get_session_key_bytes()

    ios_device_ltsk = ed25519.Ed25519PrivateKey.generate()
    ios_device_public_bytes = _raw_public(ios_device_ltsk.public_key())

    ios_device_x = hkdf_derive(
        srp_key, b"Pair-Setup-Controller-Sign-Salt", b"Pair-Setup-Controller-Sign-Info"
    )
    session_key = hkdf_derive(
        srp_key, b"Pair-Setup-Encrypt-Salt", b"Pair-Setup-Encrypt-Info"
    )

    ios_device_pairing_id = ios_pairing_id.encode()
    ios_device_signature = ios_device_ltsk.sign(
        ios_device_x + ios_device_pairing_id + ios_device_public_bytes
    )

    sub_tlv = TLV.encode_list(
        [
            (TLV.kTLVType_Identifier, ios_device_pairing_id),
            (TLV.kTLVType_PublicKey, ios_device_public_bytes),
            (TLV.kTLVType_Signature, ios_device_signature),
        ]
    )
    encrypted = ChaCha20Poly1305Encryptor(session_key).encrypt(
        b"", NONCE_PADDING + b"PS-Msg05", sub_tlv
    )

    response = yield (
        [(TLV.kTLVType_State, TLV.M5), (TLV.kTLVType_EncryptedData, encrypted)],
        [TLV.kTLVType_State, TLV.kTLVType_Error, TLV.kTLVType_EncryptedData],
    )

    response = dict(response)
    handle_state_step(response, TLV.M6)

    if TLV.kTLVType_EncryptedData not in response:
        raise InvalidError("M6: Encrypted data not sent by accessory")

    decrypted = _decrypt(
        session_key, b"PS-Msg06", response[TLV.kTLVType_EncryptedData], IllegalData, "M6"
    )
    accessory = dict(TLV.decode_bytes(decrypted))

    for key, name in (
        (TLV.kTLVType_Signature, "signature"),
        (TLV.kTLVType_Identifier, "identifier"),
        (TLV.kTLVType_PublicKey, "public key"),
    ):
        if key not in accessory:
            raise InvalidError(f"M6: Accessory did not send {name}")

    accessory_ltpk = accessory[TLV.kTLVType_PublicKey]
    accessory_pairing_id = accessory[TLV.kTLVType_Identifier]

    accessory_x = hkdf_derive(
        srp_key, b"Pair-Setup-Accessory-Sign-Salt", b"Pair-Setup-Accessory-Sign-Info"
    )

    try:
        ed25519.Ed25519PublicKey.from_public_bytes(accessory_ltpk).verify(
            accessory[TLV.kTLVType_Signature],
            accessory_x + accessory_pairing_id + accessory_ltpk,
        )
    except cryptography_exceptions.InvalidSignature:
        raise InvalidSignatureError("M6") from None

    ltsk = ios_device_ltsk.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )

    return {
        "AccessoryPairingID": accessory_pairing_id.decode(),
        "AccessoryLTPK": accessory_ltpk.hex(),
        "iOSPairingId": ios_pairing_id,
        "iOSDeviceLTSK": ltsk.hex(),
        "iOSDeviceLTPK": ios_device_public_bytes.hex(),
    }


def get_session_keys(
    pairing_data: dict[str, Any],
) -> Generator[tuple[TlvRequest, list[int]], TlvResponse, Callable[..., bytes]]:
    """
    Run pair-verify (M1 to M4) and return a function deriving session keys
    from the negotiated shared secret.

    :raises InvalidAuthTagError: if the accessory's encrypted data does not verify
    :raises IncorrectPairingIdError: if the accessory is not the one we paired with
    :raises InvalidSignatureError: if the accessory's signature does not verify
    """
    ios_key = x25519.X25519PrivateKey.generate()
    ios_key_pub = _raw_public(ios_key.public_key())

    response = yield (
        [(TLV.kTLVType_State, TLV.M1), (TLV.kTLVType_PublicKey, ios_key_pub)],
        [TLV.kTLVType_State, TLV.kTLVType_Error, TLV.kTLVType_PublicKey, TLV.kTLVType_EncryptedData],
    )

    response = dict(response)
    handle_state_step(response, TLV.M2)

    if TLV.kTLVType_PublicKey not in response:
        raise InvalidError("M2: Missing public key")

    if TLV.kTLVType_EncryptedData not in response:
        raise InvalidError("M2: Missing encrypted data")

    accessory_session_pub = response[TLV.kTLVType_PublicKey]
    shared_secret = ios_key.exchange(
        x25519.X25519PublicKey.from_public_bytes(accessory_session_pub)
    )

    session_key = hkdf_derive(
        shared_secret, b"Pair-Verify-Encrypt-Salt", b"Pair-Verify-Encrypt-Info"
    )

    decrypted = _decrypt(
        session_key,
        b"PV-Msg02",
        response[TLV.kTLVType_EncryptedData],
        InvalidAuthTagError,
        "M2",
    )
    sub_tlv = dict(TLV.decode_bytes(decrypted))

    if TLV.kTLVType_Identifier not in sub_tlv:
        raise InvalidError("M2: Encrypted data did not contain identifier")

    if TLV.kTLVType_Signature not in sub_tlv:
        raise InvalidError("M2: Encrypted data did not contain signature")

    accessory_name = sub_tlv[TLV.kTLVType_Identifier].decode()
    if pairing_data["AccessoryPairingID"] != accessory_name:
        raise IncorrectPairingIdError("M2")

    accessory_ltpk = ed25519.Ed25519PublicKey.from_public_bytes(
        bytes.fromhex(pairing_data["AccessoryLTPK"])
    )
    try:
        accessory_ltpk.verify(
            sub_tlv[TLV.kTLVType_Signature],
            accessory_session_pub + accessory_name.encode() + ios_key_pub,
        )
    except cryptography_exceptions.InvalidSignature:
        raise InvalidSignatureError("M2") from None

    ios_pairing_id = pairing_data["iOSPairingId"].encode()
    ios_device_ltsk = ed25519.Ed25519PrivateKey.from_private_bytes(
        bytes.fromhex(pairing_data["iOSDeviceLTSK"])
    )
    ios_device_signature = ios_device_ltsk.sign(
        ios_key_pub + ios_pairing_id + accessory_session_pub
    )

    encrypted = ChaCha20Poly1305Encryptor(session_key).encrypt(
        b"",
        NONCE_PADDING + b"PV-Msg03",
        TLV.encode_list(
            [
                (TLV.kTLVType_Identifier, ios_pairing_id),
                (TLV.kTLVType_Signature, ios_device_signature),
            ]
        ),
    )

    response = yield (
        [(TLV.kTLVType_State, TLV.M3), (TLV.kTLVType_EncryptedData, encrypted)],
        [TLV.kTLVType_State, TLV.kTLVType_Error],
    )
    handle_state_step(dict(response), TLV.M4)

    def derive(salt: bytes, info: bytes, length: int = 32) -> bytes:
        return hkdf_derive(shared_secret, salt, info, length=length)

    return derive
