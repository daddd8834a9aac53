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
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
import pytest

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
    SrpServer,
    hkdf_derive,
)
from aiofp2.transport.protocol import (
    error_handler,
    get_session_keys,
    handle_state_step,
    perform_pair_setup_part1,
    perform_pair_setup_part2,
)
from aiofp2.transport.tlv import TLV

SETUP_CODE = "111-22-333"
ACCESSORY_ID = b"12:34:56:78:9A:BC"


def raw_public(key) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )


class SimulatedAccessory:
    """The accessory half of pair-setup and pair-verify."""

    def __init__(self, setup_code=SETUP_CODE, pairing_id=ACCESSORY_ID):
        self.srp = SrpServer("Pair-Setup", setup_code)
        self.pairing_id = pairing_id
        self.ltsk = ed25519.Ed25519PrivateKey.generate()
        self.ltpk = raw_public(self.ltsk)
        self.controller: tuple[bytes, bytes] | None = None
        self.shared_secret: bytes | None = None
        self.tamper = False

    def pair_setup(self, request: dict[int, bytes]) -> list:
        state = request[TLV.kTLVType_State]

        if state == TLV.M1:
            return [
                (TLV.kTLVType_State, TLV.M2),
                (TLV.kTLVType_Salt, self.srp.get_salt()),
                (TLV.kTLVType_PublicKey, self.srp.get_public_key_bytes()),
            ]

        if state == TLV.M3:
            self.srp.set_client_public_key(request[TLV.kTLVType_PublicKey])
            proof = request[TLV.kTLVType_Proof]
            if not self.srp.verify_clients_proof_bytes(proof):
                return [
                    (TLV.kTLVType_State, TLV.M4),
                    (TLV.kTLVType_Error, TLV.kTLVError_Authentication),
                ]
            return [
                (TLV.kTLVType_State, TLV.M4),
                (TLV.kTLVType_Proof, self.srp.get_proof_bytes(proof)),
            ]

        srp_key = self.srp.get_session_key_bytes()
        session_key = hkdf_derive(
            srp_key, b"Pair-Setup-Encrypt-Salt", b"Pair-Setup-Encrypt-Info"
        )
        sub_tlv = dict(
            TLV.decode_bytes(
                ChaCha20Poly1305Decryptor(session_key).decrypt(
                    b"", NONCE_PADDING + b"PS-Msg05", request[TLV.kTLVType_EncryptedData]
                )
            )
        )
        controller_x = hkdf_derive(
            srp_key, b"Pair-Setup-Controller-Sign-Salt", b"Pair-Setup-Controller-Sign-Info"
        )
        ed25519.Ed25519PublicKey.from_public_bytes(sub_tlv[TLV.kTLVType_PublicKey]).verify(
            sub_tlv[TLV.kTLVType_Signature],
            controller_x + sub_tlv[TLV.kTLVType_Identifier] + sub_tlv[TLV.kTLVType_PublicKey],
        )
        self.controller = (sub_tlv[TLV.kTLVType_Identifier], sub_tlv[TLV.kTLVType_PublicKey])

        accessory_x = hkdf_derive(
            srp_key, b"Pair-Setup-Accessory-Sign-Salt", b"Pair-Setup-Accessory-Sign-Info"
        )
        signature = self.ltsk.sign(accessory_x + self.pairing_id + self.ltpk)
        encrypted = ChaCha20Poly1305Encryptor(session_key).encrypt(
            b"",
            NONCE_PADDING + b"PS-Msg06",
            TLV.encode_list(
                [
                    (TLV.kTLVType_Identifier, self.pairing_id),
                    (TLV.kTLVType_PublicKey, self.ltpk),
                    (TLV.kTLVType_Signature, signature),
                ]
            ),
        )
        return [(TLV.kTLVType_State, TLV.M6), (TLV.kTLVType_EncryptedData, encrypted)]

    def pair_verify(self, request: dict[int, bytes]) -> list:
        if request[TLV.kTLVType_State] == TLV.M1:
            self.controller_session_pub = request[TLV.kTLVType_PublicKey]
            session = x25519.X25519PrivateKey.generate()
            self.session_pub = raw_public(session)
            self.shared_secret = session.exchange(
                x25519.X25519PublicKey.from_public_bytes(self.controller_session_pub)
            )
            self.session_key = hkdf_derive(
                self.shared_secret, b"Pair-Verify-Encrypt-Salt", b"Pair-Verify-Encrypt-Info"
            )
            signature = self.ltsk.sign(
                self.session_pub + self.pairing_id + self.controller_session_pub
            )
            encrypted = bytearray(
                ChaCha20Poly1305Encryptor(self.session_key).encrypt(
                    b"",
                    NONCE_PADDING + b"PV-Msg02",
                    TLV.encode_list(
                        [
                            (TLV.kTLVType_Identifier, self.pairing_id),
                            (TLV.kTLVType_Signature, signature),
                        ]
                    ),
                )
            )
            if self.tamper:
                encrypted[-1] ^= 0xFF
            return [
                (TLV.kTLVType_State, TLV.M2),
                (TLV.kTLVType_PublicKey, self.session_pub),
                (TLV.kTLVType_EncryptedData, bytes(encrypted)),
            ]

        sub_tlv = dict(
            TLV.decode_bytes(
                ChaCha20Poly1305Decryptor(self.session_key).decrypt(
                    b"", NONCE_PADDING + b"PV-Msg03", request[TLV.kTLVType_EncryptedData]
                )
            )
        )
        controller_id, controller_ltpk = self.controller
        assert sub_tlv[TLV.kTLVType_Identifier] == controller_id
        ed25519.Ed25519PublicKey.from_public_bytes(controller_ltpk).verify(
            sub_tlv[TLV.kTLVType_Signature],
            self.controller_session_pub + controller_id + self.session_pub,
        )
        return [(TLV.kTLVType_State, TLV.M4)]


def drive(exchange, respond):
    """Run a protocol generator against a responder, through the TLV codec."""
    request, expected = exchange.send(None)
    while True:
        response = respond(dict(request))
        try:
            request, expected = exchange.send(
                TLV.decode_bytes(TLV.encode_list(response), expected=expected)
            )
        except StopIteration as result:
            return result.value


def pair(accessory: SimulatedAccessory, setup_code: str = SETUP_CODE) -> dict:
    salt, public_key = drive(perform_pair_setup_part1(), accessory.pair_setup)
    return drive(
        perform_pair_setup_part2(setup_code, "controller-id", salt, public_key),
        accessory.pair_setup,
    )


def test_pair_setup():
    accessory = SimulatedAccessory()

    material = pair(accessory)

    assert material["AccessoryPairingID"] == ACCESSORY_ID.decode()
    assert material["AccessoryLTPK"] == accessory.ltpk.hex()
    assert material["iOSPairingId"] == "controller-id"
    assert accessory.controller == (b"controller-id", bytes.fromhex(material["iOSDeviceLTPK"]))
    assert len(bytes.fromhex(material["iOSDeviceLTSK"])) == 32


def test_pair_setup_with_auth_method():
    exchange = perform_pair_setup_part1(with_auth=True)
    request, _ = exchange.send(None)
    assert dict(request)[TLV.kTLVType_Method] == TLV.PairSetupWithAuth


def test_pair_setup_wrong_code():
    accessory = SimulatedAccessory()

    with pytest.raises(AuthenticationError):
        pair(accessory, "999-99-999")

    assert accessory.controller is None


def test_pair_setup_already_paired():
    def respond(request):
        return [(TLV.kTLVType_State, TLV.M2), (TLV.kTLVType_Error, TLV.kTLVError_Unavailable)]

    with pytest.raises(UnavailableError):
        drive(perform_pair_setup_part1(), respond)


def test_pair_setup_missing_salt():
    def respond(request):
        return [(TLV.kTLVType_State, TLV.M2), (TLV.kTLVType_PublicKey, b"\x01" * 384)]

    with pytest.raises(InvalidError):
        drive(perform_pair_setup_part1(), respond)


def test_pair_setup_unreadable_m6():
    accessory = SimulatedAccessory()
    salt, public_key = drive(perform_pair_setup_part1(), accessory.pair_setup)

    def respond(request):
        response = accessory.pair_setup(request)
        if request[TLV.kTLVType_State] == TLV.M5:
            return [(TLV.kTLVType_State, TLV.M6), (TLV.kTLVType_EncryptedData, b"\x00" * 64)]
        return response

    with pytest.raises(IllegalData):
        drive(perform_pair_setup_part2(SETUP_CODE, "controller-id", salt, public_key), respond)


def test_pair_verify_session_keys():
    accessory = SimulatedAccessory()
    material = pair(accessory)

    derive = drive(get_session_keys(material), accessory.pair_verify)

    expected = hkdf_derive(
        accessory.shared_secret, b"Control-Salt", b"Control-Read-Encryption-Key"
    )
    assert derive(b"Control-Salt", b"Control-Read-Encryption-Key") == expected
    assert derive(b"Control-Salt", b"Control-Write-Encryption-Key") != expected


def test_pair_verify_wrong_accessory():
    accessory = SimulatedAccessory()
    material = pair(accessory)
    material["AccessoryPairingID"] = "AA:AA:AA:AA:AA:AA"

    with pytest.raises(IncorrectPairingIdError):
        drive(get_session_keys(material), accessory.pair_verify)


def test_pair_verify_bad_signature():
    accessory = SimulatedAccessory()
    material = pair(accessory)
    accessory.ltsk = ed25519.Ed25519PrivateKey.generate()

    with pytest.raises(InvalidSignatureError):
        drive(get_session_keys(material), accessory.pair_verify)


def test_pair_verify_bad_auth_tag():
    accessory = SimulatedAccessory()
    material = pair(accessory)
    accessory.tamper = True

    with pytest.raises(InvalidAuthTagError):
        drive(get_session_keys(material), accessory.pair_verify)


@pytest.mark.parametrize(
    "error, exception",
    [
        (TLV.kTLVError_Authentication, AuthenticationError),
        (TLV.kTLVError_Backoff, BackoffError),
        (TLV.kTLVError_MaxPeers, MaxPeersError),
        (TLV.kTLVError_MaxTries, MaxTriesError),
        (TLV.kTLVError_Unavailable, UnavailableError),
        (TLV.kTLVError_Busy, BusyError),
        (TLV.kTLVError_Unknown, InvalidError),
        (b"\x42", InvalidError),
    ],
)
def test_error_handler(error, exception):
    with pytest.raises(exception):
        error_handler(error, "M2")


def test_handle_state_step():
    handle_state_step({TLV.kTLVType_State: TLV.M2}, TLV.M2)

    # a missing state is tolerated
    handle_state_step({}, TLV.M2)

    with pytest.raises(InvalidError):
        handle_state_step({TLV.kTLVType_State: TLV.M4}, TLV.M2)

    with pytest.raises(BusyError):
        handle_state_step(
            {TLV.kTLVType_State: TLV.M2, TLV.kTLVType_Error: TLV.kTLVError_Busy}, TLV.M2
        )
