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
Cryptographic primitives used by HAP pairing and sessions.

* SRP-6a with the 3072 bit group of RFC 5054 and SHA-512 (pair-setup)
* HKDF-SHA-512 key derivation
* ChaCha20-Poly1305 AEAD (RFC 7539) with HAP's 96 bit nonce layout
"""
from __future__ import annotations

from functools import partial
import hashlib
import os
from struct import Struct

from chacha20poly1305_reuseable import ChaCha20Poly1305Reusable
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

DecryptionError = InvalidTag

NONCE_PADDING = bytes(4)
PACK_NONCE = partial(Struct("<LQ").pack, 0)

HK_KEY_LENGTH = 384

GENERATOR = 5

MODULUS = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E08"
    "8A67CC74020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B"
    "302B0A6DF25F14374FE1356D6D51C245E485B576625E7EC6F44C42E9"
    "A637ED6B0BFF5CB6F406B7EDEE386BFB5A899FA5AE9F24117C4B1FE6"
    "49286651ECE45B3DC2007CB8A163BF0598DA48361C55D39A69163FA8"
    "FD24CF5F83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3BE39E772C"
    "180E86039B2783A2EC07A28FB5C55DF06F4C52C9DE2BCBF695581718"
    "3995497CEA956AE515D2261898FA051015728E5A8AAAC42DAD33170D"
    "04507A33A85521ABDF1CBA64ECFB850458DBEF0A8AEA71575D060C7D"
    "B3970F85A6E1E4C7ABF5AE8CDB0933D71E8C94E04A25619DCEE3D226"
    "1AD2EE6BF12FFA06D98A0864D87602733EC86A64521F2B18177B200C"
    "BBE117577A615D6C770988C0BAD946E208E24FA074E5AB3143DB5BFC"
    "E0FD108E4B82D120A93AD2CAFFFFFFFFFFFFFFFF",
    16,
)


def _digest(*parts: bytes) -> bytes:
    return hashlib.sha512(b"".join(parts)).digest()


def to_bytes(num: int, length: int = 0) -> bytes:
    """Big endian bytes of num, left padded with zeros to length.

    Some accessories use a salt of all zeros, and some keys have leading
    zero bytes; both must keep their full width on the wire.
    """
    raw = num.to_bytes((num.bit_length() + 7) // 8, "big")
    return raw.rjust(length, b"\x00")


def _from_bytes(data: bytes) -> int:
    return int.from_bytes(data, "big")


# k = H(N | PAD(g)), fixed for this group
K_VALUE = int(
    "a9c2e2559bf0ebb53f0cbbf62282906bede7f2182f00678211fbd5bde5b28503"
    "3a4993503b87397f9be5ec02080fedbc0835587ad039060879b8621e8c3659e0",
    16,
)

# H(N) xor H(g)
H_GROUP = bytes(
    a ^ b for a, b in zip(_digest(to_bytes(MODULUS)), _digest(to_bytes(GENERATOR)))
)


class _Srp:
    def __init__(self, username: str, password: str) -> None:
        self.username = username
        self.password = password
        self.salt: bytes | None = None
        self.A_b: bytes | None = None
        self.B_b: bytes | None = None
        self._session_key: bytes | None = None

    @staticmethod
    def generate_private_key() -> int:
        return _from_bytes(os.urandom(16))

    def _x(self) -> int:
        inner = _digest(f"{self.username}:{self.password}".encode())
        return _from_bytes(_digest(self.salt, inner))

    def _u(self) -> int:
        if self.A_b is None or self.B_b is None:
            raise RuntimeError("Both public keys are needed")
        return _from_bytes(_digest(self.A_b, self.B_b))

    def _shared_secret(self) -> int:
        raise NotImplementedError()

    def get_session_key_bytes(self) -> bytes:
        if self._session_key is None:
            self._session_key = _digest(to_bytes(self._shared_secret(), HK_KEY_LENGTH))
        return self._session_key

    def _client_proof(self) -> bytes:
        return _digest(
            H_GROUP,
            _digest(self.username.encode()),
            self.salt,
            self.A_b,
            self.B_b,
            self.get_session_key_bytes(),
        )

    def _server_proof(self, client_proof: bytes) -> bytes:
        return _digest(self.A_b, client_proof, self.get_session_key_bytes())


class SrpClient(_Srp):
    """The controller side of the pair-setup SRP exchange."""

    def __init__(self, username: str, password: str) -> None:
        super().__init__(username, password)
        self.a = self.generate_private_key()
        self.A_b = to_bytes(pow(GENERATOR, self.a, MODULUS), HK_KEY_LENGTH)

    def set_salt(self, salt: bytes) -> None:
        self.salt = to_bytes(_from_bytes(salt), 16)

    def set_server_public_key(self, public_key: bytes) -> None:
        self.B_b = bytes(public_key)

    def get_public_key_bytes(self) -> bytes:
        return self.A_b

    def _shared_secret(self) -> int:
        x = self._x()
        v = pow(GENERATOR, x, MODULUS)
        base = (_from_bytes(self.B_b) - K_VALUE * v) % MODULUS
        return pow(base, self.a + self._u() * x, MODULUS)

    def get_proof_bytes(self) -> bytes:
        return self._client_proof()

    def verify_servers_proof_bytes(self, proof: bytes) -> bool:
        return bytes(proof) == self._server_proof(self._client_proof())


class SrpServer(_Srp):
    """The accessory side of the exchange, used to exercise SrpClient."""

    def __init__(self, username: str, password: str, salt: bytes | None = None) -> None:
        super().__init__(username, password)
        self.salt = salt if salt is not None else os.urandom(16)
        self.b = self.generate_private_key()
        self.verifier = pow(GENERATOR, self._x(), MODULUS)
        B = (K_VALUE * self.verifier + pow(GENERATOR, self.b, MODULUS)) % MODULUS
        self.B_b = to_bytes(B, HK_KEY_LENGTH)

    def get_salt(self) -> bytes:
        return self.salt

    def get_public_key_bytes(self) -> bytes:
        return self.B_b

    def set_client_public_key(self, public_key: bytes) -> None:
        self.A_b = bytes(public_key)

    def _shared_secret(self) -> int:
        base = _from_bytes(self.A_b) * pow(self.verifier, self._u(), MODULUS)
        return pow(base, self.b, MODULUS)

    def verify_clients_proof_bytes(self, proof: bytes) -> bool:
        return bytes(proof) == self._client_proof()

    def get_proof_bytes(self, client_proof: bytes) -> bytes:
        return self._server_proof(client_proof)


def hkdf_derive(input: bytes, salt: bytes, info: bytes, length: int = 32) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA512(), length=length, salt=salt, info=info)
    return hkdf.derive(input)


class ChaCha20Poly1305Encryptor:
    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ValueError("ChaCha20-Poly1305 keys are 32 bytes")
        self.chacha = ChaCha20Poly1305Reusable(key)

    def encrypt(self, aad: bytes, nonce: bytes, plaintext: bytes) -> bytes:
        """Returns the cipher text followed by the 16 byte tag."""
        return self.chacha.encrypt(nonce, plaintext, aad)


class ChaCha20Poly1305Decryptor:
    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            raise ValueError("ChaCha20-Poly1305 keys are 32 bytes")
        self.chacha = ChaCha20Poly1305Reusable(key)

    def decrypt(self, aad: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        """Raises DecryptionError if the tag does not verify."""
        return self.chacha.decrypt(nonce, ciphertext, aad)
