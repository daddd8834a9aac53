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

import logging
import os
import uuid

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from aiofp2.exceptions import AlreadyPairedError, NotPairedError
from aiofp2.model import DeviceRecord
from aiofp2.session import SessionMap, TransportFactory
from aiofp2.storage import PairingMaterial, PairingStore
from aiofp2.transport.ip import HapIpTransport
from aiofp2.utils import check_setup_code, pair_with_auth

logger = logging.getLogger(__name__)


def generate_guest_key() -> tuple[ed25519.Ed25519PrivateKey, bytes]:
    """A fresh Ed25519 key pair from a random 32 byte seed."""
    private_key = ed25519.Ed25519PrivateKey.from_private_bytes(os.urandom(32))
    public_key = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
    )
    return private_key, public_key


class PairingManager:
    """
    Pair-setup and unpair for one accessory at a time.

    If a store is given, material is saved only once every step of pairing
    has succeeded, and removed again on unpair.
    """

    def __init__(
        self,
        transport_factory: TransportFactory = HapIpTransport,
        store: PairingStore | None = None,
    ) -> None:
        self.transport_factory = transport_factory
        self.store = store

    async def pair(self, record: DeviceRecord, setup_code: str) -> PairingMaterial:
        """
        Pair with a device and register an extra non-admin controller.

        :raises AlreadyPairedError: if the device is not advertising as pairable
        :raises InvalidSetupCodeError: if the setup code is malformed
        :raises PairingError: if the device rejects the exchange
        """
        if not record.pairable:
            raise AlreadyPairedError(f"{record.id}: already paired")

        setup_code = check_setup_code(setup_code)
        with_auth = pair_with_auth(record.feature_flags)

        transport = self.transport_factory(record, None)
        try:
            logger.debug("%s: pairing (with_auth=%s)", record.id, with_auth)
            state = await transport.start_pairing(with_auth)
            await transport.finish_pairing(state, setup_code)
            material = dict(transport.get_long_term_data())

            guest_key, guest_public = generate_guest_key()
            guest_id = str(uuid.uuid4())
            await transport.add_pairing(guest_id, guest_public, admin=False)
        finally:
            await transport.close()

        material["GuestPairingId"] = guest_id
        material["GuestLTPK"] = guest_public.hex()
        material["GuestLTSK"] = guest_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        ).hex()

        if self.store is not None:
            self.store.save_pairing(record.id, material)

        logger.debug("%s: paired as %s", record.id, material["iOSPairingId"])
        return material

    async def unpair(self, record: DeviceRecord, session: SessionMap) -> None:
        """
        Remove our controller identity from the device and end the session.

        :raises NotPairedError: if the session is not connected
        """
        transport = session.transport
        if not session.is_connected or transport is None:
            raise NotPairedError(f"{record.id}: connect before unpairing")

        material = transport.get_long_term_data() or {}
        try:
            await transport.remove_pairing(material["iOSPairingId"])
        finally:
            await session.disconnect()

        if self.store is not None:
            self.store.delete_pairing(record.id)

        logger.debug("%s: unpaired", record.id)
