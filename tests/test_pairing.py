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
from unittest.mock import AsyncMock, MagicMock

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
import pytest

from aiofp2.exceptions import (
    AccessoryDisconnectedError,
    AlreadyPairedError,
    AuthenticationError,
    InvalidSetupCodeError,
    NotPairedError,
)
from aiofp2.model import FeatureFlags
from aiofp2.pairing import PairingManager, generate_guest_key
from aiofp2.session import SessionMap
from aiofp2.testing import fake_record


def test_generate_guest_key():
    private_key, public_key = generate_guest_key()

    assert len(public_key) == 32
    assert (
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
        )
        == public_key
    )


async def test_pair(accessory, record, store):
    manager = PairingManager(accessory.transport_factory, store)

    material = await manager.pair(record, "11122333")

    assert store.get_pairing(record.id) == material
    assert material["AccessoryPairingID"] == accessory.device_id
    assert material["iOSPairingId"] in accessory.pairings

    # one admin (us) and one regular guest controller
    assert accessory.pairings[material["iOSPairingId"]][1] is True
    public_key, admin = accessory.pairings[material["GuestPairingId"]]
    assert admin is False
    assert public_key.hex() == material["GuestLTPK"]

    guest = ed25519.Ed25519PrivateKey.from_private_bytes(bytes.fromhex(material["GuestLTSK"]))
    assert (
        guest.public_key().public_bytes(
            encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw
        ).hex()
        == material["GuestLTPK"]
    )

    assert accessory.transports[0].close_calls == 1


async def test_pair_passes_auth_mode(accessory, store):
    record = fake_record(feature_flags=FeatureFlags.SUPPORTS_APPLE_AUTHENTICATION_COPROCESSOR)
    manager = PairingManager(accessory.transport_factory, store)

    await manager.pair(record, accessory.setup_code)

    assert accessory.transports[0]._setup_state == {"with_auth": True}


async def test_pair_already_paired(accessory, store):
    factory = MagicMock(side_effect=accessory.transport_factory)
    manager = PairingManager(factory, store)

    with pytest.raises(AlreadyPairedError):
        await manager.pair(fake_record(pairable=False), accessory.setup_code)

    factory.assert_not_called()
    assert store.pairings() == {}


async def test_pair_invalid_code(accessory, record, store):
    manager = PairingManager(accessory.transport_factory, store)

    with pytest.raises(InvalidSetupCodeError):
        await manager.pair(record, "1234")

    assert accessory.transports == []


async def test_pair_wrong_code(accessory, record, store):
    manager = PairingManager(accessory.transport_factory, store)

    with pytest.raises(AuthenticationError):
        await manager.pair(record, "999-99-999")

    assert store.pairings() == {}
    assert accessory.pairings == {}
    assert accessory.transports[0].close_calls == 1


async def test_pair_without_store(accessory, record):
    material = await PairingManager(accessory.transport_factory).pair(
        record, accessory.setup_code
    )

    assert accessory.is_paired
    assert "GuestPairingId" in material


async def test_unpair(accessory, record, store, material):
    session = SessionMap(accessory.transport_factory)
    await session.connect(record, material)
    transport = session.transport
    manager = PairingManager(accessory.transport_factory, store)

    await manager.unpair(record, session)

    assert material["iOSPairingId"] not in accessory.pairings
    # the guest stays registered
    assert material["GuestPairingId"] in accessory.pairings
    assert store.get_pairing(record.id) is None
    assert not session.is_connected
    assert transport.close_calls == 1


async def test_unpair_failure_keeps_material(accessory, record, store, material):
    session = SessionMap(accessory.transport_factory)
    await session.connect(record, material)
    transport = session.transport
    transport.remove_pairing = AsyncMock(side_effect=AccessoryDisconnectedError("gone"))
    manager = PairingManager(accessory.transport_factory, store)

    with pytest.raises(AccessoryDisconnectedError):
        await manager.unpair(record, session)

    assert store.get_pairing(record.id) == material
    assert not session.is_connected
    assert transport.close_calls == 1


async def test_unpair_not_connected(accessory, record, store, material):
    manager = PairingManager(accessory.transport_factory, store)

    with pytest.raises(NotPairedError):
        await manager.unpair(record, SessionMap(accessory.transport_factory))

    assert accessory.transports == []
    assert store.get_pairing(record.id) == material
