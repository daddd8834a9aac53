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
from unittest.mock import MagicMock

import pytest

from aiofp2.client import AccessoryClient, Connected, Disconnected, Subscribed
from aiofp2.const import CharacteristicsTypes, ServicesTypes
from aiofp2.events import LightLevel
from aiofp2.exceptions import AlreadyPairedError, CharacteristicError, NotPairedError
from aiofp2.testing import FAKE_SERIAL, fake_record


async def test_state_machine(client):
    assert isinstance(client.state, Disconnected)
    assert client.capabilities is None

    capabilities = await client.connect()
    assert client.state == Connected(capabilities)

    subscriptions = await client.subscribe()
    assert client.state == Subscribed(capabilities, subscriptions)

    # connect does not move backwards
    await client.connect()
    assert isinstance(client.state, Subscribed)

    await client.disconnect()
    assert isinstance(client.state, Disconnected)
    assert client.capabilities is None


async def test_material_from_store(client, material):
    assert client.is_paired
    assert client.material == material


async def test_connect_unpaired(accessory, record):
    client = AccessoryClient(record, transport_factory=accessory.transport_factory)

    with pytest.raises(NotPairedError):
        await client.connect()

    assert isinstance(client.state, Disconnected)
    assert accessory.transports == []


async def test_get_id(client):
    assert await client.get_id() == FAKE_SERIAL


async def test_get_and_put(client, accessory):
    await client.connect()
    iid = client.resolve(ServicesTypes.ACCESSORY_INFORMATION, CharacteristicsTypes.NAME)

    await client.put({iid: "Living room"})

    assert await client.get([iid, 12]) == {iid: "Living room", 12: 120.0}


async def test_get_missing(client):
    with pytest.raises(CharacteristicError):
        await client.get([999])


async def test_put_missing(client):
    with pytest.raises(CharacteristicError):
        await client.put({999: 1})


async def test_accessories(client, accessory):
    accessories = await client.accessories()

    assert accessories[0]["aid"] == 1
    assert accessory.get_accessories_calls == 1


async def test_identify_paired(client, accessory):
    await client.identify()

    assert accessory.identify_calls == 1


async def test_identify_unpaired(accessory, record):
    client = AccessoryClient(record, transport_factory=accessory.transport_factory)

    await client.identify()

    assert accessory.identify_calls == 1
    assert accessory.transports[0].close_calls == 1


async def test_identify_unpaired_refused(accessory, record, material):
    # the accessory is paired with someone else
    client = AccessoryClient(record, transport_factory=accessory.transport_factory)

    with pytest.raises(AlreadyPairedError):
        await client.identify()

    assert accessory.transports[0].close_calls == 1


async def test_pair_then_subscribe(accessory, store):
    client = AccessoryClient(
        fake_record(), store=store, transport_factory=accessory.transport_factory
    )
    events = []
    client.add_listener(events.append)

    await client.pair(accessory.setup_code)
    assert client.is_paired
    await client.subscribe()

    assert events[0] == LightLevel(120.0)
    await client.disconnect()


async def test_unpair(client, accessory, store, material):
    await client.subscribe()

    await client.unpair()

    assert isinstance(client.state, Disconnected)
    assert not client.is_paired
    assert material["iOSPairingId"] not in accessory.pairings
    assert store.get_pairing(client.record.id) is None


async def test_unpair_disconnected(client, accessory, store):
    with pytest.raises(NotPairedError):
        await client.unpair()

    assert accessory.transports == []
    assert client.is_paired
    assert store.get_pairing(client.record.id) is not None


async def test_listener_errors_are_isolated(client):
    received = []
    client.add_listener(MagicMock(side_effect=Exception("boom")))
    client.add_listener(received.append)

    await client.subscribe()

    assert received[0] == LightLevel(120.0)


async def test_remove_listener(client):
    received = []
    stop_listening = client.add_listener(received.append)
    stop_listening()

    await client.subscribe()

    assert received == []
