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
import pytest

from aiofp2.client import AccessoryClient
from aiofp2.pairing import PairingManager
from aiofp2.storage import PairingStoreMemory
from aiofp2.testing import FakeAccessory, fake_record


@pytest.fixture
def accessory() -> FakeAccessory:
    return FakeAccessory()


@pytest.fixture
def record():
    return fake_record()


@pytest.fixture
def store() -> PairingStoreMemory:
    return PairingStoreMemory()


@pytest.fixture
async def material(accessory, record, store):
    manager = PairingManager(accessory.transport_factory, store)
    material = await manager.pair(record, accessory.setup_code)
    # the pairing attempt's own transport is closed and of no further interest
    accessory.transports.clear()
    return material


@pytest.fixture
async def client(accessory, record, store, material):
    client = AccessoryClient(
        fake_record(pairable=False),
        store=store,
        transport_factory=accessory.transport_factory,
    )
    yield client
    await client.disconnect()


@pytest.fixture
def events(client):
    received = []
    client.add_listener(received.append)
    return received


@pytest.fixture
def errors(client):
    received = []
    client.add_error_listener(received.append)
    return received
