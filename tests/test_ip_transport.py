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
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from aiofp2.exceptions import AlreadyPairedError, HttpErrorResponse, NotPairedError
import aiofp2.hkjson as hkjson
from aiofp2.testing import fake_record
from aiofp2.transport.http import HttpResponse
from aiofp2.transport.ip import HapIpTransport, format_characteristic_list


@pytest.fixture
def connection():
    connection = MagicMock()
    connection.is_connected = True
    connection.get_json = AsyncMock()
    connection.put_json = AsyncMock(return_value={})
    connection.post_json = AsyncMock(return_value={})
    connection.close = AsyncMock()
    return connection


@pytest.fixture
def transport(connection):
    transport = HapIpTransport(fake_record(), {"AccessoryPairingID": "12:34:56:78:9a:bc"})
    with patch.object(transport, "_ensure_secure", AsyncMock(return_value=connection)):
        yield transport


def test_format_characteristic_list():
    assert format_characteristic_list(
        {
            "characteristics": [
                {"aid": 1, "iid": 12, "value": 35.5, "status": 0},
                {"aid": 1, "iid": 101, "status": -70409},
            ]
        }
    ) == {
        (1, 12): {"value": 35.5},
        (1, 101): {"status": -70409, "description": "Resource does not exist."},
    }


async def test_get_accessories_normalizes_types(transport, connection):
    connection.get_json.return_value = {
        "accessories": [
            {
                "aid": 1,
                "services": [
                    {
                        "iid": 10,
                        "type": "84",
                        "characteristics": [{"iid": 12, "type": "6b", "value": 3.0}],
                    }
                ],
            }
        ]
    }

    accessories = await transport.get_accessories()

    connection.get_json.assert_awaited_once_with("/accessories")
    service = accessories[0]["services"][0]
    assert service["type"] == "00000084-0000-1000-8000-0026BB765291"
    assert service["characteristics"][0]["type"] == "0000006B-0000-1000-8000-0026BB765291"


async def test_get_characteristics(transport, connection):
    connection.get_json.return_value = {
        "characteristics": [
            {"aid": 1, "iid": 12, "value": 3.0},
            {"aid": 1, "iid": 101, "value": 1},
        ]
    }

    result = await transport.get_characteristics([(1, 12), (1, 101), (1, 12)])

    connection.get_json.assert_awaited_once_with("/characteristics?id=1.12,1.101")
    assert result == {(1, 12): {"value": 3.0}, (1, 101): {"value": 1}}


async def test_get_characteristics_all_failed(transport, connection):
    response = HttpResponse()
    response.body = bytearray(
        hkjson.dump_bytes({"characteristics": [{"aid": 1, "iid": 999, "status": -70409}]})
    )
    connection.get_json.side_effect = HttpErrorResponse("400", response=response)

    result = await transport.get_characteristics([(1, 999)])

    assert result == {
        (1, 999): {"status": -70409, "description": "Resource does not exist."}
    }


async def test_put_characteristics_only_failures(transport, connection):
    connection.put_json.return_value = {
        "characteristics": [
            {"aid": 1, "iid": 2, "status": 0},
            {"aid": 1, "iid": 3, "status": -70404},
        ]
    }

    failures = await transport.put_characteristics([(1, 2, True), (1, 3, "x")])

    assert list(failures) == [(1, 3)]
    connection.put_json.assert_awaited_once_with(
        "/characteristics",
        {
            "characteristics": [
                {"aid": 1, "iid": 2, "value": True},
                {"aid": 1, "iid": 3, "value": "x"},
            ]
        },
    )


async def test_subscribe_groups_by_aid(transport, connection):
    await transport.subscribe_characteristics([(2, 5), (1, 101), (1, 12)])

    assert connection.put_json.await_args_list[0].args == (
        "/characteristics",
        {
            "characteristics": [
                {"aid": 1, "iid": 12, "ev": True},
                {"aid": 1, "iid": 101, "ev": True},
            ]
        },
    )
    assert connection.put_json.await_args_list[1].args == (
        "/characteristics",
        {"characteristics": [{"aid": 2, "iid": 5, "ev": True}]},
    )


def test_events_become_batches():
    transport = HapIpTransport(fake_record())
    batches = []
    transport.add_event_listener(batches.append)

    transport._event_received(
        {
            "characteristics": [
                {"aid": 1, "iid": 101, "value": 1},
                {"aid": 1, "iid": 12, "value": 40.0},
                {"value": "no ids"},
            ]
        }
    )
    transport._event_received({"characteristics": []})

    assert batches == [[(1, 101, 1), (1, 12, 40.0)]]


def test_disconnect_listeners():
    transport = HapIpTransport(fake_record())
    dropped = []
    stop_listening = transport.add_disconnect_listener(lambda: dropped.append(True))

    transport._connection_dropped()
    stop_listening()
    transport._connection_dropped()

    assert dropped == [True]


async def test_secure_session_needs_pairing_data():
    transport = HapIpTransport(fake_record())

    with pytest.raises(NotPairedError):
        await transport.get_accessories()


async def test_identify_refused_when_paired(connection):
    response = HttpResponse()
    response.body = bytearray(hkjson.dump_bytes({"status": -70401}))
    connection.post_json.side_effect = HttpErrorResponse("400", response=response)

    transport = HapIpTransport(fake_record())
    with patch.object(transport, "_ensure_plain", AsyncMock(return_value=connection)):
        with pytest.raises(AlreadyPairedError):
            await transport.identify()

    connection.close.assert_awaited_once()


async def test_identify(connection):
    transport = HapIpTransport(fake_record())
    with patch.object(transport, "_ensure_plain", AsyncMock(return_value=connection)):
        await transport.identify()

    connection.post_json.assert_awaited_once_with("/identify", {})
