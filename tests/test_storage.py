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
import os
import stat

import pytest

from aiofp2.exceptions import ConfigLoadingError
import aiofp2.hkjson as hkjson
from aiofp2.storage import PairingStoreFile, PairingStoreMemory

MATERIAL = {
    "AccessoryPairingID": "12:34:56:78:9A:BC",
    "AccessoryLTPK": "00" * 32,
    "iOSPairingId": "c4a3e3a8-1e5f-4d52-9a34-7f0a0b3f1f0d",
    "iOSDeviceLTSK": "11" * 32,
    "iOSDeviceLTPK": "22" * 32,
}


def test_memory_store():
    store = PairingStoreMemory()

    store.save_pairing("12:34:56:78:9A:BC", MATERIAL)

    assert store.get_pairing("12:34:56:78:9a:bc") == MATERIAL
    assert list(store.pairings()) == ["12:34:56:78:9a:bc"]

    store.delete_pairing("12:34:56:78:9a:bc")
    assert store.get_pairing("12:34:56:78:9a:bc") is None
    store.delete_pairing("12:34:56:78:9a:bc")


def test_file_store_round_trip(tmp_path):
    location = tmp_path / "aiofp2" / "pairing.json"

    store = PairingStoreFile(location)
    store.save_pairing("12:34:56:78:9a:bc", MATERIAL)
    store.save_api_key("00212EFFFF012345", "ABCDEF1234")

    assert stat.S_IMODE(os.stat(location).st_mode) == 0o600

    reloaded = PairingStoreFile(location)
    assert reloaded.get_pairing("12:34:56:78:9a:bc") == MATERIAL
    assert reloaded.get_api_key("00212EFFFF012345") == "ABCDEF1234"
    assert reloaded.get_api_key("unknown") is None

    assert hkjson.loads(location.read_text()) == {
        "pairings": {"12:34:56:78:9a:bc": MATERIAL},
        "gateways": {"00212EFFFF012345": {"apiKey": "ABCDEF1234"}},
    }


def test_file_store_missing_file(tmp_path):
    store = PairingStoreFile(tmp_path / "pairing.json")

    assert store.pairings() == {}
    assert not (tmp_path / "pairing.json").exists()


def test_file_store_corrupt_file(tmp_path):
    location = tmp_path / "pairing.json"
    location.write_text("{not json")

    store = PairingStoreFile(location)

    assert store.pairings() == {}


def test_file_store_unexpected_content(tmp_path):
    location = tmp_path / "pairing.json"
    location.write_text("[1, 2]")

    assert PairingStoreFile(location).pairings() == {}


@pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
def test_file_store_unreadable(tmp_path):
    location = tmp_path / "pairing.json"
    location.write_text("{}")
    location.chmod(0)

    with pytest.raises(ConfigLoadingError):
        PairingStoreFile(location)
