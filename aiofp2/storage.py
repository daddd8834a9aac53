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
Persistence of pairing material and gateway API keys.

The session engine never reads files itself: a store is handed to the
PairingManager and the CLI. Pairing material is kept exactly as returned by
pairing and is never interpreted here.
"""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Any, Protocol, TypedDict

from aiofp2.exceptions import ConfigLoadingError, ConfigSavingError
import aiofp2.hkjson as hkjson

logger = logging.getLogger(__name__)

PairingMaterial = dict[str, Any]


class GatewayCredentials(TypedDict, total=False):

    apiKey: str


class StorageLayout(TypedDict):

    pairings: dict[str, PairingMaterial]
    gateways: dict[str, GatewayCredentials]


class PairingStore(Protocol):
    def get_pairing(self, device_id: str) -> PairingMaterial | None:
        pass

    def save_pairing(self, device_id: str, material: PairingMaterial) -> None:
        pass

    def delete_pairing(self, device_id: str) -> None:
        pass

    def pairings(self) -> dict[str, PairingMaterial]:
        pass

    def get_api_key(self, bridge_id: str) -> str | None:
        pass

    def save_api_key(self, bridge_id: str, api_key: str) -> None:
        pass


class PairingStoreMemory:
    def __init__(self) -> None:
        self.storage_data = StorageLayout(pairings={}, gateways={})

    def get_pairing(self, device_id: str) -> PairingMaterial | None:
        return self.storage_data["pairings"].get(device_id.lower())

    def save_pairing(self, device_id: str, material: PairingMaterial) -> None:
        self.storage_data["pairings"][device_id.lower()] = dict(material)
        self._changed()

    def delete_pairing(self, device_id: str) -> None:
        if self.storage_data["pairings"].pop(device_id.lower(), None) is not None:
            self._changed()

    def pairings(self) -> dict[str, PairingMaterial]:
        return dict(self.storage_data["pairings"])

    def get_api_key(self, bridge_id: str) -> str | None:
        return self.storage_data["gateways"].get(bridge_id, {}).get("apiKey")

    def save_api_key(self, bridge_id: str, api_key: str) -> None:
        self.storage_data["gateways"][bridge_id] = GatewayCredentials(apiKey=api_key)
        self._changed()

    def _changed(self) -> None:
        """Hook for stores that write through."""


class PairingStoreFile(PairingStoreMemory):
    def __init__(self, location: pathlib.Path | str) -> None:
        super().__init__()

        self.location = pathlib.Path(location)
        self._load()

    def _load(self) -> None:
        try:
            with open(self.location, encoding="utf-8") as fp:
                data = hkjson.loads(fp.read())
        except FileNotFoundError:
            return
        except PermissionError:
            raise ConfigLoadingError(
                f'Could not open "{self.location}" due to missing permissions'
            )
        except hkjson.JSON_DECODE_EXCEPTIONS:
            logger.warning("%s: file corrupted, starting with no pairings", self.location)
            return

        if not isinstance(data, dict):
            logger.warning("%s: unexpected content, starting with no pairings", self.location)
            return

        self.storage_data = StorageLayout(
            pairings=data.get("pairings", {}),
            gateways=data.get("gateways", {}),
        )

    def _changed(self) -> None:
        logger.debug("%s: write", self.location)

        if not self.location.parent.exists():
            self.location.parent.mkdir(parents=True, exist_ok=True)

        try:
            fd = os.open(self.location, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with open(fd, mode="w", encoding="utf-8") as fp:
                fp.write(hkjson.dumps_indented(self.storage_data))
        except PermissionError:
            raise ConfigSavingError(
                f'Could not write "{self.location}" due to missing permissions'
            )
        except FileNotFoundError:
            raise ConfigSavingError(
                f'Could not write "{self.location}" because it (or the folder) does not exist'
            )
