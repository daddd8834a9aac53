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
"""asyncio client for the Aqara Presence Sensor FP2."""

from aiofp2.client import AccessoryClient, Connected, Disconnected, Subscribed
from aiofp2.discovery import Discovery, ZeroconfDiscoveryTransport
from aiofp2.events import DomainEvent, LightLevel, Reachability, ZoneOccupancy
from aiofp2.exceptions import HomeKitException
from aiofp2.gateway import GatewayClient, GatewaySync
from aiofp2.model import CapabilityMap, DeviceRecord
from aiofp2.pairing import PairingManager
from aiofp2.storage import PairingStoreFile, PairingStoreMemory

__all__ = [
    "AccessoryClient",
    "CapabilityMap",
    "Connected",
    "DeviceRecord",
    "Disconnected",
    "Discovery",
    "DomainEvent",
    "GatewayClient",
    "GatewaySync",
    "HomeKitException",
    "LightLevel",
    "PairingManager",
    "PairingStoreFile",
    "PairingStoreMemory",
    "Reachability",
    "Subscribed",
    "ZeroconfDiscoveryTransport",
    "ZoneOccupancy",
]
