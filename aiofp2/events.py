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
Normalized events emitted by an AccessoryClient.

These carry no HAP instance ids, so consumers never need to know how a given
device laid out its accessory tree.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union


@dataclass(frozen=True, slots=True)
class LightLevel:
    """Ambient light level in lux."""

    value: float


@dataclass(frozen=True, slots=True)
class ZoneOccupancy:
    zone: int
    present: bool


@dataclass(frozen=True, slots=True)
class Reachability:
    reachable: bool


DomainEvent = Union[LightLevel, ZoneOccupancy, Reachability]

EventListener = Callable[[DomainEvent], None]
ErrorListener = Callable[[Exception], None]


def decode_light_level(value) -> LightLevel:
    return LightLevel(value=float(value))


def occupancy_decoder(zone: int) -> Callable[[object], ZoneOccupancy]:
    def decode(value) -> ZoneOccupancy:
        # OccupancyDetected is a uint8: 0 not detected, 1 detected
        return ZoneOccupancy(zone=zone, present=bool(int(value)))

    return decode
