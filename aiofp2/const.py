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
"""Identifiers for the Aqara Presence Sensor FP2 and the HAP types it exposes."""

from aiofp2.uuid import normalize_uuid

MANUFACTURER = "Aqara"

# The "md" TXT record advertised over mDNS
MODEL_SIGNATURE = "PS-S02D"

# Zone indices 0..MAX_ZONES-1 are probed when subscribing
MAX_ZONES = 30

DEFAULT_DISCOVERY_TIMEOUT = 5

HAP_TYPE_TCP = "_hap._tcp.local."


class ServicesTypes:
    ACCESSORY_INFORMATION = normalize_uuid("3E")
    PROTOCOL_INFORMATION = normalize_uuid("A2")
    LIGHT_SENSOR = normalize_uuid("84")
    OCCUPANCY_SENSOR = normalize_uuid("86")

    AQARA = normalize_uuid("9715BF53-AB63-4449-8DC7-2785D617390A")


class CharacteristicsTypes:
    IDENTIFY = normalize_uuid("14")
    MANUFACTURER = normalize_uuid("20")
    MODEL = normalize_uuid("21")
    NAME = normalize_uuid("23")
    SERIAL_NUMBER = normalize_uuid("30")
    FIRMWARE_REVISION = normalize_uuid("52")
    VERSION = normalize_uuid("37")

    CURRENT_AMBIENT_LIGHT_LEVEL = normalize_uuid("6B")
    OCCUPANCY_DETECTED = normalize_uuid("71")

    # r/o, int - zone number of an occupancy sensor service
    AQARA_INDEX = normalize_uuid("C8622A33-826A-4DD3-9BE9-D496361F29BB")


# Service types that the device repeats once per zone. The value is the
# characteristic whose value tells the instances apart.
INDEXED_SERVICES = {
    ServicesTypes.OCCUPANCY_SENSOR: CharacteristicsTypes.AQARA_INDEX,
}
