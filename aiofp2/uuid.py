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

from functools import lru_cache
from uuid import UUID

BASE_UUID = "-0000-1000-8000-0026BB765291"


@lru_cache(maxsize=256)
def shorten_uuid(value: str) -> str:
    """
    Returns the short form of an Apple defined UUID ("86" for an occupancy sensor).

    Vendor UUIDs are returned in their normalized long form.
    """
    value = normalize_uuid(value)

    if value.endswith(BASE_UUID):
        return value.split("-", 1)[0].lstrip("0")

    return value


@lru_cache(maxsize=256)
def normalize_uuid(value: str) -> str:
    """
    Returns the upper case 36 character form of a short or long UUID.

    Accessories are free to send "86", "00000086-0000-1000-8000-0026BB765291" or
    vendor UUIDs without dashes; all of them compare equal after this.
    """
    value = value.upper()

    if len(value) <= 8:
        return f"{value.zfill(8)}{BASE_UUID}"

    if len(value) == 36:
        return value

    try:
        return str(UUID(value.zfill(32))).upper()
    except ValueError:
        raise ValueError(f"{value} doesn't look like a valid UUID or short UUID")
