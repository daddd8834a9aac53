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
"""HAP status codes for characteristic reads and writes (Table 6-11)."""
from __future__ import annotations

import enum


class HapStatusCode(enum.IntEnum):
    SUCCESS = 0
    INSUFFICIENT_PRIVILEGES = -70401
    UNABLE_TO_COMMUNICATE = -70402
    RESOURCE_BUSY = -70403
    CANT_WRITE_READ_ONLY = -70404
    CANT_READ_WRITE_ONLY = -70405
    NOTIFICATION_NOT_SUPPORTED = -70406
    OUT_OF_RESOURCES = -70407
    TIMED_OUT = -70408
    RESOURCE_NOT_EXIST = -70409
    INVALID_VALUE = -70410
    INSUFFICIENT_AUTH = -70411
    NOT_ALLOWED_IN_CURRENT_STATE = -70412

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    HapStatusCode.SUCCESS: "This specifies a success for the request.",
    HapStatusCode.INSUFFICIENT_PRIVILEGES: "Request denied due to insufficient privileges.",
    HapStatusCode.UNABLE_TO_COMMUNICATE: "Unable to communicate with requested service.",
    HapStatusCode.RESOURCE_BUSY: "Resource is busy, try again.",
    HapStatusCode.CANT_WRITE_READ_ONLY: "Cannot write to read only characteristic.",
    HapStatusCode.CANT_READ_WRITE_ONLY: "Cannot read from a write only characteristic.",
    HapStatusCode.NOTIFICATION_NOT_SUPPORTED: "Notification is not supported for characteristic.",
    HapStatusCode.OUT_OF_RESOURCES: "Out of resources to process request.",
    HapStatusCode.TIMED_OUT: "Operation timed out.",
    HapStatusCode.RESOURCE_NOT_EXIST: "Resource does not exist.",
    HapStatusCode.INVALID_VALUE: "Accessory received an invalid value in a write request.",
    HapStatusCode.INSUFFICIENT_AUTH: "Insufficient Authorization.",
    HapStatusCode.NOT_ALLOWED_IN_CURRENT_STATE: "Not allowed in current state.",
}


def describe_status(status: int) -> str:
    # Some firmwares send the codes as positive numbers
    try:
        return HapStatusCode(-abs(status)).description
    except ValueError:
        return f"Unknown status {status}"
