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

import asyncio
from collections.abc import Awaitable
import logging
import re
import sys
from typing import TypeVar

from aiofp2.exceptions import InvalidSetupCodeError
from aiofp2.model import FeatureFlags

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

if sys.version_info[:2] < (3, 11):
    from async_timeout import timeout as asyncio_timeout  # noqa: F401
else:
    from asyncio import timeout as asyncio_timeout  # noqa: F401


def async_create_task(coroutine: Awaitable[T], *, name=None) -> asyncio.Task[T]:
    """Wrapper for asyncio.create_task that logs errors."""
    task = asyncio.create_task(coroutine, name=name)
    task.add_done_callback(_handle_task_result)
    return task


def _handle_task_result(task: asyncio.Task) -> None:
    try:
        task.result()
    except asyncio.CancelledError:
        pass
    except Exception:
        _LOGGER.exception("Failure running background task: %s", task.get_name())


def check_setup_code(setup_code: str) -> str:
    """
    Validates a setup code and returns it in the XXX-XX-XXX form the SRP exchange needs.

    The label on the device prints the code as eight digits, so "12345678" is
    accepted as well.

    :raises InvalidSetupCodeError: if the code has any other shape
    """
    setup_code = setup_code.strip()

    if re.match(r"^\d{8}$", setup_code):
        return f"{setup_code[:3]}-{setup_code[3:5]}-{setup_code[5:]}"

    if not re.match(r"^\d\d\d-\d\d-\d\d\d$", setup_code):
        raise InvalidSetupCodeError(
            "The setup code must be of the form XXX-XX-XXX where X is a digit between 0 and 9."
        )

    return setup_code


def pair_with_auth(ff: FeatureFlags) -> bool:
    if ff & FeatureFlags.SUPPORTS_APPLE_AUTHENTICATION_COPROCESSOR:
        return True

    if ff & FeatureFlags.SUPPORTS_SOFTWARE_AUTHENTICATION:
        return False

    # We don't know what kind of pairing this is, assume no auth
    return False
