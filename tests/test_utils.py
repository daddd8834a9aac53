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

from aiofp2.exceptions import InvalidSetupCodeError
from aiofp2.model import FeatureFlags
from aiofp2.utils import check_setup_code, pair_with_auth
from aiofp2.uuid import normalize_uuid, shorten_uuid


def test_normalize_short_uuid():
    assert normalize_uuid("86") == "00000086-0000-1000-8000-0026BB765291"


def test_normalize_uuid():
    assert (
        normalize_uuid("00000086-0000-1000-8000-0026bb765291")
        == "00000086-0000-1000-8000-0026BB765291"
    )


def test_normalize_vendor_uuid_without_dashes():
    assert (
        normalize_uuid("c8622a33826a4dd39be9d496361f29bb")
        == "C8622A33-826A-4DD3-9BE9-D496361F29BB"
    )


def test_normalize_invalid_uuid():
    with pytest.raises(ValueError):
        normalize_uuid("NOT_A_VALID_UUID")


def test_shorten_uuid():
    assert shorten_uuid("00000086-0000-1000-8000-0026BB765291") == "86"
    assert (
        shorten_uuid("C8622A33-826A-4DD3-9BE9-D496361F29BB")
        == "C8622A33-826A-4DD3-9BE9-D496361F29BB"
    )


@pytest.mark.parametrize(
    "code, expected",
    [
        ("111-22-333", "111-22-333"),
        ("11122333", "111-22-333"),
        (" 111-22-333\n", "111-22-333"),
    ],
)
def test_check_setup_code(code, expected):
    assert check_setup_code(code) == expected


@pytest.mark.parametrize("code", ["", "111-22-33", "1112-2-333", "abc-de-fgh", "111223334"])
def test_check_setup_code_invalid(code):
    with pytest.raises(InvalidSetupCodeError):
        check_setup_code(code)


def test_pair_with_auth():
    assert pair_with_auth(FeatureFlags(0)) is False
    assert pair_with_auth(FeatureFlags.SUPPORTS_SOFTWARE_AUTHENTICATION) is False
    assert pair_with_auth(FeatureFlags.SUPPORTS_APPLE_AUTHENTICATION_COPROCESSOR) is True
