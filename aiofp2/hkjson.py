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

import json
from typing import Any

import commentjson
import orjson

JSON_ENCODE_EXCEPTIONS = (TypeError, ValueError)
JSON_DECODE_EXCEPTIONS = (json.JSONDecodeError, orjson.JSONDecodeError, ValueError)


def loads(s: str | bytes | bytearray | memoryview) -> Any:
    """Decode JSON from an accessory, a gateway or the pairing file.

    orjson is tried first. Some accessories put trailing commas in their
    /accessories and EVENT bodies (iOS accepts them), so a failure is
    retried with the slower commentjson parser.
    """
    try:
        return orjson.loads(s)
    except orjson.JSONDecodeError:
        if isinstance(s, (bytes, bytearray, memoryview)):
            s = bytes(s).decode("utf-8")
        if not s.strip():
            raise ValueError("Failed to parse JSON: empty document")
        try:
            return commentjson.loads(s)
        except Exception as e:
            # lark parse errors are not ValueErrors
            raise ValueError(f"Failed to parse JSON: {e}") from e


def dump_bytes(data: Any) -> bytes:
    """Compact JSON as sent by an iPhone: {"characteristics":[{"aid":1,"iid":10,"ev":true}]}"""
    return orjson.dumps(data, option=orjson.OPT_NON_STR_KEYS)


def dumps(data: Any) -> str:
    return dump_bytes(data).decode("utf-8")


def dumps_indented(data: Any) -> str:
    return orjson.dumps(
        data,
        option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS | orjson.OPT_SORT_KEYS,
    ).decode("utf-8")
