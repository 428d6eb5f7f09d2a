# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the JSON array element splitter."""

from __future__ import annotations

import json

import pytest

from streambody import CodecError, MaxLenReachedError
from streambody._buffer import ByteBuffer
from streambody.codecs import JsonArrayCodec
from tests.helpers import drain, one_byte_chunks, split_at


def _objects(frames: list[bytes]) -> list[object]:
    return [json.loads(frame) for frame in frames]


def test_splits_simple_array() -> None:
    frames = drain(JsonArrayCodec(100), [b'[{"a":1},{"a":2}]'])

    assert frames == [b'{"a":1}', b'{"a":2}']


def test_byte_by_byte_delivery_yields_same_frames(json_array_body: bytes) -> None:
    whole = drain(JsonArrayCodec(1024), [json_array_body])
    trickled = drain(JsonArrayCodec(1024), one_byte_chunks(json_array_body))

    assert trickled == whole
    assert _objects(whole) == [
        {"id": 1, "name": "a}b"},
        {"id": 2, "nested": {"x": [1, 2, {"y": "\\"}]}},
        {"id": 3, "quote": 'say "hi" {'},
    ]


def test_empty_array_yields_nothing() -> None:
    assert drain(JsonArrayCodec(10), [b"  [ \n ]  "]) == []


def test_empty_body_yields_nothing() -> None:
    assert drain(JsonArrayCodec(10), [b""]) == []


def test_one_frame_per_decode_call() -> None:
    codec = JsonArrayCodec(100)
    buf = ByteBuffer()
    buf.extend(b'[{"a":1},{"b":2},{"c":3}]')

    assert codec.decode(buf) == b'{"a":1}'
    assert codec.decode(buf) == b'{"b":2}'
    assert codec.decode(buf) == b'{"c":3}'
    assert codec.decode(buf) is None
    assert codec.decode_eof(buf) is None
    assert not buf


def test_partial_object_waits_for_more_input() -> None:
    codec = JsonArrayCodec(100)
    buf = ByteBuffer()
    buf.extend(b'[{"a": "x}')

    assert codec.decode(buf) is None
    assert bytes(buf.peek(100)) == b'{"a": "x}'

    buf.extend(b'"}]')
    assert codec.decode(buf) == b'{"a": "x}"}'


def test_separator_bytes_are_dropped_from_the_buffer() -> None:
    codec = JsonArrayCodec(100)
    buf = ByteBuffer()
    buf.extend(b' [ \n\t')

    assert codec.decode(buf) is None
    assert len(buf) == 0


def test_object_at_exact_limit_is_accepted() -> None:
    obj = b'{"k":"' + b"x" * 10 + b'"}'
    frames = drain(JsonArrayCodec(len(obj)), [b"[" + obj + b"]"])

    assert frames == [obj]


def test_object_over_limit_fails_without_waiting_for_close() -> None:
    codec = JsonArrayCodec(8)
    buf = ByteBuffer()
    buf.extend(b'[{"a":"0123456789')

    with pytest.raises(MaxLenReachedError):
        codec.decode(buf)


def test_limit_applies_to_each_object_separately() -> None:
    body = b"[" + b",".join([b'{"n":12345}'] * 5) + b"]"

    assert len(drain(JsonArrayCodec(11), split_at(body, [3, 17, 30]))) == 5
    with pytest.raises(MaxLenReachedError):
        drain(JsonArrayCodec(10), [body])


@pytest.mark.parametrize(
    ("body", "message"),
    [
        (b'{"a":1}', "JSON object found outside of the array"),
        (b'x[{"a":1}]', "Expected a JSON array"),
        (b"[[", "Unexpected array begin. It is already opened"),
        (b"[,", "Unexpected delimiter found"),
        (b'[{"a":1},,', "Unexpected delimiter found"),
        (b'[{"a":1},]', "Unexpected array end after a delimiter"),
        (b'[{"a":1}{"b":2}]', "Missing delimiter between array elements"),
        (b'[{"a":1}] 5', "Unexpected data after the end of the JSON array"),
        (b'[{"a":1}] {"b":2}', "JSON object found outside of the array"),
        (b"[1, 2]", "only objects are supported"),
        (b'["s"]', "only objects are supported"),
    ],
)
def test_malformed_arrays(body: bytes, message: str) -> None:
    with pytest.raises(CodecError, match=message):
        drain(JsonArrayCodec(100), [body])


def test_objects_before_an_error_are_still_delivered() -> None:
    codec = JsonArrayCodec(100)
    buf = ByteBuffer()
    buf.extend(b'[{"a":1},,')

    assert codec.decode(buf) == b'{"a":1}'
    with pytest.raises(CodecError):
        codec.decode(buf)


def test_input_ending_inside_object_is_truncation() -> None:
    with pytest.raises(CodecError, match="Input ended inside a JSON object"):
        drain(JsonArrayCodec(100), [b'[{"a":1},{"b":'])


def test_input_ending_before_array_close_is_truncation() -> None:
    with pytest.raises(CodecError, match="before the JSON array was closed"):
        drain(JsonArrayCodec(100), [b'[{"a":1}, '])


def test_rejects_non_positive_max_length() -> None:
    with pytest.raises(ValueError):
        JsonArrayCodec(0)
