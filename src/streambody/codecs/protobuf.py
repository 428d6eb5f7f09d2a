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

"""Varint length-prefixed framing for streams of Protobuf messages.

Each message on the wire is ``varint(len(payload)) + payload``, the same
layout ``writeDelimitedTo`` produces in the Java runtime and
``google.protobuf.internal.encoder._VarintBytes`` builds in Python.
"""

from __future__ import annotations

from typing import Final

from .._buffer import ByteBuffer
from ..errors import CodecError, MaxLenReachedError

__all__ = [
    "MAX_VARINT_LEN",
    "ProtobufLenPrefixCodec",
    "decode_varint",
    "encode_varint",
]

MAX_VARINT_LEN: Final[int] = 10
"""Bytes needed to hold a 64-bit value in 7-bit groups."""

_CONTINUATION: Final[int] = 0x80
_PAYLOAD_MASK: Final[int] = 0x7F
_MAX_UINT64: Final[int] = (1 << 64) - 1


def decode_varint(data: bytes | memoryview) -> tuple[int, int]:
    """Decode a LEB128 varint at the start of ``data``.

    Returns the value and the number of bytes it occupied. Raises
    :class:`CodecError` when ``data`` ends before the varint does, when ten
    bytes pass without a terminating byte, or when the tenth byte would push
    the value past 64 bits.
    """

    value = 0
    for index, byte in enumerate(data[:MAX_VARINT_LEN]):
        if index == MAX_VARINT_LEN - 1 and byte > 1:
            raise CodecError("invalid varint")
        value |= (byte & _PAYLOAD_MASK) << (7 * index)
        if byte < _CONTINUATION:
            return value, index + 1
    raise CodecError("truncated varint")


def encode_varint(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as a LEB128 varint."""

    if not 0 <= value <= _MAX_UINT64:
        raise ValueError(f"varint value out of range: {value}")
    out = bytearray()
    while value >= _CONTINUATION:
        out.append((value & _PAYLOAD_MASK) | _CONTINUATION)
        value >>= 7
    out.append(value)
    return bytes(out)


class ProtobufLenPrefixCodec:
    """Frame decoder yielding the payload bytes of each delimited message.

    The decoder alternates between reading a length prefix and waiting for
    that many payload bytes. A declared length above ``max_length`` fails
    before any payload is buffered. Empty payloads are valid messages.
    """

    def __init__(self, max_length: int) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive.")
        self._max_length = max_length
        self._pending: int | None = None

    @property
    def max_length(self) -> int:
        return self._max_length

    def decode(self, buf: ByteBuffer) -> bytes | None:
        if self._pending is None:
            if not buf:
                return None
            head = buf.peek(MAX_VARINT_LEN)
            if len(head) < MAX_VARINT_LEN and all(b >= _CONTINUATION for b in head):
                return None
            length, used = decode_varint(head)
            buf.advance(used)
            if length > self._max_length:
                raise MaxLenReachedError(
                    f"Message declares {length} bytes, limit is {self._max_length}"
                )
            self._pending = length

        if len(buf) < self._pending:
            return None
        payload = buf.consume(self._pending)
        self._pending = None
        return payload

    def decode_eof(self, buf: ByteBuffer) -> bytes | None:
        payload = self.decode(buf)
        if payload is not None:
            return payload
        if self._pending is not None:
            raise CodecError(
                f"Input ended {self._pending - len(buf)} bytes short of a message"
            )
        if buf:
            raise CodecError("Input ended inside a length prefix")
        return None
