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

"""Split a streamed JSON array into its top-level object elements.

The codec never parses JSON values. It scans bytes, tracking string and
escape state plus brace depth, and cuts out each ``{...}`` element of the
outer ``[...]`` as soon as its closing brace arrives. Whitespace and
delimiters between elements are dropped from the buffer as they are scanned,
so the buffer only ever holds the element currently being received.
"""

from __future__ import annotations

from typing import Final

from .._buffer import ByteBuffer
from ..errors import CodecError, MaxLenReachedError

__all__ = ["JsonArrayCodec"]

_QUOTE: Final = ord('"')
_BACKSLASH: Final = ord("\\")
_OPEN_BRACE: Final = ord("{")
_CLOSE_BRACE: Final = ord("}")
_OPEN_BRACKET: Final = ord("[")
_CLOSE_BRACKET: Final = ord("]")
_COMMA: Final = ord(",")
_WHITESPACE: Final = frozenset(b" \t\r\n")


class JsonArrayCodec:
    """Frame decoder yielding the raw bytes of each object in a JSON array."""

    def __init__(self, max_length: int) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive.")
        self._max_length = max_length
        self._offset = 0
        self._array_opened = False
        self._array_closed = False
        self._delimiter_expected = False
        self._value_required = False
        self._in_string = False
        self._escaped = False
        self._depth = 0
        self._obj_start = 0

    @property
    def max_length(self) -> int:
        return self._max_length

    def decode(self, buf: ByteBuffer) -> bytes | None:
        if not buf:
            return None

        frame_end = -1
        with buf.view() as data:
            for pos in range(self._offset, len(data)):
                byte = data[pos]
                if self._depth == 0:
                    if byte == _OPEN_BRACE:
                        self._open_object(pos)
                    else:
                        self._scan_between_elements(byte)
                    continue

                if pos - self._obj_start >= self._max_length:
                    raise MaxLenReachedError(
                        f"JSON object exceeds {self._max_length} bytes"
                    )
                if self._in_string:
                    if self._escaped:
                        self._escaped = False
                    elif byte == _BACKSLASH:
                        self._escaped = True
                    elif byte == _QUOTE:
                        self._in_string = False
                elif byte == _QUOTE:
                    self._in_string = True
                elif byte == _OPEN_BRACE:
                    self._depth += 1
                elif byte == _CLOSE_BRACE:
                    self._depth -= 1
                    if self._depth == 0:
                        frame_end = pos + 1
                        break
            scanned = len(data)

        if frame_end >= 0:
            buf.advance(self._obj_start)
            frame = buf.consume(frame_end - self._obj_start)
            self._obj_start = 0
            self._offset = 0
            self._delimiter_expected = True
            return frame

        if self._depth == 0:
            buf.advance(scanned)
            self._offset = 0
        else:
            buf.advance(self._obj_start)
            self._offset = scanned - self._obj_start
            self._obj_start = 0
        return None

    def decode_eof(self, buf: ByteBuffer) -> bytes | None:
        frame = self.decode(buf)
        if frame is not None:
            return frame
        if self._depth:
            raise CodecError("Input ended inside a JSON object")
        if self._array_opened and not self._array_closed:
            raise CodecError("Input ended before the JSON array was closed")
        return None

    def _open_object(self, pos: int) -> None:
        if not self._array_opened or self._array_closed:
            raise CodecError("JSON object found outside of the array")
        if self._delimiter_expected:
            raise CodecError("Missing delimiter between array elements")
        self._depth = 1
        self._obj_start = pos
        self._value_required = False

    def _scan_between_elements(self, byte: int) -> None:
        if byte in _WHITESPACE:
            return
        if self._array_closed:
            raise CodecError("Unexpected data after the end of the JSON array")
        if byte == _OPEN_BRACKET:
            if self._array_opened:
                raise CodecError("Unexpected array begin. It is already opened")
            self._array_opened = True
        elif not self._array_opened:
            raise CodecError(f"Expected a JSON array, found {chr(byte)!r}")
        elif byte == _COMMA:
            if not self._delimiter_expected:
                raise CodecError("Unexpected delimiter found")
            self._delimiter_expected = False
            self._value_required = True
        elif byte == _CLOSE_BRACKET:
            if self._value_required:
                raise CodecError("Unexpected array end after a delimiter")
            self._array_closed = True
        else:
            raise CodecError(
                f"Unexpected {chr(byte)!r} between array elements; "
                "only objects are supported"
            )
