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

"""Newline framing shared by the JSON Lines and CSV decoders."""

from __future__ import annotations

from .._buffer import ByteBuffer
from ..errors import CodecError, MaxLenReachedError

__all__ = ["LinesCodec"]


class LinesCodec:
    """Split on ``\\n`` into UTF-8 lines of at most ``max_length`` bytes.

    The length counts every byte before the newline, including a trailing
    ``\\r`` which is stripped from the returned line. The bound is enforced
    while the line is still incomplete, so an endless line is rejected as
    soon as it outgrows the limit. With ``skip_blank`` lines holding only
    whitespace are consumed without being returned.
    """

    def __init__(self, max_length: int, *, skip_blank: bool = False) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive.")
        self._max_length = max_length
        self._skip_blank = skip_blank
        self._scanned = 0

    @property
    def max_length(self) -> int:
        return self._max_length

    def decode(self, buf: ByteBuffer) -> str | None:
        while buf:
            newline = buf.find(b"\n", self._scanned)
            if newline < 0:
                self._scanned = len(buf)
                self._check_length(self._scanned)
                return None
            self._check_length(newline)
            self._scanned = 0
            line = _to_text(buf.consume(newline + 1)[:-1])
            if not self._skip_blank or line.strip():
                return line
        return None

    def decode_eof(self, buf: ByteBuffer) -> str | None:
        line = self.decode(buf)
        if line is not None or not buf:
            return line
        self._check_length(len(buf))
        self._scanned = 0
        line = _to_text(buf.consume(len(buf)))
        if not self._skip_blank or line.strip():
            return line
        return None

    def _check_length(self, length: int) -> None:
        if length > self._max_length:
            raise MaxLenReachedError(f"Line exceeds {self._max_length} bytes")


def _to_text(raw: bytes) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as error:
        raise CodecError("Line is not valid UTF-8", cause=error) from error
