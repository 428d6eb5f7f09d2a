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

"""Contract shared by every frame decoder."""

from __future__ import annotations

from typing import Protocol

from .._buffer import ByteBuffer

__all__ = ["FrameDecoder"]


class FrameDecoder[FrameT](Protocol):
    """Incremental decoder extracting one frame at a time from a buffer.

    ``decode`` is called every time new bytes land in ``buf`` and again after
    each returned frame, until it returns ``None`` ("await more input"). It
    must not block, must return ``None`` for an empty buffer, and returns at
    most one frame per call. Frames are copied out of ``buf`` and the buffer
    is advanced past them; decoders never keep a reference into ``buf``.

    ``decode_eof`` is called the same way once the transport is exhausted so
    a decoder can flush a final unterminated frame or report truncation.

    Errors are raised (:class:`~streambody.errors.CodecError`,
    :class:`~streambody.errors.MaxLenReachedError`) and are terminal.
    """

    @property
    def max_length(self) -> int: ...

    def decode(self, buf: ByteBuffer) -> FrameT | None: ...

    def decode_eof(self, buf: ByteBuffer) -> FrameT | None: ...
