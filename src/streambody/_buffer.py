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

"""Growable byte buffer shared by the pull loop and the frame decoders."""

from __future__ import annotations

from typing import Final, overload

from .config import DEFAULT_BUF_CAPACITY

__all__ = ["ByteBuffer"]

_MIN_COMPACT: Final[int] = 1024


class ByteBuffer:
    """Append at the tail, consume from the head.

    Offsets passed to :meth:`find`, :meth:`peek` and indexing are relative to
    the first unconsumed byte. Consumed bytes are dropped lazily so a run of
    small frames does not shift the whole buffer each time; ``capacity`` sets
    how many consumed bytes may pile up at the head before compaction.
    """

    __slots__ = ("_compact_at", "_data", "_start")

    def __init__(self, capacity: int = DEFAULT_BUF_CAPACITY) -> None:
        self._data = bytearray()
        self._start = 0
        self._compact_at = max(capacity, _MIN_COMPACT)

    def __len__(self) -> int:
        return len(self._data) - self._start

    def __bool__(self) -> bool:
        return len(self) > 0

    @overload
    def __getitem__(self, index: int) -> int: ...

    @overload
    def __getitem__(self, index: slice) -> bytes: ...

    def __getitem__(self, index: int | slice) -> int | bytes:
        if isinstance(index, slice):
            start, stop, step = index.indices(len(self))
            return bytes(self._data[self._start + start : self._start + stop : step])
        if index < 0:
            index += len(self)
        if not 0 <= index < len(self):
            raise IndexError("ByteBuffer index out of range")
        return self._data[self._start + index]

    def extend(self, chunk: bytes | bytearray | memoryview) -> None:
        self._data.extend(chunk)

    def view(self) -> memoryview:
        """Return a read-only view of the unconsumed bytes.

        The view must be released before the buffer is modified again.
        """

        return memoryview(self._data)[self._start :].toreadonly()

    def peek(self, size: int) -> bytes:
        """Copy up to ``size`` leading bytes without consuming them."""

        return bytes(self._data[self._start : self._start + size])

    def find(self, sub: bytes, start: int = 0) -> int:
        index = self._data.find(sub, self._start + start)
        return -1 if index < 0 else index - self._start

    def consume(self, size: int) -> bytes:
        """Remove ``size`` leading bytes and return a copy of them."""

        if size > len(self):
            raise ValueError(f"cannot consume {size} bytes from {len(self)}")
        chunk = bytes(self._data[self._start : self._start + size])
        self.advance(size)
        return chunk

    def advance(self, size: int) -> None:
        """Drop ``size`` leading bytes."""

        self._start += min(size, len(self))
        if self._start == len(self._data):
            self._data.clear()
            self._start = 0
        elif self._start >= self._compact_at and self._start * 2 >= len(self._data):
            del self._data[: self._start]
            self._start = 0

    def clear(self) -> None:
        self._data.clear()
        self._start = 0
