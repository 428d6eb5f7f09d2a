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

"""Chunk sources and codec drivers for streaming tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Iterator, Sequence

from hypothesis import strategies as st

from streambody._buffer import ByteBuffer
from streambody.codecs import FrameDecoder


def split_at(data: bytes, cuts: Iterable[int]) -> list[bytes]:
    """Split ``data`` at the given offsets; empty pieces are kept."""

    pieces: list[bytes] = []
    start = 0
    for cut in sorted(cuts):
        pieces.append(data[start:cut])
        start = cut
    pieces.append(data[start:])
    return pieces


def one_byte_chunks(data: bytes) -> list[bytes]:
    return [data[index : index + 1] for index in range(len(data))]


@st.composite
def chunkings(draw: st.DrawFn, data: bytes) -> list[bytes]:
    """Hypothesis strategy producing arbitrary splits of ``data``."""

    if not data:
        return [data]
    cuts = draw(
        st.lists(st.integers(min_value=0, max_value=len(data)), max_size=len(data))
    )
    return split_at(data, cuts)


def drain[FrameT](
    decoder: FrameDecoder[FrameT], chunks: Iterable[bytes]
) -> list[FrameT]:
    """Run ``decoder`` over ``chunks`` the way the pull loop does."""

    buf = ByteBuffer()
    frames: list[FrameT] = []
    for chunk in chunks:
        buf.extend(chunk)
        while (frame := decoder.decode(buf)) is not None:
            frames.append(frame)
    while (frame := decoder.decode_eof(buf)) is not None:
        frames.append(frame)
    return frames


class RecordingSource:
    """Chunk iterable that records how far it has been read and closed."""

    def __init__(self, chunks: Sequence[bytes], *, fail_after: int | None = None):
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self.reads = 0
        self.closed = 0

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        if self._fail_after is not None and self.reads >= self._fail_after:
            raise ConnectionResetError("connection reset by peer")
        if self.reads >= len(self._chunks):
            raise StopIteration
        chunk = self._chunks[self.reads]
        self.reads += 1
        return chunk

    def close(self) -> None:
        self.closed += 1


class AsyncRecordingSource:
    """Async twin of :class:`RecordingSource`."""

    def __init__(self, chunks: Sequence[bytes], *, fail_after: int | None = None):
        self._sync = RecordingSource(chunks, fail_after=fail_after)
        self.closed = 0

    @property
    def reads(self) -> int:
        return self._sync.reads

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self

    async def __anext__(self) -> bytes:
        try:
            return next(self._sync)
        except StopIteration:
            raise StopAsyncIteration from None

    async def aclose(self) -> None:
        self.closed += 1


__all__ = [
    "AsyncRecordingSource",
    "RecordingSource",
    "chunkings",
    "drain",
    "one_byte_chunks",
    "split_at",
]
