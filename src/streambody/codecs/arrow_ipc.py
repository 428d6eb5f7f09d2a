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

"""Arrow IPC streaming format decoding.

An IPC stream is a schema message followed by dictionary and record batch
messages, each encapsulated as::

    <0xFFFFFFFF> <int32 metadata length> <Message flatbuffer> <body>

Legacy writers omit the continuation marker, and a zero metadata length marks
the end of the stream. :class:`ArrowIpcCodec` only does bound accounting and
buffer advancement; working out message boundaries and turning messages into
:class:`pyarrow.RecordBatch` values is left to an embedded message engine
that relies on :mod:`pyarrow.ipc` for everything past the envelope.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from importlib import import_module
from typing import TYPE_CHECKING, Any, Final

from .._buffer import ByteBuffer
from ..errors import CodecError, MaxLenReachedError

if TYPE_CHECKING:
    import pyarrow

__all__ = ["ArrowIpcCodec"]

_ERROR_MESSAGE: Final[str] = (
    "pyarrow is required to decode Arrow IPC streams. "
    "Install it with `pip install 'streambody[arrow]'`."
)

_CONTINUATION_MARKER: Final[int] = 0xFFFFFFFF

# Message table slots, see format/Message.fbs.
_SLOT_HEADER_TYPE: Final[int] = 1
_SLOT_HEADER: Final[int] = 2
_SLOT_BODY_LENGTH: Final[int] = 3

_HEADER_SCHEMA: Final[int] = 1
_HEADER_DICTIONARY_BATCH: Final[int] = 2
_HEADER_RECORD_BATCH: Final[int] = 3

# DictionaryBatch table slots.
_SLOT_DICTIONARY_ID: Final[int] = 0
_SLOT_DICTIONARY_IS_DELTA: Final[int] = 2


def _load_pyarrow() -> Any:  # noqa: ANN401
    try:
        import_module("pyarrow.ipc")
        return import_module("pyarrow")
    except ModuleNotFoundError as exc:
        raise RuntimeError(_ERROR_MESSAGE) from exc


def _read_envelope(data: memoryview) -> tuple[int, int] | None:
    """Return ``(prefix_len, metadata_len)`` or ``None`` if more bytes are needed."""

    if len(data) < 4:
        return None
    (first,) = struct.unpack_from("<I", data, 0)
    if first != _CONTINUATION_MARKER:
        metadata_len, prefix_len = first, 4
    elif len(data) < 8:
        return None
    else:
        (metadata_len,) = struct.unpack_from("<I", data, 4)
        prefix_len = 8
    if metadata_len > 0x7FFFFFFF:
        raise CodecError(f"Invalid IPC metadata length {metadata_len}")
    return prefix_len, metadata_len


class _Table:
    """Read-only accessor for one flatbuffer table."""

    __slots__ = ("_buf", "_pos", "_vtable", "_vtable_len")

    def __init__(self, buf: memoryview, pos: int) -> None:
        (vtable_delta,) = struct.unpack_from("<i", buf, pos)
        vtable = pos - vtable_delta
        if vtable < 0:
            raise struct.error("vtable offset out of range")
        (self._vtable_len,) = struct.unpack_from("<H", buf, vtable)
        self._buf = buf
        self._pos = pos
        self._vtable = vtable

    def _offset(self, slot: int) -> int:
        entry = 4 + 2 * slot
        if entry + 2 > self._vtable_len:
            return 0
        return struct.unpack_from("<H", self._buf, self._vtable + entry)[0]

    def scalar(self, slot: int, fmt: str) -> int:
        offset = self._offset(slot)
        if not offset:
            return 0
        return struct.unpack_from(fmt, self._buf, self._pos + offset)[0]

    def table(self, slot: int) -> _Table | None:
        offset = self._offset(slot)
        if not offset:
            return None
        field = self._pos + offset
        (relative,) = struct.unpack_from("<I", self._buf, field)
        return _Table(self._buf, field + relative)


@dataclass(slots=True, frozen=True)
class _MessageHeader:
    header_type: int
    body_length: int
    dictionary_id: int = 0
    is_delta: bool = False


def _read_message_header(metadata: memoryview) -> _MessageHeader:
    """Decode the fields of a ``Message`` flatbuffer the engine routes on."""

    try:
        (root,) = struct.unpack_from("<I", metadata, 0)
        message = _Table(metadata, root)
        header_type = message.scalar(_SLOT_HEADER_TYPE, "<B")
        body_length = message.scalar(_SLOT_BODY_LENGTH, "<q")
        dictionary_id, is_delta = 0, False
        if header_type == _HEADER_DICTIONARY_BATCH:
            batch = message.table(_SLOT_HEADER)
            if batch is None:
                raise struct.error("dictionary batch without a header table")
            dictionary_id = batch.scalar(_SLOT_DICTIONARY_ID, "<q")
            is_delta = bool(batch.scalar(_SLOT_DICTIONARY_IS_DELTA, "<B"))
    except struct.error as error:
        raise CodecError("Malformed IPC message metadata", cause=error) from error
    if body_length < 0:
        raise CodecError("Malformed IPC message metadata")
    return _MessageHeader(header_type, body_length, dictionary_id, is_delta)


def _check_budget(size: int, budget: int) -> None:
    if size > budget:
        raise MaxLenReachedError(
            f"IPC message of at least {size} bytes exceeds the remaining {budget}"
        )


class _IpcMessageEngine:
    """Incremental IPC stream state machine.

    :meth:`feed` looks at the buffered bytes and either needs more input,
    consumes one whole message, or consumes one message and produces a record
    batch. ``budget`` is how many more bytes may be consumed before the
    size bound is hit.

    The schema message and the live dictionary messages are retained so
    record batches that reference dictionaries can be replayed through
    :func:`pyarrow.ipc.open_stream`. A non-delta dictionary batch replaces
    everything held for its id; delta batches are appended to it.
    :attr:`retained` reports how many bytes that takes.
    """

    def __init__(self) -> None:
        self._pa = _load_pyarrow()
        self.schema: pyarrow.Schema | None = None
        self.finished = False
        self._schema_frame = b""
        self._dictionaries: dict[int, list[bytes]] = {}
        self.retained = 0

    def feed(
        self, data: memoryview, budget: int
    ) -> tuple[pyarrow.RecordBatch | None, int]:
        if self.finished:
            if len(data):
                raise CodecError("Unexpected data after the end-of-stream marker")
            return None, 0

        envelope = _read_envelope(data)
        if envelope is None:
            return None, 0
        prefix_len, metadata_len = envelope
        if metadata_len == 0:
            self.finished = True
            return None, prefix_len

        metadata_end = prefix_len + metadata_len
        _check_budget(metadata_end, budget)
        if len(data) < metadata_end:
            return None, 0
        header = _read_message_header(data[prefix_len:metadata_end])
        message_end = metadata_end + header.body_length
        _check_budget(message_end, budget)
        if len(data) < message_end:
            return None, 0

        frame = bytes(data[:message_end])
        try:
            batch = self._dispatch(header, frame)
        except (self._pa.ArrowException, OSError) as error:
            raise CodecError("Decode arrow IPC record error", cause=error) from error
        return batch, message_end

    def _dispatch(
        self, header: _MessageHeader, frame: bytes
    ) -> pyarrow.RecordBatch | None:
        ipc = self._pa.ipc
        if header.header_type == _HEADER_SCHEMA:
            if self.schema is not None:
                raise CodecError("IPC stream carries more than one schema")
            self.schema = ipc.read_schema(self._pa.py_buffer(frame))
            self._schema_frame = frame
            self.retained = len(frame)
            return None

        if self.schema is None:
            raise CodecError("IPC stream must start with a schema message")
        if header.header_type == _HEADER_DICTIONARY_BATCH:
            frames = self._dictionaries.get(header.dictionary_id)
            if header.is_delta and frames:
                frames.append(frame)
                self.retained += len(frame)
            else:
                if frames:
                    self.retained -= sum(len(held) for held in frames)
                self._dictionaries[header.dictionary_id] = [frame]
                self.retained += len(frame)
            return None
        if header.header_type != _HEADER_RECORD_BATCH:
            raise CodecError(f"Unsupported IPC message type {header.header_type}")

        if self._dictionaries:
            preamble = [self._schema_frame]
            for frames in self._dictionaries.values():
                preamble.extend(frames)
            reader = ipc.open_stream(b"".join((*preamble, frame)))
            return reader.read_next_batch()
        message = ipc.read_message(self._pa.py_buffer(frame))
        return ipc.read_record_batch(message, self.schema)


class ArrowIpcCodec:
    """Frame decoder yielding :class:`pyarrow.RecordBatch` values.

    ``max_length`` bounds the bytes held between record batches: the schema
    and dictionary messages the engine retains plus whatever is still
    buffered. Once a message header is readable its full size is checked
    too, so an oversized batch fails the same way whether it arrives in one
    chunk or trickles in.
    """

    def __init__(self, max_length: int) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive.")
        self._max_length = max_length
        self._engine = _IpcMessageEngine()

    @property
    def max_length(self) -> int:
        return self._max_length

    @property
    def schema(self) -> pyarrow.Schema | None:
        """Stream schema once the schema message has been decoded."""

        return self._engine.schema

    @property
    def retained(self) -> int:
        """Bytes of schema and dictionary messages kept for replay."""

        return self._engine.retained

    def decode(self, buf: ByteBuffer) -> pyarrow.RecordBatch | None:
        while buf:
            with buf.view() as data:
                batch, consumed = self._engine.feed(
                    data, self._max_length - self._engine.retained
                )
            buf.advance(consumed)
            if batch is not None:
                return batch
            if not consumed:
                break

        if self._engine.retained + len(buf) > self._max_length:
            raise MaxLenReachedError(
                f"Undecoded IPC data exceeds {self._max_length} bytes"
            )
        return None

    def decode_eof(self, buf: ByteBuffer) -> pyarrow.RecordBatch | None:
        batch = self.decode(buf)
        if batch is None and buf:
            raise CodecError(f"Input ended inside an IPC message ({len(buf)} bytes)")
        return batch
