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

"""Pull loops turning chunked byte sources into lazy record sequences.

A :class:`Pipeline` pairs a frame decoder with a materializer. The pull loop
asks the decoder for frames until it needs more input, then reads exactly one
chunk from the source and tries again. Nothing is read ahead of demand, so a
consumer that stops iterating stops the reads too. Closing the returned
:class:`RecordIterator`, explicitly or by dropping it, closes the source
once, even if no item was ever requested.

Every ``iter_*`` function has an ``aiter_*`` twin that consumes an
:class:`~collections.abc.AsyncIterable` of chunks and returns an
:class:`AsyncRecordIterator`.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import (
    AsyncGenerator,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Generator,
    Iterable,
    Iterator,
)
from dataclasses import dataclass
from importlib import import_module
from typing import TYPE_CHECKING, Any, Final, Self, cast

import httpx

from ._buffer import ByteBuffer
from .codecs import (
    ArrowIpcCodec,
    CsvRow,
    CsvRowCodec,
    FrameDecoder,
    JsonArrayCodec,
    LinesCodec,
    ProtobufLenPrefixCodec,
)
from .config import DEFAULT_BUF_CAPACITY, StreamConfig
from .errors import CodecError, InputOutputError, StreamBodyError
from .logging import StructuredLogger, get_logger

if TYPE_CHECKING:
    import pyarrow
    from google.protobuf.message import Message

__all__ = [
    "AsyncRecordIterator",
    "Pipeline",
    "RecordIterator",
    "aiter_arrow_ipc",
    "aiter_csv",
    "aiter_json_array",
    "aiter_json_lines",
    "aiter_protobuf",
    "aiter_records",
    "arrow_ipc_pipeline",
    "csv_pipeline",
    "iter_arrow_ipc",
    "iter_csv",
    "iter_json_array",
    "iter_json_lines",
    "iter_protobuf",
    "iter_records",
    "json_array_pipeline",
    "json_lines_pipeline",
    "protobuf_pipeline",
]

logger: StructuredLogger = get_logger(__name__, context={"component": "stream"})

_PROTOBUF_ERROR_MESSAGE: Final[str] = (
    "protobuf is required to decode Protobuf streams. "
    "Install it with `pip install 'streambody[protobuf]'`."
)

_TRANSPORT_ERRORS: Final = (httpx.HTTPError, httpx.StreamError, OSError)
"""Exceptions raised by chunk sources that map to an I/O failure."""

_RECORD_ERRORS: Final = (TypeError, ValueError, KeyError)
"""Exceptions from a ``decode`` callable that mean the record has the wrong shape."""

type OnClose = Callable[[], object]
type AsyncOnClose = Callable[[], Awaitable[object]]


@dataclass(slots=True, frozen=True)
class Pipeline[FrameT, T]:
    """A frame decoder plus the materializer applied to each frame.

    Pipelines are single use: the decoder carries the parse state of one
    stream.
    """

    name: str
    decoder: FrameDecoder[FrameT]
    materialize: Callable[[FrameT], T]
    buf_capacity: int = DEFAULT_BUF_CAPACITY


def _apply_decode[T](
    decode: Callable[[Any], T] | None,
    value: Any,  # noqa: ANN401
) -> T:
    if decode is None:
        return cast(T, value)
    try:
        return decode(value)
    except StreamBodyError:
        raise
    except _RECORD_ERRORS as error:
        raise CodecError(
            "Record does not match the target type", cause=error
        ) from error


def _json_materializer[T](
    decode: Callable[[Any], T] | None,
) -> Callable[[bytes | str], T]:
    def materialize(frame: bytes | str) -> T:
        try:
            value = json.loads(frame)
        except ValueError as error:
            raise CodecError("Invalid JSON record", cause=error) from error
        return _apply_decode(decode, value)

    return materialize


def json_array_pipeline[T](
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
) -> Pipeline[bytes, T]:
    """Build the pipeline for a body holding one JSON array of objects."""

    config = StreamConfig(max_obj_len=max_obj_len, buf_capacity=buf_capacity)
    return Pipeline(
        name="json_array",
        decoder=JsonArrayCodec(config.max_obj_len),
        materialize=_json_materializer(decode),
        buf_capacity=config.buf_capacity,
    )


def json_lines_pipeline[T](
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
) -> Pipeline[str, T]:
    """Build the pipeline for newline-delimited JSON; blank lines are skipped."""

    config = StreamConfig(max_obj_len=max_obj_len, buf_capacity=buf_capacity)
    return Pipeline(
        name="json_lines",
        decoder=LinesCodec(config.max_obj_len, skip_blank=True),
        materialize=_json_materializer(decode),
        buf_capacity=config.buf_capacity,
    )


def csv_pipeline[T](
    max_obj_len: int,
    with_header: bool = False,
    delimiter: bytes = b",",
    *,
    decode: Callable[[CsvRow], T] | None = None,
) -> Pipeline[CsvRow, T]:
    """Build the pipeline for CSV with one row per line.

    Rows reach ``decode`` as ``list[str]``, or as ``dict[str, str]`` keyed by
    the header when ``with_header`` is set. A malformed row ends the stream
    with :class:`CodecError`.
    """

    config = StreamConfig(
        max_obj_len=max_obj_len, with_header=with_header, delimiter=delimiter
    )
    decoder = CsvRowCodec(
        config.max_obj_len,
        with_header=config.with_header,
        delimiter=config.delimiter,
    )

    def materialize(row: CsvRow) -> T:
        return _apply_decode(decode, row)

    return Pipeline(name="csv", decoder=decoder, materialize=materialize)


def _load_decode_error() -> type[Exception]:
    try:
        module = import_module("google.protobuf.message")
    except ModuleNotFoundError as exc:
        raise RuntimeError(_PROTOBUF_ERROR_MESSAGE) from exc
    return cast(type[Exception], module.DecodeError)


def protobuf_pipeline[MessageT: Message](
    message_type: type[MessageT],
    max_obj_len: int,
) -> Pipeline[bytes, MessageT]:
    """Build the pipeline for varint length-delimited Protobuf messages."""

    config = StreamConfig(max_obj_len=max_obj_len)
    decode_error = _load_decode_error()

    def materialize(payload: bytes) -> MessageT:
        try:
            return message_type.FromString(payload)
        except decode_error as error:
            raise CodecError(
                f"Failed to decode {message_type.__name__}", cause=error
            ) from error

    return Pipeline(
        name="protobuf",
        decoder=ProtobufLenPrefixCodec(config.max_obj_len),
        materialize=materialize,
    )


def arrow_ipc_pipeline(
    max_obj_len: int,
) -> Pipeline[pyarrow.RecordBatch, pyarrow.RecordBatch]:
    """Build the pipeline for an Arrow IPC stream of record batches."""

    config = StreamConfig(max_obj_len=max_obj_len)
    return Pipeline(
        name="arrow_ipc",
        decoder=ArrowIpcCodec(config.max_obj_len),
        materialize=_identity,
    )


def _identity[T](value: T) -> T:
    return value


@dataclass(slots=True)
class _Progress:
    items: int = 0
    bytes_read: int = 0

    def as_context(self) -> dict[str, object]:
        return {"items": self.items, "bytes": self.bytes_read}


class _Release:
    """Close the chunk iterator, then run ``on_close``; only the first call acts."""

    __slots__ = ("_chunks", "_on_close", "done")

    def __init__(self, chunks: Iterator[bytes], on_close: OnClose | None) -> None:
        self._chunks = chunks
        self._on_close = on_close
        self.done = False

    def __call__(self) -> None:
        if self.done:
            return
        self.done = True
        try:
            close = getattr(self._chunks, "close", None)
            if callable(close):
                close()
        finally:
            if self._on_close is not None:
                self._on_close()


class _AsyncRelease:
    __slots__ = ("_chunks", "_on_close", "done")

    def __init__(
        self, chunks: AsyncIterator[bytes], on_close: AsyncOnClose | None
    ) -> None:
        self._chunks = chunks
        self._on_close = on_close
        self.done = False

    async def __call__(self) -> None:
        if self.done:
            return
        self.done = True
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if callable(aclose):
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()


def _log_abandoned(log: StructuredLogger, progress: _Progress) -> None:
    log.debug(
        "Stream closed by consumer.",
        event="stream_abandoned",
        context=progress.as_context(),
    )


class RecordIterator[T]:
    """Lazy record sequence returned by :func:`iter_records`.

    :meth:`close` releases the chunk source and runs ``on_close`` exactly
    once, whether the loop finished, failed, stopped midway or never
    started. Dropping the last reference closes it as well.
    """

    __slots__ = ("_items", "_log", "_release", "_started")

    def __init__(
        self,
        items: Generator[T, None, None],
        release: _Release,
        log: StructuredLogger,
    ) -> None:
        self._items = items
        self._release = release
        self._log = log
        self._started = False

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> T:
        self._started = True
        return next(self._items)

    def close(self) -> None:
        if not self._started and not self._release.done:
            _log_abandoned(self._log, _Progress())
        try:
            self._items.close()
        finally:
            self._release()

    def __del__(self) -> None:
        self.close()


_PENDING_CLOSES: set[asyncio.Task[None]] = set()


class AsyncRecordIterator[T]:
    """Async twin of :class:`RecordIterator`.

    Dropping an unfinished iterator inside a running event loop schedules
    :meth:`aclose` on that loop.
    """

    __slots__ = ("_items", "_log", "_release", "_started")

    def __init__(
        self,
        items: AsyncGenerator[T, None],
        release: _AsyncRelease,
        log: StructuredLogger,
    ) -> None:
        self._items = items
        self._release = release
        self._log = log
        self._started = False

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> T:
        self._started = True
        return await anext(self._items)

    async def aclose(self) -> None:
        if not self._started and not self._release.done:
            _log_abandoned(self._log, _Progress())
        try:
            await self._items.aclose()
        finally:
            await self._release()

    def __del__(self) -> None:
        if self._release.done:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.aclose())
        _PENDING_CLOSES.add(task)
        task.add_done_callback(_PENDING_CLOSES.discard)


def iter_records[FrameT, T](
    source: Iterable[bytes],
    pipeline: Pipeline[FrameT, T],
    *,
    on_close: OnClose | None = None,
) -> RecordIterator[T]:
    """Lazily decode ``source`` with ``pipeline``.

    ``on_close`` runs exactly once when the iterator finishes, fails or is
    closed, after the chunk iterator itself has been closed. Closing an
    iterator that was never advanced releases the source without reading
    from it.
    """

    log = logger.bind(format=pipeline.name, max_obj_len=pipeline.decoder.max_length)
    chunks = iter(source)
    release = _Release(chunks, on_close)
    return RecordIterator(_pull(chunks, pipeline, log, release), release, log)


def _pull[FrameT, T](
    chunks: Iterator[bytes],
    pipeline: Pipeline[FrameT, T],
    log: StructuredLogger,
    release: _Release,
) -> Generator[T, None, None]:
    decoder = pipeline.decoder
    buf = ByteBuffer(pipeline.buf_capacity)
    progress = _Progress()
    log.debug("Stream started.", event="stream_started")
    try:
        while True:
            while (frame := decoder.decode(buf)) is not None:
                item = pipeline.materialize(frame)
                progress.items += 1
                yield item
            try:
                chunk = next(chunks)
            except StopIteration:
                break
            except _TRANSPORT_ERRORS as error:
                raise InputOutputError(
                    "Failed to read the response body", cause=error
                ) from error
            progress.bytes_read += len(chunk)
            buf.extend(chunk)

        while (frame := decoder.decode_eof(buf)) is not None:
            item = pipeline.materialize(frame)
            progress.items += 1
            yield item
    except StreamBodyError as error:
        _log_failure(log, error, progress)
        raise
    except GeneratorExit:
        _log_abandoned(log, progress)
        raise
    else:
        log.debug(
            "Stream completed.",
            event="stream_completed",
            context=progress.as_context(),
        )
    finally:
        release()


def aiter_records[FrameT, T](
    source: AsyncIterable[bytes],
    pipeline: Pipeline[FrameT, T],
    *,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[T]:
    """Async twin of :func:`iter_records`."""

    log = logger.bind(format=pipeline.name, max_obj_len=pipeline.decoder.max_length)
    chunks = aiter(source)
    release = _AsyncRelease(chunks, on_close)
    return AsyncRecordIterator(_apull(chunks, pipeline, log, release), release, log)


async def _apull[FrameT, T](
    chunks: AsyncIterator[bytes],
    pipeline: Pipeline[FrameT, T],
    log: StructuredLogger,
    release: _AsyncRelease,
) -> AsyncGenerator[T, None]:
    decoder = pipeline.decoder
    buf = ByteBuffer(pipeline.buf_capacity)
    progress = _Progress()
    log.debug("Stream started.", event="stream_started")
    try:
        while True:
            while (frame := decoder.decode(buf)) is not None:
                item = pipeline.materialize(frame)
                progress.items += 1
                yield item
            try:
                chunk = await anext(chunks)
            except StopAsyncIteration:
                break
            except _TRANSPORT_ERRORS as error:
                raise InputOutputError(
                    "Failed to read the response body", cause=error
                ) from error
            progress.bytes_read += len(chunk)
            buf.extend(chunk)

        while (frame := decoder.decode_eof(buf)) is not None:
            item = pipeline.materialize(frame)
            progress.items += 1
            yield item
    except StreamBodyError as error:
        _log_failure(log, error, progress)
        raise
    except GeneratorExit:
        _log_abandoned(log, progress)
        raise
    else:
        log.debug(
            "Stream completed.",
            event="stream_completed",
            context=progress.as_context(),
        )
    finally:
        await release()


def _log_failure(
    log: StructuredLogger, error: StreamBodyError, progress: _Progress
) -> None:
    log.warning(
        "Stream failed: %s",
        error,
        event="stream_failed",
        context={"kind": error.kind.value, **progress.as_context()},
    )


def iter_json_array[T](
    source: Iterable[bytes],
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
    on_close: OnClose | None = None,
) -> RecordIterator[T]:
    """Yield each object of a streamed JSON array, passed through ``decode``."""

    pipeline = json_array_pipeline(
        max_obj_len, decode=decode, buf_capacity=buf_capacity
    )
    return iter_records(source, pipeline, on_close=on_close)


def iter_json_lines[T](
    source: Iterable[bytes],
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
    on_close: OnClose | None = None,
) -> RecordIterator[T]:
    """Yield each JSON value of a newline-delimited body."""

    pipeline = json_lines_pipeline(
        max_obj_len, decode=decode, buf_capacity=buf_capacity
    )
    return iter_records(source, pipeline, on_close=on_close)


def iter_csv[T](
    source: Iterable[bytes],
    max_obj_len: int,
    with_header: bool = False,
    delimiter: bytes = b",",
    *,
    decode: Callable[[CsvRow], T] | None = None,
    on_close: OnClose | None = None,
) -> RecordIterator[T]:
    """Yield each CSV data row; a header row is never yielded."""

    pipeline = csv_pipeline(max_obj_len, with_header, delimiter, decode=decode)
    return iter_records(source, pipeline, on_close=on_close)


def iter_protobuf[MessageT: Message](
    source: Iterable[bytes],
    message_type: type[MessageT],
    max_obj_len: int,
    *,
    on_close: OnClose | None = None,
) -> RecordIterator[MessageT]:
    """Yield each length-delimited message parsed as ``message_type``."""

    pipeline = protobuf_pipeline(message_type, max_obj_len)
    return iter_records(source, pipeline, on_close=on_close)


def iter_arrow_ipc(
    source: Iterable[bytes],
    max_obj_len: int,
    *,
    on_close: OnClose | None = None,
) -> RecordIterator[pyarrow.RecordBatch]:
    """Yield each record batch of an Arrow IPC stream."""

    return iter_records(source, arrow_ipc_pipeline(max_obj_len), on_close=on_close)


def aiter_json_array[T](
    source: AsyncIterable[bytes],
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[T]:
    pipeline = json_array_pipeline(
        max_obj_len, decode=decode, buf_capacity=buf_capacity
    )
    return aiter_records(source, pipeline, on_close=on_close)


def aiter_json_lines[T](
    source: AsyncIterable[bytes],
    max_obj_len: int,
    *,
    decode: Callable[[Any], T] | None = None,
    buf_capacity: int = DEFAULT_BUF_CAPACITY,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[T]:
    pipeline = json_lines_pipeline(
        max_obj_len, decode=decode, buf_capacity=buf_capacity
    )
    return aiter_records(source, pipeline, on_close=on_close)


def aiter_csv[T](
    source: AsyncIterable[bytes],
    max_obj_len: int,
    with_header: bool = False,
    delimiter: bytes = b",",
    *,
    decode: Callable[[CsvRow], T] | None = None,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[T]:
    pipeline = csv_pipeline(max_obj_len, with_header, delimiter, decode=decode)
    return aiter_records(source, pipeline, on_close=on_close)


def aiter_protobuf[MessageT: Message](
    source: AsyncIterable[bytes],
    message_type: type[MessageT],
    max_obj_len: int,
    *,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[MessageT]:
    pipeline = protobuf_pipeline(message_type, max_obj_len)
    return aiter_records(source, pipeline, on_close=on_close)


def aiter_arrow_ipc(
    source: AsyncIterable[bytes],
    max_obj_len: int,
    *,
    on_close: AsyncOnClose | None = None,
) -> AsyncRecordIterator[pyarrow.RecordBatch]:
    return aiter_records(source, arrow_ipc_pipeline(max_obj_len), on_close=on_close)
