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

"""Streaming views over :class:`httpx.Response` bodies.

Wrap a response opened with ``client.stream(...)`` (or ``send(...,
stream=True)``) and pick exactly one format method::

    with httpx.Client() as client, client.stream("GET", url) as response:
        for item in StreamBody(response).json_array_stream(64 * 1024):
            handle(item)

Each method returns a lazy iterator. Breaking out of the loop, closing the
iterator or dropping it closes the response, even before the first item;
reading the body a second time raises :class:`httpx.StreamConsumed`.
"""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType
from typing import TYPE_CHECKING, Any, Self

import httpx

from .codecs import CsvRow
from .config import DEFAULT_BUF_CAPACITY
from .stream import (
    AsyncRecordIterator,
    RecordIterator,
    aiter_arrow_ipc,
    aiter_csv,
    aiter_json_array,
    aiter_json_lines,
    aiter_protobuf,
    iter_arrow_ipc,
    iter_csv,
    iter_json_array,
    iter_json_lines,
    iter_protobuf,
)

if TYPE_CHECKING:
    import pyarrow
    from google.protobuf.message import Message

__all__ = ["AsyncStreamBody", "StreamBody"]


class StreamBody:
    """Decode a synchronous :class:`httpx.Response` body as typed records."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._consumed = False

    @property
    def response(self) -> httpx.Response:
        return self._response

    def _claim(self) -> httpx.Response:
        if self._consumed:
            raise httpx.StreamConsumed()
        self._consumed = True
        return self._response

    def json_array_stream[T](
        self,
        max_obj_len: int,
        *,
        decode: Callable[[Any], T] | None = None,
        buf_capacity: int = DEFAULT_BUF_CAPACITY,
    ) -> RecordIterator[T]:
        """Stream the body as a JSON array, one object per item.

        Objects larger than ``max_obj_len`` bytes end the stream with
        :class:`~streambody.errors.MaxLenReachedError`. ``decode`` receives
        the parsed ``dict`` and may build a typed record from it.
        """

        response = self._claim()
        return iter_json_array(
            response.iter_bytes(),
            max_obj_len,
            decode=decode,
            buf_capacity=buf_capacity,
            on_close=response.close,
        )

    def json_nl_stream[T](
        self,
        max_obj_len: int,
        *,
        decode: Callable[[Any], T] | None = None,
        buf_capacity: int = DEFAULT_BUF_CAPACITY,
    ) -> RecordIterator[T]:
        """Stream the body as JSON Lines, one value per non-blank line."""

        response = self._claim()
        return iter_json_lines(
            response.iter_bytes(),
            max_obj_len,
            decode=decode,
            buf_capacity=buf_capacity,
            on_close=response.close,
        )

    def csv_stream[T](
        self,
        max_obj_len: int,
        with_header: bool = False,
        delimiter: bytes = b",",
        *,
        decode: Callable[[CsvRow], T] | None = None,
    ) -> RecordIterator[T]:
        """Stream the body as CSV, one data row per item."""

        response = self._claim()
        return iter_csv(
            response.iter_bytes(),
            max_obj_len,
            with_header,
            delimiter,
            decode=decode,
            on_close=response.close,
        )

    def protobuf_stream[MessageT: Message](
        self,
        message_type: type[MessageT],
        max_obj_len: int,
    ) -> RecordIterator[MessageT]:
        """Stream the body as varint length-delimited ``message_type`` messages."""

        response = self._claim()
        return iter_protobuf(
            response.iter_bytes(),
            message_type,
            max_obj_len,
            on_close=response.close,
        )

    def arrow_ipc_stream(
        self, max_obj_len: int
    ) -> RecordIterator[pyarrow.RecordBatch]:
        """Stream the body as an Arrow IPC stream of record batches."""

        response = self._claim()
        return iter_arrow_ipc(
            response.iter_bytes(), max_obj_len, on_close=response.close
        )

    def close(self) -> None:
        self._response.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()


class AsyncStreamBody:
    """Decode an asynchronous :class:`httpx.Response` body as typed records."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._consumed = False

    @property
    def response(self) -> httpx.Response:
        return self._response

    def _claim(self) -> httpx.Response:
        if self._consumed:
            raise httpx.StreamConsumed()
        self._consumed = True
        return self._response

    def json_array_stream[T](
        self,
        max_obj_len: int,
        *,
        decode: Callable[[Any], T] | None = None,
        buf_capacity: int = DEFAULT_BUF_CAPACITY,
    ) -> AsyncRecordIterator[T]:
        response = self._claim()
        return aiter_json_array(
            response.aiter_bytes(),
            max_obj_len,
            decode=decode,
            buf_capacity=buf_capacity,
            on_close=response.aclose,
        )

    def json_nl_stream[T](
        self,
        max_obj_len: int,
        *,
        decode: Callable[[Any], T] | None = None,
        buf_capacity: int = DEFAULT_BUF_CAPACITY,
    ) -> AsyncRecordIterator[T]:
        response = self._claim()
        return aiter_json_lines(
            response.aiter_bytes(),
            max_obj_len,
            decode=decode,
            buf_capacity=buf_capacity,
            on_close=response.aclose,
        )

    def csv_stream[T](
        self,
        max_obj_len: int,
        with_header: bool = False,
        delimiter: bytes = b",",
        *,
        decode: Callable[[CsvRow], T] | None = None,
    ) -> AsyncRecordIterator[T]:
        response = self._claim()
        return aiter_csv(
            response.aiter_bytes(),
            max_obj_len,
            with_header,
            delimiter,
            decode=decode,
            on_close=response.aclose,
        )

    def protobuf_stream[MessageT: Message](
        self,
        message_type: type[MessageT],
        max_obj_len: int,
    ) -> AsyncRecordIterator[MessageT]:
        response = self._claim()
        return aiter_protobuf(
            response.aiter_bytes(),
            message_type,
            max_obj_len,
            on_close=response.aclose,
        )

    def arrow_ipc_stream(
        self, max_obj_len: int
    ) -> AsyncRecordIterator[pyarrow.RecordBatch]:
        response = self._claim()
        return aiter_arrow_ipc(
            response.aiter_bytes(), max_obj_len, on_close=response.aclose
        )

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()
