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

"""Consume HTTP response bodies as lazy streams of records.

Supported formats:

- JSON array (``[{...}, {...}]``), one object per item
- JSON Lines, one value per line
- CSV, one row per line, with an optional header row
- Protobuf messages prefixed by their varint length
- Arrow IPC stream, one record batch per item

Records are decoded as soon as their last byte arrives and memory is bounded
by a per-record ``max_obj_len``. Wrap an :class:`httpx.Response` in
:class:`StreamBody` or :class:`AsyncStreamBody`, or feed any iterable of
``bytes`` chunks to the ``iter_*`` / ``aiter_*`` functions.
"""

from __future__ import annotations

from .config import DEFAULT_BUF_CAPACITY, StreamConfig
from .errors import (
    CodecError,
    InputOutputError,
    MaxLenReachedError,
    StreamBodyError,
    StreamBodyKind,
)
from .response import AsyncStreamBody, StreamBody
from .stream import (
    AsyncRecordIterator,
    Pipeline,
    RecordIterator,
    aiter_arrow_ipc,
    aiter_csv,
    aiter_json_array,
    aiter_json_lines,
    aiter_protobuf,
    aiter_records,
    iter_arrow_ipc,
    iter_csv,
    iter_json_array,
    iter_json_lines,
    iter_protobuf,
    iter_records,
)

__all__ = [
    "DEFAULT_BUF_CAPACITY",
    "AsyncRecordIterator",
    "AsyncStreamBody",
    "CodecError",
    "InputOutputError",
    "MaxLenReachedError",
    "Pipeline",
    "RecordIterator",
    "StreamBody",
    "StreamBodyError",
    "StreamBodyKind",
    "StreamConfig",
    "aiter_arrow_ipc",
    "aiter_csv",
    "aiter_json_array",
    "aiter_json_lines",
    "aiter_protobuf",
    "aiter_records",
    "iter_arrow_ipc",
    "iter_csv",
    "iter_json_array",
    "iter_json_lines",
    "iter_protobuf",
    "iter_records",
]
