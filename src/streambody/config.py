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

"""Typed configuration for streamed body decoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

__all__ = ["DEFAULT_BUF_CAPACITY", "StreamConfig"]

DEFAULT_BUF_CAPACITY: Final[int] = 8 * 1024
"""Default compaction threshold of the decode buffer, in bytes.

Matches the chunk size most transports read with.
"""

_FORBIDDEN_DELIMITERS: Final[frozenset[bytes]] = frozenset({b"\n", b"\r", b'"'})


@dataclass(slots=True, frozen=True)
class StreamConfig:
    """Options recognised by the stream decoders.

    Attributes:
        max_obj_len: Upper bound in bytes for a single record, or for the
            schema, dictionaries and buffered bytes held between Arrow
            record batches. Exceeding it raises
            :class:`~streambody.errors.MaxLenReachedError`.
        buf_capacity: Sizing hint for the decode buffer: how many consumed
            bytes may accumulate at its head before they are compacted away.
            Only the JSON formats expose it to callers.
        with_header: CSV only. Treat the first row as field names.
        delimiter: CSV only. Single byte separating fields.
    """

    max_obj_len: int
    buf_capacity: int = DEFAULT_BUF_CAPACITY
    with_header: bool = False
    delimiter: bytes = b","

    def __post_init__(self) -> None:
        if self.max_obj_len <= 0:
            msg = "max_obj_len must be a positive number of bytes."
            raise ValueError(msg)
        if self.buf_capacity <= 0:
            msg = "buf_capacity must be a positive number of bytes."
            raise ValueError(msg)
        if len(self.delimiter) != 1 or not self.delimiter.isascii():
            msg = "delimiter must be exactly one ASCII byte."
            raise ValueError(msg)
        if self.delimiter in _FORBIDDEN_DELIMITERS:
            msg = f"delimiter {self.delimiter!r} conflicts with line framing."
            raise ValueError(msg)
