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

"""CSV rows framed one per line."""

from __future__ import annotations

import csv
from collections.abc import Callable

from .._buffer import ByteBuffer
from ..errors import CodecError
from .lines import LinesCodec

__all__ = ["CsvRow", "CsvRowCodec"]

type CsvRow = list[str] | dict[str, str]
type _LineReader = Callable[[ByteBuffer], str | None]


class CsvRowCodec:
    """Frame decoder yielding parsed CSV rows.

    Rows are framed by :class:`LinesCodec`, so quoted fields must not contain
    newlines. With ``with_header`` the first row is kept as field names and
    every later row is returned as a ``dict``; otherwise rows are lists.
    Blank lines are skipped and do not count as rows.
    """

    def __init__(
        self,
        max_length: int,
        *,
        with_header: bool = False,
        delimiter: bytes = b",",
    ) -> None:
        self._lines = LinesCodec(max_length, skip_blank=True)
        self._with_header = with_header
        self._delimiter = delimiter.decode("ascii")
        self._fieldnames: tuple[str, ...] | None = None
        self._line_index = 0

    @property
    def max_length(self) -> int:
        return self._lines.max_length

    @property
    def fieldnames(self) -> tuple[str, ...] | None:
        """Header names once the header row has been read."""

        return self._fieldnames

    @property
    def line_index(self) -> int:
        """Number of rows read so far, header included."""

        return self._line_index

    def decode(self, buf: ByteBuffer) -> CsvRow | None:
        return self._next_row(self._lines.decode, buf)

    def decode_eof(self, buf: ByteBuffer) -> CsvRow | None:
        return self._next_row(self._lines.decode_eof, buf)

    def _next_row(self, read_line: _LineReader, buf: ByteBuffer) -> CsvRow | None:
        while (line := read_line(buf)) is not None:
            index = self._line_index
            self._line_index += 1
            row = self._parse(line, index)
            if self._with_header and index == 0:
                self._fieldnames = tuple(row)
                continue
            if self._fieldnames is None:
                return row
            if len(row) != len(self._fieldnames):
                raise CodecError(
                    f"Row {index} has {len(row)} fields, "
                    f"header has {len(self._fieldnames)}"
                )
            return dict(zip(self._fieldnames, row, strict=True))
        return None

    def _parse(self, line: str, index: int) -> list[str]:
        try:
            row = next(csv.reader([line], delimiter=self._delimiter, strict=True))
        except csv.Error as error:
            raise CodecError(f"Malformed CSV row {index}", cause=error) from error
        return row
