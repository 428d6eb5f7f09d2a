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

"""Incremental frame decoders, one per supported body format.

:class:`ArrowIpcCodec` needs the ``arrow`` extra; :mod:`pyarrow` is imported
when the codec is constructed, not when this package is imported.
"""

from __future__ import annotations

from ._protocol import FrameDecoder
from .arrow_ipc import ArrowIpcCodec
from .csv_rows import CsvRow, CsvRowCodec
from .json_array import JsonArrayCodec
from .lines import LinesCodec
from .protobuf import ProtobufLenPrefixCodec, decode_varint, encode_varint

__all__ = [
    "ArrowIpcCodec",
    "CsvRow",
    "CsvRowCodec",
    "FrameDecoder",
    "JsonArrayCodec",
    "LinesCodec",
    "ProtobufLenPrefixCodec",
    "decode_varint",
    "encode_varint",
]
