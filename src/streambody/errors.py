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

"""Exception hierarchy for :mod:`streambody`."""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar, override

__all__ = [
    "CodecError",
    "InputOutputError",
    "MaxLenReachedError",
    "StreamBodyError",
    "StreamBodyKind",
]


class StreamBodyKind(StrEnum):
    """The kind of failure that ended a stream."""

    CODEC = "codec"
    """A frame or its payload could not be decoded."""

    INPUT_OUTPUT = "input_output"
    """Reading the next chunk from the transport failed."""

    MAX_LEN_REACHED = "max_len_reached"
    """A frame grew past the configured ``max_obj_len``."""


_KIND_TEXT: dict[StreamBodyKind, str] = {
    StreamBodyKind.CODEC: "Frame/codec error",
    StreamBodyKind.INPUT_OUTPUT: "I/O error",
    StreamBodyKind.MAX_LEN_REACHED: "Max object length reached",
}


class StreamBodyError(Exception):
    """Base class for all errors raised while streaming a response body.

    Every error carries a :class:`StreamBodyKind`, an optional human readable
    ``message`` and an optional ``cause`` wrapping the underlying exception.
    The cause is also chained as ``__cause__`` so tracebacks show it.

    Example:
        Telling an oversized record apart from a malformed one::

            try:
                for item in body.json_array_stream(64 * 1024):
                    handle(item)
            except MaxLenReachedError:
                logger.warning("Producer sent an oversized record")
            except StreamBodyError as e:
                logger.error("Stream failed: %s", e)

    Note:
        Subclasses also inherit from builtin exception types (``ValueError``,
        ``OSError``) so generic handlers keep working.
    """

    kind: ClassVar[StreamBodyKind]

    def __init__(
        self,
        message: str | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(*(() if message is None else (message,)))
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @override
    def __str__(self) -> str:
        parts = [_KIND_TEXT[self.kind]]
        if self.message is not None:
            parts.append(self.message)
        if self.cause is not None:
            parts.append(str(self.cause))
        return ": ".join(parts)

    @override
    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"message={self.message!r}, cause={self.cause!r})"
        )


class CodecError(StreamBodyError, ValueError):
    """Raised when a frame is malformed or its payload fails to decode.

    Covers bad JSON punctuation, CSV rows that do not fit the target shape,
    overlong varints, undecodable Protobuf payloads, Arrow metadata errors and
    input that ends in the middle of a frame.
    """

    kind = StreamBodyKind.CODEC


class InputOutputError(StreamBodyError, OSError):
    """Raised when the transport fails while producing the next chunk."""

    kind = StreamBodyKind.INPUT_OUTPUT


class MaxLenReachedError(StreamBodyError):
    """Raised when a frame, declared or partially buffered, exceeds the bound.

    The oversized frame is never handed to a materializer.
    """

    kind = StreamBodyKind.MAX_LEN_REACHED
