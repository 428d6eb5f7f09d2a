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

"""Tests for the Arrow IPC stream decoder."""

from __future__ import annotations

from typing import Any

import pytest

from streambody import CodecError, MaxLenReachedError
from streambody._buffer import ByteBuffer
from streambody.codecs import ArrowIpcCodec
from tests.helpers import drain, one_byte_chunks, split_at

pa = pytest.importorskip("pyarrow")


def _batches() -> list[Any]:
    return [
        pa.record_batch({"id": [1, 2, 3], "name": ["a", "b", None]}),
        pa.record_batch({"id": [4], "name": ["d"]}),
    ]


def _ipc_stream(batches: list[Any], **options: Any) -> bytes:  # noqa: ANN401
    sink = pa.BufferOutputStream()
    write_options = pa.ipc.IpcWriteOptions(**options) if options else None
    with pa.ipc.new_stream(sink, batches[0].schema, options=write_options) as writer:
        for batch in batches:
            writer.write_batch(batch)
    return sink.getvalue().to_pybytes()


def _rows(batches: list[Any]) -> list[dict[str, list[object]]]:
    return [batch.to_pydict() for batch in batches]


def test_decodes_every_record_batch() -> None:
    batches = _batches()
    codec = ArrowIpcCodec(1 << 20)

    decoded = drain(codec, [_ipc_stream(batches)])

    assert _rows(decoded) == _rows(batches)
    assert codec.schema == batches[0].schema


def test_byte_by_byte_delivery() -> None:
    batches = _batches()

    decoded = drain(ArrowIpcCodec(1 << 20), one_byte_chunks(_ipc_stream(batches)))

    assert _rows(decoded) == _rows(batches)


def test_legacy_framing_without_continuation_marker() -> None:
    batches = _batches()
    body = _ipc_stream(batches, use_legacy_format=True)

    assert not body.startswith(b"\xff\xff\xff\xff")
    assert _rows(drain(ArrowIpcCodec(1 << 20), split_at(body, [5, 77]))) == _rows(
        batches
    )


def test_dictionary_encoded_columns() -> None:
    dictionary = pa.array(["red", "green", "blue"])
    batches = [
        pa.record_batch(
            {"color": pa.DictionaryArray.from_arrays(pa.array(indices), dictionary)}
        )
        for indices in ([0, 1, 2, 1], [2, 2])
    ]

    decoded = drain(ArrowIpcCodec(1 << 20), [_ipc_stream(batches)])

    assert [batch.column(0).to_pylist() for batch in decoded] == [
        ["red", "green", "blue", "green"],
        ["blue", "blue"],
    ]


def test_stream_with_schema_only_yields_nothing() -> None:
    schema = pa.schema([("id", pa.int64())])
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, schema):
        pass

    codec = ArrowIpcCodec(1 << 20)
    assert drain(codec, [sink.getvalue().to_pybytes()]) == []
    assert codec.schema == schema


def test_schema_is_unknown_until_its_message_arrives() -> None:
    codec = ArrowIpcCodec(1 << 20)
    buf = ByteBuffer()
    buf.extend(_ipc_stream(_batches())[:6])

    assert codec.decode(buf) is None
    assert codec.schema is None


@pytest.mark.parametrize("trickle", [False, True])
def test_oversized_batch_fails_however_it_is_chunked(trickle: bool) -> None:
    body = _ipc_stream([pa.record_batch({"payload": ["x" * 4096]})])
    chunks = one_byte_chunks(body) if trickle else [body]

    with pytest.raises(MaxLenReachedError, match="exceeds"):
        drain(ArrowIpcCodec(1024), chunks)


def test_schema_counts_toward_the_limit_of_the_first_batch() -> None:
    body = _ipc_stream(_batches())
    codec = ArrowIpcCodec(1 << 20)
    buf = ByteBuffer()
    buf.extend(body)
    assert codec.decode(buf) is not None
    first_message_bytes = len(body) - len(buf)

    with pytest.raises(MaxLenReachedError):
        drain(ArrowIpcCodec(first_message_bytes - 1), [body])
    assert len(drain(ArrowIpcCodec(first_message_bytes), [body])) == 2


def test_limit_resets_after_each_batch() -> None:
    batches = [pa.record_batch({"n": list(range(50))}) for _ in range(6)]
    body = _ipc_stream(batches)
    limit = len(body) // 2

    decoded = drain(ArrowIpcCodec(limit), one_byte_chunks(body))

    assert len(decoded) == 6


def test_truncated_stream_is_a_codec_error() -> None:
    body = _ipc_stream(_batches())

    with pytest.raises(CodecError, match="Input ended inside an IPC message"):
        drain(ArrowIpcCodec(1 << 20), [body[: len(body) - 20]])


def test_data_after_end_of_stream_marker_is_a_codec_error() -> None:
    body = _ipc_stream(_batches())

    with pytest.raises(CodecError, match="after the end-of-stream marker"):
        drain(ArrowIpcCodec(1 << 20), [body + b"\x00\x01"])


def test_record_batch_before_schema_is_a_codec_error() -> None:
    body = b"\xff\xff\xff\xff\x08\x00\x00\x00" + b"\x00" * 8

    with pytest.raises(CodecError, match="must start with a schema"):
        drain(ArrowIpcCodec(1 << 20), [body])


def _tagged(tags: list[str]) -> Any:  # noqa: ANN401
    return pa.record_batch({"tag": pa.array(tags).dictionary_encode()})


def test_replacement_dictionaries_are_not_accumulated() -> None:
    batches = [_tagged([f"tag-{n}-{i}" for i in range(4)]) for n in range(50)]
    body = _ipc_stream(batches)
    codec = ArrowIpcCodec(4096)

    decoded = drain(codec, [body])

    assert [batch.column(0).to_pylist() for batch in decoded] == [
        batch.column(0).to_pylist() for batch in batches
    ]
    assert 0 < codec.retained <= 4096
    assert codec.retained < len(body) // 10


def test_delta_dictionaries_decode_against_their_base() -> None:
    batches = [_tagged(["a", "b"]), _tagged(["a", "b", "c"]), _tagged(["c"])]
    body = _ipc_stream(batches, emit_dictionary_deltas=True)

    decoded = drain(ArrowIpcCodec(1 << 20), split_at(body, [3, 50, 400]))

    assert [batch.column(0).to_pylist() for batch in decoded] == [
        ["a", "b"],
        ["a", "b", "c"],
        ["c"],
    ]


def test_retained_dictionaries_count_toward_later_batches() -> None:
    dictionary = pa.array(["x" * 2000])
    batches = [
        pa.record_batch(
            {
                "tag": pa.DictionaryArray.from_arrays(
                    pa.array([0] * rows, pa.int32()), dictionary
                )
            }
        )
        for rows in (1, 600)
    ]
    body = _ipc_stream(batches)
    codec = ArrowIpcCodec(1 << 20)
    buf = ByteBuffer()
    buf.extend(body)
    assert codec.decode(buf) is not None
    retained = codec.retained
    remaining = len(buf)
    assert codec.decode(buf) is not None
    second_batch_bytes = remaining - len(buf)

    assert retained > 2000
    limit = retained + second_batch_bytes
    assert len(drain(ArrowIpcCodec(limit), [body])) == 2
    with pytest.raises(MaxLenReachedError):
        drain(ArrowIpcCodec(limit - 1), [body])
