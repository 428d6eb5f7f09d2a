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

"""Stream the same records as a JSON array, JSON Lines and CSV.

The server side is an :class:`httpx.MockTransport` that renders 1000 records
in the format named by the request path and sends them in small chunks, so
the example runs without network access::

    python examples/stream_formats.py
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
from collections.abc import AsyncIterator, Iterator
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from streambody import AsyncStreamBody, StreamBody
from streambody.logging import configure_logging, get_logger

logger = get_logger(__name__, context={"component": "example"})

CHUNK_SIZE = 256
RECORD_COUNT = 1000


@dataclass(frozen=True, slots=True)
class Measurement:
    sensor: str
    value: int

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> Measurement:
        return cls(sensor=payload["sensor"], value=int(payload["value"]))

    @classmethod
    def from_row(cls, row: list[str] | dict[str, str]) -> Measurement:
        if not isinstance(row, dict):
            raise TypeError("expected a CSV row keyed by header")
        return cls(sensor=row["sensor"], value=int(row["value"]))


def _records() -> list[Measurement]:
    return [Measurement(sensor=f"s-{i % 7}", value=i) for i in range(RECORD_COUNT)]


def _render(path: str) -> bytes:
    records = [asdict(record) for record in _records()]
    if path == "/json-array":
        return json.dumps(records).encode()
    if path == "/json-nl":
        return "".join(json.dumps(record) + "\n" for record in records).encode()
    out = io.StringIO()
    writer = csv.DictWriter(out, fieldnames=["sensor", "value"], lineterminator="\n")
    writer.writeheader()
    writer.writerows(records)
    return out.getvalue().encode()


def _chunks(body: bytes) -> Iterator[bytes]:
    for start in range(0, len(body), CHUNK_SIZE):
        yield body[start : start + CHUNK_SIZE]


async def _achunks(body: bytes) -> AsyncIterator[bytes]:
    for chunk in _chunks(body):
        yield chunk


def _handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=_chunks(_render(request.url.path)))


async def _ahandler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=_achunks(_render(request.url.path)))


def run_sync() -> None:
    transport = httpx.MockTransport(_handler)
    with httpx.Client(transport=transport, base_url="http://demo") as client:
        with client.stream("GET", "/json-array") as response:
            items = StreamBody(response).json_array_stream(
                1024, decode=Measurement.from_json
            )
            total = sum(item.value for item in items)
        logger.info(
            "JSON array summed.", event="example_json_array", context={"total": total}
        )

        with client.stream("GET", "/csv") as response:
            rows = StreamBody(response).csv_stream(
                1024, with_header=True, decode=Measurement.from_row
            )
            first = next(iter(rows))
        logger.info(
            "First CSV row read.",
            event="example_csv",
            context={"sensor": first.sensor, "value": first.value},
        )


async def run_async() -> None:
    transport = httpx.MockTransport(_ahandler)
    async with (
        httpx.AsyncClient(transport=transport, base_url="http://demo") as client,
        client.stream("GET", "/json-nl") as response,
    ):
        count = 0
        async for _ in AsyncStreamBody(response).json_nl_stream(
            1024, decode=Measurement.from_json
        ):
            count += 1
    logger.info(
        "JSON lines counted.", event="example_json_nl", context={"count": count}
    )


def main() -> None:
    configure_logging(level="INFO")
    run_sync()
    asyncio.run(run_async())


if __name__ == "__main__":
    main()
