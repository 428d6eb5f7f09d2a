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

from __future__ import annotations

from collections.abc import Iterator

import pytest


@pytest.fixture
def json_array_body() -> bytes:
    """Return a JSON array body with nested objects and tricky strings."""

    return (
        b' [ {"id": 1, "name": "a}b"},\n'
        b'  {"id": 2, "nested": {"x": [1, 2, {"y": "\\\\"}]}},'
        b'{"id": 3, "quote": "say \\"hi\\" {"} ]\n'
    )


@pytest.fixture
def recorded_logs(
    caplog: pytest.LogCaptureFixture,
) -> Iterator[pytest.LogCaptureFixture]:
    """Capture streambody debug records."""

    with caplog.at_level("DEBUG", logger="streambody"):
        yield caplog
