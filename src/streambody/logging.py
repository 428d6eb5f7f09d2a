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

"""Structured logging helpers for :mod:`streambody`.

Log records emitted by the library always carry an ``event`` name and a
``context`` mapping (stream format, item and byte counters). Applications
that already configure logging get these as record attributes; others can
call :func:`configure_logging` for a ready-made text or JSON handler.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
from collections.abc import Mapping, MutableMapping
from datetime import UTC, datetime
from typing import Any, cast, override

__all__ = [
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]

_LOG_LEVEL_ENV = "STREAMBODY_LOG_LEVEL"
_LOG_FORMAT_ENV = "STREAMBODY_LOG_FORMAT"


class StructuredLogger(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that requires an ``event`` and merges bound context."""

    def __init__(
        self,
        logger: logging.Logger,
        *,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(logger, dict(context or {}))

    @property
    def context(self) -> Mapping[str, object]:
        return cast(Mapping[str, object], self.extra)

    def bind(self, **context: object) -> StructuredLogger:
        """Return a new adapter with ``context`` layered over the current one."""

        return type(self)(self.logger, context={**self.context, **context})

    @override
    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra: dict[str, object] = dict(kwargs.get("extra") or {})
        event = kwargs.pop("event", None) or extra.pop("event", None)
        if not isinstance(event, str):
            raise TypeError("Structured logs require an 'event' field.")

        payload: dict[str, object] = dict(self.context)
        inline = kwargs.pop("context", None)
        if inline is not None:
            if not isinstance(inline, Mapping):
                raise TypeError("context must be a mapping when provided.")
            payload.update(cast(Mapping[str, object], inline))
        payload.update(extra)
        kwargs["extra"] = {"event": event, "context": payload}
        return msg, kwargs


def get_logger(
    name: str,
    *,
    context: Mapping[str, object] | None = None,
) -> StructuredLogger:
    """Return a :class:`StructuredLogger` for ``name`` with baseline ``context``."""

    return StructuredLogger(logging.getLogger(name), context=context)


def configure_logging(
    *,
    level: int | str | None = None,
    json_mode: bool | None = None,
    env: Mapping[str, str] | None = None,
    force: bool = False,
) -> None:
    """Install a stderr handler on the root logger.

    ``level`` and ``json_mode`` fall back to the ``STREAMBODY_LOG_LEVEL`` and
    ``STREAMBODY_LOG_FORMAT`` environment variables (``json`` selects the JSON
    formatter, anything else the text one). Existing handlers are left alone
    and only the level is adjusted unless ``force=True``.
    """

    env = os.environ if env is None else env
    resolved_level = _coerce_level(level or env.get(_LOG_LEVEL_ENV))
    if json_mode is None:
        json_mode = env.get(_LOG_FORMAT_ENV, "").lower() == "json"

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "text": {
                    "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {"()": "streambody.logging._JsonFormatter"},
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "json" if json_mode else "text",
                }
            },
            "root": {"handlers": ["stderr"], "level": resolved_level},
        }
    )


class _JsonFormatter(logging.Formatter):
    """Render records as one compact JSON object per line."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=repr, separators=(",", ":"))


def _coerce_level(level: int | str | None) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(level.upper())
    if resolved is None:
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved
