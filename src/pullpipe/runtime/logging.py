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

"""Structured logging for pullpipe chains.

Every record carries an ``event`` name and a ``context`` mapping. The keys
in :data:`STANDARD_FIELDS` say where a record came from: the chain label,
the stage role and the file that stage works on. Both formatters render
them ahead of the remaining context.

Chain labels are attached with :func:`chain_scope`. Stage callbacks run on
the thread driving the loop, so one scope around binding and
``loop.run()`` labels every record of that chain::

    with chain_scope() as chain:
        sink.bind_source(source, on_complete)
        sink.fs.loop.run()
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from itertools import count
from typing import Any, Final, cast, override

__all__ = [
    "LOG_FORMAT_ENV",
    "LOG_LEVEL_ENV",
    "STANDARD_FIELDS",
    "StructuredLogger",
    "chain_scope",
    "configure_logging",
    "current_chain",
    "get_logger",
]

LOG_LEVEL_ENV: Final = "PULLPIPE_LOG_LEVEL"
LOG_FORMAT_ENV: Final = "PULLPIPE_LOG_FORMAT"
STANDARD_FIELDS: Final = ("chain", "stage", "path")

_active_chain: ContextVar[str | None] = ContextVar("pullpipe_chain", default=None)
_chain_numbers = count(1)


def current_chain() -> str | None:
    """Label of the innermost active :func:`chain_scope`, if any."""
    return _active_chain.get()


@contextmanager
def chain_scope(label: str | None = None) -> Iterator[str]:
    """Tag records logged inside the block with a chain label.

    Without ``label`` a fresh ``chain-N`` label is allocated.
    """
    chain = label if label is not None else f"chain-{next(_chain_numbers)}"
    token = _active_chain.set(chain)
    try:
        yield chain
    finally:
        _active_chain.reset(token)


class StructuredLogger(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter requiring an ``event`` name on every call.

    The record's ``context`` is the bound context, then the active chain
    label, then the call's own ``context=`` mapping, later entries winning.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        context: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(logger, dict(context or {}))

    @property
    def context(self) -> dict[str, object]:
        """A copy of the bound context."""
        return dict(cast(Mapping[str, object], self.extra))

    def bind(self, **context: object) -> StructuredLogger:
        """Return an adapter on the same logger with ``context`` added."""
        return type(self)(self.logger, context={**self.context, **context})

    @override
    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        event = kwargs.pop("event", None)
        if not isinstance(event, str):
            raise TypeError("Structured logs require an 'event' field.")
        if kwargs.get("extra") is not None:
            raise TypeError("Pass structured fields through context=, not extra=.")
        inline = kwargs.pop("context", None)
        if inline is not None and not isinstance(inline, Mapping):
            raise TypeError("context must be a mapping when provided.")

        payload = self.context
        chain = _active_chain.get()
        if chain is not None:
            payload["chain"] = chain
        if inline is not None:
            payload.update(cast(Mapping[str, object], inline))
        kwargs["extra"] = {"event": event, "context": payload}
        return msg, kwargs


def get_logger(
    name: str,
    *,
    logger_override: logging.Logger | StructuredLogger | None = None,
    context: Mapping[str, object] | None = None,
) -> StructuredLogger:
    """Return a :class:`StructuredLogger` for ``name``.

    Stages pass their ``logger`` argument as ``logger_override``. A
    :class:`StructuredLogger` keeps its bound context with ``context``
    merged on top; a plain :class:`logging.Logger` replaces ``name``.
    """

    if isinstance(logger_override, StructuredLogger):
        return logger_override.bind(**dict(context or {}))
    base = (
        logger_override
        if isinstance(logger_override, logging.Logger)
        else logging.getLogger(name)
    )
    return StructuredLogger(base, context=context)


def configure_logging(
    *,
    level: int | str | None = None,
    json_mode: bool | None = None,
    env: Mapping[str, str] | None = None,
    force: bool = False,
) -> None:
    """Configure the root logger for command-line use.

    ``level`` falls back to ``PULLPIPE_LOG_LEVEL`` and then ``INFO``.
    ``json_mode`` falls back to ``PULLPIPE_LOG_FORMAT=json``. When the root
    logger already has handlers only its level changes, unless ``force``.
    """

    env = os.environ if env is None else env
    root = logging.getLogger()
    root.setLevel(_coerce_level(level or env.get(LOG_LEVEL_ENV)))
    if root.handlers and not force:
        return

    if json_mode is None:
        json_mode = env.get(LOG_FORMAT_ENV, "").lower() == "json"
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter() if json_mode else _TextFormatter())
    root.addHandler(handler)


def _split_context(record: logging.LogRecord) -> tuple[list[str], dict[str, object]]:
    context = dict(getattr(record, "context", None) or {})
    origin = [context.pop(key, None) for key in STANDARD_FIELDS]
    return [str(value) for value in origin if value is not None], context


class _TextFormatter(logging.Formatter):
    """``time LEVEL logger event [chain stage path] message key=value ...``"""

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    @override
    def format(self, record: logging.LogRecord) -> str:
        origin, context = _split_context(record)
        parts = [self.formatTime(record, self.datefmt), record.levelname, record.name]
        event = getattr(record, "event", None)
        if event is not None:
            parts.append(str(event))
        if origin:
            parts.append(f"[{' '.join(origin)}]")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in context.items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class _JsonFormatter(logging.Formatter):
    """One compact JSON object per record, chain fields at the top level."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        context = dict(getattr(record, "context", None) or {})
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
        }
        for key in STANDARD_FIELDS:
            if context.get(key) is not None:
                payload[key] = context.pop(key)
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
    try:
        return logging.getLevelNamesMapping()[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None
