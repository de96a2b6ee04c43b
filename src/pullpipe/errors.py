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

"""Base exception hierarchy for :mod:`pullpipe`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, override


class PullPipeError(Exception):
    """Base class for all pullpipe exceptions.

    Callers can catch every library-specific failure with a single handler
    while standard Python exceptions propagate normally.

    Note:
        Subclasses also inherit from a standard exception type (``ValueError``,
        ``TypeError`` or ``RuntimeError``) so generic handlers keep working.
    """


class InvalidArgumentError(PullPipeError, ValueError):
    """Raised synchronously when a stage option has the wrong type or value.

    Construction-time validation happens before any descriptor is opened, so
    this error never leaves a partially opened chain behind.
    """


class OutOfRangeError(InvalidArgumentError):
    """Raised when a numeric option falls outside its allowed range.

    The common case is a negative ``start`` offset::

        FileSink("out.bin", {"start": -1})  # raises OutOfRangeError
    """


class UnknownEncodingError(InvalidArgumentError):
    """Raised when an ``encoding`` option names no registered codec."""


class InvalidCallbackError(PullPipeError, TypeError):
    """Raised when a completion callback is not callable."""


class StateError(PullPipeError, RuntimeError):
    """Base class for protocol state violations."""


@dataclass(frozen=True, slots=True)
class InvalidStateError(StateError):
    """Method called in an invalid state.

    Raised when a method guarded by ``@transition`` or ``@in_state`` is called
    while the object is not in one of its valid source states. Typical causes
    are a second pull on a link that already has one outstanding, a pull
    issued before the destination finished opening, or binding a second
    source to a sink.

    Attributes:
        cls: The class containing the method.
        method: Name of the method that was called.
        current_state: The actual state when the method was called.
        valid_states: The states that would have been valid.
    """

    cls: type[Any]
    method: str
    current_state: Enum
    valid_states: tuple[Enum, ...]

    @override
    def __str__(self) -> str:
        valid = ", ".join(sorted(s.name for s in self.valid_states))
        return (
            f"{self.cls.__name__}.{self.method}() requires state in "
            f"[{valid}], but current state is {self.current_state.name}"
        )


class CompletionError(StateError):
    """Raised when a single-use completion token is invoked twice."""


#: Exceptions a filesystem primitive raises for a failed call.
IO_FAILURES: tuple[type[Exception], ...] = (OSError, OverflowError, ValueError)


class ChainIOError(PullPipeError, RuntimeError):
    """Base class for I/O failures travelling along a chain.

    These errors are not raised to the caller of ``bind_source``. They are
    carried by an ``ERROR`` response and delivered exactly once to the
    chain's completion callback. The underlying exception is kept as
    ``__cause__``.

    Attributes:
        path: The path the failing stage was working on, if known.
        errno: ``errno`` of the underlying ``OSError``, if any.
    """

    operation: str = "io"

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.errno: int | None = getattr(cause, "errno", None)
        self.__cause__ = cause

    @classmethod
    def from_failure(cls, error: Exception, *, path: str | None) -> ChainIOError:
        """Wrap ``error`` with a message naming the operation and path.

        ``error`` is usually an :class:`OSError`. Offsets the host cannot
        represent surface as ``OverflowError`` or ``ValueError`` and are
        wrapped the same way.
        """

        strerror = error.strerror if isinstance(error, OSError) else None
        reason = strerror or str(error) or type(error).__name__
        target = path if path is not None else "<descriptor>"
        message = f"{cls.operation} failed for {target}: {reason}"
        return cls(message, path=path, cause=error)


class OpenFailureError(ChainIOError):
    """Opening a source or destination descriptor failed."""

    operation = "open"


class ReadFailureError(ChainIOError):
    """Reading from the origin descriptor failed."""

    operation = "read"


class WriteFailureError(ChainIOError):
    """Writing to the destination descriptor failed or stopped making progress."""

    operation = "write"


class CloseFailureError(ChainIOError):
    """Closing a descriptor failed, including the close that follows END."""

    operation = "close"


class TransformError(PullPipeError, RuntimeError):
    """A transform stage raised while processing a chunk."""


def describe_path(
    path: str | bytes | os.PathLike[str] | os.PathLike[bytes] | None,
) -> str | None:
    """Return a printable form of ``path`` for error messages and logs."""

    if path is None:
        return None
    return os.fsdecode(path)


__all__ = [
    "IO_FAILURES",
    "ChainIOError",
    "CloseFailureError",
    "CompletionError",
    "InvalidArgumentError",
    "InvalidCallbackError",
    "InvalidStateError",
    "OpenFailureError",
    "OutOfRangeError",
    "PullPipeError",
    "ReadFailureError",
    "StateError",
    "TransformError",
    "UnknownEncodingError",
    "WriteFailureError",
    "describe_path",
]
