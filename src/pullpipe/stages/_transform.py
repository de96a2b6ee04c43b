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

"""Transform stages sitting between a source and a sink.

A transform is pulled by its downstream neighbour and pulls its own
upstream in turn, relaying the buffer it was lent. Subclasses customise two
hooks:

- :meth:`Transform.process` maps one DATA response to another. It may
  rewrite the lent buffer in place (length preserved) or return a response
  over the transform's scratch buffer.
- :meth:`Transform.flush` returns trailing bytes once the upstream reports
  END. Non-empty trailing bytes are sent as one final DATA, and END follows
  on the next pull.

Any exception a hook raises is reported downstream as ERROR carrying a
:class:`~pullpipe.errors.TransformError`.
"""

from __future__ import annotations

import codecs
import hashlib
import logging
from collections.abc import Callable
from enum import Enum, auto
from typing import Self, override

from ..errors import (
    InvalidArgumentError,
    InvalidCallbackError,
    PullPipeError,
    StateError,
    TransformError,
)
from ..link import (
    DownstreamStage,
    Link,
    Response,
    Status,
    TeardownCallback,
    UpstreamStage,
    connect,
    enters,
    in_state,
    state_machine,
    transition,
)
from ..runtime.logging import StructuredLogger, get_logger
from ._options import check_encoding

__all__ = [
    "DigestTransform",
    "MapTransform",
    "PassThrough",
    "TranscodeTransform",
    "Transform",
    "TransformState",
    "TranslateTransform",
]

_TABLE_SIZE = 256


class TransformState(Enum):
    NEW = auto()
    ATTACHED = auto()
    LINKED = auto()
    CLOSED = auto()


@state_machine(state_var="_state", states=TransformState, initial=TransformState.NEW)
class Transform(UpstreamStage, DownstreamStage):
    """Relay stage; the base behaviour forwards every response unchanged.

    Bind the upstream first, then hand the transform to its downstream::

        sink.bind_source(TranslateTransform.uppercase().bind_source(source), cb)
    """

    _state: TransformState

    def __init__(
        self, *, logger: logging.Logger | StructuredLogger | None = None
    ) -> None:
        self._upstream: Link | None = None
        self._downstream: Link | None = None
        self._scratch = bytearray()
        self._held_end = False
        self.chunks = 0
        self._logger = get_logger(
            "pullpipe.stages.transform",
            logger_override=logger,
            context={"stage": "transform", "transform": type(self).__name__},
        )

    @property
    def state(self) -> TransformState:
        return self._state

    @transition(from_=TransformState.NEW, to=TransformState.ATTACHED)
    def bind_source(self, source: object) -> Self:
        """Link ``source`` as this transform's upstream and return ``self``."""
        self._upstream = connect(source, self)
        return self

    @transition(from_=TransformState.ATTACHED, to=TransformState.LINKED)
    def bind_sink(self, link: Link) -> None:
        self._downstream = link

    @in_state(TransformState.LINKED)
    def fulfill(self, buffer: bytearray) -> None:
        if self._held_end:
            self._held_end = False
            self._respond(Response.end())
            return
        self._upstream.request(buffer)  # pyright: ignore[reportOptionalMemberAccess]

    @in_state(TransformState.LINKED)
    def on_response(self, response: Response) -> None:
        match response.status:
            case Status.DATA:
                self._relay(response)
            case Status.END:
                self._finish()
            case Status.ERROR:
                self._respond(response)

    def _relay(self, response: Response) -> None:
        try:
            result = self.process(response)
        except Exception as error:  # noqa: BLE001
            self._respond(Response.failed(self._wrap(error, "process")))
            return
        self.chunks += 1
        self._respond(result)

    def _finish(self) -> None:
        try:
            trailing = self.flush()
        except Exception as error:  # noqa: BLE001
            self._respond(Response.failed(self._wrap(error, "flush")))
            return
        if not trailing:
            self._respond(Response.end())
            return
        self._logger.debug(
            "Emitting trailing bytes before END.",
            event="transform.flushed",
            context={"bytes": len(trailing)},
        )
        self._held_end = True
        self._respond(self.emit(trailing))

    def _respond(self, response: Response) -> None:
        self._downstream.respond(response)  # pyright: ignore[reportOptionalMemberAccess]

    def _wrap(self, error: Exception, hook: str) -> PullPipeError:
        if isinstance(error, TransformError):
            return error
        msg = f"{type(self).__name__}.{hook} failed: {error}"
        wrapped = TransformError(msg)
        wrapped.__cause__ = error
        self._logger.warning(
            "Transform hook raised.",
            event="transform.failed",
            context={"hook": hook, "error": repr(error)},
        )
        return wrapped

    @enters(TransformState.CLOSED)
    def teardown(self, error: PullPipeError, done: TeardownCallback) -> None:
        self._held_end = False
        upstream = self._upstream
        if upstream is None:
            done()
            return
        upstream.teardown(error, done)

    def emit(self, data: bytes | bytearray | memoryview) -> Response:
        """Copy ``data`` into the scratch buffer and wrap it as DATA.

        The scratch buffer is only ever replaced, never resized, so views a
        downstream stage still holds on the previous chunk stay valid.
        """
        size = len(data)
        if size > len(self._scratch):
            self._scratch = bytearray(size)
        self._scratch[:size] = data
        return Response.data(self._scratch, size)

    def process(self, response: Response) -> Response:
        """Map one DATA response; the default returns it unchanged."""
        return response

    def flush(self) -> bytes:
        """Return trailing bytes to emit once upstream has ended."""
        return b""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(state={self._state.name}, chunks={self.chunks})"


class PassThrough(Transform):
    """Identity transform."""


class TranslateTransform(Transform):
    """Translates every byte through a 256-entry table, in place."""

    def __init__(
        self,
        table: bytes | bytearray,
        *,
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        if not isinstance(table, bytes | bytearray) or len(table) != _TABLE_SIZE:
            msg = f"translation table must be {_TABLE_SIZE} bytes"
            raise InvalidArgumentError(msg)
        super().__init__(logger=logger)
        self.table = bytes(table)

    @classmethod
    def uppercase(cls) -> TranslateTransform:
        """ASCII lowercase to uppercase."""
        lower = bytes(range(ord("a"), ord("z") + 1))
        return cls(bytes.maketrans(lower, lower.upper()))

    @override
    def process(self, response: Response) -> Response:
        buffer = response.buffer
        assert buffer is not None
        length = response.length
        buffer[:length] = buffer[:length].translate(self.table)
        return response


class MapTransform(Transform):
    """Applies ``fn`` to each chunk and emits the result from scratch.

    Chunk boundaries are preserved: every upstream chunk yields exactly one
    downstream chunk, possibly empty.
    """

    def __init__(
        self,
        fn: Callable[[bytes], bytes],
        *,
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        if not callable(fn):
            msg = f"map function must be callable, got {type(fn).__name__}"
            raise InvalidCallbackError(msg)
        super().__init__(logger=logger)
        self.fn = fn

    @override
    def process(self, response: Response) -> Response:
        result = self.fn(bytes(response.view()))
        if not isinstance(result, bytes | bytearray | memoryview):
            msg = f"map function returned {type(result).__name__}, expected bytes"
            raise TransformError(msg)
        return self.emit(result)


class TranscodeTransform(Transform):
    """Re-encodes text between two codecs across chunk boundaries.

    Incremental codecs carry partial multi-byte sequences from one chunk to
    the next. Whatever is still buffered at END is flushed as a final chunk.
    """

    def __init__(
        self,
        from_encoding: str,
        to_encoding: str,
        *,
        errors: str = "strict",
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        self.from_encoding = check_encoding(from_encoding)
        self.to_encoding = check_encoding(to_encoding)
        super().__init__(logger=logger)
        self._decoder = codecs.getincrementaldecoder(self.from_encoding)(errors)
        self._encoder = codecs.getincrementalencoder(self.to_encoding)(errors)

    @override
    def process(self, response: Response) -> Response:
        text = self._decoder.decode(bytes(response.view()))
        return self.emit(self._encoder.encode(text))

    @override
    def flush(self) -> bytes:
        text = self._decoder.decode(b"", final=True)
        return self._encoder.encode(text, final=True)


class DigestTransform(Transform):
    """Hashes the bytes flowing through without changing them."""

    def __init__(
        self,
        algorithm: str = "sha256",
        *,
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        try:
            self._hash = hashlib.new(algorithm)
        except (TypeError, ValueError) as error:
            msg = f"unsupported digest algorithm: {algorithm!r}"
            raise InvalidArgumentError(msg) from error
        super().__init__(logger=logger)
        self.algorithm = self._hash.name
        self.finished = False
        self.bytes_seen = 0

    @override
    def process(self, response: Response) -> Response:
        view = response.view()
        self._hash.update(view)
        self.bytes_seen += len(view)
        return response

    @override
    def flush(self) -> bytes:
        self.finished = True
        return b""

    def hexdigest(self) -> str:
        """Digest of every byte seen.

        Raises:
            StateError: If the upstream has not reached END yet.
        """
        if not self.finished:
            msg = f"{self.algorithm} digest requested before the input ended"
            raise StateError(msg)
        return self._hash.hexdigest()
