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

"""File-backed sink stage: owns the shared buffer and drives the chain."""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Final

from ..errors import (
    IO_FAILURES,
    CloseFailureError,
    OpenFailureError,
    PullPipeError,
    WriteFailureError,
)
from ..fs import AsyncFileSystem, PathArg
from ..link import (
    CompletionCallback,
    CompletionToken,
    DownstreamStage,
    Link,
    Response,
    Status,
    connect,
    in_state,
    state_machine,
    transition,
)
from ..runtime.logging import StructuredLogger
from ..threading import Future
from ._base import FileStage
from ._options import SinkOptions, resolve_path, resolve_sink_options

__all__ = ["MAX_ZERO_PROGRESS_WRITES", "FileSink", "SinkState"]

#: Consecutive zero-byte writes after which a chunk counts as stalled.
MAX_ZERO_PROGRESS_WRITES: Final[int] = 3


class SinkState(Enum):
    IDLE = auto()
    OPENING = auto()
    STREAMING = auto()
    WRITING = auto()
    CLOSING = auto()
    DONE = auto()


@state_machine(state_var="_state", states=SinkState, initial=SinkState.IDLE)
class FileSink(FileStage, DownstreamStage):
    """Terminal stage writing every chunk it pulls to a destination file.

    The sink owns the chain's only buffer. It allocates the buffer on the
    first pull, lends it upstream, writes what comes back at its cursor and
    pulls again. It never holds more than one chunk.

    The cursor (``position``) starts at ``start`` and advances only by the
    byte counts the filesystem confirms. A short write is continued from the
    advanced cursor before the next pull. :data:`MAX_ZERO_PROGRESS_WRITES`
    consecutive zero-byte writes fail the chain with
    :class:`~pullpipe.errors.WriteFailureError`.

    On END the destination is closed (``auto_close``) and the completion
    callback receives ``None``, or the close failure. On ERROR, or a local
    open/write failure, every upstream stage is torn down first, then the
    destination is closed and the callback receives the error.

    Example::

        sink = FileSink("out.bin", {"chunk_size": 16_384})
        sink.bind_source(FileSource("in.bin"), on_complete)
        sink.fs.loop.run()
    """

    role = "sink"
    _state: SinkState

    def __init__(
        self,
        path: PathArg | None = None,
        options: SinkOptions | dict[str, object] | str | None = None,
        *,
        fs: AsyncFileSystem | None = None,
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        self.options = resolve_sink_options(options)
        super().__init__(
            resolve_path(path, self.options.fd),
            self.options.fd,
            fs=fs,
            logger=logger,
        )
        self.position = self.options.start or 0
        self.bytes_written = 0
        self.chunks_written = 0
        self.buffer: bytearray | None = None
        self._upstream: Link | None = None
        self._token: CompletionToken | None = None
        self._chunk: Response | None = None
        self._chunk_offset = 0
        self._stalls = 0

    @property
    def state(self) -> SinkState:
        return self._state

    @property
    def encoding(self) -> str:
        return self.options.encoding

    @property
    def link(self) -> Link | None:
        return self._upstream

    @property
    def done(self) -> bool:
        return self._state is SinkState.DONE

    @property
    def outcome(self) -> PullPipeError | None:
        """The error the chain finished with, or None."""
        return None if self._token is None else self._token.outcome

    @transition(from_=SinkState.IDLE, to=SinkState.OPENING)
    def bind_source(self, source: object, on_complete: CompletionCallback) -> None:
        """Bind ``source`` as the upstream stage and start pulling.

        Raises:
            InvalidCallbackError: If ``on_complete`` is not callable.
            InvalidStateError: If this sink is already bound, or ``source``
                is already bound to another stage.
            InvalidArgumentError: If ``source`` is not a source or transform.
        """
        token = CompletionToken(on_complete)
        self._upstream = connect(source, self)
        self._token = token
        self._logger.debug(
            "Sink bound.",
            event="sink.bound",
            context={"upstream": type(source).__name__, "fd": self.fd},
        )
        if self.fd is None:
            self.fs.open(
                self.path,  # pyright: ignore[reportArgumentType]
                self.options.flags,
                self.options.mode,
                self._on_open,
            )
        else:
            self._start()

    def _on_open(self, future: Future[int]) -> None:
        try:
            self.fd = future.result()
        except IO_FAILURES as error:
            self._fail(self._io_error(OpenFailureError, error))
            return
        self._logger.debug(
            "Destination opened.", event="sink.opened", context={"fd": self.fd}
        )
        self._start()

    @transition(from_=SinkState.OPENING, to=SinkState.STREAMING)
    def _start(self) -> None:
        self._pull()

    @in_state(SinkState.STREAMING)
    def _pull(self) -> None:
        if self.buffer is None:
            self.buffer = bytearray(self.options.chunk_size)
        self._upstream.request(self.buffer)  # pyright: ignore[reportOptionalMemberAccess]

    @in_state(SinkState.STREAMING)
    def on_response(self, response: Response) -> None:
        match response.status:
            case Status.DATA if response.length == 0:
                self._pull()
            case Status.DATA:
                self._write(response)
            case Status.END:
                self._end()
            case Status.ERROR:
                self._fail(response.error)  # pyright: ignore[reportArgumentType]

    @transition(from_=SinkState.STREAMING, to=SinkState.WRITING)
    def _write(self, response: Response) -> None:
        self._chunk = response
        self._chunk_offset = 0
        self._stalls = 0
        self._write_remaining()

    def _write_remaining(self) -> None:
        chunk = self._chunk
        assert chunk is not None and chunk.buffer is not None
        position = None if self.options.flags == "append" else self.position
        self.fs.write(
            self.fd,  # pyright: ignore[reportArgumentType]
            chunk.buffer,
            self._chunk_offset,
            chunk.length - self._chunk_offset,
            position,
            self._on_write,
        )

    @in_state(SinkState.WRITING)
    def _on_write(self, future: Future[int]) -> None:
        try:
            count = future.result()
        except IO_FAILURES as error:
            self._fail(self._io_error(WriteFailureError, error))
            return
        chunk = self._chunk
        assert chunk is not None
        if count == 0:
            self._stalls += 1
            if self._stalls >= MAX_ZERO_PROGRESS_WRITES:
                msg = (
                    f"write failed for {self.display_path or self.fd}: no progress "
                    f"after {self._stalls} zero-byte writes at offset {self.position}"
                )
                self._fail(WriteFailureError(msg, path=self.display_path))
                return
            self._logger.warning(
                "Write made no progress; retrying.",
                event="sink.write_stalled",
                context={"position": self.position, "attempt": self._stalls},
            )
            self._write_remaining()
            return

        self._stalls = 0
        self.position += count
        self.bytes_written += count
        self._chunk_offset += count
        if self._chunk_offset < chunk.length:
            self._logger.debug(
                "Short write; continuing chunk.",
                event="sink.short_write",
                context={
                    "written": count,
                    "remaining": chunk.length - self._chunk_offset,
                },
            )
            self._write_remaining()
            return
        self._written()

    @transition(from_=SinkState.WRITING, to=SinkState.STREAMING)
    def _written(self) -> None:
        self.chunks_written += 1
        self._chunk = None
        self._logger.debug(
            "Chunk written.",
            event="sink.chunk_written",
            context={"position": self.position, "chunks": self.chunks_written},
        )
        self._pull()

    @transition(from_=SinkState.STREAMING, to=SinkState.CLOSING)
    def _end(self) -> None:
        fd = self.fd
        if fd is None or not self.options.auto_close:
            self._complete(None)
            return
        self.fd = None
        self.fs.close(fd, self._on_close)

    def _on_close(self, future: Future[None]) -> None:
        try:
            future.result()
        except IO_FAILURES as error:
            self._complete(self._io_error(CloseFailureError, error))
            return
        self._complete(None)

    @transition(
        from_=(SinkState.OPENING, SinkState.STREAMING, SinkState.WRITING),
        to=SinkState.CLOSING,
    )
    def _fail(self, error: PullPipeError) -> None:
        self._chunk = None
        self._logger.warning(
            "Chain failed; tearing down.",
            event="sink.failed",
            context={"error": str(error), "position": self.position},
        )
        upstream = self._upstream
        assert upstream is not None
        upstream.teardown(
            error,
            lambda: self._release(
                error, self.options.auto_close, lambda: self._complete(error)
            ),
        )

    @transition(from_=SinkState.CLOSING, to=SinkState.DONE)
    def _complete(self, error: PullPipeError | None) -> None:
        self._logger.info(
            "Chain finished.",
            event="sink.completed" if error is None else "sink.completed_with_error",
            context={
                "bytes_written": self.bytes_written,
                "chunks": self.chunks_written,
                "position": self.position,
                "error": None if error is None else str(error),
            },
        )
        token = self._token
        assert token is not None
        token(error)

    def __repr__(self) -> str:
        return (
            f"FileSink(path={self.display_path!r}, fd={self.fd}, "
            f"position={self.position}, state={self._state.name})"
        )
