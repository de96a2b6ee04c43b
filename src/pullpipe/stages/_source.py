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

"""File-backed source stage."""

from __future__ import annotations

import logging
from enum import Enum, auto
from functools import partial

from ..errors import (
    IO_FAILURES,
    CloseFailureError,
    InvalidStateError,
    OpenFailureError,
    PullPipeError,
    ReadFailureError,
)
from ..fs import AsyncFileSystem, PathArg
from ..link import (
    Link,
    Response,
    TeardownCallback,
    UpstreamStage,
    enters,
    state_machine,
    transition,
)
from ..runtime.logging import StructuredLogger
from ..threading import Future
from ._base import FileStage
from ._options import SourceOptions, resolve_path, resolve_source_options

__all__ = ["FileSource", "SourceState"]


class SourceState(Enum):
    UNBOUND = auto()
    IDLE = auto()
    READING = auto()
    ENDED = auto()
    FAILED = auto()
    CLOSED = auto()


@state_machine(state_var="_state", states=SourceState, initial=SourceState.UNBOUND)
class FileSource(FileStage, UpstreamStage):
    """Reads an origin file into whatever buffer the downstream lends it.

    Each pull performs exactly one physical read at the current read offset
    and answers with DATA, END (end of input, or the ``end`` offset) or
    ERROR. The descriptor is opened on the first pull and, with
    ``auto_close``, closed before END is sent.

    Example::

        source = FileSource("in.bin", {"start": 128})
        sink = FileSink("out.bin")
        sink.bind_source(source, on_complete)
    """

    role = "source"
    _state: SourceState

    def __init__(
        self,
        path: PathArg | None = None,
        options: SourceOptions | dict[str, object] | str | None = None,
        *,
        fs: AsyncFileSystem | None = None,
        logger: logging.Logger | StructuredLogger | None = None,
    ) -> None:
        self.options = resolve_source_options(options)
        super().__init__(
            resolve_path(path, self.options.fd),
            self.options.fd,
            fs=fs,
            logger=logger,
        )
        self.position = self.options.start or 0
        self.bytes_read = 0
        self.chunks_read = 0
        self._downstream: Link | None = None

    @property
    def state(self) -> SourceState:
        return self._state

    @property
    def encoding(self) -> str:
        return self.options.encoding

    @property
    def link(self) -> Link:
        if self._downstream is None:
            raise InvalidStateError(
                type(self), "link", self._state, (SourceState.IDLE,)
            )
        return self._downstream

    @transition(from_=SourceState.UNBOUND, to=SourceState.IDLE)
    def bind_sink(self, link: Link) -> None:
        self._downstream = link

    @transition(from_=SourceState.IDLE, to=SourceState.READING)
    def fulfill(self, buffer: bytearray) -> None:
        if self.fd is None:
            self.fs.open(
                self.path,  # pyright: ignore[reportArgumentType]
                self.options.flags,
                self.options.mode,
                partial(self._on_open, buffer),
            )
            return
        self._read(buffer)

    def _on_open(self, buffer: bytearray, future: Future[int]) -> None:
        try:
            self.fd = future.result()
        except IO_FAILURES as error:
            self._fail(self._io_error(OpenFailureError, error))
            return
        self._logger.debug(
            "Origin opened.", event="source.opened", context={"fd": self.fd}
        )
        self._read(buffer)

    def _read(self, buffer: bytearray) -> None:
        length = len(buffer)
        if self.options.end is not None:
            length = min(length, self.options.end - self.position)
        if length <= 0:
            self._finish()
            return
        self.fs.read(
            self.fd,  # pyright: ignore[reportArgumentType]
            buffer,
            0,
            length,
            self.position,
            partial(self._on_read, buffer),
        )

    def _on_read(self, buffer: bytearray, future: Future[int]) -> None:
        try:
            count = future.result()
        except IO_FAILURES as error:
            self._fail(self._io_error(ReadFailureError, error))
            return
        if count == 0:
            self._finish()
            return
        self.position += count
        self.bytes_read += count
        self.chunks_read += 1
        self._logger.debug(
            "Chunk read.",
            event="source.chunk_read",
            context={"bytes": count, "position": self.position},
        )
        self._deliver(buffer, count)

    @transition(from_=SourceState.READING, to=SourceState.IDLE)
    def _deliver(self, buffer: bytearray, count: int) -> None:
        self.link.respond(Response.data(buffer, count))

    @transition(from_=SourceState.READING, to=SourceState.ENDED)
    def _finish(self) -> None:
        fd = self.fd
        if fd is None or not self.options.auto_close:
            self._end()
            return
        self.fd = None
        self.fs.close(fd, self._on_close)

    def _on_close(self, future: Future[None]) -> None:
        try:
            future.result()
        except IO_FAILURES as error:
            self.link.respond(
                Response.failed(self._io_error(CloseFailureError, error))
            )
            return
        self._end()

    def _end(self) -> None:
        self._logger.debug(
            "Origin exhausted.",
            event="source.end",
            context={"bytes_read": self.bytes_read, "chunks": self.chunks_read},
        )
        self.link.respond(Response.end())

    @transition(from_=SourceState.READING, to=SourceState.FAILED)
    def _fail(self, error: PullPipeError) -> None:
        self._logger.warning(
            "Source failed.",
            event="source.failed",
            context={"error": str(error), "position": self.position},
        )
        self.link.respond(Response.failed(error))

    @enters(SourceState.CLOSED)
    def teardown(self, error: PullPipeError, done: TeardownCallback) -> None:
        self._release(error, self.options.auto_close, done)

    def __repr__(self) -> str:
        return (
            f"FileSource(path={self.display_path!r}, fd={self.fd}, "
            f"position={self.position}, state={self._state.name})"
        )
