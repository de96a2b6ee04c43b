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

"""Shared plumbing for the descriptor-owning stages."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..errors import (
    IO_FAILURES,
    ChainIOError,
    CloseFailureError,
    PullPipeError,
    describe_path,
)
from ..fs import AsyncFileSystem, PathArg, get_default_filesystem
from ..runtime.logging import StructuredLogger, get_logger
from ..threading import Future

__all__ = ["FileStage"]


class FileStage:
    """Descriptor bookkeeping shared by :class:`FileSource` and :class:`FileSink`.

    A stage either receives a pre-opened ``fd`` or opens ``path`` lazily.
    ``fs`` defaults to the host filesystem of the thread that first uses
    the stage, so construction itself performs no I/O.
    """

    role: str = "stage"

    def __init__(
        self,
        path: PathArg | None,
        fd: int | None,
        *,
        fs: AsyncFileSystem | None,
        logger: logging.Logger | StructuredLogger | None,
    ) -> None:
        self.path = path
        self.fd = fd
        self._fs = fs
        self._logger = get_logger(
            f"pullpipe.stages.{self.role}",
            logger_override=logger,
            context={"stage": self.role, "path": self.display_path},
        )

    @property
    def fs(self) -> AsyncFileSystem:
        if self._fs is None:
            self._fs = get_default_filesystem()
        return self._fs

    @property
    def display_path(self) -> str | None:
        return describe_path(self.path)

    def _io_error(self, kind: type[ChainIOError], error: Exception) -> ChainIOError:
        return kind.from_failure(error, path=self.display_path)

    def _release(
        self,
        error: PullPipeError,
        auto_close: bool,
        done: Callable[[], None],
    ) -> None:
        """Close the descriptor after a chain failure, then call ``done``.

        A close failure here cannot replace ``error``, which is the one the
        completion callback receives; it is logged and attached as a note.
        """
        fd = self.fd
        if fd is None or not auto_close:
            done()
            return
        self.fd = None

        def on_close(future: Future[None]) -> None:
            try:
                future.result()
            except IO_FAILURES as close_error:
                failure = self._io_error(CloseFailureError, close_error)
                error.add_note(f"{self.role} teardown: {failure}")
                self._logger.warning(
                    "Descriptor close failed during teardown.",
                    event=f"{self.role}.teardown_close_failed",
                    context={"fd": fd, "error": str(failure)},
                )
            else:
                self._logger.debug(
                    "Descriptor closed during teardown.",
                    event=f"{self.role}.teardown_closed",
                    context={"fd": fd},
                )
            done()

        self.fs.close(fd, on_close)
