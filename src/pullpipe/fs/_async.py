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

"""Completion-driven adapter over blocking filesystem primitives."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..runtime.loop import CompletionCallback, CompletionLoop
from ..threading import FakeExecutor, SystemExecutor
from ._memory import MemoryFileOps
from ._ops import FileOps, HostFileOps, OpenFlags, PathArg

__all__ = [
    "AsyncFileSystem",
    "get_default_filesystem",
]


@dataclass(slots=True)
class AsyncFileSystem:
    """Runs :class:`FileOps` on a :class:`CompletionLoop`.

    Each operation returns immediately. Its outcome reaches ``callback`` as
    a completed future on a later loop turn::

        def on_open(future: Future[int]) -> None:
            fd = future.result()  # raises the OSError on failure

        fs.open("out.bin", "truncate", 0o666, on_open)
        fs.loop.run()
    """

    ops: FileOps = field(default_factory=HostFileOps)
    loop: CompletionLoop = field(default_factory=CompletionLoop)

    @classmethod
    def in_memory(cls, ops: MemoryFileOps | None = None) -> AsyncFileSystem:
        """Return a deterministic filesystem over :class:`MemoryFileOps`."""
        return cls(
            ops=ops if ops is not None else MemoryFileOps(),
            loop=CompletionLoop(executor=FakeExecutor()),
        )

    def open(
        self,
        path: PathArg,
        flags: OpenFlags,
        mode: int,
        callback: CompletionCallback[int],
    ) -> None:
        self.loop.submit(lambda: self.ops.open(path, flags, mode), callback)

    def read(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
        callback: CompletionCallback[int],
    ) -> None:
        self.loop.submit(
            lambda: self.ops.read(fd, buffer, offset, length, position), callback
        )

    def write(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
        callback: CompletionCallback[int],
    ) -> None:
        self.loop.submit(
            lambda: self.ops.write(fd, buffer, offset, length, position), callback
        )

    def close(self, fd: int, callback: CompletionCallback[None]) -> None:
        self.loop.submit(lambda: self.ops.close(fd), callback)


_default_lock = threading.Lock()
_default_executor: SystemExecutor | None = None
_thread_defaults = threading.local()


def get_default_filesystem() -> AsyncFileSystem:
    """Return the calling thread's host filesystem.

    Stages constructed without ``fs`` in one thread share it, so a source
    and a sink built independently still run on the same loop. Every
    thread gets its own loop; all of them submit to one shared worker pool.
    """

    filesystem: AsyncFileSystem | None = getattr(_thread_defaults, "filesystem", None)
    if filesystem is None:
        filesystem = AsyncFileSystem(
            ops=HostFileOps(),
            loop=CompletionLoop(executor=_shared_executor()),
        )
        _thread_defaults.filesystem = filesystem
    return filesystem


def _shared_executor() -> SystemExecutor:
    global _default_executor
    with _default_lock:
        if _default_executor is None:
            _default_executor = SystemExecutor(max_workers=None)
        return _default_executor
