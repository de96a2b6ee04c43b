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

"""In-memory filesystem primitives with fault injection.

:class:`MemoryFileOps` keeps file contents in ``bytearray`` objects keyed by
path. It records every call so tests can assert on chunk sizes, positions
and buffer identity. Its fault fields simulate the failures a host
filesystem produces only rarely, such as short writes, stalled writes and
failing closes.
"""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass, field

from ._ops import OpenFlags, PathArg

__all__ = [
    "MemoryFileOps",
    "ReadCall",
    "WriteCall",
]


@dataclass(slots=True, frozen=True)
class ReadCall:
    """One completed ``read`` call."""

    fd: int
    buffer_id: int
    length: int
    position: int | None
    count: int


@dataclass(slots=True, frozen=True)
class WriteCall:
    """One completed ``write`` call."""

    fd: int
    length: int
    position: int | None
    count: int


@dataclass(slots=True)
class _Handle:
    path: str
    flags: OpenFlags
    offset: int = 0


def _error(code: int, path: str | None = None) -> OSError:
    return OSError(code, os.strerror(code), path)


@dataclass
class MemoryFileOps:
    """:class:`~pullpipe.fs.FileOps` over an in-memory dict of files.

    Example::

        ops = MemoryFileOps()
        ops.put("in.bin", b"payload")
        fs = AsyncFileSystem.in_memory(ops)

    Fault injection:
        ``fail_open``/``fail_close``: paths whose open/close raises.
        ``fail_read_after``/``fail_write_after``: number of calls that
        succeed before every further call raises ``EIO``.
        ``max_write``: cap on bytes confirmed per write (short writes).
        ``zero_writes``: number of writes that confirm 0 bytes before
        writes start making progress.
    """

    files: dict[str, bytearray] = field(default_factory=dict)
    fail_open: set[str] = field(default_factory=set)
    fail_close: set[str] = field(default_factory=set)
    fail_read_after: int | None = None
    fail_write_after: int | None = None
    max_write: int | None = None
    zero_writes: int = 0
    reads: list[ReadCall] = field(default_factory=list)
    writes: list[WriteCall] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    _handles: dict[int, _Handle] = field(default_factory=dict, repr=False)
    _next_fd: int = field(default=3, repr=False)

    def put(self, path: str, content: bytes) -> None:
        """Create or replace ``path`` with ``content``."""
        self.files[path] = bytearray(content)

    def get(self, path: str) -> bytes:
        """Return the current content of ``path``.

        Raises:
            FileNotFoundError: If no such file exists.
        """
        try:
            return bytes(self.files[path])
        except KeyError:
            raise FileNotFoundError(path) from None

    @property
    def open_fds(self) -> tuple[int, ...]:
        """Descriptors opened and not yet closed."""
        return tuple(self._handles)

    def open(self, path: PathArg, flags: OpenFlags, mode: int) -> int:
        del mode  # permissions are not modelled
        key = os.fsdecode(path)
        if key in self.fail_open:
            raise _error(errno.EACCES, key)
        exists = key in self.files
        if flags == "read":
            if not exists:
                raise _error(errno.ENOENT, key)
        elif flags == "exclusive" and exists:
            raise _error(errno.EEXIST, key)
        elif flags in {"truncate", "exclusive"} or not exists:
            self.files[key] = bytearray()
        fd = self._next_fd
        self._next_fd += 1
        self._handles[fd] = _Handle(path=key, flags=flags)
        return fd

    def read(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        handle = self._handle(fd)
        if handle.flags != "read":
            raise _error(errno.EBADF, handle.path)
        if (
            self.fail_read_after is not None
            and len(self.reads) >= self.fail_read_after
        ):
            raise _error(errno.EIO, handle.path)
        content = self.files[handle.path]
        start = handle.offset if position is None else position
        data = content[start : start + length]
        count = len(data)
        buffer[offset : offset + count] = data
        if position is None:
            handle.offset += count
        self.reads.append(
            ReadCall(
                fd=fd,
                buffer_id=id(buffer),
                length=length,
                position=position,
                count=count,
            )
        )
        return count

    def write(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        handle = self._handle(fd)
        if handle.flags == "read":
            raise _error(errno.EBADF, handle.path)
        if (
            self.fail_write_after is not None
            and len(self.writes) >= self.fail_write_after
        ):
            raise _error(errno.EIO, handle.path)
        if self.zero_writes > 0:
            self.zero_writes -= 1
            self.writes.append(
                WriteCall(fd=fd, length=length, position=position, count=0)
            )
            return 0
        count = length if self.max_write is None else min(length, self.max_write)
        content = self.files[handle.path]
        if handle.flags == "append" or position is None:
            start = len(content) if handle.flags == "append" else handle.offset
        else:
            start = position
        if start > len(content):
            content.extend(bytes(start - len(content)))
        content[start : start + count] = buffer[offset : offset + count]
        if position is None:
            handle.offset = start + count
        self.writes.append(
            WriteCall(fd=fd, length=length, position=position, count=count)
        )
        return count

    def close(self, fd: int) -> None:
        handle = self._handles.pop(fd, None)
        if handle is None:
            raise _error(errno.EBADF)
        self.closed.append(handle.path)
        if handle.path in self.fail_close:
            raise _error(errno.EIO, handle.path)

    def _handle(self, fd: int) -> _Handle:
        try:
            return self._handles[fd]
        except KeyError:
            raise _error(errno.EBADF) from None
