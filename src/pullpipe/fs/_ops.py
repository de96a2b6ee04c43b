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

"""Blocking filesystem primitives consumed by the stages.

Stages never call these directly: :class:`~pullpipe.fs.AsyncFileSystem`
runs them on the loop's executor and reports completion through a callback.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Final, Literal, Protocol, runtime_checkable

__all__ = [
    "OPEN_FLAGS",
    "FileOps",
    "HostFileOps",
    "OpenFlags",
    "PathArg",
    "ReadFlags",
    "WriteFlags",
]

type PathArg = str | bytes | os.PathLike[str] | os.PathLike[bytes]

ReadFlags = Literal["read"]
WriteFlags = Literal["truncate", "exclusive", "append", "update"]
OpenFlags = Literal["read", "truncate", "exclusive", "append", "update"]

_BINARY: Final[int] = getattr(os, "O_BINARY", 0)

#: ``os.open`` flag bits for each named open mode.
OPEN_FLAGS: Final[Mapping[str, int]] = {
    "read": os.O_RDONLY | _BINARY,
    "truncate": os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _BINARY,
    "exclusive": os.O_WRONLY | os.O_CREAT | os.O_EXCL | _BINARY,
    "append": os.O_WRONLY | os.O_CREAT | os.O_APPEND | _BINARY,
    "update": os.O_WRONLY | os.O_CREAT | _BINARY,
}


@runtime_checkable
class FileOps(Protocol):
    """Descriptor-level filesystem primitives.

    Every method may raise :class:`OSError`; callers translate it into the
    matching chain error. ``position=None`` means "at the descriptor's own
    offset", which is what append mode needs.
    """

    def open(self, path: PathArg, flags: OpenFlags, mode: int) -> int:
        """Open ``path`` and return a descriptor."""
        ...

    def read(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        """Read up to ``length`` bytes into ``buffer[offset:]``.

        Returns:
            Bytes read; 0 at end of input.
        """
        ...

    def write(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        """Write ``buffer[offset:offset + length]`` and return the confirmed count."""
        ...

    def close(self, fd: int) -> None:
        """Close ``fd``."""
        ...


class HostFileOps:
    """:class:`FileOps` backed by the host's ``os`` module.

    Reads use ``os.preadv`` straight into the caller's buffer, so the shared
    buffer is filled without an intermediate copy. Positional I/O requires a
    POSIX host.
    """

    def open(self, path: PathArg, flags: OpenFlags, mode: int) -> int:
        return os.open(path, OPEN_FLAGS[flags], mode)

    def read(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        target = memoryview(buffer)[offset : offset + length]
        if position is None:
            return os.readv(fd, [target])
        return os.preadv(fd, [target], position)

    def write(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        source = memoryview(buffer)[offset : offset + length]
        if position is None:
            return os.write(fd, source)
        return os.pwrite(fd, source, position)

    def close(self, fd: int) -> None:
        os.close(fd)

    def __repr__(self) -> str:
        return "HostFileOps()"
