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

"""Filesystem collaborators for the chain's Source and Sink stages.

``FileOps`` is the blocking, descriptor-level contract (open, read, write,
close). ``HostFileOps`` implements it with the ``os`` module and
``MemoryFileOps`` in memory with fault injection. ``AsyncFileSystem`` runs
either one on a completion loop, which is the interface stages use.

Example usage::

    from pullpipe.fs import AsyncFileSystem, MemoryFileOps

    ops = MemoryFileOps()
    ops.put("in.bin", b"payload")
    fs = AsyncFileSystem.in_memory(ops)
"""

from __future__ import annotations

from ._async import AsyncFileSystem, get_default_filesystem
from ._memory import MemoryFileOps, ReadCall, WriteCall
from ._ops import (
    OPEN_FLAGS,
    FileOps,
    HostFileOps,
    OpenFlags,
    PathArg,
    ReadFlags,
    WriteFlags,
)

__all__ = [
    "OPEN_FLAGS",
    "AsyncFileSystem",
    "FileOps",
    "HostFileOps",
    "MemoryFileOps",
    "OpenFlags",
    "PathArg",
    "ReadCall",
    "ReadFlags",
    "WriteCall",
    "WriteFlags",
    "get_default_filesystem",
]
