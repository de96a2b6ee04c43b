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

"""Pull-driven byte chains: copy or transform a file through linked stages.

A :class:`~pullpipe.stages.FileSink` pulls from its upstream through a
:class:`~pullpipe.link.Link`. Every transform in between relays the pull, and
a :class:`~pullpipe.stages.FileSource` performs the read. One buffer owned
by the sink is reused for every chunk, and each link allows a single
outstanding pull.
"""

from __future__ import annotations

from .errors import (
    ChainIOError,
    CloseFailureError,
    CompletionError,
    InvalidArgumentError,
    InvalidCallbackError,
    InvalidStateError,
    OpenFailureError,
    OutOfRangeError,
    PullPipeError,
    ReadFailureError,
    StateError,
    TransformError,
    UnknownEncodingError,
    WriteFailureError,
)
from .fs import AsyncFileSystem, HostFileOps, MemoryFileOps
from .link import Link, LinkState, Response, Status
from .pipeline import CopyResult, copy_file, pipe
from .stages import (
    DigestTransform,
    FileSink,
    FileSource,
    MapTransform,
    PassThrough,
    SinkOptions,
    SourceOptions,
    TranscodeTransform,
    Transform,
    TranslateTransform,
)

__all__ = [
    "AsyncFileSystem",
    "ChainIOError",
    "CloseFailureError",
    "CompletionError",
    "CopyResult",
    "DigestTransform",
    "FileSink",
    "FileSource",
    "HostFileOps",
    "InvalidArgumentError",
    "InvalidCallbackError",
    "InvalidStateError",
    "Link",
    "LinkState",
    "MapTransform",
    "MemoryFileOps",
    "OpenFailureError",
    "OutOfRangeError",
    "PassThrough",
    "PullPipeError",
    "ReadFailureError",
    "Response",
    "SinkOptions",
    "SourceOptions",
    "StateError",
    "Status",
    "TranscodeTransform",
    "Transform",
    "TransformError",
    "TranslateTransform",
    "UnknownEncodingError",
    "WriteFailureError",
    "copy_file",
    "pipe",
]
