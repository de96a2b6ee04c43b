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

"""Chain stages: the file source, the file sink and transforms between them.

Example usage::

    from pullpipe.fs import AsyncFileSystem
    from pullpipe.stages import FileSink, FileSource, TranslateTransform

    fs = AsyncFileSystem.in_memory()
    source = FileSource("in.txt", fs=fs)
    sink = FileSink("out.txt", {"chunk_size": 4096}, fs=fs)
    sink.bind_source(TranslateTransform.uppercase().bind_source(source), print)
    fs.loop.run()
"""

from __future__ import annotations

from ._options import (
    BUFFER_ENCODING,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_ENCODING,
    DEFAULT_MODE,
    MAX_OFFSET,
    SinkOptions,
    SourceOptions,
    check_encoding,
)
from ._sink import MAX_ZERO_PROGRESS_WRITES, FileSink, SinkState
from ._source import FileSource, SourceState
from ._transform import (
    DigestTransform,
    MapTransform,
    PassThrough,
    TranscodeTransform,
    Transform,
    TransformState,
    TranslateTransform,
)

__all__ = [
    "BUFFER_ENCODING",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_ENCODING",
    "DEFAULT_MODE",
    "MAX_OFFSET",
    "MAX_ZERO_PROGRESS_WRITES",
    "DigestTransform",
    "FileSink",
    "FileSource",
    "MapTransform",
    "PassThrough",
    "SinkOptions",
    "SinkState",
    "SourceOptions",
    "SourceState",
    "TranscodeTransform",
    "Transform",
    "TransformState",
    "TranslateTransform",
    "check_encoding",
]
