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

"""Bind a chain, run its loop and report the outcome synchronously."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .errors import (
    InvalidArgumentError,
    InvalidStateError,
    PullPipeError,
    StateError,
)
from .fs import AsyncFileSystem, PathArg
from .runtime.logging import StructuredLogger, chain_scope, get_logger
from .stages import (
    FileSink,
    FileSource,
    SinkOptions,
    SinkState,
    SourceOptions,
    SourceState,
    Transform,
    TransformState,
)

__all__ = ["CopyResult", "copy_file", "pipe"]

logger: StructuredLogger = get_logger(__name__, context={"component": "pipeline"})


@dataclass(frozen=True, slots=True)
class CopyResult:
    """Summary of a chain that reached END."""

    bytes_written: int
    chunks_written: int
    position: int


def pipe(
    source: FileSource,
    *transforms: Transform,
    sink: FileSink,
) -> CopyResult:
    """Chain ``source`` through ``transforms`` into ``sink`` and run it.

    Transforms are listed in data-flow order, the one nearest the source
    first. The call returns once the sink has reported completion. Records
    logged while the chain runs share one ``chain`` label.

    Every stage must be unbound. Stages are checked before any of them is
    bound, so a rejected call leaves them reusable. Once binding starts the
    stages belong to this chain, and a failed run consumes them.

    Raises:
        InvalidArgumentError: If the stages run on different loops.
        InvalidStateError: If a stage is already bound.
        PullPipeError: The error the chain completed with.
        StateError: If the loop drained without the chain completing.
    """
    loop = sink.fs.loop
    if source.fs.loop is not loop:
        msg = "source and sink must share one filesystem loop"
        raise InvalidArgumentError(msg)
    _check_unbound(source, transforms, sink)

    with chain_scope():
        upstream: FileSource | Transform = source
        for transform in transforms:
            upstream = transform.bind_source(upstream)

        outcomes: list[PullPipeError | None] = []
        sink.bind_source(upstream, outcomes.append)
        loop.run()
        return _report(sink, outcomes)


def _report(sink: FileSink, outcomes: list[PullPipeError | None]) -> CopyResult:
    if not outcomes:
        msg = f"chain stalled before completion: {sink!r}"
        raise StateError(msg)
    error = outcomes[0]
    if error is not None:
        logger.error(
            "Chain failed.",
            event="pipeline.failed",
            context={"error": str(error), "sink": repr(sink)},
        )
        raise error
    result = CopyResult(
        bytes_written=sink.bytes_written,
        chunks_written=sink.chunks_written,
        position=sink.position,
    )
    logger.info(
        "Chain completed.",
        event="pipeline.completed",
        context={
            "bytes_written": result.bytes_written,
            "chunks": result.chunks_written,
        },
    )
    return result


def _check_unbound(
    source: FileSource, transforms: tuple[Transform, ...], sink: FileSink
) -> None:
    bound: list[object] = []
    if source.state is not SourceState.UNBOUND:
        bound.append(source)
    bound.extend(t for t in transforms if t.state is not TransformState.NEW)
    if sink.state is not SinkState.IDLE:
        bound.append(sink)
    if len(set(map(id, transforms))) != len(transforms):
        msg = "a transform appears more than once in the chain"
        raise InvalidStateError(msg)
    if bound:
        msg = f"stages already bound: {', '.join(map(repr, bound))}"
        raise InvalidStateError(msg)


def copy_file(
    src: PathArg,
    dst: PathArg,
    *,
    transforms: Iterable[Transform] = (),
    source_options: SourceOptions | dict[str, object] | str | None = None,
    sink_options: SinkOptions | dict[str, object] | str | None = None,
    fs: AsyncFileSystem | None = None,
) -> CopyResult:
    """Copy ``src`` to ``dst`` through ``transforms``.

    Example::

        result = copy_file("in.bin", "out.bin", sink_options={"chunk_size": 4096})
    """
    source = FileSource(src, source_options, fs=fs)
    sink = FileSink(dst, sink_options, fs=fs)
    return pipe(source, *transforms, sink=sink)
