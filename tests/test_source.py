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

"""Tests for FileSource."""

from __future__ import annotations

import errno

import pytest

from pullpipe.errors import (
    CloseFailureError,
    InvalidStateError,
    OpenFailureError,
    ReadFailureError,
)
from pullpipe.fs import AsyncFileSystem, MemoryFileOps
from pullpipe.link import LinkState, Status, connect
from pullpipe.stages import FileSink, FileSource, SourceState
from tests.helpers.chain import RecordingDownstream, run_chain


def _pull_all(
    source: FileSource, fs: AsyncFileSystem, chunk_size: int
) -> RecordingDownstream:
    """Pull from ``source`` until it terminates, one chunk per loop run."""
    downstream = RecordingDownstream()
    link = connect(source, downstream)
    buffer = bytearray(chunk_size)
    while link.state is not LinkState.TERMINATED:
        link.request(buffer)
        fs.loop.run()
    return downstream


class TestFileSourceReads:
    """Reading behaviour."""

    def test_one_read_per_pull(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """Each pull performs exactly one read at the current offset."""
        memory_ops.put("in.bin", b"abcdefghij")
        source = FileSource("in.bin", fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 4)

        assert downstream.payloads == [b"abcd", b"efgh", b"ij"]
        assert [r.status for r in downstream.responses] == [
            Status.DATA,
            Status.DATA,
            Status.DATA,
            Status.END,
        ]
        assert [(call.position, call.length) for call in memory_ops.reads] == [
            (0, 4),
            (4, 4),
            (8, 4),
            (10, 4),
        ]
        assert source.bytes_read == 10
        assert source.chunks_read == 3

    def test_no_read_ahead(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """Nothing is read until the next pull arrives."""
        memory_ops.put("in.bin", b"abcdefgh")
        source = FileSource("in.bin", fs=memory_fs)
        link = connect(source, RecordingDownstream())
        link.request(bytearray(4))
        memory_fs.loop.run()
        assert len(memory_ops.reads) == 1
        assert source.state is SourceState.IDLE

    def test_start_and_end_window(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """``start`` and the exclusive ``end`` bound what is read."""
        memory_ops.put("in.bin", b"0123456789")
        source = FileSource("in.bin", {"start": 2, "end": 7}, fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 4)
        assert b"".join(downstream.payloads) == b"23456"
        assert memory_ops.reads[-1].length == 1

    def test_end_at_start_reads_nothing(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """An empty window ends without a read."""
        memory_ops.put("in.bin", b"0123456789")
        source = FileSource("in.bin", {"start": 5, "end": 5}, fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 4)
        assert [r.status for r in downstream.responses] == [Status.END]
        assert memory_ops.reads == []

    def test_closes_before_end(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """The descriptor is closed by the time END is observed."""
        memory_ops.put("in.bin", b"abc")
        source = FileSource("in.bin", fs=memory_fs)
        _ = _pull_all(source, memory_fs, 8)
        assert memory_ops.open_fds == ()
        assert memory_ops.closed == ["in.bin"]
        assert source.state is SourceState.ENDED
        assert source.fd is None

    def test_without_auto_close_keeps_descriptor(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """``auto_close=False`` leaves a pre-opened descriptor to the caller."""
        memory_ops.put("in.bin", b"abc")
        fd = memory_ops.open("in.bin", "read", 0o666)
        source = FileSource(None, {"fd": fd, "auto_close": False}, fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 8)
        assert downstream.payloads == [b"abc"]
        assert memory_ops.open_fds == (fd,)


class TestFileSourceErrors:
    """Failures are reported as ERROR responses."""

    def test_missing_file(self, memory_fs: AsyncFileSystem) -> None:
        """A failed open replies ERROR(OpenFailureError)."""
        source = FileSource("missing.bin", fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 8)
        (response,) = downstream.responses
        assert response.status is Status.ERROR
        assert isinstance(response.error, OpenFailureError)
        assert response.error.errno == errno.ENOENT
        assert response.error.path == "missing.bin"
        assert source.state is SourceState.FAILED

    def test_read_failure(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """A failed read replies ERROR(ReadFailureError)."""
        memory_ops.put("in.bin", b"abcdefgh")
        memory_ops.fail_read_after = 1
        source = FileSource("in.bin", fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 4)
        assert downstream.payloads == [b"abcd"]
        assert isinstance(downstream.responses[-1].error, ReadFailureError)

    def test_close_failure_replaces_end(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """A close failure at end of input is reported instead of END."""
        memory_ops.put("in.bin", b"abc")
        memory_ops.fail_close.add("in.bin")
        source = FileSource("in.bin", fs=memory_fs)
        downstream = _pull_all(source, memory_fs, 8)
        assert downstream.payloads == [b"abc"]
        final = downstream.responses[-1]
        assert final.status is Status.ERROR
        assert isinstance(final.error, CloseFailureError)


class TestFileSourceBinding:
    """Binding rules."""

    def test_second_bind_rejected(self, memory_fs: AsyncFileSystem) -> None:
        """A source serves exactly one downstream."""
        source = FileSource("in.bin", fs=memory_fs)
        _ = connect(source, RecordingDownstream())
        with pytest.raises(InvalidStateError):
            _ = connect(source, RecordingDownstream())

    def test_second_sink_rejected_and_left_unbound(
        self, memory_ops: MemoryFileOps, memory_fs: AsyncFileSystem
    ) -> None:
        """A sink whose bind fails can still be bound elsewhere."""
        memory_ops.put("in.bin", b"abc")
        memory_ops.put("other.bin", b"xyz")
        source = FileSource("in.bin", fs=memory_fs)
        first = FileSink("a.bin", fs=memory_fs)
        second = FileSink("b.bin", fs=memory_fs)
        first.bind_source(source, lambda error: None)
        with pytest.raises(InvalidStateError):
            second.bind_source(source, lambda error: None)

        recorder = run_chain(FileSource("other.bin", fs=memory_fs), sink=second)
        assert recorder.error is None
        assert memory_ops.get("b.bin") == b"xyz"
        assert memory_ops.get("a.bin") == b"abc"

    def test_link_before_bind(self, memory_fs: AsyncFileSystem) -> None:
        """An unbound source has no link."""
        with pytest.raises(InvalidStateError):
            _ = FileSource("in.bin", fs=memory_fs).link

    def test_repr(self, memory_fs: AsyncFileSystem) -> None:
        """The repr names the path and state."""
        source = FileSource("in.bin", fs=memory_fs)
        assert repr(source) == (
            "FileSource(path='in.bin', fd=None, position=0, state=UNBOUND)"
        )
