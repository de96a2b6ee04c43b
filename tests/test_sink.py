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

"""Tests for FileSink and whole source-to-sink chains."""

from __future__ import annotations

import errno
import logging

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from pullpipe.errors import (
    CloseFailureError,
    InvalidCallbackError,
    InvalidStateError,
    OpenFailureError,
    ReadFailureError,
    WriteFailureError,
)
from pullpipe.fs import AsyncFileSystem, MemoryFileOps
from pullpipe.link import LinkState, Response, Status
from pullpipe.stages import (
    MAX_ZERO_PROGRESS_WRITES,
    FileSink,
    FileSource,
    SinkState,
)
from tests.helpers.chain import Recorder, ScriptedUpstream, run_chain


class _OverflowingOps(MemoryFileOps):
    """Raises the non-``OSError`` failures of positional I/O at huge offsets."""

    def __init__(self, *, fail: str) -> None:
        super().__init__()
        self.fail = fail

    def read(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        if self.fail == "read":
            raise ValueError("negative or too large file offset")
        return super().read(fd, buffer, offset, length, position)

    def write(
        self,
        fd: int,
        buffer: bytearray,
        offset: int,
        length: int,
        position: int | None,
    ) -> int:
        if self.fail == "write":
            raise OverflowError("Python int too large to convert to C long")
        return super().write(fd, buffer, offset, length, position)


def _chain(
    ops: MemoryFileOps,
    content: bytes,
    *,
    sink_options: dict[str, object] | None = None,
    source_options: dict[str, object] | None = None,
) -> tuple[FileSource, FileSink, Recorder]:
    ops.put("in.bin", content)
    fs = AsyncFileSystem.in_memory(ops)
    source = FileSource("in.bin", source_options, fs=fs)
    sink = FileSink("out.bin", sink_options, fs=fs)
    return source, sink, run_chain(source, sink=sink)


class TestCopy:
    """Successful copies."""

    def test_reference_scenario(self, memory_ops: MemoryFileOps) -> None:
        """200,000 bytes in 65,536-byte chunks: four DATA, then END."""
        content = bytes(range(256)) * 781 + bytes(64)
        assert len(content) == 200_000
        _, sink, recorder = _chain(memory_ops, content)

        assert recorder.calls == [None]
        assert memory_ops.get("out.bin") == content
        assert [call.count for call in memory_ops.writes] == [
            65_536,
            65_536,
            65_536,
            3_392,
        ]
        link = sink.link
        assert link is not None
        assert link.chunks == 4
        assert link.terminal is not None
        assert link.terminal.status is Status.END
        assert sink.position == 200_000
        assert sink.bytes_written == 200_000
        assert sink.chunks_written == 4
        assert sink.state is SinkState.DONE
        assert memory_ops.open_fds == ()

    def test_empty_copy_creates_empty_file(self, memory_ops: MemoryFileOps) -> None:
        """Copying nothing still creates the destination."""
        _, sink, recorder = _chain(memory_ops, b"")
        assert recorder.calls == [None]
        assert memory_ops.get("out.bin") == b""
        assert memory_ops.writes == []
        assert sink.position == 0

    def test_buffer_is_reused(self, memory_ops: MemoryFileOps) -> None:
        """Every read targets the sink's one shared buffer."""
        _, sink, _ = _chain(memory_ops, b"x" * 1000, sink_options={"chunk_size": 64})
        assert sink.buffer is not None
        assert len(sink.buffer) == 64
        assert {call.buffer_id for call in memory_ops.reads} == {id(sink.buffer)}

    def test_start_offset(self, memory_ops: MemoryFileOps) -> None:
        """Writes begin at ``start``; the cursor ends at start plus bytes."""
        memory_ops.put("out.bin", b"0123456789")
        _, sink, recorder = _chain(
            memory_ops, b"abc", sink_options={"start": 4, "flags": "update"}
        )
        assert recorder.error is None
        assert memory_ops.get("out.bin") == b"0123abc789"
        assert sink.position == 7
        assert memory_ops.writes[0].position == 4

    def test_truncate_with_start_zero_fills(self, memory_ops: MemoryFileOps) -> None:
        """Starting past the end of a truncated file leaves a gap of zeros."""
        _, _, recorder = _chain(memory_ops, b"abc", sink_options={"start": 2})
        assert recorder.error is None
        assert memory_ops.get("out.bin") == b"\x00\x00abc"

    def test_append(self, memory_ops: MemoryFileOps) -> None:
        """Append mode writes at the end, without a position."""
        memory_ops.put("out.bin", b"head:")
        _, _, recorder = _chain(
            memory_ops, b"tail", sink_options={"flags": "append", "chunk_size": 2}
        )
        assert recorder.error is None
        assert memory_ops.get("out.bin") == b"head:tail"
        assert {call.position for call in memory_ops.writes} == {None}

    def test_short_writes_are_continued(self, memory_ops: MemoryFileOps) -> None:
        """A short write is finished before the next pull."""
        memory_ops.max_write = 3
        content = bytes(range(20))
        _, sink, recorder = _chain(memory_ops, content, sink_options={"chunk_size": 8})
        assert recorder.error is None
        assert memory_ops.get("out.bin") == content
        assert sink.chunks_written == 3
        assert [call.position for call in memory_ops.writes] == [
            0, 3, 6, 8, 11, 14, 16, 19,
        ]
        assert len(memory_ops.reads) == 4

    def test_long_chain_does_not_recurse(self, memory_ops: MemoryFileOps) -> None:
        """Thousands of chunks complete with a flat stack."""
        content = bytes(range(256)) * 12
        _, sink, recorder = _chain(memory_ops, content, sink_options={"chunk_size": 1})
        assert recorder.error is None
        assert sink.chunks_written == len(content)
        assert memory_ops.get("out.bin") == content

    def test_pre_opened_destination(self, memory_ops: MemoryFileOps) -> None:
        """A destination ``fd`` skips the open and is closed on END."""
        memory_ops.put("in.bin", b"data")
        fd = memory_ops.open("out.bin", "truncate", 0o666)
        fs = AsyncFileSystem.in_memory(memory_ops)
        sink = FileSink(None, {"fd": fd}, fs=fs)
        recorder = run_chain(FileSource("in.bin", fs=fs), sink=sink)
        assert recorder.error is None
        assert memory_ops.get("out.bin") == b"data"
        assert memory_ops.open_fds == ()

    def test_logs_completion(
        self, memory_ops: MemoryFileOps, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Completion is logged with its event name and byte count."""
        with caplog.at_level(logging.INFO, logger="pullpipe.stages.sink"):
            _ = _chain(memory_ops, b"hello")
        (record,) = [
            r for r in caplog.records if getattr(r, "event", None) == "sink.completed"
        ]
        assert record.context["bytes_written"] == 5
        assert record.context["stage"] == "sink"


class TestCopyProperties:
    """Property tests over content and chunk sizes."""

    @given(
        content=st.binary(max_size=2_048),
        chunk_size=st.integers(min_value=1, max_value=512),
        start=st.integers(min_value=0, max_value=64),
    )
    @settings(max_examples=75, deadline=None)
    def test_copy_is_chunk_size_independent(
        self, content: bytes, chunk_size: int, start: int
    ) -> None:
        """Output and cursor depend only on the content and start."""
        ops = MemoryFileOps()
        _, sink, recorder = _chain(
            ops, content, sink_options={"chunk_size": chunk_size, "start": start}
        )
        assert recorder.calls == [None]
        assert ops.get("out.bin")[start:] == content
        assert sink.position == start + len(content)
        assert sink.bytes_written == len(content)
        assert sink.chunks_written == -(-len(content) // chunk_size)

    @given(
        content=st.binary(min_size=1, max_size=512),
        chunk_size=st.integers(min_value=1, max_value=64),
        max_write=st.integers(min_value=1, max_value=16),
    )
    @settings(max_examples=50, deadline=None)
    def test_cursor_tracks_confirmed_bytes(
        self, content: bytes, chunk_size: int, max_write: int
    ) -> None:
        """The cursor advances by exactly the confirmed counts."""
        ops = MemoryFileOps(max_write=max_write)
        _, sink, recorder = _chain(
            ops, content, sink_options={"chunk_size": chunk_size}
        )
        assert recorder.calls == [None]
        assert sink.position == sum(call.count for call in ops.writes)
        positions = [call.position for call in ops.writes]
        assert positions == sorted(positions)
        assert ops.get("out.bin") == content


class TestFailures:
    """Error-driven teardown."""

    def test_missing_source(self, memory_ops: MemoryFileOps) -> None:
        """An open failure upstream reaches the callback once."""
        fs = AsyncFileSystem.in_memory(memory_ops)
        sink = FileSink("out.bin", fs=fs)
        recorder = run_chain(FileSource("missing.bin", fs=fs), sink=sink)
        error = recorder.error
        assert isinstance(error, OpenFailureError)
        assert error.errno == errno.ENOENT
        assert memory_ops.open_fds == ()
        assert sink.state is SinkState.DONE

    def test_destination_open_failure(self, memory_ops: MemoryFileOps) -> None:
        """An exclusive open of an existing file fails without reading."""
        memory_ops.put("out.bin", b"keep")
        _, sink, recorder = _chain(
            memory_ops, b"data", sink_options={"flags": "exclusive"}
        )
        error = recorder.error
        assert isinstance(error, OpenFailureError)
        assert error.errno == errno.EEXIST
        assert memory_ops.reads == []
        assert memory_ops.get("out.bin") == b"keep"
        assert sink.link is not None
        assert sink.link.pulls == 0

    def test_read_failure_tears_down(self, memory_ops: MemoryFileOps) -> None:
        """A read error closes both descriptors and stops pulling."""
        memory_ops.fail_read_after = 2
        source, sink, recorder = _chain(
            memory_ops, b"x" * 100, sink_options={"chunk_size": 10}
        )
        assert isinstance(recorder.error, ReadFailureError)
        assert memory_ops.open_fds == ()
        assert sorted(memory_ops.closed) == ["in.bin", "out.bin"]
        assert memory_ops.get("out.bin") == b"x" * 20
        assert sink.link is not None
        assert sink.link.pulls == 3
        assert len(memory_ops.reads) == 2

    def test_write_failure_tears_down(self, memory_ops: MemoryFileOps) -> None:
        """A write error tears down the source before completing."""
        memory_ops.fail_write_after = 1
        source, sink, recorder = _chain(
            memory_ops, b"y" * 30, sink_options={"chunk_size": 10}
        )
        error = recorder.error
        assert isinstance(error, WriteFailureError)
        assert error.errno == errno.EIO
        assert memory_ops.open_fds == ()
        assert source.fd is None
        assert sink.position == 10

    def test_zero_writes_below_limit_recover(self, memory_ops: MemoryFileOps) -> None:
        """Fewer than the limit of stalled writes are retried."""
        memory_ops.zero_writes = MAX_ZERO_PROGRESS_WRITES - 1
        _, _, recorder = _chain(memory_ops, b"abc")
        assert recorder.error is None
        assert memory_ops.get("out.bin") == b"abc"
        assert [call.count for call in memory_ops.writes] == [0, 0, 3]

    def test_zero_writes_at_limit_fail(self, memory_ops: MemoryFileOps) -> None:
        """Reaching the limit of stalled writes fails the chain."""
        memory_ops.zero_writes = MAX_ZERO_PROGRESS_WRITES
        _, sink, recorder = _chain(memory_ops, b"abc")
        error = recorder.error
        assert isinstance(error, WriteFailureError)
        assert "no progress" in str(error)
        assert len(memory_ops.writes) == MAX_ZERO_PROGRESS_WRITES
        assert sink.position == 0
        assert memory_ops.open_fds == ()

    def test_source_close_failure_after_end(self, memory_ops: MemoryFileOps) -> None:
        """A close failure at the source is the chain's outcome."""
        memory_ops.fail_close.add("in.bin")
        _, _, recorder = _chain(memory_ops, b"abc")
        assert isinstance(recorder.error, CloseFailureError)
        assert memory_ops.get("out.bin") == b"abc"
        assert memory_ops.open_fds == ()

    def test_destination_close_failure_after_end(
        self, memory_ops: MemoryFileOps
    ) -> None:
        """A close failure at the sink is the chain's outcome."""
        memory_ops.fail_close.add("out.bin")
        _, _, recorder = _chain(memory_ops, b"abc")
        error = recorder.error
        assert isinstance(error, CloseFailureError)
        assert error.path == "out.bin"

    def test_teardown_close_failure_is_noted(self, memory_ops: MemoryFileOps) -> None:
        """Close failures during teardown are attached to the original error."""
        memory_ops.fail_read_after = 0
        memory_ops.fail_close.update({"in.bin", "out.bin"})
        _, _, recorder = _chain(memory_ops, b"abc")
        error = recorder.error
        assert isinstance(error, ReadFailureError)
        notes = getattr(error, "__notes__", [])
        assert len(notes) == 2
        assert notes[0].startswith("source teardown: close failed")
        assert notes[1].startswith("sink teardown: close failed")
        assert memory_ops.open_fds == ()

    @pytest.mark.parametrize(
        ("failure", "expected"),
        [
            ("write", WriteFailureError),
            ("read", ReadFailureError),
        ],
    )
    def test_non_os_failures_are_chain_errors(
        self, failure: str, expected: type[Exception]
    ) -> None:
        """Overflowing offsets fail the chain instead of escaping the loop."""
        ops = _OverflowingOps(fail=failure)
        _, sink, recorder = _chain(ops, b"abc")
        assert recorder.calls == [recorder.error]
        error = recorder.error
        assert isinstance(error, expected)
        assert isinstance(error.__cause__, (OverflowError, ValueError))
        assert error.errno is None
        path = "out.bin" if failure == "write" else "in.bin"
        assert str(error).startswith(f"{failure} failed for {path}: ")
        assert ops.open_fds == ()
        assert sink.state is SinkState.DONE


class TestScriptedUpstream:
    """Sink behaviour against hand-written response sequences."""

    def _sink(self, ops: MemoryFileOps, **options: object) -> FileSink:
        return FileSink("out.bin", options, fs=AsyncFileSystem.in_memory(ops))

    def test_zero_length_data_is_skipped(self, memory_ops: MemoryFileOps) -> None:
        """An empty DATA response triggers the next pull without a write."""
        sink = self._sink(memory_ops)
        upstream = ScriptedUpstream([b"", b"ab", b"", Response.end()])
        recorder = run_chain(upstream, sink=sink)
        assert recorder.error is None
        assert upstream.pulls == 4
        assert [call.count for call in memory_ops.writes] == [2]
        assert memory_ops.get("out.bin") == b"ab"

    def test_error_delivered_once_and_pulling_stops(
        self, memory_ops: MemoryFileOps
    ) -> None:
        """After ERROR the upstream is torn down and never pulled again."""
        sink = self._sink(memory_ops)
        failure = ReadFailureError("upstream broke")
        upstream = ScriptedUpstream([b"abc", Response.failed(failure), b"never"])
        recorder = run_chain(upstream, sink=sink)
        assert recorder.calls == [failure]
        assert upstream.pulls == 2
        assert upstream.teardowns == [failure]
        assert memory_ops.get("out.bin") == b"abc"
        assert memory_ops.open_fds == ()
        assert sink.link is not None
        assert sink.link.state is LinkState.TERMINATED

    def test_buffer_lent_is_the_shared_buffer(self, memory_ops: MemoryFileOps) -> None:
        """Every pull lends the same buffer of ``chunk_size`` bytes."""
        sink = self._sink(memory_ops, chunk_size=16)
        upstream = ScriptedUpstream([b"a", b"b", Response.end()])
        _ = run_chain(upstream, sink=sink)
        assert {id(buffer) for buffer in upstream.buffers} == {id(sink.buffer)}
        assert len(upstream.buffers[0]) == 16


class TestBinding:
    """Binding rules."""

    def test_second_bind_rejected(self, memory_ops: MemoryFileOps) -> None:
        """A sink accepts exactly one source."""
        memory_ops.put("in.bin", b"abc")
        fs = AsyncFileSystem.in_memory(memory_ops)
        sink = FileSink("out.bin", fs=fs)
        sink.bind_source(FileSource("in.bin", fs=fs), lambda error: None)
        with pytest.raises(InvalidStateError):
            sink.bind_source(FileSource("in.bin", fs=fs), lambda error: None)

    def test_callback_must_be_callable(self, memory_ops: MemoryFileOps) -> None:
        """A non-callable completion callback is rejected before binding."""
        fs = AsyncFileSystem.in_memory(memory_ops)
        sink = FileSink("out.bin", fs=fs)
        source = FileSource("in.bin", fs=fs)
        with pytest.raises(InvalidCallbackError):
            sink.bind_source(source, "done")  # type: ignore[arg-type]
        assert sink.state is SinkState.IDLE
        assert fs.loop.idle
        recorder = Recorder()
        sink.bind_source(source, recorder)
        assert sink.state is SinkState.OPENING

    def test_outcome(self, memory_ops: MemoryFileOps) -> None:
        """The sink exposes the outcome once done."""
        _, sink, _ = _chain(memory_ops, b"abc")
        assert sink.done
        assert sink.outcome is None

    def test_repr(self, memory_ops: MemoryFileOps) -> None:
        """The repr names the path, cursor and state."""
        sink = FileSink("out.bin", fs=AsyncFileSystem.in_memory(memory_ops))
        assert repr(sink) == (
            "FileSink(path='out.bin', fd=None, position=0, state=IDLE)"
        )
