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

"""Executor implementations for the filesystem worker pool."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TypeVar

from pullpipe.threading._types import Future

T = TypeVar("T")


@dataclass
class CompletedFuture[T]:
    """A future that is already complete with a value or exception.

    The completion loop hands one of these to every I/O callback, so stage
    code reads results the same way regardless of the executor in use::

        def on_read(future: Future[int]) -> None:
            try:
                count = future.result()
            except OSError as error:
                ...
    """

    _value: T | None = None
    _exception: BaseException | None = None

    @classmethod
    def of(cls, value: T) -> CompletedFuture[T]:
        """Create a completed future with a value."""
        return CompletedFuture[T](_value=value)

    @classmethod
    def failed(cls, exc: BaseException) -> CompletedFuture[T]:
        """Create a completed future with an exception."""
        return CompletedFuture[T](_exception=exc)

    def result(self, timeout: float | None = None) -> T:
        """Return the result or raise the stored exception."""
        del timeout  # unused
        if self._exception is not None:
            raise self._exception
        return self._value  # type: ignore[return-value]

    def exception(self) -> BaseException | None:
        """Return the stored exception, if any."""
        return self._exception

    def done(self) -> bool:
        """Always returns True since this future is complete."""
        return True


@dataclass
class SystemExecutor:
    """Production executor backed by a lazily created thread pool.

    One worker is enough for a single chain: the link protocol never has
    more than one primitive in flight. Raise ``max_workers`` when several
    chains share one loop.

    Example::

        with SystemExecutor(max_workers=2) as executor:
            loop = CompletionLoop(executor=executor)
            ...
    """

    max_workers: int | None = 1
    thread_name_prefix: str = "pullpipe-io"
    _executor: ThreadPoolExecutor | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _ensure_executor(self) -> ThreadPoolExecutor:
        """Lazily create the thread pool."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=self.thread_name_prefix,
                )
            return self._executor

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        """Submit a callable for execution in the thread pool."""
        executor = self._ensure_executor()
        return executor.submit(fn)

    def shutdown(self, *, wait: bool = True) -> None:
        """Shut down the thread pool, if one was created."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> SystemExecutor:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True)


@dataclass
class FakeExecutor:
    """Test executor that runs work synchronously in the calling thread.

    Example::

        executor = FakeExecutor()
        future = executor.submit(lambda: 42)
        assert future.result() == 42
        assert len(executor.submitted) == 1
    """

    submitted: list[Callable[[], object]] = field(  # pyright: ignore[reportUnknownVariableType]
        default_factory=list,
    )
    _shutdown: bool = field(default=False, repr=False)

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        """Execute fn immediately and return a completed Future."""
        if self._shutdown:
            msg = "Executor has been shut down"
            raise RuntimeError(msg)

        self.submitted.append(fn)
        try:
            return CompletedFuture.of(fn())
        except Exception as e:
            return CompletedFuture.failed(e)

    def shutdown(self, *, wait: bool = True) -> None:
        """Mark the executor as shut down."""
        del wait  # unused
        self._shutdown = True

    def __enter__(self) -> FakeExecutor:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True)


__all__ = [
    "CompletedFuture",
    "FakeExecutor",
    "SystemExecutor",
]
