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

"""Completion loop driving a chain of pull-driven stages.

Blocking filesystem primitives run on an :class:`~pullpipe.threading.Executor`.
Their completions are never delivered inline: each one is queued on the
loop and invoked by :meth:`CompletionLoop.run` from the thread that runs
the loop. A chain of any length therefore advances one callback at a time
with a flat stack, and stage code never needs a lock.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from ..errors import StateError
from ..threading import CompletedFuture, Executor, FakeExecutor, Future

__all__ = ["CompletionCallback", "CompletionLoop"]

T = TypeVar("T")

type CompletionCallback[T] = Callable[[Future[T]], None]


@dataclass
class CompletionLoop:
    """Single-threaded dispatcher for I/O completions.

    Example::

        loop = CompletionLoop(executor=SystemExecutor())
        loop.submit(lambda: os.read(fd, 4096), on_read)
        loop.run()  # returns once nothing is queued or in flight

    ``OSError`` raised by an operation is handed to its callback through the
    future. Any other exception is re-raised by the callback's
    ``future.result()`` and, left unhandled there, propagates out of
    :meth:`run`.

    A loop is dispatched by one thread at a time. Calling :meth:`run` or
    :meth:`run_one` while another dispatch is active raises
    :class:`~pullpipe.errors.StateError`.
    """

    executor: Executor = field(default_factory=FakeExecutor)
    _ready: deque[Callable[[], None]] = field(default_factory=deque, repr=False)
    _pending: int = field(default=0, repr=False)
    _condition: threading.Condition = field(
        default_factory=threading.Condition, repr=False
    )
    _runner: threading.Thread | None = field(default=None, repr=False)

    @property
    def pending(self) -> int:
        """Number of submitted operations whose completion is not yet queued."""
        with self._condition:
            return self._pending

    @property
    def running(self) -> bool:
        """True while a thread is dispatching callbacks."""
        with self._condition:
            return self._runner is not None

    @property
    def idle(self) -> bool:
        """True when nothing is queued and nothing is in flight."""
        with self._condition:
            return not self._ready and self._pending == 0

    def call_soon(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` to run on the next loop turn."""
        with self._condition:
            self._ready.append(callback)
            self._condition.notify()

    def submit(
        self, operation: Callable[[], T], callback: CompletionCallback[T]
    ) -> None:
        """Run ``operation`` on the executor and queue ``callback`` with its outcome."""

        with self._condition:
            self._pending += 1

        def work() -> None:
            outcome: CompletedFuture[T]
            try:
                outcome = CompletedFuture.of(operation())
            except Exception as error:
                outcome = CompletedFuture.failed(error)
            self._post_completion(lambda: callback(outcome))

        _ = self.executor.submit(work)

    def _post_completion(self, callback: Callable[[], None]) -> None:
        with self._condition:
            self._pending -= 1
            self._ready.append(callback)
            self._condition.notify()

    def run_one(self) -> bool:
        """Run the next ready callback without waiting.

        Returns:
            False if no callback was ready.
        """
        with self._dispatching():
            with self._condition:
                if not self._ready:
                    return False
                callback = self._ready.popleft()
            callback()
            return True

    def run(self) -> None:
        """Dispatch callbacks until nothing is queued or in flight."""
        with self._dispatching():
            while True:
                with self._condition:
                    while not self._ready and self._pending:
                        _ = self._condition.wait()
                    if not self._ready:
                        return
                    callback = self._ready.popleft()
                callback()

    @contextmanager
    def _dispatching(self) -> Iterator[None]:
        with self._condition:
            if self._runner is not None:
                msg = f"loop is already running in thread {self._runner.name!r}"
                raise StateError(msg)
            self._runner = threading.current_thread()
        try:
            yield
        finally:
            with self._condition:
                self._runner = None
