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

"""Core protocols for injectable execution of blocking work."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


class Future(Protocol[T_co]):
    """Minimal future interface for submitted work."""

    def result(self, timeout: float | None = None) -> T_co:
        """Return the result, or raise the exception the work raised.

        Args:
            timeout: Maximum seconds to wait, or None for no limit.
        """
        ...

    def done(self) -> bool:
        """Return True if the work has completed."""
        ...


@runtime_checkable
class Executor(Protocol):
    """Protocol for running blocking filesystem primitives.

    Production code uses a thread pool so the completion loop never blocks
    on a syscall. Tests use a synchronous executor for deterministic order.
    """

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        """Submit a zero-argument callable for execution."""
        ...

    def shutdown(self, *, wait: bool = True) -> None:
        """Release worker resources.

        Args:
            wait: If True, wait for pending work to complete.
        """
        ...


__all__ = [
    "Executor",
    "Future",
    "T",
]
