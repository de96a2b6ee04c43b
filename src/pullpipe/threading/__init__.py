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

"""Injectable execution primitives for the filesystem worker pool.

Blocking filesystem primitives run on an :class:`Executor`. Production
code uses :class:`SystemExecutor` (a thread pool); tests inject
:class:`FakeExecutor`, which runs work synchronously and keeps runs
deterministic.

Example (testing)::

    from pullpipe.threading import FakeExecutor

    executor = FakeExecutor()
    future = executor.submit(lambda: 42)
    assert future.done()
"""

from __future__ import annotations

from pullpipe.threading._executor import (
    CompletedFuture,
    FakeExecutor,
    SystemExecutor,
)
from pullpipe.threading._types import Executor, Future

__all__ = [
    "CompletedFuture",
    "Executor",
    "FakeExecutor",
    "Future",
    "SystemExecutor",
]
