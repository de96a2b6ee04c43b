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

from __future__ import annotations

import pytest

from pullpipe.fs import AsyncFileSystem, MemoryFileOps
from tests.helpers.chain import Recorder


@pytest.fixture
def memory_ops() -> MemoryFileOps:
    """Return an empty in-memory filesystem."""
    return MemoryFileOps()


@pytest.fixture
def memory_fs(memory_ops: MemoryFileOps) -> AsyncFileSystem:
    """Return a deterministic filesystem over ``memory_ops``."""
    return AsyncFileSystem.in_memory(memory_ops)


@pytest.fixture
def recorder() -> Recorder:
    """Return a completion callback that records every invocation."""
    return Recorder()
