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

"""Link protocol shared by every stage of a chain.

Stages never hold direct references to each other. A downstream stage owns
a :class:`Link` to its upstream, and the upstream keeps the same link to
answer pulls. The link enforces one outstanding pull at a time and a
single terminal response.
"""

from __future__ import annotations

from ._completion import CompletionCallback, CompletionToken
from ._link import (
    DownstreamStage,
    Link,
    LinkState,
    TeardownCallback,
    UpstreamStage,
    connect,
)
from ._response import Response, Status
from ._state_machine import (
    StateMachineSpec,
    TransitionSpec,
    enters,
    extract_state_machine,
    in_state,
    state_machine,
    transition,
)

__all__ = [
    "CompletionCallback",
    "CompletionToken",
    "DownstreamStage",
    "Link",
    "LinkState",
    "Response",
    "StateMachineSpec",
    "Status",
    "TeardownCallback",
    "TransitionSpec",
    "UpstreamStage",
    "connect",
    "enters",
    "extract_state_machine",
    "in_state",
    "state_machine",
    "transition",
]
