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

"""The link protocol joining two adjacent stages.

A :class:`Link` is the only connection between a downstream stage and its
upstream neighbour. It allows at most one outstanding pull:

    IDLE --request--> REQUESTED --respond(DATA)--> FULFILLED --request--> ...
    REQUESTED --respond(END | ERROR)--> TERMINATED
    IDLE | FULFILLED | TERMINATED --teardown--> TERMINATED

Any other call raises :class:`~pullpipe.errors.InvalidStateError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum, auto

from ..errors import InvalidArgumentError, PullPipeError
from ..runtime.logging import StructuredLogger, get_logger
from ._response import Response
from ._state_machine import state_machine, transition

__all__ = [
    "DownstreamStage",
    "Link",
    "LinkState",
    "TeardownCallback",
    "UpstreamStage",
    "connect",
]

logger: StructuredLogger = get_logger(__name__, context={"component": "link"})

type TeardownCallback = Callable[[], None]


class UpstreamStage(ABC):
    """A stage that can be pulled from: a source or a transform."""

    @abstractmethod
    def bind_sink(self, link: Link) -> None:
        """Record ``link`` as the connection to the downstream neighbour."""

    @abstractmethod
    def fulfill(self, buffer: bytearray) -> None:
        """Answer the pull on the downstream link exactly once.

        The answer may arrive synchronously or on a later loop turn, but it
        must be a single ``link.respond(...)`` call.
        """

    @abstractmethod
    def teardown(self, error: PullPipeError, done: TeardownCallback) -> None:
        """Release resources after a chain failure, then call ``done``.

        Implementations forward the teardown to their own upstream, so one
        call from the sink reaches every stage.
        """


class DownstreamStage(ABC):
    """A stage that pulls: a sink or a transform."""

    @abstractmethod
    def on_response(self, response: Response) -> None:
        """Handle the upstream's answer to the outstanding pull."""


class LinkState(Enum):
    """Lifecycle of one adjacent pair of stages."""

    IDLE = auto()
    REQUESTED = auto()
    FULFILLED = auto()
    TERMINATED = auto()


@state_machine(state_var="_state", states=LinkState, initial=LinkState.IDLE)
class Link:
    """Request/response channel between two adjacent stages."""

    _state: LinkState

    def __init__(self, upstream: UpstreamStage, downstream: DownstreamStage) -> None:
        self.upstream = upstream
        self.downstream = downstream
        self.pulls = 0
        self.chunks = 0
        self.terminal: Response | None = None

    @property
    def state(self) -> LinkState:
        return self._state

    @transition(
        from_=(LinkState.IDLE, LinkState.FULFILLED), to=LinkState.REQUESTED
    )
    def request(self, buffer: bytearray) -> None:
        """Issue a pull, lending ``buffer`` to the upstream for one fulfillment."""
        self.pulls += 1
        self.upstream.fulfill(buffer)

    def respond(self, response: Response) -> None:
        """Answer the outstanding pull."""
        if response.terminal:
            self._terminate(response)
        else:
            self._fulfill(response)

    @transition(from_=LinkState.REQUESTED, to=LinkState.FULFILLED)
    def _fulfill(self, response: Response) -> None:
        self.chunks += 1
        self.downstream.on_response(response)

    @transition(from_=LinkState.REQUESTED, to=LinkState.TERMINATED)
    def _terminate(self, response: Response) -> None:
        self.terminal = response
        logger.debug(
            "Link terminated.",
            event="link.terminated",
            context={
                "upstream": type(self.upstream).__name__,
                "downstream": type(self.downstream).__name__,
                "status": response.status.value,
                "chunks": self.chunks,
            },
        )
        self.downstream.on_response(response)

    @transition(
        from_=(LinkState.IDLE, LinkState.FULFILLED, LinkState.TERMINATED),
        to=LinkState.TERMINATED,
    )
    def teardown(self, error: PullPipeError, done: TeardownCallback) -> None:
        """Close the link and tear down everything upstream of it."""
        self.upstream.teardown(error, done)

    def __repr__(self) -> str:
        return (
            f"Link({type(self.upstream).__name__} -> "
            f"{type(self.downstream).__name__}, state={self._state.name})"
        )


def connect(upstream: object, downstream: DownstreamStage) -> Link:
    """Create the link between ``upstream`` and ``downstream``.

    The upstream is told about its downstream through ``bind_sink``, which
    raises :class:`~pullpipe.errors.InvalidStateError` if it is already
    bound elsewhere.

    Raises:
        InvalidArgumentError: If ``upstream`` is not a source or transform.
    """
    if not isinstance(upstream, UpstreamStage):
        msg = (
            "upstream must be a source or transform stage, "
            f"got {type(upstream).__name__}"
        )
        raise InvalidArgumentError(msg)
    link = Link(upstream, downstream)
    upstream.bind_sink(link)
    return link
