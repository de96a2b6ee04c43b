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

"""Single-use completion token for chain results."""

from __future__ import annotations

from collections.abc import Callable

from ..errors import CompletionError, InvalidCallbackError, PullPipeError

__all__ = ["CompletionCallback", "CompletionToken"]

type CompletionCallback = Callable[[PullPipeError | None], object]


class CompletionToken:
    """Wraps a completion callback so it can fire exactly once.

    The token is spent before the callback runs, so a callback that somehow
    re-enters the chain cannot trigger a second completion either.

    Example::

        token = CompletionToken(lambda error: print(error or "done"))
        token(None)
        token(None)  # raises CompletionError
    """

    __slots__ = ("_callback", "_outcome", "_spent")

    def __init__(self, callback: CompletionCallback) -> None:
        if not callable(callback):
            msg = (
                "Completion callback must be callable, "
                f"got {type(callback).__name__}"
            )
            raise InvalidCallbackError(msg)
        self._callback = callback
        self._spent = False
        self._outcome: PullPipeError | None = None

    @property
    def spent(self) -> bool:
        return self._spent

    @property
    def outcome(self) -> PullPipeError | None:
        """The error the token was spent with, or None."""
        return self._outcome

    def __call__(self, error: PullPipeError | None = None) -> None:
        if self._spent:
            msg = "Chain completion was already delivered"
            raise CompletionError(msg) from error
        self._spent = True
        self._outcome = error
        _ = self._callback(error)
