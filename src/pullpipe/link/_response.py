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

"""Pull responses exchanged across a link."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidArgumentError, PullPipeError

__all__ = ["Response", "Status"]


class Status(Enum):
    """Status carried by every pull response."""

    DATA = "data"
    END = "end"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        """END and ERROR close the link for good."""
        return self is not Status.DATA


@dataclass(frozen=True, slots=True)
class Response:
    """Reply to one pull.

    A DATA response lends ``buffer`` downstream; only ``buffer[:length]`` is
    meaningful. The buffer is normally the sink's shared buffer, or a
    transform's scratch buffer when the transform produces new bytes.
    Downstream stages must finish with it before pulling again.
    """

    status: Status
    buffer: bytearray | None = None
    length: int = 0
    error: PullPipeError | None = None

    def __post_init__(self) -> None:
        if self.status is Status.DATA:
            if self.buffer is None:
                raise InvalidArgumentError("DATA responses require a buffer.")
            if not 0 <= self.length <= len(self.buffer):
                msg = (
                    f"DATA length {self.length} outside buffer of "
                    f"{len(self.buffer)} bytes."
                )
                raise InvalidArgumentError(msg)
        elif self.status is Status.ERROR and self.error is None:
            raise InvalidArgumentError("ERROR responses require an error.")

    @classmethod
    def data(cls, buffer: bytearray, length: int) -> Response:
        return cls(Status.DATA, buffer=buffer, length=length)

    @classmethod
    def end(cls) -> Response:
        return cls(Status.END)

    @classmethod
    def failed(cls, error: PullPipeError) -> Response:
        return cls(Status.ERROR, error=error)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def view(self) -> memoryview:
        """Return a view of the valid bytes of a DATA response."""
        if self.buffer is None:
            raise InvalidArgumentError(f"{self.status.name} responses carry no bytes.")
        return memoryview(self.buffer)[: self.length]

    def __repr__(self) -> str:
        if self.status is Status.DATA:
            return f"Response(DATA, length={self.length})"
        if self.status is Status.ERROR:
            return f"Response(ERROR, error={self.error!r})"
        return "Response(END)"
