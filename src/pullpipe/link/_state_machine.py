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

"""State machine transition enforcement decorators.

Unlike contract checks that can be switched off, these guards are always
active: they are how the link protocol rules out a second outstanding pull
or a response nobody asked for.

The target state is entered *before* the decorated body runs. Stage code
calls into its neighbours synchronously, so a neighbour that re-enters the
object during the body already sees the new state. If the body raises, the
previous state is restored unless the body moved the state itself.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from ..errors import InvalidStateError

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")
StateT = TypeVar("StateT", bound=Enum)

__all__ = [
    "StateMachineSpec",
    "TransitionSpec",
    "enters",
    "extract_state_machine",
    "in_state",
    "state_machine",
    "transition",
]


@dataclass(frozen=True, slots=True)
class TransitionSpec:
    """Specification of a single transition."""

    from_states: frozenset[Enum]
    to_state: Enum | None
    method_name: str


@dataclass(frozen=True, slots=True)
class StateMachineSpec:
    """Extracted state machine definition."""

    cls: type[Any]
    state_var: str
    states: type[Enum]
    initial: Enum
    transitions: tuple[TransitionSpec, ...] = field(default_factory=tuple)

    def to_mermaid(self) -> str:
        """Export as a Mermaid state diagram."""
        lines = ["stateDiagram-v2", f"    [*] --> {self.initial.name}"]
        for t in self.transitions:
            if t.to_state is None:
                continue
            sources = t.from_states or frozenset(self.states)
            lines.extend(
                f"    {from_state.name} --> {t.to_state.name}: {t.method_name}()"
                for from_state in sorted(sources, key=lambda s: s.name)
            )
        return "\n".join(lines)


def state_machine(
    *,
    state_var: str,
    states: type[StateT],
    initial: StateT,
) -> Callable[[type[T]], type[T]]:
    """Class decorator that enables state machine enforcement.

    Args:
        state_var: Name of the instance attribute holding current state.
        states: Enum class defining valid states.
        initial: Initial state, set after __init__ completes.

    Example::

        class LinkState(Enum):
            IDLE = auto()
            REQUESTED = auto()

        @state_machine(state_var="_state", states=LinkState, initial=LinkState.IDLE)
        class Link:
            ...
    """
    if initial not in states:
        msg = f"Initial state {initial} not in states enum {states.__name__}"
        raise ValueError(msg)

    def decorator(cls: type[T]) -> type[T]:
        transitions: list[TransitionSpec] = []
        for name in sorted(dir(cls)):
            attr = getattr(cls, name, None)
            if attr is not None and hasattr(attr, "__transition_spec__"):
                transitions.append(attr.__transition_spec__)

        cls.__state_machine_spec__ = StateMachineSpec(  # type: ignore[attr-defined]
            cls=cls,
            state_var=state_var,
            states=states,
            initial=initial,
            transitions=tuple(transitions),
        )

        original_init = cls.__init__

        @wraps(original_init)
        def init_wrapper(self: T, *args: object, **kwargs: object) -> None:
            original_init(self, *args, **kwargs)
            object.__setattr__(self, state_var, initial)

        type.__setattr__(cls, "__init__", init_wrapper)
        return cls

    return decorator


def _spec_of(instance: object) -> StateMachineSpec:
    return cast(StateMachineSpec, type(instance).__state_machine_spec__)  # type: ignore[attr-defined]


def _guarded(
    method: Callable[P, R],
    from_states: frozenset[Enum],
    to_state: Enum | None,
) -> Callable[P, R]:
    method_name = getattr(method, "__name__", repr(method))

    @wraps(method)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        self = args[0]
        state_var = _spec_of(self).state_var
        current = getattr(self, state_var)
        if from_states and current not in from_states:
            raise InvalidStateError(
                type(self), method_name, current, tuple(from_states)
            )
        if to_state is None:
            return method(*args, **kwargs)

        object.__setattr__(self, state_var, to_state)
        try:
            return method(*args, **kwargs)
        except BaseException:
            if getattr(self, state_var) is to_state:
                object.__setattr__(self, state_var, current)
            raise

    wrapper.__transition_spec__ = TransitionSpec(  # type: ignore[attr-defined]
        from_states=from_states,
        to_state=to_state,
        method_name=method_name,
    )
    return wrapper


def transition(
    *,
    from_: StateT | tuple[StateT, ...],
    to: StateT,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Method decorator declaring a state transition.

    Args:
        from_: Valid source state(s) for this transition.
        to: Target state, entered before the method body runs.

    Example::

        @transition(from_=(LinkState.IDLE, LinkState.FULFILLED), to=LinkState.REQUESTED)
        def request(self, buffer: bytearray) -> None:
            ...
    """
    from_states = frozenset((from_,) if isinstance(from_, Enum) else from_)

    def decorator(method: Callable[P, R]) -> Callable[P, R]:
        return _guarded(method, from_states, to)

    return decorator


def in_state(
    *valid_states: Enum,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Method decorator requiring specific state(s) without transition."""
    if not valid_states:
        msg = "@in_state requires at least one state"
        raise ValueError(msg)

    states_set = frozenset(valid_states)

    def decorator(method: Callable[P, R]) -> Callable[P, R]:
        return _guarded(method, states_set, None)

    return decorator


def enters(
    target_state: Enum,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Method decorator for transitions from any state."""

    def decorator(method: Callable[P, R]) -> Callable[P, R]:
        return _guarded(method, frozenset(), target_state)

    return decorator


def extract_state_machine(cls: type[Any]) -> StateMachineSpec:
    """Return the definition attached by :func:`state_machine`.

    Raises:
        AttributeError: If ``cls`` is not decorated with ``@state_machine``.
    """
    spec = getattr(cls, "__state_machine_spec__", None)
    if not isinstance(spec, StateMachineSpec):
        msg = f"{cls.__name__} is not decorated with @state_machine"
        raise AttributeError(msg)
    return spec
