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

"""Construction-time option validation for file stages.

Everything here runs synchronously, before any descriptor is opened. An
invalid option never leaves a half-built chain behind.
"""

from __future__ import annotations

import codecs
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Final, cast, get_args
from urllib.parse import urlparse
from urllib.request import url2pathname

from ..errors import InvalidArgumentError, OutOfRangeError, UnknownEncodingError
from ..fs import PathArg, ReadFlags, WriteFlags

__all__ = [
    "BUFFER_ENCODING",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_ENCODING",
    "DEFAULT_MODE",
    "MAX_OFFSET",
    "SinkOptions",
    "SourceOptions",
    "check_encoding",
    "resolve_path",
    "resolve_sink_options",
    "resolve_source_options",
]

#: Size of the sink's shared buffer (64KB).
DEFAULT_CHUNK_SIZE: Final[int] = 65_536
DEFAULT_MODE: Final[int] = 0o666
DEFAULT_ENCODING: Final[str] = "utf8"
_MAX_MODE: Final[int] = 0o7777
#: Largest offset a signed 64-bit ``off_t`` can hold.
MAX_OFFSET: Final[int] = 2**63 - 1
#: Stage encoding meaning raw bytes with no text codec attached.
BUFFER_ENCODING: Final[str] = "buffer"


def check_encoding(encoding: object, *, allow_buffer: bool = False) -> str:
    """Return the canonical text codec name for ``encoding``.

    Bytes-to-bytes codecs such as ``hex`` or ``zlib`` are rejected. With
    ``allow_buffer``, the name ``"buffer"`` is accepted as is.

    Raises:
        InvalidArgumentError: If ``encoding`` is not a string.
        UnknownEncodingError: If no text codec is registered under that name.
    """
    if not isinstance(encoding, str):
        msg = f"encoding must be a str, got {type(encoding).__name__}"
        raise InvalidArgumentError(msg)
    lowered = encoding.lower()
    if allow_buffer and lowered == BUFFER_ENCODING:
        return BUFFER_ENCODING
    try:
        info = codecs.lookup(lowered)
    except LookupError:
        raise UnknownEncodingError(f"Unknown encoding: {encoding!r}") from None
    if not getattr(info, "_is_text_encoding", True):
        raise UnknownEncodingError(f"Not a text encoding: {encoding!r}")
    return info.name


def _check_int(
    name: str,
    value: object,
    *,
    minimum: int,
    maximum: int | None = None,
    fmt: str = "d",
) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"{name} must be an int, got {type(value).__name__}"
        raise InvalidArgumentError(msg)
    if value < minimum:
        raise OutOfRangeError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        msg = f"{name} must be <= {maximum:{fmt}}, got {value:{fmt}}"
        raise OutOfRangeError(msg)
    return value


def _check_flags(value: object, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        choices = ", ".join(repr(flag) for flag in allowed)
        raise InvalidArgumentError(f"flags must be one of {choices}, got {value!r}")


@dataclass(frozen=True)
class SinkOptions:
    """Validated options for :class:`~pullpipe.stages.FileSink`.

    Attributes:
        fd: Pre-opened destination descriptor; skips the open.
        flags: ``truncate`` (create and truncate), ``exclusive`` (create,
            fail if present), ``append`` or ``update`` (create, keep content).
        mode: Permission bits for a newly created file.
        start: Initial destination offset; the cursor starts here.
        auto_close: Close the destination once the chain terminates.
        encoding: Text encoding name, normalized to the codec's canonical name.
        chunk_size: Size of the shared buffer allocated on the first pull.
    """

    fd: int | None = None
    flags: WriteFlags = "truncate"
    mode: int = DEFAULT_MODE
    start: int | None = None
    auto_close: bool = True
    encoding: str = DEFAULT_ENCODING
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        _validate_common(self)
        _check_flags(self.flags, get_args(WriteFlags))
        _ = _check_int("chunk_size", self.chunk_size, minimum=1)


@dataclass(frozen=True)
class SourceOptions:
    """Validated options for :class:`~pullpipe.stages.FileSource`.

    ``end`` is an exclusive byte offset: reading stops before it.
    """

    fd: int | None = None
    flags: ReadFlags = "read"
    mode: int = DEFAULT_MODE
    start: int | None = None
    end: int | None = None
    auto_close: bool = True
    encoding: str = DEFAULT_ENCODING

    def __post_init__(self) -> None:
        _validate_common(self)
        _check_flags(self.flags, get_args(ReadFlags))
        if self.end is not None:
            _ = _check_int(
                "end", self.end, minimum=self.start or 0, maximum=MAX_OFFSET
            )


def _validate_common(options: SinkOptions | SourceOptions) -> None:
    if options.fd is not None:
        _ = _check_int("fd", options.fd, minimum=0)
    _ = _check_int("mode", options.mode, minimum=0, maximum=_MAX_MODE, fmt="#o")
    if options.start is not None:
        _ = _check_int("start", options.start, minimum=0, maximum=MAX_OFFSET)
    object.__setattr__(options, "auto_close", bool(options.auto_close))
    encoding = check_encoding(options.encoding, allow_buffer=True)
    object.__setattr__(options, "encoding", encoding)


def _resolve[OptionsT: (SinkOptions, SourceOptions)](
    options: object, cls: type[OptionsT]
) -> OptionsT:
    if options is None:
        return cls()
    if isinstance(options, cls):
        return options
    if isinstance(options, str):
        return cls(encoding=options)
    if isinstance(options, Mapping):
        mapping = cast(Mapping[object, object], options)
        known = {f.name for f in fields(cls)}
        unknown = sorted(str(key) for key in mapping if key not in known)
        if unknown:
            msg = f"Unknown {cls.__name__} keys: {', '.join(unknown)}"
            raise InvalidArgumentError(msg)
        return cls(**{str(key): value for key, value in mapping.items()})  # pyright: ignore[reportArgumentType]
    msg = (
        f"options must be a str, mapping or {cls.__name__}, "
        f"got {type(options).__name__}"
    )
    raise InvalidArgumentError(msg)


def resolve_sink_options(options: object) -> SinkOptions:
    """Coerce ``options`` (None, str, mapping or SinkOptions) into SinkOptions.

    A plain string is shorthand for ``{"encoding": options}``.
    """
    return _resolve(options, SinkOptions)


def resolve_source_options(options: object) -> SourceOptions:
    """Coerce ``options`` (None, str, mapping or SourceOptions) into SourceOptions."""
    return _resolve(options, SourceOptions)


def resolve_path(path: object, fd: int | None) -> PathArg | None:
    """Validate a stage path.

    Accepts ``str``, ``bytes``, ``os.PathLike`` and ``file://`` URL strings.

    Raises:
        InvalidArgumentError: If the path is missing without ``fd``, has the
            wrong type, contains NUL bytes, or is a non-local URL.
    """
    if path is None:
        if fd is None:
            raise InvalidArgumentError("path is required unless fd is given")
        return None
    if isinstance(path, os.PathLike):
        path = os.fspath(cast(os.PathLike[str], path))
    if isinstance(path, str) and path.startswith("file:"):
        path = _path_from_url(path)
    if not isinstance(path, (str, bytes)):
        msg = f"path must be str, bytes or os.PathLike, got {type(path).__name__}"
        raise InvalidArgumentError(msg)
    null = "\x00" if isinstance(path, str) else b"\x00"
    if null in path:  # pyright: ignore[reportOperatorIssue]
        raise InvalidArgumentError("path must not contain null bytes")
    if not path:
        raise InvalidArgumentError("path must not be empty")
    return path


def _path_from_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.netloc not in {"", "localhost"}:
        msg = f"file URL host must be empty or localhost, got {parsed.netloc!r}"
        raise InvalidArgumentError(msg)
    return url2pathname(parsed.path)
