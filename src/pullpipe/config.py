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

"""Configuration for the :mod:`pullpipe.cli` entry point."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import InvalidArgumentError
from .runtime.logging import LOG_LEVEL_ENV
from .stages import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_ENCODING,
    DEFAULT_MODE,
    SinkOptions,
    SourceOptions,
)

DEFAULT_CONFIG_PATH = Path("~/.config/pullpipe/config.toml")

ENV_CHUNK_SIZE = "PULLPIPE_CHUNK_SIZE"
ENV_FLAGS = "PULLPIPE_FLAGS"
ENV_MODE = "PULLPIPE_MODE"
ENV_AUTO_CLOSE = "PULLPIPE_AUTO_CLOSE"
ENV_ENCODING = "PULLPIPE_ENCODING"
ENV_WORKERS = "PULLPIPE_WORKERS"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})

__all__ = ["DEFAULT_CONFIG_PATH", "ConfigError", "PipeConfig", "load_config"]


class ConfigError(ValueError):
    """Raised when the pullpipe configuration is invalid."""


@dataclass(frozen=True, slots=True)
class PipeConfig:
    """Resolved defaults for a copy run."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    flags: str = "truncate"
    mode: int = DEFAULT_MODE
    auto_close: bool = True
    encoding: str = DEFAULT_ENCODING
    workers: int = 1
    log_level: str = "WARNING"

    def sink_options(self, *, start: int | None = None) -> SinkOptions:
        return SinkOptions(
            flags=self.flags,  # pyright: ignore[reportArgumentType]
            mode=self.mode,
            start=start,
            auto_close=self.auto_close,
            encoding=self.encoding,
            chunk_size=self.chunk_size,
        )

    def source_options(
        self, *, start: int | None = None, end: int | None = None
    ) -> SourceOptions:
        return SourceOptions(
            start=start,
            end=end,
            auto_close=self.auto_close,
            encoding=self.encoding,
        )


def load_config(
    path: Path | Mapping[str, Any] | None,
    cli_overrides: object | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> PipeConfig:
    """Load and validate the pullpipe configuration.

    Parameters
    ----------
    path:
        TOML or YAML file. ``None`` falls back to
        ``~/.config/pullpipe/config.toml``, which may be absent. Tests may
        pass an in-memory mapping to skip filesystem I/O.
    cli_overrides:
        Mapping or namespace whose non-``None`` values win over every other
        source. Keys mirror ``PipeConfig``'s field names.
    env:
        Optional environment mapping. Defaults to :data:`os.environ`.

    Returns
    -------
    PipeConfig
        The resolved configuration object.
    """

    env_map = dict(os.environ if env is None else env)

    if isinstance(path, Mapping):
        config_data: dict[str, object] = dict(path)
        config_path: Path | None = None
    else:
        config_path = path if path is not None else DEFAULT_CONFIG_PATH.expanduser()
        config_data = _load_config_file(config_path)

    config = _normalise_config(config_data)
    config = _apply_environment_overrides(config=config, env=env_map)
    config = _apply_cli_overrides(config=config, overrides=cli_overrides)

    return _build_config(config=config, config_path=config_path)


def _load_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        if path == DEFAULT_CONFIG_PATH.expanduser():
            return {}
        msg = f"Configuration file not found: {path}"
        raise FileNotFoundError(msg)

    suffix = path.suffix.lower()
    data: object
    try:
        if suffix == ".toml" or not suffix:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        elif suffix in {".yaml", ".yml"}:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        else:
            msg = f"Unsupported configuration format: {path.suffix}"
            raise ConfigError(msg)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        msg = f"Could not parse {path}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(data, MutableMapping):
        msg = "Configuration file must contain a mapping at the root."
        raise ConfigError(msg)

    mapping = cast(MutableMapping[object, object], data)
    typed_data: dict[str, object] = {}
    for key, value in mapping.items():
        if not isinstance(key, str):
            msg = f"Configuration keys must be strings (got {key!r})."
            raise ConfigError(msg)
        typed_data[key] = value
    return typed_data


def _normalise_config(raw: Mapping[str, object]) -> dict[str, object]:
    known = {field.name for field in fields(PipeConfig)}
    config: dict[str, object] = {}

    copy_section_obj = raw.get("copy")
    if isinstance(copy_section_obj, Mapping):
        copy_section = cast(Mapping[str, object], copy_section_obj)
        config.update(copy_section)

    logging_section_obj = raw.get("logging")
    if isinstance(logging_section_obj, Mapping):
        logging_section = cast(Mapping[str, object], logging_section_obj)
        level = logging_section.get("level")
        if level is not None:
            config["log_level"] = level

    config.update(
        (key, value) for key, value in raw.items() if key not in {"copy", "logging"}
    )

    unknown = sorted(set(config) - known)
    if unknown:
        msg = f"Unknown configuration keys: {', '.join(unknown)}"
        raise ConfigError(msg)
    return config


def _apply_environment_overrides(
    *, config: dict[str, object], env: Mapping[str, str]
) -> dict[str, object]:
    if ENV_CHUNK_SIZE in env:
        config["chunk_size"] = _parse_int(env[ENV_CHUNK_SIZE], ENV_CHUNK_SIZE)
    if ENV_FLAGS in env:
        config["flags"] = env[ENV_FLAGS]
    if ENV_MODE in env:
        config["mode"] = env[ENV_MODE]
    if ENV_AUTO_CLOSE in env:
        config["auto_close"] = _parse_bool(env[ENV_AUTO_CLOSE], ENV_AUTO_CLOSE)
    if ENV_ENCODING in env:
        config["encoding"] = env[ENV_ENCODING]
    if ENV_WORKERS in env:
        config["workers"] = _parse_int(env[ENV_WORKERS], ENV_WORKERS)
    if LOG_LEVEL_ENV in env:
        config["log_level"] = env[LOG_LEVEL_ENV]
    return config


def _apply_cli_overrides(
    *, config: dict[str, object], overrides: object | None
) -> dict[str, object]:
    if overrides is None:
        return config

    materialised: dict[str, object]
    if isinstance(overrides, Mapping):
        materialised = dict(cast(Mapping[str, object], overrides))
    elif hasattr(overrides, "__dict__"):
        materialised = {key: getattr(overrides, key) for key in vars(overrides)}
    else:
        msg = "CLI overrides must be a mapping or support attribute access."
        raise TypeError(msg)

    known = {field.name for field in fields(PipeConfig)}
    for key, value in materialised.items():
        if value is None or key not in known:
            continue
        config[key] = value

    return config


def _build_config(
    *, config: Mapping[str, object], config_path: Path | None
) -> PipeConfig:
    location = str(config_path) if config_path is not None else "<mapping>"
    defaults = PipeConfig()

    mode = config.get("mode", defaults.mode)
    if isinstance(mode, str):
        mode = _parse_mode(mode)

    auto_close = config.get("auto_close", defaults.auto_close)
    if isinstance(auto_close, str):
        auto_close = _parse_bool(auto_close, "auto_close")
    if not isinstance(auto_close, bool):
        msg = f"`auto_close` must be a boolean (source: {location})."
        raise ConfigError(msg)

    log_level = config.get("log_level", defaults.log_level)
    if (
        not isinstance(log_level, str)
        or log_level.upper() not in logging.getLevelNamesMapping()
    ):
        msg = f"`log_level` must be a level name (source: {location})."
        raise ConfigError(msg)

    workers = config.get("workers", defaults.workers)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        msg = f"`workers` must be a positive integer (source: {location})."
        raise ConfigError(msg)

    candidate = {
        "chunk_size": config.get("chunk_size", defaults.chunk_size),
        "flags": config.get("flags", defaults.flags),
        "mode": mode,
        "auto_close": auto_close,
        "encoding": config.get("encoding", defaults.encoding),
    }
    try:
        options = SinkOptions(**candidate)  # pyright: ignore[reportArgumentType]
    except InvalidArgumentError as exc:
        msg = f"Invalid configuration (source: {location}): {exc}"
        raise ConfigError(msg) from exc

    return PipeConfig(
        chunk_size=options.chunk_size,
        flags=options.flags,
        mode=options.mode,
        auto_close=options.auto_close,
        encoding=options.encoding,
        workers=workers,
        log_level=log_level.upper(),
    )


def _parse_int(value: str, source: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        msg = f"Invalid integer in {source}: {value!r}"
        raise ConfigError(msg) from exc


def _parse_mode(value: str) -> int:
    try:
        return int(value, 8)
    except ValueError as exc:
        msg = f"Invalid octal mode: {value!r}"
        raise ConfigError(msg) from exc


def _parse_bool(value: str, source: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    msg = f"Invalid boolean in {source}: {value!r}"
    raise ConfigError(msg)
