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

"""Command line entry points for the ``pullpipe`` executable."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from .config import ConfigError, PipeConfig, load_config
from .errors import InvalidArgumentError, PullPipeError
from .fs import AsyncFileSystem, HostFileOps
from .link import Link, extract_state_machine
from .pipeline import copy_file
from .runtime import CompletionLoop
from .runtime.logging import StructuredLogger, configure_logging, get_logger
from .stages import (
    DigestTransform,
    FileSink,
    FileSource,
    TranscodeTransform,
    Transform,
    TranslateTransform,
)
from .threading import SystemExecutor

_STATE_MACHINES: tuple[type[object], ...] = (Link, FileSource, FileSink, Transform)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the pullpipe CLI."""

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:  # argparse exits with code 2 on errors
        code = exc.code if isinstance(exc.code, int) else 2
        return int(code)

    if args.command == "states":
        configure_logging(level=args.log_level, json_mode=args.json_logs)
        return _run_states()

    try:
        config = load_config(
            Path(args.config) if args.config is not None else None,
            {
                "chunk_size": args.chunk_size,
                "flags": args.flags,
                "mode": args.mode,
                "workers": args.threads,
                "log_level": args.log_level,
            },
        )
    except (ConfigError, FileNotFoundError) as error:
        print(f"pullpipe: {error}", file=sys.stderr)
        return 1

    configure_logging(level=config.log_level, json_mode=args.json_logs)
    logger = get_logger(__name__, context={"command": "copy"})
    return _run_copy(args, config, logger)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pullpipe",
        description="Copy files through a pull-driven chain of stages.",
    )
    _ = parser.add_argument(
        "--log-level",
        choices=("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"),
        default=None,
        help="Override the log level emitted by the CLI.",
    )
    _ = parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Emit structured JSON logs (default: PULLPIPE_LOG_FORMAT).",
    )

    subcommands = parser.add_subparsers(dest="command", required=True)

    copy_parser = subcommands.add_parser(
        "copy", help="Copy SRC to DST, optionally transforming the bytes."
    )
    _ = copy_parser.add_argument("src", help="Origin file.")
    _ = copy_parser.add_argument("dst", help="Destination file.")
    _ = copy_parser.add_argument(
        "--chunk-size", type=int, default=None, help="Shared buffer size in bytes."
    )
    _ = copy_parser.add_argument(
        "--start",
        type=int,
        default=None,
        help="Destination offset the first byte is written at.",
    )
    _ = copy_parser.add_argument(
        "--flags",
        choices=("truncate", "exclusive", "append", "update"),
        default=None,
        help="How the destination is opened (default: truncate).",
    )
    _ = copy_parser.add_argument(
        "--mode", default=None, help="Octal permission bits for a new destination."
    )
    _ = copy_parser.add_argument(
        "--transcode",
        metavar="FROM:TO",
        default=None,
        help="Re-encode text from one codec to another.",
    )
    _ = copy_parser.add_argument(
        "--upper", action="store_true", help="Uppercase ASCII letters."
    )
    _ = copy_parser.add_argument(
        "--digest",
        metavar="ALG",
        default=None,
        help="Print the hashlib digest of the bytes written.",
    )
    _ = copy_parser.add_argument(
        "--config", default=None, help="TOML or YAML configuration file."
    )
    _ = copy_parser.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Worker threads running filesystem calls (default: 1).",
    )

    _ = subcommands.add_parser(
        "states", help="Print the stage state machines as Mermaid diagrams."
    )

    return parser


def _build_transforms(
    args: argparse.Namespace,
) -> tuple[list[Transform], DigestTransform | None]:
    transforms: list[Transform] = []
    if args.transcode is not None:
        source_encoding, separator, target_encoding = args.transcode.partition(":")
        if not separator or not source_encoding or not target_encoding:
            msg = f"--transcode expects FROM:TO, got {args.transcode!r}"
            raise InvalidArgumentError(msg)
        transforms.append(TranscodeTransform(source_encoding, target_encoding))
    if args.upper:
        transforms.append(TranslateTransform.uppercase())
    digest: DigestTransform | None = None
    if args.digest is not None:
        digest = DigestTransform(args.digest)
        transforms.append(digest)
    return transforms, digest


def _run_copy(
    args: argparse.Namespace, config: PipeConfig, logger: StructuredLogger
) -> int:
    executor = SystemExecutor(max_workers=config.workers)
    fs = AsyncFileSystem(ops=HostFileOps(), loop=CompletionLoop(executor=executor))
    with executor:
        try:
            transforms, digest = _build_transforms(args)
            result = copy_file(
                args.src,
                args.dst,
                transforms=transforms,
                source_options=config.source_options(),
                sink_options=config.sink_options(start=args.start),
                fs=fs,
            )
        except PullPipeError as error:
            logger.error(
                "Copy failed.",
                event="cli.copy_failed",
                context={"src": args.src, "dst": args.dst, "error": str(error)},
            )
            print(f"pullpipe: {error}", file=sys.stderr)
            return 1

    print(f"{result.bytes_written} bytes written to {args.dst}")
    if digest is not None:
        print(f"{digest.algorithm} {digest.hexdigest()}")
    return 0


def _run_states() -> int:
    for cls in _STATE_MACHINES:
        spec = extract_state_machine(cls)
        print(f"%% {cls.__name__}")
        print(spec.to_mermaid())
        print()
    return 0
