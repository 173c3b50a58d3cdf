"""Command-line front end: stream files or stdin/stdout through the AES adapters.

Usage::

    aesstream encrypt --key <hex> --iv <hex> plain.bin cipher.bin
    aesstream decrypt --key <hex> --iv <hex> cipher.bin -   # to stdout

``-`` stands for stdin/stdout. The chunk size and log level default to the
``AESSTREAM_CHUNK_SIZE`` / ``AESSTREAM_LOG_LEVEL`` environment variables.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from aesstream.core.config import StreamSettings, load_settings
from aesstream.core.exceptions import AesStreamError
from aesstream.security.streams import (
    DecryptingReader,
    EncryptingWriter,
    decrypt_file,
    encrypt_file,
    write_atomically,
)

from .logging_config import configure_logging

logger = logging.getLogger(__name__)

STDIO = "-"


class _StdoutSink:
    """Sink over a binary stdout that flushes instead of closing it."""

    def __init__(self, stream):
        self._stream = stream

    def write(self, data: bytes) -> int:
        return self._stream.write(data)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self._stream.flush()


def _hex_bytes(value: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}") from None


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aesstream",
        description="Encrypt or decrypt a byte stream with AES-CBC and PKCS#7 padding",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeatable)")

    sub = parser.add_subparsers(dest="command", required=True)
    for name in ("encrypt", "decrypt"):
        cmd = sub.add_parser(name, help=f"{name} INPUT into OUTPUT")
        cmd.add_argument("--key", type=_hex_bytes, required=True, help="16 or 32 byte key as hex")
        cmd.add_argument("--iv", type=_hex_bytes, required=True, help="16 byte IV as hex")
        cmd.add_argument("--chunk-size", type=_positive_int, default=None)
        cmd.add_argument("input", help="input path, or - for stdin")
        cmd.add_argument("output", help="output path, or - for stdout")
    return parser


def _pump_stdio(args: argparse.Namespace, chunk_size: int) -> int:
    from_stdin = args.input == STDIO
    source = sys.stdin.buffer if from_stdin else open(args.input, "rb")
    total = 0

    def pump(sink) -> None:
        nonlocal total
        if args.command == "encrypt":
            try:
                writer = EncryptingWriter(sink, args.key, args.iv)
            except AesStreamError:
                sink.close()
                raise
            with writer:
                while True:
                    chunk = source.read(chunk_size)
                    if not chunk:
                        break
                    writer.write(chunk)
                    total += len(chunk)
        else:
            try:
                with DecryptingReader(source, args.key, args.iv, chunk_size) as reader:
                    while True:
                        chunk = reader.read(chunk_size)
                        if not chunk:
                            break
                        sink.write(chunk)
                        total += len(chunk)
            finally:
                sink.close()

    try:
        if args.output == STDIO:
            pump(_StdoutSink(sys.stdout.buffer))
        else:
            write_atomically(args.output, pump)
    finally:
        if not from_stdin:
            source.close()
    return total


def run(args: argparse.Namespace, settings: Optional[StreamSettings] = None) -> int:
    """Execute a parsed command; returns the number of plaintext bytes."""
    if settings is None:
        settings = load_settings()
    chunk_size = args.chunk_size or settings.chunk_size

    if STDIO in (args.input, args.output):
        return _pump_stdio(args, chunk_size)
    if args.command == "encrypt":
        return encrypt_file(args.input, args.output, args.key, args.iv, chunk_size=chunk_size)
    return decrypt_file(args.input, args.output, args.key, args.iv, chunk_size=chunk_size)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as exc:
        parser.error(str(exc))

    level = settings.level
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    configure_logging(level)

    try:
        total = run(args, settings)
    except (AesStreamError, OSError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1

    logger.info("%s: %d plaintext bytes", args.command, total)
    return 0


if __name__ == "__main__":
    sys.exit(main())
