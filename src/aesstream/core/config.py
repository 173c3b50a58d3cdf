"""Runtime settings for the stream adapters and the CLI.

Values come from environment variables so the CLI can be tuned without flags:

- ``AESSTREAM_CHUNK_SIZE``: bytes pulled from upstream per decrypt cycle
- ``AESSTREAM_LOG_LEVEL``: logging level name (DEBUG, INFO, WARNING, ...)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_CHUNK_SIZE = 512 * 1024  # 512 KiB
DEFAULT_LOG_LEVEL = "WARNING"

ENV_CHUNK_SIZE = "AESSTREAM_CHUNK_SIZE"
ENV_LOG_LEVEL = "AESSTREAM_LOG_LEVEL"


@dataclass(frozen=True)
class StreamSettings:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")

    @property
    def level(self) -> int:
        """Numeric logging level for :func:`logging.basicConfig`."""
        return logging.getLevelName(self.log_level.upper())


def load_settings(environ: Optional[Mapping[str, str]] = None) -> StreamSettings:
    """Build settings from ``environ`` (defaults to ``os.environ``)."""
    if environ is None:
        environ = os.environ

    raw_chunk = environ.get(ENV_CHUNK_SIZE)
    chunk_size = DEFAULT_CHUNK_SIZE
    if raw_chunk:
        try:
            chunk_size = int(raw_chunk)
        except ValueError:
            raise ValueError(f"{ENV_CHUNK_SIZE} must be an integer, got {raw_chunk!r}") from None

    log_level = environ.get(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL
    return StreamSettings(chunk_size=chunk_size, log_level=log_level)
