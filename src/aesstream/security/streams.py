"""Streaming AES-CBC adapters over plain byte sources and sinks.

Stream layout: raw CBC ciphertext with PKCS#7 padding, no header and no
length field. The decrypting side therefore recognises the last chunk only
by a short read from upstream; sources must return fewer bytes than asked
for only at end of data. Buffered file objects (``open(path, "rb")``,
``io.BytesIO``, ``sys.stdin.buffer``, ``socket.makefile("rb")``) behave that
way; a raw socket does not.

Both adapters own one :class:`~aesstream.security.crypto.CipherContext`
and one buffer for their whole life and handle exactly one pass over one
stream.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from aesstream.core.config import DEFAULT_CHUNK_SIZE
from aesstream.core.exceptions import (
    CipherError,
    CipherInitError,
    DecryptError,
    FinalizeError,
    FinishEncryptError,
    InvalidKeySizeError,
    ProcessDataError,
    StreamStateError,
)
from .crypto import BLOCK_SIZE, BytesLike, CipherContext, Operation, create_cipher

logger = logging.getLogger(__name__)

VALID_KEY_SIZES = (16, 32)


class ByteSource(Protocol):
    def read(self, size: int) -> bytes: ...


class ByteSink(Protocol):
    def write(self, data: bytes) -> Optional[int]: ...

    def close(self) -> None: ...


def _open_context(operation: Operation, key: BytesLike, iv: BytesLike) -> CipherContext:
    # copy caller buffers so later mutation on their side cannot leak in
    key = bytes(key)
    iv = bytes(iv)
    if len(key) not in VALID_KEY_SIZES:
        raise InvalidKeySizeError(f"Key must be 16 or 32 bytes, got {len(key)}")
    try:
        return create_cipher(operation, key, iv)
    except CipherError as exc:
        logger.warning("Could not create %s context: %s", operation.value, exc)
        raise CipherInitError(exc.status, str(exc)) from exc


class DecryptingReader:
    """
    Read plaintext from a source of AES-CBC ciphertext.

    Upstream data is pulled ``chunk_size`` bytes at a time and decrypted into
    an internal buffer that later reads are served from. A short upstream read
    marks the final chunk: it is decrypted, the padding is stripped and the
    stream is at its end once the buffer drains.

    A failing cipher step raises :class:`DecryptError` or
    :class:`FinalizeError`. The bytes already copied to the caller in that
    call are reported on the exception as ``bytes_read`` and ``partial``.
    The failure is terminal; later reads raise :class:`StreamStateError`.
    """

    def __init__(
        self,
        source: ByteSource,
        key: BytesLike,
        iv: BytesLike,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._context: Optional[CipherContext] = _open_context(Operation.DECRYPT, key, iv)
        self._source = source
        self._chunk_size = chunk_size

        # room for a partial block carried over from the previous chunk
        capacity = self._context.max_output_length(chunk_size + BLOCK_SIZE - 1, final=True)
        self._buffer = bytearray(capacity)
        self._size = 0
        self._offset = 0
        self._eof = False
        self._failed = False
        self._closed = False

    # ------------------------------------------------------------------
    # Stream state
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def eof(self) -> bool:
        """True once the final chunk has been decrypted."""
        return self._eof

    @property
    def has_bytes_available(self) -> bool:
        return not self._eof or self._offset < self._size

    def readable(self) -> bool:
        return not self._closed

    def close(self) -> None:
        """Release the buffer and cipher context. The source stays open."""
        if self._closed:
            return
        self._closed = True
        self._context = None
        self._buffer = bytearray()
        self._size = self._offset = 0

    def __enter__(self) -> "DecryptingReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` plaintext bytes; everything left if negative."""
        if size is None or size < 0:
            return self._read_all()
        buf = bytearray(size)
        count = self.readinto(buf)
        del buf[count:]
        return bytes(buf)

    def readinto(self, b) -> int:
        """Fill ``b`` with plaintext and return the number of bytes copied.

        Returns fewer than ``len(b)`` bytes only at end of stream, and 0 once
        the stream is exhausted.
        """
        self._check_usable()
        with memoryview(b) as view, view.cast("B") as target:
            requested = len(target)
            copied = 0
            while copied < requested:
                if self._offset >= self._size:
                    if self._eof:
                        break
                    try:
                        self._decrypt_chunk()
                    except (DecryptError, FinalizeError) as exc:
                        self._failed = True
                        exc.bytes_read = copied
                        exc.partial = bytes(target[:copied])
                        raise
                    continue

                count = min(requested - copied, self._size - self._offset)
                target[copied:copied + count] = self._buffer[self._offset:self._offset + count]
                self._offset += count
                copied += count
        return copied

    def _read_all(self) -> bytes:
        parts = []
        while True:
            try:
                part = self.read(self._chunk_size)
            except (DecryptError, FinalizeError) as exc:
                # report everything this call handed out, not just the last piece
                done = b"".join(parts)
                exc.bytes_read += len(done)
                exc.partial = done + exc.partial
                raise
            if not part:
                break
            parts.append(part)
        return b"".join(parts)

    def _decrypt_chunk(self) -> None:
        """Pull one chunk from upstream and decrypt it into the buffer."""
        self._size = 0
        self._offset = 0
        data = self._source.read(self._chunk_size) or b""

        if data:
            try:
                self._size = self._context.update_into(data, self._buffer)
            except CipherError as exc:
                logger.warning("Decrypting chunk failed: %s", exc)
                raise DecryptError(exc.status, str(exc)) from exc

        if len(data) < self._chunk_size:
            try:
                with memoryview(self._buffer) as view:
                    self._size += self._context.finalize_into(view[self._size:])
            except CipherError as exc:
                logger.warning("Finishing decryption failed: %s", exc)
                raise FinalizeError(exc.status, str(exc)) from exc
            self._eof = True
            logger.debug("Final chunk: %d ciphertext bytes -> %d plaintext bytes", len(data), self._size)
        else:
            logger.debug("Chunk: %d ciphertext bytes -> %d plaintext bytes", len(data), self._size)

    def _check_usable(self) -> None:
        if self._closed:
            raise StreamStateError("I/O operation on closed reader")
        if self._failed:
            raise StreamStateError("Reader failed earlier and cannot continue")


class EncryptingWriter:
    """
    Write plaintext to a sink as AES-CBC ciphertext.

    Each :meth:`write` runs one cipher update into a grow-only buffer and
    forwards the produced ciphertext with at most one downstream write.
    :meth:`close` emits the final padded block and closes the sink; the sink
    is closed even when the final step fails.
    """

    def __init__(self, sink: ByteSink, key: BytesLike, iv: BytesLike):
        self._context: Optional[CipherContext] = _open_context(Operation.ENCRYPT, key, iv)
        self._sink = sink
        self._buffer = bytearray()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def buffer_capacity(self) -> int:
        return len(self._buffer)

    @property
    def has_space_available(self) -> bool:
        """False once closed; otherwise the sink's own answer, if it has one."""
        if self._closed:
            return False
        return bool(getattr(self._sink, "has_space_available", True))

    def writable(self) -> bool:
        return not self._closed

    def write(self, data: BytesLike) -> int:
        """Encrypt ``data`` and forward the ciphertext.

        Returns the sink's reported write count (the produced byte count when
        the sink reports nothing). Up to one block of input may stay inside
        the cipher until a later write or :meth:`close`.
        """
        if self._closed:
            raise StreamStateError("I/O operation on closed writer")

        length = memoryview(data).nbytes
        self._ensure_capacity(self._context.max_output_length(length))
        try:
            produced = self._context.update_into(data, self._buffer)
        except CipherError as exc:
            logger.warning("Encrypting %d bytes failed: %s", length, exc)
            raise ProcessDataError(exc.status, str(exc)) from exc

        if not produced:
            return 0
        written = self._sink.write(bytes(self._buffer[:produced]))
        return produced if written is None else written

    def flush(self) -> None:
        if self._closed:
            raise StreamStateError("I/O operation on closed writer")
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()

    def close(self) -> None:
        """Write the final padded block and close the sink (once)."""
        if self._closed:
            return
        self._closed = True
        try:
            self._ensure_capacity(self._context.max_output_length(0, final=True))
            try:
                produced = self._context.finalize_into(self._buffer)
            except CipherError as exc:
                logger.warning("Finishing encryption failed: %s", exc)
                raise FinishEncryptError(exc.status, str(exc)) from exc
            if produced:
                self._sink.write(bytes(self._buffer[:produced]))
        finally:
            self._release()

    def abort(self) -> None:
        """Close the sink without writing the final block.

        The ciphertext written so far stays unpadded, so it will not decrypt
        as a valid (shorter) stream.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug("Aborting encryption stream without final block")
        self._release()

    def __enter__(self) -> "EncryptingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    def _ensure_capacity(self, required: int) -> None:
        if required > len(self._buffer):
            logger.debug("Growing cipher buffer %d -> %d bytes", len(self._buffer), required)
            self._buffer = bytearray(required)

    def _release(self) -> None:
        self._context = None
        self._buffer = bytearray()
        self._sink.close()


# ----------------------------------------------------------------------
# File helpers
# ----------------------------------------------------------------------


def encrypt_file(
    in_path: str | Path,
    out_path: str | Path,
    key: BytesLike,
    iv: BytesLike,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Encrypt ``in_path`` into ``out_path``; returns plaintext bytes read."""
    total = 0

    def pump(tmpf) -> None:
        nonlocal total
        with open(in_path, "rb") as inf:
            writer = EncryptingWriter(tmpf, key, iv)
            with writer:
                while True:
                    chunk = inf.read(chunk_size)
                    if not chunk:
                        break
                    writer.write(chunk)
                    total += len(chunk)

    write_atomically(out_path, pump)
    logger.info("Encrypted %d bytes from %s", total, in_path)
    return total


def decrypt_file(
    in_path: str | Path,
    out_path: str | Path,
    key: BytesLike,
    iv: BytesLike,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Decrypt ``in_path`` into ``out_path``; returns plaintext bytes written."""
    total = 0

    def pump(tmpf) -> None:
        nonlocal total
        with open(in_path, "rb") as inf, DecryptingReader(inf, key, iv, chunk_size) as reader:
            while True:
                chunk = reader.read(chunk_size)
                if not chunk:
                    break
                tmpf.write(chunk)
                total += len(chunk)

    write_atomically(out_path, pump)
    logger.info("Decrypted %d bytes from %s", total, in_path)
    return total


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def write_atomically(out_path: str | Path, pump) -> None:
    """Call ``pump`` with a binary temp file and move it onto ``out_path``.

    The temp file lives next to the destination and only replaces it when
    ``pump`` returns; on error the destination is left untouched. The result
    gets the permissions a plain ``open(out_path, "wb")`` would give it.
    """
    out_path = Path(out_path)
    fd, tmp_name = tempfile.mkstemp(dir=out_path.parent, prefix=f".{out_path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as tmpf:
            pump(tmpf)
        # mkstemp creates 0600
        os.chmod(tmp_path, _default_file_mode())
        os.replace(tmp_path, out_path)
    finally:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
