"""AES-CBC cipher context with PKCS#7 padding and incremental update/finalize.

This is a thin capability wrapper over :mod:`cryptography` so the stream
adapters can drive the cipher the classic way:

- ``create_cipher(operation, key, iv)`` builds a context for one pass
- ``update_into`` / ``finalize_into`` write output into a caller buffer
- ``max_output_length`` tells the caller how large that buffer must be

Failures are reported as :class:`CipherError` with a :class:`CipherStatus`.
"""

from __future__ import annotations

import enum
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from aesstream.core.exceptions import CipherError

BytesLike = Union[bytes, bytearray, memoryview]

BLOCK_SIZE = algorithms.AES.block_size // 8  # 16 bytes
AES_KEY_SIZES = (16, 24, 32)


class Operation(enum.Enum):
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


class CipherStatus(enum.IntEnum):
    """Status codes of the classic cipher API."""

    SUCCESS = 0
    PARAM_ERROR = -4300
    BUFFER_TOO_SMALL = -4301
    MEMORY_FAILURE = -4302
    ALIGNMENT_ERROR = -4303
    DECODE_ERROR = -4304
    UNIMPLEMENTED = -4305
    OVERFLOW = -4306
    RNG_FAILURE = -4307
    UNSPECIFIED_ERROR = -4308
    CALL_SEQUENCE_ERROR = -4309
    KEY_SIZE_ERROR = -4310

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS.get(self, f"Undefined error {int(self)}.")


_STATUS_DESCRIPTIONS = {
    CipherStatus.SUCCESS: "Operation completed normally.",
    CipherStatus.PARAM_ERROR: "Illegal parameter value.",
    CipherStatus.BUFFER_TOO_SMALL: "Insufficient buffer provided for specified operation.",
    CipherStatus.MEMORY_FAILURE: "Memory allocation failure.",
    CipherStatus.ALIGNMENT_ERROR: "Input size was not aligned properly.",
    CipherStatus.DECODE_ERROR: "Input data did not decode or decrypt properly.",
    CipherStatus.UNIMPLEMENTED: "Function not implemented for the current algorithm.",
    CipherStatus.OVERFLOW: "Output overflow.",
    CipherStatus.RNG_FAILURE: "Random number generator failure.",
    CipherStatus.UNSPECIFIED_ERROR: "Unspecified error.",
    CipherStatus.CALL_SEQUENCE_ERROR: "Operation called out of sequence.",
    CipherStatus.KEY_SIZE_ERROR: "Invalid key size.",
}


class CipherContext:
    """
    One AES-CBC-PKCS#7 pass in a single direction.

    Encryption pads before the block cipher; decryption strips padding after
    it. The context tracks how many input bytes are waiting for a full block
    so :meth:`max_output_length` can give an exact upper bound.

    A context is single-use: after :meth:`finalize` any further call fails
    with ``CALL_SEQUENCE_ERROR``.
    """

    def __init__(self, operation: Operation, key: BytesLike, iv: BytesLike):
        self.operation = Operation(operation)
        key = bytes(key)
        iv = bytes(iv)
        if len(key) not in AES_KEY_SIZES:
            raise CipherError(CipherStatus.KEY_SIZE_ERROR)
        if len(iv) != BLOCK_SIZE:
            raise CipherError(
                CipherStatus.PARAM_ERROR,
                f"IV must be {BLOCK_SIZE} bytes, got {len(iv)}",
            )

        try:
            cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
        except ValueError as exc:
            raise CipherError(CipherStatus.PARAM_ERROR, str(exc)) from exc

        if self.operation is Operation.ENCRYPT:
            self._engine = cipher.encryptor()
            self._padding = padding.PKCS7(algorithms.AES.block_size).padder()
        else:
            self._engine = cipher.decryptor()
            self._padding = padding.PKCS7(algorithms.AES.block_size).unpadder()

        self._pending = 0
        self._finalized = False

    @property
    def block_size(self) -> int:
        return BLOCK_SIZE

    @property
    def finalized(self) -> bool:
        return self._finalized

    def max_output_length(self, input_length: int, final: bool = False) -> int:
        """Worst-case output size of ``update`` on ``input_length`` bytes.

        With ``final=True`` the bound also covers the ``finalize`` call that
        follows it. Decryption holds back one block for padding removal, so
        its bound is one block larger.
        """
        if input_length < 0:
            raise ValueError("input_length must not be negative")
        length = (self._pending + input_length) // BLOCK_SIZE * BLOCK_SIZE
        if self.operation is Operation.DECRYPT:
            length += BLOCK_SIZE
        if final:
            length += BLOCK_SIZE
        return length

    def update(self, data: BytesLike) -> bytes:
        self._require_active()
        data = bytes(data)
        self._pending = (self._pending + len(data)) % BLOCK_SIZE
        if self.operation is Operation.ENCRYPT:
            return self._engine.update(self._padding.update(data))
        return self._padding.update(self._engine.update(data))

    def finalize(self) -> bytes:
        self._require_active()
        self._finalized = True
        if self.operation is Operation.ENCRYPT:
            block = self._engine.update(self._padding.finalize())
            return block + self._engine.finalize()

        try:
            tail = self._engine.finalize()
        except ValueError as exc:
            # ciphertext length is not a multiple of the block size
            raise CipherError(CipherStatus.ALIGNMENT_ERROR) from exc
        try:
            return self._padding.update(tail) + self._padding.finalize()
        except ValueError as exc:
            raise CipherError(CipherStatus.DECODE_ERROR) from exc

    def update_into(self, data: BytesLike, buf) -> int:
        """Run :meth:`update` and copy the output to the start of ``buf``."""
        if len(buf) < self.max_output_length(len(data)):
            raise CipherError(CipherStatus.BUFFER_TOO_SMALL)
        return _copy_into(self.update(data), buf)

    def finalize_into(self, buf) -> int:
        """Run :meth:`finalize` and copy the output to the start of ``buf``."""
        # finalize never emits more than one block in either direction
        if len(buf) < BLOCK_SIZE:
            raise CipherError(CipherStatus.BUFFER_TOO_SMALL)
        return _copy_into(self.finalize(), buf)

    def _require_active(self) -> None:
        if self._finalized:
            raise CipherError(CipherStatus.CALL_SEQUENCE_ERROR)


def _copy_into(output: bytes, buf) -> int:
    size = len(output)
    if size:
        buf[:size] = output
    return size


def create_cipher(operation: Operation, key: BytesLike, iv: BytesLike) -> CipherContext:
    return CipherContext(operation, key, iv)
