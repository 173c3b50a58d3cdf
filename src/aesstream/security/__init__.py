"""Security helpers: AES-CBC cipher context and streaming adapters for aesstream.

This package provides:
- a single-pass AES-CBC/PKCS#7 cipher context with incremental update/finalize
- a decrypting reader and an encrypting writer over plain byte streams
- whole-file helpers built on top of the two adapters
"""

from .crypto import BLOCK_SIZE, CipherContext, CipherStatus, Operation, create_cipher
from .streams import (
    ByteSink,
    ByteSource,
    DecryptingReader,
    EncryptingWriter,
    decrypt_file,
    encrypt_file,
)

__all__ = [
    "BLOCK_SIZE",
    "CipherContext",
    "CipherStatus",
    "Operation",
    "create_cipher",
    "ByteSink",
    "ByteSource",
    "DecryptingReader",
    "EncryptingWriter",
    "decrypt_file",
    "encrypt_file",
]
